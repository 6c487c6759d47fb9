"""Execution engine for workflow trees.

The engine walks an annotated tree, honouring each node's control-flow kind:

- step:     bind inputs, invoke the agent executor (optionally under a timeout)
- sequence: children one at a time; the first failure skips the rest
- branch:   evaluate the condition, run exactly one candidate, skip the others
- loop:     one fresh body instance per source element, bounded concurrency,
            fail-complete (every started instance is allowed to finish)
- parallel: children concurrently, fail-complete
- race:     children concurrently; the first to succeed wins and the rest
            are cancelled (running) or skipped (not started)

Node failures are recorded on the node and propagate only through these
rules. Cancellation and tree contract violations abort the run.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any

from agent_flow_engine.executors.base import AgentExecutor

from .binding import BoundVariables, bind_inputs, evaluate_binding
from .errors import (
    BindingError,
    ErrorKind,
    ExecutorError,
    NoBranchMatchedError,
    NodeFailure,
    RunCancelledError,
    StepTimeoutError,
)
from .events import NodeEvent, RunObserver
from .identity import adopt_identities, assign_identities
from .models import (
    AgentStep,
    BranchStep,
    LoopStep,
    ParallelStep,
    RaceStep,
    SequenceStep,
    WorkflowNode,
)
from .naming import DEFAULT_SEPARATOR, derive_names
from .paths import CHILDREN_FIELD, DEFAULT_FIELD, ITEMS_FIELD, ROOT, child_path
from .results import NodeError, NodeRecord, NodeResult, RunResult
from .status import NodeStatus, RunStatus

logger = logging.getLogger(__name__)

DEFAULT_LOOP_CONCURRENCY = 4

RUN_CANCELLED = "Run cancelled"
RACE_LOST = "Another race candidate succeeded first"

Scope = Mapping[str, Any]


class CancellationToken:
    """Run-level cancellation signal, observed at every suspension point."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class _Cancelled(Exception):
    pass


@dataclass(frozen=True)
class _Context:
    """What a node sees while it executes.

    `scope` holds container inputs and loop variables, `instances` maps each
    enclosing loop's path to the instance being executed, and `halts` are the
    signals of enclosing races that stop their losing candidates.
    """

    scope: Scope = field(default_factory=lambda: MappingProxyType({}))
    instances: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    halts: tuple[CancellationToken, ...] = ()

    @property
    def halted(self) -> bool:
        return any(halt.cancelled for halt in self.halts)

    def with_scope(self, values: Mapping[str, Any]) -> _Context:
        return replace(self, scope=MappingProxyType({**self.scope, **values}))

    def in_instance(self, loop_path: str, index: int, values: Mapping[str, Any]) -> _Context:
        return replace(
            self.with_scope(values),
            instances=MappingProxyType({**self.instances, loop_path: index}),
        )

    def halted_by(self, halt: CancellationToken) -> _Context:
        return replace(self, halts=(*self.halts, halt))


def _skeleton(node: WorkflowNode, path: str) -> NodeRecord:
    """Pending records for `node` and every statically known descendant."""

    record = NodeRecord(path=path, node=node)
    if isinstance(node, (SequenceStep, ParallelStep, RaceStep)):
        record.children = [
            _skeleton(child, child_path(path, CHILDREN_FIELD, i))
            for i, child in enumerate(node.children)
        ]
    elif isinstance(node, BranchStep):
        record.children = [
            _skeleton(case.node, child_path(path, CHILDREN_FIELD, i))
            for i, case in enumerate(node.children)
        ]
        if node.default is not None:
            record.default = _skeleton(node.default, child_path(path, DEFAULT_FIELD))
    return record


def _matches(when: Any, value: Any) -> bool:
    if isinstance(when, bool):
        return bool(value) is when
    # 1 == True in Python; a non-boolean case never matches a boolean value.
    if isinstance(value, bool):
        return False
    return bool(when == value)


class FlowEngine:
    """Executes workflow trees against an agent executor.

    One engine may serve many runs; all per-run state lives in `_Run`.
    """

    def __init__(
        self,
        executor: AgentExecutor,
        *,
        loop_concurrency: int = DEFAULT_LOOP_CONCURRENCY,
        default_step_timeout: float | None = None,
        label_separator: str = DEFAULT_SEPARATOR,
        observer: RunObserver | None = None,
    ) -> None:
        if loop_concurrency < 1:
            raise ValueError("loop_concurrency must be at least 1")
        self.executor = executor
        self.loop_concurrency = loop_concurrency
        self.default_step_timeout = default_step_timeout
        self.label_separator = label_separator
        self.observer = observer

    async def execute(
        self,
        tree: WorkflowNode,
        variables: BoundVariables | Mapping[str, Any] | None = None,
        cancellation: CancellationToken | None = None,
        *,
        resume_from: RunResult | None = None,
    ) -> RunResult:
        """Execute `tree` and return its result tree.

        Args:
            tree: The workflow to run. Ids and labels are assigned if missing.
            variables: Bound run variables (see `bind_variables`); a plain
                mapping is accepted as already-validated values.
            cancellation: Optional run-level cancellation token.
            resume_from: A previous run of the same tree. Succeeded steps
                whose path and node id match are reused instead of invoked.
                Nodes without an id take the id recorded at their position.

        Raises:
            RunCancelledError: cancellation was requested; carries the
                partial result.
            TreeContractError: the tree aliases or duplicates nodes.
        """

        if resume_from is not None:
            tree = adopt_identities(derive_names(tree, self.label_separator), resume_from.tree)
        tree = derive_names(assign_identities(tree), self.label_separator)
        if not isinstance(variables, BoundVariables):
            variables = BoundVariables(variables or {})
        run = _Run(
            engine=self,
            variables=variables,
            token=cancellation or CancellationToken(),
            previous=resume_from.results if resume_from is not None else {},
        )
        return await run.start(tree)


class _Run:
    def __init__(
        self,
        *,
        engine: FlowEngine,
        variables: BoundVariables,
        token: CancellationToken,
        previous: dict[str, NodeResult],
    ) -> None:
        self.engine = engine
        self.executor = engine.executor
        self.variables = variables
        self.token = token
        self.previous = previous
        self.trace: list[NodeEvent] = []
        self.root: NodeRecord | None = None

    async def start(self, tree: WorkflowNode) -> RunResult:
        self.root = _skeleton(tree, ROOT)
        logger.info("Flow run started", extra={"flow_root": tree.id, "flow_label": tree.label})

        await self._run_node(self.root, _Context())

        if self.token.cancelled:
            self._settle(self.root, NodeStatus.CANCELLED)
        if self.token.cancelled and any(
            r.status is NodeStatus.CANCELLED for r in self.root.walk()
        ):
            status = RunStatus.CANCELLED
        elif self.root.status is NodeStatus.SUCCEEDED:
            status = RunStatus.SUCCEEDED
        else:
            status = RunStatus.FAILED

        result = RunResult(status=status, tree=self.root.freeze(), trace=list(self.trace))
        logger.info(
            "Flow run finished",
            extra={
                "flow_root": tree.id,
                "run_status": status.value,
                "failed_nodes": [r.path for r in result.failures()],
            },
        )
        if status is RunStatus.CANCELLED:
            raise RunCancelledError(result)
        return result

    # -- transitions ---------------------------------------------------------

    def _move(self, record: NodeRecord, to: NodeStatus, message: str = "") -> None:
        previous = record.move(to)
        event = NodeEvent(
            path=record.path,
            node_id=record.node_id,
            kind=record.kind,
            label=record.label,
            previous=previous,
            status=to,
            error_kind=record.error.kind if record.error is not None else None,
            message=message or (record.error.message if record.error is not None else ""),
        )
        self.trace.append(event)
        logger.debug(
            "Node transition",
            extra={"node_path": record.path, "from": previous.value, "to": to.value},
        )
        if self.engine.observer is not None:
            try:
                self.engine.observer(event)
            except Exception:
                logger.warning("Run observer failed", exc_info=True)

    def _succeed(self, record: NodeRecord, output: Any, message: str = "") -> None:
        record.output = output
        self._move(record, NodeStatus.SUCCEEDED, message)

    def _fail(self, record: NodeRecord, error: NodeError) -> None:
        record.error = error
        logger.warning(
            "Node failed",
            extra={
                "node_path": record.path,
                "node_label": record.label,
                "error_kind": error.kind.value,
                "error": error.message,
            },
        )
        self._move(record, NodeStatus.FAILED)
        for child in record.walk():
            if child is not record and child.status is NodeStatus.PENDING:
                self._move(child, NodeStatus.SKIPPED)

    def _fail_from_children(self, record: NodeRecord, children: list[NodeRecord]) -> None:
        failed = [c for c in children if c.status is NodeStatus.FAILED]
        first = failed[0]
        reason = first.error.message if first.error is not None else "failed"
        self._fail(
            record,
            NodeError(
                kind=ErrorKind.CHILD_FAILED,
                message=f"{first.path} ({first.label}) failed: {reason}",
                details={"failed": [c.path for c in failed]},
            ),
        )

    def _settle(self, record: NodeRecord, to: NodeStatus) -> None:
        """Move every pending record under (and including) `record` to `to`."""

        for child in record.walk():
            if child.status is NodeStatus.PENDING:
                self._move(child, to)

    def _cancel(self, record: NodeRecord) -> None:
        """Stop `record`: by the run's token, or because its race was lost."""

        by_run = self.token.cancelled
        if record.status is NodeStatus.RUNNING:
            message = RUN_CANCELLED if by_run else RACE_LOST
            record.error = NodeError(kind=ErrorKind.CANCELLED, message=message)
            self._move(record, NodeStatus.CANCELLED)
        self._settle(record, NodeStatus.CANCELLED if by_run else NodeStatus.SKIPPED)

    # -- dispatch ------------------------------------------------------------

    async def _run_node(self, record: NodeRecord, ctx: _Context) -> None:
        if self.token.cancelled:
            self._cancel(record)
            return
        if ctx.halted:
            self._settle(record, NodeStatus.SKIPPED)
            return
        self._move(record, NodeStatus.RUNNING)

        node = record.node
        if isinstance(node, AgentStep):
            await self._run_step(record, node, ctx)
            return

        try:
            bound = bind_inputs(
                node, self.root, self.variables, ctx.scope, instances=ctx.instances
            )
        except BindingError as exc:
            self._fail(record, NodeError.from_failure(exc))
            return
        if bound:
            ctx = ctx.with_scope(bound)

        if isinstance(node, SequenceStep):
            await self._run_sequence(record, ctx)
        elif isinstance(node, BranchStep):
            await self._run_branch(record, node, ctx)
        elif isinstance(node, LoopStep):
            await self._run_loop(record, node, ctx)
        elif isinstance(node, ParallelStep):
            limit = node.max_concurrency or self.engine.loop_concurrency
            await self._gather(record.children, [ctx] * len(record.children), limit)
            self._aggregate(record, record.children, ctx)
        elif isinstance(node, RaceStep):
            await self._run_race(record, node, ctx)
        else:
            raise TypeError(f"Unsupported node kind: {node!r}")

    # -- steps ---------------------------------------------------------------

    async def _run_step(self, record: NodeRecord, node: AgentStep, ctx: _Context) -> None:
        previous = self.previous.get(record.path)
        if previous is not None and previous.node_id == node.id and previous.succeeded:
            record.inputs = copy.deepcopy(previous.inputs)
            self._succeed(record, copy.deepcopy(previous.output), "reused from previous run")
            return

        try:
            inputs = bind_inputs(
                node, self.root, self.variables, ctx.scope, instances=ctx.instances
            )
        except BindingError as exc:
            self._fail(record, NodeError.from_failure(exc))
            return
        record.inputs = inputs

        timeout = node.timeout_seconds or self.engine.default_step_timeout
        try:
            output = await self._invoke(node, copy.deepcopy(inputs), timeout, ctx)
        except _Cancelled:
            self._cancel(record)
            return
        except NodeFailure as exc:
            self._fail(record, NodeError.from_failure(exc))
            return
        except Exception as exc:
            logger.warning(
                "Agent executor raised",
                extra={"node_path": record.path, "agent": node.agent},
                exc_info=True,
            )
            failure = ExecutorError(str(exc) or type(exc).__name__)
            failure.details["exception"] = type(exc).__name__
            self._fail(record, NodeError.from_failure(failure))
            return
        self._succeed(record, output)

    async def _invoke(
        self,
        node: AgentStep,
        inputs: dict[str, Any],
        timeout: float | None,
        ctx: _Context,
    ) -> Any:
        invocation = asyncio.ensure_future(self._call(node, inputs, timeout))
        stops = [asyncio.ensure_future(token.wait()) for token in (self.token, *ctx.halts)]
        done, _ = await asyncio.wait(
            {invocation, *stops}, return_when=asyncio.FIRST_COMPLETED
        )
        for stop in stops:
            stop.cancel()
        if invocation in done:
            return invocation.result()

        invocation.cancel()
        await asyncio.gather(invocation, *stops, return_exceptions=True)
        raise _Cancelled()

    async def _call(self, node: AgentStep, inputs: dict[str, Any], timeout: float | None) -> Any:
        try:
            async with asyncio.timeout(timeout) as deadline:
                return await self.executor.invoke(node.agent, inputs)
        except TimeoutError:
            if deadline.expired():
                raise StepTimeoutError(node.agent, timeout or 0) from None
            raise

    # -- containers ----------------------------------------------------------

    def _finish_container(
        self, record: NodeRecord, children: list[NodeRecord], ctx: _Context
    ) -> bool:
        """Handle cancellation/failure; return True when the container is settled."""

        statuses = {c.status for c in children}
        if NodeStatus.CANCELLED in statuses or (
            self.token.cancelled and NodeStatus.PENDING in statuses
        ):
            self._cancel(record)
            return True
        unfinished = statuses - {NodeStatus.SUCCEEDED, NodeStatus.FAILED}
        if ctx.halted and unfinished and NodeStatus.FAILED not in statuses:
            self._cancel(record)
            return True
        if NodeStatus.FAILED in statuses:
            self._fail_from_children(record, children)
            return True
        return False

    async def _run_sequence(self, record: NodeRecord, ctx: _Context) -> None:
        for child in record.children:
            await self._run_node(child, ctx)
            if child.status is not NodeStatus.SUCCEEDED:
                break
        if not self._finish_container(record, record.children, ctx):
            self._succeed(record, [c.output for c in record.children])

    async def _run_branch(self, record: NodeRecord, node: BranchStep, ctx: _Context) -> None:
        try:
            value = evaluate_binding(
                node.condition,
                self.root,
                self.variables,
                ctx.scope,
                input_name="condition",
                instances=ctx.instances,
            )
        except BindingError as exc:
            self._fail(record, NodeError.from_failure(exc))
            return

        selected: NodeRecord | None = None
        for case, candidate in zip(node.children, record.children):
            if _matches(case.when, value):
                selected = candidate
                break
        if selected is None:
            selected = record.default
        if selected is None:
            self._fail(record, NodeError.from_failure(NoBranchMatchedError(value)))
            return

        for candidate in [*record.children, record.default]:
            if candidate is not None and candidate is not selected:
                self._settle(candidate, NodeStatus.SKIPPED)

        await self._run_node(selected, ctx)
        if not self._finish_container(record, [selected], ctx):
            self._succeed(record, selected.output)

    async def _run_loop(self, record: NodeRecord, node: LoopStep, ctx: _Context) -> None:
        try:
            source = evaluate_binding(
                node.source,
                self.root,
                self.variables,
                ctx.scope,
                input_name="source",
                instances=ctx.instances,
            )
        except BindingError as exc:
            self._fail(record, NodeError.from_failure(exc))
            return
        if not isinstance(source, (list, tuple)):
            failure = BindingError(
                f"Loop source must be a list, got {type(source).__name__}",
                input_name="source",
            )
            self._fail(record, NodeError.from_failure(failure))
            return

        record.items = [
            _skeleton(node.body, child_path(record.path, ITEMS_FIELD, i))
            for i in range(len(source))
        ]
        contexts: list[_Context] = []
        for index, element in enumerate(source):
            values: dict[str, Any] = {node.item_name: element}
            if node.index_name:
                values[node.index_name] = index
            contexts.append(ctx.in_instance(record.path, index, values))

        limit = node.max_concurrency or self.engine.loop_concurrency
        await self._gather(record.items, contexts, limit)
        self._aggregate(record, record.items, ctx)

    async def _run_race(self, record: NodeRecord, node: RaceStep, ctx: _Context) -> None:
        halt = CancellationToken()
        candidate_ctx = ctx.halted_by(halt)
        winner: NodeRecord | None = None
        semaphore = asyncio.Semaphore(node.max_concurrency or max(len(record.children), 1))

        async def run_one(child: NodeRecord) -> None:
            nonlocal winner
            async with semaphore:
                await self._run_node(child, candidate_ctx)
            if winner is None and child.status is NodeStatus.SUCCEEDED:
                winner = child
                halt.cancel()

        await asyncio.gather(*(run_one(child) for child in record.children))

        if winner is not None:
            self._succeed(record, winner.output, f"won by {winner.path}")
        elif self.token.cancelled or ctx.halted:
            self._cancel(record)
        elif not record.children:
            self._succeed(record, None)
        else:
            self._fail_from_children(record, record.children)

    async def _gather(
        self, records: list[NodeRecord], contexts: list[_Context], limit: int
    ) -> None:
        semaphore = asyncio.Semaphore(limit)

        async def run_one(child: NodeRecord, child_ctx: _Context) -> None:
            async with semaphore:
                await self._run_node(child, child_ctx)

        await asyncio.gather(*(run_one(r, c) for r, c in zip(records, contexts)))

    def _aggregate(self, record: NodeRecord, children: list[NodeRecord], ctx: _Context) -> None:
        if not self._finish_container(record, children, ctx):
            self._succeed(record, [c.output for c in children])


async def execute(
    tree: WorkflowNode,
    variables: BoundVariables | Mapping[str, Any] | None,
    executor: AgentExecutor,
    cancellation: CancellationToken | None = None,
    *,
    observer: RunObserver | None = None,
    loop_concurrency: int = DEFAULT_LOOP_CONCURRENCY,
    default_step_timeout: float | None = None,
    resume_from: RunResult | None = None,
) -> RunResult:
    """Execute `tree` once. See `FlowEngine.execute`."""

    engine = FlowEngine(
        executor,
        loop_concurrency=loop_concurrency,
        default_step_timeout=default_step_timeout,
        observer=observer,
    )
    return await engine.execute(tree, variables, cancellation, resume_from=resume_from)
