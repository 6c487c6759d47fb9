"""Flow runner: configuration, executor and engine wired together."""

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from agent_flow_engine.core.config import FlowEngineConfig
from agent_flow_engine.executors.base import AgentExecutor
from agent_flow_engine.executors.factory import ExecutorFactory
from agent_flow_engine.flows.binding import BoundVariables, bind_variables
from agent_flow_engine.flows.engine import CancellationToken, FlowEngine
from agent_flow_engine.flows.events import RunObserver
from agent_flow_engine.flows.identity import adopt_identities, assign_identities
from agent_flow_engine.flows.models import FlowDefinition
from agent_flow_engine.flows.naming import derive_names
from agent_flow_engine.flows.results import RunResult

logger = logging.getLogger(__name__)


class FlowRunner:
    """Entry point for annotating and running flow documents.

    The runner owns configuration and logging setup, picks an agent executor
    (unless one is injected) and drives a `FlowEngine` per run.
    """

    def __init__(
        self,
        config: FlowEngineConfig | None = None,
        executor: AgentExecutor | None = None,
    ) -> None:
        """Initialize the runner.

        Args:
            config: Configuration object. If None, loads from environment.
            executor: Agent executor to use for every run. If None, one is
                created per run from `config.llm` and the flow's agents.
        """
        self.config = config or FlowEngineConfig()
        self.config.setup_logging()
        self.executor = executor

        provider = self.config.llm.provider if executor is None else type(executor).__name__
        logger.info("Flow runner initialized", extra={"executor": provider})

    def prepare(
        self, definition: FlowDefinition, resume_from: RunResult | None = None
    ) -> FlowDefinition:
        """Return `definition` with ids and breadcrumb labels filled in.

        When resuming, nodes without ids take the ids recorded at the same
        position in `resume_from`, so their earlier results can be reused.
        """
        separator = self.config.execution.label_separator
        flow = definition.flow
        if resume_from is not None:
            flow = adopt_identities(derive_names(flow, separator), resume_from.tree)
        flow = derive_names(assign_identities(flow), separator)
        if flow is definition.flow:
            return definition
        return definition.model_copy(update={"flow": flow})

    def bind(
        self, definition: FlowDefinition, supplied: Mapping[str, Any] | None = None
    ) -> BoundVariables:
        """Validate supplied run variables against the flow's declarations."""
        variables = bind_variables(definition.inputs, supplied)
        for name, problem in variables.problems.items():
            logger.warning(problem, extra={"variable": name})
        return variables

    def engine(self, executor: AgentExecutor, observer: RunObserver | None = None) -> FlowEngine:
        execution = self.config.execution
        return FlowEngine(
            executor,
            loop_concurrency=execution.loop_concurrency,
            default_step_timeout=execution.default_step_timeout,
            label_separator=execution.label_separator,
            observer=observer,
        )

    async def run(
        self,
        definition: FlowDefinition,
        variables: Mapping[str, Any] | None = None,
        cancellation: CancellationToken | None = None,
        *,
        observer: RunObserver | None = None,
        resume_from: RunResult | None = None,
    ) -> RunResult:
        """Run a flow document once.

        Args:
            definition: The flow to run.
            variables: Supplied run variable values, validated here.
            cancellation: Optional token to cancel the run.
            observer: Callback receiving every node transition.
            resume_from: Result of an earlier run of the same document.

        Returns:
            The run's result tree.

        Raises:
            RunCancelledError: The run was cancelled.
            TreeContractError: The flow aliases or duplicates nodes.
        """
        prepared = self.prepare(definition, resume_from)
        bound = self.bind(prepared, variables)

        executor = self.executor
        owned = executor is None
        if executor is None:
            executor = ExecutorFactory.create(self.config.llm, prepared.agents)

        logger.info(f"Running flow: {prepared.code}")
        try:
            return await self.engine(executor, observer).execute(
                prepared.flow, bound, cancellation, resume_from=resume_from
            )
        finally:
            if owned:
                await executor.aclose()

    def run_sync(
        self,
        definition: FlowDefinition,
        variables: Mapping[str, Any] | None = None,
        *,
        observer: RunObserver | None = None,
        resume_from: RunResult | None = None,
    ) -> RunResult:
        """Blocking wrapper around `run` for scripts and the CLI."""
        return asyncio.run(
            self.run(definition, variables, observer=observer, resume_from=resume_from)
        )
