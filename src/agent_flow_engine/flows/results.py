"""Execution results.

While a run is in progress the engine works on mutable `NodeRecord`s laid out
exactly like the final result tree. When the run terminates every record is
frozen into an immutable `NodeResult`.
"""

from __future__ import annotations

import copy
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .errors import ErrorKind, NodeFailure
from .events import NodeEvent
from .models import WorkflowNode
from .paths import resolve_result_path
from .status import NodeStatus, RunStatus, check_transition


class NodeError(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: ErrorKind
    message: str
    details: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_failure(cls, failure: NodeFailure) -> NodeError:
        return cls(kind=failure.kind, message=failure.message, details=failure.details)


class NodeResult(BaseModel):
    """Terminal outcome of one node, addressed by its path."""

    model_config = ConfigDict(frozen=True)

    path: str
    node_id: str | None
    kind: str
    label: str | None
    status: NodeStatus
    output: Any = None
    error: NodeError | None = None
    inputs: dict[str, Any] = Field(default_factory=dict)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    children: list[NodeResult] = Field(default_factory=list)
    default: NodeResult | None = None
    items: list[NodeResult] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status is NodeStatus.SUCCEEDED

    def walk(self) -> Iterator[NodeResult]:
        """Yield this result and all descendants, depth-first in path order."""

        yield self
        for child in self.children:
            yield from child.walk()
        if self.default is not None:
            yield from self.default.walk()
        for item in self.items:
            yield from item.walk()


class RunResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: RunStatus
    tree: NodeResult
    trace: list[NodeEvent] = Field(default_factory=list)

    @property
    def output(self) -> Any:
        return self.tree.output

    @property
    def results(self) -> dict[str, NodeResult]:
        return {result.path: result for result in self.tree.walk()}

    def get(self, path: str) -> Any:
        """Retrieve a node result (or a step's bound input) by path."""

        return resolve_result_path(self.tree, path)

    def failures(self) -> list[NodeResult]:
        return [r for r in self.tree.walk() if r.status is NodeStatus.FAILED]


@dataclass(eq=False)
class NodeRecord:
    """Mutable, in-flight counterpart of `NodeResult`."""

    path: str
    node: WorkflowNode
    status: NodeStatus = NodeStatus.PENDING
    output: Any = None
    error: NodeError | None = None
    inputs: dict[str, Any] = field(default_factory=dict)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    children: list[NodeRecord] = field(default_factory=list)
    default: NodeRecord | None = None
    items: list[NodeRecord] = field(default_factory=list)

    @property
    def kind(self) -> str:
        return self.node.kind

    @property
    def node_id(self) -> str | None:
        return self.node.id

    @property
    def label(self) -> str | None:
        return self.node.label

    def move(self, to: NodeStatus) -> NodeStatus:
        """Apply a legal transition and return the previous status."""

        previous = self.status
        self.status = check_transition(previous, to)
        now = datetime.now(UTC)
        if to is NodeStatus.RUNNING:
            self.started_at = now
        elif to.is_terminal:
            self.finished_at = now
        return previous

    def walk(self) -> Iterator[NodeRecord]:
        yield self
        for child in self.children:
            yield from child.walk()
        if self.default is not None:
            yield from self.default.walk()
        for item in self.items:
            yield from item.walk()

    def freeze(self) -> NodeResult:
        return NodeResult(
            path=self.path,
            node_id=self.node_id,
            kind=self.kind,
            label=self.label,
            status=self.status,
            output=copy.deepcopy(self.output),
            error=self.error,
            inputs=copy.deepcopy(self.inputs),
            started_at=self.started_at,
            finished_at=self.finished_at,
            children=[child.freeze() for child in self.children],
            default=self.default.freeze() if self.default is not None else None,
            items=[item.freeze() for item in self.items],
        )
