"""Error taxonomy for flow definition and execution.

Node-level failures (`NodeFailure` subclasses) are caught by the engine and
recorded on the failing node. Only `RunCancelledError` and
`TreeContractError` escape `execute`.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .results import RunResult


class ErrorKind(str, Enum):
    BINDING = "binding"
    EXECUTOR = "executor"
    TIMEOUT = "timeout"
    NO_BRANCH_MATCHED = "no_branch_matched"
    CHILD_FAILED = "child_failed"
    CANCELLED = "cancelled"


class FlowError(Exception):
    """Base class for every error raised by the flow engine."""


class PathError(FlowError):
    pass


class MalformedPathError(PathError):
    def __init__(self, expression: str, reason: str) -> None:
        super().__init__(f"Malformed path {expression!r}: {reason}")
        self.expression = expression
        self.reason = reason


class PathNotFoundError(PathError):
    """A well-formed path whose segment does not resolve against the tree."""

    def __init__(self, expression: str, segment: str, segment_index: int, reason: str) -> None:
        super().__init__(
            f"Path not found {expression!r}: segment {segment_index} ({segment!r}) {reason}"
        )
        self.expression = expression
        self.segment = segment
        self.segment_index = segment_index
        self.reason = reason


class NodeFailure(FlowError):
    """A failure attributed to a single node; recorded, never propagated."""

    kind: ErrorKind = ErrorKind.EXECUTOR

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, object] = dict(details or {})


class BindingError(NodeFailure):
    kind = ErrorKind.BINDING

    def __init__(
        self,
        message: str,
        *,
        input_name: str | None = None,
        variable: str | None = None,
        path: str | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        merged = dict(details or {})
        if input_name is not None:
            merged["input"] = input_name
        if variable is not None:
            merged["variable"] = variable
        if path is not None:
            merged["path"] = path
        super().__init__(message, merged)
        self.input_name = input_name
        self.variable = variable
        self.path = path


class ExecutorError(NodeFailure):
    """Raised by (or on behalf of) an agent executor.

    `payload` is opaque to the engine and attached to the failed node as-is.
    """

    kind = ErrorKind.EXECUTOR

    def __init__(self, message: str, payload: object = None) -> None:
        super().__init__(message, {"payload": payload} if payload is not None else None)
        self.payload = payload


class StepTimeoutError(NodeFailure):
    kind = ErrorKind.TIMEOUT

    def __init__(self, agent: str, timeout_seconds: float) -> None:
        super().__init__(
            f"Agent {agent!r} did not finish within {timeout_seconds:g}s",
            {"timeout_seconds": timeout_seconds},
        )
        self.timeout_seconds = timeout_seconds


class NoBranchMatchedError(NodeFailure):
    kind = ErrorKind.NO_BRANCH_MATCHED

    def __init__(self, value: object) -> None:
        super().__init__(f"No branch matched condition value {value!r}", {"value": value})
        self.value = value


class RunCancelledError(FlowError):
    """The run was cancelled; `result` holds everything recorded so far."""

    def __init__(self, result: RunResult) -> None:
        super().__init__("Flow run was cancelled")
        self.result = result


class TreeContractError(FlowError):
    """The tree violates ownership rules (aliasing, cycles, duplicate ids)."""
