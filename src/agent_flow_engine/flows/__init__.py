"""Flow definition and execution.

This package holds the workflow tree model and the passes over it:
- identity assignment and breadcrumb naming (annotation)
- path resolution against definitions and results
- input binding from results, variables and templates
- the execution engine with its per-node state machine
"""

from .binding import BoundVariables, bind_inputs, bind_variables
from .engine import CancellationToken, FlowEngine, execute
from .errors import (
    BindingError,
    ErrorKind,
    ExecutorError,
    FlowError,
    MalformedPathError,
    NoBranchMatchedError,
    NodeFailure,
    PathError,
    PathNotFoundError,
    RunCancelledError,
    StepTimeoutError,
    TreeContractError,
)
from .events import NodeEvent
from .identity import adopt_identities, assign_identities
from .models import (
    AgentDefinition,
    AgentStep,
    BranchCase,
    BranchStep,
    FlowDefinition,
    FlowInputVariable,
    LoopStep,
    ParallelStep,
    RaceStep,
    SequenceStep,
    VariableType,
    WorkflowNode,
    literal,
    path_ref,
    template,
    var,
)
from .naming import derive_names
from .paths import resolve_path, resolve_result_path
from .results import NodeError, NodeResult, RunResult
from .status import NodeStatus, RunStatus

__all__ = [
    "AgentDefinition",
    "AgentStep",
    "BindingError",
    "BoundVariables",
    "BranchCase",
    "BranchStep",
    "CancellationToken",
    "ErrorKind",
    "ExecutorError",
    "FlowDefinition",
    "FlowEngine",
    "FlowError",
    "FlowInputVariable",
    "LoopStep",
    "MalformedPathError",
    "NoBranchMatchedError",
    "NodeError",
    "NodeEvent",
    "NodeFailure",
    "NodeResult",
    "NodeStatus",
    "ParallelStep",
    "PathError",
    "PathNotFoundError",
    "RaceStep",
    "RunCancelledError",
    "RunResult",
    "RunStatus",
    "SequenceStep",
    "StepTimeoutError",
    "TreeContractError",
    "VariableType",
    "WorkflowNode",
    "adopt_identities",
    "assign_identities",
    "bind_inputs",
    "bind_variables",
    "derive_names",
    "execute",
    "literal",
    "path_ref",
    "resolve_path",
    "resolve_result_path",
    "template",
    "var",
]
