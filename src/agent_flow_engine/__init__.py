"""Agent Flow Engine.

Defines agent workflows as trees of steps, sequences, branches, loops and
parallel groups, annotates them with stable ids and breadcrumb labels, and
executes them against a pluggable agent executor.
"""

__version__ = "0.1.0"

from agent_flow_engine.flows import FlowDefinition, FlowEngine, RunResult, execute
from agent_flow_engine.core.config import FlowEngineConfig
from agent_flow_engine.core.runner import FlowRunner

__all__ = [
    "__version__",
    "FlowDefinition",
    "FlowEngine",
    "FlowEngineConfig",
    "FlowRunner",
    "RunResult",
    "execute",
]
