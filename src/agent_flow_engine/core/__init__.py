"""Core package initialization."""

from agent_flow_engine.core.config import ExecutionConfig, FlowEngineConfig, LLMConfig
from agent_flow_engine.core.runner import FlowRunner

__all__ = [
    "ExecutionConfig",
    "FlowEngineConfig",
    "FlowRunner",
    "LLMConfig",
]
