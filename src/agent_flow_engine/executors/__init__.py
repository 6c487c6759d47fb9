"""Agent executor package initialization."""

from agent_flow_engine.executors.base import AgentExecutor
from agent_flow_engine.executors.echo import EchoAgentExecutor

__all__ = [
    "AgentExecutor",
    "EchoAgentExecutor",
]
