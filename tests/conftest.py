"""Test configuration and fixtures."""

from __future__ import annotations

import inspect
import logging
import os
from collections.abc import Callable, Iterator, Mapping
from pathlib import Path
from typing import Any

import pytest

from agent_flow_engine.core.config import ExecutionConfig, FlowEngineConfig, LLMConfig
from agent_flow_engine.executors.base import AgentExecutor

Handler = Callable[[dict[str, Any]], Any]


class ScriptedExecutor(AgentExecutor):
    """Agent executor driven by per-agent handlers.

    A handler receives the bound inputs and returns (or awaits to) the
    output; raising fails the step. Agents without a handler echo their
    inputs back.
    """

    def __init__(self, handlers: Mapping[str, Handler] | None = None) -> None:
        self.handlers = dict(handlers or {})
        self.calls: list[tuple[str, dict[str, Any]]] = []

    @property
    def agents_called(self) -> list[str]:
        return [agent for agent, _ in self.calls]

    async def invoke(self, step_label: str, inputs: Mapping[str, Any]) -> Any:
        self.calls.append((step_label, dict(inputs)))
        handler = self.handlers.get(step_label)
        if handler is None:
            return dict(inputs)
        result = handler(dict(inputs))
        if inspect.isawaitable(result):
            result = await result
        return result


@pytest.fixture(autouse=True)
def restore_root_logging() -> Iterator[None]:
    """Undo `configure_logging` side effects between tests."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
    root.setLevel(level)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Run without FLOW_ENGINE_* variables or a stray `.env`."""
    for name in list(os.environ):
        if name.startswith("FLOW_ENGINE_"):
            monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def scripted() -> Callable[..., ScriptedExecutor]:
    """Factory for scripted executors: `scripted(agent=handler, ...)`."""
    return lambda handlers=None, **kwargs: ScriptedExecutor({**(handlers or {}), **kwargs})


@pytest.fixture
def llm_config() -> LLMConfig:
    """Provide a test LLM configuration."""
    return LLMConfig(
        provider="openai",
        openai_api_key="test-key",
        openai_model="gpt-4o-mini",
    )


@pytest.fixture
def execution_config() -> ExecutionConfig:
    """Provide a test execution configuration."""
    return ExecutionConfig(loop_concurrency=2, default_step_timeout=5.0)


@pytest.fixture
def engine_config(execution_config: ExecutionConfig) -> FlowEngineConfig:
    """Provide a test flow engine configuration using the echo executor."""
    return FlowEngineConfig(
        log_level="DEBUG",
        log_format="text",
        execution=execution_config,
        llm=LLMConfig(provider="echo"),
    )
