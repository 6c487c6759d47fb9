"""Unit tests for the flow runner."""

from __future__ import annotations

from unittest.mock import patch

from agent_flow_engine.core.config import FlowEngineConfig, LLMConfig
from agent_flow_engine.core.runner import FlowRunner
from agent_flow_engine.executors.echo import EchoAgentExecutor
from agent_flow_engine.flows import (
    AgentStep,
    FlowDefinition,
    FlowInputVariable,
    LoopStep,
    NodeStatus,
    RunStatus,
    SequenceStep,
    VariableType,
    path_ref,
    template,
    var,
)


def _definition() -> FlowDefinition:
    return FlowDefinition(
        code="fetch-and-summarize",
        inputs=[
            FlowInputVariable(name="topic", required=True),
            FlowInputVariable(name="pages", type=VariableType.JSON, default=["intro", "usage"]),
        ],
        flow=SequenceStep(
            children=[
                AgentStep(agent="fetch", inputs={"pages": var("pages")}),
                LoopStep(
                    source=path_ref("$.input[0]"),
                    body=AgentStep(agent="summarize", inputs={"text": template("@topic/@item")}),
                ),
            ]
        ),
    )


def test_prepare_assigns_ids_and_labels(engine_config: FlowEngineConfig) -> None:
    runner = FlowRunner(engine_config)

    prepared = runner.prepare(_definition())

    fetch = prepared.flow.children[0]
    assert fetch.id and fetch.label == "fetch"
    assert prepared.flow.children[1].body.label == "summarize"
    assert runner.prepare(prepared) is prepared


def test_run_sync_uses_configured_executor(engine_config: FlowEngineConfig) -> None:
    runner = FlowRunner(engine_config)

    result = runner.run_sync(_definition(), {"topic": "rust"})

    assert result.status is RunStatus.SUCCEEDED
    assert result.output == [["intro", "usage"], ["rust/intro", "rust/usage"]]


def test_run_with_missing_variable_fails_the_referencing_step(
    engine_config: FlowEngineConfig,
) -> None:
    executor = EchoAgentExecutor()
    runner = FlowRunner(engine_config, executor=executor)

    result = runner.run_sync(_definition(), {})

    assert result.status is RunStatus.FAILED
    assert result.get("$.input[0]").status is NodeStatus.SUCCEEDED
    assert result.get("$.input[1].item[0]").error.details["variable"] == "topic"
    assert [agent for agent, _ in executor.calls] == ["fetch"]


def test_injected_executor_is_not_closed(engine_config: FlowEngineConfig) -> None:
    executor = EchoAgentExecutor()
    runner = FlowRunner(engine_config, executor=executor)

    with patch.object(EchoAgentExecutor, "aclose") as aclose:
        runner.run_sync(_definition(), {"topic": "go"})

    aclose.assert_not_called()


def test_runner_applies_execution_settings(engine_config: FlowEngineConfig) -> None:
    runner = FlowRunner(engine_config)

    engine = runner.engine(EchoAgentExecutor())

    assert engine.loop_concurrency == 2
    assert engine.default_step_timeout == 5.0


def test_runner_creates_executor_from_config(engine_config: FlowEngineConfig) -> None:
    config = engine_config.model_copy(update={"llm": LLMConfig(provider="echo")})

    with patch(
        "agent_flow_engine.core.runner.ExecutorFactory.create",
        return_value=EchoAgentExecutor(),
    ) as create:
        FlowRunner(config).run_sync(_definition(), {"topic": "rust"})

    create.assert_called_once()
    assert create.call_args.args[0] is config.llm
