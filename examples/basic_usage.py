#!/usr/bin/env python3
"""Programmatic flow example.

Builds a small "fetch, then summarize each page" flow in code and runs it:

* load settings from `.env` (the echo executor is used unless configured)
* bind the run variables
* print every node's status and output by path

The topic is passed as an argument.
"""

from __future__ import annotations

import argparse
from typing import Sequence

from agent_flow_engine.core.config import FlowEngineConfig
from agent_flow_engine.core.runner import FlowRunner
from agent_flow_engine.flows import (
    AgentDefinition,
    AgentStep,
    FlowDefinition,
    FlowInputVariable,
    LoopStep,
    SequenceStep,
    VariableType,
    path_ref,
    template,
    var,
)


def build_flow() -> FlowDefinition:
    return FlowDefinition(
        code="fetch-and-summarize",
        name="Fetch and summarize",
        inputs=[
            FlowInputVariable(name="topic", type=VariableType.STRING, required=True),
            FlowInputVariable(name="pages", type=VariableType.JSON, default=["intro", "usage"]),
        ],
        agents=[
            AgentDefinition(name="fetch", system="Return the text of the requested page."),
            AgentDefinition(name="summarize", system="Summarize the text in one sentence."),
        ],
        flow=SequenceStep(
            name="research",
            children=[
                AgentStep(agent="fetch", inputs={"pages": var("pages")}),
                LoopStep(
                    source=path_ref("$.input[0]"),
                    body=AgentStep(
                        agent="summarize",
                        inputs={"text": template("@topic: @item")},
                    ),
                ),
            ],
        ),
    )


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a small flow (programmatic example).")
    parser.add_argument("--topic", required=True, help="Topic passed to the flow")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    runner = FlowRunner(FlowEngineConfig())
    result = runner.run_sync(build_flow(), {"topic": args.topic})

    for path, node in result.results.items():
        print(f"{path:<24} {node.status.value:<10} {node.label}: {node.output!r}")
    print(f"Run {result.status.value}")
    return 0 if result.status.value == "succeeded" else 3


if __name__ == "__main__":
    raise SystemExit(main())
