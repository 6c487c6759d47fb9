"""Echo executor for dry runs."""

import logging
from collections.abc import Mapping
from typing import Any

from agent_flow_engine.executors.base import AgentExecutor

logger = logging.getLogger(__name__)


class EchoAgentExecutor(AgentExecutor):
    """Returns a step's inputs instead of calling a model.

    A step with exactly one input yields that input's value; otherwise the
    whole input mapping is returned. Useful for checking how a flow wires
    values together before spending tokens on it.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def invoke(self, step_label: str, inputs: Mapping[str, Any]) -> Any:
        logger.debug(f"Echoing {len(inputs)} inputs for agent: {step_label}")
        self.calls.append((step_label, dict(inputs)))
        if len(inputs) == 1:
            return next(iter(inputs.values()))
        return dict(inputs)
