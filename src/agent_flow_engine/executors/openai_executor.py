"""OpenAI-backed agent executor."""

import json
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from openai import AsyncOpenAI, OpenAIError

from agent_flow_engine.core.config import LLMConfig
from agent_flow_engine.executors.base import AgentExecutor
from agent_flow_engine.flows.errors import ExecutorError
from agent_flow_engine.flows.models import AgentDefinition

logger = logging.getLogger(__name__)


class OpenAIAgentExecutor(AgentExecutor):
    """Runs each agent as one chat completion.

    Agents are looked up by name among the flow's `AgentDefinition`s, which
    supply the model and the system prompt.
    """

    def __init__(
        self,
        config: LLMConfig,
        agents: Iterable[AgentDefinition] = (),
        client: AsyncOpenAI | None = None,
    ) -> None:
        """Initialize the OpenAI executor.

        Args:
            config: LLM configuration.
            agents: Definitions of the agents this executor can run.
            client: Pre-built client (mainly for tests).

        Raises:
            ValueError: If no client is given and the API key is missing.
        """
        if client is None and not config.openai_api_key:
            raise ValueError("OpenAI API key is required")

        self.config = config
        self.agents: dict[str, AgentDefinition] = {a.name: a for a in agents}
        self.client = client or AsyncOpenAI(
            api_key=config.openai_api_key,
            base_url=config.openai_base_url,
        )

        logger.info(f"OpenAI executor initialized with {len(self.agents)} agents")

    @staticmethod
    def render_inputs(inputs: Mapping[str, Any]) -> str:
        """Turn bound inputs into the user message content."""
        if len(inputs) == 1:
            value = next(iter(inputs.values()))
            if isinstance(value, str):
                return value
        return json.dumps(dict(inputs), ensure_ascii=False, default=str)

    def build_messages(
        self, agent: AgentDefinition, inputs: Mapping[str, Any]
    ) -> list[dict[str, str]]:
        messages: list[dict[str, str]] = []
        if agent.system:
            messages.append({"role": "system", "content": agent.system})
        messages.append({"role": "user", "content": self.render_inputs(inputs)})
        return messages

    async def invoke(self, step_label: str, inputs: Mapping[str, Any]) -> Any:
        """Generate the agent's answer for the given inputs.

        Raises:
            ExecutorError: Unknown agent, or the API call failed.
        """
        agent = self.agents.get(step_label)
        if agent is None:
            raise ExecutorError(f"Unknown agent: {step_label}")

        logger.debug(f"Invoking agent {step_label} with model {agent.model}")

        try:
            response = await self.client.chat.completions.create(
                model=agent.model or self.config.openai_model,
                messages=self.build_messages(agent, inputs),  # type: ignore[arg-type]
                temperature=self.config.openai_temperature,
            )
        except OpenAIError as e:
            raise ExecutorError(f"OpenAI request failed: {e}", payload=type(e).__name__) from e

        content = response.choices[0].message.content or ""
        logger.debug(f"Generated {len(content)} characters")

        return content

    async def aclose(self) -> None:
        await self.client.close()
