"""Factory for creating agent executors."""

import logging
from collections.abc import Iterable

from agent_flow_engine.core.config import LLMConfig
from agent_flow_engine.executors.base import AgentExecutor
from agent_flow_engine.executors.echo import EchoAgentExecutor
from agent_flow_engine.executors.openai_executor import OpenAIAgentExecutor
from agent_flow_engine.flows.models import AgentDefinition

logger = logging.getLogger(__name__)


class ExecutorFactory:
    """Factory for creating agent executor instances."""

    @staticmethod
    def create(config: LLMConfig, agents: Iterable[AgentDefinition] = ()) -> AgentExecutor:
        """Create an agent executor based on configuration.

        Args:
            config: LLM configuration specifying the provider.
            agents: Agent definitions made available to the executor.

        Returns:
            Configured agent executor instance.

        Raises:
            ValueError: If provider type is not supported.
        """
        logger.info(f"Creating agent executor: {config.provider}")

        if config.provider == "echo":
            return EchoAgentExecutor()
        elif config.provider == "openai":
            return OpenAIAgentExecutor(config, agents)
        else:
            raise ValueError(f"Unsupported executor provider: {config.provider}")
