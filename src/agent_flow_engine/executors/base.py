"""Abstract base class for agent executors."""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any


class AgentExecutor(ABC):
    """The capability that performs an agent step's actual work.

    The engine treats implementations as opaque, possibly slow, possibly
    failing calls. Raising any exception fails the step; raising
    `ExecutorError` lets the implementation attach a structured payload.
    """

    @abstractmethod
    async def invoke(self, step_label: str, inputs: Mapping[str, Any]) -> Any:
        """Run the agent named `step_label` with its bound inputs.

        Args:
            step_label: Name of the agent to invoke.
            inputs: Bound inputs, in declaration order.

        Returns:
            The step's output payload.
        """
        pass

    async def aclose(self) -> None:
        """Release any resources held by the executor."""
