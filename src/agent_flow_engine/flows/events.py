from __future__ import annotations

from datetime import UTC, datetime
from typing import Callable

from pydantic import BaseModel, ConfigDict, Field

from .errors import ErrorKind
from .status import NodeStatus


class NodeEvent(BaseModel):
    """A single observable node transition.

    Events are published to the run observer as they happen and kept, in
    order, in the run trace.
    """

    model_config = ConfigDict(frozen=True)

    path: str
    node_id: str | None
    kind: str
    label: str | None
    previous: NodeStatus
    status: NodeStatus
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    error_kind: ErrorKind | None = None
    message: str = ""


RunObserver = Callable[[NodeEvent], None]
