"""Typed events delivered to callers."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Optional, Union

from .messages import DataOutput
from .state import StoppedReason


@dataclass(frozen=True)
class StatusEvent:
    """Server queue depth changed. Not tied to any submission."""

    type: ClassVar[str] = "status"
    queue_remaining: int


@dataclass(frozen=True)
class StartedEvent:
    type: ClassVar[str] = "started"
    prompt_id: str


@dataclass(frozen=True)
class ExecutingEvent:
    type: ClassVar[str] = "executing"
    prompt_id: str
    node_id: Union[int, str]
    title: Optional[str] = None


@dataclass(frozen=True)
class ProgressEvent:
    type: ClassVar[str] = "progress"
    prompt_id: str
    value: Union[int, float]
    max: Union[int, float]

    @property
    def fraction(self) -> float:
        return self.value / self.max if self.max > 0 else 0.0


@dataclass(frozen=True)
class DataEvent:
    """Outputs of a finished node, keyed by output slot name."""

    type: ClassVar[str] = "data"
    prompt_id: str
    node_id: Union[int, str]
    data: dict[str, list[Any]] = field(default_factory=dict)

    @property
    def files(self) -> list[DataOutput]:
        """All file outputs, across every slot."""
        return [item for items in self.data.values() for item in items if isinstance(item, DataOutput)]


@dataclass(frozen=True)
class StoppedException:
    node_id: int
    node_type: str
    node_name: Optional[str]
    exception_message: str
    exception_type: str
    traceback: list[str] = field(default_factory=list)

    def __str__(self):
        name = self.node_name or self.node_type
        return f"{self.exception_type} in node {self.node_id} ({name}): {self.exception_message}"


@dataclass(frozen=True)
class StoppedEvent:
    """Terminal event. No further events follow for this prompt id."""

    type: ClassVar[str] = "stopped"
    prompt_id: str
    reason: StoppedReason = StoppedReason.finished
    exception: Optional[StoppedException] = None


PromptEvent = Union[StartedEvent, ExecutingEvent, ProgressEvent, DataEvent, StoppedEvent]
ClientEvent = Union[StatusEvent, PromptEvent]
