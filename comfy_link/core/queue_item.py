"""Outstanding submissions and their event channels."""
from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

from ..graph import Graph
from .events import PromptEvent, StoppedEvent


@dataclass
class QueueItem:
    """A submitted graph awaiting its terminal event."""

    prompt_id: str
    number: int = 0
    sequence: int = 0
    node_errors: dict = field(default_factory=dict)
    workflow: Optional[Graph] = None
    messages: asyncio.Queue = field(default_factory=asyncio.Queue, repr=False)

    async def next_event(self) -> PromptEvent:
        return await self.messages.get()

    async def events(self) -> AsyncIterator[PromptEvent]:
        """Yield events until (and including) the terminal StoppedEvent."""
        while True:
            event = await self.messages.get()
            yield event
            if isinstance(event, StoppedEvent):
                return

    async def wait(self, timeout: float | None = None) -> StoppedEvent:
        """Drain events and return the terminal one."""

        async def drain() -> StoppedEvent:
            while True:
                event = await self.messages.get()
                if isinstance(event, StoppedEvent):
                    return event

        return await asyncio.wait_for(drain(), timeout)

    def node_title(self, node_id) -> Optional[str]:
        if self.workflow is None or not isinstance(node_id, int):
            return None
        node = self.workflow.get_node(node_id)
        return node.title if node else None


class SubmissionRegistry:
    """Thread-safe map of prompt id to QueueItem.

    Items are inserted by the submitting caller and removed by the frame
    router once their terminal event is delivered.
    """

    def __init__(self):
        self._items: dict[str, QueueItem] = {}
        self._lock = threading.Lock()

    def register(self, item: QueueItem) -> asyncio.Queue:
        with self._lock:
            self._items[item.prompt_id] = item
        return item.messages

    def lookup(self, prompt_id: Optional[str]) -> Optional[QueueItem]:
        if prompt_id is None:
            return None
        with self._lock:
            return self._items.get(prompt_id)

    def remove(self, prompt_id: Optional[str]) -> Optional[QueueItem]:
        """Remove and return the item; None if it was not (or no longer) registered."""
        if prompt_id is None:
            return None
        with self._lock:
            return self._items.pop(prompt_id, None)

    def rekey(self, old_id: str, new_id: str) -> Optional[QueueItem]:
        with self._lock:
            item = self._items.pop(old_id, None)
            if item is not None:
                item.prompt_id = new_id
                self._items[new_id] = item
            return item

    def __contains__(self, prompt_id: object) -> bool:
        with self._lock:
            return prompt_id in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
