"""Translate websocket frames into events and route them to submissions.

Frames are handled one at a time, synchronously, in arrival order. A
terminal event is only delivered by whoever removes the submission from the
registry, so it is delivered at most once per prompt id; later frames for the
same id miss the registry and are dropped. Without submission tracking the
router remembers recently finished prompt ids instead.

``progress`` frames are attributed to the prompt that most recently started
executing, since they carry no prompt id of their own. With several
submissions interleaving on the server this attribution can be wrong.
"""
from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ..errors import FrameDecodeError
from .events import (
    ClientEvent,
    DataEvent,
    ExecutingEvent,
    ProgressEvent,
    StartedEvent,
    StatusEvent,
    StoppedEvent,
    StoppedException,
)
from .messages import (
    ExecutedData,
    ExecutingData,
    ExecutionCachedData,
    ExecutionErrorData,
    ExecutionInterruptedData,
    ExecutionStartData,
    MessageType,
    ProgressData,
    StatusData,
    decode_frame,
)
from .queue_item import QueueItem, SubmissionRegistry
from .state import StoppedReason

# Prompt ids remembered as finished when submissions are not tracked
FINISHED_HISTORY_SIZE = 1024


@dataclass
class ClientCallbacks:
    """Optional hooks invoked from the websocket task."""

    websocket_connected: Optional[Callable[[], Any]] = None
    websocket_disconnected: Optional[Callable[[], Any]] = None
    queue_count_changed: Optional[Callable[[int], Any]] = None
    item_started: Optional[Callable[[QueueItem], Any]] = None
    item_stopped: Optional[Callable[[QueueItem, StoppedReason], Any]] = None
    item_data_available: Optional[Callable[[QueueItem, DataEvent], Any]] = None


class MessageRouter:
    def __init__(
        self,
        registry: SubmissionRegistry,
        logger: logging.Logger,
        callbacks: Optional[ClientCallbacks] = None,
        client_events: Optional[asyncio.Queue] = None,
        track_submissions: bool = True,
    ):
        self.registry = registry
        self.callbacks = callbacks or ClientCallbacks()
        self.client_events = client_events if client_events is not None else asyncio.Queue()
        self.track_submissions = track_submissions
        self.last_prompt_id: Optional[str] = None
        self.queue_remaining: int = 0
        self._finished: OrderedDict[str, None] = OrderedDict()
        self._log = logger
        self._handlers = {
            MessageType.status: self._on_status,
            MessageType.execution_start: self._on_execution_start,
            MessageType.execution_cached: self._on_execution_cached,
            MessageType.executing: self._on_executing,
            MessageType.progress: self._on_progress,
            MessageType.executed: self._on_executed,
            MessageType.execution_interrupted: self._on_interrupted,
            MessageType.execution_error: self._on_error,
        }

    def handle_frame(self, text: str | bytes) -> None:
        """Decode one frame and dispatch it. Never raises for bad frames."""
        try:
            frame = decode_frame(text)
        except FrameDecodeError as e:
            self._log.error("Deserializing websocket frame: %s", e)
            return

        handler = self._handlers.get(frame.type)
        if handler is None or frame.payload is None:
            self._log.warning("Unhandled message type: %s", frame.type)
            return
        handler(frame.payload)

    # Handlers

    def _on_status(self, data: StatusData):
        self.queue_remaining = data.status.exec_info.queue_remaining
        self.invoke(self.callbacks.queue_count_changed, self.queue_remaining)
        self._publish(StatusEvent(self.queue_remaining))

    def _on_execution_start(self, data: ExecutionStartData):
        self.last_prompt_id = data.prompt_id
        item = self._target(data.prompt_id)
        if item is not None:
            self.invoke(self.callbacks.item_started, item)
        self._deliver(item, StartedEvent(data.prompt_id))

    def _on_execution_cached(self, data: ExecutionCachedData):
        pass

    def _on_executing(self, data: ExecutingData):
        if data.prompt_id is None:
            self._log.debug("Executing frame without prompt id dropped")
            return
        if data.node is None:
            self._terminate(data.prompt_id, StoppedReason.finished)
            return
        item = self._target(data.prompt_id)
        title = item.node_title(data.node) if item is not None else None
        self._deliver(item, ExecutingEvent(data.prompt_id, data.node, title))

    def _on_progress(self, data: ProgressData):
        prompt_id = self.last_prompt_id
        if prompt_id is None:
            self._log.debug("Progress frame before any execution start dropped")
            return
        item = self._target(prompt_id)
        self._deliver(item, ProgressEvent(prompt_id, data.value, data.max))

    def _on_executed(self, data: ExecutedData):
        item = self._target(data.prompt_id)
        event = DataEvent(data.prompt_id, data.node, dict(data.output))
        if item is not None:
            self.invoke(self.callbacks.item_data_available, item, event)
        self._deliver(item, event)

    def _on_interrupted(self, data: ExecutionInterruptedData):
        self._terminate(data.prompt_id, StoppedReason.interrupted)

    def _on_error(self, data: ExecutionErrorData):
        try:
            node_id = int(data.node_id)
        except ValueError:
            node_id = 0
        item = self.registry.lookup(data.prompt_id) if self.track_submissions else None
        exception = StoppedException(
            node_id=node_id,
            node_type=data.node_type,
            node_name=item.node_title(node_id) if item is not None else None,
            exception_message=data.exception_message,
            exception_type=data.exception_type,
            traceback=list(data.traceback),
        )
        self._log.error("Prompt %s failed: %s", data.prompt_id, exception)
        self._terminate(data.prompt_id, StoppedReason.error, exception)

    # Delivery

    def _target(self, prompt_id: str) -> Optional[QueueItem]:
        if not self.track_submissions:
            return None
        return self.registry.lookup(prompt_id)

    def _deliver(self, item: Optional[QueueItem], event: ClientEvent):
        if not self.track_submissions:
            if event.prompt_id in self._finished:
                self._log.debug("Dropping %s event of finished prompt %s", event.type, event.prompt_id)
                return
            self._publish(event)
        elif item is None:
            self._log.debug("No submission for %s event of prompt %s", event.type, event.prompt_id)
        else:
            item.messages.put_nowait(event)

    def _terminate(
        self,
        prompt_id: str,
        reason: StoppedReason,
        exception: Optional[StoppedException] = None,
    ):
        event = StoppedEvent(prompt_id, reason, exception)
        if not self.track_submissions:
            if prompt_id in self._finished:
                self._log.debug("Terminal frame for finished prompt %s dropped", prompt_id)
                return
            self._finished[prompt_id] = None
            if len(self._finished) > FINISHED_HISTORY_SIZE:
                self._finished.popitem(last=False)
            self._publish(event)
            return
        # Removal comes first: only one frame can win the pop
        item = self.registry.remove(prompt_id)
        if item is None:
            self._log.debug("Terminal frame for unknown prompt %s dropped", prompt_id)
            return
        self._log.info("Prompt %s stopped: %s", prompt_id, reason.value)
        self.invoke(self.callbacks.item_stopped, item, reason)
        item.messages.put_nowait(event)

    def _publish(self, event: ClientEvent):
        try:
            self.client_events.put_nowait(event)
        except asyncio.QueueFull:
            self._log.warning("Client event queue full, dropping %s event", event.type)

    def invoke(self, callback: Optional[Callable], *args):
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            self._log.exception("Client callback %s failed", getattr(callback, "__name__", callback))
