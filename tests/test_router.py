"""Tests for routing websocket frames to submissions."""
import asyncio
import json
import logging

import pytest

from comfy_link.core.events import (
    DataEvent,
    ExecutingEvent,
    ProgressEvent,
    StartedEvent,
    StatusEvent,
    StoppedEvent,
)
from comfy_link.core.queue_item import QueueItem, SubmissionRegistry
from comfy_link.core.router import ClientCallbacks, MessageRouter
from comfy_link.core.state import StoppedReason
from comfy_link.graph import build

logger = logging.getLogger("tests.router")


def frame(type: str, **data) -> str:
    return json.dumps({"type": type, "data": data})


def drain(queue: asyncio.Queue) -> list:
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


class Recorder:
    def __init__(self):
        self.calls = []

    def callbacks(self) -> ClientCallbacks:
        return ClientCallbacks(
            websocket_connected=lambda: self.calls.append(("connected",)),
            websocket_disconnected=lambda: self.calls.append(("disconnected",)),
            queue_count_changed=lambda n: self.calls.append(("queue", n)),
            item_started=lambda item: self.calls.append(("started", item.prompt_id)),
            item_stopped=lambda item, reason: self.calls.append(("stopped", item.prompt_id, reason)),
            item_data_available=lambda item, e: self.calls.append(("data", item.prompt_id, e.node_id)),
        )


@pytest.fixture
def registry():
    return SubmissionRegistry()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def router(registry, recorder):
    return MessageRouter(registry, logger, callbacks=recorder.callbacks())


@pytest.fixture
def item(registry, catalog, txt2img):
    graph, _ = build(txt2img, catalog)
    queue_item = QueueItem(prompt_id="p1", workflow=graph)
    registry.register(queue_item)
    return queue_item


def test_successful_prompt(router, registry, item, recorder):
    """A prompt yields started, node, progress and data events, then finishes."""
    router.handle_frame(frame("execution_start", prompt_id="p1"))
    router.handle_frame(frame("execution_cached", prompt_id="p1", nodes=["4"]))
    router.handle_frame(frame("executing", node="3", prompt_id="p1"))
    router.handle_frame(frame("progress", value=5, max=20))
    router.handle_frame(frame("executed", node="9", prompt_id="p1", output={
        "images": [{"filename": "ComfyUI_00001_.png", "subfolder": "", "type": "output"}],
    }))
    router.handle_frame(frame("executing", node=None, prompt_id="p1"))

    events = drain(item.messages)
    assert [type(e) for e in events] == [
        StartedEvent, ExecutingEvent, ProgressEvent, DataEvent, StoppedEvent,
    ]
    assert events[1] == ExecutingEvent("p1", 3, "KSampler")
    assert events[2] == ProgressEvent("p1", 5, 20)
    assert events[3].files[0].filename == "ComfyUI_00001_.png"
    assert events[4] == StoppedEvent("p1", StoppedReason.finished)
    assert "p1" not in registry
    assert recorder.calls == [
        ("started", "p1"),
        ("data", "p1", 9),
        ("stopped", "p1", StoppedReason.finished),
    ]


def test_terminal_event_delivered_once(router, item, recorder):
    """Replayed terminal frames for a finished prompt are dropped."""
    router.handle_frame(frame("executing", node=None, prompt_id="p1"))
    router.handle_frame(frame("executing", node=None, prompt_id="p1"))
    router.handle_frame(frame("execution_interrupted", prompt_id="p1"))

    events = drain(item.messages)
    assert events == [StoppedEvent("p1", StoppedReason.finished)]
    assert [c for c in recorder.calls if c[0] == "stopped"] == [
        ("stopped", "p1", StoppedReason.finished),
    ]


def test_execution_error(router, registry, item):
    """An error frame stops the prompt with the failing node's details."""
    router.handle_frame(frame("execution_start", prompt_id="p1"))
    router.handle_frame(frame(
        "execution_error",
        prompt_id="p1",
        node_id="2",
        node_type="LoadImage",
        exception_message="bad path",
        exception_type="FileNotFoundError",
        traceback=["Traceback (most recent call last):\n"],
    ))

    events = drain(item.messages)
    assert isinstance(events[0], StartedEvent)
    stopped = events[-1]
    assert stopped.reason is StoppedReason.error
    assert stopped.exception.node_id == 2
    assert stopped.exception.exception_message == "bad path"
    assert stopped.exception.node_name is None
    assert "bad path" in str(stopped.exception)
    assert len(registry) == 0


def test_execution_error_names_node(router, item):
    """The failing node is named after its title in the submitted graph."""
    router.handle_frame(frame(
        "execution_error", prompt_id="p1", node_id="6", node_type="CLIPTextEncode",
        exception_message="boom", exception_type="RuntimeError", traceback=[],
    ))
    stopped = drain(item.messages)[-1]
    assert stopped.exception.node_name == "Positive"


def test_execution_error_non_numeric_node(router, item):
    """A node id that is not a number is reported as 0."""
    router.handle_frame(frame(
        "execution_error", prompt_id="p1", node_id="3:1",
        exception_message="boom", exception_type="RuntimeError",
    ))
    assert drain(item.messages)[-1].exception.node_id == 0


def test_interrupted(router, registry, item):
    """Interruption is terminal."""
    router.handle_frame(frame("execution_interrupted", prompt_id="p1", node_id="3"))
    assert drain(item.messages) == [StoppedEvent("p1", StoppedReason.interrupted)]
    assert "p1" not in registry


def test_progress_follows_last_started_prompt(router, registry):
    """Progress goes to whichever prompt started most recently."""
    first = QueueItem(prompt_id="p1")
    second = QueueItem(prompt_id="p2")
    registry.register(first)
    registry.register(second)

    router.handle_frame(frame("progress", value=1, max=2))
    router.handle_frame(frame("execution_start", prompt_id="p1"))
    router.handle_frame(frame("progress", value=1, max=2))
    router.handle_frame(frame("execution_start", prompt_id="p2"))
    router.handle_frame(frame("progress", value=2, max=2, prompt_id="p1"))

    assert drain(first.messages) == [StartedEvent("p1"), ProgressEvent("p1", 1, 2)]
    assert drain(second.messages) == [StartedEvent("p2"), ProgressEvent("p2", 2, 2)]


def test_unknown_prompt_is_ignored(router, registry, recorder):
    """Frames for prompts that were never submitted here are dropped."""
    router.handle_frame(frame("execution_start", prompt_id="other"))
    router.handle_frame(frame("executing", node=None, prompt_id="other"))
    assert len(registry) == 0
    assert recorder.calls == []
    assert router.client_events.empty()


def test_status(router, recorder):
    """Status frames update the queue count and reach the client channel."""
    router.handle_frame(frame("status", status={"exec_info": {"queue_remaining": 2}}))
    assert router.queue_remaining == 2
    assert recorder.calls == [("queue", 2)]
    assert drain(router.client_events) == [StatusEvent(2)]


def test_malformed_frames_are_logged(router, caplog):
    """Bad and unknown frames are logged without raising."""
    with caplog.at_level(logging.DEBUG, logger="tests.router"):
        router.handle_frame("{{{")
        router.handle_frame(frame("crystools.monitor", cpu=3))
    assert "Deserializing websocket frame" in caplog.text
    assert "Unhandled message type: crystools.monitor" in caplog.text


def test_failing_callback_does_not_stop_delivery(registry, caplog):
    """A raising callback is logged and the event is still delivered."""
    def explode(item, reason):
        raise RuntimeError("callback bug")

    router = MessageRouter(registry, logger, callbacks=ClientCallbacks(item_stopped=explode))
    item = QueueItem(prompt_id="p1")
    registry.register(item)
    router.handle_frame(frame("executing", node=None, prompt_id="p1"))

    assert drain(item.messages) == [StoppedEvent("p1")]
    assert "callback bug" in caplog.text


def test_untracked_mode(registry):
    """Without tracking every event goes to the client channel."""
    router = MessageRouter(registry, logger, track_submissions=False)
    router.handle_frame(frame("execution_start", prompt_id="p9"))
    router.handle_frame(frame("executing", node="3", prompt_id="p9"))
    router.handle_frame(frame("executing", node=None, prompt_id="p9"))

    assert drain(router.client_events) == [
        StartedEvent("p9"),
        ExecutingEvent("p9", 3),
        StoppedEvent("p9", StoppedReason.finished),
    ]


def test_full_client_queue_drops_events(registry, caplog):
    """Events that do not fit the bounded client channel are dropped."""
    router = MessageRouter(registry, logger, client_events=asyncio.Queue(maxsize=1))
    router.handle_frame(frame("status", status={"exec_info": {"queue_remaining": 1}}))
    router.handle_frame(frame("status", status={"exec_info": {"queue_remaining": 0}}))

    assert drain(router.client_events) == [StatusEvent(1)]
    assert router.queue_remaining == 0
    assert "queue full" in caplog.text


def test_untracked_terminal_event_delivered_once(registry):
    """Without tracking, replayed frames of a finished prompt are dropped."""
    router = MessageRouter(registry, logger, track_submissions=False)
    router.handle_frame(frame("executing", node=None, prompt_id="p9"))
    router.handle_frame(frame("executing", node=None, prompt_id="p9"))
    router.handle_frame(frame("execution_interrupted", prompt_id="p9"))
    router.handle_frame(frame("executing", node="3", prompt_id="p9"))

    assert drain(router.client_events) == [StoppedEvent("p9", StoppedReason.finished)]

    router.handle_frame(frame("execution_interrupted", prompt_id="p10"))
    assert drain(router.client_events) == [StoppedEvent("p10", StoppedReason.interrupted)]
