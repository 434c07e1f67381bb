"""Tests for the websocket connection manager."""
import json
import logging

import pytest
from aiohttp.test_utils import unused_port

from comfy_link.core.connection import ConnectionManager
from comfy_link.core.state import ConnectionStatus
from fake_comfy import FakeComfy, wait_until

logger = logging.getLogger("tests.connection")


class Listener:
    def __init__(self):
        self.frames = []
        self.events = []

    def on_frame(self, text):
        self.frames.append(json.loads(text))

    def on_connected(self):
        self.events.append("connected")

    def on_disconnected(self):
        self.events.append("disconnected")


def test_backoff_grows_then_caps():
    """Delays grow with the retry count and stop at the maximum."""
    manager = ConnectionManager("ws://localhost/ws", Listener(), logger)
    delays = [manager.next_delay() for _ in range(10)]
    assert delays[:6] == [6, 7, 9, 13, 21, 37]
    assert delays[6:] == [60, 60, 60, 60]
    assert delays == sorted(delays)
    assert manager.retry_count == 6


def test_retry_count_is_clamped():
    """The retry counter never exceeds its maximum."""
    manager = ConnectionManager(
        "ws://localhost/ws", Listener(), logger, max_delay=1e30, max_retry_count=3
    )
    for _ in range(10):
        manager.next_delay()
    assert manager.retry_count == 3
    assert manager.next_delay() == 5 + 2**3


@pytest.mark.asyncio
async def test_send_while_disconnected():
    """Sending without a socket reports failure instead of queueing."""
    manager = ConnectionManager("ws://localhost/ws", Listener(), logger)
    assert manager.status is ConnectionStatus.disconnected
    assert await manager.send_json({"type": "ping"}) is False


@pytest.mark.asyncio
async def test_frames_in_order_and_reconnect(object_info):
    """Frames arrive in order; a dropped socket reconnects with one callback each way."""
    async with FakeComfy(object_info) as comfy:
        listener = Listener()
        manager = ConnectionManager(comfy.ws_url(), listener, logger, base_delay=0.01, max_delay=0.05)
        manager.start()
        manager.start()
        try:
            await wait_until(lambda: manager.is_connected and comfy.sockets)
            assert listener.events == ["connected"]

            for i in range(5):
                await comfy.broadcast({"type": "custom", "data": {"i": i}})
            await wait_until(lambda: len(listener.frames) == 6)
            assert listener.frames[0]["type"] == "status"
            assert [f["data"]["i"] for f in listener.frames[1:]] == [0, 1, 2, 3, 4]

            assert await manager.send_json({"type": "hello"})
            await wait_until(lambda: comfy.received)
            assert json.loads(comfy.received[0]) == {"type": "hello"}

            await comfy.drop_connections()
            await wait_until(lambda: listener.events == ["connected", "disconnected", "connected"])
            assert comfy.ws_connections == 2
        finally:
            await manager.stop()

        assert listener.events == ["connected", "disconnected", "connected", "disconnected"]
        assert manager.status is ConnectionStatus.disconnected
        assert not manager.is_running


@pytest.mark.asyncio
async def test_unreachable_server_retries():
    """Failed attempts back off and never report a connection."""
    listener = Listener()
    manager = ConnectionManager(
        f"ws://127.0.0.1:{unused_port()}/ws", listener, logger, base_delay=0.0, max_delay=2.0
    )
    manager.start()
    try:
        await wait_until(lambda: manager.retry_count >= 1)
        assert not manager.is_connected
    finally:
        await manager.stop()
    assert listener.events == []


@pytest.mark.asyncio
async def test_handler_errors_do_not_break_the_loop(object_info, caplog):
    """A raising frame handler is logged and reading continues."""
    class Flaky(Listener):
        def on_frame(self, text):
            super().on_frame(text)
            if len(self.frames) == 1:
                raise RuntimeError("handler bug")

    async with FakeComfy(object_info) as comfy:
        listener = Flaky()
        manager = ConnectionManager(comfy.ws_url(), listener, logger)
        manager.start()
        try:
            await wait_until(lambda: len(listener.frames) == 1 and comfy.sockets)
            await comfy.broadcast({"type": "custom", "data": {}})
            await wait_until(lambda: len(listener.frames) == 2)
        finally:
            await manager.stop()
    assert "handler bug" in caplog.text
