"""Persistent websocket connection to ComfyUI with reconnect and backoff."""
from __future__ import annotations

import asyncio
import logging
import ssl
import weakref
from typing import Optional, Protocol

import aiohttp
import certifi

from .state import ConnectionStatus


class FrameListener(Protocol):
    def on_frame(self, text: str) -> None: ...

    def on_connected(self) -> None: ...

    def on_disconnected(self) -> None: ...


class ConnectionManager:
    """Owns one websocket and keeps it connected while running.

    Inbound text frames are handed to the listener synchronously and in
    arrival order. The listener is held by weak reference; it owns the
    manager, not the other way around.
    """

    def __init__(
        self,
        url: str,
        listener: FrameListener,
        logger: logging.Logger,
        base_delay: float = 5.0,
        max_delay: float = 60.0,
        max_retry_count: int = 60,
        heartbeat: Optional[float] = 30.0,
    ):
        self.url = url
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_retry_count = max_retry_count
        self.heartbeat = heartbeat
        self.status = ConnectionStatus.disconnected
        self.retry_count = 0
        self._listener = weakref.ref(listener)
        self._log = logger
        self._running = False
        self._notified_connected = False
        self._task: Optional[asyncio.Task] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_connected(self) -> bool:
        return self.status is ConnectionStatus.connected

    def start(self) -> None:
        """Start the connect/read loop. Does nothing if already running."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the loop and close the socket.

        Submissions still in flight receive no terminal event.
        """
        self._running = False
        ws = self._ws
        if ws is not None and not ws.closed:
            await ws.close()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def next_delay(self) -> float:
        """Delay before the next connect attempt; advances the retry counter."""
        delay = self.base_delay + 2**self.retry_count
        if delay > self.max_delay:
            delay = self.max_delay
        else:
            self.retry_count += 1
        if self.retry_count >= self.max_retry_count:
            self.retry_count = self.max_retry_count
        self._log.debug("Retry count: %d, delay: %.1fs", self.retry_count, delay)
        return delay

    async def send_json(self, data: dict) -> bool:
        """Send a control frame. Returns False, without queueing, when not connected."""
        ws = self._ws
        if ws is None or ws.closed:
            self._log.debug("Websocket not connected, frame not sent")
            return False
        try:
            await ws.send_json(data)
        except (aiohttp.ClientError, ConnectionResetError) as e:
            self._log.warning("Websocket send failed: %s", e)
            return False
        return True

    async def _run(self):
        self._log.debug("Websocket loop enter >>")
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)
        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                while self._running:
                    self.status = ConnectionStatus.connecting
                    try:
                        ws = await session.ws_connect(
                            self.url,
                            max_msg_size=2**30,
                            heartbeat=self.heartbeat,
                        )
                    except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                        self.status = ConnectionStatus.disconnected
                        delay = self.next_delay()
                        self._log.error("Websocket connecting failed, retry in %.1fs: %s", delay, e)
                        await asyncio.sleep(delay)
                        continue

                    self._ws = ws
                    self._set_connected()
                    try:
                        await self._read_loop(ws)
                    finally:
                        self._ws = None
                        await ws.close()
                        self._set_disconnected()
        finally:
            self._set_disconnected()
            self._log.debug("Websocket loop exit <<")

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse):
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                self._dispatch(msg.data)
            elif msg.type == aiohttp.WSMsgType.BINARY:
                self._log.debug("Ignoring binary websocket frame (%d bytes)", len(msg.data))
            elif msg.type == aiohttp.WSMsgType.ERROR:
                self._log.warning("Websocket read error: %s", ws.exception())
                break
        self._log.debug("Websocket read loop exit")

    def _dispatch(self, text: str):
        listener = self._listener()
        if listener is None:
            self._running = False
            return
        try:
            listener.on_frame(text)
        except Exception:
            self._log.exception("Websocket frame handler failed")

    def _set_connected(self):
        self.status = ConnectionStatus.connected
        if self._notified_connected:
            return
        self._notified_connected = True
        self._log.info("Websocket connected: %s", self.url)
        self._notify("on_connected")

    def _set_disconnected(self):
        self.status = ConnectionStatus.disconnected
        if not self._notified_connected:
            return
        self._notified_connected = False
        self._log.info("Websocket disconnected")
        self._notify("on_disconnected")

    def _notify(self, name: str):
        listener = self._listener()
        if listener is None:
            return
        try:
            getattr(listener, name)()
        except Exception:
            self._log.exception("Websocket %s handler failed", name)
