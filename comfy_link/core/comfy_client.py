"""ComfyUI client.

Builds workflow graphs against the server's node-type catalog, submits them
and routes websocket events back to the submission they belong to.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
import uuid
from os import PathLike
from typing import BinaryIO, Optional

from ..errors import (
    CatalogFetchError,
    NetworkError,
    NotConnectedError,
    SubmitError,
)
from ..graph import Graph, NodeTypeCatalog
from .aiohttp_request_manager import AiohttpRequestManager
from .connection import ConnectionManager
from .messages import DataOutput
from .queue_item import QueueItem, SubmissionRegistry
from .router import ClientCallbacks, MessageRouter
from .settings import ClientSettings


class ComfyClient:
    """Top level object for interaction with a ComfyUI backend."""

    def __init__(
        self,
        url: Optional[str] = None,
        callbacks: Optional[ClientCallbacks] = None,
        settings: Optional[ClientSettings] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.settings = settings or ClientSettings.from_env()
        if url:
            self.settings.url = url
        self.client_id = str(uuid.uuid4())
        self.log = logger or logging.getLogger("comfy_link")
        self.callbacks = callbacks or ClientCallbacks()
        self.registry = SubmissionRegistry()
        self.events: asyncio.Queue = asyncio.Queue(maxsize=self.settings.client_queue_size)
        self.router = MessageRouter(
            self.registry,
            self.log,
            callbacks=self.callbacks,
            client_events=self.events,
            track_submissions=self.settings.track_submissions,
        )
        self.connection = ConnectionManager(
            self.settings.websocket_url(self.client_id),
            self,
            self.log.getChild("websocket"),
            base_delay=self.settings.base_reconnect_delay,
            max_delay=self.settings.max_reconnect_delay,
            max_retry_count=self.settings.max_retry_count,
        )
        self._requests = AiohttpRequestManager(timeout=self.settings.request_timeout)
        self._catalog: Optional[NodeTypeCatalog] = None
        self._catalog_lock = asyncio.Lock()
        self._connected = asyncio.Event()
        self._sequence = itertools.count(1)

    @property
    def url(self) -> str:
        return self.settings.base_url

    @property
    def is_connected(self) -> bool:
        return self.connection.is_connected

    @property
    def is_initialized(self) -> bool:
        return self.is_connected and self._catalog is not None

    @property
    def queue_remaining(self) -> int:
        return self.router.queue_remaining

    @property
    def catalog(self) -> Optional[NodeTypeCatalog]:
        return self._catalog

    # Websocket lifecycle

    async def start(self) -> None:
        """Start the websocket connection (no-op if already started)."""
        self.connection.start()

    async def wait_connected(self, timeout: Optional[float] = None) -> None:
        await asyncio.wait_for(self._connected.wait(), timeout)

    async def close(self) -> None:
        await self.connection.stop()
        await self._requests.close()

    async def __aenter__(self) -> "ComfyClient":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    def on_frame(self, text: str) -> None:
        self.router.handle_frame(text)

    def on_connected(self) -> None:
        self._connected.set()
        self.router.invoke(self.callbacks.websocket_connected)

    def on_disconnected(self) -> None:
        self._connected.clear()
        self.router.invoke(self.callbacks.websocket_disconnected)

    async def send(self, data: dict) -> bool:
        """Send a control frame; returns False if the websocket is down."""
        return await self.connection.send_json(data)

    # Node-type catalog

    async def fetch_catalog(self) -> NodeTypeCatalog:
        """Fetch /object_info once and cache it for the client's lifetime."""
        if self._catalog is not None:
            return self._catalog
        async with self._catalog_lock:
            if self._catalog is None:
                try:
                    object_info = await self._requests.get(f"{self.url}/object_info")
                except NetworkError as e:
                    raise CatalogFetchError(f"Failed to fetch node types: {e}") from e
                self._catalog = NodeTypeCatalog.from_object_info(object_info)
                self.log.info("Loaded %d node types", len(self._catalog))
        return self._catalog

    def invalidate_catalog(self) -> None:
        self._catalog = None

    # Graph construction

    def graph_from_json_string(self, text: str) -> tuple[Graph, list[str]]:
        return Graph.from_string(text, self._catalog)

    def graph_from_json_bytes(self, data: bytes) -> tuple[Graph, list[str]]:
        return Graph.from_bytes(data, self._catalog)

    def graph_from_json_stream(self, stream: BinaryIO) -> tuple[Graph, list[str]]:
        return Graph.from_stream(stream, self._catalog)

    def graph_from_json_file(self, path: str | PathLike) -> tuple[Graph, list[str]]:
        return Graph.from_file(path, self._catalog)

    def graph_from_png(self, source: str | PathLike | BinaryIO | bytes) -> tuple[Graph, list[str]]:
        return Graph.from_png(source, self._catalog)

    # Submission

    def get_queued_item(self, prompt_id: str) -> Optional[QueueItem]:
        """A submission that has not yet received its terminal event."""
        return self.registry.lookup(prompt_id)

    async def queue_prompt(self, graph: Graph) -> QueueItem:
        """Submit a graph; events arrive on the returned item's channel."""
        extra_data = {"extra_pnginfo": {"workflow": graph.to_document()}}
        return await self._submit(graph.to_prompt(), graph, extra_data)

    async def queue_raw_prompt(self, prompt: dict) -> QueueItem:
        """Submit an API-format prompt that was not built from a Graph."""
        return await self._submit(prompt, None, {})

    async def _submit(self, prompt: dict, graph: Optional[Graph], extra_data: dict) -> QueueItem:
        if not self.is_connected:
            raise NotConnectedError()

        # Register before posting so frames racing the response are routed
        prompt_id = str(uuid.uuid4())
        item = QueueItem(prompt_id=prompt_id, sequence=next(self._sequence), workflow=graph)
        tracking = self.settings.track_submissions
        if tracking:
            self.registry.register(item)

        data = {
            "prompt": prompt,
            "client_id": self.client_id,
            "prompt_id": prompt_id,
            "extra_data": extra_data,
        }
        try:
            result = await self._requests.post(f"{self.url}/prompt", data)
        except NetworkError as e:
            self.registry.remove(prompt_id)
            if e.status is None:
                raise
            raise SubmitError(
                e.code, f"Failed to queue prompt: {e.message}", e.url, status=e.status, data=e.data
            ) from e
        except BaseException:
            # Unencodable values or cancellation; nothing was queued for this id
            self.registry.remove(prompt_id)
            raise

        if not isinstance(result, dict):
            self.registry.remove(prompt_id)
            raise SubmitError(0, "Unexpected response to queued prompt", f"{self.url}/prompt")

        server_id = result.get("prompt_id")
        if server_id and server_id != prompt_id:
            self.log.warning("Prompt ID mismatch: expected %s, got %s", prompt_id, server_id)
            if tracking:
                self.registry.rekey(prompt_id, server_id)
            else:
                item.prompt_id = server_id
        item.number = result.get("number", 0)
        item.node_errors = result.get("node_errors") or {}
        self.log.info("Prompt %s queued as number %d", item.prompt_id, item.number)
        return item

    # Other server calls

    async def get_image(self, output: DataOutput) -> bytes:
        """Download an output file named by a data event."""
        params = {"filename": output.filename, "subfolder": output.subfolder, "type": output.type}
        return await self._requests.download(
            f"{self.url}/view", params=params, timeout=self.settings.download_timeout
        )

    async def upload_image(
        self,
        data: bytes,
        filename: str,
        subfolder: str = "",
        overwrite: bool = False,
        image_type: str = "input",
    ) -> dict:
        """Upload an input image; returns the server's name/subfolder/type."""
        fields = {"type": image_type, "overwrite": "true" if overwrite else "false"}
        if subfolder:
            fields["subfolder"] = subfolder
        result = await self._requests.upload(
            f"{self.url}/upload/image", "image", filename, data, fields
        )
        return result if isinstance(result, dict) else {}

    async def interrupt(self) -> None:
        await self._requests.post(f"{self.url}/interrupt")

    async def cancel(self, prompt_id: str) -> None:
        """Remove a pending prompt from the server queue."""
        await self._requests.post(f"{self.url}/queue", {"delete": [prompt_id]})

    async def get_queue(self) -> dict:
        result = await self._requests.get(f"{self.url}/queue")
        return result if isinstance(result, dict) else {}

    async def get_history(self, prompt_id: str) -> dict:
        result = await self._requests.get(f"{self.url}/history/{prompt_id}")
        return result if isinstance(result, dict) else {}

    async def get_system_stats(self) -> dict:
        result = await self._requests.get(f"{self.url}/system_stats")
        return result if isinstance(result, dict) else {}
