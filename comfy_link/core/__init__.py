"""Connection, routing and submission tracking for the ComfyUI client."""
from .state import ConnectionStatus, StoppedReason
from .settings import ClientSettings
from .aiohttp_request_manager import AiohttpRequestManager
from .connection import ConnectionManager
from .messages import DataOutput, Frame, MessageType, decode_frame
from .events import (
    DataEvent,
    ExecutingEvent,
    ProgressEvent,
    StartedEvent,
    StatusEvent,
    StoppedEvent,
    StoppedException,
)
from .queue_item import QueueItem, SubmissionRegistry
from .router import ClientCallbacks, MessageRouter
from .comfy_client import ComfyClient

__all__ = [
    # State
    "ConnectionStatus",
    "StoppedReason",
    "ClientSettings",
    # Transport
    "AiohttpRequestManager",
    "ConnectionManager",
    # Messages and events
    "DataOutput",
    "Frame",
    "MessageType",
    "decode_frame",
    "DataEvent",
    "ExecutingEvent",
    "ProgressEvent",
    "StartedEvent",
    "StatusEvent",
    "StoppedEvent",
    "StoppedException",
    # Submissions
    "QueueItem",
    "SubmissionRegistry",
    "ClientCallbacks",
    "MessageRouter",
    "ComfyClient",
]
