"""Asyncio client for ComfyUI workflows."""
from .errors import (
    CatalogFetchError,
    CatalogUnavailableError,
    ComfyError,
    DocumentMalformedError,
    FrameDecodeError,
    MissingNodeTypesError,
    NetworkError,
    NoEmbeddedWorkflowError,
    NotConnectedError,
    SubmitError,
)
from .graph import Graph, Node, NodeTypeCatalog, Property
from .core import (
    ClientCallbacks,
    ClientSettings,
    ComfyClient,
    DataEvent,
    DataOutput,
    ExecutingEvent,
    ProgressEvent,
    QueueItem,
    StartedEvent,
    StatusEvent,
    StoppedEvent,
    StoppedException,
    StoppedReason,
)

__version__ = "0.1.0"

__all__ = [
    "CatalogFetchError",
    "CatalogUnavailableError",
    "ComfyError",
    "DocumentMalformedError",
    "FrameDecodeError",
    "MissingNodeTypesError",
    "NetworkError",
    "NoEmbeddedWorkflowError",
    "NotConnectedError",
    "SubmitError",
    "Graph",
    "Node",
    "NodeTypeCatalog",
    "Property",
    "ClientCallbacks",
    "ClientSettings",
    "ComfyClient",
    "DataEvent",
    "DataOutput",
    "ExecutingEvent",
    "ProgressEvent",
    "QueueItem",
    "StartedEvent",
    "StatusEvent",
    "StoppedEvent",
    "StoppedException",
    "StoppedReason",
]
