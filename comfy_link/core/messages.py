"""Websocket frames sent by ComfyUI.

Frames are decoded in two steps: the envelope first (``type`` and a raw
``data`` object), then ``data`` is validated against the payload model
registered for that type.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, NamedTuple, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import FrameDecodeError


class MessageType(str, Enum):
    status = "status"
    execution_start = "execution_start"
    execution_cached = "execution_cached"
    executing = "executing"
    progress = "progress"
    executed = "executed"
    execution_interrupted = "execution_interrupted"
    execution_error = "execution_error"


def _node_id(value: Any) -> Any:
    """Node ids arrive as ints or as numeric strings; keep non-numeric ids as-is."""
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value)
    return value


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ExecInfo(_Payload):
    queue_remaining: int = 0


class StatusInfo(_Payload):
    exec_info: ExecInfo = Field(default_factory=ExecInfo)


class StatusData(_Payload):
    status: StatusInfo = Field(default_factory=StatusInfo)
    sid: Optional[str] = None


class ExecutionStartData(_Payload):
    prompt_id: str
    timestamp: Optional[int] = None


class ExecutionCachedData(_Payload):
    prompt_id: Optional[str] = None
    nodes: list[Any] = Field(default_factory=list)


class ExecutingData(_Payload):
    prompt_id: Optional[str] = None
    node: Optional[Union[int, str]] = None
    display_node: Optional[Union[int, str]] = None

    @field_validator("node", "display_node", mode="before")
    @classmethod
    def coerce_node_id(cls, value: Any) -> Any:
        return _node_id(value)


class ProgressData(_Payload):
    value: Union[int, float] = 0
    max: Union[int, float] = 0
    prompt_id: Optional[str] = None
    node: Optional[Union[int, str]] = None

    @field_validator("node", mode="before")
    @classmethod
    def coerce_node_id(cls, value: Any) -> Any:
        return _node_id(value)


class DataOutput(BaseModel):
    """One output item, usually a file that can be fetched from /view."""

    model_config = ConfigDict(extra="allow")

    filename: str = ""
    subfolder: str = ""
    type: str = "output"


class ExecutedData(_Payload):
    prompt_id: str
    node: Union[int, str]
    output: dict[str, list[Any]] = Field(default_factory=dict)

    @field_validator("node", mode="before")
    @classmethod
    def coerce_node_id(cls, value: Any) -> Any:
        return _node_id(value)

    @field_validator("output", mode="before")
    @classmethod
    def parse_output(cls, value: Any) -> Any:
        if value is None:
            return {}
        if not isinstance(value, dict):
            return value
        result = {}
        for key, items in value.items():
            if not isinstance(items, list):
                items = [items]
            result[key] = [
                DataOutput.model_validate(item) if isinstance(item, dict) else item
                for item in items
            ]
        return result


class ExecutionInterruptedData(_Payload):
    prompt_id: str
    node_id: Optional[Union[int, str]] = None
    node_type: str = ""
    executed: list[Any] = Field(default_factory=list)

    @field_validator("node_id", mode="before")
    @classmethod
    def coerce_node_id(cls, value: Any) -> Any:
        return _node_id(value)


class ExecutionErrorData(_Payload):
    prompt_id: str
    # the node id is serialized as a string
    node_id: str = Field("", validation_alias=AliasChoices("node_id", "node"))
    node_type: str = ""
    exception_message: str = ""
    exception_type: str = ""
    traceback: list[str] = Field(default_factory=list)
    executed: list[Any] = Field(default_factory=list)

    @field_validator("node_id", mode="before")
    @classmethod
    def stringify_node_id(cls, value: Any) -> Any:
        return "" if value is None else str(value)

    @field_validator("traceback", mode="before")
    @classmethod
    def traceback_lines(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return value.splitlines()
        return value


PAYLOAD_TYPES: dict[MessageType, type[BaseModel]] = {
    MessageType.status: StatusData,
    MessageType.execution_start: ExecutionStartData,
    MessageType.execution_cached: ExecutionCachedData,
    MessageType.executing: ExecutingData,
    MessageType.progress: ProgressData,
    MessageType.executed: ExecutedData,
    MessageType.execution_interrupted: ExecutionInterruptedData,
    MessageType.execution_error: ExecutionErrorData,
}


class FrameEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("data", mode="before")
    @classmethod
    def none_is_empty(cls, value: Any) -> Any:
        return {} if value is None else value


class Frame(NamedTuple):
    """A decoded frame. ``payload`` is None for unrecognized types."""

    type: Union[MessageType, str]
    payload: Optional[BaseModel]


def decode_frame(text: str | bytes) -> Frame:
    """Decode a websocket text frame, raising FrameDecodeError if malformed."""
    try:
        envelope = FrameEnvelope.model_validate_json(text)
    except ValidationError as e:
        raise FrameDecodeError(f"Invalid frame envelope: {e}", _excerpt(text)) from e

    try:
        kind = MessageType(envelope.type)
    except ValueError:
        return Frame(envelope.type, None)

    try:
        payload = PAYLOAD_TYPES[kind].model_validate(envelope.data)
    except ValidationError as e:
        raise FrameDecodeError(f"Invalid '{kind.value}' payload: {e}", _excerpt(text)) from e
    return Frame(kind, payload)


def _excerpt(text: str | bytes, limit: int = 200) -> str:
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    return text if len(text) <= limit else text[:limit] + "..."
