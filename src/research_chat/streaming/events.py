"""Typed events carried by incrementally flushed response streams.

Every event shares the envelope ``{"type": ..., "content": {...}}``. The four
progress variants describe one tracked long-running operation; ``tool-status``,
``text`` and ``chat-status`` frame a whole chat turn.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ProgressInitContent(BaseModel):
    message: str
    progress: int = Field(default=0, ge=0, le=0)
    timestamp: str = Field(default_factory=utc_now)


class ActivityDeltaContent(BaseModel):
    status: Literal["pending", "complete", "error"]
    message: str
    # Absent only on the error delta that terminates a failed stream.
    progress: int | None = Field(default=None, ge=0, le=100)
    timestamp: str = Field(default_factory=utc_now)
    metadata: dict[str, Any] | None = None


class SourceMetadata(BaseModel):
    url: str
    title: str
    confidence: float = Field(ge=0.0, le=1.0)


class SourceDeltaContent(BaseModel):
    message: str
    metadata: SourceMetadata


class FinishContent(BaseModel):
    status: Literal["complete", "error"]
    message: str
    progress: int = Field(default=100, ge=100, le=100)
    timestamp: str = Field(default_factory=utc_now)
    metadata: dict[str, Any] | None = None


class ToolStatusContent(BaseModel):
    tool: str
    status: Literal["started", "completed", "error"]
    message: str
    timestamp: str = Field(default_factory=utc_now)
    metadata: dict[str, Any] | None = None


class TextContent(BaseModel):
    text: str


class ChatStatusContent(BaseModel):
    status: Literal["started", "completed", "error"]
    message: str = ""
    metadata: dict[str, Any] | None = None


class ProgressInitEvent(BaseModel):
    type: Literal["progress-init"] = "progress-init"
    content: ProgressInitContent


class ActivityDeltaEvent(BaseModel):
    type: Literal["activity-delta"] = "activity-delta"
    content: ActivityDeltaContent


class SourceDeltaEvent(BaseModel):
    type: Literal["source-delta"] = "source-delta"
    content: SourceDeltaContent


class FinishEvent(BaseModel):
    type: Literal["finish"] = "finish"
    content: FinishContent


class ToolStatusEvent(BaseModel):
    type: Literal["tool-status"] = "tool-status"
    content: ToolStatusContent


class TextEvent(BaseModel):
    type: Literal["text"] = "text"
    content: TextContent


class ChatStatusEvent(BaseModel):
    type: Literal["chat-status"] = "chat-status"
    content: ChatStatusContent


ProgressEvent = Union[ProgressInitEvent, ActivityDeltaEvent, SourceDeltaEvent, FinishEvent]

StreamEvent = Annotated[
    Union[
        ProgressInitEvent,
        ActivityDeltaEvent,
        SourceDeltaEvent,
        FinishEvent,
        ToolStatusEvent,
        TextEvent,
        ChatStatusEvent,
    ],
    Field(discriminator="type"),
]

_STREAM_EVENT_ADAPTER: TypeAdapter[Any] = TypeAdapter(StreamEvent)


def parse_event(payload: Mapping[str, Any]) -> BaseModel:
    """Strictly validate a decoded event; raises ``pydantic.ValidationError``."""
    return _STREAM_EVENT_ADAPTER.validate_python(dict(payload))


def event_to_dict(event: BaseModel) -> dict[str, Any]:
    return event.model_dump(mode="json", exclude_none=True)


def stream_failure_event(message: str) -> ActivityDeltaEvent:
    """Final event written when event production itself fails."""
    return ActivityDeltaEvent(
        content=ActivityDeltaContent(status="error", message=f"Error: {message}")
    )
