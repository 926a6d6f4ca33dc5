"""Client-side folding of stream events into display-ready tool status.

``reduce_tool_status`` is a pure ``(state, event) -> state`` function. Events
that are missing required fields, or whose type is unknown, leave the state
unchanged rather than raising: streams are consumed as they arrive and a
malformed frame must not break the view.
"""

from __future__ import annotations

import math
import uuid
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

from research_chat.streaming.events import utc_now

IdFactory = Callable[[], str]
Clock = Callable[[], str]


@dataclass(frozen=True, slots=True)
class Activity:
    id: str
    tool: str
    status: str
    message: str
    timestamp: str
    metadata: Any = None


@dataclass(frozen=True, slots=True)
class Source:
    id: str
    url: str
    title: str
    confidence: float


@dataclass(frozen=True, slots=True)
class ToolStatusState:
    status: str = "idle"
    current_tool: str | None = None
    progress: int = 0
    message: str = ""
    activities: tuple[Activity, ...] = field(default_factory=tuple)
    sources: tuple[Source, ...] = field(default_factory=tuple)

    @property
    def terminal(self) -> bool:
        return self.status in ("completed", "error")


INITIAL_STATE = ToolStatusState()


def _generate_id() -> str:
    return uuid.uuid4().hex[:16]


def reduce_tool_status(
    state: ToolStatusState,
    event: Any,
    *,
    new_id: IdFactory | None = None,
    now: Clock | None = None,
) -> ToolStatusState:
    """Fold one event into ``state``.

    ``new_id`` and ``now`` supply activity ids and default timestamps; pass
    deterministic callables to make the result reproducible.
    """
    if not isinstance(event, Mapping):
        return state
    event_type = event.get("type")
    if not isinstance(event_type, str):
        return state
    handler = _HANDLERS.get(event_type)
    if handler is None:
        return state
    content = event.get("content")
    if content is None:
        content = {}
    if not isinstance(content, Mapping):
        return state
    return handler(state, content, new_id or _generate_id, now or utc_now)


def _on_tool_status(
    state: ToolStatusState, content: Mapping[str, Any], new_id: IdFactory, now: Clock
) -> ToolStatusState:
    tool = content.get("tool")
    status = content.get("status")
    message = content.get("message")
    if not tool or not status or not message:
        return state

    activity = Activity(
        id=new_id(),
        tool=str(tool),
        status=str(status),
        message=str(message),
        timestamp=content.get("timestamp") or now(),
        metadata=content.get("metadata"),
    )
    return replace(
        state,
        status=str(status),
        current_tool=str(tool),
        message=str(message),
        activities=state.activities + (activity,),
    )


def _on_progress_init(
    state: ToolStatusState, content: Mapping[str, Any], new_id: IdFactory, now: Clock
) -> ToolStatusState:
    return replace(state, progress=0)


def _on_chat_status(
    state: ToolStatusState, content: Mapping[str, Any], new_id: IdFactory, now: Clock
) -> ToolStatusState:
    if content.get("status") != "completed":
        return state
    return replace(state, status="completed", message=content.get("message") or "Completed")


def _on_activity_delta(
    state: ToolStatusState, content: Mapping[str, Any], new_id: IdFactory, now: Clock
) -> ToolStatusState:
    status = content.get("status")
    message = content.get("message")
    if not status or not message:
        return state

    progress = state.progress
    raw_progress = content.get("progress")
    if raw_progress is not None:
        if not _is_finite_number(raw_progress):
            return state
        progress = max(progress, min(100, int(raw_progress)))

    activity = Activity(
        id=new_id(),
        tool=state.current_tool or "unknown",
        status=str(status),
        message=str(message),
        timestamp=content.get("timestamp") or now(),
        metadata=content.get("metadata"),
    )
    # An error delta is the last event of a failed stream.
    next_status = "error" if status == "error" else "started"
    return replace(
        state,
        status=next_status,
        progress=progress,
        message=str(message),
        activities=state.activities + (activity,),
    )


def _is_finite_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _on_source_delta(
    state: ToolStatusState, content: Mapping[str, Any], new_id: IdFactory, now: Clock
) -> ToolStatusState:
    metadata = content.get("metadata")
    if not isinstance(metadata, Mapping) or not metadata.get("url"):
        return state
    confidence = metadata.get("confidence")
    source = Source(
        id=new_id(),
        url=str(metadata["url"]),
        title=str(metadata.get("title") or metadata["url"]),
        confidence=float(confidence) if _is_finite_number(confidence) else 0.0,
    )
    return replace(state, sources=state.sources + (source,))


def _on_finish(
    state: ToolStatusState, content: Mapping[str, Any], new_id: IdFactory, now: Clock
) -> ToolStatusState:
    status = content.get("status")
    if status not in ("complete", "error"):
        return state
    message = content.get("message") or state.message
    activities = state.activities
    if content.get("message"):
        activities = activities + (
            Activity(
                id=new_id(),
                tool=state.current_tool or "unknown",
                status=str(status),
                message=str(message),
                timestamp=content.get("timestamp") or now(),
                metadata=content.get("metadata"),
            ),
        )
    return replace(
        state,
        status="completed" if status == "complete" else "error",
        progress=100,
        message=str(message),
        activities=activities,
    )


_HANDLERS: dict[Any, Callable[..., ToolStatusState]] = {
    "tool-status": _on_tool_status,
    "progress-init": _on_progress_init,
    "chat-status": _on_chat_status,
    "activity-delta": _on_activity_delta,
    "source-delta": _on_source_delta,
    "finish": _on_finish,
}


class ToolStatusTracker:
    """Explicit state machine owned by one consuming view.

    ``observe`` mirrors subscription-driven consumption: it receives the whole
    event list seen so far and applies only the most recent event, once per
    newly observed list length.
    """

    def __init__(self, *, new_id: IdFactory | None = None, now: Clock | None = None) -> None:
        self._new_id = new_id
        self._now = now
        self._state = INITIAL_STATE
        self._observed = 0

    @property
    def state(self) -> ToolStatusState:
        return self._state

    def apply(self, event: Any) -> ToolStatusState:
        self._state = reduce_tool_status(self._state, event, new_id=self._new_id, now=self._now)
        return self._state

    def observe(self, batch: Sequence[Any] | None) -> ToolStatusState:
        if not batch or len(batch) == self._observed:
            return self._state
        self._observed = len(batch)
        return self.apply(batch[-1])

    def reset(self) -> None:
        self._state = INITIAL_STATE
        self._observed = 0


class ActiveToolSelection:
    """Which tool result a view currently has expanded, scoped to that view."""

    def __init__(self) -> None:
        self._active: str | None = None

    @property
    def active(self) -> str | None:
        return self._active

    def select(self, key: str | None) -> None:
        self._active = key

    def clear(self) -> None:
        self._active = None
