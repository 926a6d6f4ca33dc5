"""Server-sent-event framing for stream events."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterable, AsyncIterator, Iterable, Iterator, Mapping
from typing import Any

from pydantic import BaseModel

from research_chat.streaming.events import event_to_dict

logger = logging.getLogger(__name__)

SSE_MEDIA_TYPE = "text/event-stream"


def encode_sse(event: BaseModel | Mapping[str, Any]) -> str:
    """Encode one event as a single, self-contained SSE frame."""
    payload = event_to_dict(event) if isinstance(event, BaseModel) else dict(event)
    body = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    return f"data: {body}\n\n"


def iter_sse_events(lines: Iterable[str]) -> Iterator[dict[str, Any]]:
    """Decode an incremental line stream into event dicts, in arrival order.

    Comment lines and keep-alives are skipped; frames whose data is not a JSON
    object are dropped with a debug record.
    """
    parser = _FrameParser()
    for line in lines:
        yield from parser.feed(line)
    yield from parser.flush()


async def aiter_sse_events(lines: AsyncIterable[str]) -> AsyncIterator[dict[str, Any]]:
    parser = _FrameParser()
    async for line in lines:
        for event in parser.feed(line):
            yield event
    for event in parser.flush():
        yield event


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-finite number {name} in event frame")


class _FrameParser:
    def __init__(self) -> None:
        self._data: list[str] = []

    def feed(self, raw: str) -> list[dict[str, Any]]:
        line = raw.rstrip("\r\n")
        if not line:
            return self.flush()
        if line.startswith(":"):
            return []
        if line.startswith("data:"):
            value = line[5:]
            self._data.append(value[1:] if value.startswith(" ") else value)
        return []

    def flush(self) -> list[dict[str, Any]]:
        if not self._data:
            return []
        body = "\n".join(self._data)
        self._data = []
        try:
            payload = json.loads(body, parse_constant=_reject_constant)
        except ValueError:
            logger.debug("Dropping undecodable SSE frame", extra={"frame": body[:200]})
            return []
        if not isinstance(payload, dict):
            return []
        return [payload]
