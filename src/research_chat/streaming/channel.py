"""Single-writer, ordered event channel and progress tracking."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from pydantic import BaseModel

from research_chat.errors import ChannelClosedError, EventSequenceError
from research_chat.streaming.codec import encode_sse
from research_chat.streaming.events import (
    ActivityDeltaContent,
    ActivityDeltaEvent,
    FinishContent,
    FinishEvent,
    ProgressEvent,
    ProgressInitContent,
    ProgressInitEvent,
    SourceDeltaContent,
    SourceDeltaEvent,
    SourceMetadata,
    stream_failure_event,
)

logger = logging.getLogger(__name__)

Producer = Callable[["EventChannel"], Awaitable[None]]


class EventChannel:
    """Append-only queue of events read by exactly one consumer.

    ``write`` never blocks and every write reaches the reader as its own item,
    so the transport can flush each event as soon as it is produced.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[BaseModel | None] = asyncio.Queue()
        self._closed = False
        self.written = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, event: BaseModel) -> None:
        if self._closed:
            raise ChannelClosedError("Cannot write to a closed event channel")
        self._queue.put_nowait(event)
        self.written += 1

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    def __aiter__(self) -> AsyncIterator[BaseModel]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[BaseModel]:
        while True:
            item = await self._queue.get()
            if item is None:
                return
            yield item


class ProgressTracker:
    """Emits the progress events of one long-running operation.

    Ordering rules: exactly one ``progress-init`` first, then any number of
    activity and source deltas with non-decreasing progress, then exactly one
    ``finish``. Breaking a rule raises ``EventSequenceError``. Without a
    channel the tracker only records events, which is how tools run outside
    a streamed request.
    """

    def __init__(self, channel: EventChannel | None = None, *, operation: str = "operation") -> None:
        self._channel = channel
        self.operation = operation
        self.events: list[ProgressEvent] = []
        self._progress = 0
        self._started = False
        self._finished = False

    @property
    def progress(self) -> int:
        return self._progress

    @property
    def started(self) -> bool:
        return self._started

    @property
    def finished(self) -> bool:
        return self._finished

    def start(self, message: str) -> None:
        if self._started:
            raise EventSequenceError(f"{self.operation} already started")
        self._started = True
        self._emit(ProgressInitEvent(content=ProgressInitContent(message=message)))

    def activity(
        self,
        message: str,
        progress: int,
        *,
        status: str = "pending",
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self._require_open()
        if progress < self._progress:
            raise EventSequenceError(
                f"{self.operation} progress moved backwards: {self._progress} -> {progress}"
            )
        event = ActivityDeltaEvent(
            content=ActivityDeltaContent(
                status=status, message=message, progress=progress, metadata=metadata
            )
        )
        self._progress = progress
        self._emit(event)

    def source(
        self,
        url: str,
        title: str,
        confidence: float,
        *,
        message: str = "Found new source",
    ) -> None:
        self._require_open()
        self._emit(
            SourceDeltaEvent(
                content=SourceDeltaContent(
                    message=message,
                    metadata=SourceMetadata(url=url, title=title, confidence=confidence),
                )
            )
        )

    def finish(
        self,
        message: str,
        *,
        status: str = "complete",
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self._require_open()
        event = FinishEvent(content=FinishContent(status=status, message=message, metadata=metadata))
        self._finished = True
        self._progress = 100
        self._emit(event)

    def fail(self, message: str, metadata: dict[str, Any] | None = None) -> None:
        """Close a started, unfinished operation with an error ``finish``."""
        if self._started and not self._finished:
            self.finish(message, status="error", metadata=metadata)

    def _require_open(self) -> None:
        if not self._started:
            raise EventSequenceError(f"{self.operation} has not started")
        if self._finished:
            raise EventSequenceError(f"{self.operation} already finished")

    def _emit(self, event: ProgressEvent) -> None:
        self.events.append(event)
        if self._channel is not None:
            self._channel.write(event)


async def stream_events(producer: Producer, *, timeout: float = 30.0) -> AsyncIterator[str]:
    """Run ``producer`` against a fresh channel and yield SSE frames as written.

    If the producer raises or exceeds ``timeout``, one final error
    ``activity-delta`` is emitted and the stream ends.
    """
    channel = EventChannel()

    async def _run() -> None:
        try:
            await asyncio.wait_for(producer(channel), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Event stream timed out", extra={"timeout_seconds": timeout})
            _write_failure(channel, f"Stream timed out after {timeout:g} seconds")
        except Exception as exc:
            logger.exception("Event production failed", extra={"error": str(exc)})
            _write_failure(channel, str(exc) or exc.__class__.__name__)
        finally:
            channel.close()

    task = asyncio.create_task(_run())
    try:
        async for event in channel:
            yield encode_sse(event)
        await task
    finally:
        if not task.done():
            task.cancel()


def _write_failure(channel: EventChannel, message: str) -> None:
    if not channel.closed:
        channel.write(stream_failure_event(message))
