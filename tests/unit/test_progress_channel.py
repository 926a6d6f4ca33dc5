import asyncio

import pytest

from research_chat.errors import ChannelClosedError, EventSequenceError
from research_chat.streaming.channel import EventChannel, ProgressTracker, stream_events
from research_chat.streaming.codec import iter_sse_events
from research_chat.streaming.demo import run_demo_progress
from research_chat.streaming.events import TextContent, TextEvent


async def _collect(stream) -> list[dict]:
    frames = [frame async for frame in stream]
    return list(iter_sse_events("".join(frames).splitlines()))


def test_tracker_enforces_start_before_deltas() -> None:
    tracker = ProgressTracker(operation="lookup")

    with pytest.raises(EventSequenceError):
        tracker.activity("too early", 10)
    with pytest.raises(EventSequenceError):
        tracker.finish("too early")


def test_tracker_rejects_second_start_and_events_after_finish() -> None:
    tracker = ProgressTracker()
    tracker.start("go")

    with pytest.raises(EventSequenceError):
        tracker.start("again")

    tracker.finish("done")
    with pytest.raises(EventSequenceError):
        tracker.activity("late", 100)
    with pytest.raises(EventSequenceError):
        tracker.source("https://late.example", "Late", 0.5)
    with pytest.raises(EventSequenceError):
        tracker.finish("twice")


def test_tracker_progress_never_decreases() -> None:
    tracker = ProgressTracker()
    tracker.start("go")
    tracker.activity("a", 30)
    tracker.activity("b", 30)

    with pytest.raises(EventSequenceError):
        tracker.activity("c", 20)
    assert tracker.progress == 30


def test_fail_only_closes_open_operations() -> None:
    idle = ProgressTracker()
    idle.fail("nothing started")
    assert idle.events == []

    running = ProgressTracker()
    running.start("go")
    running.fail("broke")
    running.fail("broke again")

    assert [event.type for event in running.events] == ["progress-init", "finish"]
    assert running.events[-1].content.status == "error"
    assert running.progress == 100


@pytest.mark.asyncio
async def test_channel_preserves_write_order_and_rejects_writes_after_close() -> None:
    channel = EventChannel()
    for text in ("one", "two", "three"):
        channel.write(TextEvent(content=TextContent(text=text)))
    channel.close()

    received = [event.content.text async for event in channel]

    assert received == ["one", "two", "three"]
    assert channel.written == 3
    with pytest.raises(ChannelClosedError):
        channel.write(TextEvent(content=TextContent(text="four")))


@pytest.mark.asyncio
async def test_demo_flow_emits_expected_sequence() -> None:
    async def _produce(channel: EventChannel) -> None:
        await run_demo_progress(ProgressTracker(channel), {"query": "gpu"}, delay=0)

    events = await _collect(stream_events(_produce))

    assert [event["type"] for event in events] == [
        "progress-init",
        "activity-delta",
        "activity-delta",
        "source-delta",
        "activity-delta",
        "finish",
    ]
    progress = [event["content"]["progress"] for event in events if "progress" in event["content"]]
    assert progress == [0, 25, 50, 75, 100]
    assert events[1]["content"]["metadata"] == {"phase": "search", "query": "gpu"}
    assert events[3]["content"]["metadata"] == {
        "url": "https://example.com",
        "title": "Example Source",
        "confidence": 0.8,
    }
    assert events[-1]["content"]["status"] == "complete"


@pytest.mark.asyncio
async def test_stream_failure_appends_error_activity() -> None:
    async def _produce(channel: EventChannel) -> None:
        tracker = ProgressTracker(channel)
        tracker.start("go")
        raise RuntimeError("provider down")

    events = await _collect(stream_events(_produce))

    assert [event["type"] for event in events] == ["progress-init", "activity-delta"]
    assert events[-1]["content"]["status"] == "error"
    assert events[-1]["content"]["message"] == "Error: provider down"


@pytest.mark.asyncio
async def test_stream_timeout_ends_with_error_activity() -> None:
    async def _produce(channel: EventChannel) -> None:
        ProgressTracker(channel).start("go")
        await asyncio.sleep(5)

    events = await _collect(stream_events(_produce, timeout=0.05))

    assert events[0]["type"] == "progress-init"
    assert events[-1]["type"] == "activity-delta"
    assert events[-1]["content"]["status"] == "error"
    assert "timed out" in events[-1]["content"]["message"]
