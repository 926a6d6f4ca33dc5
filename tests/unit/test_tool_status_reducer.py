import itertools

from research_chat.streaming.codec import iter_sse_events
from research_chat.streaming.reducer import (
    INITIAL_STATE,
    ActiveToolSelection,
    ToolStatusTracker,
    reduce_tool_status,
)


def _ids():
    counter = itertools.count(1)
    return lambda: f"id-{next(counter)}"


def _clock() -> str:
    return "2024-01-01T00:00:00+00:00"


def _reduce(state, event):
    return reduce_tool_status(state, event, new_id=_ids(), now=_clock)


def test_tool_status_event_starts_activity_log() -> None:
    event = {"type": "tool-status", "content": {"tool": "search", "status": "started", "message": "Running search"}}

    state = _reduce(INITIAL_STATE, event)

    assert state.status == "started"
    assert state.current_tool == "search"
    assert state.message == "Running search"
    assert len(state.activities) == 1
    assert state.activities[0].id == "id-1"
    assert state.activities[0].timestamp == "2024-01-01T00:00:00+00:00"
    assert INITIAL_STATE.activities == ()


def test_reducer_is_deterministic_with_injected_id_and_clock() -> None:
    event = {"type": "tool-status", "content": {"tool": "scrape", "status": "started", "message": "m"}}

    assert _reduce(INITIAL_STATE, event) == _reduce(INITIAL_STATE, event)


def test_incomplete_or_unknown_events_leave_state_unchanged() -> None:
    started = _reduce(
        INITIAL_STATE,
        {"type": "tool-status", "content": {"tool": "search", "status": "started", "message": "go"}},
    )

    for event in (
        {"type": "tool-status", "content": {"tool": "search", "status": "started"}},
        {"type": "activity-delta", "content": {"status": "pending"}},
        {"type": "source-delta", "content": {"message": "no url", "metadata": {}}},
        {"type": "chat-status", "content": {"status": "started"}},
        {"type": "mystery", "content": {"anything": True}},
        {"type": ["finish"], "content": {}},
        {"type": "activity-delta", "content": {"status": "pending", "message": "x", "progress": float("inf")}},
        {"type": "activity-delta", "content": {"status": "pending", "message": "x", "progress": float("nan")}},
        {"type": "activity-delta", "content": {"status": "pending", "message": "x", "progress": "50"}},
        {"type": "text", "content": "not a mapping"},
        "not an event",
        None,
    ):
        assert _reduce(started, event) is started


def test_non_finite_progress_from_the_wire_is_ignored() -> None:
    lines = [
        'data: {"type":"activity-delta","content":{"status":"pending","message":"x","progress":Infinity}}',
        "",
        'data: {"type":"activity-delta","content":{"status":"pending","message":"y","progress":40}}',
        "",
    ]

    state = INITIAL_STATE
    for event in iter_sse_events(lines):
        state = _reduce(state, event)

    assert state.progress == 40
    assert [activity.message for activity in state.activities] == ["y"]


def test_progress_stream_folds_to_completed_state() -> None:
    events = [
        {"type": "tool-status", "content": {"tool": "web_research", "status": "started", "message": "go"}},
        {"type": "progress-init", "content": {"message": "Starting", "progress": 0}},
        {"type": "activity-delta", "content": {"status": "pending", "message": "Searching", "progress": 25}},
        {
            "type": "source-delta",
            "content": {
                "message": "Found new source",
                "metadata": {"url": "https://a.example", "title": "A", "confidence": 0.9},
            },
        },
        {"type": "activity-delta", "content": {"status": "pending", "message": "Extracting", "progress": 50}},
        {"type": "finish", "content": {"status": "complete", "message": "Done", "progress": 100}},
    ]

    state = INITIAL_STATE
    for event in events:
        state = _reduce(state, event)

    assert state.status == "completed"
    assert state.terminal
    assert state.progress == 100
    assert state.message == "Done"
    assert [source.url for source in state.sources] == ["https://a.example"]
    assert [activity.message for activity in state.activities] == ["go", "Searching", "Extracting", "Done"]
    assert all(activity.tool == "web_research" for activity in state.activities)


def test_activity_progress_is_monotonic_and_capped() -> None:
    state = _reduce(INITIAL_STATE, {"type": "activity-delta", "content": {"status": "pending", "message": "a", "progress": 60}})
    state = _reduce(state, {"type": "activity-delta", "content": {"status": "pending", "message": "b", "progress": 10}})
    assert state.progress == 60

    state = _reduce(state, {"type": "activity-delta", "content": {"status": "pending", "message": "c", "progress": 250}})
    assert state.progress == 100
    assert state.activities[0].tool == "unknown"


def test_error_delta_marks_state_as_error() -> None:
    state = _reduce(
        INITIAL_STATE,
        {"type": "activity-delta", "content": {"status": "error", "message": "Error: provider down"}},
    )

    assert state.status == "error"
    assert state.terminal
    assert state.message == "Error: provider down"


def test_chat_status_completed_uses_default_message() -> None:
    state = _reduce(INITIAL_STATE, {"type": "chat-status", "content": {"status": "completed"}})

    assert state.status == "completed"
    assert state.message == "Completed"


def test_tracker_observe_applies_only_latest_event_once() -> None:
    tracker = ToolStatusTracker(new_id=_ids(), now=_clock)
    first = {"type": "tool-status", "content": {"tool": "search", "status": "started", "message": "one"}}
    second = {"type": "tool-status", "content": {"tool": "scrape", "status": "started", "message": "two"}}
    third = {"type": "tool-status", "content": {"tool": "extract", "status": "completed", "message": "three"}}

    tracker.observe([first])
    tracker.observe([first])
    tracker.observe([first, second, third])

    assert [activity.message for activity in tracker.state.activities] == ["one", "three"]
    assert tracker.state.current_tool == "extract"

    tracker.reset()
    assert tracker.state == INITIAL_STATE
    assert tracker.observe([]) == INITIAL_STATE


def test_active_tool_selection_is_scoped_to_instance() -> None:
    left = ActiveToolSelection()
    right = ActiveToolSelection()

    left.select("call-1")

    assert left.active == "call-1"
    assert right.active is None
    left.clear()
    assert left.active is None
