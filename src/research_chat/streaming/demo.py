"""Reference multi-phase progress flow served by the tool-status endpoint."""

from __future__ import annotations

import asyncio
from typing import Any

from research_chat.streaming.channel import ProgressTracker

# Phase weights of the reference flow; source discovery carries no percentage.
SEARCH_PROGRESS = 25
EXTRACT_PROGRESS = 50
PROCESS_PROGRESS = 75


async def run_demo_progress(
    tracker: ProgressTracker,
    params: dict[str, Any] | None = None,
    *,
    delay: float = 1.0,
) -> None:
    params = params or {}
    tracker.start("Starting tool execution")

    await asyncio.sleep(delay)
    tracker.activity(
        "Searching for relevant information",
        SEARCH_PROGRESS,
        metadata={"phase": "search", "query": params.get("query")},
    )

    await asyncio.sleep(delay)
    tracker.activity(
        "Extracting data from sources",
        EXTRACT_PROGRESS,
        metadata={"phase": "extract", "urls": ["example.com"]},
    )

    tracker.source("https://example.com", "Example Source", 0.8)

    await asyncio.sleep(delay)
    tracker.activity(
        "Processing extracted data",
        PROCESS_PROGRESS,
        metadata={"phase": "process"},
    )

    tracker.finish(
        "Tool execution completed successfully",
        metadata={"summary": "Task completed successfully"},
    )
