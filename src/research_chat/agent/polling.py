"""Bounded fixed-interval polling of long-running external jobs."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from research_chat.config import PollingConfig
from research_chat.errors import JobFailedError, PollingTimeoutError, UpstreamError

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = frozenset({"SUCCESS", "COMPLETED"})
FAILED_STATUSES = frozenset({"FAILED", "ERROR", "CANCELLED"})
PENDING_STATUSES = frozenset({"PENDING", "PROCESSING"})

Sleep = Callable[[float], Awaitable[None]]


async def poll_job(
    check: Callable[[], Awaitable[str]],
    *,
    job: str,
    config: PollingConfig | None = None,
    sleep: Sleep = asyncio.sleep,
) -> str:
    """Call ``check`` until the job leaves its pending states.

    Returns the terminal success status. Raises ``JobFailedError`` when the
    job reports failure, ``UpstreamError`` for an unrecognised status and
    ``PollingTimeoutError`` once ``max_attempts`` checks came back pending.
    """
    config = config or PollingConfig()
    for attempt in range(1, config.max_attempts + 1):
        status = await check()
        normalized = str(status).upper()
        logger.debug("Polled job status", extra={"job": job, "status": status, "attempt": attempt})

        if normalized in SUCCESS_STATUSES:
            return status
        if normalized in FAILED_STATUSES:
            raise JobFailedError(f"Job failed for {job}")
        if normalized not in PENDING_STATUSES:
            raise UpstreamError(f"Unknown status: {status}")
        if attempt < config.max_attempts:
            await sleep(config.interval_seconds)

    logger.warning("Job polling exhausted", extra={"job": job, "attempts": config.max_attempts})
    raise PollingTimeoutError(job, config.max_attempts)
