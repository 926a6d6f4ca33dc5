import pytest

from research_chat.agent.polling import poll_job
from research_chat.config import PollingConfig
from research_chat.errors import JobFailedError, PollingTimeoutError, UpstreamError


class _Statuses:
    def __init__(self, *statuses: str) -> None:
        self._statuses = list(statuses)
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        return self._statuses.pop(0)


class _Sleeps:
    def __init__(self) -> None:
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.mark.asyncio
async def test_poll_returns_once_job_succeeds() -> None:
    check = _Statuses("PENDING", "processing", "SUCCESS")
    sleep = _Sleeps()

    status = await poll_job(check, job="doc.pdf", config=PollingConfig(interval_seconds=2.0), sleep=sleep)

    assert status == "SUCCESS"
    assert check.calls == 3
    assert sleep.delays == [2.0, 2.0]


@pytest.mark.asyncio
async def test_poll_raises_on_failed_job() -> None:
    with pytest.raises(JobFailedError, match="Job failed for doc.pdf"):
        await poll_job(_Statuses("PENDING", "FAILED"), job="doc.pdf", sleep=_Sleeps())


@pytest.mark.asyncio
async def test_poll_rejects_unknown_status() -> None:
    with pytest.raises(UpstreamError, match="Unknown status: WAT"):
        await poll_job(_Statuses("WAT"), job="doc.pdf", sleep=_Sleeps())


@pytest.mark.asyncio
async def test_poll_times_out_after_max_attempts_without_trailing_sleep() -> None:
    check = _Statuses(*["PENDING"] * 3)
    sleep = _Sleeps()

    with pytest.raises(PollingTimeoutError) as excinfo:
        await poll_job(check, job="doc.pdf", config=PollingConfig(max_attempts=3, interval_seconds=0.5), sleep=sleep)

    assert str(excinfo.value) == "Polling timeout for doc.pdf after 3 attempts"
    assert excinfo.value.attempts == 3
    assert isinstance(excinfo.value, UpstreamError)
    assert check.calls == 3
    assert sleep.delays == [0.5, 0.5]
