"""Exception hierarchy shared across the service."""

from __future__ import annotations


class ResearchChatError(Exception):
    """Base class for errors raised by this package."""


class ToolInputError(ResearchChatError, ValueError):
    """A tool received an empty or otherwise unusable argument."""


class UpstreamError(ResearchChatError):
    """A third-party API failed or answered with an unexpected payload."""


class JobFailedError(UpstreamError):
    """A long-running external job reported failure."""


class PollingTimeoutError(UpstreamError):
    """A long-running external job did not finish within the polling budget."""

    def __init__(self, job: str, attempts: int) -> None:
        super().__init__(f"Polling timeout for {job} after {attempts} attempts")
        self.job = job
        self.attempts = attempts


class EventSequenceError(ResearchChatError):
    """Progress events were produced out of order for one operation."""


class ChannelClosedError(ResearchChatError):
    """An event was written to a channel that has already been closed."""


class UnauthorizedError(ResearchChatError):
    """The request carries no valid session."""
