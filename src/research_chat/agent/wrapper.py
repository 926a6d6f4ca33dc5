"""Execution wrapper between the model loop and each tool."""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Callable, Mapping
from time import perf_counter
from typing import Any

from research_chat.streaming.channel import EventChannel
from research_chat.types import ToolFailure, ToolSuccess, ToolTrace

logger = logging.getLogger(__name__)

ToolObserver = Callable[[ToolTrace], None]


class ExecutionWrapper:
    """Guarantees the model loop always receives a value, never an exception.

    A successful result is unwrapped to its ``data``; any failure, returned or
    raised, becomes ``{"error": <message>}`` so the model can read it and
    carry on with the conversation.
    """

    def __init__(
        self,
        tool: Any,
        *,
        channel: EventChannel | None = None,
        observer: ToolObserver | None = None,
    ) -> None:
        self.tool = tool
        self.name = str(getattr(tool, "name", "unknown"))
        self._channel = channel
        self._observer = observer

    @property
    def fallback_error(self) -> str:
        return f"Failed to execute {self.name} tool"

    async def __call__(self, **params: Any) -> Any:
        return await self.invoke(params)

    async def invoke(self, params: Mapping[str, Any] | None = None) -> Any:
        payload = dict(params or {})
        start = perf_counter()
        try:
            if self._channel is None:
                result = self.tool.execute(payload)
            else:
                result = self.tool.execute(payload, channel=self._channel)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            logger.error(
                "Tool execution raised",
                extra={"tool": self.name, "error": str(exc), "error_type": type(exc).__name__},
            )
            output: Any = {"error": str(exc) or self.fallback_error}
        else:
            output = self._unwrap(result)

        self._notify(payload, output, start)
        return output

    def as_coroutine(self) -> Callable[..., Any]:
        async def _callable(**kwargs: Any) -> Any:
            return await self.invoke(kwargs)

        return _callable

    def _unwrap(self, result: Any) -> Any:
        if isinstance(result, ToolSuccess):
            return result.data
        if isinstance(result, ToolFailure):
            return self._failure(result.error)
        if isinstance(result, Mapping) and "success" in result:
            if result["success"]:
                return result.get("data")
            return self._failure(result.get("error"))

        logger.error(
            "Tool returned an invalid result",
            extra={"tool": self.name, "result_type": type(result).__name__},
        )
        return {"error": self.fallback_error}

    def _failure(self, error: Any) -> dict[str, str]:
        message = str(error) if error else self.fallback_error
        logger.warning("Tool execution failed", extra={"tool": self.name, "error": message})
        return {"error": message}

    def _notify(self, payload: dict[str, Any], output: Any, start: float) -> None:
        if self._observer is None:
            return
        self._observer(
            ToolTrace(
                name=self.name,
                input_payload=payload,
                output_preview=preview(output),
                latency_ms=(perf_counter() - start) * 1000.0,
                success=not is_error_output(output),
            )
        )


def is_error_output(output: Any) -> bool:
    return isinstance(output, dict) and set(output) == {"error"}


def preview(output: Any, limit: int = 320) -> str:
    if isinstance(output, str):
        text = output
    else:
        text = json.dumps(output, ensure_ascii=False, default=str)
    return text[:limit]
