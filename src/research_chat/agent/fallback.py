"""Deterministic fallback agent when no chat model is configured."""

from __future__ import annotations

from typing import Any

from research_chat.agent.planner import finish_turn, run_tool_call, start_turn
from research_chat.agent.registry import ToolRegistry
from research_chat.agent.wrapper import is_error_output
from research_chat.store.chats import ChatStore
from research_chat.streaming.channel import EventChannel

NO_EVIDENCE_ANSWER = "No verifiable evidence was found in the indexed documents."
NO_MODEL_ANSWER = (
    "No language model is configured. Choose a document workspace to search "
    "your uploaded files instead."
)


class DeterministicAgent:
    """Answers from workspace search evidence without a model.

    Keeps the same streaming contract as ``ChatAgent`` so local and offline
    environments exercise the same client path.
    """

    def __init__(self, *, tool_registry: ToolRegistry, chat_store: ChatStore, top_k: int = 3) -> None:
        self.tool_registry = tool_registry
        self.chat_store = chat_store
        self.top_k = top_k

    async def run(
        self,
        channel: EventChannel,
        *,
        user_id: str,
        chat_id: str,
        message: str,
        workspace: str | None = None,
    ) -> None:
        history = await start_turn(self.chat_store, user_id=user_id, chat_id=chat_id, message=message)

        transcript: list[dict[str, Any]] = []
        if workspace:
            args = {"query": message, "workspace": workspace, "top_k": self.top_k}
            output = await run_tool_call(
                self.tool_registry, channel, "vector_search", args, user_id=user_id
            )
            transcript.append({"role": "tool", "name": "vector_search", "args": args, "content": output})
            answer = _build_answer(output)
        else:
            answer = NO_MODEL_ANSWER

        await finish_turn(
            self.chat_store,
            channel,
            user_id=user_id,
            chat_id=chat_id,
            history=history,
            message=message,
            transcript=transcript,
            answer=answer,
        )


def _build_answer(output: Any) -> str:
    if is_error_output(output):
        return f"Document search failed: {output['error']}"
    results = output.get("results") if isinstance(output, dict) else None
    if not results:
        return NO_EVIDENCE_ANSWER

    lines: list[str] = []
    for idx, result in enumerate(results, start=1):
        snippet = _truncate(" ".join(str(result.get("content", "")).split()), 220)
        citation = f"{result.get('filename') or result.get('document_id')}#{result.get('chunk_index')}"
        lines.append(f"{idx}. {snippet} [{citation}]")
    return "\n".join(lines)


def _truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."
