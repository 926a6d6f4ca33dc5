"""LangChain tool-calling chat agent that streams its turn as events."""

from __future__ import annotations

import json
import logging
from typing import Any

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage

from research_chat.agent.registry import ToolRegistry
from research_chat.agent.wrapper import is_error_output
from research_chat.config import AgentConfig
from research_chat.store.chats import ChatStore
from research_chat.streaming.channel import EventChannel
from research_chat.streaming.events import (
    ChatStatusContent,
    ChatStatusEvent,
    TextContent,
    TextEvent,
    ToolStatusContent,
    ToolStatusEvent,
)

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = """
You are a research assistant with access to web, market-data and document tools.

Rules:
1) Use `search` to find pages, then `extract` or `scrape` to read them.
2) Use `company_news` for recent news about a listed company.
3) Use `vector_search` for questions about the user's uploaded documents.
4) When a tool returns an error, explain it or try another tool; never invent data.
5) Cite the URLs or documents your answer relies on.
""".strip()

_STEP_LIMIT_ANSWER = "I stopped after reaching the tool-call limit for this turn."


class ChatAgent:
    """Runs one chat turn: model -> sequential tool calls -> final answer.

    Each tool call is bracketed by ``tool-status`` events on the channel, the
    final answer is written as a ``text`` event and the turn ends with
    ``chat-status`` completed. Tool failures come back from the execution
    wrapper as ``{"error": ...}`` and are handed to the model as text.
    """

    def __init__(
        self,
        *,
        llm: Any,
        tool_registry: ToolRegistry,
        chat_store: ChatStore,
        config: AgentConfig | None = None,
    ) -> None:
        self.llm = llm
        self.tool_registry = tool_registry
        self.chat_store = chat_store
        self.config = config or AgentConfig()

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

        tools = self.tool_registry.tools_config(channel=channel, user_id=user_id)
        model = self.llm.bind_tools(list(tools.values())) if tools else self.llm
        messages: list[BaseMessage] = [SystemMessage(content=_system_prompt(workspace))]
        messages.extend(to_langchain_messages(history))
        messages.append(HumanMessage(content=message))

        transcript: list[dict[str, Any]] = []
        answer = _STEP_LIMIT_ANSWER
        for _ in range(self.config.max_iterations):
            response = await model.ainvoke(messages)
            messages.append(response)
            tool_calls = getattr(response, "tool_calls", None) or []
            if not tool_calls:
                answer = message_text(response)
                break

            for call in tool_calls:
                name = str(call.get("name", ""))
                args = call.get("args") or {}
                output = await run_tool_call(self.tool_registry, channel, name, args, user_id=user_id)
                transcript.append({"role": "tool", "name": name, "args": args, "content": output})
                messages.append(
                    ToolMessage(
                        content=tool_output_text(output),
                        tool_call_id=str(call.get("id") or name),
                        name=name,
                    )
                )

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


async def start_turn(store: ChatStore, *, user_id: str, chat_id: str, message: str) -> list[dict[str, Any]]:
    """Load prior messages; the first message of a chat also names it."""
    history = await store.load_chat(user_id, chat_id)
    if not history:
        try:
            await store.update_title(user_id, chat_id, message)
        except Exception as exc:
            logger.warning("Failed to update chat title", extra={"chat_id": chat_id, "error": str(exc)})
    return history


async def run_tool_call(
    registry: ToolRegistry,
    channel: EventChannel,
    name: str,
    args: dict[str, Any],
    *,
    user_id: str | None = None,
) -> Any:
    channel.write(
        ToolStatusEvent(
            content=ToolStatusContent(
                tool=name or "unknown",
                status="started",
                message=f"Running {name}",
                metadata={"params": args},
            )
        )
    )
    try:
        output = await registry.execute(name, args, channel=channel, user_id=user_id)
    except KeyError:
        logger.warning("Model requested an unknown tool", extra={"tool": name})
        output = {"error": f"Unknown tool: {name}"}

    if is_error_output(output):
        status, text = "error", str(output["error"])
    else:
        status, text = "completed", f"{name} completed"
    channel.write(ToolStatusEvent(content=ToolStatusContent(tool=name or "unknown", status=status, message=text)))
    return output


async def finish_turn(
    store: ChatStore,
    channel: EventChannel,
    *,
    user_id: str,
    chat_id: str,
    history: list[dict[str, Any]],
    message: str,
    transcript: list[dict[str, Any]],
    answer: str,
) -> None:
    channel.write(TextEvent(content=TextContent(text=answer)))
    channel.write(
        ChatStatusEvent(
            content=ChatStatusContent(
                status="completed",
                message="Completed",
                metadata={"tool_calls": len(transcript)},
            )
        )
    )

    updated = [
        *history,
        {"role": "user", "content": message},
        *transcript,
        {"role": "assistant", "content": answer},
    ]
    try:
        await store.save_chat(user_id, chat_id, updated)
    except Exception as exc:
        logger.error("Error saving chat", extra={"chat_id": chat_id, "error": str(exc)})


def to_langchain_messages(history: list[dict[str, Any]]) -> list[BaseMessage]:
    converted: list[BaseMessage] = []
    for item in history:
        role = item.get("role")
        content = str(item.get("content", ""))
        if role == "user":
            converted.append(HumanMessage(content=content))
        elif role == "assistant":
            converted.append(AIMessage(content=content))
    return converted


def message_text(message: Any) -> str:
    content = getattr(message, "content", message)
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict):
                if "text" in item:
                    parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return " ".join(parts).strip()
    return str(content)


def tool_output_text(output: Any) -> str:
    if isinstance(output, str):
        return output
    return json.dumps(output, ensure_ascii=False, default=str)


def _system_prompt(workspace: str | None) -> str:
    if not workspace:
        return _SYSTEM_PROMPT
    return f"{_SYSTEM_PROMPT}\n\nThe user's active document workspace is `{workspace}`."
