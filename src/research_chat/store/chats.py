"""Chat persistence keyed by user and chat id."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

TITLE_MAX_LENGTH = 80


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(slots=True)
class ChatRecord:
    id: str
    user_id: str
    title: str = "New chat"
    messages: list[dict[str, Any]] = field(default_factory=list)
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class ChatStore(Protocol):
    """Hosted chat/message store as seen by request handlers."""

    async def load_chat(self, user_id: str, chat_id: str) -> list[dict[str, Any]]: ...

    async def save_chat(self, user_id: str, chat_id: str, messages: list[dict[str, Any]]) -> None: ...

    async def update_title(self, user_id: str, chat_id: str, title: str) -> None: ...

    async def get_chat(self, user_id: str, chat_id: str) -> ChatRecord | None: ...

    async def list_chats(self, user_id: str) -> list[ChatRecord]: ...

    async def delete_chat(self, user_id: str, chat_id: str) -> bool: ...


class InMemoryChatStore:
    """Process-local ``ChatStore`` for development and tests."""

    def __init__(self) -> None:
        self._chats: dict[tuple[str, str], ChatRecord] = {}

    async def load_chat(self, user_id: str, chat_id: str) -> list[dict[str, Any]]:
        record = self._chats.get((user_id, chat_id))
        return list(record.messages) if record else []

    async def save_chat(self, user_id: str, chat_id: str, messages: list[dict[str, Any]]) -> None:
        record = self._ensure(user_id, chat_id)
        record.messages = list(messages)
        record.updated_at = _now()

    async def update_title(self, user_id: str, chat_id: str, title: str) -> None:
        record = self._ensure(user_id, chat_id)
        record.title = make_title(title)
        record.updated_at = _now()

    async def get_chat(self, user_id: str, chat_id: str) -> ChatRecord | None:
        return self._chats.get((user_id, chat_id))

    async def list_chats(self, user_id: str) -> list[ChatRecord]:
        records = [record for (owner, _), record in self._chats.items() if owner == user_id]
        return sorted(records, key=lambda record: record.updated_at, reverse=True)

    async def delete_chat(self, user_id: str, chat_id: str) -> bool:
        return self._chats.pop((user_id, chat_id), None) is not None

    def _ensure(self, user_id: str, chat_id: str) -> ChatRecord:
        key = (user_id, chat_id)
        if key not in self._chats:
            self._chats[key] = ChatRecord(id=chat_id, user_id=user_id)
        return self._chats[key]


def make_title(text: str) -> str:
    title = " ".join(text.split())
    if len(title) <= TITLE_MAX_LENGTH:
        return title or "New chat"
    return title[: TITLE_MAX_LENGTH - 3] + "..."
