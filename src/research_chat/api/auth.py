"""Session resolution against the hosted auth provider."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from research_chat.agent.providers import JsonApiClient
from research_chat.errors import UpstreamError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class User:
    id: str
    email: str | None = None


class SessionResolver(Protocol):
    async def get_current_user(self, token: str | None) -> User | None: ...


class SupabaseSessionResolver(JsonApiClient):
    """Resolves a bearer token to a user via ``GET /auth/v1/user``."""

    service = "Supabase"

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(base_url, headers={"apikey": anon_key}, http_client=http_client, timeout=10.0)

    async def get_current_user(self, token: str | None) -> User | None:
        if not token:
            return None
        try:
            payload = await self._request(
                "GET", "/auth/v1/user", headers={"Authorization": f"Bearer {token}"}
            )
        except UpstreamError as exc:
            logger.info("Session rejected", extra={"error": str(exc)})
            return None
        if not isinstance(payload, dict) or not payload.get("id"):
            return None
        return User(id=str(payload["id"]), email=payload.get("email"))


def bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
