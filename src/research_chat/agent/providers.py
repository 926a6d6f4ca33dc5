"""HTTP clients for the third-party data providers used by tools."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from research_chat.agent.polling import poll_job
from research_chat.config import PollingConfig
from research_chat.errors import UpstreamError

logger = logging.getLogger(__name__)

FIRECRAWL_BASE_URL = "https://api.firecrawl.dev/v1"
POLYGON_BASE_URL = "https://api.polygon.io"
DEFAULT_TIMEOUT = 60.0


class JsonApiClient:
    """Shared request/response handling for JSON-over-HTTP providers.

    Transport failures and non-2xx answers are raised as ``UpstreamError``
    with the provider's own message when the body carries one.
    """

    service = "API"

    def __init__(
        self,
        base_url: str,
        *,
        headers: dict[str, str] | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = headers or {}
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self._base_url}/{path.lstrip('/')}"
        headers = {**self._headers, **kwargs.pop("headers", {})}
        try:
            response = await self._client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning(
                "Provider request failed",
                extra={"service": self.service, "url": url, "error": str(exc)},
            )
            raise UpstreamError(f"{self.service} request failed: {exc}") from exc

        payload = _decode_json(response)
        if response.is_error:
            message = _error_message(payload) or f"HTTP {response.status_code}"
            logger.warning(
                "Provider returned an error",
                extra={"service": self.service, "status_code": response.status_code},
            )
            raise UpstreamError(f"{self.service} error: {message}")
        return payload


class FirecrawlClient(JsonApiClient):
    """Search, scrape and extract through the Firecrawl v1 API."""

    service = "Firecrawl"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = FIRECRAWL_BASE_URL,
        http_client: httpx.AsyncClient | None = None,
        polling: PollingConfig | None = None,
    ) -> None:
        super().__init__(
            base_url,
            headers={"Authorization": f"Bearer {api_key}"},
            http_client=http_client,
        )
        self._polling = polling or PollingConfig()

    async def search(self, query: str, *, limit: int = 5) -> dict[str, Any]:
        return await self._request("POST", "/search", json={"query": query, "limit": limit})

    async def scrape(self, url: str) -> dict[str, Any]:
        return await self._request("POST", "/scrape", json={"url": url, "formats": ["markdown"]})

    async def extract(self, urls: list[str], prompt: str) -> dict[str, Any]:
        """Start an extract job and poll it to completion.

        Returns the start payload unchanged when the job was not accepted,
        otherwise the final job payload.
        """
        started = await self._request("POST", "/extract", json={"urls": urls, "prompt": prompt})
        if not started.get("success") or not started.get("id"):
            return started
        if started.get("status") == "completed":
            return started

        job_id = started["id"]
        latest: dict[str, Any] = {}

        async def _check() -> str:
            nonlocal latest
            latest = await self._request("GET", f"/extract/{job_id}")
            return str(latest.get("status", "processing"))

        await poll_job(_check, job=f"extract {job_id}", config=self._polling)
        return latest


class PolygonClient(JsonApiClient):
    """Market reference data from Polygon.io."""

    service = "Polygon"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = POLYGON_BASE_URL,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(base_url, http_client=http_client)
        self._api_key = api_key

    async def ticker_news(self, ticker: str, *, limit: int = 10) -> dict[str, Any]:
        return await self._request(
            "GET",
            "/v2/reference/news",
            params={
                "ticker": ticker,
                "order": "desc",
                "limit": limit,
                "sort": "published_utc",
                "apiKey": self._api_key,
            },
        )


def _decode_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {}


def _error_message(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    for key in ("error", "message", "detail"):
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return None
