"""Hosted document parsing (OCR) through the LlamaParse job API."""

from __future__ import annotations

import logging
import mimetypes

import httpx

from research_chat.agent.polling import poll_job
from research_chat.agent.providers import JsonApiClient
from research_chat.config import PollingConfig
from research_chat.errors import UpstreamError

logger = logging.getLogger(__name__)

LLAMA_PARSE_BASE_URL = "https://api.cloud.llamaindex.ai/api/parsing"


class LlamaParseClient(JsonApiClient):
    """Uploads a file, polls the parsing job and fetches its markdown."""

    service = "LlamaParse"

    def __init__(
        self,
        api_key: str | None,
        *,
        base_url: str = LLAMA_PARSE_BASE_URL,
        http_client: httpx.AsyncClient | None = None,
        polling: PollingConfig | None = None,
    ) -> None:
        super().__init__(
            base_url,
            headers={"Authorization": f"Bearer {api_key}", "accept": "application/json"},
            http_client=http_client,
        )
        self._configured = bool(api_key)
        self._polling = polling or PollingConfig()

    async def parse(self, filename: str, content: bytes, content_type: str | None = None) -> str:
        if not self._configured:
            raise UpstreamError("LLAMA_CLOUD_API_KEY is not configured")

        content_type = content_type or mimetypes.guess_type(filename)[0] or "application/octet-stream"
        upload = await self._request(
            "POST", "/upload", files={"file": (filename, content, content_type)}
        )
        job_id = upload.get("id") if isinstance(upload, dict) else None
        if not job_id:
            raise UpstreamError(f"Upload of {filename} returned no job id")
        logger.info("Parsing job started", extra={"job_id": job_id, "document": filename})

        async def _check() -> str:
            status = await self._request("GET", f"/job/{job_id}")
            return str(status.get("status", ""))

        await poll_job(_check, job=filename, config=self._polling)
        result = await self._request("GET", f"/job/{job_id}/result/markdown")
        return str(result.get("markdown") or "")
