import json

import httpx
import pytest

from research_chat.agent.providers import FirecrawlClient, PolygonClient
from research_chat.agent.registry import ToolRegistry
from research_chat.agent.tools import (
    CompanyNewsTool,
    ExtractTool,
    ScrapeTool,
    SearchTool,
    VectorSearchTool,
    WebResearchTool,
    favicon_url,
)
from research_chat.config import ChunkingConfig, PollingConfig
from research_chat.ingest.chunker import WordWindowChunker
from research_chat.ingest.embedder import HashingEmbedder
from research_chat.ingest.pipeline import IngestPipeline
from research_chat.retrieval.vector_store import InMemoryVectorStore
from research_chat.streaming.channel import EventChannel
from research_chat.types import ToolFailure, ToolSuccess

_FAST_POLLING = PollingConfig(max_attempts=5, interval_seconds=0.0)


def _firecrawl(handler) -> FirecrawlClient:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return FirecrawlClient("fc-key", http_client=client, polling=_FAST_POLLING)


def _polygon(handler) -> PolygonClient:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PolygonClient("pg-key", http_client=client)


async def _drain(channel: EventChannel) -> list:
    channel.close()
    return [event async for event in channel]


_SEARCH_DATA = [
    {"url": "https://a.example/post", "title": "A", "description": "first"},
    {"url": "https://b.example/post", "title": "B", "description": "second"},
    {"url": "https://c.example/post", "title": "C", "description": "third"},
]


@pytest.mark.asyncio
async def test_search_adds_favicons_and_limits_results() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.url.path, json.loads(request.content), request.headers["authorization"]))
        return httpx.Response(200, json={"success": True, "data": _SEARCH_DATA})

    result = await SearchTool(_firecrawl(handler)).execute({"query": "gpu prices", "max_results": 2})

    assert isinstance(result, ToolSuccess)
    assert [item["url"] for item in result.data] == ["https://a.example/post", "https://b.example/post"]
    assert result.data[0]["favicon"] == "https://www.google.com/s2/favicons?domain=a.example&sz=32"
    assert seen == [("/v1/search", {"query": "gpu prices", "limit": 2}, "Bearer fc-key")]


@pytest.mark.asyncio
async def test_search_reports_unsuccessful_payload() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": False, "error": "quota exceeded"})

    result = await SearchTool(_firecrawl(handler)).execute({"query": "gpu"})

    assert result == ToolFailure("Search failed: quota exceeded")


@pytest.mark.asyncio
async def test_http_errors_become_failures_with_provider_message() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": "rate limited"})

    result = await SearchTool(_firecrawl(handler)).execute({"query": "gpu"})

    assert result == ToolFailure("Firecrawl error: rate limited")


@pytest.mark.asyncio
async def test_scrape_returns_markdown_or_hint() -> None:
    pages = iter(
        [
            {"success": True, "data": {"markdown": "# Title"}},
            {"success": True, "data": {}},
        ]
    )

    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content)["formats"] == ["markdown"]
        return httpx.Response(200, json=next(pages))

    tool = ScrapeTool(_firecrawl(handler))

    assert await tool.execute({"url": "https://a.example"}) == ToolSuccess("# Title")
    assert await tool.execute({"url": "https://a.example"}) == ToolSuccess(
        "Could not get the page content, try using search or extract"
    )


@pytest.mark.asyncio
async def test_extract_polls_job_until_completed() -> None:
    statuses = iter(["processing", "completed"])

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            assert request.url.path == "/v1/extract"
            return httpx.Response(200, json={"success": True, "id": "job-1", "status": "processing"})
        assert request.url.path == "/v1/extract/job-1"
        status = next(statuses)
        body = {"success": True, "status": status}
        if status == "completed":
            body["data"] = {"price": "$999"}
        return httpx.Response(200, json=body)

    result = await ExtractTool(_firecrawl(handler)).execute(
        {"urls": ["https://a.example"], "prompt": "What is the price?"}
    )

    assert result == ToolSuccess({"price": "$999"})


@pytest.mark.asyncio
async def test_extract_job_failure_is_reported() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, json={"success": True, "id": "job-2", "status": "processing"})
        return httpx.Response(200, json={"success": False, "status": "failed"})

    result = await ExtractTool(_firecrawl(handler)).execute({"urls": ["https://a.example"], "prompt": "p"})

    assert result == ToolFailure("Extraction failed: Job failed for extract job-2")


@pytest.mark.asyncio
async def test_company_news_normalizes_articles() -> None:
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured.update(dict(request.url.params))
        return httpx.Response(
            200,
            json={
                "status": "OK",
                "results": [
                    {
                        "id": "n1",
                        "title": "Chips rally",
                        "article_url": "https://news.example/1",
                        "publisher": {"name": "News", "homepage_url": "https://news.example"},
                        "tickers": ["NVDA"],
                    }
                ],
            },
        )

    result = await CompanyNewsTool(_polygon(handler)).execute({"ticker": "nvda"})

    assert captured["ticker"] == "NVDA"
    assert captured["apiKey"] == "pg-key"
    assert captured["sort"] == "published_utc"
    assert result.data["ticker"] == "NVDA"
    assert result.data["count"] == 1
    article = result.data["articles"][0]
    assert article["publisher"]["favicon_url"] == favicon_url("https://news.example")
    assert article["insights"] == []


@pytest.mark.asyncio
async def test_company_news_reports_non_ok_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": "NOT_AUTHORIZED"})

    result = await CompanyNewsTool(_polygon(handler)).execute({"ticker": "AAPL"})

    assert result == ToolFailure("Failed to retrieve news: NOT_AUTHORIZED")


@pytest.mark.asyncio
async def test_web_research_streams_progress_and_sources() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/search":
            return httpx.Response(200, json={"success": True, "data": _SEARCH_DATA[:2]})
        return httpx.Response(
            200,
            json={"success": True, "id": "job-3", "status": "completed", "data": {"answer": 42}},
        )

    channel = EventChannel()
    result = await WebResearchTool(_firecrawl(handler)).execute({"query": "meaning", "max_sources": 2}, channel=channel)
    events = await _drain(channel)

    assert result.data["findings"] == {"answer": 42}
    assert [source["url"] for source in result.data["sources"]] == [item["url"] for item in _SEARCH_DATA[:2]]
    assert [event.type for event in events] == [
        "progress-init",
        "activity-delta",
        "source-delta",
        "source-delta",
        "activity-delta",
        "activity-delta",
        "finish",
    ]
    assert [event.content.progress for event in events if event.type == "activity-delta"] == [25, 50, 75]
    assert events[2].content.metadata.confidence > events[3].content.metadata.confidence
    assert events[-1].content.status == "complete"


@pytest.mark.asyncio
async def test_web_research_without_sources_finishes_cleanly() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "data": []})

    channel = EventChannel()
    result = await WebResearchTool(_firecrawl(handler)).execute({"query": "nothing"}, channel=channel)
    events = await _drain(channel)

    assert result == ToolSuccess({"query": "nothing", "sources": [], "findings": None})
    assert events[-1].type == "finish"
    assert events[-1].content.message == "No sources found"


@pytest.mark.asyncio
async def test_web_research_upstream_error_closes_stream_with_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"message": "maintenance"})

    channel = EventChannel()
    result = await WebResearchTool(_firecrawl(handler)).execute({"query": "q"}, channel=channel)
    events = await _drain(channel)

    assert result == ToolFailure("Research failed: Firecrawl error: maintenance")
    assert events[-1].type == "finish"
    assert events[-1].content.status == "error"


@pytest.mark.asyncio
async def test_vector_search_is_scoped_to_workspace() -> None:
    embedder = HashingEmbedder()
    store = InMemoryVectorStore()
    pipeline = IngestPipeline(WordWindowChunker(ChunkingConfig()), embedder, store)
    await pipeline.ingest_text("alpha", "policy.txt", "Employees must encrypt customer data at rest.", user_id="u1")
    await pipeline.ingest_text("beta", "other.txt", "Employees must encrypt customer data at rest.", user_id="u1")

    result = await VectorSearchTool(embedder, store).bind_user("u1").execute(
        {"query": "encrypt customer data", "workspace": "alpha", "top_k": 5}
    )

    assert result.data["count"] == 1
    hit = result.data["results"][0]
    assert hit["filename"] == "policy.txt"
    assert hit["chunk_index"] == 0
    assert hit["similarity"] > 0.3


@pytest.mark.asyncio
async def test_vector_search_never_returns_another_users_documents() -> None:
    embedder = HashingEmbedder()
    store = InMemoryVectorStore()
    pipeline = IngestPipeline(WordWindowChunker(ChunkingConfig()), embedder, store)
    await pipeline.ingest_text("shared", "secret.txt", "alice salary is 9000", user_id="alice")
    registry = ToolRegistry([VectorSearchTool(embedder, store)])

    # A user id in the arguments is not part of the schema and cannot widen the scope.
    payload = {"query": "salary", "workspace": "shared", "user_id": "alice"}
    as_mallory = await registry.execute("vector_search", payload, user_id="mallory")
    as_alice = await registry.execute("vector_search", payload, user_id="alice")

    assert as_mallory["results"] == []
    assert [item["filename"] for item in as_alice["results"]] == ["secret.txt"]
    (descriptor,) = registry.descriptors()
    assert "user_id" not in descriptor.parameters["properties"]
