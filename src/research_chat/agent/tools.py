"""Built-in tool implementations."""

from __future__ import annotations

from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, Field

from research_chat.agent.providers import FirecrawlClient, PolygonClient
from research_chat.agent.registry import Tool, ToolRegistry, require_items, require_text
from research_chat.ingest.embedder import Embedder
from research_chat.retrieval.vector_store import VectorStore
from research_chat.streaming.channel import ProgressTracker
from research_chat.types import ToolFailure, ToolResult, ToolSuccess


class SearchParams(BaseModel):
    query: str = Field(description="Search query to find relevant web pages")
    max_results: int = Field(
        default=5, ge=1, le=20, description="Maximum number of results to return (default 5)"
    )


class ScrapeParams(BaseModel):
    url: str = Field(description="URL to scrape")


class ExtractParams(BaseModel):
    urls: list[str] = Field(description="Array of URLs to extract data from")
    prompt: str = Field(description="Description of what data to extract")


class CompanyNewsParams(BaseModel):
    ticker: str = Field(description="Stock ticker symbol (e.g., NVDA, AAPL)")


class VectorSearchParams(BaseModel):
    query: str = Field(description="The search query to find similar documents")
    workspace: str = Field(description="Workspace to scope the search")
    top_k: int = Field(default=20, ge=1, le=100, description="Number of similar documents to return")


class WebResearchParams(BaseModel):
    query: str = Field(description="Research question to investigate on the web")
    max_sources: int = Field(default=3, ge=1, le=10, description="How many sources to read")


class SearchTool(Tool):
    name = "search"
    description = (
        "Search for web pages. Normally you should call the extract tool after this one "
        "to get a specific data point if search doesn't return the exact data you need."
    )
    args_schema = SearchParams

    def __init__(self, client: FirecrawlClient) -> None:
        self._client = client

    async def run(self, params: SearchParams, progress: ProgressTracker) -> ToolResult:
        query = require_text(params.query, "Search query")
        payload = await self._client.search(query, limit=params.max_results)
        if not payload.get("success"):
            return ToolFailure(f"Search failed: {payload.get('error') or 'unknown error'}")
        results = [_with_favicon(item) for item in payload.get("data") or [] if isinstance(item, dict)]
        return ToolSuccess(results[: params.max_results])


class ScrapeTool(Tool):
    name = "scrape"
    description = "Scrape web pages. Use this to get from a page when you have the url."
    args_schema = ScrapeParams
    error_prefix = "Extraction failed"

    def __init__(self, client: FirecrawlClient) -> None:
        self._client = client

    async def run(self, params: ScrapeParams, progress: ProgressTracker) -> ToolResult:
        url = require_text(params.url, "URL")
        payload = await self._client.scrape(url)
        if not payload.get("success"):
            return ToolFailure(f"Failed to extract data: {payload.get('error') or 'unknown error'}")
        data = payload.get("data") or {}
        markdown = data.get("markdown") if isinstance(data, dict) else None
        return ToolSuccess(markdown or "Could not get the page content, try using search or extract")


class ExtractTool(Tool):
    name = "extract"
    description = (
        "Extract structured data from web pages. Use this to get whatever data you need "
        "from a URL. Any time someone needs to gather data from something, use this tool."
    )
    args_schema = ExtractParams
    error_prefix = "Extraction failed"

    def __init__(self, client: FirecrawlClient) -> None:
        self._client = client

    async def run(self, params: ExtractParams, progress: ProgressTracker) -> ToolResult:
        urls = require_items([url.strip() for url in params.urls if url.strip()], "URLs array")
        prompt = require_text(params.prompt, "Extraction prompt")
        payload = await self._client.extract(urls, prompt)
        if not payload.get("success"):
            return ToolFailure(f"Failed to extract data: {payload.get('error') or 'unknown error'}")
        return ToolSuccess(payload.get("data"))


class CompanyNewsTool(Tool):
    name = "company_news"
    description = "Search for recent news articles about a specific company by its stock ticker symbol"
    args_schema = CompanyNewsParams

    def __init__(self, client: PolygonClient) -> None:
        self._client = client

    async def run(self, params: CompanyNewsParams, progress: ProgressTracker) -> ToolResult:
        ticker = require_text(params.ticker, "Ticker symbol").upper()
        payload = await self._client.ticker_news(ticker, limit=10)
        if payload.get("status") != "OK":
            return ToolFailure(f"Failed to retrieve news: {payload.get('status') or 'unknown status'}")

        articles = [_normalize_article(item) for item in payload.get("results") or []]
        return ToolSuccess({"articles": articles, "count": len(articles), "ticker": ticker})


class VectorSearchTool(Tool):
    name = "vector_search"
    description = "Search for similar documents in the vector database based on semantic meaning."
    args_schema = VectorSearchParams

    def __init__(self, embedder: Embedder, vector_store: VectorStore, *, user_id: str | None = None) -> None:
        self._embedder = embedder
        self._vector_store = vector_store
        self.user_id = user_id

    def bind_user(self, user_id: str) -> "VectorSearchTool":
        return VectorSearchTool(self._embedder, self._vector_store, user_id=user_id)

    async def run(self, params: VectorSearchParams, progress: ProgressTracker) -> ToolResult:
        query = require_text(params.query, "Search query")
        workspace = require_text(params.workspace, "Workspace")
        if not self.user_id:
            return ToolFailure("A signed-in user is required to search documents")
        embedding = await self._embedder.embed_query(query)
        hits = self._vector_store.search(
            embedding, params.top_k, {"workspace": workspace, "user_id": self.user_id}
        )
        results = [
            {
                "content": hit.chunk.content,
                "filename": hit.chunk.metadata.get("filename"),
                "document_id": hit.chunk.doc_id,
                "chunk_index": hit.chunk.index,
                "similarity": round(hit.score, 4),
            }
            for hit in hits
        ]
        return ToolSuccess({"query": query, "workspace": workspace, "results": results, "count": len(results)})


class WebResearchTool(Tool):
    """Search, then extract across the top sources, reporting each phase."""

    name = "web_research"
    description = (
        "Research a question across several web sources: searches, reads the best "
        "sources and extracts the facts that answer the question."
    )
    args_schema = WebResearchParams
    error_prefix = "Research failed"

    def __init__(self, client: FirecrawlClient) -> None:
        self._client = client

    async def run(self, params: WebResearchParams, progress: ProgressTracker) -> ToolResult:
        query = require_text(params.query, "Research query")
        progress.start(f"Researching: {query}")

        progress.activity("Searching for relevant information", 25, metadata={"phase": "search", "query": query})
        found = await self._client.search(query, limit=params.max_sources)
        if not found.get("success"):
            error = f"Search failed: {found.get('error') or 'unknown error'}"
            progress.fail(error)
            return ToolFailure(error)

        results = [item for item in found.get("data") or [] if isinstance(item, dict) and item.get("url")]
        results = results[: params.max_sources]
        if not results:
            progress.finish("No sources found", metadata={"sources": 0})
            return ToolSuccess({"query": query, "sources": [], "findings": None})

        urls = [item["url"] for item in results]
        for rank, item in enumerate(results):
            progress.source(item["url"], item.get("title") or item["url"], _confidence(rank))

        progress.activity("Extracting data from sources", 50, metadata={"phase": "extract", "urls": urls})
        extracted = await self._client.extract(urls, f"Extract the facts that answer: {query}")
        if not extracted.get("success"):
            error = f"Failed to extract data: {extracted.get('error') or 'unknown error'}"
            progress.fail(error)
            return ToolFailure(error)

        progress.activity("Processing extracted data", 75, metadata={"phase": "process"})
        sources = [
            {"url": item["url"], "title": item.get("title"), "description": item.get("description")}
            for item in results
        ]
        progress.finish("Research completed", metadata={"sources": len(sources)})
        return ToolSuccess({"query": query, "sources": sources, "findings": extracted.get("data")})


def register_builtin_tools(
    registry: ToolRegistry,
    *,
    firecrawl: FirecrawlClient,
    polygon: PolygonClient,
    embedder: Embedder,
    vector_store: VectorStore,
) -> None:
    """Register the default tool set offered to the model.

    Tools:
    - `search` / `scrape` / `extract`: Firecrawl web access.
    - `company_news`: Polygon.io ticker news.
    - `vector_search`: semantic search over uploaded workspace documents.
    - `web_research`: multi-phase research with streamed progress.
    """

    registry.register(SearchTool(firecrawl))
    registry.register(ScrapeTool(firecrawl))
    registry.register(ExtractTool(firecrawl))
    registry.register(CompanyNewsTool(polygon))
    registry.register(VectorSearchTool(embedder, vector_store))
    registry.register(WebResearchTool(firecrawl))


def favicon_url(url: str | None) -> str | None:
    if not url:
        return None
    host = urlparse(url).hostname
    if not host:
        return None
    return f"https://www.google.com/s2/favicons?domain={host}&sz=32"


def _with_favicon(result: dict[str, Any]) -> dict[str, Any]:
    return {**result, "favicon": favicon_url(result.get("url"))}


def _normalize_article(article: dict[str, Any]) -> dict[str, Any]:
    publisher = article.get("publisher") or {}
    favicon = publisher.get("favicon_url") or favicon_url(publisher.get("homepage_url"))
    return {
        "id": article.get("id"),
        "title": article.get("title"),
        "description": article.get("description"),
        "published_utc": article.get("published_utc"),
        "article_url": article.get("article_url"),
        "publisher": {
            "name": publisher.get("name"),
            "homepage_url": publisher.get("homepage_url"),
            "logo_url": publisher.get("logo_url"),
            "favicon_url": favicon,
        },
        "tickers": article.get("tickers") or [],
        "image_url": article.get("image_url"),
        "author": article.get("author"),
        "insights": article.get("insights") or [],
    }


def _confidence(rank: int) -> float:
    # Search order is the only relevance signal available here.
    return round(max(0.1, 0.9 - rank * 0.15), 2)
