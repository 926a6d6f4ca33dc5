"""FastAPI entrypoint for chat, progress-stream and document endpoints."""

from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from research_chat.agent.fallback import DeterministicAgent
from research_chat.agent.planner import ChatAgent
from research_chat.agent.providers import FirecrawlClient, PolygonClient
from research_chat.agent.registry import ToolRegistry
from research_chat.agent.tools import register_builtin_tools
from research_chat.agent.wrapper import is_error_output
from research_chat.api.auth import SessionResolver, SupabaseSessionResolver, User, bearer_token
from research_chat.config import Settings
from research_chat.errors import PollingTimeoutError, UnauthorizedError, UpstreamError
from research_chat.ingest.chunker import WordWindowChunker
from research_chat.ingest.document_parser import LlamaParseClient
from research_chat.ingest.embedder import HashingEmbedder
from research_chat.ingest.pipeline import IngestPipeline
from research_chat.obs.log import setup_logging
from research_chat.retrieval.vector_store import InMemoryVectorStore
from research_chat.store.chats import InMemoryChatStore
from research_chat.streaming.channel import EventChannel, ProgressTracker, stream_events
from research_chat.streaming.codec import SSE_MEDIA_TYPE
from research_chat.streaming.demo import run_demo_progress

logger = logging.getLogger(__name__)


def _create_llm(settings: Settings) -> Any:
    if not settings.openai_api_key:
        return None

    from langchain_openai import ChatOpenAI

    return ChatOpenAI(
        model=settings.agent.model,
        temperature=settings.agent.temperature,
        api_key=settings.openai_api_key,
    )


class ChatRequest(BaseModel):
    id: str = Field(min_length=1)
    message: str = Field(min_length=1)
    workspace: str | None = None


class ToolStatusRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tool_params: dict[str, Any] = Field(default_factory=dict, alias="toolParams")


class UploadDocument(BaseModel):
    filename: str = Field(min_length=1)
    text: str


class UploadRequest(BaseModel):
    workspace: str = ""
    documents: list[UploadDocument] = Field(default_factory=list)


class SearchRequest(BaseModel):
    workspace: str = ""
    query: str = ""
    top_k: int = Field(default=10, ge=1, le=100)


class OcrRequest(BaseModel):
    filename: str = Field(min_length=1)
    content_base64: str = Field(min_length=1)
    content_type: str | None = None
    workspace: str | None = None


settings = Settings.from_env()
setup_logging(settings.log_level)

_chunker = WordWindowChunker(settings.chunking)
_embedder = HashingEmbedder()
_vector_store = InMemoryVectorStore()
_ingest_pipeline = IngestPipeline(_chunker, _embedder, _vector_store, config=settings.ingest)

_firecrawl = FirecrawlClient(settings.firecrawl_api_key, polling=settings.polling)
_polygon = PolygonClient(settings.polygon_api_key)
_document_parser = LlamaParseClient(settings.llama_cloud_api_key, polling=settings.polling)

_registry = ToolRegistry()
register_builtin_tools(
    _registry,
    firecrawl=_firecrawl,
    polygon=_polygon,
    embedder=_embedder,
    vector_store=_vector_store,
)

_chat_store = InMemoryChatStore()
_session_resolver: SessionResolver | None = (
    SupabaseSessionResolver(settings.supabase_url, settings.supabase_anon_key)
    if settings.supabase_url
    else None
)
_llm = _create_llm(settings)
_agent: ChatAgent | DeterministicAgent = (
    ChatAgent(llm=_llm, tool_registry=_registry, chat_store=_chat_store, config=settings.agent)
    if _llm is not None
    else DeterministicAgent(tool_registry=_registry, chat_store=_chat_store)
)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info(
        "Service started",
        extra={"agent_mode": type(_agent).__name__, "tools": _registry.names()},
    )
    yield
    for client in (_firecrawl, _polygon, _document_parser):
        await client.aclose()
    if isinstance(_session_resolver, SupabaseSessionResolver):
        await _session_resolver.aclose()


app = FastAPI(title="Research Chat", version="0.1.0", lifespan=_lifespan)


@app.exception_handler(UnauthorizedError)
async def _unauthorized(request: Request, exc: UnauthorizedError) -> JSONResponse:
    return JSONResponse(status_code=401, content={"error": "Unauthorized"})


async def require_user(request: Request) -> User:
    if _session_resolver is None:
        raise UnauthorizedError("no session provider configured")
    user = await _session_resolver.get_current_user(bearer_token(request.headers.get("authorization")))
    if user is None:
        raise UnauthorizedError("invalid session")
    return user


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "llm_configured": _llm is not None,
        "agent_mode": "langchain" if _llm is not None else "deterministic",
        "auth_configured": _session_resolver is not None,
        "tools": _registry.names(),
    }


@app.post("/api/chat")
async def chat(request: ChatRequest, user: User = Depends(require_user)) -> StreamingResponse:
    async def _produce(channel: EventChannel) -> None:
        await _agent.run(
            channel,
            user_id=user.id,
            chat_id=request.id,
            message=request.message,
            workspace=request.workspace,
        )

    return StreamingResponse(
        stream_events(_produce, timeout=settings.stream.timeout_seconds),
        media_type=SSE_MEDIA_TYPE,
    )


@app.post("/api/tool-status")
async def tool_status(request: ToolStatusRequest, user: User = Depends(require_user)) -> StreamingResponse:
    async def _produce(channel: EventChannel) -> None:
        tracker = ProgressTracker(channel, operation="tool-status")
        await run_demo_progress(
            tracker,
            request.tool_params,
            delay=settings.stream.demo_phase_delay_seconds,
        )

    return StreamingResponse(
        stream_events(_produce, timeout=settings.stream.timeout_seconds),
        media_type=SSE_MEDIA_TYPE,
    )


@app.get("/api/chats")
async def list_chats(user: User = Depends(require_user)) -> dict[str, Any]:
    records = await _chat_store.list_chats(user.id)
    return {"items": [record.summary() for record in records]}


@app.get("/api/chats/{chat_id}")
async def get_chat(chat_id: str, user: User = Depends(require_user)) -> dict[str, Any]:
    record = await _chat_store.get_chat(user.id, chat_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Chat not found: {chat_id}")
    return {**record.summary(), "messages": record.messages}


@app.delete("/api/chats/{chat_id}")
async def delete_chat(chat_id: str, user: User = Depends(require_user)) -> dict[str, Any]:
    if not await _chat_store.delete_chat(user.id, chat_id):
        raise HTTPException(status_code=404, detail=f"Chat not found: {chat_id}")
    return {"success": True}


@app.post("/api/upload")
async def upload(request: UploadRequest, user: User = Depends(require_user)) -> dict[str, Any]:
    if not request.workspace or not request.documents:
        raise HTTPException(status_code=400, detail="Workspace and files are required")

    processed = []
    for document in request.documents:
        ingested = await _ingest_pipeline.ingest_text(
            request.workspace, document.filename, document.text, user_id=user.id
        )
        processed.append(
            {
                "id": ingested.id,
                "filename": ingested.filename,
                "workspace": ingested.workspace,
                "chunks_count": ingested.chunks_count,
            }
        )
    return {"success": True, "message": "Files processed successfully", "files": processed}


@app.post("/api/search")
async def search_documents(request: SearchRequest, user: User = Depends(require_user)) -> dict[str, Any]:
    if not request.workspace or not request.query:
        raise HTTPException(status_code=400, detail="Workspace and query are required")

    output = await _registry.execute(
        "vector_search",
        {"query": request.query, "workspace": request.workspace, "top_k": request.top_k},
        user_id=user.id,
    )
    if is_error_output(output):
        raise HTTPException(status_code=500, detail="Failed to search documents")
    return {"results": output["results"]}


@app.post("/api/ocr")
async def ocr(request: OcrRequest, user: User = Depends(require_user)) -> dict[str, Any]:
    try:
        content = base64.b64decode(request.content_base64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise HTTPException(status_code=400, detail="content_base64 is not valid base64") from exc

    try:
        markdown = await _document_parser.parse(request.filename, content, request.content_type)
    except PollingTimeoutError as exc:
        raise HTTPException(status_code=504, detail=str(exc)) from exc
    except UpstreamError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    response: dict[str, Any] = {"filename": request.filename, "markdown": markdown}
    if request.workspace and markdown.strip():
        ingested = await _ingest_pipeline.ingest_text(
            request.workspace, request.filename, markdown, user_id=user.id
        )
        response["document"] = {"id": ingested.id, "chunks_count": ingested.chunks_count}
    return response


@app.get("/api/workspaces")
async def list_workspaces(user: User = Depends(require_user)) -> dict[str, Any]:
    return {"workspaces": _ingest_pipeline.workspace_stats(user_id=user.id)}


@app.delete("/api/documents/{doc_id}")
async def delete_document(doc_id: str, user: User = Depends(require_user)) -> dict[str, Any]:
    removed = _ingest_pipeline.delete_document(doc_id, user_id=user.id)
    if not removed:
        raise HTTPException(status_code=404, detail=f"Document not found: {doc_id}")
    return {"success": True, "chunks_deleted": removed}


@app.delete("/api/workspace/{workspace}")
async def delete_workspace(workspace: str, user: User = Depends(require_user)) -> dict[str, Any]:
    removed = _ingest_pipeline.delete_workspace(workspace, user_id=user.id)
    return {"success": True, "chunks_deleted": removed}
