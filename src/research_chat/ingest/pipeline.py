"""End-to-end ingest pipeline: chunk -> embed -> upsert."""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from typing import Any

from research_chat.config import ChunkingConfig, IngestConfig
from research_chat.ingest.chunker import WordWindowChunker
from research_chat.ingest.embedder import Embedder, embed_in_batches
from research_chat.retrieval.vector_store import VectorStore
from research_chat.types import IngestedDocument

logger = logging.getLogger(__name__)


class IngestPipeline:
    """Coordinates chunker, embedder and vector store for uploaded documents.

    Chunks are tagged with ``doc_id``, ``workspace``, ``user_id`` and
    ``filename`` so searches and deletions can be scoped to one user's
    workspace.
    """

    def __init__(
        self,
        chunker: WordWindowChunker,
        embedder: Embedder,
        vector_store: VectorStore,
        *,
        config: IngestConfig | None = None,
        chunking: ChunkingConfig | None = None,
    ) -> None:
        self._chunker = chunker
        self._embedder = embedder
        self._vector_store = vector_store
        self.config = config or IngestConfig()
        self.chunking = chunking or chunker.config

    async def ingest_text(
        self,
        workspace: str,
        filename: str,
        text: str,
        *,
        user_id: str,
        doc_id: str | None = None,
    ) -> IngestedDocument:
        """Ingest one document's text and return a summary of what was stored."""

        doc_id = doc_id or uuid.uuid4().hex
        chunks = self._chunker.chunk_document(
            doc_id,
            text,
            chunk_size=self.chunking.upload_chunk_size,
            metadata={
                "doc_id": doc_id,
                "workspace": workspace,
                "user_id": user_id,
                "filename": filename,
            },
        )
        embeddings = await embed_in_batches(
            self._embedder,
            [chunk.content for chunk in chunks],
            batch_size=self.config.embed_batch_size,
        )

        size = self.config.insert_batch_size
        for start in range(0, len(chunks), size):
            self._vector_store.upsert(chunks[start : start + size], embeddings[start : start + size])

        logger.info(
            "Document ingested",
            extra={"doc_id": doc_id, "workspace": workspace, "chunks": len(chunks)},
        )
        return IngestedDocument(
            id=doc_id,
            filename=filename,
            workspace=workspace,
            chunks_count=len(chunks),
        )

    def delete_document(self, doc_id: str, *, user_id: str) -> int:
        return self._vector_store.delete({"doc_id": doc_id, "user_id": user_id})

    def workspace_stats(self, *, user_id: str) -> list[dict[str, Any]]:
        """Document and chunk counts per workspace owned by ``user_id``."""
        documents: dict[str, set[str]] = defaultdict(set)
        chunks: dict[str, int] = defaultdict(int)
        for chunk in self._vector_store.list_chunks({"user_id": user_id}):
            workspace = str(chunk.metadata.get("workspace", ""))
            documents[workspace].add(chunk.doc_id)
            chunks[workspace] += 1
        return [
            {"workspace": name, "document_count": len(documents[name]), "chunk_count": chunks[name]}
            for name in sorted(documents)
        ]

    def delete_workspace(self, workspace: str, *, user_id: str) -> int:
        removed = self._vector_store.delete({"workspace": workspace, "user_id": user_id})
        logger.info("Workspace deleted", extra={"workspace": workspace, "chunks": removed})
        return removed
