"""Vector store contract and the in-process implementation."""

from __future__ import annotations

from dataclasses import dataclass
from math import sqrt
from typing import Any, Protocol

from research_chat.types import DocumentChunk, ScoredChunk


class VectorStore(Protocol):
    """Chunk storage keyed by chunk id, searchable by embedding."""

    def upsert(self, chunks: list[DocumentChunk], embeddings: list[list[float]]) -> None:
        """Insert or update chunk vectors."""

    def search(
        self,
        query_embedding: list[float],
        k: int,
        metadata_filter: dict[str, Any] | None = None,
    ) -> list[ScoredChunk]:
        """Return the ``k`` most similar chunks matching ``metadata_filter``."""

    def delete(self, metadata_filter: dict[str, Any]) -> int:
        """Delete chunks matching ``metadata_filter`` and return how many."""

    def list_chunks(self, metadata_filter: dict[str, Any]) -> list[DocumentChunk]:
        """Return every chunk matching ``metadata_filter``."""


@dataclass(slots=True)
class _StoredVector:
    chunk: DocumentChunk
    embedding: list[float]


class InMemoryVectorStore:
    """Deterministic vector store used locally and in tests."""

    def __init__(self) -> None:
        self._store: dict[str, _StoredVector] = {}

    def __len__(self) -> int:
        return len(self._store)

    def upsert(self, chunks: list[DocumentChunk], embeddings: list[list[float]]) -> None:
        if len(chunks) != len(embeddings):
            raise ValueError("chunks and embeddings must have the same length")
        for chunk, embedding in zip(chunks, embeddings, strict=True):
            self._store[chunk.chunk_id] = _StoredVector(chunk=chunk, embedding=embedding)

    def search(
        self,
        query_embedding: list[float],
        k: int,
        metadata_filter: dict[str, Any] | None = None,
    ) -> list[ScoredChunk]:
        scored = [
            (record.chunk, _cosine_similarity(query_embedding, record.embedding))
            for record in self._store.values()
            if _metadata_match(record.chunk.metadata, metadata_filter)
        ]
        scored.sort(key=lambda item: item[1], reverse=True)
        return [
            ScoredChunk(chunk=chunk, score=score, rank=rank)
            for rank, (chunk, score) in enumerate(scored[:k], start=1)
        ]

    def delete(self, metadata_filter: dict[str, Any]) -> int:
        if not metadata_filter:
            raise ValueError("refusing to delete without a filter")
        doomed = [
            chunk_id
            for chunk_id, record in self._store.items()
            if _metadata_match(record.chunk.metadata, metadata_filter)
        ]
        for chunk_id in doomed:
            del self._store[chunk_id]
        return len(doomed)

    def list_chunks(self, metadata_filter: dict[str, Any]) -> list[DocumentChunk]:
        if not metadata_filter:
            raise ValueError("refusing to list without a filter")
        return [
            record.chunk
            for record in self._store.values()
            if _metadata_match(record.chunk.metadata, metadata_filter)
        ]


def _metadata_match(metadata: dict[str, Any], metadata_filter: dict[str, Any] | None) -> bool:
    if not metadata_filter:
        return True
    return all(metadata.get(key) == value for key, value in metadata_filter.items())


def _cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)
