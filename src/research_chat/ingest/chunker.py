"""Word-window chunking with trailing-word overlap."""

from __future__ import annotations

import math
import re

from research_chat.config import ChunkingConfig
from research_chat.types import DocumentChunk

_WHITESPACE = re.compile(r"\s+")


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four characters, rounded up."""
    return math.ceil(len(text) / 4)


def split_into_chunks(text: str, chunk_size: int = 500, *, overlap_words: int = 50) -> list[str]:
    """Split ``text`` into token-bounded chunks for embedding.

    Whitespace is collapsed first, then words are packed greedily until the
    next word would push the chunk past ``chunk_size`` estimated tokens. A word
    is never split, so a single word larger than the budget becomes its own
    oversized chunk. Every chunk after the first is prefixed with the last
    ``overlap_words`` words of the preceding chunk's own content.
    """
    if chunk_size < 1:
        raise ValueError("chunk_size must be at least 1")

    normalized = _WHITESPACE.sub(" ", text).strip()
    if not normalized:
        return []

    bases: list[list[str]] = []
    current: list[str] = []
    current_tokens = 0
    for word in normalized.split(" "):
        word_tokens = estimate_tokens(word)
        if current and current_tokens + word_tokens > chunk_size:
            bases.append(current)
            current = []
            current_tokens = 0
        current.append(word)
        current_tokens += word_tokens
    if current:
        bases.append(current)

    chunks: list[str] = []
    for index, words in enumerate(bases):
        if index > 0 and overlap_words > 0:
            words = bases[index - 1][-overlap_words:] + words
        chunks.append(" ".join(words))
    return chunks


class WordWindowChunker:
    """Turns document text into immutable ``DocumentChunk`` records."""

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()

    def chunk_document(
        self,
        doc_id: str,
        text: str,
        *,
        chunk_size: int | None = None,
        metadata: dict[str, object] | None = None,
    ) -> list[DocumentChunk]:
        pieces = split_into_chunks(
            text,
            chunk_size or self.config.chunk_size,
            overlap_words=self.config.overlap_words,
        )
        return [
            DocumentChunk(
                chunk_id=f"{doc_id}-chunk-{index:04d}",
                doc_id=doc_id,
                content=content,
                token_count=estimate_tokens(content),
                index=index,
                metadata={**(metadata or {}), "chunk_index": index},
            )
            for index, content in enumerate(pieces)
        ]
