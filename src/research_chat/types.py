"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Union


@dataclass(frozen=True, slots=True)
class ToolSuccess:
    """Successful tool outcome carrying the tool's normalized data."""

    data: Any
    success: Literal[True] = field(default=True, init=False)

    def as_dict(self) -> dict[str, Any]:
        return {"success": True, "data": self.data}


@dataclass(frozen=True, slots=True)
class ToolFailure:
    """Failed tool outcome carrying a model-readable message."""

    error: str
    success: Literal[False] = field(default=False, init=False)

    def __post_init__(self) -> None:
        if not self.error:
            raise ValueError("ToolFailure.error must be a non-empty string")

    def as_dict(self) -> dict[str, Any]:
        return {"success": False, "error": self.error}


ToolResult = Union[ToolSuccess, ToolFailure]


@dataclass(frozen=True, slots=True)
class DocumentChunk:
    """A bounded, possibly overlapping section of a source document."""

    chunk_id: str
    doc_id: str
    content: str
    token_count: int
    index: int
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ScoredChunk:
    """A retrieval result with its similarity score."""

    chunk: DocumentChunk
    score: float
    rank: int = 0


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float
    success: bool = True


@dataclass(slots=True)
class IngestedDocument:
    """Summary of one document written to the vector store."""

    id: str
    filename: str
    workspace: str
    chunks_count: int
