"""Configuration models for the research chat service."""

from __future__ import annotations

import os

from pydantic import BaseModel, Field


class ChunkingConfig(BaseModel):
    """Configures word-window chunking for uploaded documents."""

    chunk_size: int = Field(default=500, ge=1)
    upload_chunk_size: int = Field(default=200, ge=1)
    overlap_words: int = Field(default=50, ge=0)


class AgentConfig(BaseModel):
    """Configures the model-invocation loop."""

    max_iterations: int = Field(default=20, ge=1)
    model: str = "gpt-4o-mini"
    temperature: float = Field(default=0.0, ge=0.0, le=2.0)


class StreamConfig(BaseModel):
    """Configures incrementally flushed event streams."""

    timeout_seconds: float = Field(default=30.0, gt=0.0)
    demo_phase_delay_seconds: float = Field(default=1.0, ge=0.0)


class PollingConfig(BaseModel):
    """Bounded fixed-interval polling for long-running external jobs."""

    max_attempts: int = Field(default=30, ge=1)
    interval_seconds: float = Field(default=2.0, ge=0.0)


class IngestConfig(BaseModel):
    """Batch sizes used when embedding and storing document chunks."""

    embed_batch_size: int = Field(default=96, ge=1)
    insert_batch_size: int = Field(default=100, ge=1)


class Settings(BaseModel):
    """Process-wide settings, normally read from the environment."""

    openai_api_key: str | None = None
    firecrawl_api_key: str = ""
    polygon_api_key: str = ""
    llama_cloud_api_key: str | None = None
    supabase_url: str | None = None
    supabase_anon_key: str = ""
    log_level: str = "INFO"
    agent: AgentConfig = Field(default_factory=AgentConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    ingest: IngestConfig = Field(default_factory=IngestConfig)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            firecrawl_api_key=os.getenv("FIRECRAWL_API_KEY", ""),
            polygon_api_key=os.getenv("POLYGON_API_KEY", ""),
            llama_cloud_api_key=os.getenv("LLAMA_CLOUD_API_KEY") or None,
            supabase_url=os.getenv("SUPABASE_URL") or None,
            supabase_anon_key=os.getenv("SUPABASE_ANON_KEY", ""),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            agent=AgentConfig(model=os.getenv("OPENAI_MODEL", "gpt-4o-mini")),
        )
