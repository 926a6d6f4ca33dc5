"""Research chat package."""

from .config import ChunkingConfig, Settings

__all__ = ["ChunkingConfig", "Settings"]
