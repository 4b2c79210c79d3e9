"""Runtime configuration read from the environment (and an optional .env file)."""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from rag_memory.errors import ConfigurationError

logger = logging.getLogger(__name__)

EMBEDDING_MODES = ("local", "openai")

DEFAULT_EMBEDDING_DIMENSIONS = 384
DEFAULT_LOCAL_MODEL = "sentence-transformers/all-MiniLM-L12-v2"
DEFAULT_OPENAI_MODEL = "text-embedding-3-small"
DEFAULT_CHUNK_SIZE = 500
DEFAULT_CHUNK_OVERLAP = 50


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def validate_chunking(max_chunk_size: int, overlap: int):
    """Reject chunk parameters that would never advance the window."""
    if max_chunk_size <= 0:
        raise ConfigurationError(
            f"maxChunkSize must be positive, got {max_chunk_size}"
        )
    if overlap < 0:
        raise ConfigurationError(f"overlap must not be negative, got {overlap}")
    if overlap >= max_chunk_size:
        raise ConfigurationError(
            f"overlap ({overlap}) must be smaller than maxChunkSize ({max_chunk_size})"
        )


@dataclass
class RagMemoryConfig:
    neo4j_uri: str = "bolt://localhost:7687"
    neo4j_user: str = "neo4j"
    neo4j_password: str = ""
    embedding_mode: str = "local"
    embedding_model: str = DEFAULT_LOCAL_MODEL
    embedding_device: Optional[str] = None
    embedding_dimensions: int = DEFAULT_EMBEDDING_DIMENSIONS
    openai_api_key: Optional[str] = None
    openai_embedding_model: str = DEFAULT_OPENAI_MODEL
    openai_timeout: float = 30.0
    chunk_size: int = DEFAULT_CHUNK_SIZE
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP
    tools_mode: str = "full"
    log_level: str = "INFO"

    def validate(self) -> "RagMemoryConfig":
        if self.embedding_mode not in EMBEDDING_MODES:
            raise ConfigurationError(
                f"EMBEDDING_MODE must be one of {', '.join(EMBEDDING_MODES)}, "
                f"got {self.embedding_mode!r}"
            )
        if self.embedding_mode == "openai" and not self.openai_api_key:
            logger.warning(
                "EMBEDDING_MODE=openai but OPENAI_API_KEY is not set, falling back to local"
            )
            self.embedding_mode = "local"
        if self.embedding_dimensions <= 0:
            raise ConfigurationError(
                f"EMBEDDING_DIMENSIONS must be positive, got {self.embedding_dimensions}"
            )
        validate_chunking(self.chunk_size, self.chunk_overlap)
        return self


def load_config() -> RagMemoryConfig:
    """Build and validate the configuration from environment variables."""
    config = RagMemoryConfig(
        neo4j_uri=os.getenv("NEO4J_URI", "bolt://localhost:7687"),
        neo4j_user=os.getenv("NEO4J_USER", "neo4j"),
        neo4j_password=os.getenv("NEO4J_PASSWORD", ""),
        embedding_mode=os.getenv("EMBEDDING_MODE", "local").strip().lower(),
        embedding_model=os.getenv("EMBEDDING_MODEL", DEFAULT_LOCAL_MODEL),
        embedding_device=os.getenv("EMBEDDING_DEVICE") or None,
        embedding_dimensions=_int_env(
            "EMBEDDING_DIMENSIONS", DEFAULT_EMBEDDING_DIMENSIONS
        ),
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        openai_embedding_model=os.getenv("OPENAI_EMBEDDING_MODEL", DEFAULT_OPENAI_MODEL),
        openai_timeout=_float_env("OPENAI_TIMEOUT", 30.0),
        chunk_size=_int_env("CHUNK_SIZE", DEFAULT_CHUNK_SIZE),
        chunk_overlap=_int_env("CHUNK_OVERLAP", DEFAULT_CHUNK_OVERLAP),
        tools_mode=os.getenv("TOOLS_MODE", "full").strip().lower(),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
    return config.validate()
