"""Embedding providers: a local sentence-transformers model or the OpenAI API.

Both providers return L2-normalized vectors of the same length so that stored
embeddings stay comparable whichever provider produced them.
"""

import logging
import os
from typing import List, Optional

import torch
from openai import OpenAI
from sentence_transformers import SentenceTransformer

from rag_memory.config import (
    DEFAULT_EMBEDDING_DIMENSIONS,
    DEFAULT_LOCAL_MODEL,
    DEFAULT_OPENAI_MODEL,
)

logger = logging.getLogger(__name__)


class EmbeddingProvider:
    """Single-method capability: text in, fixed-length vector (or None) out."""

    name = "base"

    def __init__(self, dimensions: Optional[int] = None):
        self.dimensions = dimensions or int(
            os.getenv("EMBEDDING_DIMENSIONS", str(DEFAULT_EMBEDDING_DIMENSIONS))
        )

    @property
    def available(self) -> bool:
        return True

    def embed(self, text: str) -> Optional[List[float]]:
        """Return the embedding of text, or None when it cannot be produced."""
        if not self.available:
            return None
        if not text or not text.strip():
            logger.warning("Refusing to embed empty text")
            return None
        try:
            vector = self._embed(text)
        except Exception as e:
            logger.error("%s embedding failed: %s", self.name, e)
            return None
        if len(vector) != self.dimensions:
            logger.error(
                "%s embedding dimension mismatch: expected %d, got %d",
                self.name, self.dimensions, len(vector),
            )
            return None
        return vector

    generate_embedding = embed

    def _embed(self, text: str) -> List[float]:
        raise NotImplementedError


class LocalEmbeddingService(EmbeddingProvider):
    """Generates text embeddings locally using sentence-transformers.

    The model is loaded once and kept in memory for fast inference.
    Supports GPU (CUDA), Apple Silicon (MPS), and CPU fallback. A model that
    fails to load leaves the service unavailable instead of raising.
    """

    name = "local"

    def __init__(
        self,
        model_name: Optional[str] = None,
        device: Optional[str] = None,
        dimensions: Optional[int] = None,
    ):
        super().__init__(dimensions)
        self.model_name = model_name or os.getenv("EMBEDDING_MODEL", DEFAULT_LOCAL_MODEL)
        self.device = device or self._resolve_device()
        self.model = self._load_model()

    @property
    def available(self) -> bool:
        return self.model is not None

    def _resolve_device(self) -> str:
        env_device = os.getenv("EMBEDDING_DEVICE")
        if env_device:
            return env_device
        if torch.cuda.is_available():
            return "cuda"
        if hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
            return "mps"
        return "cpu"

    def _load_model(self) -> Optional[SentenceTransformer]:
        logger.info("Loading embedding model %s on %s", self.model_name, self.device)
        try:
            model = SentenceTransformer(self.model_name, device=self.device)
        except Exception as e:
            logger.warning("Embedding model %s failed to load: %s", self.model_name, e)
            return None
        logger.info("Local embedding model loaded (%d dims)", self.dimensions)
        return model

    def _embed(self, text: str) -> List[float]:
        embedding = self.model.encode(
            text, normalize_embeddings=True, show_progress_bar=False
        )
        return embedding.tolist()


class OpenAIEmbeddingService(EmbeddingProvider):
    """Remote embeddings from the OpenAI API at a reduced output dimensionality."""

    name = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: Optional[str] = None,
        dimensions: Optional[int] = None,
        timeout: Optional[float] = None,
        client: Optional[OpenAI] = None,
    ):
        super().__init__(dimensions)
        self.model_name = model_name or os.getenv(
            "OPENAI_EMBEDDING_MODEL", DEFAULT_OPENAI_MODEL
        )
        self.client = client or OpenAI(
            api_key=api_key or os.getenv("OPENAI_API_KEY"),
            timeout=timeout or float(os.getenv("OPENAI_TIMEOUT", "30")),
        )
        logger.info(
            "Using OpenAI embeddings (%s, %d dims)", self.model_name, self.dimensions
        )

    def _embed(self, text: str) -> List[float]:
        response = self.client.embeddings.create(
            model=self.model_name,
            input=text,
            dimensions=self.dimensions,
        )
        return list(response.data[0].embedding)


def create_embedding_provider(
    mode: Optional[str] = None,
    dimensions: Optional[int] = None,
    openai_api_key: Optional[str] = None,
    **kwargs,
) -> EmbeddingProvider:
    """Pick the embedding provider once at startup.

    mode is "local" or "openai"; "openai" without an API key falls back to the
    local model.
    """
    mode = (mode or os.getenv("EMBEDDING_MODE", "local")).lower()
    api_key = openai_api_key or os.getenv("OPENAI_API_KEY")

    if mode == "openai":
        if api_key:
            return OpenAIEmbeddingService(
                api_key=api_key,
                model_name=kwargs.get("openai_model"),
                dimensions=dimensions,
                timeout=kwargs.get("timeout"),
            )
        logger.warning("EMBEDDING_MODE=openai but OPENAI_API_KEY not set, falling back to local")

    return LocalEmbeddingService(
        model_name=kwargs.get("model_name"),
        device=kwargs.get("device"),
        dimensions=dimensions,
    )
