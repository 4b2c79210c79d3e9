"""
Shared fixtures for the RAG memory test suite.

Provides an in-memory graph store, stub embedding providers and a manager
wired to both, so no Neo4j server or model download is needed.
"""

import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tests.fakes import InMemoryGraphClient, StubEmbeddingProvider


@pytest.fixture
def graph():
    return InMemoryGraphClient()


@pytest.fixture
def embeddings():
    return StubEmbeddingProvider()


@pytest.fixture
def failing_embeddings():
    """Provider that is configured but returns None for every call."""
    return StubEmbeddingProvider(vector=None)


@pytest.fixture
def manager(graph, embeddings):
    from rag_memory.knowledge_manager import RAGKnowledgeManager
    return RAGKnowledgeManager(graph_client=graph, embedding_service=embeddings)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every configuration variable so defaults apply."""
    for name in (
        "NEO4J_URI", "NEO4J_USER", "NEO4J_PASSWORD", "EMBEDDING_MODE",
        "EMBEDDING_MODEL", "EMBEDDING_DEVICE", "EMBEDDING_DIMENSIONS",
        "OPENAI_API_KEY", "OPENAI_EMBEDDING_MODEL", "OPENAI_TIMEOUT",
        "CHUNK_SIZE", "CHUNK_OVERLAP", "TOOLS_MODE", "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch
