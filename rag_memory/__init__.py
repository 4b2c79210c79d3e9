"""
RAG Memory: knowledge graph and document retrieval store.

Persists entities, relationships and chunked, embedded documents in Neo4j and
serves keyword/full-text hybrid search over them as MCP tools.
"""

from rag_memory.chunker import ChunkWindow, compute_chunk_windows
from rag_memory.embeddings import (
    EmbeddingProvider,
    LocalEmbeddingService,
    OpenAIEmbeddingService,
    create_embedding_provider,
)
from rag_memory.graph_client import Neo4jGraphClient
from rag_memory.knowledge_manager import RAGKnowledgeManager
from rag_memory.search import HybridSearchEngine

__all__ = [
    "ChunkWindow",
    "compute_chunk_windows",
    "EmbeddingProvider",
    "LocalEmbeddingService",
    "OpenAIEmbeddingService",
    "create_embedding_provider",
    "Neo4jGraphClient",
    "RAGKnowledgeManager",
    "HybridSearchEngine",
]
