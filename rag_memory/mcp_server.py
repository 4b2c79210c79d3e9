"""MCP server exposing the knowledge graph and document store as tools."""

import asyncio
import json
import logging
import os
import threading
from typing import Any, Callable, Dict, List, Optional

from dotenv import load_dotenv
from mcp.server.fastmcp import FastMCP

from rag_memory.tool_modes import filter_tools_by_mode

load_dotenv()

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

mcp = FastMCP("rag-memory")

# tool name -> coroutine function, in registration order
TOOLS: Dict[str, Callable] = {}

# Lazy-initialized singleton
_manager = None
_manager_lock = threading.Lock()


def _get_manager():
    global _manager
    with _manager_lock:
        if _manager is None:
            from rag_memory.config import load_config
            from rag_memory.embeddings import create_embedding_provider
            from rag_memory.graph_client import Neo4jGraphClient
            from rag_memory.knowledge_manager import RAGKnowledgeManager

            config = load_config()
            embeddings = create_embedding_provider(
                mode=config.embedding_mode,
                dimensions=config.embedding_dimensions,
                openai_api_key=config.openai_api_key,
                model_name=config.embedding_model,
                device=config.embedding_device,
                openai_model=config.openai_embedding_model,
                timeout=config.openai_timeout,
            )
            _manager = RAGKnowledgeManager(
                graph_client=Neo4jGraphClient(
                    config.neo4j_uri, config.neo4j_user, config.neo4j_password
                ),
                embedding_service=embeddings,
                chunk_size=config.chunk_size,
                chunk_overlap=config.chunk_overlap,
            )
            _manager.init_schema()
            logger.info("RAGKnowledgeManager initialized (embeddings: %s)", embeddings.name)
    return _manager


async def _run(method: str, *args, **kwargs) -> str:
    """Run a blocking manager call in a worker thread and return its JSON."""
    manager = _get_manager()
    result = await asyncio.to_thread(getattr(manager, method), *args, **kwargs)
    return json.dumps(result, indent=2, default=str)


def _tool(*names: str):
    def register(fn):
        for name in names:
            TOOLS[name] = fn
        return fn
    return register


def register_tools(server: FastMCP, mode: str = "full") -> List[str]:
    """Add the tools allowed in mode to server; returns their names."""
    enabled = filter_tools_by_mode(TOOLS, mode)
    for name in enabled:
        server.add_tool(TOOLS[name], name=name)
    logger.info("Registered %d tools (mode: %s)", len(enabled), mode)
    return enabled


# ── Entity tools ─────────────────────────────────────────────────────


@_tool("createEntities")
async def create_entities(entities: List[Dict[str, Any]]) -> str:
    """Create new entities in the knowledge graph.

    Args:
        entities: Objects with name, entityType and observations (list of strings)

    Returns:
        JSON list with success, entity and id (or error) per entity
    """
    return await _run("create_entities", entities)


@_tool("createRelations")
async def create_relations(relations: List[Dict[str, Any]]) -> str:
    """Create relationships between entities.

    Args:
        relations: Objects with from, to and relationType

    Returns:
        JSON list with success and relation (or error) per relation
    """
    return await _run("create_relations", relations)


@_tool("addObservations")
async def add_observations(observations: List[Dict[str, Any]]) -> str:
    """Add observations to existing entities.

    Args:
        observations: Objects with entityName and contents (list of strings)
    """
    return await _run("add_observations", observations)


@_tool("searchNodes")
async def search_nodes(query: str, limit: int = 10) -> str:
    """Search for entities by name or type."""
    return await _run("search_nodes", query, limit)


@_tool("openNodes")
async def open_nodes(names: List[str]) -> str:
    """Get specific entities by name, with the relations that touch them."""
    return await _run("open_nodes", names)


@_tool("deleteEntities")
async def delete_entities(entityNames: List[str]) -> str:
    """Delete multiple entities and their associated relationships.

    Args:
        entityNames: Exact entity names to permanently delete

    Returns:
        JSON with deleted, notFound and errors lists
    """
    return await _run("delete_entities", entityNames)


@_tool("deleteRelations")
async def delete_relations(relations: List[Dict[str, Any]]) -> str:
    """Delete specific relationships from the knowledge graph.

    Args:
        relations: Objects with from, to and relationType; all three must match
    """
    return await _run("delete_relations", relations)


@_tool("deleteObservations")
async def delete_observations(deletions: List[Dict[str, Any]]) -> str:
    """Delete specific observations from entities.

    Args:
        deletions: Objects with entityName and observations (exact strings to remove)
    """
    return await _run("delete_observations", deletions)


# ── Document tools ───────────────────────────────────────────────────


@_tool("processDocument")
async def process_document(
    id: str,
    content: str,
    maxChunkSize: Optional[int] = None,
    overlap: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> str:
    """RECOMMENDED: Store document with full pipeline (store, chunk, embed).

    Args:
        id: Unique document identifier
        content: Document content
        maxChunkSize: Max chunk size in characters (CHUNK_SIZE when omitted)
        overlap: Characters shared by consecutive chunks (CHUNK_OVERLAP when omitted)
        metadata: Optional metadata

    Returns:
        JSON with documentId, steps, success, chunksCreated, embeddedChunks
    """
    return await _run(
        "process_document", id, content,
        max_chunk_size=maxChunkSize, overlap=overlap, metadata=metadata or {},
    )


@_tool("storeDocument")
async def store_document(id: str, content: str, metadata: Optional[Dict[str, Any]] = None) -> str:
    """Store a document (without chunking/embedding)."""
    return await _run("store_document", id, content, metadata or {})


@_tool("listDocuments")
async def list_documents(includeMetadata: bool = True) -> str:
    """List all documents, newest first."""
    return await _run("list_documents", includeMetadata)


@_tool("deleteDocuments")
async def delete_documents(documentIds: List[str]) -> str:
    """Delete documents and their chunks."""
    return await _run("delete_documents", documentIds)


@_tool("chunkDocument")
async def chunk_document(
    documentId: str, maxChunkSize: Optional[int] = None, overlap: Optional[int] = None
) -> str:
    """Split a stored document into overlapping fixed-size chunks."""
    return await _run("chunk_document", documentId, maxChunkSize, overlap)


@_tool("embedChunks")
async def embed_chunks(documentId: str) -> str:
    """Generate embeddings for the chunks of a document."""
    return await _run("embed_chunks", documentId)


@_tool("embedAllEntities")
async def embed_all_entities() -> str:
    """Generate embeddings for all entities."""
    return await _run("embed_all_entities")


# ── Search tools ─────────────────────────────────────────────────────


@_tool("hybridSearch")
async def hybrid_search(query: str, limit: int = 5) -> str:
    """Search documents using full-text ranking or keyword matching.

    Args:
        query: Search query (space-separated keywords)
        limit: Maximum number of documents to return
    """
    return await _run("hybrid_search", query, limit or 5)


@_tool("getDetailedContext")
async def get_detailed_context(query: str, limit: int = 5, includeEntities: bool = True) -> str:
    """Get documents, entities and relationships relevant to a query."""
    return await _run("get_detailed_context", query, limit, includeEntities)


@_tool("getGraph", "readGraph")
async def get_graph() -> str:
    """Read the entire knowledge graph (all entities and relationships)."""
    return await _run("read_graph")


# ── Utility tools ────────────────────────────────────────────────────


@_tool("getKnowledgeGraphStats")
async def get_knowledge_graph_stats() -> str:
    """Get statistics about the knowledge graph."""
    return await _run("get_knowledge_graph_stats")


@_tool("extractTerms")
async def extract_terms(documentId: str, minLength: int = 3, includeCapitalized: bool = True) -> str:
    """Extract key terms (capitalized phrases and frequent keywords) from a document."""
    return await _run("extract_terms", documentId, minLength, includeCapitalized)


@_tool("linkEntitiesToDocument")
async def link_entities_to_document(documentId: str, entityNames: List[str]) -> str:
    """Link entities to every chunk of a document."""
    return await _run("link_entities_to_document", documentId, entityNames)


@_tool("rebuildSearchIndex")
async def rebuild_search_index() -> str:
    """Drop and recreate the document full-text index."""
    return await _run("rebuild_search_index")


# ── Prompts ──────────────────────────────────────────────────────────


@mcp.prompt(name="store-knowledge", description="Store new knowledge in RAG memory")
def store_knowledge(topic: str, content: str) -> str:
    return f"""I'll help you store knowledge about {topic} in the RAG memory system.

Steps:
1. Create entities for the main concepts (createEntities)
2. Add detailed observations (addObservations)
3. Create relationships to connect knowledge (createRelations)
4. Store the full text with processDocument

Content to process:
{content}"""


@mcp.prompt(name="search-knowledge", description="Search RAG memory for information")
def search_knowledge(query: str) -> str:
    return f"""I'll search the RAG memory for information about "{query}".

1. hybridSearch finds the most relevant documents
2. getDetailedContext adds matching entities and their relationships"""


@mcp.prompt(name="explore-graph", description="Explore what the knowledge graph contains")
def explore_graph() -> str:
    return """Show the complete knowledge graph structure:
- all entities (people, projects, technologies, concepts)
- relationships between entities
- totals from getKnowledgeGraphStats"""


def main():
    from rag_memory.config import load_config

    config = load_config()
    logging.getLogger().setLevel(config.log_level)
    register_tools(mcp, config.tools_mode)
    _get_manager()
    mcp.run()


if __name__ == "__main__":
    main()
