#!/usr/bin/env python3
"""Setup script for the RAG memory knowledge store.

Run on the target machine after installing Neo4j:
    python scripts/setup_rag_memory.py
"""

import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

import logging

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


def check_neo4j_connection(config):
    """Verify Neo4j is running and accessible."""
    logger.info("Checking Neo4j connection...")
    from rag_memory.graph_client import Neo4jGraphClient

    client = Neo4jGraphClient(config.neo4j_uri, config.neo4j_user, config.neo4j_password)
    try:
        result = client.execute_query("RETURN 1 AS ok")
        assert result[0]["ok"] == 1
        logger.info("  Neo4j connection OK")
        return client
    except Exception as e:
        logger.error("  Failed to connect to Neo4j: %s", e)
        logger.error("  Check NEO4J_URI, NEO4J_USER, NEO4J_PASSWORD in .env")
        sys.exit(1)


def create_schema(client, config):
    """Create constraints, vector indexes, the full-text index and composite indexes."""
    logger.info("Creating graph schema...")
    client.init_schema(config.embedding_dimensions)
    logger.info("  Schema created")


def verify_indexes(client):
    """Check that vector and full-text indexes are online."""
    logger.info("Verifying indexes...")
    result = client.execute_query("SHOW INDEXES YIELD name, state, type")
    search_indexes = [r for r in result if r.get("type") in ("VECTOR", "FULLTEXT")]

    for idx in search_indexes:
        status = "OK" if idx["state"] == "ONLINE" else f"WARNING: {idx['state']}"
        logger.info("  %s (%s): %s", idx["name"], idx["type"], status)

    if not any(r.get("type") == "VECTOR" for r in search_indexes):
        logger.warning("  No vector indexes found. Neo4j 5.11+ is required.")
    if not any(r.get("type") == "FULLTEXT" for r in search_indexes):
        logger.warning("  No full-text index found; hybridSearch will use keyword matching.")
    return search_indexes


def smoke_test(client, config):
    """Embed a test chunk, store it and clean it up again."""
    logger.info("Running smoke test...")
    from rag_memory.embeddings import create_embedding_provider

    provider = create_embedding_provider(
        mode=config.embedding_mode,
        dimensions=config.embedding_dimensions,
        openai_api_key=config.openai_api_key,
        model_name=config.embedding_model,
        device=config.embedding_device,
    )
    embedding = provider.embed("smoke test document")
    if embedding is None:
        logger.warning("  %s embedding provider returned nothing", provider.name)
    else:
        logger.info("  %s embedding OK (%d dims)", provider.name, len(embedding))

    client.upsert_document("smoke-test", "This is a smoke test document for validation.")
    chunk = client.create_chunk("smoke-test", 0, "smoke test", 0, 10)
    if embedding is not None and chunk:
        client.set_chunk_embedding(chunk["id"], embedding)

    # Clean up: chunks before the document
    client.delete_document_chunks("smoke-test")
    client.delete_document("smoke-test")
    logger.info("  Smoke test cleaned up")


def print_summary(config):
    """Print configuration summary."""
    logger.info("")
    logger.info("=== RAG Memory Configuration ===")
    logger.info("  NEO4J_URI:           %s", config.neo4j_uri)
    logger.info("  EMBEDDING_MODE:      %s", config.embedding_mode)
    logger.info("  EMBEDDING_MODEL:     %s", config.embedding_model)
    logger.info("  EMBEDDING_DIMENSIONS:%s", config.embedding_dimensions)
    logger.info("  CHUNK_SIZE:          %s", config.chunk_size)
    logger.info("  CHUNK_OVERLAP:       %s", config.chunk_overlap)
    logger.info("  TOOLS_MODE:          %s", config.tools_mode)
    logger.info("")
    logger.info("MCP server command:")
    logger.info("  python -m rag_memory.mcp_server")
    logger.info("")
    logger.info("Add to your MCP client settings:")
    logger.info('  "mcpServers": {')
    logger.info('    "rag-memory": {')
    logger.info('      "command": "python",')
    logger.info('      "args": ["-m", "rag_memory.mcp_server"],')
    logger.info('      "cwd": "%s"', os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    logger.info("    }")
    logger.info("  }")


def main():
    from rag_memory.config import load_config

    logger.info("Setting up RAG Memory knowledge store")
    logger.info("=" * 40)

    config = load_config()
    client = check_neo4j_connection(config)
    create_schema(client, config)
    verify_indexes(client)
    smoke_test(client, config)
    client.close()

    print_summary(config)
    logger.info("Setup complete.")


if __name__ == "__main__":
    main()
