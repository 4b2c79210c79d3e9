"""Neo4j graph schema definitions and index creation queries."""

import os

EMBEDDING_DIMENSIONS = int(os.getenv("EMBEDDING_DIMENSIONS", "384"))

FULLTEXT_INDEX_NAME = "document_content_fulltext"

# Uniqueness constraints
CONSTRAINTS = [
    "CREATE CONSTRAINT entity_id IF NOT EXISTS FOR (e:Entity) REQUIRE e.id IS UNIQUE",
    "CREATE CONSTRAINT entity_name IF NOT EXISTS FOR (e:Entity) REQUIRE e.name IS UNIQUE",
    "CREATE CONSTRAINT document_id IF NOT EXISTS FOR (d:Document) REQUIRE d.id IS UNIQUE",
    "CREATE CONSTRAINT chunk_id IF NOT EXISTS FOR (c:Chunk) REQUIRE c.id IS UNIQUE",
    "CREATE CONSTRAINT entity_embedding_entity IF NOT EXISTS FOR (m:EntityEmbedding) REQUIRE m.entity_id IS UNIQUE",
]


def vector_index_queries(dimensions: int = EMBEDDING_DIMENSIONS):
    """HNSW vector indexes for chunk and entity embeddings."""
    return [
        f"""CREATE VECTOR INDEX chunk_embedding IF NOT EXISTS
FOR (c:Chunk) ON (c.embedding)
OPTIONS {{indexConfig: {{
  `vector.dimensions`: {dimensions},
  `vector.similarity_function`: 'cosine'
}}}}""",
        f"""CREATE VECTOR INDEX entity_embedding IF NOT EXISTS
FOR (m:EntityEmbedding) ON (m.embedding)
OPTIONS {{indexConfig: {{
  `vector.dimensions`: {dimensions},
  `vector.similarity_function`: 'cosine'
}}}}""",
    ]


# Lucene index with the english analyzer: tokenized and stemmed
FULLTEXT_INDEX = f"""CREATE FULLTEXT INDEX {FULLTEXT_INDEX_NAME} IF NOT EXISTS
FOR (d:Document) ON EACH [d.content]
OPTIONS {{indexConfig: {{`fulltext.analyzer`: 'english'}}}}"""

DROP_FULLTEXT_INDEX = f"DROP INDEX {FULLTEXT_INDEX_NAME} IF EXISTS"

# Composite indexes for fast lookups
COMPOSITE_INDEXES = [
    "CREATE INDEX chunk_document_idx IF NOT EXISTS FOR (c:Chunk) ON (c.document_id, c.chunk_index)",
    "CREATE INDEX entity_type_idx IF NOT EXISTS FOR (e:Entity) ON (e.entity_type)",
    "CREATE INDEX document_created_idx IF NOT EXISTS FOR (d:Document) ON (d.created_at)",
]


def all_schema_queries(dimensions: int = EMBEDDING_DIMENSIONS):
    return CONSTRAINTS + vector_index_queries(dimensions) + [FULLTEXT_INDEX] + COMPOSITE_INDEXES
