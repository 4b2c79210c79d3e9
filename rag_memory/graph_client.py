"""Neo4j client with typed operations for the entity graph and document store.

Deletes never use DETACH DELETE: dependents are removed by explicit queries
first, and Neo4j refuses to delete a node that still has relationships.
"""

import json
import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from neo4j import GraphDatabase
from neo4j.exceptions import ConstraintError

from rag_memory.errors import EntityExistsError
from rag_memory.graph_schema import (
    DROP_FULLTEXT_INDEX,
    EMBEDDING_DIMENSIONS,
    FULLTEXT_INDEX,
    FULLTEXT_INDEX_NAME,
    all_schema_queries,
)

logger = logging.getLogger(__name__)

ENTITY_FIELDS = """
    e.id AS id, e.name AS name, e.entity_type AS entity_type,
    e.observations AS observations, e.metadata AS metadata,
    e.created_at AS created_at
"""

RELATION_FIELDS = """
    r.id AS id, a.id AS source_entity, b.id AS target_entity,
    a.name AS `from`, b.name AS `to`, r.relation_type AS relation_type,
    r.confidence AS confidence, r.metadata AS metadata,
    r.created_at AS created_at
"""

DOCUMENT_FIELDS = """
    d.id AS id, d.content AS content, d.metadata AS metadata,
    d.created_at AS created_at
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def encode_metadata(metadata: Optional[Dict[str, Any]]) -> str:
    """Neo4j properties cannot hold maps, so metadata bags are stored as JSON."""
    return json.dumps(metadata or {}, default=str)


def decode_metadata(raw: Any) -> Dict[str, Any]:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return raw
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Discarding undecodable metadata: %r", raw)
        return {}
    return value if isinstance(value, dict) else {"value": value}


def _with_metadata(row: Dict[str, Any]) -> Dict[str, Any]:
    if "metadata" in row:
        row["metadata"] = decode_metadata(row["metadata"])
    if "observations" in row and row["observations"] is None:
        row["observations"] = []
    return row


class Neo4jGraphClient:
    """Wraps the Neo4j Python driver with connection pooling and typed operations."""

    def __init__(
        self,
        uri: Optional[str] = None,
        user: Optional[str] = None,
        password: Optional[str] = None,
    ):
        self.uri = uri or os.getenv("NEO4J_URI", "bolt://localhost:7687")
        self.user = user or os.getenv("NEO4J_USER", "neo4j")
        self.password = password or os.getenv("NEO4J_PASSWORD", "")
        self.driver = GraphDatabase.driver(self.uri, auth=(self.user, self.password))
        logger.info("Connected to Neo4j at %s", self.uri)

    def close(self):
        self.driver.close()

    def execute_query(
        self, cypher: str, params: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """Execute a Cypher query and return results as list of dicts."""
        with self.driver.session() as session:
            result = session.run(cypher, params or {})
            return [record.data() for record in result]

    def _rows(self, cypher: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return [_with_metadata(row) for row in self.execute_query(cypher, params)]

    def _count(self, cypher: str, params: Optional[Dict[str, Any]] = None) -> int:
        results = self.execute_query(cypher, params)
        return int(results[0]["count"]) if results else 0

    def init_schema(self, dimensions: int = EMBEDDING_DIMENSIONS):
        """Create all constraints, vector indexes, the full-text index and composite indexes."""
        for query in all_schema_queries(dimensions):
            try:
                self.execute_query(query)
            except Exception as e:
                logger.warning("Schema query skipped (may already exist): %s", e)
        logger.info("Graph schema initialized")

    # ── Entities ─────────────────────────────────────────────────────

    def create_entity(
        self,
        name: str,
        entity_type: str,
        observations: List[str],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        cypher = f"""
        CREATE (e:Entity {{
            id: $id, name: $name, entity_type: $entity_type,
            observations: $observations, metadata: $metadata,
            created_at: $created_at
        }})
        RETURN {ENTITY_FIELDS}
        """
        try:
            results = self._rows(cypher, {
                "id": str(uuid.uuid4()), "name": name, "entity_type": entity_type,
                "observations": list(observations), "metadata": encode_metadata(metadata),
                "created_at": _now(),
            })
        except ConstraintError:
            raise EntityExistsError(name)
        return results[0] if results else {}

    def get_entity_id(self, name: str) -> Optional[str]:
        results = self.execute_query(
            "MATCH (e:Entity {name: $name}) RETURN e.id AS id", {"name": name}
        )
        return results[0]["id"] if results else None

    def get_entities_by_names(self, names: List[str]) -> List[Dict[str, Any]]:
        cypher = f"""
        MATCH (e:Entity) WHERE e.name IN $names
        RETURN {ENTITY_FIELDS}
        ORDER BY e.name
        """
        return self._rows(cypher, {"names": list(names)})

    def search_entities(self, query: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Case-insensitive substring match on entity name or type."""
        cypher = f"""
        MATCH (e:Entity)
        WHERE toLower(e.name) CONTAINS toLower($query)
           OR toLower(e.entity_type) CONTAINS toLower($query)
        RETURN {ENTITY_FIELDS}
        ORDER BY e.name
        LIMIT $limit
        """
        return self._rows(cypher, {"query": query, "limit": int(limit)})

    def search_entities_by_name(self, query: str, limit: int = 5) -> List[Dict[str, Any]]:
        cypher = f"""
        MATCH (e:Entity)
        WHERE toLower(e.name) CONTAINS toLower($query)
        RETURN {ENTITY_FIELDS}
        ORDER BY e.name
        LIMIT $limit
        """
        return self._rows(cypher, {"query": query, "limit": int(limit)})

    def get_all_entities(self) -> List[Dict[str, Any]]:
        cypher = f"MATCH (e:Entity) RETURN {ENTITY_FIELDS} ORDER BY e.created_at"
        return self._rows(cypher)

    def append_observations(self, name: str, contents: List[str]) -> Optional[int]:
        """Append in a single statement; returns the new observation count."""
        cypher = """
        MATCH (e:Entity {name: $name})
        SET e.observations = coalesce(e.observations, []) + $contents
        RETURN size(e.observations) AS total
        """
        results = self.execute_query(cypher, {"name": name, "contents": list(contents)})
        return results[0]["total"] if results else None

    def remove_observations(self, name: str, removals: List[str]) -> Optional[Dict[str, int]]:
        """Drop exact-match observations in a single statement.

        Returns {"before": n, "after": m}, or None when the entity is absent.
        """
        cypher = """
        MATCH (e:Entity {name: $name})
        WITH e, coalesce(e.observations, []) AS current
        SET e.observations = [o IN current WHERE NOT o IN $removals]
        RETURN size(current) AS before, size(e.observations) AS after
        """
        results = self.execute_query(cypher, {"name": name, "removals": list(removals)})
        return results[0] if results else None

    def delete_entity_relationships(self, entity_id: str) -> int:
        """Delete every relationship where the entity is source or target."""
        cypher = """
        MATCH (e:Entity {id: $id})-[r:RELATES_TO]-(:Entity)
        WITH DISTINCT r
        DELETE r
        RETURN count(*) AS count
        """
        return self._count(cypher, {"id": entity_id})

    def delete_entity_links(self, entity_id: str) -> int:
        """Delete chunk mentions of the entity and its stored embedding."""
        mentions = self._count("""
        MATCH (:Chunk)-[m:MENTIONS]->(e:Entity {id: $id})
        DELETE m
        RETURN count(*) AS count
        """, {"id": entity_id})
        self.execute_query("""
        MATCH (m:EntityEmbedding {entity_id: $id})
        OPTIONAL MATCH (m)-[h]-()
        WITH m, collect(h) AS rels
        FOREACH (rel IN rels | DELETE rel)
        DELETE m
        """, {"id": entity_id})
        return mentions

    def delete_entity(self, entity_id: str) -> int:
        return self._count(
            "MATCH (e:Entity {id: $id}) DELETE e RETURN count(*) AS count",
            {"id": entity_id},
        )

    def upsert_entity_embedding(
        self, entity_id: str, embedding: List[float], embedding_text: str
    ) -> bool:
        cypher = """
        MATCH (e:Entity {id: $entity_id})
        MERGE (m:EntityEmbedding {entity_id: $entity_id})
        SET m.embedding = $embedding, m.embedding_text = $embedding_text,
            m.updated_at = $updated_at
        MERGE (e)-[:HAS_EMBEDDING]->(m)
        RETURN m.entity_id AS entity_id
        """
        results = self.execute_query(cypher, {
            "entity_id": entity_id, "embedding": embedding,
            "embedding_text": embedding_text, "updated_at": _now(),
        })
        return bool(results)

    # ── Relationships ────────────────────────────────────────────────

    def create_relationship(
        self,
        source_id: str,
        target_id: str,
        relation_type: str,
        confidence: float = 1.0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        cypher = """
        MATCH (a:Entity {id: $source_id})
        MATCH (b:Entity {id: $target_id})
        CREATE (a)-[r:RELATES_TO {
            id: $id, relation_type: $relation_type, confidence: $confidence,
            metadata: $metadata, created_at: $created_at
        }]->(b)
        RETURN r.id AS id
        """
        results = self.execute_query(cypher, {
            "source_id": source_id, "target_id": target_id, "id": str(uuid.uuid4()),
            "relation_type": relation_type, "confidence": float(confidence),
            "metadata": encode_metadata(metadata), "created_at": _now(),
        })
        return results[0] if results else {}

    def delete_relationship(self, source_id: str, target_id: str, relation_type: str) -> int:
        """Delete by exact (source, target, type) match."""
        cypher = """
        MATCH (a:Entity {id: $source_id})-[r:RELATES_TO]->(b:Entity {id: $target_id})
        WHERE r.relation_type = $relation_type
        DELETE r
        RETURN count(*) AS count
        """
        return self._count(cypher, {
            "source_id": source_id, "target_id": target_id,
            "relation_type": relation_type,
        })

    def get_relationships_from(self, entity_ids: List[str], limit: int) -> List[Dict[str, Any]]:
        """Outgoing relationships of the given entities, capped at limit in total."""
        cypher = f"""
        MATCH (a:Entity)-[r:RELATES_TO]->(b:Entity)
        WHERE a.id IN $ids
        RETURN {RELATION_FIELDS}
        ORDER BY r.created_at
        LIMIT $limit
        """
        return self._rows(cypher, {"ids": list(entity_ids), "limit": int(limit)})

    def get_relationships_touching(self, names: List[str]) -> List[Dict[str, Any]]:
        cypher = f"""
        MATCH (a:Entity)-[r:RELATES_TO]->(b:Entity)
        WHERE a.name IN $names OR b.name IN $names
        RETURN {RELATION_FIELDS}
        ORDER BY r.created_at
        """
        return self._rows(cypher, {"names": list(names)})

    def get_all_relationships(self) -> List[Dict[str, Any]]:
        cypher = f"""
        MATCH (a:Entity)-[r:RELATES_TO]->(b:Entity)
        RETURN {RELATION_FIELDS}
        ORDER BY r.created_at
        """
        return self._rows(cypher)

    # ── Documents and chunks ─────────────────────────────────────────

    def upsert_document(
        self, id: str, content: str, metadata: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        cypher = f"""
        MERGE (d:Document {{id: $id}})
        ON CREATE SET d.created_at = $now
        SET d.content = $content, d.metadata = $metadata, d.updated_at = $now
        RETURN {DOCUMENT_FIELDS}
        """
        results = self._rows(cypher, {
            "id": id, "content": content,
            "metadata": encode_metadata(metadata), "now": _now(),
        })
        return results[0] if results else {}

    def get_document(self, id: str) -> Optional[Dict[str, Any]]:
        results = self._rows(
            f"MATCH (d:Document {{id: $id}}) RETURN {DOCUMENT_FIELDS}", {"id": id}
        )
        return results[0] if results else None

    def list_documents(self, include_metadata: bool = True) -> List[Dict[str, Any]]:
        fields = DOCUMENT_FIELDS if include_metadata else "d.id AS id, d.created_at AS created_at"
        return self._rows(
            f"MATCH (d:Document) RETURN {fields} ORDER BY d.created_at DESC"
        )

    def delete_document_chunks(self, document_id: str) -> int:
        """Delete a document's chunks together with their HAS_CHUNK and MENTIONS edges."""
        cypher = """
        MATCH (c:Chunk {document_id: $document_id})
        OPTIONAL MATCH (c)-[r]-()
        WITH c, collect(r) AS rels
        FOREACH (rel IN rels | DELETE rel)
        DELETE c
        RETURN count(*) AS count
        """
        return self._count(cypher, {"document_id": document_id})

    def delete_document(self, id: str) -> int:
        return self._count(
            "MATCH (d:Document {id: $id}) DELETE d RETURN count(*) AS count",
            {"id": id},
        )

    def create_chunk(
        self,
        document_id: str,
        chunk_index: int,
        content: str,
        start_pos: int,
        end_pos: int,
    ) -> Dict[str, Any]:
        cypher = """
        MATCH (d:Document {id: $document_id})
        CREATE (c:Chunk {
            id: $id, document_id: $document_id, chunk_index: $chunk_index,
            content: $content, start_pos: $start_pos, end_pos: $end_pos
        })
        CREATE (d)-[:HAS_CHUNK]->(c)
        RETURN c.id AS id
        """
        results = self.execute_query(cypher, {
            "id": str(uuid.uuid4()), "document_id": document_id,
            "chunk_index": chunk_index, "content": content,
            "start_pos": start_pos, "end_pos": end_pos,
        })
        return results[0] if results else {}

    def get_document_chunks(self, document_id: str) -> List[Dict[str, Any]]:
        cypher = """
        MATCH (c:Chunk {document_id: $document_id})
        RETURN c.id AS id, c.chunk_index AS chunk_index, c.content AS content,
               c.start_pos AS start_pos, c.end_pos AS end_pos,
               c.embedding IS NOT NULL AS embedded
        ORDER BY c.chunk_index
        """
        return self.execute_query(cypher, {"document_id": document_id})

    def set_chunk_embedding(self, chunk_id: str, embedding: List[float]) -> bool:
        results = self.execute_query(
            "MATCH (c:Chunk {id: $id}) SET c.embedding = $embedding RETURN c.id AS id",
            {"id": chunk_id, "embedding": embedding},
        )
        return bool(results)

    def link_document_entity(self, document_id: str, entity_id: str) -> int:
        """MERGE a MENTIONS edge from every chunk of the document to the entity."""
        cypher = """
        MATCH (e:Entity {id: $entity_id})
        MATCH (c:Chunk {document_id: $document_id})
        MERGE (c)-[:MENTIONS]->(e)
        RETURN count(c) AS count
        """
        return self._count(cypher, {"document_id": document_id, "entity_id": entity_id})

    # ── Full-text search ─────────────────────────────────────────────

    def fulltext_index_online(self, index_name: str = FULLTEXT_INDEX_NAME) -> bool:
        results = self.execute_query("SHOW FULLTEXT INDEXES YIELD name, state RETURN name, state")
        return any(
            row.get("name") == index_name and row.get("state") in ("ONLINE", "POPULATING")
            for row in results
        )

    def fulltext_search(
        self, query: str, limit: int, index_name: str = FULLTEXT_INDEX_NAME
    ) -> List[Dict[str, Any]]:
        cypher = """
        CALL db.index.fulltext.queryNodes($index_name, $query)
        YIELD node, score
        RETURN node.id AS id, node.content AS content, node.metadata AS metadata,
               node.created_at AS created_at, score
        ORDER BY score DESC
        LIMIT $limit
        """
        return self._rows(cypher, {
            "index_name": index_name, "query": query, "limit": int(limit),
        })

    def keyword_search_documents(self, keywords: Iterable[str], limit: int) -> List[Dict[str, Any]]:
        """Documents whose content contains any keyword (case-insensitive)."""
        cypher = f"""
        MATCH (d:Document)
        WHERE any(kw IN $keywords WHERE toLower(d.content) CONTAINS kw)
        RETURN {DOCUMENT_FIELDS}
        ORDER BY d.created_at DESC
        LIMIT $limit
        """
        return self._rows(cypher, {
            "keywords": [kw.lower() for kw in keywords], "limit": int(limit),
        })

    def rebuild_fulltext_index(self):
        self.execute_query(DROP_FULLTEXT_INDEX)
        self.execute_query(FULLTEXT_INDEX)
        logger.info("Full-text index %s recreated", FULLTEXT_INDEX_NAME)

    # ── Statistics ───────────────────────────────────────────────────

    def get_stats(self) -> Dict[str, Any]:
        counts = {
            "entities": "MATCH (e:Entity) RETURN count(e) AS count",
            "relationships": "MATCH (:Entity)-[r:RELATES_TO]->(:Entity) RETURN count(r) AS count",
            "documents": "MATCH (d:Document) RETURN count(d) AS count",
            "chunks": "MATCH (c:Chunk) RETURN count(c) AS count",
            "embeddedChunks": "MATCH (c:Chunk) WHERE c.embedding IS NOT NULL RETURN count(c) AS count",
            "entityEmbeddings": "MATCH (m:EntityEmbedding) RETURN count(m) AS count",
            "chunkEntityLinks": "MATCH (:Chunk)-[m:MENTIONS]->(:Entity) RETURN count(m) AS count",
        }
        stats: Dict[str, Any] = {key: self._count(cypher) for key, cypher in counts.items()}
        types = self.execute_query("""
        MATCH (e:Entity)
        RETURN e.entity_type AS entity_type, count(e) AS count
        ORDER BY count DESC, entity_type
        """)
        stats["entityTypes"] = {row["entity_type"]: row["count"] for row in types}
        return stats
