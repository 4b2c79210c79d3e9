"""High-level knowledge manager orchestrating graph storage, chunking, embedding and retrieval."""

import logging
from typing import Any, Dict, List, Optional

from rag_memory.chunker import compute_chunk_windows
from rag_memory.config import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_SIZE
from rag_memory.embeddings import EmbeddingProvider, create_embedding_provider
from rag_memory.errors import (
    EmbeddingUnavailableError,
    EntityExistsError,
    NotFoundError,
)
from rag_memory.graph_client import Neo4jGraphClient
from rag_memory.graph_schema import FULLTEXT_INDEX_NAME
from rag_memory.search import HybridSearchEngine
from rag_memory.term_extractor import TermExtractor

logger = logging.getLogger(__name__)

DEFAULT_ENTITY_TYPE = "CONCEPT"


def entity_embedding_text(name: str, entity_type: str, observations: List[str]) -> str:
    """Text embedded for an entity: name, type, then every observation."""
    parts = [str(name), str(entity_type or DEFAULT_ENTITY_TYPE)]
    parts.extend(str(o) for o in observations or [])
    return " ".join(parts)


def _batch_result() -> Dict[str, list]:
    return {"deleted": [], "notFound": [], "errors": []}


class RAGKnowledgeManager:
    """Entity graph, document pipeline, hybrid search and context aggregation.

    Batch operations handle each item independently: a failing item is
    reported in the result and the rest of the batch still runs.
    """

    def __init__(
        self,
        graph_client: Optional[Neo4jGraphClient] = None,
        embedding_service: Optional[EmbeddingProvider] = None,
        search_engine: Optional[HybridSearchEngine] = None,
        term_extractor: Optional[TermExtractor] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    ):
        self.graph = graph_client or Neo4jGraphClient()
        self.embeddings = embedding_service or create_embedding_provider()
        self.search_engine = search_engine or HybridSearchEngine(self.graph)
        self.extractor = term_extractor or TermExtractor()
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    def close(self):
        self.graph.close()

    def init_schema(self):
        """Initialize the graph schema and indexes."""
        self.graph.init_schema(self.embeddings.dimensions)

    @property
    def embeddings_available(self) -> bool:
        return self.embeddings is not None and self.embeddings.available

    def generate_embedding(self, text: str) -> Optional[List[float]]:
        if not self.embeddings_available:
            return None
        return self.embeddings.embed(text)

    # ── Entities ─────────────────────────────────────────────────────

    def create_entities(self, entities: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        results = []
        for entity in entities:
            name = entity.get("name")
            if not isinstance(name, str) or not name.strip():
                results.append({"success": False, "entity": name, "error": "Entity name is required"})
                continue
            try:
                row = self.graph.create_entity(
                    name=name,
                    entity_type=entity.get("entityType") or DEFAULT_ENTITY_TYPE,
                    observations=entity.get("observations") or [],
                    metadata=entity.get("metadata"),
                )
            except EntityExistsError:
                results.append({"success": False, "entity": name, "error": "Entity already exists"})
                continue
            except Exception as e:
                logger.warning("Failed to create entity %s: %s", name, e)
                results.append({"success": False, "entity": name, "error": str(e)})
                continue
            if not row:
                results.append({"success": False, "entity": name, "error": "Entity was not stored"})
                continue

            results.append({"success": True, "entity": row["name"], "id": row["id"]})
            self._embed_entity(row)
        return results

    def _embed_entity(self, row: Dict[str, Any]) -> bool:
        """Best effort; a failure here never fails the caller."""
        try:
            text = entity_embedding_text(
                row["name"], row.get("entity_type"), row.get("observations")
            )
            embedding = self.generate_embedding(text)
            if embedding is None:
                return False
            return self.graph.upsert_entity_embedding(row["id"], embedding, text)
        except Exception as e:
            logger.warning("Failed to embed entity %s: %s", row.get("name"), e)
            return False

    def create_relations(self, relations: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        results = []
        for relation in relations:
            source, target = relation.get("from"), relation.get("to")
            relation_type = relation.get("relationType")
            label = f"{source} -> {target}"
            try:
                source_id = self.graph.get_entity_id(source)
                target_id = self.graph.get_entity_id(target)
                if not source_id or not target_id:
                    results.append({
                        "success": False, "relation": label,
                        "error": "Source or target entity not found",
                    })
                    continue
                created = self.graph.create_relationship(
                    source_id, target_id, relation_type,
                    confidence=relation.get("confidence", 1.0),
                    metadata=relation.get("metadata"),
                )
                if not created:
                    raise NotFoundError(f"Entities for {label} disappeared before linking")
            except Exception as e:
                logger.warning("Failed to create relation %s: %s", label, e)
                results.append({"success": False, "relation": label, "error": str(e)})
                continue
            results.append({
                "success": True, "relation": f"{source} -[{relation_type}]-> {target}",
            })
        return results

    def add_observations(self, observations: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        results = []
        for obs in observations:
            name = obs.get("entityName")
            contents = obs.get("contents") or []
            try:
                total = self.graph.append_observations(name, contents)
            except Exception as e:
                results.append({"success": False, "entity": name, "error": str(e)})
                continue
            if total is None:
                results.append({"success": False, "entity": name, "error": "Entity not found"})
            else:
                results.append({"success": True, "entity": name, "added": len(contents)})
        return results

    def search_nodes(self, query: str, limit: int = 10) -> List[Dict[str, Any]]:
        return self.graph.search_entities(query, limit)

    def open_nodes(self, names: List[str]) -> Dict[str, Any]:
        """Entities by exact name, plus every relation touching them."""
        return {
            "entities": self.graph.get_entities_by_names(names),
            "relations": self.graph.get_relationships_touching(names),
        }

    def delete_entities(self, entity_names: List[str]) -> Dict[str, list]:
        results = _batch_result()
        for name in entity_names:
            try:
                entity_id = self.graph.get_entity_id(name)
                if not entity_id:
                    results["notFound"].append(name)
                    continue
                # relationships must go before the entity row
                removed = self.graph.delete_entity_relationships(entity_id)
                self.graph.delete_entity_links(entity_id)
                self.graph.delete_entity(entity_id)
                logger.info("Deleted entity %s and %d relationships", name, removed)
                results["deleted"].append(name)
            except Exception as e:
                logger.warning("Failed to delete entity %s: %s", name, e)
                results["errors"].append({"entity": name, "error": str(e)})
        return results

    def delete_relations(self, relations: List[Dict[str, Any]]) -> Dict[str, list]:
        results = _batch_result()
        for rel in relations:
            try:
                source_id = self.graph.get_entity_id(rel.get("from"))
                target_id = self.graph.get_entity_id(rel.get("to"))
                if not source_id or not target_id:
                    results["notFound"].append(rel)
                    continue
                deleted = self.graph.delete_relationship(
                    source_id, target_id, rel.get("relationType")
                )
                if deleted:
                    results["deleted"].append(rel)
                else:
                    results["notFound"].append(rel)
            except Exception as e:
                logger.warning("Failed to delete relation %s: %s", rel, e)
                results["errors"].append({"relation": rel, "error": str(e)})
        return results

    def delete_observations(self, deletions: List[Dict[str, Any]]) -> Dict[str, list]:
        results = _batch_result()
        for deletion in deletions:
            name = deletion.get("entityName")
            try:
                counts = self.graph.remove_observations(name, deletion.get("observations") or [])
                if counts is None:
                    results["notFound"].append(name)
                    continue
                results["deleted"].append({
                    "entity": name,
                    "removedCount": counts["before"] - counts["after"],
                })
            except Exception as e:
                logger.warning("Failed to delete observations of %s: %s", name, e)
                results["errors"].append({"entity": name, "error": str(e)})
        return results

    def embed_all_entities(self) -> Dict[str, int]:
        if not self.embeddings_available:
            raise EmbeddingUnavailableError("Embedding model not initialized")

        logger.info("Generating embeddings for all entities...")
        entities = self.graph.get_all_entities()
        embedded = sum(1 for entity in entities if self._embed_entity(entity))
        logger.info("Embedded %d/%d entities", embedded, len(entities))
        return {"totalEntities": len(entities), "embeddedEntities": embedded}

    def read_graph(self) -> Dict[str, Any]:
        entities = self.graph.get_all_entities()
        relationships = self.graph.get_all_relationships()
        logger.info("Read %d entities, %d relationships", len(entities), len(relationships))
        return {"entities": entities, "relationships": relationships}

    # ── Documents ────────────────────────────────────────────────────

    def store_document(
        self, id: str, content: str, metadata: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        return self.graph.upsert_document(id, content, metadata or {})

    def list_documents(self, include_metadata: bool = True) -> List[Dict[str, Any]]:
        return self.graph.list_documents(include_metadata)

    def delete_documents(self, document_ids: List[str]) -> Dict[str, list]:
        logger.info("Deleting %d documents...", len(document_ids))
        results = _batch_result()
        for doc_id in document_ids:
            try:
                if self.graph.get_document(doc_id) is None:
                    results["notFound"].append(doc_id)
                    continue
                # chunks must go before the document row
                self.graph.delete_document_chunks(doc_id)
                self.graph.delete_document(doc_id)
                results["deleted"].append(doc_id)
            except Exception as e:
                logger.warning("Failed to delete document %s: %s", doc_id, e)
                results["errors"].append({"document": doc_id, "error": str(e)})
        logger.info("Deleted %d documents", len(results["deleted"]))
        return results

    def _require_document(self, document_id: str) -> Dict[str, Any]:
        doc = self.graph.get_document(document_id)
        if doc is None:
            raise NotFoundError(f"Document {document_id} not found")
        return doc

    def chunk_document(
        self,
        document_id: str,
        max_chunk_size: Optional[int] = None,
        overlap: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Replace the document's chunks with fixed-size overlapping windows."""
        max_chunk_size = self.chunk_size if max_chunk_size is None else max_chunk_size
        overlap = self.chunk_overlap if overlap is None else overlap

        doc = self._require_document(document_id)
        windows = compute_chunk_windows(doc["content"] or "", max_chunk_size, overlap)

        logger.info("Chunking document %s", document_id)
        self.graph.delete_document_chunks(document_id)
        chunks = []
        for window in windows:
            try:
                created = self.graph.create_chunk(
                    document_id, window.index, window.content,
                    window.start_pos, window.end_pos,
                )
            except Exception as e:
                logger.warning("Failed to store chunk %d of %s: %s", window.index, document_id, e)
                continue
            if created:
                chunks.append(window.to_dict())

        logger.info("Created %d chunks", len(chunks))
        return {"documentId": document_id, "chunks": chunks}

    def embed_chunks(self, document_id: str) -> Dict[str, Any]:
        if not self.embeddings_available:
            raise EmbeddingUnavailableError("Embedding model not initialized")

        logger.info("Embedding chunks for document %s", document_id)
        chunks = self.graph.get_document_chunks(document_id)
        if not chunks:
            raise NotFoundError(f"No chunks found for document {document_id}")

        embedded = 0
        for chunk in chunks:
            try:
                embedding = self.embeddings.embed(chunk["content"])
                if embedding is None:
                    continue
                if self.graph.set_chunk_embedding(chunk["id"], embedding):
                    embedded += 1
            except Exception as e:
                logger.warning("Failed to embed chunk %s: %s", chunk["id"], e)

        logger.info("Embedded %d/%d chunks", embedded, len(chunks))
        return {"documentId": document_id, "embeddedChunks": embedded, "totalChunks": len(chunks)}

    def process_document(
        self,
        id: str,
        content: str,
        max_chunk_size: Optional[int] = None,
        overlap: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Run store -> chunk -> embed, recording every step's outcome.

        Nothing is rolled back: if a later step fails, earlier steps stay
        persisted and the steps log says how far processing got.
        """
        results: Dict[str, Any] = {
            "documentId": id, "steps": [], "success": True,
            "chunksCreated": 0, "embeddedChunks": 0,
        }
        step = "store"
        try:
            logger.info("Step 1/3: storing document %s", id)
            self.store_document(id, content, metadata or {})
            results["steps"].append({"step": "store", "status": "success", "documentId": id})

            step = "chunk"
            logger.info("Step 2/3: chunking document %s", id)
            chunk_result = self.chunk_document(id, max_chunk_size, overlap)
            results["chunksCreated"] = len(chunk_result["chunks"])
            results["steps"].append({
                "step": "chunk", "status": "success",
                "chunksCreated": results["chunksCreated"],
            })

            step = "embed"
            logger.info("Step 3/3: generating embeddings for %s", id)
            if not self.embeddings_available:
                results["steps"].append({
                    "step": "embed", "status": "skipped",
                    "reason": "Embedding model not initialized",
                })
            elif results["chunksCreated"] == 0:
                results["steps"].append({
                    "step": "embed", "status": "skipped", "reason": "No chunks to embed",
                })
            else:
                embed_result = self.embed_chunks(id)
                results["embeddedChunks"] = embed_result["embeddedChunks"]
                results["steps"].append({
                    "step": "embed", "status": "success",
                    "embeddedChunks": embed_result["embeddedChunks"],
                })
        except Exception as e:
            logger.error("Error processing document %s at step %s: %s", id, step, e)
            results["success"] = False
            results["error"] = str(e)
            results["steps"].append({"step": step, "status": "failed", "error": str(e)})
            return results

        logger.info("Document %s fully processed", id)
        return results

    def link_entities_to_document(self, document_id: str, entity_names: List[str]) -> Dict[str, Any]:
        self._require_document(document_id)
        logger.info("Linking entities to document %s", document_id)

        linked, not_found = 0, []
        for name in entity_names:
            entity_id = self.graph.get_entity_id(name)
            if not entity_id:
                logger.warning("Entity %s not found, skipping", name)
                not_found.append(name)
                continue
            if self.graph.link_document_entity(document_id, entity_id) > 0:
                linked += 1

        logger.info("Linked %d entities to document %s", linked, document_id)
        return {"documentId": document_id, "linkedEntities": linked, "notFound": not_found}

    def extract_terms(
        self, document_id: str, min_length: int = 3, include_capitalized: bool = True
    ) -> Dict[str, Any]:
        doc = self._require_document(document_id)
        text = doc["content"] or ""
        terms = (
            self.extractor.extract_capitalized_terms(text, min_length)
            if include_capitalized else []
        )
        keywords = self.extractor.extract_keywords(text, min_length=min_length)
        logger.info("Extracted %d terms from document %s", len(terms), document_id)
        return {
            "documentId": document_id,
            "terms": terms,
            "keywords": [{"term": k.term, "count": k.count} for k in keywords],
        }

    # ── Search and retrieval ─────────────────────────────────────────

    def hybrid_search(self, query: str, limit: int = 5) -> List[Dict[str, Any]]:
        return self.search_engine.search(query, limit)

    def get_detailed_context(
        self, query: str, limit: int = 5, include_entities: bool = True
    ) -> Dict[str, Any]:
        """Keyword document search plus matching entities and their outgoing relations."""
        logger.info("Getting detailed context for %r", query)
        limit = max(limit, 0)
        results: Dict[str, Any] = {
            "query": query, "documents": [], "entities": [], "relationships": [],
        }
        results["documents"] = self.search_engine.keyword_search(query, limit)

        if include_entities:
            entities = self.graph.search_entities_by_name(query, limit)
            results["entities"] = entities
            entity_ids = [e["id"] for e in entities if e.get("id")]
            if entity_ids:
                results["relationships"] = self.graph.get_relationships_from(entity_ids, limit)

        logger.info(
            "Found %d docs, %d entities", len(results["documents"]), len(results["entities"])
        )
        return results

    def rebuild_search_index(self) -> Dict[str, Any]:
        self.graph.rebuild_fulltext_index()
        self.search_engine.reset()
        return {
            "index": FULLTEXT_INDEX_NAME,
            "status": "rebuilt",
            "fulltextAvailable": self.search_engine.fulltext_available,
        }

    def get_knowledge_graph_stats(self) -> Dict[str, Any]:
        return self.graph.get_stats()
