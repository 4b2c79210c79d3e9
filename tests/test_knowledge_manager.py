"""Tests for graph mutations, the document pipeline and context aggregation."""

from unittest.mock import MagicMock, patch

import pytest

from rag_memory.errors import EmbeddingUnavailableError, NotFoundError
from rag_memory.knowledge_manager import RAGKnowledgeManager, entity_embedding_text
from tests.fakes import StubEmbeddingProvider


def _entity(name, entity_type="TECHNOLOGY", observations=None):
    return {"name": name, "entityType": entity_type, "observations": observations or []}


# ── Entities ────────────────────────────────────────────────────────


class TestCreateEntities:
    def test_creates_and_embeds(self, manager, graph, embeddings):
        results = manager.create_entities([_entity("React", observations=["UI library"])])

        assert results[0]["success"] is True
        assert results[0]["entity"] == "React"
        entity_id = results[0]["id"]
        stored = graph.entity_embeddings[entity_id]
        assert stored["embedding_text"] == "React TECHNOLOGY UI library"
        assert len(stored["embedding"]) == 384

    def test_duplicate_is_soft_error_and_batch_continues(self, manager):
        manager.create_entities([_entity("React")])
        results = manager.create_entities([_entity("React"), _entity("Vue")])

        assert results[0] == {"success": False, "entity": "React", "error": "Entity already exists"}
        assert results[1]["success"] is True

    def test_default_entity_type(self, manager, graph):
        manager.create_entities([{"name": "Idea"}])
        assert graph.get_entities_by_names(["Idea"])[0]["entity_type"] == "CONCEPT"

    def test_embedding_failure_does_not_fail_creation(self, graph, failing_embeddings):
        mgr = RAGKnowledgeManager(graph_client=graph, embedding_service=failing_embeddings)
        results = mgr.create_entities([_entity("React")])
        assert results[0]["success"] is True
        assert graph.entity_embeddings == {}

    def test_mixed_batch_never_aborts(self, manager, graph):
        results = manager.create_entities([
            {"name": "A", "observations": [42]},
            {"entityType": "TECHNOLOGY"},
            {"name": "B"},
        ])

        assert results[0]["success"] is True
        assert results[1] == {"success": False, "entity": None, "error": "Entity name is required"}
        assert results[2]["success"] is True
        assert {e["name"] for e in graph.get_all_entities()} == {"A", "B"}
        texts = {v["embedding_text"] for v in graph.entity_embeddings.values()}
        assert "A CONCEPT 42" in texts

    def test_embedding_text_error_does_not_fail_creation(self, graph, embeddings):
        mgr = RAGKnowledgeManager(graph_client=graph, embedding_service=embeddings)
        with patch("rag_memory.knowledge_manager.entity_embedding_text", side_effect=TypeError("bad")):
            results = mgr.create_entities([_entity("A"), _entity("B")])
        assert [r["success"] for r in results] == [True, True]
        assert graph.entity_embeddings == {}

    def test_storage_error_reported_per_entity(self, embeddings):
        graph = MagicMock()
        graph.create_entity.side_effect = [RuntimeError("connection reset"), {
            "id": "id-2", "name": "B", "entity_type": "T", "observations": [],
        }]
        mgr = RAGKnowledgeManager(graph_client=graph, embedding_service=embeddings)
        results = mgr.create_entities([_entity("A"), _entity("B")])
        assert results[0]["success"] is False
        assert "connection reset" in results[0]["error"]
        assert results[1]["success"] is True


class TestRelations:
    def test_create_relation(self, manager, graph):
        manager.create_entities([_entity("React"), _entity("JavaScript", "LANGUAGE")])
        results = manager.create_relations([
            {"from": "React", "to": "JavaScript", "relationType": "BUILT_WITH"},
        ])
        assert results == [{"success": True, "relation": "React -[BUILT_WITH]-> JavaScript"}]
        rel = graph.get_all_relationships()[0]
        assert rel["confidence"] == 1.0
        assert (rel["from"], rel["to"]) == ("React", "JavaScript")

    def test_missing_endpoint_fails_softly(self, manager, graph):
        manager.create_entities([_entity("React")])
        results = manager.create_relations([
            {"from": "React", "to": "Ghost", "relationType": "USES"},
            {"from": "React", "to": "React", "relationType": "SELF"},
        ])
        assert results[0]["success"] is False
        assert results[0]["error"] == "Source or target entity not found"
        assert results[1]["success"] is True
        assert len(graph.relationships) == 1

    def test_delete_relation_keeps_entities(self, manager, graph):
        manager.create_entities([_entity("A"), _entity("B")])
        manager.create_relations([
            {"from": "A", "to": "B", "relationType": "USES"},
            {"from": "A", "to": "B", "relationType": "EXTENDS"},
        ])
        result = manager.delete_relations([{"from": "A", "to": "B", "relationType": "USES"}])

        assert result["deleted"] == [{"from": "A", "to": "B", "relationType": "USES"}]
        assert {e["name"] for e in graph.get_all_entities()} == {"A", "B"}
        assert [r["relation_type"] for r in graph.get_all_relationships()] == ["EXTENDS"]

    def test_delete_relation_exact_match_only(self, manager, graph):
        manager.create_entities([_entity("A"), _entity("B")])
        manager.create_relations([{"from": "A", "to": "B", "relationType": "USES"}])

        result = manager.delete_relations([
            {"from": "B", "to": "A", "relationType": "USES"},
            {"from": "A", "to": "B", "relationType": "USE"},
            {"from": "A", "to": "Nobody", "relationType": "USES"},
        ])
        assert result["deleted"] == []
        assert len(result["notFound"]) == 3
        assert len(graph.relationships) == 1


class TestObservations:
    def test_add_observations(self, manager, graph):
        manager.create_entities([_entity("React", observations=["one"])])
        results = manager.add_observations([
            {"entityName": "React", "contents": ["two", "three"]},
            {"entityName": "Missing", "contents": ["x"]},
        ])
        assert results[0] == {"success": True, "entity": "React", "added": 2}
        assert results[1]["success"] is False
        assert graph.get_entities_by_names(["React"])[0]["observations"] == ["one", "two", "three"]

    def test_delete_observations_exact_match(self, manager, graph):
        manager.create_entities([_entity("React", observations=[
            "UI library", "made by Meta", "ui library", "UI library",
        ])])
        result = manager.delete_observations([
            {"entityName": "React", "observations": ["UI library", "not present"]},
            {"entityName": "Ghost", "observations": ["x"]},
        ])

        assert result["deleted"] == [{"entity": "React", "removedCount": 2}]
        assert result["notFound"] == ["Ghost"]
        remaining = graph.get_entities_by_names(["React"])[0]["observations"]
        assert remaining == ["made by Meta", "ui library"]
        assert "UI library" not in remaining


class TestDeleteEntities:
    def test_scenario_delete_cascades_relationships(self, manager, graph):
        manager.create_entities([_entity("React"), _entity("JavaScript", "LANGUAGE")])
        created = manager.create_relations([
            {"from": "React", "to": "JavaScript", "relationType": "BUILT_WITH"},
        ])
        assert created[0]["success"] is True

        result = manager.delete_entities(["React"])
        assert result == {"deleted": ["React"], "notFound": [], "errors": []}

        nodes = manager.open_nodes(["JavaScript"])
        assert [e["name"] for e in nodes["entities"]] == ["JavaScript"]
        assert nodes["relations"] == []
        assert graph.relationships == {}

    def test_removes_relationships_in_both_directions(self, manager, graph):
        manager.create_entities([_entity("A"), _entity("B"), _entity("C")])
        manager.create_relations([
            {"from": "A", "to": "B", "relationType": "R"},
            {"from": "C", "to": "A", "relationType": "R"},
            {"from": "B", "to": "C", "relationType": "R"},
        ])
        manager.delete_entities(["A"])
        remaining = [(r["from"], r["to"]) for r in graph.get_all_relationships()]
        assert remaining == [("B", "C")]

    def test_not_found_is_not_an_error(self, manager):
        result = manager.delete_entities(["Nobody"])
        assert result == {"deleted": [], "notFound": ["Nobody"], "errors": []}

    def test_relationships_deleted_before_entity(self, embeddings):
        graph = MagicMock()
        graph.get_entity_id.return_value = "e1"
        graph.delete_entity_relationships.return_value = 2
        mgr = RAGKnowledgeManager(graph_client=graph, embedding_service=embeddings)

        mgr.delete_entities(["React"])
        calls = [c[0] for c in graph.method_calls if c[0].startswith("delete_")]
        assert calls == ["delete_entity_relationships", "delete_entity_links", "delete_entity"]

    def test_removes_links_and_embedding(self, manager, graph):
        manager.create_entities([_entity("React")])
        manager.process_document("doc", "React components", max_chunk_size=8, overlap=0)
        manager.link_entities_to_document("doc", ["React"])
        assert graph.mentions

        result = manager.delete_entities(["React"])
        assert result["deleted"] == ["React"]
        assert graph.mentions == set()
        assert graph.entity_embeddings == {}

    def test_delete_error_is_recorded(self, embeddings):
        graph = MagicMock()
        graph.get_entity_id.return_value = "e1"
        graph.delete_entity_relationships.return_value = 0
        graph.delete_entity.side_effect = RuntimeError("still has relationships")
        mgr = RAGKnowledgeManager(graph_client=graph, embedding_service=embeddings)

        result = mgr.delete_entities(["React", "Vue"])
        assert result["deleted"] == []
        assert [e["entity"] for e in result["errors"]] == ["React", "Vue"]


class TestEmbedAllEntities:
    def test_embeds_every_entity(self, manager, graph, embeddings):
        manager.create_entities([_entity("A"), _entity("B")])
        graph.entity_embeddings.clear()

        result = manager.embed_all_entities()
        assert result == {"totalEntities": 2, "embeddedEntities": 2}
        assert len(graph.entity_embeddings) == 2

    def test_unavailable_provider_raises(self, graph):
        mgr = RAGKnowledgeManager(
            graph_client=graph, embedding_service=StubEmbeddingProvider(available=False),
        )
        with pytest.raises(EmbeddingUnavailableError):
            mgr.embed_all_entities()

    def test_embedding_text(self):
        assert entity_embedding_text("Neo4j", "DATABASE", ["graph", "cypher"]) == "Neo4j DATABASE graph cypher"
        assert entity_embedding_text("X", None, []) == "X CONCEPT"


# ── Documents ───────────────────────────────────────────────────────


class TestProcessDocument:
    def test_full_pipeline(self, manager, graph):
        result = manager.process_document("doc1", "a" * 1200)

        assert result["success"] is True
        assert [s["step"] for s in result["steps"]] == ["store", "chunk", "embed"]
        assert all(s["status"] == "success" for s in result["steps"])
        assert result["chunksCreated"] == 3
        assert result["embeddedChunks"] == 3

    def test_null_embeddings_still_succeed(self, graph, failing_embeddings):
        mgr = RAGKnowledgeManager(graph_client=graph, embedding_service=failing_embeddings)
        result = mgr.process_document("doc1", "some content to chunk", max_chunk_size=5, overlap=1)

        assert result["success"] is True
        assert result["chunksCreated"] > 0
        assert result["embeddedChunks"] == 0
        assert all(c["embedded"] is False for c in graph.get_document_chunks("doc1"))

    def test_unavailable_provider_skips_embedding(self, graph):
        mgr = RAGKnowledgeManager(
            graph_client=graph, embedding_service=StubEmbeddingProvider(available=False),
        )
        result = mgr.process_document("doc1", "content")

        assert result["success"] is True
        assert result["steps"][-1]["status"] == "skipped"
        assert result["embeddedChunks"] == 0

    def test_empty_content_skips_embedding(self, manager):
        result = manager.process_document("empty", "")
        assert result["success"] is True
        assert result["chunksCreated"] == 0
        assert result["steps"][-1] == {
            "step": "embed", "status": "skipped", "reason": "No chunks to embed",
        }

    def test_chunk_failure_keeps_stored_document(self, manager, graph):
        result = manager.process_document("doc1", "content", max_chunk_size=10, overlap=10)

        assert result["success"] is False
        assert result["steps"][0]["status"] == "success"
        assert result["steps"][-1]["step"] == "chunk"
        assert result["steps"][-1]["status"] == "failed"
        assert "error" in result
        assert graph.get_document("doc1") is not None

    def test_store_upserts(self, manager, graph):
        manager.process_document("doc1", "first version", metadata={"v": 1})
        manager.process_document("doc1", "second version", metadata={"v": 2})

        doc = graph.get_document("doc1")
        assert doc["content"] == "second version"
        assert doc["metadata"] == {"v": 2}
        assert len(graph.documents) == 1


class TestEmbedChunks:
    def test_missing_chunks_raise(self, manager):
        manager.store_document("doc1", "text")
        with pytest.raises(NotFoundError):
            manager.embed_chunks("doc1")

    def test_partial_failures_are_skipped(self, graph):
        provider = StubEmbeddingProvider()
        original = provider._embed

        def flaky(text):
            if text.startswith("b"):
                raise RuntimeError("timeout")
            return original(text)

        provider._embed = flaky
        mgr = RAGKnowledgeManager(graph_client=graph, embedding_service=provider)
        mgr.store_document("doc1", "aaaabbbbcccc")
        mgr.chunk_document("doc1", 4, 0)

        result = mgr.embed_chunks("doc1")
        assert result == {"documentId": "doc1", "embeddedChunks": 2, "totalChunks": 3}


class TestDocumentManagement:
    def test_list_documents(self, manager):
        manager.store_document("old", "x", {"tag": "a"})
        manager.store_document("new", "y")

        docs = manager.list_documents()
        assert [d["id"] for d in docs] == ["new", "old"]
        assert docs[1]["metadata"] == {"tag": "a"}
        assert set(manager.list_documents(include_metadata=False)[0]) == {"id", "created_at"}

    def test_delete_documents_removes_chunks(self, manager, graph):
        manager.process_document("doc1", "x" * 50, max_chunk_size=10, overlap=0)
        result = manager.delete_documents(["doc1", "ghost"])

        assert result == {"deleted": ["doc1"], "notFound": ["ghost"], "errors": []}
        assert graph.chunks == {}
        assert graph.documents == {}

    def test_link_entities_to_document(self, manager, graph):
        manager.create_entities([_entity("React")])
        manager.process_document("doc1", "React " * 10, max_chunk_size=20, overlap=0)

        result = manager.link_entities_to_document("doc1", ["React", "Ghost"])
        assert result == {"documentId": "doc1", "linkedEntities": 1, "notFound": ["Ghost"]}
        assert len(graph.mentions) == 3

        # idempotent
        manager.link_entities_to_document("doc1", ["React"])
        assert len(graph.mentions) == 3

    def test_link_missing_document_raises(self, manager):
        with pytest.raises(NotFoundError):
            manager.link_entities_to_document("nope", ["React"])

    def test_extract_terms(self, manager):
        manager.store_document("doc1", "We use React Native and Neo4j. React Native is fast; graph graph graph.")
        result = manager.extract_terms("doc1")

        assert result["documentId"] == "doc1"
        assert result["terms"] == ["React Native"]
        assert result["keywords"][0] == {"term": "graph", "count": 3}

    def test_extract_terms_without_capitalized(self, manager):
        manager.store_document("doc1", "Alpha beta")
        assert manager.extract_terms("doc1", include_capitalized=False)["terms"] == []

    def test_stats(self, manager):
        manager.create_entities([_entity("React"), _entity("Python", "LANGUAGE")])
        manager.process_document("doc1", "abcdefgh", max_chunk_size=4, overlap=0)
        stats = manager.get_knowledge_graph_stats()

        assert stats["entities"] == 2
        assert stats["documents"] == 1
        assert stats["chunks"] == 2
        assert stats["embeddedChunks"] == 2
        assert stats["entityTypes"] == {"TECHNOLOGY": 1, "LANGUAGE": 1}


# ── Search and context ──────────────────────────────────────────────


class TestDetailedContext:
    def setup_method(self):
        from tests.fakes import InMemoryGraphClient
        self.graph = InMemoryGraphClient()
        self.manager = RAGKnowledgeManager(
            graph_client=self.graph, embedding_service=StubEmbeddingProvider(),
        )
        self.manager.create_entities([
            _entity("React"), _entity("React Native"), _entity("JavaScript", "LANGUAGE"),
        ])
        self.manager.create_relations([
            {"from": "React", "to": "JavaScript", "relationType": "BUILT_WITH"},
            {"from": "React Native", "to": "React", "relationType": "EXTENDS"},
            {"from": "JavaScript", "to": "React", "relationType": "POWERS"},
        ])
        self.manager.store_document("doc1", "React hooks guide")

    def test_documents_entities_and_outgoing_relationships(self):
        result = self.manager.get_detailed_context("react")

        assert result["query"] == "react"
        assert [d["id"] for d in result["documents"]] == ["doc1"]
        assert [e["name"] for e in result["entities"]] == ["React", "React Native"]
        pairs = {(r["from"], r["to"]) for r in result["relationships"]}
        assert pairs == {("React", "JavaScript"), ("React Native", "React")}

    def test_relationships_capped_at_limit(self):
        result = self.manager.get_detailed_context("react", limit=1)
        assert len(result["entities"]) == 1
        assert len(result["relationships"]) <= 1

    def test_negative_limit_returns_empty_context(self):
        result = self.manager.get_detailed_context("react", limit=-1)
        assert result["documents"] == []
        assert result["entities"] == []
        assert result["relationships"] == []

    def test_without_entities(self):
        result = self.manager.get_detailed_context("react", include_entities=False)
        assert result["entities"] == []
        assert result["relationships"] == []

    def test_empty_result_is_valid(self):
        result = self.manager.get_detailed_context("zz")
        assert result == {"query": "zz", "documents": [], "entities": [], "relationships": []}

    def test_hybrid_search_short_query(self):
        assert self.manager.hybrid_search("a to") == []

    def test_rebuild_search_index_resets_probe(self):
        assert self.manager.search_engine.fulltext_available is False
        result = self.manager.rebuild_search_index()
        assert result["status"] == "rebuilt"
        assert result["fulltextAvailable"] is True

    def test_read_graph(self):
        graph = self.manager.read_graph()
        assert len(graph["entities"]) == 3
        assert len(graph["relationships"]) == 3

    def test_search_nodes_matches_type(self):
        names = [e["name"] for e in self.manager.search_nodes("language")]
        assert names == ["JavaScript"]
