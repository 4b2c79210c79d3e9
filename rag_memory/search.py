"""Document search: Lucene full-text ranking with a keyword-count fallback."""

import logging
import re
import threading
from typing import Any, Dict, List, Optional

from neo4j.exceptions import Neo4jError

logger = logging.getLogger(__name__)

MIN_KEYWORD_LENGTH = 3
MAX_KEYWORDS = 5

LUCENE_SPECIAL_CHARS = re.compile(r'([+\-!(){}\[\]^"~*?:\\/]|&&|\|\|)')


def extract_keywords(query: str) -> List[str]:
    """Lowercased whitespace tokens of 3+ characters, at most 5, in query order."""
    words = query.lower().split()
    return [w for w in words if len(w) >= MIN_KEYWORD_LENGTH][:MAX_KEYWORDS]


def count_keyword_matches(content: str, keywords: List[str]) -> int:
    content_lower = (content or "").lower()
    return sum(1 for kw in keywords if kw in content_lower)


def rank_by_keyword_matches(
    documents: List[Dict[str, Any]], keywords: List[str], limit: int
) -> List[Dict[str, Any]]:
    """Order by number of keywords contained, most first.

    sorted() is stable, so documents with equal counts keep their fetch order.
    """
    ranked = sorted(
        documents,
        key=lambda doc: count_keyword_matches(doc.get("content", ""), keywords),
        reverse=True,
    )
    return ranked[:limit]


def escape_lucene(query: str) -> str:
    return LUCENE_SPECIAL_CHARS.sub(r"\\\1", query)


class HybridSearchEngine:
    """Searches documents through the full-text index when one is online.

    Whether the index exists is probed once and remembered for the life of
    the process; reset() forces a new probe (after an index rebuild).
    """

    def __init__(self, graph_client):
        self.graph = graph_client
        self._fulltext_available: Optional[bool] = None
        self._probe_lock = threading.Lock()

    @property
    def fulltext_available(self) -> bool:
        with self._probe_lock:
            if self._fulltext_available is None:
                try:
                    self._fulltext_available = self.graph.fulltext_index_online()
                except Neo4jError as e:
                    logger.warning("Full-text index probe failed: %s", e)
                    self._fulltext_available = False
                logger.info(
                    "Hybrid search mode: %s",
                    "full-text index" if self._fulltext_available else "keyword fallback",
                )
            return self._fulltext_available

    def reset(self):
        with self._probe_lock:
            self._fulltext_available = None

    def search(self, query: str, limit: int = 5) -> List[Dict[str, Any]]:
        if limit <= 0:
            return []
        if self.fulltext_available:
            lucene_query = escape_lucene(query.strip())
            if not lucene_query:
                return []
            try:
                return self.graph.fulltext_search(lucene_query, limit)
            except Neo4jError as e:
                logger.warning("Full-text query failed, using keyword fallback: %s", e)
        return self.keyword_search(query, limit)

    def keyword_search(self, query: str, limit: int = 5) -> List[Dict[str, Any]]:
        keywords = extract_keywords(query)
        if not keywords or limit <= 0:
            return []
        candidates = self.graph.keyword_search_documents(keywords, limit * 2)
        return rank_by_keyword_matches(candidates, keywords, limit)
