"""Which tools each deployment mode exposes."""

import logging
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)

TOOL_MODES = {
    # Everyday memory operations
    "client": [
        "createEntities",
        "createRelations",
        "addObservations",
        "searchNodes",
        "openNodes",
        "processDocument",
        "hybridSearch",
        "getDetailedContext",
        "getGraph",
        "readGraph",
        "getKnowledgeGraphStats",
    ],
    # Cleanup and advanced document handling
    "maintenance": [
        "deleteEntities",
        "deleteRelations",
        "deleteObservations",
        "deleteDocuments",
        "storeDocument",
        "chunkDocument",
        "embedChunks",
        "embedAllEntities",
        "rebuildSearchIndex",
        "listDocuments",
        "extractTerms",
        "linkEntitiesToDocument",
    ],
    # None means every tool
    "full": None,
}


def get_tools_for_mode(mode: str = "full") -> Optional[List[str]]:
    normalized = (mode or "full").lower()
    if normalized not in TOOL_MODES:
        logger.warning("Unknown tool mode %s, falling back to 'full'", mode)
        return None
    return TOOL_MODES[normalized]


def filter_tools_by_mode(tool_names: Iterable[str], mode: str = "full") -> List[str]:
    allowed = get_tools_for_mode(mode)
    if allowed is None:
        return list(tool_names)
    return [name for name in tool_names if name in allowed]
