"""Near-duplicate detection for newly indexed tools."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from tooldex.config import INDEX_DUPLICATE_THRESHOLD
from tooldex.index.common import name_similarity
from tooldex.index.types import SearchHit

logger = logging.getLogger(__name__)


class NearDuplicateResolver:
    """Decide which stored tools a new tool supersedes.

    Only vector similarity drives eviction. Name similarity is computed for
    the log so operators can audit why two differently named tools collided.
    """

    def __init__(self, eviction_threshold: Optional[float] = None):
        self.eviction_threshold = (
            INDEX_DUPLICATE_THRESHOLD
            if eviction_threshold is None
            else float(eviction_threshold)
        )

    def is_duplicate(self, similarity: float) -> bool:
        return similarity >= self.eviction_threshold

    def find_superseded(
        self, name: str, description: str, candidates: Iterable[SearchHit]
    ) -> List[SearchHit]:
        """Return the candidates that ``name`` should replace."""
        superseded: List[SearchHit] = []
        for candidate in candidates:
            similarity = candidate.similarity
            if not self.is_duplicate(similarity):
                continue
            logger.info(
                "Near-duplicate: '%s' supersedes '%s' "
                "(vector similarity %.4f, name similarity %.4f)",
                name,
                candidate.tool_name,
                similarity,
                name_similarity(name, candidate.tool_name),
            )
            superseded.append(candidate)
        return superseded
