"""Query-time tool recommendation over the embedding index."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from tooldex.config import (
    INDEX_AUTO_INDEX,
    INDEX_BEST_TOOL_MIN_SIMILARITY,
    INDEX_MIN_SIMILARITY,
    INDEX_TOP_K,
)
from tooldex.core.exceptions import (
    NotInitializedError,
    TransientProviderError,
    ValidationError,
)
from tooldex.index.common import server_name_filter
from tooldex.index.pipeline import IndexingPipeline
from tooldex.index.store import ToolVectorStore
from tooldex.index.types import IndexReport, SearchHit
from tooldex.providers.base import LiveTool, ToolProvider
from tooldex.providers.registry import ServerRegistry

logger = logging.getLogger(__name__)

CONFIDENCE_LEVELS = (
    (0.8, "very_high"),
    (0.6, "high"),
    (0.4, "medium"),
    (0.2, "low"),
)


def confidence_level(similarity: float) -> str:
    """Bucket a cosine similarity into a coarse confidence label."""
    for floor, label in CONFIDENCE_LEVELS:
        if similarity >= floor:
            return label
    return "very_low"


@dataclass
class Recommendation:
    rank: int
    tool: LiveTool
    fingerprint: str
    similarity: float
    distance: float

    @property
    def tool_name(self) -> str:
        return self.tool.name

    @property
    def description(self) -> str:
        return self.tool.description

    @property
    def confidence(self) -> str:
        return confidence_level(self.similarity)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "tool_name": self.tool.name,
            "fingerprint": self.fingerprint,
            "description": self.tool.description,
            "similarity": round(self.similarity, 4),
            "confidence": self.confidence,
            "input_schema": self.tool.input_schema,
            "output_schema": self.tool.output_schema,
        }


@dataclass
class QueryRecommendations:
    query_index: int
    query: str
    recommendations: List[Recommendation]


def validate_query(query: Any) -> str:
    if not isinstance(query, str) or not query.strip():
        raise ValidationError("Query must be a non-empty string")
    return query


def validate_names(values: Any, label: str) -> Optional[List[str]]:
    if values is None:
        return None
    if isinstance(values, str) or not isinstance(values, (list, tuple, set)):
        raise ValidationError(f"{label} must be a list of strings")
    names = []
    for value in values:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"{label} must contain non-empty strings")
        names.append(value.strip())
    return names


class ToolRecommender:
    """Embeds queries, searches the index and returns live tools.

    Construct it once, call ``initialize()`` before the first query and
    ``close()`` on shutdown.
    """

    def __init__(
        self,
        store: ToolVectorStore,
        embedding_client: Any,
        provider: ToolProvider,
        registry: Optional[ServerRegistry] = None,
        pipeline: Optional[IndexingPipeline] = None,
    ):
        self.store = store
        self.embedding_client = embedding_client
        self.provider = provider
        self.registry = registry or ServerRegistry()
        self.pipeline = pipeline or IndexingPipeline(store, embedding_client)
        self.is_ready = False
        self.last_report: Optional[IndexReport] = None

    @property
    def model(self) -> str:
        return self.embedding_client.model

    def initialize(self, auto_index: Optional[bool] = None) -> Optional[IndexReport]:
        """Prepare storage and the embedding model, then index live tools."""
        if self.is_ready:
            return self.last_report
        self.store.init_db()
        load = getattr(self.embedding_client, "load", None)
        if callable(load):
            load()
        self.is_ready = True
        logger.info("Tool recommender ready with model %s", self.model)

        should_index = INDEX_AUTO_INDEX if auto_index is None else auto_index
        if should_index:
            return self.reindex()
        return None

    def close(self) -> None:
        """Mark the recommender unusable until ``initialize`` runs again.

        Store connections are opened per call, so there is nothing to release
        there. The embedding model stays cached on the client.
        """
        self.is_ready = False
        logger.debug("Tool recommender closed")

    def ensure_ready(self) -> None:
        if not self.is_ready:
            raise NotInitializedError()

    def _embed_query(self, query: str) -> List[float]:
        try:
            vector = self.embedding_client.embed_single(query)
        except Exception as exc:
            raise TransientProviderError(f"Query embedding failed: {exc}", text=query) from exc
        if not vector:
            raise TransientProviderError("Query embedding returned no vector", text=query)
        return vector

    def _resolve_name_filters(
        self,
        server_names: Optional[Sequence[str]],
        group_names: Optional[Sequence[str]],
    ) -> Optional[List[str]]:
        """LIKE filters for the requested scope; ``None`` means unscoped."""
        servers: Optional[set[str]] = None
        if group_names:
            servers = set(self.registry.server_names_for_groups(group_names))
        if server_names:
            explicit = set(server_names)
            servers = explicit if servers is None else servers & explicit
        if servers is None:
            return None
        return [server_name_filter(name) for name in sorted(servers)]

    def recommend(
        self,
        query: str,
        top_k: Optional[int] = None,
        min_similarity: Optional[float] = None,
        server_names: Optional[Sequence[str]] = None,
        group_names: Optional[Sequence[str]] = None,
    ) -> List[Recommendation]:
        """Rank live tools for ``query``; stale index entries are dropped."""
        self.ensure_ready()
        validate_query(query)
        server_names = validate_names(server_names, "server_names")
        group_names = validate_names(group_names, "group_names")
        top_k = INDEX_TOP_K if top_k is None else top_k
        min_similarity = INDEX_MIN_SIMILARITY if min_similarity is None else min_similarity
        if not isinstance(top_k, int) or isinstance(top_k, bool) or top_k <= 0:
            raise ValidationError("top_k must be a positive integer")
        if not isinstance(min_similarity, (int, float)) or isinstance(min_similarity, bool):
            raise ValidationError("min_similarity must be a number")

        name_filters = self._resolve_name_filters(server_names, group_names)
        if name_filters == []:
            logger.debug("No servers match the requested scope")
            return []

        vector = self._embed_query(query)
        hits = self.store.search_nearest(
            vector,
            k=top_k,
            min_similarity=float(min_similarity),
            name_filters=name_filters,
            model=self.model,
        )
        live_tools = {tool.fingerprint: tool for tool in self.provider.list_tools()}

        results: List[Recommendation] = []
        for hit in hits:
            tool = live_tools.get(hit.fingerprint)
            if tool is None:
                logger.debug("Dropping stale index entry %s (%s)", hit.tool_name, hit.fingerprint)
                continue
            results.append(
                Recommendation(
                    rank=len(results) + 1,
                    tool=tool,
                    fingerprint=hit.fingerprint,
                    similarity=hit.similarity,
                    distance=hit.distance,
                )
            )
        logger.debug("Query %r matched %d tools", query[:80], len(results))
        return results

    def batch_recommend(
        self, queries: Sequence[str], **options: Any
    ) -> List[QueryRecommendations]:
        """Run ``recommend`` for every query, keeping the query order."""
        if isinstance(queries, str) or not queries:
            raise ValidationError("queries must be a non-empty list of strings")
        return [
            QueryRecommendations(
                query_index=index,
                query=query,
                recommendations=self.recommend(query, **options),
            )
            for index, query in enumerate(queries)
        ]

    def get_best_tool(
        self, query: str, min_similarity: Optional[float] = None, **options: Any
    ) -> Optional[Recommendation]:
        floor = INDEX_BEST_TOOL_MIN_SIMILARITY if min_similarity is None else min_similarity
        results = self.recommend(query, top_k=1, min_similarity=floor, **options)
        return results[0] if results else None

    def search_similar(
        self,
        query: str,
        top_k: Optional[int] = None,
        min_similarity: Optional[float] = None,
    ) -> List[SearchHit]:
        """Raw index search without checking that the tools are still live."""
        self.ensure_ready()
        validate_query(query)
        return self.store.search_nearest(
            self._embed_query(query),
            k=INDEX_TOP_K if top_k is None else top_k,
            min_similarity=INDEX_MIN_SIMILARITY if min_similarity is None else min_similarity,
            model=self.model,
        )

    def reindex(self) -> IndexReport:
        """Index live tools that are missing from the store."""
        self.ensure_ready()
        self.last_report = self.pipeline.run(self.provider, self.model)
        return self.last_report

    def clear_index(self, all_models: bool = False) -> int:
        """Drop indexed tools for the active model, or for every model."""
        self.ensure_ready()
        removed = self.store.clear(None if all_models else self.model)
        self.store.collect_orphans()
        logger.info("Cleared %d indexed tools", removed)
        return removed

    def get_status(self) -> Dict[str, Any]:
        status: Dict[str, Any] = {
            "ready": self.is_ready,
            "model": self.model,
            "db_path": str(self.store.db_path),
        }
        if not self.is_ready:
            return status
        status["index"] = self.store.get_stats()
        status["live_tools"] = len(self.provider.list_tools())
        if self.last_report is not None:
            status["last_index_run"] = self.last_report.to_dict()
        usage = getattr(self.embedding_client, "get_usage_stats", None)
        if callable(usage):
            status["embedding_usage"] = usage()
        return status
