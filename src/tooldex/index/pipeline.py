"""Bounded-concurrency indexing of live tools into the vector store."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from tooldex.config import (
    INDEX_CONCURRENCY,
    INDEX_DUPLICATE_CANDIDATE_K,
    INDEX_DUPLICATE_CANDIDATE_THRESHOLD,
)
from tooldex.core.exceptions import StorageError, TransientProviderError
from tooldex.index.common import compute_fingerprint, cosine_similarity, embedding_text
from tooldex.index.dedup import NearDuplicateResolver
from tooldex.index.store import ToolVectorStore
from tooldex.index.types import IndexReport, SearchHit
from tooldex.providers.base import LiveTool, ToolProvider

logger = logging.getLogger(__name__)


@dataclass
class _PendingTool:
    position: int
    name: str
    description: str
    fingerprint: str


@dataclass
class _StagedTool:
    pending: _PendingTool
    vector: List[float]
    superseded: List[SearchHit] = field(default_factory=list)


class IndexingPipeline:
    """Embed live tools that are not yet indexed and commit them in one batch.

    Work items are queued on a fixed ``ThreadPoolExecutor``. Each worker embeds
    one tool and probes the store for near-duplicates; nothing is written until
    every worker has finished, so no lock is held while the provider runs.
    """

    def __init__(
        self,
        store: ToolVectorStore,
        embedding_client: Any,
        resolver: Optional[NearDuplicateResolver] = None,
        concurrency: Optional[int] = None,
        candidate_threshold: Optional[float] = None,
        candidate_k: Optional[int] = None,
    ):
        self.store = store
        self.embedding_client = embedding_client
        self.resolver = resolver or NearDuplicateResolver()
        self.concurrency = max(1, int(concurrency or INDEX_CONCURRENCY))
        self.candidate_threshold = (
            INDEX_DUPLICATE_CANDIDATE_THRESHOLD
            if candidate_threshold is None
            else candidate_threshold
        )
        self.candidate_k = candidate_k or INDEX_DUPLICATE_CANDIDATE_K

    def _collect_pending(
        self, tools: Sequence[LiveTool], model: str, report: IndexReport
    ) -> List[_PendingTool]:
        indexed = self.store.indexed_fingerprints(model)
        live = {
            compute_fingerprint(tool.name, tool.description) for tool in tools if tool.name
        }
        # A tombstone only holds while the replacing tool is still listed live.
        superseded = {
            fingerprint
            for fingerprint, superseded_by in self.store.superseded_fingerprints(model).items()
            if superseded_by in live
        }

        pending: List[_PendingTool] = []
        seen = set()
        for tool in tools:
            if not tool.name:
                logger.warning("Skipping live tool without a name")
                continue
            fingerprint = compute_fingerprint(tool.name, tool.description)
            if fingerprint in seen:
                continue
            seen.add(fingerprint)
            if fingerprint in indexed or fingerprint in superseded:
                report.skipped += 1
                continue
            pending.append(
                _PendingTool(
                    position=len(pending),
                    name=tool.name,
                    description=tool.description or "",
                    fingerprint=fingerprint,
                )
            )
        return pending

    def _embed(self, item: _PendingTool) -> List[float]:
        text = embedding_text(item.name, item.description)
        try:
            vector = self.embedding_client.embed_single(text)
        except Exception as exc:
            raise TransientProviderError(
                f"Embedding failed for '{item.name}': {exc}", text=text
            ) from exc
        if not vector:
            raise TransientProviderError(
                f"Embedding provider returned no vector for '{item.name}'", text=text
            )
        return [float(v) for v in vector]

    def _process(self, item: _PendingTool, model: str, total: int) -> _StagedTool:
        logger.debug("Embedding %d/%d: %s", item.position + 1, total, item.name)
        vector = self._embed(item)

        try:
            candidates = self.store.search_nearest(
                vector,
                k=self.candidate_k,
                min_similarity=self.candidate_threshold,
                model=model,
                exclude_fingerprints=[item.fingerprint],
            )
        except StorageError as exc:
            logger.warning(
                "Near-duplicate probe failed for '%s', indexing without pruning: %s",
                item.name,
                exc,
            )
            candidates = []

        superseded = self.resolver.find_superseded(item.name, item.description, candidates)
        return _StagedTool(pending=item, vector=vector, superseded=superseded)

    def _resolve_within_batch(
        self, staged: List[_StagedTool], model: str
    ) -> Tuple[List[_StagedTool], List[Tuple[str, str]]]:
        """Drop staged tools superseded by a later staged tool.

        Returns the survivors in provider order and the tombstones for the
        dropped ones as ``(fingerprint, superseded_by)`` pairs.
        """
        survivors: List[_StagedTool] = []
        dropped: List[Tuple[str, str]] = []
        for tool in staged:
            candidates = [
                SearchHit(
                    tool_id=None,
                    fingerprint=earlier.pending.fingerprint,
                    model=model,
                    tool_name=earlier.pending.name,
                    description=earlier.pending.description,
                    distance=1.0 - cosine_similarity(tool.vector, earlier.vector),
                )
                for earlier in survivors
            ]
            superseded = {
                hit.fingerprint
                for hit in self.resolver.find_superseded(
                    tool.pending.name, tool.pending.description, candidates
                )
            }
            if superseded:
                survivors = [
                    earlier
                    for earlier in survivors
                    if earlier.pending.fingerprint not in superseded
                ]
                dropped.extend(
                    (fingerprint, tool.pending.fingerprint) for fingerprint in sorted(superseded)
                )
            survivors.append(tool)
        return survivors, dropped

    def run(self, provider: ToolProvider, model: str) -> IndexReport:
        """Index every live tool of ``provider`` under ``model``."""
        report = IndexReport(model=model)
        tools = provider.list_tools()
        report.total_tools = len(tools)

        pending = self._collect_pending(tools, model, report)
        if not pending:
            logger.info(
                "Tool index up to date: %d tools, model %s", report.total_tools, model
            )
            return report

        logger.info(
            "Indexing %d new tools (%d already indexed) with %d workers",
            len(pending),
            report.skipped,
            min(self.concurrency, len(pending)),
        )

        staged: List[_StagedTool] = []
        with ThreadPoolExecutor(
            max_workers=min(self.concurrency, len(pending)),
            thread_name_prefix="tool_indexer",
        ) as executor:
            futures = {
                executor.submit(self._process, item, model, len(pending)): item
                for item in pending
            }
            for future in as_completed(futures):
                item = futures[future]
                try:
                    staged.append(future.result())
                except TransientProviderError as exc:
                    logger.warning("Skipping tool '%s': %s", item.name, exc)
                    report.failures[item.name] = str(exc)

        staged.sort(key=lambda s: s.pending.position)
        survivors, dropped = self._resolve_within_batch(staged, model)

        evictions: Dict[str, str] = {}
        for tool in survivors:
            for hit in tool.superseded:
                evictions.setdefault(hit.fingerprint, tool.pending.fingerprint)
        for fingerprint, superseded_by in dropped:
            evictions.setdefault(fingerprint, superseded_by)

        report.saved_ids, report.evicted = self.store.commit_batch(
            [(s.pending.name, s.pending.description, s.vector) for s in survivors],
            model,
            evictions=list(evictions.items()),
        )
        report.embedded = len(survivors)
        report.superseded = len(dropped)
        report.orphans_removed = self.store.collect_orphans()

        logger.info(
            "Indexed %d tools, evicted %d, superseded %d in batch, %d failed",
            report.embedded,
            report.evicted,
            report.superseded,
            report.failed,
        )
        return report
