"""Dataclasses shared by the tool index components."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class ToolDescriptor:
    """Persisted identity of an indexed tool for one embedding model."""

    id: int
    fingerprint: str
    model: str
    name: str
    description: str
    created_at: str
    updated_at: str
    dimension: Optional[int] = None


@dataclass
class SearchHit:
    """A stored tool returned by a nearest-neighbour query."""

    tool_id: Optional[int]
    fingerprint: str
    model: str
    tool_name: str
    description: str
    distance: float

    @property
    def similarity(self) -> float:
        return 1.0 - self.distance


@dataclass
class IndexReport:
    """Outcome of one indexing run."""

    model: str
    total_tools: int = 0
    skipped: int = 0
    embedded: int = 0
    evicted: int = 0
    superseded: int = 0
    orphans_removed: int = 0
    saved_ids: List[int] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def failed(self) -> int:
        return len(self.failures)

    def to_dict(self) -> Dict[str, object]:
        return {
            "model": self.model,
            "total_tools": self.total_tools,
            "skipped": self.skipped,
            "embedded": self.embedded,
            "failed": self.failed,
            "evicted": self.evicted,
            "superseded": self.superseded,
            "orphans_removed": self.orphans_removed,
        }
