"""Typed response primitives for the retrieve/execute surface."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class NewToolEntry:
    """Full detail for a tool the session has not seen before."""

    rank: int
    tool_name: str
    fingerprint: str
    description: str
    similarity: float
    input_schema: Dict[str, Any]
    output_schema: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "tool_name": self.tool_name,
            "fingerprint": self.fingerprint,
            "description": self.description,
            "similarity": self.similarity,
            "input_schema": self.input_schema,
            "output_schema": self.output_schema,
        }


@dataclass
class KnownToolEntry:
    """Short reference to a tool already delivered to the session."""

    rank: int
    tool_name: str
    fingerprint: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "tool_name": self.tool_name,
            "fingerprint": self.fingerprint,
        }


@dataclass
class QueryToolGroup:
    query_index: int
    query: str
    tools: List[Any] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query_index": self.query_index,
            "query": self.query,
            "tools": [tool.to_dict() for tool in self.tools],
        }


@dataclass
class RetrievalResult:
    """Result payload returned by ``ToolRetrievalService.retrieve()``."""

    session_id: str
    new_tools: List[QueryToolGroup] = field(default_factory=list)
    known_tools: List[QueryToolGroup] = field(default_factory=list)
    session_history_count: int = 0
    server_description: Optional[str] = None

    @property
    def new_tools_count(self) -> int:
        return sum(len(group.tools) for group in self.new_tools)

    @property
    def known_tools_count(self) -> int:
        return sum(len(group.tools) for group in self.known_tools)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "session_id": self.session_id,
            "new_tools": [group.to_dict() for group in self.new_tools],
            "known_tools": [group.to_dict() for group in self.known_tools],
            "summary": {
                "new_tools_count": self.new_tools_count,
                "known_tools_count": self.known_tools_count,
                "session_history_count": self.session_history_count,
            },
        }
        if self.server_description:
            payload["server_description"] = self.server_description
        return payload
