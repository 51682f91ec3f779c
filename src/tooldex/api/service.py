"""Session-aware retrieve and execute operations exposed to agents."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from tooldex.api.types import (
    KnownToolEntry,
    NewToolEntry,
    QueryToolGroup,
    RetrievalResult,
)
from tooldex.core.exceptions import (
    EXECUTION_FAILED_MESSAGE,
    RETRIEVAL_FAILED_MESSAGE,
    ToolNotFoundError,
    ValidationError,
)
from tooldex.recommender import ToolRecommender, validate_names
from tooldex.session.ledger import SessionLedger

logger = logging.getLogger(__name__)


def _error_payload(message: str, **extra: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"error": message, "is_error": True}
    payload.update(extra)
    return payload


def _validate_descriptions(descriptions: Any) -> List[str]:
    if isinstance(descriptions, str) or not isinstance(descriptions, (list, tuple)):
        raise ValidationError("descriptions must be a list of strings")
    if not descriptions:
        raise ValidationError("descriptions must not be empty")
    for description in descriptions:
        if not isinstance(description, str) or not description.strip():
            raise ValidationError("Query text cannot be empty")
    return list(descriptions)


class ToolRetrievalService:
    """Splits recommendations into new and already-known tools per session.

    Errors never cross this boundary as exceptions: validation and not-found
    problems come back with their own message, anything else is logged and
    replaced by a generic failure message.
    """

    def __init__(
        self,
        recommender: ToolRecommender,
        ledger: SessionLedger,
        top_k: Optional[int] = None,
        min_similarity: Optional[float] = None,
    ):
        self.recommender = recommender
        self.ledger = ledger
        self.top_k = top_k
        self.min_similarity = min_similarity

    def retrieve(
        self,
        descriptions: Sequence[str],
        session_id: Optional[str] = None,
        server_names: Optional[Sequence[str]] = None,
        group_names: Optional[Sequence[str]] = None,
    ) -> Dict[str, Any]:
        """Return tools for each description as a JSON-ready payload."""
        try:
            return self.retrieve_result(
                descriptions, session_id, server_names, group_names
            ).to_dict()
        except ValidationError as exc:
            return _error_payload(str(exc), session_id=session_id)
        except Exception:
            logger.exception("Tool retrieval failed for session %s", session_id)
            return _error_payload(RETRIEVAL_FAILED_MESSAGE, session_id=session_id)

    def retrieve_result(
        self,
        descriptions: Sequence[str],
        session_id: Optional[str] = None,
        server_names: Optional[Sequence[str]] = None,
        group_names: Optional[Sequence[str]] = None,
    ) -> RetrievalResult:
        """Like ``retrieve`` but returns the typed result and raises on failure."""
        queries = _validate_descriptions(descriptions)
        if session_id is not None and not isinstance(session_id, str):
            raise ValidationError("session_id must be a string")
        server_names = validate_names(server_names, "server_names")
        group_names = validate_names(group_names, "group_names")
        self.recommender.ensure_ready()

        resolved_id, is_first_time = self.ledger.resolve(session_id)
        known = set() if is_first_time else self.ledger.known_fingerprints(resolved_id)
        logger.info(
            "Session %s previously retrieved %d tools", resolved_id, len(known)
        )

        result = RetrievalResult(session_id=resolved_id)
        to_record = []
        for index, query in enumerate(queries):
            recommendations = self.recommender.recommend(
                query,
                top_k=self.top_k,
                min_similarity=self.min_similarity,
                server_names=server_names,
                group_names=group_names,
            )
            new_group = QueryToolGroup(query_index=index, query=query)
            known_group = QueryToolGroup(query_index=index, query=query)
            for rec in recommendations:
                if rec.fingerprint in known:
                    known_group.tools.append(
                        KnownToolEntry(
                            rank=rec.rank,
                            tool_name=rec.tool_name,
                            fingerprint=rec.fingerprint,
                        )
                    )
                    continue
                new_group.tools.append(
                    NewToolEntry(
                        rank=rec.rank,
                        tool_name=rec.tool_name,
                        fingerprint=rec.fingerprint,
                        description=rec.description,
                        similarity=round(rec.similarity, 4),
                        input_schema=rec.tool.input_schema,
                        output_schema=rec.tool.output_schema,
                    )
                )
                to_record.append((rec.fingerprint, rec.tool_name))
            if new_group.tools:
                result.new_tools.append(new_group)
            if known_group.tools:
                result.known_tools.append(known_group)

        if to_record:
            self.ledger.record_batch(resolved_id, to_record)
        result.session_history_count = len(known | {fp for fp, _ in to_record})

        if is_first_time:
            result.server_description = self._describe_servers()

        logger.info(
            "Retrieval complete for session %s: %d new, %d known",
            resolved_id,
            result.new_tools_count,
            result.known_tools_count,
        )
        return result

    def _describe_servers(self) -> str:
        registry = self.recommender.registry
        try:
            tools = self.recommender.provider.list_tools()
        except Exception:
            logger.exception("Failed to list live tools for the server description")
            tools = []
        return registry.describe_servers(tools)

    def execute(
        self, fingerprint: str, parameters: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Invoke the live tool whose fingerprint matches ``fingerprint``."""
        try:
            if not isinstance(fingerprint, str) or not fingerprint.strip():
                raise ValidationError("Tool fingerprint must not be empty")
            if parameters is None:
                parameters = {}
            if not isinstance(parameters, dict):
                raise ValidationError("parameters must be an object")

            tool = self.recommender.provider.find_by_fingerprint(fingerprint.strip())
            if tool is None:
                raise ToolNotFoundError(fingerprint.strip())

            logger.info("Executing %s (%s)", tool.name, fingerprint)
            return {
                "tool_name": tool.name,
                "fingerprint": fingerprint.strip(),
                "result": self.recommender.provider.call_tool(tool.name, parameters),
            }
        except (ValidationError, ToolNotFoundError) as exc:
            return _error_payload(str(exc), fingerprint=fingerprint)
        except Exception:
            logger.exception("Tool execution failed for %s", fingerprint)
            return _error_payload(EXECUTION_FAILED_MESSAGE, fingerprint=fingerprint)
