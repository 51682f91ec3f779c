"""Tests for the session-aware retrieve/execute surface."""

from unittest.mock import patch

import pytest

from tooldex.api.service import ToolRetrievalService
from tooldex.core.exceptions import (
    EXECUTION_FAILED_MESSAGE,
    RETRIEVAL_FAILED_MESSAGE,
    StorageError,
)
from tooldex.index.common import compute_fingerprint
from tooldex.providers.registry import ServerRegistry
from tooldex.recommender import ToolRecommender

TOOLS = [
    ("calendar", "find_event", "Find a calendar event by title or date"),
    ("calendar", "create_event", "Create a calendar event"),
    ("files", "read", "Read a file from disk"),
]

VECTORS = {
    "calendar__find_event": [1.0, 0.0, 0.0],
    "calendar__create_event": [0.8, 0.6, 0.0],
    "files__read": [0.0, 0.0, 1.0],
    "find a calendar event": [0.95, 0.3, 0.0],
    "read a file": [0.0, 0.1, 1.0],
}

REGISTRY = ServerRegistry(
    servers={
        "calendar": {"enabled": True, "description": "Calendar access"},
        "files": {"enabled": True, "description": ""},
    },
    groups={},
)


def _echo(args):
    return {"echo": args}


@pytest.fixture
def recommender(store, make_embedder, make_provider):
    instance = ToolRecommender(
        store, make_embedder(VECTORS), make_provider(TOOLS, executor=_echo), registry=REGISTRY
    )
    instance.initialize(auto_index=True)
    yield instance
    instance.close()


@pytest.fixture
def service(recommender, ledger):
    return ToolRetrievalService(recommender, ledger, top_k=5, min_similarity=0.1)


def _fingerprints(groups):
    return [tool["fingerprint"] for group in groups for tool in group["tools"]]


def test_first_call_creates_session_and_returns_new_tools(service):
    result = service.retrieve(["find a calendar event"], session_id="")

    assert len(result["session_id"]) == 6
    assert result["known_tools"] == []
    group = result["new_tools"][0]
    assert group["query_index"] == 0
    assert group["query"] == "find a calendar event"
    assert [t["tool_name"] for t in group["tools"]] == [
        "calendar__find_event",
        "calendar__create_event",
    ]
    first = group["tools"][0]
    assert first["rank"] == 1
    assert first["description"] == "Find a calendar event by title or date"
    assert first["similarity"] == round(first["similarity"], 4)
    assert first["input_schema"]["type"] == "object"
    assert "output_schema" in first
    assert result["summary"] == {
        "new_tools_count": 2,
        "known_tools_count": 0,
        "session_history_count": 2,
    }


def test_second_call_reports_known_tools(service):
    first = service.retrieve(["find a calendar event"], session_id="")
    second = service.retrieve(["find a calendar event"], session_id=first["session_id"])

    assert second["session_id"] == first["session_id"]
    assert second["new_tools"] == []
    assert _fingerprints(second["known_tools"]) == _fingerprints(first["new_tools"])
    assert set(second["known_tools"][0]["tools"][0]) == {"rank", "tool_name", "fingerprint"}
    assert second["summary"]["known_tools_count"] == 2
    assert second["summary"]["session_history_count"] == 2


def test_server_description_only_on_first_call(service):
    first = service.retrieve(["find a calendar event"])
    second = service.retrieve(["find a calendar event"], session_id=first["session_id"])

    assert first["server_description"].startswith(
        "Available servers: calendar(Calendar access) - Tools: find_event, create_event"
    )
    assert "files - Tools: read" in first["server_description"]
    assert "server_description" not in second


def test_unknown_session_id_is_replaced(service):
    result = service.retrieve(["read a file"], session_id="zzzzzz")
    assert result["session_id"] != "zzzzzz"
    assert "server_description" in result


def test_multiple_queries_mix_new_and_known(service):
    first = service.retrieve(["read a file"])
    result = service.retrieve(
        ["read a file", "find a calendar event"], session_id=first["session_id"]
    )

    assert [g["query_index"] for g in result["known_tools"]] == [0]
    assert [g["query_index"] for g in result["new_tools"]] == [1]
    assert result["summary"]["session_history_count"] == 3


def test_server_scope(service):
    result = service.retrieve(["find a calendar event"], server_names=["files"])
    assert result["new_tools"] == []


def test_validation_errors_are_reported(service, ledger):
    assert service.retrieve([])["error"] == "descriptions must not be empty"
    assert service.retrieve([""])["is_error"] is True
    assert service.retrieve("find a calendar event")["is_error"] is True
    assert service.retrieve(["x"], session_id=42)["is_error"] is True


def test_internal_errors_are_opaque(service, caplog):
    with patch.object(
        service.recommender.store, "search_nearest", side_effect=StorageError("db path /secret")
    ):
        result = service.retrieve(["find a calendar event"])

    assert result == {"error": RETRIEVAL_FAILED_MESSAGE, "is_error": True, "session_id": None}
    assert "/secret" in caplog.text


def test_uninitialized_recommender_is_opaque(service):
    service.recommender.close()
    assert service.retrieve(["read a file"])["error"] == RETRIEVAL_FAILED_MESSAGE


def test_failed_retrieval_records_nothing(service, ledger):
    with patch.object(
        service.recommender.store, "search_nearest", side_effect=StorageError("boom")
    ):
        service.retrieve(["find a calendar event"], session_id="abc123")
    assert ledger.history("abc123") == []


class TestExecute:
    def test_executes_tool_by_fingerprint(self, service):
        fingerprint = compute_fingerprint("files__read", "Read a file from disk")
        result = service.execute(fingerprint, {"value": "notes.txt"})

        assert result["tool_name"] == "files__read"
        assert result["result"] == {"echo": {"value": "notes.txt"}}

    def test_unknown_fingerprint(self, service):
        result = service.execute("0" * 32, {})
        assert result["is_error"] is True
        assert result["error"] == f"No tool found with fingerprint {'0' * 32}"

    def test_changed_description_is_not_found(self, service):
        stale = compute_fingerprint("files__read", "Read a file")
        assert service.execute(stale, {})["is_error"] is True

    def test_invalid_parameters(self, service):
        fingerprint = compute_fingerprint("files__read", "Read a file from disk")
        assert service.execute(fingerprint, ["not", "a", "dict"])["is_error"] is True
        assert service.execute("", {})["is_error"] is True

    def test_tool_failure_is_opaque(self, service):
        fingerprint = compute_fingerprint("files__read", "Read a file from disk")
        with patch.object(
            service.recommender.provider, "call_tool", side_effect=RuntimeError("secret")
        ):
            result = service.execute(fingerprint, {})
        assert result["error"] == EXECUTION_FAILED_MESSAGE
