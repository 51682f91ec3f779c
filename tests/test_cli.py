"""Tests for the tooldex command-line interface."""

import json

import pytest
from rich.console import Console

from tooldex.cli.main import parse_args, run


@pytest.fixture
def console():
    return Console(record=True, width=200)


@pytest.fixture
def fake_stack(monkeypatch, db_path, make_embedder, make_provider):
    """Route the CLI factory at an in-memory provider and fake embedder."""
    from tooldex.api import factory

    provider = make_provider(
        [
            ("files", "read", "Read a file from disk"),
            ("calendar", "find_event", "Find a calendar event"),
        ]
    )
    embedder = make_embedder(
        {
            "files__read": [0.0, 1.0, 0.0],
            "calendar__find_event": [1.0, 0.0, 0.0],
            "read a file": [0.0, 1.0, 0.1],
        }
    )
    original = factory.build_recommender

    def _build(db_path=None, **kwargs):
        return original(
            db_path=db_path, provider=provider, embedding_client=embedder, **kwargs
        )

    monkeypatch.setattr(factory, "build_recommender", _build)
    return provider


def _json_output(console):
    return json.loads(console.export_text())


def test_parse_retrieve_args():
    args = parse_args(
        ["retrieve", "read a file", "list a dir", "-s", "abc123", "--server", "files"]
    )
    assert args.command == "retrieve"
    assert args.descriptions == ["read a file", "list a dir"]
    assert args.session_id == "abc123"
    assert args.server_names == ["files"]
    assert args.group_names is None


def test_parse_requires_command():
    with pytest.raises(SystemExit):
        parse_args([])


def test_index_command(fake_stack, db_path, console):
    code = run(parse_args(["--db", str(db_path), "index"]), console)
    assert code == 0
    assert _json_output(console)["embedded"] == 2


def test_retrieve_command(fake_stack, db_path, console):
    code = run(
        parse_args(["--db", str(db_path), "retrieve", "read a file", "-k", "1"]), console
    )
    payload = _json_output(console)
    assert code == 0
    assert payload["new_tools"][0]["tools"][0]["tool_name"] == "files__read"
    assert len(payload["session_id"]) == 6


def test_execute_unknown_fingerprint(fake_stack, db_path, console):
    code = run(parse_args(["--db", str(db_path), "execute", "deadbeef"]), console)
    assert code == 1
    assert _json_output(console)["is_error"] is True


def test_execute_rejects_bad_json(fake_stack, db_path, console):
    code = run(
        parse_args(["--db", str(db_path), "execute", "deadbeef", "-p", "{oops"]), console
    )
    assert code == 2


def test_session_show_and_clear(db_path, ledger, console):
    ledger.record_batch("abc123", [("fp1", "files__read")])

    run(parse_args(["--db", str(db_path), "session", "show", "abc123"]), console)
    assert "files__read" in console.export_text()

    run(parse_args(["--db", str(db_path), "session", "clear", "abc123"]), console)
    assert "Removed 1 entries" in console.export_text()
    assert ledger.history("abc123") == []


def test_status_without_indexing(fake_stack, db_path, console):
    code = run(parse_args(["--db", str(db_path), "status", "--no-index"]), console)
    payload = _json_output(console)
    assert code == 0
    assert payload["index"]["total_tools"] == 0
    assert payload["live_tools"] == 2
