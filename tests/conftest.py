import hashlib
import os
import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from tooldex.index.store import ToolVectorStore
from tooldex.providers.base import InMemoryToolProvider
from tooldex.session.ledger import SessionLedger


@pytest.fixture(autouse=True)
def mock_settings_env_vars(tmp_path):
    """Automatically mock HOME and environment variables to ensure test isolation."""
    fake_home = tmp_path / "fake_home"
    fake_home.mkdir()

    with patch("pathlib.Path.home", return_value=fake_home):
        with patch.dict(
            os.environ,
            {"HOME": str(fake_home), "TOOLDEX_DB_PATH": str(fake_home / "test.db")},
        ):
            yield


class FakeEmbeddingClient:
    """Deterministic embedder keyed by tool name or exact query text.

    Tool texts look like ``"<name> <description>"``; the first word selects the
    vector. Unknown texts get a stable hash-derived vector.
    """

    def __init__(self, vectors=None, model="fake-model", fail_on=(), dimension=4):
        self.vectors = dict(vectors or {})
        self.model = model
        self.fail_on = set(fail_on)
        self.dimension = dimension
        self.calls = []
        self.loaded = False
        self._lock = threading.Lock()

    def load(self):
        self.loaded = True

    def _hash_vector(self, text):
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [(digest[i] - 127.5) / 127.5 for i in range(self.dimension)]

    def embed_single(self, text):
        with self._lock:
            self.calls.append(text)
        if text in self.vectors:
            return list(self.vectors[text])
        name = text.split(" ", 1)[0]
        if name in self.fail_on:
            raise RuntimeError(f"provider unavailable for {name}")
        if name in self.vectors:
            return list(self.vectors[name])
        return self._hash_vector(text)

    def get_usage_stats(self):
        return {"texts_embedded": len(self.calls), "api_calls": len(self.calls)}


def _noop(args):
    return {"ok": True, "args": args}


@pytest.fixture
def db_path(tmp_path) -> Path:
    return tmp_path / "tools.db"


@pytest.fixture
def store(db_path):
    vector_store = ToolVectorStore(db_path)
    vector_store.init_db()
    return vector_store


@pytest.fixture
def ledger(db_path):
    session_ledger = SessionLedger(db_path)
    session_ledger.init_db()
    return session_ledger


@pytest.fixture
def make_embedder():
    def _make(vectors=None, **kwargs):
        return FakeEmbeddingClient(vectors, **kwargs)

    return _make


@pytest.fixture
def make_provider():
    """Build an in-memory provider from ``(server, name, description)`` triples."""

    def _make(tools, executor=_noop):
        provider = InMemoryToolProvider()
        for server, name, description in tools:
            provider.register(
                server,
                name,
                description,
                executor,
                input_schema={
                    "type": "object",
                    "properties": {"value": {"type": "string"}},
                },
            )
        return provider

    return _make
