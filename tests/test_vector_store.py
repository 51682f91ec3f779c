"""Tests for the SQLite tool vector store."""

import sqlite3
from unittest.mock import patch

import pytest

from tooldex.core.exceptions import StorageError, ValidationError
from tooldex.index.common import compute_fingerprint, server_name_filter
from tooldex.index.store import ToolVectorStore

MODEL = "fake-model"


def _count(db_path, table):
    conn = sqlite3.connect(db_path)
    try:
        return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
    finally:
        conn.close()


class TestUpsert:
    def test_insert_then_lookup(self, store):
        tool_id = store.upsert("files__read", "Read a file", [1.0, 0.0, 0.0], MODEL)

        descriptor = store.lookup(compute_fingerprint("files__read", "Read a file"), MODEL)
        assert descriptor is not None
        assert descriptor.id == tool_id
        assert descriptor.name == "files__read"
        assert descriptor.model == MODEL
        assert descriptor.dimension == 3

    def test_upsert_same_fingerprint_keeps_identity(self, store, db_path):
        first = store.upsert("files__read", "Read a file", [1.0, 0.0, 0.0], MODEL)
        second = store.upsert("files__read", "Read a file", [0.0, 1.0, 0.0], MODEL)

        assert first == second
        assert _count(db_path, "tool_vectors") == 1
        assert _count(db_path, "tool_mapping") == 1
        # The previous vector is orphaned, not deleted.
        assert _count(db_path, "tool_embeddings") == 2

    def test_repointed_vector_is_used_for_search(self, store):
        store.upsert("files__read", "Read a file", [1.0, 0.0, 0.0], MODEL)
        store.upsert("files__read", "Read a file", [0.0, 1.0, 0.0], MODEL)

        hits = store.search_nearest([0.0, 1.0, 0.0], k=5, min_similarity=0.99, model=MODEL)
        assert [hit.tool_name for hit in hits] == ["files__read"]

    def test_same_tool_under_two_models(self, store):
        store.upsert("files__read", "Read a file", [1.0, 0.0], "model-a")
        store.upsert("files__read", "Read a file", [1.0, 0.0, 0.0], "model-b")

        fingerprint = compute_fingerprint("files__read", "Read a file")
        assert store.lookup(fingerprint, "model-a").dimension == 2
        assert store.lookup(fingerprint, "model-b").dimension == 3

    def test_dimension_mismatch_within_model_rejected(self, store):
        store.upsert("files__read", "Read a file", [1.0, 0.0, 0.0], MODEL)
        with pytest.raises(ValidationError):
            store.upsert("files__write", "Write a file", [1.0, 0.0], MODEL)

    def test_empty_vector_rejected(self, store):
        with pytest.raises(ValidationError):
            store.upsert("files__read", "Read a file", [], MODEL)

    def test_upsert_batch_is_atomic(self, store, db_path):
        items = [
            ("files__read", "Read a file", [1.0, 0.0, 0.0]),
            ("files__write", "Write a file", [1.0, 0.0]),
        ]
        with pytest.raises(ValidationError):
            store.upsert_batch(items, MODEL)

        assert _count(db_path, "tool_vectors") == 0
        assert _count(db_path, "tool_embeddings") == 0

    def test_upsert_batch_returns_ids(self, store):
        ids = store.upsert_batch(
            [
                ("files__read", "Read a file", [1.0, 0.0]),
                ("files__write", "Write a file", [0.0, 1.0]),
            ],
            MODEL,
        )
        assert len(ids) == 2
        assert len(set(ids)) == 2


class TestSearchNearest:
    @pytest.fixture
    def populated(self, store):
        store.upsert("weather__forecast", "Weather forecast", [1.0, 0.0, 0.0], MODEL)
        store.upsert("files__read", "Read a file", [0.0, 1.0, 0.0], MODEL)
        store.upsert("files__list", "List a directory", [0.0, 0.8, 0.6], MODEL)
        return store

    def test_orders_by_similarity(self, populated):
        hits = populated.search_nearest([0.0, 1.0, 0.1], k=5, min_similarity=0.1, model=MODEL)
        assert [hit.tool_name for hit in hits] == ["files__read", "files__list"]
        assert hits[0].similarity > hits[1].similarity

    def test_respects_k(self, populated):
        hits = populated.search_nearest([0.0, 1.0, 0.1], k=1, min_similarity=0.0, model=MODEL)
        assert len(hits) == 1

    def test_similarity_floor(self, populated):
        hits = populated.search_nearest([0.0, 1.0, 0.0], k=5, min_similarity=0.9, model=MODEL)
        assert all(hit.similarity >= 0.9 for hit in hits)
        assert [hit.tool_name for hit in hits] == ["files__read"]

    def test_floor_of_one_returns_only_exact_match(self, populated):
        hits = populated.search_nearest([0.0, 1.0, 0.0], k=5, min_similarity=1.0, model=MODEL)
        assert [hit.tool_name for hit in hits] == ["files__read"]

    def test_nothing_clears_floor_returns_empty(self, populated):
        assert populated.search_nearest([-1.0, 0.0, 0.0], k=5, min_similarity=0.5, model=MODEL) == []

    def test_server_filter(self, populated):
        hits = populated.search_nearest(
            [1.0, 1.0, 0.0],
            k=5,
            min_similarity=0.0,
            name_filters=[server_name_filter("weather")],
            model=MODEL,
        )
        assert [hit.tool_name for hit in hits] == ["weather__forecast"]

    def test_other_model_vectors_are_ignored(self, populated):
        populated.upsert("other__tool", "Other", [0.0, 1.0, 0.0, 0.0], "other-model")
        hits = populated.search_nearest([0.0, 1.0, 0.0], k=5, min_similarity=0.0, model=MODEL)
        assert "other__tool" not in [hit.tool_name for hit in hits]

    def test_exclude_fingerprints(self, populated):
        fingerprint = compute_fingerprint("files__read", "Read a file")
        hits = populated.search_nearest(
            [0.0, 1.0, 0.0],
            k=5,
            min_similarity=0.1,
            model=MODEL,
            exclude_fingerprints=[fingerprint],
        )
        assert fingerprint not in [hit.fingerprint for hit in hits]

    def test_ties_keep_insertion_order(self, store):
        store.upsert("a__first", "First", [1.0, 0.0], MODEL)
        store.upsert("b__second", "Second", [1.0, 0.0], MODEL)
        hits = store.search_nearest([1.0, 0.0], k=2, min_similarity=0.5, model=MODEL)
        assert [hit.tool_name for hit in hits] == ["a__first", "b__second"]


class TestDeleteAndMaintenance:
    def test_delete_removes_descriptor_mapping_and_vector(self, store, db_path):
        store.upsert("files__read", "Read a file", [1.0, 0.0], MODEL)
        removed = store.delete(compute_fingerprint("files__read", "Read a file"), MODEL)

        assert removed == 1
        assert _count(db_path, "tool_vectors") == 0
        assert _count(db_path, "tool_mapping") == 0
        assert _count(db_path, "tool_embeddings") == 0

    def test_delete_across_models(self, store):
        store.upsert("files__read", "Read a file", [1.0, 0.0], "model-a")
        store.upsert("files__read", "Read a file", [1.0, 0.0], "model-b")
        assert store.delete(compute_fingerprint("files__read", "Read a file")) == 2

    def test_collect_orphans(self, store, db_path):
        store.upsert("files__read", "Read a file", [1.0, 0.0], MODEL)
        store.upsert("files__read", "Read a file", [0.0, 1.0], MODEL)

        assert store.collect_orphans() == 1
        assert _count(db_path, "tool_embeddings") == 1
        assert store.collect_orphans() == 0

    def test_commit_batch_evicts_and_tombstones(self, store):
        store.upsert("mail__send_email", "Sends an email", [1.0, 0.0], MODEL)
        old = compute_fingerprint("mail__send_email", "Sends an email")
        new = compute_fingerprint("mail__email_send", "Sends an email message")

        ids, evicted = store.commit_batch(
            [("mail__email_send", "Sends an email message", [0.99, 0.1])],
            MODEL,
            evictions=[(old, new)],
        )

        assert len(ids) == 1
        assert evicted == 1
        assert store.lookup(old, MODEL) is None
        assert store.superseded_fingerprints(MODEL) == {old: new}

    def test_tombstone_expires_when_superseder_disappears(self, store):
        old = compute_fingerprint("a__old", "Old")
        store.commit_batch([("a__new", "New", [1.0, 0.0])], MODEL, evictions=[(old, compute_fingerprint("a__new", "New"))])
        store.delete(compute_fingerprint("a__new", "New"), MODEL)
        assert store.superseded_fingerprints(MODEL) == {}

    def test_clear_for_one_model(self, store):
        store.upsert("files__read", "Read a file", [1.0, 0.0], "model-a")
        store.upsert("files__read", "Read a file", [1.0, 0.0], "model-b")
        assert store.clear("model-a") == 1
        assert [d.model for d in store.list_tools()] == ["model-b"]

    def test_get_stats(self, store):
        store.upsert("files__read", "Read a file", [1.0, 0.0], MODEL)
        store.upsert("files__read", "Read a file", [0.0, 1.0], MODEL)
        stats = store.get_stats()
        assert stats["total_tools"] == 1
        assert stats["total_vectors"] == 2
        assert stats["orphaned_vectors"] == 1
        assert stats["models"] == [{"model": MODEL, "tools": 1, "dimension": 2}]

    def test_indexed_fingerprints(self, store):
        store.upsert("files__read", "Read a file", [1.0, 0.0], MODEL)
        assert store.indexed_fingerprints(MODEL) == {
            compute_fingerprint("files__read", "Read a file")
        }
        assert store.indexed_fingerprints("other") == set()


class TestStorageErrors:
    def test_sqlite_errors_are_wrapped(self, tmp_path):
        store = ToolVectorStore(tmp_path / "missing.db")
        # Tables were never created.
        with pytest.raises(StorageError):
            store.search_nearest([1.0], k=1, min_similarity=0.0)

    def test_write_failure_is_wrapped(self, store):
        with patch.object(store, "_upsert_tx", side_effect=sqlite3.OperationalError("locked")):
            with pytest.raises(StorageError):
                store.upsert("files__read", "Read a file", [1.0], MODEL)
