"""SQLite-backed store of tool descriptors and their embedding vectors."""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from tooldex.config import DB_PATH
from tooldex.core.exceptions import StorageError, ValidationError
from tooldex.index.common import (
    compute_fingerprint,
    serialize_embedding,
    sql_cosine_distance,
)
from tooldex.index.types import SearchHit, ToolDescriptor

logger = logging.getLogger(__name__)

COSINE_DISTANCE_SQL_FUNCTION = "cosine_distance"
UpsertItem = Tuple[str, str, Sequence[float]]
Eviction = Tuple[str, str]


def _now() -> str:
    return datetime.now().isoformat()


def init_index_tables(c: sqlite3.Cursor) -> None:
    """Create the tool index tables if they don't exist."""
    c.execute(
        """
        CREATE TABLE IF NOT EXISTS tool_vectors (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            fingerprint TEXT NOT NULL,
            model_name TEXT NOT NULL,
            tool_name TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE(fingerprint, model_name)
        )
    """
    )
    c.execute(
        "CREATE INDEX IF NOT EXISTS idx_tool_vectors_model ON tool_vectors(model_name)"
    )
    c.execute(
        "CREATE INDEX IF NOT EXISTS idx_tool_vectors_name ON tool_vectors(tool_name)"
    )

    # Append-only; a row is live only while tool_mapping points at it.
    c.execute(
        """
        CREATE TABLE IF NOT EXISTS tool_embeddings (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            vector BLOB NOT NULL,
            dimension INTEGER NOT NULL,
            created_at TEXT NOT NULL
        )
    """
    )
    c.execute(
        """
        CREATE TABLE IF NOT EXISTS tool_mapping (
            tool_id INTEGER PRIMARY KEY,
            embedding_id INTEGER NOT NULL UNIQUE
        )
    """
    )

    c.execute(
        """
        CREATE TABLE IF NOT EXISTS superseded_tools (
            fingerprint TEXT NOT NULL,
            model_name TEXT NOT NULL,
            tool_name TEXT NOT NULL DEFAULT '',
            superseded_by TEXT NOT NULL,
            superseded_at TEXT NOT NULL,
            PRIMARY KEY (fingerprint, model_name)
        )
    """
    )


def _row_to_descriptor(row: sqlite3.Row) -> ToolDescriptor:
    return ToolDescriptor(
        id=row["id"],
        fingerprint=row["fingerprint"],
        model=row["model_name"],
        name=row["tool_name"],
        description=row["description"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        dimension=row["dimension"],
    )


class ToolVectorStore:
    """Tool descriptors keyed by ``(fingerprint, model)`` with one live vector each.

    Reads use short-lived connections. Writes are serialised behind a
    process-wide lock and each runs in a single transaction; any SQLite error
    rolls the transaction back and surfaces as ``StorageError``.
    """

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path) if db_path else DB_PATH
        self._write_lock = threading.Lock()

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.create_function(
            COSINE_DISTANCE_SQL_FUNCTION, 2, sql_cosine_distance, deterministic=True
        )
        return conn

    def init_db(self) -> None:
        """Initialize the SQLite database and create tables if they don't exist."""
        os.makedirs(self.db_path.parent, exist_ok=True)
        try:
            conn = self._get_conn()
            try:
                conn.execute("PRAGMA journal_mode=WAL")
                with conn:
                    init_index_tables(conn.cursor())
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to initialize tool index: {exc}") from exc

    def _read(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        try:
            conn = self._get_conn()
            try:
                return conn.execute(sql, params).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise StorageError(f"Tool index query failed: {exc}") from exc

    def _write(self, operation, *args: Any) -> Any:
        """Run ``operation(cursor, *args)`` inside one locked transaction."""
        with self._write_lock:
            try:
                conn = self._get_conn()
                try:
                    with conn:
                        return operation(conn.cursor(), *args)
                finally:
                    conn.close()
            except sqlite3.Error as exc:
                raise StorageError(f"Tool index write failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _check_dimension(self, c: sqlite3.Cursor, model: str, dimension: int) -> None:
        row = c.execute(
            """
            SELECT e.dimension FROM tool_vectors v
            JOIN tool_mapping m ON m.tool_id = v.id
            JOIN tool_embeddings e ON e.id = m.embedding_id
            WHERE v.model_name = ?
            LIMIT 1
            """,
            (model,),
        ).fetchone()
        if row is not None and row[0] != dimension:
            raise ValidationError(
                f"Vector dimension {dimension} does not match {row[0]} "
                f"already indexed for model '{model}'"
            )

    def _upsert_tx(
        self,
        c: sqlite3.Cursor,
        name: str,
        description: str,
        vector: Sequence[float],
        model: str,
    ) -> int:
        if not name:
            raise ValidationError("Tool name must not be empty")
        if not vector:
            raise ValidationError(f"Empty vector for tool '{name}'")
        if not model:
            raise ValidationError("Embedding model name must not be empty")
        self._check_dimension(c, model, len(vector))

        fingerprint = compute_fingerprint(name, description)
        now = _now()
        row = c.execute(
            "SELECT id FROM tool_vectors WHERE fingerprint = ? AND model_name = ?",
            (fingerprint, model),
        ).fetchone()
        if row:
            tool_id = row[0]
            c.execute(
                """UPDATE tool_vectors
                SET tool_name = ?, description = ?, updated_at = ?
                WHERE id = ?""",
                (name, description or "", now, tool_id),
            )
        else:
            c.execute(
                """INSERT INTO tool_vectors
                (fingerprint, model_name, tool_name, description, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)""",
                (fingerprint, model, name, description or "", now, now),
            )
            tool_id = c.lastrowid

        c.execute(
            "INSERT INTO tool_embeddings (vector, dimension, created_at) VALUES (?, ?, ?)",
            (serialize_embedding(list(vector)), len(vector), now),
        )
        embedding_id = c.lastrowid
        # Repointing orphans the previous vector row until collect_orphans runs.
        c.execute(
            "INSERT OR REPLACE INTO tool_mapping (tool_id, embedding_id) VALUES (?, ?)",
            (tool_id, embedding_id),
        )
        c.execute(
            "DELETE FROM superseded_tools WHERE fingerprint = ? AND model_name = ?",
            (fingerprint, model),
        )
        return tool_id

    def _delete_tx(
        self, c: sqlite3.Cursor, fingerprint: str, model: Optional[str]
    ) -> int:
        if model is None:
            rows = c.execute(
                "SELECT id FROM tool_vectors WHERE fingerprint = ?", (fingerprint,)
            ).fetchall()
        else:
            rows = c.execute(
                "SELECT id FROM tool_vectors WHERE fingerprint = ? AND model_name = ?",
                (fingerprint, model),
            ).fetchall()
        tool_ids = [row[0] for row in rows]
        for tool_id in tool_ids:
            c.execute(
                """DELETE FROM tool_embeddings WHERE id IN
                (SELECT embedding_id FROM tool_mapping WHERE tool_id = ?)""",
                (tool_id,),
            )
            c.execute("DELETE FROM tool_mapping WHERE tool_id = ?", (tool_id,))
            c.execute("DELETE FROM tool_vectors WHERE id = ?", (tool_id,))
        return len(tool_ids)

    def _commit_batch_tx(
        self,
        c: sqlite3.Cursor,
        items: Sequence[UpsertItem],
        model: str,
        evictions: Sequence[Eviction],
    ) -> Tuple[List[int], int]:
        now = _now()
        evicted = 0
        for fingerprint, superseded_by in evictions:
            name_row = c.execute(
                "SELECT tool_name FROM tool_vectors WHERE fingerprint = ? AND model_name = ?",
                (fingerprint, model),
            ).fetchone()
            evicted += self._delete_tx(c, fingerprint, model)
            c.execute(
                """INSERT OR REPLACE INTO superseded_tools
                (fingerprint, model_name, tool_name, superseded_by, superseded_at)
                VALUES (?, ?, ?, ?, ?)""",
                (fingerprint, model, name_row[0] if name_row else "", superseded_by, now),
            )

        saved_ids = [
            self._upsert_tx(c, name, description, vector, model)
            for name, description, vector in items
        ]
        return saved_ids, evicted

    def upsert(
        self, name: str, description: str, vector: Sequence[float], model: str
    ) -> int:
        """Insert or refresh a tool and point it at a freshly stored vector."""
        return self._write(self._upsert_tx, name, description, vector, model)

    def upsert_batch(self, items: Iterable[UpsertItem], model: str) -> List[int]:
        """Upsert many ``(name, description, vector)`` items atomically."""
        saved_ids, _ = self.commit_batch(list(items), model)
        return saved_ids

    def commit_batch(
        self,
        items: Sequence[UpsertItem],
        model: str,
        evictions: Sequence[Eviction] = (),
    ) -> Tuple[List[int], int]:
        """Apply evictions then upserts in one transaction.

        ``evictions`` are ``(fingerprint, superseded_by_fingerprint)`` pairs;
        each evicted tool is deleted and remembered as superseded. Returns the
        saved tool ids and the number of descriptors evicted.
        """
        return self._write(self._commit_batch_tx, list(items), model, list(evictions))

    def delete(self, fingerprint: str, model: Optional[str] = None) -> int:
        """Delete a tool, its mapping and its vector. All models when ``model`` is None."""
        return self._write(self._delete_tx, fingerprint, model)

    def _clear_tx(self, c: sqlite3.Cursor, model: Optional[str]) -> int:
        if model is None:
            count = c.execute("SELECT COUNT(*) FROM tool_vectors").fetchone()[0]
            c.execute("DELETE FROM tool_mapping")
            c.execute("DELETE FROM tool_embeddings")
            c.execute("DELETE FROM tool_vectors")
            c.execute("DELETE FROM superseded_tools")
            return count

        fingerprints = [
            row[0]
            for row in c.execute(
                "SELECT fingerprint FROM tool_vectors WHERE model_name = ?", (model,)
            ).fetchall()
        ]
        for fingerprint in fingerprints:
            self._delete_tx(c, fingerprint, model)
        c.execute("DELETE FROM superseded_tools WHERE model_name = ?", (model,))
        return len(fingerprints)

    def clear(self, model: Optional[str] = None) -> int:
        """Remove every indexed tool (for one model, or all)."""
        return self._write(self._clear_tx, model)

    def _collect_orphans_tx(self, c: sqlite3.Cursor) -> int:
        c.execute(
            """DELETE FROM tool_embeddings
            WHERE id NOT IN (SELECT embedding_id FROM tool_mapping)"""
        )
        removed = c.rowcount
        c.execute(
            "DELETE FROM tool_mapping WHERE tool_id NOT IN (SELECT id FROM tool_vectors)"
        )
        return removed

    def collect_orphans(self) -> int:
        """Delete vector rows no longer referenced by any tool."""
        removed = self._write(self._collect_orphans_tx)
        if removed:
            logger.debug("Removed %d orphaned tool vectors", removed)
        return removed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def search_nearest(
        self,
        query_vector: Sequence[float],
        k: int,
        min_similarity: float,
        name_filters: Optional[Sequence[str]] = None,
        model: Optional[str] = None,
        exclude_fingerprints: Optional[Sequence[str]] = None,
    ) -> List[SearchHit]:
        """Return up to ``k`` live tools closest to ``query_vector``.

        ``name_filters`` are SQL LIKE patterns on the tool name (any may
        match). Results clear ``min_similarity`` and are ordered by ascending
        distance, ties broken by insertion order.
        """
        if not query_vector or k <= 0:
            return []

        where = []
        params: List[Any] = [serialize_embedding(list(query_vector))]
        if model is not None:
            where.append("v.model_name = ?")
            params.append(model)
        if name_filters:
            where.append(
                "(" + " OR ".join("v.tool_name LIKE ? ESCAPE '\\'" for _ in name_filters) + ")"
            )
            params.extend(name_filters)
        if exclude_fingerprints:
            where.append(
                "v.fingerprint NOT IN (" + ",".join("?" for _ in exclude_fingerprints) + ")"
            )
            params.extend(exclude_fingerprints)
        where_sql = f"WHERE {' AND '.join(where)}" if where else ""
        params.extend([min_similarity, k])

        rows = self._read(
            f"""
            SELECT * FROM (
                SELECT v.id, v.fingerprint, v.model_name, v.tool_name, v.description,
                       {COSINE_DISTANCE_SQL_FUNCTION}(e.vector, ?) AS distance
                FROM tool_vectors v
                JOIN tool_mapping m ON m.tool_id = v.id
                JOIN tool_embeddings e ON e.id = m.embedding_id
                {where_sql}
            )
            WHERE distance IS NOT NULL AND (1.0 - distance) >= ?
            ORDER BY distance ASC, id ASC
            LIMIT ?
            """,
            params,
        )
        return [
            SearchHit(
                tool_id=row["id"],
                fingerprint=row["fingerprint"],
                model=row["model_name"],
                tool_name=row["tool_name"],
                description=row["description"],
                distance=row["distance"],
            )
            for row in rows
        ]

    def lookup(self, fingerprint: str, model: str) -> Optional[ToolDescriptor]:
        """Return the descriptor for ``(fingerprint, model)``, if indexed."""
        rows = self._read(
            """
            SELECT v.*, e.dimension FROM tool_vectors v
            LEFT JOIN tool_mapping m ON m.tool_id = v.id
            LEFT JOIN tool_embeddings e ON e.id = m.embedding_id
            WHERE v.fingerprint = ? AND v.model_name = ?
            """,
            (fingerprint, model),
        )
        return _row_to_descriptor(rows[0]) if rows else None

    def list_tools(self, model: Optional[str] = None) -> List[ToolDescriptor]:
        """List indexed descriptors ordered by insertion."""
        sql = """
            SELECT v.*, e.dimension FROM tool_vectors v
            LEFT JOIN tool_mapping m ON m.tool_id = v.id
            LEFT JOIN tool_embeddings e ON e.id = m.embedding_id
        """
        params: Tuple[Any, ...] = ()
        if model is not None:
            sql += " WHERE v.model_name = ?"
            params = (model,)
        sql += " ORDER BY v.id ASC"
        return [_row_to_descriptor(row) for row in self._read(sql, params)]

    def indexed_fingerprints(self, model: str) -> set[str]:
        """Fingerprints that already have a live vector for ``model``."""
        rows = self._read(
            """
            SELECT v.fingerprint FROM tool_vectors v
            JOIN tool_mapping m ON m.tool_id = v.id
            WHERE v.model_name = ?
            """,
            (model,),
        )
        return {row[0] for row in rows}

    def superseded_fingerprints(self, model: str) -> Dict[str, str]:
        """Map evicted fingerprints to the still-indexed tool that replaced them."""
        rows = self._read(
            """
            SELECT s.fingerprint, s.superseded_by FROM superseded_tools s
            JOIN tool_vectors v
              ON v.fingerprint = s.superseded_by AND v.model_name = s.model_name
            WHERE s.model_name = ?
            """,
            (model,),
        )
        return {row[0]: row[1] for row in rows}

    def get_stats(self) -> Dict[str, Any]:
        """Totals and per-model counts for status output."""
        by_model = self._read(
            """
            SELECT v.model_name, COUNT(*) AS tools, MAX(e.dimension) AS dimension
            FROM tool_vectors v
            LEFT JOIN tool_mapping m ON m.tool_id = v.id
            LEFT JOIN tool_embeddings e ON e.id = m.embedding_id
            GROUP BY v.model_name
            ORDER BY v.model_name
            """
        )
        totals = self._read(
            """
            SELECT
                (SELECT COUNT(*) FROM tool_vectors) AS tools,
                (SELECT COUNT(*) FROM tool_embeddings) AS vectors,
                (SELECT COUNT(*) FROM tool_embeddings
                 WHERE id NOT IN (SELECT embedding_id FROM tool_mapping)) AS orphans,
                (SELECT COUNT(*) FROM superseded_tools) AS superseded
            """
        )[0]
        return {
            "total_tools": totals["tools"],
            "total_vectors": totals["vectors"],
            "orphaned_vectors": totals["orphans"],
            "superseded_tools": totals["superseded"],
            "models": [
                {
                    "model": row["model_name"],
                    "tools": row["tools"],
                    "dimension": row["dimension"],
                }
                for row in by_model
            ],
        }
