"""SQLite ledger of tools surfaced to each retrieval session."""

from __future__ import annotations

import logging
import os
import secrets
import sqlite3
import string
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from tooldex.config import DB_PATH, SESSION_ID_LENGTH
from tooldex.core.exceptions import StorageError, ValidationError

logger = logging.getLogger(__name__)

SESSION_ID_ALPHABET = string.ascii_lowercase + string.digits


@dataclass
class LedgerEntry:
    session_id: str
    fingerprint: str
    tool_name: str
    retrieved_at: str


@dataclass
class SessionStats:
    session_id: str
    total_retrieved: int
    first_retrieved_at: Optional[str]
    last_retrieved_at: Optional[str]


def generate_session_id(length: Optional[int] = None) -> str:
    """Random session id drawn from lowercase letters and digits."""
    size = length or SESSION_ID_LENGTH
    return "".join(secrets.choice(SESSION_ID_ALPHABET) for _ in range(size))


def init_ledger_table(c: sqlite3.Cursor) -> None:
    c.execute(
        """
        CREATE TABLE IF NOT EXISTS session_tool_history (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id TEXT NOT NULL,
            fingerprint TEXT NOT NULL,
            tool_name TEXT NOT NULL,
            retrieved_at TEXT NOT NULL,
            UNIQUE(session_id, fingerprint)
        )
    """
    )
    c.execute(
        "CREATE INDEX IF NOT EXISTS idx_session_tool_history_session "
        "ON session_tool_history(session_id)"
    )


def _require_session_id(session_id: Any) -> str:
    if not isinstance(session_id, str) or not session_id.strip():
        raise ValidationError("session_id must be a non-empty string")
    return session_id


class SessionLedger:
    """Which tools each session has already been shown.

    A session exists only while it has at least one entry.
    """

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path) if db_path else DB_PATH
        self._write_lock = threading.Lock()

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        os.makedirs(self.db_path.parent, exist_ok=True)
        try:
            conn = self._get_conn()
            try:
                conn.execute("PRAGMA journal_mode=WAL")
                with conn:
                    init_ledger_table(conn.cursor())
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to initialize session ledger: {exc}") from exc

    def _read(self, sql: str, params: Sequence[Any]) -> List[sqlite3.Row]:
        try:
            conn = self._get_conn()
            try:
                return conn.execute(sql, params).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise StorageError(f"Session ledger query failed: {exc}") from exc

    def _write(self, operation, *args: Any) -> Any:
        with self._write_lock:
            try:
                conn = self._get_conn()
                try:
                    with conn:
                        return operation(conn.cursor(), *args)
                finally:
                    conn.close()
            except sqlite3.Error as exc:
                raise StorageError(f"Session ledger write failed: {exc}") from exc

    def history(self, session_id: str) -> List[LedgerEntry]:
        """Entries for ``session_id``, most recent first."""
        _require_session_id(session_id)
        rows = self._read(
            """SELECT session_id, fingerprint, tool_name, retrieved_at
            FROM session_tool_history
            WHERE session_id = ?
            ORDER BY retrieved_at DESC, id DESC""",
            (session_id,),
        )
        return [
            LedgerEntry(
                session_id=row["session_id"],
                fingerprint=row["fingerprint"],
                tool_name=row["tool_name"],
                retrieved_at=row["retrieved_at"],
            )
            for row in rows
        ]

    def known_fingerprints(self, session_id: str) -> set[str]:
        return {entry.fingerprint for entry in self.history(session_id)}

    def has_seen(self, session_id: str, fingerprint: str) -> bool:
        _require_session_id(session_id)
        rows = self._read(
            """SELECT 1 FROM session_tool_history
            WHERE session_id = ? AND fingerprint = ? LIMIT 1""",
            (session_id, fingerprint),
        )
        return bool(rows)

    def _record_batch_tx(
        self, c: sqlite3.Cursor, session_id: str, tools: List[Tuple[str, str]]
    ) -> int:
        now = datetime.now().isoformat()
        inserted = 0
        for fingerprint, tool_name in tools:
            c.execute(
                """INSERT OR IGNORE INTO session_tool_history
                (session_id, fingerprint, tool_name, retrieved_at)
                VALUES (?, ?, ?, ?)""",
                (session_id, fingerprint, tool_name, now),
            )
            inserted += c.rowcount
        return inserted

    def record_batch(
        self, session_id: str, tools: Iterable[Tuple[str, str]]
    ) -> int:
        """Record ``(fingerprint, tool_name)`` pairs; returns rows actually inserted."""
        _require_session_id(session_id)
        items = [(fingerprint, name) for fingerprint, name in tools if fingerprint]
        if not items:
            return 0
        inserted = self._write(self._record_batch_tx, session_id, items)
        logger.debug(
            "Recorded %d/%d tools for session %s", inserted, len(items), session_id
        )
        return inserted

    def _clear_tx(self, c: sqlite3.Cursor, session_id: str) -> int:
        c.execute("DELETE FROM session_tool_history WHERE session_id = ?", (session_id,))
        return c.rowcount

    def clear(self, session_id: str) -> int:
        """Forget a session; returns the number of entries removed."""
        _require_session_id(session_id)
        return self._write(self._clear_tx, session_id)

    def stats(self, session_id: str) -> SessionStats:
        _require_session_id(session_id)
        row = self._read(
            """SELECT COUNT(*) AS total, MIN(retrieved_at) AS first_at,
            MAX(retrieved_at) AS last_at
            FROM session_tool_history WHERE session_id = ?""",
            (session_id,),
        )[0]
        return SessionStats(
            session_id=session_id,
            total_retrieved=row["total"],
            first_retrieved_at=row["first_at"],
            last_retrieved_at=row["last_at"],
        )

    def resolve(self, session_id: Optional[str]) -> Tuple[str, bool]:
        """Admit a caller-supplied session id.

        An empty id, or one with no history, is replaced by a freshly generated
        id and reported as first-time.
        """
        if session_id is not None and not isinstance(session_id, str):
            raise ValidationError("session_id must be a string")
        if session_id and session_id.strip():
            if self.stats(session_id).total_retrieved > 0:
                return session_id, False
            logger.debug("Session %s has no history, issuing a new id", session_id)
        new_id = generate_session_id()
        while new_id == session_id or self.stats(new_id).total_retrieved > 0:
            new_id = generate_session_id()
        return new_id, True
