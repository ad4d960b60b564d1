"""SQLite-backed persistent interactive session store.

Persists InteractiveSession snapshots to a SQLite database on disk so an
evidence-gathering conversation survives a restart.  Uses sync ``sqlite3``:
each operation touches one small JSON blob, so event-loop blocking is
negligible, and the session manager persists after every transition.

An in-memory cache avoids repeated deserialisation for hot sessions.
Stale sessions (older than ``max_age_hours``) are pruned on
:meth:`initialize`.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

import structlog

from src.interfaces.session_store import ISessionStore
from src.models.session import InteractiveSession
from src.utils.logging import get_logger

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS {table} (
    session_id  TEXT PRIMARY KEY,
    analysis_id TEXT    NOT NULL,
    status      TEXT    NOT NULL,
    state_json  TEXT    NOT NULL,
    created_at  TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    updated_at  TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);
"""

_CREATE_INDEX_SQL = (
    "CREATE INDEX IF NOT EXISTS idx_{table}_updated ON {table}(updated_at);"
)

_UPSERT_SQL = """\
INSERT INTO {table} (session_id, analysis_id, status, state_json)
VALUES (?, ?, ?, ?)
ON CONFLICT(session_id)
DO UPDATE SET analysis_id = excluded.analysis_id,
              status      = excluded.status,
              state_json  = excluded.state_json,
              updated_at  = strftime('%Y-%m-%dT%H:%M:%fZ', 'now');
"""

_SELECT_SQL = "SELECT state_json FROM {table} WHERE session_id = ?;"

_DELETE_SQL = "DELETE FROM {table} WHERE session_id = ?;"

_ALL_IDS_SQL = "SELECT session_id FROM {table} ORDER BY created_at;"

_COUNT_SQL = "SELECT COUNT(*) FROM {table};"

_PRUNE_SQL = """\
DELETE FROM {table}
WHERE updated_at < strftime('%Y-%m-%dT%H:%M:%fZ', 'now', '-{hours} hours');
"""


class SQLiteSessionStore(ISessionStore):
    """Session store backed by SQLite.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.
    table_name:
        Table name to use.
    max_age_hours:
        Sessions not updated for this long are pruned on :meth:`initialize`.
        Set to ``0`` to disable pruning.
    """

    def __init__(
        self,
        db_path: str | Path,
        table_name: str = "interactive_sessions",
        max_age_hours: int = 72,
    ) -> None:
        self._db_path = Path(db_path)
        self._table = table_name
        self._max_age_hours = max_age_hours
        self._cache: dict[str, InteractiveSession] = {}
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Create the table, index, and prune stale sessions.

        Must be called once before use (typically during app startup).
        """
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            conn.execute(_CREATE_TABLE_SQL.format(table=self._table))
            conn.execute(_CREATE_INDEX_SQL.format(table=self._table))
            if self._max_age_hours > 0:
                cursor = conn.execute(
                    _PRUNE_SQL.format(table=self._table, hours=self._max_age_hours)
                )
                pruned = cursor.rowcount
                if pruned:
                    self._logger.info(
                        "sessions_pruned",
                        table=self._table,
                        pruned=pruned,
                        max_age_hours=self._max_age_hours,
                    )
            conn.commit()
            existing = conn.execute(_COUNT_SQL.format(table=self._table)).fetchone()[0]
        finally:
            conn.close()

        self._logger.info(
            "session_store_initialized",
            db_path=str(self._db_path),
            table=self._table,
            existing_sessions=existing,
        )

    # ------------------------------------------------------------------
    # ISessionStore interface
    # ------------------------------------------------------------------

    def save(self, session: InteractiveSession) -> None:
        """Write to both in-memory cache and SQLite."""
        self._cache[session.session_id] = session
        conn = self._connect()
        try:
            conn.execute(
                _UPSERT_SQL.format(table=self._table),
                (
                    session.session_id,
                    session.analysis_id,
                    session.status.value,
                    session.model_dump_json(),
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def get(self, session_id: str) -> InteractiveSession | None:
        """Read from cache first, then SQLite."""
        if session_id in self._cache:
            return self._cache[session_id]

        session = self._load_from_db(session_id)
        if session is not None:
            self._cache[session_id] = session
        return session

    def delete(self, session_id: str) -> None:
        self._cache.pop(session_id, None)
        conn = self._connect()
        try:
            conn.execute(_DELETE_SQL.format(table=self._table), (session_id,))
            conn.commit()
        finally:
            conn.close()

    def list_ids(self) -> list[str]:
        conn = self._connect()
        try:
            cursor = conn.execute(_ALL_IDS_SQL.format(table=self._table))
            return [row[0] for row in cursor.fetchall()]
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        """Open a new SQLite connection with WAL mode for concurrency."""
        conn = sqlite3.connect(str(self._db_path))
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _load_from_db(self, session_id: str) -> InteractiveSession | None:
        """Deserialize a session from SQLite, or return None."""
        conn = self._connect()
        try:
            cursor = conn.execute(
                _SELECT_SQL.format(table=self._table),
                (session_id,),
            )
            row = cursor.fetchone()
        finally:
            conn.close()

        if row is None:
            return None

        try:
            return InteractiveSession.model_validate_json(row[0])
        except ValueError as exc:
            self._logger.warning(
                "session_deserialize_failed",
                session_id=session_id,
                error=str(exc)[:200],
            )
            return None

    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this provider."""
        return f"sqlite_session_store:{self._table}"
