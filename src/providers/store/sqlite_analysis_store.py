"""SQLite-backed analysis outcome store.

Persists completed AnalysisOutcomes as JSON blobs in a local SQLite
database (``data/analyses.db`` by default).  Uses ``aiosqlite`` for async
I/O.  Re-runs insert a new row; the ``supersedes`` column links it to the
outcome it replaced so the chain can be walked.
"""

from __future__ import annotations

from pathlib import Path

import aiosqlite
import structlog

from src.interfaces.analysis_store import IAnalysisStore
from src.models.analysis import AnalysisOutcome
from src.utils.errors import NotFoundError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/analyses.db")

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS analyses (
    analysis_id  TEXT    PRIMARY KEY,
    outcome_json TEXT    NOT NULL,
    domain       TEXT    NOT NULL,
    confidence   REAL    NOT NULL,
    supersedes   TEXT,
    created_at   TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);
"""

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_analyses_supersedes ON analyses(supersedes);",
    "CREATE INDEX IF NOT EXISTS idx_analyses_domain ON analyses(domain);",
]

_UPSERT_SQL = """\
INSERT INTO analyses (analysis_id, outcome_json, domain, confidence, supersedes)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT(analysis_id)
DO UPDATE SET outcome_json = excluded.outcome_json,
              domain       = excluded.domain,
              confidence   = excluded.confidence,
              supersedes   = excluded.supersedes;
"""

_SELECT_SQL = "SELECT outcome_json FROM analyses WHERE analysis_id = ?;"


class SQLiteAnalysisStore(IAnalysisStore):
    """SQLite-backed outcome persistence."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        """Create the analyses table and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(_CREATE_TABLE_SQL)
            for idx_sql in _CREATE_INDICES_SQL:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("analysis_db_initialized", path=str(self._db_path))

    async def save(self, outcome: AnalysisOutcome) -> str:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                _UPSERT_SQL,
                (
                    outcome.analysis_id,
                    outcome.model_dump_json(),
                    outcome.domain.value,
                    outcome.overall_confidence,
                    outcome.supersedes,
                ),
            )
            await db.commit()
        logger.info(
            "analysis_saved",
            analysis_id=outcome.analysis_id,
            supersedes=outcome.supersedes,
            confidence=outcome.overall_confidence,
        )
        return outcome.analysis_id

    async def get(self, analysis_id: str) -> AnalysisOutcome:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(_SELECT_SQL, (analysis_id,))
            row = await cursor.fetchone()

        if row is None:
            raise NotFoundError(
                message=f"Analysis '{analysis_id}' not found",
                provider_name=self.get_provider_name(),
            )
        return AnalysisOutcome.model_validate_json(row["outcome_json"])

    async def get_chain(self, analysis_id: str) -> list[AnalysisOutcome]:
        """Return *analysis_id* followed by every outcome it superseded, newest first."""
        chain: list[AnalysisOutcome] = []
        current: str | None = analysis_id
        seen: set[str] = set()
        while current and current not in seen:
            seen.add(current)
            outcome = await self.get(current)
            chain.append(outcome)
            current = outcome.supersedes
        return chain

    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this provider."""
        return "sqlite_analysis_store"
