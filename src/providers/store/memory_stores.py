"""In-memory stores using cachetools.TTLCache.

Simple, fast stores suitable for tests, development and single-process
deployments.  Each implements one of the store interfaces so it can be
swapped for the SQLite adapters without touching the services.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from cachetools import TTLCache

from src.interfaces.analysis_store import IAnalysisStore
from src.interfaces.insight_store import IInsightStore
from src.interfaces.session_store import ISessionStore
from src.models.analysis import AnalysisOutcome
from src.models.insight import FeedbackEntry, InsightSeverity, LearningInsight
from src.models.session import InteractiveSession
from src.utils.errors import NotFoundError

logger = structlog.get_logger(logger_name=__name__)

_SEVERITY_ORDER = {
    InsightSeverity.HIGH: 0,
    InsightSeverity.MEDIUM: 1,
    InsightSeverity.LOW: 2,
}


class MemoryAnalysisStore(IAnalysisStore):
    """Outcome store backed by ``cachetools.TTLCache``.

    Parameters
    ----------
    max_size:
        Maximum number of outcomes before the oldest is evicted.
    ttl:
        Time-to-live in seconds for each outcome.
    """

    def __init__(self, max_size: int = 1000, ttl: int = 86_400) -> None:
        self._cache: TTLCache[str, AnalysisOutcome] = TTLCache(maxsize=max_size, ttl=ttl)

    async def save(self, outcome: AnalysisOutcome) -> str:
        self._cache[outcome.analysis_id] = outcome
        logger.debug("analysis_saved", analysis_id=outcome.analysis_id)
        return outcome.analysis_id

    async def get(self, analysis_id: str) -> AnalysisOutcome:
        outcome = self._cache.get(analysis_id)
        if outcome is None:
            raise NotFoundError(
                message=f"Analysis '{analysis_id}' not found",
                provider_name=self.get_provider_name(),
            )
        return outcome

    def get_provider_name(self) -> str:
        return "memory_analysis_store"


class MemorySessionStore(ISessionStore):
    """Session store backed by ``cachetools.TTLCache`` (sessions expire after *ttl*)."""

    def __init__(self, max_size: int = 1000, ttl: int = 72 * 3600) -> None:
        self._cache: TTLCache[str, InteractiveSession] = TTLCache(maxsize=max_size, ttl=ttl)

    def get(self, session_id: str) -> InteractiveSession | None:
        return self._cache.get(session_id)

    def save(self, session: InteractiveSession) -> None:
        self._cache[session.session_id] = session

    def delete(self, session_id: str) -> None:
        self._cache.pop(session_id, None)

    def list_ids(self) -> list[str]:
        return list(self._cache.keys())


class MemoryInsightStore(IInsightStore):
    """Feedback list plus insights keyed by (type, description)."""

    def __init__(self, max_feedback: int = 10_000) -> None:
        self._max_feedback = max_feedback
        self._feedback: list[FeedbackEntry] = []
        self._insights: dict[tuple[str, str], LearningInsight] = {}

    async def add_feedback(self, entry: FeedbackEntry) -> None:
        self._feedback.append(entry)
        if len(self._feedback) > self._max_feedback:
            del self._feedback[: len(self._feedback) - self._max_feedback]
        logger.debug("feedback_added", id=entry.id, source=entry.source.value, field=entry.field)

    async def list_feedback(self, category: str | None = None) -> list[FeedbackEntry]:
        if category is None:
            return list(self._feedback)
        return [f for f in self._feedback if f.category == category]

    async def upsert_insight(self, insight: LearningInsight) -> LearningInsight:
        key = (insight.type.value, insight.description)
        existing = self._insights.get(key)
        if existing is None:
            stored = insight
        else:
            merged_evidence = list(dict.fromkeys([*existing.evidence, *insight.evidence]))
            stored = existing.model_copy(
                update={
                    "frequency": existing.frequency + 1,
                    "evidence": merged_evidence,
                    "severity": insight.severity,
                    "last_occurred": datetime.now(tz=timezone.utc),  # noqa: UP017
                }
            )
        self._insights[key] = stored
        return stored

    async def list_insights(self) -> list[LearningInsight]:
        return sorted(self._insights.values(), key=lambda i: _SEVERITY_ORDER[i.severity])
