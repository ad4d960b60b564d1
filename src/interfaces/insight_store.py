"""Abstract base class for self-learning feedback persistence.

Holds the feedback entries recorded from user corrections, expert
reviews and ground-truth scoring, plus the insights derived from them.
Injected into the InsightService; the in-memory adapter is the default.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.models.insight import FeedbackEntry, LearningInsight


# Concrete implementations: MemoryInsightStore
# Located in: src/providers/store/
class IInsightStore(ABC):
    """Contract for feedback and insight storage."""

    @abstractmethod
    async def add_feedback(self, entry: FeedbackEntry) -> None:
        """Append one feedback entry."""

    @abstractmethod
    async def list_feedback(self, category: str | None = None) -> list[FeedbackEntry]:
        """Return feedback in insertion order, optionally for one category."""

    @abstractmethod
    async def upsert_insight(self, insight: LearningInsight) -> LearningInsight:
        """Store *insight*, merging with an existing one of the same type and description.

        A merge increments ``frequency``, unions the evidence and refreshes
        ``last_occurred``.  Returns the stored insight.
        """

    @abstractmethod
    async def list_insights(self) -> list[LearningInsight]:
        """Return all insights, most severe first."""
