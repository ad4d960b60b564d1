"""Abstract base class for analysis outcome persistence.

Completed (non-cancelled) pipeline outcomes are saved here at the service
boundary; the orchestrator itself holds no persistent state.  Interactive
sessions load their starting outcome from this store, and re-runs save a
new outcome whose ``supersedes`` field points at the previous one.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.models.analysis import AnalysisOutcome


# Concrete implementations: MemoryAnalysisStore, SQLiteAnalysisStore
# Located in: src/providers/store/
class IAnalysisStore(ABC):
    """Contract for outcome storage keyed by ``analysis_id``."""

    @abstractmethod
    async def save(self, outcome: AnalysisOutcome) -> str:
        """Persist *outcome* and return its ``analysis_id``."""

    @abstractmethod
    async def get(self, analysis_id: str) -> AnalysisOutcome:
        """Return the stored outcome.

        Raises
        ------
        src.utils.errors.NotFoundError
            If no outcome exists for *analysis_id*.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this store."""
