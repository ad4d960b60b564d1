"""Abstract base class for interactive session persistence.

Replaces a process-global ``dict`` of sessions with an injected
repository, so the session manager is testable with an in-memory fake
and survives restarts with the SQLite adapter.  Operations are sync: each
touches one small JSON blob.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.models.session import InteractiveSession


# Concrete implementations: MemorySessionStore, SQLiteSessionStore
# Located in: src/providers/store/
class ISessionStore(ABC):
    """Contract for InteractiveSession storage keyed by ``session_id``."""

    @abstractmethod
    def get(self, session_id: str) -> InteractiveSession | None:
        """Return the stored session, or ``None`` when unknown."""

    @abstractmethod
    def save(self, session: InteractiveSession) -> None:
        """Insert or replace *session*."""

    @abstractmethod
    def delete(self, session_id: str) -> None:
        """Remove *session_id*; a no-op if it does not exist."""

    @abstractmethod
    def list_ids(self) -> list[str]:
        """Return every stored session id."""
