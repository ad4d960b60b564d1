"""Persistence adapters for outcomes, sessions and self-learning data.

    - MemoryAnalysisStore / SQLiteAnalysisStore - IAnalysisStore
    - MemorySessionStore / SQLiteSessionStore   - ISessionStore
    - MemoryInsightStore                        - IInsightStore

main.py picks the SQLite adapters when a database path is configured and
the in-memory ones otherwise (tests, ephemeral deploys).
"""

from src.providers.store.memory_stores import (
    MemoryAnalysisStore,
    MemoryInsightStore,
    MemorySessionStore,
)
from src.providers.store.sqlite_analysis_store import SQLiteAnalysisStore
from src.providers.store.sqlite_session_store import SQLiteSessionStore

__all__ = [
    "MemoryAnalysisStore",
    "MemoryInsightStore",
    "MemorySessionStore",
    "SQLiteAnalysisStore",
    "SQLiteSessionStore",
]
