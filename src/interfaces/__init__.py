"""Public interface definitions for all external collaborators.

Every external service and store used by VintageVision is accessed
exclusively through the abstract base classes defined in this package.
Concrete adapters implement these interfaces and are injected at runtime,
following the adapter pattern.

ADAPTER PATTERN EXPLAINED (for junior developers):
    Instead of calling ``anthropic.messages.create(...)`` directly in the
    pipeline, stages call ``vision_client.infer(...)`` where
    ``vision_client`` is any object implementing ``IVisionInferenceClient``.
    This means:
        - Swapping Anthropic for OpenAI changes ONE line in main.py.
        - Unit tests inject a scripted fake client instead of real API calls.
        - Stores can be in-memory in tests and SQLite in production.

CONCRETE PROVIDER MAP:
    Interface                  →  Concrete implementations (in src/providers/)
    ─────────────────────────────────────────────────────────────────────
    IVisionInferenceClient     →  AnthropicVisionClient, OpenAIVisionClient
    IAnalysisStore             →  MemoryAnalysisStore, SQLiteAnalysisStore
    ISessionStore              →  MemorySessionStore, SQLiteSessionStore
    IInsightStore              →  MemoryInsightStore
"""

from src.interfaces.analysis_store import IAnalysisStore
from src.interfaces.insight_store import IInsightStore
from src.interfaces.session_store import ISessionStore
from src.interfaces.vision_client import (
    IVisionInferenceClient,
    StagePrompt,
    render_user_message,
)

__all__ = [
    "IAnalysisStore",
    "IInsightStore",
    "ISessionStore",
    "IVisionInferenceClient",
    "StagePrompt",
    "render_user_message",
]
