"""VintageVision domain models - re-exports all public model classes.

This __init__.py acts as the single public entry point for all domain models.
Instead of importing models from their individual module files (e.g.
``from src.models.session import InteractiveSession``), other parts of the
codebase can import directly from ``src.models``.

The models are organized across five submodules by domain concern:
    - analysis.py    - Requests, stage results, outcomes, progress events
    - stages.py      - Typed JSON payload schemas for the four stages
    - session.py     - Interactive session, information needs, ledger, escalation
    - evaluation.py  - Ground truth, score results, evaluation reports
    - insight.py     - Self-learning feedback and insights

If you add a new model class, remember to add it to ``__all__`` too.
"""

from __future__ import annotations

# --- Analysis models: one run of the four-stage pipeline. ---
from src.models.analysis import (
    AlternativeCandidate,
    AnalysisOutcome,
    AnalysisRequest,
    AuthenticityRisk,
    CollectedResponse,
    ConsensusSummary,
    DealRating,
    DomainExpert,
    EraRange,
    ProductCategory,
    ProgressEvent,
    QualityTier,
    ResponseType,
    StageName,
    StageResult,
    StageStatus,
    StreamEventType,
    ValueRange,
    is_valid_image_ref,
)
# --- Evaluation models: offline ground-truth scoring. ---
from src.models.evaluation import (
    CategoryBreakdown,
    ComponentScores,
    Difficulty,
    EvaluationMode,
    EvaluationReport,
    ExpectedIdentification,
    FailurePattern,
    GroundTruthItem,
    ScoreBand,
    ScoreResult,
)
# --- Insight models: self-learning feedback loop. ---
from src.models.insight import (
    FeedbackEntry,
    FeedbackSource,
    InsightSeverity,
    InsightType,
    LearningInsight,
)
# --- Session models: the human-in-the-loop state machine. ---
from src.models.session import (
    ConfidenceRecord,
    ConversationRole,
    ConversationTurn,
    EscalationRecommendation,
    EscalationUrgency,
    ExpertServiceTier,
    InformationNeed,
    InteractiveSession,
    NeedPriority,
    NeedType,
    SessionStatus,
)
# --- Stage payloads: validated model output per stage. ---
from src.models.stages import (
    EvidencePayload,
    IdentificationPayload,
    SynthesisPayload,
    TriagePayload,
)

__all__ = [
    "AlternativeCandidate",
    "AnalysisOutcome",
    "AnalysisRequest",
    "AuthenticityRisk",
    "CategoryBreakdown",
    "CollectedResponse",
    "ConsensusSummary",
    "ComponentScores",
    "ConfidenceRecord",
    "ConversationRole",
    "ConversationTurn",
    "DealRating",
    "Difficulty",
    "DomainExpert",
    "EraRange",
    "EscalationRecommendation",
    "EscalationUrgency",
    "EvaluationMode",
    "EvaluationReport",
    "EvidencePayload",
    "ExpectedIdentification",
    "ExpertServiceTier",
    "FailurePattern",
    "FeedbackEntry",
    "FeedbackSource",
    "GroundTruthItem",
    "IdentificationPayload",
    "InformationNeed",
    "InsightSeverity",
    "InsightType",
    "InteractiveSession",
    "LearningInsight",
    "NeedPriority",
    "NeedType",
    "ProductCategory",
    "ProgressEvent",
    "QualityTier",
    "ResponseType",
    "ScoreBand",
    "ScoreResult",
    "SessionStatus",
    "StageName",
    "StageResult",
    "StageStatus",
    "StreamEventType",
    "SynthesisPayload",
    "TriagePayload",
    "ValueRange",
    "is_valid_image_ref",
]
