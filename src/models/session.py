"""Interactive evidence-gathering session models.

An InteractiveSession is the stateful, human-in-the-loop conversation tied
to one AnalysisOutcome.  It owns the ordered information needs, the user's
responses, the transcript and the confidence ledger for that session.

State machine (see src/services/interactive_session.py)::

    gathering_info ──► processing ──► complete
          ▲                │
          └────────────────┘   (failed re-run / non-concluding round)
    gathering_info | processing ──► abandoned

Like every other model in the project these are frozen; the session
manager produces a new snapshot with ``model_copy(update=...)`` on every
transition and persists it through the SessionStore.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.models.analysis import AnalysisOutcome, CollectedResponse


class SessionStatus(str, Enum):  # noqa: UP042
    GATHERING_INFO = "gathering_info"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETE, SessionStatus.ABANDONED)


class NeedPriority(str, Enum):  # noqa: UP042
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Sort key: critical first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    NeedPriority.CRITICAL: 0,
    NeedPriority.HIGH: 1,
    NeedPriority.MEDIUM: 2,
    NeedPriority.LOW: 3,
}


class NeedType(str, Enum):  # noqa: UP042
    """Kinds of missing evidence.  ``photo_*`` types must be answered with a photo."""

    PHOTO_DETAIL = "photo_detail"
    PHOTO_MARKS = "photo_marks"
    PHOTO_UNDERSIDE = "photo_underside"
    PHOTO_BACK = "photo_back"
    PHOTO_DAMAGE = "photo_damage"
    PHOTO_SCALE = "photo_scale"
    PHOTO_CONTEXT = "photo_context"
    QUESTION_PROVENANCE = "question_provenance"
    QUESTION_PURCHASE = "question_purchase"
    QUESTION_CONDITION = "question_condition"
    QUESTION_COMPARISON = "question_comparison"
    QUESTION_MARKS = "question_marks"
    MEASUREMENT = "measurement"
    MATERIAL_TEST = "material_test"
    DOCUMENTATION = "documentation"

    @property
    def wants_photo(self) -> bool:
        return self.value.startswith("photo_")


class ConversationRole(str, Enum):  # noqa: UP042
    ASSISTANT = "assistant"
    USER = "user"
    SYSTEM = "system"


class InformationNeed(BaseModel):
    """One specific piece of missing evidence that could raise confidence."""

    model_config = ConfigDict(frozen=True)

    id: str
    type: NeedType
    priority: NeedPriority
    question: str
    reason: str = ""
    expected_confidence_gain: float = Field(ge=0.0, le=1.0)
    photo_guidance: str | None = None
    examples: list[str] = Field(default_factory=list)
    resolved: bool = False


class ConversationTurn(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: ConversationRole
    content: str
    related_need_id: str | None = None
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(tz=timezone.utc)  # noqa: UP017
    )


class ConfidenceRecord(BaseModel):
    """One entry of the append-only confidence ledger.

    ``round`` is 0 for the initial pipeline run (including its per-stage
    entries) and *n* for the n-th interactive re-analysis.  ``regression``
    is set when this entry is lower than the previous round's last value.
    """

    model_config = ConfigDict(frozen=True)

    overall_confidence: float
    reason: str
    round: int = Field(default=0, ge=0)
    component_scores: dict[str, float] = Field(default_factory=dict)
    regression: bool = False
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(tz=timezone.utc)  # noqa: UP017
    )

    @field_validator("overall_confidence")
    @classmethod
    def _in_unit_interval(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"confidence {value} is outside [0, 1]")
        return value


class EscalationUrgency(str, Enum):  # noqa: UP042
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return list(EscalationUrgency).index(self)


class ExpertServiceTier(BaseModel):
    """A paid human-review option; ``price`` is whole dollars."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str
    price: int
    turnaround_hours: int
    includes: list[str] = Field(default_factory=list)
    recommended_for: list[str] = Field(default_factory=list)


class EscalationRecommendation(BaseModel):
    """Advisory human-review offer attached to an outcome or session."""

    model_config = ConfigDict(frozen=True)

    should_offer: bool
    urgency: EscalationUrgency = EscalationUrgency.LOW
    reasons: list[str] = Field(default_factory=list)
    recommended_tier: ExpertServiceTier | None = None
    available_tiers: list[ExpertServiceTier] = Field(default_factory=list)


class InteractiveSession(BaseModel):
    """Snapshot of one human-in-the-loop session."""

    model_config = ConfigDict(frozen=True)

    session_id: str = Field(default_factory=lambda: f"vera-{uuid4().hex[:12]}")
    analysis_id: str
    current_outcome: AnalysisOutcome
    needs: list[InformationNeed] = Field(default_factory=list)
    responses: list[CollectedResponse] = Field(default_factory=list)
    transcript: list[ConversationTurn] = Field(default_factory=list)
    confidence_history: list[ConfidenceRecord] = Field(default_factory=list)
    status: SessionStatus = SessionStatus.GATHERING_INFO
    rounds: int = 0
    escalation: EscalationRecommendation | None = None
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(tz=timezone.utc)  # noqa: UP017
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(tz=timezone.utc)  # noqa: UP017
    )

    @property
    def open_needs(self) -> list[InformationNeed]:
        return [n for n in self.needs if not n.resolved]

    @property
    def pending_responses(self) -> list[CollectedResponse]:
        """Responses collected since the last re-analysis."""
        return [r for r in self.responses if r.round > self.rounds]

    def find_need(self, need_id: str) -> InformationNeed | None:
        for need in self.needs:
            if need.id == need_id:
                return need
        return None

    def snapshot(self) -> dict[str, Any]:
        """JSON-safe dump used by the API and the session store."""
        return self.model_dump(mode="json")
