"""Core analysis models: requests, stage results, and outcomes.

Defines Pydantic v2 models for one run of the four-stage analysis
pipeline.  All models use frozen config -- a re-run never edits an old
outcome, it produces a new one whose ``supersedes`` field points back.

Architecture note:
    ``AnalysisRequest`` is the immutable input.  The orchestrator
    (src/pipeline/orchestrator.py) appends one ``StageResult`` per stage
    and finally assembles an ``AnalysisOutcome``.  Interactive re-runs
    reuse the original request via ``model_copy`` with extra evidence.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# data URLs accepted as inline images; anything else must be http(s).
_DATA_URL_RE = re.compile(r"^data:image/(jpeg|jpg|png|gif|webp);base64,", re.IGNORECASE)
_HTTP_URL_RE = re.compile(r"^https?://\S+$", re.IGNORECASE)
_MAX_INLINE_BYTES = 50 * 1024 * 1024


def is_valid_image_ref(ref: str) -> bool:
    """Return ``True`` for an http(s) URL or a supported image data URL."""
    if not isinstance(ref, str) or not ref:
        return False
    return bool(_DATA_URL_RE.match(ref) or _HTTP_URL_RE.match(ref))


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------
class StageName(str, Enum):  # noqa: UP042
    """The four pipeline stages, in execution order."""

    TRIAGE = "triage"
    EVIDENCE = "evidence"
    IDENTIFICATION = "identification"
    SYNTHESIS = "synthesis"


class StageStatus(str, Enum):  # noqa: UP042
    """Whether a stage produced trusted output or was degraded to defaults."""

    COMPLETE = "complete"
    UNKNOWN = "unknown"


class DomainExpert(str, Enum):  # noqa: UP042
    """Specialist domain chosen at triage; drives prompts and follow-up needs."""

    FURNITURE = "furniture"
    CERAMICS = "ceramics"
    GLASS = "glass"
    SILVER = "silver"
    JEWELRY = "jewelry"
    WATCHES = "watches"
    ART = "art"
    TEXTILES = "textiles"
    TOYS = "toys"
    BOOKS = "books"
    TOOLS = "tools"
    LIGHTING = "lighting"
    ELECTRONICS = "electronics"
    VEHICLES = "vehicles"
    GENERAL = "general"


class ProductCategory(str, Enum):  # noqa: UP042
    """Age category (not item type): antique is pre-1920, vintage 1920-1990."""

    ANTIQUE = "antique"
    VINTAGE = "vintage"
    MODERN_BRANDED = "modern_branded"
    MODERN_GENERIC = "modern_generic"


class QualityTier(str, Enum):  # noqa: UP042
    MUSEUM = "museum"
    HIGH = "high"
    MID = "mid"
    LOW = "low"
    UNKNOWN = "unknown"


class AuthenticityRisk(str, Enum):  # noqa: UP042
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"


class DealRating(str, Enum):  # noqa: UP042
    """Asking price versus estimated value; only set when a price was supplied."""

    EXCEPTIONAL = "exceptional"
    GOOD = "good"
    FAIR = "fair"
    OVERPRICED = "overpriced"


class ResponseType(str, Enum):  # noqa: UP042
    """Kind of evidence a user supplies in an interactive session."""

    PHOTO = "photo"
    TEXT = "text"


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------
class EraRange(BaseModel):
    """Inclusive year range, e.g. 1956-1970."""

    model_config = ConfigDict(frozen=True)

    start: int
    end: int

    @model_validator(mode="after")
    def _ordered(self) -> EraRange:
        if self.end < self.start:
            raise ValueError(f"era end {self.end} is before start {self.start}")
        return self

    @property
    def length(self) -> int:
        return self.end - self.start


class ValueRange(BaseModel):
    """Estimated value range in whole US dollars."""

    model_config = ConfigDict(frozen=True)

    min: int = Field(ge=0)
    max: int = Field(ge=0)

    @model_validator(mode="after")
    def _ordered(self) -> ValueRange:
        if self.max < self.min:
            raise ValueError(f"value max {self.max} is below min {self.min}")
        return self

    @property
    def midpoint(self) -> float:
        return (self.min + self.max) / 2


class AlternativeCandidate(BaseModel):
    """A runner-up identification the model considered."""

    model_config = ConfigDict(frozen=True)

    name: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reason: str = ""


class CollectedResponse(BaseModel):
    """One piece of user-supplied evidence answering an information need."""

    model_config = ConfigDict(frozen=True)

    need_id: str
    need_type: str
    response_type: ResponseType
    content: str
    round: int = 0
    provided_at: datetime = Field(
        default_factory=lambda: datetime.now(tz=timezone.utc)  # noqa: UP017
    )


# ---------------------------------------------------------------------------
# AnalysisRequest -- the immutable input to a run
# ---------------------------------------------------------------------------
class AnalysisRequest(BaseModel):
    """A submitted image plus optional asking price and context.

    ``additional_evidence`` is empty for a first run; interactive re-runs
    carry every response collected in the session.
    """

    model_config = ConfigDict(frozen=True)

    request_id: str = Field(default_factory=lambda: str(uuid4()))
    images: list[str] = Field(min_length=1)
    asking_price: int | None = Field(default=None, ge=0)
    user_context: str | None = Field(default=None, max_length=4000)
    additional_evidence: list[CollectedResponse] = Field(default_factory=list)
    submitted_at: datetime = Field(
        default_factory=lambda: datetime.now(tz=timezone.utc)  # noqa: UP017
    )

    @field_validator("images")
    @classmethod
    def _validate_images(cls, images: list[str]) -> list[str]:
        total_inline = 0
        for ref in images:
            if not is_valid_image_ref(ref):
                raise ValueError(
                    "image reference must be an http(s) URL or a JPEG/PNG/GIF/WebP data URL"
                )
            if ref.startswith("data:"):
                total_inline += len(ref)
        if total_inline > _MAX_INLINE_BYTES:
            raise ValueError("total inline image payload exceeds 50 MB")
        return images

    @property
    def evidence_images(self) -> list[str]:
        """Photos supplied as interactive evidence (appended after the originals)."""
        return [
            r.content
            for r in self.additional_evidence
            if r.response_type == ResponseType.PHOTO
        ]


# ---------------------------------------------------------------------------
# StageResult -- append-only record of one stage
# ---------------------------------------------------------------------------
class StageResult(BaseModel):
    """Output of one pipeline stage.

    ``payload`` is the validated stage schema dumped to a dict.  When the
    stage exhausted its retries ``status`` is UNKNOWN and the payload holds
    typed defaults.
    """

    model_config = ConfigDict(frozen=True)

    stage: StageName
    status: StageStatus = StageStatus.COMPLETE
    payload: dict[str, Any] = Field(default_factory=dict)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    attempts: int = 1
    defaulted_fields: list[str] = Field(default_factory=list)
    error: str | None = None
    duration_seconds: float = 0.0


class ConsensusSummary(BaseModel):
    """How several independent runs of the same request were reconciled."""

    model_config = ConfigDict(frozen=True)

    runs: int = Field(ge=1)
    name_agreement: float = Field(ge=0.0, le=1.0)
    value_agreement: float = Field(ge=0.0, le=1.0)
    domain_agreement: float = Field(ge=0.0, le=1.0)
    strategy: str
    reasons: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# AnalysisOutcome -- the synthesized identification
# ---------------------------------------------------------------------------
class AnalysisOutcome(BaseModel):
    """Final, confidence-scored identification of one pipeline run."""

    model_config = ConfigDict(frozen=True)

    analysis_id: str = Field(default_factory=lambda: str(uuid4()))
    request: AnalysisRequest
    name: str
    maker: str | None = None
    era_label: str | None = None
    era_range: EraRange | None = None
    value_range: ValueRange | None = None
    domain: DomainExpert = DomainExpert.GENERAL
    category: ProductCategory = ProductCategory.VINTAGE
    style: str | None = None
    origin_region: str | None = None
    description: str = ""
    evidence_for: list[str] = Field(default_factory=list)
    evidence_against: list[str] = Field(default_factory=list)
    alternatives: list[AlternativeCandidate] = Field(default_factory=list)
    authenticity_risk: AuthenticityRisk = AuthenticityRisk.MEDIUM
    expert_referral_recommended: bool = False
    deal_rating: DealRating | None = None
    deal_explanation: str | None = None
    verification_tips: list[str] = Field(default_factory=list)
    red_flags: list[str] = Field(default_factory=list)
    component_confidences: dict[str, float] = Field(default_factory=dict)
    overall_confidence: float = Field(ge=0.0, le=1.0)
    stage_results: list[StageResult] = Field(default_factory=list)
    degraded_stages: list[StageName] = Field(default_factory=list)
    supersedes: str | None = None
    consensus: ConsensusSummary | None = None
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(tz=timezone.utc)  # noqa: UP017
    )

    @property
    def value_midpoint(self) -> float:
        return self.value_range.midpoint if self.value_range else 0.0

    def stage(self, name: StageName) -> StageResult | None:
        """Return the StageResult for *name*, if that stage ran."""
        for result in self.stage_results:
            if result.stage == name:
                return result
        return None


# ---------------------------------------------------------------------------
# Progress events -- the stream vocabulary
# ---------------------------------------------------------------------------
class StreamEventType(str, Enum):  # noqa: UP042
    STAGE_START = "stage:start"
    STAGE_COMPLETE = "stage:complete"
    COMPLETE = "complete"
    ERROR = "error"


class ProgressEvent(BaseModel):
    """One event on the progress/result stream of a run."""

    model_config = ConfigDict(frozen=True)

    type: StreamEventType
    analysis_id: str
    stage: StageName | None = None
    message: str = ""
    progress: float = Field(ge=0.0, le=100.0)
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(tz=timezone.utc)  # noqa: UP017
    )

    @property
    def is_terminal(self) -> bool:
        return self.type in (StreamEventType.COMPLETE, StreamEventType.ERROR)
