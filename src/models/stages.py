"""Typed payload schemas for the four pipeline stages.

Each stage asks the vision model for a JSON object and validates it into
one of these models before any field is trusted.  Every field carries a
typed default, so a stage that exhausts its retries can still hand the
next stage a well-formed (if uninformative) payload -- constructing the
model with no arguments yields exactly that default.

Field-level repair (enum fallbacks, price coercion, confidence clamping)
lives in src/pipeline/stages.py; these models only describe the shape.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from src.models.analysis import (
    AlternativeCandidate,
    AuthenticityRisk,
    DealRating,
    DomainExpert,
    ProductCategory,
    QualityTier,
)


class TriagePayload(BaseModel):
    """Stage 1 -- coarse age category, domain expert and visible text."""

    model_config = ConfigDict(frozen=True)

    category: ProductCategory = ProductCategory.VINTAGE
    domain: DomainExpert = DomainExpert.GENERAL
    item_type: str = "Unknown item"
    estimated_era: str | None = None
    quality_tier: QualityTier = QualityTier.MID
    confidence: float = Field(default=0.3, ge=0.0, le=1.0)
    reasoning: str = ""
    visible_branding: str | None = None
    visible_text: list[str] = Field(default_factory=list)


class EvidencePayload(BaseModel):
    """Stage 2 -- marks, materials and construction details."""

    model_config = ConfigDict(frozen=True)

    marks: list[str] = Field(default_factory=list)
    materials: list[str] = Field(default_factory=list)
    construction: list[str] = Field(default_factory=list)
    features: list[str] = Field(default_factory=list)
    condition_notes: str = ""
    damage_noted: bool = False
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class IdentificationPayload(BaseModel):
    """Stage 3 -- best candidate plus ranked alternatives."""

    model_config = ConfigDict(frozen=True)

    name: str = "Unidentified item"
    maker: str | None = None
    era_label: str | None = None
    period_start: int | None = None
    period_end: int | None = None
    style: str | None = None
    origin_region: str | None = None
    alternatives: list[AlternativeCandidate] = Field(default_factory=list)
    maker_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class SynthesisPayload(BaseModel):
    """Stage 4 -- final valuation, deal assessment and authentication checklist."""

    model_config = ConfigDict(frozen=True)

    name: str = "Unidentified item"
    maker: str | None = None
    era_label: str | None = None
    period_start: int | None = None
    period_end: int | None = None
    style: str | None = None
    origin_region: str | None = None
    description: str = ""
    historical_context: str = ""
    estimated_value_min: int | None = None
    estimated_value_max: int | None = None
    evidence_for: list[str] = Field(default_factory=list)
    evidence_against: list[str] = Field(default_factory=list)
    authenticity_risk: AuthenticityRisk = AuthenticityRisk.MEDIUM
    expert_referral_recommended: bool = False
    expert_referral_reason: str | None = None
    deal_rating: DealRating | None = None
    deal_explanation: str | None = None
    verification_tips: list[str] = Field(default_factory=list)
    red_flags: list[str] = Field(default_factory=list)
    dating_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    authentication_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    valuation_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    identification_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
