"""Evaluation harness models: ground truth, per-item scores, reports.

Ground-truth items ship as packaged YAML (src/data/ground_truth.yaml) and
are loaded once into frozen models.  The harness produces one ScoreResult
per item and aggregates them into an EvaluationReport.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.models.analysis import DomainExpert, EraRange, ProductCategory


class Difficulty(str, Enum):  # noqa: UP042
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    EXPERT = "expert"


class EvaluationMode(str, Enum):  # noqa: UP042
    SMOKE = "smoke"
    FULL = "full"
    SINGLE = "single"
    CUSTOM = "custom"


class ScoreBand(str, Enum):  # noqa: UP042
    """Composite-score bands used by the report histogram."""

    EXCELLENT = "excellent"  # 90-100
    GOOD = "good"  # 75-89
    ACCEPTABLE = "acceptable"  # 60-74
    POOR = "poor"  # 40-59
    FAILED = "failed"  # < 40

    @classmethod
    def for_score(cls, score: float) -> ScoreBand:
        if score >= 90:
            return cls.EXCELLENT
        if score >= 75:
            return cls.GOOD
        if score >= 60:
            return cls.ACCEPTABLE
        if score >= 40:
            return cls.POOR
        return cls.FAILED


class ExpectedIdentification(BaseModel):
    """The known-correct answer for one ground-truth item."""

    model_config = ConfigDict(frozen=True)

    name: str
    name_keywords: list[str] = Field(default_factory=list)
    maker: str | None = None
    maker_alternatives: list[str] = Field(default_factory=list)
    era_range: EraRange
    style: str | None = None
    category: ProductCategory = ProductCategory.VINTAGE
    domain: DomainExpert
    origin_region: str | None = None
    value_min: int = Field(ge=0)
    value_max: int = Field(ge=0)

    @model_validator(mode="after")
    def _ordered_value(self) -> ExpectedIdentification:
        if self.value_max < self.value_min:
            raise ValueError("value_max is below value_min")
        return self


class GroundTruthItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    image_ref: str
    expected: ExpectedIdentification
    difficulty: Difficulty = Difficulty.MEDIUM


class ComponentScores(BaseModel):
    """Per-field similarity in ``[0, 1]``."""

    model_config = ConfigDict(frozen=True)

    name: float = Field(default=0.0, ge=0.0, le=1.0)
    maker: float = Field(default=0.0, ge=0.0, le=1.0)
    era: float = Field(default=0.0, ge=0.0, le=1.0)
    value: float = Field(default=0.0, ge=0.0, le=1.0)


class ScoreResult(BaseModel):
    """Score of one produced outcome against one ground-truth item."""

    model_config = ConfigDict(frozen=True)

    item_id: str
    domain: DomainExpert
    difficulty: Difficulty
    component_scores: ComponentScores = Field(default_factory=ComponentScores)
    overall_score: float = Field(default=0.0, ge=0.0, le=100.0)
    failures: list[str] = Field(default_factory=list)
    error: str | None = None
    produced_name: str | None = None
    produced_confidence: float | None = None
    duration_seconds: float = 0.0

    @property
    def band(self) -> ScoreBand:
        return ScoreBand.for_score(self.overall_score)

    @property
    def is_error(self) -> bool:
        return self.error is not None


class CategoryBreakdown(BaseModel):
    model_config = ConfigDict(frozen=True)

    domain: DomainExpert
    count: int
    mean_score: float
    pass_rate: float


class FailurePattern(BaseModel):
    model_config = ConfigDict(frozen=True)

    pattern: str
    count: int
    item_ids: list[str] = Field(default_factory=list)


class EvaluationReport(BaseModel):
    """Aggregate of one harness run."""

    model_config = ConfigDict(frozen=True)

    run_id: str = Field(default_factory=lambda: str(uuid4()))
    mode: EvaluationMode = EvaluationMode.CUSTOM
    started_at: datetime = Field(
        default_factory=lambda: datetime.now(tz=timezone.utc)  # noqa: UP017
    )
    finished_at: datetime | None = None
    duration_seconds: float = 0.0
    total_items: int = 0
    scored_items: int = 0
    failed_items: int = 0
    cancelled: bool = False
    mean_score: float = 0.0
    median_score: float = 0.0
    pass_rate: float = 0.0
    band_histogram: dict[ScoreBand, int] = Field(default_factory=dict)
    by_category: list[CategoryBreakdown] = Field(default_factory=list)
    failure_patterns: list[FailurePattern] = Field(default_factory=list)
    improvement_priorities: list[str] = Field(default_factory=list)
    results: list[ScoreResult] = Field(default_factory=list)
