"""Self-learning feedback and insight models.

Feedback entries record where an identification was wrong (from a user
correction, an expert, or a low ground-truth score).  The insight service
aggregates them into LearningInsights that become prompt enhancements.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class FeedbackSource(str, Enum):  # noqa: UP042
    USER = "user"
    EXPERT = "expert"
    GROUND_TRUTH = "ground_truth"


class InsightType(str, Enum):  # noqa: UP042
    GAP = "gap"  # errors concentrated in one domain
    CALIBRATION = "calibration"  # systematic value over/under-estimation
    CONFUSION = "confusion"  # one maker/era repeatedly mistaken for another


class InsightSeverity(str, Enum):  # noqa: UP042
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class FeedbackEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"fb-{uuid4().hex[:12]}")
    analysis_id: str | None = None
    source: FeedbackSource
    field: str
    original_value: Any = None
    corrected_value: Any = None
    correction_confidence: float = Field(default=0.6, ge=0.0, le=1.0)
    category: str = "unknown"
    item_name: str = ""
    notes: str | None = None
    recorded_at: datetime = Field(
        default_factory=lambda: datetime.now(tz=timezone.utc)  # noqa: UP017
    )


class LearningInsight(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: InsightType
    severity: InsightSeverity
    description: str
    suggested_action: str
    evidence: list[str] = Field(default_factory=list)
    frequency: int = 1
    category: str | None = None
    last_occurred: datetime = Field(
        default_factory=lambda: datetime.now(tz=timezone.utc)  # noqa: UP017
    )
