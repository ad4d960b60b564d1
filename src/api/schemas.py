"""Pydantic request/response schemas for the VintageVision API.

Defines the public contract for the REST endpoints: analyses (blocking
and streamed), interactive sessions, evaluation runs and health.

# ─── HOW SCHEMAS WORK (Junior Developer Guide) ────────────────────────
#
# These Pydantic models define the *shape* of every HTTP request body
# and response body in the API.  FastAPI uses them for:
#
#   1. **Validation** - Incoming JSON is automatically validated against
#      the schema.  Invalid requests get a 422 error with details.
#   2. **Serialization** - Outgoing objects are automatically converted
#      to JSON matching the schema (via response_model=...).
#   3. **Documentation** - FastAPI generates OpenAPI/Swagger docs from
#      these schemas automatically (visible at /docs).
#
# Domain models (AnalysisOutcome, InteractiveSession, EvaluationReport)
# are embedded as-is; these wrappers only add what the HTTP caller needs
# on top (escalation advice, the next question, a rendered report).
#
# Convention: Request schemas end with "Request", response schemas
# end with "Response".
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from src.models.analysis import AnalysisOutcome, ResponseType
from src.models.evaluation import EvaluationReport
from src.models.session import (
    ConfidenceRecord,
    EscalationRecommendation,
    InformationNeed,
    InteractiveSession,
)


# ---------------------------------------------------------------------------
# Analyses
# ---------------------------------------------------------------------------


class AnalyzeRequest(BaseModel):
    """Images (http(s) or data URLs) plus optional asking price and context."""

    images: list[str] = Field(min_length=1, description="Image URLs or base64 data URLs")
    asking_price: int | None = Field(default=None, ge=0, description="Whole US dollars")
    user_context: str | None = Field(default=None, max_length=4000)


class AnalysisResponse(BaseModel):
    """A saved outcome with its escalation advice."""

    outcome: AnalysisOutcome
    escalation: EscalationRecommendation
    interactive_recommended: bool = Field(
        description="True when confidence is below the interactive threshold"
    )


class ConfidenceHistoryResponse(BaseModel):
    analysis_id: str
    history: list[ConfidenceRecord] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Interactive sessions
# ---------------------------------------------------------------------------


class StartSessionRequest(BaseModel):
    analysis_id: str
    deep_review: bool = False


class SubmitResponseRequest(BaseModel):
    """The user's answer to one information need."""

    need_id: str
    type: ResponseType
    content: str = Field(min_length=1)


class ReanalyzeRequest(BaseModel):
    conclude: bool = True


class SessionResponse(BaseModel):
    session: InteractiveSession
    next_need: InformationNeed | None = None


class ReanalyzeResponse(BaseModel):
    outcome: AnalysisOutcome
    session: InteractiveSession
    confidence_delta: float


class QuickQuestionsResponse(BaseModel):
    domain: str
    questions: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


class EvaluationReportResponse(BaseModel):
    report: EvaluationReport
    text: str = Field(description="Fixed-width rendering of the report")


# ---------------------------------------------------------------------------
# Health / errors
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Application health check response."""

    status: str
    version: str
    providers: dict[str, Any]


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str
    detail: str | None = None
