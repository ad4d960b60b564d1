"""VintageVision API layer - routes, schemas, and middleware."""

from src.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from src.api.routes import router
from src.api.schemas import (
    AnalysisResponse,
    AnalyzeRequest,
    ErrorResponse,
    EvaluationReportResponse,
    HealthResponse,
    ReanalyzeResponse,
    SessionResponse,
)

__all__ = [
    "ErrorHandlingMiddleware",
    "RequestLoggingMiddleware",
    "configure_cors",
    "router",
    "AnalysisResponse",
    "AnalyzeRequest",
    "ErrorResponse",
    "EvaluationReportResponse",
    "HealthResponse",
    "ReanalyzeResponse",
    "SessionResponse",
]
