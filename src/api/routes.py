"""FastAPI API routes for VintageVision.

Provides REST endpoints for running analyses (blocking or streamed over
Server-Sent Events), interactive evidence-gathering sessions, evaluation
runs and health checks.  Service dependencies are resolved from
``app.state`` via FastAPI's ``Depends`` using the ``Annotated`` pattern.

# ─── API ROUTE MAP (Junior Developer Guide) ───────────────────────────
#
# Endpoint                                   Method  Description
# ─────────────────────────────────────────────────────────────────────
# /api/v1/analyses                           POST    Run an analysis (blocking)
# /api/v1/analyses/stream                    POST    Run an analysis, SSE progress
# /api/v1/analyses/{id}                      GET     Fetch a saved analysis
# /api/v1/analyses/{id}/confidence           GET     Per-stage confidence ledger
# /api/v1/sessions                           POST    Start an interactive session
# /api/v1/sessions/{sid}                     GET     Session snapshot
# /api/v1/sessions/{sid}/responses           POST    Answer one information need
# /api/v1/sessions/{sid}/reanalyze           POST    Re-run with collected evidence
# /api/v1/sessions/{sid}/abandon             POST    Abandon the session
# /api/v1/sessions/quick-questions/{domain}  GET     Canned prompts for a domain
# /api/v1/evaluations/smoke                  POST    Five-item smoke evaluation
# /api/v1/evaluations/full                   POST    Full ground-truth evaluation
# /api/v1/evaluations/items/{item_id}        POST    Score one ground-truth item
# /api/v1/health                             GET     Health check + provider status
#
# Errors are raised as VintageVisionError subclasses and turned into
# JSON ErrorResponse bodies by ErrorHandlingMiddleware (middleware.py).
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Annotated, Any

import pydantic
import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from src.api.schemas import (
    AnalysisResponse,
    AnalyzeRequest,
    ConfidenceHistoryResponse,
    ErrorResponse,
    EvaluationReportResponse,
    HealthResponse,
    QuickQuestionsResponse,
    ReanalyzeRequest,
    ReanalyzeResponse,
    SessionResponse,
    StartSessionRequest,
    SubmitResponseRequest,
)
from src.models.analysis import (
    AnalysisOutcome,
    AnalysisRequest,
    ProgressEvent,
    StreamEventType,
)
from src.models.evaluation import EvaluationReport, ScoreResult
from src.models.session import InteractiveSession
from src.services.analysis_service import AnalysisService
from src.services.evaluation_harness import EvaluationHarness
from src.services.evaluation_report import format_report
from src.services.interactive_session import InteractiveSessionManager
from src.utils.errors import ValidationError
from src.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

# All routes in this file are prefixed with /api/v1.
router = APIRouter(prefix="/api/v1")

# How often the SSE generator checks whether the client went away while
# waiting for the next pipeline event.
_DISCONNECT_POLL_SECONDS = 1.0

_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


# ---------------------------------------------------------------------------
# Dependency helpers
# ---------------------------------------------------------------------------


def _get_analysis_service(request: Request) -> AnalysisService:
    return request.app.state.analysis_service


def _get_session_manager(request: Request) -> InteractiveSessionManager:
    return request.app.state.session_manager


def _get_evaluation_harness(request: Request) -> EvaluationHarness:
    return request.app.state.evaluation_harness


def _get_interactive_threshold(request: Request) -> float:
    return getattr(request.app.state, "interactive_threshold", 0.85)


AnalysisServiceDep = Annotated[AnalysisService, Depends(_get_analysis_service)]
SessionManagerDep = Annotated[InteractiveSessionManager, Depends(_get_session_manager)]
HarnessDep = Annotated[EvaluationHarness, Depends(_get_evaluation_harness)]
ThresholdDep = Annotated[float, Depends(_get_interactive_threshold)]


def _to_analysis_request(body: AnalyzeRequest) -> AnalysisRequest:
    try:
        return AnalysisRequest(
            images=body.images,
            asking_price=body.asking_price,
            user_context=body.user_context,
        )
    except pydantic.ValidationError as exc:
        messages = "; ".join(err["msg"] for err in exc.errors())
        raise ValidationError(message=f"Invalid analysis request: {messages}") from exc


def _analysis_response(
    service: AnalysisService, outcome: AnalysisOutcome, threshold: float
) -> AnalysisResponse:
    return AnalysisResponse(
        outcome=outcome,
        escalation=service.escalation_for(outcome),
        interactive_recommended=outcome.overall_confidence < threshold,
    )


def _session_response(session: InteractiveSession) -> SessionResponse:
    open_needs = session.open_needs
    return SessionResponse(session=session, next_need=open_needs[0] if open_needs else None)


def _sse(event: ProgressEvent) -> str:
    payload = event.model_dump(mode="json")
    return f"event: {event.type.value}\ndata: {json.dumps(payload)}\n\n"


# ---------------------------------------------------------------------------
# Analyses
# ---------------------------------------------------------------------------


@router.post(
    "/analyses",
    response_model=AnalysisResponse,
    responses=_ERROR_RESPONSES,
    summary="Analyse an item and wait for the outcome",
)
async def create_analysis(
    body: AnalyzeRequest, service: AnalysisServiceDep, threshold: ThresholdDep
) -> AnalysisResponse:
    outcome = await service.analyze(_to_analysis_request(body))
    return _analysis_response(service, outcome, threshold)


@router.post(
    "/analyses/stream",
    responses=_ERROR_RESPONSES,
    summary="Analyse an item, streaming progress as Server-Sent Events",
)
async def stream_analysis(
    body: AnalyzeRequest, request: Request, service: AnalysisServiceDep
) -> StreamingResponse:
    """Stream ``stage:start`` / ``stage:complete`` events, then one terminal event.

    If the client disconnects mid-run the cancel event is set: the
    in-flight stage finishes, no further stage starts, nothing is saved.
    """
    analysis_request = _to_analysis_request(body)
    events: asyncio.Queue[ProgressEvent] = asyncio.Queue()
    cancel_event = asyncio.Event()

    task = asyncio.create_task(
        service.analyze(analysis_request, events.put_nowait, cancel_event=cancel_event)
    )
    task.add_done_callback(_log_stream_task_result)

    async def event_stream() -> AsyncIterator[str]:
        try:
            while True:
                try:
                    event = await asyncio.wait_for(
                        events.get(), timeout=_DISCONNECT_POLL_SECONDS
                    )
                except asyncio.TimeoutError:
                    if await request.is_disconnected():
                        _logger.info(
                            "stream_client_disconnected",
                            request_id=analysis_request.request_id,
                        )
                        cancel_event.set()
                        return
                    if task.done() and events.empty():
                        return
                    continue

                if event.is_terminal:
                    # The outcome is saved only after the pipeline returns;
                    # wait for that before telling the client it is done.
                    await asyncio.gather(task, return_exceptions=True)
                    yield _sse(_persisted_or_error(event, task))
                    return
                yield _sse(event)
        finally:
            if not task.done():
                cancel_event.set()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


def _persisted_or_error(
    event: ProgressEvent, task: asyncio.Task[AnalysisOutcome]
) -> ProgressEvent:
    """Swap a pipeline ``complete`` for ``error`` when saving the outcome failed."""
    if event.type != StreamEventType.COMPLETE or task.cancelled() or task.exception() is None:
        return event
    exc = task.exception()
    return ProgressEvent(
        type=StreamEventType.ERROR,
        analysis_id=event.analysis_id,
        message=str(exc),
        progress=event.progress,
        data={"error_type": type(exc).__name__},
    )


def _log_stream_task_result(task: asyncio.Task[AnalysisOutcome]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        _logger.info("stream_analysis_ended", error_type=type(exc).__name__, error=str(exc)[:200])


@router.get(
    "/analyses/{analysis_id}",
    response_model=AnalysisResponse,
    responses=_ERROR_RESPONSES,
    summary="Fetch a saved analysis",
)
async def get_analysis(
    analysis_id: str, service: AnalysisServiceDep, threshold: ThresholdDep
) -> AnalysisResponse:
    outcome = await service.get(analysis_id)
    return _analysis_response(service, outcome, threshold)


@router.get(
    "/analyses/{analysis_id}/confidence",
    response_model=ConfidenceHistoryResponse,
    responses=_ERROR_RESPONSES,
    summary="Per-stage confidence entries of a saved analysis",
)
async def get_confidence_history(
    analysis_id: str, service: AnalysisServiceDep
) -> ConfidenceHistoryResponse:
    history = await service.confidence_history(analysis_id)
    return ConfidenceHistoryResponse(analysis_id=analysis_id, history=history)


# ---------------------------------------------------------------------------
# Interactive sessions
# ---------------------------------------------------------------------------


@router.post(
    "/sessions",
    response_model=SessionResponse,
    status_code=201,
    responses=_ERROR_RESPONSES,
    summary="Start an interactive evidence-gathering session",
)
async def start_session(body: StartSessionRequest, manager: SessionManagerDep) -> SessionResponse:
    session = await manager.start(body.analysis_id, deep_review=body.deep_review)
    return _session_response(session)


@router.get(
    "/sessions/quick-questions/{domain}",
    response_model=QuickQuestionsResponse,
    responses=_ERROR_RESPONSES,
    summary="Canned follow-up prompts for a domain",
)
async def quick_questions(domain: str, manager: SessionManagerDep) -> QuickQuestionsResponse:
    return QuickQuestionsResponse(domain=domain, questions=manager.quick_questions(domain))


@router.get(
    "/sessions/{session_id}",
    response_model=SessionResponse,
    responses=_ERROR_RESPONSES,
    summary="Session snapshot",
)
async def get_session(session_id: str, manager: SessionManagerDep) -> SessionResponse:
    return _session_response(manager.get(session_id))


@router.post(
    "/sessions/{session_id}/responses",
    response_model=SessionResponse,
    responses=_ERROR_RESPONSES,
    summary="Answer one information need",
)
async def submit_response(
    session_id: str, body: SubmitResponseRequest, manager: SessionManagerDep
) -> SessionResponse:
    session = await manager.respond(session_id, body.need_id, body.type, body.content)
    return _session_response(session)


@router.post(
    "/sessions/{session_id}/reanalyze",
    response_model=ReanalyzeResponse,
    responses=_ERROR_RESPONSES,
    summary="Re-run the analysis with every collected response",
)
async def reanalyze_session(
    session_id: str,
    manager: SessionManagerDep,
    body: ReanalyzeRequest | None = None,
) -> ReanalyzeResponse:
    conclude = body.conclude if body is not None else True
    previous = manager.get(session_id).current_outcome.overall_confidence
    outcome, session = await manager.reanalyze(session_id, conclude=conclude)
    return ReanalyzeResponse(
        outcome=outcome,
        session=session,
        confidence_delta=round(outcome.overall_confidence - previous, 4),
    )


@router.post(
    "/sessions/{session_id}/abandon",
    response_model=SessionResponse,
    responses=_ERROR_RESPONSES,
    summary="Abandon the session",
)
async def abandon_session(session_id: str, manager: SessionManagerDep) -> SessionResponse:
    return _session_response(await manager.abandon(session_id))


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def _report_response(report: EvaluationReport) -> EvaluationReportResponse:
    return EvaluationReportResponse(report=report, text=format_report(report))


@router.post(
    "/evaluations/smoke",
    response_model=EvaluationReportResponse,
    summary="Run the five-item smoke evaluation",
)
async def run_smoke_evaluation(harness: HarnessDep) -> EvaluationReportResponse:
    return _report_response(await harness.run_smoke())


@router.post(
    "/evaluations/full",
    response_model=EvaluationReportResponse,
    summary="Run the full ground-truth evaluation",
)
async def run_full_evaluation(harness: HarnessDep) -> EvaluationReportResponse:
    return _report_response(await harness.run_full())


@router.post(
    "/evaluations/items/{item_id}",
    response_model=ScoreResult,
    responses=_ERROR_RESPONSES,
    summary="Score one ground-truth item",
)
async def run_item_evaluation(item_id: str, harness: HarnessDep) -> ScoreResult:
    return await harness.run_by_id(item_id)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health_check(request: Request) -> HealthResponse:
    """Return application health, version, and provider availability."""
    providers: dict[str, Any] = {}
    if hasattr(request.app.state, "provider_registry"):
        providers = dict(request.app.state.provider_registry)

    status = "healthy" if providers.get("vision", False) else "unhealthy"
    return HealthResponse(
        status=status,
        version=getattr(request.app.state, "version", "0.1.0"),
        providers=providers,
    )
