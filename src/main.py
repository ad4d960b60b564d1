"""VintageVision FastAPI application entry point.

Wires together the vision client, pipeline, stores and services via
dependency injection.  Loads configuration from ``.env`` and
``config/config.yaml`` and configures structured logging.

Also exposes ``build_components`` for CLI or scripting usage outside the
web server (the evaluation CLI uses it to assemble a harness).
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import httpx
import structlog
import uvicorn
from fastapi import FastAPI

from src.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from src.api.routes import router as api_router
from src.config.loader import load_config
from src.config.settings import Settings
from src.interfaces.analysis_store import IAnalysisStore
from src.interfaces.session_store import ISessionStore
from src.interfaces.vision_client import IVisionInferenceClient
from src.pipeline.confidence_tracker import ConfidenceTracker, DiminishingReturnsPolicy
from src.pipeline.consensus import ConsensusPolicy
from src.pipeline.orchestrator import AnalysisPipeline
from src.pipeline.progress_tracker import ProgressTracker
from src.pipeline.retry import RetryPolicy
from src.providers.llm.anthropic_provider import AnthropicVisionClient
from src.providers.llm.openai_provider import OpenAIVisionClient
from src.providers.store.memory_stores import (
    MemoryAnalysisStore,
    MemoryInsightStore,
    MemorySessionStore,
)
from src.providers.store.sqlite_analysis_store import SQLiteAnalysisStore
from src.providers.store.sqlite_session_store import SQLiteSessionStore
from src.services.analysis_service import AnalysisService
from src.services.escalation import EscalationPolicy
from src.services.evaluation_harness import EvaluationHarness
from src.services.evaluation_report import PASS_THRESHOLD
from src.services.insight_service import InsightService
from src.services.interactive_session import InteractiveSessionManager
from src.utils.concurrency import RateLimitGate
from src.utils.errors import ConfigurationError
from src.utils.logging import configure_logging, get_logger

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

APP_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Module-level settings & logging
# ---------------------------------------------------------------------------

settings = Settings()
config = load_config(settings=settings)

configure_logging(
    log_level=settings.log_level,
    json_output=(settings.app_env == "production"),
)
_logger: structlog.BoundLogger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Vision client selection
# ---------------------------------------------------------------------------


def _build_vision_client(
    app_settings: Settings, http_client: httpx.AsyncClient | None = None
) -> IVisionInferenceClient:
    """Select the first vision client with a configured API key.

    Priority order: Anthropic -> OpenAI.  There is no local fallback; with
    neither key set the application cannot analyze anything.
    """
    if app_settings.anthropic_api_key:
        return AnthropicVisionClient(settings=app_settings, http_client=http_client)
    if app_settings.openai_api_key:
        return OpenAIVisionClient(settings=app_settings, http_client=http_client)
    raise ConfigurationError(
        message="No vision provider configured: set ANTHROPIC_API_KEY or OPENAI_API_KEY"
    )


def _build_analysis_store(app_settings: Settings) -> IAnalysisStore:
    if app_settings.analysis_db_path:
        return SQLiteAnalysisStore(db_path=app_settings.analysis_db_path)
    return MemoryAnalysisStore()


def _build_session_store(app_settings: Settings) -> ISessionStore:
    if app_settings.session_db_path:
        return SQLiteSessionStore(db_path=app_settings.session_db_path)
    return MemorySessionStore()


# ---------------------------------------------------------------------------
# Full DI assembly
# ---------------------------------------------------------------------------


def build_components(
    app_settings: Settings | None = None,
    app_config: dict[str, Any] | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
    vision_client: IVisionInferenceClient | None = None,
) -> dict[str, Any]:
    """Construct every service with its dependencies injected.

    Parameters
    ----------
    app_settings:
        Application settings.  Uses module-level ``settings`` if omitted.
    app_config:
        Resolved YAML + environment config.  Uses module-level ``config``
        if omitted.
    http_client:
        Shared connection pool for the SDK clients.  A new one is created
        when omitted; the caller owns closing it (returned under
        ``"http_client"``).
    vision_client:
        Pre-built client, bypassing key-based selection.

    Returns
    -------
    dict
        Service instances keyed by the ``app.state`` attribute they are
        stored under.
    """
    s = app_settings or settings
    cfg = app_config if app_config is not None else config

    # -- Shared infrastructure --
    http_client = http_client or httpx.AsyncClient(
        timeout=httpx.Timeout(s.stage_timeout_seconds, connect=5.0)
    )
    vision = vision_client or _build_vision_client(s, http_client)

    pipeline_cfg = cfg.get("pipeline", {})
    evaluation_cfg = cfg.get("evaluation", {})

    # -- Pipeline --
    confidence_tracker = ConfidenceTracker()
    progress_tracker = ProgressTracker()
    insight_service = InsightService(store=MemoryInsightStore())
    pipeline = AnalysisPipeline(
        vision_client=vision,
        retry_policy=RetryPolicy.from_settings(s),
        confidence_tracker=confidence_tracker,
        progress_tracker=progress_tracker,
        insight_service=insight_service,
        domain_ceilings=pipeline_cfg.get("domain_ceilings") or {},
        degraded_stage_penalty=pipeline_cfg.get("degraded_stage_penalty", 0.8),
        defaulted_field_penalty=pipeline_cfg.get("defaulted_field_penalty", 0.97),
        max_tokens=s.inference_max_tokens,
        consensus_policy=ConsensusPolicy.from_settings(s),
    )

    # -- Persistence --
    analysis_store = _build_analysis_store(s)
    session_store = _build_session_store(s)

    # -- Services --
    escalation_policy = EscalationPolicy.from_config(cfg)
    analysis_service = AnalysisService(
        pipeline=pipeline,
        store=analysis_store,
        escalation_policy=escalation_policy,
    )
    session_manager = InteractiveSessionManager(
        analysis_service=analysis_service,
        session_store=session_store,
        confidence_tracker=confidence_tracker,
        interactive_threshold=s.interactive_threshold,
        returns_policy=DiminishingReturnsPolicy.from_settings(s),
        escalation_policy=escalation_policy,
    )
    evaluation_harness = EvaluationHarness(
        pipeline=pipeline,
        concurrency=int(evaluation_cfg.get("concurrency", s.evaluation_concurrency)),
        rate_gate=RateLimitGate(
            requests_per_minute=float(
                evaluation_cfg.get("requests_per_minute", s.evaluation_requests_per_minute)
            )
        ),
        item_timeout=float(
            evaluation_cfg.get("item_timeout", s.evaluation_item_timeout_seconds)
        ),
        insight_service=insight_service,
        pass_threshold=float(evaluation_cfg.get("pass_threshold", PASS_THRESHOLD)),
    )

    provider_registry: dict[str, Any] = {
        "vision": vision.is_available(),
        "vision_provider": vision.get_provider_name(),
        "analysis_store": analysis_store.get_provider_name(),
        "session_store": type(session_store).__name__,
    }

    return {
        "http_client": http_client,
        "vision_client": vision,
        "pipeline": pipeline,
        "confidence_tracker": confidence_tracker,
        "progress_tracker": progress_tracker,
        "insight_service": insight_service,
        "analysis_store": analysis_store,
        "session_store": session_store,
        "analysis_service": analysis_service,
        "session_manager": session_manager,
        "evaluation_harness": evaluation_harness,
        "provider_registry": provider_registry,
        "interactive_threshold": s.interactive_threshold,
        "version": APP_VERSION,
    }


async def initialize_stores(components: dict[str, Any]) -> None:
    """Create backing tables for whichever stores need it."""
    analysis_store = components["analysis_store"]
    if isinstance(analysis_store, SQLiteAnalysisStore):
        await analysis_store.initialize()
    session_store = components["session_store"]
    if isinstance(session_store, SQLiteSessionStore):
        session_store.initialize()


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def _lifespan(application: FastAPI):  # noqa: ANN201
    """Initialise all providers and services on startup, clean up on shutdown."""
    components = build_components(settings, config)

    for key, value in components.items():
        setattr(application.state, key, value)

    await initialize_stores(components)

    _logger.info(
        "app_startup",
        version=APP_VERSION,
        environment=settings.app_env,
        vision_provider=components["provider_registry"]["vision_provider"],
        analysis_store=components["provider_registry"]["analysis_store"],
    )

    yield

    # -- Shutdown: close shared httpx client --
    http_client: httpx.AsyncClient = components["http_client"]
    await http_client.aclose()
    _logger.info("app_shutdown", message="HTTP client closed")


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Build and configure the FastAPI application."""
    application = FastAPI(
        title="VintageVision API",
        version=APP_VERSION,
        description=(
            "Identify vintage and antique items from photos: a four-stage "
            "vision pipeline with calibrated confidence, interactive "
            "evidence gathering and a ground-truth evaluation harness."
        ),
        lifespan=_lifespan,
    )

    # -- Middleware (order matters: last added = first executed) --
    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestLoggingMiddleware)
    configure_cors(application)

    # -- API routes --
    application.include_router(api_router)

    return application


app = create_app()

# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    uvicorn.run(
        "src.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=(settings.app_env == "development"),
    )
