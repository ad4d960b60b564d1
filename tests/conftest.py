"""Shared pytest fixtures for the VintageVision test suite."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest
import structlog

from src.interfaces.vision_client import IVisionInferenceClient, StagePrompt
from src.models.analysis import (
    AnalysisOutcome,
    AnalysisRequest,
    AuthenticityRisk,
    DomainExpert,
    EraRange,
    StageName,
    ValueRange,
)
from src.pipeline.confidence_tracker import ConfidenceTracker, DiminishingReturnsPolicy
from src.pipeline.orchestrator import AnalysisPipeline
from src.pipeline.progress_tracker import ProgressTracker
from src.pipeline.retry import RetryPolicy
from src.providers.store.memory_stores import MemoryAnalysisStore, MemorySessionStore
from src.services.analysis_service import AnalysisService
from src.services.interactive_session import InteractiveSessionManager
from src.utils.logging import configure_logging

IMAGE_URL = "https://images.example.com/items/teapot-front.jpg"
MARKS_PHOTO = "https://images.example.com/items/teapot-hallmarks.jpg"


# ---------------------------------------------------------------------------
# Scripted vision client
# ---------------------------------------------------------------------------

StageScript = dict[str, Any] | Exception | list[Any] | Callable[..., Any]


class FakeVisionClient(IVisionInferenceClient):
    """Vision client that replays a per-stage script.

    Each stage maps to one of:
      - a dict, returned on every call
      - an Exception, raised on every call
      - a list, consumed one entry per call (the last entry repeats)
      - a callable ``(image_refs, prior_context) -> dict | Exception``
    """

    def __init__(self, script: dict[StageName, StageScript] | None = None) -> None:
        self.script: dict[StageName, StageScript] = dict(script or stage_script())
        self.calls: list[tuple[StageName, list[str], dict[str, Any]]] = []
        self.prompts: dict[StageName, StagePrompt] = {}

    async def infer(
        self,
        stage_prompt: StagePrompt,
        image_refs: list[str],
        prior_context: dict[str, Any],
    ) -> dict[str, Any]:
        stage = stage_prompt.stage
        self.calls.append((stage, list(image_refs), dict(prior_context)))
        self.prompts[stage] = stage_prompt
        entry = self.script.get(stage, {})
        if isinstance(entry, list):
            entry = entry.pop(0) if len(entry) > 1 else entry[0]
        if callable(entry) and not isinstance(entry, Exception):
            entry = entry(image_refs, prior_context)
        if isinstance(entry, Exception):
            raise entry
        return dict(entry)

    def get_provider_name(self) -> str:
        return "fake-vision"

    def is_available(self) -> bool:
        return True

    def stages_called(self) -> list[StageName]:
        return [stage for stage, _, _ in self.calls]


def stage_script(
    *,
    name: str = "Georgian Sterling Silver Teapot",
    maker: str | None = "Hester Bateman",
    domain: str = "silver",
    confidence: float = 0.72,
    period: tuple[int, int] | None = (1780, 1790),
    value: tuple[int, int] | None = (2000, 4000),
    risk: str = "medium",
    description: str = "Oval teapot with bright-cut engraving.",
    referral: bool = False,
) -> dict[StageName, dict[str, Any]]:
    """A coherent, fully valid response for each of the four stages."""
    start, end = period if period else (None, None)
    low, high = value if value else (None, None)
    return {
        StageName.TRIAGE: {
            "category": "antique",
            "domain": domain,
            "item_type": "teapot",
            "estimated_era": "late 18th century",
            "quality_tier": "high",
            "confidence": 0.8,
            "reasoning": "Form and engraving suggest Georgian silver.",
            "visible_text": [],
        },
        StageName.EVIDENCE: {
            "marks": ["partial lion passant"],
            "materials": ["silver"],
            "construction": ["seamed body"],
            "features": ["bright-cut engraving"],
            "condition_notes": "Light wear.",
            "damage_noted": False,
            "confidence": 0.6,
        },
        StageName.IDENTIFICATION: {
            "name": name,
            "maker": maker,
            "era_label": "Georgian",
            "period_start": start,
            "period_end": end,
            "style": "Neoclassical",
            "origin_region": "England",
            "alternatives": [{"name": "Sheffield plate teapot", "confidence": 0.2}],
            "maker_confidence": 0.5,
            "confidence": confidence,
        },
        StageName.SYNTHESIS: {
            "name": name,
            "maker": maker,
            "era_label": "Georgian",
            "period_start": start,
            "period_end": end,
            "style": "Neoclassical",
            "origin_region": "England",
            "description": description,
            "estimated_value_min": low,
            "estimated_value_max": high,
            "evidence_for": ["Form", "Engraving"],
            "evidence_against": ["Marks partly rubbed"],
            "authenticity_risk": risk,
            "expert_referral_recommended": referral,
            "verification_tips": ["Check the full hallmark set"],
            "red_flags": [],
            "dating_confidence": 0.7,
            "authentication_confidence": 0.6,
            "valuation_confidence": 0.6,
            "identification_confidence": confidence,
        },
    }


def evidence_aware_script(
    before: float, after: float, **kwargs: Any
) -> dict[StageName, StageScript]:
    """Script whose confidence rises once user evidence is in the context."""
    low = stage_script(confidence=before, **kwargs)
    high = stage_script(confidence=after, **kwargs)

    def pick(stage: StageName) -> Callable[..., dict[str, Any]]:
        def respond(image_refs: list[str], prior_context: dict[str, Any]) -> dict[str, Any]:
            return high[stage] if "user_evidence" in prior_context else low[stage]

        return respond

    return {stage: pick(stage) for stage in low}


async def _no_sleep(_delay: float) -> None:
    return None


def make_outcome(
    *,
    confidence: float = 0.72,
    domain: DomainExpert = DomainExpert.SILVER,
    value: tuple[int, int] | None = (2000, 4000),
    era: tuple[int, int] | None = (1780, 1790),
    risk: AuthenticityRisk = AuthenticityRisk.MEDIUM,
    description: str = "",
    referral: bool = False,
    name: str = "Georgian Sterling Silver Teapot",
    maker: str | None = "Hester Bateman",
) -> AnalysisOutcome:
    """Build an outcome directly, bypassing the pipeline."""
    return AnalysisOutcome(
        request=AnalysisRequest(images=[IMAGE_URL]),
        name=name,
        maker=maker,
        era_range=EraRange(start=era[0], end=era[1]) if era else None,
        value_range=ValueRange(min=value[0], max=value[1]) if value else None,
        domain=domain,
        authenticity_risk=risk,
        description=description,
        expert_referral_recommended=referral,
        overall_confidence=confidence,
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _debug_logging() -> None:
    """Log at DEBUG with uncached loggers so each test writes to its own streams."""
    configure_logging(log_level="DEBUG")
    structlog.configure(cache_logger_on_first_use=False)


@pytest.fixture
def fake_client() -> FakeVisionClient:
    return FakeVisionClient()


@pytest.fixture
def retry_policy() -> RetryPolicy:
    """Three attempts, no real backoff, no timeout."""
    return RetryPolicy(max_attempts=3, base_delay=0.0, timeout=None, sleep=_no_sleep)


@pytest.fixture
def confidence_tracker() -> ConfidenceTracker:
    return ConfidenceTracker()


@pytest.fixture
def progress_tracker() -> ProgressTracker:
    return ProgressTracker()


@pytest.fixture
def make_pipeline(
    retry_policy: RetryPolicy,
    confidence_tracker: ConfidenceTracker,
    progress_tracker: ProgressTracker,
) -> Callable[..., AnalysisPipeline]:
    """Factory: ``make_pipeline(client, **kwargs)`` sharing the test trackers."""

    def _make(client: IVisionInferenceClient, **kwargs: Any) -> AnalysisPipeline:
        return AnalysisPipeline(
            vision_client=client,
            retry_policy=kwargs.pop("retry_policy", retry_policy),
            confidence_tracker=confidence_tracker,
            progress_tracker=progress_tracker,
            **kwargs,
        )

    return _make


@pytest.fixture
def analysis_store() -> MemoryAnalysisStore:
    return MemoryAnalysisStore()


@pytest.fixture
def session_store() -> MemorySessionStore:
    return MemorySessionStore()


@pytest.fixture
def make_session_manager(
    make_pipeline: Callable[..., AnalysisPipeline],
    analysis_store: MemoryAnalysisStore,
    session_store: MemorySessionStore,
    confidence_tracker: ConfidenceTracker,
) -> Callable[..., tuple[InteractiveSessionManager, AnalysisService]]:
    """Factory: ``make_session_manager(client, **manager_kwargs)``."""

    def _make(
        client: IVisionInferenceClient, **kwargs: Any
    ) -> tuple[InteractiveSessionManager, AnalysisService]:
        service = AnalysisService(pipeline=make_pipeline(client), store=analysis_store)
        kwargs.setdefault("returns_policy", DiminishingReturnsPolicy())
        manager = InteractiveSessionManager(
            analysis_service=service,
            session_store=session_store,
            confidence_tracker=confidence_tracker,
            **kwargs,
        )
        return manager, service

    return _make
