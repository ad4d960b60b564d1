"""Boundary between callers (API, sessions) and the analysis pipeline.

Runs the :class:`AnalysisPipeline` and persists every completed outcome to
the injected :class:`IAnalysisStore`.  A run that raises -- triage
exhausted, cancelled by a departed stream client -- persists nothing.
"""

from __future__ import annotations

import asyncio

import structlog

from src.interfaces.analysis_store import IAnalysisStore
from src.models.analysis import AnalysisOutcome, AnalysisRequest
from src.models.session import ConfidenceRecord, EscalationRecommendation
from src.pipeline.orchestrator import AnalysisPipeline, ProgressListener
from src.services.escalation import EscalationPolicy, evaluate_outcome
from src.utils.logging import get_logger


class AnalysisService:
    def __init__(
        self,
        pipeline: AnalysisPipeline,
        store: IAnalysisStore,
        escalation_policy: EscalationPolicy | None = None,
    ) -> None:
        self._pipeline = pipeline
        self._store = store
        self._escalation = escalation_policy or EscalationPolicy()
        self._logger: structlog.BoundLogger = get_logger(__name__)

    @property
    def pipeline(self) -> AnalysisPipeline:
        return self._pipeline

    async def analyze(
        self,
        request: AnalysisRequest,
        on_event: ProgressListener | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
        prior: AnalysisOutcome | None = None,
    ) -> AnalysisOutcome:
        """Run the pipeline and save the outcome.

        Exceptions from the pipeline propagate unchanged; the store is only
        written once a complete outcome exists.  The per-run confidence
        ledger is dropped afterwards since the stored stage results carry
        the same values.
        """
        outcome = await self._pipeline.run(
            request, on_event, cancel_event=cancel_event, prior=prior
        )
        try:
            await self._store.save(outcome)
        finally:
            self._pipeline.confidence_tracker.forget(outcome.analysis_id)
        self._logger.info(
            "analysis_saved",
            analysis_id=outcome.analysis_id,
            supersedes=outcome.supersedes,
            store=self._store.get_provider_name(),
        )
        return outcome

    async def get(self, analysis_id: str) -> AnalysisOutcome:
        """Load a saved outcome (NotFoundError if unknown)."""
        return await self._store.get(analysis_id)

    async def confidence_history(self, analysis_id: str) -> list[ConfidenceRecord]:
        """Per-stage confidence entries for a saved analysis, rebuilt from its stage results."""
        outcome = await self._store.get(analysis_id)
        return [
            ConfidenceRecord(
                overall_confidence=result.confidence,
                reason=f"stage:{result.stage.value}",
                timestamp=outcome.created_at,
            )
            for result in outcome.stage_results
        ]

    def escalation_for(self, outcome: AnalysisOutcome) -> EscalationRecommendation:
        return evaluate_outcome(outcome, self._escalation)
