"""Central orchestrator for the four-stage item analysis pipeline.

Runs triage, evidence, identification and synthesis against the injected
vision client, broadcasts progress through the :class:`ProgressTracker`,
records each stage's confidence in the :class:`ConfidenceTracker`, and
assembles the final :class:`AnalysisOutcome`.

ARCHITECTURE NOTE (for junior developers):
    This orchestrator follows the "Pipeline" pattern: it calls the vision
    model four times in a fixed sequence, feeding each stage everything the
    earlier stages produced.

    Each stage follows the same pattern:
        1. Check the cancel event; never start a stage after cancellation
        2. Emit ``stage:start`` with the stage's start-of-band progress
        3. Call the model through the RetryPolicy (backoff + timeout)
        4. Repair and validate the JSON into the stage's payload model
        5. Append a StageResult, record confidence, emit ``stage:complete``

    Failure policy:
        - triage exhausting its retries is fatal (ExternalServiceError);
          without a domain there is nothing sensible to ask the later stages
        - any later stage degrades: status ``unknown``, typed defaults,
          and a confidence penalty on the final outcome

    Consensus (off unless the ConsensusPolicy is enabled):
        - an uncertain or high-stakes first outcome triggers up to
          ``max_runs - 1`` further passes over the same request
        - the passes are reconciled into one outcome (src/pipeline/consensus.py)

    Every run ends with exactly one terminal event: ``complete`` carrying
    the outcome, or ``error`` carrying the message.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any
from uuid import uuid4

import structlog
from pydantic import BaseModel

from src.config.domain_policy import STAGE_MESSAGES, STAGE_ORDER, STAGE_PROGRESS, confidence_ceiling
from src.interfaces.vision_client import IVisionInferenceClient
from src.models.analysis import (
    AnalysisOutcome,
    AnalysisRequest,
    EraRange,
    StageName,
    StageResult,
    StageStatus,
    StreamEventType,
    ValueRange,
)
from src.models.stages import (
    EvidencePayload,
    IdentificationPayload,
    SynthesisPayload,
    TriagePayload,
)
from src.pipeline.confidence_tracker import ConfidenceTracker
from src.pipeline.consensus import ConsensusPolicy, reconcile
from src.pipeline.progress_tracker import ProgressTracker
from src.pipeline.retry import RETRYABLE_ERRORS, RetryPolicy
from src.pipeline.stages import (
    build_prior_context,
    build_stage_prompt,
    default_payload,
    parse_stage_payload,
    stage_confidence,
    stage_images,
)
from src.utils.confidence import apply_penalties
from src.utils.errors import AnalysisCancelledError, ExternalServiceError
from src.utils.logging import get_logger

if TYPE_CHECKING:
    from src.services.insight_service import InsightService

ProgressListener = Callable[..., Any]

_DEFAULT_DEGRADED_STAGE_PENALTY = 0.8
_DEFAULT_DEFAULTED_FIELD_PENALTY = 0.97


class AnalysisPipeline:
    """Central orchestrator for the four-stage analysis pipeline.

    Stages:
        1. Triage: age category, domain expert, visible text.
        2. Evidence: marks, materials, construction, condition.
        3. Identification: best candidate plus alternatives.
        4. Synthesis: valuation, deal rating, authentication checklist.

    All collaborators are injected at construction time; the insight
    service is optional and only contributes prompt enhancements.
    """

    def __init__(
        self,
        vision_client: IVisionInferenceClient,
        retry_policy: RetryPolicy,
        confidence_tracker: ConfidenceTracker,
        progress_tracker: ProgressTracker | None = None,
        insight_service: InsightService | None = None,
        domain_ceilings: dict[str, float] | None = None,
        degraded_stage_penalty: float = _DEFAULT_DEGRADED_STAGE_PENALTY,
        defaulted_field_penalty: float = _DEFAULT_DEFAULTED_FIELD_PENALTY,
        max_tokens: int = 4000,
        consensus_policy: ConsensusPolicy | None = None,
    ) -> None:
        self._client = vision_client
        self._retry = retry_policy
        self._confidence = confidence_tracker
        self._progress = progress_tracker or ProgressTracker()
        self._insights = insight_service
        self._domain_ceilings = dict(domain_ceilings or {})
        self._degraded_penalty = degraded_stage_penalty
        self._defaulted_penalty = defaulted_field_penalty
        self._max_tokens = max_tokens
        self._consensus = consensus_policy or ConsensusPolicy()
        self._logger: structlog.BoundLogger = get_logger(__name__)

    @property
    def confidence_tracker(self) -> ConfidenceTracker:
        return self._confidence

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(
        self,
        request: AnalysisRequest,
        on_event: ProgressListener | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
        prior: AnalysisOutcome | None = None,
    ) -> AnalysisOutcome:
        """Run all four stages and return the assembled outcome.

        Parameters
        ----------
        request:
            The images plus optional asking price, context and evidence.
        on_event:
            Sync or async callable receiving every :class:`ProgressEvent`.
        cancel_event:
            When set, no further stage starts and the run raises
            :class:`AnalysisCancelledError`.
        prior:
            Outcome this run supersedes (interactive re-analysis).

        Raises
        ------
        ExternalServiceError
            If triage fails after every retry.
        AnalysisCancelledError
            If ``cancel_event`` was set before the run finished.
        """
        analysis_id = str(uuid4())
        if on_event is not None:
            self._progress.register_listener(analysis_id, on_event)

        started = time.monotonic()
        self._logger.info(
            "analysis_start",
            analysis_id=analysis_id,
            images=len(request.images),
            evidence=len(request.additional_evidence),
            supersedes=prior.analysis_id if prior else None,
        )

        outcome: AnalysisOutcome | None = None
        try:
            first = await self._run_stages(analysis_id, request, cancel_event, prior)
            outcome = await self._run_consensus(analysis_id, request, first, cancel_event, prior)
        except Exception as exc:
            await self._progress.emit(
                analysis_id,
                StreamEventType.ERROR,
                self._progress.get_status(analysis_id)["progress"],
                str(exc),
                data={"error_type": type(exc).__name__},
            )
            self._logger.warning(
                "analysis_failed",
                analysis_id=analysis_id,
                error_type=type(exc).__name__,
                error=str(exc)[:300],
            )
            raise
        else:
            await self._progress.emit(
                analysis_id,
                StreamEventType.COMPLETE,
                100.0,
                "Analysis complete",
                data=outcome.model_dump(mode="json"),
            )
            self._logger.info(
                "analysis_complete",
                analysis_id=analysis_id,
                name=outcome.name,
                domain=outcome.domain.value,
                confidence=round(outcome.overall_confidence, 4),
                degraded=[s.value for s in outcome.degraded_stages],
                duration_s=round(time.monotonic() - started, 2),
            )
            return outcome
        finally:
            self._progress.forget(analysis_id)
            if outcome is None:
                # Failed, cancelled or timed out: nobody will read this ledger.
                self._confidence.forget(analysis_id)

    # ------------------------------------------------------------------
    # Stage execution
    # ------------------------------------------------------------------

    async def _run_stages(
        self,
        analysis_id: str,
        request: AnalysisRequest,
        cancel_event: asyncio.Event | None,
        prior: AnalysisOutcome | None,
    ) -> AnalysisOutcome:
        payloads: dict[StageName, BaseModel] = {}
        results: list[StageResult] = []
        enhancements: list[str] = []

        for stage in STAGE_ORDER:
            self._check_cancelled(analysis_id, cancel_event, stage)

            triage = payloads.get(StageName.TRIAGE)
            if stage == StageName.SYNTHESIS and self._insights is not None and triage is not None:
                enhancements = await self._insights.prompt_enhancements(triage.domain)

            prompt = build_stage_prompt(
                stage,
                request,
                triage=triage,
                enhancements=enhancements,
                max_tokens=self._max_tokens,
            )
            context = build_prior_context(request, payloads, prior)

            result, payload = await self._execute_stage(
                analysis_id, stage, request, prompt, context
            )
            payloads[stage] = payload
            results.append(result)

        # An in-flight synthesis call is allowed to finish, but a cancelled
        # run never produces an outcome.
        self._check_cancelled(analysis_id, cancel_event, None)

        return self._assemble_outcome(analysis_id, request, payloads, results, prior)

    async def _run_consensus(
        self,
        analysis_id: str,
        request: AnalysisRequest,
        first: AnalysisOutcome,
        cancel_event: asyncio.Event | None,
        prior: AnalysisOutcome | None,
    ) -> AnalysisOutcome:
        """Run the stages again when the policy asks for it and reconcile the runs.

        Extra runs happen one after another under their own run ids, so their
        stage events and ledger entries never mix with the primary run's.  A
        run whose triage fails is skipped; cancellation still propagates.
        """
        decision = self._consensus.evaluate(first)
        if not decision.should_rerun:
            return first

        self._logger.info(
            "consensus_triggered",
            analysis_id=analysis_id,
            runs=decision.runs,
            reasons=decision.reasons,
        )
        outcomes = [first]
        for run in range(2, decision.runs + 1):
            self._check_cancelled(analysis_id, cancel_event, None)
            await self._progress.emit(
                analysis_id,
                StreamEventType.STAGE_START,
                STAGE_PROGRESS[StageName.SYNTHESIS][1],
                f"Consensus run {run}/{decision.runs}...",
                data={"consensus_run": run, "runs": decision.runs},
            )
            run_id = f"{analysis_id}:run-{run}"
            try:
                outcomes.append(await self._run_stages(run_id, request, cancel_event, prior))
            except ExternalServiceError as exc:
                self._logger.warning(
                    "consensus_run_failed",
                    analysis_id=analysis_id,
                    run=run,
                    error=str(exc)[:300],
                )
            finally:
                self._progress.forget(run_id)
                self._confidence.forget(run_id)

        merged = reconcile(outcomes, decision.reasons)
        assert merged.consensus is not None
        self._logger.info(
            "consensus_complete",
            analysis_id=analysis_id,
            runs=merged.consensus.runs,
            strategy=merged.consensus.strategy,
            name_agreement=merged.consensus.name_agreement,
            value_agreement=merged.consensus.value_agreement,
        )
        return merged

    async def _execute_stage(
        self,
        analysis_id: str,
        stage: StageName,
        request: AnalysisRequest,
        prompt: Any,
        context: dict[str, Any],
    ) -> tuple[StageResult, BaseModel]:
        start_msg, complete_msg = STAGE_MESSAGES[stage]
        start_pct, end_pct = STAGE_PROGRESS[stage]
        images = stage_images(request)

        await self._progress.emit(
            analysis_id, StreamEventType.STAGE_START, start_pct, start_msg, stage=stage
        )
        self._logger.info("stage_start", analysis_id=analysis_id, stage=stage.value)
        started = time.monotonic()

        status = StageStatus.COMPLETE
        error: str | None = None
        try:
            raw, attempts = await self._retry.run(
                lambda: self._client.infer(prompt, images, context),
                label=f"{stage.value} stage",
            )
            payload, defaulted = parse_stage_payload(stage, raw, request)
        except RETRYABLE_ERRORS as exc:
            if stage == StageName.TRIAGE:
                raise ExternalServiceError(
                    message=f"Triage failed after {self._retry.max_attempts} attempts: {exc}",
                    provider_name=self._client.get_provider_name(),
                ) from exc
            status = StageStatus.UNKNOWN
            error = str(exc)
            attempts = self._retry.max_attempts
            payload, defaulted = default_payload(stage), []
            self._logger.warning(
                "stage_degraded",
                analysis_id=analysis_id,
                stage=stage.value,
                attempts=attempts,
                error=error[:200],
            )

        confidence = stage_confidence(stage, payload)
        result = StageResult(
            stage=stage,
            status=status,
            payload=payload.model_dump(mode="json"),
            confidence=confidence,
            attempts=attempts,
            defaulted_fields=defaulted,
            error=error,
            duration_seconds=round(time.monotonic() - started, 3),
        )

        self._confidence.record(analysis_id, confidence, f"stage:{stage.value}")

        await self._progress.emit(
            analysis_id,
            StreamEventType.STAGE_COMPLETE,
            end_pct,
            complete_msg if status == StageStatus.COMPLETE else f"{stage.value} stage unavailable",
            stage=stage,
            data={
                "status": status.value,
                "confidence": round(confidence, 4),
                "attempts": attempts,
                "defaulted_fields": defaulted,
            },
        )
        self._logger.info(
            "stage_complete",
            analysis_id=analysis_id,
            stage=stage.value,
            status=status.value,
            confidence=round(confidence, 4),
            attempts=attempts,
            defaulted=len(defaulted),
        )
        return result, payload

    def _check_cancelled(
        self,
        analysis_id: str,
        cancel_event: asyncio.Event | None,
        next_stage: StageName | None,
    ) -> None:
        if cancel_event is not None and cancel_event.is_set():
            self._logger.info(
                "analysis_cancelled",
                analysis_id=analysis_id,
                next_stage=next_stage.value if next_stage else None,
            )
            raise AnalysisCancelledError(message=f"Analysis {analysis_id} was cancelled")

    # ------------------------------------------------------------------
    # Outcome assembly
    # ------------------------------------------------------------------

    def _assemble_outcome(
        self,
        analysis_id: str,
        request: AnalysisRequest,
        payloads: dict[StageName, BaseModel],
        results: list[StageResult],
        prior: AnalysisOutcome | None,
    ) -> AnalysisOutcome:
        """Build the outcome from synthesis, or from identification if synthesis degraded."""
        triage: TriagePayload = payloads[StageName.TRIAGE]  # type: ignore[assignment]
        evidence: EvidencePayload = payloads[StageName.EVIDENCE]  # type: ignore[assignment]
        ident: IdentificationPayload = payloads[StageName.IDENTIFICATION]  # type: ignore[assignment]
        synth: SynthesisPayload = payloads[StageName.SYNTHESIS]  # type: ignore[assignment]

        degraded = [r.stage for r in results if r.status == StageStatus.UNKNOWN]
        defaulted_count = sum(len(r.defaulted_fields) for r in results)
        synthesis_ok = StageName.SYNTHESIS not in degraded

        if synthesis_ok:
            source: SynthesisPayload | IdentificationPayload = synth
            base_confidence = synth.identification_confidence
        else:
            source = ident
            base_confidence = ident.confidence

        ceiling = confidence_ceiling(triage.domain, self._domain_ceilings)
        penalties = [self._degraded_penalty] * len(degraded)
        penalties += [self._defaulted_penalty] * defaulted_count
        overall = apply_penalties(min(ceiling, base_confidence), penalties)

        name = source.name
        if name == IdentificationPayload().name and triage.item_type != TriagePayload().item_type:
            name = triage.item_type

        description = synth.description if synthesis_ok else evidence.condition_notes
        evidence_for = list(synth.evidence_for) if synthesis_ok else list(evidence.marks)

        outcome = AnalysisOutcome(
            analysis_id=analysis_id,
            request=request,
            name=name,
            maker=source.maker or (triage.visible_branding if not synthesis_ok else None),
            era_label=source.era_label or triage.estimated_era,
            era_range=_era_range(source.period_start, source.period_end),
            value_range=(
                _value_range(synth.estimated_value_min, synth.estimated_value_max)
                if synthesis_ok
                else None
            ),
            domain=triage.domain,
            category=triage.category,
            style=source.style,
            origin_region=source.origin_region,
            description=description,
            evidence_for=evidence_for,
            evidence_against=list(synth.evidence_against) if synthesis_ok else [],
            alternatives=list(ident.alternatives),
            authenticity_risk=synth.authenticity_risk,
            expert_referral_recommended=synth.expert_referral_recommended,
            deal_rating=synth.deal_rating if request.asking_price is not None else None,
            deal_explanation=synth.deal_explanation if request.asking_price is not None else None,
            verification_tips=list(synth.verification_tips),
            red_flags=list(synth.red_flags),
            component_confidences={
                "identification": round(base_confidence, 4),
                "dating": round(synth.dating_confidence, 4),
                "authentication": round(synth.authentication_confidence, 4),
                "valuation": round(synth.valuation_confidence, 4),
            },
            overall_confidence=overall,
            stage_results=results,
            degraded_stages=degraded,
            supersedes=prior.analysis_id if prior else None,
        )

        self._logger.debug(
            "outcome_assembled",
            analysis_id=analysis_id,
            ceiling=ceiling,
            base_confidence=round(base_confidence, 4),
            penalties=len(penalties),
            overall=round(overall, 4),
        )
        return outcome


def _era_range(start: int | None, end: int | None) -> EraRange | None:
    if start is None and end is None:
        return None
    start = start if start is not None else end
    end = end if end is not None else start
    assert start is not None and end is not None
    if end < start:
        start, end = end, start
    return EraRange(start=start, end=end)


def _value_range(low: int | None, high: int | None) -> ValueRange | None:
    if low is None and high is None:
        return None
    low = low if low is not None else high
    high = high if high is not None else low
    assert low is not None and high is not None
    return ValueRange(min=min(low, high), max=max(low, high))
