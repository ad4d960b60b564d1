"""Unit tests for the AnalysisPipeline orchestrator and AnalysisService."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.interfaces.analysis_store import IAnalysisStore
from src.models.analysis import (
    AnalysisRequest,
    DealRating,
    DomainExpert,
    ProgressEvent,
    StageName,
    StageStatus,
    StreamEventType,
)
from src.pipeline.retry import RetryPolicy
from src.services.analysis_service import AnalysisService
from src.services.insight_service import InsightService
from src.utils.errors import (
    AnalysisCancelledError,
    ExternalServiceError,
    InferenceError,
    ParseError,
)
from tests.conftest import IMAGE_URL, FakeVisionClient, make_outcome, stage_script


def _request(**kwargs) -> AnalysisRequest:
    return AnalysisRequest(images=[IMAGE_URL], **kwargs)


# ======================================================================
# Happy path
# ======================================================================


class TestSuccessfulRun:
    @pytest.mark.asyncio
    async def test_runs_stages_in_order(self, make_pipeline) -> None:
        client = FakeVisionClient()
        outcome = await make_pipeline(client).run(_request())

        assert client.stages_called() == [
            StageName.TRIAGE,
            StageName.EVIDENCE,
            StageName.IDENTIFICATION,
            StageName.SYNTHESIS,
        ]
        assert [r.stage for r in outcome.stage_results] == client.stages_called()
        assert all(r.status == StageStatus.COMPLETE for r in outcome.stage_results)

    @pytest.mark.asyncio
    async def test_outcome_fields(self, make_pipeline) -> None:
        outcome = await make_pipeline(FakeVisionClient()).run(_request())

        assert outcome.name == "Georgian Sterling Silver Teapot"
        assert outcome.maker == "Hester Bateman"
        assert outcome.domain == DomainExpert.SILVER
        assert (outcome.era_range.start, outcome.era_range.end) == (1780, 1790)
        assert (outcome.value_range.min, outcome.value_range.max) == (2000, 4000)
        assert outcome.overall_confidence == pytest.approx(0.72)
        assert outcome.component_confidences["identification"] == pytest.approx(0.72)
        assert outcome.degraded_stages == []
        assert outcome.deal_rating is None
        assert outcome.supersedes is None

    @pytest.mark.asyncio
    async def test_progress_is_monotonic_with_one_terminal_event(self, make_pipeline) -> None:
        events: list[ProgressEvent] = []
        await make_pipeline(FakeVisionClient()).run(_request(), events.append)

        progress = [e.progress for e in events]
        assert progress == sorted(progress)
        assert progress[0] == 5.0
        assert progress[-1] == 100.0
        terminal = [e for e in events if e.is_terminal]
        assert len(terminal) == 1
        assert terminal[0] is events[-1]
        assert terminal[0].type == StreamEventType.COMPLETE
        assert terminal[0].data["name"] == "Georgian Sterling Silver Teapot"
        assert [e.type for e in events].count(StreamEventType.STAGE_START) == 4

    @pytest.mark.asyncio
    async def test_stage_confidences_recorded(self, make_pipeline, confidence_tracker) -> None:
        outcome = await make_pipeline(FakeVisionClient()).run(_request())

        history = confidence_tracker.history(outcome.analysis_id)
        assert [e.reason for e in history] == [
            "stage:triage",
            "stage:evidence",
            "stage:identification",
            "stage:synthesis",
        ]
        assert [e.overall_confidence for e in history] == [0.8, 0.6, 0.72, 0.72]

    @pytest.mark.asyncio
    async def test_context_accumulates_across_stages(self, make_pipeline) -> None:
        client = FakeVisionClient()
        await make_pipeline(client).run(_request(user_context="Bought in Bath"))

        contexts = [ctx for _, _, ctx in client.calls]
        assert "triage" not in contexts[0]
        assert set(contexts[3]) >= {"triage", "evidence", "identification", "user_context"}


# ======================================================================
# Confidence shaping
# ======================================================================


class TestConfidenceShaping:
    @pytest.mark.asyncio
    async def test_domain_ceiling_caps_confidence(self, make_pipeline) -> None:
        client = FakeVisionClient(stage_script(domain="general", confidence=0.99))
        outcome = await make_pipeline(client).run(_request())
        assert outcome.overall_confidence == pytest.approx(0.85)

    @pytest.mark.asyncio
    async def test_configured_ceiling_override(self, make_pipeline) -> None:
        client = FakeVisionClient(stage_script(confidence=0.95))
        outcome = await make_pipeline(client, domain_ceilings={"silver": 0.8}).run(_request())
        assert outcome.overall_confidence == pytest.approx(0.8)

    @pytest.mark.asyncio
    async def test_defaulted_field_penalty(self, make_pipeline) -> None:
        script = stage_script()
        script[StageName.TRIAGE] = {**script[StageName.TRIAGE], "quality_tier": "legendary"}
        outcome = await make_pipeline(FakeVisionClient(script)).run(_request())

        triage = outcome.stage(StageName.TRIAGE)
        assert triage.defaulted_fields == ["quality_tier"]
        assert outcome.overall_confidence == pytest.approx(0.72 * 0.97)

    @pytest.mark.asyncio
    async def test_deal_rating_only_with_asking_price(self, make_pipeline) -> None:
        script = stage_script()
        script[StageName.SYNTHESIS] = {**script[StageName.SYNTHESIS], "deal_rating": "fair"}
        outcome = await make_pipeline(FakeVisionClient(script)).run(_request(asking_price=3000))
        assert outcome.deal_rating == DealRating.FAIR

    @pytest.mark.asyncio
    async def test_unnamed_item_falls_back_to_triage_type(self, make_pipeline) -> None:
        script = stage_script()
        script[StageName.IDENTIFICATION] = {"confidence": 0.3}
        script[StageName.SYNTHESIS] = {"identification_confidence": 0.3}
        outcome = await make_pipeline(FakeVisionClient(script)).run(_request())
        assert outcome.name == "teapot"


# ======================================================================
# Failures
# ======================================================================


class TestFailures:
    @pytest.mark.asyncio
    async def test_triage_exhaustion_is_fatal(self, make_pipeline) -> None:
        client = FakeVisionClient({StageName.TRIAGE: InferenceError("service unavailable")})
        events: list[ProgressEvent] = []

        with pytest.raises(ExternalServiceError, match="Triage failed after 3 attempts"):
            await make_pipeline(client).run(_request(), events.append)

        assert client.stages_called() == [StageName.TRIAGE] * 3
        assert [e.type for e in events if e.is_terminal] == [StreamEventType.ERROR]
        assert events[-1].type == StreamEventType.ERROR

    @pytest.mark.asyncio
    async def test_later_stage_degrades(self, make_pipeline) -> None:
        script = stage_script()
        script[StageName.EVIDENCE] = ParseError("garbled")
        outcome = await make_pipeline(FakeVisionClient(script)).run(_request())

        evidence = outcome.stage(StageName.EVIDENCE)
        assert evidence.status == StageStatus.UNKNOWN
        assert evidence.attempts == 3
        assert evidence.error == "garbled"
        assert outcome.degraded_stages == [StageName.EVIDENCE]
        assert outcome.overall_confidence == pytest.approx(0.72 * 0.8)

    @pytest.mark.asyncio
    async def test_degraded_synthesis_falls_back_to_identification(self, make_pipeline) -> None:
        script = stage_script(confidence=0.7)
        script[StageName.SYNTHESIS] = InferenceError("timeout")
        outcome = await make_pipeline(FakeVisionClient(script)).run(_request())

        assert outcome.name == "Georgian Sterling Silver Teapot"
        assert outcome.value_range is None
        assert outcome.description == "Light wear."
        assert outcome.overall_confidence == pytest.approx(0.7 * 0.8)

    @pytest.mark.asyncio
    async def test_retry_then_success(self, make_pipeline) -> None:
        script = stage_script()
        script[StageName.TRIAGE] = [InferenceError("blip"), script[StageName.TRIAGE]]
        outcome = await make_pipeline(FakeVisionClient(script)).run(_request())
        assert outcome.stage(StageName.TRIAGE).attempts == 2

    @pytest.mark.asyncio
    async def test_single_attempt_policy(self, make_pipeline) -> None:
        client = FakeVisionClient({StageName.TRIAGE: InferenceError("down")})
        pipeline = make_pipeline(client, retry_policy=RetryPolicy(max_attempts=1, timeout=None))
        with pytest.raises(ExternalServiceError, match="after 1 attempts"):
            await pipeline.run(_request())


# ======================================================================
# Cancellation and prior outcomes
# ======================================================================


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_before_start(self, make_pipeline) -> None:
        client = FakeVisionClient()
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(AnalysisCancelledError):
            await make_pipeline(client).run(_request(), cancel_event=cancel)
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_cancel_between_stages(self, make_pipeline, confidence_tracker) -> None:
        cancel = asyncio.Event()
        script = stage_script()
        evidence = script[StageName.EVIDENCE]

        def evidence_then_cancel(image_refs, prior_context):
            cancel.set()
            return evidence

        script[StageName.EVIDENCE] = evidence_then_cancel
        client = FakeVisionClient(script)

        with pytest.raises(AnalysisCancelledError):
            await make_pipeline(client).run(_request(), cancel_event=cancel)
        assert client.stages_called() == [StageName.TRIAGE, StageName.EVIDENCE]
        assert len(confidence_tracker) == 0


class TestPriorOutcome:
    @pytest.mark.asyncio
    async def test_rerun_supersedes_prior(self, make_pipeline) -> None:
        prior = make_outcome()
        client = FakeVisionClient()
        outcome = await make_pipeline(client).run(_request(), prior=prior)

        assert outcome.supersedes == prior.analysis_id
        _, _, triage_context = client.calls[0]
        assert triage_context["previous_identification"]["name"] == prior.name

    @pytest.mark.asyncio
    async def test_learned_insights_reach_synthesis_prompt(self, make_pipeline) -> None:
        insights = MagicMock(spec=InsightService)
        insights.prompt_enhancements = AsyncMock(return_value=["Check for electroplate marks"])
        client = FakeVisionClient()

        await make_pipeline(client, insight_service=insights).run(_request())

        insights.prompt_enhancements.assert_awaited_once_with(DomainExpert.SILVER)
        assert "Check for electroplate marks" in client.prompts[StageName.SYNTHESIS].system_prompt
        assert "Check for electroplate marks" not in client.prompts[StageName.TRIAGE].system_prompt


# ======================================================================
# AnalysisService
# ======================================================================


class TestAnalysisService:
    @pytest.mark.asyncio
    async def test_saves_completed_outcome(self, make_pipeline, analysis_store) -> None:
        service = AnalysisService(pipeline=make_pipeline(FakeVisionClient()), store=analysis_store)
        outcome = await service.analyze(_request())

        assert await service.get(outcome.analysis_id) == outcome
        history = await service.confidence_history(outcome.analysis_id)
        assert len(history) == 4

    @pytest.mark.asyncio
    async def test_failed_run_persists_nothing(self, make_pipeline) -> None:
        store = MagicMock(spec=IAnalysisStore)
        store.save = AsyncMock()
        client = FakeVisionClient({StageName.TRIAGE: InferenceError("down")})
        service = AnalysisService(pipeline=make_pipeline(client), store=store)

        with pytest.raises(ExternalServiceError):
            await service.analyze(_request())
        store.save.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_history_rebuilt_from_stage_results(
        self, make_pipeline, analysis_store, confidence_tracker
    ) -> None:
        service = AnalysisService(pipeline=make_pipeline(FakeVisionClient()), store=analysis_store)
        outcome = await service.analyze(_request())
        assert confidence_tracker.history(outcome.analysis_id) == []

        history = await service.confidence_history(outcome.analysis_id)
        assert [e.reason for e in history][0] == "stage:triage"
        assert history[-1].overall_confidence == pytest.approx(0.72)

    @pytest.mark.asyncio
    async def test_ledger_does_not_grow_across_runs(
        self, make_pipeline, analysis_store, confidence_tracker
    ) -> None:
        ok = AnalysisService(pipeline=make_pipeline(FakeVisionClient()), store=analysis_store)
        failing_client = FakeVisionClient({StageName.TRIAGE: InferenceError("down")})
        failing = AnalysisService(pipeline=make_pipeline(failing_client), store=analysis_store)

        for _ in range(5):
            await ok.analyze(_request())
            with pytest.raises(ExternalServiceError):
                await failing.analyze(_request())

        assert len(confidence_tracker) == 0

    @pytest.mark.asyncio
    async def test_ledger_dropped_when_save_fails(self, make_pipeline, confidence_tracker) -> None:
        store = MagicMock(spec=IAnalysisStore)
        store.save = AsyncMock(side_effect=RuntimeError("disk full"))
        service = AnalysisService(pipeline=make_pipeline(FakeVisionClient()), store=store)

        with pytest.raises(RuntimeError, match="disk full"):
            await service.analyze(_request())
        assert len(confidence_tracker) == 0
