"""Unit tests for the interactive session manager (the "Vera" assistant)."""

from __future__ import annotations

import asyncio

import pytest

from src.models.analysis import AnalysisRequest, ResponseType, StageName
from src.models.session import ConversationRole, NeedPriority, SessionStatus
from src.pipeline.confidence_tracker import ConfidenceTracker, DiminishingReturnsPolicy
from src.services.interactive_session import (
    InteractiveSessionManager,
    acknowledgment,
    confidence_greeting,
)
from src.utils.errors import (
    ExternalServiceError,
    InferenceError,
    NotFoundError,
    SessionStateError,
    ValidationError,
)
from tests.conftest import (
    IMAGE_URL,
    MARKS_PHOTO,
    FakeVisionClient,
    evidence_aware_script,
    stage_script,
)


async def _open_session(manager, service, *, deep_review: bool = False):
    outcome = await service.analyze(AnalysisRequest(images=[IMAGE_URL]))
    session = await manager.start(outcome.analysis_id, deep_review=deep_review)
    return outcome, session


# ======================================================================
# start()
# ======================================================================


class TestStart:
    @pytest.mark.asyncio
    async def test_silver_teapot_opens_with_hallmark_request(self, make_session_manager) -> None:
        manager, service = make_session_manager(FakeVisionClient())
        outcome, session = await _open_session(manager, service)

        assert outcome.overall_confidence == pytest.approx(0.72)
        assert session.session_id.startswith("vera-")
        assert session.status == SessionStatus.GATHERING_INFO
        assert session.rounds == 0
        assert session.needs[0].id == "marks-photo"
        assert session.needs[0].priority == NeedPriority.CRITICAL

        opening = session.transcript[0]
        assert opening.role == ConversationRole.ASSISTANT
        assert "Vera" in opening.content
        assert "moderate (72%)" in opening.content
        assert opening.related_need_id == "marks-photo"

        assert [r.overall_confidence for r in session.confidence_history] == [0.72]
        assert session.escalation is not None and session.escalation.should_offer
        assert manager.get(session.session_id) == session

    @pytest.mark.asyncio
    async def test_confident_analysis_needs_deep_review(self, make_session_manager) -> None:
        manager, service = make_session_manager(FakeVisionClient(stage_script(confidence=0.95)))
        outcome = await service.analyze(AnalysisRequest(images=[IMAGE_URL]))

        with pytest.raises(ValidationError, match="deep review"):
            await manager.start(outcome.analysis_id)

        session = await manager.start(outcome.analysis_id, deep_review=True)
        assert session.status == SessionStatus.GATHERING_INFO

    @pytest.mark.asyncio
    async def test_unknown_analysis(self, make_session_manager) -> None:
        manager, _ = make_session_manager(FakeVisionClient())
        with pytest.raises(NotFoundError):
            await manager.start("no-such-analysis")

    def test_unknown_session(self, make_session_manager) -> None:
        manager, _ = make_session_manager(FakeVisionClient())
        with pytest.raises(NotFoundError):
            manager.get("vera-000000000000")


# ======================================================================
# respond()
# ======================================================================


class TestRespond:
    @pytest.mark.asyncio
    async def test_photo_answer_resolves_need(self, make_session_manager) -> None:
        manager, service = make_session_manager(FakeVisionClient())
        _, session = await _open_session(manager, service)

        updated = await manager.respond(session.session_id, "marks-photo", "photo", MARKS_PHOTO)

        assert updated.find_need("marks-photo").resolved
        assert len(updated.pending_responses) == 1
        assert updated.responses[0].round == 1
        assert updated.responses[0].response_type == ResponseType.PHOTO
        user_turn, reply = updated.transcript[-2:]
        assert user_turn.content == "(photo provided)"
        assert reply.content.startswith("Thank you for that photo!")
        assert reply.related_need_id == updated.open_needs[0].id
        assert updated.status == SessionStatus.GATHERING_INFO

    @pytest.mark.asyncio
    async def test_acknowledgments_rotate(self, make_session_manager) -> None:
        manager, service = make_session_manager(FakeVisionClient())
        _, session = await _open_session(manager, service)
        sid = session.session_id

        await manager.respond(sid, "marks-photo", ResponseType.PHOTO, MARKS_PHOTO)
        updated = await manager.respond(sid, "underside-photo", ResponseType.PHOTO, MARKS_PHOTO)

        assert updated.transcript[-1].content.startswith(acknowledgment(ResponseType.PHOTO, 1))
        assert acknowledgment(ResponseType.PHOTO, 1) != acknowledgment(ResponseType.PHOTO, 0)

    @pytest.mark.asyncio
    async def test_invalid_answers_rejected(self, make_session_manager) -> None:
        manager, service = make_session_manager(FakeVisionClient())
        _, session = await _open_session(manager, service)
        sid = session.session_id

        with pytest.raises(NotFoundError):
            await manager.respond(sid, "no-such-need", "text", "hello")
        with pytest.raises(ValidationError, match="photo"):
            await manager.respond(sid, "marks-photo", "text", "It says 925")
        with pytest.raises(ValidationError, match="URL"):
            await manager.respond(sid, "marks-photo", "photo", "ftp://example.com/x.jpg")
        with pytest.raises(ValidationError, match="text"):
            await manager.respond(sid, "provenance-question", "photo", MARKS_PHOTO)
        with pytest.raises(ValidationError, match="empty"):
            await manager.respond(sid, "provenance-question", "text", "   ")
        with pytest.raises(ValidationError, match="response type"):
            await manager.respond(sid, "provenance-question", "video", "clip")

        assert manager.get(sid).responses == []

    @pytest.mark.asyncio
    async def test_need_answered_twice(self, make_session_manager) -> None:
        manager, service = make_session_manager(FakeVisionClient())
        _, session = await _open_session(manager, service)
        sid = session.session_id

        await manager.respond(sid, "provenance-question", "text", "From an estate sale.")
        with pytest.raises(ValidationError, match="already"):
            await manager.respond(sid, "provenance-question", "text", "Actually a flea market.")

    @pytest.mark.asyncio
    async def test_concurrent_answers_are_serialised(self, make_session_manager) -> None:
        manager, service = make_session_manager(FakeVisionClient())
        _, session = await _open_session(manager, service)
        sid = session.session_id

        await asyncio.gather(
            manager.respond(sid, "marks-photo", "photo", MARKS_PHOTO),
            manager.respond(sid, "provenance-question", "text", "Inherited."),
        )

        stored = manager.get(sid)
        assert sorted(r.need_id for r in stored.responses) == [
            "marks-photo",
            "provenance-question",
        ]


# ======================================================================
# reanalyze()
# ======================================================================


class TestReanalyze:
    @pytest.mark.asyncio
    async def test_hallmark_photo_raises_confidence_and_completes(
        self, make_session_manager, confidence_tracker
    ) -> None:
        client = FakeVisionClient(evidence_aware_script(0.72, 0.86))
        manager, service = make_session_manager(client)
        first, session = await _open_session(manager, service)
        sid = session.session_id

        await manager.respond(sid, "marks-photo", "photo", MARKS_PHOTO)
        outcome, final = await manager.reanalyze(sid)

        assert outcome.overall_confidence >= first.overall_confidence
        assert outcome.overall_confidence == pytest.approx(0.86)
        assert outcome.supersedes == first.analysis_id
        assert final.status == SessionStatus.COMPLETE
        assert final.rounds == 1
        assert final.current_outcome == outcome
        assert "improved from 72% to 86%" in final.transcript[-1].content

        stage, images, context = client.calls[-1]
        assert stage == StageName.SYNTHESIS
        assert images == [IMAGE_URL, MARKS_PHOTO]
        assert context["user_evidence"][0]["need"] == "photo_marks"

        assert confidence_tracker.round_values(sid) == {0: 0.72, 1: 0.86}
        assert [r.round for r in final.confidence_history] == [0, 1]
        assert await service.get(outcome.analysis_id) == outcome

    @pytest.mark.asyncio
    async def test_non_concluding_round_asks_again(self, make_session_manager) -> None:
        manager, service = make_session_manager(
            FakeVisionClient(evidence_aware_script(0.72, 0.76))
        )
        _, session = await _open_session(manager, service)
        sid = session.session_id

        await manager.respond(sid, "marks-photo", "photo", MARKS_PHOTO)
        _, updated = await manager.reanalyze(sid, conclude=False)

        assert updated.status == SessionStatus.GATHERING_INFO
        assert updated.rounds == 1
        assert updated.needs[0].id == "marks-photo" and updated.needs[0].resolved
        assert [n.id for n in updated.open_needs][0] == "underside-photo"
        assert "One more thing" in updated.transcript[-1].content
        assert updated.pending_responses == []

        with pytest.raises(ValidationError, match="new response"):
            await manager.reanalyze(sid)

    @pytest.mark.asyncio
    async def test_ledger_never_decreases_over_rounds_until_plateau(
        self, make_session_manager, confidence_tracker
    ) -> None:
        def evidence_driven(stage: StageName):
            def respond(image_refs, prior_context):
                answers = len(prior_context.get("user_evidence", []))
                return stage_script(confidence=round(0.60 + 0.03 * answers, 2))[stage]

            return respond

        client = FakeVisionClient({stage: evidence_driven(stage) for stage in StageName})
        policy = DiminishingReturnsPolicy(window_rounds=3, min_cumulative_gain=0.05, max_rounds=4)
        manager, service = make_session_manager(client, returns_policy=policy)
        _, session = await _open_session(manager, service)
        sid = session.session_id

        statuses = []
        for round_no in range(1, 5):
            need = session.open_needs[0]
            if need.type.wants_photo:
                photo = f"https://images.example.com/items/detail-{round_no}.jpg"
                await manager.respond(sid, need.id, "photo", photo)
            else:
                await manager.respond(sid, need.id, "text", "Bought at an estate sale in 1998.")
            _, session = await manager.reanalyze(sid, conclude=False)
            statuses.append(session.status)

        assert statuses[:3] == [SessionStatus.GATHERING_INFO] * 3
        assert statuses[-1] == SessionStatus.COMPLETE
        assert session.rounds == 4
        assert confidence_tracker.is_non_decreasing(sid)
        assert list(confidence_tracker.round_values(sid).values()) == pytest.approx(
            [0.60, 0.63, 0.66, 0.69, 0.72]
        )
        assert not any(r.regression for r in session.confidence_history)
        assert len(manager._locks) == 0

    @pytest.mark.asyncio
    async def test_lower_confidence_is_flagged(
        self, make_session_manager, confidence_tracker
    ) -> None:
        manager, service = make_session_manager(FakeVisionClient(evidence_aware_script(0.72, 0.6)))
        _, session = await _open_session(manager, service)
        sid = session.session_id

        await manager.respond(sid, "marks-photo", "photo", MARKS_PHOTO)
        outcome, final = await manager.reanalyze(sid)

        assert outcome.overall_confidence == pytest.approx(0.6)
        assert final.confidence_history[-1].regression
        assert confidence_tracker.has_regression(sid)
        assert "Confidence dropped after re-analysis" in final.escalation.reasons
        assert "raised some questions" in final.transcript[-1].content

    @pytest.mark.asyncio
    async def test_failed_rerun_returns_to_gathering(self, make_session_manager) -> None:
        script = stage_script()
        script[StageName.TRIAGE] = [script[StageName.TRIAGE], InferenceError("service down")]
        manager, service = make_session_manager(FakeVisionClient(script))
        _, session = await _open_session(manager, service)
        sid = session.session_id
        await manager.respond(sid, "marks-photo", "photo", MARKS_PHOTO)

        with pytest.raises(ExternalServiceError):
            await manager.reanalyze(sid)

        stored = manager.get(sid)
        assert stored.status == SessionStatus.GATHERING_INFO
        assert stored.rounds == 0
        assert len(stored.pending_responses) == 1
        assert "wasn't able" in stored.transcript[-1].content

    @pytest.mark.asyncio
    async def test_reanalyze_without_responses(self, make_session_manager) -> None:
        manager, service = make_session_manager(FakeVisionClient())
        _, session = await _open_session(manager, service)
        with pytest.raises(ValidationError):
            await manager.reanalyze(session.session_id)

    @pytest.mark.asyncio
    async def test_ledger_restored_after_restart(
        self, make_session_manager, session_store
    ) -> None:
        manager, service = make_session_manager(
            FakeVisionClient(evidence_aware_script(0.72, 0.86))
        )
        _, session = await _open_session(manager, service)
        sid = session.session_id
        await manager.respond(sid, "marks-photo", "photo", MARKS_PHOTO)

        fresh_tracker = ConfidenceTracker()
        restarted = InteractiveSessionManager(
            analysis_service=service,
            session_store=session_store,
            confidence_tracker=fresh_tracker,
        )
        await restarted.reanalyze(sid)

        assert fresh_tracker.round_values(sid) == {0: 0.72, 1: 0.86}


# ======================================================================
# State machine
# ======================================================================


class TestStateMachine:
    @pytest.mark.asyncio
    async def test_complete_session_rejects_further_work(self, make_session_manager) -> None:
        manager, service = make_session_manager(FakeVisionClient())
        _, session = await _open_session(manager, service)
        sid = session.session_id
        await manager.respond(sid, "marks-photo", "photo", MARKS_PHOTO)
        _, final = await manager.reanalyze(sid)

        with pytest.raises(SessionStateError):
            await manager.respond(sid, "provenance-question", "text", "Inherited.")
        with pytest.raises(SessionStateError):
            await manager.reanalyze(sid)
        with pytest.raises(SessionStateError):
            await manager.abandon(sid)
        assert manager.get(sid) == final

    @pytest.mark.asyncio
    async def test_abandon_is_idempotent(self, make_session_manager) -> None:
        manager, service = make_session_manager(FakeVisionClient())
        _, session = await _open_session(manager, service)
        sid = session.session_id

        abandoned = await manager.abandon(sid)
        again = await manager.abandon(sid)

        assert abandoned.status == SessionStatus.ABANDONED
        assert again == abandoned
        with pytest.raises(SessionStateError):
            await manager.respond(sid, "marks-photo", "photo", MARKS_PHOTO)


# ======================================================================
# Wording helpers
# ======================================================================


class TestWording:
    def test_quick_questions(self) -> None:
        questions = InteractiveSessionManager.quick_questions("silver")
        assert "What hallmarks can you identify?" in questions
        assert InteractiveSessionManager.quick_questions("vehicles")

    def test_quick_questions_unknown_domain(self) -> None:
        with pytest.raises(ValidationError):
            InteractiveSessionManager.quick_questions("spaceships")

    @pytest.mark.parametrize(
        ("confidence", "phrase"),
        [(0.95, "high confidence"), (0.8, "good confidence"), (0.65, "moderate"), (0.3, "lower")],
    )
    def test_greeting_tracks_confidence(self, confidence: float, phrase: str) -> None:
        assert phrase in confidence_greeting(confidence)
