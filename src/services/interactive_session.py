"""Interactive evidence-gathering sessions ("Vera", the assistant persona).

# ─── STATE MACHINE (Junior Developer Guide) ────────────────────────────
#
#   gathering_info ──► processing ──► complete
#         ▲                │
#         └────────────────┘   failed re-run, or a non-concluding round
#   gathering_info | processing ──► abandoned
#
# Every transition goes through ``_transition``, which checks the edge
# against ``_ALLOWED_TRANSITIONS``, stamps ``updated_at``, logs
# ``session_transition`` and persists the new snapshot.  A rejected edge
# raises SessionStateError before anything is written, so the stored
# session is exactly what it was.
#
# All mutations of one session run under that session's asyncio.Lock
# (KeyedLocks), so a response and a re-analysis for the same session can
# never interleave.  Different sessions proceed independently.
#
# Confidence: the session id has its own ledger in the ConfidenceTracker.
# Round 0 is the initial analysis; round n is the n-th re-analysis.  The
# ledger is mirrored into ``session.confidence_history`` so it survives a
# restart and is re-seeded into the tracker on first use.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog

from src.config.domain_policy import quick_questions_for
from src.interfaces.session_store import ISessionStore
from src.models.analysis import (
    AnalysisOutcome,
    CollectedResponse,
    DomainExpert,
    ResponseType,
    is_valid_image_ref,
)
from src.models.session import (
    ConversationRole,
    ConversationTurn,
    EscalationRecommendation,
    InformationNeed,
    InteractiveSession,
    SessionStatus,
)
from src.pipeline.confidence_tracker import ConfidenceTracker, DiminishingReturnsPolicy
from src.services.analysis_service import AnalysisService
from src.services.escalation import EscalationPolicy, evaluate_session
from src.services.information_needs import derive_needs
from src.utils.concurrency import KeyedLocks
from src.utils.errors import NotFoundError, SessionStateError, ValidationError
from src.utils.logging import get_logger

ASSISTANT_NAME = "Vera"

_ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.GATHERING_INFO: frozenset({SessionStatus.PROCESSING, SessionStatus.ABANDONED}),
    SessionStatus.PROCESSING: frozenset(
        {SessionStatus.COMPLETE, SessionStatus.GATHERING_INFO, SessionStatus.ABANDONED}
    ),
    SessionStatus.COMPLETE: frozenset(),
    SessionStatus.ABANDONED: frozenset(),
}


# ---------------------------------------------------------------------------
# Assistant wording
# ---------------------------------------------------------------------------

PERSONA_GREETING = (
    f"Hello! I'm {ASSISTANT_NAME}, your VintageVision authentication assistant. I'm here to "
    "help you uncover the truth about your antique or vintage item. Let's work together to "
    "achieve the highest possible confidence in our analysis."
)

_ACKNOWLEDGMENTS: dict[ResponseType, tuple[str, ...]] = {
    ResponseType.PHOTO: (
        "Thank you for that photo!",
        "Great photo - this is very helpful.",
        "Excellent! This gives me more to work with.",
        "Perfect, I can see more details now.",
    ),
    ResponseType.TEXT: (
        "Thank you for that information.",
        "This context is very helpful.",
        "I appreciate you sharing that detail.",
        "Good to know - this helps with the analysis.",
    ),
}


def confidence_greeting(confidence: float) -> str:
    pct = f"{confidence * 100:.0f}%"
    if confidence >= 0.9:
        return (
            f"I've completed a preliminary analysis of your item with high confidence ({pct}). "
            "The identification appears strong, but let me see if we can confirm a few details."
        )
    if confidence >= 0.75:
        return (
            f"I've completed a preliminary analysis with good confidence ({pct}). I believe I've "
            "identified your item correctly, but some additional information could help us be "
            "more certain."
        )
    if confidence >= 0.6:
        return (
            f"I've completed a preliminary analysis, though my confidence is moderate ({pct}). "
            "With your help providing some additional details, we can significantly improve "
            "the accuracy of this assessment."
        )
    return (
        f"I've completed a preliminary analysis, but my confidence is lower than I'd like "
        f"({pct}). This item may be unusual or require additional information for proper "
        "identification. Let's work together to uncover its true nature."
    )


def acknowledgment(response_type: ResponseType, index: int) -> str:
    """Rotating acknowledgment; *index* keeps consecutive replies varied."""
    options = _ACKNOWLEDGMENTS[response_type]
    return options[index % len(options)]


def _ask(need: InformationNeed) -> str:
    text = f"**{need.question}**"
    if need.reason:
        text += f"\n\n_{need.reason}_"
    if need.photo_guidance:
        text += f"\n\n**Photo tip:** {need.photo_guidance}"
    return text


def _opening_message(outcome: AnalysisOutcome, needs: list[InformationNeed]) -> str:
    message = f"{PERSONA_GREETING}\n\n{confidence_greeting(outcome.overall_confidence)}\n\n"
    if needs:
        message += "To help improve our analysis, I have a question for you:\n\n" + _ask(needs[0])
    else:
        message += (
            "Your item has been analyzed with high confidence. Would you like any additional "
            "details or have questions about the assessment?"
        )
    return message


def _reanalysis_message(previous: float, current: float, regression: bool) -> str:
    before, after = f"{previous * 100:.0f}%", f"{current * 100:.0f}%"
    if regression:
        return (
            f"I've re-analyzed your item with the new evidence. My confidence moved from "
            f"{before} to {after}; the new details raised some questions, so an expert review "
            "may be worthwhile."
        )
    if current > previous:
        return (
            f"I've re-analyzed your item with the new evidence. My confidence improved from "
            f"{before} to {after}."
        )
    return (
        f"I've re-analyzed your item with the new evidence. My confidence is unchanged at {after}."
    )


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)  # noqa: UP017


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class InteractiveSessionManager:
    """Owns every InteractiveSession through the injected session store.

    Parameters
    ----------
    analysis_service:
        Loads saved outcomes and runs (and persists) re-analyses.
    session_store:
        Persistence for session snapshots; written after every transition.
    confidence_tracker:
        Shared ledger; sessions are keyed by their session id.
    interactive_threshold:
        Sessions may only start below this confidence unless deep review
        is requested.
    returns_policy:
        Diminishing-returns cutoff for multi-round sessions.
    escalation_policy:
        Thresholds for the human-review advice attached to sessions.
    """

    def __init__(
        self,
        analysis_service: AnalysisService,
        session_store: ISessionStore,
        confidence_tracker: ConfidenceTracker,
        *,
        interactive_threshold: float = 0.85,
        returns_policy: DiminishingReturnsPolicy | None = None,
        escalation_policy: EscalationPolicy | None = None,
    ) -> None:
        self._analysis = analysis_service
        self._store = session_store
        self._confidence = confidence_tracker
        self._threshold = interactive_threshold
        self._returns = returns_policy or DiminishingReturnsPolicy()
        self._escalation = escalation_policy or EscalationPolicy()
        self._locks = KeyedLocks()
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, session_id: str) -> InteractiveSession:
        session = self._store.get(session_id)
        if session is None:
            raise NotFoundError(message=f"Session '{session_id}' not found")
        return session

    @staticmethod
    def quick_questions(domain: DomainExpert | str) -> list[str]:
        try:
            expert = DomainExpert(domain)
        except ValueError as exc:
            raise ValidationError(message=f"Unknown domain '{domain}'") from exc
        return quick_questions_for(expert)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, analysis_id: str, *, deep_review: bool = False) -> InteractiveSession:
        """Open a session for a saved analysis.

        Raises
        ------
        NotFoundError
            If the analysis does not exist.
        ValidationError
            If the analysis is already confident enough and ``deep_review``
            was not requested.
        """
        outcome = await self._analysis.get(analysis_id)
        if outcome.overall_confidence >= self._threshold and not deep_review:
            raise ValidationError(
                message=(
                    f"Analysis confidence {outcome.overall_confidence:.2f} is at or above the "
                    f"interactive threshold {self._threshold:.2f}; request deep review instead"
                )
            )

        needs = derive_needs(outcome)
        session = InteractiveSession(analysis_id=analysis_id, current_outcome=outcome, needs=needs)
        record = self._confidence.record(
            session.session_id,
            outcome.overall_confidence,
            "initial_analysis",
            round=0,
            component_scores=outcome.component_confidences,
        )
        opening = ConversationTurn(
            role=ConversationRole.ASSISTANT,
            content=_opening_message(outcome, needs),
            related_need_id=needs[0].id if needs else None,
        )
        session = session.model_copy(
            update={"transcript": [opening], "confidence_history": [record]}
        )
        session = session.model_copy(update={"escalation": self._advise(session)})

        self._store.save(session)
        self._logger.info(
            "session_started",
            session_id=session.session_id,
            analysis_id=analysis_id,
            confidence=round(outcome.overall_confidence, 4),
            needs=[n.id for n in needs],
            deep_review=deep_review,
        )
        return session

    async def respond(
        self,
        session_id: str,
        need_id: str,
        response_type: ResponseType | str,
        content: str,
    ) -> InteractiveSession:
        """Record the user's answer to one information need (no re-analysis)."""
        async with self._locks.hold(session_id):
            session = self.get(session_id)
            self._require_status(session, SessionStatus.GATHERING_INFO, "respond")

            need = session.find_need(need_id)
            if need is None:
                raise NotFoundError(message=f"Need '{need_id}' not found in session {session_id}")
            if need.resolved:
                raise ValidationError(message=f"Need '{need_id}' has already been answered")

            kind = self._check_response(need, response_type, content)
            response = CollectedResponse(
                need_id=need.id,
                need_type=need.type.value,
                response_type=kind,
                content=content,
                round=session.rounds + 1,
            )
            needs = [
                n.model_copy(update={"resolved": True}) if n.id == need.id else n
                for n in session.needs
            ]

            remaining = [n for n in needs if not n.resolved]
            reply = acknowledgment(kind, len(session.responses))
            if remaining:
                reply += "\n\nI have another question that would help:\n\n" + _ask(remaining[0])
            else:
                reply += (
                    "\n\nThank you for providing all the requested information! I'll now "
                    "re-analyze your item with this additional context."
                )

            turns = [
                ConversationTurn(
                    role=ConversationRole.USER,
                    content=content if kind == ResponseType.TEXT else "(photo provided)",
                    related_need_id=need.id,
                ),
                ConversationTurn(
                    role=ConversationRole.ASSISTANT,
                    content=reply,
                    related_need_id=remaining[0].id if remaining else None,
                ),
            ]
            session = session.model_copy(
                update={
                    "needs": needs,
                    "responses": [*session.responses, response],
                    "transcript": [*session.transcript, *turns],
                    "updated_at": _now(),
                }
            )
            self._store.save(session)
            self._logger.info(
                "session_response",
                session_id=session_id,
                need_id=need.id,
                response_type=kind.value,
                remaining=len(remaining),
            )
            return session

    async def reanalyze(
        self, session_id: str, *, conclude: bool = True
    ) -> tuple[AnalysisOutcome, InteractiveSession]:
        """Re-run the pipeline with every collected response as evidence.

        On success the session completes (``conclude=True``) or returns to
        ``gathering_info`` with fresh needs; on failure it reverts to
        ``gathering_info`` and the error is re-raised.
        """
        async with self._locks.hold(session_id):
            session = self.get(session_id)
            self._require_status(session, SessionStatus.GATHERING_INFO, "reanalyze")
            if not session.pending_responses:
                raise ValidationError(
                    message="Provide at least one new response before re-analysing"
                )
            self._ensure_ledger(session)

            processing = self._transition(session, SessionStatus.PROCESSING)
            prior = session.current_outcome
            request = prior.request.model_copy(
                update={"additional_evidence": list(session.responses)}
            )

            try:
                outcome = await self._analysis.analyze(request, prior=prior)
            except Exception as exc:
                failed_turn = ConversationTurn(
                    role=ConversationRole.ASSISTANT,
                    content=(
                        "I wasn't able to complete the re-analysis just now. Your answers are "
                        "saved, so please try again in a moment."
                    ),
                )
                self._transition(
                    processing,
                    SessionStatus.GATHERING_INFO,
                    transcript=[*processing.transcript, failed_turn],
                )
                self._logger.warning(
                    "session_reanalysis_failed",
                    session_id=session_id,
                    error_type=type(exc).__name__,
                    error=str(exc)[:300],
                )
                raise

            round_no = session.rounds + 1
            record = self._confidence.record(
                session_id,
                outcome.overall_confidence,
                "reanalysis",
                round=round_no,
                component_scores=outcome.component_confidences,
            )
            plateaued = self._confidence.is_plateaued(session_id, self._returns)

            needs = list(session.needs)
            if not conclude and not plateaued:
                answered = {n.type for n in session.needs if n.resolved}
                resolved = [n for n in session.needs if n.resolved]
                needs = resolved + derive_needs(outcome, answered_types=answered)
            open_needs = [n for n in needs if not n.resolved]
            target = (
                SessionStatus.COMPLETE
                if conclude or plateaued or not open_needs
                else SessionStatus.GATHERING_INFO
            )

            message = _reanalysis_message(
                prior.overall_confidence, outcome.overall_confidence, record.regression
            )
            if target == SessionStatus.GATHERING_INFO:
                message += "\n\nOne more thing that would help:\n\n" + _ask(open_needs[0])

            updated = processing.model_copy(
                update={
                    "current_outcome": outcome,
                    "rounds": round_no,
                    "needs": needs,
                    "confidence_history": [*processing.confidence_history, record],
                    "transcript": [
                        *processing.transcript,
                        ConversationTurn(
                            role=ConversationRole.ASSISTANT,
                            content=message,
                            related_need_id=(
                                open_needs[0].id
                                if target == SessionStatus.GATHERING_INFO
                                else None
                            ),
                        ),
                    ],
                }
            )
            escalation = self._advise(updated, plateaued=plateaued, regression=record.regression)
            final = self._transition(updated, target, escalation=escalation)

            self._logger.info(
                "session_reanalyzed",
                session_id=session_id,
                round=round_no,
                previous=round(prior.overall_confidence, 4),
                confidence=round(outcome.overall_confidence, 4),
                plateaued=plateaued,
                regression=record.regression,
                status=final.status.value,
            )
        if final.status == SessionStatus.COMPLETE:
            self._locks.discard(session_id)
        return outcome, final

    async def abandon(self, session_id: str) -> InteractiveSession:
        """Abandon a session; repeating the call on an abandoned session is a no-op."""
        async with self._locks.hold(session_id):
            session = self.get(session_id)
            if session.status == SessionStatus.ABANDONED:
                return session
            abandoned = self._transition(session, SessionStatus.ABANDONED)
        self._locks.discard(session_id)
        return abandoned

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _transition(
        self, session: InteractiveSession, target: SessionStatus, **updates: object
    ) -> InteractiveSession:
        if target not in _ALLOWED_TRANSITIONS[session.status]:
            raise SessionStateError(
                message=(
                    f"Session {session.session_id} cannot move from "
                    f"{session.status.value} to {target.value}"
                )
            )
        moved = session.model_copy(update={**updates, "status": target, "updated_at": _now()})
        self._store.save(moved)
        self._logger.info(
            "session_transition",
            session_id=session.session_id,
            from_status=session.status.value,
            to_status=target.value,
        )
        return moved

    @staticmethod
    def _require_status(
        session: InteractiveSession, status: SessionStatus, operation: str
    ) -> None:
        if session.status != status:
            raise SessionStateError(
                message=(
                    f"Cannot {operation} session {session.session_id} in status "
                    f"{session.status.value}"
                )
            )

    @staticmethod
    def _check_response(
        need: InformationNeed, response_type: ResponseType | str, content: str
    ) -> ResponseType:
        try:
            kind = ResponseType(response_type)
        except ValueError as exc:
            raise ValidationError(message=f"Unknown response type '{response_type}'") from exc

        if need.type.wants_photo:
            if kind != ResponseType.PHOTO:
                raise ValidationError(message=f"Need '{need.id}' must be answered with a photo")
            if not is_valid_image_ref(content):
                raise ValidationError(
                    message="Photo must be an http(s) URL or a JPEG/PNG/GIF/WebP data URL"
                )
        else:
            if kind != ResponseType.TEXT:
                raise ValidationError(message=f"Need '{need.id}' must be answered with text")
            if not content or not content.strip():
                raise ValidationError(message="Answer text must not be empty")
        return kind

    def _ensure_ledger(self, session: InteractiveSession) -> None:
        if not self._confidence.history(session.session_id):
            self._confidence.seed(session.session_id, session.confidence_history)

    def _advise(
        self,
        session: InteractiveSession,
        *,
        plateaued: bool = False,
        regression: bool = False,
    ) -> EscalationRecommendation:
        return evaluate_session(
            session,
            plateaued=plateaued,
            regression=regression or self._confidence.has_regression(session.session_id),
            policy=self._escalation,
        )
