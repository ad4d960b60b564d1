"""Human-expert escalation advice.

Escalation is advisory data only: it never changes a session's status.
Two kinds of trigger feed one EscalationRecommendation:

* outcome triggers -- value thresholds, low confidence, authenticity risk,
  an expert referral from the model, high-risk domains, wide value spread;
* session triggers -- critical needs still unresolved after N rounds, a
  plateaued confidence ledger, or a flagged confidence regression.

Urgency only ever escalates (low -> medium -> high -> critical) while the
triggers are applied in order.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.config.domain_policy import HIGH_RISK_DOMAINS
from src.models.analysis import AnalysisOutcome, AuthenticityRisk, DomainExpert
from src.models.session import (
    EscalationRecommendation,
    EscalationUrgency,
    ExpertServiceTier,
    InteractiveSession,
)
from src.services.information_needs import has_unresolved_critical

QUICK_REVIEW = "quick-review"
FULL_AUTHENTICATION = "full-authentication"
PREMIUM_APPRAISAL = "premium-appraisal"

DEFAULT_TIERS: tuple[ExpertServiceTier, ...] = (
    ExpertServiceTier(
        id=QUICK_REVIEW,
        name="Quick Expert Review",
        description="Rapid verification by a certified appraiser",
        price=25,
        turnaround_hours=24,
        includes=[
            "Expert verification of the identification",
            "Confidence validation",
            "Brief authentication notes",
        ],
        recommended_for=[
            "Items valued $100-$500",
            "Common antique categories",
            "Quick buy/sell decisions",
        ],
    ),
    ExpertServiceTier(
        id=FULL_AUTHENTICATION,
        name="Full Authentication",
        description="Comprehensive expert authentication with documentation",
        price=150,
        turnaround_hours=48,
        includes=[
            "Detailed authentication report",
            "Maker/period verification",
            "Condition assessment",
            "Market value validation",
            "Written certificate of authenticity",
        ],
        recommended_for=[
            "Items valued $500-$5,000",
            "Pieces requiring authentication",
            "Insurance documentation",
        ],
    ),
    ExpertServiceTier(
        id=PREMIUM_APPRAISAL,
        name="Premium Written Appraisal",
        description="Full USPAP-compliant appraisal by certified appraiser",
        price=500,
        turnaround_hours=168,
        includes=[
            "USPAP-compliant written appraisal",
            "Detailed provenance research",
            "Comparable sales analysis",
            "Insurance/estate documentation",
            "Legal-grade authentication",
            "Follow-up consultation",
        ],
        recommended_for=[
            "Items valued $5,000+",
            "Estate planning",
            "Insurance claims",
            "Major auction consignment",
        ],
    ),
)


class EscalationPolicy(BaseModel):
    """Thresholds for offering human review.  Money is whole dollars."""

    model_config = ConfigDict(frozen=True)

    offer_value_threshold: int = 100
    premium_value_threshold: int = 5000
    low_confidence_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    value_spread_ratio: float = 3.0
    escalation_after_rounds: int = Field(default=2, ge=0)
    high_risk_domains: frozenset[DomainExpert] = HIGH_RISK_DOMAINS
    tiers: tuple[ExpertServiceTier, ...] = DEFAULT_TIERS

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> EscalationPolicy:
        """Build from the resolved config dict (``escalation`` + ``interactive``)."""
        section = dict(config.get("escalation") or {})
        interactive = config.get("interactive") or {}
        if "escalation_after_rounds" in interactive:
            section.setdefault("escalation_after_rounds", interactive["escalation_after_rounds"])
        return cls(**section)

    def tier(self, tier_id: str) -> ExpertServiceTier | None:
        for tier in self.tiers:
            if tier.id == tier_id:
                return tier
        return None


class _Advice:
    """Mutable accumulator while triggers are applied."""

    def __init__(self, policy: EscalationPolicy) -> None:
        self.policy = policy
        self.reasons: list[str] = []
        self.urgency = EscalationUrgency.LOW
        self.tier: ExpertServiceTier | None = None

    def raise_to(self, urgency: EscalationUrgency) -> None:
        if urgency.rank > self.urgency.rank:
            self.urgency = urgency

    def suggest(self, tier_id: str, *, override: bool = False) -> None:
        if self.tier is None or override:
            self.tier = self.policy.tier(tier_id)

    def build(self, should_offer: bool) -> EscalationRecommendation:
        return EscalationRecommendation(
            should_offer=should_offer or bool(self.reasons),
            urgency=self.urgency,
            reasons=self.reasons,
            recommended_tier=self.tier,
            available_tiers=list(self.policy.tiers),
        )


def _apply_outcome_triggers(advice: _Advice, outcome: AnalysisOutcome) -> None:
    policy = advice.policy
    midpoint = outcome.value_midpoint

    if midpoint >= policy.premium_value_threshold:
        advice.reasons.append(f"High-value item: ${midpoint:,.0f} estimated")
        advice.raise_to(EscalationUrgency.HIGH)
        advice.suggest(PREMIUM_APPRAISAL, override=True)
    elif midpoint >= policy.offer_value_threshold:
        advice.reasons.append(f"Notable value: ${midpoint:,.0f} estimated")
        advice.raise_to(EscalationUrgency.MEDIUM)
        advice.suggest(FULL_AUTHENTICATION, override=True)

    if outcome.overall_confidence < policy.low_confidence_threshold:
        advice.reasons.append(f"Low confidence: {outcome.overall_confidence * 100:.0f}%")
        advice.raise_to(EscalationUrgency.MEDIUM)
        advice.suggest(QUICK_REVIEW)

    if outcome.authenticity_risk in (AuthenticityRisk.HIGH, AuthenticityRisk.VERY_HIGH):
        advice.reasons.append(f"High authenticity risk: {outcome.authenticity_risk.value}")
        advice.raise_to(EscalationUrgency.CRITICAL)
        if advice.tier is None or advice.tier.id != PREMIUM_APPRAISAL:
            advice.suggest(FULL_AUTHENTICATION, override=True)

    if outcome.expert_referral_recommended:
        advice.reasons.append("Expert review recommended by the analysis")
        advice.raise_to(EscalationUrgency.MEDIUM)
        advice.suggest(QUICK_REVIEW)

    if outcome.domain in policy.high_risk_domains:
        advice.reasons.append(f"High-risk category: {outcome.domain.value}")
        advice.raise_to(EscalationUrgency.MEDIUM)

    if outcome.value_range is not None:
        spread = outcome.value_range.max / max(outcome.value_range.min, 1)
        if spread > policy.value_spread_ratio:
            advice.reasons.append(
                f"Wide value range: {spread:.1f}x spread indicates uncertainty"
            )
            advice.suggest(QUICK_REVIEW)


def evaluate_outcome(
    outcome: AnalysisOutcome, policy: EscalationPolicy | None = None
) -> EscalationRecommendation:
    """Escalation advice for a single outcome."""
    policy = policy or EscalationPolicy()
    advice = _Advice(policy)
    _apply_outcome_triggers(advice, outcome)
    return advice.build(outcome.value_midpoint >= policy.offer_value_threshold)


def evaluate_session(
    session: InteractiveSession,
    *,
    plateaued: bool,
    regression: bool,
    policy: EscalationPolicy | None = None,
) -> EscalationRecommendation:
    """Outcome triggers for the session's current outcome plus session triggers."""
    policy = policy or EscalationPolicy()
    advice = _Advice(policy)
    _apply_outcome_triggers(advice, session.current_outcome)

    if session.rounds >= policy.escalation_after_rounds and has_unresolved_critical(session.needs):
        advice.reasons.append(
            f"Critical evidence still missing after {session.rounds} round(s)"
        )
        advice.raise_to(EscalationUrgency.HIGH)
        advice.suggest(FULL_AUTHENTICATION)

    if plateaued:
        advice.reasons.append("Confidence has stopped improving with additional evidence")
        advice.raise_to(EscalationUrgency.MEDIUM)
        advice.suggest(QUICK_REVIEW)

    if regression:
        advice.reasons.append("Confidence dropped after re-analysis")
        advice.raise_to(EscalationUrgency.HIGH)
        advice.suggest(FULL_AUTHENTICATION)

    return advice.build(session.current_outcome.value_midpoint >= policy.offer_value_threshold)
