"""Conditional multi-run consensus for uncertain or high-stakes items.

Two calls to the same vision model can name the same teapot differently.
When a first outcome is low-confidence, high-value, in a domain where
reproductions are common, or carries a generic name, the pipeline runs the
four stages again (sequentially, never more than ``max_runs`` runs in
total) and reconciles the outcomes here.

Reconciliation strategy, chosen from the agreement scores:

    name > 0.7 and value > 0.8   confidence_weighted_average
    name < 0.3                   highest_confidence_with_flag
    anything else                median_consensus

The reconciled outcome keeps the first run's analysis id, request and
``supersedes`` link whichever run supplies its content.
"""

from __future__ import annotations

import statistics
from collections import Counter
from itertools import combinations
from typing import TYPE_CHECKING, NamedTuple

from pydantic import BaseModel, ConfigDict, Field

from src.models.analysis import (
    AnalysisOutcome,
    AuthenticityRisk,
    ConsensusSummary,
    DomainExpert,
    ValueRange,
)
from src.utils.text_normalizer import normalize_for_match, token_jaccard

if TYPE_CHECKING:
    from src.config.settings import Settings

# A name that starts with one of these says little about what the item is.
_GENERIC_NAME_WORDS = frozenset({"decorative", "vintage", "antique", "collectible", "unknown"})
_VALUE_SPREAD_RATIO = 5.0

_HIGH_NAME_AGREEMENT = 0.7
_HIGH_VALUE_AGREEMENT = 0.8
_LOW_NAME_AGREEMENT = 0.3


class ConsensusDecision(NamedTuple):
    """Total runs wanted for an outcome (1 = keep it) and why."""

    runs: int
    reasons: list[str]

    @property
    def should_rerun(self) -> bool:
        return self.runs > 1


class ConsensusPolicy(BaseModel):
    """When a finished analysis is worth running again, and how often.

    Each trigger asks for a number of runs; the largest request wins and
    is capped at ``max_runs``.  A disabled policy never asks for more
    than one.
    """

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    confidence_threshold: float = Field(default=0.75, ge=0.0, le=1.0)
    low_confidence_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    high_value_threshold: int = Field(default=5000, ge=0)
    very_high_value_threshold: int = Field(default=25000, ge=0)
    high_risk_domains: frozenset[DomainExpert] = frozenset(
        {
            DomainExpert.WATCHES,
            DomainExpert.SILVER,
            DomainExpert.JEWELRY,
            DomainExpert.ART,
            DomainExpert.CERAMICS,
        }
    )
    max_runs: int = Field(default=3, ge=1)

    @classmethod
    def from_settings(cls, settings: Settings) -> ConsensusPolicy:
        return cls(
            enabled=settings.consensus_enabled,
            confidence_threshold=settings.consensus_confidence_threshold,
            high_value_threshold=settings.consensus_high_value_threshold,
            very_high_value_threshold=settings.consensus_very_high_value_threshold,
            max_runs=settings.consensus_max_runs,
        )

    def evaluate(self, outcome: AnalysisOutcome) -> ConsensusDecision:
        if not self.enabled or self.max_runs < 2:
            return ConsensusDecision(runs=1, reasons=[])

        wanted = 1
        reasons: list[str] = []

        def want(runs: int, reason: str) -> None:
            nonlocal wanted
            wanted = max(wanted, runs)
            reasons.append(reason)

        confidence = outcome.overall_confidence
        if confidence < self.low_confidence_threshold:
            want(3, f"very low confidence ({confidence:.0%})")
        elif confidence < self.confidence_threshold:
            want(2, f"confidence {confidence:.0%} below {self.confidence_threshold:.0%}")

        midpoint = outcome.value_midpoint
        if midpoint >= self.very_high_value_threshold:
            want(self.max_runs, f"very high value (${midpoint:,.0f})")
        elif midpoint >= self.high_value_threshold:
            want(2, f"high value (${midpoint:,.0f})")

        if outcome.domain in self.high_risk_domains:
            want(2, f"high-risk domain ({outcome.domain.value})")

        if outcome.authenticity_risk in (AuthenticityRisk.HIGH, AuthenticityRisk.VERY_HIGH):
            want(2, f"authenticity risk {outcome.authenticity_risk.value}")

        words = normalize_for_match(outcome.name).split()
        if words and words[0] in _GENERIC_NAME_WORDS:
            want(2, f"generic name ({outcome.name})")

        value = outcome.value_range
        if value is not None and value.min > 0 and value.max / value.min > _VALUE_SPREAD_RATIO:
            want(2, f"wide value range (${value.min:,}-${value.max:,})")

        return ConsensusDecision(runs=min(wanted, self.max_runs), reasons=reasons)


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


def reconcile(
    outcomes: list[AnalysisOutcome], reasons: list[str] | None = None
) -> AnalysisOutcome:
    """Merge independent outcomes of one request into a single outcome.

    Raises
    ------
    ValueError
        If *outcomes* is empty.
    """
    if not outcomes:
        raise ValueError("reconcile needs at least one outcome")

    primary = outcomes[0]
    name_agreement = name_agreement_score(outcomes)
    value_agreement = value_agreement_score(outcomes)

    if len(outcomes) == 1:
        strategy, merged = "single_run", primary
    elif name_agreement > _HIGH_NAME_AGREEMENT and value_agreement > _HIGH_VALUE_AGREEMENT:
        strategy, merged = "confidence_weighted_average", _confidence_weighted(outcomes)
    elif name_agreement < _LOW_NAME_AGREEMENT:
        strategy = "highest_confidence_with_flag"
        merged = _flag_low_consensus(_most_confident(outcomes), name_agreement, len(outcomes))
    else:
        strategy, merged = "median_consensus", _median(outcomes)

    summary = ConsensusSummary(
        runs=len(outcomes),
        name_agreement=round(name_agreement, 4),
        value_agreement=round(value_agreement, 4),
        domain_agreement=round(domain_agreement_score(outcomes), 4),
        strategy=strategy,
        reasons=list(reasons or []),
    )
    return merged.model_copy(
        update={
            "analysis_id": primary.analysis_id,
            "request": primary.request,
            "supersedes": primary.supersedes,
            "consensus": summary,
        }
    )


def name_agreement_score(outcomes: list[AnalysisOutcome]) -> float:
    """Mean pairwise word overlap of the outcome names."""
    pairs = [token_jaccard(a.name, b.name) for a, b in combinations(outcomes, 2)]
    return statistics.fmean(pairs) if pairs else 1.0


def value_agreement_score(outcomes: list[AnalysisOutcome]) -> float:
    """One minus the coefficient of variation of the value midpoints, floored at 0."""
    midpoints = [o.value_range.midpoint for o in outcomes if o.value_range is not None]
    if len(midpoints) < 2:
        return 1.0
    mean = statistics.fmean(midpoints)
    if mean <= 0:
        return 1.0
    return max(0.0, 1.0 - statistics.pstdev(midpoints) / mean)


def domain_agreement_score(outcomes: list[AnalysisOutcome]) -> float:
    """Share of outcomes that agree with the most common domain."""
    _domain, count = Counter(o.domain for o in outcomes).most_common(1)[0]
    return count / len(outcomes)


def _most_confident(outcomes: list[AnalysisOutcome]) -> AnalysisOutcome:
    return max(outcomes, key=lambda o: o.overall_confidence)


def _confidence_weighted(outcomes: list[AnalysisOutcome]) -> AnalysisOutcome:
    base = _most_confident(outcomes)
    total = sum(o.overall_confidence for o in outcomes)
    if total <= 0:
        return base

    confidence = sum(o.overall_confidence**2 for o in outcomes) / total
    value_range = base.value_range
    valued = [o for o in outcomes if o.value_range is not None and o.overall_confidence > 0]
    weight = sum(o.overall_confidence for o in valued)
    if valued:
        low = sum(o.value_range.min * o.overall_confidence for o in valued) / weight
        high = sum(o.value_range.max * o.overall_confidence for o in valued) / weight
        value_range = ValueRange(min=round(low), max=round(high))

    return base.model_copy(
        update={"overall_confidence": round(confidence, 4), "value_range": value_range}
    )


def _median(outcomes: list[AnalysisOutcome]) -> AnalysisOutcome:
    ranked = sorted(outcomes, key=lambda o: o.overall_confidence)
    base = ranked[len(ranked) // 2]

    ranges = [o.value_range for o in outcomes if o.value_range is not None]
    if not ranges:
        return base
    lows = sorted(r.min for r in ranges)
    highs = sorted(r.max for r in ranges)
    mid = len(ranges) // 2
    return base.model_copy(update={"value_range": ValueRange(min=lows[mid], max=highs[mid])})


def _flag_low_consensus(
    outcome: AnalysisOutcome, name_agreement: float, runs: int
) -> AnalysisOutcome:
    flag = (
        f"Low consensus: {name_agreement:.0%} name agreement across {runs} analyses. "
        "Consider expert verification."
    )
    return outcome.model_copy(
        update={
            "expert_referral_recommended": True,
            "red_flags": [*outcome.red_flags, flag],
        }
    )
