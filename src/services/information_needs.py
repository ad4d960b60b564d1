"""Information-need rules for interactive sessions.

Given an AnalysisOutcome, decide which specific pieces of missing
evidence (photos of marks, the underside, provenance answers, ...) would
most likely raise confidence, and order them so the most valuable one is
asked first.

Rules (c = overall confidence, d = domain, m = value midpoint in dollars):

    marks-photo              c < 0.9                 critical if c < 0.7 or d in {silver, jewelry}
    underside-photo          c < 0.85, d in UNDERSIDE_DOMAINS              high
    back-photo               c < 0.85, d in BACK_DOMAINS                   high
    provenance-question      m >= 500                                      high
    measurements             d in MEASUREMENT_DOMAINS, c < 0.8             medium
    authentication-question  authenticity risk high / very_high           critical
    documentation            m >= 1000 or expert referral recommended      medium
    condition-photo          description mentions damage/repair/restoration medium
    scale-photo              fewer than three needs so far                 low

Ordering is priority (critical first), then expected gain descending;
Python's sort is stable so equal keys keep rule order.
"""

from __future__ import annotations

from collections.abc import Iterable

from src.config.domain_policy import (
    BACK_DOMAINS,
    MARKS_CRITICAL_DOMAINS,
    MEASUREMENT_DOMAINS,
    UNDERSIDE_DOMAINS,
    photo_request,
)
from src.models.analysis import AnalysisOutcome, AuthenticityRisk
from src.models.session import InformationNeed, NeedPriority, NeedType
from src.utils.text_normalizer import mentions_any

PROVENANCE_VALUE_THRESHOLD = 500
DOCUMENTATION_VALUE_THRESHOLD = 1000
_SCALE_NEED_MAX_PRIOR = 3

_DAMAGE_WORDS = ["damage", "damaged", "repair", "repaired", "restoration", "restored"]

_MARKS_GUIDANCE = (
    "Use good lighting, avoid shadows, and ensure the marks are in sharp focus. "
    "Multiple angles help."
)
_UNDERSIDE_GUIDANCE = "If the item is too heavy to turn over, use a mirror or phone camera underneath."
_DAMAGE_GUIDANCE = "Focus on any chips, cracks, repairs, or areas of concern."
_SCALE_GUIDANCE = "Place a quarter, credit card, or ruler next to the item."


def derive_needs(
    outcome: AnalysisOutcome,
    answered_types: Iterable[NeedType] = (),
) -> list[InformationNeed]:
    """Return the ordered, unresolved information needs for *outcome*.

    Parameters
    ----------
    outcome:
        The analysis to examine.
    answered_types:
        Need types already resolved earlier in the session; they are never
        asked again.
    """
    skip = set(answered_types)
    c = outcome.overall_confidence
    domain = outcome.domain
    midpoint = outcome.value_midpoint
    needs: list[InformationNeed] = []

    def add(need: InformationNeed) -> None:
        if need.type not in skip:
            needs.append(need)

    if c < 0.9:
        critical = c < 0.7 or domain in MARKS_CRITICAL_DOMAINS
        add(
            InformationNeed(
                id="marks-photo",
                type=NeedType.PHOTO_MARKS,
                priority=NeedPriority.CRITICAL if critical else NeedPriority.HIGH,
                question=photo_request(
                    domain,
                    NeedType.PHOTO_MARKS,
                    "Can you provide a clear photo of any maker marks, signatures, or labels?",
                ),
                reason=(
                    "Maker marks are often the key to definitive identification and can "
                    "significantly increase our confidence."
                ),
                expected_confidence_gain=0.15,
                photo_guidance=_MARKS_GUIDANCE,
            )
        )

    if c < 0.85 and domain in UNDERSIDE_DOMAINS:
        add(
            InformationNeed(
                id="underside-photo",
                type=NeedType.PHOTO_UNDERSIDE,
                priority=NeedPriority.HIGH,
                question=photo_request(
                    domain,
                    NeedType.PHOTO_UNDERSIDE,
                    "Please provide a photo of the base or underside of the item.",
                ),
                reason="The underside often contains crucial construction details and hidden marks.",
                expected_confidence_gain=0.12,
                photo_guidance=_UNDERSIDE_GUIDANCE,
            )
        )

    if c < 0.85 and domain in BACK_DOMAINS:
        add(
            InformationNeed(
                id="back-photo",
                type=NeedType.PHOTO_BACK,
                priority=NeedPriority.HIGH,
                question=photo_request(
                    domain,
                    NeedType.PHOTO_BACK,
                    "Please provide a photo of the back or reverse side.",
                ),
                reason=(
                    "The back often reveals construction methods, gallery labels, "
                    "or hidden information."
                ),
                expected_confidence_gain=0.10,
            )
        )

    if midpoint >= PROVENANCE_VALUE_THRESHOLD:
        add(
            InformationNeed(
                id="provenance-question",
                type=NeedType.QUESTION_PROVENANCE,
                priority=NeedPriority.HIGH,
                question=(
                    "Can you share the history of this item? How did you acquire it, and do "
                    "you know anything about its previous owners?"
                ),
                reason=(
                    "Provenance can significantly impact both authentication and value "
                    "for high-value pieces."
                ),
                expected_confidence_gain=0.08,
                examples=[
                    "Inherited from grandmother who collected in the 1960s",
                    "Purchased at estate sale in Connecticut, 2018",
                    "Found at flea market, no history known",
                ],
            )
        )

    if domain in MEASUREMENT_DOMAINS and c < 0.8:
        add(
            InformationNeed(
                id="measurements",
                type=NeedType.MEASUREMENT,
                priority=NeedPriority.MEDIUM,
                question="Can you provide dimensions? Height, width, and depth in inches or centimeters.",
                reason=(
                    "Correct proportions help distinguish originals from reproductions "
                    "or different time periods."
                ),
                expected_confidence_gain=0.06,
            )
        )

    if outcome.authenticity_risk in (AuthenticityRisk.HIGH, AuthenticityRisk.VERY_HIGH):
        add(
            InformationNeed(
                id="authentication-question",
                type=NeedType.QUESTION_COMPARISON,
                priority=NeedPriority.CRITICAL,
                question=(
                    "Our analysis detected some authentication concerns. Have you compared "
                    "this to known authentic examples? Are there any features that seem "
                    "unusual to you?"
                ),
                reason=(
                    "Your observations combined with our analysis can help identify "
                    "potential reproduction indicators."
                ),
                expected_confidence_gain=0.10,
            )
        )

    if midpoint >= DOCUMENTATION_VALUE_THRESHOLD or outcome.expert_referral_recommended:
        add(
            InformationNeed(
                id="documentation",
                type=NeedType.DOCUMENTATION,
                priority=NeedPriority.MEDIUM,
                question=(
                    "Do you have any documentation? Receipts, appraisals, certificates of "
                    "authenticity, or auction records would be very helpful."
                ),
                reason="Documentation can provide definitive authentication and provenance support.",
                expected_confidence_gain=0.15,
            )
        )

    if mentions_any(outcome.description, _DAMAGE_WORDS):
        add(
            InformationNeed(
                id="condition-photo",
                type=NeedType.PHOTO_DAMAGE,
                priority=NeedPriority.MEDIUM,
                question="Can you provide close-up photos of any damage, repairs, or restoration work?",
                reason="Understanding the condition details helps with accurate valuation.",
                expected_confidence_gain=0.05,
                photo_guidance=_DAMAGE_GUIDANCE,
            )
        )

    if len(needs) < _SCALE_NEED_MAX_PRIOR:
        add(
            InformationNeed(
                id="scale-photo",
                type=NeedType.PHOTO_SCALE,
                priority=NeedPriority.LOW,
                question="Could you include a common object (coin, ruler, hand) in a photo to show scale?",
                reason="A size reference helps verify proportions and authenticity.",
                expected_confidence_gain=0.03,
                photo_guidance=_SCALE_GUIDANCE,
            )
        )

    return sort_needs(needs)


def sort_needs(needs: list[InformationNeed]) -> list[InformationNeed]:
    """Priority first, then expected gain descending; stable for ties."""
    return sorted(needs, key=lambda n: (n.priority.rank, -n.expected_confidence_gain))


def has_unresolved_critical(needs: Iterable[InformationNeed]) -> bool:
    return any(n.priority == NeedPriority.CRITICAL and not n.resolved for n in needs)
