"""Scoring engine: compares a produced outcome with a ground-truth item.

Pure functions, no I/O.  Each component returns a similarity in
``[0.0, 1.0]``; the composite is a 0-100 score weighted heavily towards
the name because a wrong name makes every other field moot:

    overall = 100 x (0.7 name + 0.1 maker + 0.1 era + 0.1 value)

Component rules
---------------
name   1.0 on exact normalized match, else the better of keyword overlap
       (fraction of ``name_keywords`` present) and Levenshtein similarity.
maker  1.0 on normalized equality or whole-word containment against the
       expected maker or any alternative.  With no expected maker, 1.0 only
       when no maker was produced.
era    overlap / expected span; a zero-span expectation scores 1.0 when
       the produced range contains it.
value  1.0 when either range contains the other; partial overlap scores
       overlap / expected span; disjoint ranges decay with the gap
       relative to the expected maximum.
"""

from __future__ import annotations

from src.models.analysis import AnalysisOutcome, EraRange, ValueRange
from src.models.evaluation import (
    ComponentScores,
    ExpectedIdentification,
    GroundTruthItem,
    ScoreResult,
)
from src.utils.text_normalizer import (
    contains_phrase,
    keyword_overlap_ratio,
    normalize_for_match,
    string_similarity,
)

NAME_WEIGHT = 0.7
MAKER_WEIGHT = 0.1
ERA_WEIGHT = 0.1
VALUE_WEIGHT = 0.1

# Failure labels attached to a ScoreResult.
NAME_FAILURE = "name"
MAKER_FAILURE = "maker"
ERA_FAILURE = "era"
VALUE_FAILURE = "value"

_FAILURE_THRESHOLD = 0.5


# ---------------------------------------------------------------------------
# Components
# ---------------------------------------------------------------------------


def score_name(expected: ExpectedIdentification, produced_name: str | None) -> float:
    produced = normalize_for_match(produced_name)
    if not produced:
        return 0.0
    if produced == normalize_for_match(expected.name):
        return 1.0
    keyword_score = keyword_overlap_ratio(produced_name, expected.name_keywords)
    fuzzy_score = string_similarity(produced_name, expected.name)
    return _unit(max(keyword_score, fuzzy_score))


def score_maker(expected: ExpectedIdentification, produced_maker: str | None) -> float:
    produced = normalize_for_match(produced_maker)
    if expected.maker is None:
        return 1.0 if not produced else 0.0
    if not produced:
        return 0.0
    for candidate in (expected.maker, *expected.maker_alternatives):
        wanted = normalize_for_match(candidate)
        if not wanted:
            continue
        if produced == wanted:
            return 1.0
        if contains_phrase(produced, wanted) or contains_phrase(wanted, produced):
            return 1.0
    return 0.0


def score_era(expected: EraRange, produced: EraRange | None) -> float:
    if produced is None:
        return 0.0
    overlap_start = max(expected.start, produced.start)
    overlap_end = min(expected.end, produced.end)
    if overlap_end < overlap_start:
        return 0.0
    if expected.length == 0:
        return 1.0
    return _unit((overlap_end - overlap_start) / expected.length)


def score_value(expected_min: int, expected_max: int, produced: ValueRange | None) -> float:
    if produced is None:
        return 0.0
    produced_contains = produced.min <= expected_min and expected_max <= produced.max
    expected_contains = expected_min <= produced.min and produced.max <= expected_max
    if produced_contains or expected_contains:
        return 1.0

    overlap_start = max(expected_min, produced.min)
    overlap_end = min(expected_max, produced.max)
    if overlap_end >= overlap_start:
        span = expected_max - expected_min
        return _unit((overlap_end - overlap_start) / span) if span > 0 else 1.0

    if expected_max <= 0:
        return 0.0
    if produced.min > expected_max:
        gap = produced.min - expected_max
    else:
        gap = expected_min - produced.max
    return _unit(1.0 - gap / expected_max)


def composite_score(components: ComponentScores) -> float:
    """Weighted 0-100 composite of the four components."""
    total = (
        NAME_WEIGHT * components.name
        + MAKER_WEIGHT * components.maker
        + ERA_WEIGHT * components.era
        + VALUE_WEIGHT * components.value
    )
    return max(0.0, min(100.0, round(100.0 * total, 2)))


def failure_labels(components: ComponentScores, expected: ExpectedIdentification) -> list[str]:
    failures: list[str] = []
    if components.name < _FAILURE_THRESHOLD:
        failures.append(NAME_FAILURE)
    if expected.maker is not None and components.maker == 0.0:
        failures.append(MAKER_FAILURE)
    if components.era < _FAILURE_THRESHOLD:
        failures.append(ERA_FAILURE)
    if components.value < _FAILURE_THRESHOLD:
        failures.append(VALUE_FAILURE)
    return failures


# ---------------------------------------------------------------------------
# Whole-outcome scoring
# ---------------------------------------------------------------------------


def score_components(item: GroundTruthItem, outcome: AnalysisOutcome) -> ComponentScores:
    expected = item.expected
    return ComponentScores(
        name=score_name(expected, outcome.name),
        maker=score_maker(expected, outcome.maker),
        era=score_era(expected.era_range, outcome.era_range),
        value=score_value(expected.value_min, expected.value_max, outcome.value_range),
    )


def score_outcome(
    item: GroundTruthItem,
    outcome: AnalysisOutcome,
    duration_seconds: float = 0.0,
) -> ScoreResult:
    """Score *outcome* against *item* and return an immutable ScoreResult."""
    components = score_components(item, outcome)
    return ScoreResult(
        item_id=item.id,
        domain=item.expected.domain,
        difficulty=item.difficulty,
        component_scores=components,
        overall_score=composite_score(components),
        failures=failure_labels(components, item.expected),
        produced_name=outcome.name,
        produced_confidence=outcome.overall_confidence,
        duration_seconds=round(duration_seconds, 3),
    )


def error_result(item: GroundTruthItem, error: str, duration_seconds: float = 0.0) -> ScoreResult:
    """Zero score for an item whose analysis failed."""
    return ScoreResult(
        item_id=item.id,
        domain=item.expected.domain,
        difficulty=item.difficulty,
        overall_score=0.0,
        failures=failure_labels(ComponentScores(), item.expected),
        error=error,
        duration_seconds=round(duration_seconds, 3),
    )


def _unit(value: float) -> float:
    return max(0.0, min(1.0, value))
