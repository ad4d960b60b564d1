"""Unit tests for src.services.scoring."""

from __future__ import annotations

import pytest

from src.models.analysis import DomainExpert, EraRange, ValueRange
from src.models.evaluation import (
    ComponentScores,
    Difficulty,
    ExpectedIdentification,
    GroundTruthItem,
    ScoreBand,
)
from src.services.ground_truth import get_item
from src.services.scoring import (
    composite_score,
    error_result,
    failure_labels,
    score_era,
    score_maker,
    score_name,
    score_outcome,
    score_value,
)
from tests.conftest import make_outcome


def _expected(**overrides) -> ExpectedIdentification:
    base = {
        "name": "Eames Lounge Chair and Ottoman",
        "name_keywords": ["eames", "lounge", "chair", "670", "671"],
        "maker": "Herman Miller",
        "maker_alternatives": ["Vitra"],
        "era_range": EraRange(start=1956, end=2026),
        "domain": DomainExpert.FURNITURE,
        "value_min": 3000,
        "value_max": 8000,
    }
    base.update(overrides)
    return ExpectedIdentification(**base)


# ======================================================================
# Component scores
# ======================================================================


class TestScoreName:
    def test_exact_match_after_normalization(self) -> None:
        assert score_name(_expected(), "eames lounge chair & ottoman") == 1.0

    def test_partial_name_uses_best_of_keywords_and_similarity(self) -> None:
        assert score_name(_expected(), "Eames Lounge Chair") == pytest.approx(0.6)

    def test_missing_name_scores_zero(self) -> None:
        assert score_name(_expected(), None) == 0.0
        assert score_name(_expected(), "") == 0.0


class TestScoreMaker:
    def test_containment_counts_as_match(self) -> None:
        assert score_maker(_expected(), "Herman Miller Inc.") == 1.0

    def test_alternative_maker_matches(self) -> None:
        assert score_maker(_expected(), "Vitra") == 1.0

    def test_wrong_maker(self) -> None:
        assert score_maker(_expected(), "Knoll") == 0.0

    def test_missing_maker_when_one_expected(self) -> None:
        assert score_maker(_expected(), None) == 0.0

    def test_no_expected_maker_rewards_silence(self) -> None:
        expected = _expected(maker=None, maker_alternatives=[])
        assert score_maker(expected, None) == 1.0
        assert score_maker(expected, "Some Workshop") == 0.0


class TestScoreEra:
    def test_overlap_over_expected_span(self) -> None:
        score = score_era(EraRange(start=1956, end=2026), EraRange(start=1956, end=1970))
        assert score == pytest.approx(0.2)

    def test_disjoint_scores_zero(self) -> None:
        assert score_era(EraRange(start=1956, end=1970), EraRange(start=1800, end=1850)) == 0.0

    def test_point_expectation_contained(self) -> None:
        assert score_era(EraRange(start=1889, end=1889), EraRange(start=1880, end=1900)) == 1.0

    def test_missing_era(self) -> None:
        assert score_era(EraRange(start=1900, end=1950), None) == 0.0


class TestScoreValue:
    def test_produced_inside_expected(self) -> None:
        assert score_value(3000, 8000, ValueRange(min=4000, max=6000)) == 1.0

    def test_expected_inside_produced(self) -> None:
        assert score_value(3000, 8000, ValueRange(min=1000, max=10000)) == 1.0

    def test_partial_overlap(self) -> None:
        assert score_value(3000, 8000, ValueRange(min=6000, max=10000)) == pytest.approx(0.4)

    def test_near_miss_decays_with_gap(self) -> None:
        assert score_value(3000, 8000, ValueRange(min=9000, max=10000)) == pytest.approx(0.875)

    def test_far_disjoint_is_zero(self) -> None:
        assert score_value(3000, 8000, ValueRange(min=20000, max=30000)) == 0.0

    def test_missing_value(self) -> None:
        assert score_value(3000, 8000, None) == 0.0


# ======================================================================
# Composite and failures
# ======================================================================


class TestComposite:
    def test_weights(self) -> None:
        scores = ComponentScores(name=1.0, maker=1.0, era=0.2, value=1.0)
        assert composite_score(scores) == pytest.approx(92.0)

    def test_name_dominates(self) -> None:
        only_name = composite_score(ComponentScores(name=1.0))
        everything_else = composite_score(ComponentScores(maker=1.0, era=1.0, value=1.0))
        assert only_name == pytest.approx(70.0)
        assert everything_else == pytest.approx(30.0)

    def test_rounded_to_two_places(self) -> None:
        assert composite_score(ComponentScores(name=0.33333)) == pytest.approx(23.33)

    def test_failure_labels(self) -> None:
        scores = ComponentScores(name=0.4, maker=0.0, era=0.9, value=0.1)
        assert failure_labels(scores, _expected()) == ["name", "maker", "value"]

    def test_no_maker_failure_without_expected_maker(self) -> None:
        scores = ComponentScores(name=1.0, maker=0.0, era=1.0, value=1.0)
        assert failure_labels(scores, _expected(maker=None)) == []


# ======================================================================
# Whole-outcome scoring
# ======================================================================


class TestScoreOutcome:
    def test_eames_chair_against_ground_truth(self) -> None:
        item = get_item("furn-001")
        outcome = make_outcome(
            name="Eames Lounge Chair and Ottoman",
            maker="Herman Miller",
            domain=DomainExpert.FURNITURE,
            era=(1956, 1970),
            value=(4000, 6000),
        )

        result = score_outcome(item, outcome, duration_seconds=1.23456)

        assert result.component_scores.name == 1.0
        assert result.component_scores.maker == 1.0
        assert result.component_scores.era == pytest.approx(0.2)
        assert result.component_scores.value == 1.0
        assert result.overall_score == pytest.approx(92.0)
        assert result.failures == ["era"]
        assert result.band == ScoreBand.EXCELLENT
        assert result.duration_seconds == pytest.approx(1.235)
        assert result.produced_confidence == pytest.approx(0.72)
        assert not result.is_error

    def test_error_result_scores_zero(self) -> None:
        item = GroundTruthItem(
            id="custom-1",
            image_ref="https://images.example.com/x.jpg",
            expected=_expected(),
            difficulty=Difficulty.HARD,
        )

        result = error_result(item, "[fake-vision] service down")

        assert result.overall_score == 0.0
        assert result.is_error
        assert result.band == ScoreBand.FAILED
        assert result.failures == ["name", "maker", "era", "value"]
