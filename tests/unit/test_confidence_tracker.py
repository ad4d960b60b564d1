"""Unit tests for the append-only confidence ledger."""

from __future__ import annotations

import pytest

from src.models.session import ConfidenceRecord
from src.pipeline.confidence_tracker import ConfidenceTracker, DiminishingReturnsPolicy
from src.utils.errors import ValidationError


def _tracker_with(values: list[float], key: str = "vera-abc") -> ConfidenceTracker:
    """Round 0 followed by one interactive round per extra value."""
    tracker = ConfidenceTracker()
    for round_number, value in enumerate(values):
        tracker.record(key, value, f"round {round_number}", round=round_number)
    return tracker


# ======================================================================
# record()
# ======================================================================


class TestRecord:
    def test_appends_entries(self) -> None:
        tracker = ConfidenceTracker()
        tracker.record("a1", 0.4, "stage:triage")
        entry = tracker.record("a1", 0.6, "stage:evidence", component_scores={"dating": 0.5})

        assert entry.overall_confidence == 0.6
        assert entry.component_scores == {"dating": 0.5}
        assert [e.reason for e in tracker.history("a1")] == ["stage:triage", "stage:evidence"]
        assert tracker.latest("a1") == entry

    @pytest.mark.parametrize("bad", [float("nan"), -0.1, 1.2])
    def test_rejects_invalid_confidence(self, bad: float) -> None:
        tracker = ConfidenceTracker()
        with pytest.raises(ValidationError):
            tracker.record("a1", bad, "bad")
        assert tracker.history("a1") == []

    def test_rejects_negative_round(self) -> None:
        with pytest.raises(ValidationError):
            ConfidenceTracker().record("a1", 0.5, "bad", round=-1)

    def test_rejects_out_of_order_round(self) -> None:
        tracker = _tracker_with([0.5, 0.6, 0.7])
        with pytest.raises(ValidationError, match="round 1"):
            tracker.record("vera-abc", 0.8, "late", round=1)

    def test_drop_within_initial_run_is_not_a_regression(self) -> None:
        tracker = ConfidenceTracker()
        tracker.record("a1", 0.8, "stage:triage")
        entry = tracker.record("a1", 0.6, "stage:evidence")
        assert entry.regression is False
        assert not tracker.has_regression("a1")

    def test_lower_round_is_appended_and_flagged(self) -> None:
        tracker = _tracker_with([0.72])
        entry = tracker.record("vera-abc", 0.65, "round 1", round=1)

        assert entry.regression is True
        assert tracker.has_regression("vera-abc")
        assert not tracker.is_non_decreasing("vera-abc")
        assert len(tracker.history("vera-abc")) == 2


# ======================================================================
# Reads
# ======================================================================


class TestReads:
    def test_round_values_keep_last_entry_per_round(self) -> None:
        tracker = ConfidenceTracker()
        tracker.record("k", 0.3, "stage:triage")
        tracker.record("k", 0.72, "stage:synthesis")
        tracker.record("k", 0.81, "round 1", round=1)
        assert tracker.round_values("k") == {0: 0.72, 1: 0.81}

    def test_delta_since_last_round(self) -> None:
        assert _tracker_with([0.72, 0.81]).delta_since_last_round("vera-abc") == pytest.approx(0.09)
        assert _tracker_with([0.72]).delta_since_last_round("vera-abc") == 0.0

    def test_history_is_a_copy(self) -> None:
        tracker = _tracker_with([0.5])
        tracker.history("vera-abc").clear()
        assert len(tracker.history("vera-abc")) == 1

    def test_unknown_key(self) -> None:
        tracker = ConfidenceTracker()
        assert tracker.latest("missing") is None
        assert tracker.history("missing") == []
        assert tracker.is_non_decreasing("missing")

    def test_seed_only_fills_empty_ledger(self) -> None:
        tracker = ConfidenceTracker()
        restored = [ConfidenceRecord(overall_confidence=0.7, reason="initial")]
        tracker.seed("k", restored)
        tracker.seed("k", [ConfidenceRecord(overall_confidence=0.1, reason="stale")])
        assert [e.reason for e in tracker.history("k")] == ["initial"]

    def test_forget(self) -> None:
        tracker = _tracker_with([0.5])
        tracker.forget("vera-abc")
        assert tracker.history("vera-abc") == []


# ======================================================================
# Diminishing returns
# ======================================================================


class TestPlateau:
    policy = DiminishingReturnsPolicy(window_rounds=3, min_cumulative_gain=0.05, max_rounds=5)

    def test_too_few_rounds_never_plateaus(self) -> None:
        assert not _tracker_with([0.70, 0.70, 0.70]).is_plateaued("vera-abc", self.policy)

    def test_small_gain_over_window_plateaus(self) -> None:
        tracker = _tracker_with([0.70, 0.72, 0.73, 0.74])
        assert tracker.is_plateaued("vera-abc", self.policy)

    def test_healthy_gain_keeps_going(self) -> None:
        tracker = _tracker_with([0.70, 0.72, 0.76, 0.80])
        assert not tracker.is_plateaued("vera-abc", self.policy)

    def test_window_measured_from_latest_rounds(self) -> None:
        # Big early jump, then nothing.
        tracker = _tracker_with([0.40, 0.80, 0.81, 0.81, 0.82])
        assert tracker.is_plateaued("vera-abc", self.policy)

    def test_round_cap_plateaus(self) -> None:
        policy = DiminishingReturnsPolicy(window_rounds=3, max_rounds=2)
        assert _tracker_with([0.5, 0.7, 0.9]).is_plateaued("vera-abc", policy)
