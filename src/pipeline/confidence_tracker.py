"""Append-only confidence ledger keyed by analysis or session id.

The ledger is the sole record of why confidence changed.  The pipeline
writes one entry per completed stage (round 0) under the analysis id; the
interactive session manager writes the initial outcome confidence and one
entry per re-analysis round under the session id.

Entries are never overwritten.  A round that comes in lower than the
previous round is still appended, flagged ``regression=True`` and logged
at error level, so the drop is visible rather than silently accepted.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, ConfigDict, Field

from src.models.session import ConfidenceRecord
from src.utils.errors import ValidationError
from src.utils.logging import get_logger

if TYPE_CHECKING:
    from src.config.settings import Settings


class DiminishingReturnsPolicy(BaseModel):
    """When further interactive rounds stop paying off.

    Plateaued when at least ``window_rounds`` interactive rounds exist and
    the gain over the last ``window_rounds`` is below
    ``min_cumulative_gain``, or once ``max_rounds`` rounds have run.
    """

    model_config = ConfigDict(frozen=True)

    window_rounds: int = Field(default=3, ge=1)
    min_cumulative_gain: float = Field(default=0.05, ge=0.0)
    max_rounds: int = Field(default=5, ge=1)

    @classmethod
    def from_settings(cls, settings: Settings) -> DiminishingReturnsPolicy:
        return cls(
            window_rounds=settings.plateau_window_rounds,
            min_cumulative_gain=settings.plateau_min_cumulative_gain,
            max_rounds=settings.max_interactive_rounds,
        )


class ConfidenceTracker:
    """In-memory, append-only ledger of :class:`ConfidenceRecord` entries."""

    def __init__(self) -> None:
        self._ledger: dict[str, list[ConfidenceRecord]] = {}
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record(
        self,
        key: str,
        confidence: float,
        reason: str,
        *,
        round: int = 0,
        component_scores: dict[str, float] | None = None,
    ) -> ConfidenceRecord:
        """Append one entry and return it.

        Raises
        ------
        ValidationError
            If *confidence* is not a finite number in [0, 1], or *round*
            is negative or earlier than the last recorded round.
        """
        if not isinstance(confidence, (int, float)) or math.isnan(confidence):
            raise ValidationError(message=f"confidence must be a number, got {confidence!r}")
        if not 0.0 <= confidence <= 1.0:
            raise ValidationError(message=f"confidence {confidence} is outside [0, 1]")
        if round < 0:
            raise ValidationError(message=f"round must be >= 0, got {round}")

        entries = self._ledger.setdefault(key, [])
        if entries and round < entries[-1].round:
            raise ValidationError(
                message=f"round {round} recorded after round {entries[-1].round} for '{key}'"
            )

        previous = self._previous_round_value(entries, round)
        regression = round > 0 and previous is not None and confidence < previous

        entry = ConfidenceRecord(
            overall_confidence=float(confidence),
            reason=reason,
            round=round,
            component_scores=dict(component_scores or {}),
            regression=regression,
        )
        entries.append(entry)

        if regression:
            self._logger.error(
                "confidence_regression",
                key=key,
                round=round,
                previous=round_to(previous),
                current=round_to(confidence),
                reason=reason,
            )
        else:
            self._logger.debug(
                "confidence_recorded",
                key=key,
                round=round,
                confidence=round_to(confidence),
                reason=reason,
            )
        return entry

    def seed(self, key: str, records: list[ConfidenceRecord]) -> None:
        """Restore a ledger from persisted records if none is held yet.

        Used after a restart, when a session's history lives only in the
        session store.
        """
        if key not in self._ledger and records:
            self._ledger[key] = list(records)

    def forget(self, key: str) -> None:
        self._ledger.pop(key, None)

    def __len__(self) -> int:
        return len(self._ledger)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def history(self, key: str) -> list[ConfidenceRecord]:
        return list(self._ledger.get(key, []))

    def latest(self, key: str) -> ConfidenceRecord | None:
        entries = self._ledger.get(key)
        return entries[-1] if entries else None

    def round_values(self, key: str) -> dict[int, float]:
        """Last recorded confidence of each round, in round order."""
        values: dict[int, float] = {}
        for entry in self._ledger.get(key, []):
            values[entry.round] = entry.overall_confidence
        return values

    def delta_since_last_round(self, key: str) -> float:
        """Latest round's last value minus the previous round's last value."""
        values = list(self.round_values(key).values())
        if len(values) < 2:
            return 0.0
        return values[-1] - values[-2]

    def is_non_decreasing(self, key: str) -> bool:
        values = list(self.round_values(key).values())
        return all(later >= earlier for earlier, later in zip(values, values[1:]))

    def has_regression(self, key: str) -> bool:
        return any(entry.regression for entry in self._ledger.get(key, []))

    def is_plateaued(self, key: str, policy: DiminishingReturnsPolicy) -> bool:
        """Whether another interactive round is unlikely to help."""
        values = self.round_values(key)
        interactive = [r for r in values if r > 0]
        if len(interactive) >= policy.max_rounds:
            return True
        if len(interactive) < policy.window_rounds:
            return False

        ordered = list(values.values())
        window_end = ordered[-1]
        # Value just before the window; round 0 when the window covers
        # every interactive round.
        baseline_index = len(ordered) - policy.window_rounds - 1
        if baseline_index < 0:
            return False
        gain = window_end - ordered[baseline_index]
        return gain < policy.min_cumulative_gain

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _previous_round_value(entries: list[ConfidenceRecord], round: int) -> float | None:
        for entry in reversed(entries):
            if entry.round < round:
                return entry.overall_confidence
        return None


def round_to(value: float | None, digits: int = 4) -> float | None:
    return None if value is None else round(value, digits)
