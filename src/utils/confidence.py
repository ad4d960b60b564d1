"""Confidence helpers shared by the pipeline and the session manager.

Every confidence value in the system lives in ``[0.0, 1.0]``.  This module
provides the three operations used everywhere those values are touched:

1. **clamp_confidence** -- coerce any number (or junk from a model
   response) into the valid range.
2. **apply_penalties** -- multiplicative degradation used when a stage
   could not be completed or a field had to be defaulted.  Penalties only
   ever lower a value; the orchestrator never raises confidence.
3. **confidence_to_level** -- maps a score to a human-readable tier used
   by session greetings and API responses.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any


class ConfidenceLevel(str, Enum):  # noqa: UP042
    """Human-readable confidence tiers."""

    VERY_LOW = "very_low"    # < 0.4 -- little more than a category guess
    LOW = "low"              # 0.4 - 0.6
    MEDIUM = "medium"        # 0.6 - 0.75
    HIGH = "high"            # 0.75 - 0.9
    VERY_HIGH = "very_high"  # >= 0.9 -- marks and form agree


def clamp_confidence(value: Any, default: float = 0.0) -> float:
    """Return *value* as a float clamped to ``[0.0, 1.0]``.

    Percentages (values in ``(1, 100]``) are rescaled, since vision models
    occasionally answer ``85`` instead of ``0.85``.  Anything that is not a
    finite number yields *default*.
    """
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number) or math.isinf(number):
        return default
    if 1.0 < number <= 100.0:
        number = number / 100.0
    return max(0.0, min(1.0, number))


def apply_penalties(confidence: float, penalties: list[float]) -> float:
    """Multiply *confidence* by each penalty factor (each in ``[0, 1]``).

    Args:
        confidence: Starting confidence in [0.0, 1.0].
        penalties: Multiplicative factors, e.g. ``[0.85, 0.95]``.

    Returns:
        The degraded confidence, clamped to [0.0, 1.0] and never higher
        than the input.
    """
    result = clamp_confidence(confidence)
    for factor in penalties:
        result *= max(0.0, min(1.0, factor))
    return max(0.0, min(clamp_confidence(confidence), result))


def confidence_to_level(score: float) -> ConfidenceLevel:
    """Map a numeric confidence score to a human-readable level.

    Args:
        score: Confidence score in [0.0, 1.0].

    Returns:
        Corresponding ConfidenceLevel enum member.
    """
    if score >= 0.9:
        return ConfidenceLevel.VERY_HIGH
    if score >= 0.75:
        return ConfidenceLevel.HIGH
    if score >= 0.6:
        return ConfidenceLevel.MEDIUM
    if score >= 0.4:
        return ConfidenceLevel.LOW
    return ConfidenceLevel.VERY_LOW
