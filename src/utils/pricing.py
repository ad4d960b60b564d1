"""Price helpers.

All money in the system is whole US dollars.  Model-produced estimates
come back with false precision ("$4,137"), so they are rounded to the
granularity an appraiser would quote before anyone sees them.
"""

from __future__ import annotations

from typing import Any

# (upper bound exclusive, rounding step)
_ROUNDING_STEPS: tuple[tuple[int, int], ...] = (
    (100, 10),
    (1_000, 50),
    (10_000, 100),
    (100_000, 500),
)
_TOP_STEP = 1_000


def humanize_price(amount: float) -> int:
    """Round a dollar amount to a human-sounding figure.

    Under $100 rounds to the nearest $10, under $1,000 to $50, under
    $10,000 to $100, under $100,000 to $500, anything larger to $1,000.
    Negative amounts are treated as zero.
    """
    if amount <= 0:
        return 0
    step = _TOP_STEP
    for bound, candidate in _ROUNDING_STEPS:
        if amount < bound:
            step = candidate
            break
    rounded = int(round(amount / step) * step)
    # Never round a real, positive estimate down to nothing.
    return max(rounded, step if amount >= step / 2 else int(round(amount)))


def coerce_price(value: Any) -> int | None:
    """Parse a model-supplied price (number or "$1,250" string) into dollars."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if value >= 0 else None
    if isinstance(value, str):
        cleaned = value.replace("$", "").replace(",", "").strip()
        try:
            number = float(cleaned)
        except ValueError:
            return None
        return int(number) if number >= 0 else None
    return None
