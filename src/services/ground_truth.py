"""Packaged ground-truth corpus for the evaluation harness.

Fifty curated items with known identifications, shipped as
``src/data/ground_truth.yaml``.  The file is parsed once and validated
into frozen :class:`GroundTruthItem` models; callers get the same tuple
on every call.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

import yaml

from src.models.analysis import DomainExpert
from src.models.evaluation import Difficulty, GroundTruthItem
from src.utils.errors import ConfigurationError, NotFoundError

GROUND_TRUTH_PATH = Path(__file__).resolve().parent.parent / "data" / "ground_truth.yaml"

# One item from each of five domains.
SMOKE_TEST_IDS: tuple[str, ...] = (
    "furn-001",  # Eames lounge chair
    "ceram-003",  # Roseville
    "jwl-001",  # Rolex Submariner
    "art-001",  # Starry Night
    "silv-003",  # silverplated advertising spoon
)


def load_ground_truth(path: str | Path | None = None) -> tuple[GroundTruthItem, ...]:
    """Return the ground-truth items (cached for the packaged file).

    Raises
    ------
    ConfigurationError
        If the file is missing or does not hold a list of valid items.
    """
    if path is None:
        return _load_packaged()
    return _load(Path(path))


@lru_cache(maxsize=1)
def _load_packaged() -> tuple[GroundTruthItem, ...]:
    return _load(GROUND_TRUTH_PATH)


def _load(path: Path) -> tuple[GroundTruthItem, ...]:
    try:
        with path.open(encoding="utf-8") as fh:
            raw = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(message=f"Cannot read ground truth at {path}: {exc}") from exc

    if not isinstance(raw, list):
        raise ConfigurationError(message=f"Ground truth at {path} must be a list of items")

    try:
        items = tuple(GroundTruthItem.model_validate(entry) for entry in raw)
    except ValueError as exc:
        raise ConfigurationError(message=f"Invalid ground truth entry in {path}: {exc}") from exc

    ids = [item.id for item in items]
    if len(ids) != len(set(ids)):
        raise ConfigurationError(message=f"Duplicate ground truth ids in {path}")
    return items


def get_item(item_id: str, items: tuple[GroundTruthItem, ...] | None = None) -> GroundTruthItem:
    """Return the item with *item_id* or raise NotFoundError."""
    for item in items if items is not None else load_ground_truth():
        if item.id == item_id:
            return item
    raise NotFoundError(message=f"Ground truth item '{item_id}' not found")


def smoke_items(items: tuple[GroundTruthItem, ...] | None = None) -> list[GroundTruthItem]:
    """The smoke-test subset, in SMOKE_TEST_IDS order."""
    return [get_item(item_id, items) for item_id in SMOKE_TEST_IDS]


def filter_items(
    items: tuple[GroundTruthItem, ...] | None = None,
    domain: DomainExpert | None = None,
    difficulty: Difficulty | None = None,
) -> list[GroundTruthItem]:
    """Subset of the corpus by domain and/or difficulty."""
    pool = items if items is not None else load_ground_truth()
    return [
        item
        for item in pool
        if (domain is None or item.expected.domain == domain)
        and (difficulty is None or item.difficulty == difficulty)
    ]
