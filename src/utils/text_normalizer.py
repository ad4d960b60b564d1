"""Text normalization utilities for item names, makers, and model output.

This module handles three distinct normalization concerns:

1. **Match normalization** -- Lowercases, turns dashes into spaces, ``&``
   into ``and``, strips punctuation, and collapses whitespace so that
   "Currier & Ives - Central Park" and "currier and ives central park"
   compare equal.  Used by the scoring engine and maker matching.

2. **Similarity** -- Normalized Levenshtein similarity and keyword
   overlap via rapidfuzz, both on a 0.0--1.0 scale.

3. **Label repair** -- ``fuzzy_match`` snaps slightly-off enum labels from
   model output (e.g. "ceramic", "jewellery") onto the closest allowed
   value before the stage schema rejects them.
"""

import re
import unicodedata

from rapidfuzz import fuzz, process
from rapidfuzz.distance import Levenshtein

_DASHES_RE = re.compile(r"[‐-―\-_/]+")
_PUNCT_RE = re.compile(r"[^\w\s]")
_WS_RE = re.compile(r"\s+")


def normalize_for_match(text: str | None) -> str:
    """Normalize a name for equality and similarity comparisons.

    Args:
        text: Raw name string (may be ``None``).

    Returns:
        Lowercased, punctuation-free, single-spaced string ("" for None).
    """
    if not text:
        return ""
    # Fold accents so "Nymphéas" and "Nympheas" compare equal.
    folded = unicodedata.normalize("NFKD", text)
    folded = "".join(ch for ch in folded if not unicodedata.combining(ch))
    normalized = folded.lower()
    normalized = _DASHES_RE.sub(" ", normalized)
    normalized = normalized.replace("&", " and ")
    normalized = _PUNCT_RE.sub("", normalized)
    return _WS_RE.sub(" ", normalized).strip()


def string_similarity(a: str | None, b: str | None) -> float:
    """Return the normalized Levenshtein similarity of two names (0.0--1.0).

    Both inputs are passed through :func:`normalize_for_match` first.
    Two empty strings are considered dissimilar (0.0).
    """
    left = normalize_for_match(a)
    right = normalize_for_match(b)
    if not left or not right:
        return 0.0
    return float(Levenshtein.normalized_similarity(left, right))


def token_jaccard(a: str | None, b: str | None, min_length: int = 3) -> float:
    """Jaccard overlap of the words of two names, ignoring short words.

    "Gorham Sterling Silver Tea Set" and "Gorham Silver Tea Service" share
    three of six distinct words (0.5).  Returns 0.0 if either side has no
    usable words.
    """
    left = {w for w in normalize_for_match(a).split() if len(w) >= min_length}
    right = {w for w in normalize_for_match(b).split() if len(w) >= min_length}
    if not left or not right:
        return 0.0
    return len(left & right) / len(left | right)


def keyword_overlap_ratio(text: str | None, keywords: list[str]) -> float:
    """Fraction of *keywords* found (case-insensitive substring) in *text*.

    Args:
        text: The produced name.
        keywords: Expected keywords; blanks are ignored.

    Returns:
        Ratio in [0.0, 1.0]; 0.0 when there are no usable keywords.
    """
    usable = [k for k in (normalize_for_match(k) for k in keywords) if k]
    if not usable:
        return 0.0
    haystack = normalize_for_match(text)
    if not haystack:
        return 0.0
    hits = sum(1 for keyword in usable if keyword in haystack)
    return hits / len(usable)


def contains_phrase(text: str | None, phrase: str | None) -> bool:
    """Return ``True`` if *phrase* appears in *text* on word boundaries."""
    haystack = normalize_for_match(text)
    needle = normalize_for_match(phrase)
    if not haystack or not needle:
        return False
    return re.search(rf"\b{re.escape(needle)}\b", haystack) is not None


def mentions_any(text: str | None, words: list[str]) -> bool:
    """Return ``True`` if any of *words* occurs in *text* (case-insensitive)."""
    haystack = normalize_for_match(text)
    return any(normalize_for_match(word) in haystack for word in words if word)


def fuzzy_match(
    query: str,
    candidates: list[str],
    threshold: float = 0.8,
) -> tuple[str, float] | None:
    """Find the best fuzzy match for a query among candidates.

    Uses rapidfuzz ``token_sort_ratio`` which sorts tokens alphabetically
    before comparing, so word order does not matter.

    Args:
        query: The string to match.
        candidates: List of candidate strings to match against.
        threshold: Minimum similarity score (0.0--1.0) to accept a match.

    Returns:
        A (best_match, score) tuple if a match meets the threshold, else None.
    """
    if not candidates or not query:
        return None

    result = process.extractOne(
        query.lower(),
        candidates,
        scorer=fuzz.token_sort_ratio,
        score_cutoff=threshold * 100,  # rapidfuzz works on a 0-100 scale
    )
    if result is None:
        return None

    match, score, _index = result
    return match, score / 100.0
