"""Utility modules for VintageVision.

Available utility modules (all re-exported here for convenience):

- **confidence** -- clamping, penalty degradation and human-readable
  levels for the ``[0, 1]`` confidence values used everywhere.
- **errors** -- Domain-specific exception hierarchy rooted at
  VintageVisionError; retry and HTTP mapping key off its subclasses.
- **concurrency** -- rate-limit gate shared by evaluation workers and
  per-key asyncio locks for interactive sessions.
- **json_repair** -- fence stripping and truncation repair for model JSON.
- **logging** -- structlog setup with a dual-renderer pattern: coloured
  console output in development, structured JSON in production.
- **pricing** -- appraiser-style rounding of dollar estimates.
- **text_normalizer** -- name normalization and rapidfuzz similarity used
  by the scoring engine and by enum-label repair.
"""

# -- Confidence helpers -----------------------------------------------------
from src.utils.confidence import (
    ConfidenceLevel,
    apply_penalties,
    clamp_confidence,
    confidence_to_level,
)

# -- Async concurrency helpers ---------------------------------------------
from src.utils.concurrency import KeyedLocks, RateLimitGate

# -- Domain exception hierarchy --------------------------------------------
from src.utils.errors import (
    AnalysisCancelledError,
    ConfigurationError,
    ExternalServiceError,
    InferenceError,
    NotFoundError,
    ParseError,
    SessionStateError,
    StageTimeoutError,
    ValidationError,
    VintageVisionError,
)

# -- Model output parsing ---------------------------------------------------
from src.utils.json_repair import parse_model_json

# -- Structured logging setup ----------------------------------------------
from src.utils.logging import configure_logging, get_logger

# -- Prices -------------------------------------------------------------------
from src.utils.pricing import coerce_price, humanize_price

# -- Text normalization -------------------------------------------------------
from src.utils.text_normalizer import (
    fuzzy_match,
    keyword_overlap_ratio,
    normalize_for_match,
    string_similarity,
)

__all__ = [
    "AnalysisCancelledError",
    "ConfidenceLevel",
    "ConfigurationError",
    "ExternalServiceError",
    "InferenceError",
    "KeyedLocks",
    "NotFoundError",
    "ParseError",
    "RateLimitGate",
    "SessionStateError",
    "StageTimeoutError",
    "ValidationError",
    "VintageVisionError",
    "apply_penalties",
    "clamp_confidence",
    "coerce_price",
    "confidence_to_level",
    "configure_logging",
    "fuzzy_match",
    "get_logger",
    "humanize_price",
    "keyword_overlap_ratio",
    "normalize_for_match",
    "parse_model_json",
    "string_similarity",
]
