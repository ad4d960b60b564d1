"""Custom exception hierarchy for VintageVision.

All application exceptions inherit from :class:`VintageVisionError`, which
carries an optional ``provider_name`` so error handlers can identify which
external service (e.g. "openai", "anthropic", "sqlite") caused the failure.

The hierarchy is organized by how callers are expected to react:

    VintageVisionError  (base -- catch-all for any application error)
    +-- ValidationError          (malformed caller input -> 4xx)
    +-- NotFoundError            (unknown analysis / session / need id)
    +-- SessionStateError        (operation invalid for the session's status)
    +-- ExternalServiceError     (inference service down or exhausted retries)
    |   +-- InferenceError       (a single inference call failed)
    |   +-- StageTimeoutError    (a stage exceeded its time budget)
    +-- ParseError               (inference output failed schema validation)
    +-- AnalysisCancelledError   (caller went away mid-run)
    +-- ConfigurationError       (startup / missing config)

Retry logic keys off this tree: ExternalServiceError and ParseError are
retryable inside a stage, everything else propagates immediately.
"""


class VintageVisionError(Exception):
    """Base exception for all VintageVision errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which external service triggered the
    error.  The ``__str__`` method prefixes the provider name in brackets
    for structured log output, e.g. ``[openai] Rate limit exceeded``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Caller errors
# ---------------------------------------------------------------------------

class ValidationError(VintageVisionError):
    """Raised for malformed request input (bad image reference, wrong need id type)."""

    def __init__(
        self,
        message: str = "Invalid request",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class NotFoundError(VintageVisionError):
    """Raised when an analysis, session, need, or ground-truth item does not exist."""

    def __init__(
        self,
        message: str = "Resource not found",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class SessionStateError(VintageVisionError):
    """Raised when an operation is not allowed in the session's current status.

    The session is left exactly as it was before the call.
    """

    def __init__(
        self,
        message: str = "Operation not allowed in the current session state",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# External service errors
# ---------------------------------------------------------------------------

class ExternalServiceError(VintageVisionError):
    """Raised when the inference service is unavailable or retries are exhausted.

    Fatal for the current run when raised out of the triage stage.
    """

    def __init__(
        self,
        message: str = "External service is unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class InferenceError(ExternalServiceError):
    """Raised by vision client adapters when a single inference call fails."""

    def __init__(
        self,
        message: str = "Inference call failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class StageTimeoutError(ExternalServiceError):
    """Raised when a pipeline stage exceeds its time budget.

    Treated as a retryable :class:`ExternalServiceError` up to the retry bound.
    """

    def __init__(
        self,
        message: str = "Stage timed out",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ParseError(VintageVisionError):
    """Raised when inference output cannot be parsed or fails schema validation."""

    def __init__(
        self,
        message: str = "Could not parse inference output",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Orchestration / configuration errors
# ---------------------------------------------------------------------------

class AnalysisCancelledError(VintageVisionError):
    """Raised when a run is cancelled between stages (e.g. the stream client left)."""

    def __init__(
        self,
        message: str = "Analysis was cancelled",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConfigurationError(VintageVisionError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
