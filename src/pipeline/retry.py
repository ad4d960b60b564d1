"""Bounded retry with exponential backoff and a per-attempt timeout.

Every pipeline stage runs through one :class:`RetryPolicy`.  Each attempt
is wrapped in ``asyncio.wait_for`` so a hung inference call is turned into
a :class:`StageTimeoutError` and retried like any other transient failure.

Retried: ExternalServiceError (and its InferenceError / StageTimeoutError
subclasses) and ParseError.  Anything else propagates immediately.  After
the last attempt the final error is re-raised unchanged; the caller decides
whether that is fatal (triage) or degrades the stage.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypeVar

import structlog

from src.utils.errors import ExternalServiceError, ParseError, StageTimeoutError
from src.utils.logging import get_logger

if TYPE_CHECKING:
    from src.config.settings import Settings

T = TypeVar("T")

RETRYABLE_ERRORS: tuple[type[Exception], ...] = (ExternalServiceError, ParseError)


class RetryPolicy:
    """Attempt budget, backoff schedule and timeout for one stage call.

    Parameters
    ----------
    max_attempts:
        Total attempts including the first.  Must be at least 1.
    base_delay:
        Backoff before the second attempt, in seconds.  Doubles per attempt.
    max_delay:
        Upper bound on any single backoff.
    timeout:
        Per-attempt timeout in seconds.  ``None`` disables it.
    sleep:
        Injected sleep coroutine; tests pass a no-op to skip real backoff.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 8.0,
        timeout: float | None = 60.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = max(0.0, base_delay)
        self.max_delay = max(0.0, max_delay)
        self.timeout = timeout
        self._sleep = sleep
        self._logger: structlog.BoundLogger = get_logger(__name__)

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_attempts=settings.stage_max_attempts,
            base_delay=settings.stage_backoff_base_seconds,
            max_delay=settings.stage_backoff_max_seconds,
            timeout=settings.stage_timeout_seconds,
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff to wait after failed *attempt* (1-based)."""
        return min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        label: str = "operation",
    ) -> tuple[T, int]:
        """Run *operation* until it succeeds or the attempt budget is spent.

        Returns
        -------
        tuple
            ``(result, attempts_used)``.

        Raises
        ------
        ExternalServiceError, ParseError
            The last retryable error once every attempt has failed.
        """
        last_error: Exception | None = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                result = await self._attempt(operation, label)
                return result, attempt
            except RETRYABLE_ERRORS as exc:
                last_error = exc
                if attempt >= self.max_attempts:
                    break
                delay = self.delay_for(attempt)
                self._logger.warning(
                    "stage_retry",
                    label=label,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    backoff_s=round(delay, 2),
                    error=str(exc)[:200],
                )
                await self._sleep(delay)

        self._logger.error(
            "stage_retries_exhausted",
            label=label,
            attempts=self.max_attempts,
            error=str(last_error)[:200],
        )
        assert last_error is not None
        raise last_error

    async def _attempt(self, operation: Callable[[], Awaitable[T]], label: str) -> T:
        if self.timeout is None:
            return await operation()
        try:
            return await asyncio.wait_for(operation(), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise StageTimeoutError(
                message=f"{label} exceeded {self.timeout:.0f}s timeout",
            ) from exc
