"""Run progress tracking with callback-based listener notification.

Tracks the latest progress for each analysis run and broadcasts
:class:`ProgressEvent` objects to registered listener callbacks.  Listeners
are keyed by analysis ID so concurrent runs never see each other's events.

# ─── HOW PROGRESS TRACKING WORKS (Junior Developer Guide) ─────────────
#
# This implements the Observer pattern:
#
#   Pipeline ──emit()──→ ProgressTracker ──callback(event)──→ SSE stream
#                                                          ──→ CLI printer
#
# Data flow:
#   1. The orchestrator calls tracker.emit(analysis_id, type, ...)
#   2. ProgressTracker clamps progress to [0, 100] and never lets it go
#      backwards within a run
#   3. It builds a ProgressEvent and calls every registered listener
#   4. The SSE route (registered as a listener) pushes it to the client
#
# Key design decisions:
#   - Listeners are keyed by analysis_id → no cross-talk between runs
#   - Listener errors are caught and logged → one broken listener can't
#     abort the pipeline or starve other listeners
#   - Both sync and async callbacks are supported (asyncio.iscoroutine check)
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog

from src.models.analysis import ProgressEvent, StageName, StreamEventType
from src.utils.logging import get_logger


@dataclass
class _RunStatus:
    """Internal snapshot of a single run's progress.

    A plain mutable dataclass: internal-only, never serialized.
    """

    stage: StageName | None = None
    progress: float = 0.0
    message: str = ""
    finished: bool = False


class ProgressTracker:
    """Tracks and broadcasts run progress via callbacks.

    Each run is identified by its ``analysis_id``.  External consumers
    (the SSE route, the CLI) register callbacks that receive every
    :class:`ProgressEvent` emitted for that run.
    """

    def __init__(self) -> None:
        self._statuses: dict[str, _RunStatus] = {}
        self._listeners: dict[str, list[Callable]] = {}
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def emit(
        self,
        analysis_id: str,
        event_type: StreamEventType,
        progress: float,
        message: str,
        stage: StageName | None = None,
        data: dict[str, Any] | None = None,
    ) -> ProgressEvent:
        """Record a progress update and notify all registered listeners.

        Parameters
        ----------
        analysis_id:
            The run to update.
        event_type:
            ``stage:start``, ``stage:complete``, ``complete`` or ``error``.
        progress:
            Completion percentage; clamped to 0-100 and to the previous
            value for this run so it never decreases.
        message:
            Human-readable status message.
        stage:
            The stage the event belongs to, if any.
        data:
            Event payload (stage summary, full outcome, or error detail).
        """
        status = self._statuses.setdefault(analysis_id, _RunStatus())
        progress = max(status.progress, max(0.0, min(100.0, progress)))

        status.stage = stage or status.stage
        status.progress = progress
        status.message = message
        if event_type in (StreamEventType.COMPLETE, StreamEventType.ERROR):
            status.finished = True

        event = ProgressEvent(
            type=event_type,
            analysis_id=analysis_id,
            stage=stage,
            message=message,
            progress=progress,
            data=data or {},
        )

        self._logger.debug(
            "progress_update",
            analysis_id=analysis_id,
            event_type=event_type.value,
            stage=stage.value if stage else None,
            progress=round(progress, 1),
        )

        await self._notify_listeners(analysis_id, event)
        return event

    def register_listener(self, analysis_id: str, callback: Callable) -> None:
        """Register a callback to receive events for a run.

        Parameters
        ----------
        analysis_id:
            The run to listen to.
        callback:
            An async or sync callable accepting one :class:`ProgressEvent`.
        """
        listeners = self._listeners.setdefault(analysis_id, [])
        if callback not in listeners:
            listeners.append(callback)
            self._logger.debug(
                "listener_registered",
                analysis_id=analysis_id,
                total_listeners=len(listeners),
            )

    def unregister_listener(self, analysis_id: str, callback: Callable) -> None:
        """Remove a previously registered callback for a run."""
        listeners = self._listeners.get(analysis_id, [])
        if callback in listeners:
            listeners.remove(callback)
        if not listeners:
            self._listeners.pop(analysis_id, None)

    def get_status(self, analysis_id: str) -> dict:
        """Return the current stage and progress for a run.

        Returns
        -------
        dict
            Keys: ``stage``, ``progress``, ``message``, ``finished``.
            Zeroed defaults when the run has not been tracked.
        """
        status = self._statuses.get(analysis_id)
        if status is None:
            return {"stage": None, "progress": 0.0, "message": "", "finished": False}
        return {
            "stage": status.stage.value if status.stage else None,
            "progress": status.progress,
            "message": status.message,
            "finished": status.finished,
        }

    def forget(self, analysis_id: str) -> None:
        """Drop all state for a finished run."""
        self._statuses.pop(analysis_id, None)
        self._listeners.pop(analysis_id, None)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _notify_listeners(self, analysis_id: str, event: ProgressEvent) -> None:
        """Invoke all registered listeners for a run.

        Listeners that raise are logged and skipped so a disconnected
        stream cannot block the run.
        """
        for callback in list(self._listeners.get(analysis_id, [])):
            try:
                result = callback(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                self._logger.warning(
                    "listener_callback_error",
                    analysis_id=analysis_id,
                    error=str(exc),
                    callback=getattr(callback, "__name__", repr(callback)),
                )
