"""Offline evaluation harness: runs the pipeline against the ground-truth corpus.

# ─── DESIGN ────────────────────────────────────────────────────────────
#
# EvaluationHarness drives the AnalysisPipeline over GroundTruthItems with:
#   - a bounded worker pool (``concurrency`` workers over an asyncio.Queue)
#   - one RateLimitGate shared by every worker, so the pool never bursts
#     past the inference provider's requests-per-minute budget
#   - a per-item timeout (asyncio.wait_for around the whole run)
#   - per-item error isolation: any failure becomes a zero ScoreResult
#     carrying the reason, and the batch carries on
#   - cooperative cancellation: once ``cancel_event`` is set workers stop
#     taking new items; items already in flight finish and are recorded
#
# The harness treats the pipeline as a pure collaborator.  Scoring is done
# by src/services/scoring.py and aggregation by evaluation_report.py.
# When an InsightService is injected, low-scoring components of every
# scored item are fed back as ground-truth feedback.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable
from datetime import datetime, timezone

import structlog

from src.models.analysis import AnalysisOutcome, AnalysisRequest
from src.models.evaluation import EvaluationMode, EvaluationReport, GroundTruthItem, ScoreResult
from src.pipeline.orchestrator import AnalysisPipeline
from src.services.evaluation_report import PASS_THRESHOLD, build_report
from src.services.ground_truth import get_item, load_ground_truth, smoke_items
from src.services.insight_service import InsightService
from src.services.scoring import error_result, score_outcome
from src.utils.concurrency import RateLimitGate
from src.utils.logging import get_logger


class EvaluationHarness:
    """Scores the pipeline against ground truth.

    Parameters
    ----------
    pipeline:
        The shared AnalysisPipeline.
    concurrency:
        Number of workers pulling items off the queue.
    rate_gate:
        Gate awaited before every item starts.  One gate should be shared
        by everything that drives inference from this process.
    item_timeout:
        Seconds allowed for one item's full pipeline run.
    insight_service:
        Optional self-learning sink for low-scoring components.
    pass_threshold:
        Composite score counted as a pass in the report.
    """

    def __init__(
        self,
        pipeline: AnalysisPipeline,
        *,
        concurrency: int = 3,
        rate_gate: RateLimitGate | None = None,
        item_timeout: float = 300.0,
        insight_service: InsightService | None = None,
        pass_threshold: float = PASS_THRESHOLD,
    ) -> None:
        self._pipeline = pipeline
        self._concurrency = max(1, concurrency)
        self._rate_gate = rate_gate or RateLimitGate(requests_per_minute=0)
        self._item_timeout = item_timeout
        self._insights = insight_service
        self._pass_threshold = pass_threshold
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run_full(
        self,
        items: Iterable[GroundTruthItem] | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> EvaluationReport:
        """Evaluate every item (the whole packaged corpus by default)."""
        if items is None:
            corpus = list(load_ground_truth())
            return await self._run_batch(corpus, EvaluationMode.FULL, cancel_event)
        return await self._run_batch(list(items), EvaluationMode.CUSTOM, cancel_event)

    async def run_smoke(
        self,
        sample: Iterable[GroundTruthItem] | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> EvaluationReport:
        """Evaluate the five-item smoke sample."""
        pool = list(sample) if sample is not None else smoke_items()
        return await self._run_batch(pool, EvaluationMode.SMOKE, cancel_event)

    async def run_single(self, item: GroundTruthItem) -> ScoreResult:
        """Evaluate one item; failures come back as a zero-score result."""
        return await self._evaluate(item)

    async def run_by_id(self, item_id: str) -> ScoreResult:
        """Evaluate the packaged item *item_id* (NotFoundError if unknown)."""
        return await self._evaluate(get_item(item_id))

    # ------------------------------------------------------------------
    # Worker pool
    # ------------------------------------------------------------------

    async def _run_batch(
        self,
        items: list[GroundTruthItem],
        mode: EvaluationMode,
        cancel_event: asyncio.Event | None,
    ) -> EvaluationReport:
        started_at = datetime.now(tz=timezone.utc)  # noqa: UP017
        queue: asyncio.Queue[GroundTruthItem] = asyncio.Queue()
        for item in items:
            queue.put_nowait(item)

        results: list[ScoreResult] = []
        workers = min(self._concurrency, len(items))
        self._logger.info(
            "evaluation_started", mode=mode.value, items=len(items), workers=workers
        )

        async def worker(worker_id: int) -> None:
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    return
                try:
                    item = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                result = await self._evaluate(item)
                results.append(result)
                self._logger.debug(
                    "evaluation_progress",
                    worker=worker_id,
                    done=len(results),
                    total=len(items),
                )

        await asyncio.gather(*(worker(i) for i in range(workers)))

        cancelled = cancel_event is not None and cancel_event.is_set()
        if cancelled:
            self._logger.info(
                "evaluation_cancelled", completed=len(results), skipped=queue.qsize()
            )

        report = build_report(
            results,
            mode=mode,
            started_at=started_at,
            finished_at=datetime.now(tz=timezone.utc),  # noqa: UP017
            total_items=len(items),
            cancelled=cancelled,
            pass_threshold=self._pass_threshold,
        )
        self._logger.info(
            "evaluation_finished",
            run_id=report.run_id,
            mode=mode.value,
            scored=report.scored_items,
            failed=report.failed_items,
            mean_score=report.mean_score,
            pass_rate=report.pass_rate,
            cancelled=cancelled,
        )
        return report

    async def _evaluate(self, item: GroundTruthItem) -> ScoreResult:
        started = time.monotonic()
        try:
            await self._rate_gate.wait()
            request = AnalysisRequest(images=[item.image_ref])
            outcome = await asyncio.wait_for(
                self._pipeline.run(request), timeout=self._item_timeout
            )
        except asyncio.TimeoutError:
            elapsed = time.monotonic() - started
            self._logger.warning(
                "evaluation_item_failed",
                item_id=item.id,
                error_type="timeout",
                timeout_s=self._item_timeout,
            )
            return error_result(item, f"Timed out after {self._item_timeout:g}s", elapsed)
        except Exception as exc:
            elapsed = time.monotonic() - started
            self._logger.warning(
                "evaluation_item_failed",
                item_id=item.id,
                error_type=type(exc).__name__,
                error=str(exc)[:300],
            )
            return error_result(item, f"{type(exc).__name__}: {exc}", elapsed)

        result = score_outcome(item, outcome, time.monotonic() - started)
        self._pipeline.confidence_tracker.forget(outcome.analysis_id)
        self._logger.info(
            "evaluation_item_scored",
            item_id=item.id,
            score=result.overall_score,
            failures=result.failures,
        )
        await self._record_feedback(item, result, outcome)
        return result

    async def _record_feedback(
        self, item: GroundTruthItem, result: ScoreResult, outcome: AnalysisOutcome
    ) -> None:
        if self._insights is None:
            return
        # The score stands even when the learning store is unavailable.
        try:
            await self._insights.record_ground_truth(item, result, outcome)
        except Exception as exc:
            self._logger.warning(
                "insight_feedback_failed",
                item_id=item.id,
                error_type=type(exc).__name__,
                error=str(exc)[:300],
            )
