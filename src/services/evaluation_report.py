"""Aggregation and text rendering of evaluation results.

:func:`build_report` turns a list of :class:`ScoreResult` objects into an
:class:`EvaluationReport`: summary statistics, the score-band histogram,
per-domain breakdown, clustered failure patterns and a short list of
improvement priorities.  :func:`format_report` renders the report as the
fixed-width text block the CLI prints.
"""

from __future__ import annotations

import statistics
from collections import defaultdict
from datetime import datetime

from src.models.analysis import DomainExpert
from src.models.evaluation import (
    CategoryBreakdown,
    EvaluationMode,
    EvaluationReport,
    FailurePattern,
    ScoreBand,
    ScoreResult,
)
from src.services.scoring import MAKER_FAILURE, NAME_FAILURE, VALUE_FAILURE

PASS_THRESHOLD = 75.0
_WEAK_CATEGORY_THRESHOLD = 70.0
_WEAK_COMPONENT_THRESHOLD = 0.7
_DIFFICULTY_FAILING_THRESHOLD = 60.0
_MAX_PATTERNS = 10

_RULE = "=" * 80


def build_report(
    results: list[ScoreResult],
    *,
    mode: EvaluationMode,
    started_at: datetime,
    finished_at: datetime,
    total_items: int,
    cancelled: bool = False,
    pass_threshold: float = PASS_THRESHOLD,
) -> EvaluationReport:
    """Aggregate *results* into an immutable report."""
    scores = [r.overall_score for r in results]
    histogram = {band: 0 for band in ScoreBand}
    for result in results:
        histogram[result.band] += 1

    return EvaluationReport(
        mode=mode,
        started_at=started_at,
        finished_at=finished_at,
        duration_seconds=round((finished_at - started_at).total_seconds(), 3),
        total_items=total_items,
        scored_items=sum(1 for r in results if not r.is_error),
        failed_items=sum(1 for r in results if r.is_error),
        cancelled=cancelled,
        mean_score=round(statistics.fmean(scores), 2) if scores else 0.0,
        median_score=round(statistics.median(scores), 2) if scores else 0.0,
        pass_rate=_pass_rate(scores, pass_threshold),
        band_histogram=histogram,
        by_category=category_breakdown(results, pass_threshold),
        failure_patterns=failure_patterns(results),
        improvement_priorities=improvement_priorities(results),
        results=sorted(results, key=lambda r: r.item_id),
    )


def category_breakdown(
    results: list[ScoreResult], pass_threshold: float = PASS_THRESHOLD
) -> list[CategoryBreakdown]:
    by_domain: dict[DomainExpert, list[float]] = defaultdict(list)
    for result in results:
        by_domain[result.domain].append(result.overall_score)
    return [
        CategoryBreakdown(
            domain=domain,
            count=len(scores),
            mean_score=round(statistics.fmean(scores), 2),
            pass_rate=_pass_rate(scores, pass_threshold),
        )
        for domain, scores in sorted(by_domain.items(), key=lambda kv: kv[0].value)
    ]


def failure_patterns(results: list[ScoreResult]) -> list[FailurePattern]:
    """Cluster failures by component and domain, plus failing difficulty levels."""
    clusters: dict[str, list[str]] = defaultdict(list)
    for result in results:
        domain = result.domain.value
        if NAME_FAILURE in result.failures:
            clusters[f"Name identification failure in {domain}"].append(result.item_id)
        if MAKER_FAILURE in result.failures:
            clusters[f"Maker attribution failure in {domain}"].append(result.item_id)
        if VALUE_FAILURE in result.failures:
            clusters[f"Value estimation off in {domain}"].append(result.item_id)
        if result.overall_score < _DIFFICULTY_FAILING_THRESHOLD:
            clusters[f'Difficulty level "{result.difficulty.value}" items failing'].append(
                result.item_id
            )

    ranked = sorted(clusters.items(), key=lambda kv: (-len(kv[1]), kv[0]))
    return [
        FailurePattern(pattern=pattern, count=len(ids), item_ids=ids)
        for pattern, ids in ranked[:_MAX_PATTERNS]
    ]


def improvement_priorities(results: list[ScoreResult]) -> list[str]:
    if not results:
        return []
    priorities: list[str] = []

    breakdown = category_breakdown(results)
    weakest = min(breakdown, key=lambda c: c.mean_score)
    if weakest.mean_score < _WEAK_CATEGORY_THRESHOLD:
        priorities.append(
            f"PRIORITY 1: Improve {weakest.domain.value} knowledge "
            f"(avg score: {weakest.mean_score:.1f}%)"
        )

    avg_value = statistics.fmean(r.component_scores.value for r in results)
    if avg_value < _WEAK_COMPONENT_THRESHOLD:
        priorities.append(
            f"PRIORITY: Improve value estimation accuracy (current avg: {avg_value * 100:.1f}%)."
        )

    maker_scores = [r.component_scores.maker for r in results if not r.is_error]
    if maker_scores:
        avg_maker = statistics.fmean(maker_scores)
        if avg_maker < _WEAK_COMPONENT_THRESHOLD:
            priorities.append(
                f"PRIORITY: Improve maker attribution (current avg: {avg_maker * 100:.1f}%)."
            )

    failed = sum(1 for r in results if r.is_error)
    if failed:
        priorities.append(f"PRIORITY: {failed} item(s) failed to analyse; check provider errors.")
    return priorities


def format_report(report: EvaluationReport) -> str:
    """Render *report* as a fixed-width text block."""
    lines = [
        _RULE,
        "VINTAGEVISION EVALUATION REPORT".center(80).rstrip(),
        _RULE,
        f"Run:          {report.run_id} ({report.mode.value})",
        f"Started:      {report.started_at.isoformat()}",
        f"Items Tested: {len(report.results)} of {report.total_items}"
        + (" (cancelled)" if report.cancelled else ""),
        "",
        "OVERALL RESULTS",
        "---------------",
        f"Average Score: {report.mean_score:.1f}%",
        f"Median Score:  {report.median_score:.1f}%",
        f"Pass Rate:     {report.pass_rate * 100:.1f}%",
        f"Failed Items:  {report.failed_items}",
        "",
        "SCORE DISTRIBUTION",
        "------------------",
        f"Excellent (90-100): {report.band_histogram.get(ScoreBand.EXCELLENT, 0)} items",
        f"Good (75-89):       {report.band_histogram.get(ScoreBand.GOOD, 0)} items",
        f"Acceptable (60-74): {report.band_histogram.get(ScoreBand.ACCEPTABLE, 0)} items",
        f"Poor (40-59):       {report.band_histogram.get(ScoreBand.POOR, 0)} items",
        f"Failed (<40):       {report.band_histogram.get(ScoreBand.FAILED, 0)} items",
        "",
        "CATEGORY PERFORMANCE",
        "--------------------",
    ]
    for cat in report.by_category:
        lines.append(f"{cat.domain.value:<15} {cat.mean_score:5.1f}% ({cat.count} items)")

    lines += ["", "COMMON FAILURE PATTERNS", "-----------------------"]
    for pattern in report.failure_patterns[:5]:
        lines.append(f"- {pattern.pattern} (x{pattern.count})")

    lines += ["", "IMPROVEMENT PRIORITIES", "----------------------"]
    for priority in report.improvement_priorities:
        lines.append(f"- {priority}")

    lines += ["", _RULE]
    return "\n".join(lines) + "\n"


def _pass_rate(scores: list[float], threshold: float) -> float:
    if not scores:
        return 0.0
    return round(sum(1 for s in scores if s >= threshold) / len(scores), 4)
