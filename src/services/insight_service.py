"""Self-learning loop: feedback in, prompt enhancements out.

Collects three kinds of correction signal into the injected
:class:`IInsightStore`:

    - user corrections (moderate trust, 0.6)
    - expert corrections (high trust, 0.95)
    - ground-truth components that scored below 0.7 in an evaluation run

Once enough feedback has accumulated, :meth:`analyze_patterns` derives
:class:`LearningInsight` records:

    - calibration: values systematically too high or too low
    - confusion:   the same wrong maker/era/style corrected to the same
                   answer repeatedly
    - gap:         corrections concentrated in one domain

The orchestrator asks :meth:`prompt_enhancements` for the triaged domain
and appends the lines to the synthesis prompt.
"""

from __future__ import annotations

import re
from collections import Counter, defaultdict

import structlog

from src.interfaces.insight_store import IInsightStore
from src.models.analysis import AnalysisOutcome, DomainExpert
from src.models.evaluation import GroundTruthItem, ScoreResult
from src.models.insight import (
    FeedbackEntry,
    FeedbackSource,
    InsightSeverity,
    InsightType,
    LearningInsight,
)
from src.utils.errors import ValidationError
from src.utils.logging import get_logger

_USER_CONFIDENCE = 0.6
_EXPERT_CONFIDENCE = 0.95
_GROUND_TRUTH_CONFIDENCE = 1.0

_GROUND_TRUTH_FEEDBACK_THRESHOLD = 0.7
_MIN_FEEDBACK_FOR_ANALYSIS = 10
_MIN_VALUE_ENTRIES = 5
_VALUE_BIAS_THRESHOLD = 0.15
_VALUE_BIAS_HIGH = 0.3
_MIN_CONFUSION_ENTRIES = 3
_MIN_CONFUSION_COUNT = 2
_MIN_GAP_ENTRIES = 3

_CONFUSION_FIELDS = ("maker", "era", "style")
_CORRECTABLE_FIELDS = frozenset({"name", "maker", "era", "style", "value", "domain"})

_CONFUSION_RE = re.compile(r'"([^"]+)" frequently confused with "([^"]+)"')

# Baseline guidance for known hard spots, active from the first run.
BASELINE_ADJUSTMENTS: dict[DomainExpert, list[str]] = {
    DomainExpert.FURNITURE: [
        "Victorian furniture spans 1837-1901. Early Victorian (1837-1860) features heavier "
        "ornamentation than Late Victorian. Check for machine vs hand carving.",
    ],
    DomainExpert.CERAMICS: [
        "Ceramic marks can be deceptive. Look for wear patterns consistent with age. "
        "Modern reproductions often have too-perfect marks.",
    ],
    DomainExpert.JEWELRY: [
        "Precious metal hallmarks vary by country and period. British hallmarks include "
        "date letters. Continental marks differ significantly.",
    ],
    DomainExpert.ART: [
        "Artist signatures should show appropriate age. Beware of signatures added to "
        "unsigned works. Compare style to documented examples.",
    ],
}


class InsightService:
    """Records corrections and turns recurring ones into prompt guidance.

    Parameters
    ----------
    store:
        Persistence for feedback entries and insights.
    min_feedback_for_analysis:
        Pattern analysis is skipped until this many entries exist.
    baseline_adjustments:
        Static per-domain guidance always included in enhancements.
    """

    def __init__(
        self,
        store: IInsightStore,
        min_feedback_for_analysis: int = _MIN_FEEDBACK_FOR_ANALYSIS,
        baseline_adjustments: dict[DomainExpert, list[str]] | None = None,
    ) -> None:
        self._store = store
        self._min_feedback = min_feedback_for_analysis
        self._baseline = (
            BASELINE_ADJUSTMENTS if baseline_adjustments is None else baseline_adjustments
        )
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Recording feedback
    # ------------------------------------------------------------------

    async def record_user_correction(
        self,
        outcome: AnalysisOutcome,
        field: str,
        corrected_value: object,
        notes: str | None = None,
    ) -> FeedbackEntry:
        """Record a correction supplied by the item's owner."""
        entry = await self._record_correction(
            outcome, field, corrected_value, FeedbackSource.USER, _USER_CONFIDENCE, notes
        )
        await self.analyze_patterns()
        return entry

    async def record_expert_correction(
        self,
        outcome: AnalysisOutcome,
        field: str,
        corrected_value: object,
        notes: str | None = None,
    ) -> FeedbackEntry:
        """Record a correction from a human expert review."""
        entry = await self._record_correction(
            outcome, field, corrected_value, FeedbackSource.EXPERT, _EXPERT_CONFIDENCE, notes
        )
        await self.analyze_patterns()
        return entry

    async def record_ground_truth(
        self,
        item: GroundTruthItem,
        result: ScoreResult,
        outcome: AnalysisOutcome | None = None,
    ) -> list[FeedbackEntry]:
        """Record every component of *result* that scored below 0.7.

        Errored items carry no produced values and are skipped.
        """
        if result.is_error or outcome is None:
            return []

        expected = item.expected
        produced_mid = outcome.value_midpoint
        pairs: dict[str, tuple[object, object]] = {
            "name": (outcome.name, expected.name),
            "maker": (outcome.maker, expected.maker),
            "era": (
                f"{outcome.era_range.start}-{outcome.era_range.end}" if outcome.era_range else None,
                f"{expected.era_range.start}-{expected.era_range.end}",
            ),
            "value": (produced_mid or None, (expected.value_min + expected.value_max) / 2),
        }
        scores = result.component_scores.model_dump()

        entries: list[FeedbackEntry] = []
        for field, score in scores.items():
            if score >= _GROUND_TRUTH_FEEDBACK_THRESHOLD:
                continue
            original, corrected = pairs[field]
            if corrected is None:
                continue
            entry = FeedbackEntry(
                analysis_id=outcome.analysis_id,
                source=FeedbackSource.GROUND_TRUTH,
                field=field,
                original_value=original,
                corrected_value=corrected,
                correction_confidence=_GROUND_TRUTH_CONFIDENCE,
                category=item.expected.domain.value,
                item_name=outcome.name,
                notes=f"Ground truth {item.id} - score {score * 100:.1f}%",
            )
            await self._store.add_feedback(entry)
            entries.append(entry)

        if entries:
            self._logger.info(
                "ground_truth_feedback_recorded",
                item_id=item.id,
                fields=[e.field for e in entries],
            )
            await self.analyze_patterns()
        return entries

    # ------------------------------------------------------------------
    # Pattern analysis
    # ------------------------------------------------------------------

    async def analyze_patterns(self) -> list[LearningInsight]:
        """Derive insights from accumulated feedback and store them."""
        feedback = await self._store.list_feedback()
        if len(feedback) < self._min_feedback:
            self._logger.debug("insight_analysis_skipped", feedback=len(feedback))
            return []

        by_field: dict[str, list[FeedbackEntry]] = defaultdict(list)
        for entry in feedback:
            by_field[entry.field].append(entry)

        derived: list[LearningInsight] = []
        for field, entries in by_field.items():
            if field == "value" and len(entries) >= _MIN_VALUE_ENTRIES:
                insight = self._value_bias(entries)
                if insight is not None:
                    derived.append(insight)
            if field in _CONFUSION_FIELDS and len(entries) >= _MIN_CONFUSION_ENTRIES:
                derived.extend(self._confusions(field, entries))
            derived.extend(self._category_gaps(field, entries))

        stored = [await self._store.upsert_insight(insight) for insight in derived]
        if stored:
            self._logger.info("insights_updated", count=len(stored), feedback=len(feedback))
        return stored

    def _value_bias(self, entries: list[FeedbackEntry]) -> LearningInsight | None:
        biases: list[float] = []
        for entry in entries:
            original = _as_number(entry.original_value)
            corrected = _as_number(entry.corrected_value)
            if original is None or corrected is None or original <= 0:
                continue
            biases.append((corrected - original) / original)
        if len(biases) < _MIN_VALUE_ENTRIES:
            return None

        avg_bias = sum(biases) / len(biases)
        if abs(avg_bias) <= _VALUE_BIAS_THRESHOLD:
            return None

        direction = "under" if avg_bias > 0 else "over"
        self._logger.info("value_bias_detected", direction=direction, avg_bias=round(avg_bias, 3))
        return LearningInsight(
            type=InsightType.CALIBRATION,
            severity=(
                InsightSeverity.HIGH if abs(avg_bias) > _VALUE_BIAS_HIGH else InsightSeverity.MEDIUM
            ),
            description=f"Systematic {direction}estimation of values by {abs(avg_bias) * 100:.0f}%",
            suggested_action=(
                "Increase value estimates, especially for high-demand categories"
                if direction == "under"
                else "Be more conservative with value estimates"
            ),
            evidence=[
                f"{e.item_name}: predicted ${e.original_value}, actual ${e.corrected_value}"
                for e in entries[:5]
            ],
            frequency=len(entries),
        )

    def _confusions(self, field: str, entries: list[FeedbackEntry]) -> list[LearningInsight]:
        pairs = Counter(
            (str(e.original_value), str(e.corrected_value))
            for e in entries
            if e.original_value is not None
        )
        insights: list[LearningInsight] = []
        for (original, corrected), count in pairs.most_common():
            if count < _MIN_CONFUSION_COUNT:
                break
            if count >= 5:
                severity = InsightSeverity.HIGH
            elif count >= 3:
                severity = InsightSeverity.MEDIUM
            else:
                severity = InsightSeverity.LOW
            insights.append(
                LearningInsight(
                    type=InsightType.CONFUSION,
                    severity=severity,
                    description=f'{field}: "{original}" frequently confused with "{corrected}"',
                    suggested_action=(
                        f'Add disambiguation guidance for {field} when "{original}" '
                        f'or "{corrected}" is detected'
                    ),
                    evidence=[
                        f"Item: {e.item_name}"
                        for e in entries
                        if str(e.original_value) == original and str(e.corrected_value) == corrected
                    ][:3],
                    frequency=count,
                )
            )
        return insights

    def _category_gaps(self, field: str, entries: list[FeedbackEntry]) -> list[LearningInsight]:
        by_category: dict[str, list[FeedbackEntry]] = defaultdict(list)
        for entry in entries:
            by_category[entry.category or "unknown"].append(entry)

        insights: list[LearningInsight] = []
        for category, cat_entries in by_category.items():
            if len(cat_entries) < _MIN_GAP_ENTRIES:
                continue
            if len(cat_entries) >= 10:
                severity = InsightSeverity.HIGH
            elif len(cat_entries) >= 5:
                severity = InsightSeverity.MEDIUM
            else:
                severity = InsightSeverity.LOW
            insights.append(
                LearningInsight(
                    type=InsightType.GAP,
                    severity=severity,
                    description=f'{field} errors concentrated in "{category}" category',
                    suggested_action=f"Enhance {category} domain knowledge for {field} identification",
                    evidence=[
                        f"{e.item_name}: {e.original_value} -> {e.corrected_value}"
                        for e in cat_entries[:3]
                    ],
                    frequency=len(cat_entries),
                    category=category,
                )
            )
        return insights

    # ------------------------------------------------------------------
    # Prompt enhancement
    # ------------------------------------------------------------------

    async def prompt_enhancements(self, domain: DomainExpert) -> list[str]:
        """Guidance lines for the synthesis prompt of an item in *domain*."""
        enhancements = list(self._baseline.get(domain, []))

        for insight in await self._store.list_insights():
            if insight.severity == InsightSeverity.LOW:
                continue
            if insight.type == InsightType.CONFUSION:
                match = _CONFUSION_RE.search(insight.description)
                if match:
                    enhancements.append(
                        f'IMPORTANT: "{match.group(1)}" and "{match.group(2)}" are commonly '
                        "confused. Look carefully at distinguishing features before "
                        "assigning either."
                    )
            elif insight.type == InsightType.CALIBRATION:
                if "underestimation" in insight.description:
                    enhancements.append(
                        "NOTE: Value estimates have been running low. Consider current "
                        "market demand and rarity."
                    )
                elif "overestimation" in insight.description:
                    enhancements.append(
                        "NOTE: Be conservative with value estimates. Consider condition "
                        "issues and market saturation."
                    )
            elif insight.type == InsightType.GAP and insight.category == domain.value:
                enhancements.append(
                    f"ATTENTION: This category ({domain.value}) has shown accuracy issues. "
                    "Be especially thorough in your analysis and consider requesting "
                    "additional photos."
                )

        # Several gap insights for one domain produce the same line.
        return list(dict.fromkeys(enhancements))

    async def list_insights(self) -> list[LearningInsight]:
        return await self._store.list_insights()

    async def feedback_summary(self) -> dict[str, dict[str, int]]:
        """Feedback counts by source and by field."""
        feedback = await self._store.list_feedback()
        return {
            "by_source": dict(Counter(e.source.value for e in feedback)),
            "by_field": dict(Counter(e.field for e in feedback)),
        }

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _record_correction(
        self,
        outcome: AnalysisOutcome,
        field: str,
        corrected_value: object,
        source: FeedbackSource,
        confidence: float,
        notes: str | None,
    ) -> FeedbackEntry:
        if field not in _CORRECTABLE_FIELDS:
            raise ValidationError(
                message=f"Cannot correct field '{field}'; expected one of {sorted(_CORRECTABLE_FIELDS)}"
            )
        original: object
        if field == "value":
            original = outcome.value_midpoint or None
        elif field == "era":
            original = outcome.era_label
        elif field == "domain":
            original = outcome.domain.value
        else:
            original = getattr(outcome, field)

        entry = FeedbackEntry(
            analysis_id=outcome.analysis_id,
            source=source,
            field=field,
            original_value=original,
            corrected_value=corrected_value,
            correction_confidence=confidence,
            category=outcome.domain.value,
            item_name=outcome.name,
            notes=notes,
        )
        await self._store.add_feedback(entry)
        self._logger.info(
            "correction_recorded",
            analysis_id=outcome.analysis_id,
            source=source.value,
            field=field,
        )
        return entry


def _as_number(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None
