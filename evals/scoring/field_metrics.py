"""
Field Metrics Collector - Per-field accuracy across a run.

Separates signal failures from scoring failures: next to plain accuracy
it tracks name partial matches, amount null extractions, a category
confusion matrix, urgency under/over calls and raw urgency score spread.
"""

import math
import statistics
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from extraction.schemas import URGENCY_LEVELS, FieldValues

from .isolation import FieldMatches


URGENCY_ORDER = {level: i for i, level in enumerate(URGENCY_LEVELS)}


class FieldFailure(BaseModel):
    """One mismatched field value."""

    case_id: str
    actual: Any = None
    expected: Any = None


class ConfusionCell(BaseModel):
    count: int = 0
    cases: List[str] = Field(default_factory=list)


class NameMetrics(BaseModel):
    accuracy: float = 0.0
    correct: int = 0
    total: int = 0
    failures: List[FieldFailure] = Field(default_factory=list)
    partial_matches: List[FieldFailure] = Field(default_factory=list)


class AmountMetrics(BaseModel):
    accuracy: float = 0.0
    correct: int = 0
    total: int = 0
    null_count: int = 0
    mismatch_count: int = 0
    mismatches: List[FieldFailure] = Field(default_factory=list)


class CategoryMetrics(BaseModel):
    accuracy: float = 0.0
    correct: int = 0
    total: int = 0
    confusion_matrix: Dict[str, ConfusionCell] = Field(default_factory=dict)
    failures: List[FieldFailure] = Field(default_factory=list)


class UrgencyMetrics(BaseModel):
    accuracy: float = 0.0
    correct: int = 0
    total: int = 0
    under_count: int = 0
    over_count: int = 0
    failures: List[FieldFailure] = Field(default_factory=list)


class UrgencyScoreStats(BaseModel):
    """Spread of the engine's raw urgency scores."""

    mean: float = 0.0
    std_dev: float = 0.0
    count: int = 0


class FieldMetrics(BaseModel):
    """Field metrics section of a report."""

    name: NameMetrics = Field(default_factory=NameMetrics)
    amount: AmountMetrics = Field(default_factory=AmountMetrics)
    category: CategoryMetrics = Field(default_factory=CategoryMetrics)
    urgency_level: UrgencyMetrics = Field(default_factory=UrgencyMetrics)
    urgency_raw_score: UrgencyScoreStats = Field(default_factory=UrgencyScoreStats)

    def accuracies(self) -> Dict[str, float]:
        return {
            "name": self.name.accuracy,
            "amount": self.amount.accuracy,
            "category": self.category.accuracy,
            "urgency_level": self.urgency_level.accuracy,
        }


def _accuracy(correct: int, total: int) -> float:
    return round(correct / total, 4) if total else 0.0


class FieldMetricsCollector:
    """
    Accumulates field metrics case by case.

    Call reset() before each run; compute_metrics() returns a snapshot
    and leaves the collector untouched.
    """

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        """Clear all accumulated state for a fresh run."""
        self._metrics = FieldMetrics()
        self._raw_urgency_scores: List[float] = []

    def record_case(
        self,
        case_id: str,
        actual: FieldValues,
        expected: FieldValues,
        matches: FieldMatches,
        raw_urgency_score: Optional[float] = None,
    ) -> None:
        """Record one scored case."""
        self._record_name(case_id, actual.name, expected.name, matches.name)
        self._record_amount(case_id, actual.goal_amount, expected.goal_amount, matches.amount)
        self._record_category(case_id, actual.category, expected.category, matches.category)
        self._record_urgency(case_id, actual.urgency_level, expected.urgency_level, matches.urgency)

        if raw_urgency_score is not None:
            self._raw_urgency_scores.append(raw_urgency_score)

    def _record_name(self, case_id, actual, expected, matched) -> None:
        name = self._metrics.name
        name.total += 1
        if matched:
            name.correct += 1
            return

        failure = FieldFailure(case_id=case_id, actual=actual, expected=expected)
        if actual and expected:
            a, e = actual.lower().strip(), expected.lower().strip()
            if a in e or e in a:
                name.partial_matches.append(failure)
        name.failures.append(failure)

    def _record_amount(self, case_id, actual, expected, matched) -> None:
        amount = self._metrics.amount
        amount.total += 1
        if matched:
            amount.correct += 1
            return

        if actual is None and expected is not None:
            amount.null_count += 1
        amount.mismatches.append(FieldFailure(case_id=case_id, actual=actual, expected=expected))

    def _record_category(self, case_id, actual, expected, matched) -> None:
        category = self._metrics.category
        category.total += 1

        key = f"{actual or 'NULL'} -> {expected or 'NULL'}"
        cell = category.confusion_matrix.setdefault(key, ConfusionCell())
        cell.count += 1
        cell.cases.append(case_id)

        if matched:
            category.correct += 1
        else:
            category.failures.append(FieldFailure(case_id=case_id, actual=actual, expected=expected))

    def _record_urgency(self, case_id, actual, expected, matched) -> None:
        urgency = self._metrics.urgency_level
        urgency.total += 1
        if matched:
            urgency.correct += 1
            return

        actual_rank = URGENCY_ORDER.get(actual, -1)
        expected_rank = URGENCY_ORDER.get(expected, -1)
        if actual_rank < expected_rank:
            urgency.under_count += 1
        elif actual_rank > expected_rank:
            urgency.over_count += 1
        urgency.failures.append(FieldFailure(case_id=case_id, actual=actual, expected=expected))

    def compute_metrics(self) -> FieldMetrics:
        """Return a snapshot with accuracies and urgency score stats filled in."""
        metrics = self._metrics.model_copy(deep=True)
        for section in (metrics.name, metrics.amount, metrics.category, metrics.urgency_level):
            section.accuracy = _accuracy(section.correct, section.total)
        metrics.amount.mismatch_count = len(metrics.amount.mismatches)

        scores = self._raw_urgency_scores
        if scores:
            metrics.urgency_raw_score = UrgencyScoreStats(
                mean=round(math.fsum(scores) / len(scores), 4),
                std_dev=round(statistics.pstdev(scores), 4),
                count=len(scores),
            )
        return metrics
