"""
Comparison Module - Diff a run against a persisted baseline.

Deltas are only meaningful over the same datasets: if the two reports'
manifest digests differ, the comparison is refused. Comparison is
read-only and never touches either report file.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from core.logging import get_logger
from evals.errors import ComparisonRefused
from evals.reporting import EvaluationReport

logger = get_logger(__name__)


class MetricDelta(BaseModel):
    """Change of one metric between baseline and current run."""

    metric: str
    previous: float
    current: float
    delta: float
    direction: str  # "improved", "regressed" or "unchanged"


class BaselineDiff(BaseModel):
    """Result of comparing a run against a baseline report."""

    compared_at: datetime = Field(default_factory=datetime.utcnow)
    previous_path: str
    manifest_hash: str

    # Engine identity
    previous_engine_hash: str
    current_engine_hash: str
    engine_changed: bool

    # Deltas
    score_deltas: List[MetricDelta] = Field(default_factory=list)
    field_deltas: List[MetricDelta] = Field(default_factory=list)
    bucket_deltas: List[MetricDelta] = Field(default_factory=list)
    dataset_deltas: List[MetricDelta] = Field(default_factory=list)

    def _all(self) -> List[MetricDelta]:
        return self.score_deltas + self.field_deltas + self.bucket_deltas + self.dataset_deltas

    @property
    def regressions(self) -> List[MetricDelta]:
        return [d for d in self._all() if d.direction == "regressed"]

    @property
    def improvements(self) -> List[MetricDelta]:
        return [d for d in self._all() if d.direction == "improved"]


def _delta(metric: str, previous: float, current: float, lower_is_better: bool = False) -> MetricDelta:
    delta = round(current - previous, 4)
    if delta == 0:
        direction = "unchanged"
    elif (delta < 0) == lower_is_better:
        direction = "improved"
    else:
        direction = "regressed"
    return MetricDelta(metric=metric, previous=previous, current=current, delta=delta, direction=direction)


def compare_reports(
    current: EvaluationReport,
    previous: EvaluationReport,
    previous_path: str = "",
) -> BaselineDiff:
    """
    Compute deltas between two reports.

    Raises:
        ComparisonRefused: If the manifest digests differ
    """
    current_digest = current.metadata.dataset_manifest_hash
    previous_digest = previous.metadata.dataset_manifest_hash
    if current_digest != previous_digest:
        raise ComparisonRefused(current_digest, previous_digest)

    diff = BaselineDiff(
        previous_path=previous_path,
        manifest_hash=current_digest,
        previous_engine_hash=previous.metadata.engine_hash,
        current_engine_hash=current.metadata.engine_hash,
        engine_changed=previous.metadata.engine_hash != current.metadata.engine_hash,
    )

    # Aggregate scores
    prev, cur = previous.summary, current.summary
    diff.score_deltas = [
        _delta("structural_pass_rate", prev.structural_score.pass_rate, cur.structural_score.pass_rate),
        _delta("strict_pass_rate", prev.strict_score.pass_rate, cur.strict_score.pass_rate),
        _delta("acceptable_pass_rate", prev.acceptable_score.pass_rate, cur.acceptable_score.pass_rate),
        _delta("urgency_accuracy", prev.urgency_score.accuracy, cur.urgency_score.accuracy),
    ]

    # Field accuracy
    prev_fields = previous.field_metrics.accuracies()
    cur_fields = current.field_metrics.accuracies()
    diff.field_deltas = [
        _delta(field, prev_fields[field], cur_fields[field]) for field in cur_fields
    ]

    # Failure buckets, fewer failures is better
    prev_buckets = {k: b.count for k, b in previous.failure_buckets.buckets.items()}
    cur_buckets = {k: b.count for k, b in current.failure_buckets.buckets.items()}
    for key in sorted(set(prev_buckets) | set(cur_buckets)):
        diff.bucket_deltas.append(_delta(
            key, prev_buckets.get(key, 0), cur_buckets.get(key, 0), lower_is_better=True
        ))

    # Datasets covered by both runs
    for name, breakdown in current.dataset_breakdown.items():
        previous_breakdown = previous.dataset_breakdown.get(name)
        if previous_breakdown is None:
            continue
        diff.dataset_deltas.append(_delta(
            name,
            previous_breakdown.summary.strict_score.pass_rate,
            breakdown.summary.strict_score.pass_rate,
        ))

    return diff


def load_baseline(path: Path) -> EvaluationReport:
    """
    Load a baseline report.

    A promotion record is followed to its full_report_path; a relative
    path is tried as given, then next to the promotion file.
    """
    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        data: Dict[str, Any] = json.load(f)

    if "summary" not in data and data.get("full_report_path"):
        report_path = Path(data["full_report_path"])
        if not report_path.is_absolute() and not report_path.exists():
            report_path = path.parent / report_path
        with open(report_path, "r", encoding="utf-8") as f:
            data = json.load(f)

    return EvaluationReport.model_validate(data)


class BaselineComparator:
    """
    Compares a run against a baseline file.

    A refused comparison is a normal negative result: compare() logs it
    and returns None.
    """

    def compare(self, current: EvaluationReport, previous_path: Path) -> Optional[BaselineDiff]:
        """
        Compare the current report with a persisted report or promotion.

        Args:
            current: Report of the run just completed
            previous_path: Report or promotion file to compare against

        Returns:
            BaselineDiff, or None if the datasets differ
        """
        previous = load_baseline(previous_path)
        try:
            diff = compare_reports(current, previous, str(previous_path))
        except ComparisonRefused as e:
            logger.comparison_refused(
                str(e.current_digest), str(e.previous_digest), str(previous_path)
            )
            return None

        logger.comparison_completed(str(previous_path), len(diff.regressions), len(diff.improvements))
        return diff


def _format_delta(d: MetricDelta, percent: bool = True) -> str:
    marker = {"improved": "+", "regressed": "-", "unchanged": "="}[d.direction]
    if percent:
        return (
            f"  [{marker}] {d.metric:<28} {d.previous * 100:6.2f}% -> {d.current * 100:6.2f}% "
            f"({d.delta * 100:+.2f} pts)"
        )
    return f"  [{marker}] {d.metric:<34} {d.previous:>5.0f} -> {d.current:>5.0f} ({d.delta:+.0f})"


def generate_comparison_report(diff: Optional[BaselineDiff]) -> str:
    """
    Generate a human-readable baseline comparison report.

    Args:
        diff: Comparison result, or None when the comparison was refused

    Returns:
        Formatted report string
    """
    if diff is None:
        return "\n".join([
            "=" * 60,
            "BASELINE COMPARISON REFUSED",
            "=" * 60,
            "The baseline was produced from a different dataset manifest.",
            "Deltas across different datasets are undefined.",
            "=" * 60,
        ])

    lines = [
        "=" * 60,
        "BASELINE COMPARISON REPORT",
        "=" * 60,
        "",
        f"Compared at: {diff.compared_at.isoformat()}",
        f"Baseline: {diff.previous_path}",
        f"Manifest: {diff.manifest_hash[:16]}...",
        f"Engine changed: {'YES' if diff.engine_changed else 'NO'}",
        "",
        "-" * 40,
        "SCORES",
        "-" * 40,
    ]
    lines.extend(_format_delta(d) for d in diff.score_deltas)

    lines.extend(["", "-" * 40, "FIELD ACCURACY", "-" * 40])
    lines.extend(_format_delta(d) for d in diff.field_deltas)

    changed_buckets = [d for d in diff.bucket_deltas if d.direction != "unchanged"]
    if changed_buckets:
        lines.extend(["", "-" * 40, "FAILURE BUCKETS", "-" * 40])
        lines.extend(_format_delta(d, percent=False) for d in changed_buckets)

    if diff.dataset_deltas:
        lines.extend(["", "-" * 40, "DATASETS (strict pass rate)", "-" * 40])
        lines.extend(_format_delta(d) for d in diff.dataset_deltas)

    lines.extend([
        "",
        f"Regressions: {len(diff.regressions)}",
        f"Improvements: {len(diff.improvements)}",
        "",
        "=" * 60,
    ])
    return "\n".join(lines)
