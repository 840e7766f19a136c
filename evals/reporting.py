"""
Reporting - Report models, snapshot persistence and text rendering.

A report is written once as an immutable snapshot
(eval_<datasets>_<timestamp>.json, exclusive create) and mirrored to a
LATEST_<datasets>.json pointer that is overwritten on every run.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from core.logging import get_logger

from .diagnostics.buckets import BucketReport
from .scoring.field_metrics import FieldMetrics
from .scoring.isolation import AggregateScores, ScoringResult

logger = get_logger(__name__)

HARNESS_VERSION = "1.0.0"


class ReportMetadata(BaseModel):
    """Run identity: engine, datasets, experiments and timing."""

    engine_hash: str
    dataset_manifest_hash: str
    experiment_flags: List[str] = Field(default_factory=list)
    experiment_details: List[Dict[str, Any]] = Field(default_factory=list)
    config_overrides: Dict[str, Any] = Field(default_factory=dict)
    run_time_ms: int = 0
    timestamp: str = Field(default_factory=lambda: datetime.utcnow().isoformat() + "Z")
    datasets_evaluated: List[str] = Field(default_factory=list)
    total_cases: int = 0
    skipped_cases: int = 0
    config: Dict[str, Any] = Field(default_factory=dict)
    version: str = HARNESS_VERSION


class CaseResult(BaseModel):
    """Per-case entry owning its ScoringResult."""

    dataset: str
    case_id: str
    scoring: ScoringResult
    failure_buckets: Dict[str, str] = Field(default_factory=dict)
    latency_ms: float = 0.0


class CaseError(BaseModel):
    """A case excluded from every aggregate."""

    dataset: str
    case_id: str
    reason: str


class DatasetBreakdown(BaseModel):
    total_cases: int = 0
    skipped_cases: int = 0
    summary: AggregateScores
    field_accuracy: Dict[str, float] = Field(default_factory=dict)
    metadata: Optional[Dict[str, Any]] = None


class EvaluationReport(BaseModel):
    """The terminal artifact of a run. Never updated once written."""

    metadata: ReportMetadata
    summary: AggregateScores
    field_metrics: FieldMetrics
    failure_buckets: BucketReport
    dataset_breakdown: Dict[str, DatasetBreakdown] = Field(default_factory=dict)
    cases: List[CaseResult] = Field(default_factory=list)
    errors: List[CaseError] = Field(default_factory=list)

    @property
    def strict_pass_rate(self) -> float:
        return self.summary.strict_score.pass_rate


def dataset_label(datasets: List[str]) -> str:
    """Deterministic file-name label for a dataset set."""
    return "+".join(sorted(datasets)) or "none"


def save_report(report: EvaluationReport, reports_dir: Path) -> Tuple[Path, Path]:
    """
    Persist a report snapshot and refresh its LATEST pointer.

    The snapshot is opened in exclusive-create mode so an existing report
    is never overwritten.

    Returns:
        Tuple of (snapshot path, latest pointer path)
    """
    reports_dir.mkdir(parents=True, exist_ok=True)
    label = dataset_label(report.metadata.datasets_evaluated)
    timestamp = datetime.utcnow().strftime("%Y%m%d_%H%M%S_%f")

    payload = report.model_dump_json(indent=2)

    path = reports_dir / f"eval_{label}_{timestamp}.json"
    with open(path, "x", encoding="utf-8") as f:
        f.write(payload)

    latest_path = reports_dir / f"LATEST_{label}.json"
    with open(latest_path, "w", encoding="utf-8") as f:
        f.write(payload)

    logger.report_saved(str(path), str(latest_path))
    return path, latest_path


def load_report(path: Path) -> EvaluationReport:
    """Load a persisted report."""
    with open(path, "r", encoding="utf-8") as f:
        return EvaluationReport.model_validate(json.load(f))


def _pct(value: float) -> str:
    return f"{value * 100:.2f}%"


def generate_evaluation_report(report: EvaluationReport, saved_path: Optional[Path] = None) -> str:
    """
    Generate a human-readable evaluation report.

    Args:
        report: Report to render
        saved_path: Where the snapshot was written, if persisted

    Returns:
        Formatted report string
    """
    meta = report.metadata
    summary = report.summary

    lines = [
        "=" * 60,
        "EXTRACTION EVALUATION REPORT",
        "=" * 60,
        "",
        f"Timestamp: {meta.timestamp}",
        f"Datasets: {', '.join(meta.datasets_evaluated)}",
        f"Engine hash: {meta.engine_hash[:16]}...",
        f"Manifest hash: {meta.dataset_manifest_hash[:16]}...",
        f"Experiments: {', '.join(meta.experiment_flags) or 'none'}",
        f"Cases: {meta.total_cases} evaluated, {meta.skipped_cases} skipped",
        f"Run time: {meta.run_time_ms} ms",
        "",
        "-" * 40,
        "SCORES",
        "-" * 40,
        f"Structural: {_pct(summary.structural_score.pass_rate)} pass "
        f"({summary.structural_score.passes}/{summary.structural_score.total}), "
        f"mean {summary.structural_score.mean:.4f}",
        f"Strict:     {_pct(summary.strict_score.pass_rate)} pass "
        f"({summary.strict_score.passes}/{summary.strict_score.total}), "
        f"mean {summary.strict_score.mean:.4f}",
        f"Acceptable: {_pct(summary.acceptable_score.pass_rate)} pass "
        f"({summary.acceptable_score.passes}/{summary.acceptable_score.total})",
        f"Urgency:    {_pct(summary.urgency_score.accuracy)} "
        f"({summary.urgency_score.correct}/{summary.urgency_score.total})",
        "",
        "-" * 40,
        "FIELD ACCURACY",
        "-" * 40,
    ]

    for field, accuracy in report.field_metrics.accuracies().items():
        lines.append(f"  {field:<14} {_pct(accuracy)}")
    lines.append(
        f"  urgency under/over: {report.field_metrics.urgency_level.under_count}"
        f"/{report.field_metrics.urgency_level.over_count}"
    )
    lines.append(f"  amount null extractions: {report.field_metrics.amount.null_count}")

    buckets = report.failure_buckets
    lines.extend([
        "",
        "-" * 40,
        f"FAILURE BUCKETS ({buckets.total_failures} failures in {buckets.bucket_count} buckets)",
        "-" * 40,
    ])
    for key, bucket in buckets.buckets.items():
        lines.append(f"  {bucket.count:>4}  {key} [{bucket.severity}]")

    if len(report.dataset_breakdown) > 1:
        lines.extend(["", "-" * 40, "DATASET BREAKDOWN", "-" * 40])
        for name, breakdown in report.dataset_breakdown.items():
            lines.append(
                f"  {name}: strict {_pct(breakdown.summary.strict_score.pass_rate)}, "
                f"structural {_pct(breakdown.summary.structural_score.pass_rate)} "
                f"({breakdown.total_cases} cases)"
            )

    if report.errors:
        lines.extend(["", "-" * 40, f"SKIPPED CASES ({len(report.errors)})", "-" * 40])
        for error in report.errors[:10]:
            lines.append(f"  {error.dataset}/{error.case_id}: {error.reason}")
        if len(report.errors) > 10:
            lines.append(f"  ... and {len(report.errors) - 10} more")

    if saved_path is not None:
        lines.extend(["", f"Saved: {saved_path}"])

    lines.append("")
    lines.append("=" * 60)

    return "\n".join(lines)
