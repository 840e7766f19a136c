"""
Promotion - Snapshot a run as the production baseline.

Each promotion writes:
- <reports_dir>/PROMOTED_<ts>.json      full copy of the promoted report
- <promotions_dir>/production_<ts>.json the promotion record
- <promotions_dir>/LATEST_PRODUCTION.json pointer, overwritten each time
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from core.config import settings
from core.logging import get_logger
from evals.reporting import EvaluationReport

logger = get_logger(__name__)

LATEST_PRODUCTION = "LATEST_PRODUCTION.json"


class Promotion(BaseModel):
    """Summary of a promoted report plus a path to the full report."""

    promoted_at: str = Field(default_factory=lambda: datetime.utcnow().isoformat() + "Z")
    engine_hash: str
    dataset_manifest_hash: str
    strict_pass_rate: float
    acceptable_pass_rate: float
    structural_pass_rate: float
    urgency_accuracy: float
    datasets_evaluated: List[str] = Field(default_factory=list)
    total_cases: int = 0
    experiment_flags: List[str] = Field(default_factory=list)
    field_metrics_snapshot: Dict[str, float] = Field(default_factory=dict)
    full_report_path: str


class TargetCheck(BaseModel):
    """Strict pass rate compared against a percent target."""

    target_percent: float
    actual_percent: float

    @property
    def met(self) -> bool:
        return self.actual_percent >= self.target_percent


def check_target(report: EvaluationReport, target_percent: float) -> TargetCheck:
    return TargetCheck(
        target_percent=target_percent,
        actual_percent=round(report.summary.strict_score.pass_rate * 100, 2),
    )


def promote_to_production(
    report: EvaluationReport,
    promotions_dir: Optional[Path] = None,
    reports_dir: Optional[Path] = None,
) -> Tuple[Promotion, Path]:
    """
    Promote a report to the production baseline.

    Args:
        report: Report to promote
        promotions_dir: Where promotion records go
        reports_dir: Where the full report copy goes

    Returns:
        Tuple of (promotion record, promotion file path)
    """
    promotions_dir = Path(promotions_dir or settings.promotions_dir)
    reports_dir = Path(reports_dir or settings.reports_dir)
    promotions_dir.mkdir(parents=True, exist_ok=True)
    reports_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.utcnow().strftime("%Y%m%d_%H%M%S_%f")
    report_path = reports_dir / f"PROMOTED_{timestamp}.json"

    accuracies = report.field_metrics.accuracies()
    promotion = Promotion(
        engine_hash=report.metadata.engine_hash,
        dataset_manifest_hash=report.metadata.dataset_manifest_hash,
        strict_pass_rate=report.summary.strict_score.pass_rate,
        acceptable_pass_rate=report.summary.acceptable_score.pass_rate,
        structural_pass_rate=report.summary.structural_score.pass_rate,
        urgency_accuracy=report.summary.urgency_score.accuracy,
        datasets_evaluated=report.metadata.datasets_evaluated,
        total_cases=report.metadata.total_cases,
        experiment_flags=report.metadata.experiment_flags,
        field_metrics_snapshot={f"{field}_accuracy": value for field, value in accuracies.items()},
        full_report_path=str(report_path),
    )

    with open(report_path, "x", encoding="utf-8") as f:
        f.write(report.model_dump_json(indent=2))

    promotion_path = promotions_dir / f"production_{timestamp}.json"
    payload = promotion.model_dump_json(indent=2)
    with open(promotion_path, "x", encoding="utf-8") as f:
        f.write(payload)

    with open(promotions_dir / LATEST_PRODUCTION, "w", encoding="utf-8") as f:
        f.write(payload)

    logger.promotion_created(str(promotion_path), promotion.engine_hash, promotion.strict_pass_rate)
    return promotion, promotion_path


def load_latest_promotion(promotions_dir: Optional[Path] = None) -> Optional[Promotion]:
    """Read the LATEST_PRODUCTION pointer, or None if nothing was promoted."""
    path = Path(promotions_dir or settings.promotions_dir) / LATEST_PRODUCTION
    if not path.exists():
        return None
    with open(path, "r", encoding="utf-8") as f:
        return Promotion.model_validate(json.load(f))


def generate_promotion_summary(promotion: Promotion, promotion_path: Path) -> str:
    """Short human-readable confirmation of a promotion."""
    return "\n".join([
        "PROMOTED TO PRODUCTION",
        f"   Strict: {promotion.strict_pass_rate * 100:.2f}% | Engine: {promotion.engine_hash[:12]}...",
        f"   Snapshot: {promotion_path}",
        f"   Use --compare {promotion.full_report_path} to compare future runs against this baseline.",
    ])
