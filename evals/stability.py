"""
Stability - Determinism self-test over repeated identical runs.

Every run must produce identical strict, structural and urgency rates.
Any variance points at the engine, not the harness.
"""

import statistics
from typing import List

from pydantic import BaseModel, Field

from .reporting import EvaluationReport


class StabilityResult(BaseModel):
    """Per-mode rates across runs and their population variance."""

    runs: int
    strict_rates: List[float] = Field(default_factory=list)
    structural_rates: List[float] = Field(default_factory=list)
    urgency_rates: List[float] = Field(default_factory=list)
    strict_variance: float = 0.0
    structural_variance: float = 0.0
    urgency_variance: float = 0.0

    @property
    def deterministic(self) -> bool:
        return (
            self.strict_variance == 0
            and self.structural_variance == 0
            and self.urgency_variance == 0
        )


def _variance(values: List[float]) -> float:
    # pvariance is exact for identical inputs
    return statistics.pvariance(values) if values else 0.0


def analyze_stability(reports: List[EvaluationReport]) -> StabilityResult:
    """
    Compute per-mode variance over the reports of repeated runs.

    Args:
        reports: One report per run, all over identical inputs

    Returns:
        StabilityResult; deterministic iff every variance is exactly 0
    """
    strict = [r.summary.strict_score.pass_rate for r in reports]
    structural = [r.summary.structural_score.pass_rate for r in reports]
    urgency = [r.summary.urgency_score.accuracy for r in reports]

    return StabilityResult(
        runs=len(reports),
        strict_rates=strict,
        structural_rates=structural,
        urgency_rates=urgency,
        strict_variance=_variance(strict),
        structural_variance=_variance(structural),
        urgency_variance=_variance(urgency),
    )


def _verdict(variance: float) -> str:
    return "DETERMINISTIC" if variance == 0 else "NON-DETERMINISTIC"


def _rates(values: List[float]) -> str:
    return " | ".join(f"{v * 100:.2f}%" for v in values)


def generate_stability_report(result: StabilityResult) -> str:
    """Generate a human-readable stability table."""
    lines = [
        "=" * 60,
        "STABILITY TEST RESULTS",
        "=" * 60,
        f"Runs: {result.runs}",
        f"Strict pass rates:     {_rates(result.strict_rates)}",
        f"Structural pass rates: {_rates(result.structural_rates)}",
        f"Urgency accuracy:      {_rates(result.urgency_rates)}",
        "",
        f"Strict variance:     {result.strict_variance:.6f}  {_verdict(result.strict_variance)}",
        f"Structural variance: {result.structural_variance:.6f}  {_verdict(result.structural_variance)}",
        f"Urgency variance:    {result.urgency_variance:.6f}  {_verdict(result.urgency_variance)}",
        "",
    ]

    if result.deterministic:
        lines.append("DETERMINISTIC: all scores identical across all runs, engine is stable.")
    else:
        lines.append("VARIANCE DETECTED: engine may have non-deterministic behavior.")

    lines.append("=" * 60)
    return "\n".join(lines)
