"""
Baselines - Promotion snapshots and baseline comparison.

Components:
- BaselineComparator: Diff a run against a baseline, refusing mismatched datasets
- promote_to_production: Snapshot a run as the new comparison baseline
"""

from .comparison import (
    BaselineComparator,
    BaselineDiff,
    MetricDelta,
    compare_reports,
    generate_comparison_report,
    load_baseline,
)
from .promotion import (
    Promotion,
    TargetCheck,
    check_target,
    generate_promotion_summary,
    load_latest_promotion,
    promote_to_production,
)

__all__ = [
    "BaselineComparator",
    "BaselineDiff",
    "MetricDelta",
    "compare_reports",
    "generate_comparison_report",
    "load_baseline",
    "Promotion",
    "TargetCheck",
    "check_target",
    "generate_promotion_summary",
    "load_latest_promotion",
    "promote_to_production",
]
