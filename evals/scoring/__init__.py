"""
Scoring - Independent multi-mode case scoring and field metrics.
"""

from .isolation import (
    AggregateScores,
    FieldMatches,
    ScoringIsolationLayer,
    ScoringResult,
    aggregate_scores,
    match_amount,
    match_name,
)
from .field_metrics import FieldMetrics, FieldMetricsCollector

__all__ = [
    "AggregateScores",
    "FieldMatches",
    "ScoringIsolationLayer",
    "ScoringResult",
    "aggregate_scores",
    "match_amount",
    "match_name",
    "FieldMetrics",
    "FieldMetricsCollector",
]
