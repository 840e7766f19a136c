"""
Evals Module - Evaluation harness for transcript field extraction.

Scores a black-box extraction engine against labeled, manifest-pinned
datasets. CI integration: exit 1 on integrity failure or missed target.

Components:
- IntegrityValidator: Datasets must match the manifest before any case runs
- ScoringIsolationLayer: Structural, strict and urgency scores kept separate
- FieldMetricsCollector: Per-field accuracy and confusion data
- FailureBucketClassifier: Maps each field mismatch to one diagnostic bucket
- ExperimentEngine: Scoped feature-flag overrides with guaranteed rollback
- EvaluationOrchestrator: Drives a run and writes the report

Usage:
    python -m evals.runner --dataset all
    python -m evals.runner --experiment amount_v2 --compare eval_data/promotions/LATEST_PRODUCTION.json
    python -m evals.runner --stability 3
"""

from .datasets import IntegrityValidator
from .diagnostics import FailureBucketClassifier
from .errors import (
    CaseEvaluationError,
    ComparisonRefused,
    EvalError,
    IntegrityError,
    InvalidExperimentError,
    PIIDetected,
    UnknownExperimentError,
)
from .experiments import ExperimentEngine
from .reporting import EvaluationReport
from .runner import EvaluationOrchestrator, RunPhase, run_stability
from .scoring import FieldMetricsCollector, ScoringIsolationLayer

__all__ = [
    "IntegrityValidator",
    "FailureBucketClassifier",
    "CaseEvaluationError",
    "ComparisonRefused",
    "EvalError",
    "IntegrityError",
    "InvalidExperimentError",
    "PIIDetected",
    "UnknownExperimentError",
    "ExperimentEngine",
    "EvaluationReport",
    "EvaluationOrchestrator",
    "RunPhase",
    "run_stability",
    "FieldMetricsCollector",
    "ScoringIsolationLayer",
]
