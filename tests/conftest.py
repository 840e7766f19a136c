"""
Shared pytest fixtures for the evaluation harness tests.
"""

import json
import pytest
from pathlib import Path
from typing import Any, Dict, List

from evals.datasets.manifest import build_manifest, write_manifest
from evals.diagnostics.buckets import FAILURE_BUCKETS, BucketReport
from evals.experiments.engine import EvalConfig
from evals.reporting import DatasetBreakdown, EvaluationReport, ReportMetadata
from evals.runner import EvaluationOrchestrator
from evals.scoring.field_metrics import FieldMetrics
from evals.scoring.isolation import AggregateScores
from extraction.rules_engine import RulesExtractionEngine
from extraction.schemas import EngineConfig


def write_jsonl(path: Path, records: List[Dict[str, Any]]) -> Path:
    """Write records as one JSON object per line."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        for record in records:
            f.write(json.dumps(record) + "\n")
    return path


# ============================================================================
# CASE FIXTURES
# ============================================================================

@pytest.fixture
def core_records() -> List[Dict[str, Any]]:
    """
    Three cases with known outcomes under the rules engine:

    T001 passes every field, T002 misses category,
    T003 misses amount unless compound spoken numbers are enabled.
    """
    return [
        {
            "id": "T001",
            "transcriptText": (
                "Hello, my name is Maria Lopez. My landlord says I will face "
                "eviction this week. I need $1,500 for rent."
            ),
            "expected": {
                "name": "Maria Lopez",
                "category": "HOUSING",
                "urgencyLevel": "HIGH",
                "goalAmount": 1500,
            },
        },
        {
            "id": "T002",
            "transcriptText": (
                "Hi, this is David Kim. I lost my job and need help with "
                "groceries. I need about two thousand dollars."
            ),
            "expected": {
                "name": "David Kim",
                "category": "EMPLOYMENT",
                "urgencyLevel": "LOW",
                "goalAmount": 2000,
            },
        },
        {
            "id": "T003",
            "transcriptText": (
                "My name is Angela Brooks and I need three thousand five hundred "
                "dollars for surgery. The hospital needs payment immediately."
            ),
            "expected": {
                "name": "Angela Brooks",
                "category": "HEALTHCARE",
                "urgencyLevel": "MEDIUM",
                "goalAmount": 3500,
            },
        },
    ]


@pytest.fixture
def edge_records() -> List[Dict[str, Any]]:
    """Generator metadata, one malformed record and one all-null case."""
    return [
        {"_meta": True, "seed": 42, "generatorVersion": "1.0", "count": 2},
        {
            "id": "E001",
            "expected": {"name": None, "category": "FOOD"},
        },
        {
            "id": "E002",
            "transcriptText": "Please call me back. I need food.",
            "expected": {
                "name": None,
                "category": "FOOD",
                "urgencyLevel": "LOW",
                "goalAmount": "none",
            },
        },
    ]


# ============================================================================
# WORKSPACE FIXTURES
# ============================================================================

@pytest.fixture
def eval_workspace(tmp_path, core_records, edge_records) -> Dict[str, Path]:
    """Dataset files, a matching manifest and empty output directories."""
    datasets_dir = tmp_path / "datasets"
    write_jsonl(datasets_dir / "core.jsonl", core_records)
    write_jsonl(datasets_dir / "edge.jsonl", edge_records)

    manifest_path = datasets_dir / "manifest.json"
    write_manifest(build_manifest(datasets_dir), manifest_path)

    return {
        "root": tmp_path,
        "datasets_dir": datasets_dir,
        "manifest_path": manifest_path,
        "reports_dir": tmp_path / "reports",
        "promotions_dir": tmp_path / "promotions",
        "experiments_dir": tmp_path / "experiments",
        "integrity_log_path": tmp_path / "logs" / "integrity_errors.log",
    }


@pytest.fixture
def make_orchestrator(eval_workspace):
    """Factory for orchestrators bound to the test workspace."""

    def factory(engine=None, **overrides) -> EvaluationOrchestrator:
        kwargs = dict(
            engine=engine or RulesExtractionEngine(),
            datasets_dir=eval_workspace["datasets_dir"],
            manifest_path=eval_workspace["manifest_path"],
            reports_dir=eval_workspace["reports_dir"],
            experiments_dir=eval_workspace["experiments_dir"],
            integrity_log_path=eval_workspace["integrity_log_path"],
            base_config=EvalConfig(),
            pii_scan_enabled=True,
            apply_environment=False,
        )
        kwargs.update(overrides)
        return EvaluationOrchestrator(**kwargs)

    return factory


@pytest.fixture
def orchestrator(make_orchestrator) -> EvaluationOrchestrator:
    return make_orchestrator()


# ============================================================================
# ENGINE FIXTURES
# ============================================================================

class CountingEngine:
    """Engine that returns nothing on every second call."""

    def __init__(self):
        self.calls = 0
        self.delegate = RulesExtractionEngine()

    def extract(self, transcript_text: str, case_metadata: Dict[str, Any], config: EngineConfig):
        self.calls += 1
        if self.calls % 2 == 0:
            return {}
        return self.delegate.extract(transcript_text, case_metadata, config)


class FailingEngine:
    """Engine that raises on transcripts mentioning surgery."""

    def __init__(self):
        self.delegate = RulesExtractionEngine()

    def extract(self, transcript_text: str, case_metadata: Dict[str, Any], config: EngineConfig):
        if "surgery" in transcript_text:
            raise RuntimeError("model timeout")
        return self.delegate.extract(transcript_text, case_metadata, config)


@pytest.fixture
def rules_engine() -> RulesExtractionEngine:
    return RulesExtractionEngine()


@pytest.fixture
def counting_engine() -> CountingEngine:
    return CountingEngine()


@pytest.fixture
def failing_engine() -> FailingEngine:
    return FailingEngine()


# ============================================================================
# REPORT FIXTURES
# ============================================================================

def _mode(rate: float, total: int = 100) -> Dict[str, Any]:
    return {"passes": round(rate * total), "total": total, "pass_rate": rate, "mean": rate}


@pytest.fixture
def report_factory():
    """Build EvaluationReports with chosen headline numbers."""

    def factory(
        strict_rate: float = 0.92,
        structural_rate: float = 0.95,
        urgency_accuracy: float = 0.80,
        manifest_hash: str = "manifest-a",
        engine_hash: str = "engine-a",
        buckets: Dict[str, int] = None,
        field_accuracy: Dict[str, float] = None,
        datasets: Dict[str, float] = None,
    ) -> EvaluationReport:
        summary = AggregateScores.model_validate({
            "structural_score": _mode(structural_rate),
            "strict_score": _mode(strict_rate),
            "acceptable_score": _mode(strict_rate),
            "urgency_score": {
                "correct": round(urgency_accuracy * 100),
                "total": 100,
                "accuracy": urgency_accuracy,
            },
        })

        field_metrics = FieldMetrics()
        for field, accuracy in (field_accuracy or {}).items():
            getattr(field_metrics, field).accuracy = accuracy

        bucket_report = BucketReport.model_validate({
            "total_failures": sum((buckets or {}).values()),
            "bucket_count": len(buckets or {}),
            "buckets": {
                key: {
                    "category": FAILURE_BUCKETS[key].category,
                    "description": FAILURE_BUCKETS[key].description,
                    "severity": FAILURE_BUCKETS[key].severity,
                    "count": count,
                    "cases": [f"C{i}" for i in range(count)],
                }
                for key, count in (buckets or {}).items()
            },
        })

        breakdown = {
            name: DatasetBreakdown(
                total_cases=100,
                summary=AggregateScores.model_validate({
                    "structural_score": _mode(rate),
                    "strict_score": _mode(rate),
                    "acceptable_score": _mode(rate),
                    "urgency_score": {"correct": 0, "total": 100, "accuracy": 0.0},
                }),
            )
            for name, rate in (datasets or {}).items()
        }

        return EvaluationReport(
            metadata=ReportMetadata(
                engine_hash=engine_hash,
                dataset_manifest_hash=manifest_hash,
                datasets_evaluated=sorted(datasets or {"core": strict_rate}),
                total_cases=100,
            ),
            summary=summary,
            field_metrics=field_metrics,
            failure_buckets=bucket_report,
            dataset_breakdown=breakdown,
        )

    return factory
