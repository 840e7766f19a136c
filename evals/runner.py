"""
Eval Runner - Evaluation orchestrator and CLI.

Drives one run through its phases:

    VALIDATING -> EXPERIMENT_SETUP -> EVALUATING -> AGGREGATING
               -> REPORTING -> DEACTIVATING

Integrity failures abort before any case runs. A case that cannot be
evaluated is logged, recorded in the report and excluded from every
aggregate. Experiment overrides are rolled back on every exit path.

Usage:
    python -m evals.runner --dataset core30                  # One dataset
    python -m evals.runner --dataset all --verbose           # Every manifest dataset
    python -m evals.runner --experiment amount_v2            # With an experiment (repeatable)
    python -m evals.runner --compare eval_data/promotions/LATEST_PRODUCTION.json
    python -m evals.runner --target 60 --promote             # Promote if strict >= 60%
    python -m evals.runner --stability 3                     # Determinism self-test
    python -m evals.runner --list-experiments
"""

import argparse
import sys
import time
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from core.config import settings
from core.logging import get_logger, setup_logging
from extraction.engine import ExtractionEngine, engine_source_files, load_engine, normalize_output
from extraction.schemas import EngineConfig, ExtractedFields

from .datasets.integrity import IntegrityValidator
from .datasets.loader import TestCase, load_dataset, parse_case
from .datasets.manifest import Manifest
from .diagnostics.buckets import FailureBucketClassifier, FailureContext
from .errors import CaseEvaluationError, EvalError, PIIDetected
from .experiments.engine import EvalConfig, ExperimentEngine
from .reporting import (
    CaseError,
    CaseResult,
    DatasetBreakdown,
    EvaluationReport,
    ReportMetadata,
    generate_evaluation_report,
    save_report,
)
from .scoring.field_metrics import FieldMetricsCollector
from .scoring.isolation import ScoringIsolationLayer, ScoringResult, aggregate_scores, field_accuracy
from .stability import StabilityResult, analyze_stability, generate_stability_report
from .validators.pii import PIIScanner

logger = get_logger(__name__)


class RunPhase(str, Enum):
    """Orchestrator state machine."""

    IDLE = "idle"
    VALIDATING = "validating"
    EXPERIMENT_SETUP = "experiment_setup"
    EVALUATING = "evaluating"
    AGGREGATING = "aggregating"
    REPORTING = "reporting"
    DEACTIVATING = "deactivating"
    COMPLETED = "completed"


# Classifier field -> (extracted attribute) for failure contexts
FIELD_ATTRIBUTES = {
    "name": "name",
    "category": "category",
    "amount": "goal_amount",
    "urgency": "urgency_level",
}


class EvaluationOrchestrator:
    """
    Runs the extraction engine over validated datasets and builds a report.

    The engine is called once per case with an explicit EngineConfig and
    must be stateless between calls. Collectors are reset at the start
    of every run, so one orchestrator can run repeatedly.
    """

    def __init__(
        self,
        engine: Optional[ExtractionEngine] = None,
        datasets_dir: Optional[Path] = None,
        manifest_path: Optional[Path] = None,
        reports_dir: Optional[Path] = None,
        experiments_dir: Optional[Path] = None,
        integrity_log_path: Optional[Path] = None,
        base_config: Optional[EvalConfig] = None,
        engine_source_paths: Optional[List[Path]] = None,
        pii_scan_enabled: Optional[bool] = None,
        apply_environment: bool = True,
    ):
        """
        Initialize the orchestrator. Every argument defaults to settings.

        Args:
            engine: Extraction engine (default: load settings.engine)
            engine_source_paths: Files fingerprinted into the engine hash
                (default: the module defining the engine class)
            apply_environment: Also export experiment flags to os.environ
        """
        self.engine = engine or load_engine(settings.engine)
        self.datasets_dir = Path(datasets_dir or settings.datasets_dir)
        self.reports_dir = Path(reports_dir or settings.reports_dir)
        self.base_config = base_config or EvalConfig.from_settings()
        self.engine_source_paths = list(engine_source_paths or settings.engine_source_paths)
        self.pii_scan_enabled = settings.pii_scan_enabled if pii_scan_enabled is None else pii_scan_enabled

        self.validator = IntegrityValidator(self.datasets_dir, manifest_path, integrity_log_path)
        self.experiments = ExperimentEngine(experiments_dir, apply_environment=apply_environment)
        self.field_metrics = FieldMetricsCollector()
        self.buckets = FailureBucketClassifier()
        self.pii_scanner = PIIScanner()

        self.phase = RunPhase.IDLE
        self.last_report_path: Optional[Path] = None

    def _set_phase(self, phase: RunPhase) -> None:
        self.phase = phase
        logger.phase_changed(phase.value)

    def engine_fingerprint(self) -> str:
        paths = self.engine_source_paths or engine_source_files(self.engine)
        return ExperimentEngine.compute_engine_fingerprint(paths)

    def run(
        self,
        datasets: Union[str, Sequence[str]],
        experiments: Sequence[str] = (),
        persist: bool = True,
        verbose: bool = False,
    ) -> EvaluationReport:
        """
        Run one full evaluation.

        Args:
            datasets: Dataset name, list of names, or "all"
            experiments: Experiment names to activate for this run
            persist: Save the report snapshot (and PII-scan it)
            verbose: Print per-case results

        Returns:
            EvaluationReport

        Raises:
            IntegrityError: If any dataset fails validation
            UnknownExperimentError: If an experiment name is not defined
            PIIDetected: If the saved report contains PII
        """
        started = time.perf_counter()
        requested = [datasets] if isinstance(datasets, str) else list(datasets)

        self.field_metrics.reset()
        self.buckets.reset()
        self.last_report_path = None

        self._set_phase(RunPhase.VALIDATING)
        names, manifest = self.validator.validate(requested)
        logger.run_started(names, list(experiments))

        self._set_phase(RunPhase.EXPERIMENT_SETUP)
        with self.experiments.activated(experiments, self.base_config) as config:
            experiment_metadata = self.experiments.get_report_metadata()
            case_results, errors, breakdown = self._evaluate_datasets(names, manifest, config, verbose)

            self._set_phase(RunPhase.AGGREGATING)
            summary = aggregate_scores(r.scoring for r in case_results)

            self._set_phase(RunPhase.REPORTING)
            report = EvaluationReport(
                metadata=ReportMetadata(
                    engine_hash=self.engine_fingerprint(),
                    dataset_manifest_hash=manifest.digest,
                    experiment_flags=experiment_metadata["experiment_flags"],
                    experiment_details=experiment_metadata["experiment_details"],
                    config_overrides=experiment_metadata["config_overrides"],
                    run_time_ms=int((time.perf_counter() - started) * 1000),
                    datasets_evaluated=names,
                    total_cases=len(case_results),
                    skipped_cases=len(errors),
                    config=config.model_dump(),
                ),
                summary=summary,
                field_metrics=self.field_metrics.compute_metrics(),
                failure_buckets=self.buckets.get_summary(),
                dataset_breakdown=breakdown,
                cases=case_results,
                errors=errors,
            )

            if persist:
                self._persist(report)

            self._set_phase(RunPhase.DEACTIVATING)

        logger.run_completed(
            report.metadata.total_cases,
            report.metadata.skipped_cases,
            report.summary.strict_score.pass_rate,
            report.metadata.run_time_ms,
        )
        self._set_phase(RunPhase.COMPLETED)
        return report

    def _evaluate_datasets(
        self,
        names: List[str],
        manifest: Manifest,
        config: EvalConfig,
        verbose: bool,
    ) -> Tuple[List[CaseResult], List[CaseError], Dict[str, DatasetBreakdown]]:
        """Evaluate every case of every dataset, strictly in order."""
        scorer = ScoringIsolationLayer(
            amount_tolerance=config.default_amount_tolerance,
            strict_threshold=config.strict_pass_threshold,
            acceptable_threshold=config.acceptable_pass_threshold,
        )
        engine_config = EngineConfig(flags=config.engine_flags)

        self._set_phase(RunPhase.EVALUATING)
        case_results: List[CaseResult] = []
        errors: List[CaseError] = []
        breakdown: Dict[str, DatasetBreakdown] = {}

        for name in names:
            if verbose:
                print(f"\n{'=' * 60}")
                print(f"Dataset: {name}")
                print("=" * 60)

            dataset = load_dataset(name, self.datasets_dir / manifest.datasets[name].file)
            logger.dataset_loaded(name, dataset.case_count)

            scores: List[ScoringResult] = []
            skipped = 0
            for record in dataset.records:
                try:
                    result = self._evaluate_case(name, record, scorer, engine_config)
                except CaseEvaluationError as e:
                    logger.case_skipped(name, e.case_id, e.reason)
                    errors.append(CaseError(dataset=name, case_id=e.case_id, reason=e.reason))
                    skipped += 1
                    if verbose:
                        print(f"[SKIP] {e.case_id}: {e.reason}")
                    continue

                case_results.append(result)
                scores.append(result.scoring)
                if verbose:
                    status = "PASS" if result.scoring.strict_pass else "FAIL"
                    print(f"[{status}] {result.case_id}")
                    for field, bucket in result.failure_buckets.items():
                        print(f"       {field}: {bucket}")

            breakdown[name] = DatasetBreakdown(
                total_cases=len(scores),
                skipped_cases=skipped,
                summary=aggregate_scores(scores),
                field_accuracy=field_accuracy(scores),
                metadata=dataset.metadata.model_dump(exclude_none=True) if dataset.metadata else None,
            )

        return case_results, errors, breakdown

    def _evaluate_case(
        self,
        dataset: str,
        record: Any,
        scorer: ScoringIsolationLayer,
        engine_config: EngineConfig,
    ) -> CaseResult:
        """
        Evaluate one case: extract, score, record metrics, classify failures.

        Nothing is recorded until extraction and scoring succeeded, so a
        skipped case leaves no trace in any aggregate.

        Raises:
            CaseEvaluationError: If the record is malformed or the engine fails
        """
        case = parse_case(record)
        started = time.perf_counter()
        actual = self._extract(case, dataset, engine_config)
        latency_ms = round((time.perf_counter() - started) * 1000, 3)
        scoring = scorer.score(actual, case.expected, case.strictness)

        self.field_metrics.record_case(
            case.id, actual, case.expected, scoring.field_matches, actual.urgency_score
        )

        # Datasets without notes carry their signals in the description
        notes = case.notes or case.description
        failure_buckets = {}
        for field in scoring.field_matches.failed_fields():
            attribute = FIELD_ATTRIBUTES[field]
            failure_buckets[field] = self.buckets.classify(field, FailureContext(
                case_id=case.id,
                actual=getattr(actual, attribute),
                expected=getattr(case.expected, attribute),
                transcript=case.transcript_text,
                notes=notes,
            ))

        return CaseResult(
            dataset=dataset,
            case_id=case.id,
            scoring=scoring,
            failure_buckets=failure_buckets,
            latency_ms=latency_ms,
        )

    def _extract(self, case: TestCase, dataset: str, engine_config: EngineConfig) -> ExtractedFields:
        metadata = {"id": case.id, "dataset": dataset, "description": case.description}
        try:
            raw = self.engine.extract(case.transcript_text, metadata, engine_config)
            return normalize_output(raw)
        except Exception as e:
            # Any engine failure invalidates only this case
            raise CaseEvaluationError(case.id, f"engine failed: {type(e).__name__}: {e}") from e

    def _persist(self, report: EvaluationReport) -> None:
        path, latest_path = save_report(report, self.reports_dir)
        self.last_report_path = path

        if not self.pii_scan_enabled:
            return
        scan = self.pii_scanner.scan_files([path, latest_path])
        if not scan.passed:
            logger.pii_detected(scan.files_with_pii, scan.total_detections, scan.summary)
            raise PIIDetected(scan)


def run_stability(
    runs: int,
    datasets: Union[str, Sequence[str]],
    experiments: Sequence[str] = (),
    orchestrator_factory: Callable[[], EvaluationOrchestrator] = EvaluationOrchestrator,
    verbose: bool = False,
) -> Tuple[StabilityResult, List[EvaluationReport]]:
    """
    Run the whole pipeline N times over identical inputs.

    Each run gets a fresh orchestrator. Any variance in the aggregate
    rates points at a non-deterministic engine.
    """
    reports = []
    for i in range(runs):
        if verbose:
            print(f"--- Stability run {i + 1}/{runs} ---")
        reports.append(orchestrator_factory().run(datasets, experiments))

    result = analyze_stability(reports)
    logger.stability_completed(result.runs, result.deterministic)
    return result, reports


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="evals",
        description="Evaluate the transcript extraction engine against labeled datasets"
    )
    parser.add_argument(
        "--dataset",
        default="all",
        help="Dataset name, comma-separated names, or 'all'"
    )
    parser.add_argument(
        "--experiment",
        action="append",
        default=[],
        help="Experiment to activate (repeatable)"
    )
    parser.add_argument(
        "--compare",
        type=Path,
        help="Report or promotion file to compare against"
    )
    parser.add_argument(
        "--target",
        type=float,
        help="Required strict pass rate in percent (gates --promote)"
    )
    parser.add_argument(
        "--promote",
        action="store_true",
        help="Snapshot this run as the production baseline"
    )
    parser.add_argument(
        "--stability",
        type=int,
        default=0,
        help="Run N times and fail on any score variance"
    )
    parser.add_argument(
        "--list-experiments",
        action="store_true",
        help="List available experiments and exit"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose output"
    )
    return parser


def run_cli(args: argparse.Namespace) -> int:
    """
    Execute a parsed command line.

    Returns:
        0 on success, 1 on a fatal error, a missed target or unstable scores
    """
    from baselines.comparison import BaselineComparator, generate_comparison_report
    from baselines.promotion import check_target, generate_promotion_summary, promote_to_production

    if args.list_experiments:
        print("Available experiments:")
        for experiment in ExperimentEngine().list_experiments():
            print(f"  {experiment.name:<24} {experiment.description}")
        return 0

    datasets = [name.strip() for name in args.dataset.split(",") if name.strip()]

    try:
        if args.stability > 1:
            result, _ = run_stability(args.stability, datasets, args.experiment, verbose=args.verbose)
            print(generate_stability_report(result))
            return 0 if result.deterministic else 1

        orchestrator = EvaluationOrchestrator()
        report = orchestrator.run(datasets, args.experiment, verbose=args.verbose)
        print(generate_evaluation_report(report, orchestrator.last_report_path))
    except (EvalError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    # The baseline is read before a promotion can replace it
    diff = None
    if args.compare:
        try:
            diff = BaselineComparator().compare(report, args.compare)
        except (OSError, ValueError) as e:
            print(f"Error: cannot read baseline {args.compare}: {e}", file=sys.stderr)
            return 1

    exit_code = 0

    if args.target is not None:
        target = check_target(report, args.target)
        if target.met:
            print(f"TARGET MET: {target.actual_percent:.2f}% >= {target.target_percent}% STRICT pass rate")
            if args.promote:
                promotion, path = promote_to_production(report)
                print(generate_promotion_summary(promotion, path))
        else:
            print(f"TARGET NOT MET: {target.actual_percent:.2f}% < {target.target_percent}% STRICT pass rate")
            exit_code = 1
    elif args.promote:
        promotion, path = promote_to_production(report)
        print(generate_promotion_summary(promotion, path))

    if args.compare:
        print(generate_comparison_report(diff))

    return exit_code


def main(argv: Optional[List[str]] = None):
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    setup_logging("DEBUG" if args.verbose else None)
    sys.exit(run_cli(args))


if __name__ == "__main__":
    main()
