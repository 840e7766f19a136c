"""
Structured Logging Module for the evaluation harness.

Provides JSON-formatted structured logging for observability.
Key events: integrity gating, experiment activation, case evaluation,
report persistence, comparison and promotion.
"""

import logging
import json
import sys
from datetime import datetime
from typing import Any, List, Optional

from core.config import settings


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter for structured logging.

    All logs are emitted as single-line JSON objects for easy parsing
    by log aggregation tools.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add extra fields if present
        if hasattr(record, "extra_fields"):
            log_entry.update(record.extra_fields)

        # Add exception info if present
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class StructuredLogger:
    """
    Structured logger wrapper with domain-specific methods.

    Provides type-safe logging for evaluation harness events.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _log(
        self,
        level: int,
        message: str,
        **kwargs: Any
    ) -> None:
        """Internal log method with extra fields."""
        extra = {"extra_fields": kwargs}
        self.logger.log(level, message, extra=extra)

    # ===== Run Events =====

    def run_started(
        self,
        datasets: List[str],
        experiments: List[str],
    ) -> None:
        """Log evaluation run started."""
        self._log(
            logging.INFO,
            f"Evaluation run started for {', '.join(datasets)}",
            event="run.started",
            datasets=datasets,
            experiments=experiments
        )

    def phase_changed(self, phase: str) -> None:
        """Log orchestrator phase transition."""
        self._log(
            logging.DEBUG,
            f"Entering phase {phase}",
            event="run.phase",
            phase=phase
        )

    def run_completed(
        self,
        total_cases: int,
        skipped_cases: int,
        strict_pass_rate: float,
        duration_ms: Optional[int] = None
    ) -> None:
        """Log evaluation run completed."""
        self._log(
            logging.INFO,
            f"Evaluation run completed: {total_cases} cases, {skipped_cases} skipped",
            event="run.completed",
            total_cases=total_cases,
            skipped_cases=skipped_cases,
            strict_pass_rate=strict_pass_rate,
            duration_ms=duration_ms
        )

    # ===== Integrity Events =====

    def integrity_verified(
        self,
        datasets: List[str],
        manifest_hash: str
    ) -> None:
        """Log dataset integrity verified."""
        self._log(
            logging.INFO,
            f"Integrity verified for {len(datasets)} dataset(s)",
            event="integrity.verified",
            datasets=datasets,
            manifest_hash=manifest_hash
        )

    def integrity_failed(
        self,
        dataset: str,
        reason: str,
        expected: Optional[Any] = None,
        actual: Optional[Any] = None
    ) -> None:
        """Log dataset integrity failure."""
        self._log(
            logging.ERROR,
            f"Integrity check failed for {dataset}: {reason}",
            event="integrity.failed",
            dataset=dataset,
            reason=reason,
            expected=expected,
            actual=actual
        )

    # ===== Experiment Events =====

    def experiment_activated(
        self,
        name: str,
        env_overrides: List[str],
        config_overrides: List[str]
    ) -> None:
        """Log experiment activated."""
        self._log(
            logging.INFO,
            f"Experiment activated: {name}",
            event="experiment.activated",
            experiment=name,
            env_overrides=env_overrides,
            config_overrides=config_overrides
        )

    def experiments_deactivated(
        self,
        experiments: List[str],
        restored_keys: List[str]
    ) -> None:
        """Log experiments deactivated and environment restored."""
        self._log(
            logging.INFO,
            f"Experiments deactivated, {len(restored_keys)} environment key(s) restored",
            event="experiment.deactivated",
            experiments=experiments,
            restored_keys=restored_keys
        )

    def custom_experiment_invalid(
        self,
        path: str,
        error: str
    ) -> None:
        """Log a malformed custom experiment definition."""
        self._log(
            logging.WARNING,
            f"Skipping malformed experiment definition {path}",
            event="experiment.invalid",
            path=path,
            error=error
        )

    # ===== Case Events =====

    def dataset_loaded(
        self,
        dataset: str,
        case_count: int
    ) -> None:
        """Log dataset loaded."""
        self._log(
            logging.INFO,
            f"Dataset {dataset} loaded with {case_count} cases",
            event="dataset.loaded",
            dataset=dataset,
            case_count=case_count
        )

    def case_skipped(
        self,
        dataset: str,
        case_id: str,
        error: str
    ) -> None:
        """Log a case excluded from aggregation after an evaluation error."""
        self._log(
            logging.WARNING,
            f"Case {case_id} skipped: {error}",
            event="case.skipped",
            dataset=dataset,
            case_id=case_id,
            error=error
        )

    # ===== Output Events =====

    def report_saved(
        self,
        path: str,
        latest_path: str
    ) -> None:
        """Log report snapshot persisted."""
        self._log(
            logging.INFO,
            f"Report saved: {path}",
            event="report.saved",
            path=path,
            latest_path=latest_path
        )

    def pii_detected(
        self,
        files_with_pii: int,
        total_detections: int,
        summary: dict
    ) -> None:
        """Log PII found in run outputs."""
        self._log(
            logging.ERROR,
            f"PII detected: {total_detections} instance(s) in {files_with_pii} file(s)",
            event="pii.detected",
            files_with_pii=files_with_pii,
            total_detections=total_detections,
            summary=summary
        )

    # ===== Baseline Events =====

    def comparison_refused(
        self,
        current_manifest_hash: str,
        previous_manifest_hash: str,
        previous_path: str
    ) -> None:
        """Log refused baseline comparison (dataset manifests differ)."""
        self._log(
            logging.WARNING,
            "Comparison refused: dataset manifests differ",
            event="comparison.refused",
            current_manifest_hash=current_manifest_hash,
            previous_manifest_hash=previous_manifest_hash,
            previous_path=previous_path
        )

    def comparison_completed(
        self,
        previous_path: str,
        regressions: int,
        improvements: int
    ) -> None:
        """Log baseline comparison completed."""
        self._log(
            logging.INFO,
            f"Comparison completed: {regressions} regression(s), {improvements} improvement(s)",
            event="comparison.completed",
            previous_path=previous_path,
            regressions=regressions,
            improvements=improvements
        )

    def promotion_created(
        self,
        promotion_path: str,
        engine_hash: str,
        strict_pass_rate: float
    ) -> None:
        """Log promotion snapshot created."""
        self._log(
            logging.INFO,
            f"Promoted to production (strict={strict_pass_rate:.2%})",
            event="promotion.created",
            promotion_path=promotion_path,
            engine_hash=engine_hash,
            strict_pass_rate=strict_pass_rate
        )

    def stability_completed(
        self,
        runs: int,
        deterministic: bool
    ) -> None:
        """Log stability test completed."""
        level = logging.INFO if deterministic else logging.WARNING
        self._log(
            level,
            f"Stability test over {runs} runs: " +
            ("deterministic" if deterministic else "VARIANCE DETECTED"),
            event="stability.completed",
            runs=runs,
            deterministic=deterministic
        )


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure process-wide logging.

    Should be called once at CLI startup. Logs go to stderr so the
    human-readable report on stdout stays clean.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, (level or settings.log_level).upper()))

    # Remove existing handlers
    root_logger.handlers = []

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)


def get_logger(name: str) -> StructuredLogger:
    """
    Get a structured logger for a module.

    Args:
        name: Logger name (typically __name__)

    Returns:
        StructuredLogger instance

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.case_skipped("core30", "T001", "engine raised ValueError")
    """
    return StructuredLogger(name)
