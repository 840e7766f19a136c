"""
Evaluation harness error taxonomy.

Fatal errors (IntegrityError, UnknownExperimentError,
InvalidExperimentError, PIIDetected) propagate to the CLI and end the process with exit code 1.
CaseEvaluationError is caught per case. ComparisonRefused is converted
to a None result by the baseline comparator.
"""

from pathlib import Path
from typing import Any, Iterable, Optional


class EvalError(Exception):
    """Base class for harness errors."""


class IntegrityError(EvalError):
    """A dataset is missing from the manifest, missing on disk, or mismatched."""

    def __init__(
        self,
        dataset: str,
        reason: str,
        expected: Optional[Any] = None,
        actual: Optional[Any] = None,
    ):
        self.dataset = dataset
        self.reason = reason
        self.expected = expected
        self.actual = actual
        message = f"Integrity check failed for dataset '{dataset}': {reason}"
        if expected is not None or actual is not None:
            message += f" (expected={expected}, actual={actual})"
        super().__init__(message)


class UnknownExperimentError(EvalError):
    """An experiment name is neither registered nor defined on disk."""

    def __init__(
        self,
        name: str,
        available: Iterable[str],
        experiments_dir: Optional[Path] = None,
    ):
        self.name = name
        self.available = sorted(available)
        message = (
            f"Unknown experiment: {name}. "
            f"Available: {', '.join(self.available) or '(none)'}"
        )
        if experiments_dir is not None:
            message += f". Custom experiments are read from {experiments_dir}/<name>.json"
        super().__init__(message)


class InvalidExperimentError(EvalError):
    """A custom experiment definition file exists but cannot be parsed."""

    def __init__(self, name: str, path: Path, reason: str):
        self.name = name
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid experiment definition '{name}' at {path}: {reason}")


class ComparisonRefused(EvalError):
    """The two reports were produced from different dataset manifests."""

    def __init__(self, current_digest: Optional[str], previous_digest: Optional[str]):
        self.current_digest = current_digest
        self.previous_digest = previous_digest
        super().__init__(
            "Cannot compare reports built from different datasets "
            f"(current manifest {str(current_digest)[:12]}, "
            f"previous manifest {str(previous_digest)[:12]})"
        )


class CaseEvaluationError(EvalError):
    """A single case could not be evaluated."""

    def __init__(self, case_id: str, reason: str):
        self.case_id = case_id
        self.reason = reason
        super().__init__(f"Case {case_id}: {reason}")


class PIIDetected(EvalError):
    """Run outputs contain personally identifiable information."""

    def __init__(self, report: Any):
        self.report = report
        super().__init__(
            f"PII detected in {report.files_with_pii} output file(s) "
            f"({report.total_detections} instance(s))"
        )
