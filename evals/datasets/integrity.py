"""
Dataset Integrity Validator - Fail-fast gate before any case runs.

For each requested dataset the validator checks, in order:
1. The manifest has an entry for it
2. The dataset file exists
3. The file's SHA256 digest matches the manifest
4. The file's line count matches the manifest

The manifest's own stored digest is checked first. The first failure
aborts the whole batch. Every failure is appended to
the integrity audit log before the error is raised.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional, Tuple

from pydantic import ValidationError

from core.config import settings
from core.domain.fingerprinting import compute_file_digest, count_lines
from core.logging import get_logger

from ..errors import IntegrityError
from .manifest import Manifest, load_manifest

logger = get_logger(__name__)


class IntegrityValidator:
    """
    Verifies dataset files against the recorded manifest.

    Validation is idempotent: an unmodified dataset always passes
    against an unmodified manifest.
    """

    def __init__(
        self,
        datasets_dir: Optional[Path] = None,
        manifest_path: Optional[Path] = None,
        audit_log_path: Optional[Path] = None,
    ):
        self.datasets_dir = Path(datasets_dir or settings.datasets_dir)
        self.manifest_path = Path(manifest_path or settings.manifest_path)
        self.audit_log_path = Path(audit_log_path or settings.integrity_log_path)

    def validate(self, names: List[str]) -> Tuple[List[str], Manifest]:
        """
        Validate datasets against the manifest.

        Args:
            names: Dataset names to validate; "all" expands to every
                manifest dataset, in manifest order

        Returns:
            Tuple of (validated dataset names, loaded manifest)

        Raises:
            IntegrityError: On the first missing or mismatched dataset
        """
        if not self.manifest_path.exists():
            self._fail("*", f"manifest not found at {self.manifest_path}")
        try:
            manifest = load_manifest(self.manifest_path)
        except (json.JSONDecodeError, ValidationError) as e:
            self._fail("*", f"manifest unreadable: {e}")
        recomputed = manifest.compute_digest()
        if manifest.digest != recomputed:
            self._fail("*", "manifest digest mismatch", expected=manifest.digest, actual=recomputed)

        if "all" in names:
            names = list(manifest.datasets.keys())
        if not names:
            self._fail("*", "no datasets selected")

        for name in names:
            entry = manifest.datasets.get(name)
            if entry is None:
                self._fail(name, "dataset not present in manifest")

            path = self.datasets_dir / entry.file
            if not path.exists():
                self._fail(name, f"dataset file not found: {path}")

            digest = compute_file_digest(path)
            if digest != entry.sha256:
                self._fail(name, "sha256 digest mismatch", expected=entry.sha256, actual=digest)

            line_count = count_lines(path)
            if line_count != entry.line_count:
                self._fail(name, "line count mismatch", expected=entry.line_count, actual=line_count)

        logger.integrity_verified(list(names), manifest.digest)
        return list(names), manifest

    def _fail(
        self,
        dataset: str,
        reason: str,
        expected: Optional[Any] = None,
        actual: Optional[Any] = None,
    ) -> None:
        """Audit, log, then raise."""
        self._append_audit(dataset, reason, expected, actual)
        logger.integrity_failed(dataset, reason, expected, actual)
        raise IntegrityError(dataset, reason, expected, actual)

    def _append_audit(
        self,
        dataset: str,
        reason: str,
        expected: Optional[Any],
        actual: Optional[Any],
    ) -> None:
        self.audit_log_path.parent.mkdir(parents=True, exist_ok=True)
        entry = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "dataset": dataset,
            "reason": reason,
            "expected": expected,
            "actual": actual,
        }
        with open(self.audit_log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry) + "\n")
            f.flush()
