"""
PII Scanner - Post-run gate over evaluation output files.

Checks every line of each output for:
1. Email addresses
2. Phone numbers
3. Social security numbers
4. Credit-card-shaped numbers
5. Street addresses

Any detection fails the run even though scoring completed.
"""

import re
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field


class PIIDetection(BaseModel):
    """A single PII match."""

    type: str
    value: str
    line: int
    column: int
    context: str


class PIIScanResult(BaseModel):
    """Scan result for one file."""

    file: str
    has_pii: bool = False
    detections: List[PIIDetection] = Field(default_factory=list)
    error: Optional[str] = None
    scanned_at: datetime = Field(default_factory=datetime.utcnow)


class PIIScanReport(BaseModel):
    """Scan result over a set of files."""

    total_files: int = 0
    files_with_pii: int = 0
    total_detections: int = 0
    passed: bool = True
    results: List[PIIScanResult] = Field(default_factory=list)
    summary: Dict[str, int] = Field(default_factory=dict)


class PIIScanner:
    """
    Detects personally identifiable information in text and files.

    Digits glued to other word characters (hex digests, identifiers) are
    not treated as phone, SSN or card numbers.
    """

    EMAIL_PATTERNS = [
        r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b",
    ]

    PHONE_PATTERNS = [
        r"(?<![\w.])(?:\+?1[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}(?![\w.])",
    ]

    SSN_PATTERNS = [
        r"(?<![\w.])\d{3}-?\d{2}-?\d{4}(?![\w.])",
    ]

    CREDIT_CARD_PATTERNS = [
        r"(?<![\w.])(?:\d{4}[-\s]?){3}\d{4}(?![\w.])",
    ]

    ADDRESS_PATTERNS = [
        r"\b\d+\s+[A-Za-z0-9 ]+?\s(?:Street|St|Avenue|Ave|Road|Rd|Boulevard|Blvd|Lane|Ln|Drive|Dr|Circle|Cir|Court|Ct)\b",
    ]

    CONTEXT_CHARS = 20

    def __init__(self):
        self.compiled_patterns = {
            "email": [re.compile(p) for p in self.EMAIL_PATTERNS],
            "phone": [re.compile(p) for p in self.PHONE_PATTERNS],
            "ssn": [re.compile(p) for p in self.SSN_PATTERNS],
            "credit_card": [re.compile(p) for p in self.CREDIT_CARD_PATTERNS],
            "address": [re.compile(p, re.IGNORECASE) for p in self.ADDRESS_PATTERNS],
        }

    def scan_text(self, text: str) -> List[PIIDetection]:
        """
        Scan text line by line.

        Returns:
            Every detection with its 1-based line, column and masked context
        """
        detections = []
        for line_number, line in enumerate(text.split("\n"), start=1):
            for pii_type, patterns in self.compiled_patterns.items():
                for pattern in patterns:
                    for match in pattern.finditer(line):
                        detections.append(PIIDetection(
                            type=pii_type,
                            value=match.group(),
                            line=line_number,
                            column=match.start(),
                            context=self._context(line, match.start(), match.end()),
                        ))
        return detections

    def scan_file(self, path: Path) -> PIIScanResult:
        """Scan one file. An unreadable file is reported, not raised."""
        result = PIIScanResult(file=str(path))
        try:
            content = Path(path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            result.error = str(e)
            return result

        result.detections = self.scan_text(content)
        result.has_pii = bool(result.detections)
        return result

    def scan_files(self, paths: Iterable[Path]) -> PIIScanReport:
        """Scan several files and summarise detections by type."""
        report = PIIScanReport()
        for path in paths:
            result = self.scan_file(path)
            report.results.append(result)
            report.total_files += 1
            for detection in result.detections:
                report.summary[detection.type] = report.summary.get(detection.type, 0) + 1
            if result.error:
                report.summary["scan_error"] = report.summary.get("scan_error", 0) + 1

        report.files_with_pii = sum(1 for r in report.results if r.has_pii)
        report.total_detections = sum(len(r.detections) for r in report.results)
        report.passed = report.files_with_pii == 0 and "scan_error" not in report.summary
        return report

    def _context(self, line: str, start: int, end: int) -> str:
        """Surrounding text with the match itself masked."""
        before = line[max(0, start - self.CONTEXT_CHARS):start]
        after = line[end:end + self.CONTEXT_CHARS]
        return f"{before}[DETECTED]{after}"


def generate_pii_report(report: PIIScanReport) -> str:
    """
    Generate a human-readable PII scan report.

    Matched values are never printed, only their masked context.
    """
    lines = [
        "=" * 60,
        "PII SCAN REPORT",
        "=" * 60,
        f"Status: {'PASSED' if report.passed else 'FAILED'}",
        f"Files scanned: {report.total_files}",
        f"Files with PII: {report.files_with_pii}",
        f"Total detections: {report.total_detections}",
    ]

    if report.summary:
        lines.extend(["", "-" * 40, "DETECTION TYPES", "-" * 40])
        for pii_type, count in sorted(report.summary.items()):
            lines.append(f"  {pii_type}: {count}")

    for result in report.results:
        if not result.has_pii and not result.error:
            continue
        lines.extend(["", f"File: {result.file}"])
        if result.error:
            lines.append(f"  Scan failed: {result.error}")
        for detection in result.detections[:10]:
            lines.append(f"  Line {detection.line} [{detection.type}]: {detection.context}")
        if len(result.detections) > 10:
            lines.append(f"  ... and {len(result.detections) - 10} more")

    lines.append("=" * 60)
    return "\n".join(lines)
