"""
Validators - Post-run output gates.

- PIIScanner: No personal data may appear in evaluation outputs
"""

from .pii import PIIDetection, PIIScanner, PIIScanReport, PIIScanResult, generate_pii_report

__all__ = [
    "PIIDetection",
    "PIIScanner",
    "PIIScanReport",
    "PIIScanResult",
    "generate_pii_report",
]
