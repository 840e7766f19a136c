"""
Diagnostics - Root-cause classification of field failures.
"""

from .buckets import (
    FAILURE_BUCKETS,
    KNOWN_CATEGORIES,
    BucketReport,
    FailureBucketClassifier,
    FailureContext,
)

__all__ = [
    "FAILURE_BUCKETS",
    "KNOWN_CATEGORIES",
    "BucketReport",
    "FailureBucketClassifier",
    "FailureContext",
]
