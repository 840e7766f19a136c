"""
Failure Bucket Classifier - Root-cause classification of field failures.

Every field failure maps to EXACTLY ONE bucket of a fixed taxonomy.
Rules are kept as ordered (predicate, bucket) lists evaluated top to
bottom; the last rule of every field matches unconditionally, so
classification is total and deterministic.
"""

import re
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field

from extraction.schemas import URGENCY_LEVELS


class BucketDefinition(BaseModel):
    """A leaf of the failure taxonomy."""

    category: str
    description: str
    severity: str


FAILURE_BUCKETS: Dict[str, BucketDefinition] = {
    # Amount
    "amount_spoken_number_failure": BucketDefinition(
        category="amount",
        description="Spoken number form not recognised by the amount parser",
        severity="high",
    ),
    "amount_partial_match_override": BucketDefinition(
        category="amount",
        description="Partial spoken number matched instead of the full compound form",
        severity="high",
    ),
    "amount_null_extraction": BucketDefinition(
        category="amount",
        description="Amount extracted as null when the transcript states one",
        severity="high",
    ),
    "amount_tolerance_exceeded": BucketDefinition(
        category="amount",
        description="Amount detected but outside the tolerance threshold",
        severity="medium",
    ),
    "amount_false_positive": BucketDefinition(
        category="amount",
        description="Amount extracted when none was expected (wage/age/date confusion)",
        severity="medium",
    ),
    # Name
    "name_intro_pattern_missing": BucketDefinition(
        category="name",
        description="Common introduction pattern not matched by the extractor",
        severity="high",
    ),
    "name_reject_filter_failure": BucketDefinition(
        category="name",
        description="Non-name phrase captured as a name",
        severity="high",
    ),
    "name_partial_capture": BucketDefinition(
        category="name",
        description="First name captured but last name dropped, or vice versa",
        severity="medium",
    ),
    "name_lowercase_capture": BucketDefinition(
        category="name",
        description="Name captured with wrong casing",
        severity="low",
    ),
    "name_null_extraction": BucketDefinition(
        category="name",
        description="Name not extracted at all when present in transcript",
        severity="high",
    ),
    # Category
    "category_vocabulary_gap": BucketDefinition(
        category="category",
        description="Expected category is not in the engine vocabulary",
        severity="high",
    ),
    "category_priority_conflict": BucketDefinition(
        category="category",
        description="Multiple categories present, wrong one ranked higher",
        severity="medium",
    ),
    "category_multi_signal_conflict": BucketDefinition(
        category="category",
        description="Contextual signals for multiple categories are nearly equal",
        severity="medium",
    ),
    # Urgency
    "urgency_threshold_miss": BucketDefinition(
        category="urgency",
        description="Aggregate score fell on the wrong side of a level threshold",
        severity="high",
    ),
    "urgency_signal_absent": BucketDefinition(
        category="urgency",
        description="Urgency signals present in transcript but not detected",
        severity="high",
    ),
    "urgency_multiplier_override": BucketDefinition(
        category="urgency",
        description="Score multiplier pushed urgency above the expected level",
        severity="medium",
    ),
    "urgency_engine_conflict": BucketDefinition(
        category="urgency",
        description="Critical override fired incorrectly",
        severity="medium",
    ),
}

KNOWN_CATEGORIES: FrozenSet[str] = frozenset({
    "HOUSING", "FOOD", "EMPLOYMENT", "JOBS", "HEALTHCARE", "SAFETY",
    "EDUCATION", "TRANSPORTATION", "CHILDCARE", "LEGAL", "MENTAL_HEALTH",
})

INTRO_PATTERNS = [
    re.compile(r"hello,?\s+my\s+name\s+is", re.IGNORECASE),
    re.compile(r"hi,?\s+i'?m\s+", re.IGNORECASE),
    re.compile(r"my\s+name\s+is", re.IGNORECASE),
    re.compile(r"this\s+is\s+", re.IGNORECASE),
]

NON_NAME_INDICATORS = ("facing", "calling", "looking", "needing", "trying", "getting")

MULTI_CATEGORY_NOTES = re.compile(r"multi-?category|multiple.*categor|conflicting", re.IGNORECASE)
CONFLICT_NOTES = re.compile(r"conflict", re.IGNORECASE)

URGENCY_RANK = {level: i for i, level in enumerate(URGENCY_LEVELS)}
MAX_URGENCY = URGENCY_LEVELS[-1]


class FailureContext(BaseModel):
    """Everything a rule may look at for one field failure."""

    case_id: str
    actual: Any = None
    expected: Any = None
    transcript: Optional[str] = None
    notes: Optional[str] = None


class BucketEntry(BaseModel):
    case_id: str
    actual: Any = None
    expected: Any = None
    timestamp: str


class BucketSummary(BaseModel):
    category: str
    description: str
    severity: str
    count: int
    cases: List[str]


class BucketReport(BaseModel):
    """Failure bucket section of a report."""

    total_failures: int = 0
    bucket_count: int = 0
    buckets: Dict[str, BucketSummary] = Field(default_factory=dict)


Rule = Tuple[Callable[[FailureContext], bool], str]


# ===== Predicates =====

def _present(value: Any) -> bool:
    return value is not None and value != ""


def _as_number(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _tokens(value: str) -> List[str]:
    return value.strip().split()


def _amount_expected_missing(ctx: FailureContext) -> bool:
    return ctx.expected is None or (isinstance(ctx.expected, str) and ctx.expected.lower() == "none")


def _amount_partial(ctx: FailureContext) -> bool:
    """Actual under half of a positive expected amount."""
    actual, expected = _as_number(ctx.actual), _as_number(ctx.expected)
    if actual is None or expected is None or expected <= 0:
        return False
    return actual < expected and actual / expected < 0.5


def _amount_close(ctx: FailureContext) -> bool:
    """Within 25% relative error of the expected amount."""
    actual, expected = _as_number(ctx.actual), _as_number(ctx.expected)
    if actual is None or expected is None or expected == 0:
        return False
    return abs(actual - expected) / abs(expected) <= 0.25


def _name_missing(ctx: FailureContext) -> bool:
    return not _present(ctx.actual) and _present(ctx.expected)


def _name_both(ctx: FailureContext) -> bool:
    return (
        isinstance(ctx.actual, str) and isinstance(ctx.expected, str)
        and _present(ctx.actual) and _present(ctx.expected)
    )


def _name_intro_in_transcript(ctx: FailureContext) -> bool:
    return _name_missing(ctx) and any(p.search(ctx.transcript or "") for p in INTRO_PATTERNS)


def _name_has_non_name_word(ctx: FailureContext) -> bool:
    return _name_both(ctx) and any(w in ctx.actual.lower() for w in NON_NAME_INDICATORS)


def _name_partial(ctx: FailureContext) -> bool:
    if not _name_both(ctx):
        return False
    actual, expected = _tokens(ctx.actual), _tokens(ctx.expected)
    actual_lower = {t.lower() for t in actual}
    return len(actual) < len(expected) and any(t.lower() in actual_lower for t in expected)


def _name_case_only(ctx: FailureContext) -> bool:
    return _name_both(ctx) and ctx.actual.lower() == ctx.expected.lower() and ctx.actual != ctx.expected


def _rank(level: Any) -> int:
    return URGENCY_RANK.get(level, -1)


def _always(ctx: FailureContext) -> bool:
    return True


NAME_RULES: List[Rule] = [
    (_name_intro_in_transcript, "name_intro_pattern_missing"),
    (_name_missing, "name_null_extraction"),
    (_name_has_non_name_word, "name_reject_filter_failure"),
    (_name_partial, "name_partial_capture"),
    (_name_case_only, "name_lowercase_capture"),
    (_always, "name_null_extraction"),
]

AMOUNT_RULES: List[Rule] = [
    (lambda ctx: ctx.actual is not None and _amount_expected_missing(ctx), "amount_false_positive"),
    (lambda ctx: ctx.actual is None and not _amount_expected_missing(ctx), "amount_null_extraction"),
    (_amount_partial, "amount_partial_match_override"),
    (_amount_close, "amount_tolerance_exceeded"),
    (_always, "amount_spoken_number_failure"),
]

URGENCY_RULES: List[Rule] = [
    (lambda ctx: ctx.actual == MAX_URGENCY and ctx.expected != MAX_URGENCY, "urgency_engine_conflict"),
    (lambda ctx: bool(ctx.notes) and CONFLICT_NOTES.search(ctx.notes) is not None, "urgency_signal_absent"),
    (lambda ctx: _rank(ctx.actual) < _rank(ctx.expected), "urgency_threshold_miss"),
    (lambda ctx: _rank(ctx.actual) > _rank(ctx.expected), "urgency_multiplier_override"),
    (_always, "urgency_threshold_miss"),
]


def category_rules(known_categories: FrozenSet[str]) -> List[Rule]:
    """Category rules depend on the engine vocabulary."""
    return [
        (lambda ctx: ctx.expected is not None and ctx.expected not in known_categories,
         "category_vocabulary_gap"),
        (lambda ctx: bool(ctx.notes) and MULTI_CATEGORY_NOTES.search(ctx.notes) is not None,
         "category_multi_signal_conflict"),
        (_always, "category_priority_conflict"),
    ]


class FailureBucketClassifier:
    """
    Classifies field failures and accumulates them per bucket.

    Buckets start empty and must be reset() at the start of every run.
    """

    def __init__(self, known_categories: Optional[Iterable[str]] = None):
        self.known_categories = frozenset(known_categories or KNOWN_CATEGORIES)
        self.rules: Dict[str, List[Rule]] = {
            "name": NAME_RULES,
            "amount": AMOUNT_RULES,
            "category": category_rules(self.known_categories),
            "urgency": URGENCY_RULES,
        }
        self.buckets: Dict[str, List[BucketEntry]] = {key: [] for key in FAILURE_BUCKETS}

    def bucket_for(self, field: str, context: FailureContext) -> str:
        """Pure classification: return the bucket key without recording."""
        rules = self.rules.get(field)
        if rules is None:
            raise ValueError(f"Unknown field: {field}")
        for predicate, bucket in rules:
            if predicate(context):
                return bucket
        raise AssertionError(f"No rule matched for field {field}")

    def classify(self, field: str, context: FailureContext) -> str:
        """
        Classify one field failure and record it in its bucket.

        Args:
            field: One of name, amount, category, urgency
            context: Actual/expected values plus transcript and notes

        Returns:
            The bucket key
        """
        bucket = self.bucket_for(field, context)
        self.buckets[bucket].append(BucketEntry(
            case_id=context.case_id,
            actual=context.actual,
            expected=context.expected,
            timestamp=datetime.utcnow().isoformat() + "Z",
        ))
        return bucket

    def get_summary(self) -> BucketReport:
        """Non-empty buckets sorted by descending count, taxonomy order on ties."""
        summaries = []
        for key, entries in self.buckets.items():
            if not entries:
                continue
            definition = FAILURE_BUCKETS[key]
            summaries.append((key, BucketSummary(
                category=definition.category,
                description=definition.description,
                severity=definition.severity,
                count=len(entries),
                cases=[e.case_id for e in entries],
            )))

        summaries.sort(key=lambda item: -item[1].count)

        return BucketReport(
            total_failures=sum(s.count for _, s in summaries),
            bucket_count=len(summaries),
            buckets=dict(summaries),
        )

    def reset(self) -> None:
        """Clear every bucket for a fresh run."""
        self.buckets = {key: [] for key in FAILURE_BUCKETS}
