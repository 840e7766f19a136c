"""
Scoring Isolation Layer - Score one case in three independent modes.

All three modes are computed from the same four boolean field matches:
- structural:  mean of {name, category, amount}, urgency ignored
- full strict: mean of all four matches
- urgency:     1.0 if urgency matches, else 0.0

Tuning urgency thresholds can therefore never hide a structural
regression: the structural score does not read the urgency fields.
"""

import math
import re
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict

from extraction.schemas import FieldValues

from ..datasets.loader import Strictness


FIELDS = ("name", "category", "amount", "urgency")
STRUCTURAL_FIELDS = ("name", "category", "amount")

_TITLE_PATTERN = re.compile(r"^(dr|mr|mrs|ms|miss|coach)\.?\s+", re.IGNORECASE)
_PUNCTUATION_PATTERN = re.compile(r"[^\w\s]")


class FieldMatches(BaseModel):
    """Per-field correctness for one case."""

    model_config = ConfigDict(frozen=True)

    name: bool
    category: bool
    amount: bool
    urgency: bool

    def failed_fields(self) -> List[str]:
        return [f for f in FIELDS if not getattr(self, f)]


class ScoringResult(BaseModel):
    """Scores for one case. Created once, never mutated."""

    model_config = ConfigDict(frozen=True)

    field_matches: FieldMatches
    structural_score: float
    full_strict_score: float
    urgency_score: float
    structural_pass: bool
    strict_pass: bool
    acceptable_pass: bool


class ModeAggregate(BaseModel):
    """Run-level pass rate and mean for one scoring mode."""

    passes: int
    total: int
    pass_rate: float
    mean: float


class UrgencyAggregate(BaseModel):
    correct: int
    total: int
    accuracy: float


class AggregateScores(BaseModel):
    """Run-level reduction of many ScoringResults."""

    structural_score: ModeAggregate
    strict_score: ModeAggregate
    acceptable_score: ModeAggregate
    urgency_score: UrgencyAggregate


def normalize_name(name: str) -> str:
    """Lowercase, drop punctuation and leading titles, collapse whitespace."""
    text = " ".join(name.lower().split())
    text = _TITLE_PATTERN.sub("", text)
    text = _PUNCTUATION_PATTERN.sub("", text)
    return " ".join(text.split())


def match_name(actual: Optional[str], expected: Optional[str], allow_fuzzy: bool = False) -> bool:
    """
    Exact trimmed comparison, or normalized comparison when fuzzy is allowed.

    Fuzzy matching also accepts the same tokens in a different order
    ("Chen Robert" vs "Robert Chen").
    """
    if actual is None or expected is None:
        return actual is None and expected is None

    if actual.strip() == expected.strip():
        return True
    if not allow_fuzzy:
        return False

    normalized_actual = normalize_name(actual)
    normalized_expected = normalize_name(expected)
    if normalized_actual == normalized_expected:
        return True
    return sorted(normalized_actual.split()) == sorted(normalized_expected.split())


def match_exact(actual: Optional[str], expected: Optional[str]) -> bool:
    return actual == expected


def match_amount(actual: Optional[float], expected: Optional[float], tolerance: float) -> bool:
    """
    Null-vs-null is a match, a single null is a miss, otherwise the
    relative difference must be within tolerance of the expected value.
    """
    if actual is None and expected is None:
        return True
    if actual is None or expected is None:
        return False
    if actual == expected:
        return True
    return abs(actual - expected) <= abs(expected) * tolerance


class ScoringIsolationLayer:
    """
    Scores cases against two configurable thresholds.

    Args:
        amount_tolerance: Run-wide relative amount tolerance
        strict_threshold: Cut point for structural/strict pass
        acceptable_threshold: Lower cut point for acceptable pass
    """

    def __init__(
        self,
        amount_tolerance: float = 0.10,
        strict_threshold: float = 0.95,
        acceptable_threshold: float = 0.85,
    ):
        self.amount_tolerance = amount_tolerance
        self.strict_threshold = strict_threshold
        self.acceptable_threshold = acceptable_threshold

    def match_fields(
        self,
        actual: FieldValues,
        expected: FieldValues,
        strictness: Optional[Strictness] = None,
    ) -> FieldMatches:
        strictness = strictness or Strictness()
        tolerance = (
            strictness.amount_tolerance
            if strictness.amount_tolerance is not None
            else self.amount_tolerance
        )
        return FieldMatches(
            name=match_name(actual.name, expected.name, strictness.allow_fuzzy_name),
            category=match_exact(actual.category, expected.category),
            amount=match_amount(actual.goal_amount, expected.goal_amount, tolerance),
            urgency=match_exact(actual.urgency_level, expected.urgency_level),
        )

    def score(
        self,
        actual: FieldValues,
        expected: FieldValues,
        strictness: Optional[Strictness] = None,
    ) -> ScoringResult:
        """Score one case in all three modes."""
        matches = self.match_fields(actual, expected, strictness)

        structural = round(sum(getattr(matches, f) for f in STRUCTURAL_FIELDS) / len(STRUCTURAL_FIELDS), 4)
        full_strict = round(sum(getattr(matches, f) for f in FIELDS) / len(FIELDS), 4)
        urgency = 1.0 if matches.urgency else 0.0

        return ScoringResult(
            field_matches=matches,
            structural_score=structural,
            full_strict_score=full_strict,
            urgency_score=urgency,
            structural_pass=structural >= self.strict_threshold,
            strict_pass=full_strict >= self.strict_threshold,
            acceptable_pass=full_strict >= self.acceptable_threshold,
        )


def _rate(count: int, total: int) -> float:
    return round(count / total, 4) if total else 0.0


def aggregate_scores(results: Iterable[ScoringResult]) -> AggregateScores:
    """
    Reduce per-case results into run-level pass rates and means.

    Pure and order-independent: counts are integers and means use
    math.fsum, so any permutation of the input gives the same output.
    """
    results = list(results)
    total = len(results)

    def mode(passed: List[bool], scores: List[float]) -> ModeAggregate:
        passes = sum(passed)
        return ModeAggregate(
            passes=passes,
            total=total,
            pass_rate=_rate(passes, total),
            mean=round(math.fsum(scores) / total, 4) if total else 0.0,
        )

    full_scores = [r.full_strict_score for r in results]
    correct = sum(1 for r in results if r.field_matches.urgency)

    return AggregateScores(
        structural_score=mode([r.structural_pass for r in results], [r.structural_score for r in results]),
        strict_score=mode([r.strict_pass for r in results], full_scores),
        acceptable_score=mode([r.acceptable_pass for r in results], full_scores),
        urgency_score=UrgencyAggregate(correct=correct, total=total, accuracy=_rate(correct, total)),
    )


def field_accuracy(results: Iterable[ScoringResult]) -> Dict[str, float]:
    """Share of cases in which each field matched."""
    results = list(results)
    return {
        f: _rate(sum(1 for r in results if getattr(r.field_matches, f)), len(results))
        for f in FIELDS
    }
