"""
Dataset Loader - Read labeled transcript cases from JSONL files.

Each line is one JSON record. An optional first record flagged with
"_meta" describes how the dataset was generated and is not a case.
Records are parsed into TestCase lazily so a single malformed record
can be skipped by the orchestrator without losing the whole dataset.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from extraction.schemas import FieldValues

from ..errors import CaseEvaluationError


class Strictness(BaseModel):
    """Per-case scoring overrides."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    amount_tolerance: Optional[float] = Field(default=None, alias="amountTolerance", ge=0)
    allow_fuzzy_name: bool = Field(default=False, alias="allowFuzzyName")


class TestCase(BaseModel):
    """One labeled transcript. Immutable once loaded."""

    __test__ = False

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    transcript_text: str = Field(alias="transcriptText")
    expected: FieldValues
    strictness: Strictness = Field(
        default_factory=Strictness,
        validation_alias=AliasChoices("strictness", "expectations"),
    )
    notes: Optional[str] = None
    description: Optional[str] = None


class DatasetMetadata(BaseModel):
    """Generator metadata carried by the optional first record."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    seed: Optional[Any] = None
    generator_version: Optional[str] = Field(default=None, alias="generatorVersion")
    count: Optional[int] = None


class Dataset(BaseModel):
    """An ordered list of raw case records loaded from one file."""

    name: str
    path: Path
    metadata: Optional[DatasetMetadata] = None
    records: List[Dict[str, Any]] = Field(default_factory=list)

    @property
    def case_count(self) -> int:
        return len(self.records)


def load_dataset(name: str, path: Path) -> Dataset:
    """
    Load a JSONL dataset file.

    Blank lines are ignored. A record with a truthy "_meta" key on the
    first non-blank line becomes the dataset metadata. A line that is not
    valid JSON is kept as an "_invalid" placeholder record so that
    parse_case rejects it as a single case.
    """
    dataset = Dataset(name=name, path=path)

    with open(path, "r", encoding="utf-8") as f:
        first = True
        for line_number, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as e:
                record = {"_invalid": line_number, "_error": e.msg}

            if first and isinstance(record, dict) and record.get("_meta"):
                dataset.metadata = DatasetMetadata.model_validate(record)
            else:
                dataset.records.append(record)
            first = False

    return dataset


def parse_case(record: Any) -> TestCase:
    """
    Convert one raw record into a TestCase.

    Raises:
        CaseEvaluationError: If the record does not describe a valid case
    """
    if isinstance(record, dict) and "_invalid" in record:
        raise CaseEvaluationError(
            f"line {record['_invalid']}", f"invalid JSON ({record.get('_error', 'undecodable')})"
        )

    case_id = str(record.get("id", "unknown")) if isinstance(record, dict) else "unknown"
    try:
        return TestCase.model_validate(record)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise CaseEvaluationError(case_id, f"malformed case record ({problems})") from e

