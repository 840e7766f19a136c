"""
Tests for dataset loading and case parsing.
"""

import pytest

from evals.datasets.loader import Strictness, TestCase, load_dataset, parse_case
from evals.errors import CaseEvaluationError


class TestLoadDataset:
    """Tests for load_dataset."""

    def test_loads_records_in_order(self, eval_workspace):
        dataset = load_dataset("core", eval_workspace["datasets_dir"] / "core.jsonl")
        assert dataset.case_count == 3
        assert [r["id"] for r in dataset.records] == ["T001", "T002", "T003"]
        assert dataset.metadata is None

    def test_first_meta_record_becomes_metadata(self, eval_workspace):
        dataset = load_dataset("edge", eval_workspace["datasets_dir"] / "edge.jsonl")
        assert dataset.case_count == 2
        assert dataset.metadata.seed == 42
        assert dataset.metadata.generator_version == "1.0"
        assert dataset.metadata.count == 2

    def test_blank_lines_ignored(self, tmp_path):
        path = tmp_path / "blank.jsonl"
        path.write_text('\n{"id": "A"}\n\n{"id": "B"}\n', encoding="utf-8")
        assert load_dataset("blank", path).case_count == 2

    def test_invalid_json_kept_as_placeholder(self, tmp_path):
        """Test an undecodable line becomes a record that parse_case rejects."""
        path = tmp_path / "broken.jsonl"
        path.write_text('{"id": "A"}\n{not json\n', encoding="utf-8")

        dataset = load_dataset("broken", path)
        assert dataset.case_count == 2
        assert dataset.records[1]["_invalid"] == 2

        with pytest.raises(CaseEvaluationError) as exc_info:
            parse_case(dataset.records[1])
        assert exc_info.value.case_id == "line 2"
        assert "invalid JSON" in exc_info.value.reason


class TestParseCase:
    """Tests for parse_case."""

    def test_parses_aliases(self, core_records):
        case = parse_case(core_records[0])
        assert isinstance(case, TestCase)
        assert case.id == "T001"
        assert case.expected.urgency_level == "HIGH"
        assert case.expected.goal_amount == 1500.0
        assert case.strictness == Strictness()

    def test_strictness_accepts_expectations_key(self):
        case = parse_case({
            "id": "S1",
            "transcriptText": "text",
            "expected": {},
            "expectations": {"amountTolerance": 0.2, "allowFuzzyName": True},
        })
        assert case.strictness.amount_tolerance == 0.2
        assert case.strictness.allow_fuzzy_name is True

    def test_negative_tolerance_rejected(self):
        with pytest.raises(CaseEvaluationError):
            parse_case({
                "id": "S2",
                "transcriptText": "text",
                "expected": {},
                "strictness": {"amountTolerance": -1},
            })

    def test_missing_transcript(self, edge_records):
        with pytest.raises(CaseEvaluationError) as exc_info:
            parse_case(edge_records[1])
        assert exc_info.value.case_id == "E001"
        assert "transcriptText" in exc_info.value.reason

    def test_non_object_record(self):
        with pytest.raises(CaseEvaluationError) as exc_info:
            parse_case(["not", "a", "case"])
        assert exc_info.value.case_id == "unknown"

    def test_case_is_immutable(self, core_records):
        case = parse_case(core_records[0])
        with pytest.raises(Exception):
            case.id = "changed"
