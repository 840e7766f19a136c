"""
Tests for baseline comparison.
"""

import json
import pytest

from baselines.comparison import (
    BaselineComparator,
    compare_reports,
    generate_comparison_report,
    load_baseline,
)
from baselines.promotion import promote_to_production
from evals.errors import ComparisonRefused


class TestCompareReports:
    """Tests for compare_reports."""

    @pytest.fixture
    def baseline(self, report_factory):
        return report_factory(
            strict_rate=0.80,
            buckets={"amount_null_extraction": 5, "name_partial_capture": 2},
            field_accuracy={"name": 0.9, "amount": 0.7},
            datasets={"core": 0.80, "fuzz": 0.70},
        )

    @pytest.fixture
    def current(self, report_factory):
        return report_factory(
            strict_rate=0.85,
            structural_rate=0.93,
            engine_hash="engine-b",
            buckets={"amount_null_extraction": 2, "urgency_threshold_miss": 1},
            field_accuracy={"name": 0.9, "amount": 0.8},
            datasets={"core": 0.85, "new": 0.50},
        )

    def test_score_deltas(self, baseline, current):
        """Test headline score deltas and their direction."""
        diff = compare_reports(current, baseline)
        deltas = {d.metric: d for d in diff.score_deltas}

        assert deltas["strict_pass_rate"].delta == 0.05
        assert deltas["strict_pass_rate"].direction == "improved"
        assert deltas["structural_pass_rate"].delta == -0.02
        assert deltas["structural_pass_rate"].direction == "regressed"
        assert deltas["urgency_accuracy"].direction == "unchanged"

    def test_engine_change_detected(self, baseline, current):
        diff = compare_reports(current, baseline)
        assert diff.engine_changed
        assert diff.previous_engine_hash == "engine-a"

    def test_field_deltas(self, baseline, current):
        deltas = {d.metric: d for d in compare_reports(current, baseline).field_deltas}
        assert deltas["amount"].delta == 0.1
        assert deltas["name"].direction == "unchanged"

    def test_bucket_deltas_lower_is_better(self, baseline, current):
        """Test fewer failures count as an improvement."""
        deltas = {d.metric: d for d in compare_reports(current, baseline).bucket_deltas}

        assert deltas["amount_null_extraction"].delta == -3
        assert deltas["amount_null_extraction"].direction == "improved"
        assert deltas["name_partial_capture"].current == 0
        assert deltas["urgency_threshold_miss"].direction == "regressed"

    def test_dataset_deltas_only_for_shared_datasets(self, baseline, current):
        deltas = compare_reports(current, baseline).dataset_deltas
        assert [d.metric for d in deltas] == ["core"]

    def test_regressions_and_improvements(self, baseline, current):
        diff = compare_reports(current, baseline)
        assert {d.metric for d in diff.regressions} == {"structural_pass_rate", "urgency_threshold_miss"}
        assert "strict_pass_rate" in {d.metric for d in diff.improvements}

    def test_identical_reports_unchanged(self, report_factory):
        report = report_factory()
        diff = compare_reports(report, report)
        assert diff.regressions == []
        assert diff.improvements == []
        assert not diff.engine_changed

    def test_different_manifests_refused(self, report_factory):
        current = report_factory(manifest_hash="manifest-a")
        previous = report_factory(manifest_hash="manifest-b")

        with pytest.raises(ComparisonRefused):
            compare_reports(current, previous)
        with pytest.raises(ComparisonRefused):
            compare_reports(previous, current)


class TestBaselineComparator:
    """Tests for BaselineComparator over persisted files."""

    def write_report(self, report, path):
        path.write_text(report.model_dump_json(indent=2), encoding="utf-8")
        return path

    def test_refused_comparison_returns_none(self, report_factory, tmp_path):
        """Test differing manifest digests give None and no deltas."""
        previous_path = self.write_report(report_factory(manifest_hash="manifest-b"), tmp_path / "prev.json")
        before = previous_path.read_bytes()

        diff = BaselineComparator().compare(report_factory(manifest_hash="manifest-a"), previous_path)

        assert diff is None
        assert previous_path.read_bytes() == before
        assert "COMPARISON REFUSED" in generate_comparison_report(diff)

    def test_compare_against_report_file(self, report_factory, tmp_path):
        previous_path = self.write_report(report_factory(strict_rate=0.80), tmp_path / "prev.json")

        diff = BaselineComparator().compare(report_factory(strict_rate=0.90), previous_path)

        assert diff.previous_path == str(previous_path)
        text = generate_comparison_report(diff)
        assert "BASELINE COMPARISON REPORT" in text
        assert "strict_pass_rate" in text
        assert "+10.00 pts" in text

    def test_follows_promotion_record(self, report_factory, tmp_path):
        """Test a promotion file resolves to its full report."""
        promotion, promotion_path = promote_to_production(
            report_factory(strict_rate=0.80),
            promotions_dir=tmp_path / "promotions",
            reports_dir=tmp_path / "reports",
        )

        baseline = load_baseline(promotion_path)
        assert baseline.summary.strict_score.pass_rate == 0.80

    def test_follows_relative_report_path(self, report_factory, tmp_path):
        self.write_report(report_factory(strict_rate=0.70), tmp_path / "full.json")
        pointer = tmp_path / "pointer.json"
        pointer.write_text(json.dumps({"full_report_path": "full.json"}), encoding="utf-8")

        assert load_baseline(pointer).summary.strict_score.pass_rate == 0.70
