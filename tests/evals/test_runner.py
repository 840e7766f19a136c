"""
Tests for Eval Runner - Evaluation orchestrator and CLI.
"""

import json
import os
import time
import pytest

from core.config import settings
from extraction.rules_engine import RulesExtractionEngine
from evals.datasets.manifest import build_manifest, write_manifest
from evals.errors import IntegrityError, PIIDetected, UnknownExperimentError
from evals.reporting import load_report
from evals.runner import RunPhase, build_parser, main, run_cli

from conftest import write_jsonl


class FixedEngine:
    """Engine that returns the same fields for every transcript."""

    def __init__(self, fields):
        self.fields = fields

    def extract(self, transcript_text, case_metadata, config):
        return dict(self.fields)


class SlowEngine:
    """Rules engine that sleeps before every call."""

    def __init__(self, delay):
        self.delay = delay
        self.delegate = RulesExtractionEngine()

    def extract(self, transcript_text, case_metadata, config):
        time.sleep(self.delay)
        return self.delegate.extract(transcript_text, case_metadata, config)


class TestEvaluationOrchestrator:
    """Tests for EvaluationOrchestrator.run."""

    def test_single_dataset(self, orchestrator):
        """Test scores and failure buckets over the core dataset."""
        report = orchestrator.run("core")

        assert report.metadata.datasets_evaluated == ["core"]
        assert report.metadata.total_cases == 3
        assert report.metadata.skipped_cases == 0
        assert report.summary.strict_score.passes == 1
        assert report.summary.strict_score.pass_rate == 0.3333
        assert report.summary.structural_score.pass_rate == 0.3333
        assert report.summary.urgency_score.accuracy == 1.0

        buckets = {c.case_id: c.failure_buckets for c in report.cases}
        assert buckets == {
            "T001": {},
            "T002": {"category": "category_priority_conflict"},
            "T003": {"amount": "amount_partial_match_override"},
        }
        assert report.failure_buckets.total_failures == 2

    def test_field_metrics(self, orchestrator):
        """Test per-field accuracy in the report."""
        metrics = orchestrator.run("core").field_metrics

        assert metrics.accuracies() == {
            "name": 1.0,
            "amount": 0.6667,
            "category": 0.6667,
            "urgency_level": 1.0,
        }
        assert metrics.category.confusion_matrix["FOOD -> EMPLOYMENT"].cases == ["T002"]
        assert metrics.urgency_raw_score.count == 3

    def test_all_datasets_skip_malformed_case(self, orchestrator):
        """Test a malformed record is reported and excluded from aggregates."""
        report = orchestrator.run("all")

        assert report.metadata.datasets_evaluated == ["core", "edge"]
        assert report.metadata.total_cases == 4
        assert report.metadata.skipped_cases == 1
        assert report.errors[0].case_id == "E001"
        assert report.summary.strict_score.total == 4
        assert report.summary.strict_score.pass_rate == 0.5
        assert report.field_metrics.name.total == 4

        edge = report.dataset_breakdown["edge"]
        assert edge.total_cases == 1
        assert edge.skipped_cases == 1
        assert edge.metadata["seed"] == 42
        assert report.dataset_breakdown["core"].summary.strict_score.pass_rate == 0.3333

    def test_engine_failure_skips_case(self, make_orchestrator, failing_engine):
        """Test an engine exception only invalidates its own case."""
        report = make_orchestrator(engine=failing_engine).run("core")

        assert report.metadata.total_cases == 2
        assert [e.case_id for e in report.errors] == ["T003"]
        assert "RuntimeError" in report.errors[0].reason
        assert report.summary.strict_score.pass_rate == 0.5
        assert report.field_metrics.amount.total == 2

    def test_experiment_changes_scores(self, orchestrator):
        """Test amount_v2 fixes compound spoken amounts."""
        report = orchestrator.run("core", ["amount_v2"])

        assert report.summary.strict_score.passes == 2
        assert report.metadata.experiment_flags == ["amount_v2"]
        assert report.metadata.config["engine_flags"] == {"USE_AMOUNT_V2": "true"}
        assert orchestrator.experiments.active_experiments == []

    def test_config_override_recorded(self, orchestrator):
        """Test config overrides reach the report header."""
        report = orchestrator.run("core", ["amount_tolerance_015"])

        assert report.metadata.config_overrides == {"default_amount_tolerance": 0.15}
        assert report.metadata.config["default_amount_tolerance"] == 0.15

    def test_repeated_runs_reset_collectors(self, orchestrator):
        """Test collectors start empty on every run."""
        first = orchestrator.run("core")
        second = orchestrator.run("core")

        assert second.summary == first.summary
        assert second.failure_buckets.total_failures == first.failure_buckets.total_failures
        assert second.field_metrics.name.total == 3

    def test_phase_completed(self, orchestrator):
        orchestrator.run("core")
        assert orchestrator.phase == RunPhase.COMPLETED

    def test_report_tagged_with_identity(self, orchestrator, eval_workspace):
        """Test engine hash and manifest digest tag the report."""
        report = orchestrator.run("core")
        manifest = build_manifest(eval_workspace["datasets_dir"])

        assert report.metadata.dataset_manifest_hash == manifest.manifest_hash
        assert len(report.metadata.engine_hash) == 64
        assert report.metadata.engine_hash == orchestrator.engine_fingerprint()

    def test_report_persisted(self, orchestrator, eval_workspace):
        """Test snapshot and LATEST pointer are written."""
        report = orchestrator.run("core")
        reports_dir = eval_workspace["reports_dir"]

        assert orchestrator.last_report_path.exists()
        assert orchestrator.last_report_path.name.startswith("eval_core_")
        latest = reports_dir / "LATEST_core.json"
        assert latest.exists()

        loaded = load_report(orchestrator.last_report_path)
        assert loaded.summary == report.summary
        assert loaded.metadata.engine_hash == report.metadata.engine_hash
        assert json.loads(latest.read_text(encoding="utf-8"))["metadata"]["total_cases"] == 3

    def test_persist_disabled(self, orchestrator, eval_workspace):
        orchestrator.run("core", persist=False)
        assert orchestrator.last_report_path is None
        assert not eval_workspace["reports_dir"].exists()

    def test_integrity_failure_aborts_before_any_case(self, make_orchestrator, counting_engine, eval_workspace):
        """Test a tampered dataset stops the run before the engine is called."""
        path = eval_workspace["datasets_dir"] / "core.jsonl"
        path.write_bytes(path.read_bytes().replace(b"David", b"Davis"))

        with pytest.raises(IntegrityError):
            make_orchestrator(engine=counting_engine).run("core")

        assert counting_engine.calls == 0
        assert not eval_workspace["reports_dir"].exists()

    def test_unknown_experiment_aborts(self, make_orchestrator, counting_engine):
        with pytest.raises(UnknownExperimentError):
            make_orchestrator(engine=counting_engine).run("core", ["nope"])
        assert counting_engine.calls == 0

    def test_pii_in_outputs_fails_run(self, make_orchestrator, eval_workspace, core_records, monkeypatch):
        """Test a report containing PII fails after scoring and still rolls back."""
        monkeypatch.delenv("USE_AMOUNT_V2", raising=False)
        leaky = dict(core_records[0], id="maria.lopez@example.com")
        write_jsonl(eval_workspace["datasets_dir"] / "leaky.jsonl", [leaky])
        write_manifest(build_manifest(eval_workspace["datasets_dir"]), eval_workspace["manifest_path"])

        orchestrator = make_orchestrator(apply_environment=True)
        with pytest.raises(PIIDetected) as exc_info:
            orchestrator.run("leaky", ["amount_v2"])

        assert exc_info.value.report.summary["email"] >= 1
        assert "USE_AMOUNT_V2" not in os.environ

    def test_pii_scan_disabled(self, make_orchestrator, eval_workspace, core_records):
        leaky = dict(core_records[0], id="maria.lopez@example.com")
        write_jsonl(eval_workspace["datasets_dir"] / "leaky.jsonl", [leaky])
        write_manifest(build_manifest(eval_workspace["datasets_dir"]), eval_workspace["manifest_path"])

        report = make_orchestrator(pii_scan_enabled=False).run("leaky")
        assert report.metadata.total_cases == 1

    def test_verbose_output(self, orchestrator, capsys):
        orchestrator.run("all", verbose=True)
        out = capsys.readouterr().out

        assert "[PASS] T001" in out
        assert "[FAIL] T002" in out
        assert "category: category_priority_conflict" in out
        assert "[SKIP] E001" in out

    def test_description_used_as_notes(self, make_orchestrator, eval_workspace):
        """Test a case with only a description still feeds the note-driven rules."""
        write_jsonl(eval_workspace["datasets_dir"] / "described.jsonl", [{
            "id": "D001",
            "transcriptText": "My name is Ana Ruiz. I need $100 for food.",
            "description": "conflicting urgency signals",
            "expected": {
                "name": "Ana Ruiz",
                "category": "FOOD",
                "urgencyLevel": "HIGH",
                "goalAmount": 100,
            },
        }])
        write_manifest(build_manifest(eval_workspace["datasets_dir"]), eval_workspace["manifest_path"])
        engine = FixedEngine({
            "name": "Ana Ruiz",
            "category": "FOOD",
            "urgencyLevel": "LOW",
            "goalAmount": 100,
        })

        report = make_orchestrator(engine=engine).run("described", persist=False)

        assert report.cases[0].failure_buckets == {"urgency": "urgency_signal_absent"}

    def test_invalid_json_line_skips_one_case(self, orchestrator, eval_workspace):
        """Test an undecodable dataset line is reported without aborting the run."""
        path = eval_workspace["datasets_dir"] / "core.jsonl"
        with open(path, "a", encoding="utf-8") as f:
            f.write('{"id": "BROKEN", "transcriptText": "hi\n')
        write_manifest(build_manifest(eval_workspace["datasets_dir"]), eval_workspace["manifest_path"])

        report = orchestrator.run("core")

        assert report.metadata.total_cases == 3
        assert report.metadata.skipped_cases == 1
        assert report.errors[0].case_id == "line 4"
        assert "invalid JSON" in report.errors[0].reason
        assert report.summary.strict_score.pass_rate == 0.3333

    def test_case_latency_recorded(self, make_orchestrator):
        """Test every case result carries the engine call latency."""
        report = make_orchestrator(engine=SlowEngine(0.01)).run("core", persist=False)

        assert len(report.cases) == 3
        assert all(case.latency_ms >= 10 for case in report.cases)


@pytest.fixture
def cli_settings(eval_workspace, monkeypatch):
    """Point the settings singleton at the test workspace."""
    for key in (
        "datasets_dir",
        "manifest_path",
        "reports_dir",
        "promotions_dir",
        "experiments_dir",
        "integrity_log_path",
    ):
        monkeypatch.setattr(settings, key, eval_workspace[key])
    for flag in ("USE_AMOUNT_V2", "USE_NAME_V2"):
        monkeypatch.delenv(flag, raising=False)
    return eval_workspace


def cli(*argv):
    return run_cli(build_parser().parse_args(list(argv)))


class TestCLI:
    """Tests for run_cli exit codes and output."""

    def test_success(self, cli_settings, capsys):
        assert cli("--dataset", "core") == 0
        assert "EXTRACTION EVALUATION REPORT" in capsys.readouterr().out

    def test_comma_separated_datasets(self, cli_settings):
        assert cli("--dataset", "core,edge") == 0
        assert (cli_settings["reports_dir"] / "LATEST_core+edge.json").exists()

    def test_target_missed(self, cli_settings, capsys):
        """Test a missed target exits 1 and does not promote."""
        assert cli("--dataset", "core", "--target", "60", "--promote") == 1
        assert "TARGET NOT MET: 33.33% < 60.0%" in capsys.readouterr().out
        assert not (cli_settings["promotions_dir"] / "LATEST_PRODUCTION.json").exists()

    def test_target_met_promotes(self, cli_settings, capsys):
        assert cli("--dataset", "core", "--experiment", "amount_v2", "--target", "60", "--promote") == 0
        out = capsys.readouterr().out
        assert "TARGET MET" in out
        assert "PROMOTED TO PRODUCTION" in out
        assert (cli_settings["promotions_dir"] / "LATEST_PRODUCTION.json").exists()

    def test_compare_against_promotion(self, cli_settings, capsys):
        """Test a later run compares against the promoted baseline."""
        assert cli("--dataset", "core", "--promote") == 0
        latest = cli_settings["promotions_dir"] / "LATEST_PRODUCTION.json"

        assert cli("--dataset", "core", "--experiment", "amount_v2", "--compare", str(latest)) == 0
        out = capsys.readouterr().out
        assert "BASELINE COMPARISON REPORT" in out
        assert "Improvements: " in out

    def test_compare_reads_baseline_before_promoting(self, cli_settings, capsys):
        """Test promoting and comparing in one run diffs against the previous baseline."""
        assert cli("--dataset", "core", "--promote") == 0
        latest = cli_settings["promotions_dir"] / "LATEST_PRODUCTION.json"
        capsys.readouterr()

        assert cli(
            "--dataset", "core", "--experiment", "amount_v2", "--promote", "--compare", str(latest)
        ) == 0
        out = capsys.readouterr().out

        assert "[+] strict_pass_rate" in out
        assert "Improvements: 0" not in out

    def test_integrity_failure(self, cli_settings, capsys):
        path = cli_settings["datasets_dir"] / "core.jsonl"
        path.write_bytes(path.read_bytes() + b"\n")

        assert cli("--dataset", "core") == 1
        assert "Integrity check failed" in capsys.readouterr().err

    def test_unknown_experiment(self, cli_settings, capsys):
        assert cli("--dataset", "core", "--experiment", "nope") == 1
        assert "Unknown experiment: nope" in capsys.readouterr().err

    def test_stability(self, cli_settings, capsys):
        assert cli("--dataset", "core", "--stability", "2") == 0
        assert "DETERMINISTIC: all scores identical" in capsys.readouterr().out

    def test_list_experiments(self, cli_settings, capsys):
        assert cli("--list-experiments") == 0
        assert "amount_v2" in capsys.readouterr().out

    def test_unknown_flag(self):
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args(["--bogus"])
        assert exc_info.value.code == 2

    def test_main_exits_with_status(self, cli_settings, monkeypatch):
        monkeypatch.setattr("evals.runner.setup_logging", lambda level=None: None)
        with pytest.raises(SystemExit) as exc_info:
            main(["--dataset", "core"])
        assert exc_info.value.code == 0
