"""
End-to-end tests: full reconciliation cycles against a temporary data root.
"""

import json

import pytest

from contentledger.batch.pipeline import ReconciliationPipeline
from contentledger.core.config import build_config
from contentledger.core.exceptions import (
    CrossLedgerOverlapError,
    ExitCode,
    LockHeldError,
    MissingInputError,
)
from contentledger.core.models import AuditReport, DomainSets
from contentledger.core.models.audit_report import InvariantViolation
from contentledger.core.models.pipeline_state import PipelineStage

pytestmark = pytest.mark.e2e


def _snapshot(config):
    paths = config.paths
    return {
        path.name: path.read_bytes()
        for path in (paths.success, paths.reject, paths.drift, paths.checkpoint, paths.manifest)
    }


def _failing_audit(scope, ground_truth, checkpoint):
    violation = InvariantViolation(
        kind="identity_mismatch",
        message="|P|=1 but D+R+M+X+U=2",
        exit_code=ExitCode.INVARIANT_VIOLATION,
        count=1,
        offending_keys=["k"],
    )
    return AuditReport(scope=scope, sets=DomainSets(scope=scope), violations=[violation])


@pytest.fixture
def seeded(config, population, write_jsonl):
    """Population of three keys and one raw run file (one failure, one bad line, one success)"""
    population(["abc", "bad", "other"])
    write_jsonl(config.paths.raw_dir / "ai-run-001.jsonl", [
        {"key": "bad", "error": "404"},
        "{not json",
        {"key": "abc", "aboutcontent": "hello", "generatedAt": "2025-01-01T00:00:00Z"},
    ])
    return config


class TestReconciliationCycle:
    """Tests for ReconciliationPipeline.run_cycle"""

    def test_cycle_passes(self, seeded):
        """Test a clean cycle reaches PASSED with the expected buckets"""
        state = ReconciliationPipeline(seeded).run_cycle()

        assert state.stage == PipelineStage.PASSED
        assert state.exit_code == ExitCode.OK
        assert not state.recovery_attempted
        assert [r.stage for r in state.results] == [
            PipelineStage.CONSOLIDATING,
            PipelineStage.DEDUPING,
            PipelineStage.PROMOTING,
            PipelineStage.SYNCING,
            PipelineStage.AUDITING,
        ]
        assert state.checkpoint.done_keys() == {"abc"}
        assert state.checkpoint.rejected_keys() == {"bad"}
        buckets = state.last_result.summary["audit"]["buckets"]
        assert buckets == {"P": 3, "D": 1, "R": 1, "M": 0, "X": 0, "U": 1, "drift": 0}
        assert not seeded.paths.lock.exists()

    def test_second_cycle_is_byte_identical(self, seeded):
        """Test re-running with no new input changes no durable file"""
        pipeline = ReconciliationPipeline(seeded)
        pipeline.run_cycle()
        first = _snapshot(seeded)

        state = pipeline.run_cycle()

        assert state.stage == PipelineStage.PASSED
        assert _snapshot(seeded) == first

    def test_new_success_supersedes_reject(self, seeded, write_jsonl):
        """Test a later success for a rejected key moves it to done with provenance"""
        pipeline = ReconciliationPipeline(seeded)
        pipeline.run_cycle()
        write_jsonl(seeded.paths.raw_dir / "ai-run-002.jsonl", [{"key": "bad", "aboutcontent": "recovered"}])

        state = pipeline.run_cycle()

        assert state.stage == PipelineStage.PASSED
        assert state.checkpoint.done_keys() == {"abc", "bad"}
        assert state.checkpoint.rejected_keys() == set()
        assert state.checkpoint.done["bad"].model_dump()["supersededReject"]["error"] == "404"
        history = seeded.paths.reject_history.read_text(encoding="utf-8")
        assert '"archiveReason":"superseded-by-success"' in history

    def test_injected_error_record_recovered(self, seeded, write_jsonl):
        """Test an error record placed in Success is moved out by recovery"""
        pipeline = ReconciliationPipeline(seeded)
        pipeline.run_cycle()
        with open(seeded.paths.success, "a", encoding="utf-8") as f:
            f.write('{"key":"other","error":"timeout"}\n')

        state = pipeline.run_cycle()

        assert state.stage == PipelineStage.PASSED
        assert state.recovery_attempted
        assert state.exit_code == ExitCode.OK
        failed_audit = state.results[4]
        assert failed_audit.stage == PipelineStage.AUDITING and not failed_audit.ok
        assert failed_audit.offending_keys == ["other"]
        assert state.results[-1].stage == PipelineStage.AUDITING and state.results[-1].ok
        assert state.checkpoint.rejected_keys() == {"bad", "other"}
        assert "other" not in {json.loads(line)["key"] for line in seeded.paths.success.read_text().splitlines()}

    def test_unrecoverable_audit_fails(self, seeded, monkeypatch):
        """Test recovery is attempted exactly once and then the cycle fails with a hint"""
        pipeline = ReconciliationPipeline(seeded)
        calls = []

        def audit(*args):
            calls.append(args)
            return _failing_audit(*args)

        monkeypatch.setattr(pipeline.auditor, "audit", audit)

        state = pipeline.run_cycle()

        assert len(calls) == 2
        assert state.stage == PipelineStage.FAILED
        assert state.exit_code == ExitCode.INVARIANT_VIOLATION
        assert state.last_result.offending_keys == ["k"]
        assert state.last_result.summary["suggested_command"] == "contentledger-admin unaccounted --scope promo"
        assert not seeded.paths.lock.exists()

    def test_stage_error_fails_cycle(self, seeded, monkeypatch):
        """Test a stage error stops the cycle with its exit code and no recovery"""
        pipeline = ReconciliationPipeline(seeded)

        def promote():
            raise CrossLedgerOverlapError("1 keys still in both Drift and Success", offending_keys=["abc"])

        monkeypatch.setattr(pipeline.merger, "promote", promote)

        state = pipeline.run_cycle()

        assert state.stage == PipelineStage.FAILED
        assert state.exit_code == ExitCode.CROSS_LEDGER_OVERLAP
        assert state.last_result.stage == PipelineStage.PROMOTING
        assert not state.recovery_attempted

    def test_lock_held(self, seeded):
        """Test a held lock stops the cycle before any file is touched"""
        lock = seeded.paths.lock
        lock.write_text('{"pid": 4242, "role": "pipeline", "at": "2025-01-01T00:00:00Z"}')

        with pytest.raises(LockHeldError) as exc_info:
            ReconciliationPipeline(seeded).run_cycle()

        assert exc_info.value.exit_code == ExitCode.LOCK_HELD
        assert lock.exists()
        assert not seeded.paths.success.exists()

    def test_missing_population(self, config):
        """Test a missing population file exits with code 2 and releases the lock"""
        with pytest.raises(MissingInputError):
            ReconciliationPipeline(config).run_cycle()
        assert not config.paths.lock.exists()

    def test_telemetry_and_metrics(self, data_root, tmp_path, population):
        """Test every cycle appends telemetry and exports the metrics textfile"""
        textfile = tmp_path / "metrics" / "contentledger.prom"
        config = build_config({"data_root": str(data_root), "metrics_textfile": str(textfile)})
        population(["abc"])

        pipeline = ReconciliationPipeline(config)
        pipeline.run_cycle()
        pipeline.run_cycle()

        lines = config.paths.telemetry.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2
        entry = json.loads(lines[0])
        assert entry["event"] == "cycle"
        assert entry["stage"] == "passed"
        assert set(entry["ledgers"]) == {"success", "reject", "drift"}
        assert "contentledger_cycles_total" in textfile.read_text()

    def test_operator_recovery(self, seeded, write_jsonl):
        """Test recover_now runs the sequence outside a normal cycle"""
        write_jsonl(seeded.paths.success, [{"key": "abc", "aboutcontent": "x"}, {"key": "bad", "error": "404"}])

        state = ReconciliationPipeline(seeded).recover_now()

        assert state.stage == PipelineStage.PASSED
        assert state.checkpoint.rejected_keys() == {"bad"}
        assert not seeded.paths.lock.exists()


class TestRunLoop:
    """Tests for ReconciliationPipeline.run_loop"""

    def test_runs_requested_cycles(self, seeded):
        sleeps = []
        exit_code = ReconciliationPipeline(seeded).run_loop(cycles=3, sleep_seconds=0.5, sleep=sleeps.append)

        assert exit_code == ExitCode.OK
        assert sleeps == [0.5, 0.5]

    def test_stops_on_failed_cycle(self, seeded, monkeypatch):
        """Test the loop ends at the first failing cycle"""
        pipeline = ReconciliationPipeline(seeded)
        monkeypatch.setattr(pipeline.auditor, "audit", _failing_audit)
        sleeps = []

        exit_code = pipeline.run_loop(cycles=3, sleep=sleeps.append)

        assert exit_code == ExitCode.INVARIANT_VIOLATION
        assert sleeps == []

    def test_default_sleep_from_config(self, data_root, population):
        config = build_config({"data_root": str(data_root), "sleep_seconds": 7})
        population(["abc"])
        sleeps = []

        ReconciliationPipeline(config).run_loop(cycles=2, sleep=sleeps.append)

        assert sleeps == [7.0]
