"""
Reconciliation pipeline orchestration.

Coordinates one cycle as an explicit state machine:

    IDLE → CONSOLIDATING → DEDUPING → PROMOTING → SYNCING → AUDITING
         → PASSED
         → RECOVERING → AUDITING → PASSED | FAILED

Every stage returns a StageResult; a failed stage moves the cycle to FAILED
with the exit code the caller should surface. State is reloaded from disk at
the start of each cycle and the lock is held for the whole cycle.
"""

import time
from typing import Any, Callable

from contentledger.batch.auditor import InvariantAuditor
from contentledger.batch.checkpoint_sync import CheckpointSync
from contentledger.batch.consolidator import Consolidator
from contentledger.batch.deduplicator import Deduplicator
from contentledger.batch.promotion import PromotionMerger
from contentledger.batch.recovery import RecoveryOrchestrator
from contentledger.core.config import PipelineConfig
from contentledger.core.exceptions import ContentLedgerError, ExitCode
from contentledger.core.models.pipeline_state import PipelineStage, PipelineState, StageResult
from contentledger.core.scoring import RecordScorer
from contentledger.observability import metrics
from contentledger.observability.logger import get_logger, log_operation
from contentledger.observability.telemetry import TelemetryRecorder
from contentledger.storage.ground_truth import load_ground_truth
from contentledger.storage.ledger import LedgerSet
from contentledger.storage.lock import PipelineLock
from contentledger.storage.state_store import load_checkpoint, load_manifest

logger = get_logger(__name__)


class ReconciliationPipeline:
    """
    Runs consolidate → dedupe → promote → sync → audit, with one recovery attempt.

    Args:
        config: Pipeline configuration
        scope: Population scope to audit (defaults to ``config.default_scope``)
        ingest_raw: Fold raw reject files into the Reject ledger
        limit: Maximum raw files consolidated per cycle
    """

    def __init__(
        self,
        config: PipelineConfig,
        scope: str | None = None,
        ingest_raw: bool = False,
        limit: int | None = None,
    ):
        self.config = config
        self.scope = scope or config.default_scope
        self.paths = config.paths
        sample_size = config.audit_sample_size

        self.ledgers = LedgerSet.from_config(config)
        self.scorer = RecordScorer(config.content_fields, config.timestamp_fields)
        self.consolidator = Consolidator(config, ingest_raw=ingest_raw, limit=limit)
        self.deduplicator = Deduplicator(self.scorer)
        self.merger = PromotionMerger(self.ledgers, self.scorer, sample_size)
        self.checkpoint_sync = CheckpointSync(self.ledgers, self.paths.checkpoint, sample_size)
        self.auditor = InvariantAuditor(self.ledgers, sample_size)
        self.recovery = RecoveryOrchestrator(
            self.ledgers,
            self.consolidator,
            self.deduplicator,
            self.merger,
            self.checkpoint_sync,
            self.auditor,
            key_field=config.key_field,
        )
        self.telemetry = TelemetryRecorder(self.paths.telemetry, enabled=config.telemetry_enabled)

    def load_state(self) -> PipelineState:
        """Load manifest, checkpoint and ground truth from disk."""
        return PipelineState(
            scope=self.scope,
            manifest=load_manifest(self.paths.manifest),
            checkpoint=load_checkpoint(self.paths.checkpoint),
            ground_truth=load_ground_truth(self.config, self.scope),
        )

    # ---------------------------------------------------------------- stages

    def _run_stage(
        self,
        state: PipelineState,
        stage: PipelineStage,
        action: Callable[[PipelineState], dict[str, Any]],
    ) -> StageResult:
        state.advance(stage)
        with log_operation(f"Stage {stage.value}", logger=logger, stage=stage.value) as op:
            try:
                summary = action(state)
            except ContentLedgerError as e:
                result = StageResult.failure(stage, e.exit_code, e.message, e.offending_keys)
            else:
                result = StageResult.success(stage, **summary)
        metrics.observe_histogram(metrics.stage_duration_seconds, op.elapsed, stage=stage.value)
        state.record(result)
        if not result.ok:
            logger.error(
                f"Stage {stage.value} failed: {result.reason}",
                extra={"exit_code": int(result.exit_code), "offending_keys": result.offending_keys},
            )
            state.advance(PipelineStage.FAILED)
        return result

    def _consolidate(self, state: PipelineState) -> dict[str, Any]:
        return self.consolidator.run(state.manifest).summary()

    def _dedupe(self, state: PipelineState) -> dict[str, Any]:
        results = self.deduplicator.dedupe_all(self.ledgers.canonical())
        return {name: r.summary() for name, r in results.items()}

    def _promote(self, state: PipelineState) -> dict[str, Any]:
        return self.merger.promote().summary()

    def _sync(self, state: PipelineState) -> dict[str, Any]:
        state.checkpoint, result = self.checkpoint_sync.sync(state.checkpoint)
        return result.summary()

    def _audit(self, state: PipelineState) -> StageResult:
        report = self.auditor.audit(state.scope, state.ground_truth, state.checkpoint)
        if report.passed:
            result = StageResult.success(PipelineStage.AUDITING, audit=report.summary())
        else:
            first = report.violations[0]
            result = StageResult.failure(
                PipelineStage.AUDITING,
                report.exit_code,
                first.message,
                report.offending_keys()[: self.config.audit_sample_size],
                audit=report.summary(),
            )
        return state.record(result)

    # ----------------------------------------------------------------- cycle

    def run_stages(self, state: PipelineState) -> PipelineState:
        """Drive ``state`` from IDLE to PASSED or FAILED."""
        for stage, action in (
            (PipelineStage.CONSOLIDATING, self._consolidate),
            (PipelineStage.DEDUPING, self._dedupe),
            (PipelineStage.PROMOTING, self._promote),
            (PipelineStage.SYNCING, self._sync),
        ):
            if not self._run_stage(state, stage, action).ok:
                return state

        state.advance(PipelineStage.AUDITING)
        if self._audit(state).ok:
            state.advance(PipelineStage.PASSED)
            return state

        return self._recover(state)

    def _recover(self, state: PipelineState) -> PipelineState:
        state.advance(PipelineStage.RECOVERING)
        try:
            report = self.recovery.recover(state)
        except ContentLedgerError as e:
            state.record(StageResult.failure(PipelineStage.RECOVERING, e.exit_code, e.message, e.offending_keys))
            state.advance(PipelineStage.FAILED)
            return state

        audit = report.audit
        state.record(StageResult.success(PipelineStage.RECOVERING, **report.steps))
        if report.passed:
            state.record(StageResult.success(PipelineStage.AUDITING, audit=audit.summary()))
            state.advance(PipelineStage.PASSED)
        else:
            state.record(StageResult.failure(
                PipelineStage.AUDITING,
                audit.exit_code,
                audit.violations[0].message,
                audit.offending_keys()[: self.config.audit_sample_size],
                suggested_command=report.suggested_command(),
                audit=audit.summary(),
            ))
            state.advance(PipelineStage.FAILED)
        return state

    def run_cycle(self) -> PipelineState:
        """
        Run one locked cycle.

        Raises:
            LockHeldError: If another process holds the pipeline lock
            MissingInputError / StateFileError: If state cannot be loaded
        """
        with PipelineLock(self.paths.lock, role="pipeline"):
            state = self.load_state()
            with log_operation("Reconciliation cycle", logger=logger, scope=self.scope):
                self.run_stages(state)

            outcome = "failed"
            if state.stage == PipelineStage.PASSED:
                outcome = "recovered" if state.recovery_attempted else "passed"
            metrics.increment_counter(metrics.cycles_total, 1, outcome=outcome)

            self.telemetry.track_cycle(state, self.ledgers)
            self.telemetry.flush()
            metrics.export_textfile(self.config.metrics_textfile)

        logger.info(
            f"Cycle finished: {state.stage.value}",
            extra={"scope": self.scope, "exit_code": int(state.exit_code), "outcome": outcome},
        )
        return state

    def recover_now(self) -> PipelineState:
        """Run the recovery sequence on demand (operator command), under the lock."""
        with PipelineLock(self.paths.lock, role="recover"):
            state = self.load_state()
            self._recover(state)
            self.telemetry.track_cycle(state, self.ledgers)
            self.telemetry.flush()
            metrics.export_textfile(self.config.metrics_textfile)
        return state

    def run_loop(
        self,
        cycles: int | None = None,
        sleep_seconds: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> ExitCode:
        """
        Run cycles until ``cycles`` is reached or one fails.

        Args:
            cycles: Number of cycles to run; None runs until the process is killed
            sleep_seconds: Pause between cycles (defaults to ``config.sleep_seconds``)
            sleep: Sleep function, replaceable in tests

        Returns:
            Exit code of the last cycle
        """
        pause = self.config.sleep_seconds if sleep_seconds is None else sleep_seconds
        completed = 0
        exit_code = ExitCode.OK
        while cycles is None or completed < cycles:
            state = self.run_cycle()
            completed += 1
            exit_code = state.exit_code
            if exit_code != ExitCode.OK:
                logger.error(
                    f"Stopping loop after cycle {completed}: exit code {int(exit_code)}",
                    extra={"stage": state.stage.value},
                )
                break
            if cycles is None or completed < cycles:
                sleep(pause)
        return exit_code
