"""
Recovery orchestration.

Invoked once when an audit fails. Runs a fixed sequence in which every step is
idempotent, then re-audits:

    reclassify misplaced records → consolidate → dedupe (Reject, Success, Drift)
    → promote → sync checkpoint → audit

There is no retry loop; a second failed audit is reported with offending keys
and a suggested operator command.
"""

from dataclasses import dataclass, field
from typing import Any

from contentledger.batch.auditor import InvariantAuditor
from contentledger.batch.checkpoint_sync import CheckpointSync
from contentledger.batch.consolidator import Consolidator
from contentledger.batch.deduplicator import Deduplicator
from contentledger.batch.promotion import PromotionMerger
from contentledger.core.models.audit_report import AuditReport
from contentledger.core.models.pipeline_state import PipelineStage, PipelineState
from contentledger.core.models.record import FailureRecord, SuccessRecord, failure_stub
from contentledger.observability.logger import get_logger, log_operation
from contentledger.storage.ledger import LedgerSet, archive_records
from contentledger.utils.clock import utc_now

logger = get_logger(__name__)

MISSING_ERROR = "missing-error"

# First failed check -> what an operator should run next
OPERATOR_HINTS = {
    "duplicate_keys": "contentledger-admin stats  (then inspect the duplicated keys)",
    "success_reject_overlap": "contentledger-batch promote",
    "drift_success_overlap": "contentledger-batch promote",
    "misplaced_failure": "contentledger-admin stats  (error records left in Success)",
    "misplaced_success": "contentledger-admin stats  (error-less records left in Reject)",
    "done_rejected_overlap": "contentledger-admin check-checkpoint",
    "queued_overlap": "contentledger-admin check-checkpoint",
    "checkpoint_stale": "contentledger-batch sync",
    "identity_mismatch": "contentledger-admin unaccounted --scope {scope}",
}


@dataclass
class ReclassifyResult:
    failures_moved: list[str] = field(default_factory=list)
    successes_archived: list[str] = field(default_factory=list)


@dataclass
class RecoveryReport:
    """What recovery did and how the re-audit came out."""

    steps: dict[str, Any] = field(default_factory=dict)
    audit: AuditReport | None = None

    @property
    def passed(self) -> bool:
        return self.audit is not None and self.audit.passed

    def suggested_command(self) -> str | None:
        if self.audit is None or self.audit.passed:
            return None
        first = self.audit.violations[0]
        return OPERATOR_HINTS.get(first.kind, "contentledger-admin stats").format(scope=self.audit.scope)


class RecoveryOrchestrator:
    """Runs the fixed remediation sequence against persisted state."""

    def __init__(
        self,
        ledgers: LedgerSet,
        consolidator: Consolidator,
        deduplicator: Deduplicator,
        merger: PromotionMerger,
        checkpoint_sync: CheckpointSync,
        auditor: InvariantAuditor,
        key_field: str = "key",
    ):
        self.ledgers = ledgers
        self.consolidator = consolidator
        self.deduplicator = deduplicator
        self.merger = merger
        self.checkpoint_sync = checkpoint_sync
        self.auditor = auditor
        self.key_field = key_field

    def reclassify_misplaced(self) -> ReclassifyResult:
        """
        Move error records out of Success and error-less records out of Reject.

        Failures go to Reject (or Drift when Reject already holds the key).
        Error-less rejects go to the reject history: they carry no content worth
        promoting, and the key becomes unaccounted so the planner picks it up.
        """
        result = ReclassifyResult()

        kept_success: list[SuccessRecord] = []
        failures: list[FailureRecord] = []
        for record in self.ledgers.success.read_all():
            if isinstance(record, FailureRecord):
                failures.append(failure_stub(record, self.key_field))
            else:
                kept_success.append(record)

        kept_reject: list[FailureRecord] = []
        errorless: list[SuccessRecord] = []
        for record in self.ledgers.reject.read_all():
            if isinstance(record, FailureRecord):
                kept_reject.append(record)
            else:
                errorless.append(record)

        if errorless:
            archive_records(self.ledgers.reject_history, errorless, MISSING_ERROR, utc_now())
            self.ledgers.reject.rewrite(kept_reject)
            result.successes_archived = sorted({r.key for r in errorless})

        if failures:
            reject_keys = {r.key for r in kept_reject}
            to_reject = [r for r in failures if r.key not in reject_keys]
            to_drift = [r for r in failures if r.key in reject_keys]
            # Land the failures before removing them from Success so a crash never loses them
            self.ledgers.reject.append_many(to_reject)
            self.ledgers.drift.append_many(to_drift)
            self.ledgers.success.rewrite(kept_success)
            result.failures_moved = sorted({r.key for r in failures})

        if result.failures_moved or result.successes_archived:
            logger.warning(
                "Reclassified misplaced records",
                extra={
                    "failures_moved": len(result.failures_moved),
                    "errorless_archived": len(result.successes_archived),
                },
            )
        return result

    def recover(self, state: PipelineState) -> RecoveryReport:
        """
        Run remediation and the re-audit.

        Expects ``state`` in RECOVERING; leaves it in AUDITING with the
        re-audit attached. Exceptions from a step propagate to the caller.
        """
        report = RecoveryReport()
        state.recovery_attempted = True

        with log_operation("Recovery", logger=logger, scope=state.scope):
            reclassified = self.reclassify_misplaced()
            report.steps["reclassify"] = {
                "failures_moved": len(reclassified.failures_moved),
                "errorless_archived": len(reclassified.successes_archived),
            }

            consolidated = self.consolidator.run(state.manifest)
            report.steps["consolidate"] = consolidated.summary()

            deduped = self.deduplicator.dedupe_all(
                [self.ledgers.reject, self.ledgers.success, self.ledgers.drift]
            )
            report.steps["dedupe"] = {name: r.summary() for name, r in deduped.items()}

            promoted = self.merger.promote()
            report.steps["promote"] = promoted.summary()

            state.checkpoint, synced = self.checkpoint_sync.sync(state.checkpoint)
            report.steps["sync"] = synced.summary()

            state.advance(PipelineStage.AUDITING)
            report.audit = self.auditor.audit(state.scope, state.ground_truth, state.checkpoint)

        if not report.passed:
            logger.error(
                "Audit still failing after recovery; operator action required",
                extra={
                    "offending_keys": report.audit.offending_keys()[: self.auditor.sample_size],
                    "suggested_command": report.suggested_command(),
                },
            )
        return report
