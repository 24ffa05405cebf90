"""
Invariant auditor.

Recomputes the checkpoint from the ledgers, partitions the population into
domain sets and checks every invariant. Each failed check names its offending
keys and carries the exit code the outer loop branches on.
"""

from dataclasses import dataclass, field

from contentledger.core.exceptions import ExitCode
from contentledger.core.models.audit_report import AuditReport, DomainSets, InvariantViolation
from contentledger.core.models.checkpoint import Checkpoint
from contentledger.core.models.ground_truth import GroundTruth
from contentledger.core.models.record import FailureRecord, SuccessRecord
from contentledger.observability.logger import get_logger
from contentledger.observability.metrics import ledger_records, record_audit, set_gauge
from contentledger.storage.ledger import Ledger, LedgerSet

logger = get_logger(__name__)


def compute_domain_sets(
    scope: str,
    population: set[str],
    manual: set[str],
    deny: set[str],
    done: set[str],
    rejected: set[str],
) -> DomainSets:
    """
    Partition ``population`` into D, R, M, X and U.

    D and R are taken from ``done`` and ``rejected`` independently; a key held
    in both is counted twice and breaks the identity instead of vanishing.
    """
    m = manual & population
    d = (done & population) - m
    r = (rejected & population) - m
    x = (deny & population) - (d | r | m)
    u = population - (d | r | m | x)
    return DomainSets(
        scope=scope,
        population=set(population),
        manual=m,
        done=d,
        rejected=r,
        denied=x,
        unaccounted=u,
        population_drift=(done | rejected) - population,
    )


@dataclass
class _LedgerScan:
    keys: set[str] = field(default_factory=set)
    duplicates: set[str] = field(default_factory=set)
    failures: set[str] = field(default_factory=set)
    successes: set[str] = field(default_factory=set)


def _scan(ledger: Ledger) -> _LedgerScan:
    scan = _LedgerScan()
    for record in ledger.read_all():
        if record.key in scan.keys:
            scan.duplicates.add(record.key)
        scan.keys.add(record.key)
        if isinstance(record, FailureRecord):
            scan.failures.add(record.key)
        elif isinstance(record, SuccessRecord):
            scan.successes.add(record.key)
    return scan


class InvariantAuditor:
    """
    Checks, in order (the first failure decides the report's exit code):

        1. no duplicate keys in Success or Reject               (exit 7)
        2. Success ∩ Reject = ∅, Drift ∩ Success = ∅            (exit 8)
        3. no error records in Success, no error-less in Reject (exit 3)
        4. checkpoint: done ∩ rejected = ∅, queued disjoint     (exit 3)
        5. persisted checkpoint matches the ledgers             (exit 3)
        6. |P| = |D| + |R| + |M| + |X| + |U|                    (exit 3)
    """

    def __init__(self, ledgers: LedgerSet, sample_size: int = 20):
        self.ledgers = ledgers
        self.sample_size = sample_size

    def _violation(self, kind, message: str, exit_code: ExitCode, keys: set[str]) -> InvariantViolation:
        return InvariantViolation(
            kind=kind,
            message=message,
            exit_code=exit_code,
            count=len(keys),
            offending_keys=sorted(keys)[: self.sample_size],
        )

    def audit(self, scope: str, ground_truth: GroundTruth, checkpoint: Checkpoint) -> AuditReport:
        success = _scan(self.ledgers.success)
        reject = _scan(self.ledgers.reject)
        drift_keys = self.ledgers.drift.keys()

        violations: list[InvariantViolation] = []

        dupes = success.duplicates | reject.duplicates
        if dupes:
            violations.append(self._violation(
                "duplicate_keys",
                f"{len(dupes)} keys appear more than once in Success/Reject",
                ExitCode.DUPLICATE_KEYS,
                dupes,
            ))

        overlap = success.keys & reject.keys
        if overlap:
            violations.append(self._violation(
                "success_reject_overlap",
                f"{len(overlap)} keys in both Success and Reject",
                ExitCode.CROSS_LEDGER_OVERLAP,
                overlap,
            ))

        drift_overlap = drift_keys & success.keys
        if drift_overlap:
            violations.append(self._violation(
                "drift_success_overlap",
                f"{len(drift_overlap)} keys in both Drift and Success",
                ExitCode.CROSS_LEDGER_OVERLAP,
                drift_overlap,
            ))

        if success.failures:
            violations.append(self._violation(
                "misplaced_failure",
                f"{len(success.failures)} error records in the Success ledger",
                ExitCode.INVARIANT_VIOLATION,
                success.failures,
            ))

        if reject.successes:
            violations.append(self._violation(
                "misplaced_success",
                f"{len(reject.successes)} records without an error in the Reject ledger",
                ExitCode.INVARIANT_VIOLATION,
                reject.successes,
            ))

        done_rejected = checkpoint.overlap()
        if done_rejected:
            violations.append(self._violation(
                "done_rejected_overlap",
                f"{len(done_rejected)} keys both done and rejected in the checkpoint",
                ExitCode.INVARIANT_VIOLATION,
                done_rejected,
            ))

        queued_overlap = checkpoint.queued_keys() & (checkpoint.done_keys() | checkpoint.rejected_keys())
        if queued_overlap:
            violations.append(self._violation(
                "queued_overlap",
                f"{len(queued_overlap)} queued keys are already done or rejected",
                ExitCode.INVARIANT_VIOLATION,
                queued_overlap,
            ))

        expected_done = success.keys
        expected_rejected = reject.keys - success.keys
        stale = (checkpoint.done_keys() ^ expected_done) | (checkpoint.rejected_keys() ^ expected_rejected)
        if stale:
            violations.append(self._violation(
                "checkpoint_stale",
                f"{len(stale)} keys differ between the checkpoint and the ledgers",
                ExitCode.INVARIANT_VIOLATION,
                stale,
            ))

        sets = compute_domain_sets(
            scope=scope,
            population=ground_truth.population(scope),
            manual=ground_truth.manual,
            deny=ground_truth.deny,
            done=checkpoint.done_keys(),
            rejected=checkpoint.rejected_keys(),
        )
        if not sets.identity_holds:
            counts = sets.counts()
            violations.append(self._violation(
                "identity_mismatch",
                (
                    f"|P|={counts['P']} but D+R+M+X+U="
                    f"{counts['D']}+{counts['R']}+{counts['M']}+{counts['X']}+{counts['U']}"
                    f"={sets.accounted_total}"
                ),
                ExitCode.INVARIANT_VIOLATION,
                sets.done & sets.rejected,
            ))

        ledger_counts = {
            "success": len(success.keys),
            "reject": len(reject.keys),
            "drift": len(drift_keys),
        }
        for name, count in ledger_counts.items():
            set_gauge(ledger_records, count, ledger=name)

        report = AuditReport(scope=scope, sets=sets, violations=violations, ledger_counts=ledger_counts)
        record_audit(scope, sets.counts(), [v.kind for v in violations])

        if report.passed:
            logger.info("Audit passed", extra=report.summary())
        else:
            logger.error("Audit failed", extra=report.summary())
        if sets.population_drift:
            logger.warning(
                f"{len(sets.population_drift)} checkpoint keys are outside the '{scope}' population",
                extra={"sample": sorted(sets.population_drift)[: self.sample_size]},
            )
        return report
