"""
Transient reject requeue.

Rejects whose error looks transient (timeouts, network, rate limits, capacity,
token limits) are moved to the reject history, dropped from the checkpoint's
done/rejected buckets and queued for another generation attempt. Hard rejects
(404, insufficient evidence, guardrail failures) are never retried automatically.
"""

from dataclasses import dataclass, field
from pathlib import Path

from contentledger.core.classification import is_transient
from contentledger.core.models.checkpoint import Checkpoint, QueueEntry
from contentledger.core.models.record import FailureRecord
from contentledger.observability.logger import get_logger
from contentledger.storage.ledger import LedgerSet, archive_records
from contentledger.storage.state_store import save_checkpoint
from contentledger.utils.clock import utc_now

logger = get_logger(__name__)

TRANSIENT_RETRY = "transient-retry"


@dataclass
class RequeueResult:
    examined: int = 0
    requeued: list[str] = field(default_factory=list)
    hard: int = 0
    dry_run: bool = False

    def summary(self) -> dict:
        return {
            "examined": self.examined,
            "requeued": len(self.requeued),
            "hard": self.hard,
            "dry_run": self.dry_run,
        }


def select_transient(records: list[FailureRecord]) -> tuple[list[FailureRecord], list[FailureRecord]]:
    """Split rejects into (transient, hard)."""
    transient: list[FailureRecord] = []
    hard: list[FailureRecord] = []
    for record in records:
        (transient if is_transient(record.error) else hard).append(record)
    return transient, hard


class TransientRequeuer:
    def __init__(self, ledgers: LedgerSet, checkpoint_path: Path, sample_size: int = 20):
        self.ledgers = ledgers
        self.checkpoint_path = checkpoint_path
        self.sample_size = sample_size

    def requeue(self, checkpoint: Checkpoint, dry_run: bool = False) -> tuple[Checkpoint, RequeueResult]:
        """
        Requeue transient rejects.

        The checkpoint is saved first with the keys queued, then the history,
        then the Reject ledger. An interrupted run leaves the transient rejects
        in Reject, so repeating it finishes the move; the history append skips
        records it already holds.
        """
        all_records = list(self.ledgers.reject.read_all())
        records = [r for r in all_records if isinstance(r, FailureRecord)]
        transient, hard = select_transient(records)
        result = RequeueResult(
            examined=len(records),
            requeued=sorted({r.key for r in transient}),
            hard=len(hard),
            dry_run=dry_run,
        )

        if dry_run or not transient:
            logger.info("Transient requeue summary", extra=result.summary())
            return checkpoint, result

        now = utc_now()
        done = dict(checkpoint.done)
        rejected = dict(checkpoint.rejected)
        queued = dict(checkpoint.queued)
        for key in result.requeued:
            done.pop(key, None)
            rejected.pop(key, None)
            if key not in queued:
                queued[key] = QueueEntry(reason=TRANSIENT_RETRY, queuedAt=now)

        updated = checkpoint.model_copy(update={"done": done, "rejected": rejected, "queued": queued})
        save_checkpoint(self.checkpoint_path, updated)
        archive_records(self.ledgers.reject_history, transient, TRANSIENT_RETRY, now)
        moved = {id(r) for r in transient}
        self.ledgers.reject.rewrite(r for r in all_records if id(r) not in moved)

        logger.info(
            f"Requeued {len(result.requeued)} transient rejects",
            extra={**result.summary(), "sample": result.requeued[: self.sample_size]},
        )
        return updated, result
