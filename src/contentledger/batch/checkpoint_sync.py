"""
Checkpoint sync: rebuild done / rejected / queued from the ledgers.

Success keys become ``done`` and Reject keys become ``rejected`` unless they are
done (success wins). Entries for keys that stay in the same bucket keep their
metadata untouched, so syncing unchanged ledgers writes identical bytes.
"""

from dataclasses import dataclass, field
from pathlib import Path

from contentledger.core.models.checkpoint import Checkpoint, LifecycleEntry, QueueEntry
from contentledger.core.models.record import FailureRecord
from contentledger.observability.logger import get_logger
from contentledger.storage.ledger import LedgerSet
from contentledger.storage.state_store import save_checkpoint
from contentledger.utils.clock import utc_now

logger = get_logger(__name__)

DONE_REASON = "success-ledger"
# Rejected entries carry the (truncated) error as their reason
MAX_REASON_LENGTH = 500


@dataclass
class SyncResult:
    done_before: int
    done_after: int
    rejected_before: int
    rejected_after: int
    queued_before: int
    queued_after: int
    superseded: list[str] = field(default_factory=list)
    changed: bool = False

    def summary(self) -> dict:
        return {
            "done": f"{self.done_before}->{self.done_after}",
            "rejected": f"{self.rejected_before}->{self.rejected_after}",
            "queued": f"{self.queued_before}->{self.queued_after}",
            "superseded_rejects": len(self.superseded),
            "changed": self.changed,
        }


def rebuild_checkpoint(
    previous: Checkpoint,
    success_keys: set[str],
    rejects: dict[str, FailureRecord],
    now: str,
) -> tuple[Checkpoint, list[str]]:
    """
    Compute the checkpoint implied by the ledgers.

    Args:
        previous: Checkpoint currently on disk
        success_keys: Keys of the Success ledger
        rejects: Reject ledger, key -> record
        now: Timestamp for entries created by this sync

    Returns:
        (new checkpoint, keys that moved from rejected to done)
    """
    done: dict[str, LifecycleEntry] = {}
    superseded: list[str] = []
    for key in sorted(success_keys):
        existing = previous.done.get(key)
        if existing is not None:
            done[key] = existing
            continue
        entry = LifecycleEntry(when=now, why=DONE_REASON)
        old_reject = previous.rejected.get(key)
        if old_reject is not None:
            entry = LifecycleEntry(
                when=now,
                why=DONE_REASON,
                supersededReject={"error": old_reject.why, "when": old_reject.when},
            )
            superseded.append(key)
        done[key] = entry

    rejected: dict[str, LifecycleEntry] = {}
    for key in sorted(set(rejects) - success_keys):
        existing = previous.rejected.get(key)
        if existing is not None:
            rejected[key] = existing
            continue
        record = rejects[key]
        why = getattr(record, "error", None) or "reject-ledger"
        rejected[key] = LifecycleEntry(when=now, why=why[:MAX_REASON_LENGTH])

    queued: dict[str, QueueEntry] = {
        key: entry
        for key, entry in sorted(previous.queued.items())
        if key not in done and key not in rejected
    }

    return previous.model_copy(update={"done": done, "rejected": rejected, "queued": queued}), superseded


class CheckpointSync:
    """Writes the ledger-derived checkpoint to disk."""

    def __init__(self, ledgers: LedgerSet, checkpoint_path: Path, sample_size: int = 20):
        self.ledgers = ledgers
        self.checkpoint_path = checkpoint_path
        self.sample_size = sample_size

    def sync(self, previous: Checkpoint) -> tuple[Checkpoint, SyncResult]:
        success_keys = self.ledgers.success.keys()
        rejects = {record.key: record for record in self.ledgers.reject.read_all()}

        checkpoint, superseded = rebuild_checkpoint(previous, success_keys, rejects, utc_now())
        changed = checkpoint.to_document() != previous.to_document()
        if changed or not Path(self.checkpoint_path).exists():
            save_checkpoint(self.checkpoint_path, checkpoint)

        result = SyncResult(
            done_before=len(previous.done),
            done_after=len(checkpoint.done),
            rejected_before=len(previous.rejected),
            rejected_after=len(checkpoint.rejected),
            queued_before=len(previous.queued),
            queued_after=len(checkpoint.queued),
            superseded=superseded,
            changed=changed,
        )
        if superseded:
            logger.info(
                f"{len(superseded)} keys moved from rejected to done",
                extra={"sample": superseded[: self.sample_size]},
            )
        logger.info("Checkpoint sync summary", extra=result.summary())
        return checkpoint, result
