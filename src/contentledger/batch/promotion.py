"""
Cross-file promotion: arbitrate Drift against the canonical ledgers.

After promotion the Success ledger is the single source of truth: Drift is
empty, and rejects for keys that now have a success are moved to the reject
history (success wins, provenance kept).
"""

from dataclasses import dataclass, field

from contentledger.core.exceptions import CrossLedgerOverlapError
from contentledger.core.models.record import FailureRecord, SuccessRecord
from contentledger.core.scoring import RecordScorer
from contentledger.observability.logger import get_logger
from contentledger.observability.metrics import increment_counter, promotions_total
from contentledger.storage.ledger import LedgerSet, archive_records
from contentledger.utils.clock import utc_now

logger = get_logger(__name__)

SUPERSEDED_BY_SUCCESS = "superseded-by-success"


@dataclass
class PromotionResult:
    drift_records: int = 0
    promoted: int = 0
    kept_canonical: int = 0
    reject_promoted: int = 0
    reject_kept: int = 0
    superseded_failures: int = 0
    pruned_rejects: list[str] = field(default_factory=list)

    def summary(self) -> dict:
        return {
            "drift_records": self.drift_records,
            "promoted": self.promoted,
            "kept_canonical": self.kept_canonical,
            "reject_promoted": self.reject_promoted,
            "reject_kept": self.reject_kept,
            "superseded_failures": self.superseded_failures,
            "pruned_rejects": len(self.pruned_rejects),
        }


class PromotionMerger:
    """
    Resolves keys present in Drift.

    Success records are scanned first and Drift records later, so on a full
    scoring tie the Drift copy wins, exactly as a later line would in dedupe.
    """

    def __init__(self, ledgers: LedgerSet, scorer: RecordScorer | None = None, sample_size: int = 20):
        self.ledgers = ledgers
        self.scorer = scorer or RecordScorer()
        self.sample_size = sample_size

    def promote(self) -> PromotionResult:
        result = PromotionResult()
        drift_records = list(self.ledgers.drift.read_all())
        result.drift_records = len(drift_records)

        if drift_records:
            successes: dict[str, SuccessRecord] = self.scorer.select_best(self.ledgers.success.read_all())
            rejects: dict[str, FailureRecord] = self.scorer.select_best(self.ledgers.reject.read_all())

            for record in drift_records:
                if isinstance(record, FailureRecord):
                    if record.key in successes:
                        result.superseded_failures += 1
                        continue
                    winner = self._arbitrate(rejects, record)
                    if winner is record:
                        result.reject_promoted += 1
                    else:
                        result.reject_kept += 1
                else:
                    winner = self._arbitrate(successes, record)
                    if winner is record:
                        result.promoted += 1
                    else:
                        result.kept_canonical += 1

            self.ledgers.success.rewrite(successes.values())
            self.ledgers.reject.rewrite(rejects.values())

        self.ledgers.drift.truncate()
        self._check_drift_disjoint()

        result.pruned_rejects = self.prune_superseded_rejects()

        increment_counter(promotions_total, result.promoted + result.reject_promoted, outcome="promoted")
        increment_counter(promotions_total, result.kept_canonical + result.reject_kept, outcome="kept_canonical")
        logger.info("Promotion summary", extra=result.summary())
        return result

    def _arbitrate(self, canonical: dict, record):
        current = canonical.get(record.key)
        winner = record if current is None else self.scorer.prefer(current, record)
        canonical[record.key] = winner
        return winner

    def _check_drift_disjoint(self) -> None:
        # Re-read from disk: the post-condition is about persisted state
        overlap = self.ledgers.drift.keys() & self.ledgers.success.keys()
        if overlap:
            sample = sorted(overlap)[: self.sample_size]
            raise CrossLedgerOverlapError(
                f"{len(overlap)} keys still in both Drift and Success after promotion",
                offending_keys=sample,
            )

    def prune_superseded_rejects(self) -> list[str]:
        """
        Move rejects whose key now has a success to the reject history.

        Returns:
            Sorted keys that were moved
        """
        success_keys = self.ledgers.success.keys()
        kept: list[FailureRecord] = []
        moved: list[FailureRecord] = []
        for record in self.ledgers.reject.read_all():
            (moved if record.key in success_keys else kept).append(record)

        if not moved:
            return []

        archive_records(self.ledgers.reject_history, moved, SUPERSEDED_BY_SUCCESS, utc_now())
        self.ledgers.reject.rewrite(kept)
        keys = sorted({record.key for record in moved})
        logger.info(
            f"Moved {len(keys)} superseded rejects to history",
            extra={"sample": keys[: self.sample_size]},
        )
        return keys
