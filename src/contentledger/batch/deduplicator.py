"""
Quality-aware deduplication.

Two layers: exact duplicate lines are dropped first (cheap, content hash), then
records sharing a key are collapsed to the best one by RecordScorer. The output
keeps first-seen key order, so an unchanged ledger is rewritten byte for byte.
"""

from dataclasses import dataclass

from contentledger.core.scoring import RecordScorer
from contentledger.observability.logger import get_logger
from contentledger.observability.metrics import duplicates_removed_total, increment_counter
from contentledger.storage.ledger import Ledger

logger = get_logger(__name__)


@dataclass
class DedupeResult:
    ledger: str
    lines_before: int
    exact_dropped: int
    key_dropped: int
    records_after: int
    rewritten: bool

    def summary(self) -> dict:
        return {
            "before": self.lines_before,
            "exact_dropped": self.exact_dropped,
            "key_dropped": self.key_dropped,
            "after": self.records_after,
        }


class Deduplicator:
    """Collapses each ledger to exactly one record per key."""

    def __init__(self, scorer: RecordScorer | None = None):
        self.scorer = scorer or RecordScorer()

    def dedupe(self, ledger: Ledger) -> DedupeResult:
        exact = ledger.exact_line_dedupe()

        records = list(ledger.read_all())
        best = self.scorer.select_best(records)
        key_dropped = len(records) - len(best)

        rewritten = ledger.rewrite(best.values()) if ledger.exists() else False

        increment_counter(duplicates_removed_total, exact.dropped, ledger=ledger.name, layer="exact_line")
        increment_counter(duplicates_removed_total, key_dropped, ledger=ledger.name, layer="quality")

        if key_dropped:
            logger.info(
                f"Collapsed {key_dropped} duplicate keys in {ledger.name} ledger",
                extra={"ledger": ledger.name, "records": len(records), "unique": len(best)},
            )

        return DedupeResult(
            ledger=ledger.name,
            lines_before=exact.total_lines,
            exact_dropped=exact.dropped,
            key_dropped=key_dropped,
            records_after=len(best),
            rewritten=exact.rewritten or rewritten,
        )

    def dedupe_all(self, ledgers: list[Ledger]) -> dict[str, DedupeResult]:
        return {ledger.name: self.dedupe(ledger) for ledger in ledgers}
