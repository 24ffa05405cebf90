"""
Integration tests for deduplication and Drift promotion.
"""

import pytest

from contentledger.batch.deduplicator import Deduplicator
from contentledger.batch.promotion import SUPERSEDED_BY_SUCCESS, PromotionMerger
from contentledger.core.exceptions import CrossLedgerOverlapError, ExitCode
from contentledger.core.scoring import RecordScorer
from contentledger.storage.ledger import LedgerSet

pytestmark = pytest.mark.integration

TS = "2025-01-01T00:00:00Z"


@pytest.fixture
def ledgers(config):
    return LedgerSet.from_config(config)


class TestDeduplicator:
    """Tests for two-layer deduplication"""

    def test_exact_then_quality(self, ledgers, write_jsonl, read_jsonl):
        """Test identical lines are dropped, then the best record per key is kept"""
        write_jsonl(ledgers.success.path, [
            {"key": "a", "aboutcontent": "x"},
            {"key": "b", "aboutcontent": "x"},
            {"key": "a", "aboutcontent": "x"},
            {"key": "a", "aboutcontent": "x", "faqcontent": "y"},
        ])

        result = Deduplicator().dedupe(ledgers.success)

        assert result.summary() == {"before": 4, "exact_dropped": 1, "key_dropped": 1, "after": 2}
        assert result.rewritten
        assert read_jsonl(ledgers.success.path) == [
            {"key": "a", "aboutcontent": "x", "faqcontent": "y"},
            {"key": "b", "aboutcontent": "x"},
        ]

    def test_clean_ledger_untouched(self, ledgers, write_jsonl):
        """Test deduping a clean ledger keeps identical bytes"""
        write_jsonl(ledgers.reject.path, [{"key": "a", "error": "404"}, {"key": "b", "error": "timeout"}])
        before = ledgers.reject.path.read_bytes()

        result = Deduplicator().dedupe(ledgers.reject)

        assert not result.rewritten
        assert ledgers.reject.path.read_bytes() == before

    def test_missing_ledger(self, ledgers):
        """Test a ledger that does not exist yet is left alone"""
        result = Deduplicator().dedupe(ledgers.drift)
        assert result.records_after == 0
        assert not ledgers.drift.exists()

    def test_dedupe_all(self, ledgers, write_jsonl):
        write_jsonl(ledgers.success.path, [{"key": "a"}, {"key": "a", "aboutcontent": "x"}])
        results = Deduplicator(RecordScorer()).dedupe_all(ledgers.canonical())

        assert set(results) == {"success", "reject", "drift"}
        assert results["success"].key_dropped == 1


class TestPromotionMerger:
    """Tests for Drift arbitration"""

    def test_richer_drift_replaces_success(self, ledgers, write_jsonl, read_jsonl):
        """Test a Drift record with more content at the same timestamp wins and Drift empties"""
        write_jsonl(ledgers.success.path, [{"key": "x", "aboutcontent": "a", "generatedAt": TS}])
        write_jsonl(ledgers.drift.path, [
            {"key": "x", "aboutcontent": "a", "faqcontent": "b", "termscontent": "c", "generatedAt": TS},
        ])

        result = PromotionMerger(ledgers).promote()

        assert result.promoted == 1
        assert read_jsonl(ledgers.success.path) == [
            {"key": "x", "aboutcontent": "a", "faqcontent": "b", "termscontent": "c", "generatedAt": TS},
        ]
        assert ledgers.drift.path.read_bytes() == b""

    def test_older_drift_discarded(self, ledgers, write_jsonl, read_jsonl):
        """Test canonical Success is kept when it is newer"""
        canonical = {"key": "x", "aboutcontent": "a", "generatedAt": "2025-03-01T00:00:00Z"}
        write_jsonl(ledgers.success.path, [canonical])
        write_jsonl(ledgers.drift.path, [{"key": "x", "aboutcontent": "a", "faqcontent": "b", "generatedAt": TS}])

        result = PromotionMerger(ledgers).promote()

        assert result.kept_canonical == 1
        assert read_jsonl(ledgers.success.path) == [canonical]
        assert ledgers.drift.path.read_bytes() == b""

    def test_drift_success_supersedes_reject(self, ledgers, write_jsonl, read_jsonl):
        """Test a new success for a rejected key moves the reject to history"""
        write_jsonl(ledgers.reject.path, [{"key": "r", "error": "timeout"}, {"key": "h", "error": "404"}])
        write_jsonl(ledgers.drift.path, [{"key": "r", "aboutcontent": "finally"}])

        result = PromotionMerger(ledgers).promote()

        assert result.pruned_rejects == ["r"]
        assert read_jsonl(ledgers.success.path) == [{"key": "r", "aboutcontent": "finally"}]
        assert read_jsonl(ledgers.reject.path) == [{"key": "h", "error": "404"}]
        (archived,) = read_jsonl(ledgers.reject_history.path)
        assert archived["key"] == "r"
        assert archived["archiveReason"] == SUPERSEDED_BY_SUCCESS

    def test_drift_failures(self, ledgers, write_jsonl, read_jsonl):
        """Test Drift failures never touch Success and later ones replace older rejects"""
        write_jsonl(ledgers.success.path, [{"key": "s", "aboutcontent": "ok"}])
        write_jsonl(ledgers.reject.path, [{"key": "r", "error": "timeout"}])
        write_jsonl(ledgers.drift.path, [
            {"key": "s", "error": "timeout"},
            {"key": "r", "error": "404"},
        ])

        result = PromotionMerger(ledgers).promote()

        assert result.superseded_failures == 1
        assert result.reject_promoted == 1
        assert read_jsonl(ledgers.success.path) == [{"key": "s", "aboutcontent": "ok"}]
        assert read_jsonl(ledgers.reject.path) == [{"key": "r", "error": "404"}]

    def test_empty_drift_is_stable(self, ledgers, write_jsonl):
        """Test promotion with nothing in Drift rewrites nothing"""
        write_jsonl(ledgers.success.path, [{"key": "s", "aboutcontent": "ok"}])
        ledgers.drift.truncate()
        before = ledgers.success.path.read_bytes()
        mtime = ledgers.drift.path.stat().st_mtime_ns

        result = PromotionMerger(ledgers).promote()

        assert result.drift_records == 0
        assert ledgers.success.path.read_bytes() == before
        assert ledgers.drift.path.stat().st_mtime_ns == mtime

    def test_overlap_after_promotion_raises(self, ledgers, write_jsonl, monkeypatch):
        """Test a Drift/Success overlap left on disk is reported with exit code 8"""
        write_jsonl(ledgers.success.path, [{"key": "x", "aboutcontent": "a"}])
        write_jsonl(ledgers.drift.path, [{"key": "x", "aboutcontent": "b"}])
        monkeypatch.setattr(ledgers.drift, "truncate", lambda: False)

        with pytest.raises(CrossLedgerOverlapError) as exc_info:
            PromotionMerger(ledgers).promote()

        assert exc_info.value.exit_code == ExitCode.CROSS_LEDGER_OVERLAP
        assert exc_info.value.offending_keys == ["x"]
