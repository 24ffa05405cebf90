"""
Unit tests for quality scoring and error classification.

Includes property-based testing with hypothesis for the winner selection.
"""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from contentledger.core.classification import (
    ErrorBucket,
    bucketize,
    classify_error,
    is_transient,
)
from contentledger.core.models.record import record_from_payload
from contentledger.core.scoring import (
    NO_TIMESTAMP,
    RecordScorer,
    parse_timestamp,
    record_timestamp,
    score_payload,
)

pytestmark = pytest.mark.unit


def _record(line_no=None, **payload):
    return record_from_payload({"key": "k", **payload}, line_no=line_no)


class TestTimestamps:
    """Tests for timestamp parsing"""

    def test_iso_with_z(self):
        """Test ISO-8601 with a Z suffix parses to epoch milliseconds"""
        assert parse_timestamp("1970-01-01T00:00:01Z") == 1000.0

    def test_naive_iso_is_utc(self):
        """Test a naive timestamp is read as UTC"""
        assert parse_timestamp("1970-01-01T00:00:01") == 1000.0

    def test_epoch_millis(self):
        """Test numbers are taken as epoch milliseconds"""
        assert parse_timestamp(1762279764123) == 1762279764123.0

    @pytest.mark.parametrize("value", [None, "", "yesterday", True, ["2025-01-01"], float("nan"), float("inf")])
    def test_unparseable(self, value):
        """Test values that are not timestamps return None"""
        assert parse_timestamp(value) is None

    def test_field_order_and_meta_fallback(self):
        """Test the first parseable field wins and __meta.timestamp is the fallback"""
        assert record_timestamp({"generatedAt": "bad", "updatedAt": 5}) == 5.0
        assert record_timestamp({"__meta": {"timestamp": 7}}) == 7.0
        assert record_timestamp({"aboutcontent": "x"}) is None


class TestScorePayload:
    """Tests for the score tuple"""

    def test_missing_timestamp_ranks_lowest(self):
        """Test a record without timestamp scores below any timestamped one"""
        score = score_payload({"aboutcontent": "x"})
        assert score.timestamp == NO_TIMESTAMP
        assert score < score_payload({"generatedAt": 0})

    def test_completeness_counts_non_empty_fields(self):
        """Test blank strings and empty lists do not count"""
        score = score_payload({
            "aboutcontent": "text",
            "termscontent": "   ",
            "faqcontent": [],
            "howtoredeemcontent": [{"q": "a", "a": "b"}],
        })
        assert score.completeness == 2
        assert score.content_length == len("text") + 2


class TestRecordScorer:
    """Tests for winner selection"""

    def test_later_timestamp_wins(self):
        """Test timestamp outranks completeness"""
        scorer = RecordScorer()
        rich_old = _record(aboutcontent="a", termscontent="b", faqcontent="c", generatedAt="2025-01-01T00:00:00Z")
        thin_new = _record(aboutcontent="a", generatedAt="2025-02-01T00:00:00Z")

        assert scorer.prefer(rich_old, thin_new) is thin_new
        assert scorer.prefer(thin_new, rich_old) is thin_new

    def test_completeness_breaks_timestamp_tie(self):
        """Test more filled fields win at the same timestamp"""
        scorer = RecordScorer()
        ts = "2025-01-01T00:00:00Z"
        thin = _record(aboutcontent="a", generatedAt=ts)
        rich = _record(aboutcontent="a", faqcontent="b", termscontent="c", generatedAt=ts)

        assert scorer.prefer(rich, thin) is rich

    def test_full_tie_goes_to_later_record(self):
        """Test identical scores keep the later record in scan order"""
        scorer = RecordScorer()
        first = _record(line_no=1, aboutcontent="same")
        second = _record(line_no=2, aboutcontent="same")

        assert scorer.prefer(first, second) is second

    def test_nan_timestamp_does_not_depend_on_order(self):
        """Test a NaN timestamp ranks as missing, so input order cannot change the winner"""
        scorer = RecordScorer()
        nan_stamped = record_from_payload(
            {"key": "k", "generatedAt": float("nan"), "aboutcontent": "x", "faqcontent": "y"}
        )
        stamped = record_from_payload({"key": "k", "generatedAt": 5, "aboutcontent": "x"})

        assert scorer.select_best([nan_stamped, stamped])["k"] is stamped
        assert scorer.select_best([stamped, nan_stamped])["k"] is stamped

    def test_select_best_keeps_first_seen_order(self):
        """Test output order follows the first appearance of each key"""
        scorer = RecordScorer()
        records = [
            record_from_payload({"key": "b", "aboutcontent": "x"}),
            record_from_payload({"key": "a", "aboutcontent": "x"}),
            record_from_payload({"key": "b", "aboutcontent": "x", "faqcontent": "y"}),
        ]
        best = scorer.select_best(records)

        assert list(best) == ["b", "a"]
        assert best["b"].payload["faqcontent"] == "y"

    def test_custom_content_fields(self):
        """Test the scorer only counts the configured fields"""
        scorer = RecordScorer(content_fields=["body"])
        with_body = _record(body="text")
        with_about = _record(aboutcontent="text", faqcontent="more")

        assert scorer.prefer(with_body, with_about) is with_body

    @given(st.permutations([0, 1, 2, 3]))
    def test_property_four_fields_beat_two_in_any_order(self, order):
        """Property test: the record with four content fields wins regardless of scan order"""
        candidates = [
            _record(aboutcontent="a", termscontent="b", faqcontent="c", promodetailscontent="d"),
            _record(aboutcontent="a", termscontent="b"),
            _record(aboutcontent="a", termscontent="b"),
            _record(faqcontent="c", promodetailscontent="d"),
        ]
        best = RecordScorer().select_best([candidates[i] for i in order])

        assert best["k"] is candidates[0]


class TestClassification:
    """Tests for reject bucketing and transient detection"""

    @pytest.mark.parametrize("message,bucket", [
        ("HTTP 404 from merchant site", ErrorBucket.HTTP_404),
        ("Page not found", ErrorBucket.HTTP_404),
        ("Evidence fetch failed: fetch failed", ErrorBucket.NETWORK_FETCH_FAIL),
        ("insufficient evidence for claims", ErrorBucket.INSUFFICIENT_EVIDENCE),
        ("Grounding check failed", ErrorBucket.GUARDRAIL_FAIL),
        ("rate limit exceeded", ErrorBucket.RATE_LIMIT),
        ("request timed out", ErrorBucket.TIMEOUT),
        ("something odd", ErrorBucket.OTHER),
    ])
    def test_classify_error(self, message, bucket):
        """Test message patterns map to buckets"""
        assert classify_error(message) == bucket

    def test_error_code_wins(self):
        """Test an explicit errorCode naming a bucket wins over the message"""
        assert classify_error("timed out", "http_404") == ErrorBucket.HTTP_404
        assert classify_error("timed out", "UNKNOWN_CODE") == ErrorBucket.TIMEOUT

    @pytest.mark.parametrize("message,expected", [
        ("ETIMEDOUT while fetching", True),
        ("socket hang up", True),
        ("model overloaded", True),
        ("429 Too Many Requests", True),
        ("context_length exceeded", True),
        ("404 not found", False),
        ("timeout, then 404", False),
        ("insufficient evidence", False),
        ("guardrail: primary keyword missing", False),
        ("", False),
    ])
    def test_is_transient(self, message, expected):
        """Test transient markers, with hard markers taking precedence"""
        assert is_transient(message) is expected

    def test_bucketize_includes_empty_buckets(self):
        """Test every bucket is present and keys are sorted and unique"""
        records = [
            record_from_payload({"key": "b", "error": "404"}),
            record_from_payload({"key": "a", "error": "not found"}),
            record_from_payload({"key": "a", "error": "404"}),
            record_from_payload({"key": "c", "error": "timed out"}),
        ]
        buckets = bucketize(records)

        assert set(buckets) == set(ErrorBucket)
        assert buckets[ErrorBucket.HTTP_404] == ["a", "b"]
        assert buckets[ErrorBucket.TIMEOUT] == ["c"]
        assert buckets[ErrorBucket.RATE_LIMIT] == []
