"""
Reject error classification.

Buckets reject records by error shape and separates transient failures
(network, timeouts, rate limits, capacity) from hard ones (404, insufficient
evidence, guardrail failures). Only transient rejects are eligible for
automatic requeue.
"""

import re
from enum import Enum

from contentledger.core.models.record import FailureRecord


class ErrorBucket(str, Enum):
    HTTP_404 = "HTTP_404"
    NETWORK_FETCH_FAIL = "NETWORK_FETCH_FAIL"
    INSUFFICIENT_EVIDENCE = "INSUFFICIENT_EVIDENCE"
    GUARDRAIL_FAIL = "GUARDRAIL_FAIL"
    RATE_LIMIT = "RATE_LIMIT"
    TIMEOUT = "TIMEOUT"
    OTHER = "OTHER"


# Checked in order; first match wins
BUCKET_PATTERNS: list[tuple[ErrorBucket, re.Pattern]] = [
    (ErrorBucket.HTTP_404, re.compile(r"404|not found", re.I)),
    (ErrorBucket.INSUFFICIENT_EVIDENCE, re.compile(r"evidence.*insufficient|insufficient evidence", re.I)),
    (ErrorBucket.NETWORK_FETCH_FAIL, re.compile(r"fetch failed|econnreset|enotfound|socket hang up|network", re.I)),
    (ErrorBucket.GUARDRAIL_FAIL, re.compile(r"guardrail|grounding check failed|repair failed|primary keyword.*missing", re.I)),
    (ErrorBucket.RATE_LIMIT, re.compile(r"rate.?limit|\b429\b", re.I)),
    (ErrorBucket.TIMEOUT, re.compile(r"timeout|timed out|etimedout", re.I)),
]

TRANSIENT_MARKERS = (
    "timeout",
    "timed out",
    "etimedout",
    "socket hang up",
    "econnreset",
    "enotfound",
    "network",
    "fetch failed",
    "overloaded",
    "capacity",
    "rate limit",
    "429",
    "token limit",
    "context_length",
    "context length",
    "max tokens",
    "maximum context",
)

# A definitive failure shape beats any transient marker in the same message
HARD_MARKERS = ("404", "not found", "insufficient evidence", "evidence insufficient")


def classify_error(message: str, error_code: str | None = None) -> ErrorBucket:
    """
    Map an error message to a bucket.

    An explicit ``errorCode`` matching a bucket name wins over message patterns.
    """
    if error_code:
        try:
            return ErrorBucket(error_code.upper())
        except ValueError:
            pass
    for bucket, pattern in BUCKET_PATTERNS:
        if pattern.search(message or ""):
            return bucket
    return ErrorBucket.OTHER


def is_transient(message: str) -> bool:
    text = (message or "").lower()
    if any(marker in text for marker in HARD_MARKERS):
        return False
    return any(marker in text for marker in TRANSIENT_MARKERS)


def bucketize(records: list[FailureRecord]) -> dict[ErrorBucket, list[str]]:
    """
    Group reject keys by bucket.

    Returns:
        Every bucket (empty ones included) -> sorted unique keys
    """
    buckets: dict[ErrorBucket, set[str]] = {bucket: set() for bucket in ErrorBucket}
    for record in records:
        buckets[classify_error(record.error, record.error_code)].add(record.key)
    return {bucket: sorted(keys) for bucket, keys in buckets.items()}
