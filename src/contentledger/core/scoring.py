"""
Quality scoring used to pick one winner among records sharing a key.

Ranking, highest priority first:
    1. later explicit timestamp (a record without one ranks below any record with one)
    2. completeness: number of non-empty expected content fields
    3. total content length across those fields
    4. later file-scan position

The ranking is a lexicographic tuple, so it is a total order and repeated
runs over the same input always pick the same record.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence, TypeVar

from contentledger.core.config import DEFAULT_CONTENT_FIELDS, DEFAULT_TIMESTAMP_FIELDS
from contentledger.core.models.record import BaseRecord

R = TypeVar("R", bound=BaseRecord)

NO_TIMESTAMP = float("-inf")


@dataclass(frozen=True, order=True)
class QualityScore:
    """Comparable score; compare with ``>=`` to let later records win ties."""

    timestamp: float
    completeness: int
    content_length: int


def parse_timestamp(value: Any) -> float | None:
    """
    Parse an ISO-8601 string or an epoch-milliseconds number into epoch ms.

    Returns:
        Milliseconds since the epoch, or None when the value is not a finite timestamp
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        # NaN or infinity would break the total order
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp() * 1000.0
    return None


def record_timestamp(
    payload: dict[str, Any],
    timestamp_fields: Sequence[str] = DEFAULT_TIMESTAMP_FIELDS,
) -> float | None:
    """First parseable timestamp among ``timestamp_fields`` and ``__meta.timestamp``."""
    for field in timestamp_fields:
        ts = parse_timestamp(payload.get(field))
        if ts is not None:
            return ts
    meta = payload.get("__meta")
    if isinstance(meta, dict):
        return parse_timestamp(meta.get("timestamp"))
    return None


def is_filled(value: Any) -> bool:
    """Non-empty string, or a non-empty list/dict; generators mix both shapes."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, dict)):
        return len(value) > 0
    return True


def text_length(value: Any) -> int:
    if isinstance(value, str):
        return len(value)
    if isinstance(value, (list, tuple)):
        return sum(text_length(item) for item in value)
    if isinstance(value, dict):
        return sum(text_length(item) for item in value.values())
    return 0


def score_payload(
    payload: dict[str, Any],
    content_fields: Sequence[str] = DEFAULT_CONTENT_FIELDS,
    timestamp_fields: Sequence[str] = DEFAULT_TIMESTAMP_FIELDS,
) -> QualityScore:
    completeness = 0
    length = 0
    for field in content_fields:
        value = payload.get(field)
        if is_filled(value):
            completeness += 1
            length += text_length(value)
    ts = record_timestamp(payload, timestamp_fields)
    return QualityScore(
        timestamp=NO_TIMESTAMP if ts is None else ts,
        completeness=completeness,
        content_length=length,
    )


class RecordScorer:
    """
    Scores records against a fixed set of content and timestamp fields.

    Shared by the deduplicator and the promotion merger so both arbitrate
    collisions identically.
    """

    def __init__(
        self,
        content_fields: Sequence[str] = DEFAULT_CONTENT_FIELDS,
        timestamp_fields: Sequence[str] = DEFAULT_TIMESTAMP_FIELDS,
    ):
        self.content_fields = tuple(content_fields)
        self.timestamp_fields = tuple(timestamp_fields)

    def score(self, record: BaseRecord) -> QualityScore:
        return score_payload(record.payload, self.content_fields, self.timestamp_fields)

    def prefer(self, current: R, candidate: R) -> R:
        """
        Return the winner between ``current`` and a ``candidate`` seen later in scan order.

        Full ties go to the candidate.
        """
        if self.score(candidate) >= self.score(current):
            return candidate
        return current

    def select_best(self, records: Iterable[R]) -> dict[str, R]:
        """
        Collapse records to one per key, in first-seen key order.

        Args:
            records: Records in file-scan order

        Returns:
            key -> winning record
        """
        best: dict[str, R] = {}
        for record in records:
            current = best.get(record.key)
            best[record.key] = record if current is None else self.prefer(current, record)
        return best
