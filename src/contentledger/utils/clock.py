"""Timestamps written into checkpoint entries, history records and telemetry."""

from datetime import datetime, timezone


def utc_now() -> str:
    """Current UTC time as ISO-8601 with second precision, e.g. ``2025-11-04T18:09:24+00:00``."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")
