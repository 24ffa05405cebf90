"""
Cycle telemetry for run-to-run comparison.

One JSON line per pipeline cycle is appended to the telemetry file: ledger
stats, stage outcomes and the audit summary. Operators diff consecutive lines
to see what a run changed.
"""

import json
from pathlib import Path
from typing import Any

from contentledger.core.models.pipeline_state import PipelineState
from contentledger.observability.logger import get_logger
from contentledger.storage.atomic import atomic_write_bytes
from contentledger.storage.ledger import LedgerSet
from contentledger.utils.clock import utc_now

logger = get_logger(__name__)


class TelemetryRecorder:
    """
    Buffers cycle entries and appends them to a JSONL file.

    Usage:
        recorder = TelemetryRecorder(config.paths.telemetry)
        recorder.track_cycle(state, ledgers)
        recorder.flush()
    """

    def __init__(self, path: Path | str, enabled: bool = True):
        """
        Args:
            path: Telemetry JSONL file
            enabled: When False every call is a no-op
        """
        self.path = Path(path)
        self.enabled = enabled
        self._pending: list[dict[str, Any]] = []

    @property
    def pending(self) -> list[dict[str, Any]]:
        return list(self._pending)

    def track(self, event: str, **fields: Any) -> dict[str, Any] | None:
        if not self.enabled:
            return None
        entry = {"at": utc_now(), "event": event, **fields}
        self._pending.append(entry)
        return entry

    def track_cycle(self, state: PipelineState, ledgers: LedgerSet) -> dict[str, Any] | None:
        """Record the end-of-cycle snapshot for ``state``."""
        return self.track(
            "cycle",
            scope=state.scope,
            stage=state.stage.value,
            exit_code=int(state.exit_code),
            recovery_attempted=state.recovery_attempted,
            started_at=state.started_at.isoformat(timespec="seconds"),
            stages=[
                {
                    "stage": r.stage.value,
                    "ok": r.ok,
                    "reason": r.reason,
                    "summary": r.summary,
                }
                for r in state.results
            ],
            ledgers={ledger.name: ledger.stats().as_dict() for ledger in ledgers.canonical()},
        )

    def flush(self) -> int:
        """
        Append buffered entries to the telemetry file.

        Returns:
            Number of entries written
        """
        if not self._pending:
            return 0
        lines = "".join(
            json.dumps(entry, ensure_ascii=False, sort_keys=True, default=str) + "\n"
            for entry in self._pending
        ).encode("utf-8")
        existing = self.path.read_bytes() if self.path.exists() else b""
        if existing and not existing.endswith(b"\n"):
            existing += b"\n"
        atomic_write_bytes(self.path, existing + lines)
        count = len(self._pending)
        self._pending.clear()
        logger.debug(f"Flushed {count} telemetry entries to {self.path}")
        return count
