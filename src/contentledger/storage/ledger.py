"""
Append-oriented JSONL ledgers (success, reject, drift, reject history).

Reads are lazy and tolerant: a line that fails to parse is logged and skipped
so one bad line never halts a multi-thousand-line scan. Bytes that are not
UTF-8 raise instead, since a later rewrite would lose them. Writes always
replace the whole file atomically.
"""

import hashlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator

from contentledger.core.exceptions import StateFileError
from contentledger.core.models.record import (
    BaseRecord,
    FailureRecord,
    RecordParseError,
    SuccessRecord,
    parse_line,
)
from contentledger.observability.logger import get_logger
from contentledger.storage.atomic import atomic_write_bytes

logger = get_logger(__name__)


@dataclass
class LedgerStats:
    """Line and key counts for one ledger."""

    name: str
    lines: int = 0
    parsed: int = 0
    unique: int = 0
    duplicate_count: int = 0
    duplicate_sample: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "lines": self.lines,
            "parsed": self.parsed,
            "unique": self.unique,
            "dupes": self.duplicate_count,
        }


@dataclass
class ExactDedupeResult:
    total_lines: int
    dropped: int
    rewritten: bool


class Ledger:
    """
    One JSON-per-line ledger file.

    Args:
        path: Location of the ledger file (created on first write)
        name: Short name used in logs and summaries
        key_field: Preferred key field of the payloads
    """

    def __init__(self, path: Path | str, name: str | None = None, key_field: str = "key"):
        self.path = Path(path)
        self.name = name or self.path.stem
        self.key_field = key_field

    def __repr__(self) -> str:
        return f"Ledger(name={self.name}, path={self.path})"

    def exists(self) -> bool:
        return self.path.exists()

    # ----------------------------------------------------------------- reads

    def iter_lines(self) -> Iterator[tuple[int, str]]:
        """
        Yield ``(line_no, stripped_line)`` for every non-blank line.

        Raises:
            StateFileError: A line is not valid UTF-8. Nothing is rewritten, so
                the bytes stay on disk for an operator to repair.
        """
        if not self.path.exists():
            return
        with open(self.path, "rb") as f:
            for line_no, raw in enumerate(f, start=1):
                try:
                    line = raw.decode("utf-8")
                except UnicodeDecodeError as e:
                    raise StateFileError(
                        f"{self.name} ledger line {line_no} is not valid UTF-8: {self.path}"
                    ) from e
                stripped = line.strip()
                if stripped:
                    yield line_no, stripped

    def read_all(self) -> Iterator[SuccessRecord | FailureRecord]:
        """Lazily parse every line, skipping (and logging) the ones that fail."""
        for line_no, line in self.iter_lines():
            try:
                yield parse_line(line, key_field=self.key_field, line_no=line_no)
            except RecordParseError as e:
                logger.warning(
                    f"Skipping unparsable line in {self.name} ledger: {e.reason}",
                    extra={"ledger": self.name, "line_no": line_no, "preview": line[:80]},
                )

    def keys(self) -> set[str]:
        return {record.key for record in self.read_all()}

    def stats(self, sample_size: int = 20) -> LedgerStats:
        stats = LedgerStats(name=self.name)
        seen: set[str] = set()
        dupes: set[str] = set()
        for _ in self.iter_lines():
            stats.lines += 1
        for record in self.read_all():
            stats.parsed += 1
            if record.key in seen:
                dupes.add(record.key)
            seen.add(record.key)
        stats.unique = len(seen)
        stats.duplicate_count = len(dupes)
        stats.duplicate_sample = sorted(dupes)[:sample_size]
        return stats

    # ---------------------------------------------------------------- writes

    def _current_bytes(self) -> bytes:
        if not self.path.exists():
            return b""
        return self.path.read_bytes()

    def _replace_if_changed(self, data: bytes) -> bool:
        if self.path.exists() and self._current_bytes() == data:
            return False
        atomic_write_bytes(self.path, data)
        return True

    def append(self, record: BaseRecord) -> None:
        self.append_many([record])

    def append_many(self, records: Iterable[BaseRecord]) -> int:
        """
        Append fully serialised records, replacing the file atomically.

        Returns:
            Number of records appended
        """
        return self.append_lines(record.to_line() for record in records)

    def append_lines(self, lines: Iterable[str]) -> int:
        """Append raw, already-serialised lines (used for generator metadata)."""
        new_lines = [line.strip() for line in lines if line.strip()]
        if not new_lines:
            return 0
        existing = self._current_bytes()
        if existing and not existing.endswith(b"\n"):
            existing += b"\n"
        payload = "".join(f"{line}\n" for line in new_lines).encode("utf-8")
        atomic_write_bytes(self.path, existing + payload)
        return len(new_lines)

    def rewrite(self, records: Iterable[BaseRecord]) -> bool:
        """
        Replace the ledger with ``records``.

        Returns:
            True if the file content changed
        """
        data = "".join(f"{record.to_line()}\n" for record in records).encode("utf-8")
        return self._replace_if_changed(data)

    def truncate(self) -> bool:
        return self._replace_if_changed(b"")

    def exact_line_dedupe(self) -> ExactDedupeResult:
        """
        Drop byte-identical duplicate lines (first occurrence kept).

        This is the cheapest duplicate defence and runs before any key-level merge.
        """
        seen: set[str] = set()
        kept: list[str] = []
        total = 0
        for _, line in self.iter_lines():
            total += 1
            digest = hashlib.sha1(line.encode("utf-8")).hexdigest()
            if digest in seen:
                continue
            seen.add(digest)
            kept.append(line)

        dropped = total - len(kept)
        rewritten = False
        if self.path.exists():
            rewritten = self._replace_if_changed("".join(f"{line}\n" for line in kept).encode("utf-8"))
        if dropped:
            logger.info(
                f"Dropped {dropped} exact duplicate lines from {self.name} ledger",
                extra={"ledger": self.name, "total_lines": total, "dropped": dropped},
            )
        return ExactDedupeResult(total_lines=total, dropped=dropped, rewritten=rewritten)


def _error_of(record: BaseRecord) -> str | None:
    return record.error if isinstance(record, FailureRecord) else None


def archive_records(
    history: Ledger,
    records: Iterable[BaseRecord],
    reason: str,
    when: str,
) -> int:
    """
    Append records to a history ledger, tagged with why and when they left.

    A record already archived for the same reason (same key and error) is not
    appended twice, so re-running an interrupted move is harmless.

    Returns:
        Number of records appended
    """
    archived = {
        (r.key, _error_of(r), r.payload.get("archiveReason"))
        for r in history.read_all()
    }
    entries = []
    for record in records:
        marker = (record.key, _error_of(record), reason)
        if marker in archived:
            continue
        archived.add(marker)
        payload = {**record.payload, "archiveReason": reason, "archivedAt": when}
        entries.append(record.model_copy(update={"payload": payload}))
    return history.append_many(entries)


@dataclass
class LedgerSet:
    """The master ledgers of one data root."""

    success: Ledger
    reject: Ledger
    drift: Ledger
    reject_history: Ledger
    meta: Ledger

    @classmethod
    def from_config(cls, config) -> "LedgerSet":
        paths = config.paths
        key_field = config.key_field
        return cls(
            success=Ledger(paths.success, "success", key_field),
            reject=Ledger(paths.reject, "reject", key_field),
            drift=Ledger(paths.drift, "drift", key_field),
            reject_history=Ledger(paths.reject_history, "reject_history", key_field),
            meta=Ledger(paths.meta, "meta", key_field),
        )

    def canonical(self) -> list[Ledger]:
        """Ledgers that take part in deduplication and auditing."""
        return [self.success, self.reject, self.drift]
