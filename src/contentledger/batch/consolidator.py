"""
Batch consolidation: fold new raw generator files into the master ledgers.

Routing per record:
    failure, key already in Success  -> dropped (success wins)
    failure, key already in Reject   -> Drift
    failure                          -> Reject
    success, key already in Success  -> Drift
    success                          -> Success

A file is signed into the manifest once merged, so re-running is a no-op for it.
"""

import fnmatch
import json
from dataclasses import dataclass, field
from pathlib import Path

from contentledger.core.config import PipelineConfig
from contentledger.core.models.manifest import Manifest
from contentledger.core.models.record import (
    FailureRecord,
    RecordParseError,
    SuccessRecord,
    failure_stub,
    parse_line,
)
from contentledger.observability.logger import get_logger
from contentledger.observability.metrics import (
    increment_counter,
    raw_files_total,
    records_routed_total,
)
from contentledger.storage.ledger import LedgerSet
from contentledger.storage.state_store import file_signature, save_manifest

logger = get_logger(__name__)

RUN_FILE_PATTERN = "ai-run-*.jsonl"
RAW_REJECT_PATTERN = "rejects-*.jsonl"
META_FILE_PATTERN = "*meta*.json"
IGNORED_NAME_MARKERS = ("_archive", "backup")


def raw_file_kind(name: str) -> str | None:
    """Return ``run``, ``reject`` or ``meta`` for a raw file name, None when it is not ours."""
    lowered = name.lower()
    if any(marker in lowered for marker in IGNORED_NAME_MARKERS):
        return None
    if fnmatch.fnmatch(name, RUN_FILE_PATTERN):
        return "run"
    if fnmatch.fnmatch(name, RAW_REJECT_PATTERN):
        return "reject"
    if fnmatch.fnmatch(name, META_FILE_PATTERN):
        return "meta"
    return None


@dataclass
class ConsolidationResult:
    """Counters for one consolidation run."""

    merged_files: list[str] = field(default_factory=list)
    unchanged_files: list[str] = field(default_factory=list)
    gated_files: list[str] = field(default_factory=list)
    corrupt_files: list[str] = field(default_factory=list)
    deferred_files: list[str] = field(default_factory=list)
    success_added: int = 0
    reject_added: int = 0
    drift_added: int = 0
    superseded_failures: int = 0
    malformed_lines: int = 0
    errorless_reject_lines: int = 0
    meta_added: int = 0

    def summary(self) -> dict:
        return {
            "files_merged": len(self.merged_files),
            "files_unchanged": len(self.unchanged_files),
            "files_gated": len(self.gated_files),
            "files_corrupt": len(self.corrupt_files),
            "files_deferred": len(self.deferred_files),
            "success_added": self.success_added,
            "reject_added": self.reject_added,
            "drift_added": self.drift_added,
            "superseded_failures": self.superseded_failures,
            "malformed_lines": self.malformed_lines,
            "errorless_reject_lines": self.errorless_reject_lines,
            "meta_added": self.meta_added,
        }


class Consolidator:
    """
    Merges raw batch files into Success / Reject / Drift.

    Args:
        config: Pipeline configuration
        ingest_raw: Also fold in raw ``rejects-*.jsonl`` files (skipped by default,
            they usually repeat failures a later run already superseded)
        limit: Maximum number of raw files merged in one run
    """

    def __init__(self, config: PipelineConfig, ingest_raw: bool = False, limit: int | None = None):
        self.config = config
        self.paths = config.paths
        self.ledgers = LedgerSet.from_config(config)
        self.ingest_raw = ingest_raw
        self.limit = limit

    def discover(self) -> list[Path]:
        """Raw files in sorted name order; unrelated, archived and backup files excluded."""
        raw_dir = self.paths.raw_dir
        if not raw_dir.is_dir():
            logger.warning(f"Raw directory {raw_dir} does not exist, nothing to consolidate")
            return []
        return sorted(
            (p for p in raw_dir.iterdir() if p.is_file() and raw_file_kind(p.name) is not None),
            key=lambda p: p.name,
        )

    def run(self, manifest: Manifest) -> ConsolidationResult:
        """
        Consolidate every new or changed raw file.

        The manifest is updated in place and saved after each merged file.
        """
        result = ConsolidationResult()
        success_keys = self.ledgers.success.keys()
        reject_keys = self.ledgers.reject.keys()

        for path in self.discover():
            name = path.name
            kind = raw_file_kind(name)

            try:
                signature = file_signature(path, self.config.signature_mode)
            except OSError as e:
                logger.warning(f"Cannot stat raw file {name}, skipping: {e}")
                result.corrupt_files.append(name)
                increment_counter(raw_files_total, 1, status="corrupt")
                continue

            if manifest.is_processed(name, signature):
                result.unchanged_files.append(name)
                increment_counter(raw_files_total, 1, status="skipped")
                continue

            if kind == "reject" and not self.ingest_raw:
                logger.debug(f"Raw reject file {name} gated (ingest_raw disabled)")
                result.gated_files.append(name)
                increment_counter(raw_files_total, 1, status="gated")
                continue

            if self.limit is not None and len(result.merged_files) >= self.limit:
                result.deferred_files.append(name)
                continue

            try:
                text = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Raw file {name} is unreadable, skipping: {e}", extra={"file": name})
                result.corrupt_files.append(name)
                increment_counter(raw_files_total, 1, status="corrupt")
                continue

            if kind == "meta":
                if not self._merge_meta(name, text, result):
                    continue
            else:
                self._merge_records(name, kind, text, success_keys, reject_keys, result)

            manifest.mark(name, signature)
            save_manifest(self.paths.manifest, manifest)
            result.merged_files.append(name)
            increment_counter(raw_files_total, 1, status="merged")

        if result.deferred_files:
            logger.info(
                f"File limit {self.limit} reached, {len(result.deferred_files)} files left for the next run"
            )
        logger.info("Consolidation summary", extra=result.summary())
        return result

    def _merge_meta(self, name: str, text: str, result: ConsolidationResult) -> bool:
        try:
            meta = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning(f"Meta file {name} is not valid JSON, skipping: {e.msg}", extra={"file": name})
            result.corrupt_files.append(name)
            increment_counter(raw_files_total, 1, status="corrupt")
            return False
        line = json.dumps({"file": name, "meta": meta}, ensure_ascii=False, separators=(",", ":"))
        result.meta_added += self.ledgers.meta.append_lines([line])
        return True

    def _merge_records(
        self,
        name: str,
        kind: str,
        text: str,
        success_keys: set[str],
        reject_keys: set[str],
        result: ConsolidationResult,
    ) -> None:
        key_field = self.config.key_field
        to_success: list[SuccessRecord] = []
        to_reject: list[FailureRecord] = []
        to_drift: list[SuccessRecord | FailureRecord] = []

        for line_no, line in enumerate(text.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                record = parse_line(line, key_field=key_field, line_no=line_no)
            except RecordParseError as e:
                result.malformed_lines += 1
                increment_counter(records_routed_total, 1, destination="malformed")
                logger.warning(
                    f"Skipping malformed line in {name}: {e.reason}",
                    extra={"file": name, "line_no": line_no},
                )
                continue

            if isinstance(record, FailureRecord):
                stub = failure_stub(record, key_field)
                if record.key in success_keys:
                    result.superseded_failures += 1
                    increment_counter(records_routed_total, 1, destination="superseded")
                elif record.key in reject_keys:
                    to_drift.append(stub)
                else:
                    to_reject.append(stub)
                    reject_keys.add(record.key)
            elif kind == "reject":
                result.errorless_reject_lines += 1
                logger.warning(
                    f"Line without error in raw reject file {name}, skipping",
                    extra={"file": name, "line_no": line_no, "key": record.key},
                )
            elif record.key in success_keys:
                to_drift.append(record)
            else:
                to_success.append(record)
                success_keys.add(record.key)

        result.success_added += self.ledgers.success.append_many(to_success)
        result.reject_added += self.ledgers.reject.append_many(to_reject)
        result.drift_added += self.ledgers.drift.append_many(to_drift)
        increment_counter(records_routed_total, len(to_success), destination="success")
        increment_counter(records_routed_total, len(to_reject), destination="reject")
        increment_counter(records_routed_total, len(to_drift), destination="drift")

        logger.info(
            f"Merged {name}",
            extra={
                "file": name,
                "success": len(to_success),
                "reject": len(to_reject),
                "drift": len(to_drift),
            },
        )
