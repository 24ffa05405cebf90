"""
Exception taxonomy and process exit codes.

Every error that can stop a pipeline stage carries the exit code the outer
batch loop branches on (proceed, retry or invoke recovery).
"""

from enum import IntEnum


class ExitCode(IntEnum):
    """Process exit codes shared by all CLI entry points."""

    OK = 0
    INVALID_ARGUMENTS = 1
    MISSING_FILES = 2
    INVARIANT_VIOLATION = 3
    LOCK_HELD = 5
    DUPLICATE_KEYS = 7
    CROSS_LEDGER_OVERLAP = 8


class ContentLedgerError(Exception):
    """Base class for all reconciliation errors."""

    exit_code: ExitCode = ExitCode.INVARIANT_VIOLATION

    def __init__(self, message: str, offending_keys: list[str] | None = None):
        self.message = message
        self.offending_keys = offending_keys or []
        super().__init__(message)


class InvalidArgumentsError(ContentLedgerError):
    """Raised when CLI arguments or configuration values are invalid."""

    exit_code = ExitCode.INVALID_ARGUMENTS


class MissingInputError(ContentLedgerError):
    """Raised when a required input file (population list, raw dir) is absent."""

    exit_code = ExitCode.MISSING_FILES


class StateFileError(ContentLedgerError):
    """Raised when the checkpoint, manifest or a ledger exists but cannot be read."""

    exit_code = ExitCode.MISSING_FILES


class LockHeldError(ContentLedgerError):
    """Raised when another process holds the pipeline lock."""

    exit_code = ExitCode.LOCK_HELD

    def __init__(self, lock_path: str, holder: dict | None = None):
        self.lock_path = lock_path
        self.holder = holder or {}
        pid = self.holder.get("pid", "unknown")
        since = self.holder.get("at", "unknown")
        super().__init__(
            f"Lock {lock_path} is held by pid {pid} since {since}; "
            "remove it manually once that process is confirmed dead"
        )


class InvariantViolationError(ContentLedgerError):
    """Raised when the set identity or a checkpoint invariant fails."""

    exit_code = ExitCode.INVARIANT_VIOLATION


class DuplicateKeysError(ContentLedgerError):
    """Raised when a ledger still holds duplicate keys after deduplication."""

    exit_code = ExitCode.DUPLICATE_KEYS


class CrossLedgerOverlapError(ContentLedgerError):
    """Raised when a key sits in two ledgers that must be disjoint."""

    exit_code = ExitCode.CROSS_LEDGER_OVERLAP
