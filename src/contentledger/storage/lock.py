"""
Single-writer process lock.

The lock file is created with O_CREAT | O_EXCL and holds the owner's pid, role
and acquisition time. A held lock is a hard stop: stale locks are never broken
automatically, an operator removes them after confirming the owner is gone.
"""

import json
import os
from datetime import datetime, timezone
from pathlib import Path

from contentledger.core.exceptions import LockHeldError
from contentledger.observability.logger import get_logger

logger = get_logger(__name__)


def read_lock_holder(path: Path | str) -> dict | None:
    """Parsed lock file content, or None when the file is missing or unreadable."""
    try:
        with open(path, encoding="utf-8") as f:
            holder = json.load(f)
    except (OSError, json.JSONDecodeError):
        return None
    return holder if isinstance(holder, dict) else None


class PipelineLock:
    """
    Context manager around the pipeline lock file.

    Usage:
        with PipelineLock(config.paths.lock, role="consolidate"):
            ...
    """

    def __init__(self, path: Path | str, role: str = "pipeline"):
        self.path = Path(path)
        self.role = role
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            holder = read_lock_holder(self.path)
            logger.error(
                f"Lock {self.path} already held",
                extra={"lock_path": str(self.path), "holder": holder, "role": self.role},
            )
            raise LockHeldError(str(self.path), holder) from None

        holder = {
            "pid": os.getpid(),
            "role": self.role,
            "at": datetime.now(timezone.utc).isoformat(),
        }
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(holder, f)
            f.flush()
            os.fsync(f.fileno())
        self._held = True
        logger.debug(f"Acquired lock {self.path}", extra={"role": self.role})

    def release(self) -> None:
        if not self._held:
            return
        try:
            self.path.unlink()
        except FileNotFoundError:
            logger.warning(f"Lock {self.path} vanished before release")
        self._held = False
        logger.debug(f"Released lock {self.path}", extra={"role": self.role})

    def __enter__(self) -> "PipelineLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False
