"""
Atomic file replacement.

Every durable write (ledgers, checkpoint, manifest, batch file) goes through
here: write a sibling temp file, fsync it, then os.replace it over the
target. A process killed at any point leaves either the old file or the new
one, never a truncated mix.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Iterable


def _fsync_dir(directory: Path) -> None:
    try:
        fd = os.open(directory, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


def atomic_write_bytes(path: Path | str, data: bytes) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as tmp:
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        # The target is untouched; only the temp file needs to go
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise
    _fsync_dir(path.parent)


def atomic_write_text(path: Path | str, content: str) -> None:
    atomic_write_bytes(path, content.encode("utf-8"))


def atomic_write_lines(path: Path | str, lines: Iterable[str]) -> int:
    """
    Replace ``path`` with one line per item (newline terminated).

    Returns:
        Number of lines written
    """
    items = list(lines)
    atomic_write_text(path, "".join(f"{line}\n" for line in items))
    return len(items)


def atomic_write_json(path: Path | str, obj: Any) -> None:
    """Write ``obj`` as indented JSON with sorted keys so equal state gives equal bytes."""
    atomic_write_text(path, json.dumps(obj, indent=2, sort_keys=True, ensure_ascii=False) + "\n")
