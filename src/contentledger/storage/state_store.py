"""
Load and save the small JSON state documents: checkpoint and manifest.

A missing file loads as empty state. A file that exists but cannot be parsed
is never silently replaced: it raises StateFileError so an operator looks at it.
"""

import hashlib
import json
from pathlib import Path
from typing import Literal, TypeVar

from pydantic import BaseModel, ValidationError

from contentledger.core.exceptions import StateFileError
from contentledger.core.models.checkpoint import Checkpoint
from contentledger.core.models.manifest import Manifest
from contentledger.observability.logger import get_logger
from contentledger.storage.atomic import atomic_write_json

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

SignatureMode = Literal["stat", "sha256"]


def _load_document(path: Path, model: type[M]) -> M:
    if not path.exists():
        logger.debug(f"{path} not found, starting from empty {model.__name__}")
        return model()
    try:
        with open(path, encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise StateFileError(f"Cannot read {model.__name__} file {path}: {e}") from e
    if not isinstance(raw, dict):
        raise StateFileError(f"{model.__name__} file {path} must contain a JSON object")
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise StateFileError(f"Invalid {model.__name__} file {path}: {e}") from e


def load_checkpoint(path: Path | str) -> Checkpoint:
    return _load_document(Path(path), Checkpoint)


def save_checkpoint(path: Path | str, checkpoint: Checkpoint) -> None:
    atomic_write_json(path, checkpoint.to_document())


def load_manifest(path: Path | str) -> Manifest:
    return _load_document(Path(path), Manifest)


def save_manifest(path: Path | str, manifest: Manifest) -> None:
    atomic_write_json(path, manifest.model_dump())


def file_signature(path: Path | str, mode: SignatureMode = "stat") -> str:
    """
    Content signature of a raw file for the manifest.

    ``stat`` is the fast path (size and nanosecond mtime); ``sha256`` hashes the
    content and is immune to coarse mtime resolution.
    """
    path = Path(path)
    if mode == "sha256":
        digest = hashlib.sha256()
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(1 << 16), b""):
                digest.update(chunk)
        return f"sha256:{digest.hexdigest()}"
    stat = path.stat()
    return f"{stat.st_size}-{stat.st_mtime_ns}"
