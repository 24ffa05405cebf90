"""
Ground-truth key lists: per-scope populations plus manual and deny overrides.

Lists are newline or comma separated; blank entries and ``#`` comment lines are
ignored and every key is canonicalised the same way ledger keys are.
"""

import re
from pathlib import Path

from contentledger.core.config import PipelineConfig
from contentledger.core.exceptions import MissingInputError
from contentledger.core.models.ground_truth import GroundTruth
from contentledger.core.models.record import canonical_key
from contentledger.observability.logger import get_logger

logger = get_logger(__name__)

_SEPARATORS = re.compile(r"[,\n]")


def parse_key_list(text: str) -> set[str]:
    keys: set[str] = set()
    for line in text.splitlines():
        if line.lstrip().startswith("#"):
            continue
        for item in _SEPARATORS.split(line):
            key = canonical_key(item)
            if key:
                keys.add(key)
    return keys


def read_key_list(path: Path | str, required: bool = True) -> set[str]:
    """
    Read a key list file.

    Raises:
        MissingInputError: If ``required`` and the file does not exist
    """
    path = Path(path)
    if not path.exists():
        if required:
            raise MissingInputError(f"Required key list not found: {path}")
        logger.debug(f"Optional key list {path} not found, treating as empty")
        return set()
    return parse_key_list(path.read_text(encoding="utf-8"))


def load_ground_truth(config: PipelineConfig, scope: str | None = None) -> GroundTruth:
    """
    Load the population for ``scope`` (default scope when None) and the overrides.

    Only the requested scope's population file is required; manual and deny
    lists are optional.
    """
    scope = scope or config.default_scope
    population = read_key_list(config.scope_file(scope))
    manual = read_key_list(config.resolve(config.manual_file), required=False)
    deny = read_key_list(config.resolve(config.deny_file), required=False)
    logger.info(
        f"Loaded ground truth for scope '{scope}'",
        extra={"scope": scope, "population": len(population), "manual": len(manual), "deny": len(deny)},
    )
    return GroundTruth(populations={scope: population}, manual=manual, deny=deny)
