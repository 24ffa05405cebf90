"""
Next-batch planner.

Picks the keys the generator should work on next:

    candidates = P \\ (done ∪ rejected ∪ manual ∪ deny)

Explicitly queued keys go first, then the rest in sorted order. The list is
written atomically, one key per line, to the batch file the generator reads.
"""

from dataclasses import dataclass, field
from pathlib import Path

from contentledger.core.models.checkpoint import Checkpoint
from contentledger.core.models.ground_truth import GroundTruth
from contentledger.observability.logger import get_logger
from contentledger.storage.atomic import atomic_write_lines
from contentledger.utils.validation import is_valid_key

logger = get_logger(__name__)


@dataclass
class BatchPlan:
    scope: str
    keys: list[str] = field(default_factory=list)
    candidates: int = 0
    queued_first: int = 0
    invalid: list[str] = field(default_factory=list)

    def summary(self) -> dict:
        return {
            "scope": self.scope,
            "candidates": self.candidates,
            "planned": len(self.keys),
            "queued_first": self.queued_first,
            "invalid_dropped": len(self.invalid),
        }


def plan_next_batch(
    scope: str,
    ground_truth: GroundTruth,
    checkpoint: Checkpoint,
    limit: int | None = None,
) -> BatchPlan:
    population = ground_truth.population(scope)
    settled = checkpoint.done_keys() | checkpoint.rejected_keys() | ground_truth.manual | ground_truth.deny
    candidates = population - settled

    valid = {key for key in candidates if is_valid_key(key)}
    invalid = sorted(candidates - valid)
    if invalid:
        logger.warning(
            f"Dropping {len(invalid)} keys that fail key hygiene",
            extra={"sample": invalid[:20]},
        )

    queued = sorted(valid & checkpoint.queued_keys())
    rest = sorted(valid - set(queued))
    ordered = queued + rest
    if limit is not None:
        ordered = ordered[:limit]

    return BatchPlan(
        scope=scope,
        keys=ordered,
        candidates=len(valid),
        queued_first=min(len(queued), len(ordered)),
        invalid=invalid,
    )


def write_batch_file(path: Path | str, plan: BatchPlan) -> int:
    count = atomic_write_lines(path, plan.keys)
    logger.info(f"Wrote {count} keys to {path}", extra=plan.summary())
    return count
