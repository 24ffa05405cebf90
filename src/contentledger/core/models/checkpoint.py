"""
Checkpoint model: durable per-key lifecycle state (done / rejected / queued).
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class LifecycleEntry(BaseModel):
    """
    Metadata for a key marked done or rejected.

    Extra keys (e.g. ``supersededReject`` provenance) are kept as-is so a
    load/save round trip never drops information.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    when: str
    why: str


class QueueEntry(BaseModel):
    """A key explicitly re-queued for another generation attempt."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    reason: str
    queued_at: str = Field(..., alias="queuedAt")


class Checkpoint(BaseModel):
    """
    Per-key lifecycle state.

    Invariants (enforced by checkpoint sync, verified by the auditor):
        done ∩ rejected = ∅
        queued ∩ (done ∪ rejected) = ∅
    """

    model_config = ConfigDict(extra="allow")

    done: dict[str, LifecycleEntry] = Field(default_factory=dict)
    rejected: dict[str, LifecycleEntry] = Field(default_factory=dict)
    queued: dict[str, QueueEntry] = Field(default_factory=dict)

    def done_keys(self) -> set[str]:
        return set(self.done)

    def rejected_keys(self) -> set[str]:
        return set(self.rejected)

    def queued_keys(self) -> set[str]:
        return set(self.queued)

    def overlap(self) -> set[str]:
        """Keys that are both done and rejected."""
        return self.done_keys() & self.rejected_keys()

    def to_document(self) -> dict[str, Any]:
        """JSON-ready document using the on-disk field names."""
        return self.model_dump(by_alias=True, exclude_none=True)
