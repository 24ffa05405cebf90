"""
Core data models for the reconciliation pipeline.

All models use Pydantic for validation at the file boundary.
"""

from .audit_report import AuditReport, DomainSets, InvariantViolation
from .checkpoint import Checkpoint, LifecycleEntry, QueueEntry
from .ground_truth import GroundTruth
from .manifest import Manifest
from .pipeline_state import PipelineStage, PipelineState, StageResult
from .record import (
    FailureRecord,
    LedgerRecord,
    RecordParseError,
    SuccessRecord,
    canonical_key,
    parse_line,
    record_from_payload,
)

__all__ = [
    "AuditReport",
    "Checkpoint",
    "DomainSets",
    "FailureRecord",
    "GroundTruth",
    "InvariantViolation",
    "LedgerRecord",
    "LifecycleEntry",
    "Manifest",
    "PipelineStage",
    "PipelineState",
    "QueueEntry",
    "RecordParseError",
    "StageResult",
    "SuccessRecord",
    "canonical_key",
    "parse_line",
    "record_from_payload",
]
