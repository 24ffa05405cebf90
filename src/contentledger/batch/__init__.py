"""
Batch reconciliation stages and the pipeline that runs them.
"""

from .auditor import InvariantAuditor, compute_domain_sets
from .checkpoint_sync import CheckpointSync
from .consolidator import Consolidator
from .deduplicator import Deduplicator
from .pipeline import ReconciliationPipeline
from .planner import plan_next_batch
from .promotion import PromotionMerger
from .recovery import RecoveryOrchestrator
from .requeue import TransientRequeuer

__all__ = [
    "CheckpointSync",
    "Consolidator",
    "Deduplicator",
    "InvariantAuditor",
    "PromotionMerger",
    "ReconciliationPipeline",
    "RecoveryOrchestrator",
    "TransientRequeuer",
    "compute_domain_sets",
    "plan_next_batch",
]
