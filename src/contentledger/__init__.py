"""
contentledger - file-backed reconciliation layer for batch content generation.

Folds raw generator output into deduplicated master ledgers, keeps the
per-key lifecycle checkpoint in sync and audits the set identity between
ledgers, checkpoint and the external population of record.
"""

__version__ = "0.4.0"
