"""
Reconciliation Module for the Store Resync Service

This module compares replica stores against a baseline snapshot, finds the
records they are missing and re-inserts them through the authoritative
record service.

Main components:
- collector: Per-host count collection and baseline resolution
- differ: Baseline diffing into out-of-sync hosts and records
- paginator: Paged record id enumeration
- repairer: Resync of out-of-sync records

The inbound operations live in src.reconciliation.service.

Usage:
    from src.reconciliation.service import ReconciliationService

    service = ReconciliationService(config)
    assessment = service.get_all_counts()
    result = service.resync()
"""

from src.reconciliation.collector import BaselineResolver, CountCollector
from src.reconciliation.differ import DiffEngine, merge_out_of_sync
from src.reconciliation.paginator import PaginatedEnumerator
from src.reconciliation.repairer import ResyncExecutor

__all__ = [
    "BaselineResolver",
    "CountCollector",
    "DiffEngine",
    "PaginatedEnumerator",
    "ResyncExecutor",
    "merge_out_of_sync",
]

__version__ = "1.0.0"
