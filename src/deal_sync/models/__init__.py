"""
Data models for the deal sync engine.

Provides the strict source decoder (RawDeal and its parts), the normalized
row groups handed to the reconciler, and the outcome models reported by
the scheduler and retrier.
"""

from .rows import (
    COLLECTIONS,
    ChildCollection,
    CollectionSpec,
    NormalizedRowSet,
    ParentKind,
    ReconcileStrategy,
    RowGroup,
)
from .source import RawDeal, decode_deal
from .sync import (
    DealFailure,
    DealSyncStats,
    FailureRecord,
    FetchResult,
    Partition,
    PartitionOutcome,
    PartitionStatus,
    RetryResult,
    SyncOutcome,
    WindowResult,
)

__all__ = [
    # Row groups
    'COLLECTIONS',
    'ChildCollection',
    'CollectionSpec',
    'NormalizedRowSet',
    'ParentKind',
    'ReconcileStrategy',
    'RowGroup',
    # Source documents
    'RawDeal',
    'decode_deal',
    # Outcomes
    'DealFailure',
    'DealSyncStats',
    'FailureRecord',
    'FetchResult',
    'Partition',
    'PartitionOutcome',
    'PartitionStatus',
    'RetryResult',
    'SyncOutcome',
    'WindowResult',
]
