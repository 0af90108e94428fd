"""
Deal Sync Engine

Pulls mortgage deal documents from a rate-limited, per-partition source API,
flattens each deal into normalized row groups and converges a relational
datastore onto the latest source state, with a durable failure ledger for
deals that do not make it through.
"""

__version__ = '0.1.0'

# Re-export key classes for convenience
from .clients import PostgresClient, SourceClient
from .config import SyncConfig, get_config
from .ledger import FailureLedger
from .logging import (
    configure_logging,
    get_logger,
    logging_context,
    PipelineTimer,
)
from .pipeline.fetcher import RangeFetcher
from .pipeline.processor import DealProcessor
from .pipeline.reconciler import DealReconciler
from .pipeline.retry import FailureRetrier
from .pipeline.scheduler import PartitionScheduler
from .pipeline.transformer import transform_deal, transform_document
from .repository import PartitionRepository
from .errors import (
    DealSyncError,
    PipelineError,
    DecodeError,
    TransformError,
    ReconcileError,
    PartitionError,
    SourceAPIError,
    SourceNotFoundError,
    DatastoreError,
    DatastoreConnectionError,
    DatastoreConstraintError,
)

__all__ = [
    # Version
    '__version__',
    # Config
    'SyncConfig',
    'get_config',
    # Clients
    'PostgresClient',
    'SourceClient',
    # Pipeline
    'RangeFetcher',
    'DealProcessor',
    'DealReconciler',
    'FailureRetrier',
    'PartitionScheduler',
    'transform_deal',
    'transform_document',
    # Persistence
    'FailureLedger',
    'PartitionRepository',
    # Logging
    'configure_logging',
    'get_logger',
    'logging_context',
    'PipelineTimer',
    # Errors
    'DealSyncError',
    'PipelineError',
    'DecodeError',
    'TransformError',
    'ReconcileError',
    'PartitionError',
    'SourceAPIError',
    'SourceNotFoundError',
    'DatastoreError',
    'DatastoreConnectionError',
    'DatastoreConstraintError',
]
