"""
Custom exceptions and error handling for the deal sync engine.

Provides:
- Typed exception hierarchy for different failure modes
- Error context preservation for debugging
- Classification of raw httpx and SQLAlchemy failures
"""

from typing import Any

import httpx
from sqlalchemy import exc as sa_exc


class DealSyncError(Exception):
    """Base exception for all deal sync errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            return f"{self.message} | context={self.context}"
        return self.message


# =============================================================================
# Client Errors
# =============================================================================


class ClientError(DealSyncError):
    """Base class for client-related errors."""

    pass


class SourceAPIError(ClientError):
    """Non-2xx response or transport failure from the source deal API."""

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message, context)
        self.status_code = status_code


class SourceNotFoundError(SourceAPIError):
    """Single-deal lookup returned 404."""

    pass


class DatastoreError(ClientError):
    """Error from relational datastore operations."""

    pass


class DatastoreConnectionError(DatastoreError):
    """Failed to connect to the datastore."""

    pass


class DatastoreConstraintError(DatastoreError):
    """Constraint violation (invalid literal, missing FK, not-null, duplicate key)."""

    pass


# =============================================================================
# Pipeline Errors
# =============================================================================


class PipelineError(DealSyncError):
    """Base class for pipeline-related errors."""

    pass


class DecodeError(PipelineError):
    """Source document failed strict schema decoding."""

    pass


class TransformError(PipelineError):
    """Error flattening a decoded deal into row groups."""

    pass


class ReconcileError(PipelineError):
    """Error applying a normalized row set to the datastore."""

    pass


class PartitionError(PipelineError):
    """Partition-level failure (every window errored, or setup failed)."""

    pass


# =============================================================================
# Error Handling Utilities
# =============================================================================


def wrap_source_error(exc: Exception, context: dict[str, Any] | None = None) -> SourceAPIError:
    """
    Wrap an httpx exception in our typed error hierarchy.

    Args:
        exc: The original exception
        context: Additional context for debugging

    Returns:
        Typed SourceAPIError subclass
    """
    if isinstance(exc, SourceAPIError):
        return exc

    ctx = context or {}
    ctx['error_type'] = type(exc).__name__

    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        body = exc.response.text[:500]
        if status == 404:
            return SourceNotFoundError(
                f"Source API error: {status} - {body}",
                context=ctx,
                status_code=status,
            )
        return SourceAPIError(
            f"Source API error: {status} - {body}",
            context=ctx,
            status_code=status,
        )
    if isinstance(exc, httpx.TimeoutException):
        return SourceAPIError(f"Source API timeout: {exc}", context=ctx)
    return SourceAPIError(f"Source API request failed: {exc}", context=ctx)


def wrap_datastore_error(exc: Exception, context: dict[str, Any] | None = None) -> DatastoreError:
    """
    Wrap a SQLAlchemy / driver exception in our typed error hierarchy.

    The raw driver message is kept verbatim so failure patterns can be
    grouped later from the ledger.

    Args:
        exc: The original exception
        context: Additional context for debugging

    Returns:
        Typed DatastoreError subclass
    """
    if isinstance(exc, DatastoreError):
        return exc

    ctx = context or {}
    ctx['error_type'] = type(exc).__name__
    raw = str(getattr(exc, 'orig', None) or exc)

    if isinstance(exc, (sa_exc.IntegrityError, sa_exc.DataError)):
        return DatastoreConstraintError(raw, context=ctx)
    if isinstance(exc, (sa_exc.InterfaceError, sa_exc.DisconnectionError, ConnectionError, OSError)):
        return DatastoreConnectionError(raw, context=ctx)

    error_str = raw.lower()
    if 'constraint' in error_str or 'unique' in error_str or 'invalid input syntax' in error_str:
        return DatastoreConstraintError(raw, context=ctx)
    if 'connection' in error_str or 'connect' in error_str:
        return DatastoreConnectionError(raw, context=ctx)
    return DatastoreError(raw, context=ctx)
