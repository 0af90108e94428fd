"""
Utility helpers for the deal sync engine.

uuid7() wraps fastuuid.uuid7() to return a stdlib uuid.UUID instance.
fastuuid.UUID is a Rust-backed type that is NOT isinstance-compatible with
uuid.UUID, so we roundtrip through the string representation.

child_row_id() derives a stable id for rows that are deleted and re-inserted
on every sync, so an unchanged source produces the same ids each run.
"""

from datetime import datetime, timezone
from uuid import UUID, uuid5

import fastuuid


def uuid7() -> UUID:
    """Generate a UUIDv7 (time-sortable) as a stdlib uuid.UUID."""
    return UUID(str(fastuuid.uuid7()))


def child_row_id(parent_id: str, collection: str, index: int) -> str:
    """Deterministic id for the index-th row of a collection under a parent."""
    return str(uuid5(UUID(parent_id), f'{collection}:{index}'))


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Aware UTC view of a datetime; naive values (SQLite) are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
