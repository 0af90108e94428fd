"""
Sync result models: per-deal outcomes, per-partition outcomes, ledger records.
"""

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict


class PartitionStatus(str, Enum):
    """
    Per-partition, per-run state.

    pending -> fetching -> transforming -> reconciling -> terminal. There is
    no retrying state; retry is a separate, later invocation.
    """

    PENDING = 'pending'
    FETCHING = 'fetching'
    TRANSFORMING = 'transforming'
    RECONCILING = 'reconciling'
    COMPLETED = 'completed'
    PARTIALLY_FAILED = 'partially-failed'
    FAILED = 'failed'

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({
    PartitionStatus.COMPLETED,
    PartitionStatus.PARTIALLY_FAILED,
    PartitionStatus.FAILED,
})


class Partition(BaseModel):
    """An independently synced upstream broker account."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    api_key: str
    base_url: str | None = None
    is_active: bool = True
    last_success_at: datetime | None = None


@dataclass
class DealSyncStats:
    """Row counts written for one deal."""

    borrowers: int = 0
    addresses: int = 0
    employment: int = 0
    liabilities: int = 0
    assets: int = 0
    properties: int = 0
    mortgages: int = 0
    conditions: int = 0
    notes: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class SyncOutcome:
    """Result of reconciling one deal. Exactly one of deal_id/error is set."""

    loan_code: str
    success: bool
    deal_id: str | None = None
    stats: DealSyncStats | None = None
    error: str | None = None
    error_type: str | None = None

    @classmethod
    def ok(cls, loan_code: str, deal_id: str, stats: DealSyncStats) -> 'SyncOutcome':
        return cls(loan_code=loan_code, success=True, deal_id=deal_id, stats=stats)

    @classmethod
    def failed(cls, loan_code: str, error: Exception) -> 'SyncOutcome':
        return cls(
            loan_code=loan_code,
            success=False,
            error=getattr(error, 'message', None) or str(error),
            error_type=type(error).__name__,
        )


@dataclass
class WindowResult:
    """One calendar-year sub-window fetch."""

    start: date
    end: date
    deals_found: int = 0
    pages: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class FetchResult:
    """All deals fetched for one partition plus per-window status."""

    deals: list[Any] = field(default_factory=list)
    windows: list[WindowResult] = field(default_factory=list)

    @property
    def windows_ok(self) -> int:
        return sum(1 for w in self.windows if w.ok)

    @property
    def windows_failed(self) -> int:
        return sum(1 for w in self.windows if not w.ok)

    @property
    def all_failed(self) -> bool:
        return bool(self.windows) and self.windows_ok == 0

    @property
    def errors(self) -> list[str]:
        return [f'{w.start.isoformat()}..{w.end.isoformat()}: {w.error}' for w in self.windows if w.error]


@dataclass
class DealFailure:
    loan_code: str | None
    error: str
    stage: str


@dataclass
class PartitionOutcome:
    """Terminal record of one partition in one batch run."""

    partition_id: str
    partition_name: str
    status: PartitionStatus = PartitionStatus.PENDING
    window_start: date | None = None
    window_end: date | None = None
    deals_found: int = 0
    deals_synced: int = 0
    deals_failed: int = 0
    windows_ok: int = 0
    windows_failed: int = 0
    reason: str | None = None
    failures: list[DealFailure] = field(default_factory=list)
    stage_timings: dict[str, float] = field(default_factory=dict)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    dry_run: bool = False
    # New last_success_at, set only when the fetched range extends coverage
    watermark: datetime | None = None

    @property
    def last_sync_error(self) -> str | None:
        """Operator-facing summary stored on the partition row."""
        if self.status is PartitionStatus.FAILED:
            return self.reason or 'failed'
        if self.deals_failed:
            return f'{self.deals_failed} deals failed'
        if self.status is PartitionStatus.PARTIALLY_FAILED:
            return self.reason
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            'partition_id': self.partition_id,
            'partition_name': self.partition_name,
            'status': self.status.value,
            'window_start': self.window_start.isoformat() if self.window_start else None,
            'window_end': self.window_end.isoformat() if self.window_end else None,
            'deals_found': self.deals_found,
            'deals_synced': self.deals_synced,
            'deals_failed': self.deals_failed,
            'windows_ok': self.windows_ok,
            'windows_failed': self.windows_failed,
            'reason': self.reason,
            'failures': [asdict(f) for f in self.failures],
            'stage_timings': self.stage_timings,
            'dry_run': self.dry_run,
            'watermark': self.watermark.isoformat() if self.watermark else None,
        }


@dataclass
class FailureRecord:
    """One row of the failure ledger."""

    id: str
    key: str
    partition_id: str | None
    error_message: str
    failed_at: datetime
    retried_at: datetime | None = None
    resolved: bool = False


@dataclass
class RetryResult:
    """Aggregate of a retry or resync pass."""

    attempted: int = 0
    retried: int = 0
    still_failing: int = 0
    details: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
