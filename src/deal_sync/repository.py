"""
Partition registry: broker accounts and their per-run sync bookkeeping.

Key design decisions:
- Partitions are listed in name order so a multi-partition run (and
  resuming one) is deterministic.
- last_sync_at moves on every run. last_success_at is the incremental
  watermark and only moves to the value the scheduler computed from the
  windows it actually fetched (PartitionOutcome.watermark).
"""

from collections.abc import Callable
from datetime import datetime

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError

from . import schema
from .clients.postgres_client import PostgresClient, dialect_insert
from .errors import wrap_datastore_error
from .models.sync import Partition, PartitionOutcome
from .utils import utc_now

logger = structlog.get_logger(__name__)

_pt = schema.partitions


def _to_partition(row) -> Partition:
    return Partition(
        id=row.id,
        name=row.name,
        api_key=row.api_key,
        base_url=row.base_url,
        is_active=bool(row.is_active),
        last_success_at=row.last_success_at,
    )


class PartitionRepository:
    """CRUD for the partitions table."""

    def __init__(
        self,
        postgres: PostgresClient,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.postgres = postgres
        self._clock = clock

    # =========================================================================
    # Reads
    # =========================================================================

    async def list_partitions(
        self,
        selector: str | None = None,
        active_only: bool = True,
    ) -> list[Partition]:
        """
        Partitions sorted by name.

        Args:
            selector: None or 'all' for every partition; otherwise an exact
                      id, or a case-insensitive substring of the name
            active_only: Skip partitions flagged inactive
        """
        query = select(_pt)
        if active_only:
            query = query.where(_pt.c.is_active.is_(True))
        if selector and selector.lower() != 'all':
            query = query.where(
                (_pt.c.id == selector) | func.lower(_pt.c.name).contains(selector.lower())
            )
        query = query.order_by(_pt.c.name.asc(), _pt.c.id.asc())

        try:
            async with self.postgres.engine.connect() as conn:
                rows = (await conn.execute(query)).fetchall()
        except SQLAlchemyError as exc:
            raise wrap_datastore_error(exc, {'operation': 'partitions.list'}) from exc
        return [_to_partition(row) for row in rows]

    async def get_partition(self, partition_id: str) -> Partition | None:
        try:
            async with self.postgres.engine.connect() as conn:
                row = (await conn.execute(select(_pt).where(_pt.c.id == partition_id))).first()
        except SQLAlchemyError as exc:
            raise wrap_datastore_error(exc, {'operation': 'partitions.get'}) from exc
        return _to_partition(row) if row else None

    # =========================================================================
    # Writes
    # =========================================================================

    async def save_partition(self, partition: Partition) -> None:
        """Insert or update a partition's identity and credentials."""
        values = {
            'id': partition.id,
            'name': partition.name,
            'api_key': partition.api_key,
            'base_url': partition.base_url,
            'is_active': partition.is_active,
            'last_success_at': partition.last_success_at,
        }
        try:
            async with self.postgres.engine.begin() as conn:
                stmt = dialect_insert(conn, _pt).values(values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=['id'],
                    set_={col: stmt.excluded[col] for col in ('name', 'api_key', 'base_url', 'is_active')},
                )
                await conn.execute(stmt)
        except SQLAlchemyError as exc:
            raise wrap_datastore_error(exc, {'operation': 'partitions.save'}) from exc

    async def record_outcome(self, outcome: PartitionOutcome) -> None:
        """
        Persist the terminal state of one partition run.

        Raises:
            DatastoreError: If the partition row cannot be updated
        """
        values: dict = {
            'last_sync_at': outcome.completed_at or self._clock(),
            'last_sync_error': outcome.last_sync_error,
            'last_sync_deals_count': outcome.deals_found,
        }
        if outcome.watermark is not None:
            values['last_success_at'] = outcome.watermark

        try:
            async with self.postgres.engine.begin() as conn:
                await conn.execute(update(_pt).where(_pt.c.id == outcome.partition_id).values(**values))
        except SQLAlchemyError as exc:
            raise wrap_datastore_error(
                exc, {'operation': 'partitions.record_outcome', 'partition_id': outcome.partition_id}
            ) from exc

        logger.debug(
            'repository.outcome_recorded',
            partition_id=outcome.partition_id,
            status=outcome.status.value,
            watermark_moved='last_success_at' in values,
        )
