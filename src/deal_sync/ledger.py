"""
Failure ledger: persistent record of per-deal sync failures.

Keyed by the natural id of the failing unit (the loan code). A failure
creates an open entry or refreshes the open entry's message and timestamp;
a later success flips it to resolved. Entries are never hard-deleted, so a
key that fails again after being resolved opens a new entry.
"""

from collections.abc import Callable, Iterable
from datetime import datetime

import structlog
from sqlalchemy import false, insert, select, update
from sqlalchemy.exc import SQLAlchemyError

from . import schema
from .clients.postgres_client import PostgresClient
from .errors import wrap_datastore_error
from .models.sync import FailureRecord
from .utils import utc_now, uuid7

logger = structlog.get_logger(__name__)

_ft = schema.sync_failures


def _to_record(row) -> FailureRecord:
    return FailureRecord(
        id=str(row.id),
        key=row.failure_key,
        partition_id=row.partition_id,
        error_message=row.error_message,
        failed_at=row.failed_at,
        retried_at=row.retried_at,
        resolved=bool(row.resolved),
    )


class FailureLedger:
    """Reads and writes the sync_failures table."""

    def __init__(
        self,
        postgres: PostgresClient,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.postgres = postgres
        self._clock = clock

    async def record(
        self,
        key: str,
        partition_id: str | None,
        error: str | Exception,
        retried: bool = False,
    ) -> None:
        """
        Record a failure for `key`, refreshing the open entry if there is one.

        The stored message is the raw error text so failure patterns can be
        grouped later. `retried` stamps retried_at, for failures that come
        out of a retry pass.

        Raises:
            DatastoreError: If the ledger itself cannot be written
        """
        message = getattr(error, 'message', None) or str(error)
        now = self._clock()
        try:
            async with self.postgres.engine.begin() as conn:
                existing = await conn.execute(
                    select(_ft.c.id).where(_ft.c.failure_key == key, _ft.c.resolved == false())
                )
                open_id = existing.scalar_one_or_none()
                if open_id is None:
                    await conn.execute(
                        insert(_ft).values(
                            id=str(uuid7()),
                            failure_key=key,
                            partition_id=partition_id,
                            error_message=message,
                            failed_at=now,
                            retried_at=now if retried else None,
                            resolved=False,
                        )
                    )
                else:
                    values = {'error_message': message, 'failed_at': now}
                    if retried:
                        values['retried_at'] = now
                    if partition_id is not None:
                        values['partition_id'] = partition_id
                    await conn.execute(update(_ft).where(_ft.c.id == open_id).values(**values))
        except SQLAlchemyError as exc:
            raise wrap_datastore_error(exc, {'operation': 'ledger.record', 'key': key}) from exc

        logger.info('ledger.failure_recorded', key=key, partition_id=partition_id, new_entry=open_id is None)

    async def resolve(self, keys: Iterable[str]) -> int:
        """
        Mark open entries for `keys` resolved.

        Returns:
            Number of entries flipped to resolved

        Raises:
            DatastoreError: If the ledger cannot be written
        """
        key_list = list(dict.fromkeys(keys))
        if not key_list:
            return 0
        now = self._clock()
        try:
            async with self.postgres.engine.begin() as conn:
                result = await conn.execute(
                    update(_ft)
                    .where(_ft.c.failure_key.in_(key_list), _ft.c.resolved == false())
                    .values(resolved=True, retried_at=now)
                )
        except SQLAlchemyError as exc:
            raise wrap_datastore_error(exc, {'operation': 'ledger.resolve'}) from exc

        if result.rowcount:
            logger.info('ledger.failures_resolved', count=result.rowcount)
        return result.rowcount

    async def list_unresolved(
        self,
        partition_id: str | None = None,
        limit: int = 10,
    ) -> list[FailureRecord]:
        """Open entries, oldest failure first, optionally for one partition."""
        query = select(_ft).where(_ft.c.resolved == false())
        if partition_id is not None:
            query = query.where(_ft.c.partition_id == partition_id)
        query = query.order_by(_ft.c.failed_at.asc(), _ft.c.id.asc()).limit(limit)

        try:
            async with self.postgres.engine.connect() as conn:
                result = await conn.execute(query)
                rows = result.fetchall()
        except SQLAlchemyError as exc:
            raise wrap_datastore_error(exc, {'operation': 'ledger.list_unresolved'}) from exc

        return [_to_record(row) for row in rows]

    async def get(self, key: str) -> list[FailureRecord]:
        """Every entry ever recorded for `key`, oldest first."""
        try:
            async with self.postgres.engine.connect() as conn:
                result = await conn.execute(
                    select(_ft).where(_ft.c.failure_key == key).order_by(_ft.c.failed_at.asc())
                )
                rows = result.fetchall()
        except SQLAlchemyError as exc:
            raise wrap_datastore_error(exc, {'operation': 'ledger.get', 'key': key}) from exc
        return [_to_record(row) for row in rows]
