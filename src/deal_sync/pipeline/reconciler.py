"""
Reconciler: apply one NormalizedRowSet to the datastore.

Per deal, inside a single transaction:
1. Upsert the deal on loan_code and read back its durable id.
2. Walk the row groups parent-first and dispatch on each collection's
   declared ReconcileStrategy:
   - UPSERT_BY_INDEX: delete rows at index >= source cardinality (and the
     dependents of pruned borrowers), then upsert the rest on the
     composite key.
   - REPLACE_ALL: delete everything under the parent, insert current rows
     with ids derived from (parent id, collection, position).
   - ONE_TO_ONE: upsert on the parent id.

Any failure rolls back that deal only and comes back as a failed
SyncOutcome; reconcile() never raises.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import Table, case, delete, insert, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection

from .. import schema
from ..clients.postgres_client import PostgresClient, dialect_insert
from ..errors import DealSyncError, ReconcileError, wrap_datastore_error
from ..models.rows import (
    BORROWER_CHILDREN,
    COLLECTIONS,
    ChildCollection,
    CollectionSpec,
    NormalizedRowSet,
    ParentKind,
    ReconcileStrategy,
    Row,
    RowGroup,
)
from ..models.sync import DealSyncStats, SyncOutcome
from ..utils import child_row_id, utc_now, uuid7

logger = structlog.get_logger(__name__)

# Deal columns never touched by a re-sync
_DEAL_INSERT_ONLY = frozenset({'id', 'loan_code', 'created_at'})
# Bookkeeping column, only moved when some content column changes
_DEAL_SYNCED_AT = 'synced_at'


@dataclass
class _DealContext:
    """Ids of parents written so far in the current deal transaction."""

    deal_id: str
    borrower_ids: dict[int, str] = field(default_factory=dict)
    mortgage_request_id: str | None = None


class DealReconciler:
    """
    Converges the stored rows of one deal onto its latest source version.

    Deals are isolated from each other: each reconcile() runs in its own
    transaction and reports its own outcome.
    """

    def __init__(
        self,
        postgres: PostgresClient,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.postgres = postgres
        self._clock = clock

    async def reconcile(self, partition_id: str | None, row_set: NormalizedRowSet) -> SyncOutcome:
        """
        Apply a transformed deal.

        Args:
            partition_id: Owning partition (overrides the row set's value when given)
            row_set: Output of transform_deal()

        Returns:
            SyncOutcome with stats on success, the error message on failure
        """
        log = logger.bind(loan_code=row_set.loan_code, partition_id=partition_id)
        try:
            async with self.postgres.engine.begin() as conn:
                deal_id = await self._apply(conn, partition_id, row_set)
        except DealSyncError as exc:
            log.warning('reconciler.deal_failed', error=exc.message, error_type=type(exc).__name__)
            return SyncOutcome.failed(row_set.loan_code, exc)
        except SQLAlchemyError as exc:
            error = wrap_datastore_error(exc, {'loan_code': row_set.loan_code})
            log.warning('reconciler.deal_failed', error=error.message, error_type=type(error).__name__)
            return SyncOutcome.failed(row_set.loan_code, error)
        except Exception as exc:
            error = ReconcileError(str(exc), context={'loan_code': row_set.loan_code})
            log.exception('reconciler.deal_failed_unexpected', error=str(exc))
            return SyncOutcome.failed(row_set.loan_code, error)

        stats = self.stats_for(row_set)
        log.debug('reconciler.deal_synced', deal_id=deal_id, **stats.to_dict())
        return SyncOutcome.ok(row_set.loan_code, deal_id, stats)

    @staticmethod
    def stats_for(row_set: NormalizedRowSet) -> DealSyncStats:
        return DealSyncStats(
            borrowers=row_set.row_count(ChildCollection.BORROWERS),
            addresses=row_set.row_count(ChildCollection.ADDRESSES),
            employment=row_set.row_count(ChildCollection.EMPLOYMENT),
            liabilities=row_set.row_count(ChildCollection.LIABILITIES),
            assets=row_set.row_count(ChildCollection.ASSETS),
            properties=row_set.row_count(ChildCollection.PROPERTIES),
            mortgages=row_set.row_count(ChildCollection.MORTGAGES),
            conditions=row_set.row_count(ChildCollection.CONDITIONS),
            notes=row_set.row_count(ChildCollection.NOTES),
        )

    # =========================================================================
    # Transaction body
    # =========================================================================

    async def _apply(
        self,
        conn: AsyncConnection,
        partition_id: str | None,
        row_set: NormalizedRowSet,
    ) -> str:
        ctx = _DealContext(deal_id=await self._upsert_deal(conn, partition_id, row_set))

        for group in row_set.ordered_groups():
            spec = group.spec
            parent_id = self._parent_id(spec, group, ctx)

            if spec.strategy is ReconcileStrategy.UPSERT_BY_INDEX:
                ids = await self._reconcile_indexed(conn, spec, group, parent_id)
                if spec.collection is ChildCollection.BORROWERS:
                    ctx.borrower_ids.update(ids)
            elif spec.strategy is ReconcileStrategy.REPLACE_ALL:
                await self._replace_all(conn, spec, group, parent_id)
            elif spec.strategy is ReconcileStrategy.ONE_TO_ONE:
                row_id = await self._upsert_one(conn, spec, group, parent_id)
                if spec.collection is ChildCollection.MORTGAGE_REQUEST:
                    ctx.mortgage_request_id = row_id
            else:
                raise ReconcileError(f'Unknown reconcile strategy: {spec.strategy}')

        return ctx.deal_id

    async def _upsert_deal(
        self,
        conn: AsyncConnection,
        partition_id: str | None,
        row_set: NormalizedRowSet,
    ) -> str:
        now = self._clock()
        values: dict[str, Any] = {
            **row_set.deal,
            'id': str(uuid7()),
            'created_at': now,
            'synced_at': now,
        }
        if partition_id is not None:
            values['partition_id'] = partition_id

        stmt = dialect_insert(conn, schema.deals).values(values)
        content = [col for col in values if col not in _DEAL_INSERT_ONLY and col != _DEAL_SYNCED_AT]
        changed = or_(*(schema.deals.c[col].is_distinct_from(stmt.excluded[col]) for col in content))
        set_ = {col: stmt.excluded[col] for col in content}
        set_[_DEAL_SYNCED_AT] = case(
            (changed, stmt.excluded[_DEAL_SYNCED_AT]),
            else_=schema.deals.c[_DEAL_SYNCED_AT],
        )
        stmt = stmt.on_conflict_do_update(index_elements=['loan_code'], set_=set_).returning(schema.deals.c.id)

        result = await conn.execute(stmt)
        return str(result.scalar_one())

    @staticmethod
    def _parent_id(spec: CollectionSpec, group: RowGroup, ctx: _DealContext) -> str:
        if spec.parent is ParentKind.DEAL:
            return ctx.deal_id
        if spec.parent is ParentKind.BORROWER:
            try:
                return ctx.borrower_ids[group.parent_index]
            except KeyError:
                raise ReconcileError(
                    f'{spec.collection.value} group references unknown borrower index {group.parent_index}'
                ) from None
        if spec.parent is ParentKind.MORTGAGE_REQUEST:
            if ctx.mortgage_request_id is None:
                raise ReconcileError('mortgages group without a mortgage request')
            return ctx.mortgage_request_id
        raise ReconcileError(f'Unknown parent kind: {spec.parent}')

    # =========================================================================
    # Strategies
    # =========================================================================

    async def _reconcile_indexed(
        self,
        conn: AsyncConnection,
        spec: CollectionSpec,
        group: RowGroup,
        parent_id: str,
    ) -> dict[int, str]:
        """Prune index >= cardinality, then upsert positions 0..N-1."""
        table = spec.table
        index_col = table.c[spec.index_column]
        scope_filter = [table.c[spec.parent_column] == parent_id]
        scope_filter.extend(table.c[col] == group.scope[col] for col in spec.scope_columns)

        orphans = [*scope_filter, index_col >= len(group.rows)]
        if spec.collection is ChildCollection.BORROWERS:
            pruned_ids = select(table.c.id).where(*orphans)
            for child in BORROWER_CHILDREN:
                child_table = COLLECTIONS[child].table
                await conn.execute(delete(child_table).where(child_table.c.borrower_id.in_(pruned_ids)))
        await conn.execute(delete(table).where(*orphans))

        ids: dict[int, str] = {}
        for row in group.rows:
            values = {**row, **group.scope, spec.parent_column: parent_id, 'id': str(uuid7())}
            ids[row[spec.index_column]] = await self._upsert(conn, table, spec.conflict_columns, values)
        return ids

    async def _replace_all(
        self,
        conn: AsyncConnection,
        spec: CollectionSpec,
        group: RowGroup,
        parent_id: str,
    ) -> None:
        """Delete every row under the parent, then insert the current rows."""
        table = spec.table
        await conn.execute(delete(table).where(table.c[spec.parent_column] == parent_id))
        if not group.rows:
            return
        rows: list[Row] = [
            {
                **row,
                spec.parent_column: parent_id,
                'id': child_row_id(parent_id, spec.collection.value, position),
            }
            for position, row in enumerate(group.rows)
        ]
        await conn.execute(insert(table), rows)

    async def _upsert_one(
        self,
        conn: AsyncConnection,
        spec: CollectionSpec,
        group: RowGroup,
        parent_id: str,
    ) -> str | None:
        if not group.rows:
            return None
        if len(group.rows) > 1:
            raise ReconcileError(
                f'{spec.collection.value} expects one row per deal, got {len(group.rows)}'
            )
        values = {**group.rows[0], spec.parent_column: parent_id, 'id': str(uuid7())}
        return await self._upsert(conn, spec.table, spec.conflict_columns, values)

    @staticmethod
    async def _upsert(
        conn: AsyncConnection,
        table: Table,
        conflict_columns: tuple[str, ...],
        values: Row,
    ) -> str:
        """INSERT ... ON CONFLICT (key) DO UPDATE ... RETURNING id; the stored id is kept."""
        stmt = dialect_insert(conn, table).values(values)
        stmt = stmt.on_conflict_do_update(
            index_elements=list(conflict_columns),
            set_={col: stmt.excluded[col] for col in values if col != 'id'},
        ).returning(table.c.id)
        result = await conn.execute(stmt)
        return str(result.scalar_one())
