"""
Normalized row groups produced by the transformer and consumed by the reconciler.

Each child collection declares how it is reconciled (ReconcileStrategy) and
the reconciler dispatches on that declaration instead of hardcoding
per-table logic:

- UPSERT_BY_INDEX: rows carry a position index inside their parent (and
  optional scope such as condition_type). Rows at index >= source
  cardinality are pruned, the rest are upserted on the composite key.
- REPLACE_ALL: rows have no stable conflict key. All rows under the parent
  are deleted, then the current rows are inserted.
- ONE_TO_ONE: at most one row per parent, upserted on the parent id.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sqlalchemy import Table

from .. import schema

Row = dict[str, Any]


class ReconcileStrategy(str, Enum):
    """How a child collection converges on the source."""

    UPSERT_BY_INDEX = 'upsert_by_index'
    REPLACE_ALL = 'replace_all'
    ONE_TO_ONE = 'one_to_one'


class ParentKind(str, Enum):
    """Which already-written row a collection hangs off."""

    DEAL = 'deal'
    BORROWER = 'borrower'
    MORTGAGE_REQUEST = 'mortgage_request'


class ChildCollection(str, Enum):
    BORROWERS = 'borrowers'
    ADDRESSES = 'addresses'
    EMPLOYMENT = 'employment'
    LIABILITIES = 'liabilities'
    ASSETS = 'assets'
    PROPERTIES = 'properties'
    SUBJECT_PROPERTY = 'subject_property'
    MORTGAGE_REQUEST = 'mortgage_request'
    MORTGAGES = 'mortgages'
    CONDITIONS = 'conditions'
    NOTES = 'notes'


@dataclass(frozen=True)
class CollectionSpec:
    """Declared reconcile behaviour of one child collection."""

    collection: ChildCollection
    table: Table
    strategy: ReconcileStrategy
    parent: ParentKind
    parent_column: str
    index_column: str | None = None
    scope_columns: tuple[str, ...] = ()

    @property
    def conflict_columns(self) -> tuple[str, ...]:
        if self.strategy is ReconcileStrategy.ONE_TO_ONE:
            return (self.parent_column,)
        if self.strategy is ReconcileStrategy.UPSERT_BY_INDEX:
            return (self.parent_column, *self.scope_columns, self.index_column)
        return ()


COLLECTIONS: dict[ChildCollection, CollectionSpec] = {
    spec.collection: spec
    for spec in (
        CollectionSpec(
            ChildCollection.BORROWERS, schema.borrowers,
            ReconcileStrategy.UPSERT_BY_INDEX, ParentKind.DEAL, 'deal_id', 'borrower_index',
        ),
        CollectionSpec(
            ChildCollection.ADDRESSES, schema.borrower_addresses,
            ReconcileStrategy.REPLACE_ALL, ParentKind.BORROWER, 'borrower_id',
        ),
        CollectionSpec(
            ChildCollection.EMPLOYMENT, schema.borrower_employment,
            ReconcileStrategy.REPLACE_ALL, ParentKind.BORROWER, 'borrower_id',
        ),
        CollectionSpec(
            ChildCollection.LIABILITIES, schema.borrower_liabilities,
            ReconcileStrategy.REPLACE_ALL, ParentKind.BORROWER, 'borrower_id',
        ),
        CollectionSpec(
            ChildCollection.ASSETS, schema.borrower_assets,
            ReconcileStrategy.REPLACE_ALL, ParentKind.BORROWER, 'borrower_id',
        ),
        CollectionSpec(
            ChildCollection.PROPERTIES, schema.borrower_properties,
            ReconcileStrategy.REPLACE_ALL, ParentKind.BORROWER, 'borrower_id',
        ),
        CollectionSpec(
            ChildCollection.SUBJECT_PROPERTY, schema.subject_properties,
            ReconcileStrategy.ONE_TO_ONE, ParentKind.DEAL, 'deal_id',
        ),
        CollectionSpec(
            ChildCollection.MORTGAGE_REQUEST, schema.mortgage_requests,
            ReconcileStrategy.ONE_TO_ONE, ParentKind.DEAL, 'deal_id',
        ),
        CollectionSpec(
            ChildCollection.MORTGAGES, schema.mortgages,
            ReconcileStrategy.UPSERT_BY_INDEX, ParentKind.MORTGAGE_REQUEST,
            'mortgage_request_id', 'mortgage_index',
        ),
        CollectionSpec(
            ChildCollection.CONDITIONS, schema.conditions,
            ReconcileStrategy.UPSERT_BY_INDEX, ParentKind.DEAL, 'deal_id', 'condition_index',
            scope_columns=('condition_type',),
        ),
        CollectionSpec(
            ChildCollection.NOTES, schema.notes,
            ReconcileStrategy.UPSERT_BY_INDEX, ParentKind.DEAL, 'deal_id', 'note_index',
        ),
    )
}

# Write order: parents before the collections that reference them
RECONCILE_ORDER: tuple[ChildCollection, ...] = (
    ChildCollection.BORROWERS,
    ChildCollection.ADDRESSES,
    ChildCollection.EMPLOYMENT,
    ChildCollection.LIABILITIES,
    ChildCollection.ASSETS,
    ChildCollection.PROPERTIES,
    ChildCollection.SUBJECT_PROPERTY,
    ChildCollection.MORTGAGE_REQUEST,
    ChildCollection.MORTGAGES,
    ChildCollection.CONDITIONS,
    ChildCollection.NOTES,
)

# Collections that live under a borrower; pruned explicitly with their parent
BORROWER_CHILDREN: tuple[ChildCollection, ...] = tuple(
    c for c in RECONCILE_ORDER if COLLECTIONS[c].parent is ParentKind.BORROWER
)


@dataclass
class RowGroup:
    """
    The complete current rows of one child collection under one parent.

    An empty group is meaningful: it tells the reconciler the collection now
    has zero rows, so everything previously stored under that parent goes.

    parent_index identifies the borrower (by borrower_index) for
    borrower-level collections and is None otherwise. scope holds fixed
    column values that partition an index space (condition_type).
    """

    collection: ChildCollection
    rows: list[Row] = field(default_factory=list)
    parent_index: int | None = None
    scope: dict[str, Any] = field(default_factory=dict)

    @property
    def spec(self) -> CollectionSpec:
        return COLLECTIONS[self.collection]

    def __len__(self) -> int:
        return len(self.rows)


@dataclass
class NormalizedRowSet:
    """Everything one source deal flattens into, ready to reconcile."""

    loan_code: str
    deal: Row
    groups: list[RowGroup] = field(default_factory=list)

    def groups_for(self, collection: ChildCollection) -> list[RowGroup]:
        return [g for g in self.groups if g.collection is collection]

    def row_count(self, collection: ChildCollection) -> int:
        return sum(len(g) for g in self.groups_for(collection))

    def ordered_groups(self) -> list[RowGroup]:
        """Groups in parent-before-child write order, stable within a collection."""
        rank = {c: i for i, c in enumerate(RECONCILE_ORDER)}
        return sorted(self.groups, key=lambda g: rank[g.collection])
