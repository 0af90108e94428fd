"""
Relational layout for synced deals.

SQLAlchemy Core table definitions shared by the reconciler, the failure
ledger and the partition repository. Migrations are managed outside this
package; `create_all()` is only used to stand up throwaway databases.

Conflict keys:
- deals: loan_code
- borrowers: (deal_id, borrower_index)
- subject_properties / mortgage_requests: deal_id
- mortgages: (mortgage_request_id, mortgage_index)
- conditions: (deal_id, condition_type, condition_index)
- notes: (deal_id, note_index)
- borrower_* children: none; replaced wholesale per borrower
- sync_failures: failure_key, unique among unresolved rows only
"""

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
    false,
    text,
    true,
)

metadata = MetaData()

# Money / rate columns come back as float; the source never needs Decimal precision
Amount = Numeric(18, 4, asdecimal=False)


def _id_column() -> Column:
    return Column('id', Uuid(as_uuid=False), primary_key=True)


def _address_columns(prefix: str = '') -> list[Column]:
    return [
        Column(f'{prefix}unit_number', String(50)),
        Column(f'{prefix}street_number', String(50)),
        Column(f'{prefix}street_name', String(255)),
        Column(f'{prefix}street_type_code', Integer),
        Column(f'{prefix}street_direction_code', Integer),
        Column(f'{prefix}city', String(255)),
        Column(f'{prefix}province_code', Integer),
        Column(f'{prefix}postal_code', String(20)),
    ]


partitions = Table(
    'partitions',
    metadata,
    Column('id', String(64), primary_key=True),
    Column('name', String(255), nullable=False),
    Column('api_key', String(255), nullable=False),
    Column('base_url', String(500)),
    Column('is_active', Boolean, nullable=False, server_default=true()),
    Column('last_sync_at', DateTime(timezone=True)),
    Column('last_success_at', DateTime(timezone=True)),
    Column('last_sync_error', Text),
    Column('last_sync_deals_count', Integer),
)

deals = Table(
    'deals',
    metadata,
    _id_column(),
    Column('loan_code', String(64), nullable=False, unique=True),
    Column('partition_id', String(64), ForeignKey('partitions.id')),
    Column('agent', String(255)),
    Column('status_code', Integer),
    Column('date_created', DateTime(timezone=True)),
    Column('closing_date', DateTime(timezone=True)),
    Column('link_application_id', String(100)),
    Column('lender_reference_number', String(100)),
    Column('is_confirmed_compliant', Boolean),
    Column('custom_source', String(255)),
    Column('created_at', DateTime(timezone=True)),
    Column('synced_at', DateTime(timezone=True)),
)

borrowers = Table(
    'borrowers',
    metadata,
    _id_column(),
    Column('deal_id', Uuid(as_uuid=False), ForeignKey('deals.id', ondelete='CASCADE'), nullable=False),
    Column('borrower_index', Integer, nullable=False),
    Column('first_name', String(255)),
    Column('last_name', String(255)),
    Column('date_of_birth', Date),
    Column('home_phone', String(50)),
    Column('cell_phone', String(50)),
    Column('business_phone', String(50)),
    Column('email', String(255)),
    Column('credit_score', Integer),
    Column('first_time_home_buyer', Boolean),
    UniqueConstraint('deal_id', 'borrower_index', name='uq_borrowers_deal_index'),
)

borrower_addresses = Table(
    'borrower_addresses',
    metadata,
    _id_column(),
    Column('borrower_id', Uuid(as_uuid=False), ForeignKey('borrowers.id', ondelete='CASCADE'), nullable=False),
    Column('address_type', String(20), nullable=False),
    Column('address_index', Integer, nullable=False),
    *_address_columns(),
    Column('country_code', Integer),
    Index('ix_borrower_addresses_borrower', 'borrower_id'),
)

borrower_employment = Table(
    'borrower_employment',
    metadata,
    _id_column(),
    Column('borrower_id', Uuid(as_uuid=False), ForeignKey('borrowers.id', ondelete='CASCADE'), nullable=False),
    Column('employer_name', String(255)),
    Column('gross_revenue', Amount),
    Column('is_current', Boolean, nullable=False),
    Column('income_type_code', Integer),
    Column('income_period_code', Integer),
    *_address_columns('emp_'),
    Column('emp_country_code', Integer),
    Index('ix_borrower_employment_borrower', 'borrower_id'),
)

borrower_liabilities = Table(
    'borrower_liabilities',
    metadata,
    _id_column(),
    Column('borrower_id', Uuid(as_uuid=False), ForeignKey('borrowers.id', ondelete='CASCADE'), nullable=False),
    Column('liability_index', Integer, nullable=False),
    Column('type_code', Integer),
    Column('lender', String(255)),
    Column('in_credit_bureau', Boolean),
    Column('credit_limit', Amount),
    Column('balance', Amount),
    Column('payment', Amount),
    Column('override', Boolean),
    Column('closing_date', Date),
    Column('description', Text),
    Column('payoff_type_id', Integer),
    Index('ix_borrower_liabilities_borrower', 'borrower_id'),
)

borrower_assets = Table(
    'borrower_assets',
    metadata,
    _id_column(),
    Column('borrower_id', Uuid(as_uuid=False), ForeignKey('borrowers.id', ondelete='CASCADE'), nullable=False),
    Column('asset_index', Integer, nullable=False),
    Column('asset_type', String(100)),
    Column('description', Text),
    Column('down_payment', Amount),
    Column('value', Amount),
    Index('ix_borrower_assets_borrower', 'borrower_id'),
)

borrower_properties = Table(
    'borrower_properties',
    metadata,
    _id_column(),
    Column('borrower_id', Uuid(as_uuid=False), ForeignKey('borrowers.id', ondelete='CASCADE'), nullable=False),
    Column('property_index', Integer, nullable=False),
    Column('occupancy_id', Integer),
    Column('property_value', Amount),
    Column('original_date', Date),
    Column('original_amount', Amount),
    Column('include_in_tds', Boolean, nullable=False),
    Column('condo_fees_100_percent', Amount),
    Column('annual_taxes', Amount),
    Column('condo_fees', Amount),
    Column('condo_fees_include_heating', Boolean, nullable=False),
    Column('heating', Amount),
    Column('property_equity', Amount),
    Column('future_status_id', Integer),
    *_address_columns(),
    Column('country_code', Integer),
    Column('totals_value', Amount),
    Column('totals_mortgages', Amount),
    Column('totals_payments', Amount),
    Column('totals_expenses', Amount),
    Column('totals_rental_income', Amount),
    Column('totals_rental_expenses', Amount),
    Index('ix_borrower_properties_borrower', 'borrower_id'),
)

subject_properties = Table(
    'subject_properties',
    metadata,
    _id_column(),
    Column('deal_id', Uuid(as_uuid=False), ForeignKey('deals.id', ondelete='CASCADE'), nullable=False, unique=True),
    *_address_columns(),
    Column('intended_use_code', Integer),
    Column('purchase_price', Amount),
    Column('tenure', String(100)),
    Column('construction_type', String(100)),
    Column('property_type', String(100)),
)

mortgage_requests = Table(
    'mortgage_requests',
    metadata,
    _id_column(),
    Column('deal_id', Uuid(as_uuid=False), ForeignKey('deals.id', ondelete='CASCADE'), nullable=False, unique=True),
    Column('application_type_code', Integer),
    Column('purpose_code', Integer),
    Column('lender_name', String(255)),
    Column('payment', Amount),
    Column('maturity_date', Date),
    # Approval timestamp; null means not approved
    Column('approved', DateTime(timezone=True)),
    Column('interest_adjustment_date', Date),
    Column('first_payment_date', Date),
    Column('amortization', Integer),
    Column('amortization_months', Integer),
    Column('term_in_months', Integer),
    Column('net_rate', Amount),
    Column('rate_type_code', Integer),
    Column('payment_frequency_code', Integer),
    Column('rate', Amount),
    Column('discount_rate', Amount),
    Column('premium_rate', Amount),
    Column('buy_down_rate', Amount),
)

mortgages = Table(
    'mortgages',
    metadata,
    _id_column(),
    Column(
        'mortgage_request_id',
        Uuid(as_uuid=False),
        ForeignKey('mortgage_requests.id', ondelete='CASCADE'),
        nullable=False,
    ),
    Column('mortgage_index', Integer, nullable=False),
    Column('amount', Amount),
    UniqueConstraint('mortgage_request_id', 'mortgage_index', name='uq_mortgages_request_index'),
)

conditions = Table(
    'conditions',
    metadata,
    _id_column(),
    Column('deal_id', Uuid(as_uuid=False), ForeignKey('deals.id', ondelete='CASCADE'), nullable=False),
    Column('condition_type', String(10), nullable=False),
    Column('condition_index', Integer, nullable=False),
    Column('name', Text),
    Column('is_sent', Boolean, nullable=False),
    Column('is_approved', Boolean, nullable=False),
    UniqueConstraint('deal_id', 'condition_type', 'condition_index', name='uq_conditions_deal_type_index'),
)

notes = Table(
    'notes',
    metadata,
    _id_column(),
    Column('deal_id', Uuid(as_uuid=False), ForeignKey('deals.id', ondelete='CASCADE'), nullable=False),
    Column('note_index', Integer, nullable=False),
    Column('text', Text),
    Column('date_created', DateTime(timezone=True)),
    UniqueConstraint('deal_id', 'note_index', name='uq_notes_deal_index'),
)

sync_failures = Table(
    'sync_failures',
    metadata,
    _id_column(),
    Column('failure_key', String(64), nullable=False),
    Column('partition_id', String(64)),
    Column('error_message', Text, nullable=False),
    Column('failed_at', DateTime(timezone=True), nullable=False),
    Column('retried_at', DateTime(timezone=True)),
    Column('resolved', Boolean, nullable=False, server_default=false()),
    Index(
        'uq_sync_failures_open_key',
        'failure_key',
        unique=True,
        postgresql_where=text('NOT resolved'),
        sqlite_where=text('resolved = 0'),
    ),
    Index('ix_sync_failures_unresolved', 'resolved', 'failed_at'),
)
