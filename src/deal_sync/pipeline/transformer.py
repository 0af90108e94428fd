"""
Record transformer: one decoded source deal -> NormalizedRowSet.

Pure function, no I/O. Ordering indices follow source order. Every child
collection is emitted even when empty so the reconciler can prune rows the
source no longer has. Parent id columns (deal_id, borrower_id,
mortgage_request_id) are left for the reconciler to fill in once the parent
rows exist.

Either the whole deal transforms or TransformError is raised; callers never
see a partial row set.
"""

from typing import Any

import structlog

from ..errors import DealSyncError, TransformError
from ..models.rows import ChildCollection, NormalizedRowSet, Row, RowGroup
from ..models.source import (
    RawAddress,
    RawBorrower,
    RawCondition,
    RawDeal,
    RawEmployment,
    RawMortgageRequest,
    RawNote,
    RawProperty,
    RawSubjectProperty,
    decode_deal,
)
from .sanitizers import clean_text

logger = structlog.get_logger(__name__)

CONDITION_TYPE_BROKER = 'broker'
CONDITION_TYPE_LENDER = 'lender'


def _address_fields(addr: RawAddress | None, prefix: str = '') -> Row:
    if addr is None:
        addr = RawAddress()
    return {
        f'{prefix}unit_number': addr.unit_number,
        f'{prefix}street_number': addr.street_number,
        f'{prefix}street_name': addr.street_name,
        f'{prefix}street_type_code': addr.street_type,
        f'{prefix}street_direction_code': addr.street_direction,
        f'{prefix}city': addr.city,
        f'{prefix}province_code': addr.province_code,
        f'{prefix}postal_code': addr.postal_code,
        f'{prefix}country_code': addr.country,
    }


# =============================================================================
# Deal + borrowers
# =============================================================================


def _deal_row(deal: RawDeal, partition_id: str | None) -> Row:
    return {
        'loan_code': deal.loan_code,
        'partition_id': partition_id,
        'agent': clean_text(deal.agent),
        'status_code': deal.status,
        'date_created': deal.date_created,
        'closing_date': deal.closing_date,
        'link_application_id': deal.link_application_id,
        'lender_reference_number': deal.lender_reference_number,
        'is_confirmed_compliant': deal.is_confirmed_compliant,
        'custom_source': deal.custom_source,
    }


def _borrower_row(index: int, b: RawBorrower) -> Row:
    return {
        'borrower_index': index,
        'first_name': clean_text(b.first_name),
        'last_name': clean_text(b.last_name),
        'date_of_birth': b.date_of_birth,
        'home_phone': b.home_phone,
        'cell_phone': b.cell_phone,
        'business_phone': b.business_phone,
        'email': clean_text(b.email),
        'credit_score': b.credit_score,
        'first_time_home_buyer': b.first_time_home_buyer,
    }


def _address_rows(b: RawBorrower) -> list[Row]:
    rows = [
        {'address_type': 'current', 'address_index': i, **_address_fields(addr)}
        for i, addr in enumerate(b.addresses)
    ]
    if b.mailing_address is not None:
        rows.append({'address_type': 'mailing', 'address_index': 0, **_address_fields(b.mailing_address)})
    return rows


def _employment_rows(emp: RawEmployment | None) -> list[Row]:
    if emp is None:
        return []
    return [{
        'employer_name': emp.employer_name,
        'gross_revenue': emp.gross_revenue,
        'is_current': True if emp.is_current is None else emp.is_current,
        'income_type_code': emp.income_type,
        'income_period_code': emp.income_period,
        **_address_fields(emp.employment_address, prefix='emp_'),
    }]


def _liability_rows(b: RawBorrower) -> list[Row]:
    return [
        {
            'liability_index': i,
            'type_code': liab.type_id,
            'lender': liab.lender,
            'in_credit_bureau': liab.in_credit_bureau,
            'credit_limit': liab.limit,
            'balance': liab.balance,
            'payment': liab.payment,
            'override': liab.override,
            'closing_date': liab.closing_date,
            'description': liab.description,
            'payoff_type_id': liab.payoff_type_id,
        }
        for i, liab in enumerate(b.liabilities)
    ]


def _asset_rows(b: RawBorrower) -> list[Row]:
    return [
        {
            'asset_index': i,
            'asset_type': a.type,
            'description': a.description,
            'down_payment': a.down_payment,
            'value': a.value,
        }
        for i, a in enumerate(b.assets)
    ]


def _property_row(index: int, p: RawProperty) -> Row:
    totals = p.totals
    return {
        'property_index': index,
        'occupancy_id': p.occupancy_id,
        'property_value': p.value,
        'original_date': p.original_date,
        'original_amount': p.original_amount,
        'include_in_tds': bool(p.include_in_tds),
        'condo_fees_100_percent': p.condo_fees100_percent,
        'annual_taxes': p.annual_taxes,
        'condo_fees': p.condo_fees,
        'condo_fees_include_heating': bool(p.condo_fees_include_heating),
        'heating': p.heating,
        'property_equity': p.property_equity,
        'future_status_id': p.future_status_id,
        **_address_fields(p.address),
        'totals_value': totals.value if totals else None,
        'totals_mortgages': totals.mortgages if totals else None,
        'totals_payments': totals.payments if totals else None,
        'totals_expenses': totals.expenses if totals else None,
        'totals_rental_income': totals.rental_income if totals else None,
        'totals_rental_expenses': totals.rental_expenses if totals else None,
    }


# =============================================================================
# Deal-level children
# =============================================================================


def _subject_property_row(sp: RawSubjectProperty) -> Row:
    return {
        'unit_number': sp.unit_number,
        'street_number': sp.street_number,
        'street_name': sp.street_name,
        'street_type_code': sp.street_type,
        'street_direction_code': sp.street_direction,
        'city': sp.city,
        'province_code': sp.province,
        'postal_code': sp.postal_code,
        'intended_use_code': sp.intended_use,
        'purchase_price': sp.purchase_price,
        'tenure': sp.tenure,
        'construction_type': sp.construction_type,
        'property_type': sp.property_type,
    }


def _mortgage_request_row(mr: RawMortgageRequest) -> Row:
    return {
        'application_type_code': mr.application_type,
        'purpose_code': mr.purpose,
        'lender_name': mr.lender_name,
        'payment': mr.payment,
        'maturity_date': mr.maturity_date,
        # Only a real approval timestamp; absence means not approved
        'approved': mr.approved,
        'interest_adjustment_date': mr.interest_adjustment_date,
        'first_payment_date': mr.first_payment_date,
        'amortization': mr.amortization,
        'amortization_months': mr.amortization_months,
        'term_in_months': mr.term_in_months,
        'net_rate': mr.net_rate,
        'rate_type_code': mr.rate_type,
        'payment_frequency_code': mr.payment_frequency,
        'rate': mr.rate,
        'discount_rate': mr.discount_rate,
        'premium_rate': mr.premium_rate,
        'buy_down_rate': mr.buy_down_rate,
    }


def _condition_rows(conditions: list[RawCondition], condition_type: str) -> list[Row]:
    # Placeholder entries (null name) are dropped before indexing
    kept = [c for c in conditions if c.name is not None]
    return [
        {
            'condition_type': condition_type,
            'condition_index': i,
            'name': c.name,
            'is_sent': bool(c.is_sent),
            'is_approved': bool(c.is_approved),
        }
        for i, c in enumerate(kept)
    ]


def _note_rows(notes: list[RawNote]) -> list[Row]:
    kept = [n for n in notes if n.text is not None]
    return [
        {'note_index': i, 'text': n.text, 'date_created': n.date_created}
        for i, n in enumerate(kept)
    ]


# =============================================================================
# Entry points
# =============================================================================


def transform_deal(deal: RawDeal, partition_id: str | None = None) -> NormalizedRowSet:
    """
    Flatten one decoded deal into row groups.

    Args:
        deal: Decoded source document
        partition_id: Owning partition, stored on the deal row

    Returns:
        NormalizedRowSet with one group per (collection, parent)

    Raises:
        TransformError: If any part of the deal cannot be flattened
    """
    try:
        groups: list[RowGroup] = [
            RowGroup(
                ChildCollection.BORROWERS,
                [_borrower_row(i, b) for i, b in enumerate(deal.borrowers)],
            ),
        ]

        for i, b in enumerate(deal.borrowers):
            groups.extend([
                RowGroup(ChildCollection.ADDRESSES, _address_rows(b), parent_index=i),
                RowGroup(ChildCollection.EMPLOYMENT, _employment_rows(b.employment_history), parent_index=i),
                RowGroup(ChildCollection.LIABILITIES, _liability_rows(b), parent_index=i),
                RowGroup(ChildCollection.ASSETS, _asset_rows(b), parent_index=i),
                RowGroup(
                    ChildCollection.PROPERTIES,
                    [_property_row(j, p) for j, p in enumerate(b.properties)],
                    parent_index=i,
                ),
            ])

        if deal.subject_property is not None:
            groups.append(
                RowGroup(ChildCollection.SUBJECT_PROPERTY, [_subject_property_row(deal.subject_property)])
            )

        # Mortgages hang off the request; without a request they are left alone
        if deal.mortgage_request is not None:
            mr = deal.mortgage_request
            groups.append(RowGroup(ChildCollection.MORTGAGE_REQUEST, [_mortgage_request_row(mr)]))
            groups.append(
                RowGroup(
                    ChildCollection.MORTGAGES,
                    [{'mortgage_index': i, 'amount': m.amount} for i, m in enumerate(mr.mortgages)],
                )
            )

        groups.append(
            RowGroup(
                ChildCollection.CONDITIONS,
                _condition_rows(deal.conditions, CONDITION_TYPE_BROKER),
                scope={'condition_type': CONDITION_TYPE_BROKER},
            )
        )
        groups.append(
            RowGroup(
                ChildCollection.CONDITIONS,
                _condition_rows(deal.lender_conditions, CONDITION_TYPE_LENDER),
                scope={'condition_type': CONDITION_TYPE_LENDER},
            )
        )
        groups.append(RowGroup(ChildCollection.NOTES, _note_rows(deal.notes)))

        return NormalizedRowSet(
            loan_code=deal.loan_code,
            deal=_deal_row(deal, partition_id),
            groups=groups,
        )
    except DealSyncError:
        raise
    except Exception as exc:
        logger.error('transformer.deal_failed', loan_code=deal.loan_code, error=str(exc))
        raise TransformError(
            f'Failed to transform deal {deal.loan_code}: {exc}',
            context={'loan_code': deal.loan_code, 'error_type': type(exc).__name__},
        ) from exc


def transform_document(payload: Any, partition_id: str | None = None) -> NormalizedRowSet:
    """
    Decode and transform one raw source document.

    Raises:
        DecodeError: Document is structurally invalid (quarantined, nothing written)
        TransformError: Decoded document could not be flattened
    """
    return transform_deal(decode_deal(payload), partition_id)
