"""
Strict decoder for source deal documents (RawDeal).

Scalar fields are sanitized on the way in: each annotated type below runs a
total sanitizer from pipeline.sanitizers before pydantic sees the value, so
odd literals degrade to None instead of failing validation.

Structural problems are different. A document without a loan code, with a
list field that is not a list, or with an object field that is not an
object fails decoding as a whole and is quarantined by the caller; nothing
from it is written.
"""

from datetime import date, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from ..errors import DecodeError
from ..pipeline.sanitizers import (
    as_flag,
    as_text,
    parse_approval,
    parse_date_only,
    parse_integer,
    parse_numeric,
    parse_timestamp,
)

Numeric = Annotated[float | int | None, BeforeValidator(parse_numeric)]
Code = Annotated[int | None, BeforeValidator(parse_integer)]
Timestamp = Annotated[datetime | None, BeforeValidator(parse_timestamp)]
DateOnly = Annotated[date | None, BeforeValidator(parse_date_only)]
Approval = Annotated[datetime | None, BeforeValidator(parse_approval)]
Text = Annotated[str | None, BeforeValidator(as_text)]
Flag = Annotated[bool | None, BeforeValidator(as_flag)]


def _none_to_empty(value: Any) -> Any:
    return [] if value is None else value


class SourceModel(BaseModel):
    """Base for source documents: camelCase on the wire, unknown keys ignored."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra='ignore',
        frozen=True,
    )


class RawAddress(SourceModel):
    unit_number: Text = None
    street_number: Text = None
    street_name: Text = None
    street_type: Code = None
    street_direction: Code = None
    city: Text = None
    province_or_state: Code = None
    province: Code = None
    postal_code: Text = None
    country: Code = None

    @property
    def province_code(self) -> int | None:
        """provinceOrState wins; older documents only carry province."""
        if self.province_or_state is not None:
            return self.province_or_state
        return self.province


class RawEmployment(SourceModel):
    gross_revenue: Numeric = None
    is_current: Flag = None
    employer_name: Text = None
    income_type: Code = None
    income_period: Code = None
    employment_address: RawAddress | None = None


class RawLiability(SourceModel):
    type_id: Code = None
    lender: Text = None
    in_credit_bureau: Flag = None
    limit: Numeric = None
    balance: Numeric = None
    payment: Numeric = None
    override: Flag = None
    closing_date: DateOnly = None
    description: Text = None
    payoff_type_id: Code = None


class RawAsset(SourceModel):
    type: Text = None
    description: Text = None
    down_payment: Numeric = None
    value: Numeric = None


class RawPropertyTotals(SourceModel):
    value: Numeric = None
    mortgages: Numeric = None
    payments: Numeric = None
    expenses: Numeric = None
    rental_income: Numeric = None
    rental_expenses: Numeric = None


class RawProperty(SourceModel):
    occupancy_id: Code = None
    value: Numeric = None
    original_date: DateOnly = None
    original_amount: Numeric = None
    include_in_tds: Flag = None
    condo_fees100_percent: Numeric = Field(default=None, alias='condoFees100Percent')
    annual_taxes: Numeric = None
    condo_fees: Numeric = None
    condo_fees_include_heating: Flag = None
    heating: Numeric = None
    property_equity: Numeric = None
    future_status_id: Code = None
    address: RawAddress | None = None
    totals: RawPropertyTotals | None = None


class RawBorrower(SourceModel):
    first_name: Text = None
    last_name: Text = None
    date_of_birth: DateOnly = None
    home_phone: Text = None
    cell_phone: Text = None
    business_phone: Text = None
    email: Text = None
    addresses: Annotated[list[RawAddress], BeforeValidator(_none_to_empty)] = []
    mailing_address: RawAddress | None = None
    employment_history: RawEmployment | None = None
    liabilities: Annotated[list[RawLiability], BeforeValidator(_none_to_empty)] = []
    first_time_home_buyer: Flag = None
    credit_score: Code = None
    assets: Annotated[list[RawAsset], BeforeValidator(_none_to_empty)] = []
    properties: Annotated[list[RawProperty], BeforeValidator(_none_to_empty)] = []


class RawSubjectProperty(SourceModel):
    unit_number: Text = None
    street_number: Text = None
    street_name: Text = None
    street_type: Code = None
    street_direction: Code = None
    city: Text = None
    province: Code = None
    postal_code: Text = None
    intended_use: Code = None
    purchase_price: Numeric = None
    tenure: Text = None
    construction_type: Text = None
    property_type: Text = None


class RawMortgage(SourceModel):
    amount: Numeric = None


class RawMortgageRequest(SourceModel):
    application_type: Code = None
    purpose: Code = None
    lender_name: Text = None
    mortgages: Annotated[list[RawMortgage], BeforeValidator(_none_to_empty)] = []
    payment: Numeric = None
    maturity_date: DateOnly = None
    approved: Approval = None
    interest_adjustment_date: DateOnly = None
    first_payment_date: DateOnly = None
    amortization: Code = None
    term_in_months: Code = None
    net_rate: Numeric = None
    rate_type: Code = None
    payment_frequency: Code = None
    rate: Numeric = None
    discount_rate: Numeric = None
    premium_rate: Numeric = None
    buy_down_rate: Numeric = None
    amortization_months: Code = None


class RawCondition(SourceModel):
    name: Text = None
    is_sent: Flag = None
    is_approved: Flag = None


class RawNote(SourceModel):
    text: Text = None
    date_created: Timestamp = None


class RawDeal(SourceModel):
    """One deal document as returned by the source API."""

    loan_code: str = Field(min_length=1)
    agent: Text = None
    status: Code = None
    date_created: Timestamp = None
    closing_date: Timestamp = None
    link_application_id: Text = None
    lender_reference_number: Text = None
    is_confirmed_compliant: Flag = None
    custom_source: Text = None
    borrowers: Annotated[list[RawBorrower], BeforeValidator(_none_to_empty)] = []
    subject_property: RawSubjectProperty | None = None
    mortgage_request: RawMortgageRequest | None = None
    lender_conditions: Annotated[list[RawCondition], BeforeValidator(_none_to_empty)] = []
    conditions: Annotated[list[RawCondition], BeforeValidator(_none_to_empty)] = []
    notes: Annotated[list[RawNote], BeforeValidator(_none_to_empty)] = []


def extract_loan_code(payload: Any) -> str | None:
    """Best-effort loan code of an undecoded document, for logging and the ledger."""
    if isinstance(payload, dict):
        code = payload.get('loanCode')
        if isinstance(code, str) and code.strip():
            return code.strip()
    return None


def decode_deal(payload: Any) -> RawDeal:
    """
    Decode one source document.

    Raises:
        DecodeError: If the document is structurally invalid
    """
    try:
        return RawDeal.model_validate(payload)
    except ValidationError as exc:
        errors = exc.errors(include_url=False, include_input=False)
        first = errors[0] if errors else {}
        location = '.'.join(str(part) for part in first.get('loc', ()))
        raise DecodeError(
            f'Deal document failed decoding at {location or "<root>"}: {first.get("msg", exc)}',
            context={
                'loan_code': extract_loan_code(payload),
                'error_count': len(errors),
            },
        ) from exc
