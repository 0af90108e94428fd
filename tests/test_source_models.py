"""
Tests for the strict RawDeal decoder.
"""

from datetime import date, datetime, timezone

import pytest

from deal_sync.errors import DecodeError
from deal_sync.models.source import RawAddress, decode_deal, extract_loan_code

from conftest import make_deal


class TestDecodeDeal:
    def test_decodes_sample(self, sample_deal):
        deal = decode_deal(sample_deal)

        assert deal.loan_code == 'LOAN-001'
        assert deal.status == 3
        assert deal.date_created == datetime(2024, 2, 10, 14, 30, tzinfo=timezone.utc)
        assert len(deal.borrowers) == 2
        assert len(deal.borrowers[0].liabilities) == 2
        assert deal.borrowers[0].date_of_birth == date(1985, 6, 15)
        assert deal.mortgage_request.rate == 5.25
        assert deal.mortgage_request.approved is None
        assert [c.name for c in deal.lender_conditions] == ['Appraisal']
        assert deal.lender_conditions[0].is_approved is True

    def test_unknown_keys_ignored(self):
        deal = decode_deal(make_deal(brandNewField={'x': 1}))
        assert deal.loan_code == 'LOAN-001'

    def test_null_lists_become_empty(self):
        deal = decode_deal(make_deal(borrowers=None, notes=None, conditions=None))
        assert deal.borrowers == []
        assert deal.notes == []
        assert deal.conditions == []

    def test_odd_scalars_degrade_to_none(self):
        payload = make_deal(status='true', dateCreated='garbage')
        deal = decode_deal(payload)
        assert deal.status is None
        assert deal.date_created is None

    def test_condo_fees_alias(self):
        payload = make_deal(
            borrowers=[{'firstName': 'Ann', 'properties': [{'condoFees100Percent': '120', 'condoFees': 'true'}]}]
        )
        prop = decode_deal(payload).borrowers[0].properties[0]
        assert prop.condo_fees100_percent == 120
        assert prop.condo_fees is None


class TestDecodeFailures:
    """Structural problems quarantine the whole document."""

    def test_missing_loan_code(self):
        payload = make_deal()
        del payload['loanCode']
        with pytest.raises(DecodeError) as exc_info:
            decode_deal(payload)
        assert 'loanCode' in exc_info.value.message or 'loan_code' in exc_info.value.message

    def test_empty_loan_code(self):
        with pytest.raises(DecodeError):
            decode_deal(make_deal(loan_code=''))

    def test_list_field_not_a_list(self):
        with pytest.raises(DecodeError) as exc_info:
            decode_deal(make_deal(borrowers={'firstName': 'Ann'}))
        assert exc_info.value.context['loan_code'] == 'LOAN-001'
        assert exc_info.value.context['error_count'] >= 1

    def test_object_field_not_an_object(self):
        with pytest.raises(DecodeError):
            decode_deal(make_deal(mortgageRequest='approved'))

    @pytest.mark.parametrize('payload', [None, [], 'LOAN-001', 42])
    def test_non_object_document(self, payload):
        with pytest.raises(DecodeError) as exc_info:
            decode_deal(payload)
        assert exc_info.value.context['loan_code'] is None


class TestHelpers:
    def test_extract_loan_code(self):
        assert extract_loan_code({'loanCode': ' L-9 '}) == 'L-9'
        assert extract_loan_code({'loanCode': ''}) is None
        assert extract_loan_code({'loanCode': 17}) is None
        assert extract_loan_code(['LOAN-001']) is None

    def test_province_or_state_wins(self):
        assert RawAddress(province_or_state=4, province=9).province_code == 4
        assert RawAddress(province=9).province_code == 9
        assert RawAddress().province_code is None
