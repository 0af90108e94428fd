"""
Tests for the record transformer (RawDeal -> NormalizedRowSet).
"""

from datetime import datetime, timezone

import pytest

from deal_sync.errors import DecodeError, TransformError
from deal_sync.models.rows import ChildCollection, ReconcileStrategy
from deal_sync.models.source import decode_deal
from deal_sync.pipeline import transformer
from deal_sync.pipeline.transformer import (
    CONDITION_TYPE_BROKER,
    CONDITION_TYPE_LENDER,
    transform_deal,
    transform_document,
)

from conftest import make_borrower, make_deal


def _rows(row_set, collection, parent_index=None):
    groups = [g for g in row_set.groups_for(collection) if g.parent_index == parent_index]
    assert len(groups) == 1
    return groups[0].rows


class TestDealAndBorrowers:
    def test_deal_row(self, sample_deal):
        row_set = transform_document(sample_deal, 'broker_1')

        assert row_set.loan_code == 'LOAN-001'
        assert row_set.deal['partition_id'] == 'broker_1'
        assert row_set.deal['agent'] == 'Jane Agent'
        assert row_set.deal['status_code'] == 3
        assert row_set.deal['date_created'] == datetime(2024, 2, 10, 14, 30, tzinfo=timezone.utc)

    def test_borrowers_indexed_in_source_order(self, sample_deal):
        row_set = transform_document(sample_deal)
        borrowers = _rows(row_set, ChildCollection.BORROWERS)
        assert [(b['borrower_index'], b['first_name']) for b in borrowers] == [(0, 'Ann'), (1, 'Bob')]

    def test_every_borrower_collection_emitted_even_when_empty(self, sample_deal):
        row_set = transform_document(sample_deal)
        for collection in (
            ChildCollection.ADDRESSES,
            ChildCollection.EMPLOYMENT,
            ChildCollection.LIABILITIES,
            ChildCollection.ASSETS,
            ChildCollection.PROPERTIES,
        ):
            assert {g.parent_index for g in row_set.groups_for(collection)} == {0, 1}

        assert len(_rows(row_set, ChildCollection.LIABILITIES, 0)) == 2
        assert _rows(row_set, ChildCollection.LIABILITIES, 1) == []
        assert _rows(row_set, ChildCollection.ASSETS, 1) == []

    def test_liability_fields(self, sample_deal):
        liabilities = _rows(transform_document(sample_deal), ChildCollection.LIABILITIES, 0)
        assert liabilities[1]['liability_index'] == 1
        assert liabilities[1]['lender'] == 'Bank 1'
        assert liabilities[1]['balance'] == 2000
        assert liabilities[1]['payment'] == 125.5

    def test_mailing_address_appended(self):
        payload = make_deal(
            borrowers=[make_borrower('Ann', mailingAddress={'city': 'Halifax', 'province': 3})]
        )
        addresses = _rows(transform_document(payload), ChildCollection.ADDRESSES, 0)
        assert [(a['address_type'], a['address_index']) for a in addresses] == [('current', 0), ('mailing', 0)]
        assert addresses[1]['province_code'] == 3
        assert addresses[0]['province_code'] == 9

    def test_employment_defaults_to_current(self):
        payload = make_deal(borrowers=[make_borrower('Ann', employmentHistory={'employerName': 'Acme'})])
        employment = _rows(transform_document(payload), ChildCollection.EMPLOYMENT, 0)
        assert employment[0]['is_current'] is True
        assert employment[0]['emp_city'] is None

    def test_no_employment_history(self):
        payload = make_deal(borrowers=[make_borrower('Ann', employmentHistory=None)])
        assert _rows(transform_document(payload), ChildCollection.EMPLOYMENT, 0) == []


class TestSanitizedValues:
    def test_true_literal_in_condo_fees_becomes_null(self):
        payload = make_deal(
            borrowers=[make_borrower('Ann', properties=[{'condoFees': 'true', 'value': '500000'}])]
        )
        prop = _rows(transform_document(payload), ChildCollection.PROPERTIES, 0)[0]
        assert prop['condo_fees'] is None
        assert prop['property_value'] == 500000

    def test_property_flags_default_false(self):
        payload = make_deal(borrowers=[make_borrower('Ann', properties=[{'value': 1}])])
        prop = _rows(transform_document(payload), ChildCollection.PROPERTIES, 0)[0]
        assert prop['include_in_tds'] is False
        assert prop['condo_fees_include_heating'] is False
        assert prop['totals_value'] is None

    def test_property_totals_flattened(self):
        payload = make_deal(
            borrowers=[make_borrower('Ann', properties=[{'totals': {'value': 10, 'rentalIncome': '2.5'}}])]
        )
        prop = _rows(transform_document(payload), ChildCollection.PROPERTIES, 0)[0]
        assert prop['totals_value'] == 10
        assert prop['totals_rental_income'] == 2.5


class TestMortgageRequest:
    def test_null_approval_stored_as_null(self, sample_deal):
        mr = _rows(transform_document(sample_deal), ChildCollection.MORTGAGE_REQUEST)[0]
        assert mr['approved'] is None

    def test_approval_timestamp_parsed(self, sample_deal):
        sample_deal['mortgageRequest']['approved'] = '2024-03-01T00:00:00Z'
        mr = _rows(transform_document(sample_deal), ChildCollection.MORTGAGE_REQUEST)[0]
        assert mr['approved'] == datetime(2024, 3, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize('value', ['', True, False])
    def test_non_timestamp_approval_is_null(self, sample_deal, value):
        sample_deal['mortgageRequest']['approved'] = value
        mr = _rows(transform_document(sample_deal), ChildCollection.MORTGAGE_REQUEST)[0]
        assert mr['approved'] is None

    def test_mortgages_indexed(self, sample_deal):
        mortgages = _rows(transform_document(sample_deal), ChildCollection.MORTGAGES)
        assert mortgages == [{'mortgage_index': 0, 'amount': 300000}, {'mortgage_index': 1, 'amount': 50000}]

    def test_absent_request_emits_no_mortgage_groups(self):
        row_set = transform_document(make_deal(mortgageRequest=None, subjectProperty=None))
        assert row_set.groups_for(ChildCollection.MORTGAGE_REQUEST) == []
        assert row_set.groups_for(ChildCollection.MORTGAGES) == []
        assert row_set.groups_for(ChildCollection.SUBJECT_PROPERTY) == []


class TestConditionsAndNotes:
    def test_condition_groups_scoped_by_type(self, sample_deal):
        groups = transform_document(sample_deal).groups_for(ChildCollection.CONDITIONS)
        assert [g.scope for g in groups] == [
            {'condition_type': CONDITION_TYPE_BROKER},
            {'condition_type': CONDITION_TYPE_LENDER},
        ]
        broker, lender = groups
        assert broker.rows[0]['is_sent'] is True
        assert broker.rows[0]['is_approved'] is False
        assert lender.rows[0]['is_approved'] is True

    def test_placeholder_conditions_dropped_before_indexing(self):
        payload = make_deal(conditions=[{'name': None}, {'name': 'ID'}, {}, {'name': 'Bank statement'}])
        broker = transform_document(payload).groups_for(ChildCollection.CONDITIONS)[0]
        assert [(c['condition_index'], c['name']) for c in broker.rows] == [(0, 'ID'), (1, 'Bank statement')]

    def test_empty_condition_and_note_groups_still_emitted(self):
        row_set = transform_document(make_deal(conditions=[], lenderConditions=None, notes=[]))
        assert [len(g) for g in row_set.groups_for(ChildCollection.CONDITIONS)] == [0, 0]
        assert [len(g) for g in row_set.groups_for(ChildCollection.NOTES)] == [0]

    def test_notes_without_text_dropped(self):
        payload = make_deal(notes=[{'text': None}, {'text': 'Called client', 'dateCreated': '2024-04-01'}])
        notes = _rows(transform_document(payload), ChildCollection.NOTES)
        assert notes == [
            {'note_index': 0, 'text': 'Called client', 'date_created': datetime(2024, 4, 1, tzinfo=timezone.utc)}
        ]


class TestRowSet:
    def test_ordered_groups_put_parents_first(self, sample_deal):
        ordered = transform_document(sample_deal).ordered_groups()
        collections = [g.collection for g in ordered]
        assert collections[0] is ChildCollection.BORROWERS
        assert collections.index(ChildCollection.MORTGAGE_REQUEST) < collections.index(ChildCollection.MORTGAGES)

    def test_declared_strategies(self, sample_deal):
        row_set = transform_document(sample_deal)
        strategies = {g.collection: g.spec.strategy for g in row_set.groups}
        assert strategies[ChildCollection.LIABILITIES] is ReconcileStrategy.REPLACE_ALL
        assert strategies[ChildCollection.BORROWERS] is ReconcileStrategy.UPSERT_BY_INDEX
        assert strategies[ChildCollection.MORTGAGE_REQUEST] is ReconcileStrategy.ONE_TO_ONE

    def test_row_count(self, sample_deal):
        row_set = transform_document(sample_deal)
        assert row_set.row_count(ChildCollection.BORROWERS) == 2
        assert row_set.row_count(ChildCollection.LIABILITIES) == 2
        assert row_set.row_count(ChildCollection.CONDITIONS) == 2


class TestFailures:
    def test_decode_error_propagates(self):
        with pytest.raises(DecodeError):
            transform_document({'borrowers': []})

    def test_unexpected_error_wrapped(self, sample_deal, monkeypatch):
        def boom(*args, **kwargs):
            raise KeyError('unexpected')

        monkeypatch.setattr(transformer, '_note_rows', boom)
        with pytest.raises(TransformError) as exc_info:
            transform_deal(decode_deal(sample_deal))
        assert exc_info.value.context['loan_code'] == 'LOAN-001'
