"""
Tests for ledger retries and operator resyncs (point lookups via MockTransport).
"""

import httpx
import pytest
from sqlalchemy import select

from deal_sync import schema
from deal_sync.clients.source_client import SourceClient
from deal_sync.ledger import FailureLedger
from deal_sync.pipeline.processor import DealProcessor
from deal_sync.pipeline.reconciler import DealReconciler
from deal_sync.pipeline.retry import FailureRetrier
from deal_sync.ratelimit import NoopRateLimiter
from deal_sync.repository import PartitionRepository

from conftest import make_deal


def _retrier(postgres, config, documents: dict[str, object], lookups: list[str] | None = None):
    """Retrier whose source serves `documents` by loan code (404 when missing)."""

    def handler(request: httpx.Request) -> httpx.Response:
        code = request.url.params['loancode']
        if lookups is not None:
            lookups.append(code)
        if code not in documents:
            return httpx.Response(404, text='no such deal')
        return httpx.Response(200, json=documents[code])

    ledger = FailureLedger(postgres)
    retrier = FailureRetrier(
        SourceClient(config, transport=httpx.MockTransport(handler)),
        DealProcessor(DealReconciler(postgres), ledger),
        ledger,
        PartitionRepository(postgres),
        config,
        limiter=NoopRateLimiter(),
    )
    return retrier, ledger


class TestRetryUnresolved:
    @pytest.mark.asyncio
    async def test_success_resolves_entry(self, postgres, config, partition):
        retrier, ledger = _retrier(postgres, config, {'LOAN-001': make_deal()})
        await ledger.record('LOAN-001', partition.id, 'constraint violation')

        result = await retrier.retry_unresolved()

        assert (result.attempted, result.retried, result.still_failing) == (1, 1, 0)
        assert result.details[0]['success'] is True
        assert await ledger.list_unresolved() == []
        async with postgres.engine.connect() as conn:
            codes = (await conn.execute(select(schema.deals.c.loan_code))).scalars().all()
        assert codes == ['LOAN-001']

    @pytest.mark.asyncio
    async def test_still_failing_updates_error(self, postgres, config, partition):
        retrier, ledger = _retrier(postgres, config, {'LOAN-BAD': {'loanCode': 'LOAN-BAD', 'borrowers': 'x'}})
        await ledger.record('LOAN-BAD', partition.id, 'old error')

        result = await retrier.retry_unresolved()

        assert (result.attempted, result.retried, result.still_failing) == (1, 0, 1)
        record = (await ledger.list_unresolved())[0]
        assert record.error_message != 'old error'
        assert 'decoding' in record.error_message
        assert record.retried_at is not None

    @pytest.mark.asyncio
    async def test_lookup_404_keeps_entry_open(self, postgres, config, partition):
        retrier, ledger = _retrier(postgres, config, {})
        await ledger.record('LOAN-GONE', partition.id, 'old error')

        result = await retrier.retry_unresolved()

        assert result.still_failing == 1
        assert result.details[0]['key'] == 'LOAN-GONE'
        record = (await ledger.list_unresolved())[0]
        assert 'no such deal' in record.error_message
        assert record.retried_at is not None

    @pytest.mark.asyncio
    async def test_unknown_partition(self, postgres, config):
        lookups: list[str] = []
        retrier, ledger = _retrier(postgres, config, {'LOAN-001': make_deal()}, lookups)
        await ledger.record('LOAN-001', 'missing_partition', 'boom')

        result = await retrier.retry_unresolved()

        assert result.still_failing == 1
        assert 'not found' in result.details[0]['error']
        assert lookups == []

    @pytest.mark.asyncio
    async def test_limit_and_partition_filter(self, postgres, config, partition):
        lookups: list[str] = []
        retrier, ledger = _retrier(postgres, config, {}, lookups)
        for code in ('A', 'B', 'C'):
            await ledger.record(code, partition.id, 'boom')
        await ledger.record('Z', 'other', 'boom')

        result = await retrier.retry_unresolved(partition_id=partition.id, limit=2)

        assert result.attempted == 2
        assert 'Z' not in lookups
        assert len(lookups) == 2

    @pytest.mark.asyncio
    async def test_nothing_to_retry(self, postgres, config):
        retrier, _ = _retrier(postgres, config, {})
        result = await retrier.retry_unresolved()
        assert result.to_dict() == {'attempted': 0, 'retried': 0, 'still_failing': 0, 'details': []}


class TestResync:
    @pytest.mark.asyncio
    async def test_resync_explicit_codes(self, postgres, config, partition):
        lookups: list[str] = []
        retrier, ledger = _retrier(
            postgres,
            config,
            {'LOAN-001': make_deal(), 'LOAN-002': make_deal('LOAN-002')},
            lookups,
        )
        await ledger.record('LOAN-002', partition.id, 'stale')

        result = await retrier.resync_loan_codes(partition.id, ['LOAN-001', ' LOAN-002 ', 'LOAN-001', ''])

        assert lookups == ['LOAN-001', 'LOAN-002']
        assert (result.attempted, result.retried, result.still_failing) == (2, 2, 0)
        assert await ledger.list_unresolved() == []

    @pytest.mark.asyncio
    async def test_resync_missing_code_recorded(self, postgres, config, partition):
        retrier, ledger = _retrier(postgres, config, {})

        result = await retrier.resync_loan_codes(partition.id, ['LOAN-404'])

        assert result.still_failing == 1
        assert [r.key for r in await ledger.list_unresolved()] == ['LOAN-404']
