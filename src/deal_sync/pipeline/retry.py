"""
Targeted re-drive of deals: ledger retries and operator resyncs.

Both paths use a point lookup of the deal's current source representation
(never a window fetch) and then the same decode/transform/reconcile path
as a batch run. Nothing here raises; per-key results land in RetryResult.
"""

from collections.abc import Iterable

import structlog

from ..clients.source_client import SourceClient
from ..config import SyncConfig
from ..errors import DealSyncError, PartitionError
from ..ledger import FailureLedger
from ..models.sync import Partition, RetryResult
from ..ratelimit import IntervalRateLimiter
from ..repository import PartitionRepository
from .processor import DealProcessor

logger = structlog.get_logger(__name__)


class FailureRetrier:
    """Re-runs unresolved ledger entries and explicit loan codes."""

    def __init__(
        self,
        source: SourceClient,
        processor: DealProcessor,
        ledger: FailureLedger,
        repository: PartitionRepository,
        config: SyncConfig,
        limiter: IntervalRateLimiter | None = None,
    ):
        self.source = source
        self.processor = processor
        self.ledger = ledger
        self.repository = repository
        self.config = config
        self.limiter = limiter or IntervalRateLimiter(config.PAGE_DELAY_SECONDS)

    async def retry_unresolved(
        self,
        partition_id: str | None = None,
        limit: int | None = None,
    ) -> RetryResult:
        """
        Retry the oldest unresolved failures.

        Args:
            partition_id: Only retry failures recorded for this partition
            limit: Max entries to retry (defaults to config.RETRY_LIMIT)
        """
        result = RetryResult()
        try:
            records = await self.ledger.list_unresolved(
                partition_id=partition_id,
                limit=limit or self.config.RETRY_LIMIT,
            )
        except DealSyncError as exc:
            logger.error('retry.list_unresolved_failed', error=exc.message)
            result.details.append({'key': None, 'success': False, 'error': exc.message})
            return result

        logger.info('retry.started', pending=len(records), partition_id=partition_id)

        partitions: dict[str, Partition | None] = {}
        for record in records:
            pid = record.partition_id
            if pid not in partitions:
                partitions[pid] = await self._load_partition(pid)
            await self._redrive(result, partitions[pid], record.key, record.partition_id)

        logger.info(
            'retry.complete',
            attempted=result.attempted,
            retried=result.retried,
            still_failing=result.still_failing,
        )
        return result

    async def resync_loan_codes(self, partition_id: str, loan_codes: Iterable[str]) -> RetryResult:
        """
        Point-sync explicit loan codes for one partition.

        Success resolves any open ledger entries for those codes.
        """
        result = RetryResult()
        partition = await self._load_partition(partition_id)
        for loan_code in dict.fromkeys(code.strip() for code in loan_codes if code.strip()):
            await self._redrive(result, partition, loan_code, partition_id)
        logger.info(
            'retry.resync_complete',
            partition_id=partition_id,
            attempted=result.attempted,
            retried=result.retried,
            still_failing=result.still_failing,
        )
        return result

    async def _load_partition(self, partition_id: str | None) -> Partition | None:
        if partition_id is None:
            return None
        try:
            return await self.repository.get_partition(partition_id)
        except DealSyncError as exc:
            logger.error('retry.partition_lookup_failed', partition_id=partition_id, error=exc.message)
            return None

    async def _redrive(
        self,
        result: RetryResult,
        partition: Partition | None,
        loan_code: str,
        partition_id: str | None,
    ) -> None:
        result.attempted += 1
        log = logger.bind(loan_code=loan_code, partition_id=partition_id)

        try:
            if partition is None:
                raise PartitionError(
                    f'Partition {partition_id} not found',
                    context={'partition_id': partition_id},
                )
            await self.limiter.acquire()
            payload = await self.source.fetch_deal(partition.api_key, loan_code, base_url=partition.base_url)
        except DealSyncError as exc:
            log.warning('retry.lookup_failed', error=exc.message, error_type=type(exc).__name__)
            result.still_failing += 1
            result.details.append({'key': loan_code, 'success': False, 'error': exc.message})
            try:
                await self.ledger.record(loan_code, partition_id, exc, retried=True)
            except DealSyncError as ledger_exc:
                log.error('retry.ledger_write_failed', error=ledger_exc.message)
            return

        outcome = await self.processor.process(partition.id, payload, retried=True)
        if outcome.success:
            result.retried += 1
            result.details.append({'key': loan_code, 'success': True, 'deal_id': outcome.deal_id})
            log.info('retry.deal_resolved', deal_id=outcome.deal_id)
        else:
            result.still_failing += 1
            result.details.append({'key': loan_code, 'success': False, 'error': outcome.error})
