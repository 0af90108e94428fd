"""
Partition scheduler: runs a batch of partitions through the pipeline.

For each partition, in stable name order:
1. Work out the effective fetch window (full history, or incremental from
   the last success minus a safety buffer, never later than the requested
   start).
2. Fetch every calendar-year sub-window.
3. Transform every fetched document.
4. Reconcile every transformed deal.
5. Record the terminal state on the partition row, moving the watermark
   only as far as the fetched windows cover without a gap.

Per-partition state: pending -> fetching -> transforming -> reconciling ->
completed | partially-failed | failed. A partition-level exception fails
that partition only; run_batch() always returns one outcome per scheduled
partition and never raises.
"""

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone

import structlog

from ..config import SyncConfig
from ..errors import DealSyncError
from ..logging import PipelineTimer, logging_context
from ..models.rows import NormalizedRowSet
from ..models.sync import (
    DealFailure,
    Partition,
    PartitionOutcome,
    PartitionStatus,
    SyncOutcome,
    WindowResult,
)
from ..ratelimit import IntervalRateLimiter
from ..repository import PartitionRepository
from ..utils import as_utc, utc_now, uuid7
from .fetcher import RangeFetcher
from .processor import DealProcessor

logger = structlog.get_logger(__name__)

BATCH_TIMEOUT_REASON = 'batch timeout'


@dataclass(frozen=True)
class BatchOptions:
    """Caller-supplied parameters for one batch run."""

    start: date | None = None
    end: date | None = None
    full_sync: bool = False
    dry_run: bool = False


def select_partitions(
    partitions: Sequence[Partition],
    resume_from: str | None = None,
    partition_filter: str | None = None,
    limit: int | None = None,
) -> list[Partition]:
    """
    Sort by name and apply filter, resume point and limit, in that order.

    `partition_filter` matches an exact id or a case-insensitive name
    substring ('all' or None keeps everything). `resume_from` names the
    first partition to run (by name or id); everything before it in sort
    order is skipped. An unknown resume point selects nothing.
    """
    ordered = sorted(partitions, key=lambda p: (p.name, p.id))

    if partition_filter and partition_filter.lower() != 'all':
        needle = partition_filter.lower()
        ordered = [p for p in ordered if p.id == partition_filter or needle in p.name.lower()]

    if resume_from:
        target = resume_from.lower()
        position = next(
            (i for i, p in enumerate(ordered) if p.name.lower() == target or p.id == resume_from),
            None,
        )
        if position is None:
            logger.warning('scheduler.resume_target_not_found', resume_from=resume_from)
            return []
        ordered = ordered[position:]

    if limit is not None:
        ordered = ordered[:max(limit, 0)]
    return ordered


def compute_window(
    partition: Partition,
    options: BatchOptions,
    config: SyncConfig,
    today: date,
) -> tuple[date, date]:
    """
    Effective [start, end] for one partition.

    - full sync: the requested start, or the historical epoch
    - prior success: last success minus the buffer
    - no prior success: the historical epoch
    The result never starts later than a requested start date.
    """
    end = min(options.end or today, today)

    if options.full_sync:
        return options.start or config.HISTORY_EPOCH, end

    if partition.last_success_at is not None:
        buffered = partition.last_success_at - timedelta(hours=config.INCREMENTAL_BUFFER_HOURS)
        start = buffered.date()
    else:
        start = config.HISTORY_EPOCH

    if options.start is not None:
        start = min(start, options.start)
    return start, end


def advance_watermark(
    partition: Partition,
    window_start: date,
    windows: Sequence[WindowResult],
    config: SyncConfig,
    started_at: datetime,
) -> datetime | None:
    """
    New incremental watermark after a fetch, or None to leave it unchanged.

    The fetched range only counts if it joins up with what earlier runs
    covered: it must begin on or before the current watermark (the history
    epoch when there is none). Coverage then runs through the leading
    successful windows and stops at the first failed one. Covering through
    the run date moves the watermark to the run start; stopping earlier
    moves it to midnight after the last covered day, so the next
    incremental run picks up from there. The watermark never moves back.
    """
    started_at = as_utc(started_at)
    previous = as_utc(partition.last_success_at) if partition.last_success_at else None
    reach = previous.date() if previous else config.HISTORY_EPOCH
    if window_start > reach:
        return None

    covered_until: date | None = None
    for window in sorted(windows, key=lambda w: w.start):
        if not window.ok:
            break
        covered_until = window.end
    if covered_until is None:
        return None

    if covered_until >= started_at.date():
        candidate = started_at
    else:
        candidate = datetime.combine(covered_until + timedelta(days=1), time.min, tzinfo=timezone.utc)

    if previous is not None and candidate <= previous:
        return None
    return candidate


class PartitionScheduler:
    """
    Drives batch runs across partitions.

    Sequential by default; PARTITION_CONCURRENCY > 1 runs partitions under a
    semaphore, DEAL_CONCURRENCY > 1 reconciles deals within a partition
    under a semaphore. Outcomes always come back in partition sort order.
    """

    def __init__(
        self,
        config: SyncConfig,
        fetcher: RangeFetcher,
        processor: DealProcessor,
        repository: PartitionRepository,
        partition_limiter: IntervalRateLimiter | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config
        self.fetcher = fetcher
        self.processor = processor
        self.repository = repository
        self.partition_limiter = partition_limiter or IntervalRateLimiter(config.PARTITION_DELAY_SECONDS)
        self._clock = clock

    async def run_batch(
        self,
        partitions: Sequence[Partition] | None = None,
        *,
        start: date | None = None,
        end: date | None = None,
        full_sync: bool = False,
        resume_from: str | None = None,
        partition_filter: str | None = None,
        limit: int | None = None,
        dry_run: bool = False,
        timeout_seconds: float | None = None,
    ) -> list[PartitionOutcome]:
        """
        Sync a batch of partitions.

        Args:
            partitions: Partitions to consider; None loads active ones from the registry
            start: Requested start date (an incremental start never moves past it)
            end: Requested end date (defaults to today)
            full_sync: Ignore the incremental watermark
            resume_from: Skip partitions sorted before this name / id
            partition_filter: Exact id, name substring, or 'all'
            limit: Run at most this many partitions after sort, filter and resume
            dry_run: Fetch and transform only; nothing written
            timeout_seconds: Wall-clock cap on the whole batch

        Returns:
            One PartitionOutcome per scheduled partition, in sort order
        """
        run_id = uuid7().hex
        options = BatchOptions(start=start, end=end, full_sync=full_sync, dry_run=dry_run)

        with logging_context(run_id=run_id):
            if partitions is None:
                try:
                    partitions = await self.repository.list_partitions()
                except DealSyncError as exc:
                    logger.error('scheduler.partition_list_failed', error=exc.message)
                    return []

            selected = select_partitions(partitions, resume_from, partition_filter, limit)
            outcomes = [
                PartitionOutcome(partition_id=p.id, partition_name=p.name, dry_run=dry_run)
                for p in selected
            ]
            logger.info(
                'scheduler.batch_started',
                partitions=len(selected),
                full_sync=full_sync,
                dry_run=dry_run,
                resume_from=resume_from,
            )

            work = self._run_all(selected, outcomes, options)
            try:
                if timeout_seconds is not None:
                    await asyncio.wait_for(work, timeout=timeout_seconds)
                else:
                    await work
            except asyncio.TimeoutError:
                logger.error('scheduler.batch_timeout', timeout_seconds=timeout_seconds)
                await self._fail_unfinished(outcomes)

            logger.info(
                'scheduler.batch_complete',
                partitions=len(outcomes),
                completed=sum(1 for o in outcomes if o.status is PartitionStatus.COMPLETED),
                partially_failed=sum(1 for o in outcomes if o.status is PartitionStatus.PARTIALLY_FAILED),
                failed=sum(1 for o in outcomes if o.status is PartitionStatus.FAILED),
                deals_synced=sum(o.deals_synced for o in outcomes),
                deals_failed=sum(o.deals_failed for o in outcomes),
            )
        return outcomes

    async def _run_all(
        self,
        partitions: list[Partition],
        outcomes: list[PartitionOutcome],
        options: BatchOptions,
    ) -> None:
        if self.config.PARTITION_CONCURRENCY <= 1:
            for partition, outcome in zip(partitions, outcomes):
                await self.partition_limiter.acquire()
                await self._run_partition(partition, outcome, options)
            return

        semaphore = asyncio.Semaphore(self.config.PARTITION_CONCURRENCY)

        async def run_one(partition: Partition, outcome: PartitionOutcome) -> None:
            async with semaphore:
                await self.partition_limiter.acquire()
                await self._run_partition(partition, outcome, options)

        await asyncio.gather(*(run_one(p, o) for p, o in zip(partitions, outcomes)))

    # =========================================================================
    # One partition
    # =========================================================================

    async def _run_partition(
        self,
        partition: Partition,
        outcome: PartitionOutcome,
        options: BatchOptions,
    ) -> None:
        """Run one partition to a terminal state. Never raises."""
        timer = PipelineTimer()
        outcome.started_at = self._clock()

        with logging_context(partition_id=partition.id):
            try:
                await self._sync_partition(partition, outcome, options, timer)
            except Exception as exc:
                outcome.status = PartitionStatus.FAILED
                outcome.reason = getattr(exc, 'message', None) or str(exc)
                outcome.watermark = None
                logger.exception('scheduler.partition_failed', error=outcome.reason)

            outcome.completed_at = self._clock()
            outcome.stage_timings = {k: round(v, 2) for k, v in timer.stages.items()}

            if not options.dry_run:
                await self._record(outcome)

            logger.info(
                'scheduler.partition_complete',
                partition_name=partition.name,
                status=outcome.status.value,
                deals_found=outcome.deals_found,
                deals_synced=outcome.deals_synced,
                deals_failed=outcome.deals_failed,
                windows_failed=outcome.windows_failed,
                timing=timer.summary(),
            )

    async def _sync_partition(
        self,
        partition: Partition,
        outcome: PartitionOutcome,
        options: BatchOptions,
        timer: PipelineTimer,
    ) -> None:
        # ------------------------------------------------------------------
        # Step 1: Effective window
        # ------------------------------------------------------------------
        start, end = compute_window(partition, options, self.config, self._clock().date())
        outcome.window_start, outcome.window_end = start, end

        # ------------------------------------------------------------------
        # Step 2: Fetch
        # ------------------------------------------------------------------
        outcome.status = PartitionStatus.FETCHING
        with timer.stage('fetch'):
            fetched = await self.fetcher.fetch_window(partition, start, end)

        outcome.deals_found = len(fetched.deals)
        outcome.windows_ok = fetched.windows_ok
        outcome.windows_failed = fetched.windows_failed
        if not options.dry_run:
            outcome.watermark = advance_watermark(
                partition, start, fetched.windows, self.config, outcome.started_at or self._clock()
            )

        if fetched.all_failed:
            outcome.status = PartitionStatus.FAILED
            outcome.reason = f'all {len(fetched.windows)} windows failed: {fetched.errors[0]}'
            return

        # ------------------------------------------------------------------
        # Step 3: Transform
        # ------------------------------------------------------------------
        outcome.status = PartitionStatus.TRANSFORMING
        row_sets: list[NormalizedRowSet] = []
        for payload in fetched.deals:
            prepared = await self.processor.transform(
                partition.id, payload, timer, record_failures=not options.dry_run
            )
            if isinstance(prepared, SyncOutcome):
                self._add_failure(outcome, prepared, 'transform')
            else:
                row_sets.append(prepared)

        # ------------------------------------------------------------------
        # Step 4: Reconcile
        # ------------------------------------------------------------------
        if not options.dry_run:
            outcome.status = PartitionStatus.RECONCILING
            for result in await self._reconcile_all(partition, row_sets, timer):
                if result.success:
                    outcome.deals_synced += 1
                else:
                    self._add_failure(outcome, result, 'reconcile')

        # ------------------------------------------------------------------
        # Step 5: Classify
        # ------------------------------------------------------------------
        if fetched.windows_failed:
            outcome.status = PartitionStatus.PARTIALLY_FAILED
            outcome.reason = f'{fetched.windows_failed} of {len(fetched.windows)} windows failed'
        else:
            outcome.status = PartitionStatus.COMPLETED

    async def _reconcile_all(
        self,
        partition: Partition,
        row_sets: list[NormalizedRowSet],
        timer: PipelineTimer,
    ) -> list[SyncOutcome]:
        if self.config.DEAL_CONCURRENCY <= 1:
            return [await self.processor.reconcile(partition.id, rs, timer) for rs in row_sets]

        semaphore = asyncio.Semaphore(self.config.DEAL_CONCURRENCY)

        async def reconcile_one(row_set: NormalizedRowSet) -> SyncOutcome:
            async with semaphore:
                return await self.processor.reconcile(partition.id, row_set, timer)

        return list(await asyncio.gather(*(reconcile_one(rs) for rs in row_sets)))

    @staticmethod
    def _add_failure(outcome: PartitionOutcome, result: SyncOutcome, stage: str) -> None:
        outcome.deals_failed += 1
        outcome.failures.append(
            DealFailure(loan_code=result.loan_code, error=result.error or 'unknown error', stage=stage)
        )

    async def _record(self, outcome: PartitionOutcome) -> None:
        try:
            await self.repository.record_outcome(outcome)
        except DealSyncError as exc:
            logger.error('scheduler.outcome_record_failed', partition_id=outcome.partition_id, error=exc.message)

    async def _fail_unfinished(self, outcomes: list[PartitionOutcome]) -> None:
        for outcome in outcomes:
            if outcome.status.is_terminal:
                continue
            outcome.status = PartitionStatus.FAILED
            outcome.reason = BATCH_TIMEOUT_REASON
            outcome.watermark = None
            outcome.completed_at = self._clock()
            if not outcome.dry_run:
                await self._record(outcome)
