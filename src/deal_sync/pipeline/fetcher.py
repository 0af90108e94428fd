"""
Range fetcher: all deal documents for one partition over an arbitrary range.

The source refuses windows longer than 12 months, so a range is split into
calendar-year sub-windows and each is paged to its reported totalPages.
A failed sub-window is logged and skipped (its partial pages are
discarded); the remaining sub-windows still run. Whether the partition
failed entirely or only partly is left to the caller via FetchResult.

No retries happen here.
"""

from datetime import date

import structlog

from ..clients.source_client import SourceClient
from ..config import SyncConfig
from ..models.sync import FetchResult, Partition, WindowResult
from ..ratelimit import IntervalRateLimiter

logger = structlog.get_logger(__name__)


def split_calendar_years(start: date, end: date) -> list[tuple[date, date]]:
    """
    Split [start, end] into calendar-year sub-windows.

    The first window starts at `start`, the last ends at `end`; the ones in
    between cover whole years. Returns [] when start > end.
    """
    if start > end:
        return []
    return [
        (max(start, date(year, 1, 1)), min(end, date(year, 12, 31)))
        for year in range(start.year, end.year + 1)
    ]


class RangeFetcher:
    """
    Fetches paginated, date-windowed deal documents for one partition.

    Pacing is injected: `page_limiter` gates every page request and
    `window_limiter` gates the start of each sub-window.
    """

    def __init__(
        self,
        source: SourceClient,
        config: SyncConfig,
        page_limiter: IntervalRateLimiter | None = None,
        window_limiter: IntervalRateLimiter | None = None,
    ):
        self.source = source
        self.config = config
        self.page_limiter = page_limiter or IntervalRateLimiter(config.PAGE_DELAY_SECONDS)
        self.window_limiter = window_limiter or IntervalRateLimiter(config.WINDOW_DELAY_SECONDS)

    async def fetch_window(self, partition: Partition, start: date, end: date) -> FetchResult:
        """
        Fetch every deal created in [start, end] for a partition.

        Never raises for remote failures; they land in FetchResult.windows.
        """
        result = FetchResult()
        log = logger.bind(partition_id=partition.id)

        for window_start, window_end in split_calendar_years(start, end):
            await self.window_limiter.acquire()
            window = WindowResult(start=window_start, end=window_end)
            try:
                deals, pages = await self._fetch_pages(partition, window_start, window_end)
            except Exception as exc:
                window.error = getattr(exc, 'message', None) or str(exc)
                log.warning(
                    'fetcher.window_failed',
                    window_start=window_start.isoformat(),
                    window_end=window_end.isoformat(),
                    error=window.error,
                    error_type=type(exc).__name__,
                )
            else:
                window.deals_found = len(deals)
                window.pages = pages
                result.deals.extend(deals)
                log.debug(
                    'fetcher.window_complete',
                    window_start=window_start.isoformat(),
                    window_end=window_end.isoformat(),
                    deals=len(deals),
                    pages=pages,
                )
            result.windows.append(window)

        log.info(
            'fetcher.range_complete',
            deals=len(result.deals),
            windows_ok=result.windows_ok,
            windows_failed=result.windows_failed,
        )
        return result

    async def _fetch_pages(
        self,
        partition: Partition,
        start: date,
        end: date,
    ) -> tuple[list, int]:
        deals: list = []
        page = 1
        total_pages = 1

        while page <= total_pages:
            await self.page_limiter.acquire()
            response = await self.source.fetch_page(
                partition.api_key,
                start,
                end,
                page=page,
                base_url=partition.base_url,
            )
            deals.extend(response.deals)
            total_pages = response.total_pages
            page += 1

        return deals, page - 1
