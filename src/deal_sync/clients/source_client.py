"""
HTTP client for the source loan-origination API.

Two endpoints:
- GET {base}/v1/deals?apikey=&startdate=&enddate=&datetype=1&page=N
  -> {pageNumber, totalPages, totalDeals, deals: [...]}
- GET {base}/v1/deal?apikey=&loancode=  -> one deal document, or 404

The client does no pacing and no retries; the fetcher owns both decisions.
Every failure surfaces as SourceAPIError (SourceNotFoundError for 404).
"""

from datetime import date
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..config import SyncConfig
from ..errors import SourceAPIError, SourceNotFoundError, wrap_source_error

logger = structlog.get_logger(__name__)

# datetype=1 filters by deal creation date
DATE_TYPE_CREATED = 1


class SourcePage(BaseModel):
    """One page of a deal-window query. Deal documents stay undecoded."""

    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    page_number: int = Field(default=1, alias='pageNumber')
    total_pages: int = Field(default=0, alias='totalPages', ge=0)
    total_deals: int = Field(default=0, alias='totalDeals', ge=0)
    deals: list[Any] = Field(default_factory=list)


class SourceClient:
    """
    Async client for the source deal API.

    Usage:
        async with SourceClient(config) as client:
            page = await client.fetch_page(api_key, start, end, page=1)
    """

    def __init__(
        self,
        config: SyncConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Args:
            config: Sync settings (base URL, timeout)
            transport: Optional httpx transport override (tests use MockTransport)
        """
        self.config = config
        self.base_url = config.SOURCE_BASE_URL.rstrip('/')
        self._client = httpx.AsyncClient(
            timeout=config.HTTP_TIMEOUT_SECONDS,
            transport=transport,
            headers={'Accept': 'application/json'},
        )

    async def __aenter__(self) -> 'SourceClient':
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    def _url(self, path: str, base_url: str | None) -> str:
        return f"{(base_url or self.base_url).rstrip('/')}/{path}"

    async def _get_json(self, url: str, params: dict[str, Any], context: dict[str, Any]) -> Any:
        try:
            response = await self._client.get(url, params=params)
            response.raise_for_status()
            return response.json()
        except SourceAPIError:
            raise
        except httpx.HTTPError as exc:
            raise wrap_source_error(exc, context) from exc
        except ValueError as exc:
            # Body was not JSON
            raise SourceAPIError(f'Source API returned invalid JSON: {exc}', context=context) from exc

    async def fetch_page(
        self,
        api_key: str,
        start: date,
        end: date,
        page: int = 1,
        base_url: str | None = None,
    ) -> SourcePage:
        """
        Fetch one page of deals created within [start, end].

        The caller must keep the window within 12 months.

        Raises:
            SourceAPIError: Non-2xx, transport failure, or malformed page body
        """
        context = {'start': start.isoformat(), 'end': end.isoformat(), 'page': page}
        payload = await self._get_json(
            self._url('v1/deals', base_url),
            {
                'apikey': api_key,
                'startdate': start.isoformat(),
                'enddate': end.isoformat(),
                'datetype': DATE_TYPE_CREATED,
                'page': page,
            },
            context,
        )
        try:
            result = SourcePage.model_validate(payload)
        except ValidationError as exc:
            raise SourceAPIError(f'Malformed deals page: {exc.error_count()} errors', context=context) from exc

        logger.debug(
            'source_client.page_fetched',
            page=result.page_number,
            total_pages=result.total_pages,
            deals=len(result.deals),
        )
        return result

    async def fetch_deal(
        self,
        api_key: str,
        loan_code: str,
        base_url: str | None = None,
    ) -> dict[str, Any]:
        """
        Point lookup of one deal by loan code.

        Raises:
            SourceNotFoundError: The source has no such deal
            SourceAPIError: Any other failure
        """
        context = {'loan_code': loan_code}
        payload = await self._get_json(
            self._url('v1/deal', base_url),
            {'apikey': api_key, 'loancode': loan_code},
            context,
        )

        # Some deployments wrap the single deal in a list
        if isinstance(payload, list):
            payload = payload[0] if payload else None
        if payload is None:
            raise SourceNotFoundError(f'Deal {loan_code} not found', context=context, status_code=404)
        if not isinstance(payload, dict):
            raise SourceAPIError(f'Unexpected deal payload type: {type(payload).__name__}', context=context)

        logger.debug('source_client.deal_fetched', loan_code=loan_code)
        return payload
