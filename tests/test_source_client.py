"""
Tests for the source API client (httpx.MockTransport, no network).
"""

import json
from datetime import date

import httpx
import pytest

from deal_sync.clients.source_client import SourceClient
from deal_sync.errors import SourceAPIError, SourceNotFoundError


def _client(config, handler) -> SourceClient:
    return SourceClient(config, transport=httpx.MockTransport(handler))


class TestFetchPage:
    @pytest.mark.asyncio
    async def test_request_shape_and_parse(self, config):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={'pageNumber': 2, 'totalPages': 3, 'totalDeals': 41, 'deals': [{'loanCode': 'A'}]},
            )

        async with _client(config, handler) as client:
            page = await client.fetch_page('key-1', date(2023, 1, 1), date(2023, 12, 31), page=2)

        assert page.page_number == 2
        assert page.total_pages == 3
        assert page.total_deals == 41
        assert page.deals == [{'loanCode': 'A'}]

        request = seen[0]
        assert request.url.path == '/api/forms/v1/deals'
        assert request.url.params['apikey'] == 'key-1'
        assert request.url.params['startdate'] == '2023-01-01'
        assert request.url.params['enddate'] == '2023-12-31'
        assert request.url.params['datetype'] == '1'
        assert request.url.params['page'] == '2'

    @pytest.mark.asyncio
    async def test_partition_base_url_override(self, config):
        hosts = []

        def handler(request):
            hosts.append(request.url.host)
            return httpx.Response(200, json={'totalPages': 1, 'deals': []})

        async with _client(config, handler) as client:
            await client.fetch_page('k', date(2024, 1, 1), date(2024, 1, 31), base_url='https://other.test/api/')

        assert hosts == ['other.test']

    @pytest.mark.asyncio
    async def test_server_error(self, config):
        async with _client(config, lambda r: httpx.Response(503, text='busy')) as client:
            with pytest.raises(SourceAPIError) as exc_info:
                await client.fetch_page('k', date(2024, 1, 1), date(2024, 1, 31))
        assert exc_info.value.status_code == 503
        assert 'busy' in exc_info.value.message

    @pytest.mark.asyncio
    async def test_transport_error(self, config):
        def handler(request):
            raise httpx.ConnectError('refused', request=request)

        async with _client(config, handler) as client:
            with pytest.raises(SourceAPIError) as exc_info:
                await client.fetch_page('k', date(2024, 1, 1), date(2024, 1, 31))
        assert exc_info.value.context['error_type'] == 'ConnectError'

    @pytest.mark.asyncio
    async def test_invalid_json(self, config):
        async with _client(config, lambda r: httpx.Response(200, text='<html>')) as client:
            with pytest.raises(SourceAPIError, match='invalid JSON'):
                await client.fetch_page('k', date(2024, 1, 1), date(2024, 1, 31))

    @pytest.mark.asyncio
    async def test_malformed_page(self, config):
        body = {'totalPages': 'many', 'deals': 'none'}
        async with _client(config, lambda r: httpx.Response(200, content=json.dumps(body))) as client:
            with pytest.raises(SourceAPIError, match='Malformed deals page'):
                await client.fetch_page('k', date(2024, 1, 1), date(2024, 1, 31))


class TestFetchDeal:
    @pytest.mark.asyncio
    async def test_single_document(self, config):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={'loanCode': 'LOAN-001'})

        async with _client(config, handler) as client:
            payload = await client.fetch_deal('k', 'LOAN-001')

        assert payload == {'loanCode': 'LOAN-001'}
        assert seen[0].url.path == '/api/forms/v1/deal'
        assert seen[0].url.params['loancode'] == 'LOAN-001'

    @pytest.mark.asyncio
    async def test_list_wrapped_document(self, config):
        async with _client(config, lambda r: httpx.Response(200, json=[{'loanCode': 'X'}])) as client:
            assert await client.fetch_deal('k', 'X') == {'loanCode': 'X'}

    @pytest.mark.asyncio
    async def test_404(self, config):
        async with _client(config, lambda r: httpx.Response(404, text='nope')) as client:
            with pytest.raises(SourceNotFoundError) as exc_info:
                await client.fetch_deal('k', 'X')
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    @pytest.mark.parametrize('body', ['[]', 'null'])
    async def test_empty_body_is_not_found(self, config, body):
        async with _client(config, lambda r: httpx.Response(200, content=body)) as client:
            with pytest.raises(SourceNotFoundError):
                await client.fetch_deal('k', 'X')

    @pytest.mark.asyncio
    async def test_unexpected_payload_type(self, config):
        async with _client(config, lambda r: httpx.Response(200, json='LOAN')) as client:
            with pytest.raises(SourceAPIError, match='Unexpected deal payload type'):
                await client.fetch_deal('k', 'X')
