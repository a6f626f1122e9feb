"""Tests for the upstream inventory client."""

import httpx
import pytest

from inventory_mirror.services.error_classifier import ErrorKind
from inventory_mirror.services.upstream_client import (
    RequestRateLimiter,
    UpstreamClient,
    UpstreamError,
)

BASE_URL = "http://upstream.test/api"


def client_for(handler, **kwargs) -> UpstreamClient:
    return UpstreamClient(
        base_url=BASE_URL,
        requests_per_second=0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestUpstreamClient:
    """Tests for UpstreamClient."""

    def test_init_with_api_key(self):
        client = UpstreamClient(base_url=BASE_URL, api_key="secret")

        assert client.headers["X-API-Key"] == "secret"
        assert client.items_url == "http://upstream.test/api/items"

    def test_init_without_api_key(self):
        client = UpstreamClient(base_url=BASE_URL + "/", api_key=None)

        assert "X-API-Key" not in client.headers
        assert client.items_url == "http://upstream.test/api/items"

    @pytest.mark.asyncio
    async def test_fetch_page_with_meta(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "data": [{"id": "a"}, {"id": "b"}],
                    "meta": {"total": 150000, "last_page": "6000"},
                },
            )

        page = await client_for(handler).fetch_page(7, limit=25, filters={"make": "Toyota"})

        assert page.page == 7
        assert [item["id"] for item in page.items] == ["a", "b"]
        assert page.total == 150000
        assert page.last_page == 6000

        params = seen[0].url.params
        assert params["page"] == "7"
        assert params["limit"] == "25"
        assert params["make"] == "Toyota"

    @pytest.mark.asyncio
    async def test_fetch_page_bare_list(self):
        page = await client_for(lambda r: httpx.Response(200, json=[{"id": "a"}])).fetch_page(1)

        assert page.items == [{"id": "a"}]
        assert page.total is None
        assert page.last_page is None

    @pytest.mark.asyncio
    async def test_fetch_page_without_meta(self):
        page = await client_for(lambda r: httpx.Response(200, json={"data": []})).fetch_page(3)

        assert page.items == []
        assert page.total is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "kind"),
        [
            (401, ErrorKind.AUTH),
            (403, ErrorKind.AUTH),
            (404, ErrorKind.DEPLOYMENT),
            (429, ErrorKind.RATE_LIMITED),
            (500, ErrorKind.SERVER),
            (503, ErrorKind.SERVER),
            (400, ErrorKind.CONFIG),
        ],
    )
    async def test_http_errors_are_tagged(self, status, kind):
        client = client_for(lambda r: httpx.Response(status, json={}))

        with pytest.raises(UpstreamError) as exc_info:
            await client.fetch_page(1)

        assert exc_info.value.kind is kind
        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_timeout_is_tagged(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        with pytest.raises(UpstreamError) as exc_info:
            await client_for(handler).fetch_page(1)

        assert exc_info.value.kind is ErrorKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_connect_failure_is_network_during_paging(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(UpstreamError) as exc_info:
            await client_for(handler).fetch_page(1)

        assert exc_info.value.kind is ErrorKind.NETWORK

    @pytest.mark.asyncio
    async def test_probe_failures_are_deployment(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        def hang(request):
            raise httpx.ConnectTimeout("no answer", request=request)

        for handler in (refuse, hang):
            with pytest.raises(UpstreamError) as exc_info:
                await client_for(handler).probe()
            assert exc_info.value.kind is ErrorKind.DEPLOYMENT

    @pytest.mark.asyncio
    async def test_probe_success(self):
        seen: list[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"data": []})

        await client_for(handler).probe()

        assert seen[0].url.params["limit"] == "1"

    @pytest.mark.asyncio
    async def test_invalid_json_is_server_error(self):
        client = client_for(lambda r: httpx.Response(200, text="<html>oops</html>"))

        with pytest.raises(UpstreamError) as exc_info:
            await client.fetch_page(1)

        assert exc_info.value.kind is ErrorKind.SERVER

    @pytest.mark.asyncio
    async def test_missing_base_url_is_config_error(self):
        client = UpstreamClient(base_url="", requests_per_second=0)

        with pytest.raises(UpstreamError) as exc_info:
            await client.fetch_page(1)

        assert exc_info.value.kind is ErrorKind.CONFIG

    @pytest.mark.asyncio
    async def test_missing_required_key_is_auth_error(self):
        client = UpstreamClient(
            base_url=BASE_URL, api_key=None, api_key_required=True, requests_per_second=0
        )

        with pytest.raises(UpstreamError) as exc_info:
            await client.probe()

        assert exc_info.value.kind is ErrorKind.AUTH

    @pytest.mark.asyncio
    async def test_api_key_header_sent(self):
        seen: list[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[])

        await client_for(handler, api_key="secret").fetch_page(1)

        assert seen[0].headers["X-API-Key"] == "secret"


class TestRequestRateLimiter:
    """Tests for client-side throttling."""

    @pytest.mark.asyncio
    async def test_disabled_never_waits(self, monkeypatch):
        async def fail_sleep(delay):
            raise AssertionError("should not sleep")

        monkeypatch.setattr("inventory_mirror.services.upstream_client.asyncio.sleep", fail_sleep)
        limiter = RequestRateLimiter(0)

        for _ in range(5):
            await limiter.acquire()

    @pytest.mark.asyncio
    async def test_spaces_requests(self, monkeypatch):
        delays: list[float] = []

        async def record_sleep(delay):
            delays.append(delay)

        monkeypatch.setattr("inventory_mirror.services.upstream_client.asyncio.sleep", record_sleep)
        limiter = RequestRateLimiter(2.0)

        await limiter.acquire()
        await limiter.acquire()

        assert len(delays) == 1
        assert 0 < delays[0] <= 0.5
