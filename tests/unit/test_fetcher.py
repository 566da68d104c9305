"""Unit tests for RetryingFetcher: httpx.MockTransport, no network."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from nft_static_data.content.fetcher import RetryingFetcher, backoff_ms
from nft_static_data.content.gateways import GatewaySelector
from nft_static_data.content.references import StorageNetwork

CID = "QmYwAPJzv5CZsnA625s3Xf2nemtYgPpHdWEz79ojWnPbdG"
GATEWAYS = ["https://g1.test/ipfs/", "https://g2.test/ipfs/", "https://g3.test/ipfs/"]


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _cache(present: bool = False) -> MagicMock:
    cache = MagicMock()
    cache.has = AsyncMock(return_value=present)
    return cache


def _fetcher(http, *, cache=None, pinning=None, max_depth=5, own_gateway_url=None, sleep=None):
    return RetryingFetcher(
        http=http,
        selectors={StorageNetwork.IPFS: GatewaySelector(GATEWAYS, StorageNetwork.IPFS)},
        cid_cache=cache or _cache(),
        pinning=pinning,
        own_gateway_url=own_gateway_url,
        max_depth=max_depth,
        timeout=5,
        ledger_retry_step=1.0,
        sleep=sleep or AsyncMock(),
    )


class TestBackoff:
    def test_known_values(self):
        assert backoff_ms(0, 7) == 0
        assert backoff_ms(1, 1) == 12
        assert backoff_ms(2, 1) == 96

    def test_depth_two_does_not_collapse_to_depth_zero(self):
        assert 0 < backoff_ms(1, 1) < backoff_ms(2, 1)

    def test_raised_attempts_add_linear_penalty(self):
        assert backoff_ms(1, 1, raised=True) == 12 + 30
        # past depth 8 the per-depth penalty jumps to 225ms
        assert backoff_ms(9, 1, raised=True) == 72 * 4 + 225 * 9


class TestFetchContent:
    async def test_success_on_first_gateway(self):
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, json={"name": "ok"})

        async with _client(handler) as http:
            fetcher = _fetcher(http)
            result = await fetcher.fetch_content(f"ipfs://{CID}/1.json", seed=3)

        assert result.ok
        assert result.document == {"name": "ok"}
        assert result.attempts == 1
        assert seen == [f"https://g1.test/ipfs/{CID}/1.json"]
        stat = fetcher.selector(StorageNetwork.IPFS).stat(GATEWAYS[0])
        assert stat.success_count == 1

    async def test_failures_rotate_gateways(self):
        hosts: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            hosts.append(request.url.host)
            if request.url.host == "g3.test":
                return httpx.Response(200, json={"name": "third"})
            return httpx.Response(503)

        sleep = AsyncMock()
        async with _client(handler) as http:
            fetcher = _fetcher(http, sleep=sleep)
            result = await fetcher.fetch_content(CID, seed=1)

        assert result.document == {"name": "third"}
        assert result.attempts == 3
        assert hosts == ["g1.test", "g2.test", "g3.test"]
        assert sleep.await_count == 2
        # seed advances before each attempt: depth 1 uses seed 2, depth 2 seed 3
        assert sleep.await_args_list[0].args[0] == backoff_ms(1, 2) / 1000
        assert sleep.await_args_list[1].args[0] == backoff_ms(2, 3) / 1000

    async def test_exhaustion_pins_failed_load_once(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404)

        pinning = MagicMock()
        pinning.pin = AsyncMock(return_value=True)
        async with _client(handler) as http:
            fetcher = _fetcher(http, pinning=pinning, max_depth=3)
            result = await fetcher.fetch_content(f"ipfs://{CID}")

        assert not result.ok
        assert result.attempts == 3
        assert result.last_error == "HTTP 404"
        assert not result.timed_out
        assert result.recovery_pin_attempted
        pinning.pin.assert_awaited_once_with(CID, f"ipfs://{CID}-failed-load")

    async def test_no_recovery_pin_when_cid_already_known(self):
        pinning = MagicMock()
        pinning.pin = AsyncMock(return_value=True)
        async with _client(lambda r: httpx.Response(500)) as http:
            fetcher = _fetcher(http, pinning=pinning, cache=_cache(present=True), max_depth=2)
            result = await fetcher.fetch_content(CID)

        assert not result.recovery_pin_attempted
        pinning.pin.assert_not_awaited()

    async def test_timeout_is_reported(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        async with _client(handler) as http:
            fetcher = _fetcher(http, max_depth=2)
            result = await fetcher.fetch_content(CID)

        assert not result.ok
        assert result.timed_out
        assert result.last_error.startswith("timeout")

    async def test_invalid_json_is_a_failed_attempt(self):
        responses = iter([httpx.Response(200, text="<html>"), httpx.Response(200, json=[1, 2])])

        async with _client(lambda r: next(responses)) as http:
            fetcher = _fetcher(http)
            result = await fetcher.fetch_content(CID)

        assert result.document == [1, 2]
        assert result.attempts == 2

    async def test_unresolved_http_is_fetched_directly(self):
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, json={})

        async with _client(handler) as http:
            fetcher = _fetcher(http)
            result = await fetcher.fetch_content("https://example.com/meta/1.json")

        assert result.document == {}
        assert result.reference is None
        assert seen == ["https://example.com/meta/1.json"]

    async def test_own_gateway_used_first_for_known_cid(self):
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, json={"own": True})

        async with _client(handler) as http:
            fetcher = _fetcher(http, cache=_cache(present=True), own_gateway_url="https://own.test/ipfs/")
            result = await fetcher.fetch_content(CID)

        assert result.document == {"own": True}
        assert result.last_gateway is None
        assert seen == [f"https://own.test/ipfs/{CID}"]

    async def test_missing_selector_raises(self):
        async with _client(lambda r: httpx.Response(200, json={})) as http:
            fetcher = _fetcher(http)
            with pytest.raises(ValueError, match="arweave"):
                await fetcher.fetch_content("ar://bNbA3TEQVL60xlgCcqdz4ZPHFZ711cZ3hmkpGttDt_U")


class TestFetchJson:
    async def test_linear_backoff_then_success(self):
        responses = iter([httpx.Response(500), httpx.Response(502), httpx.Response(200, json={"ok": 1})])
        sleep = AsyncMock()

        async with _client(lambda r: next(responses)) as http:
            fetcher = _fetcher(http, sleep=sleep)
            data = await fetcher.fetch_json("https://mirror.test/api/v1/tokens/0.0.1")

        assert data == {"ok": 1}
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    async def test_gives_up_with_none(self):
        async with _client(lambda r: httpx.Response(500)) as http:
            fetcher = _fetcher(http)
            assert await fetcher.fetch_json("https://mirror.test/x", max_depth=2) is None

    async def test_fetch_content_json_returns_document_or_none(self):
        async with _client(lambda r: httpx.Response(200, json={"a": 1})) as http:
            assert await _fetcher(http).fetch_content_json(CID) == {"a": 1}
        async with _client(lambda r: httpx.Response(500)) as http:
            assert await _fetcher(http).fetch_content_json(CID, max_depth=2) is None
