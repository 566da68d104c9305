"""HTTP JSON fetching with bounded retries.

``fetch_json`` is for plain ledger URLs. ``fetch_content`` resolves a
content reference and picks a (possibly different) gateway on every attempt,
feeding each outcome back into that network's ``GatewaySelector``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from nft_static_data.config import LEDGER_RETRY_STEP_SECONDS, MAX_RETRIES, REQUEST_TIMEOUT_SECONDS
from nft_static_data.content.gateways import GatewaySelector, ResolvedEndpoint, build_url
from nft_static_data.content.references import (
    ResolvedReference,
    StorageNetwork,
    is_valid_cid,
    resolve,
)
from nft_static_data.pinning.cid_cache import CidExistenceCache
from nft_static_data.pinning.client import PinningClient

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


def backoff_ms(depth: int, seed: int, *, raised: bool = False) -> int:
    """Jittered retry delay in milliseconds.

    ``seed`` advances once per attempt and starts from the serial number, which
    spreads concurrent workers apart. Attempts that raised (timeouts, resets)
    add a linear penalty that grows sharply past depth 8.
    """
    delay = ((12 * depth**2 * seed) % 100) * (depth % 5)
    if raised:
        delay += (225 if depth > 8 else 30) * depth
    return delay


class FetchFailure(Exception):
    """One failed attempt; carries what is needed for gateway bookkeeping."""

    def __init__(self, message: str, *, timed_out: bool = False, raised: bool = False) -> None:
        super().__init__(message)
        self.timed_out = timed_out
        self.raised = raised


@dataclass(frozen=True)
class FetchResult:
    document: Any | None
    attempts: int
    reference: ResolvedReference | None = None
    last_url: str | None = None
    last_gateway: str | None = None
    last_error: str | None = None
    timed_out: bool = False
    recovery_pin_attempted: bool = False

    @property
    def ok(self) -> bool:
        return self.document is not None


class RetryingFetcher:
    def __init__(
        self,
        *,
        http: httpx.AsyncClient,
        selectors: Mapping[StorageNetwork, GatewaySelector],
        cid_cache: CidExistenceCache | None = None,
        pinning: PinningClient | None = None,
        own_gateway_url: str | None = None,
        network_name: str = "mainnet",
        max_depth: int = MAX_RETRIES,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        ledger_retry_step: float = LEDGER_RETRY_STEP_SECONDS,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._http = http
        self._selectors = dict(selectors)
        self._cache = cid_cache
        self._pinning = pinning
        self._own_gateway_url = own_gateway_url
        self._network_name = network_name
        self._max_depth = max(1, max_depth)
        self._timeout = timeout
        self._ledger_retry_step = ledger_retry_step
        self._sleep = sleep

    def selector(self, network: StorageNetwork) -> GatewaySelector | None:
        return self._selectors.get(network)

    async def _get_json(self, url: str) -> Any:
        # asyncio.timeout cancels the request task, which closes the
        # underlying connection rather than leaving it to finish in the pool.
        try:
            async with asyncio.timeout(self._timeout):
                resp = await self._http.get(url, timeout=self._timeout, follow_redirects=True)
        except (TimeoutError, httpx.TimeoutException) as e:
            raise FetchFailure(f"timeout after {self._timeout:.0f}s", timed_out=True, raised=True) from e
        except httpx.HTTPError as e:
            raise FetchFailure(f"{type(e).__name__}: {e}", raised=True) from e
        if resp.status_code != 200:
            raise FetchFailure(f"HTTP {resp.status_code}")
        try:
            return resp.json()
        except ValueError as e:
            raise FetchFailure(f"invalid JSON: {e}", raised=True) from e

    async def fetch_json(self, url: str, max_depth: int | None = None) -> Any | None:
        """GET ``url`` as JSON with linear backoff; None once retries are exhausted."""
        depth_limit = max_depth or self._max_depth
        for depth in range(1, depth_limit + 1):
            try:
                return await self._get_json(url)
            except FetchFailure as e:
                logger.debug("Fetch attempt %d/%d for %s failed: %s", depth, depth_limit, url, e)
                await self._sleep(self._ledger_retry_step * depth)
        logger.warning("Giving up on %s after %d attempts", url, depth_limit)
        return None

    async def _endpoint(
        self, raw: str, ref: ResolvedReference | None, *, first_attempt: bool
    ) -> ResolvedEndpoint:
        if ref is None:
            return ResolvedEndpoint(url=raw, gateway=None, network=StorageNetwork.DIRECT)

        if (
            first_attempt
            and ref.network is StorageNetwork.IPFS
            and self._own_gateway_url
            and self._cache is not None
            and is_valid_cid(ref.identifier)
            and await self._cache.has(ref.identifier)
        ):
            return ResolvedEndpoint(
                url=build_url(self._own_gateway_url, ref), gateway=None, network=ref.network
            )

        selector = self._selectors.get(ref.network)
        if selector is None:
            raise ValueError(f"No gateway selector configured for {ref.network.value}")
        gateway = selector.pick_best()
        return ResolvedEndpoint(
            url=build_url(gateway, ref, network_name=self._network_name),
            gateway=gateway,
            network=ref.network,
        )

    async def fetch_content(
        self, reference: str, *, seed: int = 0, max_depth: int | None = None
    ) -> FetchResult:
        depth_limit = max_depth or self._max_depth
        ref = resolve(reference)
        endpoint: ResolvedEndpoint | None = None
        last_error: str | None = None
        timed_out = False

        for depth in range(1, depth_limit + 1):
            endpoint = await self._endpoint(reference, ref, first_attempt=depth == 1)
            selector = self._selectors.get(endpoint.network)
            seed += 1
            if depth > 15:
                logger.info("Attempt %d: %s", depth, endpoint.url)

            started = time.monotonic()
            try:
                document = await self._get_json(endpoint.url)
            except FetchFailure as e:
                last_error, timed_out = str(e), e.timed_out
                if selector is not None and endpoint.gateway is not None:
                    selector.record_failure(endpoint.gateway)
                await self._sleep(backoff_ms(depth, seed, raised=e.raised) / 1000)
                continue

            if selector is not None and endpoint.gateway is not None:
                selector.record_success(endpoint.gateway, (time.monotonic() - started) * 1000)
            return FetchResult(
                document=document,
                attempts=depth,
                reference=ref,
                last_url=endpoint.url,
                last_gateway=endpoint.gateway,
            )

        recovery = await self._pin_failed_load(reference, ref)
        return FetchResult(
            document=None,
            attempts=depth_limit,
            reference=ref,
            last_url=endpoint.url if endpoint else None,
            last_gateway=endpoint.gateway if endpoint else None,
            last_error=last_error,
            timed_out=timed_out,
            recovery_pin_attempted=recovery,
        )

    async def fetch_content_json(self, reference: str, max_depth: int | None = None) -> Any | None:
        """Document for ``reference``, or None once every attempt has failed."""
        result = await self.fetch_content(reference, max_depth=max_depth)
        return result.document

    async def _pin_failed_load(self, reference: str, ref: ResolvedReference | None) -> bool:
        """Best-effort pin of content that could not be loaded, so it is retained for a retry."""
        logger.info("Bailing on %s", reference)
        if ref is None or self._pinning is None or not is_valid_cid(ref.identifier):
            return False
        if self._cache is not None and await self._cache.has(ref.identifier):
            return False
        if not await self._pinning.pin(ref.identifier, f"{reference}-failed-load"):
            logger.warning("Recovery pin failed for %s", reference)
        return True
