"""Client for the remote pinning service (IPFS Pinning Service API).

Pin failures are ordinary outcomes reported as ``False``; callers tally them.
Every identifier that is pinned, found live, or confirmed is written through to
the CID record store once via the existence cache.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import asyncpg
import httpx
from pydantic import ValidationError as PydanticValidationError

from nft_static_data.content.references import is_valid_arweave_id, is_valid_cid
from nft_static_data.models import PinResults, PinState, PinStatus
from nft_static_data.pinning.cid_cache import CidExistenceCache

logger = logging.getLogger(__name__)

_RECORD_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


class PinningClient:
    def __init__(
        self,
        *,
        http: httpx.AsyncClient,
        service_url: str,
        api_key: str,
        own_gateway_url: str,
        cid_cache: CidExistenceCache,
        timeout: float = 30.0,
    ) -> None:
        self._http = http
        self._service_url = service_url.rstrip("/")
        self._api_key = api_key
        self._own_gateway_url = own_gateway_url
        self._cache = cid_cache
        self._timeout = timeout

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"}

    async def is_live(self, cid: str) -> bool:
        """Probe the project gateway; 2xx means the content is already retrievable."""
        try:
            async with self._http.stream(
                "GET", f"{self._own_gateway_url}{cid}", timeout=self._timeout
            ) as resp:
                return resp.is_success
        except httpx.HTTPError as e:
            logger.debug("Live probe for %s failed: %s", cid, e)
            return False

    async def _track(self, cid: str) -> None:
        """Write ``cid`` through to the CID records; a failed write leaves the pin outcome alone."""
        try:
            await self._cache.record(cid)
        except _RECORD_ERRORS as e:
            logger.warning("Could not record CID %s: %s", cid, e)

    async def pin(self, cid: str, name: str, is_image: bool = False) -> bool:
        if is_valid_arweave_id(cid):
            # Arweave storage is permanent; only track the identifier.
            await self._track(cid)
            return True
        if not is_valid_cid(cid):
            logger.warning("Refusing to pin invalid CID %r (%s)", cid, name)
            return False

        if await self.is_live(cid):
            await self._track(cid)
            logger.debug("CID %s already live on project gateway", cid)
            return True

        body: dict[str, Any] = {"cid": cid, "name": name, "meta": {"image": is_image}}
        try:
            resp = await self._http.post(
                self._service_url, json=body, headers=self._headers, timeout=self._timeout
            )
        except httpx.HTTPError as e:
            logger.warning("Pin request for %s (%s) failed: %s", cid, name, e)
            return False
        if not resp.is_success:
            logger.warning("Pin request for %s (%s) rejected: HTTP %d", cid, name, resp.status_code)
            return False

        await self._track(cid)
        logger.info("Pin requested: %s (%s)", cid, name)
        return True

    async def pin_status(self, cid: str) -> list[PinStatus]:
        results = await self._query({"cid": cid, "match": "iexact"})
        return results.results

    async def list_pins(self, status: PinState, limit: int = 100) -> PinResults:
        return await self._query({"status": status, "limit": limit})

    async def _query(self, params: dict[str, Any]) -> PinResults:
        resp = await self._http.get(
            self._service_url, params=params, headers=self._headers, timeout=self._timeout
        )
        resp.raise_for_status()
        return PinResults.model_validate(resp.json())

    async def confirm_pin(self, cid: str, force: bool = False) -> bool:
        if not (is_valid_cid(cid) or is_valid_arweave_id(cid)):
            logger.warning("Refusing to confirm invalid CID %r", cid)
            return False
        if is_valid_arweave_id(cid):
            await self._cache.confirm(cid)
            return True

        try:
            statuses = await self.pin_status(cid)
        except (httpx.HTTPError, PydanticValidationError) as e:
            logger.warning("Pin status lookup for %s failed: %s", cid, e)
            return False

        if any(s.status == "pinned" for s in statuses):
            await self._cache.confirm(cid)
            logger.debug("Pin confirmed: %s", cid)
            return True

        current = ",".join(s.status for s in statuses) or "none"
        logger.info("CID %s not pinned (status=%s)", cid, current)
        if force:
            await self.pin(cid, f"{cid}-force-repin")
        return False

    async def delete_pin(self, request_id: str) -> bool:
        try:
            resp = await self._http.delete(
                f"{self._service_url}/{request_id}", headers=self._headers, timeout=self._timeout
            )
        except httpx.HTTPError as e:
            logger.warning("Delete of pin request %s failed: %s", request_id, e)
            return False
        if not resp.is_success:
            logger.warning("Delete of pin request %s rejected: HTTP %d", request_id, resp.status_code)
        return resp.is_success

    async def delete_failed_pins(self, *, limit: int = 100) -> int:
        """Remove failed pin requests until none are left. Returns the count deleted."""
        deleted = 0
        while True:
            page = await self.list_pins("failed", limit=limit)
            if not page.results:
                break
            outcomes = [await self.delete_pin(item.requestid) for item in page.results]
            removed = sum(outcomes)
            deleted += removed
            if removed == 0:
                logger.warning("No failed pins could be deleted; stopping")
                break
        logger.info("Deleted %d failed pin requests", deleted)
        return deleted


async def validate_unconfirmed_pins(
    client: PinningClient,
    unconfirmed: list[str],
    *,
    force: bool = False,
    batch_size: int = 20,
) -> dict[str, int]:
    """Confirm each identifier, ``batch_size`` at a time."""
    confirmed = failed = processed = 0
    batch_size = max(1, batch_size)
    for i in range(0, len(unconfirmed), batch_size):
        batch = unconfirmed[i : i + batch_size]
        outcomes = await asyncio.gather(
            *(client.confirm_pin(cid, force) for cid in batch), return_exceptions=True
        )
        for cid, outcome in zip(batch, outcomes, strict=True):
            processed += 1
            if isinstance(outcome, BaseException):
                failed += 1
                logger.error("Pin validation failed for %s: %s", cid, outcome)
            elif outcome:
                confirmed += 1
        logger.info("Validated %d/%d pins (%d confirmed)", processed, len(unconfirmed), confirmed)
    return {"total": len(unconfirmed), "confirmed": confirmed, "failed": failed, "processed": processed}
