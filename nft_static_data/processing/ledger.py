"""Mirror-node client: token details and paginated NFT listings."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

from pydantic import ValidationError as PydanticValidationError

from nft_static_data.config import LEDGER_PAGE_LIMIT, MIRROR_NODE_URLS, PAGE_DELAY_SECONDS
from nft_static_data.content.fetcher import RetryingFetcher
from nft_static_data.models import NftPage, TokenInfo
from nft_static_data.processing.validation import network_name

logger = logging.getLogger(__name__)


class LedgerFetchError(RuntimeError):
    """The NFT listing could not be fetched; nothing more can be discovered."""


class MirrorNodeClient:
    def __init__(
        self,
        environment: str,
        fetcher: RetryingFetcher,
        *,
        page_limit: int = LEDGER_PAGE_LIMIT,
        page_delay_s: float = PAGE_DELAY_SECONDS,
        base_url: str | None = None,
    ) -> None:
        self.network = network_name(environment)
        self.base_url = (base_url or MIRROR_NODE_URLS[self.network]).rstrip("/")
        self._fetcher = fetcher
        self._page_limit = page_limit
        self._page_delay_s = page_delay_s

    async def token_info(self, token_id: str) -> TokenInfo | None:
        data = await self._fetcher.fetch_json(f"{self.base_url}/api/v1/tokens/{token_id}")
        if data is None:
            logger.warning("Token details unavailable for %s", token_id)
            return None
        try:
            return TokenInfo.model_validate(data)
        except PydanticValidationError:
            logger.warning("Unexpected token details payload for %s", token_id, exc_info=True)
            return None

    async def iter_nft_pages(self, token_id: str) -> AsyncIterator[NftPage]:
        """Yield pages until the listing has no ``links.next``."""
        route: str | None = f"/api/v1/tokens/{token_id}/nfts/?limit={self._page_limit}"
        first = True
        while route:
            if not first:
                await asyncio.sleep(self._page_delay_s)
            first = False
            url = self.base_url + route
            data = await self._fetcher.fetch_json(url)
            if data is None:
                raise LedgerFetchError(f"Could not fetch NFT page {url}")
            try:
                page = NftPage.model_validate(data)
            except PydanticValidationError as e:
                raise LedgerFetchError(f"Malformed NFT page from {url}: {e}") from e
            yield page
            route = page.links.next
