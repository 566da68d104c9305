from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from typing import Any

import httpx

from nft_static_data.cli import build_parser
from nft_static_data.content.fetcher import RetryingFetcher
from nft_static_data.content.gateways import GatewaySelector
from nft_static_data.content.references import StorageNetwork
from nft_static_data.credentials import mask_credential
from nft_static_data.db import check_db_connection, close_pool, connection
from nft_static_data.logging_config import setup_logging
from nft_static_data.pinning.cid_cache import CidExistenceCache
from nft_static_data.pinning.client import PinningClient, validate_unconfirmed_pins
from nft_static_data.processing.config import ScrapeConfig
from nft_static_data.processing.ledger import LedgerFetchError
from nft_static_data.processing.runner import MetadataScrapeRunner
from nft_static_data.processing.validation import ValidationError, network_name, validate_token_ids
from nft_static_data.stores.cid_store import CidRecordStore

logger = logging.getLogger("nft_static_data")


def _install_handlers(loop: asyncio.AbstractEventLoop, cache: CidExistenceCache) -> None:
    def on_unhandled(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        logger.error(
            "Unhandled error in event loop: %s",
            context.get("message"),
            exc_info=context.get("exception"),
        )

    loop.set_exception_handler(on_unhandled)

    def on_signal(sig: signal.Signals) -> None:
        logger.warning("Received %s; saving CID cache before exit", sig.name)
        cache.persist()
        for task in asyncio.all_tasks(loop):
            task.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, on_signal, sig)
        except NotImplementedError:
            # Not supported on Windows event loops.
            pass


def _build_components(
    cfg: ScrapeConfig, http: httpx.AsyncClient, cache: CidExistenceCache, environment: str
) -> tuple[RetryingFetcher, PinningClient]:
    selectors = {
        StorageNetwork.IPFS: GatewaySelector(cfg.ipfs_gateways, StorageNetwork.IPFS),
        StorageNetwork.ARWEAVE: GatewaySelector(cfg.arweave_gateways, StorageNetwork.ARWEAVE),
        StorageNetwork.CONSENSUS_LOG: GatewaySelector(
            cfg.consensus_gateways, StorageNetwork.CONSENSUS_LOG
        ),
    }
    pinning = PinningClient(
        http=http,
        service_url=cfg.pinning_service_url or "",
        api_key=cfg.pinning_api_key or "",
        own_gateway_url=cfg.own_gateway_url,
        cid_cache=cache,
        timeout=cfg.request_timeout_s,
    )
    fetcher = RetryingFetcher(
        http=http,
        selectors=selectors,
        cid_cache=cache,
        pinning=pinning,
        own_gateway_url=cfg.own_gateway_url,
        network_name=network_name(environment),
        max_depth=cfg.max_retries,
        timeout=cfg.request_timeout_s,
    )
    return fetcher, pinning


async def _scrape(args: argparse.Namespace, cfg: ScrapeConfig, cache: CidExistenceCache) -> int:
    tokens, invalid = validate_token_ids(args.token)
    for token_id, reason in invalid:
        logger.error("Skipping %s: %s", token_id, reason)
    if not tokens:
        return 2

    concurrency = args.concurrency if args.concurrency and args.concurrency > 0 else cfg.concurrency
    error_total = len(invalid)

    async with httpx.AsyncClient() as http:
        fetcher, pinning = _build_components(cfg, http, cache, args.env)
        runner = MetadataScrapeRunner(cfg=cfg, fetcher=fetcher, pinning=pinning, cid_cache=cache)
        for token_id in tokens:
            try:
                job = await runner.run_token(
                    token_id=token_id,
                    environment=args.env,
                    collection=args.collection,
                    schema=args.schema,
                    concurrency=concurrency,
                    dry_run=bool(args.dry_run),
                    resume=bool(args.resume),
                )
            except LedgerFetchError as e:
                logger.error("Aborting %s: %s", token_id, e)
                error_total += 1
                continue

            summary = job.summary()
            logger.info("Summary %s", summary)
            if job.total_error_count:
                logger.warning(
                    "%s finished with %d errors: %s",
                    token_id,
                    job.total_error_count,
                    {k: v["count"] for k, v in summary["errorsByCategory"].items()},
                )
                if args.export_errors:
                    job.export_errors()
            error_total += job.total_error_count

    return 0 if error_total == 0 else 2


async def _validate_pins(args: argparse.Namespace, cfg: ScrapeConfig, cache: CidExistenceCache) -> int:
    batch_size = args.batch_size if args.batch_size and args.batch_size > 0 else cfg.pin_batch_size
    store = CidRecordStore()
    unconfirmed: list[str] = []
    after: str | None = None
    async with connection() as conn:
        while True:
            page = await store.fetch_unconfirmed(conn, after=after, limit=cfg.query_limit)
            if not page:
                break
            unconfirmed.extend(page)
            after = page[-1]
    logger.info("Found %d unconfirmed CIDs", len(unconfirmed))

    async with httpx.AsyncClient() as http:
        _, pinning = _build_components(cfg, http, cache, "MAIN")
        stats = await validate_unconfirmed_pins(
            pinning, unconfirmed, force=bool(args.force), batch_size=batch_size
        )
    logger.info("DONE pins=%s", stats)
    return 0 if stats["failed"] == 0 else 2


async def _amain() -> int:
    parser = build_parser()
    args = parser.parse_args()

    setup_logging(level=args.log_level.upper())

    cfg = ScrapeConfig.from_env()
    try:
        cfg.validate()
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        return 1
    logger.info(
        "Pinning service %s (key %s)", cfg.pinning_service_url, mask_credential(cfg.pinning_api_key)
    )

    if not await check_db_connection():
        logger.error("Database unreachable; check DATABASE_URL or DB_* settings")
        await close_pool()
        return 1

    cache = CidExistenceCache(snapshot_path=cfg.cid_cache_file)
    _install_handlers(asyncio.get_running_loop(), cache)
    cache.restore()
    try:
        await cache.preload(page_size=cfg.query_limit)
        if args.command == "scrape":
            return await _scrape(args, cfg, cache)
        return await _validate_pins(args, cfg, cache)
    except ValidationError as e:
        logger.error("Invalid %s: %s", e.field, e)
        return 1
    finally:
        cache.persist()
        await close_pool()


def main() -> None:
    try:
        raise SystemExit(asyncio.run(_amain()))
    except asyncio.CancelledError:
        raise SystemExit(130) from None


if __name__ == "__main__":
    main()
