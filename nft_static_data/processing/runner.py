from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from collections.abc import Callable, Iterable

import asyncpg

from nft_static_data.config import LOG_GATEWAY_STATS
from nft_static_data.content.fetcher import RetryingFetcher
from nft_static_data.content.references import (
    StorageNetwork,
    classify,
    extract_identifier,
    is_pinnable,
    resolve,
)
from nft_static_data.models import NftRecord
from nft_static_data.pinning.cid_cache import CidExistenceCache
from nft_static_data.pinning.client import PinningClient
from nft_static_data.processing.config import ScrapeConfig
from nft_static_data.processing.job import ProcessingJob, ProgressCallback
from nft_static_data.processing.ledger import MirrorNodeClient
from nft_static_data.processing.progress import ProgressStateStore
from nft_static_data.processing.types import ErrorCategory, NormalizedRecord
from nft_static_data.processing.validation import network_name, validate_token_id
from nft_static_data.stores.metadata_store import SchemaWriter

logger = logging.getLogger(__name__)

_PINNED_NETWORKS = (StorageNetwork.IPFS, StorageNetwork.ARWEAVE)
_WRITE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)

LedgerFactory = Callable[[str], MirrorNodeClient]


def decode_metadata_reference(encoded: str) -> str:
    """Ledger records carry the metadata location as base64 text."""
    try:
        return base64.b64decode(encoded, validate=True).decode("utf-8").strip()
    except (binascii.Error, UnicodeDecodeError) as e:
        raise ValueError(f"Undecodable metadata pointer: {e}") from e


class MetadataScrapeRunner:
    def __init__(
        self,
        *,
        cfg: ScrapeConfig,
        fetcher: RetryingFetcher,
        pinning: PinningClient,
        cid_cache: CidExistenceCache,
        writer_factory: Callable[..., SchemaWriter] = SchemaWriter,
        progress_store: ProgressStateStore | None = None,
        ledger_factory: LedgerFactory | None = None,
    ) -> None:
        self._cfg = cfg
        self._fetcher = fetcher
        self._pinning = pinning
        self._cache = cid_cache
        self._writer_factory = writer_factory
        self._progress = progress_store or ProgressStateStore(cfg.progress_state_dir)
        self._ledger_factory = ledger_factory or (
            lambda env: MirrorNodeClient(
                env,
                fetcher,
                page_limit=cfg.ledger_page_limit,
                page_delay_s=cfg.page_delay_s,
            )
        )

    async def run_token(
        self,
        *,
        token_id: str,
        environment: str,
        collection: str | None = None,
        schema: str | None = None,
        concurrency: int | None = None,
        dry_run: bool = False,
        resume: bool = False,
        known_serials: Iterable[int] | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> ProcessingJob:
        validate_token_id(token_id)
        network_name(environment)
        schema = schema or self._cfg.schema
        concurrency = max(1, concurrency or self._cfg.concurrency)

        job = ProcessingJob(
            token_id=token_id,
            environment=environment,
            collection=collection,
            schema=schema,
            dry_run=dry_run,
            progress_callback=progress_callback,
            state_dir=self._cfg.progress_state_dir,
        )
        job.start()

        writer = self._writer_factory(
            schema, batch_size=self._cfg.write_batch_size, query_limit=self._cfg.query_limit
        )
        if known_serials is not None:
            skip = set(known_serials)
        else:
            skip = await writer.existing_serials(token_id)
        if resume and (state := self._progress.load(token_id)):
            resumed = {int(s) for s in state.get("processedSerials") or []}
            logger.info("Resuming %s: %d serials already processed", token_id, len(resumed))
            skip |= resumed
            job.mark_processed(resumed)

        ledger = self._ledger_factory(environment)
        info = await ledger.token_info(token_id)
        if not job.collection:
            # Destination rows require a collection; the token symbol names it by default.
            job.collection = (info.symbol if info is not None else None) or token_id
            logger.info("No collection given for %s; using %r", token_id, job.collection)
        if info is not None:
            job.set_actual_total(max(0, info.total_supply - len(skip)))
            logger.info(
                "Token %s (%s) declares supply %d; %d already stored",
                token_id,
                info.name,
                info.total_supply,
                len(skip),
            )

        sem = asyncio.Semaphore(concurrency)
        page_no = 0
        try:
            async for page in ledger.iter_nft_pages(token_id):
                page_no += 1
                pending = [n for n in page.nfts if not n.deleted and n.serial_number not in skip]
                logger.info(
                    "Page %d: %d records, %d to process", page_no, len(page.nfts), len(pending)
                )
                if not pending:
                    continue
                job.add_to_process(len(pending))

                async def worker(nft: NftRecord) -> NormalizedRecord | None:
                    async with sem:
                        return await self._process_serial(job, nft, environment=environment)

                results = await asyncio.gather(*[worker(n) for n in pending])
                records = [r for r in results if r is not None]
                await self._persist(job, writer, records, skip)
                skip.update(n.serial_number for n in pending)
                self._progress.save(token_id, job.to_dict())
        finally:
            if LOG_GATEWAY_STATS:
                for net in (StorageNetwork.IPFS, StorageNetwork.ARWEAVE, StorageNetwork.CONSENSUS_LOG):
                    if (selector := self._fetcher.selector(net)) is not None:
                        selector.log_stats()
            job.complete()

        if job.total_error_count == 0 and not dry_run:
            self._progress.clear(token_id)
        return job

    async def _persist(
        self,
        job: ProcessingJob,
        writer: SchemaWriter,
        records: list[NormalizedRecord],
        existing: set[int],
    ) -> None:
        if not records:
            return
        try:
            result = await writer.write_records(records, existing, dry_run=job.dry_run)
        except _WRITE_ERRORS as e:
            for r in records:
                job.record_error(
                    ErrorCategory.DATABASE_WRITE,
                    serial=r.serial_number,
                    cid=r.metadata_cid,
                    message=f"Batch write failed: {e}",
                    error=e,
                )
            return
        failed = set()
        for uid, serial, message in result.failures:
            failed.add(serial)
            job.record_error(ErrorCategory.DATABASE_WRITE, serial=serial, message=f"{uid}: {message}")
        job.mark_processed(r.serial_number for r in records if r.serial_number not in failed)

    async def _process_serial(
        self, job: ProcessingJob, nft: NftRecord, *, environment: str
    ) -> NormalizedRecord | None:
        serial = nft.serial_number
        try:
            return await self._process_serial_once(job, nft, environment=environment)
        except Exception as e:
            job.record_error(ErrorCategory.OTHER, serial=serial, error=e)
            return None
        finally:
            job.increment_completed()

    async def _process_serial_once(
        self, job: ProcessingJob, nft: NftRecord, *, environment: str
    ) -> NormalizedRecord | None:
        serial = nft.serial_number
        try:
            reference = decode_metadata_reference(nft.metadata)
        except ValueError as e:
            job.record_error(ErrorCategory.INVALID_CID, serial=serial, message=str(e))
            return None
        if not reference or classify(reference) is StorageNetwork.UNKNOWN:
            job.record_error(
                ErrorCategory.INVALID_CID,
                serial=serial,
                cid=reference or None,
                message=f"Unrecognised metadata reference {reference!r}",
            )
            return None

        result = await self._fetcher.fetch_content(reference, seed=serial)
        if not result.ok:
            job.record_error(
                ErrorCategory.GATEWAY_TIMEOUT if result.timed_out else ErrorCategory.FETCH_METADATA,
                serial=serial,
                cid=extract_identifier(reference),
                gateway=result.last_gateway,
                message=result.last_error or f"Could not load {reference}",
                retry_count=result.attempts,
            )
            return None
        if not isinstance(result.document, dict):
            job.record_error(
                ErrorCategory.OTHER,
                serial=serial,
                cid=extract_identifier(reference),
                message=f"Metadata is not a JSON object ({type(result.document).__name__})",
            )
            return None

        record = NormalizedRecord.from_document(
            token_id=job.token_id,
            serial_number=serial,
            metadata_reference=reference,
            document=result.document,
            collection=job.collection,
            environment=environment,
        )

        label = f"{job.token_id} - {job.collection} - {serial}"
        if result.reference is not None and result.reference.network in _PINNED_NETWORKS:
            await self._pin(
                job,
                result.reference.identifier,
                f"{label}-meta",
                category=ErrorCategory.PIN_METADATA,
                serial=serial,
            )

        image_ref = resolve(record.image_reference)
        if image_ref is not None and image_ref.network in _PINNED_NETWORKS:
            await self._pin(
                job,
                image_ref.identifier,
                f"{label}-img",
                category=ErrorCategory.PIN_IMAGE,
                serial=serial,
                is_image=True,
            )
        return record

    async def _pin(
        self,
        job: ProcessingJob,
        identifier: str,
        name: str,
        *,
        category: ErrorCategory,
        serial: int,
        is_image: bool = False,
    ) -> None:
        if not is_pinnable(identifier):
            job.record_error(
                ErrorCategory.INVALID_CID,
                serial=serial,
                cid=identifier,
                message=f"Invalid content identifier {identifier!r}",
            )
            return
        if await self._cache.has(identifier):
            return
        if not await self._pinning.pin(identifier, name, is_image=is_image):
            job.record_error(category, serial=serial, cid=identifier, message=f"Pin failed for {name}")
