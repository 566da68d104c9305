"""Schema-aware persistence of normalized records.

``MetadataStore`` issues the SQL for one table layout on a supplied connection;
``SchemaWriter`` owns batching, the one-by-one fallback for failed batches, and
connection handling.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

import asyncpg

from nft_static_data.config import DB_QUERY_LIMIT, DB_WRITE_BATCH_SIZE
from nft_static_data.db import connection
from nft_static_data.processing.types import NormalizedRecord
from nft_static_data.stores.schemas import RecordSchema, SchemaAdapter

logger = logging.getLogger(__name__)


_WRITE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


def _q(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


class MetadataStore:
    """Stateless data-access object for one destination table."""

    def __init__(self, adapter: SchemaAdapter) -> None:
        self.adapter = adapter
        self._table = _q(adapter.table_name)
        self._token = _q(adapter.token_field)
        self._serial = _q(adapter.serial_field)

    async def fetch_serials_after(
        self, conn: asyncpg.Connection, *, token_id: str, after: int, limit: int
    ) -> list[int]:
        rows = await conn.fetch(
            f"""
            SELECT {self._serial} AS serial FROM {self._table}
            WHERE {self._token} = $1 AND {self._serial} > $2
            ORDER BY {self._serial}
            LIMIT $3
            """,
            token_id,
            after,
            limit,
        )
        return [int(r["serial"]) for r in rows]

    async def insert_many(self, conn: asyncpg.Connection, rows: Sequence[dict[str, Any]]) -> int:
        """Insert all rows in one transaction; existing uids are left untouched."""
        if not rows:
            return 0
        columns = self.adapter.columns
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
        sql = (
            f"INSERT INTO {self._table} ({', '.join(_q(c) for c in columns)}) "
            f"VALUES ({placeholders}) ON CONFLICT (uid) DO NOTHING"
        )
        async with conn.transaction():
            await conn.executemany(sql, [tuple(row.get(c) for c in columns) for row in rows])
        return len(rows)

    async def fetch_by_serials(
        self, conn: asyncpg.Connection, *, token_id: str, serials: Sequence[int]
    ) -> list[dict[str, Any]]:
        rows = await conn.fetch(
            f"SELECT * FROM {self._table} WHERE {self._token} = $1 AND {self._serial} = ANY($2::int[])",
            token_id,
            list(serials),
        )
        return [dict(r) for r in rows]

    async def delete_token(self, conn: asyncpg.Connection, *, token_id: str) -> str:
        return await conn.execute(
            f"DELETE FROM {self._table} WHERE {self._token} = $1",
            token_id,
        )

    async def update_enrichment(
        self, conn: asyncpg.Connection, *, uid: str, downloaded: bool, fully_enriched: bool
    ) -> None:
        await conn.execute(
            f"""
            UPDATE {self._table}
            SET downloaded_to_file = $2, fully_enriched = $3
            WHERE uid = $1
            """,
            uid,
            downloaded,
            fully_enriched,
        )


@dataclass
class WriteResult:
    written: int = 0
    skipped: int = 0
    dry_run: bool = False
    failures: list[tuple[str, int, str]] = field(default_factory=list)  # (uid, serial, message)


class SchemaWriter:
    def __init__(
        self,
        schema: str | RecordSchema,
        *,
        store: MetadataStore | None = None,
        batch_size: int = DB_WRITE_BATCH_SIZE,
        query_limit: int = DB_QUERY_LIMIT,
    ) -> None:
        self.adapter = SchemaAdapter(schema)
        self._store = store or MetadataStore(self.adapter)
        self._batch_size = max(1, batch_size)
        self._query_limit = max(1, query_limit)

    @property
    def table_name(self) -> str:
        return self.adapter.table_name

    async def existing_serials(self, token_id: str) -> set[int]:
        serials: set[int] = set()
        after = 0
        async with connection() as conn:
            while True:
                page = await self._store.fetch_serials_after(
                    conn, token_id=token_id, after=after, limit=self._query_limit
                )
                if not page:
                    break
                serials.update(page)
                after = max(page)
        logger.info("Found %d existing serials for %s in %s", len(serials), token_id, self.table_name)
        return serials

    async def write_records(
        self,
        records: Iterable[NormalizedRecord],
        existing_serials: Collection[int] = (),
        *,
        dry_run: bool = False,
    ) -> WriteResult:
        records = list(records)
        to_write = [r for r in records if r.serial_number not in existing_serials]
        result = WriteResult(skipped=len(records) - len(to_write))
        if not to_write:
            return result

        if dry_run:
            logger.info("[DRY-RUN] would write %d rows to %s", len(to_write), self.table_name)
            result.dry_run = True
            return result

        rows = [self.adapter.to_row(r) for r in to_write]
        for row in rows:
            if problems := self.adapter.validate(row):
                logger.warning("Row %s fails schema checks: %s", row["uid"], "; ".join(problems))

        batches = [rows[i : i + self._batch_size] for i in range(0, len(rows), self._batch_size)]
        async with connection() as conn:
            for idx, batch in enumerate(batches, start=1):
                try:
                    result.written += await self._store.insert_many(conn, batch)
                    logger.info("Batch %d/%d: %d rows written to %s", idx, len(batches), len(batch), self.table_name)
                except _WRITE_ERRORS as e:
                    logger.warning(
                        "Batch %d/%d failed (%s); retrying rows individually", idx, len(batches), e
                    )
                    await self._write_individually(conn, batch, result)

        logger.info("Total written: %d rows to %s", result.written, self.table_name)
        return result

    async def _write_individually(
        self, conn: asyncpg.Connection, batch: list[dict[str, Any]], result: WriteResult
    ) -> None:
        serial_field = self.adapter.serial_field
        for row in batch:
            try:
                result.written += await self._store.insert_many(conn, [row])
            except _WRITE_ERRORS as e:
                logger.error("Failed to write %s: %s", row["uid"], e)
                result.failures.append((row["uid"], int(row[serial_field]), f"{type(e).__name__}: {e}"))

    async def fetch_records(self, token_id: str, serials: Sequence[int]) -> list[NormalizedRecord]:
        async with connection() as conn:
            rows = await self._store.fetch_by_serials(conn, token_id=token_id, serials=serials)
        return [self.adapter.from_row(r) for r in rows]

    async def delete_token(self, token_id: str) -> None:
        logger.info("Deleting %s from %s", token_id, self.table_name)
        async with connection() as conn:
            await self._store.delete_token(conn, token_id=token_id)

    async def update_enrichment_status(
        self, uid: str, *, downloaded: bool = False, fully_enriched: bool = False
    ) -> bool:
        if self.adapter.schema is not RecordSchema.SECURE_TRADE_METADATA:
            logger.warning("Enrichment status only applies to %s", RecordSchema.SECURE_TRADE_METADATA.value)
            return False
        async with connection() as conn:
            await self._store.update_enrichment(
                conn, uid=uid, downloaded=downloaded, fully_enriched=fully_enriched
            )
        return True
