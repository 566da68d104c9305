"""Data access for cid_records: identifiers known to be pinned or present.

All methods take an open connection (see db.connection()).
"""

from __future__ import annotations

import logging

import asyncpg

logger = logging.getLogger(__name__)


class CidRecordStore:
    """Stateless data-access object for the cid_records table."""

    async def exists(self, conn: asyncpg.Connection, cid: str) -> bool:
        found = await conn.fetchval(
            "SELECT EXISTS (SELECT 1 FROM cid_records WHERE cid = $1)",
            cid,
        )
        return bool(found)

    async def insert(self, conn: asyncpg.Connection, cid: str) -> bool:
        """Insert ``cid`` if missing. Returns True when a row was created."""
        status = await conn.execute(
            """
            INSERT INTO cid_records (cid, pin_confirmed, created_at)
            VALUES ($1, FALSE, NOW())
            ON CONFLICT (cid) DO NOTHING
            """,
            cid,
        )
        return status.endswith(" 1")

    async def mark_confirmed(self, conn: asyncpg.Connection, cid: str) -> None:
        await conn.execute(
            """
            INSERT INTO cid_records (cid, pin_confirmed, created_at)
            VALUES ($1, TRUE, NOW())
            ON CONFLICT (cid) DO UPDATE SET pin_confirmed = TRUE
            """,
            cid,
        )

    async def fetch_page(
        self, conn: asyncpg.Connection, *, after: str | None, limit: int
    ) -> list[str]:
        """Keyset page of identifiers ordered by cid, strictly after ``after``."""
        rows = await conn.fetch(
            """
            SELECT cid FROM cid_records
            WHERE ($1::text IS NULL OR cid > $1)
            ORDER BY cid
            LIMIT $2
            """,
            after,
            limit,
        )
        return [r["cid"] for r in rows]

    async def fetch_unconfirmed(
        self, conn: asyncpg.Connection, *, after: str | None, limit: int
    ) -> list[str]:
        rows = await conn.fetch(
            """
            SELECT cid FROM cid_records
            WHERE pin_confirmed = FALSE
              AND ($1::text IS NULL OR cid > $1)
            ORDER BY cid
            LIMIT $2
            """,
            after,
            limit,
        )
        return [r["cid"] for r in rows]
