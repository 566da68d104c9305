"""Process-wide memo of content identifiers known to be present.

The database (cid_records) is authoritative. This map only short-circuits
repeat lookups: an identifier is marked present only after the database
confirmed it or it was recorded there in this run. The local snapshot is a
best-effort warm start and may be stale.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

import asyncpg

from nft_static_data.config import DB_QUERY_LIMIT
from nft_static_data.db import connection
from nft_static_data.stores.cid_store import CidRecordStore

logger = logging.getLogger(__name__)

_LOOKUP_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


class CidExistenceCache:
    def __init__(
        self,
        *,
        store: CidRecordStore | None = None,
        snapshot_path: str | os.PathLike[str] | None = None,
    ) -> None:
        self._store = store or CidRecordStore()
        self._snapshot_path = Path(snapshot_path) if snapshot_path else None
        self._known: dict[str, bool] = {}

    def __len__(self) -> int:
        return len(self._known)

    def peek(self, cid: str) -> bool | None:
        """Memoized answer without touching the database."""
        return self._known.get(cid)

    async def has(self, cid: str | None) -> bool:
        if not cid:
            return False
        cached = self._known.get(cid)
        if cached is not None:
            return cached
        try:
            async with connection() as conn:
                present = await self._store.exists(conn, cid)
        except _LOOKUP_ERRORS:
            # Unknown is treated as absent (a redundant pin is harmless) and not memoized.
            logger.warning("CID existence check failed for %s; treating as absent", cid, exc_info=True)
            return False
        self._known[cid] = present
        return present

    def mark_present(self, cid: str) -> None:
        self._known[cid] = True

    async def record(self, cid: str) -> bool:
        """Write ``cid`` through to the database once, then mark it present.

        Returns True when a new row was created.
        """
        if self._known.get(cid):
            return False
        async with connection() as conn:
            created = await self._store.insert(conn, cid)
        self._known[cid] = True
        if created:
            logger.debug("Recorded CID %s", cid)
        return created

    async def confirm(self, cid: str) -> None:
        async with connection() as conn:
            await self._store.mark_confirmed(conn, cid)
        self._known[cid] = True

    async def preload(self, *, page_size: int = DB_QUERY_LIMIT) -> int:
        """Merge every identifier in the database into the map.

        Returns the number of distinct identifiers seen. Re-running only
        overwrites existing keys.
        """
        seen = 0
        after: str | None = None
        async with connection() as conn:
            while True:
                page = await self._store.fetch_page(conn, after=after, limit=page_size)
                if not page:
                    break
                for cid in page:
                    self._known[cid] = True
                seen += len(page)
                after = page[-1]
                if len(page) < page_size:
                    break
        logger.info("Preloaded %d CIDs (cache size %d)", seen, len(self._known))
        return seen

    def persist(self) -> bool:
        if self._snapshot_path is None:
            return False
        try:
            self._snapshot_path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._snapshot_path.with_suffix(self._snapshot_path.suffix + ".tmp")
            tmp.write_text(json.dumps([[cid, flag] for cid, flag in self._known.items()]))
            os.replace(tmp, self._snapshot_path)
        except OSError:
            logger.warning("Could not persist CID cache to %s", self._snapshot_path, exc_info=True)
            return False
        logger.info("Persisted %d CIDs to %s", len(self._known), self._snapshot_path)
        return True

    def restore(self) -> int:
        if self._snapshot_path is None:
            return 0
        try:
            pairs = json.loads(self._snapshot_path.read_text())
            restored = {str(cid): bool(flag) for cid, flag in pairs}
        except FileNotFoundError:
            return 0
        except (OSError, ValueError, TypeError):
            logger.warning(
                "CID cache snapshot %s unreadable; starting empty", self._snapshot_path, exc_info=True
            )
            self._known = {}
            return 0
        self._known.update(restored)
        logger.info("Restored %d CIDs from %s", len(restored), self._snapshot_path)
        return len(restored)
