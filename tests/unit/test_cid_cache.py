"""Unit tests for CidExistenceCache: patched pool, no database."""

from __future__ import annotations

import json

import asyncpg
import pytest

from nft_static_data.pinning.cid_cache import CidExistenceCache

CID = "QmYwAPJzv5CZsnA625s3Xf2nemtYgPpHdWEz79ojWnPbdG"


@pytest.fixture
def cache(fake_pool, tmp_path) -> CidExistenceCache:
    return CidExistenceCache(snapshot_path=tmp_path / "cid-cache.json")


class TestHas:
    async def test_absent_then_marked_present_without_second_lookup(self, cache, mock_conn):
        assert await cache.has(CID) is False
        assert mock_conn.fetchval.await_count == 1

        cache.mark_present(CID)

        assert await cache.has(CID) is True
        assert mock_conn.fetchval.await_count == 1

    async def test_present_answer_is_memoized(self, cache, mock_conn):
        mock_conn.fetchval.return_value = True
        assert await cache.has(CID)
        assert await cache.has(CID)
        assert mock_conn.fetchval.await_count == 1

    async def test_lookup_error_is_absent_and_not_memoized(self, cache, mock_conn):
        mock_conn.fetchval.side_effect = asyncpg.InterfaceError("pool closed")
        assert await cache.has(CID) is False
        assert cache.peek(CID) is None

    async def test_empty_identifier(self, cache, mock_conn):
        assert await cache.has("") is False
        mock_conn.fetchval.assert_not_awaited()


class TestRecord:
    async def test_writes_through_once(self, cache, mock_conn):
        assert await cache.record(CID) is True
        assert await cache.record(CID) is False
        assert mock_conn.execute.await_count == 1
        assert cache.peek(CID) is True

    async def test_existing_row_is_not_created(self, cache, mock_conn):
        mock_conn.execute.return_value = "INSERT 0 0"
        assert await cache.record(CID) is False
        assert cache.peek(CID) is True

    async def test_confirm_upserts(self, cache, mock_conn):
        await cache.confirm(CID)
        sql = mock_conn.execute.await_args.args[0]
        assert "pin_confirmed = TRUE" in sql
        assert cache.peek(CID) is True


class TestPreload:
    async def test_preload_is_idempotent(self, cache, mock_conn):
        pages = [["Qm1", "Qm2"], ["Qm3"]]
        mock_conn.fetch.side_effect = lambda *a: [{"cid": c} for c in pages[0 if a[1] is None else 1]]

        await cache.preload(page_size=2)
        size = len(cache)
        await cache.preload(page_size=2)

        assert size == 3
        assert len(cache) == size

    async def test_keyset_pagination(self, cache, mock_conn):
        mock_conn.fetch.side_effect = [[{"cid": "Qm1"}, {"cid": "Qm2"}], []]
        assert await cache.preload(page_size=2) == 2
        assert mock_conn.fetch.await_args_list[1].args[1] == "Qm2"


class TestSnapshot:
    async def test_persist_and_restore(self, fake_pool, tmp_path):
        path = tmp_path / "state" / "cid-cache.json"
        first = CidExistenceCache(snapshot_path=path)
        first.mark_present(CID)
        assert first.persist()
        assert json.loads(path.read_text()) == [[CID, True]]

        second = CidExistenceCache(snapshot_path=path)
        assert second.restore() == 1
        assert await second.has(CID)

    def test_missing_snapshot(self, cache):
        assert cache.restore() == 0

    def test_corrupt_snapshot_starts_empty(self, tmp_path):
        path = tmp_path / "cid-cache.json"
        path.write_text("{not json")
        cache = CidExistenceCache(snapshot_path=path)
        assert cache.restore() == 0
        assert len(cache) == 0

    def test_no_path_is_a_noop(self):
        cache = CidExistenceCache()
        assert cache.persist() is False
        assert cache.restore() == 0
