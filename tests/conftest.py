"""Shared test fixtures for the nft-static-data test suite."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest


@pytest.fixture
def mock_conn() -> AsyncMock:
    """Connection double: every CID is absent and every insert creates a row."""
    conn = AsyncMock()
    conn.fetchval.return_value = False
    conn.fetch.return_value = []
    conn.execute.return_value = "INSERT 0 1"
    conn.transaction = MagicMock()
    return conn


@pytest.fixture
def fake_pool(mock_conn):
    """Patch the connection pool so db.connection() yields ``mock_conn``."""
    pool = MagicMock()
    pool.acquire.return_value.__aenter__.return_value = mock_conn
    with patch("nft_static_data.db.get_pool", AsyncMock(return_value=pool)):
        yield pool
