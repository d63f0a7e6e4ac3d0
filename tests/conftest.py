"""Shared fixtures for the jobtrack unit tests."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest


@pytest.fixture
def mock_pool() -> tuple[MagicMock, AsyncMock]:
    """An asyncpg-like pool whose ``acquire()`` yields a mocked connection.

    Returns ``(pool, conn)``; configure ``conn.fetch``/``fetchrow``/
    ``fetchval``/``execute`` per test.
    """
    conn = AsyncMock()
    conn.execute = AsyncMock(return_value="UPDATE 1")
    pool = MagicMock()
    acquire_cm = MagicMock()
    acquire_cm.__aenter__ = AsyncMock(return_value=conn)
    acquire_cm.__aexit__ = AsyncMock(return_value=False)
    pool.acquire.return_value = acquire_cm
    return pool, conn
