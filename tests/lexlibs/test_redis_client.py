"""Tests for Redis client construction."""

from unittest.mock import AsyncMock, patch

import pytest
import redis.asyncio as redis

from lexlibs.caching.redis_client import close_redis_client, create_redis_client


@pytest.mark.asyncio
async def test_fake_client_in_test_mode():
    client = await create_redis_client(None, use_fake=True)

    assert client is not None
    await client.set("k", "v")
    assert await client.get("k") == "v"
    await close_redis_client(client)


@pytest.mark.asyncio
async def test_missing_url_disables_caching():
    assert await create_redis_client(None) is None
    assert await create_redis_client("") is None


@pytest.mark.asyncio
async def test_connection_failure_returns_none():
    client = AsyncMock()
    client.ping.side_effect = redis.ConnectionError("refused")

    with patch("lexlibs.caching.redis_client.redis.from_url", return_value=client):
        assert await create_redis_client("redis://:secret@localhost:6379/0") is None


@pytest.mark.asyncio
async def test_close_ignores_none_and_errors():
    await close_redis_client(None)

    client = AsyncMock()
    client.aclose.side_effect = RuntimeError("already closed")
    await close_redis_client(client)
