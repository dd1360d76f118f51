"""Tests for history summary caches."""

import pytest

from lexlibs.memory.history_cache import HistorySummary, InMemoryHistorySummaryCache, RedisHistorySummaryCache


@pytest.mark.asyncio
async def test_redis_cache_hit_requires_matching_count(redis_client):
    cache = RedisHistorySummaryCache(redis_client, ttl=120)
    await cache.set(HistorySummary(conversation_id="c1", covered_message_count=6, summary_text="Lease dispute."))

    hit = await cache.get("c1", 6)
    assert hit is not None
    assert hit.summary_text == "Lease dispute."

    assert await cache.get("c1", 8) is None
    assert await cache.get("other", 6) is None


@pytest.mark.asyncio
async def test_redis_cache_corrupt_entry_is_miss(redis_client):
    await redis_client.set("chat:history_summary:c1", "{not json")

    assert await RedisHistorySummaryCache(redis_client).get("c1", 6) is None


@pytest.mark.asyncio
async def test_in_memory_cache_overwrites():
    cache = InMemoryHistorySummaryCache()
    await cache.set(HistorySummary(conversation_id="c1", covered_message_count=4, summary_text="old"))
    await cache.set(HistorySummary(conversation_id="c1", covered_message_count=6, summary_text="new"))

    assert await cache.get("c1", 4) is None
    assert (await cache.get("c1", 6)).summary_text == "new"
