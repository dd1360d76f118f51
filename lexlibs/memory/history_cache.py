"""
Per-conversation cache of older-history summaries.

A cached summary is valid only for the exact number of messages it covers;
any change in that count is a miss. The cache object is passed explicitly
to the orchestrator, and concurrent writers simply overwrite each other.
"""

from typing import Dict, Optional, Protocol

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger(__name__)


class HistorySummary(BaseModel):
    """Cached summary of the older part of a conversation."""

    conversation_id: str
    covered_message_count: int = Field(ge=0)
    summary_text: str


class HistorySummaryCache(Protocol):
    async def get(self, conversation_id: str, covered_message_count: int) -> Optional[HistorySummary]:
        ...

    async def set(self, summary: HistorySummary) -> None:
        ...


class InMemoryHistorySummaryCache:
    """Process-local cache, one entry per conversation."""

    def __init__(self) -> None:
        self._entries: Dict[str, HistorySummary] = {}

    async def get(self, conversation_id: str, covered_message_count: int) -> Optional[HistorySummary]:
        entry = self._entries.get(conversation_id)
        if entry is None or entry.covered_message_count != covered_message_count:
            return None
        return entry

    async def set(self, summary: HistorySummary) -> None:
        self._entries[summary.conversation_id] = summary


class RedisHistorySummaryCache:
    """
    Redis-backed summary cache shared by all workers.

    Usage:
        cache = RedisHistorySummaryCache(redis_client, ttl=86400)
        summary = await cache.get("conv-1", covered_message_count=6)
    """

    def __init__(self, redis_client, ttl: int = 86400):
        self._redis = redis_client
        self.ttl = ttl

    @staticmethod
    def _key(conversation_id: str) -> str:
        return f"chat:history_summary:{conversation_id}"

    async def get(self, conversation_id: str, covered_message_count: int) -> Optional[HistorySummary]:
        try:
            raw = await self._redis.get(self._key(conversation_id))
            if raw is None:
                return None
            summary = HistorySummary.model_validate_json(raw)
        except Exception as e:
            logger.warning("History summary read failed", conversation_id=conversation_id, error=str(e))
            return None

        if summary.covered_message_count != covered_message_count:
            logger.debug(
                "History summary stale",
                conversation_id=conversation_id,
                cached_count=summary.covered_message_count,
                requested_count=covered_message_count,
            )
            return None
        return summary

    async def set(self, summary: HistorySummary) -> None:
        try:
            await self._redis.set(self._key(summary.conversation_id), summary.model_dump_json(), ex=self.ttl)
        except Exception as e:
            logger.warning("History summary write failed", conversation_id=summary.conversation_id, error=str(e))
