"""
Conversation memory for the chat core.

Provides:
- History summary caching (in-process and Redis-backed)
"""

from lexlibs.memory.history_cache import (
    HistorySummary,
    HistorySummaryCache,
    InMemoryHistorySummaryCache,
    RedisHistorySummaryCache,
)

__all__ = [
    "HistorySummary",
    "HistorySummaryCache",
    "InMemoryHistorySummaryCache",
    "RedisHistorySummaryCache",
]
