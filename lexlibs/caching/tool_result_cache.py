"""
Cross-request cache for court search tool results.

Provides:
- Query-level caching of tool results in Redis (TTL-bound)
- Document id extraction from the various court tool result shapes

Reads and writes are last-writer-wins with no locking; every Redis error
degrades to a cache miss.
"""

import hashlib
import json
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

import structlog

logger = structlog.get_logger(__name__)

COURT_SEARCH_TOOLS: FrozenSet[str] = frozenset({
    "search_legal_precedents",
    "search_supreme_court_practice",
    "find_similar_fact_pattern_cases",
    "compare_practice_pro_contra",
    "get_case_documents_chain",
    "count_cases_by_party",
})

MAX_DOCS_PER_CALL = 10

_ID_FIELDS = ("doc_id", "document_id", "zakononline_id", "id")
_LIST_FIELDS = ("results", "similar_cases", "pro", "contra", "documents", "cases")


def is_court_search_tool(tool_name: str) -> bool:
    """Return True for tools whose results are cached and prefetched."""
    return tool_name in COURT_SEARCH_TOOLS


def unwrap_tool_payload(result: Any) -> Any:
    """Unwrap an MCP ``{"content": [{"type": "text", "text": ...}]}`` envelope.

    Returns the JSON decoded from the first text block that parses, or the
    original value when there is no envelope.
    """
    if isinstance(result, dict) and isinstance(result.get("content"), list):
        for block in result["content"]:
            if not isinstance(block, dict):
                continue
            if block.get("type") == "text" and isinstance(block.get("text"), str):
                try:
                    return json.loads(block["text"])
                except (TypeError, ValueError):
                    continue
    return result


def extract_doc_ids(result: Any, limit: int = MAX_DOCS_PER_CALL) -> List[str]:
    """
    Extract document ids from any court tool result shape.

    Args:
        result: Raw tool result (possibly MCP-wrapped)
        limit: Maximum number of ids to return

    Returns:
        Unique document ids in discovery order
    """
    ids: Dict[str, None] = {}

    def walk(items: Iterable[Any]) -> None:
        for item in items:
            if not isinstance(item, dict):
                continue
            for field in _ID_FIELDS:
                value = item.get(field)
                if value is not None:
                    ids[str(value)] = None

    data = unwrap_tool_payload(result)
    if not isinstance(data, dict):
        return []

    for field in _LIST_FIELDS:
        if isinstance(data.get(field), list):
            walk(data[field])
    if isinstance(data.get("source_case"), dict):
        walk([data["source_case"]])
    grouped = data.get("grouped_documents")
    if isinstance(grouped, dict):
        for group in grouped.values():
            if isinstance(group, list):
                walk(group)

    return list(ids)[:limit]


class ToolResultCache:
    """
    Redis-backed cache of court search tool results, shared across requests.

    Usage:
        cache = ToolResultCache(redis_client, ttl=1800)
        hit = await cache.get("search_legal_precedents", {"query": "..."})
        if hit is None:
            result = await registry.execute(...)
            await cache.set("search_legal_precedents", {"query": "..."}, result)
    """

    def __init__(self, redis_client, ttl: int = 1800):
        """
        Initialize the tool-result cache.

        Args:
            redis_client: Async Redis client (None disables the cache)
            ttl: Entry lifetime in seconds
        """
        self._redis = redis_client
        self.ttl = ttl

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    @staticmethod
    def cache_key(tool_name: str, arguments: Dict[str, Any]) -> str:
        """Build the Redis key for a tool invocation."""
        canonical = json.dumps(arguments, sort_keys=True, ensure_ascii=False, default=str)
        digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]
        return f"chat:search:{tool_name}:{digest}"

    async def get(self, tool_name: str, arguments: Dict[str, Any]) -> Optional[Any]:
        """Return the cached result for a court search call, or None on miss."""
        if not self.enabled or not is_court_search_tool(tool_name):
            return None
        try:
            raw = await self._redis.get(self.cache_key(tool_name, arguments))
            if raw is None:
                return None
            logger.info("Tool cache hit", tool=tool_name)
            return json.loads(raw)
        except Exception as e:
            logger.warning("Tool cache read failed", tool=tool_name, error=str(e))
            return None

    async def set(self, tool_name: str, arguments: Dict[str, Any], result: Any) -> None:
        """Store a successful court search result."""
        if not self.enabled or not is_court_search_tool(tool_name):
            return
        try:
            await self._redis.set(
                self.cache_key(tool_name, arguments),
                json.dumps(result, ensure_ascii=False, default=str),
                ex=self.ttl,
            )
            logger.debug("Tool result cached", tool=tool_name, ttl=self.ttl)
        except Exception as e:
            logger.warning("Tool cache write failed", tool=tool_name, error=str(e))
