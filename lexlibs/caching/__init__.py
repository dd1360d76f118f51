"""
Caching utilities for the chat orchestration core.

This module provides:
- Redis client construction
- Cross-request tool-result caching for court search tools
"""

from lexlibs.caching.redis_client import create_redis_client
from lexlibs.caching.tool_result_cache import ToolResultCache

__all__ = ["create_redis_client", "ToolResultCache"]
