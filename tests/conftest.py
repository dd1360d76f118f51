"""
Pytest configuration and fixtures for the chat core tests.

Provides shared fixtures for:
- Test settings
- Mock Redis client (fakeredis)
- A clean environment

Collaborator fakes live in ``tests/fakes.py``.
"""

import pytest

from lexlibs.common.settings import Settings


@pytest.fixture
def settings():
    return Settings(app_env="test", citation_timeout_seconds=0.5, tool_timeout_seconds=2.0)


@pytest.fixture
async def redis_client():
    """
    Provide fakeredis client for testing.

    This avoids requiring actual Redis server during tests.
    """
    from fakeredis import aioredis as fakeredis

    client = fakeredis.FakeRedis(decode_responses=True)

    yield client

    await client.flushdb()
    await client.aclose()


@pytest.fixture(autouse=True)
def setup_test_env(monkeypatch):
    """Keep tests independent of the developer's environment."""
    monkeypatch.setenv("LEXCHAT_APP_ENV", "test")
    monkeypatch.delenv("LEXCHAT_REDIS_URL", raising=False)
    monkeypatch.delenv("LANGCHAIN_TRACING_V2", raising=False)
    monkeypatch.delenv("LANGSMITH_TRACING", raising=False)
