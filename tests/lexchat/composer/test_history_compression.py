"""Tests for older-history compression and its summary cache."""

import pytest

from lexchat.composer.history import HistoryCompressor
from lexchat.composer.prompts import OLDER_HISTORY_MARKER, SUMMARY_MARKER
from lexchat.schemas.chat import HistoryTurn
from lexlibs.memory.history_cache import HistorySummary, InMemoryHistorySummaryCache

from tests.fakes import ScriptedLLM

SUMMARY = "User asked about case 910/1234/23; art. 625 ЦК applies; open question on interest."


def _turns(n, size=500):
    return [HistoryTurn(role="user" if i % 2 == 0 else "assistant", content=f"{i}:" + "w" * size) for i in range(n)]


@pytest.mark.asyncio
async def test_small_history_is_kept_verbatim():
    llm = ScriptedLLM()
    compressor = HistoryCompressor(llm, InMemoryHistorySummaryCache())

    result = await compressor.compress(_turns(2, size=10), "conv-1", char_limit=1000)

    assert result.text.startswith(OLDER_HISTORY_MARKER)
    assert not result.summarized
    assert llm.complete_calls == []


@pytest.mark.asyncio
async def test_cache_hit_makes_no_second_llm_call():
    llm = ScriptedLLM(responses={"history_summary": SUMMARY})
    cache = InMemoryHistorySummaryCache()
    compressor = HistoryCompressor(llm, cache)
    turns = _turns(8)

    first = await compressor.compress(turns, "conv-1", char_limit=2000)
    second = await compressor.compress(turns, "conv-1", char_limit=2000)

    assert llm.tasks() == ["history_summary"]
    assert first.summarized and not first.cache_hit
    assert second.cache_hit
    assert second.text == first.text == f"{SUMMARY_MARKER}\n{SUMMARY}"


@pytest.mark.asyncio
async def test_changed_message_count_recomputes():
    llm = ScriptedLLM(responses={"history_summary": SUMMARY})
    compressor = HistoryCompressor(llm, InMemoryHistorySummaryCache())

    await compressor.compress(_turns(8), "conv-1", char_limit=2000)
    await compressor.compress(_turns(10), "conv-1", char_limit=2000)

    assert llm.tasks() == ["history_summary", "history_summary"]


@pytest.mark.asyncio
async def test_without_conversation_id_nothing_is_cached():
    llm = ScriptedLLM(responses={"history_summary": SUMMARY})
    cache = InMemoryHistorySummaryCache()
    compressor = HistoryCompressor(llm, cache)

    await compressor.compress(_turns(8), None, char_limit=2000)
    await compressor.compress(_turns(8), None, char_limit=2000)

    assert len(llm.tasks()) == 2


@pytest.mark.asyncio
async def test_prepopulated_cache_is_used():
    llm = ScriptedLLM()
    cache = InMemoryHistorySummaryCache()
    await cache.set(HistorySummary(conversation_id="conv-9", covered_message_count=8, summary_text="cached"))

    result = await HistoryCompressor(llm, cache).compress(_turns(8), "conv-9", char_limit=2000)

    assert result.cache_hit
    assert result.text.endswith("cached")
    assert llm.complete_calls == []


@pytest.mark.asyncio
async def test_summarizer_failure_falls_back_to_truncation():
    llm = ScriptedLLM(responses={"history_summary": RuntimeError("rate limited")})

    result = await HistoryCompressor(llm).compress(_turns(8), "conv-1", char_limit=1500)

    assert not result.summarized
    assert len(result.text) <= 1500
    assert "truncated" in result.text
