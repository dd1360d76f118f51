"""Tests for context window assembly."""

import pytest

from lexchat.budget import BudgetProfile, get_budget
from lexchat.composer.context import MIN_QUERY_CHARS, ContextWindowBuilder, total_size
from lexchat.composer.history import HistoryCompressor
from lexchat.composer.prompts import CHAT_SYSTEM_PROMPT, OLDER_HISTORY_MARKER, SUMMARY_MARKER
from lexchat.errors import BudgetConfigurationError
from lexchat.schemas.chat import ExecutionPlan, HistoryTurn, PlanStep

from tests.fakes import ScriptedLLM


def _history(n, size=200):
    roles = ("user", "assistant")
    return [HistoryTurn(role=roles[i % 2], content=f"turn {i} " + "x" * size) for i in range(n)]


@pytest.fixture
def llm():
    return ScriptedLLM(responses={"history_summary": "Discussed case 910/1234/23 and art. 16 ЦК."})


@pytest.mark.asyncio
async def test_no_history_gives_system_and_query(llm):
    builder = ContextWindowBuilder(get_budget("standard"), HistoryCompressor(llm))

    window = await builder.build("What is the limitation period?", [], CHAT_SYSTEM_PROMPT)

    assert [m.role for m in window.messages] == ["system", "user"]
    assert window.messages[-1].content == "What is the limitation period?"


@pytest.mark.asyncio
async def test_plan_is_part_of_instructions(llm):
    plan = ExecutionPlan(goal="Find practice", steps=[PlanStep(id=1, tool="search_legal_precedents", purpose="search")])
    builder = ContextWindowBuilder(get_budget("standard"), HistoryCompressor(llm))

    window = await builder.build("q", [], CHAT_SYSTEM_PROMPT, plan=plan)

    assert "Goal: Find practice" in window.messages[0].content


@pytest.mark.asyncio
@pytest.mark.parametrize("tier", ["quick", "standard", "deep"])
@pytest.mark.parametrize("turns", [0, 1, 4, 5, 12, 60])
async def test_context_never_exceeds_budget(llm, tier, turns):
    budget = get_budget(tier)
    builder = ContextWindowBuilder(budget, HistoryCompressor(llm))

    window = await builder.build("query", _history(turns, size=3000), CHAT_SYSTEM_PROMPT, conversation_id="c1")

    assert window.total_chars == total_size(window.messages)
    assert window.total_chars <= budget.max_context_chars


@pytest.mark.asyncio
async def test_turn_larger_than_budget_is_never_verbatim(llm):
    budget = get_budget("quick")
    huge = "y" * (budget.max_context_chars * 2)
    history = [HistoryTurn(role="user", content=huge), HistoryTurn(role="assistant", content="ok")]
    builder = ContextWindowBuilder(budget, HistoryCompressor(llm))

    window = await builder.build("follow-up", history, CHAT_SYSTEM_PROMPT)

    assert window.total_chars <= budget.max_context_chars
    assert all(m.content != huge for m in window.messages)
    assert all(len(m.content) <= builder.per_message_cap for m in window.messages[1:-1])


@pytest.mark.asyncio
async def test_huge_older_turn_is_summarized(llm):
    budget = get_budget("quick")
    history = [HistoryTurn(role="user", content="z" * budget.max_context_chars * 3)] + _history(4, size=50)
    builder = ContextWindowBuilder(budget, HistoryCompressor(llm))

    window = await builder.build("follow-up", history, CHAT_SYSTEM_PROMPT, conversation_id="c1")

    assert window.older_history is not None and window.older_history.summarized
    assert window.messages[1].content.startswith(SUMMARY_MARKER)
    assert window.total_chars <= budget.max_context_chars


@pytest.mark.asyncio
async def test_small_older_history_is_verbatim(llm):
    builder = ContextWindowBuilder(get_budget("standard"), HistoryCompressor(llm))

    window = await builder.build("q", _history(6, size=20), CHAT_SYSTEM_PROMPT)

    assert window.messages[1].content.startswith(OLDER_HISTORY_MARKER)
    assert "turn 0" in window.messages[1].content
    assert llm.complete_calls == []
    assert [m.role for m in window.messages[2:6]] == ["user", "assistant", "user", "assistant"]


@pytest.mark.asyncio
async def test_oversized_instructions_are_a_configuration_error(llm):
    budget = get_budget("quick")
    builder = ContextWindowBuilder(budget, HistoryCompressor(llm))

    with pytest.raises(BudgetConfigurationError):
        await builder.build("q", [], "i" * (budget.max_context_chars + 1))


def _small_budget(max_context_chars=1000):
    return BudgetProfile(
        tier="quick",
        max_result_chars=500,
        max_context_chars=max_context_chars,
        max_output_tokens=256,
        max_tool_calls=1,
        excerpt_chars=50,
    )


@pytest.mark.asyncio
async def test_instructions_leaving_no_room_for_query_are_a_configuration_error(llm):
    builder = ContextWindowBuilder(_small_budget(), HistoryCompressor(llm))

    with pytest.raises(BudgetConfigurationError):
        await builder.build("What is the limitation period for a loan claim?", [], "i" * 975)


@pytest.mark.asyncio
async def test_query_truncated_near_boundary_stays_within_budget(llm):
    budget = _small_budget()
    builder = ContextWindowBuilder(budget, HistoryCompressor(llm))
    instructions = "i" * 600

    window = await builder.build("q" * 1000, _history(3, size=100), instructions)

    assert window.total_chars <= budget.max_context_chars
    query = window.messages[-1].content
    assert len(query) >= MIN_QUERY_CHARS
    assert "…[truncated" in query


@pytest.mark.asyncio
async def test_short_query_needs_only_its_own_length(llm):
    budget = _small_budget()
    builder = ContextWindowBuilder(budget, HistoryCompressor(llm))

    window = await builder.build("q", [], "i" * 900)

    assert window.messages[-1].content == "q"
    assert window.total_chars <= budget.max_context_chars
