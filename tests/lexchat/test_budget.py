"""Tests for budget tiers and tier escalation."""

import pytest

from lexchat.budget import BUDGETS, TIER_ORDER, escalate_tier, get_budget
from lexchat.schemas.chat import Classification, ExecutionPlan, PlanStep

FIELDS = ("max_result_chars", "max_context_chars", "max_output_tokens", "max_tool_calls", "excerpt_chars")


def _plan(steps: int) -> ExecutionPlan:
    return ExecutionPlan(
        goal="Research the dispute",
        steps=[PlanStep(id=i, tool="search_legal_precedents", purpose="find cases") for i in range(1, steps + 1)],
    )


@pytest.mark.parametrize("field", FIELDS)
def test_budget_fields_monotonic_across_tiers(field):
    values = [getattr(BUDGETS[tier], field) for tier in TIER_ORDER]
    assert values == sorted(values)


def test_standard_and_deep_limits():
    assert get_budget("standard").max_tool_calls == 5
    assert get_budget("deep").max_tool_calls == 10
    assert get_budget("deep").section_chars == 2400


def test_unknown_tier_defaults_to_standard():
    assert get_budget("unlimited") is BUDGETS["standard"]


def test_four_step_plan_escalates_standard_to_deep():
    classification = Classification(domains=["court"])
    tier = escalate_tier("standard", "short query", classification, _plan(4))

    assert tier == "deep"
    assert get_budget(tier).max_tool_calls == 10
    # The static table is untouched for other requests
    assert get_budget("standard").max_tool_calls == 5


def test_two_step_plan_does_not_escalate():
    assert escalate_tier("standard", "short query", Classification(domains=["court"]), _plan(2)) == "standard"


def test_case_number_with_long_query_escalates():
    classification = Classification(domains=["court"], slots={"case_number": "910/1234/23"})
    long_query = "Analyse the full procedural history of case 910/1234/23 " + "and its appeals " * 5

    assert len(long_query) > 100
    assert escalate_tier("quick", long_query, classification, None) == "deep"
    assert escalate_tier("quick", "status of 910/1234/23", classification, None) == "quick"


def test_escalation_never_lowers_tier():
    assert escalate_tier("deep", "q", Classification(domains=["court"]), _plan(1)) == "deep"
