"""Per-tier budget limits and tier escalation."""

from __future__ import annotations

from typing import Dict, Optional

import structlog
from pydantic import BaseModel, ConfigDict

from lexchat.schemas.chat import BudgetTier, Classification, ExecutionPlan

logger = structlog.get_logger(__name__)

TIER_ORDER = ("quick", "standard", "deep")

ESCALATION_MIN_PLAN_STEPS = 3
ESCALATION_MIN_QUERY_CHARS = 100


class BudgetProfile(BaseModel):
    """Size and iteration limits for one budget tier."""

    model_config = ConfigDict(frozen=True)

    tier: BudgetTier
    max_result_chars: int
    max_context_chars: int
    max_output_tokens: int
    max_tool_calls: int
    excerpt_chars: int

    @property
    def section_chars(self) -> int:
        """Cap for each named section of a compacted decision."""
        return self.excerpt_chars * 2


BUDGETS: Dict[str, BudgetProfile] = {
    "quick": BudgetProfile(
        tier="quick",
        max_result_chars=4000,
        max_context_chars=24000,
        max_output_tokens=2048,
        max_tool_calls=3,
        excerpt_chars=300,
    ),
    "standard": BudgetProfile(
        tier="standard",
        max_result_chars=8000,
        max_context_chars=48000,
        max_output_tokens=4096,
        max_tool_calls=5,
        excerpt_chars=600,
    ),
    "deep": BudgetProfile(
        tier="deep",
        max_result_chars=16000,
        max_context_chars=96000,
        max_output_tokens=8192,
        max_tool_calls=10,
        excerpt_chars=1200,
    ),
}


def get_budget(tier: str) -> BudgetProfile:
    """Return the profile for a tier, defaulting to standard."""
    return BUDGETS.get(tier, BUDGETS["standard"])


def escalate_tier(
    tier: BudgetTier,
    query: str,
    classification: Optional[Classification],
    plan: Optional[ExecutionPlan],
) -> BudgetTier:
    """
    Raise the effective tier for requests that need more room.

    A plan with at least three steps, or a case number paired with a long
    query, moves the request to ``deep``. The tier is never lowered.

    Args:
        tier: Requested tier
        query: Raw query text
        classification: Intent classification (may be None)
        plan: Generated plan (may be None)

    Returns:
        Effective tier for this request
    """
    reason = None
    if plan is not None and len(plan.steps) >= ESCALATION_MIN_PLAN_STEPS:
        reason = "multi_step_plan"
    elif (
        classification is not None
        and classification.case_number
        and len(query) > ESCALATION_MIN_QUERY_CHARS
    ):
        reason = "case_number_long_query"

    if reason is None or TIER_ORDER.index(tier) >= TIER_ORDER.index("deep"):
        return tier

    logger.info("Budget tier escalated", requested=tier, effective="deep", reason=reason)
    return "deep"
