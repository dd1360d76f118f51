"""Execution planning for multi-tool research requests."""

from typing import Any, Callable, Dict, List, Optional

import structlog
from langsmith import traceable
from pydantic import ValidationError

from lexchat.composer.prompts import PLAN_SYSTEM_PROMPT, build_plan_prompt
from lexchat.errors import PlanningError
from lexchat.llm.client import Completion, LLMCompletionService, extract_json_object
from lexchat.schemas.chat import MAX_PLAN_STEPS, Classification, ExecutionPlan, ToolDefinition

logger = structlog.get_logger(__name__)

CompletionCallback = Callable[[Completion, str], None]


def parse_plan(data: Dict[str, Any], available: List[str]) -> Optional[ExecutionPlan]:
    """
    Validate a raw plan object against the available tools.

    Steps beyond the fifth are dropped before validation. A step that names
    an unavailable tool, or lacks a tool or purpose, invalidates the plan.

    Returns:
        ExecutionPlan, or None for an empty object (no tools needed)

    Raises:
        PlanningError: If the plan is malformed
    """
    if not data:
        return None

    goal = data.get("goal")
    steps = data.get("steps")
    if not isinstance(goal, str) or not goal.strip():
        raise PlanningError("plan has no goal")
    if not isinstance(steps, list) or not steps:
        raise PlanningError("plan has no steps")

    steps = steps[:MAX_PLAN_STEPS]
    for index, step in enumerate(steps, start=1):
        if not isinstance(step, dict):
            raise PlanningError(f"step {index} is not an object")
        tool = step.get("tool")
        if not tool or not step.get("purpose"):
            raise PlanningError(f"step {index} lacks tool or purpose")
        if tool not in available:
            raise PlanningError(f"step {index} uses unavailable tool {tool}")
        step.setdefault("id", index)
        if not isinstance(step.get("params"), dict):
            step["params"] = {}

    try:
        expected = int(data.get("expected_iterations") or len(steps))
    except (TypeError, ValueError):
        expected = len(steps)

    try:
        return ExecutionPlan(goal=goal.strip(), steps=steps, expected_iterations=max(1, expected))
    except ValidationError as e:
        raise PlanningError(str(e)) from e


class PlanGenerator:
    """Asks the fast model for a short, dependency-annotated tool plan."""

    def __init__(self, llm: LLMCompletionService, max_tokens: int = 800):
        self.llm = llm
        self.max_tokens = max_tokens

    @traceable(run_type="chain", name="plan_generator", tags=["planning"])
    async def plan(
        self,
        query: str,
        classification: Classification,
        tools: List[ToolDefinition],
        on_completion: Optional[CompletionCallback] = None,
    ) -> Optional[ExecutionPlan]:
        """Return a validated plan, or None when planning fails or is not needed."""
        if not tools:
            return None

        try:
            completion = await self.llm.complete(
                PLAN_SYSTEM_PROMPT,
                build_plan_prompt(query, classification, tools),
                max_tokens=self.max_tokens,
                json_mode=True,
                task="plan_generation",
            )
            if on_completion is not None:
                on_completion(completion, "plan_generation")
            plan = parse_plan(extract_json_object(completion.text), [t.name for t in tools])
        except Exception as e:
            logger.warning("Plan generation failed, continuing without plan", error=str(e))
            return None

        if plan is None:
            logger.info("Planner returned no steps")
        else:
            logger.info("Plan generated", steps=len(plan.steps), tools=[s.tool for s in plan.steps])
        return plan
