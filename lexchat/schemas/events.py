"""Client-facing chat events.

A ``ChatEvent`` is a tagged variant: ``type`` names the variant and
``data`` is the matching payload model. Events are the only thing that
crosses the request boundary incrementally.
"""

from __future__ import annotations

import json
from typing import Any, ClassVar, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from lexchat.schemas.chat import ExecutionPlan

EventType = Literal[
    "plan",
    "thinking",
    "tool_result",
    "answer_delta",
    "answer",
    "citation_warning",
    "complete",
    "error",
]

TERMINAL_EVENT_TYPES = frozenset({"complete", "error"})


class EventPayload(BaseModel):
    event_type: ClassVar[str]


class PlanStepPayload(BaseModel):
    id: int
    tool: str
    params: Dict[str, Any] = Field(default_factory=dict)
    purpose: str
    depends_on: Optional[List[int]] = None


class PlanPayload(EventPayload):
    event_type: ClassVar[str] = "plan"

    goal: str
    steps: List[PlanStepPayload]
    expected_iterations: int

    @classmethod
    def from_plan(cls, plan: ExecutionPlan) -> "PlanPayload":
        return cls(
            goal=plan.goal,
            steps=[
                PlanStepPayload(
                    id=s.id,
                    tool=s.tool,
                    params=s.params,
                    purpose=s.purpose,
                    depends_on=s.depends_on or None,
                )
                for s in plan.steps
            ],
            expected_iterations=plan.expected_iterations,
        )


class ThinkingPayload(EventPayload):
    event_type: ClassVar[str] = "thinking"

    step: int
    tool: str
    params: Dict[str, Any] = Field(default_factory=dict)
    description: Optional[str] = None
    cost_usd: Optional[float] = None


class ToolResultPayload(EventPayload):
    event_type: ClassVar[str] = "tool_result"

    tool: str
    result: Any = None
    cost_usd: Optional[float] = None
    cached: bool = False


class AnswerDeltaPayload(EventPayload):
    event_type: ClassVar[str] = "answer_delta"

    text: str


class AnswerPayload(EventPayload):
    event_type: ClassVar[str] = "answer"

    text: str
    provider: str
    model: str


class CitationWarningPayload(EventPayload):
    event_type: ClassVar[str] = "citation_warning"

    case_number: str
    status: Literal["explicitly_overruled", "limited"]
    confidence: float
    affecting_decisions: List[Dict[str, Any]] = Field(default_factory=list)
    message: str


class CompletePayload(EventPayload):
    event_type: ClassVar[str] = "complete"

    iterations: int
    elapsed_ms: int
    tools_used: List[str] = Field(default_factory=list)
    total_cost_usd: float = 0.0


class ErrorPayload(EventPayload):
    event_type: ClassVar[str] = "error"

    message: str


class ChatEvent(BaseModel):
    """One streamed event."""

    type: EventType
    data: EventPayload

    @classmethod
    def of(cls, payload: EventPayload) -> "ChatEvent":
        return cls(type=payload.event_type, data=payload)

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENT_TYPES

    def payload_dict(self) -> Dict[str, Any]:
        return self.data.model_dump(mode="json", exclude_none=True)

    def to_sse(self) -> str:
        """Frame the event for a ``text/event-stream`` response."""
        body = json.dumps(self.payload_dict(), ensure_ascii=False, default=str)
        return f"event: {self.type}\ndata: {body}\n\n"
