"""Request-scoped data model for the chat orchestration core.

Everything here is produced once per request and treated as immutable;
only ``HistorySummary`` and ``CostRecord`` outlive the request, and both
are owned by external stores.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from lexlibs.memory.history_cache import HistorySummary  # noqa: F401

BudgetTier = Literal["quick", "standard", "deep"]
MessageRole = Literal["system", "user", "assistant", "tool"]

MESSAGE_OVERHEAD_CHARS = 20


class CancellationToken:
    """Cooperative cancellation flag shared by a request and its transport."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class HistoryTurn(BaseModel):
    """One prior conversation turn supplied by the client."""

    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    """An accepted chat request. Immutable once constructed."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    query: str = Field(min_length=1, description="User question")
    history: List[HistoryTurn] = Field(default_factory=list, description="Ordered prior turns")
    budget: BudgetTier = Field(default="standard", description="Requested budget tier")
    conversation_id: Optional[str] = Field(default=None)
    user_id: Optional[str] = Field(default=None)
    request_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    cancellation: CancellationToken = Field(default_factory=CancellationToken, exclude=True)

    @field_validator("query")
    @classmethod
    def validate_query(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("query must not be blank")
        return v


class ToolDefinition(BaseModel):
    """A research tool as advertised by the tool registry."""

    name: str
    description: str = ""
    input_schema: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


class ToolCall(BaseModel):
    """A tool invocation requested by the model."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ToolOutcome(BaseModel):
    """Result of executing one ToolCall: a result or a captured error."""

    call: ToolCall
    result: Any = None
    error: Optional[str] = None
    cached: bool = False
    duration_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def payload(self) -> Any:
        """The value reported to the client and fed to the compactor."""
        if self.error is not None:
            return {"error": self.error}
        return self.result


class Message(BaseModel):
    """One entry of the model conversation state."""

    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str = ""
    tool_calls: Optional[List[ToolCall]] = None
    tool_call_id: Optional[str] = None

    @property
    def size(self) -> int:
        """Character size used for budget accounting (content plus framing)."""
        extra = 0
        if self.tool_calls:
            extra = sum(len(c.name) + len(str(c.arguments)) for c in self.tool_calls)
        return len(self.content) + extra + MESSAGE_OVERHEAD_CHARS


class Classification(BaseModel):
    """Intent classification of a query. Produced once per request."""

    model_config = ConfigDict(frozen=True)

    domains: List[str] = Field(min_length=1, description="Sorted, unique domain names")
    keywords: str = ""
    slots: Dict[str, str] = Field(default_factory=dict)

    @field_validator("domains")
    @classmethod
    def normalize_domains(cls, v: List[str]) -> List[str]:
        return sorted(set(v))

    @property
    def case_number(self) -> Optional[str]:
        return self.slots.get("case_number")


class PlanStep(BaseModel):
    """One step of an execution plan."""

    model_config = ConfigDict(frozen=True)

    id: int
    tool: str = Field(min_length=1)
    params: Dict[str, Any] = Field(default_factory=dict)
    purpose: str = Field(min_length=1)
    depends_on: List[int] = Field(default_factory=list)


MAX_PLAN_STEPS = 5


class ExecutionPlan(BaseModel):
    """Ordered, dependency-annotated list of intended tool calls."""

    model_config = ConfigDict(frozen=True)

    goal: str = Field(min_length=1)
    steps: List[PlanStep] = Field(min_length=1, max_length=MAX_PLAN_STEPS)
    expected_iterations: int = Field(default=1, ge=1)

    def describe(self) -> str:
        """Render the plan for inclusion in the instructions message."""
        lines = [f"Execution plan. Goal: {self.goal}"]
        for step in self.steps:
            deps = f" (after {', '.join(str(d) for d in step.depends_on)})" if step.depends_on else ""
            lines.append(f"{step.id}. {step.tool}{deps}: {step.purpose}")
        return "\n".join(lines)


class Usage(BaseModel):
    """Token usage reported by one LLM call."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
        )


class CostRecord(BaseModel):
    """Append-only cost ledger entry."""

    request_id: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost_usd: float = 0.0
    task: str
    status: Literal["ok", "failed"] = "ok"
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ModelSelection(BaseModel):
    """Provider and model used for the main completion stream."""

    model_config = ConfigDict(frozen=True)

    provider: str
    model: str
