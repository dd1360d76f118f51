"""
Context window assembly under a character budget.

Priority order: instructions and plan (never truncated), a bounded
compression of history older than the recent window, recent turns verbatim
up to a per-message cap, and the current query.
"""

from typing import List, Optional

import structlog
from pydantic import BaseModel

from lexchat.budget import BudgetProfile
from lexchat.composer.history import CompressedHistory, HistoryCompressor
from lexchat.errors import BudgetConfigurationError
from lexchat.schemas.chat import MESSAGE_OVERHEAD_CHARS, ExecutionPlan, HistoryTurn, Message
from lexchat.tools.compactor import fit

logger = structlog.get_logger(__name__)

RECENT_TURNS = 4
# Query characters that must survive truncation.
MIN_QUERY_CHARS = 200


class ContextWindow(BaseModel):
    messages: List[Message]
    total_chars: int
    older_history: Optional[CompressedHistory] = None
    dropped_turns: int = 0


def total_size(messages: List[Message]) -> int:
    return sum(m.size for m in messages)


class ContextWindowBuilder:
    """
    Builds the initial message sequence for one request.

    Usage:
        builder = ContextWindowBuilder(get_budget("standard"), compressor)
        window = await builder.build(query, history, CHAT_SYSTEM_PROMPT, plan=plan)
    """

    def __init__(self, budget: BudgetProfile, compressor: HistoryCompressor):
        self.budget = budget
        self.compressor = compressor

    @property
    def per_message_cap(self) -> int:
        return self.budget.max_context_chars // 8

    @property
    def older_history_cap(self) -> int:
        return self.budget.max_context_chars // 6

    def instructions_message(self, instructions: str, plan: Optional[ExecutionPlan]) -> Message:
        content = instructions if plan is None else f"{instructions}\n\n{plan.describe()}"
        return Message(role="system", content=content)

    async def build(
        self,
        query: str,
        history: List[HistoryTurn],
        instructions: str,
        plan: Optional[ExecutionPlan] = None,
        conversation_id: Optional[str] = None,
    ) -> ContextWindow:
        """
        Assemble messages whose total size never exceeds ``max_context_chars``.

        Raises:
            BudgetConfigurationError: If instructions, plan and the framed query do not fit
        """
        limit = self.budget.max_context_chars
        system = self.instructions_message(instructions, plan)
        mandatory = system.size + MESSAGE_OVERHEAD_CHARS + min(len(query), MIN_QUERY_CHARS)
        if mandatory > limit:
            raise BudgetConfigurationError(
                f"Instructions, plan and query need {mandatory} chars but the "
                f"{self.budget.tier} tier allows {limit}; raise the tier"
            )

        remaining = limit - system.size
        query_content = query
        if len(query) + MESSAGE_OVERHEAD_CHARS > remaining:
            query_content = fit(query, remaining - MESSAGE_OVERHEAD_CHARS)
            logger.warning("Query truncated to fit context budget", original_chars=len(query), limit=limit)
        query_message = Message(role="user", content=query_content)
        remaining -= query_message.size

        recent = history[-RECENT_TURNS:] if RECENT_TURNS else []
        older = history[: len(history) - len(recent)]

        older_history: Optional[CompressedHistory] = None
        older_messages: List[Message] = []
        older_budget = min(self.older_history_cap, remaining) - MESSAGE_OVERHEAD_CHARS
        if older and older_budget > 0:
            older_history = await self.compressor.compress(older, conversation_id, older_budget)
            if older_history is not None:
                older_messages.append(Message(role="system", content=older_history.text))
                remaining -= older_messages[0].size

        recent_messages: List[Message] = []
        dropped = 0
        for turn in reversed(recent):
            content = fit(turn.content, self.per_message_cap)
            size = len(content) + MESSAGE_OVERHEAD_CHARS
            if size > remaining:
                dropped += 1
                continue
            recent_messages.insert(0, Message(role=turn.role, content=content))
            remaining -= size

        messages = [system, *older_messages, *recent_messages, query_message]
        window = ContextWindow(
            messages=messages,
            total_chars=total_size(messages),
            older_history=older_history,
            dropped_turns=dropped,
        )

        logger.debug(
            "Context window built",
            tier=self.budget.tier,
            total_chars=window.total_chars,
            limit=limit,
            history_turns=len(history),
            older_turns=len(older),
            dropped_turns=dropped,
        )
        return window
