"""Similarity re-ranking of tool results that no longer fit the budget.

When accumulated tool output grows too large, each result is embedded from
a short prefix and scored against the query. The most relevant results are
kept in full; the rest collapse to a one-line relevance/size note, so the
best evidence survives intact instead of everything being cut evenly.
"""

import asyncio
from typing import Dict, List, Optional, Sequence

import numpy as np
import structlog

from lexchat.budget import BudgetProfile
from lexchat.schemas.chat import Message
from lexchat.tools.compactor import fit
from lexchat.tools.embeddings import EmbeddingService

logger = structlog.get_logger(__name__)

PREFIX_CHARS = 1000
MIN_RESULTS = 3
OMITTED_PREFIX = "[Result omitted:"


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; 0.0 when either is all zeros."""
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.dot(va, vb) / denom)


def tool_names_by_call_id(messages: Sequence[Message]) -> Dict[str, str]:
    names: Dict[str, str] = {}
    for message in messages:
        for call in message.tool_calls or []:
            names[call.id] = call.name
    return names


class RagReranker:
    """
    Keeps the most query-similar tool results in full.

    One instance per request; the query embedding is computed once.

    Usage:
        reranker = RagReranker(embedder, budget, query)
        if reranker.should_rerank(messages):
            messages = await reranker.rerank(messages)
    """

    def __init__(
        self,
        embedder: Optional[EmbeddingService],
        budget: BudgetProfile,
        query: str,
        trigger_ratio: float = 1.5,
    ):
        self.embedder = embedder
        self.budget = budget
        self.query = query
        self.trigger_ratio = trigger_ratio
        self._query_vector: Optional[List[float]] = None

    @property
    def keep_budget(self) -> int:
        """Characters of tool output kept after re-ranking; never above the trigger."""
        return min(self.budget.max_result_chars, int(self.trigger_ratio * self.budget.max_result_chars))

    def should_rerank(self, messages: Sequence[Message]) -> bool:
        tool_messages = [m for m in messages if m.role == "tool"]
        if len(tool_messages) < MIN_RESULTS:
            return False
        total = sum(len(m.content) for m in tool_messages if not m.content.startswith(OMITTED_PREFIX))
        return total > self.trigger_ratio * self.budget.max_result_chars

    async def _query_embedding(self) -> List[float]:
        if self._query_vector is None:
            self._query_vector = await self.embedder.embed(self.query)
        return self._query_vector

    async def rerank(self, messages: Sequence[Message]) -> List[Message]:
        """
        Rebuild the message list with low-relevance tool results summarized.

        Args:
            messages: Current conversation state

        Returns:
            New message list; non-tool messages are untouched
        """
        indices = [
            i for i, m in enumerate(messages)
            if m.role == "tool" and not m.content.startswith(OMITTED_PREFIX)
        ]
        if not indices:
            return list(messages)

        names = tool_names_by_call_id(messages)
        if self.embedder is None:
            return self._truncate_evenly(messages, indices)

        try:
            query_vector = await self._query_embedding()
            vectors = await asyncio.gather(
                *(self.embedder.embed(messages[i].content[:PREFIX_CHARS]) for i in indices)
            )
        except Exception as e:
            logger.warning("Re-ranking embeddings failed, truncating evenly", error=str(e))
            return self._truncate_evenly(messages, indices)

        scores = {i: cosine_similarity(query_vector, v) for i, v in zip(indices, vectors)}
        ranked = sorted(indices, key=lambda i: scores[i], reverse=True)

        rebuilt = list(messages)
        remaining = self.keep_budget
        exhausted = False
        kept = 0
        for rank, i in enumerate(ranked):
            message = messages[i]
            size = len(message.content)
            if not exhausted and size <= remaining:
                remaining -= size
                kept += 1
                continue
            if rank == 0:
                # The single most relevant result is cut, never dropped.
                rebuilt[i] = message.model_copy(update={"content": fit(message.content, remaining)})
                kept += 1
                exhausted = True
                continue
            exhausted = True
            tool = names.get(message.tool_call_id or "", "tool")
            note = f"{OMITTED_PREFIX} relevance {scores[i]:.2f}, {size} chars, {tool}]"
            rebuilt[i] = message.model_copy(update={"content": note})

        logger.info(
            "Tool results re-ranked",
            results=len(indices),
            kept_in_full=kept,
            summarized=len(indices) - kept,
            top_score=round(scores[ranked[0]], 4),
        )
        return rebuilt

    def _truncate_evenly(self, messages: Sequence[Message], indices: List[int]) -> List[Message]:
        share = max(self.keep_budget // len(indices), 1)
        rebuilt = list(messages)
        for i in indices:
            rebuilt[i] = messages[i].model_copy(update={"content": fit(messages[i].content, share)})
        return rebuilt
