"""Per-request LLM cost accounting."""

from collections import defaultdict
from typing import Dict, Optional

import structlog

from lexchat.observability.background import BackgroundTaskQueue
from lexchat.schemas.chat import CostRecord, Usage
from lexchat.services.collaborators import CostLedger

logger = structlog.get_logger(__name__)

# USD per 1M tokens: (prompt, completion)
PRICING: Dict[str, tuple] = {
    "gpt-4o": (2.50, 10.00),
    "gpt-4o-mini": (0.15, 0.60),
    "claude-sonnet-4-5": (3.00, 15.00),
    "claude-haiku-4-5": (1.00, 5.00),
}


def compute_cost(model: str, usage: Usage) -> float:
    """Cost of one call in USD. Unknown models cost nothing (and are logged)."""
    prices = PRICING.get(model)
    if prices is None:
        # dated snapshots such as gpt-4o-2024-08-06
        prices = next(
            (p for name, p in sorted(PRICING.items(), key=lambda kv: -len(kv[0])) if model.startswith(name)),
            None,
        )
    if prices is None:
        logger.warning("No pricing for model", model=model)
        return 0.0
    prompt_price, completion_price = prices
    return (usage.prompt_tokens * prompt_price + usage.completion_tokens * completion_price) / 1_000_000


class CostRecorder:
    """
    Accumulates per-request cost and writes ledger entries in the background.

    Ledger writes go through the background queue so they never delay the
    response stream.
    """

    def __init__(self, ledger: Optional[CostLedger], queue: Optional[BackgroundTaskQueue]):
        self.ledger = ledger
        self.queue = queue
        self._totals: Dict[str, float] = defaultdict(float)

    def record_usage(self, request_id: str, model: str, usage: Usage, task: str) -> float:
        """Record one successful call and return its cost in USD."""
        cost = compute_cost(model, usage)
        self._totals[request_id] += cost
        self._write(
            CostRecord(
                request_id=request_id,
                model=model,
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
                cost_usd=cost,
                task=task,
            )
        )
        return cost

    def record_failure(self, request_id: str, model: str, task: str) -> None:
        self._write(CostRecord(request_id=request_id, model=model, task=task, status="failed"))

    def total_for(self, request_id: str) -> float:
        return self._totals.get(request_id, 0.0)

    def release(self, request_id: str) -> float:
        """Forget a finished request and return its total."""
        return self._totals.pop(request_id, 0.0)

    def _write(self, entry: CostRecord) -> None:
        if self.ledger is None or self.queue is None:
            return
        ledger = self.ledger

        async def job() -> None:
            await ledger.record(entry)

        self.queue.submit(f"cost:{entry.task}", job)
