"""Tests for cost accounting and the background work queue."""

import asyncio

import pytest

from lexchat.observability.background import BackgroundTaskQueue
from lexchat.observability.costs import CostRecorder, compute_cost
from lexchat.schemas.chat import Usage
from lexchat.services.collaborators import InMemoryCostLedger


def test_compute_cost_known_models():
    usage = Usage(prompt_tokens=1_000_000, completion_tokens=1_000_000)

    assert compute_cost("gpt-4o", usage) == pytest.approx(12.50)
    assert compute_cost("gpt-4o-mini", usage) == pytest.approx(0.75)
    assert compute_cost("claude-sonnet-4-5", usage) == pytest.approx(18.0)


def test_dated_snapshot_uses_base_price():
    usage = Usage(prompt_tokens=1_000_000)
    assert compute_cost("gpt-4o-mini-2024-07-18", usage) == pytest.approx(0.15)
    assert compute_cost("gpt-4o-2024-08-06", usage) == pytest.approx(2.50)


def test_unknown_model_costs_nothing():
    assert compute_cost("mystery-model", Usage(prompt_tokens=10, completion_tokens=10)) == 0.0


@pytest.mark.asyncio
async def test_recorder_accumulates_and_writes_in_background():
    ledger = InMemoryCostLedger()
    queue = BackgroundTaskQueue(maxsize=10, workers=1)
    recorder = CostRecorder(ledger, queue)

    first = recorder.record_usage("req-1", "gpt-4o", Usage(prompt_tokens=1000, completion_tokens=100), "chat_completion")
    recorder.record_usage("req-1", "gpt-4o-mini", Usage(prompt_tokens=1000), "intent_classification")
    recorder.record_failure("req-1", "gpt-4o", "chat_completion")
    await queue.stop()

    assert first == pytest.approx(0.0035)
    assert recorder.total_for("req-1") == pytest.approx(0.0035 + 0.00015)
    assert [e.task for e in ledger.entries] == ["chat_completion", "intent_classification", "chat_completion"]
    assert ledger.entries[-1].status == "failed"
    assert recorder.release("req-1") > 0
    assert recorder.total_for("req-1") == 0.0


@pytest.mark.asyncio
async def test_queue_runs_jobs_and_survives_failures():
    queue = BackgroundTaskQueue(maxsize=10, workers=2)
    done = []

    async def ok():
        done.append("ok")

    async def boom():
        raise RuntimeError("ledger offline")

    assert queue.submit("boom", boom)
    assert queue.submit("ok", ok)
    await queue.join()

    assert done == ["ok"]
    assert queue.failed == 1
    await queue.stop()
    assert not queue.running


@pytest.mark.asyncio
async def test_queue_drops_when_full():
    queue = BackgroundTaskQueue(maxsize=1, workers=1)
    gate = asyncio.Event()

    async def blocked():
        await gate.wait()

    queue.submit("first", blocked)
    await asyncio.sleep(0)  # worker picks up the first job
    assert queue.submit("second", blocked)
    assert not queue.submit("third", blocked)
    assert queue.dropped == 1

    gate.set()
    await queue.stop()
