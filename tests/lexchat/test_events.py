"""Tests for chat event framing."""

import json

from lexchat.schemas.chat import ExecutionPlan, PlanStep
from lexchat.schemas.events import (
    AnswerDeltaPayload,
    ChatEvent,
    CompletePayload,
    ErrorPayload,
    PlanPayload,
    ThinkingPayload,
)


def test_to_sse_frames_event_and_payload():
    event = ChatEvent.of(AnswerDeltaPayload(text="Стаття 625"))
    frame = event.to_sse()

    assert frame.startswith("event: answer_delta\ndata: ")
    assert frame.endswith("\n\n")
    assert "Стаття 625" in frame
    assert json.loads(frame.split("data: ", 1)[1]) == {"text": "Стаття 625"}


def test_payload_omits_unset_optionals():
    event = ChatEvent.of(ThinkingPayload(step=1, tool="search_legal_precedents"))

    assert event.payload_dict() == {"step": 1, "tool": "search_legal_precedents", "params": {}}


def test_terminal_events():
    assert ChatEvent.of(CompletePayload(iterations=1, elapsed_ms=5)).is_terminal
    assert ChatEvent.of(ErrorPayload(message="x")).is_terminal
    assert not ChatEvent.of(AnswerDeltaPayload(text="x")).is_terminal


def test_plan_payload_from_plan():
    plan = ExecutionPlan(
        goal="Find lease practice",
        steps=[
            PlanStep(id=1, tool="search_legal_precedents", purpose="precedents"),
            PlanStep(id=2, tool="get_legislation_section", purpose="statute", depends_on=[1]),
        ],
        expected_iterations=2,
    )

    data = ChatEvent.of(PlanPayload.from_plan(plan)).payload_dict()

    assert data["goal"] == "Find lease practice"
    assert data["expected_iterations"] == 2
    assert "depends_on" not in data["steps"][0]
    assert data["steps"][1]["depends_on"] == [1]
