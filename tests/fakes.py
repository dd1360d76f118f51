"""Fakes for the collaborators the chat orchestrator consumes."""

import json
from typing import Any, Callable, Dict, List, Optional, Union

from lexchat.llm.client import Completion, StreamChunk
from lexchat.schemas.chat import Message, ModelSelection, ToolCall, ToolDefinition, Usage

DEFAULT_CLASSIFICATION = json.dumps({"domains": ["court"], "keywords": "test query", "slots": {}})


def text_turn(*fragments: str, prompt_tokens: int = 100, completion_tokens: int = 20) -> List[StreamChunk]:
    """A streamed completion that answers without tools."""
    chunks = [StreamChunk(type="text_delta", text=f) for f in fragments]
    chunks.append(StreamChunk(type="usage", usage=Usage(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)))
    chunks.append(StreamChunk(type="done", finish_reason="stop"))
    return chunks


def tool_turn(*calls: ToolCall) -> List[StreamChunk]:
    """A streamed completion that requests tool calls."""
    return [
        StreamChunk(type="tool_call_delta"),
        StreamChunk(type="usage", usage=Usage(prompt_tokens=100, completion_tokens=10)),
        StreamChunk(type="done", finish_reason="tool_calls", tool_calls=list(calls)),
    ]


def call(name: str, call_id: str, **arguments: Any) -> ToolCall:
    return ToolCall(id=call_id, name=name, arguments=arguments)


class ScriptedLLM:
    """
    LLM fake: each ``stream`` call consumes the next scripted turn.

    A turn is a list of chunks or an exception to raise. Fast completions
    are answered per task from ``responses`` (text, exception or callable).
    """

    provider = "openai"

    def __init__(
        self,
        turns: Optional[List[Union[List[StreamChunk], Exception]]] = None,
        responses: Optional[Dict[str, Any]] = None,
    ):
        self.turns = list(turns or [])
        self.responses = {"intent_classification": DEFAULT_CLASSIFICATION, "plan_generation": "{}"}
        self.responses.update(responses or {})
        self.stream_calls: List[Dict[str, Any]] = []
        self.complete_calls: List[Dict[str, Any]] = []

    def select_model(self, tier: str) -> ModelSelection:
        return ModelSelection(provider=self.provider, model="gpt-4o-mini" if tier == "quick" else "gpt-4o")

    async def stream(self, messages: List[Message], tools, *, model: str, max_tokens: int, temperature: float = 0.3):
        self.stream_calls.append(
            {"messages": list(messages), "tools": tools, "model": model, "max_tokens": max_tokens}
        )
        turn = self.turns.pop(0) if self.turns else text_turn("Final answer.")
        if isinstance(turn, Exception):
            raise turn
        for chunk in turn:
            yield chunk

    async def complete(self, system: str, user: str, *, max_tokens: int, json_mode: bool = True, task: str = "completion"):
        self.complete_calls.append({"system": system, "user": user, "task": task})
        response = self.responses.get(task, "{}")
        if isinstance(response, Exception):
            raise response
        if callable(response):
            response = response(user)
        return Completion(text=response, model="gpt-4o-mini", usage=Usage(prompt_tokens=50, completion_tokens=10))

    def tasks(self) -> List[str]:
        return [c["task"] for c in self.complete_calls]


class DictToolRegistry:
    """Tool registry fake backed by a name -> handler mapping."""

    def __init__(self, handlers: Dict[str, Union[Callable, Any]], schemas: Optional[Dict[str, Dict[str, Any]]] = None):
        self.handlers = handlers
        self.schemas = schemas or {}
        self.calls: List[Dict[str, Any]] = []

    def list_definitions(self) -> List[ToolDefinition]:
        definitions = []
        for name in self.handlers:
            definition = ToolDefinition(name=name, description=f"{name} tool")
            if name in self.schemas:
                definition.input_schema = self.schemas[name]
            definitions.append(definition)
        return definitions

    async def execute(self, name: str, arguments: Dict[str, Any]) -> Any:
        self.calls.append({"name": name, "arguments": arguments})
        handler = self.handlers[name]
        if isinstance(handler, Exception):
            raise handler
        if callable(handler):
            result = handler(arguments)
            if hasattr(result, "__await__"):
                result = await result
            return result
        return handler


class KeywordEmbedder:
    """Deterministic embedder: one dimension per keyword plus a bias term."""

    def __init__(self, keywords=("relevant",), fail: bool = False):
        self.keywords = keywords
        self.fail = fail
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail:
            raise RuntimeError("embedding service down")
        lowered = text.lower()
        return [float(lowered.count(k)) for k in self.keywords] + [0.1]
