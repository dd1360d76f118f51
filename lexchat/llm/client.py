"""
LLM completion service contract and the OpenAI adapter built on LangChain.

The orchestration loop consumes a stream of ``StreamChunk`` values:
text fragments, tool-call deltas, a usage report and a final ``done``
chunk carrying the finish reason and the fully assembled tool calls.
Fast sub-calls (classification, planning, summaries) use ``complete``.
"""

import json
import re
import uuid
from typing import Any, AsyncIterator, Dict, List, Literal, Optional, Protocol

import openai
import structlog
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_openai import ChatOpenAI
from pydantic import BaseModel, Field
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from lexchat.errors import ProviderError
from lexchat.schemas.chat import Message, ModelSelection, ToolCall, ToolDefinition, Usage
from lexlibs.common.settings import Settings

logger = structlog.get_logger(__name__)

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*\})\s*```", re.DOTALL)
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)

# Transient failures worth another attempt; auth and bad requests are not.
_RETRYABLE_ERRORS = (
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


class StreamChunk(BaseModel):
    """One item of a streaming completion."""

    type: Literal["text_delta", "tool_call_delta", "usage", "done"]
    text: Optional[str] = None
    usage: Optional[Usage] = None
    finish_reason: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None


class Completion(BaseModel):
    """Result of a non-streaming completion."""

    text: str
    model: str
    usage: Usage = Field(default_factory=Usage)


class LLMCompletionService(Protocol):
    """Contract the orchestration core needs from an LLM provider."""

    def select_model(self, tier: str) -> ModelSelection:
        ...

    def stream(
        self,
        messages: List[Message],
        tools: Optional[List[ToolDefinition]],
        *,
        model: str,
        max_tokens: int,
        temperature: float = 0.3,
    ) -> AsyncIterator[StreamChunk]:
        ...

    async def complete(
        self,
        system: str,
        user: str,
        *,
        max_tokens: int,
        json_mode: bool = True,
        task: str = "completion",
    ) -> Completion:
        ...


def extract_json_object(text: str) -> Dict[str, Any]:
    """
    Parse a JSON object out of model output, tolerating surrounding text.

    Args:
        text: Raw model output (may contain markdown fences or prose)

    Returns:
        Parsed JSON object

    Raises:
        ValueError: If no JSON object can be parsed
    """
    content = text.strip()
    fenced = _FENCED_JSON.search(content)
    if fenced:
        content = fenced.group(1)
    else:
        bare = _JSON_OBJECT.search(content)
        if bare:
            content = bare.group(0)

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in model output: {e}") from e

    if not isinstance(data, dict):
        raise ValueError("Model output is not a JSON object")
    return data


def to_langchain_messages(messages: List[Message]) -> List[BaseMessage]:
    """Convert conversation state into LangChain message objects."""
    converted: List[BaseMessage] = []
    for message in messages:
        if message.role == "system":
            converted.append(SystemMessage(content=message.content))
        elif message.role == "user":
            converted.append(HumanMessage(content=message.content))
        elif message.role == "assistant":
            tool_calls = [
                {"name": c.name, "args": c.arguments, "id": c.id, "type": "tool_call"}
                for c in message.tool_calls or []
            ]
            converted.append(AIMessage(content=message.content, tool_calls=tool_calls))
        else:
            converted.append(ToolMessage(content=message.content, tool_call_id=message.tool_call_id or ""))
    return converted


def to_openai_tools(definitions: List[ToolDefinition]) -> List[Dict[str, Any]]:
    """Convert registry definitions into OpenAI function-calling format."""
    return [
        {
            "type": "function",
            "function": {
                "name": d.name,
                "description": d.description,
                "parameters": d.input_schema or {"type": "object", "properties": {}},
            },
        }
        for d in definitions
    ]


def _provider_error(error: Exception, provider: str) -> ProviderError:
    return ProviderError(
        str(error) or type(error).__name__,
        provider=provider,
        retryable=isinstance(error, _RETRYABLE_ERRORS),
    )


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, ProviderError) and error.retryable


def _usage_from(message: Any) -> Usage:
    metadata = getattr(message, "usage_metadata", None) or {}
    return Usage(
        prompt_tokens=int(metadata.get("input_tokens", 0) or 0),
        completion_tokens=int(metadata.get("output_tokens", 0) or 0),
    )


class LangChainCompletionService:
    """
    OpenAI chat completions through ``langchain_openai.ChatOpenAI``.

    Usage:
        llm = LangChainCompletionService(settings)
        async for chunk in llm.stream(messages, tools, model="gpt-4o", max_tokens=4096):
            ...
    """

    provider = "openai"

    def __init__(self, settings: Settings, request_timeout: float = 60.0):
        self.settings = settings
        self.request_timeout = request_timeout

    def select_model(self, tier: str) -> ModelSelection:
        return ModelSelection(provider=self.provider, model=self.settings.chat_model_for(tier))

    def _chat_model(self, model: str, max_tokens: int, temperature: float, streaming: bool) -> ChatOpenAI:
        return ChatOpenAI(
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=self.request_timeout,
            streaming=streaming,
            stream_usage=streaming,
            api_key=self.settings.openai_api_key,
        )

    async def stream(
        self,
        messages: List[Message],
        tools: Optional[List[ToolDefinition]],
        *,
        model: str,
        max_tokens: int,
        temperature: float = 0.3,
    ) -> AsyncIterator[StreamChunk]:
        """Stream one completion, yielding text, tool-call deltas, usage and done."""
        llm = self._chat_model(model, max_tokens, temperature, streaming=True)
        runnable = llm.bind_tools(to_openai_tools(tools), tool_choice="auto") if tools else llm

        aggregate = None
        try:
            async for chunk in runnable.astream(to_langchain_messages(messages)):
                aggregate = chunk if aggregate is None else aggregate + chunk
                if isinstance(chunk.content, str) and chunk.content:
                    yield StreamChunk(type="text_delta", text=chunk.content)
                if getattr(chunk, "tool_call_chunks", None):
                    yield StreamChunk(type="tool_call_delta")
        except Exception as e:
            logger.error("LLM stream failed", model=model, error=str(e))
            raise _provider_error(e, self.provider) from e

        if aggregate is None:
            raise ProviderError("LLM stream returned no chunks", provider=self.provider)

        yield StreamChunk(type="usage", usage=_usage_from(aggregate))

        tool_calls = [
            ToolCall(
                id=tc.get("id") or f"call_{uuid.uuid4().hex[:12]}",
                name=tc["name"],
                arguments=tc.get("args") or {},
            )
            for tc in getattr(aggregate, "tool_calls", None) or []
        ]
        finish_reason = (aggregate.response_metadata or {}).get("finish_reason")
        if not finish_reason:
            finish_reason = "tool_calls" if tool_calls else "stop"
        yield StreamChunk(type="done", finish_reason=finish_reason, tool_calls=tool_calls)

    @retry(
        retry=retry_if_exception(_is_retryable),
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        reraise=True,
    )
    async def complete(
        self,
        system: str,
        user: str,
        *,
        max_tokens: int,
        json_mode: bool = True,
        task: str = "completion",
    ) -> Completion:
        """Run one fast, optionally JSON-constrained completion."""
        model = self.settings.fast_model
        llm = ChatOpenAI(
            model=model,
            temperature=0.0,
            max_tokens=max_tokens,
            timeout=15.0,
            api_key=self.settings.openai_api_key,
        )
        runnable = llm.bind(response_format={"type": "json_object"}) if json_mode else llm

        try:
            response = await runnable.ainvoke([SystemMessage(content=system), HumanMessage(content=user)])
        except Exception as e:
            logger.warning("Fast LLM call failed", task=task, model=model, error=str(e))
            raise _provider_error(e, self.provider) from e

        content = response.content if isinstance(response.content, str) else ""
        return Completion(text=content, model=model, usage=_usage_from(response))
