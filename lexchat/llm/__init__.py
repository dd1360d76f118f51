"""LLM completion adapters."""

from lexchat.llm.client import (
    Completion,
    LangChainCompletionService,
    LLMCompletionService,
    StreamChunk,
    extract_json_object,
)

__all__ = [
    "Completion",
    "LangChainCompletionService",
    "LLMCompletionService",
    "StreamChunk",
    "extract_json_object",
]
