"""Exception hierarchy for the chat orchestration core.

Only ``ProviderError`` and ``SynthesisError`` ever reach the client (as an
``error`` event); everything else is recovered where it is raised.
"""


class ChatError(Exception):
    """Base class for orchestration errors."""


class ProviderError(ChatError):
    """The LLM provider is unreachable, rate-limited or returned garbage."""

    def __init__(self, message: str, provider: str = "unknown", retryable: bool = False):
        super().__init__(message)
        self.provider = provider
        self.retryable = retryable


class ToolExecutionError(ChatError):
    """A research tool failed."""

    def __init__(self, tool: str, message: str):
        super().__init__(f"{tool}: {message}")
        self.tool = tool
        self.reason = message


class ToolArgumentError(ToolExecutionError):
    """Tool arguments were rejected at the registry boundary."""


class BudgetConfigurationError(ChatError):
    """Instructions and plan alone do not fit the tier's context budget."""


class ClassificationError(ChatError):
    """The LLM classification path produced no usable result."""


class PlanningError(ChatError):
    """The LLM planning path produced no usable result."""


class SynthesisError(ChatError):
    """No final answer could be produced after the tool budget ran out."""


class RequestCancelled(ChatError):
    """The client cancelled the request; stop without emitting anything else."""
