"""Contracts for the external stores and services the chat core calls."""

from typing import Any, Dict, List, Protocol

from lexchat.schemas.chat import CostRecord


class ConversationStore(Protocol):
    """Durable conversation history."""

    async def append(self, conversation_id: str, user_id: str, message: Dict[str, Any]) -> None:
        ...


class CostLedger(Protocol):
    """Append-only per-request cost ledger."""

    async def record(self, entry: CostRecord) -> None:
        ...


class CitationService(Protocol):
    """Checks whether cited decisions were overruled or limited."""

    async def batch_analyze(self, case_numbers: List[str]) -> List[Dict[str, Any]]:
        ...


class DocumentPrefetcher(Protocol):
    """Warms full-text loading for documents surfaced by court searches."""

    async def prefetch(self, doc_ids: List[str]) -> None:
        ...


class InMemoryConversationStore:
    """Conversation store kept in process memory. For tests and local runs."""

    def __init__(self) -> None:
        self.messages: Dict[str, List[Dict[str, Any]]] = {}

    async def append(self, conversation_id: str, user_id: str, message: Dict[str, Any]) -> None:
        self.messages.setdefault(conversation_id, []).append({"user_id": user_id, **message})


class InMemoryCostLedger:
    def __init__(self) -> None:
        self.entries: List[CostRecord] = []

    async def record(self, entry: CostRecord) -> None:
        self.entries.append(entry)
