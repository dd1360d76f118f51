"""Recognise equivalent tool invocations within one request."""

import hashlib
import json
from typing import Any, Dict, Iterable, List, Set, Tuple

from lexchat.schemas.chat import ToolCall

# Tools the model tends to re-invoke with only cosmetic differences
# (formatting flags, page sizes). Only these keys identify the call.
PRIMARY_KEYS: Dict[str, Tuple[str, ...]] = {
    "get_case_documents_chain": ("case_number",),
    "get_court_decision": ("doc_id", "case_number"),
    "load_full_texts": ("doc_ids",),
    "get_legislation_article": ("rada_id", "article_number"),
}


def tool_call_hash(tool_name: str, arguments: Dict[str, Any]) -> str:
    """
    Stable dedup key for a tool invocation.

    Coarse-hash tools hash only their primary-key subset (falling back to
    the full arguments when none of those keys is present); every other
    tool hashes its full, key-sorted argument set.
    """
    keys = PRIMARY_KEYS.get(tool_name)
    subset = arguments
    if keys:
        picked = {k: arguments[k] for k in keys if k in arguments}
        if picked:
            subset = picked

    canonical = json.dumps(
        {"tool": tool_name, "args": subset},
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class ToolCallDeduplicator:
    """Per-request record of issued tool calls. Never shared across requests."""

    def __init__(self) -> None:
        self._seen: Set[str] = set()

    def __len__(self) -> int:
        return len(self._seen)

    def is_duplicate(self, call: ToolCall) -> bool:
        return tool_call_hash(call.name, call.arguments) in self._seen

    def partition(self, calls: Iterable[ToolCall]) -> Tuple[List[ToolCall], List[ToolCall]]:
        """
        Split calls into (unique, duplicates) and remember the unique ones.

        Calls repeated within the same batch count as duplicates after the
        first occurrence.
        """
        unique: List[ToolCall] = []
        duplicates: List[ToolCall] = []
        for call in calls:
            key = tool_call_hash(call.name, call.arguments)
            if key in self._seen:
                duplicates.append(call)
            else:
                self._seen.add(key)
                unique.append(call)
        return unique, duplicates
