"""
Budget-aware compaction of tool results before they reach the model.

Raw decision full text is never forwarded. Court decisions are reduced to
their identifying metadata, a short excerpt and up to three named sections
(facts, reasoning, decision). Other documents (statute articles, plain-text
or markdown tool output) keep their text, capped to the result budget.
Every cut is marked explicitly.
"""

import json
import re
from typing import Any, Dict, List, Optional, Tuple

import structlog

from lexchat.budget import BudgetProfile
from lexlibs.caching.tool_result_cache import unwrap_tool_payload

logger = structlog.get_logger(__name__)

# Raw decision text; replaced by excerpt and sections inside decision items
RAW_TEXT_FIELDS = ("full_text", "text", "pageindex_markdown", "html")
LIST_FIELDS = ("results", "similar_cases", "documents", "cases", "pro", "contra")
SECTION_NAMES = ("facts", "reasoning", "decision")

_ID_FIELDS = ("doc_id", "document_id", "id")
_DECISION_HINTS = ("doc_id", "document_id", "case_number", "court", "court_name", "full_text", "adjudication_date")

SECTION_FIELDS: Dict[str, Tuple[str, ...]] = {
    "facts": ("facts", "fact_summary", "circumstances"),
    "reasoning": ("court_reasoning", "reasoning", "motivation"),
    "decision": ("decision", "resolution", "operative_part"),
}

# Section type labels used by the structured ``sections`` field
SECTION_TYPES: Dict[str, str] = {
    "FACTS": "facts",
    "COURT_REASONING": "reasoning",
    "REASONING": "reasoning",
    "DECISION": "decision",
}

HEADING_PATTERNS: Dict[str, re.Pattern] = {
    "facts": re.compile(
        r"(?m)^\s*(?:ВСТАНОВИВ|встановив\s*:|Обставини справи|Короткий зміст|FACTS|Background)\b",
    ),
    "reasoning": re.compile(
        r"(?m)^\s*(?:МОТИВУВАЛЬНА ЧАСТИНА|Мотиви|Оцінка суду|Позиція Верховного Суду|Джерела права|REASONING|THE LAW|Assessment of the Court)\b",
    ),
    "decision": re.compile(
        r"(?m)^\s*(?:ПОСТАНОВИВ|ВИРІШИВ|УХВАЛИВ|Керуючись|FOR THESE REASONS|DECISION)\b",
    ),
}


def truncate(text: str, limit: int) -> str:
    """Cut text to ``limit`` characters, marking how much was removed."""
    if limit < 0:
        limit = 0
    if len(text) <= limit:
        return text
    return f"{text[:limit]} …[truncated {len(text) - limit} chars]"


def is_mcp_envelope(value: Any) -> bool:
    """True for an MCP ``{"content": [{"type": ...}, ...]}`` result."""
    if not isinstance(value, dict) or not isinstance(value.get("content"), list):
        return False
    return all(isinstance(b, dict) and "type" in b for b in value["content"])


def _is_decision(item: Dict[str, Any]) -> bool:
    return any(hint in item for hint in _DECISION_HINTS)


def _first(item: Dict[str, Any], fields: Tuple[str, ...]) -> Optional[Any]:
    for field in fields:
        value = item.get(field)
        if value not in (None, ""):
            return value
    return None


def split_sections(text: str) -> Dict[str, str]:
    """Locate facts/reasoning/decision sections in raw decision text by heading."""
    starts: List[Tuple[int, str]] = []
    for name, pattern in HEADING_PATTERNS.items():
        match = pattern.search(text)
        if match:
            starts.append((match.start(), name))
    starts.sort()

    sections: Dict[str, str] = {}
    for index, (start, name) in enumerate(starts):
        end = starts[index + 1][0] if index + 1 < len(starts) else len(text)
        body = text[start:end].strip()
        if body:
            sections[name] = body
    return sections


def extract_sections(item: Dict[str, Any], limit: int) -> Dict[str, str]:
    """Structured fields first, heading matching on raw text as fallback."""
    found: Dict[str, str] = {}

    structured = item.get("sections")
    if isinstance(structured, list):
        for section in structured:
            if not isinstance(section, dict):
                continue
            name = SECTION_TYPES.get(str(section.get("type", "")).upper())
            text = section.get("text") or section.get("content")
            if name and isinstance(text, str) and name not in found:
                found[name] = text
    elif isinstance(structured, dict):
        for key, text in structured.items():
            name = SECTION_TYPES.get(str(key).upper(), str(key).lower())
            if name in SECTION_NAMES and isinstance(text, str):
                found.setdefault(name, text)

    for name, fields in SECTION_FIELDS.items():
        if name not in found:
            value = _first(item, fields)
            if isinstance(value, str):
                found[name] = value

    if len(found) < len(SECTION_NAMES):
        raw = _first(item, RAW_TEXT_FIELDS)
        if isinstance(raw, str):
            for name, text in split_sections(raw).items():
                found.setdefault(name, text)

    return {name: truncate(found[name], limit) for name in SECTION_NAMES if name in found}


class ResultCompactor:
    """
    Shrinks tool outputs into bounded structured excerpts.

    Usage:
        compactor = ResultCompactor(get_budget("standard"))
        content = compactor.compact(tool_result)
    """

    def __init__(self, budget: BudgetProfile):
        self.budget = budget

    def compact(self, payload: Any) -> str:
        """
        Compact a tool result into the tool-message content string.

        Falls back to truncated serialization if structured compaction fails.
        """
        try:
            value = self.compact_value(payload)
            text = json.dumps(value, ensure_ascii=False, default=str)
        except Exception as e:
            logger.warning("Result compaction failed, truncating", error=str(e))
            return truncate(self._dump(payload), self.budget.max_result_chars)

        if len(text) <= self.budget.max_result_chars:
            return text

        return json.dumps(
            {
                "truncated": True,
                "original_length": len(text),
                "summary": truncate(text, self.budget.max_result_chars),
            },
            ensure_ascii=False,
        )

    def compact_value(self, payload: Any) -> Any:
        """Return a JSON-able compacted form of a tool result."""
        if payload is None:
            return {"empty": True}
        if isinstance(payload, dict) and set(payload) == {"error"}:
            return payload

        data = unwrap_tool_payload(payload)
        if is_mcp_envelope(data):
            return self.compact_envelope(data)

        if isinstance(data, str):
            return truncate(data, self.budget.max_result_chars)
        if isinstance(data, list):
            return [self.compact_item(item) for item in data]
        if not isinstance(data, dict):
            return data

        lists = [field for field in LIST_FIELDS if isinstance(data.get(field), list)]
        grouped = data.get("grouped_documents")
        if not lists and not isinstance(grouped, dict):
            if _is_decision(data):
                return self.compact_item(data)
            return self.compact_document(data, self.budget.max_result_chars // 2)

        out: Dict[str, Any] = {}
        for key, value in data.items():
            if key in lists:
                out[key] = [self.compact_item(item) for item in value]
            elif key == "grouped_documents" and isinstance(value, dict):
                out[key] = {
                    group: [self.compact_item(item) for item in items] if isinstance(items, list) else items
                    for group, items in value.items()
                }
            elif key == "source_case" and isinstance(value, dict):
                out[key] = self.compact_item(value)
            else:
                out[key] = self._shrink(value)
        return out

    def compact_item(self, item: Any) -> Any:
        """Reduce one result item to metadata, excerpt and named sections."""
        if not isinstance(item, dict):
            return self._shrink(item)
        if not _is_decision(item):
            return self.compact_document(item, self.budget.section_chars)

        excerpt_limit = self.budget.excerpt_chars
        compacted: Dict[str, Any] = {
            "id": _first(item, _ID_FIELDS),
            "type": _first(item, ("type", "doc_type", "judgment_form")),
            "court": _first(item, ("court", "court_name")),
            "date": _first(item, ("date", "adjudication_date", "date_publ")),
            "case_number": item.get("case_number"),
            "title": _first(item, ("title", "name")),
        }

        excerpt = _first(item, ("excerpt", "snippet", "summary", "resume"))
        if not isinstance(excerpt, str):
            raw = _first(item, RAW_TEXT_FIELDS)
            excerpt = raw if isinstance(raw, str) else None
        if excerpt:
            compacted["excerpt"] = truncate(excerpt, excerpt_limit)

        sections = extract_sections(item, self.budget.section_chars)
        if sections:
            compacted["sections"] = sections

        return {k: v for k, v in compacted.items() if v is not None}

    def compact_document(self, item: Dict[str, Any], text_budget: int) -> Dict[str, Any]:
        """Non-decision document: text fields keep their text, sharing ``text_budget``."""
        text_fields = [k for k in RAW_TEXT_FIELDS if isinstance(item.get(k), str)]
        if not text_fields:
            return self._shrink(item)

        text_limit = text_budget // len(text_fields)
        return {
            key: truncate(value, text_limit) if key in text_fields else self._shrink(value, 1)
            for key, value in item.items()
        }

    def compact_envelope(self, envelope: Dict[str, Any]) -> Dict[str, Any]:
        """Cap the text blocks of an MCP envelope whose text is not JSON."""
        blocks = envelope["content"]
        text_blocks = sum(1 for b in blocks if isinstance(b, dict) and isinstance(b.get("text"), str))
        text_limit = (self.budget.max_result_chars * 3 // 4) // max(text_blocks, 1)

        content = []
        for block in blocks:
            if isinstance(block, dict) and isinstance(block.get("text"), str):
                content.append({**block, "text": truncate(block["text"], text_limit)})
            else:
                content.append(self._shrink(block, 1))
        out = {k: self._shrink(v, 1) for k, v in envelope.items() if k != "content"}
        out["content"] = content
        return out

    def _shrink(self, value: Any, depth: int = 0) -> Any:
        """Generic reduction: cap strings, bound nesting."""
        limit = self.budget.excerpt_chars
        if isinstance(value, str):
            return truncate(value, limit)
        if isinstance(value, dict):
            if depth >= 3:
                return truncate(self._dump(value), limit)
            return {k: self._shrink(v, depth + 1) for k, v in value.items()}
        if isinstance(value, list):
            if depth >= 3:
                return truncate(self._dump(value), limit)
            return [self._shrink(v, depth + 1) for v in value]
        return value

    @staticmethod
    def _dump(value: Any) -> str:
        if isinstance(value, str):
            return value
        return json.dumps(value, ensure_ascii=False, default=str)


def fit(text: str, limit: int) -> str:
    """Like ``truncate`` but the result, marker included, never exceeds ``limit``."""
    if len(text) <= limit:
        return text
    marker = f" …[truncated {len(text)} chars]"
    if limit <= len(marker):
        if limit <= 0:
            logger.warning("No room left for text", original_chars=len(text))
            return ""
        return text[:limit - 1] + "…"
    keep = limit - len(marker)
    return f"{text[:keep]} …[truncated {len(text) - keep} chars]"
