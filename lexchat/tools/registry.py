"""
Tool registry boundary: typed arguments and domain-based tool filtering.

The concrete research tools live behind a ``ToolRegistry``. Arguments
coming from the model are validated once here, against a typed model
keyed by tool name; unknown fields are rejected rather than ignored.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Literal, Optional, Protocol, Tuple, Type, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, create_model, field_validator, model_validator

from lexchat.errors import ToolArgumentError, ToolExecutionError
from lexchat.schemas.chat import ToolDefinition

logger = structlog.get_logger(__name__)


class ToolRegistry(Protocol):
    """External collaborator that owns the research tools."""

    def list_definitions(self) -> List[ToolDefinition]:
        ...

    async def execute(self, name: str, arguments: Dict[str, Any]) -> Any:
        ...


# Domain -> tool names offered to the model

DOMAIN_TOOL_MAP: Dict[str, List[str]] = {
    "court": [
        "search_legal_precedents",
        "search_supreme_court_practice",
        "get_court_decision",
        "get_case_documents_chain",
        "load_full_texts",
        "find_similar_fact_pattern_cases",
        "compare_practice_pro_contra",
        "count_cases_by_party",
    ],
    "legislation": [
        "search_legislation",
        "get_legislation_article",
        "get_legislation_section",
        "find_relevant_law_articles",
        "search_procedural_norms",
    ],
    "registry": [
        "openreyestr_get_by_edrpou",
        "openreyestr_search_entities",
        "openreyestr_get_entity_details",
        "openreyestr_search_beneficiaries",
        "openreyestr_search_debtors",
        "openreyestr_search_enforcement_proceedings",
        "openreyestr_search_bankruptcy_cases",
        "openreyestr_search_notaries",
        "openreyestr_search_court_experts",
        "openreyestr_search_arbitration_managers",
        "openreyestr_search_forensic_methods",
        "openreyestr_search_legal_acts",
        "openreyestr_search_administrative_units",
        "openreyestr_search_streets",
        "openreyestr_search_special_forms",
    ],
    "parliament": [
        "rada_search_parliament_bills",
        "rada_get_deputy_info",
        "rada_search_legislation_text",
        "rada_analyze_voting_record",
    ],
    "documents": [
        "store_document",
        "list_documents",
        "semantic_search",
    ],
    "legal_advice": [
        "search_legal_precedents",
        "find_relevant_law_articles",
        "get_legislation_article",
        "search_supreme_court_practice",
        "compare_practice_pro_contra",
    ],
}

DEFAULT_TOOLS: Tuple[str, ...] = ("search_legal_precedents", "find_relevant_law_articles")

KNOWN_DOMAINS = frozenset(DOMAIN_TOOL_MAP)


def filter_tools(
    definitions: Iterable[ToolDefinition],
    domains: Iterable[str],
    limit: int = 10,
) -> List[ToolDefinition]:
    """
    Narrow the registry to the tools relevant for the classified domains.

    Domain tools come first (in domain order), then the defaults. When the
    domains contribute nothing beyond the defaults, the ``legal_advice``
    set is added as a broader fallback.

    Args:
        definitions: All registry definitions
        domains: Classified domains
        limit: Maximum number of tools to offer

    Returns:
        Filtered definitions, most relevant first
    """
    domains = list(domains)
    ranked: Dict[str, int] = {}

    def add(names: Iterable[str]) -> None:
        for name in names:
            ranked.setdefault(name, len(ranked))

    for domain in domains:
        add(DOMAIN_TOOL_MAP.get(domain, []))
    contributed = set(ranked) - set(DEFAULT_TOOLS)
    add(DEFAULT_TOOLS)
    if not contributed and domains:
        add(DOMAIN_TOOL_MAP["legal_advice"])

    available = [d for d in definitions if d.name in ranked]
    available.sort(key=lambda d: ranked[d.name])
    return available[:limit]


# Typed arguments for the core tools

class _ToolArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")


class _DocumentIdentifierRules(_ToolArgs):
    """Decision lookups need a document id or a case number."""

    @model_validator(mode="after")
    def require_identifier(self) -> "_DocumentIdentifierRules":
        if not getattr(self, "doc_id", None) and not getattr(self, "case_number", None):
            raise ValueError("either doc_id or case_number is required")
        return self


class _EdrpouRules(_ToolArgs):
    @field_validator("edrpou", check_fields=False)
    @classmethod
    def validate_edrpou(cls, v: Any) -> Any:
        if v is not None and not re.fullmatch(r"\d{8}", str(v)):
            raise ValueError("edrpou must be 8 digits")
        return v


# Extra constraints layered on top of whatever schema the registry declares
ARGUMENT_RULES: Dict[str, Type[_ToolArgs]] = {
    "get_court_decision": _DocumentIdentifierRules,
    "get_case_text": _DocumentIdentifierRules,
    "openreyestr_get_by_edrpou": _EdrpouRules,
}

Number = Union[int, float]


class SearchLegalPrecedentsArgs(_ToolArgs):
    query: str = Field(min_length=1)
    domain: Optional[Literal["court", "npa", "echr", "all"]] = None
    time_range: Optional[Dict[str, Any]] = None
    limit: Optional[int] = Field(default=None, ge=1, le=100)
    offset: Optional[int] = Field(default=None, ge=0)
    count_all: Optional[bool] = None
    sections: Optional[List[str]] = None
    procedure_code: Optional[str] = None
    court_level: Optional[str] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None


class GetCourtDecisionArgs(_DocumentIdentifierRules):
    doc_id: Optional[Union[str, int]] = None
    case_number: Optional[str] = None
    depth: Optional[int] = Field(default=None, ge=1, le=5)
    reasoning_budget: Optional[Literal["quick", "standard", "deep"]] = None


class GetCaseDocumentsChainArgs(_ToolArgs):
    case_number: str = Field(min_length=1)
    include_full_text: Optional[bool] = None
    group_by_instance: Optional[bool] = None
    max_docs: Optional[int] = Field(default=None, ge=1)


class LoadFullTextsArgs(_ToolArgs):
    doc_ids: List[Union[int, str]] = Field(min_length=1)
    max_docs: Optional[int] = Field(default=None, ge=1)
    batch_size: Optional[int] = Field(default=None, ge=1)


class GetLegislationArticleArgs(_ToolArgs):
    rada_id: str = Field(min_length=1)
    article_number: str = Field(min_length=1)
    include_html: Optional[bool] = None
    theme: Optional[Literal["light", "dark"]] = None


class EdrpouLookupArgs(_EdrpouRules):
    edrpou: str


# Used only when the registry advertises no properties for the tool
TYPED_ARGUMENTS: Dict[str, Type[BaseModel]] = {
    "search_legal_precedents": SearchLegalPrecedentsArgs,
    "get_court_decision": GetCourtDecisionArgs,
    "get_case_documents_chain": GetCaseDocumentsChainArgs,
    "load_full_texts": LoadFullTextsArgs,
    "get_legislation_article": GetLegislationArticleArgs,
    "openreyestr_get_by_edrpou": EdrpouLookupArgs,
}

_JSON_TYPES: Dict[str, Any] = {
    "string": str,
    "integer": int,
    "number": Number,
    "boolean": bool,
    "object": Dict[str, Any],
}


def python_type(prop: Any) -> Any:
    """Map one JSON-schema property to a Python type annotation.

    Union types (``["string", "number"]``) become ``Union``; ``"null"``
    makes the type Optional. Anything unrecognised is ``Any``.
    """
    if not isinstance(prop, dict):
        return Any

    enum = prop.get("enum")
    if isinstance(enum, list) and enum and all(isinstance(v, (str, int, bool)) for v in enum):
        return Literal[tuple(enum)]

    declared = prop.get("type")
    names = declared if isinstance(declared, list) else [declared]
    nullable = "null" in names

    mapped: List[Any] = []
    for name in names:
        if name == "null":
            continue
        if name == "array":
            mapped.append(List[python_type(prop.get("items"))])
        elif isinstance(name, str) and name in _JSON_TYPES:
            mapped.append(_JSON_TYPES[name])
        else:
            return Any

    if not mapped:
        return Any
    py_type = mapped[0] if len(mapped) == 1 else Union[tuple(mapped)]
    return Optional[py_type] if nullable else py_type


def model_from_schema(
    definition: ToolDefinition,
    base: Type[_ToolArgs] = _ToolArgs,
) -> Optional[Type[BaseModel]]:
    """Build a strict argument model from a tool's JSON schema.

    Returns None when the schema declares no properties.
    """
    schema = definition.input_schema or {}
    properties = schema.get("properties")
    if not isinstance(properties, dict) or not properties:
        return None

    required = set(schema.get("required") or [])
    fields: Dict[str, Any] = {}
    for name, prop in properties.items():
        py_type = python_type(prop)
        if name in required:
            fields[name] = (py_type, ...)
        else:
            fields[name] = (Optional[py_type], None)

    model_name = "".join(part.title() for part in definition.name.split("_")) + "Args"
    try:
        return create_model(model_name, __base__=base, **fields)
    except (TypeError, ValueError, NameError) as e:
        logger.warning("Tool schema not usable for validation", tool=definition.name, error=str(e))
        return None


class ValidatingToolRegistry:
    """
    Wraps a ``ToolRegistry`` so every call is validated exactly once.

    Usage:
        registry = ValidatingToolRegistry(mcp_registry)
        result = await registry.execute("get_court_decision", {"case_number": "..."})
    """

    def __init__(self, registry: ToolRegistry):
        self._registry = registry
        self._definitions = {d.name: d for d in registry.list_definitions()}
        self._models: Dict[str, Optional[Type[BaseModel]]] = {}

    def list_definitions(self) -> List[ToolDefinition]:
        return list(self._definitions.values())

    def argument_model(self, name: str) -> Optional[Type[BaseModel]]:
        if name not in self._models:
            model = None
            if name in self._definitions:
                model = model_from_schema(self._definitions[name], ARGUMENT_RULES.get(name, _ToolArgs))
            if model is None:
                model = TYPED_ARGUMENTS.get(name)
            self._models[name] = model
        return self._models[name]

    def validate(self, name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate arguments for a tool.

        Raises:
            ToolArgumentError: Unknown tool, unknown fields or wrong types
        """
        if name not in self._definitions:
            raise ToolArgumentError(name, "unknown tool")

        model = self.argument_model(name)
        if model is None:
            return dict(arguments)

        try:
            return model.model_validate(arguments).model_dump(exclude_none=True)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}"
                for err in e.errors()
            )
            raise ToolArgumentError(name, f"invalid arguments ({problems})") from e

    async def execute(self, name: str, arguments: Dict[str, Any]) -> Any:
        """Validate then execute; any tool failure surfaces as ToolExecutionError."""
        validated = self.validate(name, arguments)
        try:
            return await self._registry.execute(name, validated)
        except ToolExecutionError:
            raise
        except Exception as e:
            raise ToolExecutionError(name, str(e) or type(e).__name__) from e
