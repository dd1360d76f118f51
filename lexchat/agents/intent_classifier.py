"""
Intent classification: which research domains a query needs.

Primary path is one fast JSON-constrained LLM call. Deterministic safety
nets run on every path: a case number forces the "court" domain, a
registry code or registry vocabulary forces "registry". When the LLM path
fails, a keyword classifier takes over and still returns a non-empty
domain set.
"""

import re
from typing import Any, Callable, Dict, List, Optional, Set

import structlog
from langsmith import traceable

from lexchat.composer.prompts import INTENT_CLASSIFICATION_PROMPT
from lexchat.errors import ClassificationError
from lexchat.llm.client import Completion, LLMCompletionService, extract_json_object
from lexchat.schemas.chat import Classification
from lexchat.tools.registry import KNOWN_DOMAINS

logger = structlog.get_logger(__name__)

CompletionCallback = Callable[[Completion, str], None]

CASE_NUMBER_PATTERN = re.compile(r"\b\d{1,4}/\d{1,6}/\d{2,4}(?:-\w+)?\b")
EDRPOU_PATTERN = re.compile(r"(?<![\d/])\d{8}(?![\d/])")
LAW_REFERENCE_PATTERN = re.compile(
    r"(?:ст\.|статт[яіею]|article|art\.)\s*\d+[\w\-]*"
    r"(?:\s+(?:ЦК|ЦПК|ГПК|КАС|КПК|ГК|КК|КЗпП|ПК)(?:\s+України)?)?",
    re.IGNORECASE,
)

REGISTRY_KEYWORDS = (
    "edrpou", "єдрпоу", "registry", "реєстр", "company", "компані", "підприємств",
    "beneficiar", "бенефіціар", "засновник", "debtor", "боржник", "notary", "нотаріус",
    "bankrupt", "банкрут", "виконавч",
)

DOMAIN_KEYWORDS: Dict[str, tuple] = {
    "court": (
        "суд", "рішенн", "справ", "постанов", "практик", "позов", "касаці", "апеляці",
        "court", "case", "decision", "precedent", "ruling", "judg", "lawsuit",
    ),
    "legislation": (
        "закон", "стаття", "статт", "кодекс", "норм", "law", "statute", "article", "code", "regulation",
        "legislat",
    ),
    "registry": REGISTRY_KEYWORDS,
    "parliament": (
        "законопроєкт", "депутат", "голосуван", "верховна рада", "bill", "deputy", "voting", "parliament",
    ),
    "documents": ("мій документ", "мої документ", "завантажен", "my document", "uploaded"),
}

MAX_KEYWORDS_CHARS = 200


def extract_case_numbers(text: str, limit: int = 10) -> List[str]:
    """Unique case numbers in order of appearance."""
    seen: Dict[str, None] = {}
    for match in CASE_NUMBER_PATTERN.finditer(text):
        seen.setdefault(match.group(0), None)
    return list(seen)[:limit]


def apply_safety_nets(query: str, domains: Set[str], slots: Dict[str, str]) -> None:
    """Force domains and fill slots from deterministic patterns (in place)."""
    lowered = query.lower()

    case_match = CASE_NUMBER_PATTERN.search(query)
    if case_match:
        domains.add("court")
        slots.setdefault("case_number", case_match.group(0))
    elif slots.get("case_number"):
        domains.add("court")

    edrpou_match = EDRPOU_PATTERN.search(query)
    if edrpou_match:
        domains.add("registry")
        slots.setdefault("edrpou", edrpou_match.group(0))
    elif any(keyword in lowered for keyword in REGISTRY_KEYWORDS):
        domains.add("registry")

    law_match = LAW_REFERENCE_PATTERN.search(query)
    if law_match:
        slots.setdefault("law_reference", law_match.group(0).strip())


def _keywords_from(query: str) -> str:
    return " ".join(query.split())[:MAX_KEYWORDS_CHARS]


def _clean_slots(raw: Any) -> Dict[str, str]:
    if not isinstance(raw, dict):
        return {}
    slots: Dict[str, str] = {}
    for key, value in raw.items():
        if value is None or isinstance(value, (dict, list)):
            continue
        text = str(value).strip()
        if text:
            slots[str(key)] = text
    return slots


class IntentClassifier:
    """
    Classifies queries into domains, keywords and slots.

    Usage:
        classifier = IntentClassifier(llm)
        classification = await classifier.classify("case 910/1234/23 status")
    """

    def __init__(self, llm: Optional[LLMCompletionService]):
        self.llm = llm

    @traceable(run_type="chain", name="intent_classifier", tags=["intent", "classification"])
    async def classify(self, query: str, on_completion: Optional[CompletionCallback] = None) -> Classification:
        """Classify a query; never raises."""
        try:
            domains, keywords, slots = await self._classify_llm(query, on_completion)
            source = "llm"
        except Exception as e:
            logger.warning("LLM intent classification failed, using keywords", error=str(e))
            domains, keywords, slots = self._classify_keywords(query)
            source = "keywords"

        apply_safety_nets(query, domains, slots)
        classification = Classification(domains=list(domains), keywords=keywords, slots=slots)

        logger.info(
            "Intent classified",
            source=source,
            domains=classification.domains,
            slots=sorted(classification.slots),
        )
        return classification

    async def _classify_llm(self, query: str, on_completion: Optional[CompletionCallback]):
        if self.llm is None:
            raise ClassificationError("no LLM configured")

        completion = await self.llm.complete(
            INTENT_CLASSIFICATION_PROMPT,
            query,
            max_tokens=300,
            json_mode=True,
            task="intent_classification",
        )
        if on_completion is not None:
            on_completion(completion, "intent_classification")

        try:
            data = extract_json_object(completion.text)
        except ValueError as e:
            raise ClassificationError(str(e)) from e

        raw_domains = data.get("domains") or []
        if isinstance(raw_domains, str):
            raw_domains = [raw_domains]
        domains = {str(d).strip().lower() for d in raw_domains if str(d).strip().lower() in KNOWN_DOMAINS}
        if not domains:
            raise ClassificationError(f"no known domains in {raw_domains!r}")

        keywords = data.get("keywords")
        keywords = " ".join(keywords) if isinstance(keywords, list) else str(keywords or "")
        return domains, keywords.strip() or _keywords_from(query), _clean_slots(data.get("slots"))

    def _classify_keywords(self, query: str):
        """Deterministic fallback; always returns at least one domain."""
        lowered = query.lower()
        domains = {
            domain
            for domain, words in DOMAIN_KEYWORDS.items()
            if any(word in lowered for word in words)
        }
        if not domains:
            domains = {"court"}
        return domains, _keywords_from(query), {}
