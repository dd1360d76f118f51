"""
Prompt templates for the legal research chat loop.

Covers the main instructions, the fast classification and planning calls,
history summarization and the fixed nudges injected by the loop.
"""

import json
from typing import Iterable

from langchain_core.prompts import PromptTemplate

from lexchat.schemas.chat import Classification, ToolDefinition


# ==============================================================================
# MAIN INSTRUCTIONS
# ==============================================================================

CHAT_SYSTEM_PROMPT = """You are a legal research assistant specialising in Ukrainian law.

## Your task
Answer the user's legal questions using the research tools available to you.
Every factual claim must be backed by a tool result. Never invent case numbers,
statute articles or court decisions.

## Tool strategy
1. Decide which sources the answer needs (court practice, legislation, registries).
2. Call the relevant tools; several independent calls may be issued at once.
3. Analyse the results and write the answer.

## Registry results
- If a registry lookup returns "found": false, say the entity was not found.
- Suggest searching by name when a registry code lookup fails.

## Rules
- Answer in the language of the question.
- Cite only tool results; if a tool returned nothing, say so plainly.
- Show complete lists returned by tools in a compact numbered format.
- Never print raw JSON; rephrase tool output as readable text with headings and lists.
"""


# ==============================================================================
# INTENT CLASSIFICATION
# ==============================================================================

INTENT_CLASSIFICATION_PROMPT = """You classify legal research queries. Decide which data sources are needed.

## Domains
- court: court practice (decision search, Supreme Court practice, a case by number, case document chains)
- legislation: statutes and articles (an article of a code, a section of a law, procedural norms)
- registry: state registries (companies by EDRPOU code, beneficiaries, debtors, enforcement, bankruptcy, notaries, court experts)
- parliament: bills, deputies, voting records
- documents: the user's uploaded documents
- legal_advice: general legal questions needing both court practice and legislation

## Rules
1. A query can belong to several domains.
2. A specific statute article implies "legislation".
3. A company, EDRPOU code, founder, debtor or notary implies "registry".
4. A detailed analysis of one case across instances implies "court" + "legal_advice" and a case_number slot.

## Response format
Return ONLY valid JSON:
{"domains": ["court", "legislation"], "keywords": "search keywords", "slots": {"case_number": "...", "edrpou": "...", "law_reference": "...", "procedure_code": "cpc|gpc|cac|crpc", "court_level": "first_instance|appeal|cassation|SC|GrandChamber"}}
Include only slots that can be extracted from the query."""


# ==============================================================================
# PLANNING
# ==============================================================================

PLAN_SYSTEM_PROMPT = "You plan tool usage for a legal research assistant. Reply with JSON only."

PLAN_GENERATION_TEMPLATE = PromptTemplate.from_template(
    """Create an execution plan for the user's query.

## User query
{query}

## Classification
- Domains: {domains}
- Keywords: {keywords}
{slots_line}

## Available tools
{tool_descriptions}

## Rules
1. At most 5 steps.
2. Use ONLY the tools listed above.
3. Give concrete parameters for every step, never placeholders.
4. If one tool is enough, return a single-step plan.
5. If the query is trivial and needs no tools, return an empty object {{}}.
6. With a case_number slot, start with get_case_documents_chain or get_court_decision.
7. With a law_reference slot, start with get_legislation_article.
8. depends_on lists the ids of earlier steps this step needs.
9. purpose: at most 10 words.

## Response format
{{"goal": "one sentence", "steps": [{{"id": 1, "tool": "tool_name", "params": {{"key": "value"}}, "purpose": "why", "depends_on": []}}], "expected_iterations": 2}}"""
)


def describe_tools(definitions: Iterable[ToolDefinition], max_description_chars: int = 160) -> str:
    """One line per tool: name and a shortened description."""
    lines = []
    for definition in definitions:
        description = " ".join(definition.description.split())[:max_description_chars]
        lines.append(f"- {definition.name}: {description}")
    return "\n".join(lines)


def build_plan_prompt(query: str, classification: Classification, definitions: Iterable[ToolDefinition]) -> str:
    slots_line = f"- Slots: {json.dumps(classification.slots, ensure_ascii=False)}" if classification.slots else ""
    return PLAN_GENERATION_TEMPLATE.format(
        query=query,
        domains=", ".join(classification.domains),
        keywords=classification.keywords,
        slots_line=slots_line,
        tool_descriptions=describe_tools(definitions),
    )


# ==============================================================================
# HISTORY
# ==============================================================================

OLDER_HISTORY_MARKER = "[Earlier conversation]"
SUMMARY_MARKER = "[Summary of earlier conversation]"

HISTORY_SUMMARY_PROMPT = """Summarize this legal research conversation for later turns.
Preserve:
- Case numbers (e.g. "910/1234/23")
- Statute references (e.g. "Art. 16 of the Civil Code")
- Conclusions already reached and open questions

Return ONLY the summary, at most 150 words, no preamble."""


# ==============================================================================
# LOOP NUDGES
# ==============================================================================

SYNTHESIS_NUDGE = (
    "You now have tool results. Stop calling tools unless essential data is missing "
    "and write the final answer."
)

DUPLICATE_CALL_NOTICE = (
    "You already have this data from an earlier call in this conversation. "
    "Use the results you already received."
)

FORCED_SYNTHESIS_PROMPT = (
    "The research budget is exhausted. Do not call any more tools. "
    "Write the final answer now using only the tool results above."
)
