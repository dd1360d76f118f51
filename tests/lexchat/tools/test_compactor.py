"""Tests for tool result compaction."""

import json

from lexchat.budget import get_budget
from lexchat.tools.compactor import ResultCompactor, extract_sections, fit, split_sections, truncate

DECISION_TEXT = (
    "ПОСТАНОВА ІМЕНЕМ УКРАЇНИ\n"
    "ВСТАНОВИВ:\n" + "Позивач звернувся до суду з позовом про стягнення боргу. " * 40 + "\n"
    "МОТИВУВАЛЬНА ЧАСТИНА\n" + "Суд дійшов висновку, що договір є дійсним. " * 40 + "\n"
    "ПОСТАНОВИВ:\n" + "Касаційну скаргу залишити без задоволення. " * 10
)


def _decision(doc_id="111"):
    return {
        "doc_id": doc_id,
        "case_number": "910/1234/23",
        "court_name": "Верховний Суд",
        "adjudication_date": "2023-05-01",
        "full_text": DECISION_TEXT,
    }


def test_truncate_marks_cut():
    assert truncate("abcdef", 3) == "abc …[truncated 3 chars]"
    assert truncate("abc", 3) == "abc"


def test_fit_never_exceeds_limit():
    text = "x" * 500
    assert len(fit(text, 100)) <= 100
    assert "truncated" in fit(text, 100)
    assert fit("short", 100) == "short"


def test_fit_marks_cut_even_without_room_for_marker():
    assert fit("x" * 500, 5) == "xxxx…"
    assert fit("x" * 500, 1) == "…"
    assert fit("x" * 500, 0) == ""


def test_split_sections_by_headings():
    sections = split_sections(DECISION_TEXT)
    assert set(sections) == {"facts", "reasoning", "decision"}
    assert sections["decision"].startswith("ПОСТАНОВИВ")


def test_structured_sections_preferred_over_headings():
    item = {
        "doc_id": "1",
        "sections": [{"type": "FACTS", "text": "structured facts"}],
        "full_text": DECISION_TEXT,
    }
    sections = extract_sections(item, 1000)
    assert sections["facts"] == "structured facts"
    assert "reasoning" in sections


def test_compact_drops_full_text_and_keeps_metadata():
    compactor = ResultCompactor(get_budget("quick"))

    content = compactor.compact({"results": [_decision("111")], "total": 1})
    data = json.loads(content)

    assert "full_text" not in content
    assert data["total"] == 1
    first = data["results"][0]
    assert first["id"] == "111"
    assert first["court"] == "Верховний Суд"
    assert first["date"] == "2023-05-01"
    assert set(first["sections"]) == {"facts", "reasoning", "decision"}
    for text in first["sections"].values():
        assert len(text) <= get_budget("quick").section_chars + 40


def test_compact_unwraps_mcp_envelope():
    compactor = ResultCompactor(get_budget("standard"))
    envelope = {"content": [{"type": "text", "text": json.dumps(_decision())}]}

    data = json.loads(compactor.compact(envelope))

    assert data["case_number"] == "910/1234/23"
    assert "full_text" not in data


def test_oversized_result_is_marked_truncated():
    budget = get_budget("quick")
    compactor = ResultCompactor(budget)
    payload = {"results": [_decision(str(i)) for i in range(30)]}

    content = compactor.compact(payload)
    data = json.loads(content)

    assert data["truncated"] is True
    assert data["original_length"] > budget.max_result_chars
    assert "…[truncated" in data["summary"]


def test_error_payload_passes_through():
    compactor = ResultCompactor(get_budget("standard"))
    assert json.loads(compactor.compact({"error": "timeout"})) == {"error": "timeout"}


def test_plain_string_result_is_capped():
    budget = get_budget("quick")
    content = ResultCompactor(budget).compact("x" * (budget.max_result_chars * 2))
    assert "…[truncated" in content


ARTICLE_TEXT = (
    "Стаття 625. Відповідальність за порушення грошового зобов'язання\n"
    "1. Боржник не звільняється від відповідальності за неможливість виконання ним грошового зобов'язання."
)


def test_legislation_article_text_reaches_the_model():
    compactor = ResultCompactor(get_budget("standard"))

    data = json.loads(compactor.compact({"rada_id": "435-15", "article_number": "625", "text": ARTICLE_TEXT}))

    assert data["text"] == ARTICLE_TEXT
    assert data["article_number"] == "625"


def test_long_article_text_is_capped_with_marker():
    budget = get_budget("standard")
    compactor = ResultCompactor(budget)

    data = json.loads(compactor.compact({"text": "Стаття 1. " + "x" * (budget.max_result_chars * 3)}))

    assert data["text"].startswith("Стаття 1. ")
    assert "…[truncated" in data["text"]
    assert len(data["text"]) <= budget.max_result_chars // 2 + 40


def test_plain_text_mcp_envelope_keeps_its_text():
    compactor = ResultCompactor(get_budget("standard"))
    markdown = "## Стаття 625 ЦК\n\n" + ARTICLE_TEXT
    envelope = {"content": [{"type": "text", "text": markdown}]}

    data = json.loads(compactor.compact(envelope))

    assert data == {"content": [{"type": "text", "text": markdown}]}


def test_long_plain_text_envelope_is_capped_with_marker():
    budget = get_budget("quick")
    compactor = ResultCompactor(budget)
    envelope = {"content": [{"type": "text", "text": "Рішення. " * 2000}]}

    content = compactor.compact(envelope)
    data = json.loads(content)

    assert len(content) <= budget.max_result_chars
    assert data["content"][0]["type"] == "text"
    assert data["content"][0]["text"].startswith("Рішення.")
    assert "…[truncated" in data["content"][0]["text"]


def test_non_decision_list_items_keep_capped_text():
    budget = get_budget("standard")
    compactor = ResultCompactor(budget)
    payload = {"results": [{"title": "ЦК України", "text": ARTICLE_TEXT}, {"title": "ГПК", "text": "y" * 5000}]}

    data = json.loads(compactor.compact(payload))

    assert data["results"][0]["text"] == ARTICLE_TEXT
    assert "…[truncated" in data["results"][1]["text"]
    assert len(data["results"][1]["text"]) <= budget.section_chars + 40
