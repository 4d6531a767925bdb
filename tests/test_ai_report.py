"""AI report compiler tests with a stubbed Anthropic client."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest
from anthropic import APIConnectionError, RateLimitError

from ai_report import (
    FALLBACK_TEXT,
    AiReportError,
    CrawlStats,
    build_user_message,
    compile_report,
    extract_json,
    render_recommendations,
)
from models import AiReport, Issue

from .conftest import StubAnthropic

STATS = CrawlStats(domain="example.com", total_pages_crawled=42, crawl_depth_used=3, crawl_duration_ms=61_400)

ISSUES = [
    Issue(
        severity="critical",
        title="Chybějící title tag",
        description="2 stránek nemá title tag.",
        recommendation="Přidejte title.",
        affected_urls=("https://example.com/a", "https://example.com/b"),
    ),
    Issue(
        severity="info",
        title="Chybějící llms.txt",
        description="Web nemá soubor llms.txt.",
        recommendation="Vytvořte /llms.txt.",
    ),
]

REPORT = {
    "executive_summary": "Web má solidní základ, ale chybí mu titulky.",
    "scored_issues": [
        {
            "title": "Chybějící llms.txt",
            "severity": "info",
            "impact": 2,
            "effort": 1,
            "quadrant": "fill_in",
            "recommendation": "Vytvořte llms.txt.",
        },
        {
            "title": "Chybějící title tag",
            "severity": "critical",
            "impact": 5,
            "effort": 2,
            "quadrant": "quick_win",
            "recommendation": "Doplňte titulky.",
        },
    ],
    "action_plan": {"sprint_1": ["Doplnit title tagy"], "sprint_2": [], "backlog": ["Vytvořit llms.txt"]},
    "recommendations_text": "Začněte titulky.",
}


def _request():
    return httpx.Request("POST", "https://api.anthropic.com/v1/messages")


# ---------------------------------------------------------------------------
# Prompt & parsing
# ---------------------------------------------------------------------------

def test_user_message_sections():
    message = build_user_message(ISSUES, STATS, custom_instructions="E-shop s obuví", tech_stack="WordPress")

    assert "- Doména: example.com" in message
    assert "- Doba crawlu: 61s" in message
    assert "## Technologie webu\nWordPress" in message
    assert "## Kontext od klienta\nE-shop s obuví" in message
    assert "- Critical: 1" in message

    grouped = json.loads(message.split("## Issues podle kategorie\n", 1)[1])
    assert grouped["critical"][0]["affected_count"] == 2
    assert grouped["warning"] == []


def test_user_message_omits_empty_context():
    message = build_user_message(ISSUES, STATS)
    assert "Kontext od klienta" not in message
    assert "Technologie webu" not in message


def test_extract_json_handles_fences_and_preamble():
    fenced = "```json\n" + json.dumps(REPORT) + "\n```"
    assert extract_json(fenced)["executive_summary"] == REPORT["executive_summary"]

    chatty = 'Tady je výsledek: {"a": "brace } in string", "b": {"c": 1}} Hotovo.'
    assert extract_json(chatty) == {"a": "brace } in string", "b": {"c": 1}}


def test_extract_json_rejects_garbage():
    with pytest.raises(AiReportError):
        extract_json("no json here")
    with pytest.raises(AiReportError):
        extract_json('{"unterminated": ')


# ---------------------------------------------------------------------------
# compile_report
# ---------------------------------------------------------------------------

def test_no_issues_skips_the_call():
    client = StubAnthropic([])
    assert asyncio.run(compile_report([], STATS, client=client)) is None
    assert client.messages.calls == []


def test_fenced_reply_is_accepted():
    client = StubAnthropic(["```json\n" + json.dumps(REPORT) + "\n```"])

    report = asyncio.run(compile_report(ISSUES, STATS, "Kontext", client=client, backoff_s=0))

    assert isinstance(report, AiReport)
    assert report.action_plan.sprint_1 == ["Doplnit title tagy"]
    call = client.messages.calls[0]
    assert call["max_tokens"] == 4096
    assert "Kontext" in call["messages"][0]["content"]


def test_invalid_json_is_retried_then_gives_up():
    bad_schema = json.dumps({**REPORT, "scored_issues": [{**REPORT["scored_issues"][0], "impact": 9}]})
    client = StubAnthropic(["not json at all", bad_schema, "{broken"])

    assert asyncio.run(compile_report(ISSUES, STATS, client=client, backoff_s=0)) is None
    assert len(client.messages.calls) == 3


def test_api_error_then_success():
    client = StubAnthropic([
        APIConnectionError(request=_request()),
        RateLimitError("rate_limit_error", response=httpx.Response(429, request=_request()), body=None),
        json.dumps(REPORT),
    ])

    report = asyncio.run(compile_report(ISSUES, STATS, client=client, backoff_s=0, rate_limit_wait_s=0))

    assert report is not None
    assert len(client.messages.calls) == 3


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def test_render_fallback():
    assert render_recommendations(None) == FALLBACK_TEXT


def test_render_report_sections_and_order():
    text = render_recommendations(AiReport.model_validate(REPORT))

    assert text.startswith("## Executive Summary\nWeb má solidní základ")
    assert "### Sprint 1 (Quick Wins + Top Critical)\n- Doplnit title tagy" in text
    assert "### Sprint 2" not in text
    assert "### Backlog\n- Vytvořit llms.txt" in text

    scored = text.split("## Hodnocení issues (Impact × Effort)\n", 1)[1].splitlines()
    assert scored[0] == "- **Chybějící title tag** [CRITICAL] — Impact: 5/5, Effort: 2/5 → Quick Win"
    assert scored[1] == "- **Chybějící llms.txt** [INFO] — Impact: 2/5, Effort: 1/5 → Fill-in"
    assert text.endswith("## Doporučení\nZačněte titulky.")
