"""
ai_report.py — turns the automated findings into a prioritised action plan
with Claude, and renders it as the report's recommendations text.

A missing or broken AI answer never fails the audit: compile_report returns
None and render_recommendations falls back to a fixed sentence.
"""

import asyncio
import json
import logging
from typing import Any, Optional, Sequence

from anthropic import APIError, AsyncAnthropic, RateLimitError
from pydantic import BaseModel, ValidationError

from config import ANTHROPIC_API_KEY, CLAUDE_MODEL
from models import AiReport, Issue

logger = logging.getLogger("ai-report")

MAX_TOKENS = 4096
MAX_RETRIES = 2                 # 3 attempts in total
RATE_LIMIT_WAIT_S = 30.0

FALLBACK_TEXT = "AI analýza nebyla k dispozici. Report obsahuje pouze automaticky detekované issues."

QUADRANT_LABELS = {
    "quick_win": "Quick Win",
    "major_project": "Major Project",
    "fill_in": "Fill-in",
    "time_waster": "Time Waster",
}

SYSTEM_PROMPT = """Jsi senior SEO analytik v digitální marketingové agentuře.
Dostáváš strukturovaná crawl data a seznamy issues z automatizovaného technického SEO auditu.

Tvůj úkol:

1. Napiš executive summary (3–5 vět) o celkovém technickém SEO zdraví webu.
2. Ohodnoť každý issue na škále Impact (1–5) a Effort (1–5):
   - Impact: rozsah (globální šablona vs. jedna stránka), komerční relevance, vliv na AI vyhledávání
   - Effort: potřebná dev kapacita, obsahová náročnost, úroveň rizika
3. Přiřaď každý issue do kvadrantu:
   - quick_win (vysoký impact, nízký effort)
   - major_project (vysoký impact, vysoký effort)
   - fill_in (nízký impact, nízký effort)
   - time_waster (nízký impact, vysoký effort)
4. Vygeneruj prioritizovaný akční plán:
   - Sprint 1: Všechny Quick Wins + top 3 Critical Major Projects
   - Sprint 2: Zbývající Major Projects
   - Backlog: Fill-ins
   (Time Wastery vynech z akčního plánu)
5. Napiš akční doporučení v češtině.

DŮLEŽITÉ:
- Veškerý výstup MUSÍ být v ČEŠTINĚ.
- Odpověz POUZE validním JSON objektem, bez markdown code fences, bez komentářů.
- Formát odpovědi:
{
  "executive_summary": "...",
  "scored_issues": [
    {
      "title": "název issue",
      "severity": "critical|warning|info",
      "impact": 1-5,
      "effort": 1-5,
      "quadrant": "quick_win|major_project|fill_in|time_waster",
      "recommendation": "konkrétní doporučení"
    }
  ],
  "action_plan": {
    "sprint_1": ["akce 1", "akce 2"],
    "sprint_2": ["akce 3"],
    "backlog": ["akce 4"]
  },
  "recommendations_text": "Celkový text doporučení pro klienta..."
}"""


class AiReportError(Exception):
    """One AI attempt produced nothing usable."""


class CrawlStats(BaseModel):
    domain: str
    total_pages_crawled: int
    crawl_depth_used: int
    crawl_duration_ms: int


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------

def _group_by_severity(issues: Sequence[Issue]) -> dict[str, list[dict[str, Any]]]:
    grouped: dict[str, list[dict[str, Any]]] = {"critical": [], "warning": [], "info": []}
    for issue in issues:
        grouped[issue.severity].append({
            "title": issue.title,
            "severity": issue.severity,
            "affected_count": len(issue.affected_urls),
            "recommendation": issue.recommendation,
        })
    return grouped


def build_user_message(
    issues: Sequence[Issue],
    stats: CrawlStats,
    custom_instructions: Optional[str] = None,
    tech_stack: Optional[str] = None,
) -> str:
    counts = {sev: sum(1 for i in issues if i.severity == sev) for sev in ("critical", "warning", "info")}

    parts = [
        "## Crawl statistiky\n"
        f"- Doména: {stats.domain}\n"
        f"- Celkem procrawlováno stránek: {stats.total_pages_crawled}\n"
        f"- Hloubka crawlu: {stats.crawl_depth_used}\n"
        f"- Doba crawlu: {round(stats.crawl_duration_ms / 1000)}s"
    ]
    if tech_stack:
        parts.append(f"\n## Technologie webu\n{tech_stack}")
    if custom_instructions:
        parts.append(f"\n## Kontext od klienta\n{custom_instructions}")
    parts.append(
        "\n## Souhrn issues\n"
        f"- Celkem: {len(issues)}\n"
        f"- Critical: {counts['critical']}\n"
        f"- Warning: {counts['warning']}\n"
        f"- Info: {counts['info']}"
    )
    parts.append(
        "\n## Issues podle kategorie\n"
        + json.dumps(_group_by_severity(issues), ensure_ascii=False, indent=2)
    )
    return "\n".join(parts)


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

def extract_json(text: str) -> dict:
    """
    Pull the JSON object out of a model answer.
    Handles markdown fences, preamble text and trailing commentary.
    Raises AiReportError when no object can be parsed.
    """
    text = text.strip()

    # Strip markdown code fences
    if text.startswith("```"):
        text = text.split("\n", 1)[-1]
        text = text.rsplit("```", 1)[0].strip()

    try:
        parsed = json.loads(text)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    start = text.find("{")
    if start == -1:
        raise AiReportError("No JSON object in model response")

    # String-aware brace counting
    in_string = False
    escape = False
    depth = 0
    for i in range(start, len(text)):
        ch = text[i]
        if escape:
            escape = False
            continue
        if ch == "\\" and in_string:
            escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                try:
                    return json.loads(text[start:i + 1])
                except json.JSONDecodeError as e:
                    raise AiReportError(f"Invalid JSON in model response: {e}") from e

    raise AiReportError("Unterminated JSON object in model response")


def _response_text(response) -> str:
    for block in response.content:
        if getattr(block, "type", None) == "text":
            return block.text
    raise AiReportError("No text block in Claude response")


# ---------------------------------------------------------------------------
# Claude call
# ---------------------------------------------------------------------------

async def compile_report(
    issues: Sequence[Issue],
    stats: CrawlStats,
    custom_instructions: Optional[str] = None,
    tech_stack: Optional[str] = None,
    client: Optional[AsyncAnthropic] = None,
    backoff_s: float = 1.0,
    rate_limit_wait_s: float = RATE_LIMIT_WAIT_S,
) -> Optional[AiReport]:
    """
    Ask Claude to score the issues and build the sprint plan.
    Up to MAX_RETRIES + 1 attempts with linear backoff; rate limits wait
    rate_limit_wait_s. Returns None when there is nothing to analyse or
    every attempt failed.
    """
    if not issues:
        logger.info("No issues to analyse — skipping AI compilation")
        return None

    if client is None:
        if not ANTHROPIC_API_KEY:
            logger.warning("ANTHROPIC_API_KEY is not set — skipping AI compilation")
            return None
        client = AsyncAnthropic(api_key=ANTHROPIC_API_KEY)

    user_message = build_user_message(issues, stats, custom_instructions, tech_stack)
    attempts = MAX_RETRIES + 1
    last_error: Optional[Exception] = None

    for attempt in range(1, attempts + 1):
        try:
            logger.info(f"Calling Claude for SEO report (attempt {attempt}/{attempts}, {len(issues)} issues)")
            response = await client.messages.create(
                model=CLAUDE_MODEL,
                max_tokens=MAX_TOKENS,
                system=SYSTEM_PROMPT,
                messages=[
                    {"role": "user", "content": user_message},
                ],
            )
            report = AiReport.model_validate(extract_json(_response_text(response)))
            logger.info(
                f"AI report generated: {len(report.scored_issues)} scored issues, "
                f"{len(report.action_plan.sprint_1)} sprint 1 actions"
            )
            return report

        except (APIError, AiReportError, ValidationError) as e:
            last_error = e
            is_rate_limit = isinstance(e, RateLimitError) or "rate_limit" in str(e).lower()
            wait = rate_limit_wait_s if is_rate_limit else backoff_s * attempt
            logger.warning(
                f"AI report attempt {attempt}/{attempts} failed "
                f"({'rate limit — waiting' if is_rate_limit else 'retrying in'} {wait:g} s): "
                f"{type(e).__name__}: {e}"
            )
            if attempt < attempts:
                await asyncio.sleep(wait)

    logger.error(f"AI report failed after {attempts} attempts, continuing without AI summary: {last_error}")
    return None


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def render_recommendations(report: Optional[AiReport]) -> str:
    if report is None:
        return FALLBACK_TEXT

    parts = ["## Executive Summary", report.executive_summary, "\n## Akční plán"]

    plan = report.action_plan
    for heading, actions in (
        ("### Sprint 1 (Quick Wins + Top Critical)", plan.sprint_1),
        ("### Sprint 2", plan.sprint_2),
        ("### Backlog", plan.backlog),
    ):
        if actions:
            parts.append(f"\n{heading}")
            parts.extend(f"- {action}" for action in actions)

    parts.append("\n## Hodnocení issues (Impact × Effort)")
    for si in sorted(report.scored_issues, key=lambda s: (-s.impact, s.effort)):
        parts.append(
            f"- **{si.title}** [{si.severity.upper()}] — Impact: {si.impact}/5, "
            f"Effort: {si.effort}/5 → {QUADRANT_LABELS[si.quadrant]}"
        )

    parts.append("\n## Doporučení")
    parts.append(report.recommendations_text)
    return "\n".join(parts)
