"""
AEO/GEO — readiness for AI answer engines: AI crawler access, llms.txt,
author attribution, E-E-A-T signals and outbound citations.
"""

from typing import Any

from models import AnalyzerInput, Issue

from ._utils import BLOG_PATTERNS, homepage_of, matches_any, ok_pages, path_of, robots_groups

ABOUT_PATHS = ("/o-nas", "/about", "/about-us", "/o-firme", "/o-spolecnosti", "/tym", "/team")
ABOUT_MIN_PAGES = 3
CONTENT_MIN_WORDS = 300
MAX_CITATION_URLS = 20

AI_BOTS = (
    (
        "GPTBot",
        "robots.txt blokuje GPTBot (OpenAI). Web nebude zahrnut do tréninkových dat a může mít "
        "nižší viditelnost v ChatGPT a AI vyhledávání.",
        "Zvažte povolení GPTBot, pokud chcete být viditelní v AI odpovědích. Případně povolte "
        "pouze crawling bez tréninku pomocí specifických direktiv.",
    ),
    (
        "ClaudeBot",
        "robots.txt blokuje ClaudeBot (Anthropic). Web nebude indexován pro Claude AI a může mít "
        "nižší viditelnost v AI odpovědích.",
        "Zvažte povolení ClaudeBot pro lepší viditelnost v AI odpovědích od Claude.",
    ),
    (
        "PerplexityBot",
        "robots.txt blokuje PerplexityBot. Web nebude zahrnut ve výsledcích Perplexity AI vyhledávání.",
        "Zvažte povolení PerplexityBot pro viditelnost v AI-powered vyhledávání.",
    ),
)


def is_bot_blocked(robots_txt: str, bot: str) -> bool:
    """Only the bot's own group counts; a wildcard block is not a targeted block."""
    for agents, disallows in robots_groups(robots_txt):
        if any(agent.lower() == bot.lower() for agent in agents):
            if any(path in ("/", "/*") for path in disallows):
                return True
    return False


def has_author(ld: dict[str, Any]) -> bool:
    if ld.get("author"):
        return True
    graph = ld.get("@graph")
    if isinstance(graph, list):
        return any(isinstance(item, dict) and "author" in item for item in graph)
    return False


def analyze_aeo_geo(data: AnalyzerInput) -> list[Issue]:
    valid = ok_pages(data.pages)
    issues: list[Issue] = []

    # ── AI crawlers blocked → WARNING ─────────────────────────────
    if data.robots_txt:
        for bot, description, recommendation in AI_BOTS:
            if is_bot_blocked(data.robots_txt, bot):
                issues.append(Issue(
                    severity="warning",
                    title=f"{bot} blokován v robots.txt",
                    description=description,
                    affected_urls=(),
                    recommendation=recommendation,
                ))

    # ── Missing llms.txt → INFO ───────────────────────────────────
    crawled_llms = any(path_of(p.final_url) == "/llms.txt" for p in data.pages)
    if not data.llms_txt_found and not crawled_llms:
        homepage = homepage_of(valid)
        issues.append(Issue(
            severity="info",
            title="Chybějící llms.txt",
            description=(
                "Web nemá soubor llms.txt. Tento soubor pomáhá AI modelům porozumět obsahu "
                "a struktuře webu pro přesnější odpovědi."
            ),
            affected_urls=(homepage.final_url,) if homepage else (),
            recommendation=(
                "Vytvořte soubor /llms.txt s popisem webu, jeho účelu, klíčových stránek "
                "a preferovaného formátu citací."
            ),
        ))

    # ── Articles without author → INFO ────────────────────────────
    no_author = [
        p.final_url for p in valid
        if matches_any(path_of(p.final_url), BLOG_PATTERNS)
        and not any(has_author(ld) for ld in p.json_ld)
    ]
    if no_author:
        issues.append(Issue(
            severity="info",
            title="Články bez author schema",
            description=(
                f"{len(no_author)} článků nemá author informaci ve structured data. "
                "Author schema posiluje E-E-A-T signály pro AI a vyhledávače."
            ),
            affected_urls=tuple(no_author),
            recommendation=(
                "Přidejte author property do Article/BlogPosting schema s name, url "
                "a případně sameAs odkazy na profesní profily."
            ),
        ))

    # ── No About page → INFO ──────────────────────────────────────
    has_about = any(
        path_of(p.final_url).lower().rstrip("/") in ABOUT_PATHS for p in valid
    )
    if not has_about and len(valid) > ABOUT_MIN_PAGES:
        issues.append(Issue(
            severity="info",
            title="Chybějící 'O nás' stránka — slabé E-E-A-T signály",
            description=(
                "Web nemá zřejmou stránku 'O nás' (About Us). E-E-A-T (Experience, Expertise, "
                "Authoritativeness, Trustworthiness) signály jsou důležité pro AI i tradiční "
                "vyhledávače."
            ),
            affected_urls=(),
            recommendation=(
                "Vytvořte stránku 'O nás' s informacemi o firmě, týmu, expertíze a referencích. "
                "Přidejte Organization schema."
            ),
        ))

    # ── Content without external citations → INFO ─────────────────
    content_pages = [p for p in valid if p.word_count >= CONTENT_MIN_WORDS and p.crawl_depth > 0]
    uncited = [p.final_url for p in content_pages if not p.external_links]
    if content_pages and len(uncited) / len(content_pages) > 0.5:
        issues.append(Issue(
            severity="info",
            title="Obsahové stránky bez externích citací",
            description=(
                f"{len(uncited)} z {len(content_pages)} obsahových stránek nemá žádné externí "
                "odkazy. Citace autoritativních zdrojů posilují důvěryhodnost obsahu."
            ),
            affected_urls=tuple(uncited[:MAX_CITATION_URLS]),
            recommendation=(
                "Přidejte odkazy na relevantní autoritativní zdroje (studie, statistiky, oborové "
                "weby). Citace zvyšují E-E-A-T a pomáhají AI modelům ověřit informace."
            ),
        ))

    return issues
