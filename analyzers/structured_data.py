"""
Structured data — Organization, BreadcrumbList, Article, FAQPage and Product
coverage, plus basic JSON-LD validity.

Types come from JSON-LD `@type` (including `@graph` members) and from
microdata `itemtype`.
"""

import json
import re
from typing import Any

from models import AnalyzerInput, CrawledPage, Issue

from ._utils import BLOG_PATTERNS, homepage_of, matches_any, ok_pages, path_of

FAQ_PATTERNS = ("/faq", "/casto-kladene", "/otazky", "/frequently")
PRODUCT_PATTERNS = ("/produkt", "/product", "/zbozi", "/eshop", "/shop")
ARTICLE_TYPES = {"Article", "BlogPosting", "NewsArticle"}
MAX_BREADCRUMB_URLS = 20

_SCHEMA_PREFIX_RE = re.compile(r"^https?://schema\.org/", re.I)


def extract_types(ld: dict[str, Any]) -> list[str]:
    types: list[str] = []
    raw = ld.get("@type")
    if isinstance(raw, str):
        types.append(_SCHEMA_PREFIX_RE.sub("", raw))
    elif isinstance(raw, list):
        types.extend(_SCHEMA_PREFIX_RE.sub("", t) for t in raw if isinstance(t, str))

    graph = ld.get("@graph")
    if isinstance(graph, list):
        for item in graph:
            if isinstance(item, dict):
                types.extend(extract_types(item))
    return types


def is_valid_json_ld(ld: dict[str, Any]) -> bool:
    if not ld.get("@type") and not ld.get("@graph"):
        return False
    context = ld.get("@context")
    if context:
        text = context if isinstance(context, str) else json.dumps(context)
        if "schema.org" not in text:
            return False
    return True


def page_types(page: CrawledPage) -> set[str]:
    types: set[str] = set()
    for ld in page.json_ld:
        types.update(extract_types(ld))
    for item in page.microdata:
        if isinstance(item.get("@type"), str):
            types.add(item["@type"])
    return types


def analyze_structured_data(data: AnalyzerInput) -> list[Issue]:
    valid = ok_pages(data.pages)
    issues: list[Issue] = []
    if not valid:
        return issues

    types_by_url = {p.final_url: page_types(p) for p in valid}
    site_types: set[str] = set().union(*types_by_url.values())

    # ── Missing Organization schema → WARNING ─────────────────────
    if "Organization" not in site_types and "LocalBusiness" not in site_types:
        homepage = homepage_of(valid)
        issues.append(Issue(
            severity="warning",
            title="Chybějící Organization schema",
            description=(
                "Web nemá Organization (ani LocalBusiness) schema markup. Organization schema "
                "pomáhá vyhledávačům identifikovat firmu a zobrazit Knowledge Panel."
            ),
            affected_urls=(homepage.final_url,) if homepage else (),
            recommendation=(
                "Přidejte JSON-LD Organization schema na homepage s názvem firmy, logem, "
                "kontakty a sociálními profily."
            ),
        ))

    # ── Missing BreadcrumbList on multi-level sites → WARNING ─────
    deep_without = [
        p.final_url for p in valid
        if p.crawl_depth >= 2 and "BreadcrumbList" not in types_by_url[p.final_url]
    ]
    if deep_without and "BreadcrumbList" not in site_types:
        issues.append(Issue(
            severity="warning",
            title="Chybějící BreadcrumbList schema",
            description=(
                f"{len(deep_without)} stránek na úrovni 2+ nemá BreadcrumbList schema. "
                "Breadcrumbs ve výsledcích vyhledávání zlepšují CTR."
            ),
            affected_urls=tuple(deep_without[:MAX_BREADCRUMB_URLS]),
            recommendation=(
                "Přidejte JSON-LD BreadcrumbList schema na všechny stránky "
                "s víceúrovňovou navigací."
            ),
        ))

    # ── Blog pages without Article/BlogPosting → INFO ─────────────
    blog_without = [
        p.final_url for p in valid
        if matches_any(path_of(p.final_url), BLOG_PATTERNS)
        and not (types_by_url[p.final_url] & ARTICLE_TYPES)
    ]
    if blog_without:
        issues.append(Issue(
            severity="info",
            title="Blogové stránky bez Article/BlogPosting schema",
            description=(
                f"{len(blog_without)} stránek v blogu/článcích nemá Article nebo BlogPosting schema. "
                "Tato schema umožňují rich snippets a lepší zobrazení ve vyhledávání."
            ),
            affected_urls=tuple(blog_without),
            recommendation=(
                "Přidejte JSON-LD Article nebo BlogPosting schema na všechny blogové stránky "
                "s headline, author, datePublished a image."
            ),
        ))

    # ── FAQ pages without FAQPage → INFO ──────────────────────────
    faq_without = [
        p.final_url for p in valid
        if matches_any(path_of(p.final_url), FAQ_PATTERNS)
        and "FAQPage" not in types_by_url[p.final_url]
    ]
    if faq_without:
        issues.append(Issue(
            severity="info",
            title="FAQ stránky bez FAQPage schema",
            description=(
                f"{len(faq_without)} FAQ stránek nemá FAQPage schema. FAQPage schema umožňuje "
                "zobrazení otázek a odpovědí přímo ve výsledcích vyhledávání."
            ),
            affected_urls=tuple(faq_without),
            recommendation="Přidejte JSON-LD FAQPage schema s mainEntity obsahujícím Question a acceptedAnswer.",
        ))

    # ── Product pages without Product → WARNING ───────────────────
    product_without = [
        p.final_url for p in valid
        if matches_any(path_of(p.final_url), PRODUCT_PATTERNS)
        and "Product" not in types_by_url[p.final_url]
    ]
    if product_without:
        issues.append(Issue(
            severity="warning",
            title="Produktové stránky bez Product schema",
            description=(
                f"{len(product_without)} produktových stránek nemá Product schema. Product schema "
                "umožňuje zobrazení ceny, hodnocení a dostupnosti ve výsledcích."
            ),
            affected_urls=tuple(product_without),
            recommendation=(
                "Přidejte JSON-LD Product schema s name, description, offers (price, availability) "
                "a případně aggregateRating."
            ),
        ))

    # ── JSON-LD with errors → WARNING ─────────────────────────────
    invalid_ld = [p.final_url for p in valid if any(not is_valid_json_ld(ld) for ld in p.json_ld)]
    if invalid_ld:
        issues.append(Issue(
            severity="warning",
            title="JSON-LD s chybami",
            description=(
                f"{len(invalid_ld)} stránek má JSON-LD structured data bez povinného @type "
                "nebo @context. Vyhledávače nemusí tato data zpracovat."
            ),
            affected_urls=tuple(invalid_ld),
            recommendation=(
                "Opravte JSON-LD. Každý objekt musí mít @context (schema.org) a @type. "
                "Validujte pomocí Google Rich Results Test."
            ),
        ))

    return issues
