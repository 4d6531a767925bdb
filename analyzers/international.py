"""International — hreflang reciprocity, targets, x-default and language codes."""

import re

from models import AnalyzerInput, Issue

from ._utils import normalize_for_compare, ok_pages

LANG_CODE_RE = re.compile(r"^[a-z]{2,3}(-[A-Za-z]{2,4})?$")


def is_valid_lang_code(lang: str) -> bool:
    """cs, en-US, pt-BR, zh-Hans ... (x-default is handled by the caller)."""
    return bool(LANG_CODE_RE.match(lang))


def analyze_international(data: AnalyzerInput) -> list[Issue]:
    with_hreflang = [p for p in ok_pages(data.pages) if p.hreflang]
    if not with_hreflang:
        return []

    issues: list[Issue] = []
    hreflang_map = {normalize_for_compare(p.final_url): p.hreflang for p in with_hreflang}
    pages_by_url = {normalize_for_compare(p.final_url): p for p in data.pages}

    # ── Non-reciprocal hreflang → CRITICAL ────────────────────────
    non_reciprocal = []
    for page in with_hreflang:
        page_norm = normalize_for_compare(page.final_url)
        for entry in page.hreflang:
            target_norm = normalize_for_compare(entry.href)
            if target_norm == page_norm:
                continue
            target_entries = hreflang_map.get(target_norm)
            if not target_entries or not any(
                normalize_for_compare(e.href) == page_norm for e in target_entries
            ):
                non_reciprocal.append(page.final_url)
                break
    if non_reciprocal:
        issues.append(Issue(
            severity="critical",
            title="Nereciproční hreflang tagy",
            description=(
                f"{len(non_reciprocal)} stránek má hreflang tagy, které nesměřují zpět "
                "(nejsou reciproční). Google může nereciproční hreflang ignorovat."
            ),
            affected_urls=tuple(non_reciprocal),
            recommendation=(
                "Zajistěte, aby každý hreflang tag měl odpovídající protějšek. Stránka A "
                "odkazuje na B a B musí odkazovat zpět na A."
            ),
        ))

    # ── Hreflang → 404 / redirect → CRITICAL ──────────────────────
    bad_targets = []
    for page in with_hreflang:
        for entry in page.hreflang:
            target = pages_by_url.get(normalize_for_compare(entry.href))
            if target is not None and (target.status_code != 200 or target.redirect_chain):
                bad_targets.append(page.final_url)
                break
    if bad_targets:
        issues.append(Issue(
            severity="critical",
            title="Hreflang směřuje na 404 nebo redirect",
            description=(
                f"{len(bad_targets)} stránek má hreflang odkazující na stránku, která vrací chybu "
                "nebo přesměrovává. Vyhledávače tuto hreflang vazbu ignorují."
            ),
            affected_urls=tuple(bad_targets),
            recommendation=(
                "Aktualizujte hreflang tagy tak, aby směřovaly na finální, dostupné (200 OK) "
                "stránky bez přesměrování."
            ),
        ))

    # ── Missing x-default → WARNING ───────────────────────────────
    no_x_default = [
        p.final_url for p in with_hreflang
        if not any(e.lang.lower() == "x-default" for e in p.hreflang)
    ]
    if no_x_default:
        issues.append(Issue(
            severity="warning",
            title="Chybějící hreflang x-default",
            description=(
                f"{len(no_x_default)} stránek s hreflang tagy nemá x-default fallback. Bez x-default "
                "vyhledávače neví, kterou verzi zobrazit uživatelům mimo definované jazyky."
            ),
            affected_urls=tuple(no_x_default),
            recommendation="Přidejte hreflang x-default tag odkazující na hlavní/defaultní jazykovou verzi stránky.",
        ))

    # ── Invalid language codes → WARNING ──────────────────────────
    invalid_codes = [
        p.final_url for p in with_hreflang
        if any(e.lang.lower() != "x-default" and not is_valid_lang_code(e.lang) for e in p.hreflang)
    ]
    if invalid_codes:
        issues.append(Issue(
            severity="warning",
            title="Neplatné jazykové kódy v hreflang",
            description=(
                f"{len(invalid_codes)} stránek má hreflang tagy s neplatnými jazykovými kódy. "
                "Vyhledávače neplatné kódy ignorují."
            ),
            affected_urls=tuple(invalid_codes),
            recommendation=(
                "Používejte platné ISO 639-1 kódy jazyka (cs, en, de, ...) a volitelně "
                "ISO 3166-1 Alpha-2 kódy regionu (cs-CZ, en-US, de-AT, ...)."
            ),
        ))

    return issues
