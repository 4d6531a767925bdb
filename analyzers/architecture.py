"""Architecture — click depth, orphans, internal link distribution, URL hygiene."""

from collections import Counter
from urllib.parse import urlparse

from models import AnalyzerInput, Issue

from ._utils import normalize_for_compare, ok_pages, path_of

CRITICAL_DEPTH = 5
WARNING_DEPTH = 4
MIN_INLINKS = 3
MAX_PATH_LENGTH = 115


def analyze_architecture(data: AnalyzerInput) -> list[Issue]:
    pages = data.pages
    valid = ok_pages(pages)
    issues: list[Issue] = []

    # ── Click depth ───────────────────────────────────────────────
    too_deep = [p.final_url for p in valid if p.crawl_depth > CRITICAL_DEPTH]
    if too_deep:
        issues.append(Issue(
            severity="critical",
            title="Stránky s click depth > 5",
            description=(
                f"{len(too_deep)} stránek vyžaduje více než 5 kliknutí z homepage. "
                "Vyhledávače mohou tyto stránky považovat za méně důležité."
            ),
            affected_urls=tuple(too_deep),
            recommendation=(
                "Zkraťte cestu k důležitým stránkám. Přidejte interní odkazy "
                "z vyšších úrovní navigace."
            ),
        ))

    deep = [p.final_url for p in valid if WARNING_DEPTH < p.crawl_depth <= CRITICAL_DEPTH]
    if deep:
        issues.append(Issue(
            severity="warning",
            title="Důležité stránky s click depth > 4",
            description=(
                f"{len(deep)} stránek vyžaduje více než 4 kliknutí z homepage. "
                "Ideální click depth pro důležité stránky je max 3–4."
            ),
            affected_urls=tuple(deep),
            recommendation="Zvažte přidání odkazů z hlavní navigace, kategorických stránek nebo sidebaru.",
        ))

    # ── Inbound link graph ────────────────────────────────────────
    inlinks: Counter = Counter()
    linked_from_others: set[str] = set()
    for page in pages:
        source = normalize_for_compare(page.final_url)
        for link in page.internal_links:
            target = normalize_for_compare(link.href)
            inlinks[target] += 1
            if target != source:
                linked_from_others.add(target)

    # ── Orphan pages → WARNING ────────────────────────────────────
    crawled = {normalize_for_compare(p.final_url): p for p in pages}
    orphans: list[str] = []
    for s_url in data.sitemap_urls:
        norm = normalize_for_compare(s_url)
        page = crawled.get(norm)
        if page is not None and norm not in linked_from_others and page.final_url not in orphans:
            orphans.append(page.final_url)
    if orphans:
        issues.append(Issue(
            severity="warning",
            title="Osiřelé stránky (orphan pages)",
            description=(
                f"{len(orphans)} stránek je v sitemapě, ale žádná jiná stránka na ně neodkazuje "
                "interním linkem. Vyhledávače je mohou považovat za méně důležité."
            ),
            affected_urls=tuple(orphans),
            recommendation="Přidejte interní odkazy na tyto stránky z relevantních souvisejících stránek.",
        ))

    # ── < 3 inbound internal links → INFO ─────────────────────────
    low_inlinks = [
        p.final_url for p in valid
        if inlinks[normalize_for_compare(p.final_url)] < MIN_INLINKS
    ]
    if low_inlinks:
        issues.append(Issue(
            severity="info",
            title="Stránky s méně než 3 interními odkazy",
            description=(
                f"{len(low_inlinks)} stránek má méně než 3 příchozí interní odkazy. Nízký počet "
                "interních odkazů snižuje PageRank a viditelnost stránky."
            ),
            affected_urls=tuple(low_inlinks),
            recommendation=(
                "Přidejte interní odkazy z tematicky příbuzných stránek. Zvažte sekce "
                "'Související články' nebo kontextové odkazy v obsahu."
            ),
        ))

    # ── URL hygiene ───────────────────────────────────────────────
    params_no_canonical = [p.final_url for p in valid if urlparse(p.final_url).query and not p.canonical]
    if params_no_canonical:
        issues.append(Issue(
            severity="warning",
            title="URL s parametry bez canonical tagu",
            description=(
                f"{len(params_no_canonical)} URL obsahuje query parametry, ale nemá canonical tag. "
                "Může vzniknout duplicitní obsah."
            ),
            affected_urls=tuple(params_no_canonical),
            recommendation=(
                "Přidejte canonical tag na všechny URL s parametry. Canonical by měl směřovat "
                "na čistou verzi URL bez parametrů."
            ),
        ))

    not_lowercase = [p.final_url for p in valid if path_of(p.final_url) != path_of(p.final_url).lower()]
    if not_lowercase:
        issues.append(Issue(
            severity="info",
            title="URL nejsou v lowercase",
            description=(
                f"{len(not_lowercase)} URL obsahuje velká písmena. Velká a malá písmena v URL "
                "mohou vést k duplicitnímu obsahu."
            ),
            affected_urls=tuple(not_lowercase),
            recommendation=(
                "Převeďte všechny URL na lowercase a nastavte 301 přesměrování "
                "z verzí s velkými písmeny."
            ),
        ))

    long_paths = [p.final_url for p in valid if len(path_of(p.final_url)) > MAX_PATH_LENGTH]
    if long_paths:
        issues.append(Issue(
            severity="info",
            title="URL delší než 115 znaků",
            description=(
                f"{len(long_paths)} URL má cestu delší než 115 znaků. Příliš dlouhé URL jsou hůře "
                "sdílitelné a mohou být oříznuty ve výsledcích vyhledávání."
            ),
            affected_urls=tuple(long_paths),
            recommendation=(
                "Zkraťte URL cesty. Používejte stručné, popisné slugy bez zbytečných slov "
                "a parametrů."
            ),
        ))

    return issues
