"""
Indexability — robots.txt conflicts, noindex vs sitemap, canonical health
and sitemap hygiene.
"""

from models import AnalyzerInput, Issue

from ._utils import has_noindex, normalize_for_compare, ok_pages, path_of, robots_groups


def analyze_indexability(data: AnalyzerInput) -> list[Issue]:
    pages = data.pages
    issues: list[Issue] = []

    sitemap_set = {normalize_for_compare(u) for u in data.sitemap_urls}
    pages_by_url = {normalize_for_compare(p.final_url): p for p in pages}

    # ── Noindex pages in sitemap → CRITICAL ───────────────────────
    noindex_in_sitemap = [
        p.final_url for p in pages
        if normalize_for_compare(p.final_url) in sitemap_set and has_noindex(p)
    ]
    if noindex_in_sitemap:
        issues.append(Issue(
            severity="critical",
            title="Noindex stránky v sitemapě",
            description=(
                f"{len(noindex_in_sitemap)} stránek má noindex tag, ale je v sitemap.xml. "
                "Vyhledávače dostávají protichůdné signály."
            ),
            affected_urls=tuple(noindex_in_sitemap),
            recommendation=(
                "Odstraňte tyto URL ze sitemapy, nebo odeberte noindex direktivu, "
                "pokud mají být indexovány."
            ),
        ))

    # ── Canonical → 404 / noindex / redirect → CRITICAL ───────────
    bad_canonicals = []
    for page in pages:
        if not page.canonical:
            continue
        canon_norm = normalize_for_compare(page.canonical)
        # Self-canonical: the page's own status and noindex are reported elsewhere
        if canon_norm == normalize_for_compare(page.final_url):
            continue
        target = pages_by_url.get(canon_norm)
        if target is None:
            continue
        if target.status_code != 200 or has_noindex(target) or target.redirect_chain:
            bad_canonicals.append(page.final_url)
    if bad_canonicals:
        issues.append(Issue(
            severity="critical",
            title="Canonical odkazuje na 404, noindex nebo redirect",
            description=(
                f"{len(bad_canonicals)} stránek má canonical tag směřující na stránku, "
                "která je nedostupná, noindexovaná nebo přesměrovaná."
            ),
            affected_urls=tuple(bad_canonicals),
            recommendation=(
                "Aktualizujte canonical tagy tak, aby odkazovaly na finální, "
                "indexovatelné, 200 OK stránky."
            ),
        ))

    # ── Canonical chaining → WARNING ──────────────────────────────
    chained = []
    for page in pages:
        if not page.canonical:
            continue
        canon_norm = normalize_for_compare(page.canonical)
        target = pages_by_url.get(canon_norm)
        if target is not None and target.canonical:
            if normalize_for_compare(target.canonical) != canon_norm:
                chained.append(page.final_url)
    if chained:
        issues.append(Issue(
            severity="warning",
            title="Řetězení canonical tagů",
            description=(
                f"{len(chained)} stránek má canonical tag, který odkazuje na stránku "
                "s jiným canonical, vzniká řetězení."
            ),
            affected_urls=tuple(chained),
            recommendation="Nastavte canonical tagy přímo na finální cílovou URL bez prostředníků.",
        ))

    # ── Sitemap contains non-200 URLs → WARNING ───────────────────
    non_200 = []
    for s_url in data.sitemap_urls:
        page = pages_by_url.get(normalize_for_compare(s_url))
        if page is not None and page.status_code != 200 and page.final_url not in non_200:
            non_200.append(page.final_url)
    if non_200:
        issues.append(Issue(
            severity="warning",
            title="Sitemap obsahuje non-200 URL",
            description=(
                f"{len(non_200)} URL v sitemap.xml nevrací status 200 "
                "(přesměrování, 404, 5xx)."
            ),
            affected_urls=tuple(non_200),
            recommendation=(
                "Odstraňte ze sitemapy URL, které nevracejí 200 OK. Sitemap by měla "
                "obsahovat pouze kanonické, indexovatelné stránky."
            ),
        ))

    # ── Missing self-referencing canonical → WARNING ──────────────
    # Cross-canonicals are intentional; only pages with no canonical at all count.
    without_canonical = [
        p.final_url for p in ok_pages(pages)
        if not has_noindex(p) and not p.canonical
    ]
    if without_canonical:
        issues.append(Issue(
            severity="warning",
            title="Chybějící self-referencing canonical",
            description=(
                f"{len(without_canonical)} indexovatelných stránek nemá canonical tag. "
                "Bez canonical hrozí duplikace obsahu."
            ),
            affected_urls=tuple(without_canonical),
            recommendation=(
                "Přidejte na každou indexovatelnou stránku self-referencing canonical tag "
                "(<link rel='canonical' href='...' />)."
            ),
        ))

    # ── robots.txt blocks important pages → CRITICAL ──────────────
    if data.robots_txt:
        patterns = wildcard_disallows(data.robots_txt)
        blocked = [
            p.final_url for p in ok_pages(pages)
            if any(path_matches(path_of(p.final_url), pattern) for pattern in patterns)
        ]
        if blocked:
            issues.append(Issue(
                severity="critical",
                title="robots.txt blokuje důležité stránky",
                description=(
                    f"{len(blocked)} dostupných stránek je blokováno v robots.txt. "
                    "Vyhledávače je nebudou indexovat."
                ),
                affected_urls=tuple(blocked),
                recommendation=(
                    "Zkontrolujte robots.txt a odstraňte Disallow pravidla pro stránky, "
                    "které mají být indexovány."
                ),
            ))

    return issues


def wildcard_disallows(robots_txt: str) -> list[str]:
    """Disallow paths of the `User-agent: *` group(s) only."""
    paths: list[str] = []
    for agents, disallows in robots_groups(robots_txt):
        if "*" in agents:
            paths.extend(disallows)
    return paths


def path_matches(path: str, pattern: str) -> bool:
    """Prefix match; a trailing `*` is a plain prefix, a trailing `$` anchors the end."""
    if pattern.endswith("*"):
        return path.startswith(pattern[:-1])
    if pattern.endswith("$"):
        return path == pattern[:-1]
    return path.startswith(pattern)
