"""Security — HTTPS, mixed content, HSTS, redirect chains, loops and 302s."""

from models import AnalyzerInput, CrawledPage, Issue

from ._utils import ok_pages, scheme_of

MAX_REDIRECT_HOPS = 2


def has_redirect_loop(page: CrawledPage) -> bool:
    """
    True when the hop chain comes back to a URL it already left from, or
    when a multi-hop chain ends where it started.
    """
    chain = page.redirect_chain
    if not chain:
        return False

    seen: set[str] = set()
    for hop in chain:
        seen.add(hop.from_url)
        if hop.to_url in seen:
            return True

    return len(chain) > 1 and page.final_url == page.url


def analyze_security(data: AnalyzerInput) -> list[Issue]:
    pages = data.pages
    issues: list[Issue] = []

    # ── HTTP (not HTTPS) → CRITICAL ───────────────────────────────
    http_pages = [p.final_url for p in pages if scheme_of(p.final_url) == "http"]
    if http_pages:
        issues.append(Issue(
            severity="critical",
            title="Stránky dostupné přes HTTP (bez HTTPS)",
            description=(
                f"{len(http_pages)} stránek je dostupných přes nezabezpečený protokol HTTP. "
                "Google penalizuje HTTP stránky a prohlížeče zobrazují varování."
            ),
            affected_urls=tuple(http_pages),
            recommendation="Nasaďte HTTPS certifikát a nastavte přesměrování ze všech HTTP URL na HTTPS.",
        ))

    # ── Mixed content → WARNING ───────────────────────────────────
    https_ok = [p for p in ok_pages(pages) if scheme_of(p.final_url) == "https"]
    mixed = [
        p.final_url for p in https_ok
        if any(scheme_of(img.src) == "http" for img in p.images)
        or any(scheme_of(link.href) == "http" for link in p.external_links)
    ]
    if mixed:
        issues.append(Issue(
            severity="warning",
            title="Mixed content (HTTP resources na HTTPS stránce)",
            description=(
                f"{len(mixed)} HTTPS stránek načítá zdroje přes nezabezpečený HTTP. "
                "Prohlížeče mohou tyto zdroje blokovat."
            ),
            affected_urls=tuple(mixed),
            recommendation="Aktualizujte všechny URL zdrojů (obrázky, skripty, CSS) na HTTPS verze.",
        ))

    # ── HSTS reminder → INFO ──────────────────────────────────────
    # Response headers beyond X-Robots-Tag are not kept, so this is a manual check.
    if https_ok:
        issues.append(Issue(
            severity="info",
            title="Ověřte HSTS header",
            description=(
                "Strict-Transport-Security (HSTS) header zajistí, že prohlížeče budou vždy "
                "používat HTTPS. Nelze ověřit z crawl dat, zkontrolujte manuálně."
            ),
            affected_urls=(https_ok[0].final_url,),
            recommendation=(
                "Přidejte header Strict-Transport-Security: max-age=31536000; "
                "includeSubDomains na server."
            ),
        ))

    # ── Redirect chain > 2 hops → WARNING ─────────────────────────
    long_chains = [p.url for p in pages if len(p.redirect_chain) > MAX_REDIRECT_HOPS]
    if long_chains:
        issues.append(Issue(
            severity="warning",
            title="Dlouhé řetězce přesměrování (> 2 hopy)",
            description=(
                f"{len(long_chains)} URL má více než 2 přesměrování v řadě. Dlouhé řetězce "
                "zpomalují načítání a plýtvají crawl budgetem."
            ),
            affected_urls=tuple(long_chains),
            recommendation=(
                "Zkraťte přesměrovací řetězce. Každá URL by měla směřovat přímo na finální "
                "cíl jedním přesměrováním."
            ),
        ))

    # ── Redirect loop → CRITICAL ──────────────────────────────────
    loops = [p.url for p in pages if has_redirect_loop(p)]
    if loops:
        issues.append(Issue(
            severity="critical",
            title="Smyčka přesměrování (redirect loop)",
            description=(
                f"{len(loops)} URL vytváří smyčku přesměrování. Stránka se nikdy nenačte "
                "a vyhledávače ji nemohou indexovat."
            ),
            affected_urls=tuple(loops),
            recommendation="Opravte přesměrovací pravidla na serveru tak, aby nevznikaly cykly.",
        ))

    # ── 302 where 301 expected → INFO ─────────────────────────────
    temporary = [p.url for p in pages if any(hop.status_code == 302 for hop in p.redirect_chain)]
    if temporary:
        issues.append(Issue(
            severity="info",
            title="Použití 302 místo 301 přesměrování",
            description=(
                f"{len(temporary)} URL používá dočasné přesměrování (302) místo trvalého (301). "
                "Vyhledávače nemusí přenést link equity na cílovou URL."
            ),
            affected_urls=tuple(temporary),
            recommendation=(
                "Pokud je přesměrování trvalé, změňte status code z 302 na 301 "
                "pro správný přenos link juice."
            ),
        ))

    return issues
