"""On-page — titles, meta descriptions, H1 structure, content depth, images."""

from collections import defaultdict

from models import AnalyzerInput, CrawledPage, Issue

from ._utils import ok_pages

TITLE_MAX = 60
TITLE_MIN = 30
THIN_CONTENT_WORDS = 300
LARGE_IMAGE_KB = 150


def _duplicates(pages: list[CrawledPage], attr: str) -> tuple[int, list[str]]:
    """(number of duplicate groups, URLs in those groups), case-insensitive."""
    groups: dict[str, list[str]] = defaultdict(list)
    for page in pages:
        value = getattr(page, attr)
        if value:
            groups[value.lower().strip()].append(page.final_url)
    dupes = [urls for urls in groups.values() if len(urls) > 1]
    return len(dupes), [u for urls in dupes for u in urls]


def analyze_on_page(data: AnalyzerInput) -> list[Issue]:
    pages = ok_pages(data.pages)
    issues: list[Issue] = []

    # ── Titles ────────────────────────────────────────────────────
    missing_title = [p.final_url for p in pages if not p.title]
    if missing_title:
        issues.append(Issue(
            severity="critical",
            title="Chybějící title tag",
            description=(
                f"{len(missing_title)} stránek nemá title tag. Title je klíčový ranking faktor "
                "a ovlivňuje CTR ve výsledcích vyhledávání."
            ),
            affected_urls=tuple(missing_title),
            recommendation="Přidejte unikátní, popisný title tag (50–60 znaků) na každou stránku.",
        ))

    group_count, dupe_titles = _duplicates(pages, "title")
    if dupe_titles:
        issues.append(Issue(
            severity="warning",
            title="Duplicitní title tagy",
            description=(
                f"{group_count} skupin stránek sdílí stejný title. Duplicitní titulky "
                "ztěžují vyhledávačům rozlišení stránek."
            ),
            affected_urls=tuple(dupe_titles),
            recommendation="Vytvořte pro každou stránku unikátní title, který přesně popisuje její obsah.",
        ))

    long_titles = [p.final_url for p in pages if p.title and len(p.title) > TITLE_MAX]
    if long_titles:
        issues.append(Issue(
            severity="info",
            title="Title delší než 60 znaků",
            description=(
                f"{len(long_titles)} stránek má title delší než 60 znaků. Dlouhé titulky "
                "mohou být ve výsledcích vyhledávání oříznuty."
            ),
            affected_urls=tuple(long_titles),
            recommendation="Zkraťte titulky na 50–60 znaků. Nejdůležitější klíčová slova dejte na začátek.",
        ))

    short_titles = [p.final_url for p in pages if p.title and len(p.title) < TITLE_MIN]
    if short_titles:
        issues.append(Issue(
            severity="warning",
            title="Title kratší než 30 znaků",
            description=(
                f"{len(short_titles)} stránek má příliš krátký title. Krátké titulky "
                "nevyužívají potenciál pro klíčová slova."
            ),
            affected_urls=tuple(short_titles),
            recommendation="Rozšiřte titulky na 50–60 znaků s popisným textem a relevantními klíčovými slovy.",
        ))

    # ── Meta description ──────────────────────────────────────────
    missing_meta = [p.final_url for p in pages if not p.meta_description]
    if missing_meta:
        issues.append(Issue(
            severity="warning",
            title="Chybějící meta description",
            description=(
                f"{len(missing_meta)} stránek nemá meta description. Vyhledávače si "
                "vygenerují vlastní snippet, který nemusí být optimální."
            ),
            affected_urls=tuple(missing_meta),
            recommendation="Přidejte unikátní meta description (120–160 znaků) s CTA a klíčovými slovy.",
        ))

    group_count, dupe_metas = _duplicates(pages, "meta_description")
    if dupe_metas:
        issues.append(Issue(
            severity="warning",
            title="Duplicitní meta description",
            description=f"{group_count} skupin stránek sdílí stejný meta description.",
            affected_urls=tuple(dupe_metas),
            recommendation=(
                "Vytvořte pro každou stránku unikátní meta description popisující "
                "její specifický obsah."
            ),
        ))

    # ── H1 ────────────────────────────────────────────────────────
    missing_h1 = [p.final_url for p in pages if not p.h1]
    if missing_h1:
        issues.append(Issue(
            severity="critical",
            title="Chybějící H1 nadpis",
            description=(
                f"{len(missing_h1)} stránek nemá H1 nadpis. H1 je důležitý signál "
                "pro vyhledávače o tématu stránky."
            ),
            affected_urls=tuple(missing_h1),
            recommendation="Přidejte na každou stránku jeden H1 nadpis, který popisuje hlavní téma.",
        ))

    multiple_h1 = [p.final_url for p in pages if len(p.h1) > 1]
    if multiple_h1:
        issues.append(Issue(
            severity="warning",
            title="Více H1 nadpisů na stránce",
            description=(
                f"{len(multiple_h1)} stránek má více než jeden H1 nadpis. Jeden H1 je "
                "best practice pro jasnou hierarchii obsahu."
            ),
            affected_urls=tuple(multiple_h1),
            recommendation="Ponechte jeden H1 na stránku. Další nadpisy přesuňte na H2–H3.",
        ))

    h1_is_title = [
        p.final_url for p in pages
        if p.title and any(h.lower().strip() == p.title.lower().strip() for h in p.h1)
    ]
    if h1_is_title:
        issues.append(Issue(
            severity="info",
            title="H1 je identický s title tagem",
            description=(
                f"{len(h1_is_title)} stránek má H1 nadpis totožný s title tagem. "
                "Rozdílné znění lépe využívá prostor pro klíčová slova."
            ),
            affected_urls=tuple(h1_is_title),
            recommendation=(
                "Odlište H1 od title. H1 může být delší a popisnější, title by měl být "
                "stručný a klikatelný."
            ),
        ))

    # ── Content ───────────────────────────────────────────────────
    # Zero-word pages are app shells or logins, not thin articles
    thin = [p.final_url for p in pages if 0 < p.word_count < THIN_CONTENT_WORDS]
    if thin:
        issues.append(Issue(
            severity="warning",
            title="Tenký obsah (< 300 slov)",
            description=(
                f"{len(thin)} stránek má méně než 300 slov. Stránky s málo obsahem "
                "mají nižší šanci na ranking."
            ),
            affected_urls=tuple(thin),
            recommendation=(
                "Rozšiřte obsah o relevantní informace, odpovědi na otázky uživatelů "
                "a podrobnosti k tématu."
            ),
        ))

    # ── Images ────────────────────────────────────────────────────
    missing_alt_pages = []
    missing_alt_total = 0
    for page in pages:
        missing = [img for img in page.images if img.alt is None or not img.alt.strip()]
        if missing:
            missing_alt_pages.append(page.final_url)
            missing_alt_total += len(missing)
    if missing_alt_pages:
        issues.append(Issue(
            severity="warning",
            title="Obrázky bez alt textu",
            description=(
                f"{missing_alt_total} obrázků na {len(missing_alt_pages)} stránkách nemá alt text. "
                "Alt text je důležitý pro přístupnost a image SEO."
            ),
            affected_urls=tuple(missing_alt_pages),
            recommendation=(
                "Přidejte popisný alt text ke všem obrázkům. Dekorativní obrázky mohou mít "
                "prázdný alt (alt='')."
            ),
        ))

    large_image_pages = [
        p.final_url for p in pages
        if any(img.size_kb is not None and img.size_kb > LARGE_IMAGE_KB for img in p.images)
    ]
    if large_image_pages:
        issues.append(Issue(
            severity="info",
            title="Velké obrázky (> 150 KB)",
            description=(
                f"{len(large_image_pages)} stránek obsahuje obrázky větší než 150 KB. "
                "Velké obrázky zpomalují načítání."
            ),
            affected_urls=tuple(large_image_pages),
            recommendation=(
                "Komprimujte obrázky a použijte moderní formáty (WebP, AVIF). "
                "Implementujte lazy loading."
            ),
        ))

    no_preview = [p.final_url for p in pages if (p.max_image_preview or "").lower() != "large"]
    if no_preview:
        issues.append(Issue(
            severity="info",
            title="Chybějící max-image-preview:large",
            description=(
                f"{len(no_preview)} stránek nemá direktivu max-image-preview:large. Bez ní "
                "Google nemusí zobrazit velké náhledy obrázků ve výsledcích."
            ),
            affected_urls=tuple(no_preview),
            recommendation=(
                "Přidejte <meta name='robots' content='max-image-preview:large'> "
                "pro povolení velkých náhledů ve vyhledávání."
            ),
        ))

    return issues
