"""
Performance — Core Web Vitals and Lighthouse score thresholds, checked per
(URL, strategy) measurement. No PageSpeed data means no issues.
"""

from typing import Callable, NamedTuple, Optional

from models import AnalyzerInput, Issue, PageSpeedResult, Severity

from ._utils import unique


class Rule(NamedTuple):
    severity: Severity
    title: str
    description: str        # formatted with {count}
    recommendation: str
    matches: Callable[[PageSpeedResult], bool]
    detail: Callable[[PageSpeedResult], str]


def _above(attr: str, limit: float, upper: Optional[float] = None):
    def check(r: PageSpeedResult) -> bool:
        value = getattr(r, attr)
        if value is None or value <= limit:
            return False
        return upper is None or value <= upper
    return check


def _below(limit: int, lower: Optional[int] = None):
    def check(r: PageSpeedResult) -> bool:
        score = r.performance_score
        if score is None or score >= limit:
            return False
        return lower is None or score >= lower
    return check


def _seconds(r: PageSpeedResult) -> str:
    return f"{r.lcp / 1000:.1f}s"


def _ms(attr: str):
    return lambda r: f"{round(getattr(r, attr))}ms"


RULES: tuple[Rule, ...] = (
    Rule(
        "critical",
        "LCP > 4.0s — velmi pomalé načítání hlavního obsahu",
        "{count} měření vykazuje Largest Contentful Paint nad 4 sekundy. "
        "Uživatelé pravděpodobně stránku opustí.",
        "Optimalizujte hlavní obrázek (lazy load, WebP), minimalizujte render-blocking CSS/JS, "
        "použijte preload pro LCP element.",
        _above("lcp", 4000),
        _seconds,
    ),
    Rule(
        "warning",
        "LCP > 2.5s — pomalé načítání hlavního obsahu",
        "{count} měření má LCP mezi 2.5–4.0s. Google doporučuje LCP pod 2.5s.",
        "Komprimujte obrázky, implementujte preload pro LCP element, optimalizujte server response time.",
        _above("lcp", 2500, 4000),
        _seconds,
    ),
    Rule(
        "critical",
        "INP > 500ms — velmi špatná interaktivita",
        "{count} měření vykazuje Interaction to Next Paint nad 500ms. "
        "Stránky reagují velmi pomalu na uživatelské akce.",
        "Rozdělte dlouhé úlohy (long tasks) na menší, odložte nepotřebný JavaScript, "
        "použijte web workers pro výpočetně náročné operace.",
        _above("inp", 500),
        _ms("inp"),
    ),
    Rule(
        "warning",
        "INP > 200ms — pomalá interaktivita",
        "{count} měření má INP mezi 200–500ms. Google doporučuje INP pod 200ms.",
        "Minimalizujte JavaScript na stránce, odložte nekritický JS, optimalizujte event handlery.",
        _above("inp", 200, 500),
        _ms("inp"),
    ),
    Rule(
        "critical",
        "CLS > 0.25 — silný layout shift",
        "{count} měření vykazuje Cumulative Layout Shift nad 0.25. "
        "Obsah stránky se výrazně posouvá při načítání.",
        "Nastavte explicitní rozměry (width/height) na obrázky a videa, vyhněte se dynamicky "
        "vkládaným prvkům nad existující obsah.",
        _above("cls", 0.25),
        lambda r: f"{r.cls:.3f}",
    ),
    Rule(
        "warning",
        "CLS > 0.1 — mírný layout shift",
        "{count} měření má CLS mezi 0.1–0.25. Google doporučuje CLS pod 0.1.",
        "Rezervujte prostor pro obrázky, reklamy a embedded prvky. Používejte transform animace "
        "místo layout-triggering vlastností.",
        _above("cls", 0.1, 0.25),
        lambda r: f"{r.cls:.3f}",
    ),
    Rule(
        "warning",
        "TTFB > 600ms — pomalá odezva serveru",
        "{count} měření má Time to First Byte nad 600ms. "
        "Pomalý server zpožďuje celé načítání stránky.",
        "Optimalizujte serverové zpracování, implementujte CDN, zvažte server-side caching "
        "a databázovou optimalizaci.",
        _above("ttfb", 600),
        _ms("ttfb"),
    ),
    Rule(
        "info",
        "TTFB > 200ms — odezva serveru nad ideálem",
        "{count} měření má TTFB mezi 200–600ms. Ideální TTFB je pod 200ms.",
        "Zvažte CDN, edge caching nebo optimalizaci databázových dotazů pro rychlejší server response.",
        _above("ttfb", 200, 600),
        _ms("ttfb"),
    ),
    Rule(
        "critical",
        "Performance score < 50",
        "{count} měření má performance score pod 50. Stránky mají vážné problémy s výkonem.",
        "Proveďte kompletní performance audit. Optimalizujte obrázky, JavaScript, CSS "
        "a server response time.",
        _below(50),
        lambda r: f"{r.performance_score}/100",
    ),
    Rule(
        "warning",
        "Performance score < 90",
        "{count} měření má performance score mezi 50–89. Stránky mají prostor pro zlepšení výkonu.",
        "Identifikujte a optimalizujte největší bottlenecky pomocí Lighthouse. "
        "Zaměřte se na LCP, INP a CLS.",
        _below(90, 50),
        lambda r: f"{r.performance_score}/100",
    ),
)


def analyze_performance(data: AnalyzerInput) -> list[Issue]:
    results = data.pagespeed_results
    if not results:
        return []

    issues: list[Issue] = []
    for rule in RULES:
        hits = [r for r in results if rule.matches(r)]
        if not hits:
            continue
        measurements = ", ".join(f"{r.url} ({r.strategy}: {rule.detail(r)})" for r in hits)
        issues.append(Issue(
            severity=rule.severity,
            title=rule.title,
            description=f"{rule.description.format(count=len(hits))} Měření: {measurements}.",
            affected_urls=unique(r.url for r in hits),
            recommendation=rule.recommendation,
        ))
    return issues
