"""
report.py — scoring and final assembly of the technical audit result.

Scores are pure functions of the issue list (plus the page count for the
overall score), so a stored report can always be re-scored from its issues.
"""

import math
from typing import Sequence

from models import (
    AuditCategories,
    AuditSummary,
    CategoryResult,
    CrawledPage,
    Issue,
    PageResult,
    TechnicalAuditResult,
)

CATEGORY_PENALTY = {"critical": 15, "warning": 5, "info": 1}
OVERALL_PENALTY = {"critical": 10.0, "warning": 3.0, "info": 0.5}
MAX_PAGE_RESULTS = 100

CWV_MARKERS = ("LCP", "INP", "CLS", "TTFB")
SITEMAP_ROBOTS_MARKERS = ("sitemap", "robots")
REDIRECT_MARKERS = ("přesměrování", "redirect")


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp(value: float) -> int:
    return max(0, min(100, int(value)))


def severity_counts(issues: Sequence[Issue]) -> dict[str, int]:
    counts = {"critical": 0, "warning": 0, "info": 0}
    for issue in issues:
        counts[issue.severity] += 1
    return counts


# ---------------------------------------------------------------------------
# Scores
# ---------------------------------------------------------------------------

def category_score(issues: Sequence[Issue]) -> int:
    """100 minus 15/5/1 per critical/warning/info issue, clamped to 0..100."""
    if not issues:
        return 100
    penalty = sum(CATEGORY_PENALTY[i.severity] for i in issues)
    return _clamp(100 - penalty)


def overall_score(issues: Sequence[Issue], total_pages: int) -> int:
    """
    Weighted penalty 10/3/0.5, divided by max(1, log10(pages + 1)) so that
    bigger sites are not punished for having proportionally more findings.
    """
    if total_pages == 0:
        return 0
    penalty = sum(OVERALL_PENALTY[i.severity] for i in issues)
    scale = max(1.0, math.log10(total_pages + 1))
    return _clamp(_round_half_up(100 - penalty / scale))


def to_category(issues: Sequence[Issue]) -> CategoryResult:
    return CategoryResult(score=category_score(issues), issues=list(issues))


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

def _is_cwv(issue: Issue) -> bool:
    return any(marker in issue.title for marker in CWV_MARKERS)


def _is_sitemap_robots(issue: Issue) -> bool:
    title = issue.title.lower()
    return any(marker in title for marker in SITEMAP_ROBOTS_MARKERS)


def _is_redirect(issue: Issue) -> bool:
    title = issue.title.lower()
    return (
        any(marker in title for marker in REDIRECT_MARKERS)
        or "302" in issue.title
        or "301" in issue.title
    )


def build_categories(by_analyzer: dict[str, list[Issue]]) -> AuditCategories:
    """Project analyzer output onto the eleven report categories."""
    indexability = by_analyzer.get("indexability", [])
    on_page = by_analyzer.get("on_page", [])
    security = by_analyzer.get("security", [])
    architecture = by_analyzer.get("architecture", [])
    structured_data = by_analyzer.get("structured_data", [])
    performance = by_analyzer.get("performance", [])
    aeo_geo = by_analyzer.get("aeo_geo", [])
    international = by_analyzer.get("international", [])

    return AuditCategories(
        indexability=to_category(indexability),
        meta_tags=to_category(on_page),
        security=to_category(security),
        internal_linking=to_category(architecture),
        structured_data=to_category(structured_data),
        performance=to_category(performance),
        core_web_vitals=to_category([i for i in performance if _is_cwv(i)]),
        sitemap_robots=to_category([i for i in indexability if _is_sitemap_robots(i)]),
        redirects=to_category([i for i in security if _is_redirect(i)]),
        # Not detected yet: the crawler does not probe outbound link targets
        broken_links=to_category([]),
        # Report layout slot reused for international/AEO findings
        mobile_friendliness=to_category(international if international else aeo_geo),
    )


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------

def build_page_results(pages: Sequence[CrawledPage], issues: Sequence[Issue]) -> list[PageResult]:
    issues_by_url: dict[str, list[Issue]] = {}
    for issue in issues:
        for url in issue.affected_urls:
            issues_by_url.setdefault(url, []).append(issue)

    ok = [p for p in pages if p.status_code == 200][:MAX_PAGE_RESULTS]
    return [
        PageResult(
            url=p.final_url,
            status_code=p.status_code,
            title=p.title or "",
            meta_description=p.meta_description or "",
            h1=list(p.h1),
            load_time_ms=p.response_time_ms,
            content_length=p.content_length,
            issues=issues_by_url.get(p.final_url, []),
        )
        for p in ok
    ]


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------

def build_result(
    pages: Sequence[CrawledPage],
    by_analyzer: dict[str, list[Issue]],
    ai_recommendations: str,
    crawl_duration_ms: int,
) -> TechnicalAuditResult:
    all_issues = [issue for issues in by_analyzer.values() for issue in issues]
    counts = severity_counts(all_issues)

    return TechnicalAuditResult(
        summary=AuditSummary(
            total_pages_crawled=len(pages),
            total_issues=len(all_issues),
            critical_count=counts["critical"],
            warning_count=counts["warning"],
            info_count=counts["info"],
            overall_score=overall_score(all_issues, len(pages)),
            crawl_duration_ms=crawl_duration_ms,
        ),
        categories=build_categories(by_analyzer),
        pages=build_page_results(pages, all_issues),
        ai_recommendations=ai_recommendations,
    )
