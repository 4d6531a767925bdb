"""
technical_audit.py — handler for seo.technical-audit jobs.

Pipeline: crawl → PageSpeed → eight analyzers → Claude action plan → report.
Progress bands: preparation 0-5, crawl 5-50, PageSpeed 50-60, analysis 60-80,
AI 80-95, assembly 95. The worker writes 100 on completion.

The crawl is the only stage that can fail the job. PageSpeed and the AI
report degrade to "no data" and the audit continues.
"""

import logging
import time
from typing import Any, Optional

import analyzers
from ai_report import CrawlStats, compile_report, render_recommendations
from config import PAGESPEED_API_KEY, PAGESPEED_ENABLED
from crawler import CrawlError, CrawlResult, crawl
from job_types import JobTimeoutError, ProgressFn
from models import AiReport, AnalyzerInput, JobRecord, PageSpeedResult, TechnicalAuditParams
from pagespeed import run_pagespeed, select_urls
from report import build_result, severity_counts

logger = logging.getLogger("technical-audit")

PSI_TOP_PAGES = 5


async def handle_technical_audit(job: JobRecord, update_progress: ProgressFn) -> dict[str, Any]:
    start = time.monotonic()

    # Phase 0 — preparation (0 → 5)
    await update_progress(0, "Příprava auditu...")
    params = TechnicalAuditParams.model_validate(job.params)
    logger.info(
        f"[{job.id}] Technical audit starting for {params.domain} "
        f"(depth={params.crawl_depth}, max_pages={params.max_pages})"
    )
    await update_progress(5, "Zahajuji crawling...")

    # Phase 1 — crawl (5 → 50)
    async def on_crawl_progress(crawled: int, total: int) -> None:
        pct = round(5 + crawled / max(total, 1) * 45)
        await update_progress(min(pct, 50), f"Crawling... {crawled}/{total} stránek")

    try:
        crawl_result: CrawlResult = await crawl(
            params.domain,
            max_depth=params.crawl_depth,
            max_pages=params.max_pages,
            progress_callback=on_crawl_progress,
        )
    except JobTimeoutError:
        raise
    except Exception as e:
        logger.error(f"[{job.id}] Crawl failed — aborting job: {type(e).__name__}: {e}")
        raise CrawlError(f"Crawl selhal: {e}") from e

    logger.info(
        f"[{job.id}] Crawl done: {len(crawl_result.pages)} pages, "
        f"{len(crawl_result.sitemap_urls)} sitemap URLs, base {crawl_result.base_url}"
    )
    if not crawl_result.pages:
        raise CrawlError("Crawl nevrátil žádné stránky. Zkontrolujte doménu a robots.txt.")

    await update_progress(50, "Měřím rychlost stránek (PageSpeed)...")

    # Phase 2 — PageSpeed (50 → 60)
    psi_results = await _measure_pagespeed(job.id, crawl_result, update_progress)
    await update_progress(60, "Analyzuji data...")

    # Phase 3 — analyzers (60 → 80)
    data = AnalyzerInput(
        pages=tuple(crawl_result.pages),
        robots_txt=crawl_result.robots_txt,
        sitemap_urls=tuple(crawl_result.sitemap_urls),
        pagespeed_results=tuple(psi_results),
        llms_txt_found=crawl_result.llms_txt_found,
    )
    by_analyzer = await analyzers.run_analyzers(data)
    all_issues = [issue for issues in by_analyzer.values() for issue in issues]
    counts = severity_counts(all_issues)
    logger.info(
        f"[{job.id}] Analysis done: {len(all_issues)} issues "
        f"({counts['critical']} critical, {counts['warning']} warning, {counts['info']} info)"
    )
    await update_progress(80, "Generuji AI report...")

    # Phase 4 — AI compilation (80 → 95)
    stats = CrawlStats(
        domain=params.domain,
        total_pages_crawled=len(crawl_result.pages),
        crawl_depth_used=params.crawl_depth,
        crawl_duration_ms=_elapsed_ms(start),
    )
    ai_report: Optional[AiReport] = None
    try:
        ai_report = await compile_report(
            all_issues,
            stats,
            params.custom_instructions,
            tech_stack=", ".join(crawl_result.tech_stack) or None,
        )
    except JobTimeoutError:
        raise
    except Exception as e:
        logger.warning(f"[{job.id}] AI compilation failed — continuing without AI summary: {e}")
    if ai_report is None:
        logger.warning(f"[{job.id}] No AI report — proceeding with findings only")
    await update_progress(95, "Sestavuji finální report...")

    # Phase 5 — assembly
    result = build_result(
        crawl_result.pages,
        by_analyzer,
        render_recommendations(ai_report),
        crawl_duration_ms=_elapsed_ms(start),
    )
    logger.info(
        f"[{job.id}] Technical audit complete: score {result.summary.overall_score}/100, "
        f"{result.summary.total_issues} issues in {result.summary.crawl_duration_ms} ms"
    )
    return result.model_dump(mode="json")


async def _measure_pagespeed(
    job_id: str,
    crawl_result: CrawlResult,
    update_progress: ProgressFn,
) -> list[PageSpeedResult]:
    if not PAGESPEED_ENABLED:
        logger.info(f"[{job_id}] PageSpeed disabled — skipping performance measurements")
        return []

    async def on_psi_progress(done: int, total: int) -> None:
        pct = round(50 + done / max(total, 1) * 10)
        await update_progress(min(pct, 60), f"PageSpeed... {done}/{total} měření")

    try:
        urls = select_urls(crawl_result.pages, PSI_TOP_PAGES)
        results = await run_pagespeed(
            urls,
            api_key=PAGESPEED_API_KEY or None,
            progress_callback=on_psi_progress,
        )
    except JobTimeoutError:
        raise
    except Exception as e:
        logger.warning(f"[{job_id}] PageSpeed failed — continuing without performance data: {e}")
        return []

    logger.info(f"[{job_id}] PageSpeed done: {len(results)} measurements")
    return results


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
