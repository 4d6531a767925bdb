"""
pagespeed.py — Google PageSpeed Insights v5 probe.

One request per (URL, strategy), run sequentially with a fixed delay to stay
inside the API's rate limit. CrUX field data wins over Lighthouse lab data
when PSI has it. A failed pair is dropped; the caller decides what a total
failure means.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from models import CrawledPage, PageSpeedResult, Strategy

logger = logging.getLogger("pagespeed")

PSI_ENDPOINT = "https://www.googleapis.com/pagespeedonline/v5/runPagespeed"
REQUEST_TIMEOUT_S = 60.0      # PSI can be slow
RATE_LIMIT_S = 1.1
DEFAULT_STRATEGIES: tuple[Strategy, ...] = ("mobile", "desktop")

PsiProgressFn = Callable[[int, int], Awaitable[None]]


# ---------------------------------------------------------------------------
# PSI response shape: only the fields we read, all optional
# ---------------------------------------------------------------------------

class PsiMetric(BaseModel):
    percentile: Optional[float] = None


class PsiLoadingExperience(BaseModel):
    metrics: Optional[dict[str, PsiMetric]] = None
    overall_category: Optional[str] = None


class PsiAudit(BaseModel):
    numeric_value: Optional[float] = Field(default=None, alias="numericValue")


class PsiCategory(BaseModel):
    score: Optional[float] = None


class PsiLighthouseResult(BaseModel):
    categories: dict[str, PsiCategory] = Field(default_factory=dict)
    audits: Optional[dict[str, PsiAudit]] = None


class PsiResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    loading_experience: Optional[PsiLoadingExperience] = Field(default=None, alias="loadingExperience")
    lighthouse_result: Optional[PsiLighthouseResult] = Field(default=None, alias="lighthouseResult")


# ---------------------------------------------------------------------------
# URL selection
# ---------------------------------------------------------------------------

def select_urls(pages: Sequence[CrawledPage], top_n: int = 5) -> list[str]:
    """Homepage plus the top_n 200-OK pages by inbound internal link count."""
    if not pages:
        return []

    inlinks: dict[str, int] = {}
    for page in pages:
        for link in page.internal_links:
            inlinks[link.href] = inlinks.get(link.href, 0) + 1

    homepage = next((p for p in pages if p.crawl_depth == 0), None)
    homepage_url = homepage.final_url if homepage else pages[0].url

    selected = [homepage_url]
    candidates = sorted(
        (p for p in pages if p.final_url != homepage_url and p.status_code == 200),
        key=lambda p: inlinks.get(p.final_url, 0),
        reverse=True,
    )
    for page in candidates:
        if len(selected) >= top_n + 1:
            break
        if page.final_url not in selected:
            selected.append(page.final_url)
    return selected


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

def _lab_score(psi: PsiResponse) -> Optional[int]:
    if not psi.lighthouse_result:
        return None
    perf = psi.lighthouse_result.categories.get("performance")
    if perf is None or perf.score is None:
        return None
    return round(perf.score * 100)


def extract_metrics(url: str, strategy: Strategy, psi: PsiResponse) -> PageSpeedResult:
    field = psi.loading_experience
    if field and field.metrics and field.overall_category:
        def percentile(key: str) -> Optional[float]:
            metric = field.metrics.get(key)
            return metric.percentile if metric else None

        cls = percentile("CUMULATIVE_LAYOUT_SHIFT_SCORE")
        return PageSpeedResult(
            url=url,
            strategy=strategy,
            performance_score=_lab_score(psi),
            lcp=percentile("LARGEST_CONTENTFUL_PAINT_MS"),
            inp=percentile("INTERACTION_TO_NEXT_PAINT"),
            # CrUX reports CLS multiplied by 100
            cls=cls / 100 if cls is not None else None,
            ttfb=percentile("EXPERIMENTAL_TIME_TO_FIRST_BYTE"),
            source="field",
        )

    audits = psi.lighthouse_result.audits if psi.lighthouse_result else None
    if not audits:
        logger.warning(f"No audit data in PSI response for {url} ({strategy})")
        return PageSpeedResult(url=url, strategy=strategy, source="lab")

    def numeric(audit_id: str) -> Optional[float]:
        audit = audits.get(audit_id)
        return audit.numeric_value if audit else None

    return PageSpeedResult(
        url=url,
        strategy=strategy,
        performance_score=_lab_score(psi),
        lcp=numeric("largest-contentful-paint"),
        inp=numeric("total-blocking-time"),   # TBT as lab proxy for INP
        cls=numeric("cumulative-layout-shift"),
        ttfb=numeric("server-response-time"),
        source="lab",
    )


# ---------------------------------------------------------------------------
# API calls
# ---------------------------------------------------------------------------

async def fetch_psi(
    client: httpx.AsyncClient,
    url: str,
    strategy: Strategy,
    api_key: Optional[str] = None,
) -> Optional[PageSpeedResult]:
    params = {"url": url, "strategy": strategy, "category": "performance"}
    if api_key:
        params["key"] = api_key

    try:
        resp = await client.get(PSI_ENDPOINT, params=params)
    except httpx.HTTPError as e:
        logger.warning(f"PSI request failed for {url} ({strategy}): {type(e).__name__}: {e}")
        return None

    if resp.status_code != 200:
        logger.warning(f"PSI API error for {url} ({strategy}): HTTP {resp.status_code} {resp.text[:200]}")
        return None

    try:
        psi = PsiResponse.model_validate(resp.json())
    except (ValueError, ValidationError) as e:
        logger.warning(f"Malformed PSI response for {url} ({strategy}) — dropped: {e}")
        return None

    return extract_metrics(url, strategy, psi)


async def run_pagespeed(
    urls: Sequence[str],
    strategies: Sequence[Strategy] = DEFAULT_STRATEGIES,
    api_key: Optional[str] = None,
    progress_callback: Optional[PsiProgressFn] = None,
    client: Optional[httpx.AsyncClient] = None,
    rate_limit_delay: float = RATE_LIMIT_S,
) -> list[PageSpeedResult]:
    if not urls:
        return []
    if client is None:
        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT_S) as http:
            return await _run(http, urls, strategies, api_key, progress_callback, rate_limit_delay)
    return await _run(client, urls, strategies, api_key, progress_callback, rate_limit_delay)


async def _run(
    client: httpx.AsyncClient,
    urls: Sequence[str],
    strategies: Sequence[Strategy],
    api_key: Optional[str],
    progress_callback: Optional[PsiProgressFn],
    rate_limit_delay: float,
) -> list[PageSpeedResult]:
    total = len(urls) * len(strategies)
    results: list[PageSpeedResult] = []
    done = 0
    logger.info(f"Starting PageSpeed analysis: {len(urls)} URLs × {len(strategies)} strategies")

    for url in urls:
        for strategy in strategies:
            result = await fetch_psi(client, url, strategy, api_key)
            if result:
                results.append(result)
                logger.info(
                    f"PSI {strategy} {url}: score={result.performance_score} source={result.source}"
                )
            done += 1
            if progress_callback:
                await progress_callback(done, total)
            if done < total:
                await asyncio.sleep(rate_limit_delay)

    logger.info(f"PageSpeed analysis complete: {len(results)}/{total} measurements")
    return results
