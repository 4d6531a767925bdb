"""End-to-end handler tests with the crawler and Claude stubbed out."""

from __future__ import annotations

import asyncio
import json

import pytest

import technical_audit
from ai_report import FALLBACK_TEXT, compile_report
from crawler import CrawlError, CrawlResult
from job_types import TECHNICAL_AUDIT
from models import AuditCategories, LinkData
from worker import Worker

from .conftest import StubAnthropic, make_page

PARAMS = {"domain": "example.com", "crawl_depth": 2, "max_pages": 10}


def _site() -> CrawlResult:
    home = make_page("https://example.com/", crawl_depth=0, internal_links=(LinkData(href="https://example.com/about"),))
    about = make_page("https://example.com/about", title=None, internal_links=(LinkData(href="https://example.com/"),))
    return CrawlResult(
        pages=[home, about],
        robots_txt="User-agent: *\nDisallow:",
        sitemap_urls=["https://example.com/", "https://example.com/about"],
        base_url="https://example.com",
        llms_txt_found=False,
    )


@pytest.fixture()
def stub_pipeline(monkeypatch):
    """Stub the crawl and feed Claude three unusable replies."""
    client = StubAnthropic(["nope", "still nope", "{broken"])

    async def fake_crawl(domain, max_depth, max_pages, progress_callback=None, **_):
        for done in range(1, 3):
            await progress_callback(done, 2)
        return _site()

    async def failing_compile(issues, stats, custom_instructions=None, tech_stack=None):
        return await compile_report(issues, stats, custom_instructions, tech_stack=tech_stack, client=client, backoff_s=0)

    monkeypatch.setattr(technical_audit, "crawl", fake_crawl)
    monkeypatch.setattr(technical_audit, "compile_report", failing_compile)
    monkeypatch.setattr(technical_audit, "PAGESPEED_ENABLED", False)
    return client


def _run(queue, registry=None):
    worker = Worker(queue, registry or {TECHNICAL_AUDIT: technical_audit.handle_technical_audit})
    job = queue.claim_next_job()
    asyncio.run(worker.process_job(job))
    return queue.get_job(job.id)


def test_ai_failure_still_completes_with_fallback(queue, stub_pipeline):
    queue.enqueue_job("c", "u", TECHNICAL_AUDIT, PARAMS)

    done = _run(queue)

    assert done.status == "completed"
    assert done.progress == 100
    assert len(stub_pipeline.messages.calls) == 3

    result = done.result
    assert result["ai_recommendations"] == FALLBACK_TEXT
    assert result["summary"]["total_pages_crawled"] == 2
    summary = result["summary"]
    assert summary["total_issues"] == summary["critical_count"] + summary["warning_count"] + summary["info_count"]
    assert 0 <= summary["overall_score"] <= 100
    assert set(result["categories"]) == {
        "performance", "indexability", "meta_tags", "structured_data", "mobile_friendliness",
        "core_web_vitals", "internal_linking", "broken_links", "redirects", "sitemap_robots", "security",
    }
    assert set(result["categories"]) == set(AuditCategories.model_fields)
    # The missing title surfaces both in its category and on the page itself
    titles = [i["title"] for i in result["categories"]["meta_tags"]["issues"]]
    assert "Chybějící title tag" in titles
    about = next(p for p in result["pages"] if p["url"] == "https://example.com/about")
    assert "Chybějící title tag" in [i["title"] for i in about["issues"]]
    json.dumps(result)


def test_progress_stays_within_bands(session_factory, stub_pipeline):
    from .test_worker import RecordingQueue

    queue = RecordingQueue(session_factory)
    queue.enqueue_job("c", "u", TECHNICAL_AUDIT, PARAMS)

    _run(queue)

    values = [p for _, p, _ in queue.progress_writes]
    messages = [m for _, _, m in queue.progress_writes]
    assert values == sorted(values)
    assert values[0] == 0 and values[-1] == 95
    assert "Crawling... 2/2 stránek" in messages
    assert "Generuji AI report..." in messages


def test_empty_crawl_fails_the_job(queue, monkeypatch):
    async def empty_crawl(domain, max_depth, max_pages, progress_callback=None, **_):
        return CrawlResult(pages=[], base_url="https://example.com")

    monkeypatch.setattr(technical_audit, "crawl", empty_crawl)
    queue.enqueue_job("c", "u", TECHNICAL_AUDIT, PARAMS)

    failed = _run(queue)

    assert failed.status == "queued"
    assert failed.error.code == "HANDLER_ERROR"
    assert failed.error.message.startswith("Crawl nevrátil žádné stránky")


def test_crawl_exception_is_wrapped(monkeypatch):
    async def broken_crawl(domain, max_depth, max_pages, progress_callback=None, **_):
        raise ConnectionError("DNS lookup failed")

    async def progress(value, message=None):
        return None

    monkeypatch.setattr(technical_audit, "crawl", broken_crawl)

    class _Job:
        id = "job-1"
        params = PARAMS

    with pytest.raises(CrawlError, match="^Crawl selhal: DNS lookup failed$"):
        asyncio.run(technical_audit.handle_technical_audit(_Job(), progress))


def test_invalid_params_fail_before_crawling(queue, monkeypatch):
    crawled = []

    async def spy_crawl(*args, **kwargs):
        crawled.append(args)
        return _site()

    monkeypatch.setattr(technical_audit, "crawl", spy_crawl)
    queue.enqueue_job("c", "u", TECHNICAL_AUDIT, {"domain": "example.com", "max_pages": 0})

    failed = _run(queue)

    assert crawled == []
    assert failed.error.code == "HANDLER_ERROR"


def test_detected_tech_stack_reaches_the_prompt(queue, stub_pipeline, monkeypatch):
    async def wordpress_crawl(domain, max_depth, max_pages, progress_callback=None, **_):
        return _site().model_copy(update={"tech_stack": ["WordPress 6.4", "Next.js"]})

    monkeypatch.setattr(technical_audit, "crawl", wordpress_crawl)
    queue.enqueue_job("c", "u", TECHNICAL_AUDIT, PARAMS)

    _run(queue)

    prompt = stub_pipeline.messages.calls[0]["messages"][0]["content"]
    assert "## Technologie webu\nWordPress 6.4, Next.js" in prompt
