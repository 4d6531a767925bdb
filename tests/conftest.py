"""Shared fixtures and factories for the audit worker tests."""

from __future__ import annotations

import os
from types import SimpleNamespace
from typing import Any, Iterable

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("PAGESPEED_ENABLED", "0")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import init_db
from job_queue import JobQueue
from models import AnalyzerInput, CrawledPage, PageSpeedResult


def make_page(url: str = "https://example.com/", **overrides: Any) -> CrawledPage:
    """A healthy 200 page; override only what the test is about."""
    fields: dict[str, Any] = {
        "url": url,
        "final_url": url,
        "status_code": 200,
        "title": "Example page title long enough to pass checks",
        "meta_description": f"Description of {url}",
        "canonical": url,
        "h1": ("Example heading",),
        "word_count": 500,
        "max_image_preview": "large",
        "crawl_depth": 1,
    }
    fields.update(overrides)
    return CrawledPage(**fields)


def make_input(
    pages: Iterable[CrawledPage],
    *,
    robots_txt: str | None = None,
    sitemap_urls: Iterable[str] = (),
    pagespeed_results: Iterable[PageSpeedResult] = (),
    llms_txt_found: bool | None = True,
) -> AnalyzerInput:
    return AnalyzerInput(
        pages=tuple(pages),
        robots_txt=robots_txt,
        sitemap_urls=tuple(sitemap_urls),
        pagespeed_results=tuple(pagespeed_results),
        llms_txt_found=llms_txt_found,
    )


@pytest.fixture()
def session_factory():
    """In-memory SQLite shared across threads so run_in_executor sees the same DB."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    engine.dispose()


@pytest.fixture()
def queue(session_factory):
    return JobQueue(session_factory, worker_id="test-worker")


class StubMessages:
    """Replays canned replies; an Exception instance in the list is raised instead."""

    def __init__(self, replies: Iterable[Any]):
        self.replies = list(replies)
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any):
        self.calls.append(kwargs)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(content=[SimpleNamespace(type="text", text=reply)])


class StubAnthropic:
    def __init__(self, replies: Iterable[Any]):
        self.messages = StubMessages(replies)
