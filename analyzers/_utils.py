"""Helpers shared by the analyzers. Everything here is pure."""

from typing import Iterable, Optional, Sequence
from urllib.parse import urlparse, urlunparse

from models import CrawledPage

BLOG_PATTERNS = ("/blog", "/clanek", "/clanky", "/article", "/posts", "/aktuality", "/novinky")


def normalize_for_compare(url: str) -> str:
    """Fragment stripped, trailing slash dropped (except root), whole URL lowercased."""
    try:
        p = urlparse(url.strip())
    except ValueError:
        return url.lower()
    if not p.scheme or not p.netloc:
        return url.lower()
    path = p.path or "/"
    if path != "/" and path.endswith("/"):
        path = path[:-1]
    return urlunparse((p.scheme, p.netloc, path, p.params, p.query, "")).lower()


def path_of(url: str) -> str:
    try:
        return urlparse(url).path or "/"
    except ValueError:
        return ""


def scheme_of(url: str) -> str:
    try:
        return urlparse(url).scheme.lower()
    except ValueError:
        return ""


def has_noindex(page: CrawledPage) -> bool:
    combined = f"{page.meta_robots or ''} {page.x_robots_tag or ''}".lower()
    return "noindex" in combined


def ok_pages(pages: Iterable[CrawledPage]) -> list[CrawledPage]:
    return [p for p in pages if p.status_code == 200]


def homepage_of(pages: Sequence[CrawledPage]) -> Optional[CrawledPage]:
    return next((p for p in pages if p.crawl_depth == 0), None)


def matches_any(path: str, patterns: Iterable[str]) -> bool:
    path = path.lower()
    return any(pattern in path for pattern in patterns)


def unique(urls: Iterable[str]) -> tuple[str, ...]:
    """Order-preserving dedupe."""
    return tuple(dict.fromkeys(urls))


def robots_groups(robots_txt: str) -> list[tuple[list[str], list[str]]]:
    """
    Split robots.txt into (user agents, disallow paths) groups.
    Consecutive User-agent lines share one group.
    """
    groups: list[tuple[list[str], list[str]]] = []
    agents: list[str] = []
    disallows: list[str] = []
    collecting_agents = False

    for raw_line in robots_txt.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if not line or ":" not in line:
            continue
        key, value = line.split(":", 1)
        key, value = key.strip().lower(), value.strip()
        if key == "user-agent":
            if not collecting_agents and agents:
                groups.append((agents, disallows))
                agents, disallows = [], []
            agents.append(value)
            collecting_agents = True
        else:
            collecting_agents = False
            if key == "disallow" and agents and value:
                disallows.append(value)

    if agents:
        groups.append((agents, disallows))
    return groups
