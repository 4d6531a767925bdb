"""
crawler.py — breadth-first, same-origin site crawl for the technical audit.

ResolveOrigin → FetchRobots → FetchSitemap → BFS-Crawl, then two cheap
probes (image sizes via HEAD, /llms.txt). Every page becomes a frozen
CrawledPage; a failed fetch just skips the URL.
"""

import asyncio
import json
import logging
import re
import time
from typing import Awaitable, Callable, Optional
from urllib.parse import urljoin, urlparse, urlunparse
from urllib.robotparser import RobotFileParser
from xml.etree import ElementTree

import httpx
from bs4 import BeautifulSoup
from pydantic import BaseModel

from config import CRAWLER_USER_AGENT
from models import CrawledPage, HreflangEntry, ImageData, LinkData, RedirectHop

logger = logging.getLogger("crawler")

USER_AGENT = CRAWLER_USER_AGENT
REQUEST_TIMEOUT_S = 10.0
POLITENESS_DELAY_S = 0.2
MAX_CONCURRENT = 5
MAX_REDIRECTS = 10
PROGRESS_EVERY = 10
IMAGE_PROBE_LIMIT = 40

HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
SKIPPED_HREF_PREFIXES = ("#", "mailto:", "tel:", "javascript:")
IMAGE_FORMAT_RE = re.compile(r"\.(jpe?g|png|gif|webp|avif|svg)", re.I)
MAX_IMAGE_PREVIEW_RE = re.compile(r"max-image-preview:\s*([\w-]+)", re.I)
SITEMAP_DIRECTIVE_RE = re.compile(r"^\s*Sitemap:\s*(\S+)\s*$", re.I | re.M)
TECH_SCAN_CHARS = 5000

# Markers looked up in the first TECH_SCAN_CHARS of lowercased HTML
TECH_SIGNATURES = {
    "WordPress": ["wp-content", "wp-includes"],
    "Shopify": ["cdn.shopify.com", "shopify.theme"],
    "Wix": ["wix.com", "_wix", "wixsite"],
    "Webflow": ["webflow"],
    "Squarespace": ["squarespace"],
    "Joomla": ["/components/com_", "joomla"],
    "Drupal": ["sites/default/files", "drupal"],
    "Shoptet": ["shoptet"],
    "Next.js": ["__next_data__", "/_next/"],
    "Nuxt": ["__nuxt", "/_nuxt/"],
    "Angular": ["ng-version"],
}

CrawlProgressFn = Callable[[int, int], Awaitable[None]]


class CrawlError(Exception):
    """The crawl produced nothing to analyse."""


class CrawlResult(BaseModel):
    pages: list[CrawledPage]
    robots_txt: Optional[str] = None
    sitemap_urls: list[str] = []
    base_url: str
    llms_txt_found: Optional[bool] = None
    tech_stack: list[str] = []


# ---------------------------------------------------------------------------
# URL helpers
# ---------------------------------------------------------------------------

def normalize_url(href: str, base: str) -> Optional[str]:
    """
    Resolve href against base and normalise it for crawl deduplication:
    scheme and host lowercased, fragment stripped, trailing slash dropped
    except on the root. Path and query keep their case.
    Returns None for anything that is not an http(s) URL.
    """
    try:
        p = urlparse(urljoin(base, href.strip()))
    except ValueError:
        return None
    if p.scheme.lower() not in ("http", "https") or not p.netloc:
        return None
    path = p.path or "/"
    if path != "/" and path.endswith("/"):
        path = path[:-1]
    return urlunparse((p.scheme.lower(), p.netloc.lower(), path, p.params, p.query, ""))


def origin_of(url: str) -> str:
    p = urlparse(url)
    return f"{p.scheme.lower()}://{p.netloc.lower()}"


def is_same_origin(url: str, base_origin: str) -> bool:
    try:
        return origin_of(url) == base_origin
    except ValueError:
        return False


def _int_attr(value) -> Optional[int]:
    if value is None:
        return None
    digits = str(value).strip().removesuffix("px")
    return int(digits) if digits.isdigit() else None


# ---------------------------------------------------------------------------
# Step 1 — origin
# ---------------------------------------------------------------------------

async def resolve_origin(client: httpx.AsyncClient, domain: str) -> str:
    """First candidate that answers a HEAD wins; its post-redirect origin is used."""
    candidates = [
        f"https://{domain}",
        f"https://www.{domain}",
        f"http://{domain}",
    ]
    for candidate in candidates:
        try:
            resp = await client.head(candidate, follow_redirects=True)
        except httpx.HTTPError as e:
            logger.debug(f"Origin candidate {candidate} unreachable: {e}")
            continue
        origin = origin_of(str(resp.url))
        logger.info(f"Resolved base URL {candidate} → {origin}")
        return origin

    logger.warning(f"No origin candidate answered for {domain} — falling back to https")
    return f"https://{domain}"


# ---------------------------------------------------------------------------
# Step 2 — robots.txt
# ---------------------------------------------------------------------------

async def fetch_robots(
    client: httpx.AsyncClient, base_url: str
) -> tuple[Optional[RobotFileParser], Optional[str]]:
    """Returns (parser, raw text). Missing or unreadable robots.txt → (None, None), i.e. allow all."""
    url = f"{base_url}/robots.txt"
    try:
        resp = await client.get(url, follow_redirects=True)
    except httpx.HTTPError as e:
        logger.warning(f"Failed to fetch robots.txt from {url}: {e}")
        return None, None

    if resp.status_code != 200:
        logger.warning(f"robots.txt not found at {url} (HTTP {resp.status_code})")
        return None, None

    raw = resp.text
    parser = RobotFileParser()
    parser.set_url(url)
    parser.parse(raw.splitlines())
    return parser, raw


# ---------------------------------------------------------------------------
# Step 3 — sitemap
# ---------------------------------------------------------------------------

def parse_sitemap(xml_text: str) -> tuple[list[str], list[str]]:
    """
    Parse one sitemap document, namespace agnostic.
    Returns (child sitemap locations, page locations); malformed XML yields
    two empty lists and entries without <loc> are skipped.
    """
    try:
        root = ElementTree.fromstring(xml_text)
    except ElementTree.ParseError:
        return [], []

    locs = []
    for loc in root.findall(".//{*}loc"):
        value = (loc.text or "").strip()
        if value:
            locs.append(value)

    if root.tag.lower().endswith("sitemapindex"):
        return locs, []
    if root.tag.lower().endswith("urlset"):
        return [], locs
    return [], []


async def _fetch_sitemap_doc(client: httpx.AsyncClient, url: str) -> Optional[str]:
    try:
        resp = await client.get(url, follow_redirects=True)
    except httpx.HTTPError as e:
        logger.warning(f"Failed to fetch sitemap {url}: {e}")
        return None
    if resp.status_code != 200:
        return None
    return resp.text


async def fetch_sitemap_urls(
    client: httpx.AsyncClient, base_url: str, robots_txt: Optional[str]
) -> list[str]:
    """Collect page URLs from Sitemap: directives (or /sitemap.xml); indexes expand one level."""
    sources = SITEMAP_DIRECTIVE_RE.findall(robots_txt or "")
    if not sources:
        sources = [f"{base_url}/sitemap.xml"]

    collected: dict[str, None] = {}
    for source in sources:
        xml_text = await _fetch_sitemap_doc(client, source)
        if xml_text is None:
            continue
        children, urls = parse_sitemap(xml_text)
        for u in urls:
            collected.setdefault(u)
        for child in children:
            child_text = await _fetch_sitemap_doc(client, child)
            if child_text is None:
                continue
            # One level only: nested indexes inside the child are ignored
            _, child_urls = parse_sitemap(child_text)
            for u in child_urls:
                collected.setdefault(u)

    logger.info(f"Sitemap URLs collected: {len(collected)}")
    return list(collected)


# ---------------------------------------------------------------------------
# Page parsing
# ---------------------------------------------------------------------------

def _meta_content(soup: BeautifulSoup, name: str) -> Optional[str]:
    tag = soup.find("meta", attrs={"name": re.compile(f"^{name}$", re.I)})
    if tag and tag.get("content"):
        return tag["content"].strip() or None
    return None


def _parse_json_ld(soup: BeautifulSoup) -> list[dict]:
    blocks: list[dict] = []
    for script in soup.find_all("script", attrs={"type": re.compile(r"^application/ld\+json$", re.I)}):
        raw = script.string or script.get_text()
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            # Invalid JSON-LD, skip the block
            continue
        if isinstance(data, list):
            blocks.extend(item for item in data if isinstance(item, dict))
        elif isinstance(data, dict):
            blocks.append(data)
    return blocks


def _parse_microdata(soup: BeautifulSoup) -> list[dict]:
    items: list[dict] = []
    for el in soup.find_all(attrs={"itemscope": True}):
        itemtype = el.get("itemtype")
        if isinstance(itemtype, list):
            itemtype = " ".join(itemtype)
        if not itemtype or not itemtype.strip():
            continue
        first = itemtype.split()[0].rstrip("/")
        items.append({"@type": first.rsplit("/", 1)[-1], "itemtype": itemtype.strip()})
    return items


def detect_tech_stack(html: str, generator: Optional[str] = None) -> list[str]:
    """CMS / framework names seen in the page; the meta generator value comes first."""
    found: list[str] = []
    if generator:
        found.append(generator.split(";")[0].strip())
    head = html[:TECH_SCAN_CHARS].lower()
    for name, markers in TECH_SIGNATURES.items():
        if any(name.lower() in f.lower() for f in found):
            continue
        if any(marker in head for marker in markers):
            found.append(name)
    return found


def parse_page(
    url: str,
    html: str,
    status_code: int,
    redirect_chain: list[RedirectHop],
    response_time_ms: int,
    x_robots_tag: Optional[str],
    content_type: str,
    content_length: int,
    base_origin: str,
    depth: int,
) -> tuple[CrawledPage, list[str]]:
    """Extract the page model and the same-origin URLs it links to."""
    soup = BeautifulSoup(html, "html.parser")

    title = soup.title.get_text().strip() if soup.title else ""
    meta_robots = _meta_content(soup, "robots")
    preview = MAX_IMAGE_PREVIEW_RE.search(meta_robots or "")

    canonical_tag = soup.find("link", rel="canonical")
    canonical = (canonical_tag.get("href") or "").strip() if canonical_tag else ""

    hreflang = []
    for link in soup.find_all("link", rel="alternate", hreflang=True):
        lang, href = link.get("hreflang"), link.get("href")
        if lang and href:
            hreflang.append(HreflangEntry(lang=lang.strip(), href=href.strip()))

    h1 = [tag.get_text(" ", strip=True) for tag in soup.find_all("h1")]
    h2 = [tag.get_text(" ", strip=True) for tag in soup.find_all("h2")]
    h3 = [tag.get_text(" ", strip=True) for tag in soup.find_all("h3")]

    # Links
    internal_links: list[LinkData] = []
    external_links: list[LinkData] = []
    discovered: list[str] = []
    for a in soup.find_all("a", href=True):
        raw_href = a["href"].strip()
        if not raw_href or raw_href.lower().startswith(SKIPPED_HREF_PREFIXES):
            continue
        resolved = normalize_url(raw_href, url)
        if not resolved:
            continue
        rel = a.get("rel") or []
        if isinstance(rel, str):
            rel = rel.split()
        link = LinkData(
            href=resolved,
            anchor_text=a.get_text(" ", strip=True),
            is_nofollow="nofollow" in [r.lower() for r in rel],
        )
        if is_same_origin(resolved, base_origin):
            internal_links.append(link)
            discovered.append(resolved)
        else:
            external_links.append(link)

    # Images
    images: list[ImageData] = []
    for img in soup.find_all("img"):
        src = (img.get("src") or "").strip()
        if not src:
            continue
        resolved_src = normalize_url(src, url) or src
        fmt = IMAGE_FORMAT_RE.search(resolved_src)
        images.append(ImageData(
            src=resolved_src,
            alt=img.get("alt"),
            width=_int_attr(img.get("width")),
            height=_int_attr(img.get("height")),
            format=fmt.group(1).lower() if fmt else None,
        ))

    json_ld = _parse_json_ld(soup)
    microdata = _parse_microdata(soup)
    tech_stack = detect_tech_stack(html, _meta_content(soup, "generator"))

    # Word count over visible body text only
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    body = soup.body or soup
    word_count = len(body.get_text(separator=" ").split())

    page = CrawledPage(
        url=url,
        final_url=redirect_chain[-1].to_url if redirect_chain else url,
        status_code=status_code,
        redirect_chain=tuple(redirect_chain),
        response_time_ms=response_time_ms,
        content_type=content_type,
        content_length=content_length,
        title=title or None,
        meta_description=_meta_content(soup, "description"),
        canonical=canonical or None,
        meta_robots=meta_robots,
        x_robots_tag=x_robots_tag,
        viewport=_meta_content(soup, "viewport"),
        hreflang=tuple(hreflang),
        max_image_preview=preview.group(1).lower() if preview else None,
        h1=tuple(h1),
        h2=tuple(h2),
        h3=tuple(h3),
        word_count=word_count,
        raw_html_length=len(html),
        internal_links=tuple(internal_links),
        external_links=tuple(external_links),
        images=tuple(images),
        json_ld=tuple(json_ld),
        microdata=tuple(microdata),
        tech_stack=tuple(tech_stack),
        crawl_depth=depth,
    )
    return page, discovered


# ---------------------------------------------------------------------------
# Fetching
# ---------------------------------------------------------------------------

async def fetch_page(
    client: httpx.AsyncClient,
    url: str,
    base_origin: str,
    depth: int,
) -> Optional[tuple[CrawledPage, list[str]]]:
    """
    GET one URL, following redirects by hand so every hop is recorded.
    Returns None (skip) on network errors, too many hops, a redirect
    without Location, or a non-HTML final response.
    """
    start = time.monotonic()
    chain: list[RedirectHop] = []
    current = url
    response: Optional[httpx.Response] = None

    try:
        for _ in range(MAX_REDIRECTS):
            resp = await client.get(
                current,
                headers={"Accept": HTML_ACCEPT},
                follow_redirects=False,
            )
            if 300 <= resp.status_code < 400:
                location = resp.headers.get("location")
                next_url = normalize_url(location, current) if location else None
                if not next_url:
                    break
                chain.append(RedirectHop(from_url=current, to_url=next_url, status_code=resp.status_code))
                current = next_url
                continue
            response = resp
            break
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.warning(f"Failed to fetch page {url}: {type(e).__name__}: {e}")
        return None

    if response is None:
        logger.warning(f"Too many redirects or no final response for {url}")
        return None

    content_type = response.headers.get("content-type", "")
    if "text/html" not in content_type.lower() and "application/xhtml" not in content_type.lower():
        return None

    html = response.text
    return parse_page(
        url=url,
        html=html,
        status_code=response.status_code,
        redirect_chain=chain,
        response_time_ms=int((time.monotonic() - start) * 1000),
        x_robots_tag=response.headers.get("x-robots-tag"),
        content_type=content_type.split(";")[0].strip() or "text/html",
        content_length=len(response.content),
        base_origin=base_origin,
        depth=depth,
    )


async def probe_image_sizes(
    client: httpx.AsyncClient,
    pages: list[CrawledPage],
    base_origin: str,
    semaphore: asyncio.Semaphore,
    limit: int = IMAGE_PROBE_LIMIT,
) -> list[CrawledPage]:
    """HEAD up to `limit` same-origin images and fill in size_kb from Content-Length."""
    srcs: list[str] = []
    for page in pages:
        for img in page.images:
            if img.src not in srcs and is_same_origin(img.src, base_origin):
                srcs.append(img.src)
    srcs = srcs[:limit]
    if not srcs:
        return pages

    async def _head(src: str) -> Optional[float]:
        async with semaphore:
            try:
                resp = await client.head(src, follow_redirects=True)
            except httpx.HTTPError as e:
                logger.debug(f"Image HEAD failed for {src}: {e}")
                return None
        length = resp.headers.get("content-length")
        if resp.status_code != 200 or not length or not length.isdigit():
            return None
        return round(int(length) / 1024, 1)

    results = await asyncio.gather(*[_head(s) for s in srcs])
    sizes = {src: kb for src, kb in zip(srcs, results) if kb is not None}
    if not sizes:
        return pages

    updated = []
    for page in pages:
        if any(img.src in sizes for img in page.images):
            images = tuple(
                img.model_copy(update={"size_kb": sizes[img.src]}) if img.src in sizes else img
                for img in page.images
            )
            page = page.model_copy(update={"images": images})
        updated.append(page)
    return updated


async def probe_llms_txt(client: httpx.AsyncClient, base_url: str) -> Optional[bool]:
    """True / False by status code; None when the request itself failed."""
    try:
        resp = await client.get(f"{base_url}/llms.txt", follow_redirects=True)
    except httpx.HTTPError as e:
        logger.debug(f"llms.txt probe failed: {e}")
        return None
    return resp.status_code == 200


# ---------------------------------------------------------------------------
# Main crawl
# ---------------------------------------------------------------------------

async def _noop_progress(crawled: int, total: int) -> None:
    return None


async def crawl(
    domain: str,
    max_depth: int,
    max_pages: int,
    progress_callback: Optional[CrawlProgressFn] = None,
    client: Optional[httpx.AsyncClient] = None,
    politeness_delay: float = POLITENESS_DELAY_S,
) -> CrawlResult:
    """BFS crawl of one domain within the depth and page budgets."""
    if client is None:
        async with httpx.AsyncClient(
            timeout=REQUEST_TIMEOUT_S,
            headers={"User-Agent": USER_AGENT},
        ) as http:
            return await _crawl(http, domain, max_depth, max_pages, progress_callback, politeness_delay)
    return await _crawl(client, domain, max_depth, max_pages, progress_callback, politeness_delay)


async def _crawl(
    client: httpx.AsyncClient,
    domain: str,
    max_depth: int,
    max_pages: int,
    progress_callback: Optional[CrawlProgressFn],
    politeness_delay: float,
) -> CrawlResult:
    progress = progress_callback or _noop_progress

    base_url = await resolve_origin(client, domain)
    base_origin = origin_of(base_url)
    robots, robots_txt = await fetch_robots(client, base_url)
    sitemap_urls = await fetch_sitemap_urls(client, base_url, robots_txt)

    visited: set[str] = set()
    pages: list[CrawledPage] = []
    semaphore = asyncio.Semaphore(MAX_CONCURRENT)

    # Seed: root first, then same-origin sitemap URLs one level down
    queue: list[tuple[str, int]] = [(f"{base_url}/", 0)]
    if max_depth >= 1:
        for s_url in sitemap_urls:
            normalized = normalize_url(s_url, base_url)
            if normalized and is_same_origin(normalized, base_origin):
                queue.append((normalized, 1))

    crawled = 0
    last_report = 0

    async def visit(url: str, depth: int) -> None:
        nonlocal crawled, last_report
        normalized = normalize_url(url, base_url)
        if not normalized or normalized in visited:
            return
        visited.add(normalized)

        if robots is not None and not robots.can_fetch(USER_AGENT, normalized):
            logger.debug(f"Blocked by robots.txt: {normalized}")
            return

        async with semaphore:
            await asyncio.sleep(politeness_delay)
            result = await fetch_page(client, normalized, base_origin, depth)
        if result is None:
            return

        page, discovered = result
        pages.append(page)
        crawled += 1

        if depth + 1 <= max_depth and crawled < max_pages:
            for found in discovered:
                if found not in visited and is_same_origin(found, base_origin):
                    queue.append((found, depth + 1))

        if crawled - last_report >= PROGRESS_EVERY:
            last_report = crawled
            await progress(crawled, max_pages)

    while queue and crawled < max_pages:
        size = min(len(queue), MAX_CONCURRENT, max_pages - crawled)
        batch = queue[:size]
        del queue[:size]
        await asyncio.gather(*[visit(url, depth) for url, depth in batch])

    await progress(crawled, max_pages)

    if pages:
        pages = await probe_image_sizes(client, pages, base_origin, semaphore)
    llms_txt_found = await probe_llms_txt(client, base_url)
    tech_stack: list[str] = []
    for page in sorted(pages, key=lambda p: p.crawl_depth):
        for name in page.tech_stack:
            if name not in tech_stack:
                tech_stack.append(name)

    logger.info(
        f"Crawl finished: {crawled} pages, {len(visited)} URLs visited "
        f"(max_pages={max_pages}, max_depth={max_depth}) from {base_url}"
    )
    return CrawlResult(
        pages=pages,
        robots_txt=robots_txt,
        sitemap_urls=sitemap_urls,
        base_url=base_url,
        llms_txt_found=llms_txt_found,
        tech_stack=tech_stack,
    )
