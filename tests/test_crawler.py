"""Crawler tests against an in-process site served by httpx.MockTransport."""

from __future__ import annotations

import asyncio

import httpx

from crawler import (
    MAX_CONCURRENT,
    crawl,
    detect_tech_stack,
    fetch_page,
    fetch_sitemap_urls,
    normalize_url,
    parse_page,
    parse_sitemap,
)

SITE = "https://example.com"

ROBOTS = f"""User-agent: *
Disallow: /private

Sitemap: {SITE}/sitemap.xml
"""

SITEMAP = f"""<?xml version="1.0" encoding="UTF-8"?>
<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  <url><loc>{SITE}/about</loc></url>
</urlset>
"""

PAGES = {
    "/": """<html><head><title>Home</title>
        <meta name="description" content="Welcome">
        <meta name="robots" content="index, follow, max-image-preview:large">
        <link rel="canonical" href="https://example.com/">
        <link rel="alternate" hreflang="en" href="https://example.com/">
        <script type="application/ld+json">{"@context": "https://schema.org", "@type": "Organization"}</script>
        <script type="application/ld+json">{not json</script>
        </head><body>
        <h1>Welcome home</h1>
        <p>Some words on the home page.</p>
        <script>var ignored = "these words do not count";</script>
        <a href="/about">About</a>
        <a href="/blog#top">Blog</a>
        <a href="/private/area">Private</a>
        <a href="/old">Old</a>
        <a href="https://other.com/" rel="nofollow">Partner</a>
        <a href="mailto:hi@example.com">Mail</a>
        <img src="/img/hero.jpg" alt="Hero" width="800" height="400">
        </body></html>""",
    "/about": "<html><head><title>About</title></head><body><h1>About</h1><a href='/'>Home</a></body></html>",
    "/blog": "<html><head><title>Blog</title></head><body><h1>Blog</h1><a href='/blog/post-1'>Post</a></body></html>",
    "/blog/post-1": "<html><head><title>Post</title></head><body><h1>Post</h1></body></html>",
    "/moved": "<html><head><title>Moved</title></head><body><h1>Moved</h1></body></html>",
}


def _handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if request.method == "HEAD":
        if path == "/img/hero.jpg":
            return httpx.Response(200, headers={"content-length": str(200 * 1024)})
        return httpx.Response(200)
    if path == "/robots.txt":
        return httpx.Response(200, text=ROBOTS)
    if path == "/sitemap.xml":
        return httpx.Response(200, text=SITEMAP, headers={"content-type": "application/xml"})
    if path == "/old":
        return httpx.Response(301, headers={"location": "/moved"})
    if path == "/loop-a":
        return httpx.Response(302, headers={"location": "/loop-b"})
    if path == "/loop-b":
        return httpx.Response(302, headers={"location": "/loop-a"})
    if path in PAGES:
        return httpx.Response(200, text=PAGES[path], headers={"content-type": "text/html; charset=utf-8"})
    return httpx.Response(404, text="<html><body>Not found</body></html>", headers={"content-type": "text/html"})


def _run_crawl(max_depth: int, max_pages: int, progress=None):
    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(_handler)) as client:
            return await crawl(
                "example.com",
                max_depth=max_depth,
                max_pages=max_pages,
                progress_callback=progress,
                client=client,
                politeness_delay=0,
            )
    return asyncio.run(go())


def test_crawl_respects_depth_robots_and_origin():
    result = _run_crawl(max_depth=1, max_pages=50)
    urls = {p.url for p in result.pages}

    assert result.base_url == SITE
    assert result.robots_txt == ROBOTS
    assert result.sitemap_urls == [f"{SITE}/about"]
    assert f"{SITE}/" in urls
    assert f"{SITE}/about" in urls
    assert f"{SITE}/blog" in urls
    assert f"{SITE}/blog/post-1" not in urls          # depth 2
    assert not any("/private" in u for u in urls)     # robots.txt
    assert not any("other.com" in u for u in urls)    # external
    assert all(p.crawl_depth <= 1 for p in result.pages)
    assert result.llms_txt_found is False


def test_crawl_page_budget():
    result = _run_crawl(max_depth=3, max_pages=2)
    assert len(result.pages) <= 2


def test_crawl_records_redirects_and_reports_progress():
    calls = []

    async def progress(crawled, total):
        calls.append((crawled, total))

    result = _run_crawl(max_depth=2, max_pages=50, progress=progress)
    by_url = {p.url: p for p in result.pages}

    moved = by_url[f"{SITE}/old"]
    assert moved.final_url == f"{SITE}/moved"
    assert [(h.from_url, h.to_url, h.status_code) for h in moved.redirect_chain] == [
        (f"{SITE}/old", f"{SITE}/moved", 301)
    ]
    assert f"{SITE}/blog/post-1" in by_url
    assert calls[-1] == (len(result.pages), 50)

    home = by_url[f"{SITE}/"]
    hero = home.images[0]
    assert hero.src == f"{SITE}/img/hero.jpg"
    assert hero.size_kb == 200.0
    assert hero.format == "jpg"


def test_fetch_page_drops_infinite_redirect_loop():
    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(_handler)) as client:
            return await fetch_page(client, f"{SITE}/loop-a", SITE, 1)
    assert asyncio.run(go()) is None


def test_parse_page_extracts_head_links_and_structured_data():
    page, discovered = parse_page(
        url=f"{SITE}/",
        html=PAGES["/"],
        status_code=200,
        redirect_chain=[],
        response_time_ms=12,
        x_robots_tag=None,
        content_type="text/html",
        content_length=len(PAGES["/"]),
        base_origin=SITE,
        depth=0,
    )

    assert page.title == "Home"
    assert page.meta_description == "Welcome"
    assert page.canonical == f"{SITE}/"
    assert page.max_image_preview == "large"
    assert page.h1 == ("Welcome home",)
    assert [h.lang for h in page.hreflang] == ["en"]
    assert page.json_ld == ({"@context": "https://schema.org", "@type": "Organization"},)
    assert f"{SITE}/blog" in discovered
    assert [link.href for link in page.external_links] == ["https://other.com/"]
    assert page.external_links[0].is_nofollow
    assert page.word_count < 30


def test_normalize_url():
    assert normalize_url("/About/#team", f"{SITE}/x") == f"{SITE}/About"
    assert normalize_url("HTTPS://Example.COM/", SITE) == f"{SITE}/"
    assert normalize_url("blog/", f"{SITE}/") == f"{SITE}/blog"
    assert normalize_url("ftp://example.com/file", SITE) is None


def test_parse_sitemap_index_and_garbage():
    index = """<sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
        <sitemap><loc>https://example.com/sitemap-posts.xml</loc></sitemap>
        <sitemap></sitemap>
    </sitemapindex>"""
    assert parse_sitemap(index) == (["https://example.com/sitemap-posts.xml"], [])
    assert parse_sitemap("<not xml") == ([], [])


# ---------------------------------------------------------------------------
# Sitemap index site: /sitemap.xml is an index of two child sitemaps
# ---------------------------------------------------------------------------

SITEMAP_INDEX = f"""<?xml version="1.0" encoding="UTF-8"?>
<sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  <sitemap><loc>{SITE}/sitemap-pages.xml</loc></sitemap>
  <sitemap><loc>{SITE}/sitemap-nested.xml</loc></sitemap>
</sitemapindex>
"""

CHILD_SITEMAPS = {
    "/sitemap-pages.xml": f"""<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
        <url><loc>{SITE}/a</loc></url>
        <url><loc>{SITE}/b</loc></url>
    </urlset>""",
    "/sitemap-nested.xml": f"""<sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
        <sitemap><loc>{SITE}/sitemap-deep.xml</loc></sitemap>
    </sitemapindex>""",
    "/sitemap-deep.xml": f"""<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
        <url><loc>{SITE}/deep</loc></url>
    </urlset>""",
}

INDEXED_PAGES = {
    "/": "<html><head><title>Home</title></head><body><a href='/b'>B</a></body></html>",
    "/a": "<html><head><title>A</title></head><body><a href='/c'>C</a></body></html>",
    "/b": "<html><head><title>B</title></head><body></body></html>",
    "/c": "<html><head><title>C</title></head><body><a href='/d'>D</a></body></html>",
    "/d": "<html><head><title>D</title></head><body></body></html>",
    "/deep": "<html><head><title>Deep</title></head><body></body></html>",
}


def _indexed_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if request.method == "HEAD":
        return httpx.Response(200)
    if path == "/robots.txt":
        return httpx.Response(404)
    if path == "/sitemap.xml":
        return httpx.Response(200, text=SITEMAP_INDEX)
    if path in CHILD_SITEMAPS:
        return httpx.Response(200, text=CHILD_SITEMAPS[path])
    if path in INDEXED_PAGES:
        return httpx.Response(200, text=INDEXED_PAGES[path], headers={"content-type": "text/html"})
    return httpx.Response(404)


def _crawl_indexed_site(max_depth: int):
    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(_indexed_handler)) as client:
            return await crawl("example.com", max_depth=max_depth, max_pages=50, client=client, politeness_delay=0)
    return asyncio.run(go())


def test_sitemap_index_expands_one_level():
    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(_indexed_handler)) as client:
            return await fetch_sitemap_urls(client, SITE, robots_txt=None)

    # The nested index inside a child is not followed
    assert asyncio.run(go()) == [f"{SITE}/a", f"{SITE}/b"]


def test_sitemap_seeds_enter_at_depth_one():
    result = _crawl_indexed_site(max_depth=1)
    depths = {p.url: p.crawl_depth for p in result.pages}

    assert result.sitemap_urls == [f"{SITE}/a", f"{SITE}/b"]
    assert depths == {f"{SITE}/": 0, f"{SITE}/a": 1, f"{SITE}/b": 1}


def test_discovered_links_stay_within_max_depth():
    result = _crawl_indexed_site(max_depth=2)
    depths = {p.url: p.crawl_depth for p in result.pages}

    assert depths[f"{SITE}/c"] == 2           # linked from sitemap seed /a
    assert f"{SITE}/d" not in depths          # would be depth 3
    assert f"{SITE}/deep" not in depths
    assert all(p.crawl_depth <= 2 for p in result.pages)


def test_in_flight_fetches_never_exceed_limit():
    links = "".join(f"<a href='/p{i}'>P{i}</a>" for i in range(20))
    in_flight = 0
    peak = 0

    async def handler(request: httpx.Request) -> httpx.Response:
        nonlocal in_flight, peak
        path = request.url.path
        if request.method == "HEAD" or path in ("/robots.txt", "/sitemap.xml", "/llms.txt"):
            return httpx.Response(404 if request.method == "GET" else 200)
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        body = f"<html><body>{links}</body></html>" if path == "/" else "<html><body>leaf</body></html>"
        return httpx.Response(200, text=body, headers={"content-type": "text/html"})

    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await crawl("example.com", max_depth=1, max_pages=50, client=client, politeness_delay=0)

    result = asyncio.run(go())

    assert len(result.pages) == 21
    assert 1 < peak <= MAX_CONCURRENT


def test_detect_tech_stack():
    html = """<html><head><meta name="generator" content="WordPress 6.4.2">
        <link rel="stylesheet" href="/wp-content/themes/shop/style.css">
        <script src="https://cdn.shopify.com/s/files/app.js"></script></head></html>"""

    assert detect_tech_stack(html, "WordPress 6.4.2") == ["WordPress 6.4.2", "Shopify"]
    assert detect_tech_stack("<html><body>plain</body></html>") == []


def test_parse_page_records_tech_stack():
    html = '<html><head><meta name="generator" content="Joomla! - Open Source"></head><body></body></html>'
    page, _ = parse_page(
        url=f"{SITE}/",
        html=html,
        status_code=200,
        redirect_chain=[],
        response_time_ms=5,
        x_robots_tag=None,
        content_type="text/html",
        content_length=len(html),
        base_origin=SITE,
        depth=0,
    )
    assert page.tech_stack == ("Joomla! - Open Source",)
