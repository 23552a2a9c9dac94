import threading

import pytest
from bs4 import BeautifulSoup

from riskscan.config import CrawlerOptions
from riskscan.crawler import (
    Crawler,
    crawl,
    extract_forms,
    extract_script_routes,
    iter_inline_scripts,
    parse_robots,
    parse_sitemap,
)
from riskscan.transport import ScanSession

ROOT = "https://example.com/"

HOME = """
<html><body>
  <a href="/about">About</a>
  <a href="/products?id=1">Product</a>
  <a href="/private/admin">Admin</a>
  <a href="https://other.example.net/x">Elsewhere</a>
  <a href="mailto:team@example.com">Mail</a>
  <link rel="stylesheet" href="/style.css">
  <script src="/app.js"></script>
  <script>
    fetch('/api/items?page=1');
    router.push('/dashboard');
  </script>
  <form action="/login" method="post">
    <input type="hidden" name="csrf_token" value="abc">
    <input name="username">
    <input type="password" name="password">
    <input type="submit" value="Go">
  </form>
  <form action="https://other.example.net/collect"><input name="email"></form>
</body></html>
"""

SITEMAP = """<?xml version="1.0" encoding="UTF-8"?>
<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  <url><loc>https://example.com/from-sitemap</loc></url>
  <url><loc>https://example.com/sitemap-news.xml</loc></url>
</urlset>
"""


def _page(body):
    return f"<html><body>{body}</body></html>"


@pytest.fixture
def example_site(site):
    site.add(ROOT, HOME)
    site.add(ROOT + "robots.txt", "User-agent: *\nDisallow: /private\n", headers={"Content-Type": "text/plain"})
    site.add(ROOT + "sitemap.xml", SITEMAP, headers={"Content-Type": "application/xml"})
    site.add(ROOT + "about", _page('<a href="/about/team">Team</a>'))
    site.add(ROOT + "about/team", _page('<a href="/about/team/deep">Deeper</a>'))
    site.add(ROOT + "about/team/deep", _page("deep"))
    site.add(ROOT + "products?id=1", _page("product"))
    site.add(ROOT + "dashboard", _page("dashboard"))
    site.add(ROOT + "from-sitemap", _page("listed"))
    site.add(ROOT + "private/admin", _page("secret"))
    return site


def _options(**overrides):
    values = {"max_depth": 2, "max_pages": 50, "rate_limit_ms": 100}
    values.update(overrides)
    return CrawlerOptions(**values)


def test_crawl_discovers_surface_within_bounds(example_site, scan_session):
    result = Crawler(ROOT, _options(), scan_session, max_workers=2).crawl()
    site_map = result.site_map

    assert set(site_map.urls) == {
        "https://example.com/",
        "https://example.com/about",
        "https://example.com/products?id=1",
        "https://example.com/dashboard",
        "https://example.com/from-sitemap",
        "https://example.com/about/team",
    }
    assert site_map.urls[0] == "https://example.com/"
    assert all(depth <= 2 for depth in site_map.depths.values())
    assert site_map.depths["https://example.com/from-sitemap"] == 0
    assert "https://example.com/api/items?page=1" in site_map.endpoints
    assert "https://example.com/products?id=1" in site_map.endpoints
    assert result.scripts == ["https://example.com/app.js"]
    assert result.stats.skipped_by_robots == 1
    assert result.stats.max_depth_reached == 2
    assert result.stats.pages_scanned == len(site_map.urls)

    assert len(site_map.forms) == 1
    form = site_map.forms[0]
    assert form.action == "https://example.com/login"
    assert form.method == "POST"
    assert form.field_names == ["csrf_token", "username", "password"]

    requested = example_site.urls_requested()
    assert "https://other.example.net/x" not in requested
    assert "https://example.com/style.css" not in requested
    assert "https://example.com/private/admin" not in requested
    assert "https://example.com/about/team/deep" not in requested
    assert len(requested) == len(set(requested))


def test_crawl_respects_max_pages(site, scan_session):
    links = "".join(f'<a href="/p{i}">{i}</a>' for i in range(10))
    site.add(ROOT, _page(links))
    for i in range(10):
        site.add(f"{ROOT}p{i}", _page(str(i)))
    result = Crawler(ROOT, _options(max_pages=3), scan_session).crawl()
    assert len(result.site_map.urls) == 3


def test_robots_override_requires_consent_and_is_logged(example_site, scan_session):
    options = _options(respect_robots=False, robots_override_consent=True)
    result = crawl(ROOT, options, scan_session)
    assert "https://example.com/private/admin" in result.site_map.urls
    assert result.stats.robots_txt_respected is False
    assert "https://example.com/robots.txt" not in example_site.urls_requested()


def test_failed_requests_are_recorded_not_raised(site, scan_session, monkeypatch):
    site.add(ROOT, _page('<a href="/broken">broken</a>'))
    original = scan_session.request

    def flaky(method, url, **kwargs):
        if url.endswith("/broken"):
            return None
        return original(method, url, **kwargs)

    monkeypatch.setattr(scan_session, "request", flaky)
    result = Crawler(ROOT, _options(), scan_session).crawl()
    assert result.failed_urls == ["https://example.com/broken"]
    assert result.site_map.urls == ["https://example.com/"]


def test_links_and_forms_with_invalid_ports_are_ignored(site, scan_session):
    site.add(ROOT, _page(
        '<a href="https://example.com:99999/x?a=1">bad</a>'
        '<a href="/ok?a=1">ok</a>'
        '<form action="https://example.com:99999/post"><input name="a"></form>'
    ))
    site.add(ROOT + "ok", _page("fine"))
    result = Crawler(ROOT, _options(), scan_session).crawl()
    assert result.site_map.endpoints == ["https://example.com/ok?a=1"]
    assert result.site_map.forms == []
    assert not any("99999" in url for url in site.urls_requested())


def test_cancelled_crawl_returns_partial_result(example_site):
    cancel = threading.Event()
    cancel.set()
    with ScanSession(rate_limit_ms=0, cancel_event=cancel) as session:
        result = Crawler(ROOT, _options(), session).crawl()
    assert result.stats.cancelled
    assert result.site_map.urls == []
    assert example_site.requests == []


def test_parse_robots_star_group_only():
    rules = parse_robots(
        "User-agent: googlebot\nDisallow: /\n\n"
        "User-agent: *\nDisallow: /admin\nAllow: /admin/public\n# comment\nDisallow:\n"
    )
    assert rules.disallow == ["/admin"]
    assert not rules.is_allowed("https://example.com/admin/users")
    assert rules.is_allowed("https://example.com/admin/public/page")
    assert rules.is_allowed("https://example.com/")


def test_parse_sitemap_with_and_without_namespace():
    assert parse_sitemap(SITEMAP) == [
        "https://example.com/from-sitemap",
        "https://example.com/sitemap-news.xml",
    ]
    assert parse_sitemap("<loc>https://example.com/a</loc>") == ["https://example.com/a"]


def test_extract_forms_defaults():
    soup = BeautifulSoup('<form><textarea name="msg"></textarea><button name="b">x</button></form>', "html.parser")
    form = extract_forms(soup, "https://example.com/contact")[0]
    assert form.action == "https://example.com/contact"
    assert form.method == "GET"
    assert form.field_names == ["msg"]


def test_extract_script_routes():
    routes, api_calls = extract_script_routes(
        "window.location = '/next'; axios.get('/api/users'); $.ajax({ url: '/legacy?x=1' });",
        "https://example.com/app",
    )
    assert routes == ["https://example.com/next"]
    assert "https://example.com/api/users" in api_calls
    assert "https://example.com/legacy?x=1" in api_calls


def test_iter_inline_scripts(example_site, scan_session):
    result = Crawler(ROOT, _options(max_pages=1), scan_session).crawl()
    scripts = list(iter_inline_scripts(result.site_map.pages))
    assert len(scripts) == 1
    assert scripts[0][0] == "https://example.com/#inline-script-2"
    assert "fetch" in scripts[0][1]
