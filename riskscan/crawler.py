"""Breadth-first, rate-limited discovery of a target's reachable surface.

The crawler only follows URLs it finds on the target itself: in-page
references, JavaScript route literals, and ``sitemap.xml`` entries. Requests
are dispatched by a small worker pool in waves taken from the front of a FIFO
frontier; results are processed in submission order so traversal stays
breadth-first, and every request passes the scan's shared per-host rate gate.
"""

from __future__ import annotations

import logging
import re
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Iterable, List, Optional, Set, Tuple
from urllib.parse import urljoin, urlparse

import requests
from bs4 import BeautifulSoup

from .config import CrawlerOptions, worker_count
from .errors import ScanCancelled
from .models import FormField, FormInfo, PageSnapshot, SiteMap
from .progress import ScanProgress
from .transport import ScanSession, is_html_response, response_headers
from .urltools import has_query, normalize_url, origin_root, resolve, same_origin

logger = logging.getLogger("riskscan.crawler")
logger.addHandler(logging.NullHandler())

MAX_SITEMAP_URLS = 400
SKIPPED_INPUT_TYPES = {"submit", "button", "image", "reset"}
ASSET_EXTENSIONS = (
    ".css", ".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp", ".ico", ".bmp",
    ".woff", ".woff2", ".ttf", ".eot", ".otf", ".mp4", ".webm", ".mp3", ".wav",
    ".pdf", ".zip", ".gz", ".map",
)
SCRIPT_EXTENSIONS = (".js", ".mjs")

LINK_SOURCES: Tuple[Tuple[str, str], ...] = (
    ("a", "href"),
    ("area", "href"),
    ("link", "href"),
    ("script", "src"),
    ("img", "src"),
    ("form", "action"),
    ("iframe", "src"),
)

JS_ROUTE_PATTERNS = [
    re.compile(r"""window\.location(?:\.href)?\s*=\s*['"]([^'"]+)['"]"""),
    re.compile(r"""(?:router|navigate|push)\s*\(\s*['"]([^'"]+)['"]"""),
    re.compile(r"""href\s*:\s*['"]([^'"]+)['"]"""),
]
API_ENDPOINT_PATTERNS = [
    re.compile(r"""['"`](/api/[^'"`\s]+)['"`]"""),
    re.compile(r"""fetch\s*\(\s*['"`]([^'"`]+)['"`]"""),
    re.compile(r"""axios\.(?:get|post|put|delete|patch)\s*\(\s*['"`]([^'"`]+)['"`]"""),
    re.compile(r"""\$\.ajax\s*\(\s*\{[^}]*url\s*:\s*['"`]([^'"`]+)['"`]"""),
]
LOC_PATTERN = re.compile(r"<loc>\s*([^<\s]+)\s*</loc>", re.IGNORECASE)


@dataclass
class CrawlStats:
    pages_scanned: int = 0
    total_requests: int = 0
    failed_requests: int = 0
    total_bytes: int = 0
    average_response_time_ms: float = 0.0
    duration_seconds: float = 0.0
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    max_depth_reached: int = 0
    robots_txt_respected: bool = True
    skipped_by_robots: int = 0
    unique_endpoints: int = 0
    forms_discovered: int = 0
    crawl_speed: float = 0.0
    cancelled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CrawlResult:
    site_map: SiteMap
    stats: CrawlStats
    scripts: List[str] = field(default_factory=list)
    failed_urls: List[str] = field(default_factory=list)


@dataclass
class RobotsRules:
    disallow: List[str] = field(default_factory=list)
    allow: List[str] = field(default_factory=list)

    def is_allowed(self, url: str) -> bool:
        path = urlparse(url).path or "/"
        blocked = [rule for rule in self.disallow if path.startswith(rule)]
        if not blocked:
            return True
        longest_block = max(len(rule) for rule in blocked)
        allowed = [rule for rule in self.allow if path.startswith(rule)]
        return bool(allowed) and max(len(rule) for rule in allowed) >= longest_block


def parse_robots(robots_txt: str) -> RobotsRules:
    """Collect Allow/Disallow rules of the ``User-agent: *`` group."""
    rules = RobotsRules()
    applies = False
    in_agent_block = False
    for raw_line in robots_txt.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if not line or ":" not in line:
            continue
        key, value = line.split(":", 1)
        key = key.strip().lower()
        value = value.strip()
        if key == "user-agent":
            if not in_agent_block:
                applies = False
                in_agent_block = True
            if value == "*":
                applies = True
            continue
        in_agent_block = False
        if not applies:
            continue
        if key == "disallow" and value:
            rules.disallow.append(value)
        elif key == "allow" and value:
            rules.allow.append(value)
    return rules


def parse_sitemap(document: str) -> List[str]:
    soup = BeautifulSoup(document, "xml")
    locations = [loc.get_text(strip=True) for loc in soup.find_all("loc")]
    if not locations:
        locations = LOC_PATTERN.findall(document)
    return [loc for loc in locations if loc]


def extract_links(soup: BeautifulSoup, base_url: str) -> List[str]:
    links: List[str] = []
    seen: Set[str] = set()
    for tag_name, attribute in LINK_SOURCES:
        for tag in soup.find_all(tag_name):
            value = tag.get(attribute)
            if not value:
                continue
            absolute = resolve(base_url, value)
            if absolute and absolute not in seen:
                seen.add(absolute)
                links.append(absolute)
    return links


def extract_script_routes(script_text: str, base_url: str) -> Tuple[List[str], List[str]]:
    """Return (route URLs, API URLs) referenced from inline JavaScript."""
    routes: List[str] = []
    api_calls: List[str] = []
    for pattern in JS_ROUTE_PATTERNS:
        for match in pattern.finditer(script_text):
            absolute = resolve(base_url, match.group(1))
            if absolute and absolute not in routes:
                routes.append(absolute)
    for pattern in API_ENDPOINT_PATTERNS:
        for match in pattern.finditer(script_text):
            absolute = resolve(base_url, match.group(1))
            if absolute and absolute not in api_calls:
                api_calls.append(absolute)
    return routes, api_calls


def extract_forms(soup: BeautifulSoup, page_url: str) -> List[FormInfo]:
    forms: List[FormInfo] = []
    for form in soup.find_all("form"):
        action_attr = (form.get("action") or "").strip()
        try:
            action = urljoin(page_url, action_attr) if action_attr else page_url
        except ValueError:
            logger.debug("Skipping form with malformed action on %s", page_url)
            continue
        method = (form.get("method") or "GET").strip().upper() or "GET"
        fields: List[FormField] = []
        for element in form.find_all(["input", "textarea", "select"]):
            name = element.get("name")
            if not name:
                continue
            input_type = (element.get("type") or ("text" if element.name == "input" else element.name)).lower()
            if input_type in SKIPPED_INPUT_TYPES:
                continue
            fields.append(FormField(name=name, input_type=input_type, value=element.get("value") or ""))
        forms.append(FormInfo(page_url=page_url, action=action, method=method, fields=tuple(fields)))
    return forms


def _is_asset(url: str) -> bool:
    path = urlparse(url).path.lower()
    return path.endswith(ASSET_EXTENSIONS)


def _is_script(url: str) -> bool:
    path = urlparse(url).path.lower()
    return path.endswith(SCRIPT_EXTENSIONS)


class Crawler:
    def __init__(
        self,
        root_url: str,
        options: CrawlerOptions,
        session: ScanSession,
        *,
        progress: Optional[ScanProgress] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        self.root_url = normalize_url(root_url)
        self.root = origin_root(self.root_url)
        self.options = options
        self.session = session
        self.progress = progress or ScanProgress()
        self.max_workers = max_workers or worker_count()

        self.site_map = SiteMap()
        self.stats = CrawlStats(robots_txt_respected=options.respect_robots)
        self.frontier: Deque[Tuple[str, int]] = deque()
        self.seen: Set[str] = set()
        self.scripts: List[str] = []
        self.failed_urls: List[str] = []
        self.robots = RobotsRules()
        self._sitemap_merged = False

    def _in_scope(self, url: str) -> bool:
        return self.options.allow_external or same_origin(url, self.root_url)

    def _record_endpoint(self, url: str) -> None:
        if has_query(url) and self._in_scope(url):
            self.site_map.add_endpoint(normalize_url(url))

    def enqueue(self, candidate: str, depth: int) -> bool:
        try:
            normalized = normalize_url(candidate)
        except ValueError:
            return False
        if depth > self.options.max_depth or normalized in self.seen:
            return False
        if not self._in_scope(normalized):
            return False
        if _is_script(normalized):
            if normalized not in self.scripts:
                self.scripts.append(normalized)
            return False
        if _is_asset(normalized):
            return False
        self.seen.add(normalized)
        self.frontier.append((normalized, depth))
        return True

    def _load_robots(self) -> None:
        if not self.options.respect_robots:
            self.progress.warning("robots.txt ignored with recorded consent", phase="crawl")
            return
        resp = self.session.get(urljoin(self.root, "/robots.txt"))
        if resp is None or resp.status_code != 200:
            logger.info("No robots.txt for %s; treating as unrestricted", self.root)
            return
        self.robots = parse_robots(resp.text or "")
        if self.robots.disallow:
            self.progress.info(
                f"robots.txt loaded with {len(self.robots.disallow)} disallow rules", phase="crawl"
            )

    def _merge_sitemap(self) -> None:
        if self._sitemap_merged:
            return
        self._sitemap_merged = True
        resp = self.session.get(urljoin(self.root, "/sitemap.xml"))
        if resp is None or resp.status_code != 200 or not resp.text:
            return
        added = 0
        for location in parse_sitemap(resp.text)[:MAX_SITEMAP_URLS]:
            if location.lower().endswith(".xml"):
                continue
            if self.enqueue(location, 0):
                added += 1
        if added:
            self.progress.info(f"sitemap.xml added {added} URLs to the frontier", phase="crawl")

    def _next_wave(self) -> List[Tuple[str, int]]:
        wave: List[Tuple[str, int]] = []
        remaining = self.options.max_pages - len(self.site_map.urls)
        while self.frontier and len(wave) < min(self.max_workers, remaining):
            url, depth = self.frontier.popleft()
            if url in self.site_map.depths or depth > self.options.max_depth:
                continue
            if self.options.respect_robots and not self.robots.is_allowed(url):
                self.stats.skipped_by_robots += 1
                self.progress.warning(f"Skipped by robots.txt: {url}", phase="crawl")
                continue
            wave.append((url, depth))
        return wave

    def _process_page(self, requested: str, depth: int, resp: requests.Response) -> None:
        if resp.status_code >= 400 or not is_html_response(resp):
            logger.debug("Skipping %s (status %s)", requested, resp.status_code)
            return
        final_url = normalize_url(resp.url or requested)
        if not self._in_scope(final_url):
            return
        self.seen.add(final_url)
        if not self.site_map.add_url(final_url, depth):
            return

        snapshot = PageSnapshot(
            url=final_url,
            status_code=resp.status_code,
            html=resp.text or "",
            headers=response_headers(resp),
            depth=depth,
        )
        self.site_map.pages.append(snapshot)
        self.stats.max_depth_reached = max(self.stats.max_depth_reached, depth)
        self._record_endpoint(final_url)

        soup = snapshot.soup
        for form in extract_forms(soup, final_url):
            if self._in_scope(form.action):
                self.site_map.add_form(form)

        next_depth = depth + 1
        for link in extract_links(soup, final_url):
            self._record_endpoint(link)
            self.enqueue(link, next_depth)
        for script in soup.find_all("script"):
            if script.get("src"):
                continue
            routes, api_calls = extract_script_routes(script.get_text() or "", final_url)
            for route in routes:
                self.enqueue(route, next_depth)
            for api_call in api_calls:
                if has_query(api_call):
                    self._record_endpoint(api_call)
                else:
                    self.enqueue(api_call, next_depth)

        self.progress.info(
            f"Crawled {final_url}",
            phase="crawl",
            depth=depth,
            count=len(self.site_map.urls),
            budget=self.options.max_pages,
        )

    def crawl(self) -> CrawlResult:
        started = time.monotonic()
        self.stats.start_time = datetime.now(timezone.utc).isoformat()
        self.seen.add(self.root_url)
        self.frontier.append((self.root_url, 0))

        try:
            self._load_robots()
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                while self.frontier and len(self.site_map.urls) < self.options.max_pages:
                    wave = self._next_wave()
                    if not wave:
                        continue
                    futures = [
                        (url, depth, executor.submit(self.session.get, url)) for url, depth in wave
                    ]
                    cancelled = False
                    for url, depth, future in futures:
                        try:
                            resp = future.result()
                        except ScanCancelled:
                            cancelled = True
                            continue
                        if resp is None:
                            self.failed_urls.append(url)
                            continue
                        if len(self.site_map.urls) >= self.options.max_pages:
                            continue
                        self._process_page(url, depth, resp)
                    if cancelled:
                        raise ScanCancelled("Crawl cancelled")
                    if self.site_map.urls and not self._sitemap_merged:
                        self._merge_sitemap()
        except ScanCancelled:
            self.stats.cancelled = True
            self.progress.warning("Crawl cancelled; returning partial site map", phase="crawl")

        self._finish_stats(started)
        return CrawlResult(
            site_map=self.site_map,
            stats=self.stats,
            scripts=list(self.scripts),
            failed_urls=list(self.failed_urls),
        )

    def _finish_stats(self, started: float) -> None:
        duration = time.monotonic() - started
        transport = self.session.stats
        self.stats.end_time = datetime.now(timezone.utc).isoformat()
        self.stats.duration_seconds = round(duration, 3)
        self.stats.pages_scanned = len(self.site_map.urls)
        self.stats.total_requests = transport.total_requests
        self.stats.failed_requests = transport.failed_requests
        self.stats.total_bytes = transport.total_bytes
        self.stats.average_response_time_ms = transport.average_response_time_ms
        self.stats.unique_endpoints = len(self.site_map.endpoints)
        self.stats.forms_discovered = len(self.site_map.forms)
        self.stats.crawl_speed = round(len(self.site_map.urls) / duration, 3) if duration > 0 else 0.0


def crawl(
    root_url: str,
    options: Optional[CrawlerOptions] = None,
    session: Optional[ScanSession] = None,
    *,
    progress: Optional[ScanProgress] = None,
) -> CrawlResult:
    """Crawl ``root_url`` and return the site map with crawl statistics."""
    options = options or CrawlerOptions()
    if session is not None:
        return Crawler(root_url, options, session, progress=progress).crawl()
    with ScanSession(rate_limit_ms=options.rate_limit_ms, timeout_ms=options.timeout_ms) as owned:
        return Crawler(root_url, options, owned, progress=progress).crawl()


def iter_inline_scripts(pages: Iterable[PageSnapshot]) -> Iterable[Tuple[str, str]]:
    for page in pages:
        for index, script in enumerate(page.soup.find_all("script"), start=1):
            if script.get("src"):
                continue
            text = script.get_text() or ""
            if text.strip():
                yield f"{page.url}#inline-script-{index}", text
