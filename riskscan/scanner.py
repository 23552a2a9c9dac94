#!/usr/bin/env python3
"""
riskscan orchestrator
---------------------

Runs one scan end to end and powers the command line entry point:

* validate  – crawler options and the optional login configuration
* headers   – header, CSP and cookie tests on the target response
* auth      – optional form login and session cookie analysis
* crawl     – bounded same-origin discovery (DYNAMIC / BOTH)
* static    – script, markup, dependency and error-page analyzers
* dynamic   – registered testers (XSS, SQLi, traversal, CSRF, auth bypass)
* scoring   – deduction-based score over the security tests

Every scan owns its session, site map and result lists. Session credentials
live only on the scan's :class:`ScanSession` and are dropped when the scan
finishes, fails or is cancelled.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set

import requests

from . import __version__
from .auth_tester import AuthResult, analyze_session, authenticate, probe_auth_bypass
from .config import AuthConfig, CrawlerOptions, disabled_testers, validate_auth_config, validate_crawler_options
from .context_classifier import classify
from .crawler import CrawlResult, CrawlStats, Crawler, iter_inline_scripts
from .csrf_tester import probe_csrf
from .dependency_analyzer import MANIFEST_PATHS, analyze_dependencies
from .errors import ConfigurationError, ScanCancelled
from .exception_analyzer import analyze_pages
from .header_analyzer import analyze_cookies, analyze_headers, cookie_findings, findings_from_tests
from .markup_analyzer import analyze_markup, inline_scripts_without_nonce
from .models import SCAN_MODES, MODE_BOTH, MODE_DYNAMIC, MODE_STATIC, Finding, PageSnapshot, ScoringResult, SecurityTest, SiteMap
from .probes import TesterResult
from .progress import ProgressCallback, ScanProgress
from .script_analyzer import analyze_script
from .scoring import score
from .sqli_tester import probe_sqli
from .transport import ScanSession, extract_cookies, is_html_response, response_headers
from .traversal_tester import probe_path_traversal
from .urltools import is_http_url, normalize_url, origin_root, resolve, same_origin
from .xss_tester import probe_xss

logger = logging.getLogger("riskscan.scanner")
logger.addHandler(logging.NullHandler())

MAX_EXTERNAL_SCRIPTS = 20


@dataclass
class ScanContext:
    target_url: str
    mode: str
    options: CrawlerOptions
    session: ScanSession
    progress: ScanProgress
    root_response: Optional[requests.Response] = None
    root_cookies: List[Dict[str, Any]] = field(default_factory=list)
    site_map: SiteMap = field(default_factory=SiteMap)
    auth_config: Optional[AuthConfig] = None
    auth_result: Optional[AuthResult] = None

    @property
    def endpoints(self) -> List[str]:
        return list(self.site_map.endpoints)

    @property
    def forms(self) -> list:
        return list(self.site_map.forms)

    @property
    def page_html(self) -> Dict[str, str]:
        return {page.url: page.html for page in self.site_map.pages}


@dataclass
class Tester:
    name: str
    func: Callable[[ScanContext], TesterResult]
    source: str = "core"

    def run(self, ctx: ScanContext) -> List[Finding]:
        result = self.func(ctx)
        if result.skipped:
            ctx.progress.info(
                f"{self.name}: skipped {len(result.skipped)} target(s)",
                phase="dynamic",
                skipped=list(result.skipped),
            )
        return list(result.vulnerabilities)


class TesterRegistry:
    def __init__(self) -> None:
        self._testers: List[Tester] = []
        self._lock = threading.RLock()

    def register(self, name: str, func: Callable[[ScanContext], TesterResult], *, source: str = "core") -> None:
        with self._lock:
            if any(tester.name == name for tester in self._testers):
                raise ValueError(f"Tester already registered: {name}")
            self._testers.append(Tester(name=name, func=func, source=source))

    def iter_testers(self, *, disabled: Optional[Iterable[str]] = None) -> Iterable[Tester]:
        disabled_lookup = {name.lower() for name in (disabled or ())}
        with self._lock:
            testers = list(self._testers)
        for tester in testers:
            if tester.name.lower() in disabled_lookup:
                continue
            yield tester

    def describe(self, *, disabled: Optional[Iterable[str]] = None) -> List[Dict[str, Any]]:
        disabled_lookup = {name.lower() for name in (disabled or ())}
        with self._lock:
            testers = list(self._testers)
        return [
            {"name": tester.name, "source": tester.source, "enabled": tester.name.lower() not in disabled_lookup}
            for tester in testers
        ]


def _run_xss(ctx: ScanContext) -> TesterResult:
    return probe_xss(ctx.target_url, ctx.endpoints, ctx.forms, ctx.session, progress=ctx.progress)


def _run_sqli(ctx: ScanContext) -> TesterResult:
    return probe_sqli(ctx.target_url, ctx.endpoints, ctx.forms, ctx.session, progress=ctx.progress)


def _run_path_traversal(ctx: ScanContext) -> TesterResult:
    return probe_path_traversal(ctx.target_url, ctx.endpoints, ctx.forms, ctx.session, progress=ctx.progress)


def _run_csrf(ctx: ScanContext) -> TesterResult:
    return probe_csrf(ctx.target_url, ctx.endpoints, ctx.forms, cookies=ctx.root_cookies, page_html=ctx.page_html)


def _run_auth_bypass(ctx: ScanContext) -> TesterResult:
    if ctx.auth_config is None or ctx.auth_result is None:
        return TesterResult(skipped=["no authentication configured"])
    return probe_auth_bypass(ctx.auth_config, ctx.auth_result, ctx.session, progress=ctx.progress)


TESTER_REGISTRY = TesterRegistry()
TESTER_REGISTRY.register("xss", _run_xss)
TESTER_REGISTRY.register("sqli", _run_sqli)
TESTER_REGISTRY.register("path_traversal", _run_path_traversal)
TESTER_REGISTRY.register("csrf", _run_csrf)
TESTER_REGISTRY.register("auth_bypass", _run_auth_bypass)


def register_tester(name: str, func: Callable[[ScanContext], TesterResult], *, source: str = "plugin") -> None:
    TESTER_REGISTRY.register(name, func, source=source)


@dataclass
class ScanReport:
    findings: List[Finding] = field(default_factory=list)
    tests: List[SecurityTest] = field(default_factory=list)
    scoring: Optional[ScoringResult] = None
    site_map_summary: Dict[str, Any] = field(default_factory=dict)
    crawl_stats: Optional[CrawlStats] = None
    logs: List[Dict[str, Any]] = field(default_factory=list)
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "meta": dict(self.meta),
            "scoring": self.scoring.to_dict() if self.scoring else None,
            "findings": [finding.to_dict() for finding in self.findings],
            "tests": [test.to_dict() for test in self.tests],
            "site_map_summary": dict(self.site_map_summary),
            "crawl_stats": self.crawl_stats.to_dict() if self.crawl_stats else None,
            "logs": list(self.logs),
        }


def deduplicate_findings(findings: Iterable[Finding]) -> List[Finding]:
    seen: Set[tuple] = set()
    unique: List[Finding] = []
    for finding in findings:
        if finding.key in seen:
            continue
        seen.add(finding.key)
        unique.append(finding)
    return unique


def _root_snapshot(resp: requests.Response) -> PageSnapshot:
    return PageSnapshot(
        url=normalize_url(resp.url),
        status_code=resp.status_code,
        html=resp.text or "",
        headers=response_headers(resp),
    )


def _external_script_urls(pages: Iterable[PageSnapshot], root: str, extra: Iterable[str] = ()) -> List[str]:
    urls: List[str] = []
    candidates = [resolve(page.url, tag.get("src")) for page in pages for tag in page.soup.find_all("script", src=True)]
    for url in list(candidates) + list(extra):
        if not url or url in urls or not same_origin(url, root):
            continue
        urls.append(url)
    return urls[:MAX_EXTERNAL_SCRIPTS]


def _run_static_analysis(
    ctx: ScanContext,
    pages: List[PageSnapshot],
    *,
    script_urls: Iterable[str] = (),
    manifest_text: Optional[str] = None,
    script_sources: Optional[Mapping[str, str]] = None,
) -> List[Finding]:
    findings: List[Finding] = []
    root_headers = response_headers(ctx.root_response) if ctx.root_response is not None else {}
    csp_header = {key.lower(): value for key, value in root_headers.items()}.get("content-security-policy")
    root = origin_root(ctx.target_url)

    sources: List[tuple] = list(iter_inline_scripts(pages))
    for url in _external_script_urls(pages, root, script_urls):
        resp = ctx.session.get(url)
        if resp is None or resp.status_code >= 400:
            ctx.progress.warning(f"Could not fetch script {url}", phase="static")
            continue
        sources.append((url, resp.text or ""))
    if script_sources:
        sources.extend(script_sources.items())

    for locator, source in sources:
        context = classify(source, csp_header=csp_header)
        findings.extend(analyze_script(source, locator, csp_header=csp_header, context=context))

    without_nonce = 0
    for page in pages:
        findings.extend(analyze_markup(page.html, page.url))
        without_nonce += inline_scripts_without_nonce(page.html)
    findings.extend(analyze_pages(pages))
    if without_nonce:
        # advisory only; CSP weaknesses are scored by the header tests
        ctx.progress.info(f"{without_nonce} inline script(s) carry no nonce", phase="static")

    if manifest_text is not None:
        findings.extend(analyze_dependencies(manifest_text, "package.json"))
    else:
        for path in MANIFEST_PATHS:
            url = root.rstrip("/") + path
            resp = ctx.session.get(url)
            if resp is None or resp.status_code != 200 or is_html_response(resp):
                continue
            findings.extend(analyze_dependencies(resp.text or "", url))

    ctx.progress.info(
        f"Static analysis covered {len(sources)} script(s) and {len(pages)} page(s)",
        phase="static",
        findings=len(findings),
    )
    return findings


def _run_testers(ctx: ScanContext, disabled: Iterable[str]) -> List[Finding]:
    findings: List[Finding] = []
    for tester in TESTER_REGISTRY.iter_testers(disabled=disabled):
        ctx.progress.info(f"Running {tester.name} tester", phase="dynamic")
        try:
            found = tester.run(ctx)
        except ScanCancelled:
            raise
        except Exception as exc:
            logger.exception("Tester %s failed", tester.name)
            ctx.progress.error(f"{tester.name} tester failed: {exc}", phase="dynamic")
            continue
        if found:
            ctx.progress.warning(f"{tester.name}: {len(found)} vulnerability(ies) found", phase="dynamic")
        else:
            ctx.progress.success(f"{tester.name}: nothing found", phase="dynamic")
        findings.extend(found)
    return findings


def _authenticate(ctx: ScanContext) -> List[Finding]:
    ctx.progress.info(f"Logging in at {ctx.auth_config.login_url}", phase="auth")
    ctx.auth_result = authenticate(ctx.auth_config, ctx.session)
    if not ctx.auth_result.success:
        ctx.progress.error(f"Authentication failed: {ctx.auth_result.error}", phase="auth")
        return []
    ctx.progress.success("Authenticated session established", phase="auth")
    for warning in ctx.auth_result.warnings:
        ctx.progress.warning(warning, phase="auth")
    return analyze_session(ctx.auth_result, ctx.auth_config.login_url)


def run_scan(
    target_url: str,
    mode: str = MODE_BOTH,
    crawler_options: Optional[Any] = None,
    auth_config: Optional[Any] = None,
    progress_callback: Optional[ProgressCallback] = None,
    cancel_event: Optional[threading.Event] = None,
    manifest_text: Optional[str] = None,
    script_sources: Optional[Mapping[str, str]] = None,
) -> ScanReport:
    """Scan ``target_url`` and return findings, tests and the score.

    Raises :class:`ConfigurationError` before any request is sent when the
    target, mode or crawler options are invalid. A rejected login
    configuration only skips the authenticated phase. Network failures and
    cancellation yield a partial report instead.
    """
    progress = ScanProgress(progress_callback, scan_id=uuid.uuid4().hex)
    progress.phase("validate", 2)

    mode = (mode or MODE_BOTH).upper()
    errors: List[str] = []
    if mode not in SCAN_MODES:
        errors.append(f"Unknown scan mode: {mode}")
    if not is_http_url(target_url):
        errors.append(f"Target must be an HTTP(S) URL: {target_url}")
    if errors:
        raise ConfigurationError(errors)
    options, warnings = validate_crawler_options(crawler_options)
    for warning in warnings:
        progress.warning(warning, phase="validate")
    auth: Optional[AuthConfig] = None
    auth_errors: List[str] = []
    if auth_config is not None:
        auth, auth_errors = validate_auth_config(auth_config)
        for error in auth_errors:
            progress.error(f"Authentication config rejected: {error}", phase="validate")

    started = datetime.now(timezone.utc)
    report = ScanReport(
        meta={
            "scan_id": progress.scan_id,
            "target": target_url,
            "mode": mode,
            "scanner_version": __version__,
            "started_at": started.isoformat(),
            "options": options.model_dump(),
            "cancelled": False,
        }
    )
    if auth_errors:
        report.meta["auth"] = {"success": False, "error": "invalid configuration", "config_errors": auth_errors}
    findings: List[Finding] = []
    disabled = disabled_testers()

    with ScanSession(
        rate_limit_ms=options.rate_limit_ms,
        timeout_ms=options.timeout_ms,
        cancel_event=cancel_event,
    ) as session:
        ctx = ScanContext(
            target_url=normalize_url(target_url),
            mode=mode,
            options=options,
            session=session,
            progress=progress,
            auth_config=auth,
        )
        try:
            progress.phase("headers", 8)
            ctx.root_response = session.get(ctx.target_url)
            if ctx.root_response is None:
                progress.error(f"Could not reach {target_url}", phase="headers")
            else:
                report.meta["final_url"] = ctx.root_response.url
                report.meta["status_code"] = ctx.root_response.status_code
                ctx.root_cookies = extract_cookies(ctx.root_response)
                headers = response_headers(ctx.root_response)
                html = ctx.root_response.text if is_html_response(ctx.root_response) else None
                report.tests.extend(analyze_headers(ctx.root_response.url, headers, html))
                report.tests.append(analyze_cookies(ctx.root_response.url, ctx.root_cookies))
                findings.extend(findings_from_tests(ctx.root_response.url, report.tests))
                findings.extend(cookie_findings(ctx.root_response.url, ctx.root_cookies))

            if auth is not None:
                progress.phase("auth", 15)
                findings.extend(_authenticate(ctx))

            pages: List[PageSnapshot] = []
            script_urls: List[str] = []
            if mode in (MODE_DYNAMIC, MODE_BOTH):
                progress.phase("crawl", 20)
                crawl_result: CrawlResult = Crawler(ctx.target_url, options, session, progress=progress).crawl()
                ctx.site_map = crawl_result.site_map
                report.crawl_stats = crawl_result.stats
                pages = list(crawl_result.site_map.pages)
                script_urls = list(crawl_result.scripts)
                if crawl_result.stats.cancelled:
                    raise ScanCancelled("Crawl cancelled")
            elif ctx.root_response is not None and is_html_response(ctx.root_response):
                pages = [_root_snapshot(ctx.root_response)]

            if mode in (MODE_STATIC, MODE_BOTH):
                progress.phase("static", 50)
                findings.extend(
                    _run_static_analysis(
                        ctx,
                        pages,
                        script_urls=script_urls,
                        manifest_text=manifest_text,
                        script_sources=script_sources,
                    )
                )

            if mode in (MODE_DYNAMIC, MODE_BOTH):
                progress.phase("dynamic", 65)
                findings.extend(_run_testers(ctx, disabled))
        except ScanCancelled:
            report.meta["cancelled"] = True
            progress.warning("Scan cancelled; returning partial results", phase=progress.current_phase)
        finally:
            if ctx.auth_result is not None:
                report.meta["auth"] = ctx.auth_result.summary()
                ctx.auth_result.credentials.cookies.clear()
                ctx.auth_result.credentials.headers.clear()
            report.meta["requests_sent"] = session.stats.total_requests

    progress.phase("scoring", 95)
    report.findings = deduplicate_findings(findings)
    report.scoring = score(report.tests)
    report.site_map_summary = ctx.site_map.summary()
    report.meta["finished_at"] = datetime.now(timezone.utc).isoformat()
    report.meta["testers"] = TESTER_REGISTRY.describe(disabled=disabled)
    report.meta["log_summary"] = progress.summary()
    progress.success(
        f"Scan finished with score {report.scoring.score:.0f} ({report.scoring.risk_level})",
        phase="scoring",
        findings=len(report.findings),
    )
    progress.phase("complete", 100)
    report.logs = progress.to_list()
    return report


def _load_json_file(path: str) -> Any:
    with open(path, "r", encoding="utf-8") as handle:
        return json.load(handle)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="riskscan web application vulnerability scanner")
    parser.add_argument("--url", "-u", required=True, help="Target URL (including scheme).")
    parser.add_argument("--mode", default=MODE_BOTH, choices=SCAN_MODES, type=str.upper, help="Scan mode.")
    parser.add_argument("--max-depth", type=int, default=None, help="Maximum crawl depth (1-5).")
    parser.add_argument("--max-pages", type=int, default=None, help="Maximum pages to crawl (1-200).")
    parser.add_argument("--rate-limit", type=int, default=None, help="Delay between requests per host in ms (100-5000).")
    parser.add_argument("--timeout", type=int, default=None, help="Per-request timeout in ms (5000-30000).")
    parser.add_argument("--ignore-robots", action="store_true", help="Do not honor robots.txt (needs --robots-consent).")
    parser.add_argument("--robots-consent", action="store_true", help="Confirm permission to ignore robots.txt.")
    parser.add_argument("--allow-external", action="store_true", help="Follow links to other origins.")
    parser.add_argument("--auth-config", default=None, help="JSON file with login configuration.")
    parser.add_argument("--manifest", default=None, help="package.json to analyze instead of fetching one.")
    parser.add_argument("--output", "-o", default="report.json", help="File where the JSON report is written.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log progress to stderr.")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    raw_options: Dict[str, Any] = {
        "respect_robots": not args.ignore_robots,
        "robots_override_consent": args.robots_consent,
        "allow_external": args.allow_external,
    }
    for key, value in (
        ("max_depth", args.max_depth),
        ("max_pages", args.max_pages),
        ("rate_limit_ms", args.rate_limit),
        ("timeout_ms", args.timeout),
    ):
        if value is not None:
            raw_options[key] = value

    try:
        auth_raw = _load_json_file(args.auth_config) if args.auth_config else None
        manifest_text = None
        if args.manifest:
            with open(args.manifest, "r", encoding="utf-8") as handle:
                manifest_text = handle.read()
    except (OSError, json.JSONDecodeError) as exc:
        print(f"Could not read input file: {exc}", file=sys.stderr)
        return 2

    try:
        report = run_scan(
            args.url,
            mode=args.mode,
            crawler_options=raw_options,
            auth_config=auth_raw,
            manifest_text=manifest_text,
        )
    except ConfigurationError as exc:
        for error in exc.errors:
            print(f"Configuration error: {error}", file=sys.stderr)
        return 2

    with open(args.output, "w", encoding="utf-8") as handle:
        json.dump(report.to_dict(), handle, ensure_ascii=False, indent=2)
    print(
        f"Score {report.scoring.score:.0f}/100 ({report.scoring.risk_level}), "
        f"{len(report.findings)} finding(s). Report saved to {args.output}"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
