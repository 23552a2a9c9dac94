"""Form login, session cookie analysis and authentication-bypass probes.

The login posts the page's own form with the configured credentials; the
resulting cookies become :class:`SessionCredentials` owned by the scan. The
password is read from the config only at the moment the form is submitted
and is never logged or stored on the result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin, urlparse

import requests
from bs4 import BeautifulSoup

from .config import AuthConfig
from .models import Finding
from .probes import ProbeClient, TesterResult
from .progress import ScanProgress
from .rules import create_finding
from .transport import ScanSession, SessionCredentials, extract_cookies, is_session_cookie_name
from .urltools import replace_query_param

logger = logging.getLogger("riskscan.auth_tester")
logger.addHandler(logging.NullHandler())

BYPASS_DELAY_MS = 500
MIN_SESSION_TOKEN_LENGTH = 16
MIN_CONTENT_LENGTH = 100
TAMPER_PREFIX = "INVALID_"
LOGIN_PATH_MARKERS = ("login", "signin", "sign-in", "auth", "sso")

BYPASS_PARAMETERS = [
    ("admin", "true"),
    ("debug", "true"),
    ("auth", "1"),
    ("bypass", "1"),
    ("role", "admin"),
    ("isAdmin", "true"),
    ("access", "granted"),
]


@dataclass
class AuthResult:
    success: bool
    credentials: SessionCredentials = field(default_factory=SessionCredentials)
    cookies: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    def summary(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "cookie_names": sorted(self.credentials.cookies),
            "error": self.error,
            "warnings": list(self.warnings),
        }


def _collect_response_cookies(resp: requests.Response) -> List[Dict[str, Any]]:
    cookies: List[Dict[str, Any]] = []
    for hop in list(resp.history or []) + [resp]:
        cookies.extend(extract_cookies(hop))
    return cookies


def _login_succeeded(config: AuthConfig, resp: requests.Response) -> bool:
    if resp.status_code >= 400:
        return False
    soup = BeautifulSoup(resp.text or "", "html.parser")
    if config.success_selector:
        return soup.select_one(config.success_selector) is not None
    if config.success_url:
        return (resp.url or "").startswith(config.success_url)
    return soup.select_one(config.password_selector) is None


def authenticate(config: AuthConfig, session: ScanSession) -> AuthResult:
    login_page = session.get(config.login_url)
    if login_page is None or login_page.status_code >= 400:
        return AuthResult(success=False, error=f"Login page {config.login_url} is unreachable")

    soup = BeautifulSoup(login_page.text or "", "html.parser")
    username_input = soup.select_one(config.username_selector)
    password_input = soup.select_one(config.password_selector)
    if username_input is None or password_input is None:
        return AuthResult(success=False, error="Login form fields not found with the configured selectors")
    if not username_input.get("name") or not password_input.get("name"):
        return AuthResult(success=False, error="Login inputs have no name attribute")

    form = password_input.find_parent("form")
    data: Dict[str, str] = {}
    action = login_page.url or config.login_url
    method = "POST"
    if form is not None:
        action = urljoin(action, form.get("action") or "") if form.get("action") else action
        method = (form.get("method") or "POST").upper()
        for element in form.find_all("input"):
            name = element.get("name")
            if name and (element.get("type") or "text").lower() in ("hidden", "text", "email"):
                data[name] = element.get("value") or ""
    submit = soup.select_one(config.submit_selector)
    if submit is not None and submit.get("name"):
        data[submit["name"]] = submit.get("value") or ""
    data[username_input["name"]] = config.credentials.username
    data[password_input["name"]] = config.credentials.password.get_secret_value()

    if method == "GET":
        resp = session.request("GET", action, params=data)
    else:
        resp = session.request(method, action, data=data)
    data.clear()
    if resp is None:
        return AuthResult(success=False, error="Login request failed")

    cookies = _collect_response_cookies(resp)
    if not _login_succeeded(config, resp):
        return AuthResult(success=False, cookies=cookies, error="Login did not reach the success condition")

    credentials = SessionCredentials(cookies={cookie.name: cookie.value for cookie in session.session.cookies})
    warnings = []
    if cookies and not any(cookie.get("secure") for cookie in cookies):
        warnings.append("No cookies have the Secure flag set")
    return AuthResult(success=True, credentials=credentials, cookies=cookies, warnings=warnings)


def analyze_session(auth_result: AuthResult, location: str = "authenticated session") -> List[Finding]:
    findings: List[Finding] = []
    if not auth_result.success:
        return findings
    for cookie in auth_result.cookies:
        name = cookie.get("name", "")
        if not is_session_cookie_name(name):
            continue
        if not cookie.get("secure"):
            findings.append(create_finding("WSS-AUTH-001", location, f"Cookie: {name} (Secure flag: false)",
                                           description=f"Session cookie '{name}' can travel over plain HTTP"))
        if not cookie.get("httponly"):
            findings.append(create_finding("WSS-AUTH-002", location, f"Cookie: {name} (HttpOnly flag: false)",
                                           description=f"Session cookie '{name}' is accessible from JavaScript"))
        samesite = (cookie.get("samesite") or "").lower()
        if not samesite or samesite == "none":
            findings.append(create_finding("WSS-AUTH-003", location, f"Cookie: {name} (SameSite: {samesite or 'not set'})",
                                           description=f"Session cookie '{name}' has no restrictive SameSite attribute"))
        value = cookie.get("value") or ""
        if len(value) < MIN_SESSION_TOKEN_LENGTH:
            findings.append(create_finding("WSS-AUTH-007", location, f"Token length: {len(value)} characters",
                                           description=f"Session token '{name}' appears to have low entropy"))
    return findings


def tamper_credentials(credentials: SessionCredentials) -> SessionCredentials:
    tampered = {
        name: f"{TAMPER_PREFIX}{value}" if is_session_cookie_name(name) else value
        for name, value in credentials.cookies.items()
    }
    return SessionCredentials(headers=dict(credentials.headers), cookies=tampered)


def looks_like_login_page(resp: requests.Response, login_url: str) -> bool:
    final_path = urlparse(resp.url or "").path.lower()
    login_path = urlparse(login_url).path.lower()
    if login_path and login_path != "/" and final_path.rstrip("/") == login_path.rstrip("/"):
        return True
    if any(marker in final_path for marker in LOGIN_PATH_MARKERS):
        return True
    soup = BeautifulSoup(resp.text or "", "html.parser")
    return soup.find("input", attrs={"type": "password"}) is not None


def page_is_served(resp: Optional[requests.Response], login_url: str) -> bool:
    """200 with real content and no login form."""
    if resp is None or resp.status_code != 200:
        return False
    if len((resp.text or "").strip()) < MIN_CONTENT_LENGTH:
        return False
    return not looks_like_login_page(resp, login_url)


def probe_auth_bypass(
    config: AuthConfig,
    auth_result: AuthResult,
    scan_session: ScanSession,
    *,
    progress: Optional[ScanProgress] = None,
    delay_ms: int = BYPASS_DELAY_MS,
) -> TesterResult:
    result = TesterResult()
    if not config.protected_pages:
        result.skipped.append("no protected pages configured")
        return result

    with ScanSession(
        rate_limit_ms=0,
        timeout_ms=int(scan_session.timeout * 1000),
        cancel_event=scan_session.cancel_event,
        gate=scan_session.gate,
    ) as anonymous:
        client = ProbeClient(anonymous, delay_ms)
        for page in config.protected_pages:
            url = urljoin(config.login_url, page)

            if page_is_served(client.get(url), config.login_url):
                result.vulnerabilities.append(
                    create_finding("WSS-AUTH-004", url, "HTTP 200 with page content and no login form",
                                   description=f"Protected page {url} is served without authentication")
                )
                if progress:
                    progress.error(f"Protected page reachable without authentication: {url}", phase="auth")
                continue

            if auth_result.success and auth_result.credentials.cookies:
                tampered = tamper_credentials(auth_result.credentials)
                resp = client.get(url, cookies=tampered.cookies)
                if page_is_served(resp, config.login_url):
                    result.vulnerabilities.append(
                        create_finding("WSS-AUTH-005", url, f"Tampered cookies accepted: {', '.join(sorted(tampered.cookies))}",
                                       description=f"Protected page {url} accepted an invalid session token")
                    )

            for name, value in BYPASS_PARAMETERS:
                probe = replace_query_param(url, name, value)
                if page_is_served(client.get(probe), config.login_url):
                    result.vulnerabilities.append(
                        create_finding("WSS-AUTH-006", probe, f"{name}={value}",
                                       description=f"Parameter {name}={value} granted access to {url}")
                    )
                    break
        result.requests_sent = client.requests_sent
    return result
