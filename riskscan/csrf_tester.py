"""Request-forgery checks: anti-CSRF tokens on forms and SameSite on session cookies.

Both checks are passive; forms are inspected, never submitted.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from bs4 import BeautifulSoup

from .models import FormField, FormInfo, Finding
from .probes import TesterResult
from .rules import create_finding
from .transport import is_session_cookie_name

logger = logging.getLogger("riskscan.csrf_tester")
logger.addHandler(logging.NullHandler())

STATE_CHANGING_METHODS = {"POST", "PUT", "DELETE", "PATCH"}
MIN_TOKEN_LENGTH = 16
MIN_DISTINCT_CHARACTERS = 8

CSRF_TOKEN_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"csrf[_-]?token",
        r"xsrf[_-]?token",
        r"^_csrf$",
        r"authenticity[_-]?token",
        r"anti[_-]?forgery",
        r"__requestverificationtoken",
        r"csrfmiddlewaretoken",
        r"^_?token$",
        r"^nonce$",
        r"form[_-]?key",
    )
]
META_TOKEN_NAMES = re.compile(r"csrf|xsrf", re.IGNORECASE)


def is_token_field(name: str) -> bool:
    return any(pattern.search(name or "") for pattern in CSRF_TOKEN_PATTERNS)


def find_token_field(form: FormInfo) -> Optional[FormField]:
    for item in form.fields:
        if is_token_field(item.name):
            return item
    return None


def has_meta_token(html: Optional[str]) -> bool:
    if not html:
        return False
    soup = BeautifulSoup(html, "html.parser")
    for meta in soup.find_all("meta"):
        if META_TOKEN_NAMES.search(meta.get("name") or "") and meta.get("content"):
            return True
    return False


def token_is_weak(value: str) -> bool:
    """Short or low-variety values cannot carry enough entropy."""
    return len(value) < MIN_TOKEN_LENGTH or len(set(value)) < MIN_DISTINCT_CHARACTERS


def check_form(form: FormInfo, page_html: Optional[str] = None) -> Optional[Finding]:
    if form.method.upper() not in STATE_CHANGING_METHODS:
        return None
    location = f"{form.action} (form on {form.page_url}, method: {form.method})"
    token = find_token_field(form)
    if token is None:
        if has_meta_token(page_html):
            return None
        return create_finding(
            "WSS-CSRF-001",
            location,
            f"Fields: {', '.join(form.field_names) or '(none)'}",
            description=f"{form.method} form has no anti-CSRF token field",
        )
    # empty values are filled client-side and cannot be judged here
    if token.value and token_is_weak(token.value):
        return create_finding(
            "WSS-CSRF-001",
            location,
            f"{token.name} length {len(token.value)}",
            description=f"CSRF token '{token.name}' is too short or predictable ({len(token.value)} characters)",
        )
    return None


def check_samesite_cookies(cookies: Iterable[Mapping[str, Any]], location: str) -> List[Finding]:
    findings: List[Finding] = []
    for cookie in cookies:
        name = str(cookie.get("name", ""))
        if not is_session_cookie_name(name):
            continue
        samesite = (cookie.get("samesite") or "").strip()
        if samesite and samesite.lower() != "none":
            continue
        findings.append(
            create_finding(
                "WSS-CSRF-002",
                location,
                f"Set-Cookie: {name} (SameSite: {samesite or 'not set'})",
                description=f"Session cookie '{name}' is sent on cross-site requests",
            )
        )
    return findings


def probe_csrf(
    target_url: str,
    endpoints: Sequence[str],
    forms: Sequence[FormInfo],
    *,
    cookies: Iterable[Mapping[str, Any]] = (),
    page_html: Optional[Dict[str, str]] = None,
) -> TesterResult:
    result = TesterResult()
    page_html = page_html or {}
    for form in forms:
        finding = check_form(form, page_html.get(form.page_url))
        if finding:
            result.vulnerabilities.append(finding)
    result.vulnerabilities.extend(check_samesite_cookies(cookies, target_url))
    return result
