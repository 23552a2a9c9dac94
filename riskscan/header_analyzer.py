"""Response header and cookie policy checks.

Each check yields exactly one :class:`SecurityTest`; the score deltas are the
inputs of the scoring engine.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlparse

from .csp_analyzer import TEST_NAME as CSP_TEST_NAME
from .csp_analyzer import analyze_csp, parse_csp
from .models import (
    OUTCOME_FAILED,
    OUTCOME_INFO,
    OUTCOME_NOT_APPLICABLE,
    OUTCOME_PASSED,
    Finding,
    SecurityTest,
)
from .rules import create_finding
from .transport import is_session_cookie_name
from .urltools import resolve

HSTS_MIN_MAX_AGE = 15552000
SAFE_REFERRER_POLICIES = {"no-referrer", "strict-origin", "strict-origin-when-cross-origin", "same-origin"}
SENSITIVE_FEATURES = ("camera", "microphone", "geolocation", "payment", "usb")
VALID_COEP = {"require-corp", "credentialless"}
VALID_COOP = {"same-origin", "same-origin-allow-popups"}
CDN_MARKERS = ("cdn.", "cloudflare", "jsdelivr", "unpkg", "googleapis", "cdnjs", "gstatic")
SCRIPT_SRC_PATTERN = re.compile(r"""<script[^>]+src\s*=\s*["']([^"']+)["']""", re.IGNORECASE)
MAX_AGE_PATTERN = re.compile(r"max-age\s*=\s*\"?(\d+)", re.IGNORECASE)

TEST_HSTS = "Strict-Transport-Security (HSTS)"
TEST_XCTO = "X-Content-Type-Options"
TEST_XFO = "X-Frame-Options"
TEST_REFERRER = "Referrer-Policy"
TEST_XXSS = "X-XSS-Protection"
TEST_CORS = "CORS Configuration"
TEST_PERMISSIONS = "Permissions-Policy"
TEST_SPECTRE = "Spectre Mitigation Headers"
TEST_SCRIPT_INCLUSIONS = "Cross-Origin Script Inclusions"
TEST_COOKIES = "Cookies"


def _lower_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    return {str(key).lower(): str(value) for key, value in headers.items()}


def _test(name: str, delta: int, outcome: str, reason: str, recommendation: str = "", *, passed: Optional[bool] = None, **details: Any) -> SecurityTest:
    if passed is None:
        passed = outcome in (OUTCOME_PASSED, OUTCOME_NOT_APPLICABLE) or (outcome == OUTCOME_INFO and delta >= 0)
    return SecurityTest(
        test_name=name,
        passed=passed,
        score_delta=delta,
        outcome=outcome,
        reason=reason,
        recommendation=recommendation,
        details=details,
    )


def check_hsts(url: str, headers: Dict[str, str]) -> SecurityTest:
    if urlparse(url).scheme.lower() != "https":
        return _test(TEST_HSTS, 0, OUTCOME_NOT_APPLICABLE, "HSTS only applies to HTTPS responses",
                     "Serve the site over HTTPS and enable HSTS")
    value = headers.get("strict-transport-security")
    if not value:
        return _test(TEST_HSTS, -20, OUTCOME_FAILED, "Strict-Transport-Security header is missing",
                     "Send Strict-Transport-Security: max-age=31536000; includeSubDomains")
    match = MAX_AGE_PATTERN.search(value)
    max_age = int(match.group(1)) if match else 0
    lowered = value.lower()
    details = {
        "max_age": max_age,
        "include_subdomains": "includesubdomains" in lowered,
        "preload": "preload" in lowered,
    }
    if max_age < HSTS_MIN_MAX_AGE:
        return _test(TEST_HSTS, -10, OUTCOME_FAILED, f"HSTS max-age {max_age} is below 180 days",
                     "Raise max-age to at least 15552000 seconds", **details)
    return _test(TEST_HSTS, 0, OUTCOME_PASSED, "HSTS is enabled with a sufficient max-age", **details)


def check_content_type_options(headers: Dict[str, str]) -> SecurityTest:
    value = headers.get("x-content-type-options", "")
    if value.strip().lower() != "nosniff":
        return _test(TEST_XCTO, -5, OUTCOME_FAILED,
                     "X-Content-Type-Options is missing or not 'nosniff'",
                     "Send X-Content-Type-Options: nosniff", value=value or None)
    return _test(TEST_XCTO, 0, OUTCOME_PASSED, "MIME sniffing is disabled")


def check_frame_options(headers: Dict[str, str]) -> SecurityTest:
    value = headers.get("x-frame-options", "").strip()
    if not value:
        frame_ancestors = parse_csp(headers.get("content-security-policy", "")).get("frame-ancestors")
        if frame_ancestors:
            return _test(TEST_XFO, 0, OUTCOME_PASSED,
                         "X-Frame-Options missing but CSP frame-ancestors restricts framing",
                         frame_ancestors=frame_ancestors)
        return _test(TEST_XFO, -20, OUTCOME_FAILED, "X-Frame-Options header is missing",
                     "Send X-Frame-Options: DENY or SAMEORIGIN")
    if value.lower() in ("deny", "sameorigin"):
        return _test(TEST_XFO, 0, OUTCOME_PASSED, f"Framing restricted with {value.upper()}")
    return _test(TEST_XFO, -10, OUTCOME_FAILED, f"X-Frame-Options value '{value}' is not supported by browsers",
                 "Use DENY or SAMEORIGIN", value=value)


def check_referrer_policy(headers: Dict[str, str]) -> SecurityTest:
    value = headers.get("referrer-policy", "").strip()
    if not value:
        return _test(TEST_REFERRER, 0, OUTCOME_INFO,
                     "Referrer-Policy not set; browsers default to strict-origin-when-cross-origin",
                     "Set Referrer-Policy: strict-origin-when-cross-origin explicitly")
    # the last recognised token wins in browsers
    tokens = [token.strip().lower() for token in value.split(",") if token.strip()]
    policy = tokens[-1] if tokens else value.lower()
    if policy in SAFE_REFERRER_POLICIES:
        return _test(TEST_REFERRER, 5, OUTCOME_PASSED, f"Referrer-Policy '{policy}' limits referrer leakage")
    return _test(TEST_REFERRER, -5, OUTCOME_FAILED, f"Referrer-Policy '{policy}' may leak full URLs",
                 "Use strict-origin-when-cross-origin or no-referrer", value=value)


def check_xss_protection(headers: Dict[str, str]) -> SecurityTest:
    value = headers.get("x-xss-protection")
    if value is None:
        return _test(TEST_XXSS, 0, OUTCOME_INFO,
                     "X-XSS-Protection not set; the header is deprecated and CSP is the real defence")
    if value.strip() == "0":
        return _test(TEST_XXSS, 0, OUTCOME_PASSED, "Legacy XSS auditor explicitly disabled")
    return _test(TEST_XXSS, 0, OUTCOME_INFO, f"X-XSS-Protection '{value}' is deprecated",
                 "Set X-XSS-Protection: 0 or remove it and rely on CSP", value=value)


def check_cors(headers: Dict[str, str]) -> SecurityTest:
    origin = headers.get("access-control-allow-origin")
    credentials = headers.get("access-control-allow-credentials", "").strip().lower() == "true"
    if not origin:
        return _test(TEST_CORS, 0, OUTCOME_INFO, "No CORS headers; cross-origin reads are denied by default")
    origin = origin.strip()
    if origin == "*" and credentials:
        return _test(TEST_CORS, -25, OUTCOME_FAILED,
                     "Wildcard origin combined with Access-Control-Allow-Credentials: true",
                     "Reflect only allow-listed origins and never combine * with credentials",
                     origin=origin, credentials=True)
    if origin == "*":
        return _test(TEST_CORS, -10, OUTCOME_FAILED, "Any origin may read responses",
                     "Restrict Access-Control-Allow-Origin to trusted origins", origin=origin, credentials=credentials)
    if origin.lower() == "null":
        return _test(TEST_CORS, -10, OUTCOME_FAILED, "The 'null' origin is allowed (sandboxed frames can read responses)",
                     "Never allow the null origin", origin=origin, credentials=credentials)
    return _test(TEST_CORS, 0, OUTCOME_PASSED, f"CORS restricted to {origin}", origin=origin, credentials=credentials)


def check_permissions_policy(headers: Dict[str, str]) -> SecurityTest:
    value = headers.get("permissions-policy") or headers.get("feature-policy")
    if not value:
        return _test(TEST_PERMISSIONS, -5, OUTCOME_FAILED, "Permissions-Policy header is missing",
                     "Send Permissions-Policy: camera=(), microphone=(), geolocation=()")
    unrestricted = []
    for feature in SENSITIVE_FEATURES:
        modern = re.search(rf"\b{feature}\s*=\s*(\*|\([^)]*\))", value, re.IGNORECASE)
        legacy = re.search(rf"\b{feature}\s+([^;]*)", value, re.IGNORECASE)
        if (modern and "*" in modern.group(1)) or (legacy and "*" in legacy.group(1).split()):
            unrestricted.append(feature)
    if unrestricted:
        return _test(TEST_PERMISSIONS, -10, OUTCOME_FAILED,
                     "Sensitive features allowed for every origin: " + ", ".join(unrestricted),
                     "Restrict sensitive features to () or self", features=unrestricted)
    return _test(TEST_PERMISSIONS, 5, OUTCOME_PASSED, "Browser features are restricted")


def check_cross_origin_isolation(headers: Dict[str, str]) -> SecurityTest:
    coep = headers.get("cross-origin-embedder-policy", "").strip().lower()
    coop = headers.get("cross-origin-opener-policy", "").strip().lower()
    details = {"coep": coep or None, "coop": coop or None}
    if not coep and not coop:
        return _test(TEST_SPECTRE, -5, OUTCOME_FAILED, "COEP and COOP headers are missing",
                     "Send Cross-Origin-Opener-Policy: same-origin and Cross-Origin-Embedder-Policy: require-corp",
                     **details)
    problems = []
    if coep not in VALID_COEP:
        problems.append("COEP missing or weak" if not coep else f"COEP '{coep}' does not isolate")
    if coop not in VALID_COOP:
        problems.append("COOP missing or weak" if not coop else f"COOP '{coop}' does not isolate")
    if problems:
        return _test(TEST_SPECTRE, -5, OUTCOME_FAILED, "; ".join(problems),
                     "Use COEP require-corp/credentialless and COOP same-origin", **details)
    return _test(TEST_SPECTRE, 5, OUTCOME_PASSED, "Cross-origin isolation enabled", **details)


def check_script_inclusions(url: str, html: str) -> SecurityTest:
    page_host = (urlparse(url).hostname or "").lower()
    cdn_hosts: List[str] = []
    third_party: List[str] = []
    for src in SCRIPT_SRC_PATTERN.findall(html):
        absolute = resolve(url, src)
        if absolute is None:
            continue
        host = (urlparse(absolute).hostname or "").lower()
        if not host or host == page_host:
            continue
        bucket = cdn_hosts if any(marker in host for marker in CDN_MARKERS) else third_party
        if absolute not in bucket:
            bucket.append(absolute)
    if not cdn_hosts and not third_party:
        return _test(TEST_SCRIPT_INCLUSIONS, 5, OUTCOME_PASSED, "All scripts are served from the same origin")
    return _test(
        TEST_SCRIPT_INCLUSIONS,
        -10,
        OUTCOME_FAILED,
        f"{len(cdn_hosts) + len(third_party)} cross-origin scripts ({len(cdn_hosts)} CDN, {len(third_party)} other)",
        "Self-host critical scripts or pin them with Subresource Integrity",
        cdn=cdn_hosts,
        third_party=third_party,
    )


def analyze_headers(url: str, headers: Mapping[str, str], html: Optional[str] = None) -> List[SecurityTest]:
    lowered = _lower_headers(headers)
    tests = [
        analyze_csp(lowered.get("content-security-policy")),
        check_hsts(url, lowered),
        check_content_type_options(lowered),
        check_frame_options(lowered),
        check_referrer_policy(lowered),
        check_xss_protection(lowered),
        check_cors(lowered),
        check_permissions_policy(lowered),
        check_cross_origin_isolation(lowered),
    ]
    if html is not None:
        tests.append(check_script_inclusions(url, html))
    return tests


def analyze_cookies(url: str, cookies: List[Dict[str, Any]]) -> SecurityTest:
    if not cookies:
        return _test(TEST_COOKIES, 0, OUTCOME_INFO, "No cookies set by the response")
    over_http = urlparse(url).scheme.lower() == "http"
    issues = []
    for cookie in cookies:
        name = cookie.get("name", "")
        problems = []
        if not cookie.get("secure"):
            problems.append("missing Secure")
        if not cookie.get("expires") and not cookie.get("max_age") and not cookie.get("httponly"):
            problems.append("session cookie missing HttpOnly")
        if problems:
            issues.append({"cookie": name, "issues": problems})
    if over_http:
        issues.append({"cookie": "*", "issues": ["cookies set over plain HTTP"]})
    if issues:
        return _test(TEST_COOKIES, -20, OUTCOME_FAILED, f"{len(issues)} cookie problems found",
                     "Mark cookies Secure and HttpOnly and set them over HTTPS only",
                     cookies=len(cookies), issues=issues)
    return _test(TEST_COOKIES, 5, OUTCOME_PASSED, "All cookies carry Secure and HttpOnly where required",
                 cookies=len(cookies))


def cookie_findings(url: str, cookies: List[Dict[str, Any]]) -> List[Finding]:
    findings: List[Finding] = []
    for cookie in cookies:
        name = cookie.get("name", "")
        if not is_session_cookie_name(name):
            continue
        if not cookie.get("secure"):
            findings.append(create_finding("WSS-AUTH-001", url, f"Set-Cookie: {name} (Secure flag: false)",
                                           description=f"Session cookie '{name}' is sent without the Secure flag"))
        if not cookie.get("httponly"):
            findings.append(create_finding("WSS-AUTH-002", url, f"Set-Cookie: {name} (HttpOnly flag: false)",
                                           description=f"Session cookie '{name}' is readable from JavaScript"))
    return findings


_HEADER_TEST_RULES = {
    TEST_HSTS: "WSS-SEC-005",
    TEST_XCTO: "WSS-SEC-004",
    TEST_XFO: "WSS-SEC-003",
}


def findings_from_tests(url: str, tests: List[SecurityTest]) -> List[Finding]:
    """Map failed header tests to rule findings."""
    findings: List[Finding] = []
    for test in tests:
        if test.outcome != OUTCOME_FAILED:
            continue
        if test.test_name == CSP_TEST_NAME:
            rule_id = "WSS-SEC-002" if test.details.get("policy") else "WSS-SEC-001"
            evidence = test.details.get("policy", "Content-Security-Policy: (absent)")
        elif test.test_name in _HEADER_TEST_RULES:
            rule_id = _HEADER_TEST_RULES[test.test_name]
            evidence = test.reason
        else:
            continue
        findings.append(create_finding(rule_id, url, str(evidence)[:200], description=test.reason))
    return findings


__all__ = [
    "analyze_headers",
    "analyze_cookies",
    "analyze_csp",
    "cookie_findings",
    "findings_from_tests",
]
