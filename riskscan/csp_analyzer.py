"""Content-Security-Policy parsing and directive-level checks."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict, List, Optional

from .models import OUTCOME_FAILED, OUTCOME_PASSED, SecurityTest

TEST_NAME = "Content Security Policy (CSP)"

CHECK_HIGH = "high"
CHECK_MEDIUM = "medium"
CHECK_LOW = "low"
CHECK_INFO = "info"

MISSING_CSP_DELTA = -25
HIGH_FAILURE_DELTA = -25
MANY_FAILURES_DELTA = -20
SEVERAL_FAILURES_DELTA = -10
FEW_FAILURES_DELTA = -5
STRONG_POLICY_BONUS = 5

Directives = Dict[str, List[str]]


@dataclass(frozen=True)
class CspCheck:
    name: str
    severity: str
    passed: bool
    message: str

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


def parse_csp(policy: str) -> Directives:
    """Split a policy into ``{directive: [source, ...]}``; first occurrence wins."""
    directives: Directives = {}
    for part in (policy or "").split(";"):
        tokens = part.strip().split()
        if not tokens:
            continue
        name = tokens[0].lower()
        if name in directives:
            continue
        directives[name] = [token.lower() for token in tokens[1:]]
    return directives


def _effective(directives: Directives, name: str) -> Optional[List[str]]:
    if name in directives:
        return directives[name]
    return directives.get("default-src")


def _script_sources(directives: Directives) -> List[str]:
    return _effective(directives, "script-src") or []


def _no_unsafe_inline_scripts(directives: Directives) -> bool:
    sources = _script_sources(directives)
    if "'unsafe-inline'" not in sources:
        return True
    # unsafe-inline is ignored by browsers when a nonce, hash or strict-dynamic is present
    return any(
        token.startswith(("'nonce-", "'sha256-", "'sha384-", "'sha512-")) or token == "'strict-dynamic'"
        for token in sources
    )


def _no_unsafe_eval(directives: Directives) -> bool:
    return "'unsafe-eval'" not in _script_sources(directives)


def _object_src_restricted(directives: Directives) -> bool:
    if "object-src" in directives:
        return directives["object-src"] == ["'none'"]
    return directives.get("default-src") == ["'none'"]


def _no_unsafe_inline_styles(directives: Directives) -> bool:
    return "'unsafe-inline'" not in (_effective(directives, "style-src") or [])


def _https_only(directives: Directives) -> bool:
    for sources in directives.values():
        for token in sources:
            if token.startswith("http://") or token in ("http:", "ftp:", "https:") or token.startswith("ftp://"):
                return False
    return True


CSP_CHECKS: List[tuple] = [
    ("No 'unsafe-inline' in script-src", CHECK_HIGH, _no_unsafe_inline_scripts,
     "script-src allows inline scripts", "Inline scripts are blocked"),
    ("No 'unsafe-eval' in script-src", CHECK_HIGH, _no_unsafe_eval,
     "script-src allows eval()", "eval() is blocked"),
    ("object-src restricted", CHECK_MEDIUM, _object_src_restricted,
     "object-src is not 'none'; plugins can load", "Plugins are blocked"),
    ("No 'unsafe-inline' in style-src", CHECK_MEDIUM, _no_unsafe_inline_styles,
     "style-src allows inline styles", "Inline styles are blocked"),
    ("HTTPS-only sources", CHECK_HIGH, _https_only,
     "Policy allows insecure or overly broad scheme sources", "All sources require HTTPS hosts"),
    ("frame-ancestors defined", CHECK_MEDIUM, lambda d: "frame-ancestors" in d,
     "frame-ancestors missing; clickjacking relies on X-Frame-Options", "frame-ancestors is defined"),
    ("default-src 'none'", CHECK_LOW, lambda d: d.get("default-src") == ["'none'"],
     "default-src is not deny-by-default", "default-src denies by default"),
    ("base-uri restricted", CHECK_MEDIUM, lambda d: "base-uri" in d,
     "base-uri missing; injected <base> tags can hijack relative URLs", "base-uri is defined"),
    ("form-action restricted", CHECK_MEDIUM, lambda d: "form-action" in d,
     "form-action missing; forms can post to any origin", "form-action is defined"),
    ("strict-dynamic used", CHECK_INFO, lambda d: "'strict-dynamic'" in _script_sources(d),
     "strict-dynamic not used", "strict-dynamic is used"),
]


def run_csp_checks(directives: Directives) -> List[CspCheck]:
    results = []
    for name, severity, predicate, fail_message, pass_message in CSP_CHECKS:
        passed = bool(predicate(directives))
        results.append(CspCheck(name, severity, passed, pass_message if passed else fail_message))
    return results


def analyze_csp(policy: Optional[str]) -> SecurityTest:
    if not policy or not policy.strip():
        return SecurityTest(
            test_name=TEST_NAME,
            passed=False,
            score_delta=MISSING_CSP_DELTA,
            outcome=OUTCOME_FAILED,
            reason="No Content-Security-Policy header found",
            recommendation="Deploy a policy such as: default-src 'self'; object-src 'none'; base-uri 'self'; frame-ancestors 'none'",
        )

    directives = parse_csp(policy)
    checks = run_csp_checks(directives)
    failed = [check for check in checks if not check.passed and check.severity != CHECK_INFO]
    high_failed = [check for check in failed if check.severity == CHECK_HIGH]

    if not failed:
        delta = STRONG_POLICY_BONUS
    elif high_failed:
        delta = HIGH_FAILURE_DELTA
    elif len(failed) >= 5:
        delta = MANY_FAILURES_DELTA
    elif len(failed) >= 3:
        delta = SEVERAL_FAILURES_DELTA
    else:
        delta = FEW_FAILURES_DELTA

    passed = not failed
    reason = (
        "Content-Security-Policy passes all checks"
        if passed
        else f"{len(failed)} CSP checks failed: " + "; ".join(check.message for check in failed)
    )
    return SecurityTest(
        test_name=TEST_NAME,
        passed=passed,
        score_delta=delta,
        outcome=OUTCOME_PASSED if passed else OUTCOME_FAILED,
        reason=reason,
        recommendation="" if passed else "Remove unsafe sources and add object-src, base-uri, form-action and frame-ancestors directives",
        details={
            "policy": policy,
            "directives": directives,
            "checks": [check.to_dict() for check in checks],
            "failed": len(failed),
            "high_severity_failed": len(high_failed),
        },
    )
