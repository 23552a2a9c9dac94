"""Rule registry: canonical finding identifiers mapped to OWASP Top 10 (2025).

Every analyzer and tester creates its findings through :func:`create_finding`
so severity, category and remediation text come from one table.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Optional, Pattern, Tuple

from .models import (
    CONFIDENCE_HIGH,
    CONFIDENCE_MEDIUM,
    SEVERITY_CRITICAL,
    SEVERITY_HIGH,
    SEVERITY_LOW,
    SEVERITY_MEDIUM,
    Finding,
)

A01_BROKEN_ACCESS_CONTROL = "A01:2025 - Broken Access Control"
A02_SECURITY_MISCONFIGURATION = "A02:2025 - Security Misconfiguration"
A03_SUPPLY_CHAIN_FAILURES = "A03:2025 - Software Supply Chain Failures"
A04_CRYPTOGRAPHIC_FAILURES = "A04:2025 - Cryptographic Failures"
A05_INJECTION = "A05:2025 - Injection"
A07_AUTH_FAILURES = "A07:2025 - Authentication Failures"
A10_EXCEPTIONAL_CONDITIONS = "A10:2025 - Mishandling of Exceptional Conditions"


@dataclass(frozen=True)
class Rule:
    id: str
    name: str
    category: str
    severity: str
    confidence: str
    description: str
    remediation: str
    references: Tuple[str, ...] = ()

    @property
    def owasp_id(self) -> str:
        return self.category.split(" - ", 1)[0]


@dataclass(frozen=True)
class PatternRule:
    """A single detection pattern bound to the rule it reports under."""

    rule_id: str
    pattern: Pattern[str]
    label: str
    severity: Optional[str] = None

    def search(self, text: str):
        return self.pattern.search(text)


def pattern_rule(rule_id: str, regex: str, label: str, *, flags: int = re.IGNORECASE, severity: Optional[str] = None) -> PatternRule:
    return PatternRule(rule_id=rule_id, pattern=re.compile(regex, flags), label=label, severity=severity)


_RULE_LIST = [
    Rule(
        id="WSS-XSS-001",
        name="Reflected Cross-Site Scripting (XSS)",
        category=A05_INJECTION,
        severity=SEVERITY_HIGH,
        confidence=CONFIDENCE_HIGH,
        description="User input is reflected in the page without proper sanitization, allowing script injection.",
        remediation="Encode output for its HTML context, validate input on the server and deploy a strict Content-Security-Policy.",
        references=("https://owasp.org/www-community/attacks/xss/",),
    ),
    Rule(
        id="WSS-XSS-002",
        name="Dangerous HTML sink usage",
        category=A05_INJECTION,
        severity=SEVERITY_HIGH,
        confidence=CONFIDENCE_MEDIUM,
        description="Untrusted data written through innerHTML or an equivalent HTML sink can execute scripts.",
        remediation="Use textContent or a vetted sanitizer such as DOMPurify before writing HTML into the DOM.",
        references=("https://cheatsheetseries.owasp.org/cheatsheets/DOM_based_XSS_Prevention_Cheat_Sheet.html",),
    ),
    Rule(
        id="WSS-XSS-003",
        name="Dangerous eval() usage",
        category=A05_INJECTION,
        severity=SEVERITY_CRITICAL,
        confidence=CONFIDENCE_HIGH,
        description="eval() or the Function constructor executes arbitrary strings as code.",
        remediation="Remove eval()/new Function(); parse data with JSON.parse and dispatch through explicit functions.",
        references=("https://developer.mozilla.org/en-US/docs/Web/JavaScript/Reference/Global_Objects/eval#never_use_eval!",),
    ),
    Rule(
        id="WSS-SQLI-001",
        name="SQL Injection",
        category=A05_INJECTION,
        severity=SEVERITY_CRITICAL,
        confidence=CONFIDENCE_HIGH,
        description="A database error was returned in response to a crafted parameter, indicating unsanitized SQL construction.",
        remediation="Use parameterized queries or prepared statements and never concatenate user input into SQL.",
        references=("https://owasp.org/www-community/attacks/SQL_Injection",),
    ),
    Rule(
        id="WSS-PATH-001",
        name="Path Traversal",
        category=A01_BROKEN_ACCESS_CONTROL,
        severity=SEVERITY_HIGH,
        confidence=CONFIDENCE_HIGH,
        description="A file path parameter allowed reading a system file outside the intended directory.",
        remediation="Resolve requested paths against an allowlist and reject '..' segments and absolute paths.",
        references=("https://owasp.org/www-community/attacks/Path_Traversal",),
    ),
    Rule(
        id="WSS-CSRF-001",
        name="Missing CSRF protection",
        category=A01_BROKEN_ACCESS_CONTROL,
        severity=SEVERITY_MEDIUM,
        confidence=CONFIDENCE_MEDIUM,
        description="A state-changing form carries no anti-forgery token or only a weak one.",
        remediation="Add a per-session, unpredictable CSRF token of at least 128 bits to every state-changing form.",
        references=("https://cheatsheetseries.owasp.org/cheatsheets/Cross-Site_Request_Forgery_Prevention_Cheat_Sheet.html",),
    ),
    Rule(
        id="WSS-CSRF-002",
        name="Session cookie without SameSite protection",
        category=A01_BROKEN_ACCESS_CONTROL,
        severity=SEVERITY_MEDIUM,
        confidence=CONFIDENCE_HIGH,
        description="A session cookie is sent on cross-site requests because SameSite is missing or set to None.",
        remediation="Set SameSite=Lax or SameSite=Strict on session cookies.",
        references=("https://owasp.org/www-community/SameSite",),
    ),
    Rule(
        id="WSS-AUTH-001",
        name="Cookie without Secure flag",
        category=A07_AUTH_FAILURES,
        severity=SEVERITY_HIGH,
        confidence=CONFIDENCE_HIGH,
        description="A session cookie can be transmitted over unencrypted HTTP.",
        remediation="Set the Secure flag on all session cookies.",
    ),
    Rule(
        id="WSS-AUTH-002",
        name="Cookie without HttpOnly flag",
        category=A07_AUTH_FAILURES,
        severity=SEVERITY_HIGH,
        confidence=CONFIDENCE_HIGH,
        description="A session cookie is readable from JavaScript, enabling theft through XSS.",
        remediation="Set the HttpOnly flag on session cookies.",
    ),
    Rule(
        id="WSS-AUTH-003",
        name="Cookie without SameSite attribute",
        category=A07_AUTH_FAILURES,
        severity=SEVERITY_MEDIUM,
        confidence=CONFIDENCE_HIGH,
        description="A session cookie lacks a restrictive SameSite attribute.",
        remediation="Set SameSite=Strict or SameSite=Lax on session cookies.",
    ),
    Rule(
        id="WSS-AUTH-004",
        name="Protected page reachable without authentication",
        category=A07_AUTH_FAILURES,
        severity=SEVERITY_CRITICAL,
        confidence=CONFIDENCE_HIGH,
        description="A page that requires a session returned its content to an unauthenticated request.",
        remediation="Enforce authentication server-side on every protected route and redirect anonymous users to login.",
    ),
    Rule(
        id="WSS-AUTH-005",
        name="Invalid session token accepted",
        category=A07_AUTH_FAILURES,
        severity=SEVERITY_HIGH,
        confidence=CONFIDENCE_MEDIUM,
        description="A tampered session token was accepted and the protected page was served.",
        remediation="Validate session identifiers against the server-side session store and reject unknown tokens.",
    ),
    Rule(
        id="WSS-AUTH-006",
        name="Authentication bypass via request parameter",
        category=A07_AUTH_FAILURES,
        severity=SEVERITY_CRITICAL,
        confidence=CONFIDENCE_HIGH,
        description="Adding a privilege-style query parameter granted access to a protected page.",
        remediation="Never derive authorization from client-supplied parameters; check the authenticated session only.",
    ),
    Rule(
        id="WSS-AUTH-007",
        name="Weak session token",
        category=A07_AUTH_FAILURES,
        severity=SEVERITY_HIGH,
        confidence=CONFIDENCE_MEDIUM,
        description="A session token is too short to carry sufficient entropy.",
        remediation="Generate session identifiers with a CSPRNG and at least 128 bits of entropy.",
    ),
    Rule(
        id="WSS-SEC-001",
        name="Missing Content-Security-Policy",
        category=A02_SECURITY_MISCONFIGURATION,
        severity=SEVERITY_MEDIUM,
        confidence=CONFIDENCE_HIGH,
        description="No Content-Security-Policy header is sent, so injected scripts run unrestricted.",
        remediation="Deploy a Content-Security-Policy starting from default-src 'self'.",
    ),
    Rule(
        id="WSS-SEC-002",
        name="Weak Content-Security-Policy",
        category=A02_SECURITY_MISCONFIGURATION,
        severity=SEVERITY_MEDIUM,
        confidence=CONFIDENCE_HIGH,
        description="The Content-Security-Policy allows unsafe sources or directives.",
        remediation="Remove 'unsafe-inline' and 'unsafe-eval', restrict object-src and use nonces or hashes.",
    ),
    Rule(
        id="WSS-SEC-003",
        name="Missing X-Frame-Options",
        category=A02_SECURITY_MISCONFIGURATION,
        severity=SEVERITY_MEDIUM,
        confidence=CONFIDENCE_HIGH,
        description="The page can be framed by other origins, enabling clickjacking.",
        remediation="Send X-Frame-Options: DENY or a frame-ancestors CSP directive.",
    ),
    Rule(
        id="WSS-SEC-004",
        name="Missing X-Content-Type-Options",
        category=A02_SECURITY_MISCONFIGURATION,
        severity=SEVERITY_LOW,
        confidence=CONFIDENCE_HIGH,
        description="Browsers may MIME-sniff responses into executable content types.",
        remediation="Send X-Content-Type-Options: nosniff.",
    ),
    Rule(
        id="WSS-SEC-005",
        name="Missing Strict-Transport-Security",
        category=A04_CRYPTOGRAPHIC_FAILURES,
        severity=SEVERITY_MEDIUM,
        confidence=CONFIDENCE_HIGH,
        description="HTTPS is not enforced through HSTS, allowing protocol downgrade attacks.",
        remediation="Send Strict-Transport-Security: max-age=31536000; includeSubDomains.",
    ),
    Rule(
        id="WSS-SEC-006",
        name="Hardcoded secret",
        category=A04_CRYPTOGRAPHIC_FAILURES,
        severity=SEVERITY_CRITICAL,
        confidence=CONFIDENCE_MEDIUM,
        description="A credential-like value is embedded in client-side code.",
        remediation="Move secrets to server-side configuration, rotate the exposed value and never ship credentials to browsers.",
    ),
    Rule(
        id="WSS-DEP-001",
        name="Vulnerable dependency",
        category=A03_SUPPLY_CHAIN_FAILURES,
        severity=SEVERITY_HIGH,
        confidence=CONFIDENCE_HIGH,
        description="A declared dependency version has a known vulnerability.",
        remediation="Upgrade the dependency to the fixed version and audit the lockfile.",
    ),
    Rule(
        id="WSS-DEP-002",
        name="Outdated dependency",
        category=A03_SUPPLY_CHAIN_FAILURES,
        severity=SEVERITY_MEDIUM,
        confidence=CONFIDENCE_MEDIUM,
        description="A declared dependency is several major versions behind.",
        remediation="Plan an upgrade to a supported major version.",
    ),
    Rule(
        id="WSS-FORM-001",
        name="Form without safe action",
        category=A02_SECURITY_MISCONFIGURATION,
        severity=SEVERITY_LOW,
        confidence=CONFIDENCE_MEDIUM,
        description="A form has no action attribute or submits to another origin.",
        remediation="Declare an explicit same-origin action on every form.",
    ),
    Rule(
        id="WSS-FORM-002",
        name="Form submits over HTTP",
        category=A04_CRYPTOGRAPHIC_FAILURES,
        severity=SEVERITY_HIGH,
        confidence=CONFIDENCE_HIGH,
        description="Form data is sent over unencrypted HTTP.",
        remediation="Use an https:// action for every form.",
    ),
    Rule(
        id="WSS-EXC-001",
        name="Stack trace disclosure",
        category=A10_EXCEPTIONAL_CONDITIONS,
        severity=SEVERITY_MEDIUM,
        confidence=CONFIDENCE_HIGH,
        description="A response contains a stack trace revealing internal code structure.",
        remediation="Return generic error pages in production and log details server-side only.",
    ),
    Rule(
        id="WSS-EXC-002",
        name="Debug mode indicator",
        category=A10_EXCEPTIONAL_CONDITIONS,
        severity=SEVERITY_LOW,
        confidence=CONFIDENCE_MEDIUM,
        description="A response carries markers of a development or debug configuration.",
        remediation="Disable debug mode and development flags in production builds.",
    ),
    Rule(
        id="WSS-EXC-003",
        name="Sensitive error message",
        category=A10_EXCEPTIONAL_CONDITIONS,
        severity=SEVERITY_MEDIUM,
        confidence=CONFIDENCE_MEDIUM,
        description="An error message exposes infrastructure details such as hosts, users or file paths.",
        remediation="Map internal errors to generic messages before they reach the client.",
    ),
]

RULES: Dict[str, Rule] = {rule.id: rule for rule in _RULE_LIST}


def get_rule(rule_id: str) -> Rule:
    try:
        return RULES[rule_id]
    except KeyError:
        raise KeyError(f"Unknown rule id: {rule_id}") from None


def create_finding(
    rule_id: str,
    location: str,
    evidence: str = "",
    *,
    description: Optional[str] = None,
    confidence: Optional[str] = None,
    severity: Optional[str] = None,
) -> Finding:
    rule = get_rule(rule_id)
    return Finding(
        rule_id=rule.id,
        title=rule.name,
        category=rule.category,
        owasp_id=rule.owasp_id,
        severity=severity or rule.severity,
        confidence=confidence or rule.confidence,
        description=description or rule.description,
        location=location,
        remediation=rule.remediation,
        evidence=evidence,
    )
