"""Detect stack traces, debug markers and verbose errors in response bodies."""

from __future__ import annotations

import re
from typing import List

from .models import PageSnapshot, Finding
from .rules import PatternRule, create_finding, pattern_rule

EVIDENCE_LIMIT = 200

EXCEPTION_RULES: List[PatternRule] = [
    pattern_rule("WSS-EXC-001", r"Traceback\s+\(most\s+recent\s+call\s+last\)", "Python traceback"),
    pattern_rule("WSS-EXC-001", r"File\s+\"[^\"]+\",\s+line\s+\d+", "Python stack frame"),
    pattern_rule("WSS-EXC-001", r"Exception\s+in\s+thread\s+\"[^\"]+\"", "Java exception"),
    pattern_rule("WSS-EXC-001", r"at\s+[\w$.]+\([\w$]+\.java:\d+\)", "Java stack frame"),
    pattern_rule("WSS-EXC-001", r"\.php\s+on\s+line\s+\d+", "PHP error"),
    pattern_rule("WSS-EXC-001", r"\.rb:\d+:in\s+`[^`']+'", "Ruby stack frame"),
    pattern_rule("WSS-EXC-001", r"System\.\w*Exception:", ".NET exception"),
    pattern_rule("WSS-EXC-001", r"at\s+[\w$.<>]+\s*\([^)]*:\d+:\d+\)", "JavaScript stack frame"),
    pattern_rule("WSS-EXC-002", r"\bAPP_DEBUG\s*=\s*true\b", "APP_DEBUG enabled"),
    pattern_rule("WSS-EXC-002", r"\bDEBUG\s*=\s*True\b", "DEBUG enabled", flags=0),
    pattern_rule("WSS-EXC-002", r"NODE_ENV\s*[=:]\s*['\"]?development", "development NODE_ENV"),
    pattern_rule("WSS-EXC-002", r"RAILS_ENV\s*=\s*development", "development RAILS_ENV"),
    pattern_rule("WSS-EXC-002", r"Werkzeug Debugger|Whoops! There was an error|django\.views\.debug", "framework debug page"),
    pattern_rule("WSS-EXC-003", r"access\s+denied\s+for\s+user\s+'[^']+'@", "database user disclosure"),
    pattern_rule("WSS-EXC-003", r"password\s+authentication\s+failed\s+for\s+user", "database authentication error"),
    pattern_rule("WSS-EXC-003", r"(?:redis|mongodb|mysql|postgres)\S*\s+connection\s+(?:refused|failed)", "backend connection error"),
    pattern_rule("WSS-EXC-003", r"(?:no\s+such\s+file\s+or\s+directory|failed\s+to\s+open\s+stream).{0,80}(?:/var/|/usr/|/home/|/etc/|[a-z]:\\)", "server path disclosure"),
]


def analyze_response_body(body: str, location: str) -> List[Finding]:
    """One finding per rule id per body, using the first matching signature."""
    if not body:
        return []
    findings: List[Finding] = []
    reported = set()
    for rule in EXCEPTION_RULES:
        if rule.rule_id in reported:
            continue
        match = rule.search(body)
        if not match:
            continue
        reported.add(rule.rule_id)
        findings.append(
            create_finding(
                rule.rule_id,
                location,
                match.group(0)[:EVIDENCE_LIMIT],
                description=f"Response contains a {rule.label}",
            )
        )
    return findings


def analyze_pages(pages: List[PageSnapshot]) -> List[Finding]:
    findings: List[Finding] = []
    for page in pages:
        findings.extend(analyze_response_body(page.html, page.url))
    return findings
