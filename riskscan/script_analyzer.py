"""Line-oriented pattern scan of JavaScript source.

Detection is line based: each non-comment line is matched against
the pattern tables below and every hit becomes one finding. Secret evidence
is redacted before the finding is built; if redaction cannot remove the value
the finding is dropped.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional

from .context_classifier import adjust_confidence, classify
from .models import CodeContext, Finding
from .rules import PatternRule, create_finding, get_rule, pattern_rule

logger = logging.getLogger("riskscan.script_analyzer")
logger.addHandler(logging.NullHandler())

EVIDENCE_LIMIT = 200
REDACTION_MARKER = "'***REDACTED***'"
QUOTED_LITERAL = re.compile(r"""(['"`])(?:(?!\1).)*\1""")
PLACEHOLDER_PATTERN = re.compile(r"example|test|dummy|placeholder|your_", re.IGNORECASE)
COMMENT_PREFIXES = ("//", "*", "/*")

# eval-style sinks; their confidence is adjusted by the code context
EXECUTION_RULES: List[PatternRule] = [
    pattern_rule("WSS-XSS-003", r"\beval\s*\(", "eval()", flags=0),
    pattern_rule("WSS-XSS-003", r"\bnew\s+Function\s*\(|(?<![\w.$])Function\s*\(", "Function constructor", flags=0),
    pattern_rule("WSS-XSS-003", r"\bset(?:Timeout|Interval)\s*\(\s*['\"`]", "setTimeout/setInterval with string argument", flags=0),
]

HTML_SINK_RULES: List[PatternRule] = [
    pattern_rule("WSS-XSS-002", r"\.innerHTML\s*(?:\+)?=(?!=)", "innerHTML assignment", flags=0),
    pattern_rule("WSS-XSS-002", r"\.outerHTML\s*(?:\+)?=(?!=)", "outerHTML assignment", flags=0),
    pattern_rule("WSS-XSS-002", r"\.insertAdjacentHTML\s*\(", "insertAdjacentHTML()", flags=0),
    pattern_rule("WSS-XSS-002", r"\bdocument\.write(?:ln)?\s*\(", "document.write()", flags=0),
    pattern_rule("WSS-XSS-002", r"\bdangerouslySetInnerHTML\b", "React dangerouslySetInnerHTML", flags=0),
    pattern_rule("WSS-XSS-002", r"\bv-html\s*=", "Vue v-html directive", flags=0),
    pattern_rule("WSS-XSS-002", r"\bbypassSecurityTrust(?:Html|Script|Url|ResourceUrl)\s*\(", "Angular sanitizer bypass", flags=0),
]

# Matched against the lowercased line; group "value" is the secret literal.
SECRET_RULES: List[PatternRule] = [
    pattern_rule("WSS-SEC-006", r"(?:private[_-]?key)\w*['\"]?\s*[:=]\s*['\"`](?P<value>-----begin[^'\"`]*)", "private key"),
    pattern_rule(
        "WSS-SEC-006",
        r"(?:aws[_-]?access[_-]?key(?:[_-]?id)?|aws[_-]?secret(?:[_-]?access[_-]?key)?)['\"]?\s*[:=]\s*['\"`](?P<value>[^'\"`]{10,})['\"`]",
        "cloud credential",
    ),
    pattern_rule("WSS-SEC-006", r"(?:db|database)[_-]?(?:password|passwd|pwd|pass)['\"]?\s*[:=]\s*['\"`](?P<value>[^'\"`]{3,})['\"`]", "database password"),
    pattern_rule("WSS-SEC-006", r"(?:password|passwd|pwd)['\"]?\s*[:=]\s*['\"`](?P<value>[^'\"`]{3,})['\"`]", "password"),
    pattern_rule("WSS-SEC-006", r"(?:api[_-]?key|apikey)['\"]?\s*[:=]\s*['\"`](?P<value>[^'\"`]{10,})['\"`]", "API key"),
    pattern_rule("WSS-SEC-006", r"secret[_-]?key['\"]?\s*[:=]\s*['\"`](?P<value>[^'\"`]{10,})['\"`]", "secret key"),
    pattern_rule("WSS-SEC-006", r"(?:access|auth|bearer)[_-]?token['\"]?\s*[:=]\s*['\"`](?P<value>[^'\"`]{10,})['\"`]", "access token"),
]


def _is_comment(line: str) -> bool:
    return line.lstrip().startswith(COMMENT_PREFIXES)


def _evidence(line: str) -> str:
    return line.strip()[:EVIDENCE_LIMIT]


def redact_secret(line: str, secret: str) -> Optional[str]:
    """Replace quoted literals with a marker; ``None`` if the secret survives."""
    redacted = QUOTED_LITERAL.sub(REDACTION_MARKER, line.strip())
    if secret and secret.lower() in redacted.lower():
        return None
    return redacted[:EVIDENCE_LIMIT]


def _execution_finding(rule: PatternRule, line: str, location: str, context: CodeContext) -> Finding:
    base = get_rule(rule.rule_id)
    confidence, note = adjust_confidence(base.confidence, context)
    description = f"Use of {rule.label} can execute attacker-controlled strings as code"
    if note:
        description = f"{description} ({note})"
    return create_finding(
        rule.rule_id,
        location,
        _evidence(line),
        description=description,
        confidence=confidence,
    )


def _secret_finding(line: str, location: str) -> Optional[Finding]:
    lowered = line.lower()
    if PLACEHOLDER_PATTERN.search(lowered):
        return None
    for rule in SECRET_RULES:
        match = rule.search(lowered)
        if not match:
            continue
        evidence = redact_secret(line, match.group("value"))
        if evidence is None:
            logger.warning("Dropping %s finding at %s: value could not be redacted", rule.label, location)
            return None
        return create_finding(
            rule.rule_id,
            location,
            evidence,
            description=f"Possible hardcoded {rule.label} in client-side code",
        )
    return None


def analyze_script(
    source: str,
    locator: str,
    *,
    csp_header: Optional[str] = None,
    context: Optional[CodeContext] = None,
) -> List[Finding]:
    if not source:
        return []
    context = context or classify(source, csp_header=csp_header)
    findings: List[Finding] = []
    for number, line in enumerate(source.splitlines(), start=1):
        if not line.strip() or _is_comment(line):
            continue
        location = f"{locator} - Line {number}"
        for rule in EXECUTION_RULES:
            if rule.search(line):
                findings.append(_execution_finding(rule, line, location, context))
                break
        for rule in HTML_SINK_RULES:
            if rule.search(line):
                findings.append(
                    create_finding(
                        rule.rule_id,
                        location,
                        _evidence(line),
                        description=f"{rule.label} writes HTML into the DOM and enables DOM-based XSS with untrusted data",
                    )
                )
                break
        secret = _secret_finding(line, location)
        if secret is not None:
            findings.append(secret)
    return findings
