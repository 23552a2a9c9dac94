"""Path traversal probing for file-like parameters."""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Sequence
from urllib.parse import unquote

from .models import FormInfo, Finding
from .probes import MAX_ENDPOINTS, ProbeClient, TesterResult, limit, submit_form
from .progress import ScanProgress
from .rules import PatternRule, create_finding, pattern_rule
from .transport import ScanSession
from .urltools import query_param_names, replace_query_param

logger = logging.getLogger("riskscan.traversal_tester")
logger.addHandler(logging.NullHandler())

TRAVERSAL_DELAY_MS = 300
MAX_TRAVERSAL_FORMS = 3

TRAVERSAL_PAYLOADS = [
    "../../../etc/passwd",
    "..\\..\\..\\windows\\win.ini",
    "%2e%2e%2f%2e%2e%2f%2e%2e%2fetc%2fpasswd",
    "%252e%252e%252f%252e%252e%252f%252e%252e%252fetc%252fpasswd",
    "../../../etc/passwd%00.png",
    "/etc/passwd",
    "C:\\windows\\win.ini",
    "../../../proc/self/environ",
]

RAW_MARKER = "RISKSCANRAWPAYLOAD"

FILE_PARAM_HINTS = ("file", "path", "doc", "download", "image", "img", "page", "template", "load", "src", "dir", "folder", "include")

FILE_SIGNATURES: List[PatternRule] = [
    pattern_rule("WSS-PATH-001", r"root:[^:\n]*:0:0:", "/etc/passwd", flags=0),
    pattern_rule("WSS-PATH-001", r"^\w[\w-]*:x:\d+:\d+:", "passwd-style account line", flags=re.MULTILINE),
    pattern_rule("WSS-PATH-001", r"\[fonts\]", "win.ini"),
    pattern_rule("WSS-PATH-001", r"\[extensions\]", "win.ini"),
    pattern_rule("WSS-PATH-001", r"; for 16-bit app support", "win.ini"),
    pattern_rule("WSS-PATH-001", r"\[boot loader\]", "boot.ini"),
    pattern_rule("WSS-PATH-001", r"\[mci extensions\]", "system.ini"),
    pattern_rule("WSS-PATH-001", r"(?:^|\x00)(?:PATH|HOME|HOSTNAME)=[^\x00\n]*\x00", "/proc/self/environ", flags=re.MULTILINE),
]


def is_file_parameter(name: str) -> bool:
    lowered = name.lower()
    return any(hint in lowered for hint in FILE_PARAM_HINTS)


def match_file_signature(body: str) -> Optional[PatternRule]:
    for signature in FILE_SIGNATURES:
        if signature.search(body):
            return signature
    return None


def probe_url(endpoint: str, name: str, payload: str) -> str:
    """Build the probe URL; percent-encoded payloads are inserted verbatim."""
    if "%" in payload:
        return replace_query_param(endpoint, name, RAW_MARKER).replace(RAW_MARKER, payload)
    return replace_query_param(endpoint, name, payload)


def prioritize_endpoints(endpoints: Sequence[str]) -> List[str]:
    """Endpoints with file-like parameters first, original order otherwise kept."""
    flagged = [url for url in endpoints if any(is_file_parameter(name) for name in query_param_names(url))]
    rest = [url for url in endpoints if url not in flagged]
    return flagged + rest


def _parameters_to_probe(endpoint: str) -> List[str]:
    names = query_param_names(endpoint)
    suggestive = [name for name in names if is_file_parameter(name)]
    return suggestive or names[:1]


def _probe(send, location: str) -> Optional[Finding]:
    baseline = send("riskscan.txt")
    if baseline is not None and match_file_signature(baseline.text or ""):
        return None
    for payload in TRAVERSAL_PAYLOADS:
        resp = send(payload)
        if resp is None:
            continue
        signature = match_file_signature(resp.text or "")
        if signature:
            match = signature.search(resp.text or "")
            return create_finding(
                "WSS-PATH-001",
                location,
                match.group(0).replace("\x00", " ")[:200] if match else signature.label,
                description=f"Contents of {signature.label} returned for payload {payload!r}",
            )
    return None


def probe_path_traversal(
    target_url: str,
    endpoints: Sequence[str],
    forms: Sequence[FormInfo],
    session: ScanSession,
    *,
    progress: Optional[ScanProgress] = None,
    delay_ms: int = TRAVERSAL_DELAY_MS,
) -> TesterResult:
    client = ProbeClient(session, delay_ms)
    result = TesterResult()

    for endpoint in limit(prioritize_endpoints(endpoints), MAX_ENDPOINTS):
        for name in _parameters_to_probe(endpoint):
            location = f"{endpoint} (parameter: {name})"

            def send(value: str, _endpoint=endpoint, _name=name):
                return client.get(probe_url(_endpoint, _name, value))

            finding = _probe(send, location)
            if finding:
                result.vulnerabilities.append(finding)
                if progress:
                    progress.warning(f"Path traversal at {location}", phase="dynamic")

    file_forms = [
        form for form in forms if any(is_file_parameter(name) for name in form.field_names)
    ]
    for form in limit(file_forms, MAX_TRAVERSAL_FORMS):
        for field_name in [name for name in form.field_names if is_file_parameter(name)]:
            location = f"{form.action} (form field: {field_name}, method: {form.method})"

            def send(value: str, _form=form, _field=field_name):
                return submit_form(client, _form, _field, unquote(value))

            finding = _probe(send, location)
            if finding:
                result.vulnerabilities.append(finding)

    result.requests_sent = client.requests_sent
    return result
