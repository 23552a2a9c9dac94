"""Reflected XSS probing with inert marker payloads.

A probe counts only when its marker comes back inside a context where the
browser would treat it as markup or code. Plain-text and entity-escaped
reflections are ignored.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

from bs4 import BeautifulSoup

from .models import FormInfo, Finding
from .probes import (
    MAX_ENDPOINTS,
    MAX_FORMS,
    ProbeClient,
    TesterResult,
    endpoint_probes,
    injectable_fields,
    limit,
    snippet,
    submit_form,
)
from .progress import ScanProgress
from .rules import create_finding
from .transport import ScanSession
from .urltools import replace_query_param

logger = logging.getLogger("riskscan.xss_tester")
logger.addHandler(logging.NullHandler())

XSS_DELAY_MS = 500
MARKER = "rsxss7q3z"
FALLBACK_PARAM = "q"

CONTEXT_SCRIPT = "script block"
CONTEXT_EVENT_HANDLER = "event handler attribute"
CONTEXT_JS_URI = "javascript: URI"
CONTEXT_TAG = "injected tag attribute"
CONTEXT_HTML = "unescaped HTML"


@dataclass(frozen=True)
class XssPayload:
    id: str
    template: str
    # literal markup that must come back unescaped for the payload to count
    markup: Optional[str] = None

    def render(self) -> str:
        return self.template.replace("{m}", MARKER)

    def rendered_markup(self) -> Optional[str]:
        return self.markup.replace("{m}", MARKER) if self.markup else None


XSS_PAYLOADS: List[XssPayload] = [
    XssPayload("reflected-text", "{m}"),
    XssPayload("html-element", "<b>{m}</b>", markup="<b>{m}"),
    XssPayload("attribute-double-quote", '" data-{m}="1', markup='data-{m}="1'),
    XssPayload("event-handler", '" onfocus="{m}" autofocus="', markup='onfocus="{m}"'),
    XssPayload("script-breakout", "</script><script>{m}</script>", markup="<script>{m}"),
    XssPayload("script-string", "';{m}//"),
    XssPayload("javascript-uri", "javascript:{m}"),
    XssPayload("svg-onload", "<svg onload={m}>", markup="<svg onload={m}"),
    XssPayload("img-onerror", "<img src=x onerror={m}>", markup="onerror={m}"),
    XssPayload("template-literal", "${{m}}`", markup="${{m}}"),
    XssPayload("json-context", '"}<i>{m}</i>{"', markup="<i>{m}"),
    XssPayload("dom-hash", "#<u>{m}</u>", markup="<u>{m}"),
]

SCRIPT_BLOCK = re.compile(r"<script\b[^>]*>(.*?)</script\s*>", re.IGNORECASE | re.DOTALL)
INJECTED_ATTRIBUTE = f"data-{MARKER}"
URI_ATTRIBUTES = ("href", "src", "action", "formaction")


def _attribute_context(body: str) -> Optional[str]:
    """Context of a marker that landed in a real attribute of a parsed tag.

    Entity-escaped text inside a quoted value stays part of that value, so
    only attributes the browser would actually create are considered.
    """
    soup = BeautifulSoup(body, "html.parser")
    for tag in soup.find_all(True):
        for name, value in tag.attrs.items():
            name = name.lower()
            text = " ".join(value) if isinstance(value, list) else str(value or "")
            if name == INJECTED_ATTRIBUTE:
                return CONTEXT_TAG
            if MARKER not in text:
                continue
            if name.startswith("on"):
                return CONTEXT_EVENT_HANDLER
            if name in URI_ATTRIBUTES and text.strip().lower().startswith("javascript:"):
                return CONTEXT_JS_URI
    return None


def reflection_context(body: str, payload: XssPayload) -> Optional[str]:
    """Name of the dangerous context the marker landed in, if any."""
    if MARKER not in body:
        return None
    for block in SCRIPT_BLOCK.findall(body):
        if MARKER in block:
            return CONTEXT_SCRIPT
    context = _attribute_context(body)
    if context:
        return context
    markup = payload.rendered_markup()
    if markup and "<" in markup and markup in body:
        return CONTEXT_HTML
    return None


def _finding(location: str, payload: XssPayload, context: str, body: str) -> Finding:
    return create_finding(
        "WSS-XSS-001",
        location,
        snippet(body, MARKER),
        description=f"Input is reflected unescaped in a {context} ({payload.id} payload)",
    )


def _probe_parameter(send, location: str) -> Optional[Finding]:
    baseline = send(MARKER)
    if baseline is None or MARKER not in (baseline.text or ""):
        return None
    for payload in XSS_PAYLOADS:
        resp = baseline if payload.id == "reflected-text" else send(payload.render())
        if resp is None:
            continue
        body = resp.text or ""
        context = reflection_context(body, payload)
        if context:
            return _finding(location, payload, context, body)
    return None


def probe_xss(
    target_url: str,
    endpoints: Sequence[str],
    forms: Sequence[FormInfo],
    session: ScanSession,
    *,
    progress: Optional[ScanProgress] = None,
    delay_ms: int = XSS_DELAY_MS,
) -> TesterResult:
    client = ProbeClient(session, delay_ms)
    result = TesterResult()
    targets = limit(endpoints, MAX_ENDPOINTS) or [replace_query_param(target_url, FALLBACK_PARAM, "")]

    for endpoint in targets:
        for name, _ in endpoint_probes(endpoint, ""):
            location = f"{endpoint} (parameter: {name})"

            def send(value: str, _endpoint=endpoint, _name=name):
                return client.get(replace_query_param(_endpoint, _name, value))

            finding = _probe_parameter(send, location)
            if finding:
                result.vulnerabilities.append(finding)
                if progress:
                    progress.warning(f"Reflected XSS at {location}", phase="dynamic")

    for form in limit(forms, MAX_FORMS):
        for field_name in injectable_fields(form):
            location = f"{form.action} (form field: {field_name}, method: {form.method})"

            def send(value: str, _form=form, _field=field_name):
                return submit_form(client, _form, _field, value)

            finding = _probe_parameter(send, location)
            if finding:
                result.vulnerabilities.append(finding)
                if progress:
                    progress.warning(f"Reflected XSS at {location}", phase="dynamic")

    result.requests_sent = client.requests_sent
    return result
