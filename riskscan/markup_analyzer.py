"""Form checks over raw HTML.

Header and CSP weaknesses are evaluated by the header analyzer from the
response, not from markup, so the same issue is never counted twice.
"""

from __future__ import annotations

import logging
from typing import List, Optional
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from .models import Finding
from .rules import create_finding
from .urltools import resolve, same_origin

logger = logging.getLogger("riskscan.markup_analyzer")
logger.addHandler(logging.NullHandler())

FORM_EVIDENCE_LIMIT = 200


def _form_evidence(form) -> str:
    return str(form)[:FORM_EVIDENCE_LIMIT]


def analyze_markup(html: str, page_url: str) -> List[Finding]:
    if not html:
        return []
    soup = BeautifulSoup(html, "html.parser")
    findings: List[Finding] = []
    for index, form in enumerate(soup.find_all("form"), start=1):
        location = f"{page_url} - Form #{index}"
        action = (form.get("action") or "").strip()
        if not action:
            findings.append(
                create_finding(
                    "WSS-FORM-001",
                    location,
                    _form_evidence(form),
                    description="Form has no action attribute and submits to the current URL implicitly",
                )
            )
            continue
        if action.lower().startswith("javascript:"):
            continue
        absolute = resolve(page_url, action)
        if absolute is None:
            logger.debug("Skipping form with unusable action %r on %s", action, page_url)
            continue
        scheme = urlparse(absolute).scheme.lower()
        if scheme == "http":
            findings.append(
                create_finding(
                    "WSS-FORM-002",
                    location,
                    _form_evidence(form),
                    description=f"Form submits data over unencrypted HTTP to {absolute}",
                )
            )
            continue
        if scheme == "https" and not same_origin(absolute, page_url):
            findings.append(
                create_finding(
                    "WSS-FORM-001",
                    location,
                    _form_evidence(form),
                    description=f"Form submits to an external origin: {absolute}",
                )
            )
    return findings


def inline_scripts_without_nonce(html: str) -> int:
    """Advisory count of inline ``<script>`` blocks that carry no nonce."""
    if not html:
        return 0
    soup = BeautifulSoup(html, "html.parser")
    count = 0
    for script in soup.find_all("script"):
        if script.get("src") or script.get("nonce"):
            continue
        script_type: Optional[str] = (script.get("type") or "").lower()
        if script_type and "javascript" not in script_type and script_type != "module":
            continue
        if (script.get_text() or "").strip():
            count += 1
    return count
