"""Shared plumbing for the dynamic testers: paced requests and form submission."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import requests

from .models import Finding, FormInfo
from .transport import RateGate, ScanSession
from .urltools import query_param_names, replace_query_param

logger = logging.getLogger("riskscan.probes")
logger.addHandler(logging.NullHandler())

MAX_ENDPOINTS = 10
MAX_FORMS = 5
DEFAULT_FIELD_VALUE = "riskscan"


@dataclass
class TesterResult:
    vulnerabilities: List[Finding] = field(default_factory=list)
    requests_sent: int = 0
    skipped: List[str] = field(default_factory=list)


class ProbeClient:
    """Adds a tester-specific pause on top of the scan-wide rate gate."""

    def __init__(self, session: ScanSession, delay_ms: int) -> None:
        self.session = session
        self.pacer = RateGate(delay_ms)
        self.requests_sent = 0

    def request(self, method: str, url: str, **kwargs: Any) -> Optional[requests.Response]:
        self.pacer.wait(url)
        self.requests_sent += 1
        return self.session.request(method, url, **kwargs)

    def get(self, url: str, **kwargs: Any) -> Optional[requests.Response]:
        return self.request("GET", url, **kwargs)


def form_payload(form: FormInfo, target_field: Optional[str] = None, value: str = "") -> Dict[str, str]:
    data: Dict[str, str] = {}
    for item in form.fields:
        if not item.name:
            continue
        if item.name == target_field:
            data[item.name] = value
        elif item.value:
            data[item.name] = item.value
        elif item.input_type == "email":
            data[item.name] = "scanner@example.com"
        elif item.input_type == "number":
            data[item.name] = "1"
        else:
            data[item.name] = DEFAULT_FIELD_VALUE
    return data


def submit_form(client: ProbeClient, form: FormInfo, target_field: Optional[str] = None, value: str = "") -> Optional[requests.Response]:
    data = form_payload(form, target_field, value)
    method = form.method.upper()
    if method == "GET":
        return client.request("GET", form.action, params=data)
    return client.request(method, form.action, data=data)


def injectable_fields(form: FormInfo) -> List[str]:
    return [
        item.name
        for item in form.fields
        if item.name and item.input_type not in ("hidden", "checkbox", "radio", "file", "password")
    ]


def endpoint_probes(endpoint: str, payload: str) -> List[tuple]:
    """(parameter, probe URL) pairs that replace one query parameter at a time."""
    return [(name, replace_query_param(endpoint, name, payload)) for name in query_param_names(endpoint)]


def limit(items: Sequence, count: int) -> List:
    return list(items)[:count]


def snippet(body: str, needle: str, radius: int = 60) -> str:
    index = body.find(needle)
    if index < 0:
        return ""
    start = max(index - radius, 0)
    end = min(index + len(needle) + radius, len(body))
    return body[start:end].replace("\n", " ").strip()
