from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Union
from urllib.parse import parse_qsl, urlencode, urlparse

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from riskscan.transport import RateGate, ScanSession


class FakeHeaders:
    def __init__(self, set_cookies: Sequence[str]) -> None:
        self._set_cookies = list(set_cookies)

    def getlist(self, name: str) -> List[str]:
        if name.lower() == "set-cookie":
            return list(self._set_cookies)
        return []


class FakeRaw:
    def __init__(self, set_cookies: Sequence[str]) -> None:
        self.headers = FakeHeaders(set_cookies)


def make_response(
    url: str,
    status: int = 200,
    text: str = "",
    headers: Optional[Dict[str, str]] = None,
    set_cookies: Sequence[str] = (),
    history: Sequence[requests.Response] = (),
) -> requests.Response:
    resp = requests.Response()
    resp.status_code = status
    resp._content = text.encode("utf-8")
    resp.encoding = "utf-8"
    resp.url = url
    merged = {"Content-Type": "text/html; charset=utf-8"}
    merged.update(headers or {})
    resp.headers = CaseInsensitiveDict(merged)
    if set_cookies:
        resp.headers["Set-Cookie"] = set_cookies[0]
    resp.raw = FakeRaw(set_cookies)
    resp.history = list(history)
    return resp


@dataclass
class FakeRequest:
    method: str
    url: str
    params: Dict[str, str] = field(default_factory=dict)
    data: Dict[str, str] = field(default_factory=dict)
    cookies: Dict[str, str] = field(default_factory=dict)

    @property
    def query(self) -> Dict[str, str]:
        return dict(parse_qsl(urlparse(self.url).query, keep_blank_values=True))

    @property
    def values(self) -> Dict[str, str]:
        merged = dict(self.query)
        merged.update(self.params)
        merged.update(self.data)
        return merged


Route = Union[requests.Response, Callable[[FakeRequest], requests.Response]]


class FakeSite:
    """Routes requests made through any ``requests.Session`` to canned handlers.

    Routes are matched on the full URL first, then on the URL without its
    query string. Unknown URLs answer 404.
    """

    def __init__(self) -> None:
        self.routes: Dict[str, Route] = {}
        self.requests: List[FakeRequest] = []

    def add(
        self,
        url: str,
        text: str = "",
        status: int = 200,
        headers: Optional[Dict[str, str]] = None,
        set_cookies: Sequence[str] = (),
    ) -> None:
        self.routes[url] = lambda req: make_response(req.url, status, text, headers, set_cookies)

    def handle(self, url: str, handler: Callable[[FakeRequest], requests.Response]) -> None:
        self.routes[url] = handler

    def urls_requested(self) -> List[str]:
        return [req.url for req in self.requests]

    def __call__(self, session: requests.Session, method: str, url: str, **kwargs: Any) -> requests.Response:
        params = dict(kwargs.get("params") or {})
        if params:
            url = url + ("&" if "?" in url else "?") + urlencode(params)
        cookies = dict(session.cookies.get_dict())
        cookies.update(kwargs.get("cookies") or {})
        req = FakeRequest(
            method=method.upper(),
            url=url,
            params=params,
            data=dict(kwargs.get("data") or {}),
            cookies=cookies,
        )
        self.requests.append(req)
        route = self.routes.get(url) or self.routes.get(url.split("?", 1)[0])
        if route is None:
            return make_response(url, 404, "not found", {"Content-Type": "text/plain"})
        resp = route(req) if callable(route) else route
        for header in resp.raw.headers.getlist("Set-Cookie"):
            name, _, rest = header.partition("=")
            session.cookies.set(name.strip(), rest.split(";", 1)[0].strip())
        return resp


@pytest.fixture
def no_delay(monkeypatch):
    monkeypatch.setattr(RateGate, "wait", lambda self, url: 0.0)


@pytest.fixture
def site(monkeypatch, no_delay):
    fake = FakeSite()

    def _request(self, method, url, **kwargs):
        return fake(self, method, url, **kwargs)

    monkeypatch.setattr(requests.Session, "request", _request)
    return fake


@pytest.fixture
def scan_session(site):
    with ScanSession(rate_limit_ms=0, timeout_ms=5000) as session:
        yield session
