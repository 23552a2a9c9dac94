"""Per-scan HTTP access with a shared per-host rate gate.

One :class:`ScanSession` belongs to exactly one scan. Session credentials are
attached to it and dropped again by :meth:`ScanSession.close`; nothing here is
process-wide.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from http.cookies import CookieError, SimpleCookie
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import requests

from .errors import ScanCancelled

USER_AGENT = "riskscan/1.0 (+non-destructive security scanner)"
DEFAULT_TIMEOUT_MS = 10000

logger = logging.getLogger("riskscan.transport")
logger.addHandler(logging.NullHandler())


@dataclass
class SessionCredentials:
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: Dict[str, str] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return bool(self.headers or self.cookies)

    def __repr__(self) -> str:
        return f"SessionCredentials(headers={sorted(self.headers)}, cookies={sorted(self.cookies)})"


class RateGate:
    """Enforces a minimum interval between requests to the same host."""

    def __init__(self, interval_ms: int, *, clock=time.monotonic, sleep=time.sleep) -> None:
        self.interval = max(interval_ms, 0) / 1000.0
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_slot: Dict[str, float] = {}

    def wait(self, url: str) -> float:
        host = (urlparse(url).netloc or "").lower()
        with self._lock:
            now = self._clock()
            slot = max(now, self._next_slot.get(host, now))
            self._next_slot[host] = slot + self.interval
        delay = slot - now
        if delay > 0:
            self._sleep(delay)
        return delay


@dataclass
class TransportStats:
    total_requests: int = 0
    failed_requests: int = 0
    total_bytes: int = 0
    total_elapsed: float = 0.0

    @property
    def average_response_time_ms(self) -> float:
        succeeded = self.total_requests - self.failed_requests
        if succeeded <= 0:
            return 0.0
        return round(self.total_elapsed / succeeded * 1000.0, 2)


class ScanSession:
    def __init__(
        self,
        credentials: Optional[SessionCredentials] = None,
        *,
        rate_limit_ms: int = 1000,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        cancel_event: Optional[threading.Event] = None,
        gate: Optional[RateGate] = None,
    ) -> None:
        self.session = requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT, "Accept": "*/*"})
        self.timeout = timeout_ms / 1000.0
        self.gate = gate or RateGate(rate_limit_ms)
        self.cancel_event = cancel_event
        self.stats = TransportStats()
        self._stats_lock = threading.Lock()
        self._closed = False
        if credentials:
            self.apply_credentials(credentials)

    def __enter__(self) -> "ScanSession":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def cancelled(self) -> bool:
        return bool(self.cancel_event and self.cancel_event.is_set())

    def apply_credentials(self, credentials: SessionCredentials) -> None:
        self.session.headers.update(credentials.headers)
        for name, value in credentials.cookies.items():
            self.session.cookies.set(name, value)

    def request(self, method: str, url: str, **kwargs: Any) -> Optional[requests.Response]:
        """Send one gated request; network failures are logged and return ``None``.

        Raises :class:`ScanCancelled` when the scan was cancelled before sending.
        """
        if self._closed:
            raise RuntimeError("ScanSession is closed")
        if self.cancelled:
            raise ScanCancelled(f"Cancelled before {method.upper()} {url}")
        self.gate.wait(url)
        if self.cancelled:
            raise ScanCancelled(f"Cancelled before {method.upper()} {url}")

        kwargs.setdefault("timeout", self.timeout)
        kwargs.setdefault("allow_redirects", True)
        started = time.monotonic()
        try:
            resp = self.session.request(method, url, **kwargs)
        except requests.RequestException as exc:
            if logger.isEnabledFor(logging.DEBUG):
                logger.exception("Request %s %s failed", method.upper(), url)
            else:
                logger.warning("Request %s %s failed: %s", method.upper(), url, exc)
            with self._stats_lock:
                self.stats.total_requests += 1
                self.stats.failed_requests += 1
            return None

        elapsed = time.monotonic() - started
        with self._stats_lock:
            self.stats.total_requests += 1
            self.stats.total_bytes += len(resp.content or b"")
            self.stats.total_elapsed += elapsed
        return resp

    def get(self, url: str, **kwargs: Any) -> Optional[requests.Response]:
        return self.request("GET", url, **kwargs)

    def close(self) -> None:
        if self._closed:
            return
        self.session.cookies.clear()
        self.session.headers.clear()
        self.session.close()
        self._closed = True


def response_headers(resp: requests.Response) -> Dict[str, str]:
    return {k: v for k, v in resp.headers.items()}


def is_html_response(resp: requests.Response) -> bool:
    content_type = resp.headers.get("Content-Type", "").lower()
    return "html" in content_type or not content_type


def _raw_set_cookie_headers(resp: requests.Response) -> List[str]:
    header_values: List[str] = []
    raw = getattr(resp, "raw", None)
    if raw is not None and hasattr(raw, "headers"):
        getter = getattr(raw.headers, "getlist", None) or getattr(raw.headers, "get_all", None)
        if getter:
            header_values.extend(getter("Set-Cookie") or [])
    if not header_values:
        header = resp.headers.get("Set-Cookie")
        if header:
            header_values.append(header)
    return header_values


def parse_set_cookie(header: str) -> List[Dict[str, Any]]:
    cookie = SimpleCookie()
    try:
        cookie.load(header)
    except CookieError:
        logger.debug("Could not parse Set-Cookie header for %s", header.split("=", 1)[0])
        return []
    parsed: List[Dict[str, Any]] = []
    for morsel in cookie.values():
        samesite = morsel.get("samesite") or None
        parsed.append(
            {
                "name": morsel.key,
                "value": morsel.value,
                "secure": bool(morsel["secure"]),
                "httponly": bool(morsel["httponly"]),
                "samesite": samesite,
                "expires": morsel["expires"] or None,
                "max_age": morsel["max-age"] or None,
            }
        )
    return parsed


def extract_cookies(resp: requests.Response) -> List[Dict[str, Any]]:
    cookies: List[Dict[str, Any]] = []
    for header in _raw_set_cookie_headers(resp):
        cookies.extend(parse_set_cookie(header))
    return cookies


def is_session_cookie_name(name: str) -> bool:
    lowered = name.lower()
    return any(marker in lowered for marker in ("session", "auth", "token"))
