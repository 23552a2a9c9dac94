"""URL helpers used for frontier deduplication and probe construction."""

from __future__ import annotations

from typing import List, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

HTTP_SCHEMES = {"http", "https"}
DEFAULT_PORTS = {"http": 80, "https": 443}


def _port(parsed) -> Optional[int]:
    """Explicit port, ``-1`` when the netloc carries an invalid one."""
    try:
        return parsed.port
    except ValueError:
        return -1


def is_http_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if _port(parsed) == -1:
        return False
    return parsed.scheme.lower() in HTTP_SCHEMES and bool(parsed.netloc)


def normalize_url(url: str) -> str:
    """Canonical form: no fragment, sorted query, no trailing slash.

    Applying it to its own output returns the same string.
    """
    parsed = urlparse(url.strip())
    scheme = parsed.scheme.lower()
    netloc = parsed.netloc.lower()
    port = _port(parsed)
    if port and DEFAULT_PORTS.get(scheme) == port:
        netloc = netloc.rsplit(":", 1)[0]
    path = parsed.path or "/"
    if path != "/":
        path = path.rstrip("/") or "/"
    pairs = sorted(parse_qsl(parsed.query, keep_blank_values=True))
    query = urlencode(pairs)
    return urlunparse((scheme, netloc, path, parsed.params, query, ""))


def resolve(base_url: str, candidate: str) -> Optional[str]:
    candidate = (candidate or "").strip()
    if not candidate or candidate.startswith("#"):
        return None
    lowered = candidate.lower()
    if lowered.startswith(("mailto:", "javascript:", "tel:", "data:", "blob:")):
        return None
    try:
        absolute = urljoin(base_url, candidate)
    except ValueError:
        return None
    if not is_http_url(absolute):
        return None
    return absolute


def origin_of(url: str) -> Optional[Tuple[str, str]]:
    """(scheme, host:port), or ``None`` for a URL without a usable origin."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    port = _port(parsed)
    if port == -1:
        return None
    scheme = parsed.scheme.lower()
    host = (parsed.hostname or "").lower()
    return scheme, f"{host}:{port or DEFAULT_PORTS.get(scheme)}"


def origin_root(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


def same_origin(first: str, second: str) -> bool:
    origin = origin_of(first)
    return origin is not None and origin == origin_of(second)


def query_param_names(url: str) -> List[str]:
    names: List[str] = []
    for key, _ in parse_qsl(urlparse(url).query, keep_blank_values=True):
        if key not in names:
            names.append(key)
    return names


def has_query(url: str) -> bool:
    return bool(urlparse(url).query)


def replace_query_param(url: str, key: str, value: str) -> str:
    parsed = urlparse(url)
    query = parse_qsl(parsed.query, keep_blank_values=True)
    replaced = False
    new_pairs = []
    for existing_key, existing_value in query:
        if not replaced and existing_key == key:
            new_pairs.append((existing_key, value))
            replaced = True
        else:
            new_pairs.append((existing_key, existing_value))
    if not replaced:
        new_pairs.append((key, value))
    return urlunparse(
        (
            parsed.scheme,
            parsed.netloc,
            parsed.path or "/",
            parsed.params,
            urlencode(new_pairs),
            parsed.fragment,
        )
    )
