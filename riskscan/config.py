"""Validated crawler and authentication configuration.

Defaults can be tuned through ``RISKSCAN_*`` environment variables; values
outside the allowed bounds are clamped. Credentials are only ever accepted
through :class:`AuthConfig`, never from the environment.
"""

from __future__ import annotations

import logging
import os
from typing import Any, List, Mapping, Optional, Tuple

from pydantic import BaseModel, Field, HttpUrl, SecretStr, TypeAdapter, ValidationError, field_validator, model_validator

from .errors import ConfigurationError
from .urltools import is_http_url, resolve

logger = logging.getLogger("riskscan.config")
logger.addHandler(logging.NullHandler())

MIN_DEPTH, MAX_DEPTH, DEFAULT_DEPTH = 1, 5, 2
MIN_PAGES, MAX_PAGES, DEFAULT_PAGES = 1, 200, 50
MIN_RATE_LIMIT_MS, MAX_RATE_LIMIT_MS, DEFAULT_RATE_LIMIT_MS = 100, 5000, 1000
AGGRESSIVE_RATE_LIMIT_MS = 500
MIN_TIMEOUT_MS, MAX_TIMEOUT_MS, DEFAULT_TIMEOUT_MS = 5000, 30000, 10000
DEFAULT_WORKERS, MAX_WORKERS = 4, 8

_HTTP_URL = TypeAdapter(HttpUrl)


def _read_limit_from_env(var_name: str, default: int, minimum: int, maximum: Optional[int] = None) -> int:
    value = os.getenv(var_name)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", var_name, value)
        return default
    parsed = max(minimum, parsed)
    if maximum is not None:
        parsed = min(maximum, parsed)
    return parsed


def _is_well_formed_http_url(value: str) -> bool:
    if not is_http_url(value):
        return False
    try:
        _HTTP_URL.validate_python(value)
    except ValidationError:
        return False
    return True


def worker_count() -> int:
    return _read_limit_from_env("RISKSCAN_WORKERS", DEFAULT_WORKERS, 1, MAX_WORKERS)


def disabled_testers() -> List[str]:
    raw = os.getenv("RISKSCAN_DISABLE_TESTERS")
    if not raw:
        return []
    return [item.strip().lower() for item in raw.split(",") if item.strip()]


class CrawlerOptions(BaseModel):
    max_depth: int = Field(
        default_factory=lambda: _read_limit_from_env("RISKSCAN_MAX_DEPTH", DEFAULT_DEPTH, MIN_DEPTH, MAX_DEPTH),
        ge=MIN_DEPTH,
        le=MAX_DEPTH,
    )
    max_pages: int = Field(
        default_factory=lambda: _read_limit_from_env("RISKSCAN_MAX_PAGES", DEFAULT_PAGES, MIN_PAGES, MAX_PAGES),
        ge=MIN_PAGES,
        le=MAX_PAGES,
    )
    rate_limit_ms: int = Field(
        default_factory=lambda: _read_limit_from_env(
            "RISKSCAN_RATE_LIMIT_MS", DEFAULT_RATE_LIMIT_MS, MIN_RATE_LIMIT_MS, MAX_RATE_LIMIT_MS
        ),
        ge=MIN_RATE_LIMIT_MS,
        le=MAX_RATE_LIMIT_MS,
    )
    timeout_ms: int = Field(
        default_factory=lambda: _read_limit_from_env(
            "RISKSCAN_TIMEOUT_MS", DEFAULT_TIMEOUT_MS, MIN_TIMEOUT_MS, MAX_TIMEOUT_MS
        ),
        ge=MIN_TIMEOUT_MS,
        le=MAX_TIMEOUT_MS,
    )
    respect_robots: bool = True
    allow_external: bool = False
    robots_override_consent: bool = False

    @model_validator(mode="after")
    def _robots_override_needs_consent(self) -> "CrawlerOptions":
        if not self.respect_robots and not self.robots_override_consent:
            raise ValueError("Ignoring robots.txt requires explicit consent (robots_override_consent=true)")
        return self


class Credentials(BaseModel):
    username: str
    password: SecretStr

    @field_validator("username")
    @classmethod
    def _username_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("Username is required")
        return value

    @field_validator("password")
    @classmethod
    def _password_not_blank(cls, value: SecretStr) -> SecretStr:
        if not value.get_secret_value().strip():
            raise ValueError("Password is required")
        return value


class AuthConfig(BaseModel):
    login_url: str
    username_selector: str
    password_selector: str
    submit_selector: str
    credentials: Credentials
    protected_pages: List[str] = Field(default_factory=list)
    success_selector: Optional[str] = None
    success_url: Optional[str] = None

    @field_validator("login_url")
    @classmethod
    def _login_url_is_http(cls, value: str) -> str:
        value = (value or "").strip()
        if not _is_well_formed_http_url(value):
            raise ValueError("Login URL must be a valid HTTP(S) URL")
        return value

    @field_validator("protected_pages")
    @classmethod
    def _protected_pages_not_blank(cls, value: List[str]) -> List[str]:
        pages = [page.strip() for page in value]
        if any(not page for page in pages):
            raise ValueError("Protected pages must not be blank")
        return pages

    @model_validator(mode="after")
    def _protected_pages_resolve(self) -> "AuthConfig":
        for page in self.protected_pages:
            if not _is_well_formed_http_url(resolve(self.login_url, page) or ""):
                raise ValueError(f"Protected page {page!r} is not a valid HTTP(S) URL or path")
        return self

    @field_validator("username_selector", "password_selector", "submit_selector")
    @classmethod
    def _selector_not_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("Selector is required")
        return value.strip()


def _format_errors(exc: ValidationError) -> List[str]:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        message = error.get("msg", "invalid value")
        messages.append(f"{location}: {message}" if location else message)
    return messages


def validate_crawler_options(raw: Optional[Mapping[str, Any]] = None) -> Tuple[CrawlerOptions, List[str]]:
    """Return validated options plus non-fatal warnings.

    Raises :class:`ConfigurationError` listing every out-of-range value.
    """
    if isinstance(raw, CrawlerOptions):
        options = raw
    else:
        try:
            options = CrawlerOptions(**dict(raw or {}))
        except ValidationError as exc:
            raise ConfigurationError(_format_errors(exc)) from None

    warnings: List[str] = []
    if options.rate_limit_ms < AGGRESSIVE_RATE_LIMIT_MS:
        warnings.append(
            f"Rate limit of {options.rate_limit_ms}ms is aggressive and may overload the target"
        )
    if not options.respect_robots:
        warnings.append("robots.txt restrictions are disabled with recorded consent")
    if options.allow_external:
        warnings.append("External origins will be crawled")
    return options, warnings


def validate_auth_config(raw: Any) -> Tuple[Optional[AuthConfig], List[str]]:
    if isinstance(raw, AuthConfig):
        return raw, []
    if not isinstance(raw, Mapping):
        return None, ["Authentication config must be a mapping"]
    try:
        return AuthConfig(**dict(raw)), []
    except ValidationError as exc:
        return None, _format_errors(exc)
