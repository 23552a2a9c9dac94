import pytest

from riskscan.config import (
    DEFAULT_DEPTH,
    CrawlerOptions,
    disabled_testers,
    validate_auth_config,
    validate_crawler_options,
    worker_count,
)
from riskscan.errors import ConfigurationError


def _auth(**overrides):
    raw = {
        "login_url": "https://example.com/login",
        "username_selector": "#user",
        "password_selector": "#pass",
        "submit_selector": "button[type=submit]",
        "credentials": {"username": "alice", "password": "s3cret"},
        "protected_pages": ["/account"],
    }
    raw.update(overrides)
    return raw


def test_defaults_are_in_range(monkeypatch):
    monkeypatch.delenv("RISKSCAN_MAX_DEPTH", raising=False)
    options, warnings = validate_crawler_options({})
    assert options.max_depth == DEFAULT_DEPTH
    assert options.respect_robots is True
    assert warnings == []


def test_out_of_range_values_are_all_reported():
    with pytest.raises(ConfigurationError) as excinfo:
        validate_crawler_options({"max_depth": 9, "max_pages": 0, "rate_limit_ms": 50, "timeout_ms": 100})
    assert len(excinfo.value.errors) == 4
    assert any("max_depth" in error for error in excinfo.value.errors)


def test_ignoring_robots_requires_consent():
    with pytest.raises(ConfigurationError):
        validate_crawler_options({"respect_robots": False})
    options, warnings = validate_crawler_options({"respect_robots": False, "robots_override_consent": True})
    assert options.respect_robots is False
    assert any("robots.txt" in warning for warning in warnings)


def test_aggressive_rate_limit_warns():
    _, warnings = validate_crawler_options({"rate_limit_ms": 200})
    assert any("aggressive" in warning for warning in warnings)


def test_env_defaults_are_clamped(monkeypatch):
    monkeypatch.setenv("RISKSCAN_MAX_PAGES", "5000")
    monkeypatch.setenv("RISKSCAN_MAX_DEPTH", "abc")
    options = CrawlerOptions()
    assert options.max_pages == 200
    assert options.max_depth == DEFAULT_DEPTH


def test_worker_count_and_disabled_testers(monkeypatch):
    monkeypatch.setenv("RISKSCAN_WORKERS", "64")
    monkeypatch.setenv("RISKSCAN_DISABLE_TESTERS", "XSS, sqli ,")
    assert worker_count() == 8
    assert disabled_testers() == ["xss", "sqli"]


def test_valid_auth_config():
    config, errors = validate_auth_config(_auth())
    assert errors == []
    assert config.credentials.password.get_secret_value() == "s3cret"
    assert "s3cret" not in repr(config)


def test_invalid_auth_config_lists_errors_without_raising():
    config, errors = validate_auth_config(
        _auth(login_url="ftp://example.com", username_selector="  ", credentials={"username": "", "password": "x"})
    )
    assert config is None
    assert len(errors) == 3


def test_auth_config_must_be_mapping():
    config, errors = validate_auth_config("nope")
    assert config is None
    assert errors


@pytest.mark.parametrize("login_url", ["http://", "http:///login", "https://example.com:99999/login"])
def test_login_url_without_usable_host_is_rejected(login_url):
    config, errors = validate_auth_config(_auth(login_url=login_url))
    assert config is None
    assert any("login_url" in error for error in errors)


@pytest.mark.parametrize("page", ["   ", "javascript:alert(1)", "http:///account"])
def test_unusable_protected_pages_are_rejected(page):
    config, errors = validate_auth_config(_auth(protected_pages=["/account", page]))
    assert config is None
    assert errors


def test_protected_pages_accept_paths_and_urls():
    config, errors = validate_auth_config(_auth(protected_pages=[" /account ", "https://example.com/orders"]))
    assert errors == []
    assert config.protected_pages == ["/account", "https://example.com/orders"]
