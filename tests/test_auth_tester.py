import pytest

from riskscan.auth_tester import (
    AuthResult,
    analyze_session,
    authenticate,
    looks_like_login_page,
    probe_auth_bypass,
    tamper_credentials,
)
from riskscan.config import AuthConfig
from riskscan.transport import SessionCredentials

from conftest import make_response

BASE = "https://example.com"
LOGIN_URL = BASE + "/login"
SESSION_VALUE = "tok3nVal"
LOGIN_PAGE = """
<html><body>
  <form action="/session" method="post">
    <input type="hidden" name="nonce" value="n-123">
    <input id="user" name="username">
    <input id="pass" type="password" name="password">
    <button id="go" type="submit">Sign in</button>
  </form>
</body></html>
"""
CONTENT = "<html><body>" + "<p>Account details and order history</p>" * 5 + "</body></html>"


def _config(**overrides):
    values = {
        "login_url": LOGIN_URL,
        "username_selector": "#user",
        "password_selector": "#pass",
        "submit_selector": "#go",
        "credentials": {"username": "alice", "password": "s3cret"},
        "protected_pages": ["/account"],
        "success_selector": "#welcome",
    }
    values.update(overrides)
    return AuthConfig(**values)


def _redirect_to_login(req):
    return make_response(LOGIN_URL, 200, LOGIN_PAGE)


@pytest.fixture
def login_site(site):
    site.add(LOGIN_URL, LOGIN_PAGE)

    def session_handler(req):
        if req.data.get("username") == "alice" and req.data.get("password") == "s3cret" and req.data.get("nonce") == "n-123":
            return make_response(
                BASE + "/account",
                200,
                "<h1 id='welcome'>Welcome back</h1>",
                set_cookies=[f"sessionid={SESSION_VALUE}; Path=/"],
            )
        return make_response(LOGIN_URL, 200, LOGIN_PAGE)

    def account(req):
        if req.cookies.get("sessionid") == SESSION_VALUE:
            return make_response(req.url, 200, CONTENT)
        return _redirect_to_login(req)

    site.handle(BASE + "/session", session_handler)
    site.handle(BASE + "/account", account)
    return site


def test_authenticate_posts_form_and_captures_cookies(login_site, scan_session):
    result = authenticate(_config(), scan_session)

    assert result.success
    assert result.credentials.cookies == {"sessionid": SESSION_VALUE}
    assert [cookie["name"] for cookie in result.cookies] == ["sessionid"]
    assert "No cookies have the Secure flag set" in result.warnings
    posted = [req for req in login_site.requests if req.method == "POST"]
    assert len(posted) == 1
    assert posted[0].url == BASE + "/session"
    assert SESSION_VALUE not in repr(result.credentials)
    assert "s3cret" not in repr(result)


def test_authenticate_reports_failure(login_site, scan_session):
    result = authenticate(_config(credentials={"username": "alice", "password": "wrong"}), scan_session)
    assert not result.success
    assert "success condition" in result.error


def test_authenticate_with_missing_selectors(login_site, scan_session):
    result = authenticate(_config(username_selector="#nope"), scan_session)
    assert not result.success
    assert "selectors" in result.error


def test_session_analysis_flags_weak_cookie(login_site, scan_session):
    result = authenticate(_config(), scan_session)
    findings = analyze_session(result, LOGIN_URL)
    assert sorted(finding.rule_id for finding in findings) == [
        "WSS-AUTH-001",
        "WSS-AUTH-002",
        "WSS-AUTH-003",
        "WSS-AUTH-007",
    ]
    assert all(SESSION_VALUE not in finding.evidence for finding in findings)
    assert analyze_session(AuthResult(success=False)) == []


def test_tamper_prefixes_session_cookies_only():
    tampered = tamper_credentials(SessionCredentials(cookies={"sessionid": "abc", "theme": "dark"}))
    assert tampered.cookies == {"sessionid": "INVALID_abc", "theme": "dark"}


def test_protected_page_that_redirects_is_not_flagged(login_site, scan_session):
    result = authenticate(_config(), scan_session)
    bypass = probe_auth_bypass(_config(), result, scan_session, delay_ms=0)
    assert bypass.vulnerabilities == []
    # unauthenticated + tampered + seven bypass parameters
    assert bypass.requests_sent == 9


def test_unauthenticated_access_is_critical(login_site, scan_session):
    login_site.add(BASE + "/open", CONTENT)
    result = authenticate(_config(), scan_session)
    bypass = probe_auth_bypass(_config(protected_pages=["/open"]), result, scan_session, delay_ms=0)
    assert [finding.rule_id for finding in bypass.vulnerabilities] == ["WSS-AUTH-004"]
    assert bypass.vulnerabilities[0].severity == "CRITICAL"
    assert bypass.requests_sent == 1


def test_tampered_token_accepted(login_site, scan_session):
    def lenient(req):
        if req.cookies.get("sessionid"):
            return make_response(req.url, 200, CONTENT)
        return _redirect_to_login(req)

    login_site.handle(BASE + "/lenient", lenient)
    result = authenticate(_config(), scan_session)
    bypass = probe_auth_bypass(_config(protected_pages=["/lenient"]), result, scan_session, delay_ms=0)
    assert [finding.rule_id for finding in bypass.vulnerabilities] == ["WSS-AUTH-005"]


def test_bypass_parameter_grants_access(login_site, scan_session):
    def admin(req):
        if req.query.get("role") == "admin":
            return make_response(req.url, 200, CONTENT)
        return make_response(req.url, 403, "forbidden")

    login_site.handle(BASE + "/admin", admin)
    result = authenticate(_config(), scan_session)
    bypass = probe_auth_bypass(_config(protected_pages=["/admin"]), result, scan_session, delay_ms=0)
    assert [finding.rule_id for finding in bypass.vulnerabilities] == ["WSS-AUTH-006"]
    assert bypass.vulnerabilities[0].location == BASE + "/admin?role=admin"
    assert bypass.vulnerabilities[0].evidence == "role=admin"


def test_login_page_detection():
    assert looks_like_login_page(make_response(BASE + "/signin", 200, "<p>x</p>"), LOGIN_URL)
    assert looks_like_login_page(make_response(BASE + "/home", 200, '<input type="password">'), LOGIN_URL)
    assert not looks_like_login_page(make_response(BASE + "/home", 200, CONTENT), LOGIN_URL)


def test_no_protected_pages_skips_checks(login_site, scan_session):
    result = authenticate(_config(), scan_session)
    bypass = probe_auth_bypass(_config(protected_pages=[]), result, scan_session)
    assert bypass.skipped == ["no protected pages configured"]
