from riskscan.csp_analyzer import TEST_NAME as CSP_TEST, analyze_csp, parse_csp
from riskscan.header_analyzer import (
    TEST_CORS,
    TEST_COOKIES,
    TEST_HSTS,
    TEST_REFERRER,
    TEST_SCRIPT_INCLUSIONS,
    TEST_XFO,
    analyze_cookies,
    analyze_headers,
    check_cors,
    check_frame_options,
    check_hsts,
    check_permissions_policy,
    check_referrer_policy,
    cookie_findings,
    findings_from_tests,
)
from riskscan.models import OUTCOME_FAILED, OUTCOME_INFO, OUTCOME_NOT_APPLICABLE, OUTCOME_PASSED
from riskscan.transport import parse_set_cookie

URL = "https://example.com/"
STRONG_CSP = (
    "default-src 'none'; script-src 'self'; style-src 'self'; object-src 'none'; "
    "frame-ancestors 'none'; base-uri 'self'; form-action 'self'"
)


def _by_name(tests):
    return {test.test_name: test for test in tests}


def test_missing_csp_is_most_severe():
    test = analyze_csp(None)
    assert test.outcome == OUTCOME_FAILED
    assert test.score_delta == -25


def test_strong_csp_earns_bonus():
    test = analyze_csp(STRONG_CSP)
    assert test.passed
    assert test.score_delta == 5
    assert test.details["failed"] == 0


def test_high_severity_failure_scores_like_missing_policy():
    test = analyze_csp("script-src 'self' 'unsafe-inline'")
    assert test.outcome == OUTCOME_FAILED
    assert test.score_delta == analyze_csp("").score_delta
    assert test.details["high_severity_failed"] == 1


def test_few_medium_failures_cost_little():
    test = analyze_csp("default-src 'self'; object-src 'none'; base-uri 'self'; form-action 'self'")
    assert test.details["failed"] == 2
    assert test.score_delta == -5


def test_nonce_neutralises_unsafe_inline():
    checks = analyze_csp("script-src 'nonce-r4nd0m' 'unsafe-inline'; object-src 'none'").details["checks"]
    inline = next(check for check in checks if check["name"] == "No 'unsafe-inline' in script-src")
    assert inline["passed"]


def test_parse_csp_first_directive_wins():
    assert parse_csp("script-src 'self'; script-src *; img-src data:") == {
        "script-src": ["'self'"],
        "img-src": ["data:"],
    }


def test_wildcard_cors_with_credentials_is_worst_case():
    worst = check_cors({"access-control-allow-origin": "*", "access-control-allow-credentials": "true"})
    wildcard = check_cors({"access-control-allow-origin": "*"})
    assert worst.outcome == OUTCOME_FAILED
    assert worst.score_delta == -25
    assert worst.score_delta < wildcard.score_delta < 0
    assert check_cors({}).outcome == OUTCOME_INFO
    assert check_cors({"access-control-allow-origin": "https://app.example.com"}).passed


def test_hsts():
    assert check_hsts("http://example.com/", {}).outcome == OUTCOME_NOT_APPLICABLE
    assert check_hsts(URL, {}).score_delta == -20
    short = check_hsts(URL, {"strict-transport-security": "max-age=3600"})
    assert short.outcome == OUTCOME_FAILED
    good = check_hsts(URL, {"strict-transport-security": "max-age=31536000; includeSubDomains; preload"})
    assert good.passed
    assert good.details["include_subdomains"] and good.details["preload"]


def test_frame_ancestors_counts_as_framing_protection():
    assert check_frame_options({"content-security-policy": "frame-ancestors 'self'"}).passed
    assert check_frame_options({}).score_delta == -20
    assert check_frame_options({"x-frame-options": "ALLOW-FROM https://a.example"}).outcome == OUTCOME_FAILED


def test_referrer_policy_last_token_wins():
    assert check_referrer_policy({"referrer-policy": "unsafe-url, no-referrer"}).score_delta == 5
    assert check_referrer_policy({"referrer-policy": "unsafe-url"}).outcome == OUTCOME_FAILED
    assert check_referrer_policy({}).outcome == OUTCOME_INFO


def test_permissions_policy_flags_wildcards():
    failed = check_permissions_policy({"permissions-policy": "camera=*, geolocation=(self)"})
    assert failed.details["features"] == ["camera"]
    assert check_permissions_policy({"permissions-policy": "camera=(), microphone=()"}).passed


def test_analyze_headers_one_test_per_check_with_csp_first():
    headers = {"Content-Security-Policy": STRONG_CSP, "X-Content-Type-Options": "nosniff"}
    html = (
        '<script src="https://cdn.jsdelivr.net/npm/lib.js"></script>'
        '<script src="https://tracker.example.net/t.js"></script>'
        '<script src="/local.js"></script>'
    )
    tests = analyze_headers(URL, headers, html)
    assert tests[0].test_name == CSP_TEST
    names = [test.test_name for test in tests]
    assert len(names) == len(set(names)) == 10
    inclusions = _by_name(tests)[TEST_SCRIPT_INCLUSIONS]
    assert inclusions.score_delta == -10
    assert inclusions.details["cdn"] == ["https://cdn.jsdelivr.net/npm/lib.js"]
    assert inclusions.details["third_party"] == ["https://tracker.example.net/t.js"]
    assert TEST_SCRIPT_INCLUSIONS not in [test.test_name for test in analyze_headers(URL, headers)]


def test_failed_header_tests_map_to_findings():
    tests = analyze_headers(URL, {})
    rule_ids = sorted(finding.rule_id for finding in findings_from_tests(URL, tests))
    assert rule_ids == ["WSS-SEC-001", "WSS-SEC-003", "WSS-SEC-004", "WSS-SEC-005"]
    weak = analyze_headers(URL, {"content-security-policy": "script-src *"})
    weak_ids = [finding.rule_id for finding in findings_from_tests(URL, weak)]
    assert "WSS-SEC-002" in weak_ids
    assert _by_name(tests)[TEST_XFO].outcome == OUTCOME_FAILED
    assert _by_name(tests)[TEST_HSTS].outcome == OUTCOME_FAILED
    assert _by_name(tests)[TEST_CORS].outcome == OUTCOME_INFO
    assert _by_name(tests)[TEST_REFERRER].passed


def test_cookie_analysis():
    insecure = parse_set_cookie("sessionid=abc; Path=/")
    secure = parse_set_cookie("sessionid=abc; Path=/; Secure; HttpOnly; SameSite=Lax")

    failed = analyze_cookies(URL, insecure)
    assert failed.test_name == TEST_COOKIES
    assert failed.score_delta == -20
    assert analyze_cookies(URL, secure).outcome == OUTCOME_PASSED
    assert analyze_cookies(URL, []).score_delta == 0
    assert analyze_cookies("http://example.com/", secure).outcome == OUTCOME_FAILED


def test_session_cookie_findings():
    cookies = parse_set_cookie("sessionid=abc; Path=/") + parse_set_cookie("theme=dark; Path=/")
    rule_ids = sorted(finding.rule_id for finding in cookie_findings(URL, cookies))
    assert rule_ids == ["WSS-AUTH-001", "WSS-AUTH-002"]


def test_parse_set_cookie_flags():
    cookie = parse_set_cookie("auth_token=xyz; Max-Age=3600; Secure; HttpOnly; SameSite=Strict")[0]
    assert cookie["name"] == "auth_token"
    assert cookie["secure"] and cookie["httponly"]
    assert cookie["samesite"] == "Strict"
    assert cookie["max_age"] == "3600"
