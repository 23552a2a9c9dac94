import pytest

from riskscan.models import CONFIDENCE_LOW, SEVERITY_CRITICAL
from riskscan.rules import RULES, create_finding, get_rule


def test_every_rule_has_owasp_category():
    for rule_id, rule in RULES.items():
        assert rule_id == rule.id
        assert rule.id.startswith("WSS-")
        assert rule.owasp_id.endswith(":2025")
        assert rule.remediation


def test_create_finding_copies_rule_metadata():
    finding = create_finding("WSS-SQLI-001", "https://example.com/?id=1", "MySQL error")
    rule = get_rule("WSS-SQLI-001")
    assert finding.severity == rule.severity
    assert finding.category == rule.category
    assert finding.owasp_id == "A05:2025"
    assert finding.key == ("WSS-SQLI-001", "https://example.com/?id=1", "MySQL error")


def test_create_finding_overrides():
    finding = create_finding(
        "WSS-DEP-001", "package.json - lodash", confidence=CONFIDENCE_LOW, severity=SEVERITY_CRITICAL
    )
    assert finding.confidence == CONFIDENCE_LOW
    assert finding.severity == SEVERITY_CRITICAL


def test_unknown_rule_raises():
    with pytest.raises(KeyError):
        get_rule("WSS-NOPE-999")
