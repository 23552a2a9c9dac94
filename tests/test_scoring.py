import pytest

from riskscan.models import OUTCOME_FAILED, OUTCOME_PASSED, RISK_CRITICAL, RISK_HIGH, RISK_LOW, RISK_MEDIUM, SecurityTest
from riskscan.scoring import risk_level, score


def _test(name, delta, passed=None):
    if passed is None:
        passed = delta >= 0
    return SecurityTest(
        test_name=name,
        passed=passed,
        score_delta=delta,
        outcome=OUTCOME_PASSED if passed else OUTCOME_FAILED,
        reason="",
    )


def test_empty_test_list_scores_100_low():
    result = score([])
    assert result.score == 100
    assert result.risk_level == RISK_LOW
    assert result.breakdown == []


def test_deltas_are_summed_from_100():
    result = score([_test("a", 0, True), _test("b", -10, False)])
    assert result.score == 90
    assert result.risk_level == RISK_LOW


@pytest.mark.parametrize(
    "value, band",
    [
        (100, RISK_LOW),
        (80, RISK_LOW),
        (79.9, RISK_MEDIUM),
        (60, RISK_MEDIUM),
        (59.9, RISK_HIGH),
        (40, RISK_HIGH),
        (39.9, RISK_CRITICAL),
        (0, RISK_CRITICAL),
    ],
)
def test_risk_bands_use_inclusive_lower_bounds(value, band):
    assert risk_level(value) == band


def test_score_clamps_to_zero():
    result = score([_test(f"t{i}", -25) for i in range(6)])
    assert result.score == 0
    assert result.risk_level == RISK_CRITICAL


def test_score_clamps_to_hundred_with_bonuses():
    result = score([_test("bonus-1", 5), _test("bonus-2", 5)])
    assert result.score == 100


def test_breakdown_preserves_input_order_and_is_deterministic():
    tests = [_test("z", -5), _test("a", 5), _test("m", -20)]
    first = score(tests)
    second = score(list(tests))
    assert [entry.test_name for entry in first.breakdown] == ["z", "a", "m"]
    assert [entry.score_delta for entry in first.breakdown] == [-5, 5, -20]
    assert first == second
    assert first.score == 80
    assert first.risk_level == RISK_LOW
