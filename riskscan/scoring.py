from __future__ import annotations

import logging
from typing import Iterable

from .models import RISK_CRITICAL, RISK_HIGH, RISK_LOW, RISK_MEDIUM, ScoreEntry, ScoringResult, SecurityTest

logger = logging.getLogger("riskscan.scoring")
logger.addHandler(logging.NullHandler())

BASE_SCORE = 100.0
MIN_SCORE = 0.0
MAX_SCORE = 100.0

# (inclusive lower bound, band), highest first
RISK_BANDS = (
    (80.0, RISK_LOW),
    (60.0, RISK_MEDIUM),
    (40.0, RISK_HIGH),
)


def risk_level(score: float) -> str:
    for lower_bound, band in RISK_BANDS:
        if score >= lower_bound:
            return band
    return RISK_CRITICAL


def score(tests: Iterable[SecurityTest]) -> ScoringResult:
    """Deduction-based score over the scan's security tests.

    Starts at 100, adds each signed delta in order and clamps the total to
    [0, 100]. The breakdown keeps the input order.
    """
    total = BASE_SCORE
    breakdown = []
    for test in tests:
        total += test.score_delta
        breakdown.append(ScoreEntry(test_name=test.test_name, score_delta=test.score_delta, passed=test.passed))
    clamped = min(MAX_SCORE, max(MIN_SCORE, total))
    if clamped != total:
        logger.debug("Score %.1f clamped to %.1f", total, clamped)
    return ScoringResult(score=clamped, risk_level=risk_level(clamped), breakdown=breakdown)
