from __future__ import annotations

from collections import Counter

import numpy as np
import pytest

from XRAY.shared import synthesis
from XRAY.shared.report_contract import CURRENCY, IMAGE_QUALITIES, SEVERITIES


def test_severity_weights_are_a_valid_distribution() -> None:
    assert len(synthesis.SEVERITY_WEIGHTS) == len(SEVERITIES)
    assert sum(synthesis.SEVERITY_WEIGHTS) == pytest.approx(1.0)
    assert all(w > 0 for w in synthesis.SEVERITY_WEIGHTS)


def test_classify_severity_converges_to_declared_weights() -> None:
    rng = np.random.default_rng(1234)
    n = 20_000

    counts = Counter(synthesis.classify_severity(rng) for _ in range(n))

    assert set(counts) == set(SEVERITIES)
    for severity, weight in zip(SEVERITIES, synthesis.SEVERITY_WEIGHTS):
        assert counts[severity] / n == pytest.approx(weight, abs=0.015)


def test_classify_severity_is_reproducible_with_same_seed() -> None:
    a = [synthesis.classify_severity(np.random.default_rng(7)) for _ in range(5)]
    b = [synthesis.classify_severity(np.random.default_rng(7)) for _ in range(5)]

    assert a == b


@pytest.mark.parametrize("severity", SEVERITIES)
def test_estimate_cost_interval_is_ordered_with_fixed_currency(severity: str) -> None:
    rng = np.random.default_rng(0)
    allowed = {(c["min"], c["max"]) for c in synthesis.COSTS[severity]}

    for _ in range(50):
        cost = synthesis.estimate_cost(severity, rng)
        assert cost["min"] <= cost["max"]
        assert cost["currency"] == CURRENCY
        assert (cost["min"], cost["max"]) in allowed


@pytest.mark.parametrize("severity", SEVERITIES)
def test_selectors_sample_without_replacement_within_count_range(severity: str) -> None:
    rng = np.random.default_rng(42)
    rec_low, rec_high = synthesis.RECOMMENDATION_COUNTS[severity]
    find_low, find_high = synthesis.FINDING_COUNTS[severity]

    for _ in range(30):
        recs = synthesis.select_recommendations(severity, rng)
        assert rec_low <= len(recs) <= rec_high
        assert len(set(recs)) == len(recs)
        assert set(recs) <= set(synthesis.RECOMMENDATIONS[severity])

        findings = synthesis.select_findings(severity, rng)
        assert find_low <= len(findings) <= find_high
        assert len(set(findings)) == len(findings)

        risks = synthesis.select_risk_factors(severity, rng)
        assert 1 <= len(risks) <= 3
        assert set(risks) <= set(synthesis.RISK_FACTORS[severity])


def test_higher_severity_never_draws_fewer_recommendations_than_minimum() -> None:
    rng = np.random.default_rng(5)

    critical = [len(synthesis.select_recommendations("critical", rng)) for _ in range(200)]
    low = [len(synthesis.select_recommendations("low", rng)) for _ in range(200)]

    assert min(critical) >= 4
    assert np.mean(critical) > np.mean(low)


def test_unknown_severity_uses_medium_bucket() -> None:
    rng = np.random.default_rng(3)

    recs = synthesis.select_recommendations("unknown", rng)

    assert set(recs) <= set(synthesis.RECOMMENDATIONS["medium"])


@pytest.mark.parametrize("severity", SEVERITIES)
def test_estimate_confidence_stays_within_bounds(severity: str) -> None:
    rng = np.random.default_rng(99)

    for findings in (0, 1, 3, 10, 1000):
        for _ in range(50):
            value = synthesis.estimate_confidence(severity, findings, rng)
            assert synthesis.CONFIDENCE_FLOOR <= value <= synthesis.CONFIDENCE_CEIL


def test_estimate_confidence_findings_bonus_is_monotonic() -> None:
    none = synthesis.estimate_confidence("medium", 0, np.random.default_rng(11))
    some = synthesis.estimate_confidence("medium", 3, np.random.default_rng(11))

    assert some >= none


def test_preventive_measures_and_breakdown_counts() -> None:
    rng = np.random.default_rng(8)

    measures = synthesis.select_preventive_measures(rng)
    breakdown = synthesis.select_cost_breakdown("high", rng)

    assert 5 <= len(measures) <= 8
    assert 1 <= len(breakdown) <= 2
    for item in breakdown:
        assert item["cost"]["min"] <= item["cost"]["max"]


def test_follow_up_schedule_returns_copies() -> None:
    schedule = synthesis.follow_up_schedule("high")
    schedule[0]["type"] = "changed"

    assert synthesis.FOLLOW_UP_SCHEDULES["high"][0]["type"] == "Urgent follow-up"


def test_pick_image_quality_returns_enum_value() -> None:
    rng = np.random.default_rng(2)

    assert {synthesis.pick_image_quality(rng) for _ in range(100)} <= set(IMAGE_QUALITIES)


def test_every_severity_has_a_fallback_scenario() -> None:
    assert {s["severity"] for s in synthesis.SCENARIOS} == set(SEVERITIES)


def test_synthesize_raw_result_is_internally_consistent() -> None:
    rng = np.random.default_rng(21)

    for _ in range(50):
        raw = synthesis.synthesize_raw_result(rng)
        assert raw["severity"] in SEVERITIES
        assert 0.6 <= raw["confidence"] <= 0.99
        assert raw["follow_up_required"] is (raw["severity"] != "low")
        assert raw["recommendations"]
        assert raw["risk_factors"]
        assert len(raw["annotations"]) == 1
        assert raw["estimated_cost"]["min"] <= raw["estimated_cost"]["max"]
