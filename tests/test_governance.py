"""
Tests for governance status and explanation templates.
"""

import pytest

from cf_optimizer.explanation import build_explanation, market_position, ordinal
from cf_optimizer.governance import KeyMetrics, Status, evaluate_status, specialty_key_metrics
from cf_optimizer.settings import GovernanceConfig

from conftest import CF

GOV = GovernanceConfig()


def metrics(pay, prod):
    return KeyMetrics(prod_percentile=prod, pay_percentile=pay, gap=pay - prod)


class TestEvaluateStatus:

    def test_green(self):
        assert evaluate_status(metrics(40, 40), GOV) == (Status.GREEN, [])

    def test_fmv_and_gap_are_red_and_cumulative(self):
        status, constraints = evaluate_status(metrics(80, 65), GOV)
        assert status is Status.RED
        assert constraints == ["FMV_OVER_75", "GAP_OVER_10", "HARD_CAP_50"]

    def test_between_hard_and_soft_cap(self):
        status, constraints = evaluate_status(metrics(55, 53), GOV)
        assert status is Status.YELLOW
        assert constraints == ["HARD_CAP_50", "SOFT_CAP_60"]

    def test_red_never_downgraded_by_cap_rules(self):
        status, constraints = evaluate_status(metrics(58, 45), GOV)
        assert status is Status.RED
        assert constraints == ["GAP_OVER_10", "HARD_CAP_50", "SOFT_CAP_60"]

    def test_moderate_gap_only_when_green(self):
        assert evaluate_status(metrics(40, 33), GOV) == (Status.YELLOW, ["GAP_5_TO_10"])
        status, constraints = evaluate_status(metrics(55, 48), GOV)
        assert status is Status.YELLOW
        assert "GAP_5_TO_10" not in constraints

    def test_gap_codes_follow_configured_thresholds(self):
        gov = GovernanceConfig(red_gap=15, yellow_gap=7.5)
        assert evaluate_status(metrics(45, 25), gov) == (Status.RED, ["GAP_OVER_15"])
        assert evaluate_status(metrics(40, 30), gov) == (Status.YELLOW, ["GAP_7.5_TO_15"])

    @pytest.mark.parametrize("change", [30.0, -30.0, 45.0])
    def test_large_change_is_informational(self, change):
        status, constraints = evaluate_status(metrics(40, 40), GOV, change_pct=change)
        assert status is Status.GREEN
        assert constraints == ["MAX_CHANGE_BOUND"]

    def test_negative_gap_never_red(self):
        assert evaluate_status(metrics(30, 90), GOV)[0] is Status.GREEN

    def test_key_metrics_empty(self):
        assert specialty_key_metrics([]) == KeyMetrics()


class TestExplanation:

    def test_ordinals(self):
        assert [ordinal(v) for v in (1, 2, 3, 4, 11, 12, 13, 21, 22, 50.4, 102)] == \
            ["1st", "2nd", "3rd", "4th", "11th", "12th", "13th", "21st", "22nd", "50th", "102nd"]

    def test_no_recommendation(self):
        exp = build_explanation("NO_RECOMMENDATION", Status.YELLOW, KeyMetrics(), [], 50, 50,
                                0, GOV)
        assert exp.headline.startswith("No recommendation")
        assert "Only 0 provider(s)" in exp.reasons[0]

    def test_fmv_hold(self):
        exp = build_explanation("HOLD", Status.RED, metrics(80, 60), ["FMV_OVER_75"], 52.0,
                                52.0, 6, GOV)
        assert exp.headline == ("Hold CF at $52.00 -- compensation exceeds the 75th percentile, "
                                "flagging FMV risk.")

    def test_hard_cap_hold(self):
        exp = build_explanation("HOLD", Status.YELLOW, metrics(62, 61), ["HARD_CAP_50"], 48.0,
                                48.0, 6, GOV)
        assert "already above the 50th percentile policy cap" in exp.headline
        assert any("well-aligned" in r for r in exp.reasons)

    def test_aligned_hold(self):
        exp = build_explanation("HOLD", Status.GREEN, metrics(40, 41), [], 48.0, 48.0, 6, GOV)
        assert exp.headline == "Hold CF at $48.00 -- no material change needed."
        assert exp.next_steps == []

    def test_increase_with_market_context(self):
        exp = build_explanation("INCREASE", Status.GREEN, metrics(31, 77), [], 40.0, 50.0, 5,
                                GOV, cf_percentile=50, market_cf=CF)
        assert exp.headline == ("Increase CF from $40.00 to $50.00 (+25.0%) to better align "
                                "pay with productivity.")
        assert any("underpaid" in r for r in exp.reasons)
        assert any("50th market percentile" in r for r in exp.reasons)
        assert exp.next_steps[-1].startswith("Review individual provider drilldown")

    def test_decrease_with_large_change(self):
        exp = build_explanation("DECREASE", Status.RED, metrics(70, 50), ["MAX_CHANGE_BOUND"],
                                60.0, 42.0, 5, GOV, cf_percentile=10, market_cf=CF)
        assert exp.headline.startswith("Decrease CF from $60.00 to $42.00 (-30.0%)")
        assert any("below the 25th percentile" in r for r in exp.reasons)
        assert "phased implementation" in exp.next_steps[0]

    def test_market_position_bands(self):
        assert market_position(52, CF).startswith("between the median")
        assert market_position(70, CF).startswith("above the 90th")

    def test_deterministic(self):
        args = ("INCREASE", Status.YELLOW, metrics(45, 30), ["GAP_OVER_10"], 45.0, 50.0, 4, GOV,
                50, CF)
        assert build_explanation(*args) == build_explanation(*args)
