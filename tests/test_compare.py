"""
Tests for side-by-side run comparison.
"""

import pytest

from cf_optimizer.compare import compare_runs
from cf_optimizer.orchestrator import run_optimizer
from cf_optimizer.settings import Settings


@pytest.fixture
def baseline(cardiology, underpaid_group):
    return run_optimizer(underpaid_group, [cardiology])


@pytest.fixture
def uncapped(cardiology, dermatology, underpaid_group):
    return run_optimizer(underpaid_group, [cardiology, dermatology],
                         Settings(max_recommended_percentile=100), scenario_name="Uncapped")


class TestAssumptions:

    def test_changed_settings(self, baseline, uncapped):
        diff = compare_runs(baseline, uncapped).assumptions
        assert diff.changed_settings == ["max_recommended_percentile"]
        assert diff.growth_pct_a == diff.growth_pct_b == 0.0
        assert diff.objective_a == diff.objective_b
        assert diff.providers_included_a == diff.providers_included_b == 5
        assert diff.manual_exclude_count_a == 0

    def test_growth_and_filter_reported(self, baseline, cardiology, underpaid_group):
        grown = run_optimizer(underpaid_group, [cardiology], Settings(productivity_growth_pct=5),
                              specialty_filter="Cardiology")
        diff = compare_runs(baseline, grown).assumptions
        assert (diff.growth_pct_a, diff.growth_pct_b) == (0.0, 5)
        assert (diff.specialty_filter_a, diff.specialty_filter_b) == (None, "Cardiology")
        assert "productivity_growth_pct" in diff.changed_settings


class TestRollup:

    def test_spend_delta(self, baseline, uncapped):
        rollup = compare_runs(baseline, uncapped).rollup
        assert rollup.delta_spend_impact == pytest.approx(
            uncapped.summary.total_spend_impact - baseline.summary.total_spend_impact)
        assert rollup.delta_spend_impact > 0
        assert rollup.delta_spend_impact_pct == pytest.approx(
            rollup.delta_spend_impact / baseline.summary.total_spend_impact * 100)
        assert rollup.delta_incentive > 0

    def test_mean_percentiles_skip_empty_specialties(self, baseline, uncapped):
        rollup = compare_runs(baseline, uncapped).rollup
        assert rollup.mean_pay_percentile_a == pytest.approx(rollup.mean_pay_percentile_b)
        assert rollup.mean_prod_percentile_a == pytest.approx(rollup.mean_prod_percentile_b)

    def test_no_spend_percentage_without_baseline_spend(self, dermatology, underpaid_group,
                                                         baseline):
        empty = run_optimizer(underpaid_group, [dermatology])
        rollup = compare_runs(empty, baseline).rollup
        assert rollup.total_spend_impact_a == 0
        assert rollup.delta_spend_impact_pct is None


class TestBySpecialty:

    def test_rows(self, baseline, uncapped):
        rows = compare_runs(baseline, uncapped).by_specialty
        assert [(r.specialty, r.presence) for r in rows] == [("Cardiology", "both"),
                                                             ("Dermatology", "b_only")]
        cardio, derm = rows
        assert (cardio.recommended_cf_a, cardio.recommended_cf_b) == (50.0, pytest.approx(52.0))
        assert cardio.delta_cf_pct == pytest.approx(4.0)
        assert cardio.delta_spend_impact > 0
        assert derm.recommended_cf_a is None and derm.delta_cf_pct is None
        assert derm.delta_spend_impact is None

    def test_a_only(self, baseline, uncapped):
        rows = compare_runs(uncapped, baseline).by_specialty
        assert rows[1].presence == "a_only"
        assert rows[1].recommended_cf_b is None


class TestNarrative:

    def test_names_and_direction(self, baseline, uncapped):
        narrative = compare_runs(baseline, uncapped).narrative
        assert narrative[0].startswith("Uncapped increases total modeled spend by $")
        assert "vs Run A" in narrative[0]

    def test_identical_runs(self, baseline):
        comparison = compare_runs(baseline, baseline)
        assert comparison.narrative == ["Total modeled spend is the same in both runs."]
        assert comparison.assumptions.changed_settings == []
        assert all(r.delta_cf_pct == 0 for r in comparison.by_specialty)
