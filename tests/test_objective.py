"""
Tests for objective and error functions.
"""

import pytest

from cf_optimizer.normalization import build_provider_contexts
from cf_optimizer.objective import (aggregate_error, evaluate_rate, modeled_pay,
                                    modeled_pay_percentile, provider_error)
from cf_optimizer.records import SpecialtyMatcher
from cf_optimizer.settings import ErrorMetric, Objective, ObjectiveKind, Settings

from conftest import TCC


class TestProviderError:

    def test_align(self):
        assert provider_error(40, 60, Objective()) == -20

    def test_target_fixed(self):
        obj = Objective(kind=ObjectiveKind.TARGET_FIXED, target_percentile=50)
        assert provider_error(40, 90, obj) == -10

    def test_hybrid_weights(self):
        obj = Objective(kind="hybrid", target_percentile=50, align_weight=0.75,
                        target_weight=0.25)
        # 0.75 * (40 - 60) + 0.25 * (40 - 50)
        assert provider_error(40, 60, obj) == pytest.approx(-17.5)


class TestAggregate:

    def test_metrics(self):
        assert aggregate_error([3, -4], ErrorMetric.SQUARED) == pytest.approx(12.5)
        assert aggregate_error([3, -4], ErrorMetric.ABSOLUTE) == pytest.approx(3.5)

    def test_empty(self):
        assert aggregate_error([], ErrorMetric.SQUARED) == 0.0


class TestEvaluateRate:

    def test_matches_per_provider_computation(self, cardiology, underpaid_group):
        ctxs = build_provider_contexts(underpaid_group, SpecialtyMatcher([cardiology]),
                                       Settings())
        expected = aggregate_error(
            [provider_error(modeled_pay_percentile(c, 47.5, TCC), c.prod_percentile,
                            Objective()) for c in ctxs],
            ErrorMetric.SQUARED)
        assert evaluate_rate(47.5, ctxs, TCC, Objective(), ErrorMetric.SQUARED) == \
            pytest.approx(expected)

    def test_higher_rate_lowers_error_for_underpaid_group(self, cardiology, underpaid_group):
        ctxs = build_provider_contexts(underpaid_group, SpecialtyMatcher([cardiology]),
                                       Settings())
        errs = [evaluate_rate(cf, ctxs, TCC, Objective(), ErrorMetric.SQUARED)
                for cf in (40, 45, 50)]
        assert errs[0] > errs[1] > errs[2]

    def test_modeled_pay_at_current_rate_equals_baseline(self, cardiology, underpaid_group):
        ctxs = build_provider_contexts(underpaid_group, SpecialtyMatcher([cardiology]),
                                       Settings())
        for c in ctxs:
            assert modeled_pay(c, c.current_cf) == pytest.approx(c.baseline_pay)

    def test_no_providers(self):
        assert evaluate_rate(50, [], TCC, Objective(), ErrorMetric.ABSOLUTE) == 0.0
