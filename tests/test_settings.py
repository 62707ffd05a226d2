"""
Tests for settings validation and conversion.
"""

import pytest

from cf_optimizer.settings import (BenchmarkBasis, ComponentToggle, ConfigurationError,
                                   ExclusionRules, GovernanceConfig, LayerType, Objective,
                                   ObjectiveKind, OutlierParams, PayComponents, PayLayer,
                                   RateBounds, Settings)


class TestValidation:
    """Invalid configuration fails at construction."""

    def test_defaults(self):
        s = Settings()
        assert s.basis is BenchmarkBasis.PER_CFTE
        assert s.objective.kind is ObjectiveKind.ALIGN
        assert s.bounds.min_change_pct == 30 and s.bounds.max_change_pct == 30
        assert s.governance.hard_cap_percentile == 50
        assert s.governance.soft_cap_percentile == 60
        assert s.governance.fmv_red_flag_percentile == 75
        assert s.min_meaningful_change_pct == 1.0
        assert s.max_recommended_percentile == 50

    def test_string_values_coerced_to_enums(self):
        s = Settings(basis="per_tfte", error_metric="absolute",
                     objective=Objective(kind="hybrid"))
        assert s.basis is BenchmarkBasis.PER_TFTE
        assert s.objective.kind is ObjectiveKind.HYBRID

    def test_unknown_objective_kind(self):
        with pytest.raises(ConfigurationError, match="objective.kind"):
            Objective(kind="maximize_profit")

    def test_negative_bounds(self):
        with pytest.raises(ConfigurationError):
            RateBounds(min_change_pct=-5)
        with pytest.raises(ConfigurationError):
            RateBounds(max_change_pct=-1)

    @pytest.mark.parametrize("limits", [{"absolute_min": -1.0}, {"absolute_max": -5.0}])
    def test_negative_absolute_limits(self, limits):
        with pytest.raises(ConfigurationError, match="non-negative"):
            RateBounds(**limits)

    def test_inverted_absolute_limits(self):
        with pytest.raises(ConfigurationError, match="absolute_min"):
            RateBounds(absolute_min=60, absolute_max=40)

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            Settings(basis="per_everything")

    def test_other_invalid_sections(self):
        with pytest.raises(ConfigurationError):
            OutlierParams(method="zscore")
        with pytest.raises(ConfigurationError):
            GovernanceConfig(hard_cap_percentile=120)
        with pytest.raises(ConfigurationError):
            PayLayer(name="bonus", layer_type="from_file")
        with pytest.raises(ConfigurationError):
            Settings(max_recommended_percentile=-1)

    def test_with_changes_revalidates(self):
        s = Settings()
        assert s.with_changes(grid_step_pct=1.0).grid_step_pct == 1.0
        with pytest.raises(ConfigurationError):
            s.with_changes(error_metric="cubic")

    def test_manual_lists_normalized(self):
        rules = ExclusionRules(manual_exclude=["P1", " P2 ", ""], manual_include="P3")
        assert rules.manual_exclude == frozenset({"P1", "P2"})
        assert rules.manual_include == frozenset({"P3"})

    def test_settings_immutable(self):
        s = Settings()
        with pytest.raises(AttributeError):
            s.grid_step_pct = 2.0


class TestDictConversion:

    def test_round_trip(self):
        s = Settings(
            basis="per_tfte",
            components=PayComponents(
                quality=ComponentToggle(include=True, normalize_for_fte=True),
                psq_percent=5.0,
                layers=(PayLayer("admin", LayerType.FLAT_DOLLAR, 10_000),),
            ),
            exclusions=ExclusionRules(manual_exclude={"B", "A"}),
            productivity_growth_pct=3.0,
        )
        data = s.to_dict()
        assert data["basis"] == "per_tfte"
        assert data["exclusions"]["manual_exclude"] == ["A", "B"]
        assert data["components"]["layers"][0]["layer_type"] == "flat_dollar"
        assert Settings.from_dict(data) == s

    def test_unknown_keys_rejected(self):
        with pytest.raises(ConfigurationError, match="unknown keys"):
            Settings.from_dict({"basis": "raw", "turbo": True})

    def test_growth_factor(self):
        assert Settings(productivity_growth_pct=10).growth_factor == pytest.approx(1.1)
