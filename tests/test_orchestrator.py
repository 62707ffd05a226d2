"""
Tests for the run orchestrator: progress, cancellation, roll-up and audit.
"""

import json

import pytest

from cf_optimizer.optimizer import Action, ManualOverride
from cf_optimizer.orchestrator import (ENGINE_VERSION, OptimizerRun, ProgressEvent, run_optimizer,
                                       run_rate_sweep)
from cf_optimizer.settings import BenchmarkBasis, Settings

from conftest import make_provider


@pytest.fixture
def benchmarks(cardiology, dermatology):
    return [cardiology, dermatology]


@pytest.fixture
def providers(underpaid_group):
    return underpaid_group + [make_provider("X1", specialty="Podiatry")]


class TestProgress:

    def test_one_event_per_specialty(self, providers, benchmarks):
        run = OptimizerRun(providers, benchmarks)
        events = list(run)
        assert events == [ProgressEvent(1, 2, "Cardiology"), ProgressEvent(2, 2, "Dermatology")]
        assert run.result is not None

    def test_stopping_early_leaves_no_result(self, providers, benchmarks):
        run = OptimizerRun(providers, benchmarks)
        for event in run:
            if event.index == 1:
                break
        assert run.result is None

    def test_restartable(self, providers, benchmarks):
        run = OptimizerRun(providers, benchmarks)
        list(run)
        first = run.result.to_dict()
        list(run)
        assert run.result.to_dict() == first


class TestRollUp:

    def test_summary(self, providers, benchmarks):
        summary = run_optimizer(providers, benchmarks).summary
        assert summary.specialties_analyzed == 2
        assert summary.providers_included == 5
        assert summary.providers_excluded == 1
        assert summary.top_exclusion_reasons == [("missing_market", 1)]
        assert summary.unmatched_specialties == ["Podiatry"]
        assert summary.action_counts == {"INCREASE": 1, "NO_RECOMMENDATION": 1}
        assert summary.total_spend_impact > 0

    def test_empty_specialty_is_no_recommendation(self, providers, benchmarks):
        result = run_optimizer(providers, benchmarks)
        derm = result.specialty("dermatology")
        assert derm.action is Action.NO_RECOMMENDATION
        assert derm.included_count == 0

    def test_empty_specialties_can_be_skipped(self, providers, benchmarks):
        result = run_optimizer(providers, benchmarks, include_empty_specialties=False)
        assert [r.specialty for r in result.specialties] == ["Cardiology"]

    def test_specialty_filter(self, providers, benchmarks):
        result = run_optimizer(providers, benchmarks, specialty_filter="CARDIOLOGY")
        assert [r.specialty for r in result.specialties] == ["Cardiology"]
        assert result.summary.unmatched_specialties == []
        assert result.audit.specialty_filter == "CARDIOLOGY"

    def test_synonyms_route_providers(self, benchmarks):
        providers = [make_provider(f"S{i}", specialty="Heart Care", wrvus=w)
                     for i, w in enumerate([7000, 8000, 9000])]
        result = run_optimizer(providers, benchmarks, synonyms={"Heart Care": "Cardiology"})
        assert result.specialty("Cardiology").included_count == 3
        assert result.summary.unmatched_specialties == []

    def test_key_messages_deduplicated(self, providers, benchmarks):
        messages = run_optimizer(providers, benchmarks).summary.key_messages
        assert len(messages) == len(set(messages))
        assert any(m.startswith("Dermatology: no recommendation") for m in messages)

    def test_inputs_not_mutated(self, providers, benchmarks):
        snapshot = [p.__dict__.copy() for p in providers]
        run_optimizer(providers, benchmarks)
        assert [p.__dict__ for p in providers] == snapshot


class TestAudit:

    def test_audit_record(self, providers, benchmarks):
        audit = run_optimizer(providers, benchmarks, scenario_id="S-1",
                              scenario_name="Baseline", timestamp="2024-01-01T00:00:00Z").audit
        assert audit.engine_version == ENGINE_VERSION
        assert audit.scenario_id == "S-1"
        assert audit.timestamp == "2024-01-01T00:00:00Z"
        assert len(audit.settings_hash) == 64
        assert audit.excluded_providers == [{
            "provider_id": "X1", "specialty": "Podiatry",
            "reasons": ["missing_market"], "included_anyway": False,
        }]
        assert audit.caps_applied == {"Cardiology": ["MAX_PERCENTILE_50"]}
        assert "clinical FTE" in audit.basis_note

    def test_timestamp_not_generated(self, providers, benchmarks):
        assert run_optimizer(providers, benchmarks).audit.timestamp is None

    def test_hashes_track_inputs(self, providers, benchmarks):
        a = run_optimizer(providers, benchmarks).audit
        b = run_optimizer(providers, benchmarks,
                          Settings(basis=BenchmarkBasis.PER_TFTE)).audit
        c = run_optimizer(providers[:-1], benchmarks).audit
        assert a.settings_hash != b.settings_hash
        assert a.input_hash == b.input_hash
        assert a.input_hash != c.input_hash
        assert "total FTE" in b.basis_note

    def test_manual_overrides_recorded(self, providers, benchmarks):
        overrides = {"cardiology": ManualOverride(47.0, "Budget", user="jdoe",
                                                  timestamp="2024-02-01")}
        result = run_optimizer(providers, benchmarks, overrides=overrides)
        assert result.specialty("Cardiology").recommended_cf == 47.0
        assert result.audit.manual_overrides == [{
            "specialty": "Cardiology", "recommended_cf": 47.0, "engine_cf": 50.0,
            "comment": "Budget", "user": "jdoe", "timestamp": "2024-02-01",
        }]
        assert result.audit.input_hash != run_optimizer(providers, benchmarks).audit.input_hash
        assert any("manual CF override" in m for m in result.summary.key_messages)

    def test_override_for_unknown_specialty_is_skipped(self, providers, benchmarks, caplog):
        result = run_optimizer(providers, benchmarks,
                               overrides={"Podiatry": ManualOverride(47.0, "Budget")})
        assert result.audit.manual_overrides == []
        assert "no matching market row" in caplog.text

    def test_deterministic_and_serializable(self, providers, benchmarks):
        kwargs = dict(scenario_id="S-2", timestamp="2024-01-01T00:00:00Z")
        first = run_optimizer(providers, benchmarks, **kwargs).to_dict()
        second = run_optimizer(providers, benchmarks, **kwargs).to_dict()
        assert first == second
        assert json.dumps(first, sort_keys=True) == json.dumps(second, sort_keys=True)


class TestSweep:

    def test_sweep_covers_each_specialty(self, providers, benchmarks):
        points = run_rate_sweep(providers, benchmarks, percentiles=(50, 75))
        assert [(p.specialty, p.cf) for p in points] == [
            ("Cardiology", 50.0), ("Cardiology", 55.0),
            ("Dermatology", 52.0), ("Dermatology", 57.0),
        ]
        assert all(p.spend_impact == 0 for p in points if p.specialty == "Dermatology")
