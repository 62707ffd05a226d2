"""
Run Orchestrator
Groups providers into specialties, runs the solver once per specialty and
rolls the results up into a summary and an audit record.

A run is an iterator: each step solves one specialty and yields a
ProgressEvent. Stopping iteration cancels the run. Iterating again starts a
fresh run from the same inputs.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from .audit import hash_canonical_json, to_jsonable
from .normalization import (ExclusionReason, ProviderContext, apply_outlier_exclusions,
                            build_provider_contexts)
from .optimizer import (DEFAULT_SWEEP_PERCENTILES, Flag, ManualOverride, PolicyCheck,
                        SpecialtyResult, SweepPoint, solve_specialty, sweep_rates)
from .records import BenchmarkRow, ProviderRecord, SpecialtyMatcher, normalize_specialty_key
from .settings import BenchmarkBasis, Settings

logger = logging.getLogger(__name__)

ENGINE_VERSION = "1.0.0"
TOP_EXCLUSION_REASONS = 10

BASIS_NOTES = {
    BenchmarkBasis.PER_CFTE: "Pay and productivity normalized to 1.0 clinical FTE.",
    BenchmarkBasis.PER_TFTE: "Pay and productivity normalized to 1.0 total FTE.",
    BenchmarkBasis.RAW: "Raw (non-normalized) values; percentiles are diagnostic only "
                        "and not comparable to per-FTE survey data.",
}


# ══════════════════════════════════════════════════════════════════════════════
# RESULT TYPES
# ══════════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class ProgressEvent:
    index:     int   # 1-based
    total:     int
    specialty: str


@dataclass
class RunSummary:
    specialties_analyzed:     int = 0
    providers_included:       int = 0
    providers_excluded:       int = 0
    top_exclusion_reasons:    List[Tuple[str, int]] = field(default_factory=list)
    total_spend_impact:       float = 0.0
    total_modeled_incentive:  float = 0.0
    count_not_converged:      int = 0
    count_cf_above_policy:    int = 0
    count_effective_rate_flagged: int = 0
    status_counts:            Dict[str, int] = field(default_factory=dict)
    action_counts:            Dict[str, int] = field(default_factory=dict)
    key_messages:             List[str] = field(default_factory=list)
    unmatched_specialties:    List[str] = field(default_factory=list)


@dataclass
class AuditRecord:
    scenario_id:        str
    scenario_name:      str
    timestamp:          Optional[str]
    engine_version:     str
    settings:           Dict
    settings_hash:      str
    input_hash:         str
    basis_note:         str
    specialty_filter:   Optional[str] = None
    dataset_version:    Optional[str] = None
    mapping_version:    Optional[str] = None
    excluded_providers: List[Dict] = field(default_factory=list)
    caps_applied:       Dict[str, List[str]] = field(default_factory=dict)
    manual_overrides:   List[Dict] = field(default_factory=list)


@dataclass
class RunResult:
    summary:     RunSummary
    specialties: List[SpecialtyResult]
    audit:       AuditRecord

    def specialty(self, name: str) -> Optional[SpecialtyResult]:
        key = normalize_specialty_key(name)
        for res in self.specialties:
            if res.specialty_key == key:
                return res
        return None

    def to_dict(self) -> Dict:
        """JSON-safe copy: enums as values, no object references."""
        return to_jsonable(self)


# ══════════════════════════════════════════════════════════════════════════════
# RUN
# ══════════════════════════════════════════════════════════════════════════════
@dataclass
class _Plan:
    matcher:  SpecialtyMatcher
    contexts: List[ProviderContext]
    groups:   Dict[str, List[ProviderContext]]
    missing:  List[ProviderContext]
    keys:     List[str]
    overrides: Dict[str, ManualOverride] = field(default_factory=dict)


class OptimizerRun:
    """
    One optimizer run over fixed inputs.

        run = OptimizerRun(providers, benchmarks, settings)
        for event in run:
            print(f"{event.index}/{event.total} {event.specialty}")
        result = run.result

    `result` is None until an iteration runs to the end.
    """

    def __init__(self, providers: Iterable[ProviderRecord], benchmarks: Iterable[BenchmarkRow],
                 settings: Optional[Settings] = None,
                 synonyms: Optional[Mapping[str, str]] = None,
                 specialty_filter: Optional[str] = None,
                 scenario_id: str = "",
                 scenario_name: str = "",
                 timestamp: Optional[str] = None,
                 include_empty_specialties: bool = True,
                 dataset_version: Optional[str] = None,
                 mapping_version: Optional[str] = None,
                 overrides: Optional[Mapping[str, ManualOverride]] = None):
        self.providers = tuple(providers)
        self.benchmarks = tuple(benchmarks)
        self.settings = settings if settings is not None else Settings()
        self.synonyms = dict(synonyms or {})
        self.specialty_filter = specialty_filter
        self.scenario_id = scenario_id
        self.scenario_name = scenario_name
        self.timestamp = timestamp
        self.include_empty_specialties = include_empty_specialties
        self.dataset_version = dataset_version
        self.mapping_version = mapping_version
        self.overrides = dict(overrides or {})
        self.result: Optional[RunResult] = None

    # ── planning ─────────────────────────────────────────────────────────────
    def _plan(self) -> _Plan:
        matcher = SpecialtyMatcher(self.benchmarks, self.synonyms)
        contexts = build_provider_contexts(self.providers, matcher, self.settings)

        groups: Dict[str, List[ProviderContext]] = {}
        missing: List[ProviderContext] = []
        for ctx in contexts:
            if ExclusionReason.MISSING_MARKET in ctx.exclusion_reasons:
                missing.append(ctx)
            else:
                groups.setdefault(ctx.specialty_key, []).append(ctx)

        keys = [k for k in matcher.keys if self.include_empty_specialties or k in groups]
        if self.specialty_filter:
            row, _ = matcher.match(self.specialty_filter)
            fkey = (normalize_specialty_key(row.specialty) if row is not None
                    else normalize_specialty_key(self.specialty_filter))
            keys = [k for k in keys if k == fkey]
            missing = [c for c in missing if c.specialty_key == fkey]
        overrides: Dict[str, ManualOverride] = {}
        for name, override in self.overrides.items():
            row, _ = matcher.match(name)
            if row is None:
                logger.warning("Manual override for %r has no matching market row", name)
                continue
            overrides[normalize_specialty_key(row.specialty)] = override
        return _Plan(matcher, contexts, groups, missing, keys, overrides)

    # ── iteration ────────────────────────────────────────────────────────────
    def __iter__(self) -> Iterator[ProgressEvent]:
        self.result = None
        plan = self._plan()
        total = len(plan.keys)
        logger.info("Optimizer run %s: %d provider(s), %d specialt%s to solve",
                    self.scenario_id or "(unnamed)", len(self.providers), total,
                    "y" if total == 1 else "ies")
        if plan.missing:
            names = sorted({c.record.specialty for c in plan.missing})
            logger.warning("%d provider(s) have no matching market row: %s",
                           len(plan.missing), ", ".join(names))

        results: List[SpecialtyResult] = []
        for index, key in enumerate(plan.keys, start=1):
            row = plan.matcher.rows[key]
            group = apply_outlier_exclusions(plan.groups.get(key, []), self.settings.outliers)
            results.append(solve_specialty(row, group, self.settings,
                                           override=plan.overrides.get(key)))
            yield ProgressEvent(index, total, row.specialty)

        self.result = self._assemble(results, plan)
        logger.info("Optimizer run complete: %d specialties, spend impact %.2f",
                    self.result.summary.specialties_analyzed,
                    self.result.summary.total_spend_impact)

    # ── roll-up ──────────────────────────────────────────────────────────────
    def _summary(self, results: Sequence[SpecialtyResult],
                 missing: Sequence[ProviderContext]) -> RunSummary:
        excluded = [c for r in results for c in r.excluded_contexts] + list(missing)
        reasons = Counter(reason.value for c in excluded for reason in c.exclusion_reasons)

        messages: List[str] = []
        for r in results:
            for msg in r.key_messages:
                if msg not in messages:
                    messages.append(msg)

        status_counts: Dict[str, int] = {}
        action_counts: Dict[str, int] = {}
        for r in results:
            status_counts[r.status.value] = status_counts.get(r.status.value, 0) + 1
            action_counts[r.action.value] = action_counts.get(r.action.value, 0) + 1

        return RunSummary(
            specialties_analyzed=len(results),
            providers_included=sum(r.included_count for r in results),
            providers_excluded=len(excluded),
            top_exclusion_reasons=reasons.most_common(TOP_EXCLUSION_REASONS),
            total_spend_impact=sum(r.spend_impact for r in results),
            total_modeled_incentive=sum(r.modeled_incentive_total for r in results),
            count_not_converged=sum(1 for r in results if Flag.NOT_CONVERGED in r.flags),
            count_cf_above_policy=sum(1 for r in results if r.policy_check is not PolicyCheck.OK),
            count_effective_rate_flagged=sum(1 for r in results if r.effective_rate_flag),
            status_counts=status_counts,
            action_counts=action_counts,
            key_messages=messages,
            unmatched_specialties=sorted({c.record.specialty for c in missing}),
        )

    def _audit(self, results: Sequence[SpecialtyResult],
               missing: Sequence[ProviderContext]) -> AuditRecord:
        settings_dict = self.settings.to_dict()
        inputs = {
            "providers": self.providers,
            "benchmarks": self.benchmarks,
            "synonyms": self.synonyms,
            "specialty_filter": self.specialty_filter,
            "overrides": self.overrides,
        }
        excluded = [c for r in results for c in r.excluded_contexts] + list(missing)
        return AuditRecord(
            scenario_id=self.scenario_id,
            scenario_name=self.scenario_name,
            timestamp=self.timestamp,
            engine_version=ENGINE_VERSION,
            settings=settings_dict,
            settings_hash=hash_canonical_json(settings_dict),
            input_hash=hash_canonical_json(inputs, nan_as_null=True),
            basis_note=BASIS_NOTES[self.settings.basis],
            specialty_filter=self.specialty_filter,
            dataset_version=self.dataset_version,
            mapping_version=self.mapping_version,
            excluded_providers=[
                {"provider_id": c.provider_id,
                 "specialty": c.record.specialty,
                 "reasons": [r.value for r in c.exclusion_reasons],
                 "included_anyway": c.include_anyway}
                for c in excluded
            ],
            caps_applied={r.specialty: list(r.caps_applied) for r in results if r.caps_applied},
            manual_overrides=[
                {"specialty": r.specialty,
                 "recommended_cf": r.recommended_cf,
                 "engine_cf": r.engine_cf,
                 "comment": r.manual_override.comment,
                 "user": r.manual_override.user,
                 "timestamp": r.manual_override.timestamp}
                for r in results if r.manual_override is not None
            ],
        )

    def _assemble(self, results: List[SpecialtyResult], plan: _Plan) -> RunResult:
        return RunResult(
            summary=self._summary(results, plan.missing),
            specialties=results,
            audit=self._audit(results, plan.missing),
        )

    # ── what-if ──────────────────────────────────────────────────────────────
    def sweep(self, percentiles: Sequence[float] = DEFAULT_SWEEP_PERCENTILES) -> List[SweepPoint]:
        plan = self._plan()
        points: List[SweepPoint] = []
        for key in plan.keys:
            group = apply_outlier_exclusions(plan.groups.get(key, []), self.settings.outliers)
            points.extend(sweep_rates(plan.matcher.rows[key], group, self.settings, percentiles))
        return points


def run_optimizer(providers: Iterable[ProviderRecord], benchmarks: Iterable[BenchmarkRow],
                  settings: Optional[Settings] = None, **options) -> RunResult:
    """Run every specialty to completion and return the RunResult."""
    run = OptimizerRun(providers, benchmarks, settings, **options)
    for _ in run:
        pass
    return run.result


def run_rate_sweep(providers: Iterable[ProviderRecord], benchmarks: Iterable[BenchmarkRow],
                   settings: Optional[Settings] = None,
                   percentiles: Sequence[float] = DEFAULT_SWEEP_PERCENTILES,
                   **options) -> List[SweepPoint]:
    return OptimizerRun(providers, benchmarks, settings, **options).sweep(percentiles)
