"""
Productivity target engine.

Sets a work-RVU target per specialty from the market productivity curve (or a
manual number) and scores each provider against it. Shares percentile
interpolation, FTE handling and specialty matching with the optimizer, but
there is no search: targets come straight from the chosen percentile.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional

import numpy as np

from .interpolation import value_at
from .normalization import clinical_fte, total_productivity
from .records import (BenchmarkRow, ProviderRecord, SpecialtyMatcher,
                      normalize_specialty_key, safe_div)
from .settings import ConfigurationError

logger = logging.getLogger(__name__)


class TargetStatus(str, Enum):
    BELOW = "Below Target"
    AT    = "At Target"
    ABOVE = "Above Target"


AT_TARGET_PCT    = 100.0
ABOVE_TARGET_PCT = 120.0


@dataclass(frozen=True)
class TargetSettings:
    target_percentile:      float = 50.0
    manual_target:          Optional[float] = None   # wRVUs per 1.0 cFTE
    specialty_overrides:    Mapping[str, float] = field(default_factory=dict)
    ramp_factors:           Mapping[str, float] = field(default_factory=dict)  # by provider id
    planning_cf_percentile: float = 50.0
    planning_cf:            Optional[float] = None
    productivity_growth_pct: float = 0.0

    def __post_init__(self):
        for name in ("target_percentile", "planning_cf_percentile"):
            value = getattr(self, name)
            if not 0 <= value <= 100:
                raise ConfigurationError(f"{name} must be within [0, 100], got {value}")
        for pid, ramp in self.ramp_factors.items():
            if not 0 < ramp <= 1:
                raise ConfigurationError(f"ramp factor for {pid!r} must be in (0, 1], got {ramp}")
        overrides = {normalize_specialty_key(k): v for k, v in self.specialty_overrides.items()}
        object.__setattr__(self, "specialty_overrides", overrides)


@dataclass(frozen=True)
class ProviderTarget:
    provider_id:        str
    provider_name:      str
    specialty:          str
    clinical_fte:       float
    ramp_factor:        float
    target_wrvus:       float
    actual_wrvus:       float
    percent_to_target:  float
    status:             TargetStatus
    planning_incentive: float


@dataclass
class SpecialtyTargets:
    specialty:                str
    group_target_1p0:         float
    planning_cf:              float
    providers:                List[ProviderTarget] = field(default_factory=list)
    mean_percent_to_target:   float = 0.0
    median_percent_to_target: float = 0.0
    band_counts:              Dict[str, int] = field(default_factory=dict)
    total_planning_incentive: float = 0.0


def group_target(benchmark: BenchmarkRow, settings: TargetSettings) -> float:
    """wRVU target per 1.0 cFTE: override, then manual value, then market percentile."""
    key = normalize_specialty_key(benchmark.specialty)
    if key in settings.specialty_overrides:
        return float(settings.specialty_overrides[key])
    if settings.manual_target is not None:
        return float(settings.manual_target)
    return value_at(settings.target_percentile, benchmark.wrvu)


def planning_rate(benchmark: BenchmarkRow, settings: TargetSettings) -> float:
    if settings.planning_cf is not None:
        return float(settings.planning_cf)
    return value_at(settings.planning_cf_percentile, benchmark.cf)


def target_status(percent_to_target: float) -> TargetStatus:
    if percent_to_target >= ABOVE_TARGET_PCT:
        return TargetStatus.ABOVE
    if percent_to_target >= AT_TARGET_PCT:
        return TargetStatus.AT
    return TargetStatus.BELOW


def _band(pct: float) -> str:
    if pct < 80:
        return "below_80"
    if pct < 100:
        return "80_to_99"
    if pct < 120:
        return "100_to_119"
    return "120_plus"


def provider_target(record: ProviderRecord, group_target_1p0: float, cf: float,
                    settings: TargetSettings) -> ProviderTarget:
    cfte = clinical_fte(record)
    ramp = settings.ramp_factors.get(record.provider_id, 1.0)
    target = group_target_1p0 * cfte * ramp
    actual = total_productivity(record) * (1 + settings.productivity_growth_pct / 100.0)
    pct = safe_div(actual, target) * 100
    return ProviderTarget(
        provider_id=record.provider_id,
        provider_name=record.provider_name,
        specialty=record.specialty,
        clinical_fte=cfte,
        ramp_factor=ramp,
        target_wrvus=target,
        actual_wrvus=actual,
        percent_to_target=pct,
        status=target_status(pct),
        planning_incentive=max(0.0, actual - target) * cf,
    )


def compute_targets(providers: Iterable[ProviderRecord], benchmarks: Iterable[BenchmarkRow],
                    settings: Optional[TargetSettings] = None,
                    synonyms: Optional[Mapping[str, str]] = None) -> List[SpecialtyTargets]:
    """One SpecialtyTargets per specialty with providers, sorted by specialty name."""
    settings = settings or TargetSettings()
    matcher = SpecialtyMatcher(benchmarks, synonyms)

    grouped: Dict[str, List[ProviderRecord]] = {}
    unmatched = 0
    for record in providers:
        row, _ = matcher.match(record.specialty)
        if row is None:
            unmatched += 1
            continue
        grouped.setdefault(normalize_specialty_key(row.specialty), []).append(record)
    if unmatched:
        logger.warning("%d provider(s) skipped for productivity targets: no market row", unmatched)

    results = []
    for key, records in grouped.items():
        row = matcher.rows[key]
        target_1p0 = group_target(row, settings)
        cf = planning_rate(row, settings)
        targets = [provider_target(r, target_1p0, cf, settings) for r in records]
        pcts = [t.percent_to_target for t in targets]
        bands = {"below_80": 0, "80_to_99": 0, "100_to_119": 0, "120_plus": 0}
        for p in pcts:
            bands[_band(p)] += 1
        results.append(SpecialtyTargets(
            specialty=row.specialty,
            group_target_1p0=target_1p0,
            planning_cf=cf,
            providers=targets,
            mean_percent_to_target=float(np.mean(pcts)),
            median_percent_to_target=float(np.median(pcts)),
            band_counts=bands,
            total_planning_incentive=sum(t.planning_incentive for t in targets),
        ))
    results.sort(key=lambda s: s.specialty.lower())
    return results
