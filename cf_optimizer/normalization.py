"""
Provider Normalizer
Raw ProviderRecord + Settings → pay components, normalized basis and the
per-run ProviderContext the solver works on.

Everything here is pure: the same record and settings always give the same
output, and records are never modified.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence

from .interpolation import percentile_of
from .outliers import detect_outliers
from .records import (BenchmarkRow, MatchStatus, ProviderRecord, SpecialtyMatcher,
                      normalize_specialty_key, num, safe_div)
from .settings import BenchmarkBasis, LayerType, OutlierParams, QualitySource, Settings

logger = logging.getLogger(__name__)


class ExclusionReason(str, Enum):
    NO_FTE_BASIS            = "no_benchmarkable_fte_basis"
    BASIS_FTE_BELOW_MIN     = "basis_fte_below_min"
    LOW_PRODUCTIVITY_VOLUME = "low_wrvu_volume"
    LEAVE_OF_ABSENCE        = "loa_flagged"
    NEW_HIRE                = "new_hire_below_threshold"
    OUTLIER_PRODUCTIVITY    = "outlier_wrvu"
    OUTLIER_PAY             = "outlier_tcc"
    OUTLIER_EFFECTIVE_RATE  = "outlier_effective_rate"
    MANUAL_EXCLUDE          = "manual_exclude"
    MISSING_MARKET          = "missing_market"


# ══════════════════════════════════════════════════════════════════════════════
# FTE / PRODUCTIVITY PRIMITIVES
# ══════════════════════════════════════════════════════════════════════════════
def clinical_fte(record: ProviderRecord) -> float:
    cfte = num(record.clinical_fte)
    return cfte if cfte > 0 else num(record.total_fte)


def basis_fte(record: ProviderRecord, basis: BenchmarkBasis) -> float:
    if basis is BenchmarkBasis.RAW:
        return 1.0
    if basis is BenchmarkBasis.PER_TFTE:
        return num(record.total_fte)
    return clinical_fte(record)


def clinical_base(record: ProviderRecord) -> float:
    """Base pay attributable to clinical work."""
    if record.clinical_fte_salary is not None and num(record.clinical_fte_salary) > 0:
        return num(record.clinical_fte_salary)
    base = num(record.base_salary)
    tfte = num(record.total_fte)
    if tfte <= 0:
        return base
    return base * clinical_fte(record) / tfte


def total_productivity(record: ProviderRecord) -> float:
    total = num(record.total_wrvus)
    if total > 0:
        return total
    return num(record.work_rvus) + num(record.outside_wrvus)


def incentive_at_rate(base: float, wrvus: float, cf: float) -> float:
    """Productivity incentive: pay for work RVUs above the base/CF threshold."""
    if cf <= 0:
        return 0.0
    threshold = base / cf
    return max(0.0, (wrvus - threshold) * cf)


# ══════════════════════════════════════════════════════════════════════════════
# PAY COMPONENTS
# ══════════════════════════════════════════════════════════════════════════════
class PayBreakdown(NamedTuple):
    clinical_base:          float
    psq:                    float
    quality:                float
    other_incentives:       float
    stipend:                float
    layers:                 float
    productivity_incentive: float

    @property
    def fixed(self) -> float:
        """Everything that does not move with the conversion factor."""
        return (self.clinical_base + self.psq + self.quality + self.other_incentives
                + self.stipend + self.layers)

    @property
    def total(self) -> float:
        return self.fixed + self.productivity_incentive


def _from_file(amount: float, normalize_for_fte: bool, cfte: float) -> float:
    return amount * cfte if normalize_for_fte else amount


def layer_amount(record: ProviderRecord, layers: Sequence, base: float, cfte: float) -> float:
    total = 0.0
    for layer in layers:
        if layer.layer_type is LayerType.PERCENT_OF_BASE:
            total += base * num(layer.value) / 100.0
        elif layer.layer_type is LayerType.DOLLAR_PER_FTE:
            total += num(layer.value) * cfte
        elif layer.layer_type is LayerType.FLAT_DOLLAR:
            total += num(layer.value)
        else:
            amount = num(record.layer_values.get(layer.field_name))
            total += _from_file(amount, layer.normalize_for_fte, cfte)
    return total


def pay_components(record: ProviderRecord, settings: Settings,
                   current_cf: float, productivity: Optional[float] = None) -> PayBreakdown:
    """
    Baseline TCC split into its parts. Clinical base is always included; the
    other parts follow settings.components. The productivity incentive is
    priced at `current_cf`.
    """
    comp = settings.components
    base = clinical_base(record)
    cfte = clinical_fte(record)

    quality = 0.0
    if comp.quality.include:
        if comp.quality_source is QualitySource.OVERRIDE_PCT:
            quality = base * comp.quality_override_pct / 100.0
        else:
            quality = _from_file(num(record.quality_payments), comp.quality.normalize_for_fte, cfte)

    other = (_from_file(num(record.other_incentives), comp.other_incentives.normalize_for_fte, cfte)
             if comp.other_incentives.include else 0.0)
    stipend = (_from_file(num(record.stipend), comp.stipend.normalize_for_fte, cfte)
               if comp.stipend.include else 0.0)

    if productivity is None:
        productivity = total_productivity(record) * settings.growth_factor
    incentive = (incentive_at_rate(base, productivity, current_cf)
                 if comp.productivity_incentive.include else 0.0)

    return PayBreakdown(
        clinical_base=base,
        psq=base * comp.psq_percent / 100.0,
        quality=quality,
        other_incentives=other,
        stipend=stipend,
        layers=layer_amount(record, comp.layers, base, cfte),
        productivity_incentive=incentive,
    )


class NormalizedBasis(NamedTuple):
    basis_fte:        float
    pay:              float
    pay_1p0:          float
    productivity:     float
    productivity_1p0: float
    breakdown:        PayBreakdown


def normalize_provider(record: ProviderRecord, settings: Settings,
                       current_cf: float) -> NormalizedBasis:
    """
    Pay and productivity on the configured basis. Productivity is scaled by the
    growth factor first. A zero basis gives 0 per 1.0 FTE, never inf/NaN.
    """
    fte = basis_fte(record, settings.basis)
    productivity = total_productivity(record) * settings.growth_factor
    breakdown = pay_components(record, settings, current_cf, productivity)
    pay = breakdown.total
    return NormalizedBasis(
        basis_fte=fte,
        pay=pay,
        pay_1p0=safe_div(pay, fte) if fte > 0 else 0.0,
        productivity=productivity,
        productivity_1p0=safe_div(productivity, fte) if fte > 0 else 0.0,
        breakdown=breakdown,
    )


# ══════════════════════════════════════════════════════════════════════════════
# PROVIDER CONTEXT
# ══════════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class ProviderContext:
    record:           ProviderRecord
    specialty_key:    str
    match_status:     MatchStatus
    market_specialty: str

    basis_fte:        float = 0.0
    clinical_fte:     float = 0.0
    clinical_base:    float = 0.0
    fixed_pay:        float = 0.0
    current_cf:       float = 0.0
    baseline_incentive: float = 0.0
    baseline_pay:     float = 0.0
    baseline_pay_1p0: float = 0.0
    productivity:     float = 0.0
    productivity_1p0: float = 0.0

    pay_percentile:   float = 0.0
    prod_percentile:  float = 0.0
    pay_off_scale:    bool  = False
    prod_off_scale:   bool  = False
    effective_rate:   float = 0.0
    effective_rate_percentile: float = 0.0
    effective_rate_off_scale:  bool  = False

    exclusion_reasons: List[ExclusionReason] = field(default_factory=list)
    include_anyway:   bool = False

    # ── populated by the solver ──────────────────────────────────────────────
    modeled_pay:            Optional[float] = None
    modeled_pay_1p0:        Optional[float] = None
    modeled_pay_percentile: Optional[float] = None
    modeled_incentive:      Optional[float] = None

    @property
    def provider_id(self) -> str:
        return self.record.provider_id

    @property
    def included(self) -> bool:
        if ExclusionReason.MISSING_MARKET in self.exclusion_reasons:
            return False
        return not self.exclusion_reasons or self.include_anyway

    @property
    def baseline_gap(self) -> float:
        return self.pay_percentile - self.prod_percentile

    @property
    def off_scale(self) -> bool:
        return self.pay_off_scale or self.prod_off_scale

    def with_reasons(self, *reasons: ExclusionReason) -> "ProviderContext":
        merged = list(self.exclusion_reasons)
        merged.extend(r for r in reasons if r not in merged)
        return replace(self, exclusion_reasons=merged)


def provider_current_cf(record: ProviderRecord, benchmark: Optional[BenchmarkRow]) -> float:
    cf = num(record.current_cf)
    if cf > 0:
        return cf
    return benchmark.cf.p50 if benchmark is not None else 0.0


def exclusion_reasons_for(record: ProviderRecord, norm: NormalizedBasis,
                          settings: Settings) -> List[ExclusionReason]:
    rules = settings.exclusions
    reasons: List[ExclusionReason] = []
    if norm.basis_fte <= 0:
        reasons.append(ExclusionReason.NO_FTE_BASIS)
    elif norm.basis_fte < rules.min_basis_fte:
        reasons.append(ExclusionReason.BASIS_FTE_BELOW_MIN)
    if rules.min_wrvu_per_1p0_fte > 0 and norm.productivity_1p0 < rules.min_wrvu_per_1p0_fte:
        reasons.append(ExclusionReason.LOW_PRODUCTIVITY_VOLUME)
    if rules.exclude_leave_of_absence and record.flags.leave_of_absence:
        reasons.append(ExclusionReason.LEAVE_OF_ABSENCE)
    tenure = record.flags.tenure_months
    if rules.new_hire_months is not None and tenure is not None and tenure < rules.new_hire_months:
        reasons.append(ExclusionReason.NEW_HIRE)
    if record.provider_id in rules.manual_exclude:
        reasons.append(ExclusionReason.MANUAL_EXCLUDE)
    return reasons


def build_provider_context(record: ProviderRecord, benchmark: Optional[BenchmarkRow],
                           match_status: MatchStatus, settings: Settings) -> ProviderContext:
    include_anyway = record.provider_id in settings.exclusions.manual_include
    if benchmark is None:
        return ProviderContext(
            record=record,
            specialty_key=normalize_specialty_key(record.specialty),
            match_status=MatchStatus.MISSING,
            market_specialty="",
            exclusion_reasons=[ExclusionReason.MISSING_MARKET],
            include_anyway=include_anyway,
        )

    cf = provider_current_cf(record, benchmark)
    norm = normalize_provider(record, settings, cf)
    pay_pct = percentile_of(norm.pay_1p0, benchmark.tcc)
    prod_pct = percentile_of(norm.productivity_1p0, benchmark.wrvu)
    eff_rate = safe_div(norm.pay, norm.productivity)
    eff_pct = percentile_of(eff_rate, benchmark.cf)

    return ProviderContext(
        record=record,
        specialty_key=normalize_specialty_key(benchmark.specialty),
        match_status=match_status,
        market_specialty=benchmark.specialty,
        basis_fte=norm.basis_fte,
        clinical_fte=clinical_fte(record),
        clinical_base=norm.breakdown.clinical_base,
        fixed_pay=norm.breakdown.fixed,
        current_cf=cf,
        baseline_incentive=norm.breakdown.productivity_incentive,
        baseline_pay=norm.pay,
        baseline_pay_1p0=norm.pay_1p0,
        productivity=norm.productivity,
        productivity_1p0=norm.productivity_1p0,
        pay_percentile=pay_pct.percentile,
        prod_percentile=prod_pct.percentile,
        pay_off_scale=pay_pct.below_range or pay_pct.above_range,
        prod_off_scale=prod_pct.below_range or prod_pct.above_range,
        effective_rate=eff_rate,
        effective_rate_percentile=eff_pct.percentile,
        effective_rate_off_scale=eff_pct.below_range or eff_pct.above_range,
        exclusion_reasons=exclusion_reasons_for(record, norm, settings),
        include_anyway=include_anyway,
    )


def build_provider_contexts(records: Iterable[ProviderRecord], matcher: SpecialtyMatcher,
                            settings: Settings) -> List[ProviderContext]:
    contexts = []
    for record in records:
        row, status = matcher.match(record.specialty)
        contexts.append(build_provider_context(record, row, status, settings))
    return contexts


# ══════════════════════════════════════════════════════════════════════════════
# OUTLIER EXCLUSION
# ══════════════════════════════════════════════════════════════════════════════
_OUTLIER_METRICS = (
    ("productivity_1p0", ExclusionReason.OUTLIER_PRODUCTIVITY),
    ("baseline_pay_1p0", ExclusionReason.OUTLIER_PAY),
    ("effective_rate",   ExclusionReason.OUTLIER_EFFECTIVE_RATE),
)


def apply_outlier_exclusions(contexts: Sequence[ProviderContext],
                             params: OutlierParams) -> List[ProviderContext]:
    """
    Tag outliers among one specialty's included providers. Statistics are
    computed once, on the population that was included before tagging.
    Manually included providers keep their inclusion but still carry the reason.
    """
    out = list(contexts)
    if not params.exclude_outliers:
        return out
    idx = [i for i, c in enumerate(out) if c.included]
    if not idx:
        return out

    tagged: Dict[int, List[ExclusionReason]] = {}
    for attr, reason in _OUTLIER_METRICS:
        values = [getattr(out[i], attr) for i in idx]
        flags = detect_outliers(values, params.method, params.iqr_k, params.mad_z_threshold)
        for i, flagged in zip(idx, flags):
            if flagged:
                tagged.setdefault(i, []).append(reason)

    for i, reasons in tagged.items():
        out[i] = out[i].with_reasons(*reasons)
    if tagged:
        logger.debug("%s: %d provider(s) tagged as outliers",
                     out[idx[0]].market_specialty, len(tagged))
    return out
