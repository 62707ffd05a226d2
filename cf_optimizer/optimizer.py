"""
Grid-Search Solver
Per specialty: search candidate conversion factors between the change bounds,
keep the one with the lowest aggregate alignment error, then apply the
market-median and max-percentile caps and classify the action.

Ordering matters: the governance block is decided before the search, both
caps are applied after it, and cf_min / cf_max are always evaluated exactly.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .explanation import Explanation, build_explanation, fmt_rate, ordinal
from .governance import KeyMetrics, Status, evaluate_status, specialty_key_metrics
from .interpolation import percentile_of, value_at
from .normalization import ExclusionReason, ProviderContext
from .objective import evaluate_rate, modeled_incentive, modeled_pay, modeled_pay_percentile
from .records import Anchors, BenchmarkRow, normalize_specialty_key, num, safe_div
from .settings import ConfigurationError, RateBounds, Settings

logger = logging.getLogger(__name__)

LOW_SAMPLE_THRESHOLD = 3
MAX_GRID_POINTS      = 101
TARGET_INTERVALS     = 40
RATE_EPS             = 1e-6
HIGH_RISK_GAP        = 15.0
MEDIUM_RISK_GAP      = 5.0

CAP_MARKET_MEDIAN = "MARKET_MEDIAN_OVERPAY"


class Action(str, Enum):
    INCREASE          = "INCREASE"
    DECREASE          = "DECREASE"
    HOLD              = "HOLD"
    NO_RECOMMENDATION = "NO_RECOMMENDATION"


class Flag(str, Enum):
    LOW_SAMPLE        = "low_sample"
    CF_CAPPED         = "cf_capped"
    INCREASE_BLOCKED  = "increase_blocked"
    NOT_CONVERGED     = "not_converged"
    FMV_RISK          = "fmv_risk"
    OFF_SCALE         = "off_scale"
    OUTLIERS_EXCLUDED = "outliers_excluded"


class PolicyCheck(str, Enum):
    OK           = "ok"
    ABOVE_POLICY = "above_policy"
    ABOVE_75     = "above_75"
    ABOVE_90     = "above_90"


@dataclass(frozen=True)
class ManualOverride:
    """
    A reviewer-chosen rate for one specialty. It replaces the solver's rate
    as-is (no bounds or caps), and the solver's rate is kept as engine_cf.
    """
    cf:        float
    comment:   str
    user:      Optional[str] = None
    timestamp: Optional[str] = None

    def __post_init__(self):
        if not num(self.cf) > 0:
            raise ConfigurationError(f"manual override rate must be positive, got {self.cf}")
        if not str(self.comment or "").strip():
            raise ConfigurationError("manual override needs a comment")


# ══════════════════════════════════════════════════════════════════════════════
# RESULT
# ══════════════════════════════════════════════════════════════════════════════
@dataclass
class SpecialtyResult:
    specialty:      str
    specialty_key:  str
    included_count: int
    excluded_count: int
    action:         Action
    status:         Status

    # ── Rates ────────────────────────────────────────────────────────────────
    current_cf:     float
    recommended_cf: float
    optimal_cf:     float          # searched + capped rate, before the HOLD rule
    change_pct:     float
    cf_min:         float = 0.0
    cf_max:         float = 0.0
    cf_percentile:  float = 0.0
    market_cf:      Optional[Anchors] = None
    engine_cf:      Optional[float] = None   # solver rate when a manual override replaced it
    manual_override: Optional[ManualOverride] = None

    # ── Alignment ────────────────────────────────────────────────────────────
    objective_value:        float = 0.0
    candidates_evaluated:   int   = 0
    pre_gap:                float = 0.0
    post_gap:               float = 0.0
    mae_before:             float = 0.0
    mae_after:              float = 0.0
    median_abs_error_after: float = 0.0
    key_metrics:            KeyMetrics = field(default_factory=KeyMetrics)

    # ── Money ────────────────────────────────────────────────────────────────
    spend_impact:            float = 0.0
    modeled_incentive_total: float = 0.0

    # ── Policy / risk ────────────────────────────────────────────────────────
    policy_check:        PolicyCheck = PolicyCheck.OK
    effective_rate_flag: bool = False
    increase_blocked:    bool = False
    high_risk_count:     int = 0
    medium_risk_count:   int = 0
    constraints:         List[str] = field(default_factory=list)
    caps_applied:        List[str] = field(default_factory=list)
    flags:               List[Flag] = field(default_factory=list)
    notes:               List[str] = field(default_factory=list)
    key_messages:        List[str] = field(default_factory=list)
    explanation:         Optional[Explanation] = None

    provider_contexts:   List[ProviderContext] = field(default_factory=list)

    @property
    def included_contexts(self) -> List[ProviderContext]:
        return [c for c in self.provider_contexts if c.included]

    @property
    def excluded_contexts(self) -> List[ProviderContext]:
        return [c for c in self.provider_contexts if not c.included]


@dataclass(frozen=True)
class SweepPoint:
    specialty:             str
    market_percentile:     float
    cf:                    float
    mean_pay_percentile:   float
    mean_prod_percentile:  float
    gap:                   float
    modeled_incentive:     float
    spend_impact:          float


# ══════════════════════════════════════════════════════════════════════════════
# SEARCH SPACE
# ══════════════════════════════════════════════════════════════════════════════
def current_rate(included: Sequence[ProviderContext], benchmark: BenchmarkRow) -> float:
    """Median of the recorded provider rates; market 50th when none recorded."""
    recorded = [num(c.record.current_cf) for c in included if num(c.record.current_cf) > 0]
    if recorded:
        return float(np.median(recorded))
    return float(benchmark.cf.p50)


def rate_bounds(cur: float, bounds: RateBounds) -> Tuple[float, float]:
    lo = cur * (1 - bounds.min_change_pct / 100.0)
    hi = cur * (1 + bounds.max_change_pct / 100.0)
    if bounds.absolute_min is not None:
        lo = max(bounds.absolute_min, lo)
    if bounds.absolute_max is not None:
        hi = min(bounds.absolute_max, hi)
    lo = max(0.0, lo)
    if hi < lo:
        hi = lo
    return lo, hi


def candidate_grid(cur: float, lo: float, hi: float, grid_step_pct: float) -> List[float]:
    """
    Evenly spaced candidates from lo to hi, both included exactly. About 41
    points, fewer when cur * grid_step_pct is a coarser step, never more than 101.
    """
    span = hi - lo
    if span <= 0:
        return [lo]
    preferred = max(span / TARGET_INTERVALS, cur * grid_step_pct / 100.0)
    intervals = math.ceil(span / preferred - 1e-9)
    points = int(min(MAX_GRID_POINTS, max(2, intervals + 1)))
    grid = lo + np.arange(points) * (span / (points - 1))
    grid[-1] = hi
    return [float(x) for x in grid]


# ══════════════════════════════════════════════════════════════════════════════
# SOLVER
# ══════════════════════════════════════════════════════════════════════════════
def _model(ctx: ProviderContext, cf: float, tcc: Anchors) -> ProviderContext:
    pay = modeled_pay(ctx, cf)
    return replace(
        ctx,
        modeled_pay=pay,
        modeled_pay_1p0=safe_div(pay, ctx.basis_fte),
        modeled_pay_percentile=modeled_pay_percentile(ctx, cf, tcc),
        modeled_incentive=modeled_incentive(ctx, cf),
    )


def _mean(values: Sequence[float]) -> float:
    return float(np.mean(values)) if len(values) else 0.0


def _policy_check(cf_pct: float, policy_pct: float) -> PolicyCheck:
    if cf_pct > 90:
        return PolicyCheck.ABOVE_90
    if cf_pct > 75:
        return PolicyCheck.ABOVE_75
    if cf_pct > policy_pct:
        return PolicyCheck.ABOVE_POLICY
    return PolicyCheck.OK


def _classify(rate: float, cur: float, min_change_pct: float) -> Action:
    if abs(safe_div(rate - cur, cur) * 100) < min_change_pct:
        return Action.HOLD
    return Action.INCREASE if rate > cur else Action.DECREASE


def _no_recommendation(specialty: str, benchmark: BenchmarkRow,
                       contexts: Sequence[ProviderContext], settings: Settings) -> SpecialtyResult:
    cur = float(benchmark.cf.p50)
    explanation = build_explanation(Action.NO_RECOMMENDATION, Status.YELLOW, KeyMetrics(), [],
                                    cur, cur, 0, settings.governance)
    return SpecialtyResult(
        specialty=specialty,
        specialty_key=normalize_specialty_key(specialty),
        included_count=0,
        excluded_count=len(contexts),
        action=Action.NO_RECOMMENDATION,
        status=Status.YELLOW,
        current_cf=cur,
        recommended_cf=cur,
        optimal_cf=cur,
        change_pct=0.0,
        cf_min=cur,
        cf_max=cur,
        cf_percentile=50.0,
        market_cf=benchmark.cf,
        flags=[Flag.LOW_SAMPLE],
        notes=["No included providers; no rate was searched."],
        key_messages=[f"{specialty}: no recommendation (no providers with usable data)."],
        explanation=explanation,
        provider_contexts=list(contexts),
    )


def solve_specialty(benchmark: BenchmarkRow, contexts: Sequence[ProviderContext],
                    settings: Settings, specialty: Optional[str] = None,
                    override: Optional[ManualOverride] = None) -> SpecialtyResult:
    specialty = specialty or benchmark.specialty
    included = [c for c in contexts if c.included]
    if not included:
        logger.debug("%s: no included providers", specialty)
        if override is not None:
            logger.warning("%s: manual override ignored, no included providers", specialty)
        return _no_recommendation(specialty, benchmark, contexts, settings)

    gov = settings.governance
    tcc, market_cf = benchmark.tcc, benchmark.cf
    notes: List[str] = []
    key_messages: List[str] = []
    flags: List[Flag] = []
    caps: List[str] = []

    # ── Baseline, bounds, governance pre-check ───────────────────────────────
    cur = current_rate(included, benchmark)
    lo, hi = rate_bounds(cur, settings.bounds)
    before = specialty_key_metrics(included)
    blocked = before.pay_percentile > gov.hard_cap_percentile
    if blocked:
        flags.append(Flag.INCREASE_BLOCKED)
        notes.append(f"Mean pay percentile {before.pay_percentile:.1f} is above the "
                     f"{ordinal(gov.hard_cap_percentile)} hard cap; increases were not searched.")
        key_messages.append(f"{specialty}: pay already above the "
                            f"{ordinal(gov.hard_cap_percentile)} percentile cap; "
                            f"rate increases blocked.")

    # ── Search ───────────────────────────────────────────────────────────────
    def score(cf: float) -> float:
        return evaluate_rate(cf, included, tcc, settings.objective, settings.error_metric)

    best_cf: Optional[float] = None
    best_err = math.inf
    if lo - RATE_EPS <= cur <= hi + RATE_EPS:
        best_cf, best_err = cur, score(cur)
    evaluated = 0
    for cf in candidate_grid(cur, lo, hi, settings.grid_step_pct):
        if blocked and cf > cur + RATE_EPS:
            continue
        err = score(cf)
        evaluated += 1
        if err < best_err:
            best_cf, best_err = cf, err
    if best_cf is None:
        best_cf, best_err = lo, score(lo)
        notes.append("No candidate at or below the current rate was within bounds; "
                     "the lower bound was used.")

    # ── Caps ─────────────────────────────────────────────────────────────────
    final = best_cf
    if before.gap > 0 and final > cur + RATE_EPS and final > market_cf.p50:
        final = max(market_cf.p50, lo)
        caps.append(CAP_MARKET_MEDIAN)
        notes.append(f"Increase capped at the market 50th percentile CF "
                     f"({fmt_rate(market_cf.p50)}) because pay is above productivity "
                     f"(gap {before.gap:+.1f}).")
        key_messages.append(f"{specialty}: increase capped at market median CF; pay already "
                            f"exceeds productivity.")

    max_pct = settings.max_recommended_percentile
    cap_cf = value_at(max_pct, market_cf)
    if final > cap_cf + RATE_EPS:
        final = max(cap_cf, lo)
        caps.append(f"MAX_PERCENTILE_{max_pct:g}")
        notes.append(f"Rate capped at the {ordinal(max_pct)} market percentile CF "
                     f"({fmt_rate(cap_cf)}).")
        key_messages.append(f"{specialty}: recommendation limited to the {ordinal(max_pct)} "
                            f"market percentile CF.")

    at_bound = hi > lo and (best_cf <= lo + RATE_EPS or best_cf >= hi - RATE_EPS)
    if caps or (at_bound and abs(best_cf - cur) > RATE_EPS):
        flags.append(Flag.CF_CAPPED)

    # ── Action ───────────────────────────────────────────────────────────────
    if blocked and final >= cur - RATE_EPS:
        action = Action.HOLD
    else:
        action = _classify(final, cur, settings.min_meaningful_change_pct)
    # HOLD keeps the current rate, moved onto [lo, hi] when an absolute limit excludes it
    recommended = min(max(cur, lo), hi) if action is Action.HOLD else final
    if action is Action.HOLD and abs(recommended - cur) > RATE_EPS:
        notes.append(f"Current CF {fmt_rate(cur)} is outside the allowed range "
                     f"{fmt_rate(lo)} to {fmt_rate(hi)}; held at {fmt_rate(recommended)}.")

    engine_cf: Optional[float] = None
    if override is not None:
        engine_cf = recommended
        recommended = float(override.cf)
        action = _classify(recommended, cur, settings.min_meaningful_change_pct)
        notes.append(f"Manual override: CF set to {fmt_rate(recommended)} (engine "
                     f"recommended {fmt_rate(engine_cf)}). {override.comment.strip()}")
        key_messages.append(f"{specialty}: manual CF override of {fmt_rate(recommended)} "
                            f"applied.")
    change_pct = safe_div(recommended - cur, cur) * 100

    # ── Modeled outcome ──────────────────────────────────────────────────────
    modeled = {id(c): _model(c, recommended, tcc) for c in included}
    all_contexts = [modeled.get(id(c), c) for c in contexts]
    after = [modeled[id(c)] for c in included]

    base_errors = [abs(c.pay_percentile - c.prod_percentile) for c in included]
    post_errors = [abs(c.modeled_pay_percentile - c.prod_percentile) for c in after]
    mae_before = _mean(base_errors)
    mae_after = _mean(post_errors)
    mean_modeled_pct = _mean([c.modeled_pay_percentile for c in after])
    spend = sum(c.modeled_pay for c in after) - sum(c.baseline_pay for c in included)

    if action in (Action.INCREASE, Action.DECREASE) and mae_after >= mae_before and best_err > 0:
        flags.append(Flag.NOT_CONVERGED)
        notes.append("Recommended rate does not reduce mean absolute alignment error.")

    # ── Policy and risk ──────────────────────────────────────────────────────
    cf_pct = percentile_of(recommended, market_cf).percentile
    policy = _policy_check(cf_pct, settings.rate_policy_percentile)
    effective_rate_flag = any(c.effective_rate_percentile > 90 for c in included)
    if effective_rate_flag:
        flags.append(Flag.FMV_RISK)
        key_messages.append(f"{specialty}: effective rate above the market 90th percentile for "
                            f"some providers; review FMV.")
    if any(c.off_scale for c in included):
        flags.append(Flag.OFF_SCALE)
    outlier_reasons = {ExclusionReason.OUTLIER_PRODUCTIVITY, ExclusionReason.OUTLIER_PAY,
                       ExclusionReason.OUTLIER_EFFECTIVE_RATE}
    if any(outlier_reasons.intersection(c.exclusion_reasons) for c in contexts):
        flags.append(Flag.OUTLIERS_EXCLUDED)
    if len(included) <= LOW_SAMPLE_THRESHOLD:
        flags.append(Flag.LOW_SAMPLE)
        key_messages.append(f"{specialty}: only {len(included)} included provider(s); treat "
                            f"the recommendation as directional.")

    high = medium = 0
    for c in after:
        gap = abs(c.modeled_pay_percentile - c.prod_percentile)
        if gap > HIGH_RISK_GAP or c.off_scale:
            high += 1
        elif gap > MEDIUM_RISK_GAP or c.prod_percentile < 25 or c.prod_percentile > 90:
            medium += 1

    # ── Governance and explanation ───────────────────────────────────────────
    status, constraints = evaluate_status(before, gov, change_pct)
    explanation = build_explanation(action, status, before, constraints, cur, recommended,
                                    len(included), gov, cf_pct, market_cf)

    logger.debug("%s: n=%d cur=%.4f optimal=%.4f rec=%.4f action=%s status=%s",
                 specialty, len(included), cur, final, recommended, action.value, status.value)

    return SpecialtyResult(
        specialty=specialty,
        specialty_key=normalize_specialty_key(specialty),
        included_count=len(included),
        excluded_count=len(contexts) - len(included),
        action=action,
        status=status,
        current_cf=cur,
        recommended_cf=recommended,
        optimal_cf=final,
        change_pct=change_pct,
        cf_min=lo,
        cf_max=hi,
        cf_percentile=cf_pct,
        market_cf=market_cf,
        engine_cf=engine_cf,
        manual_override=override,
        objective_value=best_err,
        candidates_evaluated=evaluated,
        pre_gap=before.gap,
        post_gap=mean_modeled_pct - before.prod_percentile,
        mae_before=mae_before,
        mae_after=mae_after,
        median_abs_error_after=float(np.median(post_errors)),
        key_metrics=before,
        spend_impact=spend,
        modeled_incentive_total=sum(c.modeled_incentive for c in after),
        policy_check=policy,
        effective_rate_flag=effective_rate_flag,
        increase_blocked=blocked,
        high_risk_count=high,
        medium_risk_count=medium,
        constraints=constraints,
        caps_applied=caps,
        flags=flags,
        notes=notes,
        key_messages=key_messages,
        explanation=explanation,
        provider_contexts=all_contexts,
    )


# ══════════════════════════════════════════════════════════════════════════════
# RATE SWEEP
# ══════════════════════════════════════════════════════════════════════════════
DEFAULT_SWEEP_PERCENTILES: Tuple[float, ...] = (25.0, 40.0, 50.0, 60.0, 75.0, 90.0)


def sweep_rates(benchmark: BenchmarkRow, contexts: Sequence[ProviderContext],
                settings: Settings,
                percentiles: Sequence[float] = DEFAULT_SWEEP_PERCENTILES) -> List[SweepPoint]:
    """
    Modeled outcome if the whole specialty moved to the CF at each market
    percentile. No search, no caps; a what-if table next to the recommendation.
    """
    included = [c for c in contexts if c.included]
    prod_mean = _mean([c.prod_percentile for c in included])
    baseline = sum(c.baseline_pay for c in included)
    points = []
    for p in percentiles:
        cf = value_at(p, benchmark.cf)
        pays = [modeled_pay(c, cf) for c in included]
        pay_mean = _mean([modeled_pay_percentile(c, cf, benchmark.tcc) for c in included])
        points.append(SweepPoint(
            specialty=benchmark.specialty,
            market_percentile=float(p),
            cf=cf,
            mean_pay_percentile=pay_mean,
            mean_prod_percentile=prod_mean,
            gap=pay_mean - prod_mean if included else 0.0,
            modeled_incentive=sum(modeled_incentive(c, cf) for c in included),
            spend_impact=sum(pays) - baseline,
        ))
    return points
