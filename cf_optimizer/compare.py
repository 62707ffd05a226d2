"""
Run Comparison
Side-by-side view of two finished runs: what changed in the assumptions,
how the roll-up moved, and a by-specialty table of rates and spend.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .orchestrator import RunResult
from .optimizer import SpecialtyResult
from .records import safe_div

logger = logging.getLogger(__name__)

PERCENTILE_NOTE_THRESHOLD = 0.5


# ══════════════════════════════════════════════════════════════════════════════
# RESULT TYPES
# ══════════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class AssumptionsDiff:
    growth_pct_a:           float
    growth_pct_b:           float
    objective_a:            Dict
    objective_b:            Dict
    governance_a:           Dict
    governance_b:           Dict
    providers_included_a:   int
    providers_included_b:   int
    providers_excluded_a:   int
    providers_excluded_b:   int
    manual_exclude_count_a: int
    manual_exclude_count_b: int
    manual_include_count_a: int
    manual_include_count_b: int
    specialty_filter_a:     Optional[str] = None
    specialty_filter_b:     Optional[str] = None
    changed_settings:       List[str] = field(default_factory=list)   # dotted keys


@dataclass(frozen=True)
class RollupComparison:
    total_spend_impact_a:      float
    total_spend_impact_b:      float
    delta_spend_impact:        float
    delta_spend_impact_pct:    Optional[float]   # None when A's impact is zero
    total_incentive_a:         float
    total_incentive_b:         float
    delta_incentive:           float
    mean_pay_percentile_a:     float
    mean_pay_percentile_b:     float
    mean_prod_percentile_a:    float
    mean_prod_percentile_b:    float
    count_cf_above_policy_a:   int
    count_cf_above_policy_b:   int
    count_effective_rate_flagged_a: int
    count_effective_rate_flagged_b: int
    count_not_converged_a:     int
    count_not_converged_b:     int


@dataclass(frozen=True)
class SpecialtyComparison:
    specialty:              str
    presence:               str              # "both" | "a_only" | "b_only"
    recommended_cf_a:       Optional[float]
    recommended_cf_b:       Optional[float]
    delta_cf_pct:           Optional[float]
    spend_impact_a:         Optional[float]
    spend_impact_b:         Optional[float]
    delta_spend_impact:     Optional[float]
    mean_pay_percentile_a:  Optional[float]
    mean_pay_percentile_b:  Optional[float]
    mean_prod_percentile_a: Optional[float]
    mean_prod_percentile_b: Optional[float]


@dataclass(frozen=True)
class RunComparison:
    assumptions:  AssumptionsDiff
    rollup:       RollupComparison
    by_specialty: List[SpecialtyComparison]
    narrative:    List[str]


# ══════════════════════════════════════════════════════════════════════════════
# ASSUMPTIONS
# ══════════════════════════════════════════════════════════════════════════════
def _flatten(data: Any, prefix: str = "") -> Dict[str, Any]:
    if not isinstance(data, dict):
        return {prefix: data}
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        flat.update(_flatten(value, f"{prefix}.{key}" if prefix else str(key)))
    return flat


def _changed_settings(a: Dict, b: Dict) -> List[str]:
    flat_a, flat_b = _flatten(a), _flatten(b)
    return sorted(k for k in set(flat_a) | set(flat_b) if flat_a.get(k) != flat_b.get(k))


def _assumptions(a: RunResult, b: RunResult) -> AssumptionsDiff:
    sa, sb = a.audit.settings, b.audit.settings
    return AssumptionsDiff(
        growth_pct_a=sa.get("productivity_growth_pct", 0.0),
        growth_pct_b=sb.get("productivity_growth_pct", 0.0),
        objective_a=sa.get("objective", {}),
        objective_b=sb.get("objective", {}),
        governance_a=sa.get("governance", {}),
        governance_b=sb.get("governance", {}),
        providers_included_a=a.summary.providers_included,
        providers_included_b=b.summary.providers_included,
        providers_excluded_a=a.summary.providers_excluded,
        providers_excluded_b=b.summary.providers_excluded,
        manual_exclude_count_a=len(sa.get("exclusions", {}).get("manual_exclude", [])),
        manual_exclude_count_b=len(sb.get("exclusions", {}).get("manual_exclude", [])),
        manual_include_count_a=len(sa.get("exclusions", {}).get("manual_include", [])),
        manual_include_count_b=len(sb.get("exclusions", {}).get("manual_include", [])),
        specialty_filter_a=a.audit.specialty_filter,
        specialty_filter_b=b.audit.specialty_filter,
        changed_settings=_changed_settings(sa, sb),
    )


# ══════════════════════════════════════════════════════════════════════════════
# ROLL-UP
# ══════════════════════════════════════════════════════════════════════════════
def _mean_percentiles(result: RunResult):
    """(pay, productivity) averaged over specialties that had providers to solve."""
    rows = [r for r in result.specialties if r.included_count > 0]
    if not rows:
        return 0.0, 0.0
    pay = sum(r.key_metrics.pay_percentile for r in rows) / len(rows)
    prod = sum(r.key_metrics.prod_percentile for r in rows) / len(rows)
    return pay, prod


def _rollup(a: RunResult, b: RunResult) -> RollupComparison:
    sa, sb = a.summary, b.summary
    delta = sb.total_spend_impact - sa.total_spend_impact
    delta_pct = (delta / abs(sa.total_spend_impact) * 100
                 if sa.total_spend_impact != 0 else None)
    pay_a, prod_a = _mean_percentiles(a)
    pay_b, prod_b = _mean_percentiles(b)
    return RollupComparison(
        total_spend_impact_a=sa.total_spend_impact,
        total_spend_impact_b=sb.total_spend_impact,
        delta_spend_impact=delta,
        delta_spend_impact_pct=delta_pct,
        total_incentive_a=sa.total_modeled_incentive,
        total_incentive_b=sb.total_modeled_incentive,
        delta_incentive=sb.total_modeled_incentive - sa.total_modeled_incentive,
        mean_pay_percentile_a=pay_a,
        mean_pay_percentile_b=pay_b,
        mean_prod_percentile_a=prod_a,
        mean_prod_percentile_b=prod_b,
        count_cf_above_policy_a=sa.count_cf_above_policy,
        count_cf_above_policy_b=sb.count_cf_above_policy,
        count_effective_rate_flagged_a=sa.count_effective_rate_flagged,
        count_effective_rate_flagged_b=sb.count_effective_rate_flagged,
        count_not_converged_a=sa.count_not_converged,
        count_not_converged_b=sb.count_not_converged,
    )


# ══════════════════════════════════════════════════════════════════════════════
# BY SPECIALTY
# ══════════════════════════════════════════════════════════════════════════════
def _specialty_row(ra: Optional[SpecialtyResult],
                   rb: Optional[SpecialtyResult]) -> SpecialtyComparison:
    name = ra.specialty if ra is not None else rb.specialty
    if ra is not None and rb is not None:
        presence = "both"
    else:
        presence = "a_only" if ra is not None else "b_only"

    cf_a = ra.recommended_cf if ra is not None else None
    cf_b = rb.recommended_cf if rb is not None else None
    delta_cf_pct = None
    if cf_a is not None and cf_b is not None and cf_a != 0:
        delta_cf_pct = safe_div(cf_b - cf_a, cf_a) * 100

    spend_a = ra.spend_impact if ra is not None else None
    spend_b = rb.spend_impact if rb is not None else None
    delta_spend = spend_b - spend_a if spend_a is not None and spend_b is not None else None

    return SpecialtyComparison(
        specialty=name,
        presence=presence,
        recommended_cf_a=cf_a,
        recommended_cf_b=cf_b,
        delta_cf_pct=delta_cf_pct,
        spend_impact_a=spend_a,
        spend_impact_b=spend_b,
        delta_spend_impact=delta_spend,
        mean_pay_percentile_a=ra.key_metrics.pay_percentile if ra is not None else None,
        mean_pay_percentile_b=rb.key_metrics.pay_percentile if rb is not None else None,
        mean_prod_percentile_a=ra.key_metrics.prod_percentile if ra is not None else None,
        mean_prod_percentile_b=rb.key_metrics.prod_percentile if rb is not None else None,
    )


def _by_specialty(a: RunResult, b: RunResult) -> List[SpecialtyComparison]:
    rows_a = {r.specialty_key: r for r in a.specialties}
    rows_b = {r.specialty_key: r for r in b.specialties}
    rows = [_specialty_row(rows_a.get(k), rows_b.get(k)) for k in set(rows_a) | set(rows_b)]
    return sorted(rows, key=lambda r: r.specialty.lower())


# ══════════════════════════════════════════════════════════════════════════════
# NARRATIVE
# ══════════════════════════════════════════════════════════════════════════════
def _narrative(name_a: str, name_b: str, assumptions: AssumptionsDiff,
               rollup: RollupComparison) -> List[str]:
    parts: List[str] = []

    delta = rollup.delta_spend_impact
    if delta != 0:
        direction = "increases" if delta > 0 else "reduces"
        pct = ""
        if rollup.delta_spend_impact_pct is not None:
            pct = f" ({rollup.delta_spend_impact_pct:+.1f}% vs {name_a})"
        parts.append(f"{name_b} {direction} total modeled spend by ${abs(delta):,.0f} "
                     f"compared to {name_a}{pct}.")
    else:
        parts.append("Total modeled spend is the same in both runs.")

    prod_diff = rollup.mean_prod_percentile_b - rollup.mean_prod_percentile_a
    pay_diff = rollup.mean_pay_percentile_b - rollup.mean_pay_percentile_a
    notes = []
    if abs(prod_diff) > PERCENTILE_NOTE_THRESHOLD:
        notes.append(f"Mean productivity percentile is {rollup.mean_prod_percentile_b:.1f} in "
                     f"{name_b} vs {rollup.mean_prod_percentile_a:.1f} in {name_a}.")
    if abs(pay_diff) > PERCENTILE_NOTE_THRESHOLD:
        notes.append(f"Mean pay percentile is {rollup.mean_pay_percentile_b:.1f} in "
                     f"{name_b} vs {rollup.mean_pay_percentile_a:.1f} in {name_a}.")
    if notes:
        parts.append(" ".join(["Pay vs productivity positioning differs between runs."] + notes))

    if (rollup.count_cf_above_policy_a != rollup.count_cf_above_policy_b
            or rollup.count_effective_rate_flagged_a != rollup.count_effective_rate_flagged_b):
        parts.append(f"Governance: CF above policy in {name_a} {rollup.count_cf_above_policy_a}, "
                     f"{name_b} {rollup.count_cf_above_policy_b}. Effective rate flagged in "
                     f"{name_a} {rollup.count_effective_rate_flagged_a}, "
                     f"{name_b} {rollup.count_effective_rate_flagged_b}.")

    if (assumptions.providers_included_a != assumptions.providers_included_b
            or assumptions.providers_excluded_a != assumptions.providers_excluded_b):
        parts.append(f"Scope differs: {name_a} included {assumptions.providers_included_a} "
                     f"provider(s) ({assumptions.providers_excluded_a} excluded); {name_b} "
                     f"included {assumptions.providers_included_b} "
                     f"({assumptions.providers_excluded_b} excluded).")
    return parts


def compare_runs(a: RunResult, b: RunResult) -> RunComparison:
    """
    Compare run B against run A. Deltas are B minus A. Runs are labelled by
    their scenario names, falling back to "Run A" and "Run B".
    """
    name_a = a.audit.scenario_name or "Run A"
    name_b = b.audit.scenario_name or "Run B"
    assumptions = _assumptions(a, b)
    rollup = _rollup(a, b)
    by_specialty = _by_specialty(a, b)
    logger.debug("Compared %s vs %s: %d specialty row(s), %d changed setting(s)",
                 name_a, name_b, len(by_specialty), len(assumptions.changed_settings))
    return RunComparison(assumptions, rollup, by_specialty,
                         _narrative(name_a, name_b, assumptions, rollup))
