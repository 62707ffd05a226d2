"""
Tabular views of a RunResult for export layers and notebooks.
"""

from typing import List

import pandas as pd

from .compare import RunComparison
from .optimizer import SweepPoint
from .orchestrator import RunResult
from .productivity_target import SpecialtyTargets


def specialty_frame(result: RunResult) -> pd.DataFrame:
    """One row per specialty, in run order."""
    rows = []
    for r in result.specialties:
        rows.append({
            "Specialty":        r.specialty,
            "Included":         r.included_count,
            "Excluded":         r.excluded_count,
            "Current CF":       r.current_cf,
            "Recommended CF":   r.recommended_cf,
            "Change %":         r.change_pct,
            "CF Percentile":    r.cf_percentile,
            "Action":           r.action.value,
            "Status":           r.status.value,
            "Pre Gap":          r.pre_gap,
            "Post Gap":         r.post_gap,
            "MAE Before":       r.mae_before,
            "MAE After":        r.mae_after,
            "Spend Impact":     r.spend_impact,
            "Policy Check":     r.policy_check.value,
            "High Risk":        r.high_risk_count,
            "Medium Risk":      r.medium_risk_count,
            "Constraints":      ", ".join(r.constraints),
            "Caps Applied":     ", ".join(r.caps_applied),
            "Flags":            ", ".join(f.value for f in r.flags),
            "Headline":         r.explanation.headline if r.explanation else "",
        })
    return pd.DataFrame(rows)


def provider_frame(result: RunResult) -> pd.DataFrame:
    """Provider drill-down across all solved specialties."""
    rows = []
    for r in result.specialties:
        for c in r.provider_contexts:
            rows.append({
                "Specialty":         r.specialty,
                "Provider ID":       c.provider_id,
                "Provider":          c.record.provider_name,
                "Included":          c.included,
                "Basis FTE":         c.basis_fte,
                "Baseline TCC":      c.baseline_pay,
                "TCC per 1.0 FTE":   c.baseline_pay_1p0,
                "wRVU per 1.0 FTE":  c.productivity_1p0,
                "TCC Percentile":    c.pay_percentile,
                "wRVU Percentile":   c.prod_percentile,
                "Modeled TCC":       c.modeled_pay,
                "Modeled Percentile": c.modeled_pay_percentile,
                "Exclusion Reasons": ", ".join(x.value for x in c.exclusion_reasons),
            })
    return pd.DataFrame(rows)


def exclusion_frame(result: RunResult) -> pd.DataFrame:
    rows = [{
        "Provider ID": e["provider_id"],
        "Specialty":   e["specialty"],
        "Reasons":     ", ".join(e["reasons"]),
        "Included Anyway": e["included_anyway"],
    } for e in result.audit.excluded_providers]
    return pd.DataFrame(rows, columns=["Provider ID", "Specialty", "Reasons", "Included Anyway"])


def sweep_frame(points: List[SweepPoint]) -> pd.DataFrame:
    return pd.DataFrame([{
        "Specialty":         p.specialty,
        "Market Percentile": p.market_percentile,
        "CF":                p.cf,
        "Mean TCC Pctile":   p.mean_pay_percentile,
        "Mean wRVU Pctile":  p.mean_prod_percentile,
        "Gap":               p.gap,
        "Incentive $":       p.modeled_incentive,
        "Spend Impact":      p.spend_impact,
    } for p in points])


def target_frame(summaries: List[SpecialtyTargets]) -> pd.DataFrame:
    return pd.DataFrame([{
        "Specialty":         s.specialty,
        "Provider ID":       t.provider_id,
        "cFTE":              t.clinical_fte,
        "Target wRVUs":      t.target_wrvus,
        "Actual wRVUs":      t.actual_wrvus,
        "% to Target":       t.percent_to_target,
        "Status":            t.status.value,
        "Planning Incentive": t.planning_incentive,
    } for s in summaries for t in s.providers])


def comparison_frame(comparison: RunComparison) -> pd.DataFrame:
    """By-specialty rows of a run comparison; B minus A deltas."""
    return pd.DataFrame([{
        "Specialty":          r.specialty,
        "Presence":           r.presence,
        "CF A":               r.recommended_cf_a,
        "CF B":               r.recommended_cf_b,
        "CF Change %":        r.delta_cf_pct,
        "Spend Impact A":     r.spend_impact_a,
        "Spend Impact B":     r.spend_impact_b,
        "Spend Delta":        r.delta_spend_impact,
        "TCC Pctile A":       r.mean_pay_percentile_a,
        "TCC Pctile B":       r.mean_pay_percentile_b,
        "wRVU Pctile A":      r.mean_prod_percentile_a,
        "wRVU Pctile B":      r.mean_prod_percentile_b,
    } for r in comparison.by_specialty])
