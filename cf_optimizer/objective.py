"""
Objective / error functions scored for every grid candidate.
"""

from typing import Iterable, Sequence

from .interpolation import percentile_for
from .normalization import ProviderContext, incentive_at_rate
from .records import Anchors, safe_div
from .settings import ErrorMetric, Objective, ObjectiveKind


def provider_error(pay_pct: float, prod_pct: float, objective: Objective) -> float:
    """Signed error for one provider; positive means pay sits above the goal."""
    if objective.kind is ObjectiveKind.ALIGN:
        return pay_pct - prod_pct
    if objective.kind is ObjectiveKind.TARGET_FIXED:
        return pay_pct - objective.target_percentile
    return (objective.align_weight * (pay_pct - prod_pct)
            + objective.target_weight * (pay_pct - objective.target_percentile))


def aggregate_error(errors: Iterable[float], metric: ErrorMetric) -> float:
    total, n = 0.0, 0
    squared = metric is ErrorMetric.SQUARED
    for e in errors:
        total += e * e if squared else abs(e)
        n += 1
    return total / n if n else 0.0


def modeled_incentive(ctx: ProviderContext, cf: float) -> float:
    return incentive_at_rate(ctx.clinical_base, ctx.productivity, cf)


def modeled_pay(ctx: ProviderContext, cf: float) -> float:
    """Raw TCC at rate `cf`: fixed pay plus the incentive priced at `cf`."""
    return ctx.fixed_pay + modeled_incentive(ctx, cf)


def modeled_pay_percentile(ctx: ProviderContext, cf: float, tcc: Anchors) -> float:
    pay_1p0 = safe_div(modeled_pay(ctx, cf), ctx.basis_fte)
    return percentile_for(pay_1p0, tcc.p25, tcc.p50, tcc.p75, tcc.p90).percentile


def evaluate_rate(cf: float, contexts: Sequence[ProviderContext], tcc: Anchors,
                  objective: Objective, metric: ErrorMetric) -> float:
    """Aggregate error at `cf` over `contexts`. Runs once per grid candidate."""
    p25, p50, p75, p90 = tcc
    squared = metric is ErrorMetric.SQUARED
    total = 0.0
    for ctx in contexts:
        pay = ctx.fixed_pay + incentive_at_rate(ctx.clinical_base, ctx.productivity, cf)
        pct = percentile_for(safe_div(pay, ctx.basis_fte), p25, p50, p75, p90).percentile
        err = provider_error(pct, ctx.prod_percentile, objective)
        total += err * err if squared else abs(err)
    return total / len(contexts) if contexts else 0.0
