"""
Explanation Generator
Fixed message templates filled from the action, status, metrics and
constraints. No randomness: identical inputs give identical text.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .governance import KeyMetrics, Status
from .records import Anchors
from .settings import GovernanceConfig


@dataclass(frozen=True)
class Explanation:
    headline:   str
    reasons:    List[str] = field(default_factory=list)
    next_steps: List[str] = field(default_factory=list)


def fmt_rate(v: float) -> str:
    return f"${v:,.2f}"


def ordinal(v: float) -> str:
    r = int(round(v))
    if r % 100 in (11, 12, 13):
        return f"{r}th"
    suffix = {1: "st", 2: "nd", 3: "rd"}.get(abs(r) % 10, "th")
    return f"{r}{suffix}"


def _signed(v: float) -> str:
    return f"{'+' if v > 0 else ''}{round(v):.0f}"


def market_position(rate: float, cf: Anchors) -> str:
    if rate <= cf.p25:
        return f"below the 25th percentile ({fmt_rate(cf.p25)})"
    if rate <= cf.p50:
        return f"between the 25th ({fmt_rate(cf.p25)}) and median ({fmt_rate(cf.p50)})"
    if rate <= cf.p75:
        return f"between the median ({fmt_rate(cf.p50)}) and 75th ({fmt_rate(cf.p75)})"
    if rate <= cf.p90:
        return f"between the 75th ({fmt_rate(cf.p75)}) and 90th ({fmt_rate(cf.p90)})"
    return f"above the 90th percentile ({fmt_rate(cf.p90)})"


def build_explanation(action: str, status: Status, metrics: KeyMetrics,
                      constraints: Sequence[str], current_cf: float, recommended_cf: float,
                      included_count: int, governance: GovernanceConfig,
                      cf_percentile: Optional[float] = None,
                      market_cf: Optional[Anchors] = None) -> Explanation:
    action = getattr(action, "value", action)
    prod, pay, gap = metrics.prod_percentile, metrics.pay_percentile, metrics.gap
    delta = recommended_cf - current_cf
    change_pct = delta / current_cf * 100 if current_cf > 0 else 0.0
    hard_cap_hit = any(c.startswith("HARD_CAP") for c in constraints)
    aligned = abs(gap) <= governance.alignment_tolerance
    reasons: List[str] = []
    steps: List[str] = []

    if action == "NO_RECOMMENDATION":
        return Explanation(
            "No recommendation -- insufficient data for reliable analysis.",
            [f"Only {included_count} provider(s) had enough data to analyze.",
             "Ensure providers have valid clinical FTE, work RVUs, and matching market data."],
            ["Review excluded providers and fix missing data if possible."],
        )

    if action == "HOLD" and status is Status.RED and pay >= governance.fmv_red_flag_percentile:
        fmv = ordinal(governance.fmv_red_flag_percentile)
        return Explanation(
            f"Hold CF at {fmt_rate(recommended_cf)} -- compensation exceeds the {fmv} percentile, "
            f"flagging FMV risk.",
            [f"Compensation is at the {ordinal(pay)} percentile, above the {fmv} FMV threshold.",
             f"Productivity is at the {ordinal(prod)} percentile. The {_signed(gap)} percentile "
             f"gap indicates pay exceeds output.",
             "Raising CF would further increase overmarket pay without creating meaningful "
             "incentive leverage."],
            ["Investigate structural compensation issues (base salary, guaranteed payments).",
             "Consider holding or reducing base pay before adjusting CF."],
        )

    if action == "HOLD" and hard_cap_hit:
        cap = ordinal(governance.hard_cap_percentile)
        reasons = [
            f"Compensation is at the {ordinal(pay)} percentile, above the {cap} policy cap.",
            f"Productivity is at the {ordinal(prod)} percentile (gap: {_signed(gap)}).",
        ]
        if aligned:
            reasons.append("Pay and productivity are well-aligned, but compensation is already "
                           "above the target range.")
        else:
            reasons.append("Raising CF would increase overmarket pay and will not create "
                           "meaningful incentive leverage.")
        return Explanation(
            f"Hold CF at {fmt_rate(recommended_cf)} -- provider group already above the {cap} "
            f"percentile policy cap.",
            reasons,
            ["Review whether the policy cap should be adjusted for this specialty."],
        )

    if action == "HOLD":
        if aligned:
            reasons.append(f"Productivity ({ordinal(prod)}) and compensation ({ordinal(pay)}) "
                           f"percentiles are well-aligned.")
            reasons.append("No CF adjustment would meaningfully improve alignment.")
        else:
            reasons.append(f"Productivity is at the {ordinal(prod)} percentile; compensation is "
                           f"at the {ordinal(pay)} percentile.")
            reasons.append("The optimal CF change is too small to materially impact incentives "
                           "or alignment.")
            if gap > 0:
                reasons.append("Raising the conversion factor would add work RVU incentive "
                               "dollars and push the TCC percentile further above productivity.")
        if constraints:
            reasons.append(f"Constraints: {', '.join(constraints)}.")
        headline = f"Hold CF at {fmt_rate(recommended_cf)} -- no material change needed."
        return Explanation(headline, reasons, steps)

    def add_market_context():
        if cf_percentile is not None and market_cf is not None:
            reasons.append(f"Recommended CF of {fmt_rate(recommended_cf)} sits at the "
                           f"{ordinal(cf_percentile)} market percentile -- "
                           f"{market_position(recommended_cf, market_cf)}.")

    if action == "INCREASE":
        headline = (f"Increase CF from {fmt_rate(current_cf)} to {fmt_rate(recommended_cf)} "
                    f"(+{change_pct:.1f}%) to better align pay with productivity.")
        if gap > 0:
            reasons.append(f"Total compensation is at the {ordinal(pay)} percentile while "
                           f"productivity is at the {ordinal(prod)} percentile -- pay is above "
                           f"productivity on total comp.")
            reasons.append("The conversion factor is below market median, so the incentive piece "
                           "is underpowered. Increasing CF (up to the 50th percentile) shifts pay "
                           "toward wRVU incentive dollars.")
            if market_cf is not None and recommended_cf >= market_cf.p50 - 0.01:
                reasons.append(f"Recommended CF is capped at the market 50th percentile "
                               f"({fmt_rate(market_cf.p50)}) while pay is above productivity.")
        else:
            reasons.append(f"Productivity is at the {ordinal(prod)} percentile but compensation "
                           f"is only at the {ordinal(pay)} percentile -- this group is underpaid "
                           f"relative to output.")
            reasons.append(f"A {fmt_rate(abs(delta))} CF increase narrows the "
                           f"{abs(round(gap)):.0f} point gap.")
        add_market_context()
        if not hard_cap_hit:
            reasons.append(f"Recommended CF stays within the "
                           f"{ordinal(governance.hard_cap_percentile)} percentile policy cap.")
        if "MAX_CHANGE_BOUND" in constraints:
            reasons.append("CF change was capped by the maximum allowed adjustment bounds.")
            steps.append("Consider phased implementation over 2 cycles if a larger increase "
                         "is warranted.")
        steps.append("Review individual provider drilldown for outliers before finalizing.")
        return Explanation(headline, reasons, steps)

    headline = (f"Decrease CF from {fmt_rate(current_cf)} to {fmt_rate(recommended_cf)} "
                f"({change_pct:.1f}%) to bring pay closer to productivity alignment.")
    reasons.append(f"Compensation is at the {ordinal(pay)} percentile while productivity is at "
                   f"the {ordinal(prod)} percentile -- pay is above productivity relative to "
                   f"output.")
    reasons.append(f"A {fmt_rate(abs(delta))} CF decrease brings compensation closer to the "
                   f"productivity level.")
    add_market_context()
    if "MAX_CHANGE_BOUND" in constraints:
        reasons.append("CF change was capped by the maximum allowed adjustment bounds; full "
                       "alignment may require further adjustment.")
        steps.append("Consider phased implementation across multiple review cycles.")
    steps.append("Review individual provider drilldown and consult with division leadership.")
    return Explanation(headline, reasons, steps)
