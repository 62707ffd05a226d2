"""
Governance Evaluator
Traffic-light status and constraint codes from a specialty's aggregate metrics.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Sequence, Tuple

from .normalization import ProviderContext
from .settings import GovernanceConfig


class Status(str, Enum):
    GREEN  = "GREEN"
    YELLOW = "YELLOW"
    RED    = "RED"


_RANK = {Status.GREEN: 0, Status.YELLOW: 1, Status.RED: 2}


def escalate(current: Status, new: Status) -> Status:
    return new if _RANK[new] > _RANK[current] else current


@dataclass(frozen=True)
class KeyMetrics:
    prod_percentile:  float = 0.0
    pay_percentile:   float = 0.0
    gap:              float = 0.0   # pay − productivity
    pay_1p0:          float = 0.0
    productivity_1p0: float = 0.0


def specialty_key_metrics(included: Sequence[ProviderContext]) -> KeyMetrics:
    """Means over included providers at their baseline pay."""
    n = len(included)
    if n == 0:
        return KeyMetrics()
    prod = sum(c.prod_percentile for c in included) / n
    pay = sum(c.pay_percentile for c in included) / n
    return KeyMetrics(
        prod_percentile=prod,
        pay_percentile=pay,
        gap=pay - prod,
        pay_1p0=sum(c.baseline_pay_1p0 for c in included) / n,
        productivity_1p0=sum(c.productivity_1p0 for c in included) / n,
    )


def _fmt(p: float) -> str:
    return f"{p:g}"


def evaluate_status(metrics: KeyMetrics, governance: GovernanceConfig,
                    change_pct: float = 0.0) -> Tuple[Status, List[str]]:
    """
    Cumulative rule cascade. Every applicable constraint is recorded and the
    status only escalates within one evaluation.
    """
    status = Status.GREEN
    constraints: List[str] = []
    pay = metrics.pay_percentile
    gap = metrics.gap

    if pay >= governance.fmv_red_flag_percentile:
        status = Status.RED
        constraints.append(f"FMV_OVER_{_fmt(governance.fmv_red_flag_percentile)}")

    if gap >= governance.red_gap:
        status = Status.RED
        constraints.append(f"GAP_OVER_{_fmt(governance.red_gap)}")

    if pay > governance.hard_cap_percentile:
        status = escalate(status, Status.YELLOW)
        constraints.append(f"HARD_CAP_{_fmt(governance.hard_cap_percentile)}")

    if governance.hard_cap_percentile < pay <= governance.soft_cap_percentile:
        status = escalate(status, Status.YELLOW)
        constraints.append(f"SOFT_CAP_{_fmt(governance.soft_cap_percentile)}")

    if governance.yellow_gap <= gap < governance.red_gap and status is Status.GREEN:
        status = Status.YELLOW
        constraints.append(f"GAP_{_fmt(governance.yellow_gap)}_TO_{_fmt(governance.red_gap)}")

    if abs(change_pct) >= governance.large_change_pct:
        constraints.append("MAX_CHANGE_BOUND")

    return status, constraints
