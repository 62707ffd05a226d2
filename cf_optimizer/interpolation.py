"""
Percentile Engine
Piecewise-linear interpolation between the 25th/50th/75th/90th market anchors.

Outside [p25, p90] the nearest segment's slope is extended rather than clamped,
so a result can fall below 0 or above 100. The boundary flags tell the caller
the value was off the survey scale.
"""

import math
from typing import NamedTuple, Sequence, Tuple

ANCHOR_PERCENTILES: Tuple[float, float, float, float] = (25.0, 50.0, 75.0, 90.0)


class PercentileResult(NamedTuple):
    percentile:  float
    below_range: bool
    above_range: bool


def _finite(value) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return 0.0
    return v if math.isfinite(v) else 0.0


# ══════════════════════════════════════════════════════════════════════════════
# VALUE → PERCENTILE
# ══════════════════════════════════════════════════════════════════════════════
def percentile_for(value: float, p25: float, p50: float, p75: float,
                   p90: float) -> PercentileResult:
    """
    Percentile of `value` against four market anchors.

    Flat segments never divide by zero: a value sitting on one returns the
    percentile at the start of that segment.
    """
    v = _finite(value)
    p25, p50, p75, p90 = _finite(p25), _finite(p50), _finite(p75), _finite(p90)

    if v < p25:
        span = p50 - p25
        if span <= 0:
            return PercentileResult(25.0, True, False)
        return PercentileResult(25.0 + (v - p25) / span * 25.0, True, False)

    if v > p90:
        span = p90 - p75
        if span <= 0:
            return PercentileResult(90.0, False, True)
        return PercentileResult(90.0 + (v - p90) / span * 15.0, False, True)

    anchors = (p25, p50, p75, p90)
    for i in range(3):
        lo_v, hi_v = anchors[i], anchors[i + 1]
        if v <= hi_v:
            lo_p, hi_p = ANCHOR_PERCENTILES[i], ANCHOR_PERCENTILES[i + 1]
            span = hi_v - lo_v
            if span <= 0:
                return PercentileResult(lo_p, False, False)
            return PercentileResult(lo_p + (v - lo_v) / span * (hi_p - lo_p), False, False)

    # only reachable with non-monotone anchors
    return PercentileResult(90.0, False, False)


def percentile_of(value: float, anchors: Sequence[float]) -> PercentileResult:
    """Convenience wrapper taking the four anchors as a sequence."""
    return percentile_for(value, anchors[0], anchors[1], anchors[2], anchors[3])


# ══════════════════════════════════════════════════════════════════════════════
# PERCENTILE → VALUE
# ══════════════════════════════════════════════════════════════════════════════
def value_at_percentile(p: float, p25: float, p50: float, p75: float,
                        p90: float) -> float:
    """
    Inverse of percentile_for. Exact on [25, 90]; outside it the boundary
    segment's slope (25-50 below, 75-90 above) is extended.
    """
    p = _finite(p)
    p25, p50, p75, p90 = _finite(p25), _finite(p50), _finite(p75), _finite(p90)

    if p < 25.0:
        return p25 - (25.0 - p) / 25.0 * (p50 - p25)
    if p > 90.0:
        return p90 + (p - 90.0) / 15.0 * (p90 - p75)

    anchors = (p25, p50, p75, p90)
    for i in range(3):
        lo_p, hi_p = ANCHOR_PERCENTILES[i], ANCHOR_PERCENTILES[i + 1]
        if p == hi_p:
            return anchors[i + 1]
        if p <= hi_p:
            frac = (p - lo_p) / (hi_p - lo_p)
            return anchors[i] + frac * (anchors[i + 1] - anchors[i])
    return p90


def value_at(p: float, anchors: Sequence[float]) -> float:
    return value_at_percentile(p, anchors[0], anchors[1], anchors[2], anchors[3])
