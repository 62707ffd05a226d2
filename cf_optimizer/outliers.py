"""
Outlier Detector
Flags extreme values by IQR fences or by robust (MAD) z-score.

The contract is "which indices are outliers"; deciding what to drop belongs to
the caller (see normalization.apply_outlier_exclusions).
"""

from typing import List, Sequence

import numpy as np

from .settings import OutlierMethod

MIN_SAMPLE = 4
MAD_SCALE = 0.6745
# mean absolute deviation -> sigma for a normal distribution (sqrt(pi/2))
MEAN_AD_SCALE = 1.253314


def _median(sorted_vals: np.ndarray) -> float:
    return float(np.median(sorted_vals)) if sorted_vals.size else 0.0


def quartiles(values: Sequence[float]) -> tuple:
    """
    Q1/Q3 by the median-of-halves (Tukey hinge) method.
    For an odd count the median is part of both halves.
    """
    arr = np.sort(np.asarray(values, dtype=float))
    n = arr.size
    half = (n + 1) // 2
    lower = arr[:half]
    upper = arr[n - half:]
    return _median(lower), _median(upper)


def _iqr_flags(arr: np.ndarray, k: float) -> np.ndarray:
    q1, q3 = quartiles(arr)
    iqr = q3 - q1
    lo, hi = q1 - k * iqr, q3 + k * iqr
    return (arr < lo) | (arr > hi)


def _mad_flags(arr: np.ndarray, threshold: float) -> np.ndarray:
    med = float(np.median(arr))
    dev = np.abs(arr - med)
    mad = float(np.median(dev))
    if mad > 0:
        z = MAD_SCALE * (arr - med) / mad
    else:
        mean_ad = float(np.mean(dev))
        if mean_ad <= 0:
            return np.zeros(arr.size, dtype=bool)
        z = (arr - med) / (MEAN_AD_SCALE * mean_ad)
    return np.abs(z) > threshold


def detect_outliers(values: Sequence[float],
                    method: OutlierMethod = OutlierMethod.MAD_Z,
                    iqr_k: float = 1.5,
                    mad_z_threshold: float = 3.5) -> List[bool]:
    """
    Returns one boolean per input value.

    Fewer than 4 finite values → nothing flagged. Non-finite entries are left
    out of the statistics and never flagged.
    """
    raw = np.asarray([np.nan if v is None else v for v in values], dtype=float)
    flags = np.zeros(raw.size, dtype=bool)
    finite = np.isfinite(raw)
    arr = raw[finite]
    if arr.size < MIN_SAMPLE:
        return flags.tolist()

    method = OutlierMethod(method)
    if method is OutlierMethod.IQR:
        sub = _iqr_flags(arr, iqr_k)
    else:
        sub = _mad_flags(arr, mad_z_threshold)
    flags[finite] = sub
    return flags.tolist()


def outlier_indices(values: Sequence[float],
                    method: OutlierMethod = OutlierMethod.MAD_Z,
                    iqr_k: float = 1.5,
                    mad_z_threshold: float = 3.5) -> List[int]:
    flags = detect_outliers(values, method, iqr_k, mad_z_threshold)
    return [i for i, f in enumerate(flags) if f]
