"""
Optimizer configuration.

One immutable Settings value is built per run and never changed while the run
is in progress. Each section is its own frozen dataclass with defaults, and
string values are coerced to the matching enum member. A bad value raises
ConfigurationError at construction, before any computation starts.

Every *_pct field is in percent units (0.5 means 0.5%).
"""

from dataclasses import dataclass, field, fields, is_dataclass, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional, Tuple


class ConfigurationError(ValueError):
    """Raised for settings that cannot produce a meaningful run."""


# ══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ══════════════════════════════════════════════════════════════════════════════
class BenchmarkBasis(str, Enum):
    PER_CFTE = "per_cfte"     # divide by clinical FTE
    PER_TFTE = "per_tfte"     # divide by total FTE
    RAW      = "raw"          # no normalization, diagnostics only


class ObjectiveKind(str, Enum):
    ALIGN        = "align_percentile"
    TARGET_FIXED = "target_fixed_percentile"
    HYBRID       = "hybrid"


class ErrorMetric(str, Enum):
    SQUARED  = "squared"
    ABSOLUTE = "absolute"


class OutlierMethod(str, Enum):
    IQR   = "iqr"
    MAD_Z = "mad_z"


class QualitySource(str, Enum):
    FROM_FILE    = "from_file"
    OVERRIDE_PCT = "override_pct_of_base"


class LayerType(str, Enum):
    PERCENT_OF_BASE = "percent_of_base"
    DOLLAR_PER_FTE  = "dollar_per_1p0_fte"
    FLAT_DOLLAR     = "flat_dollar"
    FROM_FILE       = "from_file"


def _coerce(enum_cls, value, label: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ConfigurationError(f"{label}: {value!r} is not one of ({allowed})") from None


def _ids(values: Optional[Iterable]) -> FrozenSet[str]:
    if values is None:
        return frozenset()
    if isinstance(values, str):
        values = [values]
    return frozenset(str(v).strip() for v in values if str(v).strip())


def _require_pct(value: float, label: str, upper: Optional[float] = 100.0):
    if value < 0 or (upper is not None and value > upper):
        bound = f"[0, {upper:g}]" if upper is not None else ">= 0"
        raise ConfigurationError(f"{label} must be {bound}, got {value}")


# ══════════════════════════════════════════════════════════════════════════════
# SECTIONS
# ══════════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class Objective:
    kind:              ObjectiveKind = ObjectiveKind.ALIGN
    target_percentile: float = 50.0
    # hybrid weights; they sum to 1 by convention only
    align_weight:      float = 0.5
    target_weight:     float = 0.5

    def __post_init__(self):
        object.__setattr__(self, "kind", _coerce(ObjectiveKind, self.kind, "objective.kind"))
        if self.align_weight < 0 or self.target_weight < 0:
            raise ConfigurationError("objective weights must be non-negative")


@dataclass(frozen=True)
class ComponentToggle:
    include:           bool = False
    normalize_for_fte: bool = False   # from-file amount is per 1.0 FTE, scale by cFTE


@dataclass(frozen=True)
class PayLayer:
    """A custom TCC layer added on top of the fixed pay components."""
    name:              str
    layer_type:        LayerType = LayerType.FLAT_DOLLAR
    value:             float = 0.0
    field_name:        Optional[str] = None   # FROM_FILE layers only
    normalize_for_fte: bool = False

    def __post_init__(self):
        object.__setattr__(self, "layer_type",
                           _coerce(LayerType, self.layer_type, f"layer {self.name!r}"))
        if self.layer_type is LayerType.FROM_FILE and not self.field_name:
            raise ConfigurationError(f"layer {self.name!r}: from_file layers need field_name")


@dataclass(frozen=True)
class PayComponents:
    # ── Baseline TCC composition (clinical base is always included) ─────────
    quality:                ComponentToggle = field(default_factory=ComponentToggle)
    quality_source:         QualitySource = QualitySource.FROM_FILE
    quality_override_pct:   float = 0.0
    productivity_incentive: ComponentToggle = field(
        default_factory=lambda: ComponentToggle(include=True))
    other_incentives:       ComponentToggle = field(default_factory=ComponentToggle)
    stipend:                ComponentToggle = field(default_factory=ComponentToggle)
    psq_percent:            float = 0.0
    layers:                 Tuple[PayLayer, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "quality_source",
                           _coerce(QualitySource, self.quality_source, "quality_source"))
        object.__setattr__(self, "layers", tuple(self.layers))
        _require_pct(self.quality_override_pct, "quality_override_pct", upper=None)
        _require_pct(self.psq_percent, "psq_percent", upper=None)


@dataclass(frozen=True)
class RateBounds:
    min_change_pct: float = 30.0
    max_change_pct: float = 30.0
    absolute_min:   Optional[float] = None
    absolute_max:   Optional[float] = None

    def __post_init__(self):
        if self.min_change_pct < 0 or self.max_change_pct < 0:
            raise ConfigurationError("rate change bounds must be non-negative")
        if self.min_change_pct > 100:
            raise ConfigurationError("min_change_pct above 100 would allow a negative rate")
        if (self.absolute_min is not None and self.absolute_max is not None
                and self.absolute_min > self.absolute_max):
            raise ConfigurationError(
                f"absolute_min {self.absolute_min} exceeds absolute_max {self.absolute_max}")
        if self.absolute_min is not None and self.absolute_min < 0:
            raise ConfigurationError("absolute_min must be non-negative")
        if self.absolute_max is not None and self.absolute_max < 0:
            raise ConfigurationError("absolute_max must be non-negative")


@dataclass(frozen=True)
class ExclusionRules:
    min_basis_fte:            float = 0.5
    min_wrvu_per_1p0_fte:     float = 1000.0
    exclude_leave_of_absence: bool  = True
    new_hire_months:          Optional[float] = None   # None disables the rule
    manual_exclude:           FrozenSet[str] = frozenset()
    manual_include:           FrozenSet[str] = frozenset()

    def __post_init__(self):
        object.__setattr__(self, "manual_exclude", _ids(self.manual_exclude))
        object.__setattr__(self, "manual_include", _ids(self.manual_include))
        if self.min_basis_fte < 0 or self.min_wrvu_per_1p0_fte < 0:
            raise ConfigurationError("exclusion minimums must be non-negative")


@dataclass(frozen=True)
class OutlierParams:
    method:           OutlierMethod = OutlierMethod.MAD_Z
    iqr_k:            float = 1.5
    mad_z_threshold:  float = 3.5
    exclude_outliers: bool  = False

    def __post_init__(self):
        object.__setattr__(self, "method", _coerce(OutlierMethod, self.method, "outliers.method"))
        if self.iqr_k <= 0 or self.mad_z_threshold <= 0:
            raise ConfigurationError("outlier thresholds must be positive")


@dataclass(frozen=True)
class GovernanceConfig:
    hard_cap_percentile:     float = 50.0
    soft_cap_percentile:     float = 60.0
    fmv_red_flag_percentile: float = 75.0
    alignment_tolerance:     float = 3.0    # |gap| at or under this counts as aligned
    red_gap:                 float = 10.0
    yellow_gap:              float = 5.0
    large_change_pct:        float = 30.0

    def __post_init__(self):
        for name in ("hard_cap_percentile", "soft_cap_percentile", "fmv_red_flag_percentile"):
            _require_pct(getattr(self, name), name)
        if self.yellow_gap > self.red_gap:
            raise ConfigurationError("yellow_gap cannot exceed red_gap")


# ══════════════════════════════════════════════════════════════════════════════
# SETTINGS
# ══════════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class Settings:
    basis:        BenchmarkBasis   = BenchmarkBasis.PER_CFTE
    components:   PayComponents    = field(default_factory=PayComponents)
    objective:    Objective        = field(default_factory=Objective)
    error_metric: ErrorMetric      = ErrorMetric.SQUARED
    bounds:       RateBounds       = field(default_factory=RateBounds)
    exclusions:   ExclusionRules   = field(default_factory=ExclusionRules)
    outliers:     OutlierParams    = field(default_factory=OutlierParams)
    governance:   GovernanceConfig = field(default_factory=GovernanceConfig)

    # ── Solver ───────────────────────────────────────────────────────────────
    grid_step_pct:              float = 0.5
    min_meaningful_change_pct:  float = 1.0
    max_recommended_percentile: float = 50.0
    rate_policy_percentile:     float = 50.0
    productivity_growth_pct:    float = 0.0

    def __post_init__(self):
        object.__setattr__(self, "basis", _coerce(BenchmarkBasis, self.basis, "basis"))
        object.__setattr__(self, "error_metric",
                           _coerce(ErrorMetric, self.error_metric, "error_metric"))
        if self.grid_step_pct < 0:
            raise ConfigurationError("grid_step_pct must be non-negative")
        _require_pct(self.min_meaningful_change_pct, "min_meaningful_change_pct", upper=None)
        _require_pct(self.max_recommended_percentile, "max_recommended_percentile")
        _require_pct(self.rate_policy_percentile, "rate_policy_percentile")
        if self.productivity_growth_pct <= -100:
            raise ConfigurationError("productivity_growth_pct must be above -100")

    @property
    def growth_factor(self) -> float:
        return 1.0 + self.productivity_growth_pct / 100.0

    def with_changes(self, **changes) -> "Settings":
        """Copy with fields replaced; the copy is validated like a fresh one."""
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return _plain(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        return _build(cls, data)


# ── dict conversion ──────────────────────────────────────────────────────────
_NESTED = {
    (Settings, "components"):      PayComponents,
    (Settings, "objective"):       Objective,
    (Settings, "bounds"):          RateBounds,
    (Settings, "exclusions"):      ExclusionRules,
    (Settings, "outliers"):        OutlierParams,
    (Settings, "governance"):      GovernanceConfig,
    (PayComponents, "quality"):                ComponentToggle,
    (PayComponents, "productivity_incentive"): ComponentToggle,
    (PayComponents, "other_incentives"):       ComponentToggle,
    (PayComponents, "stipend"):                ComponentToggle,
}


def _plain(obj: Any) -> Any:
    if is_dataclass(obj):
        return {f.name: _plain(getattr(obj, f.name)) for f in fields(obj)}
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, frozenset):
        return sorted(obj)
    if isinstance(obj, (list, tuple)):
        return [_plain(v) for v in obj]
    return obj


def _build(cls, data: Dict[str, Any]):
    if data is None:
        return cls()
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ConfigurationError(f"{cls.__name__}: unknown keys {sorted(unknown)}")
    kwargs = {}
    for name, value in data.items():
        sub = _NESTED.get((cls, name))
        if sub is not None and isinstance(value, dict):
            value = _build(sub, value)
        elif cls is PayComponents and name == "layers":
            value = tuple(PayLayer(**v) if isinstance(v, dict) else v for v in value)
        kwargs[name] = value
    return cls(**kwargs)


DEFAULT_SETTINGS = Settings()
