"""
Input records: market benchmark rows and provider compensation records.

Also owns specialty-name matching (normalized keys + synonym map) and the
pandas adapters that turn imported tables into records. Optional provider
fields that arrive under several spellings are resolved once here, at
ingestion, into typed members of ProviderFlags.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional, Sequence, Tuple

import pandas as pd

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════════
# NUMERIC GUARDS
# ══════════════════════════════════════════════════════════════════════════════
def num(value: Any, default: float = 0.0) -> float:
    """Coerce to a finite float; None, NaN, inf and junk become `default`."""
    if value is None or isinstance(value, bool):
        return default if value is None else float(value)
    try:
        v = float(value)
    except (TypeError, ValueError):
        return default
    return v if math.isfinite(v) else default


def safe_div(numerator: float, denominator: float, default: float = 0.0) -> float:
    if denominator == 0 or not math.isfinite(denominator):
        return default
    result = numerator / denominator
    return result if math.isfinite(result) else default


def _opt(value: Any) -> Optional[float]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    v = num(value, default=float("nan"))
    return None if math.isnan(v) else v


# ══════════════════════════════════════════════════════════════════════════════
# BENCHMARKS
# ══════════════════════════════════════════════════════════════════════════════
class Anchors(NamedTuple):
    p25: float
    p50: float
    p75: float
    p90: float

    @property
    def is_finite(self) -> bool:
        return all(isinstance(v, (int, float)) and math.isfinite(v) for v in self)


@dataclass(frozen=True)
class BenchmarkRow:
    specialty:     str
    tcc:           Anchors
    wrvu:          Anchors
    cf:            Anchors
    provider_type: str = ""
    region:        str = ""

    def __post_init__(self):
        for name in ("tcc", "wrvu", "cf"):
            val = getattr(self, name)
            if not isinstance(val, Anchors):
                object.__setattr__(self, name, Anchors(*val))

    @property
    def is_valid(self) -> bool:
        return bool(self.specialty.strip()) and all(
            a.is_finite for a in (self.tcc, self.wrvu, self.cf))


# ══════════════════════════════════════════════════════════════════════════════
# PROVIDERS
# ══════════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class ProviderFlags:
    leave_of_absence: bool = False
    tenure_months:    Optional[float] = None


@dataclass(frozen=True)
class ProviderRecord:
    provider_id:   str
    specialty:     str
    provider_name: str = ""
    division:      str = ""

    # ── FTE ──────────────────────────────────────────────────────────────────
    total_fte:     float = 1.0
    clinical_fte:  float = 0.0
    admin_fte:     float = 0.0
    research_fte:  float = 0.0
    teaching_fte:  float = 0.0

    # ── Pay ──────────────────────────────────────────────────────────────────
    base_salary:         float = 0.0
    clinical_fte_salary: Optional[float] = None
    current_cf:          Optional[float] = None
    quality_payments:    float = 0.0
    other_incentives:    float = 0.0
    stipend:             float = 0.0

    # ── Productivity ─────────────────────────────────────────────────────────
    work_rvus:     float = 0.0
    outside_wrvus: float = 0.0
    total_wrvus:   Optional[float] = None

    flags:         ProviderFlags = field(default_factory=ProviderFlags)
    layer_values:  Mapping[str, float] = field(default_factory=dict)


# ══════════════════════════════════════════════════════════════════════════════
# SPECIALTY MATCHING
# ══════════════════════════════════════════════════════════════════════════════
class MatchStatus(str, Enum):
    EXACT      = "exact"
    NORMALIZED = "normalized"
    SYNONYM    = "synonym"
    MISSING    = "missing"


_PUNCT = re.compile(r"[^\w\s]")
_SPACES = re.compile(r"\s+")


def normalize_specialty_key(name: Any) -> str:
    """'Cardiology - Invasive ' → 'cardiology invasive'"""
    text = str(name or "").strip().lower()
    text = _PUNCT.sub(" ", text).replace("_", " ")
    return _SPACES.sub(" ", text).strip()


class SpecialtyMatcher:
    """
    Resolves provider specialty text to a benchmark row.

    Synonyms are looked up by raw text first, then by normalized key, and map to
    benchmark specialty text. Benchmark rows are keyed by normalized name; the
    first valid row for a key wins.
    """

    def __init__(self, benchmarks: Iterable[BenchmarkRow],
                 synonyms: Optional[Mapping[str, str]] = None):
        self.rows: Dict[str, BenchmarkRow] = {}
        self.invalid: List[str] = []
        for row in benchmarks:
            if not row.is_valid:
                self.invalid.append(row.specialty)
                continue
            self.rows.setdefault(normalize_specialty_key(row.specialty), row)
        if self.invalid:
            logger.warning("Ignoring %d benchmark row(s) with missing anchors: %s",
                           len(self.invalid), ", ".join(self.invalid))

        self._raw_syn: Dict[str, str] = {}
        self._norm_syn: Dict[str, str] = {}
        for src, dst in (synonyms or {}).items():
            self._raw_syn[str(src).strip()] = dst
            self._norm_syn.setdefault(normalize_specialty_key(src), dst)

    @property
    def keys(self) -> List[str]:
        return list(self.rows)

    def match(self, specialty: str) -> Tuple[Optional[BenchmarkRow], MatchStatus]:
        raw = str(specialty or "").strip()
        key = normalize_specialty_key(raw)

        target = self._raw_syn.get(raw) or self._norm_syn.get(key)
        if target is not None:
            row = self.rows.get(normalize_specialty_key(target))
            if row is not None:
                return row, MatchStatus.SYNONYM

        row = self.rows.get(key)
        if row is None:
            return None, MatchStatus.MISSING
        if row.specialty.strip() == raw:
            return row, MatchStatus.EXACT
        return row, MatchStatus.NORMALIZED


# ══════════════════════════════════════════════════════════════════════════════
# INGESTION
# ══════════════════════════════════════════════════════════════════════════════
# Accepted spellings per field, first hit wins.
PROVIDER_ALIASES: Dict[str, Sequence[str]] = {
    "provider_id":         ("provider_id", "providerId", "id", "employee_id"),
    "provider_name":       ("provider_name", "providerName", "name"),
    "specialty":           ("specialty", "Specialty"),
    "division":            ("division", "Division", "department"),
    "total_fte":           ("total_fte", "totalFTE", "fte", "tFTE"),
    "clinical_fte":        ("clinical_fte", "clinicalFTE", "cFTE"),
    "admin_fte":           ("admin_fte", "adminFTE"),
    "research_fte":        ("research_fte", "researchFTE"),
    "teaching_fte":        ("teaching_fte", "teachingFTE"),
    "base_salary":         ("base_salary", "baseSalary", "base_pay"),
    "clinical_fte_salary": ("clinical_fte_salary", "clinicalFTESalary"),
    "current_cf":          ("current_cf", "currentCF", "cf"),
    "quality_payments":    ("quality_payments", "qualityPayments", "currentTCC_QualityPayments"),
    "other_incentives":    ("other_incentives", "otherIncentives", "currentTCC_OtherIncentives"),
    "stipend":             ("stipend", "nonClinicalPay", "medical_director_stipend"),
    "work_rvus":           ("work_rvus", "workRVUs", "wrvus"),
    "outside_wrvus":       ("outside_wrvus", "outsideWRVUs"),
    "total_wrvus":         ("total_wrvus", "totalWRVUs"),
}
LOA_ALIASES = ("leave_of_absence", "leaveOfAbsence", "loa", "LOA")
TENURE_ALIASES = ("tenure_months", "tenureMonths", "months_since_hire")
_TRUTHY = {"yes", "y", "true", "1", "x"}


def _first(mapping: Mapping[str, Any], names: Sequence[str]) -> Any:
    for name in names:
        if name in mapping:
            value = mapping[name]
            if value is None or (isinstance(value, float) and math.isnan(value)):
                continue
            return value
    return None


def _truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return num(value) != 0
    return str(value or "").strip().lower() in _TRUTHY


def provider_from_mapping(row: Mapping[str, Any],
                          layer_fields: Iterable[str] = ()) -> ProviderRecord:
    """
    Build a ProviderRecord from a loosely-keyed mapping (a spreadsheet row).
    Missing numbers default to 0; `layer_fields` names columns captured into
    layer_values for FROM_FILE pay layers.
    """
    def get(name):
        return _first(row, PROVIDER_ALIASES[name])

    tenure = _first(row, TENURE_ALIASES)
    flags = ProviderFlags(
        leave_of_absence=_truthy(_first(row, LOA_ALIASES)),
        tenure_months=_opt(tenure),
    )
    layers = {name: num(row.get(name)) for name in layer_fields if name in row}

    total_fte = _opt(get("total_fte"))
    return ProviderRecord(
        provider_id=str(get("provider_id") or "").strip(),
        specialty=str(get("specialty") or "").strip(),
        provider_name=str(get("provider_name") or "").strip(),
        division=str(get("division") or "").strip(),
        total_fte=1.0 if total_fte is None else total_fte,
        clinical_fte=num(get("clinical_fte")),
        admin_fte=num(get("admin_fte")),
        research_fte=num(get("research_fte")),
        teaching_fte=num(get("teaching_fte")),
        base_salary=num(get("base_salary")),
        clinical_fte_salary=_opt(get("clinical_fte_salary")),
        current_cf=_opt(get("current_cf")),
        quality_payments=num(get("quality_payments")),
        other_incentives=num(get("other_incentives")),
        stipend=num(get("stipend")),
        work_rvus=num(get("work_rvus")),
        outside_wrvus=num(get("outside_wrvus")),
        total_wrvus=_opt(get("total_wrvus")),
        flags=flags,
        layer_values=layers,
    )


def providers_from_frame(df: pd.DataFrame,
                         layer_fields: Iterable[str] = ()) -> List[ProviderRecord]:
    layer_fields = tuple(layer_fields)
    records = [provider_from_mapping(row, layer_fields)
               for row in df.to_dict(orient="records")]
    missing_ids = sum(1 for r in records if not r.provider_id)
    if missing_ids:
        logger.warning("%d provider row(s) have no provider id", missing_ids)
    return records


BENCHMARK_COLUMNS = {
    "tcc":  ("tcc_p25", "tcc_p50", "tcc_p75", "tcc_p90"),
    "wrvu": ("wrvu_p25", "wrvu_p50", "wrvu_p75", "wrvu_p90"),
    "cf":   ("cf_p25", "cf_p50", "cf_p75", "cf_p90"),
}


def benchmarks_from_frame(df: pd.DataFrame) -> List[BenchmarkRow]:
    """
    One BenchmarkRow per table row. Expects a `specialty` column plus
    tcc_/wrvu_/cf_ p25..p90 columns. Blank anchors become NaN and leave the
    row invalid (never matched).
    """
    missing = [c for cols in BENCHMARK_COLUMNS.values() for c in cols if c not in df.columns]
    if "specialty" not in df.columns:
        missing.insert(0, "specialty")
    if missing:
        raise KeyError(f"benchmark table is missing columns: {missing}")

    rows = []
    for rec in df.to_dict(orient="records"):
        anchors = {
            metric: Anchors(*(num(rec.get(c), default=float("nan")) for c in cols))
            for metric, cols in BENCHMARK_COLUMNS.items()
        }
        rows.append(BenchmarkRow(
            specialty=str(_first(rec, ("specialty",)) or "").strip(),
            provider_type=str(_first(rec, ("provider_type",)) or "").strip(),
            region=str(_first(rec, ("region",)) or "").strip(),
            **anchors,
        ))
    return rows
