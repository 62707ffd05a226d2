"""
Canonical JSON and SHA-256 hashing for the run audit record.

Identical inputs give byte-identical JSON and therefore identical hashes:
- dict keys sorted recursively
- floats in a fixed-precision, non-scientific form
- NaN / Inf rejected
- list order preserved (callers order semantic lists)
"""

import hashlib
import json
import math
from dataclasses import fields, is_dataclass
from enum import Enum
from typing import Any, Mapping

FLOAT_PRECISION = 10


def to_jsonable(obj: Any) -> Any:
    """Dataclasses, NamedTuples, enums, sets and mappings → plain JSON types."""
    if isinstance(obj, Enum):
        return obj.value
    if is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: to_jsonable(getattr(obj, f.name)) for f in fields(obj)}
    if isinstance(obj, tuple) and hasattr(obj, "_asdict"):
        return {k: to_jsonable(v) for k, v in obj._asdict().items()}
    if isinstance(obj, Mapping):
        return {str(k): to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (set, frozenset)):
        return sorted(to_jsonable(v) for v in obj)
    if isinstance(obj, (list, tuple)):
        return [to_jsonable(v) for v in obj]
    if hasattr(obj, "item") and callable(obj.item):
        # numpy scalar
        return obj.item()
    return obj


def _canonical(obj: Any, nan_as_null: bool = False) -> Any:
    if isinstance(obj, dict):
        return {k: _canonical(v, nan_as_null) for k, v in sorted(obj.items())}
    if isinstance(obj, (list, tuple)):
        return [_canonical(v, nan_as_null) for v in obj]
    if isinstance(obj, bool) or obj is None or isinstance(obj, (int, str)):
        return obj
    if isinstance(obj, float):
        if math.isnan(obj) or math.isinf(obj):
            if nan_as_null:
                return None
            raise ValueError("NaN/Infinity values are not allowed in canonical JSON")
        if obj == 0.0:
            return 0
        if obj == int(obj) and abs(obj) < 2 ** 53:
            return int(obj)
        return float(f"{obj:.{FLOAT_PRECISION}f}")
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonical_dumps(obj: Any, indent: Any = None, nan_as_null: bool = False) -> str:
    """
    Canonical JSON text. Non-finite floats raise ValueError unless
    `nan_as_null`, which writes them as null (used for raw input records).
    """
    canonical = _canonical(to_jsonable(obj), nan_as_null)
    separators = (",", ":") if indent is None else (",", ": ")
    return json.dumps(canonical, indent=indent, separators=separators,
                      ensure_ascii=False, allow_nan=False)


def hash_canonical_json(obj: Any, nan_as_null: bool = False) -> str:
    """Lowercase SHA-256 hex digest of the canonical JSON form."""
    text = canonical_dumps(obj, nan_as_null=nan_as_null)
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_canonical_json_short(obj: Any, length: int = 16) -> str:
    return hash_canonical_json(obj)[:length]
