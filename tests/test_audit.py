"""
Tests for canonical JSON serialization and hashing.

- Key sorting (recursive)
- Float normalization
- NaN/Infinity rejection, or null with nan_as_null
- List order preserved
"""

import json

import pytest

from cf_optimizer.audit import (canonical_dumps, hash_canonical_json, hash_canonical_json_short,
                                to_jsonable)
from cf_optimizer.optimizer import Action
from cf_optimizer.records import Anchors
from cf_optimizer.settings import Settings


class TestCanonicalDumps:

    def test_keys_sorted_recursively(self):
        text = canonical_dumps({"b": {"z": 1, "a": 2}, "a": 0})
        assert text == '{"a":0,"b":{"a":2,"z":1}}'

    def test_list_order_preserved(self):
        assert canonical_dumps([3, 1, 2]) == "[3,1,2]"

    def test_float_normalization(self):
        """Integral floats and ints hash identically; tiny noise is rounded away."""
        assert canonical_dumps({"x": 50.0}) == canonical_dumps({"x": 50})
        assert canonical_dumps(0.1 + 0.2) == canonical_dumps(0.3)
        assert canonical_dumps(-0.0) == "0"

    @pytest.mark.parametrize("bad", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_rejected(self, bad):
        with pytest.raises(ValueError):
            canonical_dumps({"x": bad})

    def test_nan_as_null(self):
        assert canonical_dumps({"x": float("nan")}, nan_as_null=True) == '{"x":null}'

    def test_unknown_types_rejected(self):
        with pytest.raises(TypeError):
            canonical_dumps({"x": object()})

    def test_output_is_valid_json(self):
        data = {"name": "Cardiología", "n": [1, 2.5, None, True]}
        assert json.loads(canonical_dumps(data, indent=2)) == data


class TestToJsonable:

    def test_enums_namedtuples_sets(self):
        out = to_jsonable({"a": Action.HOLD, "cf": Anchors(1, 2, 3, 4), "ids": {"b", "a"}})
        assert out == {"a": "HOLD", "cf": {"p25": 1, "p50": 2, "p75": 3, "p90": 4},
                       "ids": ["a", "b"]}

    def test_dataclass(self):
        assert to_jsonable(Settings()) == Settings().to_dict()


class TestHashing:

    def test_stable_across_key_order(self):
        assert hash_canonical_json({"a": 1, "b": 2}) == hash_canonical_json({"b": 2, "a": 1})

    def test_sha256_hex(self):
        digest = hash_canonical_json({"a": 1})
        assert len(digest) == 64
        assert digest == digest.lower()
        assert hash_canonical_json_short({"a": 1}) == digest[:16]

    def test_changes_with_content(self):
        assert hash_canonical_json({"a": 1}) != hash_canonical_json({"a": 2})
