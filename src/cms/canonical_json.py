"""Deterministic JSON encoding and schema fingerprints."""

from __future__ import annotations

import hashlib
import json
import math
from typing import Any


class CanonicalJsonTypeError(TypeError):
    """Raised when a value has no canonical JSON form."""


def _check(value: Any, path: str = "$") -> None:
    if value is None or isinstance(value, (str, bool, int)):
        return
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"Non-finite float at {path}: {value!r}")
        return
    if isinstance(value, list):
        for idx, item in enumerate(value):
            _check(item, f"{path}[{idx}]")
        return
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise CanonicalJsonTypeError(f"Non-string key at {path}: {type(key).__name__}")
            _check(item, f"{path}.{key}")
        return
    raise CanonicalJsonTypeError(f"Unsupported type at {path}: {type(value).__name__}")


def canonical_dumps(value: Any) -> str:
    """Serialize ``value`` to canonical JSON.

    Keys are sorted at every level, list order is kept, non-ASCII text is
    written as-is and no whitespace is emitted. Values that JSON cannot carry
    (sets, dates, NaN) are rejected instead of being coerced.
    """
    _check(value)
    return json.dumps(value, sort_keys=True, ensure_ascii=False, separators=(",", ":"), allow_nan=False)


def schema_hash(definition: dict) -> str:
    """Fingerprint the user-editable part of a content type definition."""
    shape = {
        "name": definition.get("name"),
        "slug": definition.get("slug"),
        "fields": definition.get("fields") or [],
    }
    digest = hashlib.sha256(canonical_dumps(shape).encode("utf-8")).hexdigest()
    return f"sha256:{digest}"
