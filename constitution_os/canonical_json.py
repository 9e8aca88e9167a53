from __future__ import annotations

import json
import math
from decimal import Decimal
from typing import Any, Dict, List, Tuple


class CanonicalJSONError(ValueError):
    pass


def _parse_no_duplicate_keys(pairs: List[Tuple[str, Any]]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for k, v in pairs:
        if k in out:
            raise CanonicalJSONError(f"duplicate key detected: {k!r}")
        out[k] = v
    return out


def loads_strict_no_duplicates(s: str) -> Any:
    """
    Strict JSON parse that fails on duplicate keys.
    Used when reading persisted audit bundles back for verification.
    """
    return json.loads(s, object_pairs_hook=_parse_no_duplicate_keys)


def _normalize_for_canonical(obj: Any) -> Any:
    """
    Normative:
    - float allowed only when finite (NaN/Infinity fail-closed)
    - int, str, bool, None OK
    - Decimal serialized deterministically -> string
    - dict keys MUST be str
    - list/tuple/dict recurse (tuple becomes array)
    """
    if isinstance(obj, float):
        if not math.isfinite(obj):
            raise CanonicalJSONError("non-finite float is forbidden (fail-closed)")
        return obj
    if isinstance(obj, Decimal):
        return format(obj, "f")
    if obj is None or isinstance(obj, (bool, int, str)):
        return obj
    if isinstance(obj, (list, tuple)):
        return [_normalize_for_canonical(x) for x in obj]
    if isinstance(obj, dict):
        out: Dict[str, Any] = {}
        for k, v in obj.items():
            if not isinstance(k, str):
                raise CanonicalJSONError("dict keys must be strings")
            out[k] = _normalize_for_canonical(v)
        return out
    raise CanonicalJSONError(f"unsupported type: {type(obj).__name__}")


def canonical_json(obj: Any) -> str:
    """
    Stable serialization of a logical value:
    - object keys sorted lexicographically
    - arrays keep their order
    - separators=(",", ":"), ensure_ascii=False, allow_nan=False

    Two mappings with the same key/value sets serialize identically no matter
    the insertion order.
    """
    normalized = _normalize_for_canonical(obj)
    return json.dumps(
        normalized,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        indent=None,
        allow_nan=False,
    )


def canonical_json_bytes(obj: Any) -> bytes:
    return canonical_json(obj).encode("utf-8")
