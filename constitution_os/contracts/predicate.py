"""
Predicate DSL as a closed set of node variants.

Raw article predicates are JSON-ish mappings keyed by ``op``. ``parse_predicate``
turns them into the variants below and never raises: anything it cannot read
(absent node, non-object, unknown op, ``all``/``any`` without a list) becomes a
``NoMatch`` carrying the reason, which evaluates to false.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Optional, Tuple, Union


class _Undefined:
    """Marker for an unresolved path or an absent literal value (distinct from JSON null)."""

    _instance: Optional["_Undefined"] = None

    def __new__(cls) -> "_Undefined":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNDEFINED"

    def __bool__(self) -> bool:
        return False


UNDEFINED = _Undefined()

COMPARISON_OPS = frozenset({"eq", "neq", "gt", "gte", "lt", "lte", "in", "contains"})


@dataclass(frozen=True)
class Exists:
    path: Any


@dataclass(frozen=True)
class Not:
    child: "PredicateNode"


@dataclass(frozen=True)
class AllOf:
    children: Tuple["PredicateNode", ...]


@dataclass(frozen=True)
class AnyOf:
    children: Tuple["PredicateNode", ...]


@dataclass(frozen=True)
class Comparison:
    op: str
    path: Any
    value: Any = UNDEFINED
    value_path: Optional[str] = None


@dataclass(frozen=True)
class NoMatch:
    reason: str


PredicateNode = Union[Exists, Not, AllOf, AnyOf, Comparison, NoMatch]

_VARIANTS = (Exists, Not, AllOf, AnyOf, Comparison, NoMatch)


def parse_predicate(raw: Any) -> PredicateNode:
    if isinstance(raw, _VARIANTS):
        return raw
    if raw is None:
        return NoMatch("predicate missing")
    if not isinstance(raw, Mapping):
        return NoMatch(f"predicate must be an object, got {type(raw).__name__}")

    op = raw.get("op")
    if not isinstance(op, str):
        return NoMatch(f"op must be a string, got {type(op).__name__}")
    if op == "exists":
        return Exists(path=raw.get("path"))
    if op == "not":
        return Not(child=parse_predicate(raw.get("predicate")))
    if op in ("all", "any"):
        children = raw.get("predicates")
        if not isinstance(children, list):
            return NoMatch(f"{op} requires a predicates list")
        parsed = tuple(parse_predicate(c) for c in children)
        return AllOf(parsed) if op == "all" else AnyOf(parsed)
    if op in COMPARISON_OPS:
        value_path = raw.get("value_path")
        return Comparison(
            op=op,
            path=raw.get("path"),
            value=raw.get("value", UNDEFINED),
            value_path=str(value_path) if value_path else None,
        )
    return NoMatch(f"unknown op {op!r}")


def node_op(raw: Any) -> Optional[str]:
    """Top-level ``op`` of a raw predicate, for evidence records."""
    if isinstance(raw, Mapping):
        op = raw.get("op")
        return op if isinstance(op, str) and op else None
    return None
