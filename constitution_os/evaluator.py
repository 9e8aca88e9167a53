"""
Predicate evaluation for constitution articles.

Fail-closed rule: a node that is absent, not an object, carries an unknown op,
or is otherwise malformed evaluates to False and never raises. Article authors
get PASS/WARN instead of a crash; the trade-off is that a broken rule looks
exactly like a rule that did not trigger. The parse error is kept in the
article evidence so audit review can tell the two apart.
"""

from __future__ import annotations

import logging
import math
import operator
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, Union

from .contracts.models import Article, Event
from .contracts.predicate import (
    UNDEFINED,
    AllOf,
    AnyOf,
    Comparison,
    Exists,
    NoMatch,
    Not,
    PredicateNode,
    node_op,
    parse_predicate,
)
from .contracts.status import Outcome, PredicateKind

logger = logging.getLogger(__name__)

_ORDERING = {
    "gt": operator.gt,
    "gte": operator.ge,
    "lt": operator.lt,
    "lte": operator.le,
}


@dataclass(frozen=True)
class ArticleEvaluation:
    result: Outcome
    evidence: Dict[str, Any] = field(default_factory=dict)


def get_value(context: Any, path: Any) -> Any:
    """
    Resolve a dotted path. Returns UNDEFINED the moment a traversed level is
    absent; a JSON null part-way down counts as absent, a null leaf does not.
    """
    if not path:
        return UNDEFINED
    cursor = context
    for key in str(path).split("."):
        if cursor is None or cursor is UNDEFINED:
            return UNDEFINED
        if isinstance(cursor, Mapping):
            cursor = cursor.get(key, UNDEFINED)
        elif isinstance(cursor, list) and key.isdigit():
            idx = int(key)
            cursor = cursor[idx] if idx < len(cursor) else UNDEFINED
        else:
            return UNDEFINED
    return cursor


def _same_value(left: Any, right: Any) -> bool:
    # exact equality: no numeric coercion, booleans never equal numbers
    if left is UNDEFINED or right is UNDEFINED:
        return left is right
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left is right
    return left == right


def _to_number(value: Any) -> float:
    if value is UNDEFINED:
        return math.nan
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            return float(text)
        except ValueError:
            return math.nan
    return math.nan


def _needle(value: Any) -> Union[str, None]:
    if value is UNDEFINED or value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _compare(node: Comparison, context: Any) -> bool:
    left = get_value(context, node.path)
    right = get_value(context, node.value_path) if node.value_path else node.value
    op = node.op

    if op == "eq":
        return _same_value(left, right)
    if op == "neq":
        return not _same_value(left, right)
    if op in _ORDERING:
        return _ORDERING[op](_to_number(left), _to_number(right))
    if op == "in":
        return isinstance(right, list) and any(_same_value(left, item) for item in right)
    if op == "contains":
        if isinstance(left, str):
            needle = _needle(right)
            return needle is not None and needle.lower() in left.lower()
        if isinstance(left, list):
            return any(_same_value(item, right) for item in left)
        return False
    return False


def _eval(node: PredicateNode, context: Any) -> bool:
    if isinstance(node, Exists):
        return get_value(context, node.path) is not UNDEFINED
    if isinstance(node, Not):
        return not _eval(node.child, context)
    if isinstance(node, AllOf):
        return all(_eval(child, context) for child in node.children)
    if isinstance(node, AnyOf):
        return any(_eval(child, context) for child in node.children)
    if isinstance(node, Comparison):
        return _compare(node, context)
    # NoMatch
    return False


def evaluate(node: Any, context: Any) -> bool:
    """Evaluate a raw or parsed predicate against a nested mapping."""
    return _eval(parse_predicate(node), context)


def evaluate_article(article: Union[Article, Mapping], event: Union[Event, Mapping]) -> ArticleEvaluation:
    if not isinstance(article, Article):
        article = Article.model_validate(article)
    context = event.snapshot() if isinstance(event, Event) else event

    predicate_kind = article.predicate_kind
    parsed = parse_predicate(article.predicate)
    matched = _eval(parsed, context)
    violation = (not matched) if predicate_kind == PredicateKind.COMPLIANT_IF_TRUE else matched

    mode = article.enforcement.mode
    result = Outcome.PASS
    if violation:
        result = Outcome.WARN if mode == "log" else Outcome.FAIL

    evidence: Dict[str, Any] = {
        "predicate_kind": predicate_kind.value,
        "predicate_op": node_op(article.predicate),
        "predicate_matched": matched,
        "violation": violation,
        "enforcement_mode": mode or "log",
    }
    if isinstance(parsed, NoMatch):
        evidence["predicate_error"] = parsed.reason
        logger.debug(
            "article predicate unreadable; treated as no-match",
            extra={"context": {"article_id": article.id, "reason": parsed.reason}},
        )
    return ArticleEvaluation(result=result, evidence=evidence)
