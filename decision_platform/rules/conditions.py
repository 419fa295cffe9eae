"""
Condition evaluation for rule matching.

Evaluates leaf comparisons and AND/OR compounds against a nested input
mapping. Evaluation never raises: malformed nodes, unknown operators,
type mismatches and invalid patterns all resolve to "no match".
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping
from enum import Enum
from functools import lru_cache
from typing import Any, Callable

from decision_platform.exceptions import ConditionError
from .schemas import CompoundCondition, Condition, LeafCondition

MAX_CONDITION_DEPTH = 32


class _Missing:
    """Sentinel for a field path that does not resolve."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


class ComparisonOp(str, Enum):
    """Operators available to leaf conditions."""

    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NIN = "nin"
    EXISTS = "exists"
    REGEX = "regex"


class LogicalOp(str, Enum):
    """Operators available to compound conditions."""

    AND = "AND"
    OR = "OR"


# =============================================================================
# Field Resolution
# =============================================================================


def resolve_field(payload: Any, path: str) -> Any:
    """Resolve a dot-separated path, returning MISSING when any segment is absent."""
    current = payload
    for segment in path.split("."):
        if not isinstance(current, Mapping) or segment not in current:
            return MISSING
        current = current[segment]
    return current


# =============================================================================
# Operator Implementations
# =============================================================================


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _strict_equal(actual: Any, expected: Any) -> bool:
    """Equality that never treats booleans as numbers."""
    if actual is MISSING or expected is MISSING:
        return False
    if isinstance(actual, bool) != isinstance(expected, bool):
        return False
    return actual == expected


def _ordered(actual: Any, expected: Any) -> bool:
    """Whether two operands can be ordered against each other."""
    if _is_number(actual) and _is_number(expected):
        return True
    return isinstance(actual, str) and isinstance(expected, str)


def _as_text(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern)


def _eval_eq(actual: Any, expected: Any) -> bool:
    """Evaluate strict equality."""
    return _strict_equal(actual, expected)


def _eval_neq(actual: Any, expected: Any) -> bool:
    """Evaluate strict inequality."""
    return not _strict_equal(actual, expected)


def _eval_gt(actual: Any, expected: Any) -> bool:
    """Evaluate greater-than check."""
    return _ordered(actual, expected) and actual > expected


def _eval_gte(actual: Any, expected: Any) -> bool:
    """Evaluate greater-than-or-equal check."""
    return _ordered(actual, expected) and actual >= expected


def _eval_lt(actual: Any, expected: Any) -> bool:
    """Evaluate less-than check."""
    return _ordered(actual, expected) and actual < expected


def _eval_lte(actual: Any, expected: Any) -> bool:
    """Evaluate less-than-or-equal check."""
    return _ordered(actual, expected) and actual <= expected


def _eval_in(actual: Any, expected: Any) -> bool:
    """Evaluate membership in a list operand."""
    if not isinstance(expected, (list, tuple)):
        return False
    return any(_strict_equal(actual, item) for item in expected)


def _eval_nin(actual: Any, expected: Any) -> bool:
    """Evaluate non-membership in a list operand."""
    if not isinstance(expected, (list, tuple)):
        return False
    return not any(_strict_equal(actual, item) for item in expected)


def _eval_exists(actual: Any, expected: Any) -> bool:
    """Evaluate presence (``value: true``) or absence (``value: false``)."""
    present = actual is not MISSING and actual is not None
    return present if expected is True else not present


def _eval_regex(actual: Any, expected: Any) -> bool:
    """Search the string form of the value for a pattern."""
    if actual is MISSING or not isinstance(expected, str):
        return False
    try:
        return _compile(expected).search(_as_text(actual)) is not None
    except re.error:
        return False


OPERATORS: dict[ComparisonOp, Callable[[Any, Any], bool]] = {
    ComparisonOp.EQ: _eval_eq,
    ComparisonOp.NEQ: _eval_neq,
    ComparisonOp.GT: _eval_gt,
    ComparisonOp.GTE: _eval_gte,
    ComparisonOp.LT: _eval_lt,
    ComparisonOp.LTE: _eval_lte,
    ComparisonOp.IN: _eval_in,
    ComparisonOp.NIN: _eval_nin,
    ComparisonOp.EXISTS: _eval_exists,
    ComparisonOp.REGEX: _eval_regex,
}

assert set(OPERATORS) == set(ComparisonOp), "every operator needs a comparator"


def lookup_operator(name: Any) -> Callable[[Any, Any], bool] | None:
    """Return the comparator registered for an operator name, if any."""
    try:
        return OPERATORS[ComparisonOp(name)]
    except ValueError:
        return None


# =============================================================================
# Evaluation
# =============================================================================


def evaluate_condition(
    condition: Condition,
    payload: Any,
    max_depth: int = MAX_CONDITION_DEPTH,
) -> bool:
    """Evaluate a condition tree against an input.

    Args:
        condition: Root of the condition tree
        payload: Input structure the field paths resolve against
        max_depth: Nesting level beyond which a node is treated as no match

    Returns:
        True if the condition matches
    """
    return _evaluate(condition, payload, 1, max_depth)


def _evaluate(condition: Any, payload: Any, depth: int, max_depth: int) -> bool:
    if depth > max_depth:
        return False

    if isinstance(condition, CompoundCondition):
        if not isinstance(condition.operands, (list, tuple)):
            return False
        if condition.operator == LogicalOp.AND.value:
            return all(
                _evaluate(operand, payload, depth + 1, max_depth)
                for operand in condition.operands
            )
        if condition.operator == LogicalOp.OR.value:
            return any(
                _evaluate(operand, payload, depth + 1, max_depth)
                for operand in condition.operands
            )
        return False

    if isinstance(condition, LeafCondition):
        return _evaluate_leaf(condition, payload)

    return False


def _evaluate_leaf(condition: LeafCondition, payload: Any) -> bool:
    if not isinstance(condition.field, str):
        return False
    comparator = lookup_operator(condition.op)
    if comparator is None:
        return False
    try:
        return bool(comparator(resolve_field(payload, condition.field), condition.value))
    except Exception:
        return False


# =============================================================================
# Parsing
# =============================================================================


def parse_condition(data: Any, max_depth: int = MAX_CONDITION_DEPTH) -> Condition:
    """Parse a condition document into a condition tree.

    A mapping with an ``operator`` key is a compound; any other mapping is a
    leaf. Nested operands that are not mappings become leaves that never
    match.

    Raises:
        ConditionError: If the root is not a mapping or the tree is nested
            deeper than ``max_depth``.
    """
    if not isinstance(data, Mapping):
        raise ConditionError(f"Condition must be a mapping, got {type(data).__name__}")
    return _parse_node(data, 1, max_depth)


def _parse_node(data: Any, depth: int, max_depth: int) -> Condition:
    if depth > max_depth:
        raise ConditionError(f"Condition nesting exceeds maximum depth of {max_depth}")

    if not isinstance(data, Mapping):
        return LeafCondition()

    if data.get("operator"):
        operands = data.get("operands")
        if not isinstance(operands, (list, tuple)):
            return CompoundCondition(operator=str(data["operator"]), operands=None)
        return CompoundCondition(
            operator=str(data["operator"]),
            operands=tuple(_parse_node(item, depth + 1, max_depth) for item in operands),
        )

    field = data.get("field")
    op = data.get("op")
    return LeafCondition(
        field=field if isinstance(field, str) else None,
        op=op if isinstance(op, str) else None,
        value=data.get("value"),
    )


def iter_leaves(condition: Condition) -> Iterator[LeafCondition]:
    """Yield every leaf of a condition tree in document order."""
    if isinstance(condition, LeafCondition):
        yield condition
        return
    for operand in condition.operands or ():
        yield from iter_leaves(operand)


def find_unknown_operators(condition: Condition) -> list[str]:
    """List operator names in a tree that have no registered comparator."""
    unknown = []
    for leaf in iter_leaves(condition):
        if lookup_operator(leaf.op) is None:
            unknown.append(str(leaf.op))
    return unknown
