"""Condition evaluation: one attribute-operator-value test.

Evaluation never raises. A missing attribute fails every operator except
``is_not_set``; a negated operator holds only when the attribute is
present and its positive form fails; operands of the wrong type fail.
"""

from __future__ import annotations

import functools
import logging
import re
from collections.abc import Sequence

from flaps.models.context import AttributeValue, EvaluationContext
from flaps.models.rule import NEGATIONS, NUMERIC_OPERATORS, Condition, Operator

log = logging.getLogger(__name__)

REGEX_CACHE_SIZE = 1024


@functools.lru_cache(maxsize=REGEX_CACHE_SIZE)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a regex once per process; raises re.error on bad patterns."""
    return re.compile(pattern)


def _is_number(value: AttributeValue | None) -> bool:
    return isinstance(value, float)


def _equals(actual: AttributeValue, expected: AttributeValue | None) -> bool:
    # type() rather than isinstance(): True must never equal 1.0
    return type(actual) is type(expected) and actual == expected


def _compare(op: Operator, actual: AttributeValue, expected: AttributeValue | None) -> bool:
    if not (_is_number(actual) and _is_number(expected)):
        return False
    if op == Operator.GREATER_THAN:
        return actual > expected  # type: ignore[operator]
    if op == Operator.LESS_THAN:
        return actual < expected  # type: ignore[operator]
    if op == Operator.GREATER_OR_EQUAL:
        return actual >= expected  # type: ignore[operator]
    return actual <= expected  # type: ignore[operator]


def _contains(actual: AttributeValue, expected: AttributeValue | None) -> bool:
    if not isinstance(expected, str):
        return False
    if isinstance(actual, str):
        return expected in actual
    if isinstance(actual, frozenset):
        return expected in actual
    return False


def _member_of(actual: AttributeValue, expected: AttributeValue | None) -> bool:
    return isinstance(actual, str) and isinstance(expected, frozenset) and actual in expected


def _matches(actual: AttributeValue, expected: AttributeValue | None) -> bool:
    if not (isinstance(actual, str) and isinstance(expected, str)):
        return False
    try:
        pattern = compile_pattern(expected)
    except re.error:
        log.debug("condition.bad_regex pattern=%r", expected)
        return False
    return pattern.search(actual) is not None


def _positive(op: Operator, actual: AttributeValue, expected: AttributeValue | None) -> bool:
    if op == Operator.EQUALS:
        return _equals(actual, expected)
    if op in NUMERIC_OPERATORS:
        return _compare(op, actual, expected)
    if op == Operator.CONTAINS:
        return _contains(actual, expected)
    if op == Operator.IN:
        return _member_of(actual, expected)
    if op == Operator.STARTS_WITH:
        return isinstance(actual, str) and isinstance(expected, str) and actual.startswith(expected)
    if op == Operator.ENDS_WITH:
        return isinstance(actual, str) and isinstance(expected, str) and actual.endswith(expected)
    if op == Operator.MATCHES_REGEX:
        return _matches(actual, expected)
    return False


def evaluate_condition(condition: Condition, context: EvaluationContext) -> bool:
    """Evaluate ``condition`` against the same-named context attribute."""
    op = condition.operator
    present = condition.attribute in context.attributes

    if op == Operator.IS_SET:
        return present
    if op == Operator.IS_NOT_SET:
        return not present
    if not present:
        return False

    actual = context.attributes[condition.attribute]
    positive = NEGATIONS.get(op)
    if positive is not None:
        return not _positive(positive, actual, condition.value)
    return _positive(op, actual, condition.value)


def evaluate_all(conditions: Sequence[Condition], context: EvaluationContext) -> bool:
    """AND of ``conditions``; an empty list holds."""
    return all(evaluate_condition(c, context) for c in conditions)
