"""Client-side filter evaluation.

Evaluates ad hoc ASTs, single-condition ``SimpleFilter`` values and
validated ``StructuredFilterExpression`` models against task records
(plain mappings). Evaluation never raises because of the shape of a
record: operator/type pairings without defined semantics are False.
"""

from __future__ import annotations

import json
import logging
import math
import re
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timezone
from typing import Any, TypeVar, Union

from .dates import RelativeDate, ensure_aware, parse_date_value, parse_timestamp
from .fields import FilterOperator, LogicalOperator, is_date_field, resolve_attribute
from .filters import AndExpression, Condition, FilterNode, OrExpression
from .models import FilterCondition, FilterGroup, StructuredFilterExpression
from .simple import SimpleFilter

logger = logging.getLogger(__name__)

FilterTarget = Union[FilterNode, SimpleFilter, StructuredFilterExpression]
R = TypeVar("R", bound=Mapping[str, Any])

_NUMERIC_STRING_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?", re.ASCII)

# =============================================================================
# Coercion
# =============================================================================


def _as_number(value: Any) -> int | float | None:
    """Return ``value`` as a finite number, or None.

    Integers are returned unchanged so arbitrarily large values compare
    exactly instead of overflowing a float conversion.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, str):
        text = value.strip()
        if not _NUMERIC_STRING_RE.fullmatch(text):
            return None
        number = float(text)
        return number if math.isfinite(number) else None
    return None


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (int, float)):
        try:
            return str(value)
        except ValueError:
            # int beyond the interpreter's decimal conversion limit
            return hex(value)
    try:
        return json.dumps(value, default=str, separators=(",", ":"))
    except (TypeError, ValueError):
        return str(value)


def _same(a: Any, b: Any) -> bool:
    """Equality that never treats booleans as 0/1."""
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    return bool(a == b)


def _element_key(item: Any) -> Any:
    # Label/assignee objects compare by id
    if isinstance(item, Mapping) and "id" in item:
        return item["id"]
    return item


def _contains(values: Iterable[Any], item: Any) -> bool:
    key = _element_key(item)
    return any(_same(key, _element_key(v)) for v in values)


# =============================================================================
# Operators
# =============================================================================

CompareFunc = Callable[[Any, Any], bool]

_ORDERED: dict[FilterOperator, CompareFunc] = {
    FilterOperator.EQ: lambda a, b: a == b,
    FilterOperator.NEQ: lambda a, b: a != b,
    FilterOperator.GT: lambda a, b: a > b,
    FilterOperator.GTE: lambda a, b: a >= b,
    FilterOperator.LT: lambda a, b: a < b,
    FilterOperator.LTE: lambda a, b: a <= b,
}


def _compare(actual: Any, operator: FilterOperator, expected: Any) -> bool:
    """Ordered comparison and (in)equality.

    Dates compare as timestamps, then finite numbers numerically, then
    everything else as strings.
    """
    if actual is None:
        if expected is None:
            return operator in (FilterOperator.EQ, FilterOperator.GTE)
        return operator is FilterOperator.NEQ
    if expected is None:
        return operator in (FilterOperator.NEQ, FilterOperator.GT)

    op = _ORDERED[operator]
    if isinstance(actual, datetime) and isinstance(expected, datetime):
        return op(ensure_aware(actual), ensure_aware(expected))

    left_number = _as_number(actual)
    right_number = _as_number(expected)
    if left_number is not None and right_number is not None:
        return op(left_number, right_number)

    return op(_stringify(actual), _stringify(expected))


def _in(actual: Any, expected: Any) -> bool:
    if isinstance(actual, (list, tuple)):
        return any(_contains(expected, item) for item in actual)
    return _contains(expected, actual)


def _like(actual: Any, expected: Any) -> bool:
    if not isinstance(actual, str) or expected is None:
        return False
    return _stringify(expected).lower() in actual.lower()


def compare_values(actual: Any, operator: FilterOperator, expected: Any) -> bool:
    """Apply ``operator`` to an already-coerced record value and filter value."""
    if operator in (FilterOperator.IN, FilterOperator.NOT_IN):
        if not isinstance(expected, (list, tuple)):
            return False
        found = _in(actual, expected)
        return found if operator is FilterOperator.IN else not found

    if operator is FilterOperator.LIKE:
        return _like(actual, expected)

    return _compare(actual, operator, expected)


# =============================================================================
# Conditions
# =============================================================================


def _record_value(record: Mapping[str, Any], field: str) -> Any:
    value = resolve_attribute(record, field)
    if value is None or not is_date_field(field):
        return value
    # Unparseable dates behave as missing
    return parse_timestamp(value)


def _filter_value(field: str, value: Any, now: datetime) -> Any:
    if isinstance(value, RelativeDate):
        return parse_date_value(value, now)
    if is_date_field(field) and isinstance(value, str):
        resolved = parse_date_value(value, now)
        if resolved is not None:
            return resolved
    return value


def _match_condition(
    record: Mapping[str, Any], field: str, operator: FilterOperator, value: Any, now: datetime
) -> bool:
    actual = _record_value(record, field)
    expected = _filter_value(field, value, now)
    return compare_values(actual, operator, expected)


def _evaluate_node(node: FilterNode, record: Mapping[str, Any], now: datetime) -> bool:
    if isinstance(node, Condition):
        return _match_condition(record, node.field, node.operator, node.value, now)
    if isinstance(node, AndExpression):
        return _evaluate_node(node.left, record, now) and _evaluate_node(node.right, record, now)
    if isinstance(node, OrExpression):
        return _evaluate_node(node.left, record, now) or _evaluate_node(node.right, record, now)
    raise TypeError(f"Unknown filter node: {type(node).__name__}")


def _evaluate_group(group: FilterGroup, record: Mapping[str, Any], now: datetime) -> bool:
    results = (
        _evaluate_structured_condition(condition, record, now) for condition in group.conditions
    )
    return all(results) if group.operator is LogicalOperator.AND else any(results)


def _evaluate_structured_condition(
    condition: FilterCondition, record: Mapping[str, Any], now: datetime
) -> bool:
    return _match_condition(
        record, condition.field.value, condition.operator, condition.value, now
    )


def _evaluate_structured(
    expression: StructuredFilterExpression, record: Mapping[str, Any], now: datetime
) -> bool:
    results = (_evaluate_group(group, record, now) for group in expression.groups)
    return all(results) if expression.operator is LogicalOperator.AND else any(results)


# =============================================================================
# Public API
# =============================================================================


def _reference_time(now: datetime | None) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    return ensure_aware(now)


def evaluate(
    target: FilterTarget | None, record: Mapping[str, Any], *, now: datetime | None = None
) -> bool:
    """Evaluate a filter against one record.

    Args:
        target: An AST node, a ``SimpleFilter`` or a validated structured
            expression. None matches every record.
        record: Task record; attributes are looked up by name.
        now: Reference time for relative dates. Defaults to the current UTC
            time; naive values are treated as UTC.
    """
    if target is None:
        return True
    reference = _reference_time(now)
    if isinstance(target, FilterNode):
        return _evaluate_node(target, record, reference)
    if isinstance(target, SimpleFilter):
        return _match_condition(record, target.field, target.operator, target.value, reference)
    if isinstance(target, StructuredFilterExpression):
        return _evaluate_structured(target, record, reference)
    raise TypeError(f"Cannot evaluate filter of type {type(target).__name__}")


def apply_filter(
    records: Iterable[R], target: FilterTarget | None, *, now: datetime | None = None
) -> list[R]:
    """Return the records matching ``target``, preserving input order.

    ``now`` is fixed once for the whole batch so every record sees the same
    relative-date boundaries.
    """
    items = list(records)
    if target is None:
        return items
    reference = _reference_time(now)
    matched = [record for record in items if evaluate(target, record, now=reference)]
    logger.debug("Filter matched %d of %d records", len(matched), len(items))
    return matched
