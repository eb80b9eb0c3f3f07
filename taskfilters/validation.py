"""Validation of persisted (structured) filter expressions.

Structured expressions come back from storage or request payloads and are
treated as untrusted. ``validate_filter_expression`` walks the raw value,
enforcing every bound incrementally so that oversized or adversarial input
is rejected in bounded time, and only then builds the pydantic models.

String values are rejected (never rewritten) when they contain markup or
script-like content.

Example:
    from taskfilters import deserialize_filter_expression, serialize_filter_expression

    text = serialize_filter_expression(
        {"groups": [{"operator": "AND", "conditions": [
            {"field": "priority", "operator": ">=", "value": 3},
        ]}]}
    )
    expression = deserialize_filter_expression(text)
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from .config import DEFAULT_LIMITS, FilterLimits
from .dates import parse_date_literal, parse_relative_date
from .exceptions import FilterValidationError
from .fields import (
    FIELD_TYPES,
    OPERATORS_BY_TYPE,
    FilterField,
    FilterOperator,
    LogicalOperator,
    lookup_member,
)
from .filters import format_literal
from .literals import LiteralError, check_array_string, check_number, is_number
from .models import FilterCondition, FilterGroup, StructuredFilterExpression

logger = logging.getLogger(__name__)

_EXPRESSION_KEYS = frozenset(["groups", "operator"])
_GROUP_KEYS = frozenset(["conditions", "operator"])
_CONDITION_KEYS = frozenset(["field", "operator", "value"])

# =============================================================================
# Dangerous content
# =============================================================================

_TAGS = "script|iframe|object|embed|style|svg|link|meta"

# Matched against a lower-cased copy of the value. Compiled once; re.Pattern
# objects carry no per-call state.
_DANGEROUS_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = tuple(
    (label, re.compile(pattern, re.DOTALL))
    for label, pattern in (
        ("markup tag", rf"<\s*/?\s*(?:{_TAGS})\b"),
        ("event handler attribute", r"on\w+\s*="),
        ("javascript: URL", r"javascript\s*:"),
        ("vbscript: URL", r"vbscript\s*:"),
        ("data:text/html URL", r"data\s*:\s*text/html"),
        ("data:application/javascript URL", r"data\s*:\s*application/javascript"),
        ("CSS expression()", r"expression\s*\("),
        ("CSS url()", r"url\s*\("),
        ("CSS @import", r"@import"),
        ("eval() call", r"eval\s*\("),
        ("Function() call", r"function\s*\("),
        ("HTML comment", r"<!--.*?-->"),
        ("encoded markup tag", rf"&lt;\s*/?\s*(?:{_TAGS})\b"),
        ("encoded markup tag", rf"&#0*60;?\s*/?\s*(?:{_TAGS})\b"),
        ("encoded markup tag", rf"&#x0*3c;?\s*/?\s*(?:{_TAGS})\b"),
    )
)


def find_dangerous_content(text: str) -> str | None:
    """Return a label for the first dangerous pattern in ``text``, or None."""
    lowered = text.lower()
    for label, pattern in _DANGEROUS_PATTERNS:
        if pattern.search(lowered):
            return label
    return None


def sanitize_string(value: str, limits: FilterLimits = DEFAULT_LIMITS) -> str:
    """Validate a string value for storage.

    Raises:
        FilterValidationError: If the string is too long or contains
            dangerous content. The value is never rewritten.
    """
    if len(value) > limits.max_string_length:
        raise FilterValidationError(
            f"String value exceeds maximum length of {limits.max_string_length}",
            constraint="string_too_long",
        )
    label = find_dangerous_content(value)
    if label is not None:
        raise FilterValidationError(
            f"String contains potentially dangerous content ({label})",
            constraint="dangerous_content",
        )
    return value


# =============================================================================
# Value validation
# =============================================================================


def validate_value(value: Any, limits: FilterLimits = DEFAULT_LIMITS) -> Any:
    """Validate a condition value.

    Accepts None, booleans, finite numbers, sanitized strings, and
    homogeneous arrays of strings or numbers. Tuples are returned as lists.

    Raises:
        FilterValidationError: With no location; callers add group and
            condition indexes.
    """
    if value is None or isinstance(value, bool):
        return value

    if is_number(value):
        try:
            check_number(value, limits)
        except LiteralError as e:
            raise FilterValidationError(str(e), constraint="invalid_value") from None
        return value

    if isinstance(value, str):
        return sanitize_string(value, limits)

    if isinstance(value, (list, tuple)):
        return _validate_array(value, limits)

    raise FilterValidationError(
        f"Unsupported value type: {type(value).__name__}", constraint="invalid_value"
    )


def _validate_array(items: list[Any] | tuple[Any, ...], limits: FilterLimits) -> list[Any]:
    if len(items) > limits.max_array_items:
        raise FilterValidationError(
            f"Array values cannot exceed {limits.max_array_items} elements",
            constraint="array_too_long",
        )
    if all(isinstance(item, str) for item in items):
        for item in items:
            try:
                check_array_string(item, limits)
            except LiteralError as e:
                raise FilterValidationError(str(e), constraint="invalid_value") from None
            sanitize_string(item, limits)
        return list(items)
    if all(is_number(item) for item in items):
        for item in items:
            try:
                check_number(item, limits)
            except LiteralError as e:
                raise FilterValidationError(
                    f"Invalid array number: {e}", constraint="invalid_value"
                ) from None
        return list(items)
    raise FilterValidationError(
        "Array elements must be all strings or all finite numbers, not mixed",
        constraint="invalid_value",
    )


# =============================================================================
# Structure validation
# =============================================================================


def _check_keys(
    obj: Mapping[Any, Any],
    allowed: frozenset[str],
    what: str,
    *,
    group_index: int | None = None,
    condition_index: int | None = None,
) -> None:
    unexpected = [key for key in obj if key not in allowed]
    if unexpected:
        names = ", ".join(sorted(repr(key)[:40] for key in unexpected))
        raise FilterValidationError(
            f"{what} has unexpected keys: {names}",
            constraint="malformed",
            group_index=group_index,
            condition_index=condition_index,
        )


def _as_list(value: Any) -> list[Any] | tuple[Any, ...] | None:
    if isinstance(value, (list, tuple)):
        return value
    return None


def _validate_logical_operator(value: Any, *, group_index: int | None = None) -> LogicalOperator:
    operator = lookup_member(LogicalOperator, value)
    if operator is None:
        raise FilterValidationError(
            f"Invalid logical operator {_preview(value)}; expected AND or OR",
            constraint="invalid_operator",
            group_index=group_index,
        )
    return operator


def _preview(value: Any) -> str:
    text = repr(value)
    return text if len(text) <= 40 else text[:37] + "..."


def _validate_condition(
    condition: Any, group_index: int, condition_index: int, limits: FilterLimits
) -> FilterCondition:
    location = {"group_index": group_index, "condition_index": condition_index}
    if not isinstance(condition, Mapping):
        raise FilterValidationError(
            "Condition must be an object", constraint="malformed", **location
        )
    _check_keys(condition, _CONDITION_KEYS, "Condition", **location)

    field_name = lookup_member(FilterField, condition.get("field"))
    if field_name is None:
        raise FilterValidationError(
            f"Invalid field: {_preview(condition.get('field'))}",
            constraint="unknown_field",
            **location,
        )

    operator = lookup_member(FilterOperator, condition.get("operator"))
    if operator is None:
        raise FilterValidationError(
            f"Invalid operator: {_preview(condition.get('operator'))}",
            constraint="invalid_operator",
            **location,
        )

    if "value" not in condition:
        raise FilterValidationError(
            "Condition value is required", constraint="invalid_value", **location
        )
    try:
        value = validate_value(condition["value"], limits)
    except FilterValidationError as e:
        raise FilterValidationError(e.message, constraint=e.constraint, **location) from None

    return FilterCondition(field=field_name, operator=operator, value=value)


def validate_filter_expression(
    expression: Any, *, limits: FilterLimits = DEFAULT_LIMITS
) -> StructuredFilterExpression:
    """Validate an untrusted structured filter expression.

    Bounds are checked while walking the input: the group count before any
    group is read, and the running condition total after each group is
    counted, so ten groups of six conditions fail even though no single
    group is over the per-group limit.

    Args:
        expression: Deserialized JSON (or an existing model, which is
            re-validated from scratch).
        limits: Bounds to enforce.

    Returns:
        The validated expression.

    Raises:
        FilterValidationError: On the first violation, naming the group and
            condition index where applicable.
    """
    if isinstance(expression, StructuredFilterExpression):
        expression = expression.model_dump(mode="json")

    if not isinstance(expression, Mapping):
        raise FilterValidationError("Filter expression must be an object", constraint="malformed")
    _check_keys(expression, _EXPRESSION_KEYS, "Filter expression")

    groups = _as_list(expression.get("groups"))
    if not groups:
        raise FilterValidationError(
            "Filter expression must have a non-empty groups array", constraint="malformed"
        )
    if len(groups) > limits.max_groups:
        raise FilterValidationError(
            f"Filter expression exceeds maximum of {limits.max_groups} groups",
            constraint="too_many_groups",
        )

    top_operator = LogicalOperator.AND
    if "operator" in expression:
        top_operator = _validate_logical_operator(expression["operator"])

    total_conditions = 0
    validated_groups: list[FilterGroup] = []
    for group_index, group in enumerate(groups):
        if not isinstance(group, Mapping):
            raise FilterValidationError(
                "Group must be an object", constraint="malformed", group_index=group_index
            )
        _check_keys(group, _GROUP_KEYS, "Group", group_index=group_index)
        group_operator = _validate_logical_operator(
            group.get("operator"), group_index=group_index
        )

        conditions = _as_list(group.get("conditions"))
        if not conditions:
            raise FilterValidationError(
                "Group must have a non-empty conditions array",
                constraint="malformed",
                group_index=group_index,
            )
        if len(conditions) > limits.max_conditions:
            raise FilterValidationError(
                f"Group exceeds maximum of {limits.max_conditions} conditions",
                constraint="too_many_conditions",
                group_index=group_index,
            )
        total_conditions += len(conditions)
        if total_conditions > limits.max_conditions:
            raise FilterValidationError(
                f"Filter expression exceeds maximum total conditions ({limits.max_conditions})",
                constraint="too_many_conditions",
                group_index=group_index,
            )

        validated_conditions = [
            _validate_condition(condition, group_index, condition_index, limits)
            for condition_index, condition in enumerate(conditions)
        ]
        validated_groups.append(
            FilterGroup(conditions=validated_conditions, operator=group_operator)
        )

    try:
        return StructuredFilterExpression(groups=validated_groups, operator=top_operator)
    except ValidationError as e:
        # Unreachable for input that passed the walk above
        raise FilterValidationError(
            f"Invalid filter expression: {e.errors()[0]['msg']}", constraint="malformed"
        ) from None


# =============================================================================
# Serialization
# =============================================================================


def serialize_filter_expression(
    expression: StructuredFilterExpression | Mapping[str, Any],
    *,
    limits: FilterLimits = DEFAULT_LIMITS,
) -> str:
    """Validate and serialize an expression to compact JSON for storage.

    Raises:
        FilterValidationError: On circular references, non-JSON values,
            any validation failure, or output longer than the storage cap.
    """
    if isinstance(expression, StructuredFilterExpression):
        payload: Any = expression.model_dump(mode="json")
    else:
        payload = expression

    try:
        json.dumps(payload, allow_nan=False)
    except ValueError as e:
        # json reports cycles as ValueError("Circular reference detected")
        constraint = "circular_reference" if "ircular" in str(e) else "invalid_value"
        raise FilterValidationError(
            f"Cannot serialize filter expression: {e}", constraint=constraint
        ) from None
    except (TypeError, RecursionError) as e:
        raise FilterValidationError(
            f"Cannot serialize filter expression: {e}", constraint="malformed"
        ) from None

    validated = validate_filter_expression(payload, limits=limits)
    text = json.dumps(
        validated.model_dump(mode="json"), separators=(",", ":"), ensure_ascii=False
    )
    if len(text) > limits.max_serialized_length:
        raise FilterValidationError(
            f"Serialized filter expression exceeds {limits.max_serialized_length} characters",
            constraint="payload_too_large",
        )
    return text


def deserialize_filter_expression(
    text: Any, *, limits: FilterLimits = DEFAULT_LIMITS
) -> StructuredFilterExpression:
    """Parse stored JSON text and fully re-validate it.

    The length cap is applied before decoding. A previous validation pass is
    never trusted.

    Raises:
        FilterValidationError: On oversized, undecodable or invalid payloads.
    """
    if not isinstance(text, str):
        raise FilterValidationError(
            "Serialized filter expression must be a string", constraint="malformed"
        )
    if len(text) > limits.max_serialized_length:
        raise FilterValidationError(
            f"Serialized filter expression exceeds {limits.max_serialized_length} characters",
            constraint="payload_too_large",
        )

    try:
        payload = json.loads(text)
    except (ValueError, RecursionError) as e:
        logger.warning("Stored filter expression is not valid JSON: %s", e)
        raise FilterValidationError(f"Invalid JSON: {e}", constraint="invalid_json") from None

    try:
        return validate_filter_expression(payload, limits=limits)
    except FilterValidationError as e:
        logger.warning("Stored filter expression failed validation: %s", e)
        raise


# =============================================================================
# Linting
# =============================================================================


@dataclass
class FilterValidationResult:
    """Non-raising validation outcome."""

    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def _condition_type_errors(condition: FilterCondition) -> Iterable[str]:
    field_type = FIELD_TYPES[condition.field]
    name = condition.field.value
    if condition.operator not in OPERATORS_BY_TYPE[field_type]:
        yield (
            f'Invalid operator "{condition.operator.value}" for field "{name}" '
            f'of type "{field_type}"'
        )

    value = condition.value
    if value is None:
        return
    if field_type == "boolean" and not isinstance(value, bool) and value not in ("true", "false"):
        yield f'Field "{name}" requires a boolean value'
    elif field_type == "number" and not is_number(value):
        yield f'Field "{name}" requires a numeric value'
    elif field_type == "date" and isinstance(value, str):
        if parse_relative_date(value) is None and parse_date_literal(value[:10]) is None:
            yield (
                f'Field "{name}" requires a valid date value '
                '(ISO date or relative date like "now+1d")'
            )
    elif field_type == "array" and not isinstance(value, list):
        yield f'Field "{name}" requires an array value'


def check_filter_expression(
    expression: Any,
    *,
    limits: FilterLimits = DEFAULT_LIMITS,
    performance_warning_threshold: int = 10,
) -> FilterValidationResult:
    """Validate without raising, adding field-type checks and warnings.

    Structural violations and operator/value mismatches (``like`` on a
    number field, a string on ``done``) are reported as errors. Large
    expressions produce a performance warning.
    """
    try:
        validated = validate_filter_expression(expression, limits=limits)
    except FilterValidationError as e:
        return FilterValidationResult(valid=False, errors=[str(e)])

    errors: list[str] = []
    for group_index, group in enumerate(validated.groups):
        for condition_index, condition in enumerate(group.conditions):
            errors.extend(
                f"Group {group_index}, condition {condition_index}: {message}"
                for message in _condition_type_errors(condition)
            )

    warnings: list[str] = []
    count = validated.condition_count
    if count > performance_warning_threshold:
        warnings.append(
            f"Filter has {count} conditions, which may impact performance. "
            "Consider simplifying the filter."
        )
    return FilterValidationResult(valid=not errors, errors=errors, warnings=warnings)


# =============================================================================
# Rendering
# =============================================================================


def _format_condition_value(condition: FilterCondition) -> str:
    value = condition.value
    if FIELD_TYPES[condition.field] == "date" and isinstance(value, str):
        if parse_relative_date(value) is not None or parse_date_literal(value) is not None:
            return value
    return format_literal(value)


def condition_to_string(condition: FilterCondition) -> str:
    return (
        f"{condition.field.value} {condition.operator.value} "
        f"{_format_condition_value(condition)}"
    )


def group_to_string(group: FilterGroup) -> str:
    connective = " && " if group.operator is LogicalOperator.AND else " || "
    return connective.join(condition_to_string(c) for c in group.conditions)


def expression_to_string(expression: StructuredFilterExpression) -> str:
    """Render a structured expression as an ad hoc filter string."""
    connective = " && " if expression.operator is LogicalOperator.AND else " || "
    parts = []
    for group in expression.groups:
        text = group_to_string(group)
        if len(expression.groups) > 1 and len(group.conditions) > 1:
            text = f"({text})"
        parts.append(text)
    return connective.join(parts)
