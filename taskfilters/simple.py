"""Single-condition filter parsing.

``parse_simple_filter`` handles the common ``field operator value`` case
without the full boolean grammar. It is used on hot listing paths where an
invalid filter is an expected outcome, so it never raises: every rejection
yields None.

Example:
    >>> parse_simple_filter("priority > 3")
    SimpleFilter(field='priority', operator=<FilterOperator.GT: '>'>, value=3)
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .config import DEFAULT_LIMITS, FilterLimits
from .fields import FilterOperator, SimpleFilterField, lookup_member
from .filters import format_literal
from .literals import LiteralError, parse_value_literal

logger = logging.getLogger(__name__)

_SIMPLE_FILTER_RE = re.compile(
    r"^([A-Za-z_][A-Za-z0-9_]*)"
    r"(?:\s*(!=|>=|<=|=|>|<)|\s+(like|not\s+in|in)(?=\s))"
    r"\s*(.+)$"
)


@dataclass(frozen=True)
class SimpleFilter:
    """A single ``field operator value`` condition."""

    field: str
    operator: FilterOperator
    value: Any

    def matches(self, record: Mapping[str, Any], now: datetime | None = None) -> bool:
        """Evaluate this condition against one record."""
        from .evaluator import evaluate

        return evaluate(self, record, now=now)

    def to_string(self) -> str:
        return f"{self.field} {self.operator.value} {format_literal(self.value)}"


def parse_simple_filter(
    filter_string: Any, *, limits: FilterLimits = DEFAULT_LIMITS
) -> SimpleFilter | None:
    """Parse a single ``field operator value`` condition.

    Returns None if the input is not a string, is too long, does not match
    the condition shape, names a field outside the allow-list, or carries a
    value the literal grammar rejects.
    """
    if not isinstance(filter_string, str):
        return None

    text = filter_string.strip()
    if not text or len(text) > limits.max_filter_length:
        logger.debug("Rejected simple filter: empty or longer than %d", limits.max_filter_length)
        return None

    match = _SIMPLE_FILTER_RE.match(text)
    if match is None:
        logger.debug("Rejected simple filter: not a field-operator-value condition")
        return None

    field, symbol_op, word_op, raw_value = match.groups()
    if lookup_member(SimpleFilterField, field) is None:
        logger.debug("Rejected simple filter: field %r is not allowed", field)
        return None

    op_text = symbol_op if symbol_op is not None else " ".join(word_op.split())
    operator = FilterOperator(op_text)

    try:
        value = parse_value_literal(raw_value.strip(), limits)
    except LiteralError as e:
        logger.debug("Rejected simple filter value: %s", e)
        return None

    return SimpleFilter(field=field, operator=operator, value=value)
