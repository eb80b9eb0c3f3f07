"""
Task filter expressions: parsing, validation and client-side evaluation.

Two grammars are supported:

- Ad hoc filter strings typed by people (``done = false && priority >= 4``),
  parsed by ``parse_simple_filter`` (single condition) or
  ``parse_filter_string`` (full boolean grammar with parentheses).
- Structured expressions persisted as JSON (groups of conditions), checked
  by ``validate_filter_expression`` on every write and every read.

Example:
    from taskfilters import apply_filter, parse_filter_string

    result = parse_filter_string("dueDate < now+3d && done = false")
    if result.error is None:
        due_soon = apply_filter(tasks, result.expression)
"""

from __future__ import annotations

from .config import DEFAULT_LIMITS, FilterLimits
from .dates import RelativeDate
from .evaluator import apply_filter, evaluate
from .exceptions import FilterError, FilterSyntaxError, FilterValidationError
from .fields import FilterField, FilterOperator, LogicalOperator, SimpleFilterField
from .filters import (
    AndExpression,
    Condition,
    FilterNode,
    OrExpression,
    ParseResult,
    parse_filter_string,
)
from .models import FilterCondition, FilterGroup, StructuredFilterExpression
from .simple import SimpleFilter, parse_simple_filter
from .validation import (
    FilterValidationResult,
    check_filter_expression,
    deserialize_filter_expression,
    expression_to_string,
    serialize_filter_expression,
    validate_filter_expression,
)

__version__ = "0.1.0"

__all__ = [
    "DEFAULT_LIMITS",
    "AndExpression",
    "Condition",
    "FilterCondition",
    "FilterError",
    "FilterField",
    "FilterGroup",
    "FilterLimits",
    "FilterNode",
    "FilterOperator",
    "FilterSyntaxError",
    "FilterValidationError",
    "FilterValidationResult",
    "LogicalOperator",
    "OrExpression",
    "ParseResult",
    "RelativeDate",
    "SimpleFilter",
    "SimpleFilterField",
    "StructuredFilterExpression",
    "__version__",
    "apply_filter",
    "check_filter_expression",
    "deserialize_filter_expression",
    "evaluate",
    "expression_to_string",
    "parse_filter_string",
    "parse_simple_filter",
    "serialize_filter_expression",
    "validate_filter_expression",
]
