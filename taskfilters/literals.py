"""Value literal grammar shared by the filter parsers.

A raw value token is classified in a fixed priority order; the first rule
that matches decides how the token is read:

1. ``"quoted string"`` (content taken verbatim, no escapes)
2. ``[json, array]``
3. ``true`` / ``false``
4. ``null``
5. 32-bit integer
6. ``YYYY-MM-DD`` date (UTC midnight)

Anything else is rejected with ``LiteralError``.
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Sequence
from typing import Any

from .config import DEFAULT_LIMITS, FilterLimits
from .dates import parse_date_literal

# Substrings that make an array string element look like code
CODE_LIKE_SUBSTRINGS: tuple[str, ...] = (
    "function",
    "=>",
    "constructor",
    "__proto__",
    "prototype",
    "eval",
)

_INTEGER_RE = re.compile(r"-?\d{1,10}", re.ASCII)


class LiteralError(ValueError):
    """A raw value token does not match any literal rule."""


def is_number(value: Any) -> bool:
    """True for ints and floats, excluding booleans."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def check_number(value: int | float, limits: FilterLimits = DEFAULT_LIMITS) -> None:
    """Reject non-finite floats and integers beyond the 32-bit literal range."""
    if isinstance(value, float):
        if not math.isfinite(value):
            raise LiteralError("Numeric values must be finite")
        return
    if abs(value) > limits.max_integer:
        raise LiteralError(f"Integer values cannot exceed {limits.max_integer} in magnitude")


def check_array_string(item: str, limits: FilterLimits = DEFAULT_LIMITS) -> None:
    """Validate one string element of an array literal."""
    if len(item) > limits.max_array_string_length:
        raise LiteralError(
            f"Array string elements cannot exceed {limits.max_array_string_length} characters"
        )
    lowered = item.lower()
    for needle in CODE_LIKE_SUBSTRINGS:
        if needle in lowered:
            raise LiteralError(f"Array element contains disallowed content: {needle!r}")


def check_array_elements(
    items: Sequence[Any],
    limits: FilterLimits = DEFAULT_LIMITS,
    *,
    allow_null: bool = True,
) -> None:
    """Validate the elements of an array value.

    Elements must be strings, numbers or (optionally) null. Nested arrays,
    objects and booleans are rejected.
    """
    if len(items) > limits.max_array_items:
        raise LiteralError(f"Array values cannot exceed {limits.max_array_items} elements")
    for item in items:
        if item is None:
            if not allow_null:
                raise LiteralError("Array elements cannot be null")
            continue
        if isinstance(item, str):
            check_array_string(item, limits)
        elif is_number(item):
            check_number(item, limits)
        else:
            raise LiteralError(
                f"Array elements must be strings or numbers, got {type(item).__name__}"
            )


def parse_array_literal(raw: str, limits: FilterLimits = DEFAULT_LIMITS) -> tuple[Any, ...]:
    """Parse a ``[...]`` token into a tuple of scalars."""
    if not (raw.startswith("[") and raw.endswith("]")):
        raise LiteralError("Array literal must be enclosed in brackets")
    if len(raw) > limits.max_array_token_length:
        raise LiteralError(
            f"Array literal cannot exceed {limits.max_array_token_length} characters"
        )
    try:
        parsed = json.loads(raw)
    except ValueError as e:
        raise LiteralError(f"Invalid array literal: {e}") from None
    if not isinstance(parsed, list):
        raise LiteralError("Array literal must decode to an array")
    check_array_elements(parsed, limits)
    return tuple(parsed)


def parse_integer_literal(raw: str, limits: FilterLimits = DEFAULT_LIMITS) -> int | None:
    """Parse a bounded integer, or return None if ``raw`` is not one."""
    if not _INTEGER_RE.fullmatch(raw):
        return None
    number = int(raw)
    if abs(number) > limits.max_integer:
        raise LiteralError(f"Integer literal out of range: {raw}")
    return number


def parse_value_literal(raw: str, limits: FilterLimits = DEFAULT_LIMITS) -> Any:
    """Classify and parse a raw value token.

    Raises:
        LiteralError: If the token matches no rule or breaks a bound.
    """
    if len(raw) >= 2 and raw.startswith('"') and raw.endswith('"'):
        if len(raw) > limits.max_quoted_length:
            raise LiteralError(
                f"Quoted string cannot exceed {limits.max_quoted_length - 2} characters"
            )
        return raw[1:-1]

    if raw.startswith("[") and raw.endswith("]"):
        return parse_array_literal(raw, limits)

    if raw == "true":
        return True
    if raw == "false":
        return False
    if raw == "null":
        return None

    number = parse_integer_literal(raw, limits)
    if number is not None:
        return number

    date = parse_date_literal(raw)
    if date is not None:
        return date

    raise LiteralError(f"Unrecognized value: {raw[:50]!r}")
