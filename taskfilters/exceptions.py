"""Exception types for filter parsing and validation."""

from __future__ import annotations

from typing import Any


class FilterError(Exception):
    """Base class for all filter errors."""

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        return self.message


class FilterSyntaxError(FilterError):
    """An ad hoc filter string could not be tokenized or parsed.

    Returned inside ``ParseResult.error``; ``parse_filter_string`` never
    raises it.
    """

    def __init__(self, message: str, *, position: int = 0, context: str | None = None) -> None:
        super().__init__(message, details={"position": position})
        self.position = position
        self.context = context


class FilterValidationError(FilterError):
    """A structured filter expression violated a constraint.

    ``constraint`` is a short machine-readable code (for example
    ``"unknown_field"`` or ``"too_many_conditions"``). ``group_index`` and
    ``condition_index`` locate the offending element when known.
    """

    def __init__(
        self,
        message: str,
        *,
        constraint: str,
        group_index: int | None = None,
        condition_index: int | None = None,
    ) -> None:
        location = _format_location(group_index, condition_index)
        full_message = f"{location}: {message}" if location else message
        super().__init__(
            full_message,
            details={
                "constraint": constraint,
                "groupIndex": group_index,
                "conditionIndex": condition_index,
            },
        )
        self.constraint = constraint
        self.group_index = group_index
        self.condition_index = condition_index


def _format_location(group_index: int | None, condition_index: int | None) -> str:
    if group_index is None:
        return ""
    if condition_index is None:
        return f"Group {group_index}"
    return f"Group {group_index}, condition {condition_index}"
