"""Field, operator and connective enumerations.

Field names are allow-listed through ``Enum`` lookups so that anything not
explicitly listed (``__proto__``, ``constructor``, typos, ...) fails closed.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any, Literal


class FilterField(str, Enum):
    """Domain fields accepted in persisted filter expressions."""

    DONE = "done"
    PRIORITY = "priority"
    PERCENT_DONE = "percentDone"
    DUE_DATE = "dueDate"
    ASSIGNEES = "assignees"
    LABELS = "labels"
    CREATED = "created"
    UPDATED = "updated"
    TITLE = "title"
    DESCRIPTION = "description"


class SimpleFilterField(str, Enum):
    """Fields accepted by the single-condition parser (raw and aliased spellings)."""

    ID = "id"
    TITLE = "title"
    DESCRIPTION = "description"
    DONE = "done"
    PRIORITY = "priority"
    DUE_DATE = "due_date"
    DUE_DATE_ALIAS = "dueDate"
    CREATED = "created"
    UPDATED = "updated"
    PROJECT_ID = "project_id"
    PROJECT_ID_ALIAS = "projectId"
    LABELS = "labels"
    ASSIGNEES = "assignees"
    PERCENT_DONE = "percent_done"
    PERCENT_DONE_ALIAS = "percentDone"
    REMINDER_DATES = "reminder_dates"
    START_DATE = "start_date"
    END_DATE = "end_date"
    DONE_AT = "done_at"


class FilterOperator(str, Enum):
    """Comparison operators shared by every filter representation."""

    EQ = "="
    NEQ = "!="
    GT = ">"
    GTE = ">="
    LT = "<"
    LTE = "<="
    LIKE = "like"
    IN = "in"
    NOT_IN = "not in"


class LogicalOperator(str, Enum):
    """Connectives for structured expressions."""

    AND = "AND"
    OR = "OR"


FieldType = Literal["boolean", "number", "date", "string", "array"]

# Spelling -> record attribute. Spellings not listed map to themselves.
FIELD_ALIASES: Mapping[str, str] = {
    "dueDate": "due_date",
    "percentDone": "percent_done",
    "projectId": "project_id",
}

# Identifiers the ad hoc grammar recognizes as field tokens.
AD_HOC_FIELDS: frozenset[str] = frozenset(
    [member.value for member in FilterField] + ["due_date", "percent_done"]
)

DATE_ATTRIBUTES: frozenset[str] = frozenset(
    ["due_date", "created", "updated", "start_date", "end_date", "done_at"]
)

FIELD_TYPES: Mapping[FilterField, FieldType] = {
    FilterField.DONE: "boolean",
    FilterField.PRIORITY: "number",
    FilterField.PERCENT_DONE: "number",
    FilterField.DUE_DATE: "date",
    FilterField.ASSIGNEES: "array",
    FilterField.LABELS: "array",
    FilterField.CREATED: "date",
    FilterField.UPDATED: "date",
    FilterField.TITLE: "string",
    FilterField.DESCRIPTION: "string",
}

# Operators that make sense for each field type
OPERATORS_BY_TYPE: Mapping[FieldType, frozenset[FilterOperator]] = {
    "boolean": frozenset([FilterOperator.EQ, FilterOperator.NEQ]),
    "number": frozenset(
        [
            FilterOperator.EQ,
            FilterOperator.NEQ,
            FilterOperator.GT,
            FilterOperator.GTE,
            FilterOperator.LT,
            FilterOperator.LTE,
        ]
    ),
    "date": frozenset(
        [
            FilterOperator.EQ,
            FilterOperator.NEQ,
            FilterOperator.GT,
            FilterOperator.GTE,
            FilterOperator.LT,
            FilterOperator.LTE,
        ]
    ),
    "string": frozenset([FilterOperator.EQ, FilterOperator.NEQ, FilterOperator.LIKE]),
    "array": frozenset([FilterOperator.IN, FilterOperator.NOT_IN]),
}


def lookup_member(enum_type: type[Enum], name: Any) -> Any:
    """Return the member of ``enum_type`` whose value is ``name``, or None."""
    if not isinstance(name, str):
        return None
    try:
        return enum_type(name)
    except ValueError:
        return None


def canonical_attribute(field: str) -> str:
    """Map a field spelling to the record attribute it reads."""
    return FIELD_ALIASES.get(field, field)


def is_date_field(field: str) -> bool:
    return canonical_attribute(field) in DATE_ATTRIBUTES


def resolve_attribute(record: Mapping[str, Any], field: str) -> Any:
    """Resolve a field against a record.

    Tries the canonical attribute first, then the spelling as written.
    Missing attributes resolve to None.
    """
    attribute = canonical_attribute(field)
    if attribute in record:
        return record[attribute]
    if field in record:
        return record[field]
    return None
