"""Pydantic models for persisted (structured) filter expressions.

Instances are only produced by ``validate_filter_expression``, which performs
the size, allow-list and content checks before constructing them.
"""

from __future__ import annotations

from typing import Union

from pydantic import BaseModel, ConfigDict, Field

from .fields import FilterField, FilterOperator, LogicalOperator

# Scalars and homogeneous arrays. bool is listed before the numeric types so
# that True/False are never widened to 1/0.
ConditionValue = Union[bool, int, float, str, list[str], list[Union[int, float]], None]


class FilterModel(BaseModel):
    """Base model: immutable, rejects unknown keys."""

    model_config = ConfigDict(frozen=True, extra="forbid")


class FilterCondition(FilterModel):
    field: FilterField
    operator: FilterOperator
    value: ConditionValue = None


class FilterGroup(FilterModel):
    conditions: list[FilterCondition] = Field(..., min_length=1)
    operator: LogicalOperator


class StructuredFilterExpression(FilterModel):
    """Two-level filter: groups of conditions.

    Conditions inside a group combine with the group's operator; groups
    combine with ``operator`` (AND unless stated).
    """

    groups: list[FilterGroup] = Field(..., min_length=1)
    operator: LogicalOperator = LogicalOperator.AND

    @property
    def condition_count(self) -> int:
        return sum(len(group.conditions) for group in self.groups)
