"""Tests for structured filter expression validation and storage helpers."""

from __future__ import annotations

import json
import logging
from typing import Any

import pytest

from taskfilters import (
    FilterField,
    FilterLimits,
    FilterOperator,
    FilterValidationError,
    LogicalOperator,
    StructuredFilterExpression,
    check_filter_expression,
    deserialize_filter_expression,
    expression_to_string,
    parse_filter_string,
    serialize_filter_expression,
    validate_filter_expression,
)
from taskfilters.validation import find_dangerous_content


def _condition(field: str = "priority", operator: str = ">=", value: Any = 3) -> dict[str, Any]:
    return {"field": field, "operator": operator, "value": value}


def _group(*conditions: dict[str, Any], operator: str = "AND") -> dict[str, Any]:
    return {"operator": operator, "conditions": list(conditions) or [_condition()]}


def _expression(*groups: dict[str, Any], **extra: Any) -> dict[str, Any]:
    return {"groups": list(groups) or [_group()], **extra}


def _violation(value: Any, **kwargs: Any) -> FilterValidationError:
    with pytest.raises(FilterValidationError) as exc_info:
        validate_filter_expression(value, **kwargs)
    return exc_info.value


# =============================================================================
# Structure
# =============================================================================


class TestStructure:
    def test_valid_expression(self) -> None:
        expression = validate_filter_expression(
            _expression(
                _group(_condition("done", "=", False), _condition("priority", ">=", 4)),
                operator="OR",
            )
        )
        assert isinstance(expression, StructuredFilterExpression)
        assert expression.operator is LogicalOperator.OR
        condition = expression.groups[0].conditions[0]
        assert condition.field is FilterField.DONE
        assert condition.operator is FilterOperator.EQ
        assert condition.value is False

    def test_operator_defaults_to_and(self) -> None:
        assert validate_filter_expression(_expression()).operator is LogicalOperator.AND

    def test_revalidates_model(self) -> None:
        expression = validate_filter_expression(_expression())
        assert validate_filter_expression(expression) == expression

    @pytest.mark.parametrize("value", [None, [], "groups", 42])
    def test_not_an_object(self, value: Any) -> None:
        assert _violation(value).constraint == "malformed"

    @pytest.mark.parametrize("groups", [None, [], "x", {"a": 1}])
    def test_groups_must_be_non_empty_array(self, groups: Any) -> None:
        assert _violation({"groups": groups}).constraint == "malformed"

    def test_unknown_top_level_key(self) -> None:
        assert _violation(_expression(extra=True)).constraint == "malformed"

    def test_invalid_top_level_operator(self) -> None:
        assert _violation(_expression(operator="XOR")).constraint == "invalid_operator"

    def test_group_must_be_object(self) -> None:
        error = _violation({"groups": [_group(), "nope"]})
        assert error.constraint == "malformed"
        assert error.group_index == 1

    def test_group_operator_required(self) -> None:
        error = _violation({"groups": [{"conditions": [_condition()]}]})
        assert error.constraint == "invalid_operator"
        assert error.group_index == 0

    def test_group_conditions_required(self) -> None:
        error = _violation({"groups": [{"operator": "AND", "conditions": []}]})
        assert error.constraint == "malformed"

    def test_condition_must_be_object(self) -> None:
        error = _violation({"groups": [{"operator": "AND", "conditions": [_condition(), 7]}]})
        assert error.constraint == "malformed"
        assert (error.group_index, error.condition_index) == (0, 1)

    def test_unknown_condition_key(self) -> None:
        condition = {**_condition(), "extra": 1}
        assert _violation(_expression(_group(condition))).constraint == "malformed"

    def test_value_required(self) -> None:
        condition = {"field": "priority", "operator": "="}
        assert _violation(_expression(_group(condition))).constraint == "invalid_value"

    def test_null_value_allowed(self) -> None:
        raw = _expression(_group(_condition("dueDate", "=", None)))
        expression = validate_filter_expression(raw)
        assert expression.groups[0].conditions[0].value is None


# =============================================================================
# Bounds
# =============================================================================


class TestBounds:
    @pytest.mark.req("FILTER-VALID-001")
    def test_total_condition_count_across_groups(self) -> None:
        """Ten groups of six conditions fail although each group is small."""
        groups = [_group(*[_condition()] * 6) for _ in range(10)]
        error = _violation({"groups": groups})
        assert "exceeds maximum total conditions" in error.message
        assert error.constraint == "too_many_conditions"

    def test_fifty_conditions_allowed(self) -> None:
        groups = [_group(*[_condition()] * 10) for _ in range(5)]
        assert validate_filter_expression({"groups": groups}).condition_count == 50

    def test_too_many_groups(self) -> None:
        groups = [_group() for _ in range(11)]
        assert _violation({"groups": groups}).constraint == "too_many_groups"

    def test_single_group_over_limit(self) -> None:
        error = _violation(_expression(_group(*[_condition()] * 51)))
        assert error.constraint == "too_many_conditions"
        assert error.group_index == 0

    def test_string_length(self) -> None:
        validate_filter_expression(_expression(_group(_condition("title", "=", "a" * 1000))))
        error = _violation(_expression(_group(_condition("title", "=", "a" * 1001))))
        assert error.constraint == "string_too_long"

    def test_array_length(self) -> None:
        validate_filter_expression(_expression(_group(_condition("labels", "in", [1] * 100))))
        error = _violation(_expression(_group(_condition("labels", "in", [1] * 101))))
        assert error.constraint == "array_too_long"

    def test_custom_limits(self) -> None:
        limits = FilterLimits(max_groups=1)
        error = _violation(_expression(_group(), _group()), limits=limits)
        assert error.constraint == "too_many_groups"


# =============================================================================
# Fields, operators and values
# =============================================================================


class TestConditions:
    @pytest.mark.req("FILTER-VALID-002")
    @pytest.mark.parametrize("field", ["__proto__", "constructor", "prototype"])
    @pytest.mark.parametrize(("operator", "value"), [("=", 1), ("like", "x"), ("in", [1])])
    def test_object_attribute_names_rejected(self, field: str, operator: str, value: Any) -> None:
        error = _violation(_expression(_group(_condition(field, operator, value))))
        assert error.constraint == "unknown_field"
        assert (error.group_index, error.condition_index) == (0, 0)

    @pytest.mark.parametrize("field", ["due_date", "id", "project_id", "Title", 5, None])
    def test_fields_outside_allow_list(self, field: Any) -> None:
        error = _violation(_expression(_group(_condition(field=field))))
        assert error.constraint == "unknown_field"

    @pytest.mark.parametrize("operator", ["==", "LIKE", "contains", "", None])
    def test_invalid_operator(self, operator: Any) -> None:
        error = _violation(_expression(_group(_condition(operator=operator))))
        assert error.constraint == "invalid_operator"

    def test_error_location_in_message(self) -> None:
        groups = [_group(), _group(_condition(), _condition(), _condition(field="owner"))]
        error = _violation({"groups": groups})
        assert error.message.startswith("Group 1, condition 2:")
        assert error.details == {
            "constraint": "unknown_field",
            "groupIndex": 1,
            "conditionIndex": 2,
        }

    @pytest.mark.parametrize(
        "value",
        [
            float("nan"),
            float("inf"),
            2_147_483_648,
            {"a": 1},
            [1, "a"],
            [True],
            [float("inf")],
            ["a" * 51],
        ],
    )
    def test_invalid_values(self, value: Any) -> None:
        error = _violation(_expression(_group(_condition(value=value))))
        assert error.constraint == "invalid_value"

    @pytest.mark.parametrize("value", [True, 0, -2.5, "text", [], ["a", "b"], [1, 2.5], (1, 2)])
    def test_valid_values(self, value: Any) -> None:
        validate_filter_expression(_expression(_group(_condition(value=value))))

    def test_tuple_value_becomes_list(self) -> None:
        expression = validate_filter_expression(
            _expression(_group(_condition("labels", "in", (1, 2))))
        )
        assert expression.groups[0].conditions[0].value == [1, 2]

    @pytest.mark.parametrize("value", [2_147_483_647, -2_147_483_647])
    def test_integer_bound_inclusive(self, value: int) -> None:
        expression = validate_filter_expression(_expression(_group(_condition(value=value))))
        assert expression.groups[0].conditions[0].value == value

    @pytest.mark.parametrize(
        "value", [2_147_483_648, -2_147_483_648, 10**400, [1, 2_147_483_648]]
    )
    def test_integer_beyond_literal_range(self, value: Any) -> None:
        """Structured numbers obey the same 32-bit bound as filter literals."""
        error = _violation(_expression(_group(_condition(value=value))))
        assert error.constraint == "invalid_value"
        assert "2147483647" in error.message


# =============================================================================
# Dangerous content
# =============================================================================

DANGEROUS = [
    "<script>alert(1)</script>",
    "< SCRIPT src=x>",
    "</iframe>",
    "<object data=x>",
    "<embed src=x>",
    "<style>",
    "<svg/onload=alert(1)>",
    "<link rel=stylesheet>",
    "<meta http-equiv=refresh>",
    "img onerror=alert(1)",
    "onClick = go()",
    "JavaScript:alert(1)",
    "vbscript:msgbox(1)",
    "data:text/html;base64,PHNjcmlwdD4=",
    "data:application/javascript,alert(1)",
    "width: expression(alert(1))",
    "background: url(http://evil)",
    "@import 'evil.css'",
    "eval(code)",
    "new Function(code)",
    "<!-- hidden -->",
    "&lt;script&gt;",
    "&#60;script",
    "&#060;iframe",
    "&#x3C;svg",
    "&#x003c;meta",
]

BENIGN = [
    "Weekly sync",
    "Review pull request #42",
    "Fix login on mobile",
    "Ship v2 <= Friday",
    "A = B",
    "Prepare scripts for demo",
]


class TestDangerousContent:
    @pytest.mark.req("FILTER-VALID-003")
    @pytest.mark.parametrize("payload", DANGEROUS)
    def test_rejected_with_surrounding_text(self, payload: str) -> None:
        value = f"Quarterly report {payload} final"
        error = _violation(_expression(_group(_condition(), _condition("title", "=", value))))
        assert error.constraint == "dangerous_content"
        assert (error.group_index, error.condition_index) == (0, 1)

    @pytest.mark.parametrize("payload", ["<script>", "javascript:"])
    def test_rejected_inside_arrays(self, payload: str) -> None:
        error = _violation(_expression(_group(_condition("labels", "in", ["ok", payload]))))
        assert error.constraint == "dangerous_content"

    @pytest.mark.parametrize("value", ["xonerror=alert(1)", "1onload=x", "a_onclick = go()"])
    def test_event_handler_glued_to_text(self, value: str) -> None:
        assert find_dangerous_content(value) == "event handler attribute"
        error = _violation(_expression(_group(_condition("title", "=", value))))
        assert error.constraint == "dangerous_content"

    @pytest.mark.parametrize("value", BENIGN)
    def test_benign_text_allowed(self, value: str) -> None:
        assert find_dangerous_content(value) is None
        validate_filter_expression(_expression(_group(_condition("title", "like", value))))

    def test_detection_is_repeatable(self) -> None:
        """Consecutive calls give the same answer."""
        results = [find_dangerous_content("<script>") for _ in range(3)]
        assert results == ["markup tag"] * 3


# =============================================================================
# Serialization
# =============================================================================


class TestSerialization:
    def test_compact_output(self) -> None:
        text = serialize_filter_expression(_expression(_group(_condition("done", "=", False))))
        assert text == (
            '{"groups":[{"conditions":[{"field":"done","operator":"=","value":false}],'
            '"operator":"AND"}],"operator":"AND"}'
        )

    @pytest.mark.req("FILTER-VALID-004")
    def test_round_trip_is_idempotent(self) -> None:
        raw = _expression(
            _group(_condition("done", "=", False), _condition("priority", ">=", 4)),
            _group(
                _condition("dueDate", "<", "now+3d"),
                _condition("labels", "in", ["bug", "ui"]),
                _condition("percentDone", ">", 0.5),
                operator="OR",
            ),
            operator="OR",
        )
        validated = validate_filter_expression(raw)
        text = serialize_filter_expression(validated)
        restored = deserialize_filter_expression(text)
        assert restored == validated
        assert validate_filter_expression(restored) == validated
        assert serialize_filter_expression(restored) == text

    def test_serialize_accepts_mapping(self) -> None:
        text = serialize_filter_expression(_expression())
        assert json.loads(text)["groups"][0]["conditions"][0]["field"] == "priority"

    def test_circular_reference(self) -> None:
        group: dict[str, Any] = {"operator": "AND", "conditions": []}
        group["conditions"].append(group)
        with pytest.raises(FilterValidationError) as exc_info:
            serialize_filter_expression({"groups": [group]})
        assert exc_info.value.constraint == "circular_reference"

    def test_unserializable_value(self) -> None:
        with pytest.raises(FilterValidationError) as exc_info:
            serialize_filter_expression(_expression(_group(_condition(value=object()))))
        assert exc_info.value.constraint == "malformed"

    def test_serialize_validates(self) -> None:
        with pytest.raises(FilterValidationError) as exc_info:
            serialize_filter_expression(_expression(_group(_condition(field="__proto__"))))
        assert exc_info.value.constraint == "unknown_field"

    def test_serialized_size_cap(self) -> None:
        limits = FilterLimits(max_serialized_length=100)
        groups = [_group(*[_condition()] * 5)]
        with pytest.raises(FilterValidationError) as exc_info:
            serialize_filter_expression({"groups": groups}, limits=limits)
        assert exc_info.value.constraint == "payload_too_large"


class TestDeserialization:
    def test_size_checked_before_parsing(self) -> None:
        with pytest.raises(FilterValidationError) as exc_info:
            deserialize_filter_expression("{" * 50_001)
        assert exc_info.value.constraint == "payload_too_large"

    @pytest.mark.parametrize("text", ["{not json", "", "[1, 2"])
    def test_invalid_json(self, text: str) -> None:
        with pytest.raises(FilterValidationError) as exc_info:
            deserialize_filter_expression(text)
        assert exc_info.value.constraint == "invalid_json"

    @pytest.mark.parametrize("value", [None, b"{}", {"groups": []}])
    def test_requires_text(self, value: Any) -> None:
        with pytest.raises(FilterValidationError) as exc_info:
            deserialize_filter_expression(value)
        assert exc_info.value.constraint == "malformed"

    def test_revalidates_content(self, caplog: pytest.LogCaptureFixture) -> None:
        """Stored text is never trusted, even if it decodes cleanly."""
        text = json.dumps(_expression(_group(_condition("title", "=", "<script>x</script>"))))
        with caplog.at_level(logging.WARNING, logger="taskfilters"):
            with pytest.raises(FilterValidationError) as exc_info:
                deserialize_filter_expression(text)
        assert exc_info.value.constraint == "dangerous_content"
        assert "failed validation" in caplog.text


# =============================================================================
# Linting and rendering
# =============================================================================


class TestCheckFilterExpression:
    def test_clean_expression(self) -> None:
        report = check_filter_expression(_expression())
        assert report.valid
        assert report.errors == []
        assert report.warnings == []

    def test_structural_error_reported(self) -> None:
        report = check_filter_expression({"groups": []})
        assert not report.valid
        assert len(report.errors) == 1

    def test_operator_type_mismatch(self) -> None:
        report = check_filter_expression(_expression(_group(_condition("priority", "like", "3"))))
        assert not report.valid
        assert any('Invalid operator "like" for field "priority"' in e for e in report.errors)

    @pytest.mark.parametrize(
        ("field", "operator", "value"),
        [
            ("done", "=", "yes"),
            ("priority", ">", "high"),
            ("dueDate", "<", "tomorrow"),
            ("labels", "in", True),
        ],
    )
    def test_value_type_mismatch(self, field: str, operator: str, value: Any) -> None:
        report = check_filter_expression(_expression(_group(_condition(field, operator, value))))
        assert not report.valid

    @pytest.mark.parametrize("value", ["now+3d", "2024-01-15", "2024-01-15T10:00:00Z"])
    def test_date_values_accepted(self, value: str) -> None:
        assert check_filter_expression(_expression(_group(_condition("dueDate", "<", value)))).valid

    def test_performance_warning(self) -> None:
        report = check_filter_expression(_expression(_group(*[_condition()] * 11)))
        assert report.valid
        assert len(report.warnings) == 1
        assert "11 conditions" in report.warnings[0]


class TestExpressionToString:
    def test_single_group(self) -> None:
        expression = validate_filter_expression(
            _expression(_group(_condition("done", "=", False), _condition("priority", ">=", 4)))
        )
        assert expression_to_string(expression) == "done = false && priority >= 4"

    def test_groups_are_parenthesized(self) -> None:
        expression = validate_filter_expression(
            _expression(
                _group(_condition("done", "=", False), _condition("priority", ">=", 4)),
                _group(_condition("done", "=", True), _condition("priority", "=", 5)),
                operator="OR",
            )
        )
        text = expression_to_string(expression)
        assert text == "(done = false && priority >= 4) || (done = true && priority = 5)"
        assert parse_filter_string(text).error is None

    def test_dates_and_strings(self) -> None:
        expression = validate_filter_expression(
            _expression(
                _group(
                    _condition("dueDate", "<", "now+3d"),
                    _condition("title", "like", "sync"),
                    _condition("labels", "in", ["a", "b"]),
                    operator="OR",
                )
            )
        )
        text = expression_to_string(expression)
        assert text == 'dueDate < now+3d || title like "sync" || labels in ["a","b"]'
        assert parse_filter_string(text).error is None
