from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import IO, Any

from ...dates import RelativeDate, parse_timestamp
from ...evaluator import apply_filter
from ...exceptions import FilterSyntaxError
from ...filters import (
    AndExpression,
    Condition,
    FilterNode,
    OrExpression,
    format_literal,
    parse_filter_string,
)
from ...simple import SimpleFilter, parse_simple_filter
from ...validation import (
    check_filter_expression,
    deserialize_filter_expression,
    expression_to_string,
)
from ..click_compat import RichCommand, click
from ..context import CLIContext
from ..errors import CLIError
from ..options import output_options
from ..runner import CommandOutput, run_command


def _json_value(value: Any) -> Any:
    if isinstance(value, RelativeDate):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, tuple):
        return list(value)
    return value


def node_to_dict(node: FilterNode) -> dict[str, Any]:
    """JSON-friendly view of an AST."""
    if isinstance(node, Condition):
        return {
            "type": "condition",
            "field": node.field,
            "operator": node.operator.value,
            "value": _json_value(node.value),
            "literal": format_literal(node.value),
        }
    if isinstance(node, (AndExpression, OrExpression)):
        return {
            "type": "and" if isinstance(node, AndExpression) else "or",
            "left": node_to_dict(node.left),
            "right": node_to_dict(node.right),
        }
    raise TypeError(f"Unknown filter node: {type(node).__name__}")


def _parse_ad_hoc(filter_string: str) -> FilterNode:
    result = parse_filter_string(filter_string)
    if result.expression is None:
        raise result.error or FilterSyntaxError("Empty filter expression")
    return result.expression


def _read_json(stream: IO[str], *, what: str) -> Any:
    try:
        return json.load(stream)
    except ValueError as e:
        raise CLIError(
            f"{what} is not valid JSON: {e}", exit_code=2, error_type="usage_error"
        ) from None


def _structured_text(filter_arg: str) -> str:
    if not filter_arg.startswith("@"):
        return filter_arg
    path = Path(filter_arg[1:])
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise CLIError(
            f"Cannot read filter file {path}: {e.strerror}", exit_code=2, error_type="usage_error"
        ) from None


@click.command(name="parse", cls=RichCommand)
@click.argument("filter_string", metavar="FILTER")
@output_options
@click.pass_obj
def parse_cmd(ctx: CLIContext, filter_string: str) -> None:
    """Parse an ad hoc filter string and show its structure.

    Exits with status 2 when the filter is not valid.
    """

    def fn(_: CLIContext, _warnings: list[str]) -> CommandOutput:
        expression = _parse_ad_hoc(filter_string)
        return CommandOutput(
            data={"filter": expression.to_string(), "ast": node_to_dict(expression)}
        )

    run_command(ctx, command="parse", fn=fn)


@click.command(name="validate", cls=RichCommand)
@click.argument(
    "source", type=click.File("r", encoding="utf-8"), default="-", metavar="[FILE|-]"
)
@click.option("--strict", is_flag=True, help="Treat operator/type mismatches as errors.")
@output_options
@click.pass_obj
def validate_cmd(ctx: CLIContext, source: IO[str], *, strict: bool) -> None:
    """Validate a stored (structured) filter expression read from FILE or stdin."""

    def fn(_: CLIContext, warnings: list[str]) -> CommandOutput:
        expression = deserialize_filter_expression(source.read())
        report = check_filter_expression(expression)
        if strict and report.errors:
            raise CLIError(
                report.errors[0],
                exit_code=2,
                error_type="validation_error",
                details={"errors": report.errors},
            )
        warnings.extend(report.errors)
        warnings.extend(report.warnings)
        return CommandOutput(
            data={
                "filter": expression_to_string(expression),
                "expression": expression.model_dump(mode="json"),
                "conditionCount": expression.condition_count,
            }
        )

    run_command(ctx, command="validate", fn=fn)


@click.command(name="apply", cls=RichCommand)
@click.argument("filter_arg", metavar="FILTER")
@click.argument("records_file", type=click.File("r", encoding="utf-8"), metavar="RECORDS_FILE")
@click.option(
    "--structured",
    is_flag=True,
    help="FILTER is a stored JSON expression (or @path to a file containing one).",
)
@click.option(
    "--simple", is_flag=True, help="FILTER is a single 'field operator value' condition."
)
@click.option(
    "--now", "now_arg", default=None, help="Reference time for relative dates (ISO 8601)."
)
@output_options
@click.pass_obj
def apply_cmd(
    ctx: CLIContext,
    filter_arg: str,
    records_file: IO[str],
    *,
    structured: bool,
    simple: bool,
    now_arg: str | None,
) -> None:
    """Filter a JSON array of task records.

    Exits with status 0 even when nothing matches; invalid filters exit with 2.
    """

    def fn(_: CLIContext, _warnings: list[str]) -> CommandOutput:
        if structured and simple:
            raise CLIError(
                "--structured and --simple are mutually exclusive",
                exit_code=2,
                error_type="usage_error",
            )

        now = None
        if now_arg is not None:
            now = parse_timestamp(now_arg)
            if now is None:
                raise CLIError(
                    f"Invalid --now value: {now_arg!r}", exit_code=2, error_type="usage_error"
                )

        target: Any
        if structured:
            target = deserialize_filter_expression(_structured_text(filter_arg))
        elif simple:
            target = parse_simple_filter(filter_arg)
            if target is None:
                raise CLIError(
                    f"Invalid simple filter: {filter_arg[:80]!r}",
                    exit_code=2,
                    error_type="syntax_error",
                )
        else:
            target = _parse_ad_hoc(filter_arg)

        records = _read_json(records_file, what="Records file")
        if not isinstance(records, list) or not all(isinstance(r, dict) for r in records):
            raise CLIError(
                "Records file must contain a JSON array of objects",
                exit_code=2,
                error_type="invalid_records",
            )

        matched = apply_filter(records, target, now=now)
        filter_text = (
            expression_to_string(target)
            if not isinstance(target, (FilterNode, SimpleFilter))
            else target.to_string()
        )
        return CommandOutput(
            data={
                "filter": filter_text,
                "matched": len(matched),
                "total": len(records),
                "records": matched,
            },
            now=now.isoformat() if now is not None else None,
        )

    run_command(ctx, command="apply", fn=fn)
