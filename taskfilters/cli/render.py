from __future__ import annotations

import json
import sys
from dataclasses import dataclass
from typing import Any

from rich.console import Console
from rich.json import JSON
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from .results import CommandResult


@dataclass(frozen=True, slots=True)
class RenderSettings:
    output: str  # "table" | "json"
    quiet: bool
    verbosity: int


def _error_title(error_type: str) -> str:
    mapping = {
        "usage_error": "Usage error",
        "syntax_error": "Syntax error",
        "validation_error": "Validation error",
        "invalid_records": "Invalid records",
        "internal_error": "Internal error",
    }
    return mapping.get((error_type or "").strip(), "Error")


def _format_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    return str(value)


def _table_from_rows(rows: list[dict[str, Any]]) -> Table:
    table = Table(show_header=True, header_style="bold")
    if not rows:
        table.add_column("result")
        table.add_row("No results")
        return table
    columns: list[str] = []
    for row in rows:
        for key in row:
            if key not in columns:
                columns.append(key)
    for column in columns:
        table.add_column(column)
    for row in rows:
        table.add_row(*(_format_cell(row.get(column)) for column in columns))
    return table


def _ast_tree(node: dict[str, Any], tree: Tree | None = None) -> Tree:
    if node.get("type") == "condition":
        label = f"{node['field']} {node['operator']} {node['literal']}"
        if tree is None:
            return Tree(label)
        tree.add(label)
        return tree
    label = "AND" if node.get("type") == "and" else "OR"
    branch = Tree(label) if tree is None else tree.add(label)
    _ast_tree(node["left"], branch)
    _ast_tree(node["right"], branch)
    return branch if tree is None else tree


def render_result(result: CommandResult, *, settings: RenderSettings) -> int:
    stdout = Console(file=sys.stdout, force_terminal=False)
    stderr = Console(file=sys.stderr, force_terminal=False)

    if settings.output == "json":
        payload = result.model_dump(by_alias=True, mode="json")
        sys.stdout.write(json.dumps(payload, ensure_ascii=False) + "\n")
        return 0

    if not result.ok:
        if result.error is not None:
            stderr.print(
                f"{_error_title(result.error.type)}: {result.error.message}", markup=False
            )
            if result.error.hint:
                stderr.print(result.error.hint, markup=False, highlight=False)
        else:
            stderr.print("Error")
        return 0

    data = result.data if isinstance(result.data, dict) else {}
    if result.command == "parse":
        stdout.print(Text(data.get("filter", ""), style="bold"))
        if not settings.quiet:
            stdout.print(_ast_tree(data["ast"]))
    elif result.command == "validate":
        stdout.print(Text(data.get("filter", ""), style="bold"))
        if not settings.quiet:
            stdout.print(JSON.from_data(data.get("expression")))
    elif result.command == "apply":
        stdout.print(_table_from_rows(data.get("records", [])))
        if not settings.quiet:
            stdout.print(f"{data.get('matched', 0)} of {data.get('total', 0)} records matched")
    elif result.data is not None:
        stdout.print(JSON.from_data(result.data))

    for warning in result.warnings:
        if not settings.quiet:
            stderr.print(f"Warning: {warning}", markup=False)
    return 0
