from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

from .click_compat import click
from .context import CLIContext

F = TypeVar("F", bound=Callable[..., object])


def _set_json(ctx: click.Context, _param: click.Parameter, value: bool) -> bool:
    if not value:
        return value
    obj = ctx.obj
    if isinstance(obj, CLIContext):
        obj.output = "json"
    return value


def output_options(fn: F) -> F:
    """Allow ``--json`` after the subcommand as well as before it."""
    fn = click.option(
        "--json",
        is_flag=True,
        help="Emit a JSON result envelope.",
        callback=_set_json,
        expose_value=False,
    )(fn)
    return fn
