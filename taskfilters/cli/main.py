from __future__ import annotations

from pathlib import Path

import taskfilters

from .click_compat import RichGroup, click
from .context import CLIContext
from .logging import configure_logging, restore_logging


@click.group(
    name="taskfilters",
    invoke_without_command=True,
    context_settings={"help_option_names": ["-h", "--help"]},
    cls=RichGroup,
)
@click.option("--json", "json_flag", is_flag=True, help="Emit a JSON result envelope.")
@click.option("-q", "--quiet", is_flag=True, help="Suppress non-essential output.")
@click.option("-v", "verbose", count=True, help="Increase verbosity (-v, -vv).")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False),
    default=None,
    help="Also write debug logs to this file.",
)
@click.version_option(version=taskfilters.__version__, prog_name="taskfilters")
@click.pass_context
def cli(
    click_ctx: click.Context,
    *,
    json_flag: bool,
    quiet: bool,
    verbose: int,
    log_file: str | None,
) -> None:
    """Parse, validate and apply task filter expressions."""
    if click_ctx.invoked_subcommand is None:
        click.echo(click_ctx.get_help())
        raise click.exceptions.Exit(0)

    effective_log_file = Path(log_file) if log_file else None
    click_ctx.obj = CLIContext(
        output="json" if json_flag else "table",
        quiet=quiet,
        verbosity=verbose,
        log_file=effective_log_file,
    )

    previous_logging = configure_logging(
        verbosity=verbose, quiet=quiet, log_file=effective_log_file
    )
    click_ctx.call_on_close(lambda: restore_logging(previous_logging))


# Register commands
from .commands.filter_cmds import apply_cmd as _apply_cmd  # noqa: E402
from .commands.filter_cmds import parse_cmd as _parse_cmd  # noqa: E402
from .commands.filter_cmds import validate_cmd as _validate_cmd  # noqa: E402

cli.add_command(_parse_cmd)
cli.add_command(_validate_cmd)
cli.add_command(_apply_cmd)
