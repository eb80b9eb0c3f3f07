from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from ..exceptions import FilterError, FilterSyntaxError, FilterValidationError
from .errors import CLIError
from .results import CommandMeta, CommandResult, ErrorInfo

OutputFormat = Literal["table", "json"]


@dataclass
class CLIContext:
    output: OutputFormat
    quiet: bool
    verbosity: int
    log_file: Path | None = None


def exit_code_for_exception(exc: Exception) -> int:
    if isinstance(exc, CLIError):
        return exc.exit_code
    # Rejected filters are usage errors, distinct from "nothing matched"
    if isinstance(exc, (FilterSyntaxError, FilterValidationError)):
        return 2
    return 1


def error_info_for_exception(exc: Exception) -> ErrorInfo:
    if isinstance(exc, CLIError):
        return ErrorInfo(type=exc.error_type, message=exc.message, details=exc.details)
    if isinstance(exc, FilterSyntaxError):
        return ErrorInfo(
            type="syntax_error",
            message=exc.message,
            hint=exc.context,
            details=exc.details,
        )
    if isinstance(exc, FilterValidationError):
        return ErrorInfo(type="validation_error", message=exc.message, details=exc.details)
    if isinstance(exc, FilterError):
        return ErrorInfo(type=exc.__class__.__name__, message=str(exc), details=exc.details)
    return ErrorInfo(type="internal_error", message=str(exc) or exc.__class__.__name__)


def build_result(
    *,
    ok: bool,
    command: str,
    started_at: float,
    data: Any | None,
    warnings: list[str],
    now: str | None = None,
    error: ErrorInfo | None = None,
) -> CommandResult:
    duration_ms = int(max(0.0, (time.time() - started_at) * 1000))
    return CommandResult(
        ok=ok,
        command=command,
        data=data,
        warnings=warnings,
        meta=CommandMeta(duration_ms=duration_ms, now=now),
        error=error,
    )
