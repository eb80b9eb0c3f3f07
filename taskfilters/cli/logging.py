"""Logging setup for CLI runs.

Library modules only create loggers; handlers are attached here for the
duration of one command and removed again afterwards.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

_PACKAGE_LOGGER = "taskfilters"


@dataclass(frozen=True, slots=True)
class LoggingState:
    level: int
    propagate: bool
    handlers: tuple[logging.Handler, ...]


def _level_for(verbosity: int, quiet: bool) -> int:
    if quiet:
        return logging.ERROR
    if verbosity >= 2:
        return logging.DEBUG
    if verbosity == 1:
        return logging.INFO
    return logging.WARNING


def configure_logging(
    *, verbosity: int, quiet: bool = False, log_file: Path | None = None
) -> LoggingState:
    """Attach a stderr handler (and optionally a file handler); return the prior state."""
    logger = logging.getLogger(_PACKAGE_LOGGER)
    previous = LoggingState(
        level=logger.level, propagate=logger.propagate, handlers=tuple(logger.handlers)
    )

    level = _level_for(verbosity, quiet)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    console_handler = RichHandler(
        console=Console(stderr=True),
        level=level,
        show_path=verbosity >= 2,
        rich_tracebacks=verbosity >= 2,
    )
    logger.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        logger.addHandler(file_handler)
        level = logging.DEBUG

    logger.setLevel(level)
    logger.propagate = False
    return previous


def restore_logging(state: LoggingState) -> None:
    logger = logging.getLogger(_PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        if handler not in state.handlers:
            handler.close()
    for handler in state.handlers:
        logger.addHandler(handler)
    logger.setLevel(state.level)
    logger.propagate = state.propagate
