from __future__ import annotations

from typing import Any

from ..exceptions import FilterError


class CLIError(FilterError):
    """A command failed on bad input rather than on a rejected filter.

    ``error_type`` becomes ``error.type`` in the JSON envelope and
    ``exit_code`` the process status.
    """

    def __init__(
        self,
        message: str,
        *,
        exit_code: int = 1,
        error_type: str = "usage_error",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.exit_code = exit_code
        self.error_type = error_type
