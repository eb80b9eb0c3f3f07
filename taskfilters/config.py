"""
Filter limits (cross-cutting size and count bounds).

Every parser and validator in this package reads its bounds from a
``FilterLimits`` instance. Callers may pass tighter limits; the defaults are
the ceilings the persisted format is designed around.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class FilterLimits:
    """Bounds applied to filter strings and structured expressions."""

    # Ad hoc and simple filter strings
    max_filter_length: int = 1000
    max_quoted_length: int = 502
    max_paren_depth: int = 20

    # Array literals
    max_array_token_length: int = 200
    max_array_items: int = 100
    max_array_string_length: int = 50

    # Integer literals (32-bit signed range)
    max_integer: int = 2_147_483_647

    # Structured expressions
    max_groups: int = 10
    max_conditions: int = 50
    max_string_length: int = 1000
    max_serialized_length: int = 50_000

    def __post_init__(self) -> None:
        for name in self.__slots__:
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")


DEFAULT_LIMITS = FilterLimits()
