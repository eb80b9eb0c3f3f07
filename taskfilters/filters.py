"""
Ad hoc filter string parsing.

Parses human-authored filter strings into an immutable AST that can be
evaluated against task records.

Grammar (lowest to highest precedence):

    or_expr   := and_expr ( "||" and_expr )*
    and_expr  := atom ( "&&" atom )*
    atom      := "(" or_expr ")" | FIELD OPERATOR literal

``&&`` binds tighter than ``||`` and both associate left to right, so
``a || b && c`` means ``a || (b && c)``. Parentheses always override.

Example:
    from taskfilters import parse_filter_string

    result = parse_filter_string("(done = false && priority >= 4) || dueDate < now+3d")
    if result.error is None:
        open_tasks = [t for t in tasks if result.expression.matches(t)]
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, time, timezone
from enum import Enum, auto
from typing import Any

from .config import DEFAULT_LIMITS, FilterLimits
from .dates import RelativeDate, parse_date_literal, parse_relative_date
from .exceptions import FilterSyntaxError
from .fields import AD_HOC_FIELDS, FilterOperator, canonical_attribute
from .literals import LiteralError, parse_array_literal, parse_integer_literal

logger = logging.getLogger(__name__)


def format_literal(value: Any) -> str:
    """Format a Python value as a filter literal."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, RelativeDate):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        if value.time() == time(0):
            return value.date().isoformat()
        return f'"{value.isoformat()}"'
    if isinstance(value, (list, tuple)):
        return json.dumps(list(value), separators=(",", ":"))
    return f'"{value}"'


# =============================================================================
# AST
# =============================================================================


class FilterNode(ABC):
    """Base class for ad hoc filter AST nodes."""

    @abstractmethod
    def to_string(self) -> str:
        """Render the node as a filter string that parses back to an equal node."""
        ...

    def matches(self, record: Mapping[str, Any], now: datetime | None = None) -> bool:
        """Evaluate the node against one record.

        ``now`` anchors relative dates; it defaults to the current UTC time.
        """
        from .evaluator import evaluate

        return evaluate(self, record, now=now)

    def __and__(self, other: FilterNode) -> AndExpression:
        return AndExpression(self, other)

    def __or__(self, other: FilterNode) -> OrExpression:
        return OrExpression(self, other)

    def __str__(self) -> str:
        return self.to_string()


@dataclass(frozen=True)
class Condition(FilterNode):
    """A leaf comparison: ``field operator value``.

    ``field`` is the canonical record attribute (``dueDate`` is stored as
    ``due_date``).
    """

    field: str
    operator: FilterOperator
    value: Any

    def to_string(self) -> str:
        return f"{self.field} {self.operator.value} {format_literal(self.value)}"


@dataclass(frozen=True)
class AndExpression(FilterNode):
    """``&&`` combination of two nodes."""

    left: FilterNode
    right: FilterNode

    def to_string(self) -> str:
        left = self.left.to_string()
        if isinstance(self.left, OrExpression):
            left = f"({left})"
        right = self.right.to_string()
        if not isinstance(self.right, Condition):
            right = f"({right})"
        return f"{left} && {right}"


@dataclass(frozen=True)
class OrExpression(FilterNode):
    """``||`` combination of two nodes."""

    left: FilterNode
    right: FilterNode

    def to_string(self) -> str:
        right = self.right.to_string()
        if isinstance(self.right, OrExpression):
            right = f"({right})"
        return f"{self.left.to_string()} || {right}"


@dataclass(frozen=True)
class ParseResult:
    """Outcome of ``parse_filter_string``: exactly one field is set."""

    expression: FilterNode | None
    error: FilterSyntaxError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# =============================================================================
# Tokenizer
# =============================================================================


class _TokenType(Enum):
    """Token types for the filter tokenizer."""

    FIELD = auto()
    OPERATOR = auto()  # =, !=, >, >=, <, <=, like, in, not in
    LOGICAL = auto()  # &&, ||
    LPAREN = auto()
    RPAREN = auto()
    STRING_LITERAL = auto()
    NUMBER_LITERAL = auto()
    BOOL_LITERAL = auto()
    NULL_LITERAL = auto()
    DATE_LITERAL = auto()
    RELATIVE_DATE = auto()
    ARRAY_LITERAL = auto()
    EOF = auto()


_LITERAL_TYPES = frozenset(
    [
        _TokenType.STRING_LITERAL,
        _TokenType.NUMBER_LITERAL,
        _TokenType.BOOL_LITERAL,
        _TokenType.NULL_LITERAL,
        _TokenType.DATE_LITERAL,
        _TokenType.RELATIVE_DATE,
        _TokenType.ARRAY_LITERAL,
    ]
)


@dataclass(frozen=True)
class _Token:
    """A token from the filter string."""

    type: _TokenType
    value: str
    pos: int  # Offset into the input, for error messages


# Longest first so ">=" wins over ">"
_SYMBOL_OPERATORS = ("!=", ">=", "<=", "=", ">", "<")
_WORD_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_RELATIVE_DATE_TOKEN_RE = re.compile(r"now(?:[+-]\d{1,6}[smhdwMy])?", re.ASCII)
_DATE_TOKEN_RE = re.compile(r"\d{4}-\d{2}-\d{2}", re.ASCII)
_NUMBER_TOKEN_RE = re.compile(r"-?\d{1,10}(?:\.\d{1,6})?", re.ASCII)
_NOT_IN_RE = re.compile(r"not\s+in(?![A-Za-z0-9_])", re.IGNORECASE)


def _is_word_char(ch: str) -> bool:
    return ch.isalnum() or ch in "_."


def _boundary_at(text: str, pos: int) -> bool:
    """True if a literal ending at ``pos`` is not glued to more word characters."""
    return pos >= len(text) or not _is_word_char(text[pos])


def _read_array(text: str, start: int, limits: FilterLimits) -> int:
    """Return the index just past the ``]`` closing the array opened at ``start``.

    JSON strings inside the array may contain brackets. Scanning stops once
    the token would exceed the array length bound.
    """
    in_string = False
    escaped = False
    limit = min(len(text), start + limits.max_array_token_length)
    pos = start + 1
    while pos < limit:
        ch = text[pos]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "[":
            raise FilterSyntaxError(
                f"Nested arrays are not allowed (position {pos})", position=pos
            )
        elif ch == "]":
            return pos + 1
        pos += 1
    if limit < len(text):
        raise FilterSyntaxError(
            f"Array literal at position {start} exceeds "
            f"{limits.max_array_token_length} characters",
            position=start,
        )
    raise FilterSyntaxError(f"Unterminated array starting at position {start}", position=start)


def _read_word(text: str, pos: int) -> tuple[_Token, int]:
    """Tokenize an identifier-like word at ``pos``; return the token and its end."""
    # "now" is only a relative date when it stands alone or carries an offset
    if text.startswith("now", pos):
        match = _RELATIVE_DATE_TOKEN_RE.match(text, pos)
        if match is not None and _boundary_at(text, match.end()):
            return _Token(_TokenType.RELATIVE_DATE, match.group(0), pos), match.end()

    word_match = _WORD_RE.match(text, pos)
    if word_match is None:
        raise FilterSyntaxError(
            f"Unexpected character '{text[pos]}' at position {pos}", position=pos
        )
    word = word_match.group(0)
    end = word_match.end()
    lower = word.lower()

    if lower == "not":
        not_in = _NOT_IN_RE.match(text, pos)
        if not_in is not None:
            return _Token(_TokenType.OPERATOR, "not in", pos), not_in.end()
    if lower in ("like", "in"):
        return _Token(_TokenType.OPERATOR, lower, pos), end
    if word in ("true", "false"):
        return _Token(_TokenType.BOOL_LITERAL, word, pos), end
    if word == "null":
        return _Token(_TokenType.NULL_LITERAL, word, pos), end
    if word in AD_HOC_FIELDS:
        return _Token(_TokenType.FIELD, word, pos), end

    if lower in ("and", "or"):
        symbol = "&&" if lower == "and" else "||"
        raise FilterSyntaxError(
            f"Unexpected '{word}' at position {pos}. Hint: Use '{symbol}' for {lower.upper()}",
            position=pos,
        )
    # Unknown identifiers are indistinguishable from any other bad token
    raise FilterSyntaxError(f"Unexpected token '{word}' at position {pos}", position=pos)


def _tokenize(text: str, limits: FilterLimits) -> list[_Token]:
    """Tokenize the entire filter string.

    Raises:
        FilterSyntaxError: On the first character sequence that is not a token.
    """
    tokens: list[_Token] = []
    pos = 0
    length = len(text)

    while True:
        while pos < length and text[pos].isspace():
            pos += 1
        if pos >= length:
            tokens.append(_Token(_TokenType.EOF, "", pos))
            return tokens

        ch = text[pos]

        if ch == "(":
            tokens.append(_Token(_TokenType.LPAREN, "(", pos))
            pos += 1
        elif ch == ")":
            tokens.append(_Token(_TokenType.RPAREN, ")", pos))
            pos += 1
        elif text.startswith("&&", pos) or text.startswith("||", pos):
            tokens.append(_Token(_TokenType.LOGICAL, text[pos : pos + 2], pos))
            pos += 2
        elif ch in "!=<>":
            op = next((op for op in _SYMBOL_OPERATORS if text.startswith(op, pos)), None)
            if op is None:
                raise FilterSyntaxError(
                    f"Unexpected character '{ch}' at position {pos}", position=pos
                )
            tokens.append(_Token(_TokenType.OPERATOR, op, pos))
            pos += len(op)
        elif ch == '"':
            end = text.find('"', pos + 1)
            if end == -1:
                raise FilterSyntaxError(
                    f"Unterminated quoted string starting at position {pos}", position=pos
                )
            if end + 1 - pos > limits.max_quoted_length:
                raise FilterSyntaxError(
                    f"Quoted string at position {pos} exceeds "
                    f"{limits.max_quoted_length - 2} characters",
                    position=pos,
                )
            tokens.append(_Token(_TokenType.STRING_LITERAL, text[pos + 1 : end], pos))
            pos = end + 1
        elif ch == "[":
            end = _read_array(text, pos, limits)
            tokens.append(_Token(_TokenType.ARRAY_LITERAL, text[pos:end], pos))
            pos = end
        elif ch.isdigit() or ch == "-":
            date_match = _DATE_TOKEN_RE.match(text, pos)
            if date_match is not None and _boundary_at(text, date_match.end()):
                tokens.append(_Token(_TokenType.DATE_LITERAL, date_match.group(0), pos))
                pos = date_match.end()
                continue
            number_match = _NUMBER_TOKEN_RE.match(text, pos)
            if number_match is None or not _boundary_at(text, number_match.end()):
                raise FilterSyntaxError(f"Invalid number at position {pos}", position=pos)
            tokens.append(_Token(_TokenType.NUMBER_LITERAL, number_match.group(0), pos))
            pos = number_match.end()
        elif (ch.isascii() and ch.isalpha()) or ch == "_":
            token, pos = _read_word(text, pos)
            tokens.append(token)
        else:
            raise FilterSyntaxError(f"Unexpected character '{ch}' at position {pos}", position=pos)


# =============================================================================
# Parser
# =============================================================================
#
# Each function takes the token list and the current index and returns the
# parsed node together with the index of the first unconsumed token.


def _parse_or_expr(
    tokens: list[_Token], pos: int, depth: int, limits: FilterLimits
) -> tuple[FilterNode, int]:
    """Parse OR expressions (lowest precedence)."""
    left, pos = _parse_and_expr(tokens, pos, depth, limits)

    while tokens[pos].type is _TokenType.LOGICAL and tokens[pos].value == "||":
        right, pos = _parse_and_expr(tokens, pos + 1, depth, limits)
        left = OrExpression(left, right)

    return left, pos


def _parse_and_expr(
    tokens: list[_Token], pos: int, depth: int, limits: FilterLimits
) -> tuple[FilterNode, int]:
    """Parse AND expressions (binds tighter than OR)."""
    left, pos = _parse_atom(tokens, pos, depth, limits)

    while tokens[pos].type is _TokenType.LOGICAL and tokens[pos].value == "&&":
        right, pos = _parse_atom(tokens, pos + 1, depth, limits)
        left = AndExpression(left, right)

    return left, pos


def _parse_atom(
    tokens: list[_Token], pos: int, depth: int, limits: FilterLimits
) -> tuple[FilterNode, int]:
    """Parse a comparison or a parenthesized expression."""
    token = tokens[pos]

    if token.type is _TokenType.LPAREN:
        if depth >= limits.max_paren_depth:
            raise FilterSyntaxError(
                f"Parentheses nested deeper than {limits.max_paren_depth} levels "
                f"at position {token.pos}",
                position=token.pos,
            )
        expr, pos = _parse_or_expr(tokens, pos + 1, depth + 1, limits)
        closing = tokens[pos]
        if closing.type is not _TokenType.RPAREN:
            raise FilterSyntaxError(
                f"Unbalanced parentheses: expected ')' at position {closing.pos}",
                position=closing.pos,
            )
        return expr, pos + 1

    if token.type is _TokenType.FIELD:
        return _parse_comparison(tokens, pos, limits)

    if token.type is _TokenType.EOF:
        raise FilterSyntaxError("Unexpected end of expression", position=token.pos)
    if token.type is _TokenType.OPERATOR:
        raise FilterSyntaxError(
            f"Missing field name before operator '{token.value}' at position {token.pos}",
            position=token.pos,
        )
    if token.type is _TokenType.RPAREN:
        raise FilterSyntaxError(
            f"Unbalanced parentheses: unexpected ')' at position {token.pos}",
            position=token.pos,
        )
    raise FilterSyntaxError(
        f"Unexpected token '{token.value}' at position {token.pos}", position=token.pos
    )


def _parse_comparison(
    tokens: list[_Token], pos: int, limits: FilterLimits
) -> tuple[Condition, int]:
    """Parse ``FIELD OPERATOR literal``."""
    field_token = tokens[pos]
    op_token = tokens[pos + 1]
    if op_token.type is not _TokenType.OPERATOR:
        raise FilterSyntaxError(
            f"Expected operator after '{field_token.value}' at position {op_token.pos}",
            position=op_token.pos,
        )

    value_token = tokens[pos + 2]
    if value_token.type not in _LITERAL_TYPES:
        if value_token.type is _TokenType.OPERATOR and value_token.value == "=":
            raise FilterSyntaxError(
                f"Unexpected '=' at position {value_token.pos}. "
                "Hint: Use single '=' for equality, not '=='",
                position=value_token.pos,
            )
        raise FilterSyntaxError(
            f"Expected value after operator at position {value_token.pos}",
            position=value_token.pos,
        )

    condition = Condition(
        field=canonical_attribute(field_token.value),
        operator=FilterOperator(op_token.value),
        value=_literal_value(value_token, limits),
    )
    return condition, pos + 3


def _literal_value(token: _Token, limits: FilterLimits) -> Any:
    """Convert a literal token into its Python value."""
    try:
        if token.type is _TokenType.STRING_LITERAL:
            return token.value
        if token.type is _TokenType.BOOL_LITERAL:
            return token.value == "true"
        if token.type is _TokenType.NULL_LITERAL:
            return None
        if token.type is _TokenType.ARRAY_LITERAL:
            return parse_array_literal(token.value, limits)
        if token.type is _TokenType.NUMBER_LITERAL:
            if "." in token.value:
                return float(token.value)
            return parse_integer_literal(token.value, limits)
        if token.type is _TokenType.RELATIVE_DATE:
            return parse_relative_date(token.value)
    except LiteralError as e:
        raise FilterSyntaxError(f"{e} at position {token.pos}", position=token.pos) from None

    date = parse_date_literal(token.value)
    if date is None:
        raise FilterSyntaxError(
            f"Invalid date '{token.value}' at position {token.pos}", position=token.pos
        )
    return date


def _error_context(text: str, position: int) -> str:
    """Render a snippet of the input with a caret under ``position``."""
    start = max(0, position - 20)
    end = min(len(text), position + 20)
    prefix = "..." if start > 0 else ""
    suffix = "..." if end < len(text) else ""
    marker = " " * (position - start + len(prefix)) + "^"
    return f"{prefix}{text[start:end]}{suffix}\n{marker}"


def parse_filter_string(
    filter_string: Any, *, limits: FilterLimits = DEFAULT_LIMITS
) -> ParseResult:
    """
    Parse an ad hoc filter string into an AST.

    Never raises: any lexical or grammatical problem (unknown field, bad
    literal, unbalanced parentheses, trailing input, empty input) is returned
    as ``ParseResult(expression=None, error=FilterSyntaxError(...))``.

    Examples:
        >>> result = parse_filter_string("done = false && priority >= 4")
        >>> result.expression.matches({"done": False, "priority": 5})
        True

        >>> parse_filter_string("owner = 3").error.message
        "Unexpected token 'owner' at position 0"
    """
    if not isinstance(filter_string, str):
        return ParseResult(None, FilterSyntaxError("Filter input must be a string"))
    if len(filter_string) > limits.max_filter_length:
        return ParseResult(
            None,
            FilterSyntaxError(
                f"Filter string too long (max {limits.max_filter_length} characters)"
            ),
        )
    if not filter_string.strip():
        return ParseResult(None, FilterSyntaxError("Empty filter expression"))

    try:
        tokens = _tokenize(filter_string, limits)
        expr, pos = _parse_or_expr(tokens, 0, 0, limits)
        trailing = tokens[pos]
        if trailing.type is not _TokenType.EOF:
            if trailing.type is _TokenType.RPAREN:
                message = f"Unbalanced parentheses: unexpected ')' at position {trailing.pos}"
            else:
                message = f"Unexpected token '{trailing.value}' at position {trailing.pos}"
            raise FilterSyntaxError(message, position=trailing.pos)
    except FilterSyntaxError as e:
        e.context = _error_context(filter_string, e.position)
        logger.debug("Rejected filter string: %s", e.message)
        return ParseResult(None, e)

    return ParseResult(expr)
