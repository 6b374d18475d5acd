"""Parameter binding for prepared statements.

The engine binds arguments strictly by position. Callers hand in either a
positional sequence or a mapping keyed by placeholder name; this module turns
both into the ordered argument list the engine expects.

Named placeholders use the ``$name`` sigil. The engine stores every named
parameter with the sigil applied, so mapping keys are normalized the same way
before they are looked up.
"""

import logging
import re
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, Final, Optional

from tursospec.utils.logging import PARAMETERS_LOGGER_NAME, get_logger, log_with_context

if TYPE_CHECKING:
    from tursospec.typing import StatementParameters

__all__ = (
    "MAX_SAFE_INTEGER",
    "PARAMETER_SIGIL",
    "PlaceholderInfo",
    "bind_parameters",
    "convert_named_to_positional",
    "convert_placeholders_to_numbered",
    "convert_placeholders_to_qmark",
    "find_placeholders",
    "normalize_named_parameters",
    "stringify_if_bigint",
)

logger = get_logger(PARAMETERS_LOGGER_NAME)

PARAMETER_SIGIL: Final[str] = "$"
MAX_SAFE_INTEGER: Final[int] = 2**53 - 1

# Literals, quoted identifiers and comments are matched first so placeholders inside them are skipped.
_PLACEHOLDER_REGEX: Final = re.compile(
    r"""
    (?P<squote>'(?:[^']|'')*') |
    (?P<dquote>"(?:[^"]|"")*") |
    (?P<backtick>`(?:[^`]|``)*`) |
    (?P<bracket>\[[^\]]*\]) |
    (?P<line_comment>--[^\r\n]*) |
    (?P<block_comment>/\*[\s\S]*?\*/) |
    (?P<qmark>\?(?P<qmark_index>\d*)) |
    (?P<named_dollar>\$(?P<dollar_name>\w+))
    """,
    re.VERBOSE,
)


class PlaceholderInfo:
    """Immutable placeholder information."""

    __slots__ = ("name", "ordinal", "placeholder_text", "position")

    def __init__(self, name: str, position: int, ordinal: int, placeholder_text: str) -> None:
        self.name = name
        self.position = position
        self.ordinal = ordinal
        self.placeholder_text = placeholder_text

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, type(self)):
            return False
        return self.name == other.name and self.position == other.position

    def __hash__(self) -> int:
        return hash((self.name, self.position))

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(name={self.name!r}, ordinal={self.ordinal!r}, "
            f"placeholder_text={self.placeholder_text!r}, position={self.position!r})"
        )


def stringify_if_bigint(value: Any) -> Any:
    """Return large integers as decimal text.

    The engine cannot round-trip integers outside the safe range, so they cross
    the boundary as strings. ``bool`` is an ``int`` subclass and is left alone.
    """
    if isinstance(value, int) and not isinstance(value, bool) and not -MAX_SAFE_INTEGER <= value <= MAX_SAFE_INTEGER:
        return str(value)
    return value


def find_placeholders(sql: str) -> "list[PlaceholderInfo]":
    """Scan ``sql`` left to right for ``$name`` placeholders.

    Duplicates are kept, one entry per occurrence.

    Args:
        sql: SQL text to scan.

    Returns:
        Placeholders in order of appearance.
    """
    placeholders: list[PlaceholderInfo] = []
    for match in _PLACEHOLDER_REGEX.finditer(sql):
        if match.group("named_dollar") is None:
            continue
        placeholders.append(
            PlaceholderInfo(
                name=match.group("dollar_name"),
                position=match.start("named_dollar"),
                ordinal=len(placeholders),
                placeholder_text=match.group("named_dollar"),
            )
        )
    return placeholders


def convert_placeholders_to_qmark(sql: str, placeholders: "Optional[list[PlaceholderInfo]]" = None) -> str:
    """Rewrite every ``$name`` placeholder into ``?``.

    Applied to statements bound from a named mapping, whose argument list holds
    one value per placeholder occurrence.
    """
    placeholders = find_placeholders(sql) if placeholders is None else placeholders
    if not placeholders:
        return sql

    result_parts = []
    current_pos = 0
    for placeholder in placeholders:
        result_parts.append(sql[current_pos : placeholder.position])
        result_parts.append("?")
        current_pos = placeholder.position + len(placeholder.placeholder_text)
    result_parts.append(sql[current_pos:])
    return "".join(result_parts)


def convert_placeholders_to_numbered(sql: str) -> str:
    """Rewrite every ``$name`` placeholder into ``?NNN`` with SQLite's own numbering.

    A name takes the next free index on its first appearance and keeps it for
    every later reference; ``?`` and ``?NNN`` placeholders advance the index as
    they do in SQLite. Positional arguments then bind exactly as the engine
    would bind them to the original text.
    """
    indexes: dict[str, int] = {}
    highest = 0
    result_parts = []
    current_pos = 0
    for match in _PLACEHOLDER_REGEX.finditer(sql):
        if match.group("qmark") is not None:
            digits = match.group("qmark_index")
            highest = max(highest, int(digits)) if digits else highest + 1
            continue
        if match.group("named_dollar") is None:
            continue
        name = match.group("dollar_name")
        if name not in indexes:
            highest += 1
            indexes[name] = highest
        result_parts.append(sql[current_pos : match.start("named_dollar")])
        result_parts.append(f"?{indexes[name]}")
        current_pos = match.end("named_dollar")
    if not indexes:
        return sql
    result_parts.append(sql[current_pos:])
    return "".join(result_parts)


def normalize_named_parameters(parameters: "Mapping[str, Any]") -> "dict[str, Any]":
    """Apply the sigil to every key and stringify large integers."""
    normalized: dict[str, Any] = {}
    for key, value in parameters.items():
        normalized_key = key if key.startswith(PARAMETER_SIGIL) else f"{PARAMETER_SIGIL}{key}"
        normalized[normalized_key] = stringify_if_bigint(value)
    return normalized


def convert_named_to_positional(
    sql: str, parameters: "Mapping[str, Any]", *, allow_fallback: bool = True
) -> "list[Any]":
    """Resolve the ``$name`` placeholders of ``sql`` against a mapping.

    Each placeholder is resolved by trying, in order, the sigil-prefixed key,
    the bare key, and (when ``allow_fallback`` is set) the first key no earlier
    placeholder consumed. Unresolved placeholders bind ``None``.

    The fallback guesses: with extra or misnamed keys it can bind the wrong
    value, so every use is logged as a warning.

    Args:
        sql: SQL text containing ``$name`` placeholders.
        parameters: Values keyed by placeholder name, with or without the sigil.
        allow_fallback: Bind unconsumed keys to unmatched placeholders.

    Returns:
        One value per placeholder occurrence.
    """
    keys = list(parameters)
    used_keys: set[str] = set()
    values: list[Any] = []

    for placeholder in find_placeholders(sql):
        name = placeholder.name
        prefixed = f"{PARAMETER_SIGIL}{name}"
        if prefixed in parameters:
            used_keys.add(prefixed)
            values.append(parameters[prefixed])
            continue
        if name in parameters:
            used_keys.add(name)
            values.append(parameters[name])
            continue
        if allow_fallback:
            fallback_key = next((key for key in keys if key not in used_keys), None)
            if fallback_key is not None:
                used_keys.add(fallback_key)
                log_with_context(
                    logger,
                    logging.WARNING,
                    "parameters.named.fallback",
                    placeholder=placeholder.placeholder_text,
                    bound_key=fallback_key,
                    position=placeholder.position,
                )
                values.append(parameters[fallback_key])
                continue
        values.append(None)

    return values


def bind_parameters(sql: str, parameters: "StatementParameters" = None, *, allow_fallback: bool = True) -> "list[Any]":
    """Produce the positional argument list for one statement execution.

    Args:
        sql: SQL text of the statement.
        parameters: A positional sequence, a mapping keyed by placeholder name, or None.
        allow_fallback: Allow the unused-key fallback for unmatched named placeholders.

    Returns:
        Arguments in placeholder order.
    """
    if parameters is None:
        return []
    if isinstance(parameters, Mapping):
        return convert_named_to_positional(
            sql, normalize_named_parameters(parameters), allow_fallback=allow_fallback
        )
    if isinstance(parameters, Sequence) and not isinstance(parameters, (str, bytes, bytearray)):
        return [stringify_if_bigint(value) for value in parameters]
    return [stringify_if_bigint(parameters)]
