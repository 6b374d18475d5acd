"""Conversion of raw engine values into Python values by declared column type.

SQLite stores everything with one of five storage classes, so values read back
from the engine need the declared column type to be useful: ``TINYINT(1)``
columns hold ``0``/``1`` for booleans, ``DATETIME`` columns hold ISO text,
``JSON`` columns hold serialized documents.
"""

import re
import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Final, Optional

import msgspec

if TYPE_CHECKING:
    from collections.abc import Callable

__all__ = (
    "BOOLEAN_TYPES",
    "convert_boolean",
    "convert_decimal",
    "convert_iso_date",
    "convert_iso_datetime",
    "convert_iso_time",
    "convert_json",
    "convert_uuid",
    "is_boolean_type",
    "normalize_type_name",
    "parse_database_value",
)

BOOLEAN_TYPES: Final[frozenset[str]] = frozenset({"BOOLEAN", "BOOL", "TINYINT(1)"})
_TYPE_ARGUMENTS: Final = re.compile(r"\s*\(.*\)\s*$")


def normalize_type_name(column_type: str) -> str:
    """Upper-case a declared type and strip its arguments (``VARCHAR(255)`` -> ``VARCHAR``)."""
    return _TYPE_ARGUMENTS.sub("", column_type.strip().upper())


def is_boolean_type(column_type: "Optional[str]") -> bool:
    if not column_type:
        return False
    return column_type.strip().upper() in BOOLEAN_TYPES


def convert_boolean(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return bool(value)
    if isinstance(value, str) and value in {"0", "1"}:
        return value == "1"
    return value


def convert_iso_datetime(value: Any) -> Any:
    if isinstance(value, str):
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    return value


def convert_iso_date(value: Any) -> Any:
    if isinstance(value, str):
        return date.fromisoformat(value)
    return value


def convert_iso_time(value: Any) -> Any:
    if isinstance(value, str):
        return time.fromisoformat(value)
    return value


def convert_json(value: Any) -> Any:
    if isinstance(value, (str, bytes)):
        return msgspec.json.decode(value)
    return value


def convert_decimal(value: Any) -> Any:
    if isinstance(value, (int, float, str)) and not isinstance(value, bool):
        return Decimal(str(value))
    return value


def convert_uuid(value: Any) -> Any:
    if isinstance(value, str):
        return uuid.UUID(value)
    if isinstance(value, bytes) and len(value) == 16:  # noqa: PLR2004
        return uuid.UUID(bytes=value)
    return value


_CONVERTERS: "Final[dict[str, Callable[[Any], Any]]]" = {
    "DATETIME": convert_iso_datetime,
    "TIMESTAMP": convert_iso_datetime,
    "DATE": convert_iso_date,
    "TIME": convert_iso_time,
    "JSON": convert_json,
    "JSONB": convert_json,
    "DECIMAL": convert_decimal,
    "NUMERIC": convert_decimal,
    "UUID": convert_uuid,
}


def parse_database_value(value: Any, column_type: "Optional[str]") -> Any:
    """Convert one raw engine value according to its declared column type.

    Unknown types and ``None`` pass through unchanged.

    Args:
        value: Value as returned by the engine.
        column_type: Declared column type, e.g. ``"TINYINT(1)"`` or ``"DATETIME"``.

    Returns:
        The converted value.
    """
    if value is None or not column_type:
        return value
    if is_boolean_type(column_type):
        return convert_boolean(value)
    converter = _CONVERTERS.get(normalize_type_name(column_type))
    if converter is None:
        return value
    return converter(value)
