"""Turso adapter error classification.

Maps engine failures onto the library taxonomy. Engine errors carry a string
``code`` (``SQLITE_CONSTRAINT_UNIQUE``); errors raised through Python's
``sqlite3`` module carry ``sqlite_errorname``/``sqlite_errorcode`` instead.
Errors with neither fall back to message patterns.
"""

import re
from typing import TYPE_CHECKING, Any, Final, Optional

from tursospec.exceptions import (
    BusyTimeoutError,
    DatabaseError,
    ForeignKeyViolationError,
    UniqueViolationError,
    ValidationErrorItem,
)

if TYPE_CHECKING:
    from tursospec.typing import ModelDefinitionProtocol, RecordInstance

__all__ = (
    "BUSY_CODES",
    "CONSTRAINT_CODES",
    "classify_turso_error",
    "extract_unique_fields",
    "resolve_error_code",
    "unique_constraint_message",
)

SQLITE_CONSTRAINT_CODE = 19
SQLITE_CONSTRAINT_CHECK_CODE = 275
SQLITE_CONSTRAINT_FOREIGNKEY_CODE = 787
SQLITE_CONSTRAINT_NOTNULL_CODE = 1299
SQLITE_CONSTRAINT_PRIMARYKEY_CODE = 1555
SQLITE_CONSTRAINT_TRIGGER_CODE = 1811
SQLITE_CONSTRAINT_UNIQUE_CODE = 2067
SQLITE_BUSY_CODE = 5
SQLITE_LOCKED_CODE = 6

CONSTRAINT_CODES: Final[frozenset[str]] = frozenset(
    {
        "SQLITE_CONSTRAINT",
        "SQLITE_CONSTRAINT_UNIQUE",
        "SQLITE_CONSTRAINT_PRIMARYKEY",
        "SQLITE_CONSTRAINT_TRIGGER",
        "SQLITE_CONSTRAINT_FOREIGNKEY",
    }
)
BUSY_CODES: Final[frozenset[str]] = frozenset({"SQLITE_BUSY", "SQLITE_LOCKED"})

_NUMERIC_CODE_NAMES: Final[dict[int, str]] = {
    SQLITE_CONSTRAINT_CODE: "SQLITE_CONSTRAINT",
    SQLITE_CONSTRAINT_CHECK_CODE: "SQLITE_CONSTRAINT_CHECK",
    SQLITE_CONSTRAINT_FOREIGNKEY_CODE: "SQLITE_CONSTRAINT_FOREIGNKEY",
    SQLITE_CONSTRAINT_NOTNULL_CODE: "SQLITE_CONSTRAINT_NOTNULL",
    SQLITE_CONSTRAINT_PRIMARYKEY_CODE: "SQLITE_CONSTRAINT_PRIMARYKEY",
    SQLITE_CONSTRAINT_TRIGGER_CODE: "SQLITE_CONSTRAINT_TRIGGER",
    SQLITE_CONSTRAINT_UNIQUE_CODE: "SQLITE_CONSTRAINT_UNIQUE",
    SQLITE_BUSY_CODE: "SQLITE_BUSY",
    SQLITE_LOCKED_CODE: "SQLITE_LOCKED",
}

FOREIGN_KEY_MESSAGE: Final[str] = "FOREIGN KEY constraint failed"
DEFAULT_UNIQUE_MESSAGE: Final[str] = "Validation error"

# Pre 3.8 engines: "columns x, y are not unique"; later: "UNIQUE constraint failed: table.x, table.y".
_LEGACY_COLUMNS_PATTERN: Final = re.compile(r"columns (.*?) are")
_UNIQUE_FAILED_PATTERN: Final = re.compile(r"UNIQUE constraint failed: (.*)")


def resolve_error_code(error: BaseException) -> Optional[str]:
    """Return the symbolic engine code of ``error``, if it carries one."""
    code = getattr(error, "code", None)
    if isinstance(code, str) and code.startswith("SQLITE_"):
        return code
    name = getattr(error, "sqlite_errorname", None)
    if isinstance(name, str):
        return name
    numeric = getattr(error, "sqlite_errorcode", None)
    if isinstance(numeric, int):
        return _NUMERIC_CODE_NAMES.get(numeric) or _NUMERIC_CODE_NAMES.get(numeric & 0xFF)
    return None


def _infer_code_from_message(message: str) -> Optional[str]:
    if FOREIGN_KEY_MESSAGE in message:
        return "SQLITE_CONSTRAINT_FOREIGNKEY"
    if "UNIQUE constraint failed" in message or "are not unique" in message:
        return "SQLITE_CONSTRAINT_UNIQUE"
    lowered = message.lower()
    if "database is locked" in lowered or "database table is locked" in lowered:
        return "SQLITE_LOCKED"
    if "database is busy" in lowered:
        return "SQLITE_BUSY"
    return None


def _is_busy_code(code: str) -> bool:
    return any(code == busy or code.startswith(f"{busy}_") for busy in BUSY_CODES)


def extract_unique_fields(message: str) -> "list[str]":
    """Pull the offending column names out of a unique violation message."""
    match = _LEGACY_COLUMNS_PATTERN.search(message)
    if match is not None:
        return match.group(1).split(", ")
    match = _UNIQUE_FAILED_PATTERN.search(message)
    if match is not None:
        return [column.split(".", 1)[-1] for column in match.group(1).strip().split(", ")]
    return []


def unique_constraint_message(fields: "list[str]", model: "Optional[ModelDefinitionProtocol]") -> str:
    """Custom message of the unique index covering exactly ``fields``, or the default."""
    if model is not None:
        for index in model.indexes:
            if index.unique and list(index.fields) == fields and index.msg:
                return index.msg
    return DEFAULT_UNIQUE_MESSAGE


def _field_value(instance: "Optional[RecordInstance]", field_name: str) -> Any:
    if instance is None:
        return None
    return instance.get(field_name)


def classify_turso_error(
    error: BaseException,
    *,
    sql: Optional[str] = None,
    model: "Optional[ModelDefinitionProtocol]" = None,
    instance: "Optional[RecordInstance]" = None,
) -> DatabaseError:
    """Classify one engine error.

    Args:
        error: The raw engine error.
        sql: SQL text of the failed statement.
        model: Metadata of the targeted model, used for custom unique messages.
        instance: Record being written, used to report offending values.

    Returns:
        Exactly one classified error wrapping ``error`` as its cause.
    """
    message = str(error)
    code = resolve_error_code(error) or _infer_code_from_message(message)

    if code in CONSTRAINT_CODES:
        if FOREIGN_KEY_MESSAGE in message:
            return ForeignKeyViolationError(cause=error, sql=sql)

        fields = extract_unique_fields(message)
        errors = [
            ValidationErrorItem(
                message=f"{field_name} must be unique",
                type="unique violation",
                path=field_name,
                value=_field_value(instance, field_name),
                instance=instance,
                validator_key="not_unique",
            )
            for field_name in fields
        ]
        return UniqueViolationError(
            unique_constraint_message(fields, model), fields=fields, errors=errors, cause=error, sql=sql
        )

    if code is not None and _is_busy_code(code):
        return BusyTimeoutError(message, cause=error, sql=sql)

    return DatabaseError(message, cause=error, sql=sql)
