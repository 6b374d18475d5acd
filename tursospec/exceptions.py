from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Optional

__all__ = (
    "BusyTimeoutError",
    "DatabaseConnectionError",
    "DatabaseError",
    "EmptyResultError",
    "ErrorKind",
    "ForeignKeyViolationError",
    "ImproperConfigurationError",
    "IntegrityError",
    "PoolClosedError",
    "PoolTimeoutError",
    "TursoSpecError",
    "UniqueViolationError",
    "ValidationErrorItem",
)


class TursoSpecError(Exception):
    """Base exception class from which all tursospec exceptions inherit."""

    detail: str

    def __init__(self, *args: Any, detail: str = "") -> None:
        """Initialize ``TursoSpecError``.

        Args:
            *args: args are converted to :class:`str` before passing to :class:`Exception`
            detail: detail of the exception.
        """
        str_args = [str(arg) for arg in args if arg]
        if not detail:
            if str_args:
                detail, *str_args = str_args
            elif hasattr(self, "detail"):
                detail = self.detail
        self.detail = detail
        super().__init__(*str_args)

    def __repr__(self) -> str:
        if self.detail:
            return f"{self.__class__.__name__} - {self.detail}"
        return self.__class__.__name__

    def __str__(self) -> str:
        return " ".join((*self.args, self.detail)).strip()


class ImproperConfigurationError(TursoSpecError):
    """Improper Configuration error.

    Raised before any connection attempt when the configured storage target,
    pool policy or engine module cannot work together.
    """


class DatabaseConnectionError(TursoSpecError):
    """The engine could not open a connection to the storage target."""


class PoolClosedError(TursoSpecError):
    """Pool has been closed and cannot accept new operations."""


class PoolTimeoutError(TursoSpecError):
    """No pooled connection became available within the acquire timeout."""


class EmptyResultError(TursoSpecError):
    """A mutation that was expected to return a row returned none.

    This usually means the statement was silently ignored, for example by an
    ``ON CONFLICT DO NOTHING`` or ``INSERT OR IGNORE`` clause.
    """

    def __init__(self, message: Optional[str] = None, sql: Optional[str] = None) -> None:
        if message is None:
            message = "Mutation produced no visible result."
        detail_message = message
        if sql:
            detail_message = f"{message}\nSQL: {sql}"
        super().__init__(detail=detail_message)
        self.sql = sql


class ErrorKind(str, Enum):
    """Closed set of classified engine failure kinds."""

    UNIQUE_VIOLATION = "unique_violation"
    FOREIGN_KEY_VIOLATION = "foreign_key_violation"
    BUSY_TIMEOUT = "busy_timeout"
    GENERIC = "generic"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ValidationErrorItem:
    """One offending field of a constraint violation."""

    message: str
    type: str
    path: str
    value: Any = None
    instance: Any = None
    validator_key: Optional[str] = None


class DatabaseError(TursoSpecError):
    """Generic engine failure.

    Every engine error that reaches a caller is an instance of this class or
    one of its subclasses. ``kind`` tells them apart without ``isinstance``
    checks, ``cause`` keeps the original engine error for diagnostics.
    """

    kind: ClassVar[ErrorKind] = ErrorKind.GENERIC

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        cause: Optional[BaseException] = None,
        sql: Optional[str] = None,
    ) -> None:
        if message is None:
            message = str(cause) if cause is not None else "Database error."
        super().__init__(detail=message)
        self.message = message
        self.cause = cause
        self.sql = sql

    @property
    def code(self) -> Optional[str]:
        """Engine error code of the wrapped cause, when it carries one."""
        if self.cause is None:
            return None
        code = getattr(self.cause, "code", None)
        if isinstance(code, str):
            return code
        name = getattr(self.cause, "sqlite_errorname", None)
        return name if isinstance(name, str) else None


class IntegrityError(DatabaseError):
    """Data integrity error."""


class UniqueViolationError(IntegrityError):
    """A unique or primary key constraint was violated."""

    kind = ErrorKind.UNIQUE_VIOLATION

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        fields: "Optional[list[str]]" = None,
        errors: "Optional[list[ValidationErrorItem]]" = None,
        cause: Optional[BaseException] = None,
        sql: Optional[str] = None,
    ) -> None:
        super().__init__(message or "Validation error", cause=cause, sql=sql)
        self.fields: tuple[str, ...] = tuple(fields or ())
        self.errors: tuple[ValidationErrorItem, ...] = tuple(errors or ())


class ForeignKeyViolationError(IntegrityError):
    """A foreign key constraint was violated."""

    kind = ErrorKind.FOREIGN_KEY_VIOLATION

    def __init__(
        self, message: Optional[str] = None, *, cause: Optional[BaseException] = None, sql: Optional[str] = None
    ) -> None:
        super().__init__(message or "Foreign key constraint error", cause=cause, sql=sql)


class BusyTimeoutError(DatabaseError):
    """The database stayed busy or locked past the engine's busy timeout."""

    kind = ErrorKind.BUSY_TIMEOUT
