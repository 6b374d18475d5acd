"""tursospec: async execution layer for Turso and SQLite-compatible engines."""

from tursospec import core, exceptions, typing, utils
from tursospec.__metadata__ import __version__
from tursospec.adapters.turso import (
    TursoConfig,
    TursoConnectionParams,
    TursoDriver,
    TursoDriverFeatures,
    TursoPoolParams,
)
from tursospec.core.classification import QueryType
from tursospec.core.result import ColumnDescription, IndexDescription, IndexField
from tursospec.exceptions import (
    BusyTimeoutError,
    DatabaseError,
    EmptyResultError,
    ErrorKind,
    ForeignKeyViolationError,
    ImproperConfigurationError,
    TursoSpecError,
    UniqueViolationError,
)
from tursospec.typing import DictRow, StatementParameters
from tursospec.utils.logging import configure_logging, set_correlation_id

__all__ = (
    "BusyTimeoutError",
    "ColumnDescription",
    "DatabaseError",
    "DictRow",
    "EmptyResultError",
    "ErrorKind",
    "ForeignKeyViolationError",
    "ImproperConfigurationError",
    "IndexDescription",
    "IndexField",
    "QueryType",
    "StatementParameters",
    "TursoConfig",
    "TursoConnectionParams",
    "TursoDriver",
    "TursoDriverFeatures",
    "TursoPoolParams",
    "TursoSpecError",
    "UniqueViolationError",
    "__version__",
    "configure_logging",
    "core",
    "exceptions",
    "set_correlation_id",
    "typing",
    "utils",
)
