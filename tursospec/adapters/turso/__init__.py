from tursospec.adapters.turso.config import (
    TursoConfig,
    TursoConnectionParams,
    TursoDriverFeatures,
    TursoPoolParams,
    validate_temporary_storage,
)
from tursospec.adapters.turso.connection import TursoConnection, TursoConnectionManager
from tursospec.adapters.turso.core import classify_turso_error
from tursospec.adapters.turso.driver import TursoDriver, TursoStatementContext
from tursospec.adapters.turso.pool import TursoConnectionPool

__all__ = (
    "TursoConfig",
    "TursoConnection",
    "TursoConnectionManager",
    "TursoConnectionParams",
    "TursoConnectionPool",
    "TursoDriver",
    "TursoDriverFeatures",
    "TursoPoolParams",
    "TursoStatementContext",
    "classify_turso_error",
    "validate_temporary_storage",
)
