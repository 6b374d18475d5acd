"""Connection lifecycle for Turso engines."""

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final, Optional
from uuid import uuid4

from tursospec.exceptions import DatabaseConnectionError, ImproperConfigurationError, TursoSpecError
from tursospec.utils.logging import CONNECTION_LOGGER_NAME, get_logger, log_with_context

if TYPE_CHECKING:
    from tursospec.typing import EngineConnection, EngineModule, EngineStatement

__all__ = (
    "DEFAULT_STORAGE",
    "TEMPORARY_STORAGE",
    "TursoConnection",
    "TursoConnectionManager",
    "is_temporary_storage",
)

logger = get_logger(CONNECTION_LOGGER_NAME)

DEFAULT_STORAGE: Final[str] = "./tursospec.db"
TEMPORARY_STORAGE: Final[frozenset[str]] = frozenset({":memory:", ""})
FOREIGN_KEYS_SQL: Final[str] = "PRAGMA foreign_keys = ON"


def is_temporary_storage(storage: Optional[str]) -> bool:
    """Whether ``storage`` names a database that lives only as long as its connection."""
    return storage in TEMPORARY_STORAGE


def _quote_literal(value: str) -> str:
    return "'{}'".format(value.replace("'", "''"))


class TursoConnection:
    """Engine connection with a closed flag.

    Implements the engine connection interface by delegation, so drivers use
    it in place of the raw engine connection.
    """

    __slots__ = ("_closed", "connection", "id", "target")

    def __init__(self, connection: "EngineConnection", target: str) -> None:
        self.id = uuid4().hex
        self.connection = connection
        self.target = target
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def prepare(self, sql: str) -> "EngineStatement":
        if self._closed:
            msg = "Cannot prepare a statement on a closed connection"
            raise DatabaseConnectionError(msg)
        return self.connection.prepare(sql)

    async def exec(self, sql: str) -> None:
        if self._closed:
            msg = "Cannot execute on a closed connection"
            raise DatabaseConnectionError(msg)
        await self.connection.exec(sql)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.connection.close()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r}, target={self.target!r}, closed={self._closed!r})"


class TursoConnectionManager:
    """Opens, validates and closes engine connections.

    Args:
        engine_module: Engine used to open connections.
        connection_config: Storage target and credentials.
        driver_features: Connection-level features (``foreign_keys``).
    """

    __slots__ = ("connection_config", "driver_features", "engine_module")

    def __init__(
        self,
        engine_module: "EngineModule",
        connection_config: "Optional[dict[str, Any]]" = None,
        driver_features: "Optional[dict[str, Any]]" = None,
    ) -> None:
        self.engine_module = engine_module
        self.connection_config = dict(connection_config or {})
        self.driver_features = dict(driver_features or {})

    def resolve_target(self, target: Optional[str] = None) -> str:
        """Storage target a new connection opens.

        Raises:
            ImproperConfigurationError: A remote URL is configured without an auth token.
        """
        if target is not None:
            return target
        url = self.connection_config.get("url")
        if url:
            if not self.connection_config.get("auth_token"):
                msg = "The 'auth_token' connection option is required when 'url' points to a remote database."
                raise ImproperConfigurationError(msg)
            return str(url)
        storage = self.connection_config.get("storage")
        return DEFAULT_STORAGE if storage is None else str(storage)

    def _connect_kwargs(self, target: str) -> "dict[str, Any]":
        kwargs: dict[str, Any] = {}
        if "://" in target and self.connection_config.get("auth_token"):
            kwargs["auth_token"] = self.connection_config["auth_token"]
        mode = self.connection_config.get("mode")
        if mode is not None:
            kwargs["mode"] = mode
        return kwargs

    async def connect(self, target: Optional[str] = None) -> TursoConnection:
        """Open a connection and apply the connection-level pragmas.

        Args:
            target: Storage target overriding the configured one, used for read replicas.

        Raises:
            ImproperConfigurationError: The configuration cannot produce a connection.
            DatabaseConnectionError: The engine failed to open or set up the connection.

        Returns:
            The open connection.
        """
        resolved = self.resolve_target(target)
        if not is_temporary_storage(resolved) and "://" not in resolved:
            Path(resolved).expanduser().parent.mkdir(parents=True, exist_ok=True)

        try:
            engine_connection = await self.engine_module.connect(resolved, **self._connect_kwargs(resolved))
        except TursoSpecError:
            raise
        except Exception as e:
            msg = f"Could not open a connection to {resolved!r}: {e}"
            raise DatabaseConnectionError(msg) from e

        connection = TursoConnection(engine_connection, target=resolved)
        try:
            password = self.connection_config.get("password")
            if password:
                await connection.exec(f"PRAGMA KEY = {_quote_literal(str(password))}")
            if self.driver_features.get("foreign_keys") is not False:
                await connection.exec(FOREIGN_KEYS_SQL)
        except Exception as e:
            await connection.close()
            msg = f"Could not configure the connection to {resolved!r}: {e}"
            raise DatabaseConnectionError(msg) from e

        log_with_context(logger, logging.DEBUG, "connection.open", connection_id=connection.id, target=resolved)
        return connection

    @staticmethod
    def validate(connection: TursoConnection) -> bool:
        """Whether ``connection`` can still run statements."""
        return not connection.closed

    async def disconnect(self, connection: TursoConnection) -> None:
        """Close ``connection``. Closing an already closed connection does nothing."""
        if connection.closed:
            return
        await connection.close()
        log_with_context(
            logger, logging.DEBUG, "connection.close", connection_id=connection.id, target=connection.target
        )
