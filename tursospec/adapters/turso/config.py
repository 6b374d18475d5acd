"""Turso database configuration."""

import logging
from contextlib import asynccontextmanager
from itertools import cycle
from typing import TYPE_CHECKING, Any, Final, Optional, TypedDict, Union

from typing_extensions import NotRequired

from tursospec.adapters.turso.connection import TursoConnection, TursoConnectionManager, is_temporary_storage
from tursospec.adapters.turso.driver import TursoDriver
from tursospec.adapters.turso.pool import TursoConnectionPool
from tursospec.exceptions import ImproperConfigurationError
from tursospec.utils.logging import get_logger, log_with_context
from tursospec.utils.module_loader import load_engine_module

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Iterator
    from types import ModuleType

    from tursospec.typing import EngineModule

__all__ = (
    "TursoConfig",
    "TursoConnectionParams",
    "TursoDriverFeatures",
    "TursoPoolParams",
    "resolve_pool_config",
    "validate_temporary_storage",
)

logger = get_logger("adapters.turso.config")

DEFAULT_POOL_CONFIG: Final[dict[str, Any]] = {
    "max_size": 5,
    "idle_timeout": 10.0,
    "max_uses": None,
    "acquire_timeout": 60.0,
    "read_replicas": [],
}
TEMPORARY_POOL_CONFIG: Final[dict[str, Any]] = {**DEFAULT_POOL_CONFIG, "max_size": 1, "idle_timeout": None}
DEFAULT_DRIVER_FEATURES: Final[dict[str, Any]] = {
    "foreign_keys": True,
    "returning": True,
    "named_parameter_fallback": True,
}


class TursoConnectionParams(TypedDict, total=False):
    """TypedDict for Turso connection parameters."""

    storage: NotRequired[str]
    password: NotRequired[str]
    mode: NotRequired[str]
    url: NotRequired[str]
    auth_token: NotRequired[str]


class TursoPoolParams(TypedDict, total=False):
    """TypedDict for Turso pool parameters.

    ``idle_timeout`` and ``max_uses`` accept None for "never".
    """

    max_size: NotRequired[int]
    idle_timeout: NotRequired[Optional[float]]
    max_uses: NotRequired[Optional[int]]
    acquire_timeout: NotRequired[float]
    read_replicas: NotRequired["list[str]"]


class TursoDriverFeatures(TypedDict, total=False):
    """Turso driver feature flags.

    foreign_keys: Enforce foreign key constraints on every new connection.
        Defaults to True.
    returning: Allow row-returning mutations. Defaults to True.
    named_parameter_fallback: Bind unused mapping keys to unmatched named
        placeholders, logging a warning each time. Defaults to True.
    engine_module: Dotted path or module exposing ``connect``. Defaults to the
        bundled aiosqlite engine.
    """

    foreign_keys: NotRequired[bool]
    returning: NotRequired[bool]
    named_parameter_fallback: NotRequired[bool]
    engine_module: NotRequired["Union[str, ModuleType, EngineModule]"]


def resolve_pool_config(
    storage: Optional[str], pool_config: "Optional[Union[TursoPoolParams, dict[str, Any]]]" = None
) -> "dict[str, Any]":
    """Merge ``pool_config`` over the defaults for ``storage``.

    Temporary storage defaults to a single connection that is never retired.
    """
    defaults = TEMPORARY_POOL_CONFIG if is_temporary_storage(storage) else DEFAULT_POOL_CONFIG
    return {**defaults, **(pool_config or {})}


def validate_temporary_storage(storage: Optional[str], pool_config: "dict[str, Any]") -> None:
    """Refuse pool settings that would lose or split a temporary database.

    A ``":memory:"`` or ``""`` database exists only while its one connection
    stays open, so the pool must never retire that connection, never open a
    second one, and never read from a replica.

    Args:
        storage: Configured storage target.
        pool_config: Resolved pool settings.

    Raises:
        ImproperConfigurationError: The pool settings are unsafe for temporary storage.
    """
    if not is_temporary_storage(storage):
        return

    if pool_config.get("idle_timeout") is not None:
        msg = (
            "Turso is configured to use a temporary database, but the pool closes idle connections, "
            "which would lose the database while the application is running. "
            "Set the pool's idle_timeout to None, or use a non-temporary database."
        )
        raise ImproperConfigurationError(msg)

    max_uses = pool_config.get("max_uses")
    if max_uses is not None:
        msg = (
            f"Turso is configured to use a temporary database, but the pool closes connections after {max_uses} uses, "
            "which would lose the database while the application is running. "
            "Set the pool's max_uses to None, or use a non-temporary database."
        )
        raise ImproperConfigurationError(msg)

    if pool_config.get("max_size") != 1:
        msg = (
            "Turso is configured to use a temporary database, but the pool allows more than one connection, "
            "which would create separate temporary databases. "
            "Set the pool's max_size to 1, or use a non-temporary database."
        )
        raise ImproperConfigurationError(msg)

    if pool_config.get("read_replicas"):
        msg = (
            "Turso is configured to use a temporary database, but read replication is enabled, "
            "which would read a different temporary database. "
            "Disable read replication, or use a non-temporary database."
        )
        raise ImproperConfigurationError(msg)


class TursoConfig:
    """Database configuration for Turso engines.

    Configuration errors surface here, before any connection is opened.

    Args:
        connection_config: Storage target and credentials.
        pool_config: Pool sizing and retention.
        driver_features: Driver and connection feature flags.
        pool_instance: Pre-built write pool to use instead of creating one.
    """

    driver_type: "type[TursoDriver]" = TursoDriver

    def __init__(
        self,
        *,
        connection_config: "Optional[Union[TursoConnectionParams, dict[str, Any]]]" = None,
        pool_config: "Optional[Union[TursoPoolParams, dict[str, Any]]]" = None,
        driver_features: "Optional[Union[TursoDriverFeatures, dict[str, Any]]]" = None,
        pool_instance: "Optional[TursoConnectionPool]" = None,
    ) -> None:
        self.connection_config: dict[str, Any] = dict(connection_config or {})
        self.driver_features: dict[str, Any] = {**DEFAULT_DRIVER_FEATURES, **(driver_features or {})}

        storage = self.connection_config.get("storage")
        self.pool_config = resolve_pool_config(storage, pool_config)
        if self.connection_config.get("url"):
            if not self.connection_config.get("auth_token"):
                msg = "The 'auth_token' connection option is required when 'url' points to a remote database."
                raise ImproperConfigurationError(msg)
        else:
            validate_temporary_storage(storage, self.pool_config)

        self.engine_module = load_engine_module(self.driver_features.get("engine_module"))
        self.connection_manager = TursoConnectionManager(
            self.engine_module, connection_config=self.connection_config, driver_features=self.driver_features
        )
        self.pool_instance = pool_instance
        self.read_pool_instances: list[TursoConnectionPool] = []
        self._read_pool_cycle: Optional[Iterator[TursoConnectionPool]] = None

    def _pool_kwargs(self) -> "dict[str, Any]":
        return {
            "max_size": self.pool_config["max_size"],
            "idle_timeout": self.pool_config["idle_timeout"],
            "max_uses": self.pool_config["max_uses"],
            "acquire_timeout": self.pool_config["acquire_timeout"],
        }

    def _create_pools(self) -> None:
        if self.pool_instance is None:
            self.pool_instance = TursoConnectionPool(self.connection_manager, name="write", **self._pool_kwargs())
        replicas = self.pool_config.get("read_replicas") or []
        if replicas and not self.read_pool_instances:
            self.read_pool_instances = [
                TursoConnectionPool(
                    self.connection_manager, target=replica, name=f"read-{index}", **self._pool_kwargs()
                )
                for index, replica in enumerate(replicas)
            ]
            self._read_pool_cycle = cycle(self.read_pool_instances)
            log_with_context(logger, logging.DEBUG, "config.read_pools.create", replicas=len(replicas))

    async def provide_pool(self) -> TursoConnectionPool:
        """Provide the write pool, creating it on first use."""
        return self._select_pool(read_only=False)

    def _select_pool(self, read_only: bool) -> TursoConnectionPool:
        self._create_pools()
        if read_only and self._read_pool_cycle is not None:
            return next(self._read_pool_cycle)
        return self.pool_instance  # type: ignore[return-value]

    @asynccontextmanager
    async def provide_connection(self, *, read_only: bool = False) -> "AsyncGenerator[TursoConnection, None]":
        """Provide a pooled connection.

        Args:
            read_only: Borrow from a read replica pool when replicas are configured.

        Yields:
            A connection, released back to its pool on exit.
        """
        async with self._select_pool(read_only).get_connection() as connection:
            yield connection

    @asynccontextmanager
    async def provide_session(self, *, read_only: bool = False) -> "AsyncGenerator[TursoDriver, None]":
        """Provide a driver bound to a pooled connection.

        Args:
            read_only: Borrow from a read replica pool when replicas are configured.

        Yields:
            A TursoDriver instance.
        """
        async with self.provide_connection(read_only=read_only) as connection:
            yield self.driver_type(connection=connection, driver_features=self.driver_features)

    async def create_connection(self) -> TursoConnection:
        """Open a connection outside the pool.

        The caller owns the connection and must close it.
        """
        return await self.connection_manager.connect()

    async def close_pool(self) -> None:
        """Close the write pool and every read pool."""
        pools = [*self.read_pool_instances]
        if self.pool_instance is not None:
            pools.append(self.pool_instance)
        for pool in pools:
            await pool.close()
        self.read_pool_instances = []
        self._read_pool_cycle = None
        self.pool_instance = None
