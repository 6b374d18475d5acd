"""Connection pool for Turso engines."""

import asyncio
import logging
import time
from contextlib import suppress
from typing import TYPE_CHECKING, Optional
from uuid import uuid4

from tursospec.exceptions import PoolClosedError, PoolTimeoutError
from tursospec.utils.logging import POOL_LOGGER_NAME, get_logger, log_with_context

if TYPE_CHECKING:
    from types import TracebackType

    from tursospec.adapters.turso.connection import TursoConnection, TursoConnectionManager

__all__ = ("TursoConnectionPool", "TursoPoolConnection", "TursoPoolConnectionContext")

logger = get_logger(POOL_LOGGER_NAME)

_ADAPTER_NAME = "turso"


class TursoPoolConnection:
    """Wrapper for database connections in the pool."""

    __slots__ = ("connection", "id", "idle_since", "uses")

    def __init__(self, connection: "TursoConnection") -> None:
        self.id = connection.id
        self.connection = connection
        self.idle_since: Optional[float] = None
        self.uses = 0

    @property
    def idle_time(self) -> float:
        """Get idle time in seconds.

        Returns:
            Idle time in seconds, 0.0 if connection is in use
        """
        if self.idle_since is None:
            return 0.0
        return time.monotonic() - self.idle_since

    @property
    def is_closed(self) -> bool:
        return self.connection.closed

    def mark_as_in_use(self) -> None:
        self.idle_since = None
        self.uses += 1

    def mark_as_idle(self) -> None:
        self.idle_since = time.monotonic()


class TursoPoolConnectionContext:
    """Async context manager for pooled connections."""

    __slots__ = ("_connection", "_pool")

    def __init__(self, pool: "TursoConnectionPool") -> None:
        self._pool = pool
        self._connection: Optional[TursoPoolConnection] = None

    async def __aenter__(self) -> "TursoConnection":
        self._connection = await self._pool.acquire()
        return self._connection.connection

    async def __aexit__(
        self,
        exc_type: "Optional[type[BaseException]]",
        exc_val: "Optional[BaseException]",
        exc_tb: "Optional[TracebackType]",
    ) -> "Optional[bool]":
        if self._connection is None:
            return False
        await self._pool.release(self._connection)
        self._connection = None
        return False


class TursoConnectionPool:
    """Bounded pool of engine connections.

    Connections are opened lazily, up to ``max_size``. An idle connection is
    retired once it has been idle longer than ``idle_timeout`` or has served
    ``max_uses`` checkouts; ``None`` disables either limit.

    Args:
        connection_manager: Opens and closes the pooled connections.
        target: Storage target overriding the configured one, used for read replicas.
        max_size: Maximum number of open connections.
        idle_timeout: Seconds an idle connection is kept, or None to keep it forever.
        max_uses: Checkouts served before a connection is retired, or None for no limit.
        acquire_timeout: Seconds to wait for a free connection.
        name: Pool name used in log records.
    """

    __slots__ = (
        "_acquire_timeout",
        "_closed_event_instance",
        "_connection_manager",
        "_connection_registry",
        "_idle_timeout",
        "_lock_instance",
        "_max_size",
        "_max_uses",
        "_pending_creations",
        "_pool_id",
        "_queue_instance",
        "_target",
        "name",
    )

    def __init__(
        self,
        connection_manager: "TursoConnectionManager",
        *,
        target: Optional[str] = None,
        max_size: int = 5,
        idle_timeout: Optional[float] = None,
        max_uses: Optional[int] = None,
        acquire_timeout: float = 30.0,
        name: str = "write",
    ) -> None:
        self._connection_manager = connection_manager
        self._target = target
        self._max_size = max_size
        self._idle_timeout = idle_timeout
        self._max_uses = max_uses
        self._acquire_timeout = acquire_timeout
        self.name = name

        self._connection_registry: dict[str, TursoPoolConnection] = {}
        self._pending_creations = 0
        self._pool_id = uuid4().hex[:8]

        self._queue_instance: Optional[asyncio.Queue[TursoPoolConnection]] = None
        self._lock_instance: Optional[asyncio.Lock] = None
        self._closed_event_instance: Optional[asyncio.Event] = None

    @property
    def _queue(self) -> "asyncio.Queue[TursoPoolConnection]":
        if self._queue_instance is None:
            self._queue_instance = asyncio.Queue(maxsize=self._max_size)
        return self._queue_instance

    @property
    def _lock(self) -> asyncio.Lock:
        if self._lock_instance is None:
            self._lock_instance = asyncio.Lock()
        return self._lock_instance

    @property
    def _closed_event(self) -> asyncio.Event:
        if self._closed_event_instance is None:
            self._closed_event_instance = asyncio.Event()
        return self._closed_event_instance

    @property
    def is_closed(self) -> bool:
        return self._closed_event_instance is not None and self._closed_event.is_set()

    @property
    def max_size(self) -> int:
        return self._max_size

    def size(self) -> int:
        """Get total number of connections in pool.

        Returns:
            Total connection count
        """
        return len(self._connection_registry)

    def checked_out(self) -> int:
        """Get number of checked out connections.

        Returns:
            Number of connections currently in use
        """
        if self._queue_instance is None:
            return len(self._connection_registry)
        return len(self._connection_registry) - self._queue.qsize()

    async def _create_connection(self) -> TursoPoolConnection:
        connection = await self._connection_manager.connect(self._target)
        pool_connection = TursoPoolConnection(connection)
        async with self._lock:
            self._connection_registry[pool_connection.id] = pool_connection
        log_with_context(
            logger,
            logging.DEBUG,
            "pool.connection.create",
            adapter=_ADAPTER_NAME,
            pool=self.name,
            pool_id=self._pool_id,
            connection_id=pool_connection.id,
            pool_size=len(self._connection_registry),
            max_size=self._max_size,
        )
        return pool_connection

    async def _claim(self, connection: TursoPoolConnection) -> bool:
        if connection.is_closed:
            await self._retire_connection(connection, reason="closed")
            return False
        if self._idle_timeout is not None and connection.idle_time > self._idle_timeout:
            await self._retire_connection(connection, reason="idle_timeout")
            return False
        connection.mark_as_in_use()
        return True

    async def _retire_connection(self, connection: TursoPoolConnection, *, reason: Optional[str] = None) -> None:
        if reason:
            log_with_context(
                logger,
                logging.DEBUG,
                "pool.connection.retire",
                adapter=_ADAPTER_NAME,
                pool=self.name,
                pool_id=self._pool_id,
                connection_id=connection.id,
                reason=reason,
            )
        async with self._lock:
            self._connection_registry.pop(connection.id, None)
        await self._connection_manager.disconnect(connection.connection)

    async def _try_provision_new_connection(self) -> "Optional[TursoPoolConnection]":
        async with self._lock:
            if len(self._connection_registry) + self._pending_creations >= self._max_size:
                return None
            self._pending_creations += 1

        try:
            connection = await self._create_connection()
        finally:
            self._pending_creations -= 1
        connection.mark_as_in_use()
        return connection

    async def _wait_for_connection(self) -> TursoPoolConnection:
        """Wait for a released connection.

        Raises:
            PoolClosedError: If pool is closed while waiting
        """
        while True:
            get_connection_task = asyncio.create_task(self._queue.get())
            pool_closed_task = asyncio.create_task(self._closed_event.wait())
            connection: Optional[TursoPoolConnection] = None

            try:
                done, _ = await asyncio.wait(
                    {get_connection_task, pool_closed_task}, return_when=asyncio.FIRST_COMPLETED
                )
                if get_connection_task in done:
                    connection = get_connection_task.result()
                if pool_closed_task in done:
                    if connection is not None:
                        await self._retire_connection(connection)
                    msg = "Pool closed during connection acquisition"
                    raise PoolClosedError(msg)

                if connection is not None and await self._claim(connection):
                    return connection
            finally:
                for task in (get_connection_task, pool_closed_task):
                    if not task.done():
                        task.cancel()
                        with suppress(asyncio.CancelledError):
                            await task
                # Put back a connection received while the waiter was being cancelled.
                if connection is None and get_connection_task.done() and not get_connection_task.cancelled():
                    self._queue.put_nowait(get_connection_task.result())

            # A retired connection frees a slot.
            new_connection = await self._try_provision_new_connection()
            if new_connection is not None:
                return new_connection

    async def _get_connection(self) -> TursoPoolConnection:
        while not self._queue.empty():
            connection = self._queue.get_nowait()
            if await self._claim(connection):
                return connection

        new_connection = await self._try_provision_new_connection()
        if new_connection is not None:
            return new_connection

        try:
            return await asyncio.wait_for(self._wait_for_connection(), timeout=self._acquire_timeout)
        except asyncio.TimeoutError as e:
            msg = f"Connection acquisition timed out after {self._acquire_timeout}s"
            raise PoolTimeoutError(msg) from e

    async def acquire(self) -> TursoPoolConnection:
        """Acquire a connection from the pool.

        Raises:
            PoolClosedError: If the pool is closed.
            PoolTimeoutError: If no connection frees up within ``acquire_timeout``.

        Returns:
            Available connection
        """
        if self.is_closed:
            msg = "Cannot acquire connection from closed pool"
            raise PoolClosedError(msg)
        return await self._get_connection()

    async def release(self, connection: TursoPoolConnection) -> None:
        """Release a connection back to the pool.

        Args:
            connection: Connection to release
        """
        if self.is_closed:
            await self._retire_connection(connection)
            return

        if connection.id not in self._connection_registry:
            log_with_context(
                logger,
                logging.WARNING,
                "pool.connection.release.unknown",
                adapter=_ADAPTER_NAME,
                pool=self.name,
                pool_id=self._pool_id,
                connection_id=connection.id,
            )
            return

        if connection.is_closed:
            await self._retire_connection(connection, reason="closed")
            return
        if self._max_uses is not None and connection.uses >= self._max_uses:
            await self._retire_connection(connection, reason="max_uses")
            return

        connection.mark_as_idle()
        self._queue.put_nowait(connection)

    def get_connection(self) -> TursoPoolConnectionContext:
        """Get a connection with automatic release."""
        return TursoPoolConnectionContext(self)

    async def close(self) -> None:
        """Close the pool and every connection it holds."""
        if self.is_closed:
            return
        self._closed_event.set()

        while not self._queue.empty():
            self._queue.get_nowait()

        async with self._lock:
            connections = list(self._connection_registry.values())
            self._connection_registry.clear()

        results = await asyncio.gather(
            *(self._connection_manager.disconnect(conn.connection) for conn in connections), return_exceptions=True
        )
        for connection, result in zip(connections, results):
            if isinstance(result, Exception):
                log_with_context(
                    logger,
                    logging.WARNING,
                    "pool.close.connection.error",
                    adapter=_ADAPTER_NAME,
                    pool=self.name,
                    pool_id=self._pool_id,
                    connection_id=connection.id,
                    error=str(result),
                )
