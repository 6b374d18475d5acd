"""Local engine backed by aiosqlite.

Implements the prepared-statement engine interface the execution layer drives
on top of an :mod:`aiosqlite` connection. Arguments bind by position the way
SQLite numbers parameters: ``$name`` placeholders are rewritten to ``?NNN``,
so a name referenced twice consumes one argument.
"""

from typing import TYPE_CHECKING, Any, Optional

import aiosqlite
import sqlglot
from sqlglot.errors import SqlglotError
from sqlglot.tokens import TokenType

from tursospec.core.parameters import convert_placeholders_to_numbered
from tursospec.exceptions import ImproperConfigurationError
from tursospec.typing import RunResult

if TYPE_CHECKING:
    from tursospec.typing import DictRow

__all__ = ("AiosqliteEngineConnection", "AiosqliteEngineStatement", "connect", "is_single_statement")

_REMOTE_SCHEMES = ("libsql://", "http://", "https://", "ws://", "wss://")


def is_single_statement(sql: str) -> bool:
    """Whether ``sql`` holds at most one statement (a trailing ``;`` is allowed)."""
    try:
        tokens = sqlglot.tokenize(sql, read="sqlite")
    except SqlglotError:
        return False
    seen_separator = False
    for token in tokens:
        if token.token_type is TokenType.SEMICOLON:
            seen_separator = True
        elif seen_separator:
            return False
    return True


class AiosqliteEngineStatement:
    """Prepared statement over an aiosqlite connection."""

    __slots__ = ("_closed", "_connection", "_cursor", "sql")

    def __init__(self, connection: "aiosqlite.Connection", sql: str) -> None:
        self._connection = connection
        self.sql = convert_placeholders_to_numbered(sql)
        self._cursor: Optional[aiosqlite.Cursor] = None
        self._closed = False

    async def _execute(self, args: "tuple[Any, ...]") -> "aiosqlite.Cursor":
        if self._closed:
            msg = "Statement is closed"
            raise RuntimeError(msg)
        if self._cursor is not None:
            await self._cursor.close()
        self._cursor = await self._connection.execute(self.sql, args)
        return self._cursor

    async def run(self, *args: Any) -> RunResult:
        cursor = await self._execute(args)
        changes = cursor.rowcount if cursor.rowcount and cursor.rowcount > 0 else 0
        return RunResult(changes=changes, last_insert_rowid=cursor.lastrowid)

    async def all(self, *args: Any) -> "list[DictRow]":
        cursor = await self._execute(args)
        fetched = await cursor.fetchall()
        column_names = [col[0] for col in cursor.description or ()]
        return [dict(zip(column_names, row)) for row in fetched]

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._cursor is not None:
            await self._cursor.close()
            self._cursor = None


class AiosqliteEngineConnection:
    """Engine connection wrapping :class:`aiosqlite.Connection`."""

    __slots__ = ("_connection", "filename")

    def __init__(self, connection: "aiosqlite.Connection", filename: str) -> None:
        self._connection = connection
        self.filename = filename

    def prepare(self, sql: str) -> AiosqliteEngineStatement:
        return AiosqliteEngineStatement(self._connection, sql)

    async def exec(self, sql: str) -> None:
        # executescript commits an open transaction first, so BEGIN/ROLLBACK must not go through it.
        if is_single_statement(sql):
            cursor = await self._connection.execute(sql)
            await cursor.close()
            return
        await self._connection.executescript(sql)

    async def close(self) -> None:
        await self._connection.close()


async def connect(
    target: str, *, auth_token: Optional[str] = None, mode: Optional[str] = None, **kwargs: Any
) -> AiosqliteEngineConnection:
    """Open a local database.

    Args:
        target: File path, ``":memory:"`` or ``""`` for a temporary database.
        auth_token: Remote credentials; not supported by this engine.
        mode: SQLite URI open mode (``ro``, ``rw``, ``rwc``, ``memory``).
        **kwargs: Passed through to :func:`aiosqlite.connect`.

    Raises:
        ImproperConfigurationError: ``target`` names a remote database.

    Returns:
        The open connection.
    """
    if auth_token is not None or target.startswith(_REMOTE_SCHEMES):
        msg = (
            f"The aiosqlite engine only opens local databases, got {target!r}. "
            "Configure an engine_module that supports remote databases."
        )
        raise ImproperConfigurationError(msg)
    database = target
    if mode is not None and target not in {"", ":memory:"}:
        database = f"file:{target}?mode={mode}"
        kwargs["uri"] = True
    kwargs.setdefault("isolation_level", None)
    connection = await aiosqlite.connect(database, **kwargs)
    return AiosqliteEngineConnection(connection, filename=target)
