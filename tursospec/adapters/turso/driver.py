"""Turso statement execution.

:class:`TursoDriver` runs one statement per :meth:`TursoDriver.execute` call
on a borrowed connection:

1. classify the statement once,
2. bind parameters into a positional argument list,
3. run it in rowset or rowcount mode inside a prepared-statement context,
4. classify engine failures,
5. shape the engine result for the caller.
"""

import logging
import time
from collections.abc import Mapping
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, Optional, Union

from tursospec.adapters.turso.core import classify_turso_error
from tursospec.core.classification import ExecutionMode, QueryType, classify_query, select_execution_mode
from tursospec.core.parameters import bind_parameters, convert_placeholders_to_qmark
from tursospec.core.result import EngineResult, QueryOptions, ResultShaper
from tursospec.exceptions import ImproperConfigurationError, TursoSpecError
from tursospec.utils.logging import DRIVER_LOGGER_NAME, get_logger, log_with_context

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable
    from types import TracebackType

    from tursospec.typing import (
        DictRow,
        EngineConnection,
        EngineStatement,
        ModelDefinitionProtocol,
        RecordInstance,
        StatementParameters,
    )

__all__ = ("TursoDriver", "TursoStatementContext")

logger = get_logger(DRIVER_LOGGER_NAME)


class TursoStatementContext:
    """Async context manager owning one prepared statement.

    The statement is prepared on enter and closed on every exit path.
    """

    __slots__ = ("connection", "sql", "statement")

    def __init__(self, connection: "EngineConnection", sql: str) -> None:
        self.connection = connection
        self.sql = sql
        self.statement: Optional[EngineStatement] = None

    async def __aenter__(self) -> "EngineStatement":
        self.statement = self.connection.prepare(self.sql)
        return self.statement

    async def __aexit__(
        self,
        exc_type: "Optional[type[BaseException]]",
        exc_val: "Optional[BaseException]",
        exc_tb: "Optional[TracebackType]",
    ) -> None:
        if self.statement is not None:
            statement, self.statement = self.statement, None
            await statement.close()


class TursoDriver:
    """Executes statements on one borrowed Turso connection.

    The driver assumes exclusive use of ``connection`` while a statement runs
    and holds no other state between calls.

    Args:
        connection: Engine connection borrowed for the lifetime of the driver.
        driver_features: ``returning`` and ``named_parameter_fallback`` switches.
    """

    __slots__ = ("connection", "driver_features")
    dialect = "sqlite"

    def __init__(self, connection: "EngineConnection", driver_features: "Optional[dict[str, Any]]" = None) -> None:
        self.connection = connection
        self.driver_features: dict[str, Any] = dict(driver_features or {})

    def with_statement(self, sql: str) -> TursoStatementContext:
        """Create a prepared-statement context for ``sql``."""
        return TursoStatementContext(self.connection, sql)

    @asynccontextmanager
    async def handle_database_exceptions(
        self,
        sql: Optional[str] = None,
        *,
        model: "Optional[ModelDefinitionProtocol]" = None,
        instance: "Optional[RecordInstance]" = None,
    ) -> "AsyncGenerator[None, None]":
        """Convert engine errors into classified database errors.

        Library errors pass through untouched.
        """
        try:
            yield
        except TursoSpecError:
            raise
        except Exception as e:
            error = classify_turso_error(e, sql=sql, model=model, instance=instance)
            log_with_context(
                logger,
                logging.DEBUG,
                "driver.query.error",
                sql=sql,
                error_kind=error.kind.value,
                error_code=error.code,
            )
            raise error from e

    @staticmethod
    async def _all_series(statement: "EngineStatement", args: "list[Any]") -> EngineResult:
        rows = await statement.all(*args)
        return EngineResult.from_rows(list(rows))

    @staticmethod
    async def _run_series(statement: "EngineStatement", args: "list[Any]") -> EngineResult:
        run_result = await statement.run(*args)
        return EngineResult.from_run(run_result.changes, run_result.last_insert_rowid)

    async def _run(
        self,
        sql: str,
        args: "list[Any]",
        mode: ExecutionMode,
        *,
        model: "Optional[ModelDefinitionProtocol]" = None,
        instance: "Optional[RecordInstance]" = None,
        statement_sql: Optional[str] = None,
    ) -> EngineResult:
        started = time.perf_counter()
        async with self.handle_database_exceptions(sql, model=model, instance=instance):
            async with self.with_statement(statement_sql or sql) as statement:
                if mode is ExecutionMode.ROWSET:
                    result = await self._all_series(statement, args)
                else:
                    result = await self._run_series(statement, args)
        log_with_context(
            logger,
            logging.DEBUG,
            "driver.query.complete",
            sql=sql,
            parameter_count=len(args),
            mode=str(mode),
            row_count=len(result.rows),
            changes=result.metadata.changes,
            duration_ms=round((time.perf_counter() - started) * 1000, 3),
        )
        return result

    async def _introspect(self, sql: str) -> "list[DictRow]":
        rows: list[DictRow] = await self.execute(sql, query_type=QueryType.SHOW_OR_DESCRIBE)
        return rows

    async def execute(
        self,
        sql: str,
        parameters: "StatementParameters" = None,
        *,
        query_type: "Union[QueryType, str, None]" = None,
        instance: "Optional[RecordInstance]" = None,
        model: "Optional[ModelDefinitionProtocol]" = None,
        returning: bool = False,
        plain: bool = False,
        record_type: "Optional[Union[type[Any], Callable[[DictRow], Any]]]" = None,
    ) -> Any:
        """Run one statement and shape its result.

        Args:
            sql: SQL text with ``$name`` or ``?`` placeholders.
            parameters: Positional sequence or mapping keyed by placeholder name.
            query_type: Operation the caller is performing; inferred when omitted.
            instance: Record populated from rows returned by an insert, update or upsert.
            model: Metadata of the model the statement targets.
            returning: Request row-returning mutation output.
            plain: Return a single record instead of a list.
            record_type: Type (or callable) each selected row is materialized into.

        Raises:
            ImproperConfigurationError: ``returning`` was requested but the feature is disabled.
            DatabaseError: The engine rejected the statement; subclass per error kind.
            EmptyResultError: A row-returning insert into ``instance`` produced no row.

        Returns:
            The shaped result for the statement's query type.
        """
        if returning and self.driver_features.get("returning") is False:
            msg = "Row-returning mutations are disabled by the 'returning' driver feature."
            raise ImproperConfigurationError(msg)

        classification = classify_query(sql, query_type)
        args = bind_parameters(
            sql, parameters, allow_fallback=self.driver_features.get("named_parameter_fallback", True)
        )
        mode = select_execution_mode(classification, returning=returning)
        # Mapping arguments hold one value per occurrence, so repeated names must not share an index.
        statement_sql = convert_placeholders_to_qmark(sql) if isinstance(parameters, Mapping) else sql
        result = await self._run(sql, args, mode, model=model, instance=instance, statement_sql=statement_sql)

        options = QueryOptions(
            instance=instance, model=model, returning=returning, plain=plain, record_type=record_type
        )
        return await ResultShaper(options, introspect=self._introspect).shape(classification, result)

    async def execute_script(self, sql: str) -> None:
        """Run one or more parameterless statements."""
        async with self.handle_database_exceptions(sql):
            await self.connection.exec(sql)

    async def begin(self) -> None:
        await self.execute_script("BEGIN")

    async def commit(self) -> None:
        await self.execute_script("COMMIT")

    async def rollback(self) -> None:
        await self.execute_script("ROLLBACK")
