"""Unit tests for the Turso driver with a mocked engine."""

import logging
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from tursospec.adapters.turso.driver import TursoDriver, TursoStatementContext
from tursospec.core.classification import QueryType
from tursospec.core.model import ColumnDefinition, ModelDefinition, Record
from tursospec.core.result import IndexDescription, IndexField
from tursospec.exceptions import (
    BusyTimeoutError,
    EmptyResultError,
    ImproperConfigurationError,
    TursoSpecError,
    UniqueViolationError,
)
from tursospec.typing import RunResult

pytestmark = pytest.mark.anyio


class EngineError(Exception):
    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code


def make_statement(rows: "Optional[list[dict[str, Any]]]" = None, run_result: Optional[RunResult] = None) -> AsyncMock:
    statement = AsyncMock()
    statement.all.return_value = rows or []
    statement.run.return_value = run_result or RunResult(changes=0, last_insert_rowid=None)
    return statement


@pytest.fixture
def statement() -> AsyncMock:
    return make_statement()


@pytest.fixture
def mock_connection(statement: AsyncMock) -> MagicMock:
    connection = MagicMock()
    connection.prepare.return_value = statement
    connection.exec = AsyncMock()
    return connection


@pytest.fixture
def driver(mock_connection: MagicMock) -> TursoDriver:
    return TursoDriver(connection=mock_connection)


async def test_select_binds_named_parameters_positionally(
    driver: TursoDriver, mock_connection: MagicMock, statement: AsyncMock
) -> None:
    statement.all.return_value = [{"id": 1, "name": "Ada"}]
    sql = "SELECT * FROM users WHERE id = $id AND name = $name"

    rows = await driver.execute(sql, {"name": "Ada", "id": 1}, query_type=QueryType.SELECT)

    assert rows == [{"id": 1, "name": "Ada"}]
    mock_connection.prepare.assert_called_once_with("SELECT * FROM users WHERE id = ? AND name = ?")
    statement.all.assert_awaited_once_with(1, "Ada")
    statement.run.assert_not_awaited()
    statement.close.assert_awaited_once()


async def test_insert_without_returning_uses_run(driver: TursoDriver, statement: AsyncMock) -> None:
    statement.run.return_value = RunResult(changes=1, last_insert_rowid=42)

    result = await driver.execute(
        "INSERT INTO users (id, name) VALUES (?, ?)", [2**63 - 1, "Ada"], query_type=QueryType.INSERT
    )

    assert result == ([], 1)
    statement.run.assert_awaited_once_with("9223372036854775807", "Ada")
    statement.all.assert_not_awaited()


async def test_insert_returning_populates_instance(driver: TursoDriver, statement: AsyncMock) -> None:
    statement.all.return_value = [{"id": 5, "is_active": 0}]
    model = ModelDefinition.from_columns("User", [ColumnDefinition("is_active", "isActive", "TINYINT(1)")])
    instance = Record({"isActive": True})

    record, affected = await driver.execute(
        "INSERT INTO users (is_active) VALUES ($active) RETURNING *",
        {"active": True},
        query_type=QueryType.INSERT,
        instance=instance,
        model=model,
    )

    assert record is instance
    assert affected == 1
    assert instance.get("isActive") is False
    assert instance.get("id") == 5
    assert instance.is_new_record is False


async def test_insert_returning_without_row_raises(driver: TursoDriver, statement: AsyncMock) -> None:
    with pytest.raises(EmptyResultError):
        await driver.execute(
            "INSERT OR IGNORE INTO users (id) VALUES (1)", query_type=QueryType.INSERT, instance=Record(), returning=True
        )
    statement.close.assert_awaited_once()


async def test_delete_returns_changes(driver: TursoDriver, statement: AsyncMock) -> None:
    statement.run.return_value = RunResult(changes=3, last_insert_rowid=0)
    assert await driver.execute("DELETE FROM users WHERE team_id = ?", [1], query_type=QueryType.DELETE) == 3


async def test_engine_error_is_classified_and_statement_closed(driver: TursoDriver, statement: AsyncMock) -> None:
    failure = EngineError("UNIQUE constraint failed: users.email", "SQLITE_CONSTRAINT_UNIQUE")
    statement.run.side_effect = failure
    sql = "INSERT INTO users (email) VALUES (?)"

    with pytest.raises(UniqueViolationError) as exc_info:
        await driver.execute(sql, ["ada@example.com"], query_type=QueryType.INSERT)

    assert exc_info.value.fields == ("email",)
    assert exc_info.value.sql == sql
    assert exc_info.value.__cause__ is failure
    statement.close.assert_awaited_once()


async def test_busy_error_is_classified(driver: TursoDriver, statement: AsyncMock) -> None:
    statement.all.side_effect = EngineError("database is locked", "SQLITE_BUSY")
    with pytest.raises(BusyTimeoutError):
        await driver.execute("SELECT 1", query_type=QueryType.SELECT)


async def test_library_errors_pass_through(driver: TursoDriver, mock_connection: MagicMock) -> None:
    failure = TursoSpecError("connection went away")
    mock_connection.prepare.side_effect = failure
    with pytest.raises(TursoSpecError) as exc_info:
        await driver.execute("SELECT 1")
    assert exc_info.value is failure


async def test_returning_feature_disabled(mock_connection: MagicMock) -> None:
    driver = TursoDriver(connection=mock_connection, driver_features={"returning": False})
    with pytest.raises(ImproperConfigurationError):
        await driver.execute("INSERT INTO users DEFAULT VALUES", query_type=QueryType.INSERT, returning=True)
    mock_connection.prepare.assert_not_called()


async def test_named_fallback_can_be_disabled(mock_connection: MagicMock, statement: AsyncMock) -> None:
    driver = TursoDriver(connection=mock_connection, driver_features={"named_parameter_fallback": False})
    await driver.execute("SELECT $x", {"y": 1}, query_type=QueryType.SELECT)
    statement.all.assert_awaited_once_with(None)


async def test_show_indexes_introspects_each_index(driver: TursoDriver, mock_connection: MagicMock) -> None:
    statements = {
        "PRAGMA INDEX_LIST(`users`)": make_statement(
            [{"seq": 0, "name": "users_email", "unique": 1, "origin": "c", "partial": 0}]
        ),
        "PRAGMA INDEX_INFO(`users_email`)": make_statement([{"seqno": 0, "cid": 1, "name": "email"}]),
    }
    mock_connection.prepare.side_effect = lambda sql: statements[sql]

    indexes = await driver.execute("PRAGMA INDEX_LIST(`users`)")

    assert indexes == [
        IndexDescription(
            name="users_email", unique=True, constraint_name="users_email", origin="c", fields=[IndexField("email")]
        )
    ]
    for prepared in statements.values():
        prepared.close.assert_awaited_once()


async def test_execution_is_logged(driver: TursoDriver, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.DEBUG, logger="tursospec.driver"):
        await driver.execute("SELECT $a", {"a": 1}, query_type=QueryType.SELECT)

    records = [record for record in caplog.records if record.getMessage() == "driver.query.complete"]
    assert len(records) == 1
    fields = records[0].extra_fields  # type: ignore[attr-defined]
    assert fields["sql"] == "SELECT $a"
    assert fields["parameter_count"] == 1
    assert fields["mode"] == "rowset"
    assert fields["duration_ms"] >= 0


async def test_statement_context_closes_on_error(mock_connection: MagicMock, statement: AsyncMock) -> None:
    with pytest.raises(RuntimeError):
        async with TursoStatementContext(mock_connection, "SELECT 1") as prepared:
            assert prepared is statement
            raise RuntimeError("failed mid-iteration")
    statement.close.assert_awaited_once()


async def test_transactions_use_exec(driver: TursoDriver, mock_connection: MagicMock) -> None:
    await driver.begin()
    await driver.commit()
    await driver.rollback()
    assert [c.args[0] for c in mock_connection.exec.await_args_list] == ["BEGIN", "COMMIT", "ROLLBACK"]


async def test_positional_parameters_keep_statement_text(
    driver: TursoDriver, mock_connection: MagicMock, statement: AsyncMock
) -> None:
    sql = "SELECT $a AS x, $a AS y"

    await driver.execute(sql, [5], query_type=QueryType.SELECT)

    mock_connection.prepare.assert_called_once_with(sql)
    statement.all.assert_awaited_once_with(5)
