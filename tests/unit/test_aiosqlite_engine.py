"""Unit tests for the aiosqlite engine module."""

import pytest

from tursospec.adapters.turso.driver import TursoDriver
from tursospec.adapters.turso.engine import AiosqliteEngineStatement, connect, is_single_statement
from tursospec.core.classification import QueryType
from tursospec.exceptions import ImproperConfigurationError

pytestmark = pytest.mark.anyio


@pytest.mark.parametrize(
    ("sql", "expected"),
    [
        ("BEGIN", True),
        ("ROLLBACK;", True),
        ("INSERT INTO t VALUES ('a;b')", True),
        ("CREATE TABLE a (id INTEGER); CREATE TABLE b (id INTEGER);", False),
        ("PRAGMA foreign_keys = ON", True),
    ],
)
def test_is_single_statement(sql: str, expected: bool) -> None:
    assert is_single_statement(sql) is expected


@pytest.mark.parametrize("target", ["libsql://db.example.turso.io", "https://db.example.turso.io"])
async def test_connect_rejects_remote_targets(target: str) -> None:
    with pytest.raises(ImproperConfigurationError):
        await connect(target)


async def test_connect_rejects_auth_token() -> None:
    with pytest.raises(ImproperConfigurationError):
        await connect(":memory:", auth_token="token")


async def test_statement_numbers_names_like_sqlite() -> None:
    connection = await connect(":memory:")
    try:
        statement = connection.prepare("SELECT $a AS a, $b AS b, $a AS again")
        assert isinstance(statement, AiosqliteEngineStatement)
        assert statement.sql == "SELECT ?1 AS a, ?2 AS b, ?1 AS again"
        assert await statement.all(1, 2) == [{"a": 1, "b": 2, "again": 1}]
        await statement.close()
        await statement.close()
        with pytest.raises(RuntimeError):
            await statement.all(1, 2)
    finally:
        await connection.close()


async def test_qmark_statement_binds_each_occurrence() -> None:
    connection = await connect(":memory:")
    try:
        statement = connection.prepare("SELECT ? AS a, ? AS again")
        assert await statement.all(1, 1) == [{"a": 1, "again": 1}]
        await statement.close()
    finally:
        await connection.close()


async def test_driver_positional_arguments_reuse_named_placeholder() -> None:
    connection = await connect(":memory:")
    try:
        driver = TursoDriver(connection)
        rows = await driver.execute("SELECT $a AS x, $a AS y", [5], query_type=QueryType.SELECT)
        named = await driver.execute("SELECT $a AS x, $a AS y", {"a": 7}, query_type=QueryType.SELECT)
    finally:
        await connection.close()

    assert rows == [{"x": 5, "y": 5}]
    assert named == [{"x": 7, "y": 7}]


async def test_run_reports_changes_and_rowid() -> None:
    connection = await connect(":memory:")
    try:
        await connection.exec("CREATE TABLE t (id INTEGER PRIMARY KEY, v TEXT)")
        statement = connection.prepare("INSERT INTO t (v) VALUES (?)")
        result = await statement.run("x")
        await statement.close()
        assert result.changes == 1
        assert result.last_insert_rowid == 1
    finally:
        await connection.close()
