"""Unit tests for result shaping."""

from dataclasses import dataclass
from typing import Any
from unittest.mock import AsyncMock

import msgspec
import pytest

from tursospec.core.classification import ExecutionMode, QueryType, StatementClassification
from tursospec.core.model import ColumnDefinition, ModelDefinition, Record
from tursospec.core.result import (
    ColumnDescription,
    EngineResult,
    IndexDescription,
    IndexField,
    MutationMetadata,
    QueryOptions,
    ResultShaper,
    shape_table_info,
    to_records,
)
from tursospec.exceptions import EmptyResultError, TursoSpecError
from tursospec.typing import UNSET

pytestmark = pytest.mark.anyio


@dataclass
class User:
    id: int
    name: str


class UserStruct(msgspec.Struct):
    id: int
    name: str


USER_ROWS: "list[dict[str, Any]]" = [{"id": 1, "name": "Ada"}, {"id": 2, "name": "Grace"}]


def classified(query_type: QueryType) -> StatementClassification:
    return StatementClassification(query_type=query_type)


@pytest.fixture
def user_model() -> ModelDefinition:
    return ModelDefinition.from_columns(
        "User",
        [
            ColumnDefinition("id", "id", "INTEGER"),
            ColumnDefinition("is_active", "isActive", "TINYINT(1)"),
            ColumnDefinition("created_at", "createdAt", "DATETIME"),
        ],
    )


async def test_insert_populates_instance_from_first_row(user_model: ModelDefinition) -> None:
    instance = Record({"isActive": None})
    result = EngineResult.from_rows([{"id": 9, "is_active": 1, "created_at": "2024-01-02T03:04:05", "extra": "x"}])
    shaper = ResultShaper(QueryOptions(instance=instance, model=user_model, returning=True))

    record, affected = await shaper.shape(classified(QueryType.INSERT), result)

    assert record is instance
    assert affected == 1
    assert instance.get("id") == 9
    assert instance.get("isActive") is True
    assert instance.get("createdAt").year == 2024
    assert instance.get("extra") == "x"
    assert instance.is_new_record is False


async def test_insert_with_no_returned_row_raises(user_model: ModelDefinition) -> None:
    shaper = ResultShaper(QueryOptions(instance=Record(), model=user_model, returning=True))
    with pytest.raises(EmptyResultError):
        await shaper.shape(classified(QueryType.INSERT), EngineResult.from_rows([]))


async def test_upsert_with_no_row_returns_instance() -> None:
    instance = Record({"id": 1})
    shaper = ResultShaper(QueryOptions(instance=instance, returning=True))
    assert await shaper.shape(classified(QueryType.UPSERT), EngineResult.from_rows([])) == (instance, None)
    assert instance.is_new_record is True


async def test_update_with_no_row_keeps_instance() -> None:
    instance = Record({"id": 1})
    shaper = ResultShaper(QueryOptions(instance=instance, returning=True))
    assert await shaper.shape(classified(QueryType.UPDATE), EngineResult.from_rows([])) == (instance, 0)


async def test_insert_rowcount_without_instance_returns_changes() -> None:
    shaper = ResultShaper(QueryOptions())
    result = EngineResult.from_run(changes=3, inserted_id=7)
    assert await shaper.shape(classified(QueryType.INSERT), result) == ([], 3)


async def test_insert_rowcount_with_instance_and_no_changes_returns_instance(user_model: ModelDefinition) -> None:
    instance = Record({"email": "ada@example.com"})
    shaper = ResultShaper(QueryOptions(instance=instance, model=user_model))

    result = EngineResult.from_run(changes=0, inserted_id=None)

    record, affected = await shaper.shape(classified(QueryType.INSERT), result)

    assert record is instance
    assert affected == 0
    assert instance.is_new_record is True


async def test_plain_insert_returning_without_instance_returns_first_row() -> None:
    shaper = ResultShaper(QueryOptions(returning=True, plain=True))
    assert await shaper.shape(classified(QueryType.INSERT), EngineResult.from_rows(USER_ROWS)) == (USER_ROWS[0], 2)


async def test_bulk_update() -> None:
    shaper = ResultShaper(QueryOptions())
    assert await shaper.shape(classified(QueryType.BULK_UPDATE), EngineResult.from_run(4, None)) == 4
    assert await shaper.shape(classified(QueryType.BULK_UPDATE), EngineResult.from_rows(USER_ROWS)) == USER_ROWS


async def test_delete_returns_changes() -> None:
    shaper = ResultShaper(QueryOptions())
    assert await shaper.shape(classified(QueryType.DELETE), EngineResult.from_run(2, 0)) == 2


async def test_show_constraints_returns_rows_unchanged() -> None:
    rows = [{"id": 0, "table": "teams", "from": "team_id", "to": "id"}]
    shaper = ResultShaper(QueryOptions())
    assert await shaper.shape(classified(QueryType.SHOW_CONSTRAINTS), EngineResult.from_rows(rows)) == rows


async def test_raw_returns_rows_and_metadata() -> None:
    shaper = ResultShaper(QueryOptions())
    result = EngineResult(metadata=MutationMetadata(inserted_id=5, changes=1), rows=[], mode=ExecutionMode.ROWCOUNT)
    assert await shaper.shape(classified(QueryType.RAW), result) == ([], MutationMetadata(inserted_id=5, changes=1))


async def test_select_materializes_dataclasses() -> None:
    shaper = ResultShaper(QueryOptions(record_type=User))
    records = await shaper.shape(classified(QueryType.SELECT), EngineResult.from_rows(USER_ROWS))
    assert records == [User(1, "Ada"), User(2, "Grace")]


async def test_select_plain_returns_first_record_or_none() -> None:
    shaper = ResultShaper(QueryOptions(plain=True))
    assert await shaper.shape(classified(QueryType.SELECT), EngineResult.from_rows(USER_ROWS)) == USER_ROWS[0]
    assert await shaper.shape(classified(QueryType.SELECT), EngineResult.from_rows([])) is None


async def test_select_record_count_matches_row_count() -> None:
    rows = [{"id": index, "name": str(index)} for index in range(25)]
    records = await ResultShaper(QueryOptions()).shape(classified(QueryType.SELECT), EngineResult.from_rows(rows))
    assert len(records) == len(rows)


def test_to_records_supports_msgspec_structs_and_callables() -> None:
    assert to_records(USER_ROWS, UserStruct) == [UserStruct(1, "Ada"), UserStruct(2, "Grace")]
    assert to_records(USER_ROWS, lambda row: row["name"]) == ["Ada", "Grace"]
    assert to_records(USER_ROWS) == USER_ROWS


def test_to_records_rejects_non_callable() -> None:
    with pytest.raises(TursoSpecError):
        to_records(USER_ROWS, 5)  # type: ignore[arg-type]


async def test_show_indexes_reverses_rows_and_orders_fields_by_seqno() -> None:
    rows = [
        {"seq": 0, "name": "users_name", "unique": 0, "origin": "c", "partial": 0},
        {"seq": 1, "name": "users_email_org", "unique": 1, "origin": "c", "partial": 0},
    ]
    columns = {
        "PRAGMA INDEX_INFO(`users_email_org`)": [
            {"seqno": 1, "cid": 3, "name": "org_id"},
            {"seqno": 0, "cid": 2, "name": "email"},
        ],
        "PRAGMA INDEX_INFO(`users_name`)": [{"seqno": 0, "cid": 1, "name": "name"}],
    }
    introspect = AsyncMock(side_effect=lambda sql: columns[sql])
    shaper = ResultShaper(QueryOptions(), introspect=introspect)

    indexes = await shaper.shape(classified(QueryType.SHOW_INDEXES), EngineResult.from_rows(rows))

    assert indexes == [
        IndexDescription(
            name="users_email_org",
            unique=True,
            primary=False,
            constraint_name="users_email_org",
            origin="c",
            partial=False,
            fields=[IndexField("email"), IndexField("org_id")],
        ),
        IndexDescription(
            name="users_name",
            unique=False,
            constraint_name="users_name",
            origin="c",
            fields=[IndexField("name")],
        ),
    ]
    assert introspect.await_count == 2


async def test_show_table_info() -> None:
    rows = [
        {"cid": 0, "name": "id", "type": "INTEGER", "notnull": 1, "dflt_value": None, "pk": 1},
        {"cid": 1, "name": "is_active", "type": "TINYINT(1)", "notnull": 0, "dflt_value": "1", "pk": 0},
        {"cid": 2, "name": "title", "type": "TEXT", "notnull": 0, "dflt_value": "'it''s'", "pk": 0},
        {"cid": 3, "name": "note", "type": "TEXT", "notnull": 0, "dflt_value": "NULL", "pk": 0},
    ]
    shaper = ResultShaper(QueryOptions())

    columns = await shaper.shape(classified(QueryType.SHOW_TABLE_INFO), EngineResult.from_rows(rows))

    assert columns == {
        "id": ColumnDescription(type="INTEGER", allow_null=False, default_value=UNSET, primary_key=True),
        "is_active": ColumnDescription(type="TINYINT(1)", allow_null=True, default_value=True, primary_key=False),
        "title": ColumnDescription(type="TEXT", allow_null=True, default_value="it's", primary_key=False),
        "note": ColumnDescription(type="TEXT", allow_null=True, default_value=None, primary_key=False),
    }


def test_table_info_boolean_zero_default() -> None:
    rows = [{"name": "flag", "type": "BOOLEAN", "notnull": 1, "dflt_value": "0", "pk": 0}]
    assert shape_table_info(rows)["flag"].default_value is False


def test_table_info_strips_double_quoted_default() -> None:
    rows = [
        {"name": "label", "type": "TEXT", "notnull": 0, "dflt_value": '"say ""hi"""', "pk": 0},
        {"name": "unquoted", "type": "TEXT", "notnull": 0, "dflt_value": "CURRENT_TIMESTAMP", "pk": 0},
    ]
    columns = shape_table_info(rows)
    assert columns["label"].default_value == 'say "hi"'
    assert columns["unquoted"].default_value == "CURRENT_TIMESTAMP"
