"""Result shaping.

The statement runner produces an :class:`EngineResult` (mutation metadata plus
rows). :class:`ResultShaper` turns it into whatever the classified query type
promises its caller: populated records, row counts, typed records, index or
column descriptions.
"""

import dataclasses
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional, Union, cast

import msgspec
from msgspec import UNSET, UnsetType

from tursospec.core.classification import ExecutionMode, QueryType, StatementClassification
from tursospec.core.type_conversion import convert_boolean, is_boolean_type
from tursospec.exceptions import EmptyResultError, TursoSpecError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from tursospec.typing import DictRow, ModelDefinitionProtocol, RecordInstance

__all__ = (
    "ColumnDescription",
    "EngineResult",
    "IndexDescription",
    "IndexField",
    "MutationMetadata",
    "QueryOptions",
    "ResultShaper",
    "shape_table_info",
    "to_records",
)


@dataclass(frozen=True)
class MutationMetadata:
    inserted_id: int = 0
    changes: int = 0


@dataclass(frozen=True)
class EngineResult:
    """Raw outcome of one statement execution."""

    metadata: MutationMetadata
    rows: "list[DictRow]" = field(default_factory=list)
    mode: ExecutionMode = ExecutionMode.ROWSET

    @classmethod
    def from_rows(cls, rows: "list[DictRow]") -> "EngineResult":
        return cls(metadata=MutationMetadata(), rows=rows, mode=ExecutionMode.ROWSET)

    @classmethod
    def from_run(cls, changes: int, inserted_id: "Optional[int]") -> "EngineResult":
        return cls(
            metadata=MutationMetadata(inserted_id=inserted_id or 0, changes=changes),
            rows=[],
            mode=ExecutionMode.ROWCOUNT,
        )


@dataclass(frozen=True)
class QueryOptions:
    """Caller state that shapes a result.

    Attributes:
        instance: Record populated from rows returned by an insert, update or upsert.
        model: Metadata of the model the statement targets.
        returning: Row-returning mutation output was requested.
        plain: Return a single record instead of a list.
        record_type: Type (or callable) each selected row is materialized into.
    """

    instance: "Optional[RecordInstance]" = None
    model: "Optional[ModelDefinitionProtocol]" = None
    returning: bool = False
    plain: bool = False
    record_type: "Optional[Union[type[Any], Callable[[DictRow], Any]]]" = None


@dataclass(frozen=True)
class ColumnDescription:
    """One column of a ``PRAGMA table_info`` result.

    ``default_value`` is ``UNSET`` when the column declares no default and
    ``None`` when it declares ``DEFAULT NULL``.
    """

    type: str
    allow_null: bool
    default_value: "Union[Any, UnsetType]" = UNSET
    primary_key: bool = False


@dataclass(frozen=True)
class IndexField:
    attribute: str
    length: Optional[int] = None
    order: Optional[str] = None


@dataclass
class IndexDescription:
    name: str
    unique: bool
    primary: bool = False
    constraint_name: Optional[str] = None
    origin: Optional[str] = None
    partial: bool = False
    fields: "list[IndexField]" = field(default_factory=list)


def _is_msgspec_struct(record_type: Any) -> bool:
    return isinstance(record_type, type) and issubclass(record_type, msgspec.Struct)


def to_records(
    rows: "Sequence[DictRow]", record_type: "Optional[Union[type[Any], Callable[[DictRow], Any]]]" = None
) -> "list[Any]":
    """Materialize one record per row.

    Args:
        rows: Rows as column-name mappings, in engine order.
        record_type: A dataclass, msgspec struct, or any callable taking a row.
            None keeps the rows as dicts.

    Raises:
        TursoSpecError: ``record_type`` cannot build records.

    Returns:
        Records in row order.
    """
    if record_type is None:
        return list(rows)
    if _is_msgspec_struct(record_type):
        return msgspec.convert(list(rows), type=list[record_type], strict=False)  # type: ignore[valid-type]
    if dataclasses.is_dataclass(record_type):
        return [record_type(**row) for row in rows]  # type: ignore[operator]
    if callable(record_type):
        return [record_type(row) for row in rows]
    msg = "`record_type` should be a Dataclass, Msgspec struct, or callable"
    raise TursoSpecError(msg)


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:  # noqa: PLR2004
        quote = value[0]
        return value[1:-1].replace(quote * 2, quote)
    return value


def _parse_column_default(column_type: str, raw_default: "Optional[str]") -> "Union[Any, UnsetType]":
    if raw_default is None:
        return UNSET
    if raw_default == "NULL":
        return None
    if is_boolean_type(column_type) and raw_default in {"0", "1"}:
        return convert_boolean(raw_default)
    return _strip_quotes(raw_default) if isinstance(raw_default, str) else raw_default


def shape_table_info(rows: "Sequence[DictRow]") -> "dict[str, ColumnDescription]":
    """Describe every column returned by ``PRAGMA table_info``."""
    result: dict[str, ColumnDescription] = {}
    for row in rows:
        column_type = row.get("type") or ""
        result[row["name"]] = ColumnDescription(
            type=column_type,
            allow_null=row.get("notnull") == 0,
            default_value=_parse_column_default(column_type, row.get("dflt_value")),
            primary_key=row.get("pk", 0) != 0,
        )
    return result


class ResultShaper:
    """Turns an :class:`EngineResult` into the caller-facing result.

    Args:
        options: Caller state for the statement being shaped.
        introspect: Runs a follow-up introspection statement and returns its
            rows; used to recover the columns of each index.
    """

    __slots__ = ("_introspect", "options")

    def __init__(
        self, options: QueryOptions, introspect: "Optional[Callable[[str], Awaitable[list[DictRow]]]]" = None
    ) -> None:
        self.options = options
        self._introspect = introspect

    async def shape(self, classification: StatementClassification, result: EngineResult) -> Any:
        query_type = classification.query_type
        rows = result.rows

        if query_type in {QueryType.INSERT, QueryType.UPDATE, QueryType.UPSERT}:
            return self._shape_mutation(classification, result)
        if query_type is QueryType.BULK_UPDATE:
            if result.mode is ExecutionMode.ROWSET:
                return self._shape_select(rows)
            return result.metadata.changes
        if query_type is QueryType.DELETE:
            return result.metadata.changes
        if query_type in {QueryType.SHOW_CONSTRAINTS, QueryType.SHOW_OR_DESCRIBE}:
            return rows
        if query_type is QueryType.SELECT:
            return self._shape_select(rows)
        if query_type is QueryType.SHOW_INDEXES:
            return await self._shape_indexes(rows)
        if query_type is QueryType.SHOW_TABLE_INFO:
            return shape_table_info(rows)
        return rows, result.metadata

    def _shape_select(self, rows: "list[DictRow]") -> Any:
        records = to_records(rows, self.options.record_type)
        if self.options.plain:
            return records[0] if records else None
        return records

    def _populate_instance(self, instance: "RecordInstance", row: "DictRow") -> None:
        model = self.options.model
        for column_name, raw_value in row.items():
            column = model.columns.get(column_name) if model is not None else None
            if column is None:
                instance.set(column_name, raw_value, raw=True, comes_from_database=True)
                continue
            instance.set(column.attribute_name, column.parse_value(raw_value), raw=True, comes_from_database=True)
        instance.is_new_record = False

    def _shape_mutation(self, classification: StatementClassification, result: EngineResult) -> Any:
        instance = self.options.instance
        rows = result.rows
        returned_rows = result.mode is ExecutionMode.ROWSET
        query_type = classification.query_type

        if instance is not None:
            if query_type is QueryType.INSERT and returned_rows and not rows:
                raise EmptyResultError
            if rows:
                self._populate_instance(instance, rows[0])

        if query_type is QueryType.UPSERT:
            return instance, None

        if instance is not None:
            record: Any = instance
        elif self.options.plain and rows:
            record = rows[0]
        else:
            record = rows
        return record, len(rows) if returned_rows else result.metadata.changes

    async def _shape_indexes(self, rows: "list[DictRow]") -> "list[IndexDescription]":
        indexes: list[IndexDescription] = []
        for row in reversed(rows):
            name = cast("str", row["name"])
            index = IndexDescription(
                name=name,
                unique=bool(row.get("unique")),
                primary=False,
                constraint_name=name,
                origin=row.get("origin"),
                partial=bool(row.get("partial")),
            )
            if self._introspect is not None:
                columns = await self._introspect(f"PRAGMA INDEX_INFO(`{name}`)")
                ordered = sorted(columns, key=lambda column: column["seqno"])
                index.fields = [IndexField(attribute=column["name"]) for column in ordered]
            indexes.append(index)
        return indexes
