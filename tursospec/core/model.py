"""Minimal model metadata and record types consumed by the execution layer.

The ORM owning models and instances lives outside this package. These types
describe the part of its contract the result shaper and error classifier
read: which attribute a column maps to, how to parse its values, which unique
indexes carry custom violation messages, and how to populate a record.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from tursospec.core.type_conversion import parse_database_value

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

__all__ = ("ColumnDefinition", "IndexDefinition", "ModelDefinition", "Record")


@dataclass(frozen=True)
class ColumnDefinition:
    """A model column: its database name, attribute name and declared type."""

    column_name: str
    attribute_name: str
    type: Optional[str] = None

    def parse_value(self, value: Any) -> Any:
        return parse_database_value(value, self.type)


@dataclass(frozen=True)
class IndexDefinition:
    """A declared index; ``msg`` overrides the unique violation message."""

    fields: "tuple[str, ...]"
    unique: bool = False
    name: Optional[str] = None
    msg: Optional[str] = None


@dataclass
class ModelDefinition:
    name: str
    columns: "dict[str, ColumnDefinition]" = field(default_factory=dict)
    indexes: "list[IndexDefinition]" = field(default_factory=list)

    @classmethod
    def from_columns(
        cls, name: str, columns: "Iterable[ColumnDefinition]", indexes: "Sequence[IndexDefinition]" = ()
    ) -> "ModelDefinition":
        return cls(name=name, columns={c.column_name: c for c in columns}, indexes=list(indexes))


class Record:
    """Plain attribute bag implementing :class:`tursospec.typing.RecordInstance`."""

    __slots__ = ("data_values", "is_new_record")

    def __init__(self, values: "Optional[Mapping[str, Any]]" = None, *, is_new_record: bool = True) -> None:
        self.data_values: dict[str, Any] = dict(values or {})
        self.is_new_record = is_new_record

    def set(self, key: str, value: Any, *, raw: bool = False, comes_from_database: bool = False) -> None:
        self.data_values[key] = value
        if comes_from_database:
            self.is_new_record = False

    def get(self, key: str, default: Any = None) -> Any:
        return self.data_values.get(key, default)

    def __getitem__(self, key: str) -> Any:
        return self.data_values[key]

    def __repr__(self) -> str:
        return f"Record({self.data_values!r}, is_new_record={self.is_new_record!r})"
