from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, NamedTuple, Optional, Protocol, Union

from msgspec import UNSET, UnsetType
from typing_extensions import TypeAlias

if TYPE_CHECKING:
    from tursospec.core.model import ColumnDefinition, IndexDefinition

__all__ = (
    "UNSET",
    "DictRow",
    "EngineConnection",
    "EngineModule",
    "EngineStatement",
    "ModelDefinitionProtocol",
    "NamedParameters",
    "PositionalParameters",
    "RecordInstance",
    "RunResult",
    "StatementParameters",
    "UnsetType",
)

DictRow: TypeAlias = "dict[str, Any]"
PositionalParameters: TypeAlias = "Sequence[Any]"
NamedParameters: TypeAlias = "Mapping[str, Any]"
StatementParameters: TypeAlias = "Union[PositionalParameters, NamedParameters, None]"


class RunResult(NamedTuple):
    """Mutation metadata reported by an engine ``run`` call."""

    changes: int
    last_insert_rowid: Optional[int]


class EngineStatement(Protocol):
    """Prepared statement handle returned by :meth:`EngineConnection.prepare`."""

    async def run(self, *args: Any) -> RunResult: ...

    async def all(self, *args: Any) -> "list[DictRow]": ...

    async def close(self) -> None: ...


class EngineConnection(Protocol):
    """Connection interface the execution layer drives."""

    def prepare(self, sql: str) -> EngineStatement: ...

    async def exec(self, sql: str) -> None: ...

    async def close(self) -> None: ...


class EngineModule(Protocol):
    """Anything that can open engine connections."""

    async def connect(self, target: str, **kwargs: Any) -> EngineConnection: ...


class RecordInstance(Protocol):
    """Record being populated by an insert, update or upsert."""

    is_new_record: bool

    def set(self, key: str, value: Any, *, raw: bool = False, comes_from_database: bool = False) -> None: ...

    def get(self, key: str, default: Any = None) -> Any: ...


class ModelDefinitionProtocol(Protocol):
    """Column and index metadata of the model a statement targets."""

    @property
    def columns(self) -> "Mapping[str, ColumnDefinition]": ...

    @property
    def indexes(self) -> "Sequence[IndexDefinition]": ...

