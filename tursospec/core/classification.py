"""Statement classification.

Every request is classified exactly once into a :class:`QueryType`. The
classification decides which engine call runs the statement (rows vs. row
count) and how the result is shaped, and it is passed explicitly to both.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Final, Optional, Union

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from tursospec.utils.logging import get_logger

__all__ = (
    "MUTATION_TYPES",
    "ExecutionMode",
    "QueryType",
    "StatementClassification",
    "classify_query",
    "select_execution_mode",
)

logger = get_logger("core.classification")


class QueryType(str, Enum):
    """What a statement is, from the caller's point of view."""

    INSERT = "insert"
    BULK_UPDATE = "bulk_update"
    UPDATE = "update"
    UPSERT = "upsert"
    DELETE = "delete"
    SELECT = "select"
    SHOW_OR_DESCRIBE = "show_or_describe"
    SHOW_CONSTRAINTS = "show_constraints"
    SHOW_INDEXES = "show_indexes"
    SHOW_TABLE_INFO = "show_table_info"
    RAW = "raw"

    def __str__(self) -> str:
        return self.value


class ExecutionMode(str, Enum):
    """Which engine call runs a statement."""

    ROWSET = "rowset"
    ROWCOUNT = "rowcount"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class StatementClassification:
    query_type: QueryType
    has_returning: bool = False
    creates_temporary_table: bool = False


MUTATION_TYPES: Final[frozenset[QueryType]] = frozenset(
    {QueryType.INSERT, QueryType.UPDATE, QueryType.UPSERT, QueryType.BULK_UPDATE}
)

_PRAGMA_TYPES: Final[dict[str, QueryType]] = {
    "index_list": QueryType.SHOW_INDEXES,
    "index_info": QueryType.SHOW_OR_DESCRIBE,
    "index_xinfo": QueryType.SHOW_OR_DESCRIBE,
    "table_info": QueryType.SHOW_TABLE_INFO,
    "table_xinfo": QueryType.SHOW_TABLE_INFO,
    "foreign_key_list": QueryType.SHOW_CONSTRAINTS,
}
_PRAGMA_REGEX: Final = re.compile(r"^\s*PRAGMA\s+(?:\w+\.)?(?P<name>\w+)", re.IGNORECASE)
_TEMPORARY_TABLE_REGEX: Final = re.compile(r"\bCREATE\s+TEMP(?:ORARY)?\s+TABLE\b", re.IGNORECASE)
_RETURNING_REGEX: Final = re.compile(r"\bRETURNING\b", re.IGNORECASE)


def _parse(sql: str) -> "Optional[exp.Expression]":
    try:
        return sqlglot.parse_one(sql, dialect="sqlite")
    except SqlglotError as e:
        logger.debug("SQLGlot parsing failed, using text inspection: %s", e)
        return None


def _detect_returning(sql: str, expression: "Optional[exp.Expression]") -> bool:
    if expression is not None:
        return expression.args.get("returning") is not None
    return _RETURNING_REGEX.search(sql) is not None


def classify_query(sql: str, query_type: "Union[QueryType, str, None]" = None) -> StatementClassification:
    """Classify one statement.

    A declared ``query_type`` wins. Undeclared and ``RAW`` statements are
    inspected: introspection pragmas map to their ``SHOW_*`` types, everything
    else stays ``RAW`` so its rows are returned together with mutation metadata.

    Args:
        sql: SQL text of the statement.
        query_type: Operation the caller declared, if any.

    Returns:
        The statement classification.
    """
    declared = QueryType(query_type) if query_type is not None else None
    creates_temporary_table = _TEMPORARY_TABLE_REGEX.search(sql) is not None

    if declared is None or declared is QueryType.RAW:
        pragma = _PRAGMA_REGEX.match(sql)
        if pragma is not None:
            inferred = _PRAGMA_TYPES.get(pragma.group("name").lower(), QueryType.RAW)
            return StatementClassification(query_type=inferred)
        return StatementClassification(query_type=QueryType.RAW, creates_temporary_table=creates_temporary_table)

    if declared in MUTATION_TYPES:
        has_returning = _detect_returning(sql, _parse(sql))
    else:
        has_returning = False
    return StatementClassification(
        query_type=declared, has_returning=has_returning, creates_temporary_table=creates_temporary_table
    )


def select_execution_mode(classification: StatementClassification, *, returning: bool = False) -> ExecutionMode:
    """Pick rowset or rowcount execution for a classified statement.

    Args:
        classification: The statement classification.
        returning: The caller asked for row-returning mutation output.

    Returns:
        The execution mode.
    """
    query_type = classification.query_type
    if query_type in MUTATION_TYPES:
        if returning or classification.has_returning:
            return ExecutionMode.ROWSET
        return ExecutionMode.ROWCOUNT
    if query_type is QueryType.DELETE:
        return ExecutionMode.ROWCOUNT
    if classification.creates_temporary_table:
        return ExecutionMode.ROWCOUNT
    return ExecutionMode.ROWSET
