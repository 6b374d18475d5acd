"""Engine-independent execution pieces.

- parameters.py: placeholder scanning and positional binding
- classification.py: query classification and execution mode selection
- result.py: result shaping and record materialization
- type_conversion.py: value coercion for populated records
- model.py: minimal model and record implementations
"""

from tursospec.core.classification import (
    ExecutionMode,
    QueryType,
    StatementClassification,
    classify_query,
    select_execution_mode,
)
from tursospec.core.model import ColumnDefinition, IndexDefinition, ModelDefinition, Record
from tursospec.core.parameters import bind_parameters, find_placeholders
from tursospec.core.result import EngineResult, MutationMetadata, QueryOptions, ResultShaper, to_records

__all__ = (
    "ColumnDefinition",
    "EngineResult",
    "ExecutionMode",
    "IndexDefinition",
    "ModelDefinition",
    "MutationMetadata",
    "QueryOptions",
    "QueryType",
    "Record",
    "ResultShaper",
    "StatementClassification",
    "bind_parameters",
    "classify_query",
    "find_placeholders",
    "select_execution_mode",
    "to_records",
)
