from .base import (
    Column,
    Record,
    accessor,
    ColumnType,
    TypeConverter,
    SchemaRegistry,
    TableSpec,
    ColumnSpec,
    WhereClause,
    EMPTY,
    EQ,
    TypedTable,
    RollbackGuard,
    ConnectedDatabase,
    connect,
)
from .config import BackendConfig
from .errors import (
    TypedTableError,
    SchemaError,
    TypeMappingError,
    UnknownColumnError,
    NoResultError,
    NonUniqueResultError,
    QueryExecutionError,
)

__all__ = [
    "Column",
    "Record",
    "accessor",
    "ColumnType",
    "TypeConverter",
    "SchemaRegistry",
    "TableSpec",
    "ColumnSpec",
    "WhereClause",
    "EMPTY",
    "EQ",
    "TypedTable",
    "RollbackGuard",
    "ConnectedDatabase",
    "connect",
    "BackendConfig",
    "TypedTableError",
    "SchemaError",
    "TypeMappingError",
    "UnknownColumnError",
    "NoResultError",
    "NonUniqueResultError",
    "QueryExecutionError",
]

__version__ = '0.1.0'
