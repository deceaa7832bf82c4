from .types import ColumnType, Converter, DatabaseValue, TypeConverter, create_converter, default_converter
from .schema import Accessor, Column, ColumnSpec, Record, SchemaRegistry, TableSpec, accessor, default_registry
from .where import EMPTY, EQ, GE, GT, IS_NOT_NULL, IS_NULL, LE, LT, NE, COMPARATORS, WhereClause, render_where
from .table import TypedTable
from .guard import RollbackGuard
from .bundled import StatementLoader
from .connection import ConnectedDatabase, connect, dispose_engines
