from dataclasses import dataclass, field
from threading import RLock
from typing import Any, Optional, Tuple

from sortedcontainers import SortedDict
from sqlalchemy import Column as SAColumn, MetaData, Table

from ..errors import SchemaError, TypeMappingError, UnknownColumnError
from ..helpers.utils import is_identifier
from ..logger import logger
from .types import ColumnType, TypeConverter, default_converter


class Column:
    """
    Declares a mapped column on a record class.

    The value lives in the instance ``__dict__``; reading a column that was
    never assigned returns ``default``.
    """

    def __init__(self, native_type, name=None, primary_key=False, unique=False, nullable=None, default=None):
        self.native_type = native_type
        self.name = name
        self.primary_key = primary_key
        self.unique = unique
        self.nullable = nullable
        self.default = default
        self.attr_name = None

    def __set_name__(self, owner, attr_name):
        self.attr_name = attr_name

    def __get__(self, instance, owner=None):
        if instance is None:
            return self
        return instance.__dict__.get(self.attr_name, self.default)

    def __set__(self, instance, value):
        instance.__dict__[self.attr_name] = value

    @property
    def column_name(self):
        return self.name or self.attr_name

    def __repr__(self):
        return f"Column({self.native_type.__qualname__}, name={self.column_name!r})"


class Accessor:
    """
    A column backed by a getter/setter pair, declared like a property:

        @accessor(str, name="tags")
        def tags_text(self):
            return ",".join(self.tags)

        @tags_text.setter
        def tags_text(self, value):
            self.tags = value.split(",")

    ``@tags_text.setter(bytes)`` declares the setter with its own type; the
    schema derivation rejects a pair whose types differ.
    """

    def __init__(self, native_type, name=None, primary_key=False, unique=False, nullable=None):
        self.native_type = native_type
        self.name = name
        self.primary_key = primary_key
        self.unique = unique
        self.nullable = nullable
        self.fget = None
        self.fset = None
        self.set_type = None
        self.attr_name = None

    def __call__(self, fget):
        self.fget = fget
        return self

    def setter(self, fset_or_type):
        if isinstance(fset_or_type, type):
            def decorator(fset):
                return self._with_setter(fset, fset_or_type)
            return decorator

        return self._with_setter(fset_or_type, self.native_type)

    def _with_setter(self, fset, set_type):
        self.fset = fset
        self.set_type = set_type
        return self

    def __set_name__(self, owner, attr_name):
        self.attr_name = attr_name

    def __get__(self, instance, owner=None):
        if instance is None:
            return self
        if self.fget is None:
            raise AttributeError(f"Accessor '{self.attr_name}' has no getter")
        return self.fget(instance)

    def __set__(self, instance, value):
        if self.fset is None:
            raise AttributeError(f"Accessor '{self.attr_name}' has no setter")
        self.fset(instance, value)

    @property
    def column_name(self):
        return self.name or self.attr_name


def accessor(native_type, name=None, primary_key=False, unique=False, nullable=None):
    return Accessor(native_type, name=name, primary_key=primary_key, unique=unique, nullable=nullable)


def declared_members(record_type):
    """
    Column declarations of a class, keyed by attribute name.

    Base classes are visited first so that subclasses override (or hide, by
    rebinding the attribute to something else) inherited columns.
    """
    members = {}
    for klass in reversed(record_type.__mro__):
        for attr_name, value in vars(klass).items():
            if isinstance(value, (Column, Accessor)):
                members[attr_name] = value
            elif attr_name in members:
                del members[attr_name]
    return members


class Record:
    """
    Optional base class for mapped types: keyword constructor, equality and
    repr over the declared columns.
    """

    __tablename__ = None

    def __init__(self, **kwargs):
        members = declared_members(type(self))
        for key, value in kwargs.items():
            if key not in members:
                raise TypeError(f"{type(self).__name__} has no column attribute '{key}'")
            setattr(self, key, value)

    def _column_values(self):
        return {
            attr_name: getattr(self, attr_name)
            for attr_name in declared_members(type(self))
        }

    def __eq__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self._column_values() == other._column_values()

    __hash__ = None

    def __repr__(self):
        values = " ".join(f"{k}={v!r}" for k, v in self._column_values().items())
        return f"{type(self).__name__}({values})"


@dataclass(frozen=True)
class ColumnSpec:
    name: str
    attr_name: str
    native_type: type
    column_type: ColumnType
    is_primary_key: bool = False
    is_unique: bool = False
    nullable: bool = True
    member: Any = field(default=None, repr=False, compare=False)

    def get(self, instance):
        return getattr(instance, self.attr_name)

    def set(self, instance, value):
        setattr(instance, self.attr_name, value)


@dataclass(frozen=True)
class TableSpec:
    record_type: type
    table_name: str
    columns: Tuple[ColumnSpec, ...]
    primary_key: Optional[ColumnSpec]
    sa_table: Table = field(repr=False, compare=False)
    converter: TypeConverter = field(repr=False, compare=False)

    @property
    def column_names(self):
        return [col.name for col in self.columns]

    def column(self, name) -> ColumnSpec:
        for col in self.columns:
            if col.name == name:
                return col
        raise UnknownColumnError(name, self.table_name)

    def sa_column(self, name):
        return self.sa_table.c[self.column(name).name]

    def to_database_values(self, record, columns=None, skip_null=True):
        """
        Column name => database value for ``record``.

        Columns whose native value is None are left out unless ``skip_null``
        is False, in which case they map to None.
        """
        specs = self.columns if columns is None else [self.column(name) for name in columns]

        values = {}
        for col in specs:
            value = col.get(record)
            if value is None:
                if not skip_null:
                    values[col.name] = None
                continue
            values[col.name] = self.converter.to_database(value, col.native_type)
        return values

    def to_record(self, row):
        """
        Build a record from a mapping of column name => database value.

        The record is created through its no-argument constructor, then
        populated column by column. Mapping keys that are not columns of this
        table are ignored, absent columns keep the constructor's value.
        """
        record = self.record_type()
        for col in self.columns:
            if col.name not in row:
                continue
            col.set(record, self.converter.to_native(row[col.name], col.native_type))
        return record


class SchemaRegistry:
    """
    Derives and caches one TableSpec per record type.

    Lookups of already derived types don't take the lock. Derivation happens
    under the lock and the TableSpec is published only once fully built, so
    concurrent first accesses derive once and all observe the same instance.
    """

    def __init__(self, converter=None):
        self.converter = converter or default_converter
        self.metadata = MetaData()
        self._tables = {}
        self._lock = RLock()

    def get_or_derive_table(self, record_type) -> TableSpec:
        spec = self._tables.get(record_type)
        if spec is not None:
            return spec

        with self._lock:
            spec = self._tables.get(record_type)
            if spec is None:
                spec = self._derive(record_type)
                self._tables[record_type] = spec

        return spec

    register = get_or_derive_table

    def __contains__(self, record_type):
        return record_type in self._tables

    def __len__(self):
        return len(self._tables)

    def _derive(self, record_type):
        if not isinstance(record_type, type):
            raise SchemaError(f"Not a record type: {record_type!r}")

        table_name = getattr(record_type, "__tablename__", None) or record_type.__name__
        if not is_identifier(table_name):
            raise SchemaError(f"Invalid table name {table_name!r} for {record_type.__qualname__}")

        logger.debug(f"Deriving schema of {record_type.__qualname__} as table '{table_name}'")

        columns = SortedDict()
        primary_key = None

        for attr_name, member in declared_members(record_type).items():
            name = member.column_name
            if not is_identifier(name):
                raise SchemaError(f"Invalid column name {name!r} on {record_type.__qualname__}.{attr_name}")

            if name in columns:
                raise SchemaError(f"Duplicated column '{name}' in table '{table_name}' ({record_type.__qualname__}.{attr_name})")

            if isinstance(member, Accessor):
                self._check_accessor(record_type, attr_name, member)

            try:
                column_type = self.converter.column_type(member.native_type)
            except TypeMappingError as exc:
                raise TypeMappingError(f"{record_type.__qualname__}.{attr_name}: {exc}") from exc

            nullable = member.nullable
            if member.primary_key:
                if primary_key is not None:
                    raise SchemaError(
                        f"Duplicated primary key in table '{table_name}': '{primary_key}' and '{name}'"
                    )
                primary_key = name
                nullable = False
            elif nullable is None:
                nullable = True

            columns[name] = ColumnSpec(
                name=name,
                attr_name=attr_name,
                native_type=member.native_type,
                column_type=column_type,
                is_primary_key=bool(member.primary_key),
                is_unique=bool(member.unique),
                nullable=nullable,
                member=member,
            )

        if not columns:
            raise SchemaError(f"{record_type.__qualname__} declares no columns")

        ordered = tuple(columns.values())
        sa_table = self._build_sa_table(table_name, ordered)

        return TableSpec(
            record_type=record_type,
            table_name=table_name,
            columns=ordered,
            primary_key=columns[primary_key] if primary_key is not None else None,
            sa_table=sa_table,
            converter=self.converter,
        )

    @staticmethod
    def _check_accessor(record_type, attr_name, member):
        where = f"{record_type.__qualname__}.{attr_name}"
        if member.fget is None:
            raise SchemaError(f"Getter not found for accessor {where}")
        if member.fset is None:
            raise SchemaError(f"Setter not found for accessor {where}")
        if member.set_type is not member.native_type:
            raise SchemaError(
                f"Getter/setter type mismatch for accessor {where}: "
                f"{member.native_type.__qualname__} vs {member.set_type.__qualname__}"
            )

    def _build_sa_table(self, table_name, columns):
        if table_name in self.metadata.tables:
            raise SchemaError(f"Table '{table_name}' is already mapped by another record type")

        return Table(
            table_name,
            self.metadata,
            *[
                SAColumn(
                    col.name,
                    col.column_type.sa_type(keyed=col.is_primary_key or col.is_unique),
                    primary_key=col.is_primary_key,
                    unique=col.is_unique or None,
                    nullable=col.nullable,
                )
                for col in columns
            ],
        )


default_registry = SchemaRegistry()
