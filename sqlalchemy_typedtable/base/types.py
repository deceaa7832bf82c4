import enum
import uuid
from datetime import date, datetime
from decimal import Decimal
from threading import RLock
from typing import Any, Callable, NamedTuple, Optional, Union

from sqlalchemy import BigInteger, Double, Integer, LargeBinary, String, Text
from sqlalchemy.types import TypeEngine

from ..errors import TypeMappingError

# What a driver accepts as a bound parameter / hands back in a row
DatabaseValue = Union[int, float, str, bytes, None]

INTEGER_MIN = -(2 ** 63)
INTEGER_MAX = 2 ** 63 - 1


class ColumnType(enum.Enum):
    INTEGER = int
    REAL = float
    TEXT = str
    BLOB = bytes

    @property
    def python_type(self):
        return self.value

    def sa_type(self, keyed=False) -> TypeEngine:
        """
        SQLAlchemy type used for DDL and parameter binding.

        ``keyed`` is set for primary key and unique columns: MySQL cannot index
        an unbounded TEXT column.
        """
        if self is ColumnType.INTEGER:
            # INTEGER PRIMARY KEY is the rowid alias on SQLite, BIGINT is not
            return BigInteger().with_variant(Integer(), "sqlite")
        if self is ColumnType.REAL:
            return Double()
        if self is ColumnType.TEXT:
            if keyed:
                return Text().with_variant(String(255), "mysql", "mariadb")
            return Text()
        return LargeBinary()

    def check(self, value):
        """
        Validate a value read from (or about to be sent to) the database
        against this variant.
        """
        if value is None:
            return None

        if self is ColumnType.REAL and isinstance(value, int) and not isinstance(value, bool):
            return float(value)

        if self is ColumnType.INTEGER and isinstance(value, bool):
            return int(value)

        if self is ColumnType.INTEGER and isinstance(value, int) and not INTEGER_MIN <= value <= INTEGER_MAX:
            raise TypeMappingError(f"INTEGER database value out of 64-bit range: {value!r}")

        if self is ColumnType.BLOB and isinstance(value, (bytearray, memoryview)):
            return bytes(value)

        if not isinstance(value, self.python_type):
            raise TypeMappingError(
                f"Expected a {self.name} database value, got {type(value).__name__}: {value!r}"
            )
        return value


class Converter(NamedTuple):
    native_type: type
    column_type: ColumnType
    to_database: Callable[[Any], DatabaseValue]
    to_native: Callable[[DatabaseValue, type], Any]


def _decode_datetime(value, native_type):
    return native_type.fromisoformat(value)


def _widens_to(value, converter):
    # int -> float, as the numeric tower allows. bool stays out.
    return (
        converter.column_type is ColumnType.REAL
        and isinstance(value, int)
        and not isinstance(value, bool)
    )


class TypeConverter:
    """
    Bidirectional mapping between native Python values and database values.

    Converters are looked up by exact type first, then through the MRO of the
    native type, so a registered base class (e.g. ``enum.Enum``) covers its
    subclasses while ``bool`` keeps its own converter instead of ``int``'s.
    """

    def __init__(self):
        self._converters = {}
        self._lock = RLock()

    def register(self, native_type, column_type, to_database, to_native):
        if not isinstance(column_type, ColumnType):
            raise TypeMappingError(f"Not a column type: {column_type!r}")

        with self._lock:
            self._converters[native_type] = Converter(native_type, column_type, to_database, to_native)

    def converter_for(self, native_type) -> Converter:
        converter = self._converters.get(native_type)
        if converter is not None:
            return converter

        mro = getattr(native_type, "__mro__", None)
        if mro is None:
            raise TypeMappingError(f"Unsupported native type: {native_type!r}")

        for base in mro[1:]:
            if base is object:
                break
            converter = self._converters.get(base)
            if converter is not None:
                return converter

        raise TypeMappingError(f"Unsupported native type: {native_type.__qualname__}")

    def supports(self, native_type):
        try:
            self.converter_for(native_type)
        except TypeMappingError:
            return False
        return True

    def column_type(self, native_type) -> ColumnType:
        return self.converter_for(native_type).column_type

    def to_database(self, value, native_type=None) -> DatabaseValue:
        native_type = native_type or type(value)
        converter = self.converter_for(native_type)

        if not isinstance(value, converter.native_type) and not _widens_to(value, converter):
            raise TypeMappingError(
                f"Value {value!r} is not a {native_type.__qualname__}"
            )

        try:
            db_value = converter.to_database(value)
        except (TypeError, ValueError) as exc:
            raise TypeMappingError(f"Cannot convert {value!r} to a database value: {exc}") from exc

        return converter.column_type.check(db_value)

    def to_native(self, value: DatabaseValue, native_type) -> Optional[Any]:
        if value is None:
            return None

        converter = self.converter_for(native_type)
        value = converter.column_type.check(value)

        try:
            return converter.to_native(value, native_type)
        except (TypeError, ValueError, KeyError) as exc:
            raise TypeMappingError(
                f"Cannot convert database value {value!r} to {native_type.__qualname__}: {exc}"
            ) from exc


def _install_defaults(converter):
    converter.register(bool, ColumnType.INTEGER, lambda v: 1 if v else 0, lambda v, t: bool(v))
    converter.register(int, ColumnType.INTEGER, int, lambda v, t: t(v))
    converter.register(float, ColumnType.REAL, float, lambda v, t: t(v))
    converter.register(str, ColumnType.TEXT, str, lambda v, t: t(v))
    converter.register(bytes, ColumnType.BLOB, bytes, lambda v, t: t(v))
    converter.register(uuid.UUID, ColumnType.TEXT, str, lambda v, t: t(v))
    converter.register(enum.Enum, ColumnType.TEXT, lambda v: v.name, lambda v, t: t[v])
    converter.register(Decimal, ColumnType.TEXT, str, lambda v, t: t(v))
    converter.register(datetime, ColumnType.TEXT, lambda v: v.isoformat(), _decode_datetime)
    converter.register(date, ColumnType.TEXT, lambda v: v.isoformat(), _decode_datetime)
    return converter


def create_converter():
    return _install_defaults(TypeConverter())


default_converter = create_converter()
