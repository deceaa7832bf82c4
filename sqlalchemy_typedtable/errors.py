import re

_SQLITE_UNIQUE = re.compile(r"UNIQUE constraint failed: (.+)$")
_MYSQL_UNIQUE = re.compile(r"Duplicate entry .* for key '([^']+)'")

# SQLITE_BUSY, SQLITE_LOCKED
_SQLITE_CONFLICT_CODES = {5, 6}
# ER_LOCK_WAIT_TIMEOUT, ER_LOCK_DEADLOCK
_MYSQL_CONFLICT_CODES = {1205, 1213}


class TypedTableError(Exception):
    pass


class SchemaError(TypedTableError):
    """
    A record type cannot be mapped to a table: duplicated column names,
    several primary keys, a broken accessor pair...
    """


class TypeMappingError(TypedTableError):
    pass


class UnknownColumnError(TypedTableError, KeyError):
    def __init__(self, column, table=None):
        self.column = column
        self.table = table
        super().__init__(f"Unknown column '{column}'" + (f" in table '{table}'" if table else ""))

    def __str__(self):
        return self.args[0]


class NoResultError(TypedTableError):
    pass


class NonUniqueResultError(TypedTableError):
    pass


class QueryExecutionError(TypedTableError):
    """
    The backend rejected a statement.

    ``orig`` is the DBAPI exception when the driver raised one, so callers can
    look at driver specific details. ``is_conflict`` and ``is_unique_violation``
    cover the cases callers usually want to branch on.
    """

    def __init__(self, message, statement=None, params=None, orig=None):
        super().__init__(message)
        self.statement = statement
        self.params = params
        self.orig = orig

    @classmethod
    def wrap(cls, exc, statement=None, params=None):
        orig = getattr(exc, "orig", None)
        message = str(orig) if orig is not None else str(exc)
        return cls(message, statement=statement, params=params, orig=orig)

    @property
    def _error_code(self):
        orig = self.orig
        if orig is None:
            return None

        code = getattr(orig, "sqlite_errorcode", None)
        if code is not None:
            # Extended result codes keep the primary code in the low byte
            return code & 0xFF

        args = getattr(orig, "args", ())
        if args and isinstance(args[0], int):
            return args[0]

        return None

    @property
    def is_conflict(self):
        """
        True when the statement failed because another connection holds a
        conflicting lock. Retrying the whole transaction may succeed.
        """
        code = self._error_code
        if code in _SQLITE_CONFLICT_CODES and self._is_sqlite:
            return True
        if code in _MYSQL_CONFLICT_CODES and not self._is_sqlite:
            return True

        message = str(self).lower()
        return "database is locked" in message or "database table is locked" in message or "deadlock" in message

    @property
    def _is_sqlite(self):
        return type(self.orig).__module__.startswith("sqlite3")

    @property
    def unique_violation_columns(self):
        message = str(self)

        match = _SQLITE_UNIQUE.search(message)
        if match:
            return [col.strip() for col in match.group(1).split(",")]

        match = _MYSQL_UNIQUE.search(message)
        if match:
            return [match.group(1)]

        return []

    @property
    def is_unique_violation(self):
        return bool(self.unique_violation_columns)
