import operator
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import and_, column as sa_column
from sqlalchemy.dialects import sqlite

from ..errors import TypeMappingError
from ..helpers.utils import normalize_comparator

COMPARATORS = {
    "=": operator.eq,
    "==": operator.eq,
    "<>": operator.ne,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "IS": lambda col, value: col.is_(value),
    "IS NOT": lambda col, value: col.is_not(value),
    "LIKE": lambda col, value: col.like(value),
    "NOT LIKE": lambda col, value: col.not_like(value),
}

# Comparators a NULL value is rewritten into, rendered as a literal NULL
NULL_COMPARATORS = {
    "=": "IS",
    "==": "IS",
    "IS": "IS",
    "<>": "IS NOT",
    "!=": "IS NOT",
    "IS NOT": "IS NOT",
}

_render_dialect = sqlite.dialect(paramstyle="qmark")


@dataclass(frozen=True)
class WhereClause:
    """
    ``column COMPARATOR value`` predicate.

    The column is only resolved when the clause is applied to a table. A NULL
    value is never bound: ``=``/``IS`` become ``IS NULL`` and ``<>``/``IS NOT``
    become ``IS NOT NULL``.
    """

    column: Optional[str]
    comparator: str = "="
    value: Any = None

    def __post_init__(self):
        comparator = normalize_comparator(self.comparator)
        if comparator not in COMPARATORS:
            raise ValueError(f"Unsupported comparator: {self.comparator!r}")
        object.__setattr__(self, "comparator", comparator)

    @property
    def is_empty(self):
        return self.column is None

    def _build(self, table_spec, target):
        spec = table_spec.column(self.column)
        col = target(spec)

        if self.value is None:
            comparator = NULL_COMPARATORS.get(self.comparator)
            if comparator is None:
                raise TypeMappingError(f"Cannot compare '{self.column}' with NULL using '{self.comparator}'")
            return COMPARATORS[comparator](col, None)

        return COMPARATORS[self.comparator](col, self._database_value(table_spec, spec))

    def _database_value(self, table_spec, spec):
        converter = table_spec.converter
        native_type = converter.converter_for(spec.native_type).native_type
        if isinstance(self.value, native_type):
            return converter.to_database(self.value, spec.native_type)

        # e.g. an int compared against a REAL column, or a LIKE pattern
        return converter.to_database(self.value)

    def criterion(self, table_spec):
        """
        SQLAlchemy expression for this clause against ``table_spec``'s table,
        None for EMPTY. Raises UnknownColumnError for a column absent from
        the table.
        """
        if self.is_empty:
            return None
        return self._build(table_spec, lambda spec: table_spec.sa_table.c[spec.name])

    def render(self, table_spec):
        """
        ``("column COMPARATOR ?", [param])``, ``("", [])`` for EMPTY.

        The fragment is compiled by SQLAlchemy, so ``<>`` comes out as ``!=``.
        """
        if self.is_empty:
            return "", []

        expr = self._build(table_spec, lambda spec: sa_column(spec.name, spec.column_type.sa_type()))
        compiled = expr.compile(dialect=_render_dialect)
        params = [compiled.params[name] for name in (compiled.positiontup or [])]
        return str(compiled), params

    def __repr__(self):
        if self.is_empty:
            return "WhereClause.EMPTY"
        return f"WhereClause({self.column!r} {self.comparator} {self.value!r})"


WhereClause.EMPTY = EMPTY = WhereClause(None)


def EQ(column, value):
    return WhereClause(column, "=", value)


def NE(column, value):
    return WhereClause(column, "<>", value)


def LT(column, value):
    return WhereClause(column, "<", value)


def LE(column, value):
    return WhereClause(column, "<=", value)


def GT(column, value):
    return WhereClause(column, ">", value)


def GE(column, value):
    return WhereClause(column, ">=", value)


def IS_NULL(column):
    return WhereClause(column, "IS", None)


def IS_NOT_NULL(column):
    return WhereClause(column, "IS NOT", None)


WhereClause.EQ = staticmethod(EQ)


def conjunction(table_spec, clauses):
    """
    AND of the clauses in the given order, None when they're all EMPTY.
    """
    criteria = [
        crit
        for crit in (clause.criterion(table_spec) for clause in clauses)
        if crit is not None
    ]
    if not criteria:
        return None
    if len(criteria) == 1:
        return criteria[0]
    return and_(*criteria)


def render_where(table_spec, *clauses):
    fragments = []
    params = []
    for clause in clauses:
        fragment, clause_params = clause.render(table_spec)
        if not fragment:
            continue
        fragments.append(fragment)
        params.extend(clause_params)
    return " AND ".join(fragments), params
