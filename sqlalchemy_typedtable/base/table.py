from sqlalchemy import delete, func, insert, select, update

from ..errors import NonUniqueResultError, NoResultError
from ..logger import logger
from .where import WhereClause, conjunction


def _clauses(where):
    if where is None:
        return []
    if isinstance(where, WhereClause):
        return [where]

    clauses = []
    for item in where:
        clauses.extend(_clauses(item))
    return clauses


class TypedTable:
    """
    Queries over the table of one record type.

    Every operation goes through the owning ConnectedDatabase, so it runs in
    the connection's current RollbackGuard transaction when there is one and
    commits on its own otherwise. Several where clauses are AND-ed in the
    order given.
    """

    def __init__(self, database, table_spec):
        self.database = database
        self.table_spec = table_spec

    @property
    def record_type(self):
        return self.table_spec.record_type

    @property
    def name(self):
        return self.table_spec.table_name

    @property
    def _sa_table(self):
        return self.table_spec.sa_table

    def _filter(self, statement, where):
        criterion = conjunction(self.table_spec, _clauses(where))
        if criterion is None:
            return statement
        return statement.where(criterion)

    def count(self, *where) -> int:
        stmt = self._filter(select(func.count()).select_from(self._sa_table), where)
        return self.database.execute(stmt).scalar_one()

    def _select_statement(self, where):
        columns = [self._sa_table.c[col.name] for col in self.table_spec.columns]
        return self._filter(select(*columns), where)

    def _rehydrate(self, result):
        return [self.table_spec.to_record(row) for row in result.mappings()]

    def select(self, *where):
        return self._rehydrate(self.database.execute(self._select_statement(where)))

    def select_unique(self, *where):
        # Two rows are enough to tell "unique" from "not unique"
        records = self._rehydrate(self.database.execute(self._select_statement(where).limit(2)))

        if not records:
            raise NoResultError(f"No row of '{self.name}' matches {_clauses(where)}")
        if len(records) > 1:
            raise NonUniqueResultError(f"More than one row of '{self.name}' matches {_clauses(where)}")

        return records[0]

    def select_first(self, *where):
        """
        First matching row in the backend's order, or None.
        """
        records = self._rehydrate(self.database.execute(self._select_statement(where).limit(1)))
        return records[0] if records else None

    def insert(self, record) -> int:
        """
        Insert one row. Columns holding None are left out of the statement,
        so the backend applies its defaults (auto-increment primary keys).
        """
        values = self.table_spec.to_database_values(record)
        logger.debug(f"Inserting into '{self.name}': {values}")

        stmt = insert(self._sa_table)
        if values:
            stmt = stmt.values(values)

        return self.database.execute(stmt).rowcount

    def insert_all(self, records) -> int:
        return sum(self.insert(record) for record in records)

    def update(self, record, where, *columns) -> int:
        """
        Set ``columns`` (all of them when none are named) of the rows matching
        ``where`` to the values held by ``record``. None values become NULL.
        """
        names = list(columns) or None
        if names is not None:
            # Raises UnknownColumnError before anything is sent to the backend
            for name in names:
                self.table_spec.column(name)

        values = self.table_spec.to_database_values(record, names, skip_null=False)
        logger.debug(f"Updating '{self.name}' where {_clauses(where)}: {values}")

        stmt = self._filter(update(self._sa_table).values(values), where)
        return self.database.execute(stmt).rowcount

    def delete(self, *where) -> int:
        logger.debug(f"Deleting from '{self.name}' where {_clauses(where)}")
        stmt = self._filter(delete(self._sa_table), where)
        return self.database.execute(stmt).rowcount

    def __repr__(self):
        return f"TypedTable({self.name} -> {self.record_type.__qualname__})"
