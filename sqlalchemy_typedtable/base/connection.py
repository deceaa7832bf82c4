from contextlib import contextmanager
from threading import Lock

from sqlalchemy import inspect
from sqlalchemy.engine import IteratorResult
from sqlalchemy.engine.cursor import SimpleResultMetaData
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.schema import CreateTable

from ..errors import QueryExecutionError, SchemaError, TypedTableError
from ..logger import logger
from .bundled import StatementLoader
from .guard import RollbackGuard
from .schema import default_registry
from .table import TypedTable

_engines = {}
_engines_lock = Lock()


def _engine_for(config):
    key = config.url.render_as_string(hide_password=False)
    with _engines_lock:
        engine = _engines.get(key)
        if engine is None:
            engine = _engines[key] = config.create_engine()
    return engine


def dispose_engines():
    with _engines_lock:
        for engine in _engines.values():
            engine.dispose()
        _engines.clear()


def connect(config, registry=None):
    return ConnectedDatabase(config, registry=registry)


class ConnectedDatabase:
    """
    One live connection to the backend.

    Outside of a transaction every statement is committed as soon as it ran.
    ``begin_transaction()`` (normally through a RollbackGuard) makes the
    following statements share one transaction until ``commit()`` or
    ``rollback()``.

    Not thread safe: concurrent callers each open their own ConnectedDatabase.
    """

    def __init__(self, config, registry=None, engine=None):
        self.config = config
        self.registry = registry or default_registry
        self.engine = engine or _engine_for(config)
        self._connection = self.engine.connect()
        self._transaction = None
        self._tables = {}
        # Tables first created inside the current transaction
        self._uncommitted_tables = []
        self._statements = StatementLoader(config.statements) if config.statements is not None else None
        self._closed = False

    @property
    def closed(self):
        return self._closed

    @property
    def in_transaction(self):
        return self._transaction is not None

    def _check_open(self):
        if self._closed:
            raise TypedTableError("Database connection is closed")

    @contextmanager
    def _scope(self):
        """
        Run in the current transaction, or in a fresh one that commits on
        success and rolls back on error.
        """
        if self._transaction is not None:
            yield self._connection
            return

        transaction = self._connection.begin()
        try:
            yield self._connection
        except BaseException:
            if transaction.is_active:
                transaction.rollback()
            raise

        try:
            transaction.commit()
        except SQLAlchemyError:
            self._abandon(transaction)
            raise

    def _run(self, conn, statement, params):
        if isinstance(statement, str):
            result = conn.exec_driver_sql(statement, tuple(params) if params else None)
        else:
            result = conn.execute(statement, params)

        # Rows are fetched before an implicit transaction gets committed
        if result.returns_rows:
            buffered = result.freeze()()
        else:
            buffered = IteratorResult(SimpleResultMetaData([]), iter([]))
        buffered.rowcount = result.rowcount
        result.close()
        return buffered

    def execute(self, statement, params=None):
        self._check_open()
        logger.debug(f"Executing: {statement} {params if params else ''}")

        try:
            with self._scope() as conn:
                return self._run(conn, statement, params)
        except SQLAlchemyError as exc:
            raise QueryExecutionError.wrap(exc, statement=str(statement), params=params) from exc

    def get_table(self, record_type) -> TypedTable:
        table = self._tables.get(record_type)
        if table is None:
            spec = self.registry.get_or_derive_table(record_type)
            self._create_table(spec)
            table = self._tables[record_type] = TypedTable(self, spec)
            if self._transaction is not None:
                self._uncommitted_tables.append(record_type)
        return table

    def _create_table(self, spec):
        self._check_open()
        logger.debug(f"Creating table '{spec.table_name}' if missing")

        try:
            with self._scope() as conn:
                conn.execute(CreateTable(spec.sa_table, if_not_exists=True))
                existing = {col["name"] for col in inspect(conn).get_columns(spec.table_name)}
        except SQLAlchemyError as exc:
            raise QueryExecutionError.wrap(exc, statement=f"CREATE TABLE {spec.table_name}") from exc

        missing = [name for name in spec.column_names if name not in existing]
        if missing:
            raise SchemaError(
                f"Table '{spec.table_name}' exists without column(s) {', '.join(missing)} "
                f"mapped by {spec.record_type.__qualname__}"
            )

    def query_bundled(self, name, substitutions, *params) -> int:
        """
        Run a bundled statement, return the number of affected rows.
        """
        sql = self._statement_loader().render(name, substitutions)
        return self.execute(sql, params).rowcount

    def query_bundled_as(self, result_type, name, substitutions, *params):
        """
        Run a bundled query and build one ``result_type`` instance per row,
        matching result columns to the type's columns by name.
        """
        spec = self.registry.get_or_derive_table(result_type)
        sql = self._statement_loader().render(name, substitutions)
        return [spec.to_record(row) for row in self.execute(sql, params).mappings()]

    def _statement_loader(self):
        if self._statements is None:
            raise TypedTableError("No bundled statements directory configured")
        return self._statements

    def begin_transaction(self):
        self._check_open()
        if self._transaction is not None:
            raise TypedTableError("A transaction is already active on this connection")

        logger.debug("Beginning transaction ...")
        try:
            self._transaction = self._connection.begin()
        except SQLAlchemyError as exc:
            raise QueryExecutionError.wrap(exc, statement="BEGIN") from exc

    def commit(self):
        transaction = self._require_transaction()
        self._transaction = None

        logger.debug("Committing ...")
        try:
            transaction.commit()
        except SQLAlchemyError as exc:
            self._abandon(transaction)
            raise QueryExecutionError.wrap(exc, statement="COMMIT") from exc
        self._uncommitted_tables.clear()

    def rollback(self):
        transaction = self._require_transaction()
        self._transaction = None

        logger.debug("Rolling back ...")
        try:
            transaction.rollback()
        except SQLAlchemyError as exc:
            raise QueryExecutionError.wrap(exc, statement="ROLLBACK") from exc
        finally:
            self._forget_uncommitted_tables()

    def _require_transaction(self):
        self._check_open()
        if self._transaction is None:
            raise TypedTableError("No active transaction on this connection")
        return self._transaction

    def _abandon(self, transaction):
        # A failed COMMIT can leave the backend transaction open while
        # SQLAlchemy already considers it finished.
        transaction.rollback()
        self._connection.connection.dbapi_connection.rollback()
        self._forget_uncommitted_tables()

    def _forget_uncommitted_tables(self):
        # Their CREATE TABLE was rolled back with the transaction
        for record_type in self._uncommitted_tables:
            self._tables.pop(record_type, None)
        self._uncommitted_tables.clear()

    def transaction(self):
        return RollbackGuard(self)

    def close(self):
        if self._closed:
            return

        try:
            if self._transaction is not None:
                self.rollback()
        finally:
            self._closed = True
            self._tables.clear()
            self._connection.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()
        return False

    def __repr__(self):
        return f"ConnectedDatabase({self.config.url.render_as_string(hide_password=True)})"
