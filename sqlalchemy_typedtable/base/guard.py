from ..errors import TypedTableError
from ..logger import logger


class RollbackGuard:
    """
    Transaction scope over one connection: rolled back on release unless
    ``commit()`` was called.

        with RollbackGuard(db) as guard:
            record = table.select_unique(EQ("id", 1))
            record.counter += 1
            table.update(record, EQ("id", 1), "counter")
            guard.commit()

    The transaction begins when the guard is created. Releasing (``close()``
    or leaving the ``with`` block, whichever path) is idempotent and never
    leaves the connection inside a transaction. An exception raised in the
    block propagates once the rollback is done.
    """

    def __init__(self, database):
        self.database = database
        self._committed = False
        self._released = False
        database.begin_transaction()

    @property
    def committed(self):
        return self._committed

    @property
    def released(self):
        return self._released

    def commit(self):
        if self._released:
            raise TypedTableError("RollbackGuard already released")
        if self._committed:
            raise TypedTableError("RollbackGuard already committed")

        self.database.commit()
        self._committed = True

    def close(self):
        if self._released:
            return
        self._released = True

        # A failed commit already discarded the transaction
        if not self._committed and self.database.in_transaction:
            logger.debug("Releasing uncommitted RollbackGuard, rolling back ...")
            self.database.rollback()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
