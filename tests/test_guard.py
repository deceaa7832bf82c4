import uuid

import pytest

from sqlalchemy_typedtable import (
    EMPTY,
    EQ,
    BackendConfig,
    QueryExecutionError,
    RollbackGuard,
    TypedTableError,
    UnknownColumnError,
    connect,
)

from models import Item, Note


def insert_item(db, string="test"):
    items = db.get_table(Item)
    items.insert(Item(id=1, string=string, uuid=uuid.uuid4(), owner_uuid=uuid.uuid4()))
    return items


class TestRollbackGuard:
    def test_commit(self, db):
        items = insert_item(db)

        with RollbackGuard(db) as guard:
            record = items.select_unique(EMPTY)
            record.string += "_suffix_transaction"
            items.update(record, EMPTY, "string")
            guard.commit()
            assert guard.committed

        assert not db.in_transaction
        assert items.select_unique(EMPTY).string == "test_suffix_transaction"

    def test_rollback_without_commit(self, db):
        items = insert_item(db)

        with RollbackGuard(db):
            record = items.select_unique(EMPTY)
            record.string += "_suffix_transaction"
            items.update(record, EMPTY, "string")
            assert items.select_unique(EMPTY).string == "test_suffix_transaction"

        assert not db.in_transaction
        assert items.select_unique(EMPTY).string == "test"

    def test_rollback_on_error(self, db):
        items = insert_item(db)

        with pytest.raises(RuntimeError, match="boom"):
            with RollbackGuard(db):
                items.delete(EMPTY)
                raise RuntimeError("boom")

        assert not db.in_transaction
        assert items.count(EMPTY) == 1

    def test_rollback_after_failed_statement(self, db):
        items = insert_item(db)

        with pytest.raises(UnknownColumnError):
            with RollbackGuard(db) as guard:
                items.insert(Item(id=2, string="second"))
                items.update(Item(id=2), EMPTY, "nope")
                guard.commit()

        assert items.count(EMPTY) == 1

    def test_several_tables(self, db):
        items = insert_item(db)
        notes = db.get_table(Note)

        with db.transaction() as guard:
            items.delete(EMPTY)
            notes.insert(Note(text="moved"))
            guard.commit()

        assert items.count(EMPTY) == 0
        assert notes.select_unique(EMPTY).text == "moved"

    def test_uncommitted_changes_hidden_from_other_connections(self, db, other_db):
        items = insert_item(db)
        other_items = other_db.get_table(Item)

        with RollbackGuard(db):
            items.update(Item(id=1, string="changed"), EQ("id", 1), "string")

            assert items.select_unique(EMPTY).string == "changed"
            assert other_items.select_unique(EMPTY).string == "test"

        assert other_items.select_unique(EMPTY).string == "test"

    def test_close_is_idempotent(self, db):
        items = insert_item(db)

        guard = RollbackGuard(db)
        items.delete(EMPTY)
        guard.close()
        guard.close()

        assert guard.released
        assert not db.in_transaction
        assert items.count(EMPTY) == 1

    def test_commit_twice(self, db):
        insert_item(db)

        with RollbackGuard(db) as guard:
            guard.commit()
            with pytest.raises(TypedTableError):
                guard.commit()

        assert not db.in_transaction

    def test_commit_after_release(self, db):
        guard = RollbackGuard(db)
        guard.close()

        with pytest.raises(TypedTableError):
            guard.commit()

    def test_no_nesting(self, db):
        with RollbackGuard(db):
            with pytest.raises(TypedTableError):
                RollbackGuard(db)

        assert not db.in_transaction

    def test_guard_reusable_connection(self, db):
        items = insert_item(db)

        for suffix in ("a", "b"):
            with RollbackGuard(db) as guard:
                record = items.select_unique(EMPTY)
                record.string += suffix
                items.update(record, EMPTY, "string")
                guard.commit()

        assert items.select_unique(EMPTY).string == "testab"

    def test_close_database_rolls_back(self, db_config, other_db):
        db = connect(db_config)
        items = insert_item(db)

        RollbackGuard(db)
        items.delete(EMPTY)
        db.close()

        assert other_db.get_table(Item).count(EMPTY) == 1

    def test_table_created_in_rolled_back_guard(self, db):
        with RollbackGuard(db):
            notes = db.get_table(Note)
            notes.insert(Note(text="gone"))

        # The CREATE TABLE was rolled back too
        notes = db.get_table(Note)
        assert notes.count(EMPTY) == 0

        notes.insert(Note(text="kept"))
        assert notes.select_unique(EMPTY).text == "kept"

    def test_table_created_in_committed_guard(self, db, other_db):
        with RollbackGuard(db) as guard:
            notes = db.get_table(Note)
            notes.insert(Note(text="kept"))
            guard.commit()

        assert db.get_table(Note) is notes
        assert other_db.get_table(Note).select_unique(EMPTY).text == "kept"

    def test_failed_commit(self, tmp_path):
        config = BackendConfig.sqlite(tmp_path / "busy.db", timeout=0.2)

        with connect(config) as reader, connect(config) as writer:
            reader_notes = reader.get_table(Note)
            writer_notes = writer.get_table(Note)

            with RollbackGuard(reader):
                # Shared lock held until the guard is released
                reader_notes.count(EMPTY)

                with RollbackGuard(writer) as guard:
                    writer_notes.insert(Note(text="blocked"))

                    with pytest.raises(QueryExecutionError) as excinfo:
                        guard.commit()

                assert excinfo.value.is_conflict
                assert not writer.in_transaction

            writer_notes.insert(Note(text="after"))
            assert [n.text for n in reader_notes.select(EMPTY)] == ["after"]
