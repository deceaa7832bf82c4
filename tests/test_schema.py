import threading
import uuid

import pytest

from sqlalchemy_typedtable import (
    Column,
    ColumnType,
    Record,
    SchemaError,
    SchemaRegistry,
    TypeMappingError,
    UnknownColumnError,
    accessor,
)

from models import Item, PairA, PairB, UniqueValue


class Unmappable:
    pass


class TestSchemaRegistry:
    def test_columns_sorted_by_name(self):
        spec = SchemaRegistry().get_or_derive_table(Item)

        assert spec.table_name == "items"
        assert spec.column_names == ["id", "string", "uuid", "uuid_indirect"]
        assert spec.primary_key.name == "id"
        assert spec.column("uuid_indirect").attr_name == "owner_uuid"
        assert spec.column("uuid").column_type is ColumnType.TEXT
        assert [c.name for c in spec.sa_table.columns] == spec.column_names

    def test_flags(self):
        spec = SchemaRegistry().get_or_derive_table(UniqueValue)

        assert spec.column("val_uniq").is_unique
        assert not spec.column("val").is_unique
        assert spec.column("id").is_primary_key
        assert not spec.column("id").nullable
        assert spec.column("val").nullable

    def test_cached(self):
        registry = SchemaRegistry()
        spec = registry.get_or_derive_table(Item)

        assert registry.get_or_derive_table(Item) is spec
        assert registry.register(Item) is spec
        assert Item in registry
        assert len(registry) == 1

    def test_deterministic_across_registries(self):
        first = SchemaRegistry().get_or_derive_table(Item)
        second = SchemaRegistry().get_or_derive_table(Item)

        assert first.columns == second.columns

    def test_concurrent_first_access(self, monkeypatch):
        registry = SchemaRegistry()
        derive = registry._derive
        calls = []

        def counting_derive(record_type):
            calls.append(record_type)
            return derive(record_type)

        monkeypatch.setattr(registry, "_derive", counting_derive)

        barrier = threading.Barrier(16)
        results = []

        def worker():
            barrier.wait()
            results.append(registry.get_or_derive_table(Item))

        threads = [threading.Thread(target=worker) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 16
        assert all(spec is results[0] for spec in results)
        assert calls == [Item]

    def test_inherited_columns(self):
        registry = SchemaRegistry()
        a = registry.get_or_derive_table(PairA)
        b = registry.get_or_derive_table(PairB)

        assert a.table_name == "pairs_a"
        assert b.table_name == "pairs_b"
        assert a.column_names == b.column_names == ["data1", "data2", "id"]

    def test_default_table_name(self):
        class Plain(Record):
            id = Column(int, primary_key=True)

        assert SchemaRegistry().get_or_derive_table(Plain).table_name == "Plain"

    def test_no_primary_key(self):
        class Loose(Record):
            a = Column(int)

        spec = SchemaRegistry().get_or_derive_table(Loose)
        assert spec.primary_key is None

    def test_duplicated_column_name(self):
        class Twice(Record):
            a = Column(int)
            b = Column(int, name="a")

        with pytest.raises(SchemaError) as excinfo:
            SchemaRegistry().get_or_derive_table(Twice)

        assert "Duplicated column 'a'" in str(excinfo.value)

    def test_duplicated_primary_key(self):
        class TwoKeys(Record):
            a = Column(int, primary_key=True)
            b = Column(int, primary_key=True)

        with pytest.raises(SchemaError):
            SchemaRegistry().get_or_derive_table(TwoKeys)

    def test_accessor_type_mismatch(self):
        class Mismatch(Record):
            id = Column(int, primary_key=True)

            @accessor(str)
            def value(self):
                return ""

            @value.setter(bytes)
            def value(self, data):
                pass

        with pytest.raises(SchemaError) as excinfo:
            SchemaRegistry().get_or_derive_table(Mismatch)

        assert "mismatch" in str(excinfo.value)

    def test_accessor_without_setter(self):
        class ReadOnly(Record):
            id = Column(int, primary_key=True)

            @accessor(str)
            def value(self):
                return ""

        with pytest.raises(SchemaError) as excinfo:
            SchemaRegistry().get_or_derive_table(ReadOnly)

        assert "Setter not found" in str(excinfo.value)

    def test_accessor_with_declared_setter_type(self):
        class Matching(Record):
            id = Column(int, primary_key=True)

            def __init__(self, **kwargs):
                self.parts = []
                super().__init__(**kwargs)

            @accessor(str, name="parts_text")
            def parts_text(self):
                return ",".join(self.parts)

            @parts_text.setter(str)
            def parts_text(self, value):
                self.parts = value.split(",") if value else []

        spec = SchemaRegistry().get_or_derive_table(Matching)
        record = spec.to_record({"id": 1, "parts_text": "a,b"})

        assert record.parts == ["a", "b"]
        assert spec.to_database_values(record) == {"id": 1, "parts_text": "a,b"}

    def test_unsupported_type_fails_at_derivation(self):
        class Bad(Record):
            id = Column(int, primary_key=True)
            thing = Column(Unmappable)

        with pytest.raises(TypeMappingError) as excinfo:
            SchemaRegistry().get_or_derive_table(Bad)

        assert "Bad.thing" in str(excinfo.value)

    def test_failure_does_not_corrupt_cache(self):
        class Bad(Record):
            __tablename__ = "bad"
            a = Column(int, primary_key=True)
            b = Column(int, primary_key=True)

        registry = SchemaRegistry()
        good = registry.get_or_derive_table(Item)

        with pytest.raises(SchemaError):
            registry.get_or_derive_table(Bad)
        with pytest.raises(SchemaError):
            registry.get_or_derive_table(Bad)

        assert Bad not in registry
        assert "bad" not in registry.metadata.tables
        assert registry.get_or_derive_table(Item) is good

    def test_invalid_names(self):
        class BadTable(Record):
            __tablename__ = "drop table;"
            id = Column(int)

        class BadColumn(Record):
            id = Column(int, name="id; --")

        with pytest.raises(SchemaError):
            SchemaRegistry().get_or_derive_table(BadTable)
        with pytest.raises(SchemaError):
            SchemaRegistry().get_or_derive_table(BadColumn)

    def test_no_columns(self):
        class Empty(Record):
            pass

        with pytest.raises(SchemaError):
            SchemaRegistry().get_or_derive_table(Empty)

    def test_table_name_taken(self):
        class Other(Record):
            __tablename__ = "items"
            id = Column(int, primary_key=True)

        registry = SchemaRegistry()
        registry.get_or_derive_table(Item)

        with pytest.raises(SchemaError):
            registry.get_or_derive_table(Other)

    def test_unknown_column(self):
        spec = SchemaRegistry().get_or_derive_table(Item)

        with pytest.raises(UnknownColumnError):
            spec.column("nope")

        # Also a KeyError
        with pytest.raises(KeyError):
            spec.column("nope")

    def test_to_database_values_skips_null(self):
        spec = SchemaRegistry().get_or_derive_table(Item)
        record = Item(id=1, string=None, uuid=uuid.UUID(int=5))

        assert spec.to_database_values(record) == {
            "id": 1,
            "uuid": "00000000-0000-0000-0000-000000000005",
        }
        assert spec.to_database_values(record, ["string"], skip_null=False) == {"string": None}


class TestRecord:
    def test_keyword_constructor(self):
        item = Item(id=1, string="a")

        assert item.id == 1
        assert item.string == "a"
        assert item.uuid is None

        with pytest.raises(TypeError):
            Item(nope=1)

    def test_equality(self):
        owner = uuid.uuid4()

        assert Item(id=1, owner_uuid=owner) == Item(id=1, owner_uuid=owner)
        assert Item(id=1) != Item(id=2)
        assert Item(id=1) != PairA(id=1)

    def test_repr(self):
        assert repr(PairA(id=3)) == "PairA(id=3 data1=None data2=None)"
