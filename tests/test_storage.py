"""
Tests for storage backends and transaction support
"""

import pytest
from decimal import Decimal
from datetime import datetime, timezone

from ledgerbook.storage import (
    InMemoryStorage, SQLiteStorage, DuplicateRecordError, RecordNotFoundError,
    create_storage
)


# Test data
test_data = {
    "id": "test_001",
    "name": "Test Record",
    "amount": "100.50",
    "created_at": datetime.now(timezone.utc).isoformat(),
    "updated_at": datetime.now(timezone.utc).isoformat()
}


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    if request.param == "memory":
        backend = InMemoryStorage()
    else:
        backend = SQLiteStorage(tmp_path / "test.db")
    yield backend
    backend.close()


class TestStorageBackends:
    """Behaviour shared by every backend"""

    def test_basic_operations(self, storage):
        storage.save("test_table", "record_1", test_data)
        assert storage.load("test_table", "record_1") == test_data
        assert storage.exists("test_table", "record_1")
        assert not storage.exists("test_table", "non_existent")

        storage.save("test_table", "record_2", {"id": "record_2", "data": "test"})
        assert len(storage.load_all("test_table")) == 2
        assert storage.count("test_table") == 2

        results = storage.find("test_table", {"id": "test_001"})
        assert len(results) == 1
        assert results[0]["name"] == "Test Record"

        assert storage.delete("test_table", "record_1")
        assert not storage.delete("test_table", "record_1")
        assert storage.load("test_table", "record_1") is None

    def test_loaded_records_are_copies(self, storage):
        storage.save("test_table", "record_1", {"id": "record_1", "tags": ["a"]})
        loaded = storage.load("test_table", "record_1")
        loaded["tags"].append("b")
        assert storage.load("test_table", "record_1")["tags"] == ["a"]

    def test_insert_refuses_duplicates(self, storage):
        storage.insert("keys", "k1", {"owner": "first"})
        with pytest.raises(DuplicateRecordError):
            storage.insert("keys", "k1", {"owner": "second"})
        assert storage.load("keys", "k1")["owner"] == "first"

    def test_increment_is_relative(self, storage):
        storage.save("balances", "acc", {"id": "acc", "balance": "1000.00"})
        assert storage.increment("balances", "acc", "balance", Decimal("250.50")) == Decimal("1250.50")
        assert storage.increment("balances", "acc", "balance", Decimal("-50.50")) == Decimal("1200.00")
        assert Decimal(storage.load("balances", "acc")["balance"]) == Decimal("1200.00")

    def test_increment_missing_record(self, storage):
        with pytest.raises(RecordNotFoundError):
            storage.increment("balances", "missing", "balance", Decimal("1"))

    def test_atomic_commit(self, storage):
        with storage.atomic():
            storage.save("t", "a", {"id": "a"})
            storage.save("t", "b", {"id": "b"})
        assert storage.count("t") == 2
        assert not storage.in_transaction

    def test_atomic_rollback_restores_everything(self, storage):
        storage.save("balances", "acc", {"id": "acc", "balance": "100.00"})

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("t", "a", {"id": "a"})
                storage.increment("balances", "acc", "balance", Decimal("50"))
                storage.delete("balances", "missing")
                raise RuntimeError("boom")

        assert storage.load("t", "a") is None
        assert storage.load("balances", "acc")["balance"] == "100.00"
        assert not storage.in_transaction

    def test_nested_atomic_inner_rollback(self, storage):
        with storage.atomic():
            storage.save("t", "outer", {"id": "outer"})
            with pytest.raises(ValueError):
                with storage.atomic():
                    storage.save("t", "inner", {"id": "inner"})
                    raise ValueError("inner failure")
            assert storage.exists("t", "outer")
            assert not storage.exists("t", "inner")

        assert storage.exists("t", "outer")
        assert not storage.exists("t", "inner")

    def test_clear_table(self, storage):
        storage.save("t", "a", {"id": "a"})
        storage.clear_table("t")
        assert storage.count("t") == 0


class TestSQLitePersistence:
    """SQLite specific behaviour"""

    def test_data_survives_reopen(self, tmp_path):
        path = tmp_path / "persist.db"
        first = SQLiteStorage(path)
        first.save("t", "a", {"id": "a", "amount": "10.00"})
        first.close()

        second = SQLiteStorage(path)
        assert second.load("t", "a") == {"id": "a", "amount": "10.00"}
        second.close()

    def test_rollback_of_table_created_in_transaction(self, tmp_path):
        storage = SQLiteStorage(tmp_path / "tx.db")
        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("fresh_table", "a", {"id": "a"})
                raise RuntimeError("boom")
        # Table is recreated on demand after the rollback dropped it
        assert storage.load("fresh_table", "a") is None
        storage.save("fresh_table", "b", {"id": "b"})
        assert storage.exists("fresh_table", "b")
        storage.close()


class TestCreateStorage:

    def test_memory_backend(self):
        assert isinstance(create_storage("memory"), InMemoryStorage)

    def test_sqlite_backend(self, tmp_path):
        storage = create_storage("sqlite", str(tmp_path / "cfg.db"))
        assert isinstance(storage, SQLiteStorage)
        storage.close()

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_storage("postgres")
