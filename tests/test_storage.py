"""
Tests for storage backends and versioned writes
"""

import pytest
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from debt_collections.storage import InMemoryStorage, SQLiteStorage, StorageInterface


# Test data
test_data = {
    "id": "test_001",
    "name": "Test Record",
    "amount": "100.50",
    "version": 1,
    "created_at": datetime.now(timezone.utc).isoformat(),
    "updated_at": datetime.now(timezone.utc).isoformat()
}


@pytest.fixture(params=["memory", "sqlite"])
def storage(request):
    if request.param == "memory":
        backend = InMemoryStorage()
        yield backend
        backend.close()
    else:
        with tempfile.TemporaryDirectory() as temp_dir:
            backend = SQLiteStorage(Path(temp_dir) / "test.db")
            yield backend
            backend.close()


def test_interface_is_versioned_writes_only():
    assert StorageInterface.__abstractmethods__ == {
        "save_if_version", "load", "load_all", "find", "close"
    }


class TestStorageBackends:
    """Basic read behaviour shared by every backend"""

    def test_basic_operations(self, storage):
        assert storage.save_if_version("test_table", "record_1", test_data, None)
        assert storage.load("test_table", "record_1") == test_data

        assert storage.load("test_table", "non_existent") is None

        storage.save_if_version("test_table", "record_2", {"id": "record_2", "data": "test", "version": 1}, None)
        assert [r["id"] for r in storage.load_all("test_table")] == ["test_001", "record_2"]

        results = storage.find("test_table", {"id": "test_001"})
        assert len(results) == 1
        assert results[0]["name"] == "Test Record"

    def test_empty_table(self, storage):
        assert storage.load_all("never_written") == []
        assert storage.find("never_written", {"status": "pending"}) == []

    def test_loaded_records_are_copies(self, storage):
        """Mutating a loaded record does not change storage"""
        storage.save_if_version("test_table", "record_1", test_data, None)
        loaded = storage.load("test_table", "record_1")
        loaded["name"] = "changed"

        assert storage.load("test_table", "record_1")["name"] == "Test Record"


class TestVersionedWrites:
    """Compare-and-save used for optimistic concurrency"""

    def test_insert_requires_absent_record(self, storage):
        assert storage.save_if_version("tasks", "t1", {"id": "t1", "version": 1}, None)
        assert not storage.save_if_version("tasks", "t1", {"id": "t1", "version": 1}, None)

    def test_update_requires_matching_version(self, storage):
        storage.save_if_version("tasks", "t1", {"id": "t1", "version": 1}, None)

        assert storage.save_if_version("tasks", "t1", {"id": "t1", "version": 2, "x": "a"}, 1)
        # A second writer that also read version 1 loses
        assert not storage.save_if_version("tasks", "t1", {"id": "t1", "version": 2, "x": "b"}, 1)

        assert storage.load("tasks", "t1") == {"id": "t1", "version": 2, "x": "a"}

    def test_update_of_missing_record_fails(self, storage):
        assert not storage.save_if_version("tasks", "missing", {"id": "missing", "version": 2}, 1)


class TestSQLiteStorage:
    """SQLite specific behaviour"""

    def test_from_url(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = Path(temp_dir) / "collections.db"
            storage = SQLiteStorage.from_url(f"sqlite:///{db_path}")
            storage.save_if_version("test_table", "record_1", test_data, None)
            storage.close()

            reopened = SQLiteStorage(db_path)
            assert reopened.load("test_table", "record_1") == test_data
            reopened.close()

    def test_from_url_rejects_other_schemes(self):
        with pytest.raises(ValueError):
            SQLiteStorage.from_url("postgresql://localhost/collections")

    def test_find_filters_in_sql(self):
        storage = SQLiteStorage()
        storage.save_if_version("tasks", "t1", {"id": "t1", "status": "pending", "auto_escalate": True}, None)
        storage.save_if_version("tasks", "t2", {"id": "t2", "status": "completed", "auto_escalate": False}, None)
        storage.save_if_version("tasks", "t3", {"id": "t3", "status": "pending", "auto_escalate": False}, None)

        assert [r["id"] for r in storage.find("tasks", {"status": "pending"})] == ["t1", "t3"]
        assert [r["id"] for r in storage.find("tasks", {"status": "pending", "auto_escalate": False})] == ["t3"]
        assert storage.find("tasks", {"missing_key": "x"}) == []
        storage.close()
