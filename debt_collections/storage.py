"""
Storage Backend Module

Record stores for collections tasks: an in-memory store for tests and a SQLite
store for persistence. Each task is kept as one JSON document keyed by id.

Writes made through ``save_if_version`` are compare-and-save on the record's
integer ``version``. A write only lands when the stored version still equals
the version the writer read, so two writers that started from the same
snapshot cannot both succeed.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Set, Union
from datetime import datetime, timezone
import sqlite3
import json
import threading
from dataclasses import dataclass
from pathlib import Path


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime


def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    return all(key in record and record[key] == value for key, value in filters.items())


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save_if_version(
        self,
        table: str,
        record_id: str,
        data: Dict[str, Any],
        expected_version: Optional[int]
    ) -> bool:
        """
        Save a record only if the stored version matches.

        ``expected_version=None`` means the record must not exist yet.

        Returns:
            True if the write landed, False on a version conflict
        """
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load one record, or None"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load every record in insertion order"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Records whose top-level keys equal every filter value"""
        pass

    @abstractmethod
    def close(self) -> None:
        pass


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        self._tables: Dict[str, Dict[str, str]] = {}
        self._lock = threading.RLock()

    # Records are held as JSON text so callers never share state with the store
    def _table(self, table: str) -> Dict[str, str]:
        return self._tables.setdefault(table, {})

    def save_if_version(
        self,
        table: str,
        record_id: str,
        data: Dict[str, Any],
        expected_version: Optional[int]
    ) -> bool:
        """Compare-and-save under the storage lock"""
        with self._lock:
            stored = self._table(table).get(record_id)
            if expected_version is None:
                if stored is not None:
                    return False
            elif stored is None or json.loads(stored).get('version') != expected_version:
                return False
            self._table(table)[record_id] = json.dumps(data, default=str)
            return True

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            stored = self._table(table).get(record_id)
            return json.loads(stored) if stored is not None else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [json.loads(stored) for stored in self._table(table).values()]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        return [record for record in self.load_all(table) if _matches(record, filters)]

    def close(self) -> None:
        with self._lock:
            self._tables.clear()


class SQLiteStorage(StorageInterface):
    """
    SQLite storage implementation for persistence

    Each table has the JSON document plus a ``version`` column mirrored from
    the document, so the compare-and-save is a single conditional UPDATE.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level='DEFERRED')
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._known_tables: Set[str] = set()

        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()

    @classmethod
    def from_url(cls, database_url: str) -> 'SQLiteStorage':
        """Create storage from a ``sqlite:///path`` URL"""
        prefix = "sqlite:///"
        if not database_url.startswith(prefix):
            raise ValueError(f"Unsupported database URL: {database_url}")
        return cls(database_url[len(prefix):] or ":memory:")

    def _ensure_table(self, table: str) -> None:
        if table in self._known_tables:
            return
        self._connection.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                version INTEGER,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._connection.commit()
        self._known_tables.add(table)

    def save_if_version(
        self,
        table: str,
        record_id: str,
        data: Dict[str, Any],
        expected_version: Optional[int]
    ) -> bool:
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            data_json = json.dumps(data, default=str)

            if expected_version is None:
                cursor = self._connection.execute(f"""
                    INSERT OR IGNORE INTO {table} (id, data, version, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                """, (record_id, data_json, data.get('version'), now, now))
            else:
                cursor = self._connection.execute(f"""
                    UPDATE {table} SET data = ?, version = ?, updated_at = ?
                    WHERE id = ? AND version = ?
                """, (data_json, data.get('version'), now, record_id, expected_version))

            self._connection.commit()
            return cursor.rowcount == 1

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            row = self._connection.execute(
                f"SELECT data FROM {table} WHERE id = ?", (record_id,)
            ).fetchone()
            return json.loads(row['data']) if row else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        return self.find(table, {})

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Filters run in SQL against the JSON document's top-level keys"""
        clauses = []
        params: List[Any] = []
        for key, value in filters.items():
            clauses.append("json_extract(data, ?) = ?")
            params.extend([f'$."{key}"', value])
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with self._lock:
            self._ensure_table(table)
            rows = self._connection.execute(
                f"SELECT data FROM {table} {where} ORDER BY created_at, rowid", params
            ).fetchall()
            return [json.loads(row['data']) for row in rows]

    def close(self) -> None:
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None
