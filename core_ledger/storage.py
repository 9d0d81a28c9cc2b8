"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing)
and SQLite (persistence). All monetary values stored as Decimal strings.

Every backend supports an atomic unit of work through ``atomic()``: writes made
inside the block become visible to other callers only when the block exits
normally, and are discarded if it exits with an exception.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Set, Tuple, Union
from decimal import Decimal
from datetime import datetime, timezone
from enum import Enum
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict, field
from pathlib import Path
from contextlib import contextmanager


class StorageError(Exception):
    """Base class for storage backend failures"""


class DuplicateRecordError(StorageError):
    """Raised when an insert collides with an existing key"""

    def __init__(self, table: str, record_id: str):
        self.table = table
        self.record_id = record_id
        super().__init__(f"Record {record_id!r} already exists in {table}")


class ConcurrentModificationError(StorageError):
    """Raised when a compare-and-save finds an unexpected stored value"""

    def __init__(self, table: str, record_id: str, field_name: str):
        self.table = table
        self.record_id = record_id
        self.field_name = field_name
        super().__init__(f"Record {record_id!r} in {table} was modified concurrently ({field_name})")


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: int

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-safe dictionary for storage"""
        result = asdict(self)
        for key, value in result.items():
            if isinstance(value, datetime):
                result[key] = value.isoformat()
            elif isinstance(value, Decimal):
                result[key] = str(value)
            elif isinstance(value, Enum):
                result[key] = value.value
        return result


def _copy(data: Dict[str, Any]) -> Dict[str, Any]:
    # Deep copy to prevent external mutation
    return json.loads(json.dumps(data, default=str))


def _matches_any(record: Dict[str, Any], alternatives: List[Dict[str, Any]]) -> bool:
    return any(
        all(key in record and record[key] == value for key, value in filters.items())
        for filters in alternatives
    )


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save (insert or replace) a record"""
        pass

    @abstractmethod
    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert a new record, raising DuplicateRecordError if the key exists"""
        pass

    @abstractmethod
    def compare_and_save(self, table: str, record_id: str, data: Dict[str, Any],
                         field_name: str, expected: Any) -> None:
        """
        Replace a record only if its stored ``field_name`` still equals
        ``expected``; raise ConcurrentModificationError otherwise
        """
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        return self.find_any(table, [filters])

    @abstractmethod
    def find_any(self, table: str, alternatives: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Find records matching at least one of several filter sets.

        The table is read in a single scan, so the result never mixes data
        from before and after a concurrently committed unit.
        """
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass

    @abstractmethod
    def next_id(self, table: str) -> int:
        """Allocate the next value of the table's monotonic id sequence"""
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    @abstractmethod
    def in_transaction(self) -> bool:
        """Whether the calling thread is inside an atomic unit"""
        pass

    @abstractmethod
    def begin_transaction(self) -> None:
        """Start a unit of work for the calling thread"""
        pass

    @abstractmethod
    def commit(self) -> None:
        """Commit the calling thread's unit of work"""
        pass

    @abstractmethod
    def rollback(self) -> None:
        """Discard the calling thread's unit of work"""
        pass

    @contextmanager
    def atomic(self):
        """
        Context manager for atomic operations.

        Nested blocks join the outermost unit; only the outermost block
        commits or rolls back.
        """
        if self.in_transaction():
            yield
            return

        self.begin_transaction()
        try:
            yield
            self.commit()
        except BaseException:
            self.rollback()
            raise


@dataclass
class _UnitOfWork:
    """Writes buffered by one thread's atomic unit"""
    writes: Dict[str, Dict[str, Dict[str, Any]]] = field(default_factory=dict)
    inserts: Set[Tuple[str, str]] = field(default_factory=set)
    checks: List[Tuple[str, str, str, Any]] = field(default_factory=list)

    def table(self, table: str) -> Dict[str, Dict[str, Any]]:
        return self.writes.setdefault(table, {})


class InMemoryStorage(StorageInterface):
    """
    In-memory storage implementation.

    Each thread's atomic unit buffers its writes and sees them on read; other
    threads only see committed data. Insert uniqueness and compare-and-save
    expectations are re-validated against committed data at commit time.
    """

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._sequences: Dict[str, int] = {}
        self._lock = threading.RLock()
        self._local = threading.local()

    def _ensure_table(self, table: str) -> Dict[str, Dict[str, Any]]:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}
        return self._data[table]

    def _unit(self) -> Optional[_UnitOfWork]:
        return getattr(self._local, "unit", None)

    def _view(self, table: str) -> Dict[str, Dict[str, Any]]:
        """Committed rows merged with the calling thread's buffered writes"""
        rows = self._ensure_table(table)
        unit = self._unit()
        if unit and unit.writes.get(table):
            rows = dict(rows)
            rows.update(unit.writes[table])
        return rows

    def _get(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        unit = self._unit()
        if unit and record_id in unit.writes.get(table, {}):
            return unit.writes[table][record_id]
        return self._ensure_table(table).get(record_id)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._lock:
            unit = self._unit()
            if unit:
                unit.table(table)[record_id] = _copy(data)
            else:
                self._ensure_table(table)[record_id] = _copy(data)

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert a record, failing on duplicate keys"""
        with self._lock:
            if self._get(table, record_id) is not None:
                raise DuplicateRecordError(table, record_id)
            unit = self._unit()
            if unit:
                unit.inserts.add((table, record_id))
                unit.table(table)[record_id] = _copy(data)
            else:
                self._ensure_table(table)[record_id] = _copy(data)

    def compare_and_save(self, table: str, record_id: str, data: Dict[str, Any],
                         field_name: str, expected: Any) -> None:
        """Conditionally replace a record"""
        with self._lock:
            current = self._get(table, record_id)
            if current is None or current.get(field_name) != expected:
                raise ConcurrentModificationError(table, record_id, field_name)
            unit = self._unit()
            if unit:
                if record_id not in unit.table(table):
                    unit.checks.append((table, record_id, field_name, expected))
                unit.table(table)[record_id] = _copy(data)
            else:
                self._ensure_table(table)[record_id] = _copy(data)

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            record = self._get(table, record_id)
            if record:
                return _copy(record)
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            return [_copy(record) for record in self._view(table).values()]

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            return self._get(table, record_id) is not None

    def find_any(self, table: str, alternatives: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Find records matching any filter set, under one lock acquisition"""
        with self._lock:
            return [
                _copy(record) for record in self._view(table).values()
                if _matches_any(record, alternatives)
            ]

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            return len(self._view(table))

    def next_id(self, table: str) -> int:
        """Allocate next sequence value (never reused, even after rollback)"""
        with self._lock:
            value = self._sequences.get(table, 0) + 1
            self._sequences[table] = value
            return value

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._data[table] = {}

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass

    def in_transaction(self) -> bool:
        return self._unit() is not None

    def begin_transaction(self) -> None:
        if self._unit() is None:
            self._local.unit = _UnitOfWork()

    def commit(self) -> None:
        unit = self._unit()
        if unit is None:
            return
        with self._lock:
            for table, record_id in unit.inserts:
                if record_id in self._ensure_table(table):
                    raise DuplicateRecordError(table, record_id)
            for table, record_id, field_name, expected in unit.checks:
                current = self._ensure_table(table).get(record_id)
                if current is None or current.get(field_name) != expected:
                    raise ConcurrentModificationError(table, record_id, field_name)
            for table, rows in unit.writes.items():
                self._ensure_table(table).update(rows)
        self._local.unit = None

    def rollback(self) -> None:
        self._local.unit = None


class SQLiteStorage(StorageInterface):
    """
    SQLite storage implementation for persistence.

    A single connection is shared between threads. An atomic unit holds the
    storage lock from begin to commit/rollback, so units are serialized.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        # isolation_level 'DEFERRED' lets us control commit/rollback manually
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level='DEFERRED')
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._in_transaction = False
        self._known_tables: Set[str] = set()

        with self._lock:
            if self.db_path != ":memory:":
                # WAL mode for better concurrent access
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
            self._connection.execute("""
                CREATE TABLE IF NOT EXISTS _sequences (
                    name TEXT PRIMARY KEY,
                    value INTEGER NOT NULL
                )
            """)
            self._connection.commit()

    def _autocommit(self) -> None:
        # Only commit if not in transaction
        if not self._in_transaction:
            self._connection.commit()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._known_tables:
            return
        self._connection.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._connection.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_{table}_created_at
            ON {table}(created_at)
        """)
        self._autocommit()
        self._known_tables.add(table)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        with self._lock:
            self._ensure_table(table)

            now = datetime.now(timezone.utc).isoformat()
            data_json = json.dumps(data, default=str)

            self._connection.execute(f"""
                INSERT OR REPLACE INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?,
                    COALESCE((SELECT created_at FROM {table} WHERE id = ?), ?),
                    ?)
            """, (record_id, data_json, record_id, now, now))
            self._autocommit()

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert a record; the PRIMARY KEY constraint rejects duplicates"""
        with self._lock:
            self._ensure_table(table)

            now = datetime.now(timezone.utc).isoformat()
            try:
                self._connection.execute(f"""
                    INSERT INTO {table} (id, data, created_at, updated_at)
                    VALUES (?, ?, ?, ?)
                """, (record_id, json.dumps(data, default=str), now, now))
            except sqlite3.IntegrityError as e:
                raise DuplicateRecordError(table, record_id) from e
            self._autocommit()

    def compare_and_save(self, table: str, record_id: str, data: Dict[str, Any],
                         field_name: str, expected: Any) -> None:
        """Conditionally replace a record while holding the storage lock"""
        with self._lock:
            current = self.load(table, record_id)
            if current is None or current.get(field_name) != expected:
                raise ConcurrentModificationError(table, record_id, field_name)
            self.save(table, record_id, data)

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} WHERE id = ?
            """, (record_id,))
            row = cursor.fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} ORDER BY created_at
            """)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT 1 FROM {table} WHERE id = ? LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None

    def find_any(self, table: str, alternatives: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Find records matching any filter set (simple JSON key matching)"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} ORDER BY created_at
            """)

            results = []
            for row in cursor.fetchall():
                record = json.loads(row['data'])
                if _matches_any(record, alternatives):
                    results.append(record)

            return results

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT COUNT(*) as count FROM {table}
            """)
            return cursor.fetchone()['count']

    def next_id(self, table: str) -> int:
        """Allocate next sequence value from the _sequences table"""
        with self._lock:
            self._connection.execute("""
                INSERT INTO _sequences (name, value) VALUES (?, 1)
                ON CONFLICT(name) DO UPDATE SET value = value + 1
            """, (table,))
            cursor = self._connection.execute("""
                SELECT value FROM _sequences WHERE name = ?
            """, (table,))
            value = cursor.fetchone()['value']
            self._autocommit()
            return value

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._ensure_table(table)
            self._connection.execute(f"DELETE FROM {table}")
            self._autocommit()

    def in_transaction(self) -> bool:
        return self._in_transaction

    def begin_transaction(self) -> None:
        with self._lock:
            # With isolation_level='DEFERRED' sqlite3 opens the transaction on
            # the first write; we just need to track the state
            self._in_transaction = True

    def commit(self) -> None:
        with self._lock:
            if self._in_transaction:
                self._connection.commit()
                self._in_transaction = False

    def rollback(self) -> None:
        with self._lock:
            if self._in_transaction:
                self._connection.rollback()
                self._in_transaction = False
                # Tables created inside the unit were rolled back too
                self._known_tables.clear()

    @contextmanager
    def atomic(self):
        """Hold the storage lock for the whole unit so units never interleave"""
        with self._lock:
            with super().atomic():
                yield

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str) -> StorageInterface:
    """
    Build a storage backend from a URL

    Supported forms: ``memory://`` and ``sqlite:///path/to/file.db``
    (``sqlite://`` or ``sqlite:///:memory:`` for an in-memory SQLite database).
    """
    if database_url.startswith("memory://"):
        return InMemoryStorage()
    if database_url.startswith("sqlite://"):
        path = database_url[len("sqlite://"):]
        if path.startswith("/"):
            path = path[1:]
        return SQLiteStorage(path or ":memory:")
    raise ValueError(f"Unsupported database URL: {database_url}")
