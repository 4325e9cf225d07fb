"""
Storage Backend Module

Provides the abstract record store interface and implementations for in-memory
(testing), SQLite (default persistence) and PostgreSQL. All monetary values are
stored as Decimal strings.

Every backend offers the same capabilities: row CRUD, unique-constrained
inserts, compare-and-set updates, store-side numeric increments, and atomic
units of work that commit completely or roll back completely.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union, Sequence
from decimal import Decimal, InvalidOperation
from datetime import datetime, timezone
from enum import Enum
import sqlite3
import json
import copy
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager

from .errors import StoreError, DuplicateRecordError, NotFoundError


def to_storage_value(value: Any) -> Any:
    """Convert a Python value into its JSON storage form"""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: to_storage_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_storage_value(v) for v in value]
    return value


def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    for key, value in filters.items():
        if key not in record or record[key] != to_storage_value(value):
            return False
    return True


def _incremented(current: Any, amount: Union[Decimal, str], minimum: Optional[Decimal]) -> Optional[Decimal]:
    """Compute field + amount, or None when the result would fall below minimum"""
    try:
        current_value = Decimal(str(current)) if current is not None else Decimal('0')
    except InvalidOperation:
        raise StoreError(f"Stored value {current!r} is not numeric")
    new_value = current_value + Decimal(str(amount))
    if minimum is not None and new_value < Decimal(str(minimum)):
        return None
    return new_value


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return {key: to_storage_value(value) for key, value in asdict(self).items()}

    @staticmethod
    def _parse_timestamps(data: Dict[str, Any]) -> Dict[str, Any]:
        """Convert ISO strings back to datetime objects"""
        data = dict(data)
        for key in ('created_at', 'updated_at'):
            if key in data and isinstance(data[key], str):
                data[key] = datetime.fromisoformat(data[key])
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        """Create instance from dictionary"""
        return cls(**cls._parse_timestamps(data))


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save (upsert) a record"""
        pass

    @abstractmethod
    def insert(self, table: str, record_id: str, data: Dict[str, Any],
               unique_fields: Sequence[str] = ()) -> None:
        """
        Insert a new record

        Raises:
            DuplicateRecordError: If the id or any unique field value already exists
        """
        pass

    @abstractmethod
    def update(self, table: str, record_id: str, changes: Dict[str, Any],
               expected: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """
        Apply a partial update to an existing record

        Args:
            table: Table name
            record_id: Record to update
            changes: Field values to set
            expected: Field values the record must currently hold (compare-and-set)

        Returns:
            The updated record, or None if expected values did not match

        Raises:
            NotFoundError: If the record does not exist
        """
        pass

    @abstractmethod
    def increment(self, table: str, record_id: str, field: str, amount: Decimal,
                  minimum: Optional[Decimal] = None) -> Optional[Decimal]:
        """
        Atomically add amount to a numeric field

        Args:
            table: Table name
            record_id: Record to update
            field: Numeric field stored as a decimal string
            amount: Signed amount to add
            minimum: If given, the update only applies when field + amount >= minimum

        Returns:
            The new field value, or None if the minimum condition rejected the update

        Raises:
            NotFoundError: If the record does not exist
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
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def in_transaction(self) -> bool:
        """Whether the calling thread currently owns an open unit of work"""
        return False

    def begin_transaction(self) -> None:
        """Start a unit of work (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current unit of work (default no-op)"""
        pass

    def rollback(self) -> None:
        """Roll back current unit of work (default no-op)"""
        pass

    @contextmanager
    def atomic(self):
        """
        Context manager for atomic operations.

        Commits on normal exit, rolls back on any exception and re-raises it.
        A nested call joins the enclosing unit of work.
        """
        if self.in_transaction():
            yield
            return

        self.begin_transaction()
        try:
            yield
        except Exception:
            self.rollback()
            raise
        self.commit()


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._snapshot: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None
        self._tx_owner: Optional[int] = None

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}

    @staticmethod
    def _copy(record: Dict[str, Any]) -> Dict[str, Any]:
        # Deep copy to prevent external mutation
        return json.loads(json.dumps(record, default=str))

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._lock:
            self._ensure_table(table)
            self._data[table][record_id] = self._copy(to_storage_value(data))

    def insert(self, table: str, record_id: str, data: Dict[str, Any],
               unique_fields: Sequence[str] = ()) -> None:
        """Insert a record, enforcing id and unique-field constraints"""
        with self._lock:
            self._ensure_table(table)
            rows = self._data[table]
            if record_id in rows:
                raise DuplicateRecordError(f"Record {record_id} already exists in {table}")

            for field in unique_fields:
                value = to_storage_value(data.get(field))
                if any(row.get(field) == value for row in rows.values()):
                    raise DuplicateRecordError(f"Duplicate value for {table}.{field}")

            rows[record_id] = self._copy(to_storage_value(data))

    def update(self, table: str, record_id: str, changes: Dict[str, Any],
               expected: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """Apply a partial update, optionally conditional on current values"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record is None:
                raise NotFoundError(f"Record {record_id} not found in {table}")

            if expected and not _matches(record, expected):
                return None

            record.update(self._copy(to_storage_value(changes)))
            if 'updated_at' not in changes:
                record['updated_at'] = _now_iso()
            return self._copy(record)

    def increment(self, table: str, record_id: str, field: str, amount: Decimal,
                  minimum: Optional[Decimal] = None) -> Optional[Decimal]:
        """Atomically add amount to a numeric field"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record is None:
                raise NotFoundError(f"Record {record_id} not found in {table}")

            new_value = _incremented(record.get(field), amount, minimum)
            if new_value is None:
                return None

            record[field] = str(new_value)
            record['updated_at'] = _now_iso()
            return new_value

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record:
                return self._copy(record)
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            return [self._copy(record) for record in self._data[table].values()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from memory"""
        with self._lock:
            self._ensure_table(table)
            if record_id in self._data[table]:
                del self._data[table][record_id]
                return True
            return False

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            return record_id in self._data[table]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        with self._lock:
            self._ensure_table(table)
            return [
                self._copy(record) for record in self._data[table].values()
                if _matches(record, filters)
            ]

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            return len(self._data[table])

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._data[table] = {}

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass

    def in_transaction(self) -> bool:
        return self._tx_owner == threading.get_ident()

    def begin_transaction(self) -> None:
        """Take the store lock for the whole unit of work and snapshot state"""
        self._lock.acquire()
        self._snapshot = copy.deepcopy(self._data)
        self._tx_owner = threading.get_ident()

    def commit(self) -> None:
        """Commit current unit of work"""
        if not self.in_transaction():
            return
        self._snapshot = None
        self._tx_owner = None
        self._lock.release()

    def rollback(self) -> None:
        """Restore the snapshot taken when the unit of work began"""
        if not self.in_transaction():
            return
        self._data = self._snapshot
        self._snapshot = None
        self._tx_owner = None
        self._lock.release()


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        try:
            self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level='DEFERRED')
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open SQLite database {self.db_path}: {e}") from e
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._tx_owner: Optional[int] = None
        self._tables = set()
        self._unique_indexes = set()

        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()

    @contextmanager
    def _guard(self, action: str):
        """Serialize access and translate sqlite3 errors into store errors"""
        with self._lock:
            try:
                yield
            except sqlite3.IntegrityError as e:
                self._discard_implicit_transaction()
                raise DuplicateRecordError(f"SQLite {action} violated a constraint: {e}") from e
            except sqlite3.Error as e:
                self._discard_implicit_transaction()
                raise StoreError(f"SQLite {action} failed: {e}") from e

    def _discard_implicit_transaction(self) -> None:
        if not self.in_transaction() and self._connection.in_transaction:
            self._connection.rollback()

    def _maybe_commit(self) -> None:
        # Only commit if not in a unit of work
        if not self.in_transaction():
            self._connection.commit()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
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
        self._maybe_commit()
        self._tables.add(table)

    def _ensure_unique_index(self, table: str, field: str) -> None:
        """Enforce uniqueness of a JSON field at the store layer"""
        if (table, field) in self._unique_indexes:
            return
        self._connection.execute(f"""
            CREATE UNIQUE INDEX IF NOT EXISTS idx_{table}_{field}_unique
            ON {table}(json_extract(data, '$.{field}'))
        """)
        self._maybe_commit()
        self._unique_indexes.add((table, field))

    def _read(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        row = self._connection.execute(
            f"SELECT data FROM {table} WHERE id = ?", (record_id,)
        ).fetchone()
        return json.loads(row['data']) if row else None

    def _write(self, table: str, record_id: str, record: Dict[str, Any]) -> None:
        self._connection.execute(
            f"UPDATE {table} SET data = ?, updated_at = ? WHERE id = ?",
            (json.dumps(record, default=str), _now_iso(), record_id)
        )

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        with self._guard("save"):
            self._ensure_table(table)
            now = _now_iso()
            self._connection.execute(f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at
            """, (record_id, json.dumps(to_storage_value(data), default=str), now, now))
            self._maybe_commit()

    def insert(self, table: str, record_id: str, data: Dict[str, Any],
               unique_fields: Sequence[str] = ()) -> None:
        """Insert a record; the primary key and unique indexes reject duplicates"""
        with self._guard("insert"):
            self._ensure_table(table)
            for field in unique_fields:
                self._ensure_unique_index(table, field)
            now = _now_iso()
            self._connection.execute(f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?)
            """, (record_id, json.dumps(to_storage_value(data), default=str), now, now))
            self._maybe_commit()

    def update(self, table: str, record_id: str, changes: Dict[str, Any],
               expected: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """Apply a partial update inside a write-locked unit of work"""
        with self.atomic(), self._guard("update"):
            self._ensure_table(table)
            record = self._read(table, record_id)
            if record is None:
                raise NotFoundError(f"Record {record_id} not found in {table}")

            if expected and not _matches(record, expected):
                return None

            record.update(to_storage_value(changes))
            if 'updated_at' not in changes:
                record['updated_at'] = _now_iso()
            self._write(table, record_id, record)
            return record

    def increment(self, table: str, record_id: str, field: str, amount: Decimal,
                  minimum: Optional[Decimal] = None) -> Optional[Decimal]:
        """Atomically add amount to a numeric field"""
        with self.atomic(), self._guard("increment"):
            self._ensure_table(table)
            record = self._read(table, record_id)
            if record is None:
                raise NotFoundError(f"Record {record_id} not found in {table}")

            new_value = _incremented(record.get(field), amount, minimum)
            if new_value is None:
                return None

            record[field] = str(new_value)
            record['updated_at'] = _now_iso()
            self._write(table, record_id, record)
            return new_value

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._guard("load"):
            self._ensure_table(table)
            return self._read(table, record_id)

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._guard("load_all"):
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} ORDER BY created_at
            """)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from SQLite"""
        with self._guard("delete"):
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                DELETE FROM {table} WHERE id = ?
            """, (record_id,))
            self._maybe_commit()
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._guard("exists"):
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT 1 FROM {table} WHERE id = ? LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters (simple JSON key matching)"""
        return [record for record in self.load_all(table) if _matches(record, filters)]

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._guard("count"):
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT COUNT(*) as count FROM {table}
            """)
            return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._guard("clear_table"):
            self._ensure_table(table)
            self._connection.execute(f"DELETE FROM {table}")
            self._maybe_commit()

    def in_transaction(self) -> bool:
        return self._tx_owner == threading.get_ident()

    def begin_transaction(self) -> None:
        """Start a write-locked database transaction"""
        self._lock.acquire()
        try:
            if self._connection.in_transaction:
                self._connection.commit()
            self._connection.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            self._lock.release()
            raise StoreError(f"SQLite begin failed: {e}") from e
        self._tx_owner = threading.get_ident()

    def commit(self) -> None:
        """Commit current transaction"""
        if not self.in_transaction():
            return
        try:
            self._connection.commit()
        except sqlite3.Error as e:
            self._connection.rollback()
            self._forget_schema()
            raise StoreError(f"SQLite commit failed: {e}") from e
        finally:
            self._end_transaction()

    def rollback(self) -> None:
        """Rollback current transaction"""
        if not self.in_transaction():
            return
        try:
            self._connection.rollback()
        except sqlite3.Error as e:
            raise StoreError(f"SQLite rollback failed: {e}") from e
        finally:
            # DDL issued inside the transaction was rolled back with it
            self._forget_schema()
            self._end_transaction()

    def _forget_schema(self) -> None:
        self._tables.clear()
        self._unique_indexes.clear()

    def _end_transaction(self) -> None:
        self._tx_owner = None
        self._lock.release()

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


class PostgreSQLStorage(StorageInterface):
    """PostgreSQL storage backend with ACID transaction support"""

    def __init__(self, connection_string: str):
        try:
            import psycopg2
            import psycopg2.extras
            self.psycopg2 = psycopg2
            self.extras = psycopg2.extras
        except ImportError:
            raise ImportError("psycopg2 is required for PostgreSQL storage. Install with: pip install nova-banking[postgres]")

        self.connection_string = connection_string
        self._connection = None
        self._lock = threading.RLock()
        self._tx_owner: Optional[int] = None
        self._tables = set()
        self._unique_indexes = set()
        self._connect()

    def _connect(self) -> None:
        """Establish database connection"""
        with self._lock:
            try:
                self._connection = self.psycopg2.connect(
                    self.connection_string,
                    cursor_factory=self.extras.RealDictCursor
                )
            except self.psycopg2.Error as e:
                raise StoreError(f"Cannot connect to PostgreSQL: {e}") from e
            self._connection.autocommit = False  # We handle transactions manually

    @contextmanager
    def _cursor(self, action: str):
        """Yield a cursor; translate driver errors and commit outside units of work"""
        with self._lock:
            cursor = self._connection.cursor()
            try:
                yield cursor
                if not self.in_transaction():
                    self._connection.commit()
            except self.psycopg2.IntegrityError as e:
                if not self.in_transaction():
                    self._connection.rollback()
                raise DuplicateRecordError(f"PostgreSQL {action} violated a constraint: {e}") from e
            except self.psycopg2.Error as e:
                if not self.in_transaction():
                    self._connection.rollback()
                raise StoreError(f"PostgreSQL {action} failed: {e}") from e
            finally:
                cursor.close()

    @staticmethod
    def _text(value: Any) -> str:
        """Render a filter value the way ->> renders JSONB scalars"""
        value = to_storage_value(value)
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    def _ensure_table(self, cursor, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        cursor.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id TEXT PRIMARY KEY,
                data JSONB NOT NULL,
                created_at TIMESTAMP DEFAULT NOW(),
                updated_at TIMESTAMP DEFAULT NOW()
            )
        """)
        cursor.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_{table}_data
            ON {table} USING gin(data)
        """)
        cursor.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_{table}_created_at
            ON {table}(created_at)
        """)
        self._tables.add(table)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to PostgreSQL using UPSERT"""
        with self._cursor("save") as cursor:
            self._ensure_table(cursor, table)
            now = datetime.now(timezone.utc)
            cursor.execute(f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (id) DO UPDATE SET
                    data = EXCLUDED.data,
                    updated_at = EXCLUDED.updated_at
            """, (record_id, json.dumps(to_storage_value(data), default=str), now, now))

    def insert(self, table: str, record_id: str, data: Dict[str, Any],
               unique_fields: Sequence[str] = ()) -> None:
        """Insert a record; the primary key and unique indexes reject duplicates"""
        with self._cursor("insert") as cursor:
            self._ensure_table(cursor, table)
            for field in unique_fields:
                if (table, field) not in self._unique_indexes:
                    cursor.execute(f"""
                        CREATE UNIQUE INDEX IF NOT EXISTS idx_{table}_{field}_unique
                        ON {table} ((data ->> '{field}'))
                    """)
                    self._unique_indexes.add((table, field))
            now = datetime.now(timezone.utc)
            cursor.execute(f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (%s, %s, %s, %s)
            """, (record_id, json.dumps(to_storage_value(data), default=str), now, now))

    def update(self, table: str, record_id: str, changes: Dict[str, Any],
               expected: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """Apply a partial update as a single conditional UPDATE statement"""
        changes = to_storage_value(changes)
        if 'updated_at' not in changes:
            changes['updated_at'] = _now_iso()

        conditions = ["id = %s"]
        params: List[Any] = [json.dumps(changes, default=str), datetime.now(timezone.utc), record_id]
        for key, value in (expected or {}).items():
            conditions.append("data ->> %s = %s")
            params.extend([key, self._text(value)])

        with self._cursor("update") as cursor:
            self._ensure_table(cursor, table)
            cursor.execute(f"""
                UPDATE {table}
                SET data = data || %s::jsonb, updated_at = %s
                WHERE {' AND '.join(conditions)}
                RETURNING data
            """, params)
            row = cursor.fetchone()
            if row:
                return dict(row['data'])

            cursor.execute(f"SELECT 1 FROM {table} WHERE id = %s", (record_id,))
            if cursor.fetchone() is None:
                raise NotFoundError(f"Record {record_id} not found in {table}")
            return None

    def increment(self, table: str, record_id: str, field: str, amount: Decimal,
                  minimum: Optional[Decimal] = None) -> Optional[Decimal]:
        """Store-side increment: field = field + amount [WHERE field + amount >= minimum]"""
        amount = Decimal(str(amount))
        params: List[Any] = [[field], field, amount, _now_iso(), datetime.now(timezone.utc), record_id]
        condition = ""
        if minimum is not None:
            condition = "AND COALESCE((data ->> %s)::numeric, 0) + %s >= %s"
            params.extend([field, amount, Decimal(str(minimum))])
        params.append(field)

        with self._cursor("increment") as cursor:
            self._ensure_table(cursor, table)
            cursor.execute(f"""
                UPDATE {table}
                SET data = jsonb_set(
                        jsonb_set(data, %s, to_jsonb((COALESCE((data ->> %s)::numeric, 0) + %s)::text)),
                        '{{updated_at}}', to_jsonb(%s::text)),
                    updated_at = %s
                WHERE id = %s {condition}
                RETURNING data ->> %s AS value
            """, params)
            row = cursor.fetchone()
            if row:
                return Decimal(row['value'])

            cursor.execute(f"SELECT 1 FROM {table} WHERE id = %s", (record_id,))
            if cursor.fetchone() is None:
                raise NotFoundError(f"Record {record_id} not found in {table}")
            return None

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from PostgreSQL"""
        with self._cursor("load") as cursor:
            self._ensure_table(cursor, table)
            cursor.execute(f"""
                SELECT data FROM {table} WHERE id = %s
            """, (record_id,))
            row = cursor.fetchone()
            if row:
                return dict(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        return self.find(table, {})

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from PostgreSQL"""
        with self._cursor("delete") as cursor:
            self._ensure_table(cursor, table)
            cursor.execute(f"""
                DELETE FROM {table} WHERE id = %s
            """, (record_id,))
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._cursor("exists") as cursor:
            self._ensure_table(cursor, table)
            cursor.execute(f"""
                SELECT 1 FROM {table} WHERE id = %s LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters using JSONB operators"""
        conditions = []
        params: List[Any] = []
        for key, value in filters.items():
            conditions.append("data ->> %s = %s")
            params.extend([key, self._text(value)])
        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        with self._cursor("find") as cursor:
            self._ensure_table(cursor, table)
            cursor.execute(f"""
                SELECT data FROM {table} {where_clause}
                ORDER BY created_at
            """, params)
            return [dict(row['data']) for row in cursor.fetchall()]

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._cursor("count") as cursor:
            self._ensure_table(cursor, table)
            cursor.execute(f"""
                SELECT COUNT(*) as count FROM {table}
            """)
            return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._cursor("clear_table") as cursor:
            self._ensure_table(cursor, table)
            cursor.execute(f"DELETE FROM {table}")

    def in_transaction(self) -> bool:
        return self._tx_owner == threading.get_ident()

    def begin_transaction(self) -> None:
        """Start a database transaction"""
        # PostgreSQL transactions start automatically with the first statement
        self._lock.acquire()
        self._tx_owner = threading.get_ident()

    def commit(self) -> None:
        """Commit current transaction"""
        if not self.in_transaction():
            return
        try:
            self._connection.commit()
        except self.psycopg2.Error as e:
            self._connection.rollback()
            self._tables.clear()
            self._unique_indexes.clear()
            raise StoreError(f"PostgreSQL commit failed: {e}") from e
        finally:
            self._tx_owner = None
            self._lock.release()

    def rollback(self) -> None:
        """Rollback current transaction"""
        if not self.in_transaction():
            return
        try:
            self._connection.rollback()
        except self.psycopg2.Error as e:
            raise StoreError(f"PostgreSQL rollback failed: {e}") from e
        finally:
            self._tables.clear()
            self._unique_indexes.clear()
            self._tx_owner = None
            self._lock.release()

    def close(self) -> None:
        """Close PostgreSQL connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str) -> StorageInterface:
    """
    Build a storage backend from a database URL

    Args:
        database_url: memory://, sqlite:///path/to.db (or sqlite:///:memory:),
            or a postgresql:// connection string

    Returns:
        Storage backend instance
    """
    if database_url.startswith("memory://"):
        return InMemoryStorage()
    if database_url.startswith("sqlite:///"):
        return SQLiteStorage(database_url[len("sqlite:///"):] or ":memory:")
    if database_url.startswith(("postgresql://", "postgres://")):
        return PostgreSQLStorage(database_url)
    raise ValueError(f"Unsupported database URL: {database_url}")
