"""
Vault Storage Backends

Document stores keyed by table and record id. Ledger balances, ledger state
and audit records are stored as JSON documents; their ``vault_id`` and
``account`` fields are also kept in indexed columns so per-vault and
per-account lookups do not scan the whole table.

Writes grouped under ``atomic()`` land together or not at all. Atomic blocks
nest, and only the outermost block commits.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import copy
import json
import sqlite3
import threading


INDEXED_FIELDS = ("vault_id", "account")


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    def __init__(self):
        self._lock = threading.RLock()
        self._depth = 0

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert or replace a record"""

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record, None if absent"""

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """All records of a table in first-write order"""

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Records whose fields equal every filter value, in first-write order"""

    @abstractmethod
    def count(self, table: str) -> int:
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    @abstractmethod
    def _begin(self) -> None:
        pass

    @abstractmethod
    def _commit(self) -> None:
        pass

    @abstractmethod
    def _rollback(self) -> None:
        pass

    @contextmanager
    def atomic(self):
        """
        Group writes into one all-or-nothing batch.

        The storage lock is held for the whole block. A failure anywhere
        inside, including in a nested block, rolls back the outermost batch.
        """
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
            else:
                self._depth = 1
                self._begin()
                try:
                    yield
                    self._commit()
                except Exception:
                    self._rollback()
                    raise
                finally:
                    self._depth = 0


def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    return all(key in record and record[key] == value for key, value in filters.items())


class InMemoryStorage(StorageInterface):
    """Process-local storage, used by default and in tests"""

    def __init__(self):
        super().__init__()
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._saved: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            # stored as a JSON round trip so callers never share a reference
            self._tables.setdefault(table, {})[record_id] = json.loads(json.dumps(data, default=str))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._tables.get(table, {}).get(record_id)
            return copy.deepcopy(record) if record is not None else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(record) for record in self._tables.get(table, {}).values()]

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            return record_id in self._tables.get(table, {})

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                copy.deepcopy(record)
                for record in self._tables.get(table, {}).values()
                if _matches(record, filters)
            ]

    def count(self, table: str) -> int:
        with self._lock:
            return len(self._tables.get(table, {}))

    def close(self) -> None:
        pass

    def _begin(self) -> None:
        self._saved = copy.deepcopy(self._tables)

    def _commit(self) -> None:
        self._saved = None

    def _rollback(self) -> None:
        if self._saved is not None:
            self._tables = self._saved
            self._saved = None


class SQLiteStorage(StorageInterface):
    """
    SQLite storage. One table per record kind:

        seq       INTEGER PRIMARY KEY   first-write order
        id        TEXT UNIQUE           record id
        vault_id  TEXT                  indexed copy of the document field
        account   TEXT                  indexed copy of the document field
        document  TEXT                  JSON body

    The connection runs in autocommit mode; ``atomic()`` issues an explicit
    BEGIN so table creation inside a batch rolls back with it.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        super().__init__()
        self.db_path = str(db_path)
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
        self._connection.row_factory = sqlite3.Row

        if self.db_path != ":memory:":
            self._connection.execute("PRAGMA journal_mode = WAL")
            self._connection.execute("PRAGMA synchronous = NORMAL")

    def _ensure_table(self, table: str) -> None:
        self._connection.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                vault_id TEXT,
                account TEXT,
                document TEXT NOT NULL
            )
        """)
        self._connection.execute(
            f"CREATE INDEX IF NOT EXISTS ix_{table}_owner ON {table} (vault_id, account)"
        )

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._ensure_table(table)
            # upsert keeps seq, so first-write order survives updates
            self._connection.execute(f"""
                INSERT INTO {table} (id, vault_id, account, document) VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    vault_id = excluded.vault_id,
                    account = excluded.account,
                    document = excluded.document
            """, (record_id, data.get("vault_id"), data.get("account"), json.dumps(data, default=str)))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            row = self._connection.execute(
                f"SELECT document FROM {table} WHERE id = ?", (record_id,)
            ).fetchone()
            return json.loads(row["document"]) if row else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        return self.find(table, {})

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            return self._connection.execute(
                f"SELECT 1 FROM {table} WHERE id = ?", (record_id,)
            ).fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        indexed = {key: value for key, value in filters.items() if key in INDEXED_FIELDS}
        remaining = {key: value for key, value in filters.items() if key not in INDEXED_FIELDS}

        where = " AND ".join(f"{key} = ?" for key in indexed)
        query = f"SELECT document FROM {table}"
        if where:
            query += f" WHERE {where}"
        query += " ORDER BY seq"

        with self._lock:
            self._ensure_table(table)
            rows = self._connection.execute(query, tuple(indexed.values())).fetchall()

        records = [json.loads(row["document"]) for row in rows]
        return [record for record in records if _matches(record, remaining)]

    def count(self, table: str) -> int:
        with self._lock:
            self._ensure_table(table)
            return self._connection.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    def close(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    def _begin(self) -> None:
        self._connection.execute("BEGIN")

    def _commit(self) -> None:
        self._connection.execute("COMMIT")

    def _rollback(self) -> None:
        if self._connection.in_transaction:
            self._connection.execute("ROLLBACK")


def create_storage(database_url: str) -> StorageInterface:
    """
    Build a storage backend from a URL.

    Args:
        database_url: "memory" for InMemoryStorage or "sqlite:///path" for SQLite

    Returns:
        Storage backend instance
    """
    if database_url in ("memory", ""):
        return InMemoryStorage()
    if database_url.startswith("sqlite:///"):
        return SQLiteStorage(database_url[len("sqlite:///"):] or ":memory:")
    raise ValueError(f"Unsupported database URL: {database_url}")
