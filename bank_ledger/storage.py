"""
Storage Backend Module

Provides the unit-of-work storage interface and implementations for in-memory
(testing), SQLite (default persistence) and PostgreSQL. Balances and amounts
are Decimal in Python; SQLite stores them as strings, PostgreSQL as NUMERIC.

All reads and writes happen through a UnitOfWork obtained from
``StorageInterface.unit_of_work()``. Leaving the block normally commits,
leaving it with an exception rolls back and re-raises. The connection is
taken from the backend's pool on entry and returned on every exit path.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, Iterator, List, Optional, Any, Union
from decimal import Decimal
from datetime import datetime, timezone
from pathlib import Path
from contextlib import contextmanager
import copy
import queue
import sqlite3
import threading

from .errors import DuplicateAccount, StoreFailure


ACCOUNT_COLUMNS = (
    "id", "username", "password_hash", "password_salt", "first_name",
    "last_name", "age", "phone", "balance", "created_at",
)

MOVEMENT_COLUMNS = (
    "id", "account_id", "created_at", "kind", "direction", "amount",
    "resulting_balance", "memo", "related_account_id",
)

# Columns an administrative profile update may touch; balance is not one of them
PROFILE_COLUMNS = ("first_name", "last_name", "age", "phone")


def _duplicate_from_message(message: str) -> Optional[DuplicateAccount]:
    """
    Map a unique-constraint violation to the offending account field

    Returns None for any other integrity error (NOT NULL, CHECK).
    """
    lowered = message.lower()
    if "unique" not in lowered:
        return None
    if "username" in lowered:
        return DuplicateAccount("username")
    if "phone" in lowered:
        return DuplicateAccount("phone")
    return None


class UnitOfWork(ABC):
    """Reads and writes executed inside one atomic, isolated transaction"""

    @abstractmethod
    def get_account(self, account_id: int) -> Optional[Dict[str, Any]]:
        """Load one account row"""
        pass

    @abstractmethod
    def find_account_by_phone(self, phone: str) -> Optional[Dict[str, Any]]:
        """Load the account registered with a phone number"""
        pass

    @abstractmethod
    def find_account_by_username(self, username: str) -> Optional[Dict[str, Any]]:
        """Load the account registered with a username"""
        pass

    @abstractmethod
    def lock_accounts(self, account_ids: Iterable[int]) -> Dict[int, Dict[str, Any]]:
        """
        Re-read accounts under a write lock held until the unit of work ends.

        Locks are taken in ascending id order. Ids that no longer exist are
        absent from the result.
        """
        pass

    @abstractmethod
    def list_accounts(self) -> List[Dict[str, Any]]:
        """All accounts ordered by id"""
        pass

    @abstractmethod
    def insert_account(self, data: Dict[str, Any]) -> int:
        """Insert an account and return its store-assigned id"""
        pass

    @abstractmethod
    def update_account(self, account_id: int, fields: Dict[str, Any]) -> bool:
        """Update profile columns; returns False when the account is missing"""
        pass

    @abstractmethod
    def delete_account(self, account_id: int) -> bool:
        """Delete an account; returns False when it is missing"""
        pass

    @abstractmethod
    def set_balance(self, account_id: int, balance: Decimal) -> None:
        """Overwrite an account balance"""
        pass

    @abstractmethod
    def insert_movement(self, data: Dict[str, Any]) -> int:
        """Append a ledger row and return its store-assigned id"""
        pass

    @abstractmethod
    def list_movements(self, account_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Movements, most recent first, with owner and counterparty names.

        Without ``account_id`` only movements whose owner still exists are
        returned.
        """
        pass


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def initialize(self) -> None:
        """Create the schema if it does not exist"""
        pass

    @abstractmethod
    def reset(self) -> None:
        """Drop all data and recreate the schema"""
        pass

    @abstractmethod
    def unit_of_work(self, write: bool = True):
        """Context manager yielding a UnitOfWork"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release every pooled connection"""
        pass


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        self._accounts: Dict[int, Dict[str, Any]] = {}
        self._movements: Dict[int, Dict[str, Any]] = {}
        self._sequences = {"accounts": 0, "movements": 0}
        self._lock = threading.RLock()

    def initialize(self) -> None:
        """Nothing to create for in-memory storage"""
        pass

    def reset(self) -> None:
        with self._lock:
            self._accounts = {}
            self._movements = {}
            self._sequences = {"accounts": 0, "movements": 0}

    def _next_id(self, table: str) -> int:
        self._sequences[table] += 1
        return self._sequences[table]

    @contextmanager
    def unit_of_work(self, write: bool = True) -> Iterator[UnitOfWork]:
        # One lock for the whole store serializes every unit of work
        with self._lock:
            snapshot = None
            if write:
                snapshot = copy.deepcopy((self._accounts, self._movements, self._sequences))
            try:
                yield InMemoryUnitOfWork(self)
            except Exception:
                if snapshot is not None:
                    self._accounts, self._movements, self._sequences = snapshot
                raise

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class InMemoryUnitOfWork(UnitOfWork):
    """Unit of work over InMemoryStorage; the store lock is already held"""

    def __init__(self, storage: InMemoryStorage):
        self._storage = storage

    def get_account(self, account_id: int) -> Optional[Dict[str, Any]]:
        record = self._storage._accounts.get(account_id)
        return dict(record) if record else None

    def _find_account(self, key: str, value: Any) -> Optional[Dict[str, Any]]:
        for record in self._storage._accounts.values():
            if record[key] == value:
                return dict(record)
        return None

    def find_account_by_phone(self, phone: str) -> Optional[Dict[str, Any]]:
        return self._find_account("phone", phone)

    def find_account_by_username(self, username: str) -> Optional[Dict[str, Any]]:
        return self._find_account("username", username)

    def lock_accounts(self, account_ids: Iterable[int]) -> Dict[int, Dict[str, Any]]:
        locked = {}
        for account_id in sorted(set(account_ids)):
            record = self.get_account(account_id)
            if record:
                locked[account_id] = record
        return locked

    def list_accounts(self) -> List[Dict[str, Any]]:
        return [dict(self._storage._accounts[key]) for key in sorted(self._storage._accounts)]

    def _check_unique(self, data: Dict[str, Any], exclude_id: Optional[int] = None) -> None:
        for field in ("username", "phone"):
            if field not in data:
                continue
            existing = self._find_account(field, data[field])
            if existing and existing["id"] != exclude_id:
                raise DuplicateAccount(field, data[field])

    def insert_account(self, data: Dict[str, Any]) -> int:
        self._check_unique(data)
        account_id = self._storage._next_id("accounts")
        record = {column: data.get(column) for column in ACCOUNT_COLUMNS}
        record["id"] = account_id
        record["balance"] = data.get("balance", Decimal("0.00"))
        record["created_at"] = datetime.now(timezone.utc)
        self._storage._accounts[account_id] = record
        return account_id

    def update_account(self, account_id: int, fields: Dict[str, Any]) -> bool:
        record = self._storage._accounts.get(account_id)
        if record is None:
            return False
        updates = {k: v for k, v in fields.items() if k in PROFILE_COLUMNS}
        self._check_unique(updates, exclude_id=account_id)
        record.update(updates)
        return True

    def delete_account(self, account_id: int) -> bool:
        return self._storage._accounts.pop(account_id, None) is not None

    def set_balance(self, account_id: int, balance: Decimal) -> None:
        self._storage._accounts[account_id]["balance"] = balance

    def insert_movement(self, data: Dict[str, Any]) -> int:
        movement_id = self._storage._next_id("movements")
        record = {column: data.get(column) for column in MOVEMENT_COLUMNS}
        record["id"] = movement_id
        record["created_at"] = datetime.now(timezone.utc)
        self._storage._movements[movement_id] = record
        return movement_id

    def list_movements(self, account_id: Optional[int] = None) -> List[Dict[str, Any]]:
        accounts = self._storage._accounts
        rows = []
        for record in self._storage._movements.values():
            if account_id is not None and record["account_id"] != account_id:
                continue
            owner = accounts.get(record["account_id"])
            if account_id is None and owner is None:
                continue
            related = accounts.get(record["related_account_id"])
            row = dict(record)
            row["account_first_name"] = owner["first_name"] if owner else None
            row["account_last_name"] = owner["last_name"] if owner else None
            row["related_first_name"] = related["first_name"] if related else None
            row["related_last_name"] = related["last_name"] if related else None
            rows.append(row)
        rows.sort(key=lambda row: (row["created_at"], row["id"]), reverse=True)
        return rows


class SQLUnitOfWork(UnitOfWork):
    """
    Unit of work shared by the SQL backends.

    Queries are written with ``?`` placeholders; backends using another
    paramstyle override ``placeholder``.
    """

    placeholder = "?"
    lock_clause = ""
    integrity_error: type = sqlite3.IntegrityError

    def __init__(self, connection):
        self._connection = connection

    def _sql(self, query: str) -> str:
        if self.placeholder == "?":
            return query
        return query.replace("?", self.placeholder)

    def _money(self, value: Decimal) -> Any:
        """Bind parameter for a money column"""
        return value

    def _row(self, row) -> Dict[str, Any]:
        return dict(row)

    def _execute(self, query: str, params: tuple = ()):
        cursor = self._connection.cursor()
        try:
            cursor.execute(self._sql(query), params)
        except self.integrity_error as e:
            cursor.close()
            duplicate = _duplicate_from_message(str(e))
            if duplicate is None:
                raise StoreFailure(str(e))
            raise duplicate
        except Exception:
            cursor.close()
            raise
        return cursor

    def _fetchone(self, query: str, params: tuple = ()) -> Optional[Dict[str, Any]]:
        cursor = self._execute(query, params)
        try:
            row = cursor.fetchone()
            return self._row(row) if row is not None else None
        finally:
            cursor.close()

    def _fetchall(self, query: str, params: tuple = ()) -> List[Dict[str, Any]]:
        cursor = self._execute(query, params)
        try:
            return [self._row(row) for row in cursor.fetchall()]
        finally:
            cursor.close()

    def _rowcount(self, query: str, params: tuple = ()) -> int:
        cursor = self._execute(query, params)
        try:
            return cursor.rowcount
        finally:
            cursor.close()

    def _insert(self, query: str, params: tuple) -> int:
        cursor = self._execute(query, params)
        try:
            return cursor.lastrowid
        finally:
            cursor.close()

    def get_account(self, account_id: int) -> Optional[Dict[str, Any]]:
        return self._fetchone(
            f"SELECT {', '.join(ACCOUNT_COLUMNS)} FROM accounts WHERE id = ?", (account_id,)
        )

    def find_account_by_phone(self, phone: str) -> Optional[Dict[str, Any]]:
        return self._fetchone(
            f"SELECT {', '.join(ACCOUNT_COLUMNS)} FROM accounts WHERE phone = ?", (phone,)
        )

    def find_account_by_username(self, username: str) -> Optional[Dict[str, Any]]:
        return self._fetchone(
            f"SELECT {', '.join(ACCOUNT_COLUMNS)} FROM accounts WHERE username = ?", (username,)
        )

    def lock_accounts(self, account_ids: Iterable[int]) -> Dict[int, Dict[str, Any]]:
        locked = {}
        for account_id in sorted(set(account_ids)):
            row = self._fetchone(
                f"SELECT {', '.join(ACCOUNT_COLUMNS)} FROM accounts WHERE id = ?{self.lock_clause}",
                (account_id,),
            )
            if row:
                locked[account_id] = row
        return locked

    def list_accounts(self) -> List[Dict[str, Any]]:
        return self._fetchall(f"SELECT {', '.join(ACCOUNT_COLUMNS)} FROM accounts ORDER BY id")

    def insert_account(self, data: Dict[str, Any]) -> int:
        return self._insert(
            """
            INSERT INTO accounts (username, password_hash, password_salt, first_name,
                                  last_name, age, phone, balance)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                data["username"], data["password_hash"], data["password_salt"],
                data["first_name"], data["last_name"], data["age"], data["phone"],
                self._money(data.get("balance", Decimal("0.00"))),
            ),
        )

    def update_account(self, account_id: int, fields: Dict[str, Any]) -> bool:
        updates = [(k, v) for k, v in fields.items() if k in PROFILE_COLUMNS]
        if not updates:
            return self.get_account(account_id) is not None
        assignments = ", ".join(f"{column} = ?" for column, _ in updates)
        params = tuple(value for _, value in updates) + (account_id,)
        return self._rowcount(f"UPDATE accounts SET {assignments} WHERE id = ?", params) > 0

    def delete_account(self, account_id: int) -> bool:
        return self._rowcount("DELETE FROM accounts WHERE id = ?", (account_id,)) > 0

    def set_balance(self, account_id: int, balance: Decimal) -> None:
        self._rowcount(
            "UPDATE accounts SET balance = ? WHERE id = ?", (self._money(balance), account_id)
        )

    def insert_movement(self, data: Dict[str, Any]) -> int:
        return self._insert(
            """
            INSERT INTO movements (account_id, kind, direction, amount,
                                   resulting_balance, memo, related_account_id)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                data["account_id"], data["kind"], data["direction"],
                self._money(data["amount"]), self._money(data["resulting_balance"]),
                data.get("memo") or "", data.get("related_account_id"),
            ),
        )

    def list_movements(self, account_id: Optional[int] = None) -> List[Dict[str, Any]]:
        columns = ", ".join(f"m.{column}" for column in MOVEMENT_COLUMNS)
        owner_join = "LEFT JOIN" if account_id is not None else "INNER JOIN"
        query = f"""
            SELECT {columns},
                   u.first_name AS account_first_name,
                   u.last_name AS account_last_name,
                   r.first_name AS related_first_name,
                   r.last_name AS related_last_name
            FROM movements m
            {owner_join} accounts u ON m.account_id = u.id
            LEFT JOIN accounts r ON m.related_account_id = r.id
        """
        params: tuple = ()
        if account_id is not None:
            query += " WHERE m.account_id = ?"
            params = (account_id,)
        query += " ORDER BY m.created_at DESC, m.id DESC"
        return self._fetchall(query, params)


class ConnectionPool:
    """Bounded pool of DB-API connections created on demand"""

    def __init__(self, factory, size: int, timeout: float):
        self._factory = factory
        self._size = max(1, size)
        self._timeout = timeout
        self._idle: "queue.LifoQueue" = queue.LifoQueue()
        self._created = 0
        self._lock = threading.Lock()
        self._closed = False

    def acquire(self):
        if self._closed:
            raise StoreFailure("Connection pool is closed")
        try:
            return self._idle.get_nowait()
        except queue.Empty:
            pass

        with self._lock:
            if self._created < self._size:
                connection = self._factory()
                self._created += 1
                return connection

        try:
            return self._idle.get(timeout=self._timeout)
        except queue.Empty:
            raise StoreFailure(
                f"Timed out after {self._timeout}s waiting for a database connection"
            )

    def release(self, connection) -> None:
        if self._closed:
            connection.close()
            return
        self._idle.put(connection)

    def discard(self, connection) -> None:
        """Close a broken connection and free its slot for a fresh one"""
        try:
            connection.close()
        finally:
            with self._lock:
                self._created -= 1

    def close(self) -> None:
        self._closed = True
        while True:
            try:
                connection = self._idle.get_nowait()
            except queue.Empty:
                break
            connection.close()


SQLITE_SCHEMA = """
CREATE TABLE IF NOT EXISTS accounts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    password_salt TEXT NOT NULL,
    first_name TEXT NOT NULL,
    last_name TEXT NOT NULL,
    age INTEGER NOT NULL,
    phone TEXT NOT NULL UNIQUE,
    balance TEXT NOT NULL DEFAULT '0.00',
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now'))
);
CREATE TABLE IF NOT EXISTS movements (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    account_id INTEGER NOT NULL,
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now')),
    kind TEXT NOT NULL CHECK (kind IN ('deposit', 'withdrawal', 'transfer')),
    direction TEXT NOT NULL CHECK (direction IN ('incoming', 'outgoing')),
    amount TEXT NOT NULL,
    resulting_balance TEXT NOT NULL,
    memo TEXT NOT NULL DEFAULT '',
    related_account_id INTEGER
);
CREATE INDEX IF NOT EXISTS idx_movements_account_id ON movements(account_id);
CREATE INDEX IF NOT EXISTS idx_movements_created_at ON movements(created_at);
"""


class SQLiteUnitOfWork(SQLUnitOfWork):
    """SQLite has no Decimal adapter, so money travels as text"""

    def _money(self, value: Decimal) -> Any:
        return str(value)


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:", pool_size: int = 5,
                 timeout: float = 30.0):
        self.db_path = str(db_path)
        self.timeout = timeout
        # Every :memory: connection is its own database
        if self.db_path == ":memory:":
            pool_size = 1
        self._pool = ConnectionPool(self._connect, pool_size, timeout)

    def _connect(self) -> sqlite3.Connection:
        # Autocommit mode: transactions are opened explicitly by unit_of_work
        connection = sqlite3.connect(
            self.db_path, timeout=self.timeout, isolation_level=None, check_same_thread=False
        )
        connection.row_factory = sqlite3.Row
        if self.db_path != ":memory:":
            connection.execute("PRAGMA journal_mode = WAL")
            connection.execute("PRAGMA synchronous = NORMAL")
        return connection

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        connection = self._pool.acquire()
        try:
            yield connection
        finally:
            try:
                if connection.in_transaction:
                    connection.execute("ROLLBACK")
            except Exception:
                # State unknown after a failed rollback; never hand it out again
                self._pool.discard(connection)
                raise
            else:
                self._pool.release(connection)

    def initialize(self) -> None:
        with self._connection() as connection:
            connection.executescript(SQLITE_SCHEMA)

    def reset(self) -> None:
        with self._connection() as connection:
            connection.executescript(
                "DROP TABLE IF EXISTS movements; DROP TABLE IF EXISTS accounts;"
            )
            connection.executescript(SQLITE_SCHEMA)

    @contextmanager
    def unit_of_work(self, write: bool = True) -> Iterator[UnitOfWork]:
        with self._connection() as connection:
            # IMMEDIATE takes the write lock up front so concurrent writers serialize
            connection.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            yield SQLiteUnitOfWork(connection)
            connection.execute("COMMIT")

    def close(self) -> None:
        self._pool.close()


POSTGRESQL_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS accounts (
        id BIGSERIAL PRIMARY KEY,
        username TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        password_salt TEXT NOT NULL,
        first_name TEXT NOT NULL,
        last_name TEXT NOT NULL,
        age INTEGER NOT NULL,
        phone TEXT NOT NULL UNIQUE,
        balance NUMERIC(14, 2) NOT NULL DEFAULT 0,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS movements (
        id BIGSERIAL PRIMARY KEY,
        account_id BIGINT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        kind TEXT NOT NULL CHECK (kind IN ('deposit', 'withdrawal', 'transfer')),
        direction TEXT NOT NULL CHECK (direction IN ('incoming', 'outgoing')),
        amount NUMERIC(14, 2) NOT NULL,
        resulting_balance NUMERIC(14, 2) NOT NULL,
        memo TEXT NOT NULL DEFAULT '',
        related_account_id BIGINT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_movements_account_id ON movements(account_id)",
    "CREATE INDEX IF NOT EXISTS idx_movements_created_at ON movements(created_at)",
)


class PostgreSQLUnitOfWork(SQLUnitOfWork):
    """Unit of work on a psycopg2 connection; row locks via FOR UPDATE"""

    placeholder = "%s"
    lock_clause = " FOR UPDATE"

    def __init__(self, connection, integrity_error: type):
        super().__init__(connection)
        self.integrity_error = integrity_error

    def _insert(self, query: str, params: tuple) -> int:
        cursor = self._execute(query + " RETURNING id", params)
        try:
            return cursor.fetchone()["id"]
        finally:
            cursor.close()


class PostgreSQLStorage(StorageInterface):
    """PostgreSQL storage backend with ACID transaction support"""

    def __init__(self, connection_string: str, pool_size: int = 5):
        try:
            import psycopg2
            import psycopg2.extras
            import psycopg2.pool
        except ImportError:
            raise ImportError("psycopg2 is required for PostgreSQL storage. Install with: pip install psycopg2-binary")

        self.psycopg2 = psycopg2
        self.connection_string = connection_string
        self._pool = psycopg2.pool.ThreadedConnectionPool(
            1, max(1, pool_size), connection_string,
            cursor_factory=psycopg2.extras.RealDictCursor,
        )

    @contextmanager
    def _connection(self):
        try:
            connection = self._pool.getconn()
        except self.psycopg2.pool.PoolError as e:
            raise StoreFailure(f"No database connection available: {e}")
        try:
            yield connection
            connection.commit()
        except Exception:
            connection.rollback()
            raise
        finally:
            self._pool.putconn(connection)

    def initialize(self) -> None:
        with self._connection() as connection:
            with connection.cursor() as cursor:
                for statement in POSTGRESQL_SCHEMA:
                    cursor.execute(statement)

    def reset(self) -> None:
        with self._connection() as connection:
            with connection.cursor() as cursor:
                cursor.execute("DROP TABLE IF EXISTS movements")
                cursor.execute("DROP TABLE IF EXISTS accounts")
                for statement in POSTGRESQL_SCHEMA:
                    cursor.execute(statement)

    @contextmanager
    def unit_of_work(self, write: bool = True) -> Iterator[UnitOfWork]:
        with self._connection() as connection:
            yield PostgreSQLUnitOfWork(connection, self.psycopg2.IntegrityError)

    def close(self) -> None:
        if self._pool and not self._pool.closed:
            self._pool.closeall()


def create_storage(database_url: str, pool_size: int = 5,
                   pool_timeout: float = 30.0) -> StorageInterface:
    """
    Build a storage backend from a database URL

    Supported schemes:
        memory://                 in-process dictionaries
        sqlite:///path/to/file.db SQLite file (sqlite:// alone is :memory:)
        postgresql://user@host/db PostgreSQL via psycopg2
    """
    if database_url.startswith("memory://"):
        return InMemoryStorage()

    if database_url.startswith("sqlite://"):
        path = database_url[len("sqlite:///"):] if database_url.startswith("sqlite:///") else ""
        return SQLiteStorage(path or ":memory:", pool_size=pool_size, timeout=pool_timeout)

    if database_url.startswith(("postgresql://", "postgres://")):
        return PostgreSQLStorage(database_url, pool_size=pool_size)

    raise ValueError(f"Unsupported database URL: {database_url}")
