# POS_DB.py
# Description: SQLite library for the POS local store: catalog/bill rows plus the sync engine's own tables.
#
"""
POS_DB.py
---------

A SQLite-backed local store for the point-of-sale device.

This library provides:
- Schema management with versioning (`db_schema_version`).
- Thread-local SQLite connections (WAL mode for file databases).
- A transaction context manager that commits on success and rolls back on error.
- A narrow, generic row API (get/insert/update/upsert/delete/select/count) over the
  entity tables (`categories`, `items`, `item_categories`, `bills`).
- The durable tables owned by the sync engine: `sync_queue`, `sync_history`
  and the scalar key/value table `sync_state`.
- Custom exceptions for database errors, schema issues, input validation and
  unique-constraint conflicts.

The sync engine never issues SQL for the entity tables itself; it goes through the
row API so that the schema stays in one place.
"""
# Imports
import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
#
# Third-Party Libraries
from loguru import logger
#
# Local Imports
#
########################################################################################################################
#
# Functions:


# --- Custom Exceptions ---
class POSDatabaseError(Exception):
    """Base exception for POSDatabase related errors."""
    pass


class SchemaError(POSDatabaseError):
    """Exception for schema version mismatches or migration failures."""
    pass


class InputError(ValueError):
    """Custom exception for input validation errors."""
    pass


class ConflictError(POSDatabaseError):
    """
    Indicates a unique constraint violation.

    Attributes:
        entity (Optional[str]): The table involved in the conflict.
        entity_id (Any): The identifier of the row involved.
    """

    def __init__(self, message="Conflict detected.", entity: Optional[str] = None, entity_id: Any = None):
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id

    def __str__(self):
        base = super().__str__()
        details = []
        if self.entity:
            details.append(f"Entity: {self.entity}")
        if self.entity_id:
            details.append(f"ID: {self.entity_id}")
        return f"{base} ({', '.join(details)})" if details else base


# --- Database Class ---
class POSDatabase:
    """
    Manages SQLite connections and row operations for the POS local store.

    Attributes:
        db_path (Path): The absolute path to the SQLite database file, or Path(":memory:").
        is_memory_db (bool): True if the database is in-memory.
        db_path_str (str): String representation of the database path for SQLite connection.
    """
    _CURRENT_SCHEMA_VERSION = 1
    _SCHEMA_NAME = "pos_sync_schema"

    # Tables reachable through the generic row API, mapped to their primary key column.
    ROW_TABLES = {
        "categories": "id",
        "items": "id",
        "item_categories": None,
        "bills": "id",
    }
    _JSON_FIELDS = {"bills": ["items"]}

    _FULL_SCHEMA_SQL_V1 = """
/*───────────────────────────────────────────────────────────────
  POS local store  –  Version 1
───────────────────────────────────────────────────────────────*/
CREATE TABLE IF NOT EXISTS db_schema_version(
  schema_name TEXT PRIMARY KEY NOT NULL,
  version     INTEGER NOT NULL
);
INSERT OR IGNORE INTO db_schema_version(schema_name,version)
VALUES('pos_sync_schema',0);

/*----------------------------------------------------------------
  1. Catalog
----------------------------------------------------------------*/
CREATE TABLE IF NOT EXISTS categories(
  id                TEXT PRIMARY KEY,
  name              TEXT NOT NULL,
  description       TEXT,
  is_active         INTEGER NOT NULL DEFAULT 1,
  sort_order        INTEGER NOT NULL DEFAULT 0,
  vendor_id         TEXT,
  is_synced         INTEGER NOT NULL DEFAULT 0,
  server_updated_at TEXT,
  created_at        TEXT NOT NULL,
  updated_at        TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS items(
  id                TEXT PRIMARY KEY,
  name              TEXT NOT NULL,
  description       TEXT,
  price             REAL NOT NULL DEFAULT 0,
  stock_quantity    INTEGER NOT NULL DEFAULT 0,
  sku               TEXT,
  barcode           TEXT,
  is_active         INTEGER NOT NULL DEFAULT 1,
  sort_order        INTEGER NOT NULL DEFAULT 0,
  vendor_id         TEXT,
  image_url         TEXT,
  is_synced         INTEGER NOT NULL DEFAULT 0,
  server_updated_at TEXT,
  created_at        TEXT NOT NULL,
  updated_at        TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS item_categories(
  item_id     TEXT NOT NULL,
  category_id TEXT NOT NULL,
  created_at  TEXT NOT NULL,
  PRIMARY KEY (item_id, category_id)
);

/*----------------------------------------------------------------
  2. Bills
----------------------------------------------------------------*/
CREATE TABLE IF NOT EXISTS bills(
  id                TEXT PRIMARY KEY,
  bill_number       TEXT,
  items             TEXT NOT NULL DEFAULT '[]',
  subtotal          REAL NOT NULL DEFAULT 0,
  tax_amount        REAL NOT NULL DEFAULT 0,
  discount_amount   REAL NOT NULL DEFAULT 0,
  total_amount      REAL NOT NULL DEFAULT 0,
  payment_method    TEXT,
  customer_name     TEXT,
  customer_phone    TEXT,
  notes             TEXT,
  device_id         TEXT,
  is_synced         INTEGER NOT NULL DEFAULT 0,
  server_updated_at TEXT,
  created_at        TEXT NOT NULL,
  updated_at        TEXT NOT NULL
);

/*----------------------------------------------------------------
  3. Sync engine tables
----------------------------------------------------------------*/
CREATE TABLE IF NOT EXISTS sync_queue(
  id             INTEGER PRIMARY KEY AUTOINCREMENT,
  operation_type TEXT NOT NULL CHECK(operation_type IN ('create','update','delete')),
  entity_type    TEXT NOT NULL CHECK(entity_type IN ('category','item','bill')),
  entity_id      TEXT NOT NULL,
  data           TEXT,
  enqueued_at    TEXT NOT NULL,
  retry_count    INTEGER NOT NULL DEFAULT 0,
  last_error     TEXT,
  synced         INTEGER NOT NULL DEFAULT 0,
  synced_at      TEXT,
  created_at     TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_sync_queue_pending ON sync_queue(entity_type, synced, enqueued_at, id);
CREATE INDEX IF NOT EXISTS idx_sync_queue_entity  ON sync_queue(entity_type, entity_id, synced);

CREATE TABLE IF NOT EXISTS sync_history(
  seq         INTEGER PRIMARY KEY AUTOINCREMENT,
  id          TEXT NOT NULL,
  occurred_at TEXT NOT NULL,
  counts      TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_sync_history_id ON sync_history(id);

CREATE TABLE IF NOT EXISTS sync_state(
  key        TEXT PRIMARY KEY,
  value      TEXT,
  updated_at TEXT NOT NULL
);

/*----------------------------------------------------------------
  Finalise version bump
----------------------------------------------------------------*/
UPDATE db_schema_version
   SET version = 1
 WHERE schema_name = 'pos_sync_schema'
   AND version < 1;
"""

    def __init__(self, db_path: Union[str, Path]):
        """
        Initializes the POSDatabase instance and applies the schema if needed.

        Args:
            db_path: Path to the SQLite database file or ":memory:".

        Raises:
            POSDatabaseError: If the directory cannot be created or initialization fails.
            SchemaError: If the on-disk schema is newer than this code supports.
        """
        if isinstance(db_path, Path):
            self.is_memory_db = False
            self.db_path = db_path.resolve()
        else:
            self.is_memory_db = (db_path == ':memory:')
            self.db_path = Path(db_path).resolve() if not self.is_memory_db else Path(":memory:")
        self.db_path_str = str(self.db_path) if not self.is_memory_db else ':memory:'

        if not self.is_memory_db:
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise POSDatabaseError(f"Failed to create database directory {self.db_path.parent}: {e}")

        logger.info(f"Initializing POSDatabase for path: {self.db_path_str}")
        self._local = threading.local()
        self._column_cache: Dict[str, List[str]] = {}
        try:
            self._initialize_schema()
        except (POSDatabaseError, sqlite3.Error) as e:
            logger.critical(f"FATAL: DB Initialization failed for {self.db_path_str}: {e}")
            self.close_connection()
            if isinstance(e, SchemaError):
                raise
            raise POSDatabaseError(f"Database initialization failed: {e}") from e

    # --- Connection Management ---
    def _get_thread_connection(self) -> sqlite3.Connection:
        """
        Retrieves or creates the thread-local SQLite connection.

        Connections run in autocommit mode; multi-statement atomicity comes from
        `transaction()`, which issues an explicit BEGIN.
        """
        conn = getattr(self._local, 'conn', None)
        if conn:
            try:
                conn.execute("SELECT 1")
            except (sqlite3.ProgrammingError, sqlite3.OperationalError):
                logger.warning(f"Thread-local connection for {self.db_path_str} became unusable. Reopening.")
                conn = None

        if not conn:
            try:
                conn = sqlite3.connect(
                    self.db_path_str,
                    check_same_thread=False,
                    timeout=15,
                    isolation_level=None,
                )
                conn.row_factory = sqlite3.Row
                if not self.is_memory_db:
                    conn.execute("PRAGMA journal_mode=WAL;")
                    conn.execute("PRAGMA synchronous=FULL;")
                self._local.conn = conn
                logger.debug(f"Opened SQLite connection to {self.db_path_str} for thread {threading.get_ident()}")
            except sqlite3.Error as e:
                self._local.conn = None
                raise POSDatabaseError(f"Failed to connect to database '{self.db_path_str}': {e}") from e
        return self._local.conn

    def get_connection(self) -> sqlite3.Connection:
        """Public accessor for the current thread's connection."""
        return self._get_thread_connection()

    def close_connection(self):
        """
        Closes the current thread's connection, rolling back any open transaction
        and checkpointing the WAL file for file databases.
        """
        conn = getattr(self._local, 'conn', None)
        if conn is None:
            return
        try:
            if conn.in_transaction:
                logger.warning(f"Connection to {self.db_path_str} closed with an open transaction. Rolling back.")
                conn.rollback()
            if not self.is_memory_db:
                try:
                    conn.execute("PRAGMA wal_checkpoint(TRUNCATE);")
                except sqlite3.Error as cp_err:
                    logger.warning(f"WAL checkpoint failed for {self.db_path_str}: {cp_err}")
            conn.close()
            logger.debug(f"Closed connection for thread {threading.get_ident()} to {self.db_path_str}.")
        except sqlite3.Error as e:
            logger.warning(f"Error during SQLite connection close for {self.db_path_str}: {e}")
        finally:
            self._local.conn = None

    # --- Query Execution ---
    def execute_query(self, query: str, params: Optional[Union[tuple, Dict[str, Any]]] = None) -> sqlite3.Cursor:
        """
        Executes a single SQL statement.

        Outside of `transaction()` the statement is committed immediately.

        Raises:
            ConflictError: On a unique constraint violation.
            POSDatabaseError: For any other SQLite error.
        """
        conn = self.get_connection()
        try:
            logger.trace(f"Executing SQL: {query[:300]} Params: {str(params)[:200]}")
            return conn.execute(query, params or ())
        except sqlite3.IntegrityError as e:
            if "unique constraint failed" in str(e).lower():
                raise ConflictError(f"Unique constraint violation: {e}") from e
            raise POSDatabaseError(f"Database constraint violation: {e}") from e
        except sqlite3.Error as e:
            logger.error(f"Query execution failed: {query[:300]}... Error: {e}")
            raise POSDatabaseError(f"Query execution failed: {e}") from e

    # --- Transaction Context ---
    def transaction(self) -> 'TransactionContextManager':
        """
        Returns a context manager for database transactions.

        Usage:
            with db.transaction() as conn:
                conn.execute(...)
        """
        return TransactionContextManager(self)

    # --- Schema Initialization ---
    def _get_db_version(self, conn: sqlite3.Connection) -> int:
        try:
            row = conn.execute("SELECT version FROM db_schema_version WHERE schema_name = ? LIMIT 1",
                               (self._SCHEMA_NAME,)).fetchone()
            return row['version'] if row else 0
        except sqlite3.Error as e:
            if "no such table" in str(e).lower():
                return 0
            raise SchemaError(f"Could not determine schema version for '{self._SCHEMA_NAME}': {e}") from e

    def _initialize_schema(self):
        """
        Applies the full schema to a fresh database, or checks the version of an existing one.

        Raises:
            SchemaError: If the database is newer than the code, or the version bump fails.
        """
        conn = self.get_connection()
        current_version = self._get_db_version(conn)
        target_version = self._CURRENT_SCHEMA_VERSION
        logger.debug(f"Checking DB schema '{self._SCHEMA_NAME}'. Current: {current_version}. Code supports: {target_version}")

        if current_version == target_version:
            return
        if current_version > target_version:
            raise SchemaError(
                f"Database schema '{self._SCHEMA_NAME}' version ({current_version}) is newer than supported by code ({target_version}).")

        try:
            conn.executescript(self._FULL_SCHEMA_SQL_V1)
        except sqlite3.Error as e:
            raise SchemaError(f"DB schema V{target_version} setup failed for '{self._SCHEMA_NAME}': {e}") from e

        final_version = self._get_db_version(conn)
        if final_version != target_version:
            raise SchemaError(f"Schema version update check failed. Expected {target_version}, got: {final_version}")
        logger.info(f"Schema '{self._SCHEMA_NAME}' V{target_version} applied to {self.db_path_str}.")

    # --- Internal Helpers ---
    @staticmethod
    def utc_now_iso() -> str:
        """Current UTC timestamp in ISO 8601 format with a 'Z' suffix and microsecond precision."""
        return datetime.now(timezone.utc).isoformat(timespec='microseconds').replace('+00:00', 'Z')

    def _get_table_columns(self, table_name: str) -> List[str]:
        """Returns (and caches) the column names of a row table."""
        if table_name in self._column_cache:
            return self._column_cache[table_name]
        if table_name not in self.ROW_TABLES:
            raise InputError(f"Table '{table_name}' is not accessible through the row API.")
        rows = self.execute_query(f"PRAGMA table_info(`{table_name}`)").fetchall()
        columns = [row[1] for row in rows]
        if not columns:
            raise POSDatabaseError(f"Could not retrieve columns for table: {table_name}")
        self._column_cache[table_name] = columns
        return columns

    def _prepare_values(self, table_name: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Validates column names and converts Python values into SQLite-storable ones."""
        columns = self._get_table_columns(table_name)
        unknown = [key for key in data if key not in columns]
        if unknown:
            raise InputError(f"Unknown column(s) for {table_name}: {', '.join(unknown)}")
        prepared = {}
        for key, value in data.items():
            if isinstance(value, bool):
                value = 1 if value else 0
            elif isinstance(value, (dict, list, set)):
                value = json.dumps(sorted(value) if isinstance(value, set) else value)
            prepared[key] = value
        return prepared

    def _deserialize_row(self, table_name: str, row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
        if row is None:
            return None
        item = dict(row)
        for field in self._JSON_FIELDS.get(table_name, []):
            if isinstance(item.get(field), str):
                try:
                    item[field] = json.loads(item[field])
                except json.JSONDecodeError:
                    logger.warning(f"Failed to decode JSON for field '{field}' in {table_name} row {item.get('id')}")
                    item[field] = None
        return item

    def _primary_key(self, table_name: str) -> str:
        pk = self.ROW_TABLES.get(table_name)
        if pk is None:
            raise InputError(f"Table '{table_name}' has no single-column primary key.")
        return pk

    @staticmethod
    def _where_clause(where: Optional[Dict[str, Any]]) -> tuple:
        if not where:
            return "", []
        clauses, params = [], []
        for col, value in where.items():
            if value is None:
                clauses.append(f"`{col}` IS NULL")
            else:
                clauses.append(f"`{col}` = ?")
                params.append(1 if value is True else 0 if value is False else value)
        return " WHERE " + " AND ".join(clauses), params

    # --- Generic Row API ---
    def get_row(self, table_name: str, row_id: Any) -> Optional[Dict[str, Any]]:
        """Fetches one row by primary key, or None."""
        pk = self._primary_key(table_name)
        self._get_table_columns(table_name)
        row = self.execute_query(f"SELECT * FROM `{table_name}` WHERE `{pk}` = ?", (row_id,)).fetchone()
        return self._deserialize_row(table_name, row)

    def insert_row(self, table_name: str, data: Dict[str, Any]) -> None:
        """
        Inserts a new row.

        Raises:
            ConflictError: If a row with the same key already exists.
        """
        values = self._prepare_values(table_name, data)
        cols = ", ".join(f"`{c}`" for c in values)
        placeholders = ", ".join("?" for _ in values)
        try:
            self.execute_query(f"INSERT INTO `{table_name}` ({cols}) VALUES ({placeholders})", tuple(values.values()))
        except ConflictError as e:
            raise ConflictError(str(e), entity=table_name, entity_id=data.get("id")) from e

    def update_row(self, table_name: str, row_id: Any, data: Dict[str, Any]) -> int:
        """Updates the given columns of one row. Returns the number of rows changed (0 or 1)."""
        if not data:
            return 0
        pk = self._primary_key(table_name)
        values = self._prepare_values(table_name, data)
        set_sql = ", ".join(f"`{c}` = ?" for c in values)
        cursor = self.execute_query(f"UPDATE `{table_name}` SET {set_sql} WHERE `{pk}` = ?",
                                    tuple(values.values()) + (row_id,))
        return cursor.rowcount

    def upsert_row(self, table_name: str, data: Dict[str, Any]) -> None:
        """Inserts a row or overwrites the supplied columns of the existing row with the same key."""
        pk = self._primary_key(table_name)
        if data.get(pk) is None:
            raise InputError(f"Upsert into {table_name} requires '{pk}'.")
        values = self._prepare_values(table_name, data)
        cols = ", ".join(f"`{c}`" for c in values)
        placeholders = ", ".join("?" for _ in values)
        updates = ", ".join(f"`{c}` = excluded.`{c}`" for c in values if c != pk)
        sql = f"INSERT INTO `{table_name}` ({cols}) VALUES ({placeholders})"
        sql += f" ON CONFLICT(`{pk}`) DO UPDATE SET {updates}" if updates else f" ON CONFLICT(`{pk}`) DO NOTHING"
        self.execute_query(sql, tuple(values.values()))

    def delete_row(self, table_name: str, row_id: Any) -> int:
        """Deletes one row by primary key. Returns the number of rows removed."""
        pk = self._primary_key(table_name)
        self._get_table_columns(table_name)
        return self.execute_query(f"DELETE FROM `{table_name}` WHERE `{pk}` = ?", (row_id,)).rowcount

    def delete_rows(self, table_name: str, where: Dict[str, Any]) -> int:
        """Deletes every row matching all `where` equalities. An empty filter is refused."""
        if not where:
            raise InputError("delete_rows requires a non-empty filter.")
        self._prepare_values(table_name, where)
        where_sql, params = self._where_clause(where)
        return self.execute_query(f"DELETE FROM `{table_name}`{where_sql}", tuple(params)).rowcount

    def select_rows(self, table_name: str, where: Optional[Dict[str, Any]] = None,
                    order_by: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Filtered read over a row table.

        Args:
            table_name: One of `ROW_TABLES`.
            where: Column/value equalities, AND-ed together. None values match NULL.
            order_by: A column name, optionally suffixed with " DESC".
            limit: Maximum number of rows.
        """
        columns = self._get_table_columns(table_name)
        if where:
            self._prepare_values(table_name, where)
        where_sql, params = self._where_clause(where)
        sql = f"SELECT * FROM `{table_name}`{where_sql}"
        if order_by:
            col, _, direction = order_by.partition(" ")
            if col not in columns or direction.upper() not in ("", "ASC", "DESC"):
                raise InputError(f"Invalid order_by '{order_by}' for {table_name}")
            sql += f" ORDER BY `{col}` {direction.upper()}".rstrip()
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        rows = self.execute_query(sql, tuple(params)).fetchall()
        return [self._deserialize_row(table_name, row) for row in rows]

    def count_rows(self, table_name: str, where: Optional[Dict[str, Any]] = None) -> int:
        self._get_table_columns(table_name)
        if where:
            self._prepare_values(table_name, where)
        where_sql, params = self._where_clause(where)
        row = self.execute_query(f"SELECT COUNT(*) AS n FROM `{table_name}`{where_sql}", tuple(params)).fetchone()
        return row['n']

    # --- Scalar State ---
    def get_state(self, key: str, default: Optional[str] = None) -> Optional[str]:
        row = self.execute_query("SELECT value FROM sync_state WHERE key = ?", (key,)).fetchone()
        return row['value'] if row else default

    def set_state(self, key: str, value: Optional[str]) -> None:
        self.execute_query(
            "INSERT INTO sync_state(key, value, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at",
            (key, value, self.utc_now_iso()),
        )


class TransactionContextManager:
    """
    Wraps a block in BEGIN/COMMIT, rolling back on any exception.

    Nested use joins the outermost transaction; only the outermost block commits or rolls back.
    """

    def __init__(self, db_instance: POSDatabase):
        self.db = db_instance
        self.conn: Optional[sqlite3.Connection] = None
        self.is_outermost_transaction = False

    def __enter__(self) -> sqlite3.Connection:
        self.conn = self.db.get_connection()
        if not self.conn.in_transaction:
            try:
                self.conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise POSDatabaseError(f"Could not begin transaction: {e}") from e
            self.is_outermost_transaction = True
        return self.conn

    def __exit__(self, exc_type, exc_val, exc_tb):
        if not self.is_outermost_transaction:
            return False

        if exc_type:
            logger.error(f"Transaction failed, rolling back: {exc_type.__name__} - {exc_val}")
            try:
                self.conn.rollback()
            except sqlite3.Error as rb_err:
                logger.critical(f"Rollback FAILED on thread {threading.get_ident()}: {rb_err}")
            return False

        try:
            self.conn.commit()
        except sqlite3.Error as commit_err:
            logger.error(f"Commit FAILED, attempting rollback: {commit_err}")
            try:
                self.conn.rollback()
            except sqlite3.Error as rb_err:
                logger.critical(f"Rollback after failed commit also FAILED: {rb_err}")
            raise POSDatabaseError(f"Commit failed: {commit_err}") from commit_err
        return False

#
# End of POS_DB.py
#######################################################################################################################
