# Local_Records_DB.py
# Description: DB Library for locally captured tension, stock take and finish earlier records.
#
"""
Local_Records_DB.py
-------------------

SQLite-backed durable store for the records captured on this client while it
may be offline. Every record row carries a sync envelope (`remote_id`,
`sync_status`, `last_synced_at`, `created_at`, `updated_at`, `deleted_at`)
that the sync service uses to reconcile the local copy with the server.

This library provides:
- Schema management with versioning (`db_schema_version`).
- Thread-safe database connections using `threading.local`.
- Generic CRUD over the three record collections, driven by `CollectionSpec`.
- Soft deletion for tension and stock take records; finish earlier records are hard deleted.
- A transaction context manager for explicit transaction handling.
- The sync bookkeeping tables (`sync_settings`, `sync_history`, `sync_conflicts`),
  which are accessed through `Sync_State_DB.py`.

Mutating record operations return a `StoreResult` instead of raising, so a
failing row never aborts a sync batch. Read operations raise
`LocalRecordsDBError` on SQLite failures.
"""
# Imports
import json
import logging
import math
import os
import random
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Union
#
# Third-Party Libraries
from pydantic import BaseModel
#
# Local Imports
from .Record_Collections import COLLECTIONS, CollectionSpec, get_collection
from ..Constants import ALL_SYNC_STATUSES, DEFAULT_LOCAL_PAGE_SIZE, SYNC_STATUS_CONFLICT, SYNC_STATUS_PENDING
from ..Utils.Timestamps import utc_now_iso
#
########################################################################################################################
#
# Functions:

logger = logging.getLogger(__name__)


# --- Custom Exceptions ---
class LocalRecordsDBError(Exception):
    """Base exception for LocalRecordsDB related errors."""
    pass


class SchemaError(LocalRecordsDBError):
    """Exception for schema version mismatches or setup failures."""
    pass


class InputError(ValueError):
    """Custom exception for input validation errors."""
    pass


class ConflictError(LocalRecordsDBError):
    """
    Indicates a unique constraint violation (e.g. a duplicate stock take `session_id`).

    Attributes:
        entity (Optional[str]): The table involved in the conflict (e.g., "stock_taking_records").
        entity_id (Any): The ID or unique value involved.
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


class StoreResult(BaseModel):
    """Outcome of a mutating store operation."""
    success: bool
    id: Optional[int] = None
    error: Optional[str] = None


# --- Database Class ---
class LocalRecordsDB:
    """
    Manages the local SQLite database holding captured records and sync state.

    Record operations take a collection key (`tension`, `stocktake`,
    `finishearlier`) and resolve it to a `CollectionSpec`, which names the
    table, its JSON columns and its delete semantics.
    """
    _CURRENT_SCHEMA_VERSION = 1
    _SCHEMA_NAME = "mfg_capture_local_schema"

    _FULL_SCHEMA_SQL_V1 = """
/*───────────────────────────────────────────────────────────────
  Local records schema, Version 1
───────────────────────────────────────────────────────────────*/
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS db_schema_version(
  schema_name TEXT PRIMARY KEY NOT NULL,
  version     INTEGER NOT NULL
);
INSERT OR IGNORE INTO db_schema_version(schema_name, version) VALUES('mfg_capture_local_schema', 0);

/*──────────────────────── Tension records ───────────────────────*/
CREATE TABLE IF NOT EXISTS tension_records(
  id               INTEGER PRIMARY KEY AUTOINCREMENT,
  record_type      TEXT NOT NULL CHECK(record_type IN ('twisting', 'weaving')),
  csv_data         TEXT NOT NULL DEFAULT '',
  form_data        TEXT NOT NULL DEFAULT '{}',
  measurement_data TEXT NOT NULL DEFAULT '{}',
  problems         TEXT NOT NULL DEFAULT '[]',
  metadata         TEXT NOT NULL DEFAULT '{}',
  user_id          INTEGER,
  remote_id        INTEGER,
  sync_status      TEXT NOT NULL DEFAULT 'pending' CHECK(sync_status IN ('synced', 'pending', 'conflict')),
  last_synced_at   DATETIME,
  created_at       DATETIME NOT NULL,
  updated_at       DATETIME NOT NULL,
  deleted_at       DATETIME
);
CREATE INDEX IF NOT EXISTS idx_tension_records_sync_status ON tension_records(sync_status);
CREATE INDEX IF NOT EXISTS idx_tension_records_remote_id ON tension_records(remote_id);
CREATE INDEX IF NOT EXISTS idx_tension_records_created_at ON tension_records(created_at);

/*──────────────────────── Stock take records ────────────────────*/
CREATE TABLE IF NOT EXISTS stock_taking_records(
  id                 INTEGER PRIMARY KEY AUTOINCREMENT,
  session_id         TEXT NOT NULL UNIQUE,
  indv_batch_data    TEXT NOT NULL DEFAULT '[]',
  recorded_batches   TEXT NOT NULL DEFAULT '[]',
  metadata           TEXT NOT NULL DEFAULT '{}',
  stock_take_summary TEXT NOT NULL DEFAULT '[]',
  user_id            INTEGER,
  remote_id          INTEGER,
  sync_status        TEXT NOT NULL DEFAULT 'pending' CHECK(sync_status IN ('synced', 'pending', 'conflict')),
  last_synced_at     DATETIME,
  created_at         DATETIME NOT NULL,
  updated_at         DATETIME NOT NULL,
  deleted_at         DATETIME
);
CREATE INDEX IF NOT EXISTS idx_stock_taking_records_sync_status ON stock_taking_records(sync_status);
CREATE INDEX IF NOT EXISTS idx_stock_taking_records_remote_id ON stock_taking_records(remote_id);
CREATE INDEX IF NOT EXISTS idx_stock_taking_records_created_at ON stock_taking_records(created_at);

/*──────────────────────── Finish earlier records ────────────────*/
CREATE TABLE IF NOT EXISTS finish_earlier_records(
  id             INTEGER PRIMARY KEY AUTOINCREMENT,
  metadata       TEXT NOT NULL DEFAULT '{}',
  entries        TEXT NOT NULL DEFAULT '[]',
  remote_id      INTEGER,
  sync_status    TEXT NOT NULL DEFAULT 'pending' CHECK(sync_status IN ('synced', 'pending', 'conflict')),
  last_synced_at DATETIME,
  created_at     DATETIME NOT NULL,
  updated_at     DATETIME NOT NULL,
  deleted_at     DATETIME
);
CREATE INDEX IF NOT EXISTS idx_finish_earlier_records_sync_status ON finish_earlier_records(sync_status);
CREATE INDEX IF NOT EXISTS idx_finish_earlier_records_remote_id ON finish_earlier_records(remote_id);
CREATE INDEX IF NOT EXISTS idx_finish_earlier_records_created_at ON finish_earlier_records(created_at);

/*──────────────────────── Sync bookkeeping ──────────────────────*/
CREATE TABLE IF NOT EXISTS sync_settings(
  id                          INTEGER PRIMARY KEY CHECK(id = 1),
  server_url                  TEXT NOT NULL DEFAULT '',
  auth_token                  TEXT NOT NULL DEFAULT '',
  auto_sync                   BOOLEAN NOT NULL DEFAULT 0,
  sync_interval_minutes       INTEGER NOT NULL DEFAULT 30,
  sync_on_startup             BOOLEAN NOT NULL DEFAULT 1,
  sync_tension_records        BOOLEAN NOT NULL DEFAULT 1,
  sync_stock_take_records     BOOLEAN NOT NULL DEFAULT 1,
  sync_finish_earlier_records BOOLEAN NOT NULL DEFAULT 1,
  updated_at                  DATETIME NOT NULL
);

CREATE TABLE IF NOT EXISTS sync_history(
  id           INTEGER PRIMARY KEY AUTOINCREMENT,
  sync_type    TEXT NOT NULL,
  status       TEXT NOT NULL CHECK(status IN ('success', 'partial', 'failed')),
  uploaded     INTEGER NOT NULL DEFAULT 0,
  downloaded   INTEGER NOT NULL DEFAULT 0,
  conflicts    INTEGER NOT NULL DEFAULT 0,
  errors       TEXT NOT NULL DEFAULT '[]',
  started_at   DATETIME NOT NULL,
  completed_at DATETIME NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_sync_history_completed_at ON sync_history(completed_at);

CREATE TABLE IF NOT EXISTS sync_conflicts(
  id          TEXT PRIMARY KEY,
  table_name  TEXT NOT NULL,
  record_id   INTEGER NOT NULL,
  local_data  TEXT NOT NULL,
  remote_data TEXT NOT NULL,
  created_at  DATETIME NOT NULL
);

UPDATE db_schema_version
   SET version = 1
 WHERE schema_name = 'mfg_capture_local_schema'
   AND version < 1;
"""

    def __init__(self, db_path: Union[str, Path]):
        """
        Initializes the LocalRecordsDB instance and ensures the schema exists.

        Args:
            db_path: Path to the SQLite database file or ":memory:".

        Raises:
            LocalRecordsDBError: If the directory cannot be created or schema setup fails.
            SchemaError: If the on-disk schema version is not supported.
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
                raise LocalRecordsDBError(f"Failed to create database directory {self.db_path.parent}: {e}")

        logger.info(f"Initializing LocalRecordsDB for path: {self.db_path_str}")
        self._local = threading.local()
        try:
            self._initialize_schema()
            logger.debug(f"LocalRecordsDB initialization completed successfully for {self.db_path_str}")
        except (LocalRecordsDBError, sqlite3.Error) as e:
            logger.critical(f"FATAL: DB Initialization failed for {self.db_path_str}: {e}", exc_info=True)
            self.close_connection()
            raise LocalRecordsDBError(f"Database initialization failed: {e}") from e

    # --- Connection Management ---
    def _get_thread_connection(self) -> sqlite3.Connection:
        """
        Retrieves or creates the thread-local SQLite connection.

        Enables WAL mode for file-based databases and sets PRAGMA foreign_keys=ON.
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
                conn = sqlite3.connect(self.db_path_str, check_same_thread=False, timeout=15)
                conn.row_factory = sqlite3.Row
                if not self.is_memory_db:
                    conn.execute("PRAGMA journal_mode=WAL;")
                conn.execute("PRAGMA foreign_keys = ON;")
                self._local.conn = conn
                logger.debug(f"Opened SQLite connection to {self.db_path_str} for thread {threading.get_ident()}")
            except sqlite3.Error as e:
                logger.error(f"Failed to connect to database {self.db_path_str}: {e}", exc_info=True)
                self._local.conn = None
                raise LocalRecordsDBError(f"Failed to connect to database '{self.db_path_str}': {e}") from e
        return self._local.conn

    def get_connection(self) -> sqlite3.Connection:
        return self._get_thread_connection()

    def close_connection(self):
        """
        Closes the current thread's connection, checkpointing the WAL file first
        for file-based databases.
        """
        conn = getattr(self._local, 'conn', None)
        if conn is None:
            return
        try:
            if not self.is_memory_db:
                if conn.in_transaction:
                    logger.warning(f"Connection to {self.db_path_str} closed mid-transaction. Rolling back.")
                    conn.rollback()
                mode_row = conn.execute("PRAGMA journal_mode;").fetchone()
                if mode_row and mode_row[0].lower() == 'wal':
                    conn.execute("PRAGMA wal_checkpoint(TRUNCATE);")
            conn.close()
            logger.debug(f"Closed connection for thread {threading.get_ident()} to {self.db_path_str}.")
        except sqlite3.Error as e:
            logger.warning(f"Error during SQLite connection close/checkpoint for {self.db_path_str}: {e}")
        finally:
            self._local.conn = None

    # --- Query Execution ---
    def execute_query(self, query: str, params: Optional[Union[tuple, Dict[str, Any]]] = None, *,
                      script: bool = False) -> sqlite3.Cursor:
        """
        Executes a single SQL statement (or a script when `script` is True).

        Writes are expected to run inside `with db.transaction():`, which owns
        the commit.

        Raises:
            ConflictError: On a "unique constraint failed" IntegrityError.
            LocalRecordsDBError: For any other SQLite error.
        """
        conn = self.get_connection()
        try:
            cursor = conn.cursor()
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(f"Executing SQL (script={script}): {query[:300]}... Params: {str(params)[:200]}...")
            if script:
                cursor.executescript(query)
            else:
                cursor.execute(query, params or ())
            return cursor
        except sqlite3.IntegrityError as e:
            logger.warning(f"Integrity constraint violation: {query[:300]}... Error: {e}")
            if "unique constraint failed" in str(e).lower():
                raise ConflictError(message=f"Unique constraint violation: {e}") from e
            raise LocalRecordsDBError(f"Database constraint violation: {e}") from e
        except sqlite3.Error as e:
            logger.error(f"Query execution failed: {query[:300]}... Error: {e}", exc_info=True)
            raise LocalRecordsDBError(f"Query execution failed: {e}") from e

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
            cursor = conn.execute("SELECT version FROM db_schema_version WHERE schema_name = ? LIMIT 1",
                                  (self._SCHEMA_NAME,))
            result = cursor.fetchone()
            return result['version'] if result else 0
        except sqlite3.Error as e:
            if "no such table" in str(e).lower():
                return 0
            raise SchemaError(f"Could not determine schema version for '{self._SCHEMA_NAME}': {e}") from e

    def _apply_schema_v1(self, conn: sqlite3.Connection):
        logger.info(f"Applying schema Version {self._CURRENT_SCHEMA_VERSION} for '{self._SCHEMA_NAME}' "
                    f"to DB: {self.db_path_str}...")
        try:
            conn.executescript(self._FULL_SCHEMA_SQL_V1)
        except sqlite3.Error as e:
            raise SchemaError(f"DB schema V1 setup failed for '{self._SCHEMA_NAME}': {e}") from e
        final_version = self._get_db_version(conn)
        if final_version != self._CURRENT_SCHEMA_VERSION:
            raise SchemaError(f"Schema version update check failed. Expected {self._CURRENT_SCHEMA_VERSION}, "
                              f"got: {final_version}")

    def _initialize_schema(self):
        """
        Creates the schema on a fresh database and seeds the settings singleton.

        There are no migrations: a database at an older or newer version than
        `_CURRENT_SCHEMA_VERSION` is rejected with `SchemaError`.
        """
        conn = self.get_connection()
        current_db_version = self._get_db_version(conn)
        target_version = self._CURRENT_SCHEMA_VERSION
        logger.info(f"Checking DB schema '{self._SCHEMA_NAME}'. Current version: {current_db_version}. "
                    f"Code supports: {target_version}")
        if current_db_version > target_version:
            raise SchemaError(f"Database schema '{self._SCHEMA_NAME}' version ({current_db_version}) is newer than "
                              f"supported by code ({target_version}).")
        if current_db_version == 0:
            self._apply_schema_v1(conn)
        elif current_db_version < target_version:
            raise SchemaError(f"Migration path undefined for '{self._SCHEMA_NAME}' from version "
                              f"{current_db_version} to {target_version}.")
        with self.transaction() as tx_conn:
            tx_conn.execute("INSERT OR IGNORE INTO sync_settings (id, updated_at) VALUES (1, ?)",
                            (self._get_current_utc_timestamp_iso(),))

    # --- Internal Helpers ---
    def _get_current_utc_timestamp_iso(self) -> str:
        return utc_now_iso()

    @staticmethod
    def _generate_session_id() -> str:
        """Six random digits, used for stock take sessions created without one."""
        return f"{random.randint(0, 999999):06d}"

    @staticmethod
    def _ensure_json_string(data: Optional[Union[List, Dict, Set, str]], default: str) -> str:
        """
        Serializes a list, dict or set to JSON; strings pass through unchanged.
        None becomes `default`.
        """
        if data is None:
            return default
        if isinstance(data, str):
            return data
        if isinstance(data, set):
            data = list(data)
        return json.dumps(data)

    def _deserialize_row_fields(self, row: Optional[sqlite3.Row], spec: CollectionSpec) -> Optional[Dict[str, Any]]:
        """
        Converts a row to a dict with the collection's JSON columns decoded.

        Undecodable JSON is replaced with the column's default and logged.
        """
        if not row:
            return None
        item = dict(row)
        for field_name, default in spec.json_fields.items():
            raw = item.get(field_name)
            if raw is None:
                item[field_name] = json.loads(default)
                continue
            if isinstance(raw, str):
                try:
                    item[field_name] = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning(f"Failed to decode JSON for field '{field_name}' in {spec.table} "
                                   f"row {item.get('id')}. Value: '{raw[:100]}...'")
                    item[field_name] = json.loads(default)
        return item

    @staticmethod
    def _resolve(collection: str) -> CollectionSpec:
        try:
            return get_collection(collection)
        except KeyError as e:
            raise InputError(e.args[0]) from None

    def _live_clause(self, spec: CollectionSpec) -> str:
        return "deleted_at IS NULL" if spec.soft_delete else "1 = 1"

    # --- Record Reads ---
    def list_records(self, collection: str, filters: Optional[Dict[str, Any]] = None,
                     page: int = 1, per_page: int = DEFAULT_LOCAL_PAGE_SIZE) -> Dict[str, Any]:
        """
        Lists non-deleted records newest first (`created_at DESC`, ties by `id DESC`).

        Args:
            collection: Collection key.
            filters: Optional equality filters on the collection's filterable columns.
            page: 1-based page number.
            per_page: Page size, must be positive.

        Returns:
            A dict with `data`, `current_page`, `last_page`, `per_page` and `total`.

        Raises:
            InputError: For an unknown collection, a bad page/per_page, or an unsupported filter.
            LocalRecordsDBError: On database failure.
        """
        spec = self._resolve(collection)
        if not isinstance(page, int) or page < 1:
            raise InputError(f"page must be a positive integer, got {page!r}")
        if not isinstance(per_page, int) or per_page < 1:
            raise InputError(f"per_page must be a positive integer, got {per_page!r}")

        where = [self._live_clause(spec)]
        params: List[Any] = []
        for column, value in (filters or {}).items():
            if value is None:
                continue
            if column not in spec.filterable_fields:
                raise InputError(f"Unsupported filter '{column}' for {spec.label}s")
            where.append(f"{column} = ?")
            params.append(value)
        where_sql = " AND ".join(where)

        total = self.execute_query(f"SELECT COUNT(*) FROM {spec.table} WHERE {where_sql}",
                                   tuple(params)).fetchone()[0]
        offset = (page - 1) * per_page
        rows = self.execute_query(
            f"SELECT * FROM {spec.table} WHERE {where_sql} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            tuple(params) + (per_page, offset)
        ).fetchall()
        return {
            'data': [self._deserialize_row_fields(row, spec) for row in rows],
            'current_page': page,
            'last_page': max(1, math.ceil(total / per_page)),
            'per_page': per_page,
            'total': total,
        }

    def get_record_by_id(self, collection: str, local_id: int) -> Optional[Dict[str, Any]]:
        spec = self._resolve(collection)
        row = self.execute_query(
            f"SELECT * FROM {spec.table} WHERE id = ? AND {self._live_clause(spec)}", (local_id,)
        ).fetchone()
        return self._deserialize_row_fields(row, spec)

    def get_record_by_remote_id(self, collection: str, remote_id: int, *,
                                include_deleted: bool = False) -> Optional[Dict[str, Any]]:
        """
        Finds the local row linked to a server id.

        Soft-deleted rows are excluded unless `include_deleted` is set; the
        pull phase sets it so a delete still waiting to be pushed is never
        shadowed by a fresh mirror of the same server record.
        """
        spec = self._resolve(collection)
        clause = "1 = 1" if include_deleted else self._live_clause(spec)
        row = self.execute_query(
            f"SELECT * FROM {spec.table} WHERE remote_id = ? AND {clause} ORDER BY id LIMIT 1", (remote_id,)
        ).fetchone()
        return self._deserialize_row_fields(row, spec)

    def list_pending_records(self, collection: str) -> List[Dict[str, Any]]:
        """Every `pending` row, soft-deleted ones included, in id order."""
        spec = self._resolve(collection)
        rows = self.execute_query(
            f"SELECT * FROM {spec.table} WHERE sync_status = ? ORDER BY id", (SYNC_STATUS_PENDING,)
        ).fetchall()
        return [self._deserialize_row_fields(row, spec) for row in rows]

    def get_stock_take_by_session_id(self, session_id: str) -> Optional[Dict[str, Any]]:
        spec = COLLECTIONS['stocktake']
        row = self.execute_query(
            f"SELECT * FROM {spec.table} WHERE session_id = ? AND deleted_at IS NULL", (session_id,)
        ).fetchone()
        return self._deserialize_row_fields(row, spec)

    def get_finish_earlier_by_production_order(self, production_order: str) -> Optional[Dict[str, Any]]:
        spec = COLLECTIONS['finishearlier']
        row = self.execute_query(
            f"SELECT * FROM {spec.table} WHERE json_extract(metadata, '$.production_order') = ? "
            f"ORDER BY created_at DESC, id DESC LIMIT 1",
            (production_order,)
        ).fetchone()
        return self._deserialize_row_fields(row, spec)

    # --- Record Mutations ---
    def create_record(self, collection: str, record_data: Dict[str, Any]) -> StoreResult:
        """
        Inserts a record. `sync_status` defaults to `pending`; `remote_id` and
        `last_synced_at` are taken from `record_data` when present (pull mirrors).

        Returns:
            StoreResult with the new local id, or the failure reason.
        """
        try:
            spec = self._resolve(collection)
        except InputError as e:
            return StoreResult(success=False, error=str(e))

        now = self._get_current_utc_timestamp_iso()
        values: Dict[str, Any] = {}
        for column, default in spec.scalar_fields.items():
            value = record_data.get(column)
            values[column] = default if value is None else value
        if 'session_id' in spec.scalar_fields and not values.get('session_id'):
            values['session_id'] = self._generate_session_id()
        for column, default in spec.json_fields.items():
            values[column] = self._ensure_json_string(record_data.get(column), default)
        values['remote_id'] = record_data.get('remote_id')
        values['sync_status'] = record_data.get('sync_status') or SYNC_STATUS_PENDING
        values['last_synced_at'] = record_data.get('last_synced_at')
        values['created_at'] = now
        values['updated_at'] = now

        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        query = f"INSERT INTO {spec.table} ({columns}) VALUES ({placeholders})"
        try:
            with self.transaction():
                cursor = self.execute_query(query, tuple(values.values()))
                new_id = cursor.lastrowid
            logger.info(f"Created {spec.label} {new_id} (sync_status={values['sync_status']}).")
            return StoreResult(success=True, id=new_id)
        except ConflictError as e:
            e.entity = spec.table
            logger.warning(f"Failed to create {spec.label}: {e}")
            return StoreResult(success=False, error=str(e))
        except LocalRecordsDBError as e:
            logger.error(f"Failed to create {spec.label}: {e}")
            return StoreResult(success=False, error=str(e))

    def update_record(self, collection: str, local_id: int, update_data: Dict[str, Any]) -> StoreResult:
        """
        Merges the provided keys into a record and re-stamps `updated_at`.

        Only content columns plus `remote_id`, `sync_status` and
        `last_synced_at` are writable. Unknown keys are ignored with a warning;
        keys absent from `update_data` are left untouched. Soft-deleted rows
        can still be updated so their delete can be marked as synced.
        """
        try:
            spec = self._resolve(collection)
        except InputError as e:
            return StoreResult(success=False, error=str(e))

        writable = set(spec.content_fields) | {'remote_id', 'sync_status', 'last_synced_at'}
        ignored = sorted(key for key in update_data if key not in writable)
        if ignored:
            logger.warning(f"Ignoring non-updatable fields for {spec.label} {local_id}: {ignored}")

        sync_status = update_data.get('sync_status')
        if sync_status is not None and sync_status not in ALL_SYNC_STATUSES:
            return StoreResult(success=False, id=local_id, error=f"Invalid sync_status '{sync_status}'")

        assignments: Dict[str, Any] = {}
        for key, value in update_data.items():
            if key not in writable:
                continue
            if key in spec.json_fields:
                assignments[key] = self._ensure_json_string(value, spec.json_fields[key])
            else:
                assignments[key] = value
        assignments['updated_at'] = self._get_current_utc_timestamp_iso()

        set_clause = ", ".join(f"{column} = ?" for column in assignments)
        query = f"UPDATE {spec.table} SET {set_clause} WHERE id = ?"
        try:
            with self.transaction():
                cursor = self.execute_query(query, tuple(assignments.values()) + (local_id,))
                if cursor.rowcount == 0:
                    return StoreResult(success=False, id=local_id, error=f"{spec.label} {local_id} not found")
            logger.debug(f"Updated {spec.label} {local_id}: {sorted(assignments)}")
            return StoreResult(success=True, id=local_id)
        except LocalRecordsDBError as e:
            logger.error(f"Failed to update {spec.label} {local_id}: {e}")
            return StoreResult(success=False, id=local_id, error=str(e))

    def delete_record(self, collection: str, local_id: int) -> StoreResult:
        """
        Deletes a record. Soft-deleting collections stamp `deleted_at` and mark
        the row `pending` so the deletion is pushed; finish earlier rows are
        removed outright, together with any conflict queued against them.
        """
        try:
            spec = self._resolve(collection)
        except InputError as e:
            return StoreResult(success=False, error=str(e))

        now = self._get_current_utc_timestamp_iso()
        if spec.soft_delete:
            query = (f"UPDATE {spec.table} SET deleted_at = ?, sync_status = ?, updated_at = ? "
                     f"WHERE id = ? AND deleted_at IS NULL")
            params: tuple = (now, SYNC_STATUS_PENDING, now, local_id)
        else:
            query = f"DELETE FROM {spec.table} WHERE id = ?"
            params = (local_id,)
        try:
            with self.transaction():
                cursor = self.execute_query(query, params)
                if cursor.rowcount == 0:
                    return StoreResult(success=False, id=local_id, error=f"{spec.label} {local_id} not found")
                if not spec.soft_delete:
                    self.execute_query("DELETE FROM sync_conflicts WHERE table_name = ? AND record_id = ?",
                                       (spec.table, local_id))
            logger.info(f"{'Soft-deleted' if spec.soft_delete else 'Deleted'} {spec.label} {local_id}.")
            return StoreResult(success=True, id=local_id)
        except LocalRecordsDBError as e:
            logger.error(f"Failed to delete {spec.label} {local_id}: {e}")
            return StoreResult(success=False, id=local_id, error=str(e))

    # --- Status & Info ---
    def _count_by_status(self, sync_status: str) -> Dict[str, int]:
        counts = {}
        for key, spec in COLLECTIONS.items():
            counts[key] = self.execute_query(
                f"SELECT COUNT(*) FROM {spec.table} WHERE sync_status = ?", (sync_status,)
            ).fetchone()[0]
        return counts

    def get_pending_counts(self) -> Dict[str, int]:
        """Pending rows per collection, soft-deleted rows included."""
        return self._count_by_status(SYNC_STATUS_PENDING)

    def get_conflict_status_counts(self) -> Dict[str, int]:
        return self._count_by_status(SYNC_STATUS_CONFLICT)

    def get_database_info(self) -> Dict[str, Any]:
        """Path, file size, non-deleted row counts per collection and last modification time."""
        counts = {}
        for key, spec in COLLECTIONS.items():
            counts[key] = self.execute_query(
                f"SELECT COUNT(*) FROM {spec.table} WHERE {self._live_clause(spec)}"
            ).fetchone()[0]

        size_bytes = 0
        last_modified = None
        if not self.is_memory_db and self.db_path.exists():
            stat = os.stat(self.db_path)
            size_bytes = stat.st_size
            last_modified = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(
                timespec='milliseconds').replace('+00:00', 'Z')
        return {
            'path': self.db_path_str,
            'size_bytes': size_bytes,
            'record_counts': counts,
            'last_modified': last_modified,
        }


class TransactionContextManager:
    """Owns BEGIN/COMMIT/ROLLBACK for the outermost `with db.transaction():` block only."""

    def __init__(self, db_instance: LocalRecordsDB):
        self.db = db_instance
        self.conn: Optional[sqlite3.Connection] = None
        self.is_outermost_transaction = False

    def __enter__(self) -> sqlite3.Connection:
        self.conn = self.db.get_connection()
        if not self.conn.in_transaction:
            self.conn.execute("BEGIN")
            self.is_outermost_transaction = True
        return self.conn

    def __exit__(self, exc_type, exc_val, exc_tb):
        if not self.is_outermost_transaction:
            return False
        if exc_type:
            logger.error(f"Transaction failed, rolling back on thread {threading.get_ident()}: "
                         f"{exc_type.__name__} - {exc_val}")
            try:
                self.conn.rollback()
            except sqlite3.Error as rb_err:
                logger.critical(f"Rollback FAILED on thread {threading.get_ident()}: {rb_err}", exc_info=True)
            return False
        try:
            self.conn.commit()
        except sqlite3.Error as commit_err:
            logger.error(f"Commit FAILED on thread {threading.get_ident()}, attempting rollback: {commit_err}")
            try:
                self.conn.rollback()
            except sqlite3.Error as rb_err:
                logger.critical(f"Rollback after failed commit also FAILED: {rb_err}", exc_info=True)
            raise LocalRecordsDBError(f"Commit failed: {commit_err}") from commit_err
        return False

#
# End of Local_Records_DB.py
########################################################################################################################
