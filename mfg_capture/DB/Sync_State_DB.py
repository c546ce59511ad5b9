# Sync_State_DB.py
# Description: Sync settings, sync history and conflict queue, stored alongside the local records.
#
# Imports
import json
import logging
from typing import Any, Dict, List, Optional
#
# Third-Party Libraries
from pydantic import BaseModel, Field, ValidationError
#
# Local Imports
from .Local_Records_DB import LocalRecordsDB, LocalRecordsDBError, StoreResult
from ..Constants import (
    DEFAULT_HISTORY_LIMIT,
    DEFAULT_SYNC_INTERVAL_MINUTES,
    HISTORY_STATUS_FAILED,
    HISTORY_STATUS_PARTIAL,
    HISTORY_STATUS_SUCCESS,
    PARTIAL_ERROR_THRESHOLD,
)
from ..Utils.Timestamps import utc_now_iso
#
########################################################################################################################
#
# Functions:

logger = logging.getLogger(__name__)


# --- Models ---
class SyncSettings(BaseModel):
    server_url: str = ""
    auth_token: str = ""
    auto_sync: bool = False
    sync_interval_minutes: int = Field(default=DEFAULT_SYNC_INTERVAL_MINUTES, gt=0)
    sync_on_startup: bool = True
    sync_tension_records: bool = True
    sync_stock_take_records: bool = True
    sync_finish_earlier_records: bool = True
    updated_at: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.server_url.strip() and self.auth_token.strip())


class SyncHistoryEntry(BaseModel):
    id: Optional[int] = None
    sync_type: str
    status: str
    uploaded: int = 0
    downloaded: int = 0
    conflicts: int = 0
    errors: List[str] = Field(default_factory=list)
    started_at: str
    completed_at: str


class SyncConflict(BaseModel):
    id: str
    table_name: str
    record_id: int
    local_data: Dict[str, Any]
    remote_data: Dict[str, Any]
    created_at: str


def history_status_for(error_count: int) -> str:
    """success with no errors, partial below the threshold, failed otherwise."""
    if error_count == 0:
        return HISTORY_STATUS_SUCCESS
    if error_count < PARTIAL_ERROR_THRESHOLD:
        return HISTORY_STATUS_PARTIAL
    return HISTORY_STATUS_FAILED


# --- Settings ---
class SyncSettingsStore:
    """The persisted sync settings singleton (row id = 1)."""

    _EDITABLE_FIELDS = tuple(name for name in SyncSettings.model_fields if name != 'updated_at')

    def __init__(self, db: LocalRecordsDB):
        self.db = db

    def get_settings(self) -> SyncSettings:
        row = self.db.execute_query("SELECT * FROM sync_settings WHERE id = 1").fetchone()
        if row is None:
            return SyncSettings()
        data = dict(row)
        data.pop('id', None)
        return SyncSettings(**data)

    def update_settings(self, changes: Dict[str, Any]) -> StoreResult:
        """
        Validates and persists a partial settings change immediately.

        Unknown keys are rejected so a typo never silently disables syncing.
        """
        unknown = sorted(key for key in changes if key not in self._EDITABLE_FIELDS)
        if unknown:
            return StoreResult(success=False, error=f"Unknown sync settings: {', '.join(unknown)}")
        current = self.get_settings()
        try:
            merged = SyncSettings(**{**current.model_dump(), **changes})
        except ValidationError as e:
            return StoreResult(success=False, error=f"Invalid sync settings: {e.errors()[0]['msg']}")

        values = {name: getattr(merged, name) for name in changes}
        values['updated_at'] = utc_now_iso()
        set_clause = ", ".join(f"{column} = ?" for column in values)
        try:
            with self.db.transaction():
                self.db.execute_query(f"UPDATE sync_settings SET {set_clause} WHERE id = 1", tuple(values.values()))
        except LocalRecordsDBError as e:
            logger.error(f"Failed to update sync settings: {e}")
            return StoreResult(success=False, error=str(e))
        logger.info(f"Sync settings updated: {sorted(changes)}")
        return StoreResult(success=True, id=1)


# --- History ---
class SyncHistoryLog:
    """Append-only log of sync runs, newest first on read."""

    def __init__(self, db: LocalRecordsDB):
        self.db = db

    def add_entry(self, sync_type: str, uploaded: int, downloaded: int, conflicts: int,
                  errors: List[str], started_at: str, status: Optional[str] = None) -> StoreResult:
        status = status or history_status_for(len(errors))
        completed_at = utc_now_iso()
        try:
            with self.db.transaction():
                cursor = self.db.execute_query(
                    "INSERT INTO sync_history (sync_type, status, uploaded, downloaded, conflicts, errors, "
                    "started_at, completed_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (sync_type, status, uploaded, downloaded, conflicts, json.dumps(list(errors)),
                     started_at, completed_at)
                )
                entry_id = cursor.lastrowid
        except LocalRecordsDBError as e:
            logger.error(f"Failed to record sync history for '{sync_type}': {e}")
            return StoreResult(success=False, error=str(e))
        logger.info(f"Sync '{sync_type}' finished with status {status}: uploaded={uploaded} "
                    f"downloaded={downloaded} conflicts={conflicts} errors={len(errors)}")
        return StoreResult(success=True, id=entry_id)

    def list_entries(self, limit: int = DEFAULT_HISTORY_LIMIT) -> List[SyncHistoryEntry]:
        rows = self.db.execute_query(
            "SELECT * FROM sync_history ORDER BY completed_at DESC, id DESC LIMIT ?", (limit,)
        ).fetchall()
        entries = []
        for row in rows:
            data = dict(row)
            try:
                data['errors'] = json.loads(data.get('errors') or '[]')
            except json.JSONDecodeError:
                logger.warning(f"Undecodable error list in sync_history row {data.get('id')}")
                data['errors'] = []
            entries.append(SyncHistoryEntry(**data))
        return entries

    def latest(self) -> Optional[SyncHistoryEntry]:
        entries = self.list_entries(limit=1)
        return entries[0] if entries else None


# --- Conflicts ---
class ConflictStore:
    """Open local/remote divergences awaiting a manual decision, keyed `{collection}-{localId}`."""

    def __init__(self, db: LocalRecordsDB):
        self.db = db

    def upsert_conflict(self, conflict_id: str, table_name: str, record_id: int,
                        local_data: Dict[str, Any], remote_data: Dict[str, Any]) -> StoreResult:
        try:
            with self.db.transaction():
                self.db.execute_query(
                    "INSERT OR REPLACE INTO sync_conflicts (id, table_name, record_id, local_data, remote_data, "
                    "created_at) VALUES (?, ?, ?, ?, ?, ?)",
                    (conflict_id, table_name, record_id, json.dumps(local_data, default=str),
                     json.dumps(remote_data, default=str), utc_now_iso())
                )
        except LocalRecordsDBError as e:
            logger.error(f"Failed to store conflict {conflict_id}: {e}")
            return StoreResult(success=False, error=str(e))
        logger.warning(f"Sync conflict recorded: {conflict_id}")
        return StoreResult(success=True, id=record_id)

    @staticmethod
    def _to_model(row) -> SyncConflict:
        data = dict(row)
        data['local_data'] = json.loads(data['local_data'])
        data['remote_data'] = json.loads(data['remote_data'])
        return SyncConflict(**data)

    def list_conflicts(self) -> List[SyncConflict]:
        rows = self.db.execute_query("SELECT * FROM sync_conflicts ORDER BY created_at DESC, id").fetchall()
        return [self._to_model(row) for row in rows]

    def get_conflict(self, conflict_id: str) -> Optional[SyncConflict]:
        row = self.db.execute_query("SELECT * FROM sync_conflicts WHERE id = ?", (conflict_id,)).fetchone()
        return self._to_model(row) if row else None

    def remove_conflict(self, conflict_id: str) -> StoreResult:
        try:
            with self.db.transaction():
                cursor = self.db.execute_query("DELETE FROM sync_conflicts WHERE id = ?", (conflict_id,))
                if cursor.rowcount == 0:
                    return StoreResult(success=False, error=f"Conflict {conflict_id} not found")
        except LocalRecordsDBError as e:
            logger.error(f"Failed to remove conflict {conflict_id}: {e}")
            return StoreResult(success=False, error=str(e))
        return StoreResult(success=True)

    def count(self) -> int:
        return self.db.execute_query("SELECT COUNT(*) FROM sync_conflicts").fetchone()[0]

#
# End of Sync_State_DB.py
########################################################################################################################
