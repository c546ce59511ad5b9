# mfg_capture/Sync/sync_schemas.py
from typing import List, Optional

from pydantic import BaseModel, Field


class SyncProgress(BaseModel):
    """A checkpoint emitted to progress listeners during a sync run."""
    phase: str
    current: int
    total: int
    message: str


class SyncResult(BaseModel):
    success: bool = True
    uploaded: int = 0
    downloaded: int = 0
    conflicts: int = 0
    errors: List[str] = Field(default_factory=list)


class SyncStatus(BaseModel):
    is_connected: bool = False
    last_sync_time: Optional[str] = None
    pending_uploads: int = 0
    # Remote changes are only discovered by pulling, so this stays 0.
    pending_downloads: int = 0
    conflicts: int = 0
    is_syncing: bool = False


class ActionResult(BaseModel):
    """Outcome of a single user-triggered action (connection test, conflict resolution)."""
    success: bool
    error: Optional[str] = None
