# mfg_capture/remote_api/schemas.py
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# --- Listing ---
class RemoteRecordPage(BaseModel):
    """One page of a paginated collection listing."""
    model_config = ConfigDict(extra='ignore')

    data: List[Dict[str, Any]] = Field(default_factory=list)
    current_page: int = 1
    last_page: int = 1
    per_page: Optional[int] = None
    total: Optional[int] = None

    @property
    def has_more(self) -> bool:
        return self.current_page < self.last_page


# --- Create acknowledgement ---
class RemoteCreateResponse(BaseModel):
    """
    Body returned by a create call. Servers answer either
    `{"status": "success", "data": {"id": ...}}` or a bare `{"id": ...}`.
    """
    model_config = ConfigDict(extra='ignore')

    status: Optional[str] = None
    success: Optional[bool] = None
    id: Optional[int] = None
    data: Optional[Dict[str, Any]] = None
    message: Optional[str] = None

    @property
    def remote_id(self) -> Optional[int]:
        if self.data and self.data.get('id') is not None:
            return int(self.data['id'])
        return self.id

    @property
    def acknowledged(self) -> bool:
        return self.remote_id is not None and self.success is not False and self.status not in ('error', 'failed')


# --- Finish earlier session ---
class FinishEarlierSessionRequest(BaseModel):
    machine_number: str = ''
    style: str = ''
    production_order: str = ''
    roll_construction: str = ''
    shift_group: str = ''

    @classmethod
    def from_metadata(cls, metadata: Optional[Dict[str, Any]]) -> 'FinishEarlierSessionRequest':
        metadata = metadata or {}
        return cls(**{name: str(metadata.get(name) or '') for name in cls.model_fields})
