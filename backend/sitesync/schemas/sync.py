from pydantic import BaseModel, Field


class SyncStatusOut(BaseModel):
    source_configured: bool
    last_full_sync: str | None = None
    source_status: str = 'ok'
    locks: dict[str, str | None] = Field(default_factory=dict)


class SyncFailureOut(BaseModel):
    correlation_id: str
    sync_type: str
    status: str
    error_code: str
    error_message: str
    lock_name: str | None = None
    payload: dict = Field(default_factory=dict)
    created_at: str | None = None
