"""
Ops schemas for the dead letter queue.
"""

from pydantic import BaseModel
from datetime import datetime
from typing import Any, Dict, List, Optional
from backend.app.models.dlq import DLQStatus


class DLQEntryResponse(BaseModel):
    id: int
    task_name: str
    source_task_id: Optional[str]
    reference_id: Optional[str]
    error_message: str
    payload: Optional[Dict[str, Any]]
    status: DLQStatus
    retry_count: int
    created_at: datetime
    last_retry_at: Optional[datetime]

    class Config:
        from_attributes = True


class DLQListResponse(BaseModel):
    entries: List[DLQEntryResponse]
    total: int


class DLQRetryResponse(BaseModel):
    entry: DLQEntryResponse
    succeeded: bool
    message: str
