"""
Transport task schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional
from backend.app.models.task_enums import TransportTaskStatus, TransportAbnormalType
from backend.app.schemas.parcel import ParcelResponse


class TransportTaskCreate(BaseModel):
    start_node: str = Field(..., min_length=1, max_length=64)
    end_node: str = Field(..., min_length=1, max_length=64)
    vehicle_id: str = Field(..., min_length=1, max_length=32)
    driver_id: Optional[str] = Field(None, max_length=32)
    driver_name: Optional[str] = Field(None, max_length=64)
    estimated_time: Optional[datetime] = None
    route_json: Optional[str] = Field(None, description="Planned route as JSON text")
    distance_km: Optional[float] = Field(None, ge=0)


class TaskStatusUpdate(BaseModel):
    """Requested status; unknown values are rejected by the task state machine."""
    status: str = Field(..., min_length=1)


class PackageBindRequest(BaseModel):
    parcel_ids: List[str] = Field(..., description="Parcel IDs to bind")


class TransportAbnormalReport(BaseModel):
    abnormal_type: TransportAbnormalType
    reason: str = Field(..., min_length=1, max_length=512)


class AbnormalHandleRequest(BaseModel):
    result: str = Field(..., min_length=1, max_length=512, description="How the abnormal task was handled")
    status: str = Field(..., min_length=1, description="Status to resume to")


class AbnormalInfoResponse(BaseModel):
    abnormal_type: str
    reason: str
    handler: str
    handle_time: Optional[datetime] = None
    handle_result: Optional[str] = None

    class Config:
        from_attributes = True


class TransportTaskResponse(BaseModel):
    """Schema for transport task response."""
    task_id: str
    start_node: str
    end_node: str
    vehicle_id: str
    driver_id: Optional[str]
    driver_name: Optional[str]
    status: TransportTaskStatus
    package_count: int
    estimated_time: Optional[datetime]
    started_at: Optional[datetime]
    actual_arrive_time: Optional[datetime]
    completed_at: Optional[datetime]
    route_json: Optional[str]
    route_distance_km: Optional[float]
    abnormal: Optional[AbnormalInfoResponse] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TransportTransitionResponse(BaseModel):
    """Task after a status change, with propagation warnings for bound parcels."""
    task: TransportTaskResponse
    previous_status: str
    updated_parcels: List[str] = []
    warnings: List[str] = []


class TransportBindResponse(BaseModel):
    task: TransportTaskResponse
    bound: List[str]
    skipped: List[str]


class TransportTaskListResponse(BaseModel):
    tasks: List[TransportTaskResponse]
    total: int


class TaskPackagesResponse(BaseModel):
    task_id: str
    parcels: List[ParcelResponse]
