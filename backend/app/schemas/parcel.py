"""
Parcel schemas.

Request and response models for collection, sorting, parcel lookup and
sorting-abnormal records.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List
from backend.app.models.parcel_enums import ParcelStatus, TraceNodeType, AbnormalRecordStatus


class ParcelCreate(BaseModel):
    """Schema for registering a collected parcel."""
    parcel_id: Optional[str] = Field(None, max_length=32, description="Pre-printed waybill number")

    sender_name: str = Field(..., min_length=1, max_length=64)
    sender_phone: str = Field(..., min_length=1, max_length=20)
    sender_address: str = Field(..., min_length=1, max_length=255)

    receiver_name: str = Field(..., min_length=1, max_length=64)
    receiver_phone: str = Field(..., min_length=1, max_length=20)
    receiver_address: str = Field(..., min_length=1, max_length=255)
    receiver_province: str = Field(..., min_length=1, max_length=32)
    receiver_city: str = Field(..., min_length=1, max_length=32)
    receiver_district: str = Field(..., min_length=1, max_length=32)

    weight_kg: float = Field(..., gt=0, description="Weight in kilograms")
    length_cm: Optional[float] = Field(None, gt=0)
    width_cm: Optional[float] = Field(None, gt=0)
    height_cm: Optional[float] = Field(None, gt=0)

    # Collection station
    node_name: str = Field(..., min_length=1, max_length=64)
    node_address: str = Field(..., min_length=1, max_length=255)


class ParcelSort(BaseModel):
    node_name: str = Field(..., min_length=1, max_length=64, description="Sorting center")


class SortingAbnormalReport(BaseModel):
    reason: str = Field(..., min_length=1, max_length=255)


class AbnormalRecordResolve(BaseModel):
    processing_method: str = Field(..., min_length=1, max_length=255)


class ParcelResponse(BaseModel):
    """Schema for parcel response."""
    parcel_id: str
    sender_name: str
    sender_phone: str
    sender_address: str
    receiver_name: str
    receiver_phone: str
    receiver_address: str
    receiver_province: str
    receiver_city: str
    receiver_district: str
    weight_kg: float
    length_cm: Optional[float]
    width_cm: Optional[float]
    height_cm: Optional[float]
    status: ParcelStatus
    abnormal_reason: Optional[str]
    abnormal_handler: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ParcelListResponse(BaseModel):
    parcels: List[ParcelResponse]
    total: int


class ContactInfo(BaseModel):
    name: str
    phone: str
    address: str


class TraceEntry(BaseModel):
    node_type: TraceNodeType
    node_name: str
    operator: Optional[str]
    operation_time: datetime
    longitude: float
    latitude: float
    remark: Optional[str]


class ParcelDetailResponse(BaseModel):
    """Parcel summary with current position and trace history."""
    parcel_id: str
    sender_info: ContactInfo
    receiver_info: ContactInfo
    current_status: ParcelStatus
    current_position: str
    abnormal_reason: Optional[str]
    trace_history: List[TraceEntry] = []


class AbnormalRecordResponse(BaseModel):
    record_id: str
    parcel_id: str
    abnormal_type: str
    abnormal_reason: str
    processing_method: Optional[str]
    processor: Optional[str]
    processing_time: Optional[datetime]
    status: AbnormalRecordStatus
    created_at: datetime

    class Config:
        from_attributes = True
