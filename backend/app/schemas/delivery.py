"""
Delivery task schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional
from backend.app.models.task_enums import DeliveryTaskStatus, DeliveryAbnormalType, SignType
from backend.app.schemas.transport import AbnormalInfoResponse


class DeliveryTaskCreate(BaseModel):
    delivery_area: str = Field(..., min_length=1, max_length=128)
    courier_id: str = Field(..., min_length=1, max_length=32)
    courier_name: Optional[str] = Field(None, max_length=64)
    start_node: str = Field(..., min_length=1, max_length=64)


class DeliveryAbnormalReport(BaseModel):
    abnormal_type: DeliveryAbnormalType
    reason: str = Field(..., min_length=1, max_length=512)


class SignRequest(BaseModel):
    signer_name: str = Field(..., min_length=1, max_length=64)
    signer_phone: str = Field(..., max_length=20, description="Stored masked when it is an 11-digit mobile number")
    sign_type: SignType
    remark: Optional[str] = Field(None, max_length=512)


class DeliveryTaskResponse(BaseModel):
    """Schema for delivery task response."""
    task_id: str
    delivery_area: str
    start_node: str
    courier_id: str
    courier_name: Optional[str]
    status: DeliveryTaskStatus
    package_count: int
    start_time: Optional[datetime]
    complete_time: Optional[datetime]
    abnormal: Optional[AbnormalInfoResponse] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class DeliveryTransitionResponse(BaseModel):
    task: DeliveryTaskResponse
    previous_status: str
    updated_parcels: List[str] = []
    warnings: List[str] = []


class DeliveryBindResponse(BaseModel):
    task: DeliveryTaskResponse
    bound: List[str]
    unbound: List[str]


class DeliveryTaskListResponse(BaseModel):
    tasks: List[DeliveryTaskResponse]
    total: int


class SignResponse(BaseModel):
    """Join record after signing."""
    delivery_task_id: str
    parcel_id: str
    delivery_order: int
    signer_name: Optional[str]
    signer_phone: Optional[str]
    sign_time: Optional[datetime]
    sign_type: Optional[str]
    sign_remark: Optional[str]

    class Config:
        from_attributes = True
