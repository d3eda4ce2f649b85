"""
Delivery task database models.

A delivery task is one courier's last-mile run over an ordered list of
arrived parcels.
"""

from datetime import datetime
from typing import Optional
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum
from backend.app.db.session import Base
from backend.app.models.task_enums import DeliveryTaskStatus
from backend.app.models.value_objects import AbnormalInfo, SignInfo


class DeliveryTask(Base):
    """
    Delivery task model.

    Can only be completed once every bound parcel carries a sign time.
    """
    __tablename__ = "delivery_tasks"

    task_id = Column(String(32), primary_key=True)

    delivery_area = Column(String(128), nullable=False)
    start_node = Column(String(64), nullable=False)

    # Courier assignment
    courier_id = Column(String(32), nullable=False, index=True)
    courier_name = Column(String(64), nullable=True)

    status = Column(Enum(DeliveryTaskStatus), default=DeliveryTaskStatus.PENDING, nullable=False, index=True)
    package_count = Column(Integer, default=0, nullable=False)

    start_time = Column(DateTime(timezone=True), nullable=True)
    complete_time = Column(DateTime(timezone=True), nullable=True)

    # AbnormalInfo columns
    abnormal_type = Column(String(20), nullable=True)
    abnormal_reason = Column(String(512), nullable=True)
    abnormal_handler = Column(String(64), nullable=True)
    abnormal_handle_time = Column(DateTime(timezone=True), nullable=True)
    abnormal_handle_result = Column(String(512), nullable=True)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def abnormal(self) -> Optional[AbnormalInfo]:
        if self.abnormal_type is None:
            return None
        return AbnormalInfo(
            abnormal_type=self.abnormal_type,
            reason=self.abnormal_reason,
            handler=self.abnormal_handler,
            handle_time=self.abnormal_handle_time,
            handle_result=self.abnormal_handle_result,
        )

    @abnormal.setter
    def abnormal(self, value: AbnormalInfo):
        self.abnormal_type = value.abnormal_type
        self.abnormal_reason = value.reason
        self.abnormal_handler = value.handler
        self.abnormal_handle_time = value.handle_time
        self.abnormal_handle_result = value.handle_result

    def __repr__(self):
        return f"<DeliveryTask(id='{self.task_id}', courier='{self.courier_id}', status='{self.status.value}')>"


class DeliveryTaskParcel(Base):
    """
    Binding between a delivery task and a parcel.

    Carries the delivery order (1-based) and the parcel's sign info.
    """
    __tablename__ = "delivery_task_parcels"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    delivery_task_id = Column(String(32), ForeignKey('delivery_tasks.task_id'), nullable=False, index=True)
    parcel_id = Column(String(32), ForeignKey('parcels.parcel_id'), nullable=False, index=True)
    delivery_order = Column(Integer, nullable=False, default=0)

    # SignInfo columns
    signer_name = Column(String(64), nullable=True)
    signer_phone = Column(String(20), nullable=True)  # masked
    sign_time = Column(DateTime(timezone=True), nullable=True)
    sign_type = Column(String(20), nullable=True)
    sign_remark = Column(String(512), nullable=True)

    added_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def sign_info(self) -> Optional[SignInfo]:
        if self.sign_time is None and self.signer_name is None:
            return None
        return SignInfo(
            signer_name=self.signer_name,
            signer_phone=self.signer_phone,
            sign_time=self.sign_time,
            sign_type=self.sign_type,
            remark=self.sign_remark,
        )

    @sign_info.setter
    def sign_info(self, value: SignInfo):
        self.signer_name = value.signer_name
        self.signer_phone = value.signer_phone
        self.sign_time = value.sign_time
        self.sign_type = value.sign_type
        self.sign_remark = value.remark

    @property
    def is_signed(self) -> bool:
        return self.sign_time is not None

    def __repr__(self):
        return f"<DeliveryTaskParcel(task='{self.delivery_task_id}', parcel='{self.parcel_id}', order={self.delivery_order})>"
