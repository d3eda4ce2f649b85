"""
Transport task database models.

A transport task moves a batch of sorted parcels between two nodes
(sorting centers or stations).
"""

from datetime import datetime
from typing import Optional
from sqlalchemy import Column, Integer, String, Float, Text, DateTime, ForeignKey, Enum
from backend.app.db.session import Base
from backend.app.models.task_enums import TransportTaskStatus
from backend.app.models.value_objects import RouteInfo, AbnormalInfo


class TransportTask(Base):
    """
    Transport task model.

    Status transitions are driven only through the transport state machine,
    except the abnormal override. `package_count` always mirrors the number
    of live rows in `transport_task_parcels`.
    """
    __tablename__ = "transport_tasks"

    task_id = Column(String(32), primary_key=True)

    start_node = Column(String(64), nullable=False)
    end_node = Column(String(64), nullable=False)

    # Vehicle and driver assignment
    vehicle_id = Column(String(32), nullable=False)
    driver_id = Column(String(32), nullable=True, index=True)
    driver_name = Column(String(64), nullable=True)

    status = Column(Enum(TransportTaskStatus), default=TransportTaskStatus.PENDING, nullable=False, index=True)
    package_count = Column(Integer, default=0, nullable=False)

    estimated_time = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    actual_arrive_time = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # RouteInfo columns
    route_json = Column(Text, nullable=True)
    route_distance_km = Column(Float, nullable=True)

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
    def route(self) -> RouteInfo:
        return RouteInfo(route_json=self.route_json, distance_km=self.route_distance_km)

    @route.setter
    def route(self, value: RouteInfo):
        self.route_json = value.route_json
        self.route_distance_km = value.distance_km

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
        return f"<TransportTask(id='{self.task_id}', {self.start_node}->{self.end_node}, status='{self.status.value}')>"


class TransportTaskParcel(Base):
    """
    Binding between a transport task and a parcel.

    Unbinding sets `deleted_at`; only rows with `deleted_at` NULL are live.
    """
    __tablename__ = "transport_task_parcels"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    transport_task_id = Column(String(32), ForeignKey('transport_tasks.task_id'), nullable=False, index=True)
    parcel_id = Column(String(32), ForeignKey('parcels.parcel_id'), nullable=False, index=True)
    added_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<TransportTaskParcel(task='{self.transport_task_id}', parcel='{self.parcel_id}')>"
