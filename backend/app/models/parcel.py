"""
Parcel database model.

A parcel is created on collection and flows through sorting, transport and
delivery. Its status is only ever written by the parcel registry.
"""

from datetime import datetime
from sqlalchemy import Column, String, Float, DateTime, Enum
from backend.app.db.session import Base
from backend.app.models.parcel_enums import ParcelStatus


class Parcel(Base):
    """
    Parcel model.

    Identified by its tracking ID (waybill number). Never hard-deleted:
    `deleted_at` marks a soft delete and hides the parcel from lookups.
    """
    __tablename__ = "parcels"

    parcel_id = Column(String(32), primary_key=True)

    # Sender
    sender_name = Column(String(64), nullable=False)
    sender_phone = Column(String(20), nullable=False)
    sender_address = Column(String(255), nullable=False)

    # Receiver
    receiver_name = Column(String(64), nullable=False)
    receiver_phone = Column(String(20), nullable=False)
    receiver_address = Column(String(255), nullable=False)
    receiver_province = Column(String(32), nullable=False)
    receiver_city = Column(String(32), nullable=False)
    receiver_district = Column(String(32), nullable=False)

    # Physical properties
    weight_kg = Column(Float, nullable=False)
    length_cm = Column(Float, nullable=True)
    width_cm = Column(Float, nullable=True)
    height_cm = Column(Float, nullable=True)

    # Status
    status = Column(Enum(ParcelStatus), default=ParcelStatus.COLLECTED, nullable=False, index=True)
    abnormal_reason = Column(String(255), nullable=True)
    abnormal_handler = Column(String(64), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)

    def __repr__(self):
        return f"<Parcel(id='{self.parcel_id}', status='{self.status.value}')>"
