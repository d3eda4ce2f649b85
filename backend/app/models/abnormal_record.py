"""
Abnormal record model.

Created when an abnormal condition is reported against a parcel; mutated
once when it is resolved.
"""

from datetime import datetime
from sqlalchemy import Column, String, DateTime, ForeignKey, Enum
from backend.app.db.session import Base
from backend.app.models.parcel_enums import AbnormalRecordStatus


class AbnormalRecord(Base):
    __tablename__ = "abnormal_records"

    record_id = Column(String(32), primary_key=True)
    parcel_id = Column(String(32), ForeignKey('parcels.parcel_id'), nullable=False, index=True)

    abnormal_type = Column(String(20), nullable=False)
    abnormal_reason = Column(String(255), nullable=False)

    # Resolution
    processing_method = Column(String(255), nullable=True)
    processor = Column(String(64), nullable=True)
    processing_time = Column(DateTime(timezone=True), nullable=True)
    status = Column(Enum(AbnormalRecordStatus), default=AbnormalRecordStatus.PENDING, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<AbnormalRecord(id='{self.record_id}', parcel='{self.parcel_id}', status='{self.status.value}')>"
