"""
Parcel trace model.

Append-only log of operational events for a parcel.
"""

from datetime import datetime
from sqlalchemy import Column, String, Float, DateTime, ForeignKey, Enum
from backend.app.db.session import Base
from backend.app.models.parcel_enums import TraceNodeType


class ParcelTrace(Base):
    """
    One trace entry per operational event, ordered by operation time.

    Coordinates of (0, 0) mean the location could not be geocoded.
    """
    __tablename__ = "parcel_traces"

    trace_id = Column(String(32), primary_key=True)
    parcel_id = Column(String(32), ForeignKey('parcels.parcel_id'), nullable=False, index=True)

    node_type = Column(Enum(TraceNodeType), nullable=False)
    node_name = Column(String(64), nullable=False)
    node_address = Column(String(255), nullable=True)
    longitude = Column(Float, nullable=False, default=0.0)
    latitude = Column(Float, nullable=False, default=0.0)

    operator = Column(String(64), nullable=True)
    operation_time = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False, index=True)
    remark = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<ParcelTrace(id='{self.trace_id}', parcel='{self.parcel_id}', node='{self.node_type.value}')>"
