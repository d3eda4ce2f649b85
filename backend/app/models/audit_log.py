"""
Audit Log Database Model.

Records who changed which parcel or task, and how.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, JSON
from backend.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model for operational actions.

    Events logged:
    - PARCEL_CREATED / PARCEL_SORTED / SORTING_ABNORMAL_REPORTED
    - TRANSPORT_* and DELIVERY_* task operations
    - PACKAGE_SIGNED
    - PROPAGATION_RETRIED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for system actions)
    actor_id = Column(String(64), index=True, nullable=True)
    actor_role = Column(String(20), nullable=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # What it was performed on
    target_type = Column(String(32), nullable=True)
    target_id = Column(String(32), index=True, nullable=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    ip_address = Column(String(50), nullable=True)

    timestamp = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', actor={self.actor_id}, target={self.target_id})>"
