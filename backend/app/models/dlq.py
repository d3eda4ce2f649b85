"""
Dead Letter Queue (DLQ) Model.

Stores parcel status propagations that failed during a task transition so
they can be inspected and replayed.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, Enum
from backend.app.db.session import Base
import enum


class DLQStatus(str, enum.Enum):
    FAILED = "FAILED"
    RETRYING = "RETRYING"
    PROCESSED = "PROCESSED"
    ARCHIVED = "ARCHIVED"  # Superseded by a newer entry for the same task and parcel


class DeadLetterQueue(Base):
    """
    Dead Letter Queue table.

    `payload` holds everything needed to replay the write:
    parcel_id, status, reason, handler and the trace to append.
    """
    __tablename__ = "dead_letter_queue"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    task_name = Column(String(100), nullable=False, index=True)
    source_task_id = Column(String(32), nullable=True, index=True)
    reference_id = Column(String(32), nullable=True, index=True)
    error_message = Column(Text, nullable=False)
    payload = Column(JSON, nullable=True)

    status = Column(Enum(DLQStatus), default=DLQStatus.FAILED, nullable=False, index=True)
    retry_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    last_retry_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<DLQ(id={self.id}, task='{self.task_name}', ref='{self.reference_id}', status='{self.status}')>"
