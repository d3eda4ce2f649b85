"""
Audit logging service for operational actions on parcels and tasks.
"""

from typing import Optional, Dict, Any, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from backend.app.models.audit_log import AuditLog


class AuditAction:
    """Standardized audit action constants."""
    # Sorting station
    PARCEL_CREATED = "PARCEL_CREATED"
    PARCEL_SORTED = "PARCEL_SORTED"
    PARCEL_DELETED = "PARCEL_DELETED"
    SORTING_ABNORMAL_REPORTED = "SORTING_ABNORMAL_REPORTED"
    ABNORMAL_RECORD_RESOLVED = "ABNORMAL_RECORD_RESOLVED"

    # Transport
    TRANSPORT_TASK_CREATED = "TRANSPORT_TASK_CREATED"
    TRANSPORT_STATUS_CHANGED = "TRANSPORT_STATUS_CHANGED"
    TRANSPORT_PACKAGES_BOUND = "TRANSPORT_PACKAGES_BOUND"
    TRANSPORT_ABNORMAL_REPORTED = "TRANSPORT_ABNORMAL_REPORTED"
    TRANSPORT_ABNORMAL_HANDLED = "TRANSPORT_ABNORMAL_HANDLED"

    # Delivery
    DELIVERY_TASK_CREATED = "DELIVERY_TASK_CREATED"
    DELIVERY_STATUS_CHANGED = "DELIVERY_STATUS_CHANGED"
    DELIVERY_PACKAGES_BOUND = "DELIVERY_PACKAGES_BOUND"
    DELIVERY_ABNORMAL_REPORTED = "DELIVERY_ABNORMAL_REPORTED"
    DELIVERY_ABNORMAL_HANDLED = "DELIVERY_ABNORMAL_HANDLED"
    PACKAGE_SIGNED = "PACKAGE_SIGNED"

    # Ops
    PROPAGATION_RETRIED = "PROPAGATION_RETRIED"


async def log_event(
    db: AsyncSession,
    action: str,
    actor_id: Optional[str] = None,
    actor_role: Optional[str] = None,
    target_type: Optional[str] = None,
    target_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None
) -> AuditLog:
    """
    Add an audit row to the current unit of work.

    The row is committed together with the change it describes, by the
    endpoint that owns the request's transaction.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        actor_id: Operator ID from the access token
        actor_role: Operator role from the access token
        target_type: "parcel", "transport_task", "delivery_task", ...
        target_id: ID of the parcel, task or record acted upon
        metadata: Additional context as JSON
        ip_address: IP address of the request

    Returns:
        Pending AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        actor_role=actor_role,
        action=action,
        target_type=target_type,
        target_id=target_id,
        meta_data=metadata,
        ip_address=ip_address
    )
    db.add(audit_log)
    await db.flush()
    return audit_log


async def log_operator_event(
    db: AsyncSession,
    operator: dict,
    action: str,
    target_type: str,
    target_id: str,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None
) -> AuditLog:
    """Shorthand for `log_event` taking the decoded token payload as the actor."""
    return await log_event(
        db=db,
        action=action,
        actor_id=operator.get("sub"),
        actor_role=operator.get("role"),
        target_type=target_type,
        target_id=target_id,
        metadata=metadata,
        ip_address=ip_address
    )


async def get_audit_trail(
    db: AsyncSession,
    target_id: Optional[str] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> List[AuditLog]:
    """Audit rows, most recent first, optionally filtered by target or action."""
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if target_id:
        query = query.where(AuditLog.target_id == target_id)

    if action:
        query = query.where(AuditLog.action == action)

    result = await db.execute(query.limit(limit))
    return list(result.scalars().all())
