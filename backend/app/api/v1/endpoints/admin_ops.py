"""
Admin Operations API Endpoints.

Inspection and replay of parcel status propagations parked in the Dead
Letter Queue.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Path, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from backend.app.db.session import get_db
from backend.app.core.dependencies import get_status_propagator
from backend.app.core.exceptions import InvalidParamError, ResourceNotFoundError
from backend.app.core.guards import require_role
from backend.app.models.dlq import DeadLetterQueue, DLQStatus
from backend.app.models.enums import OperatorRole
from backend.app.schemas.ops import DLQEntryResponse, DLQListResponse, DLQRetryResponse
from backend.app.services.audit import log_operator_event, AuditAction
from backend.app.services.propagation import PROPAGATION_TASK_NAME, StatusPropagator
from backend.app.api.v1.endpoints.parcels import client_ip

router = APIRouter(prefix="/admin/ops", tags=["Admin - Ops"])


@router.get("/dlq", response_model=DLQListResponse)
async def list_dlq_entries(
    status_filter: Optional[DLQStatus] = Query(None, alias="status", description="Filter by DLQ status"),
    limit: int = Query(100, ge=1, le=500),
    current_operator: dict = Depends(require_role([OperatorRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    query = select(DeadLetterQueue).order_by(DeadLetterQueue.created_at.desc(), DeadLetterQueue.id.desc())
    if status_filter:
        query = query.where(DeadLetterQueue.status == status_filter)

    result = await db.execute(query.limit(limit))
    entries = result.scalars().all()
    return DLQListResponse(
        entries=[DLQEntryResponse.model_validate(e) for e in entries],
        total=len(entries)
    )


@router.post("/dlq/{dlq_id}/retry", response_model=DLQRetryResponse)
async def retry_dlq_item(
    request: Request,
    dlq_id: int = Path(..., description="DLQ Item ID"),
    current_operator: dict = Depends(require_role([OperatorRole.ADMIN])),
    propagator: StatusPropagator = Depends(get_status_propagator),
    db: AsyncSession = Depends(get_db)
):
    """
    Re-apply a failed parcel status propagation.

    A failed replay is not an error: the entry stays RETRYING with its
    retry count bumped and the new error message. An entry superseded by a
    newer propagation for the same task and parcel is ARCHIVED instead.
    """
    result = await db.execute(select(DeadLetterQueue).where(DeadLetterQueue.id == dlq_id))
    item = result.scalar_one_or_none()

    if not item:
        raise ResourceNotFoundError("DLQ item", dlq_id)
    if item.task_name != PROPAGATION_TASK_NAME:
        raise InvalidParamError(f"DLQ item {dlq_id} has no replay handler", {"task_name": item.task_name})
    if item.status == DLQStatus.PROCESSED:
        raise InvalidParamError(f"DLQ item {dlq_id} was already processed")
    if item.status == DLQStatus.ARCHIVED:
        raise InvalidParamError(f"DLQ item {dlq_id} was superseded by a newer propagation")

    succeeded = await propagator.replay(item)
    await log_operator_event(
        db, current_operator, AuditAction.PROPAGATION_RETRIED, "dlq", str(dlq_id),
        metadata={"succeeded": succeeded, "retry_count": item.retry_count},
        ip_address=client_ip(request),
    )
    await db.commit()

    if succeeded:
        message = f"Task {item.task_name} replayed"
    elif item.status == DLQStatus.ARCHIVED:
        message = f"Task {item.task_name} superseded by a newer propagation"
    else:
        message = f"Task {item.task_name} failed again"
    return DLQRetryResponse(entry=DLQEntryResponse.model_validate(item), succeeded=succeeded, message=message)
