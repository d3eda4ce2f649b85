"""
Transport Task API Endpoints.

Dispatchers create tasks and load sorted parcels; drivers move them along
the transport lifecycle. Every status change is mirrored onto the bound
parcels, and per-parcel failures come back as warnings.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Path, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_db
from backend.app.core.dependencies import get_transport_coordinator
from backend.app.core.guards import require_role, operator_id
from backend.app.models.enums import OperatorRole
from backend.app.schemas.parcel import ParcelResponse
from backend.app.schemas.transport import (
    TransportTaskCreate, TaskStatusUpdate, PackageBindRequest, TransportAbnormalReport,
    AbnormalHandleRequest, TransportTaskResponse, TransportTransitionResponse,
    TransportBindResponse, TransportTaskListResponse, TaskPackagesResponse
)
from backend.app.services.audit import log_operator_event, AuditAction
from backend.app.services.propagation import TaskTransition
from backend.app.services.transport_coordinator import TransportCoordinator
from backend.app.api.v1.endpoints.parcels import client_ip

router = APIRouter(prefix="/transport", tags=["Transport"])

DISPATCH_ROLES = [OperatorRole.DISPATCHER, OperatorRole.ADMIN]
OPERATING_ROLES = [OperatorRole.DISPATCHER, OperatorRole.DRIVER, OperatorRole.ADMIN]


def transition_response(transition: TaskTransition) -> TransportTransitionResponse:
    report = transition.propagation
    return TransportTransitionResponse(
        task=TransportTaskResponse.model_validate(transition.task),
        previous_status=transition.previous_status,
        updated_parcels=report.updated if report else [],
        warnings=transition.warnings,
    )


@router.post("/tasks", response_model=TransportTaskResponse, status_code=status.HTTP_201_CREATED)
async def create_transport_task(
    request: Request,
    task_data: TransportTaskCreate,
    current_operator: dict = Depends(require_role(DISPATCH_ROLES)),
    coordinator: TransportCoordinator = Depends(get_transport_coordinator),
    db: AsyncSession = Depends(get_db)
):
    task = await coordinator.create_task(**task_data.model_dump())
    await log_operator_event(
        db, current_operator, AuditAction.TRANSPORT_TASK_CREATED, "transport_task", task.task_id,
        metadata={"start_node": task.start_node, "end_node": task.end_node, "vehicle_id": task.vehicle_id},
        ip_address=client_ip(request),
    )
    await db.commit()
    return TransportTaskResponse.model_validate(task)


@router.get("/tasks/{task_id}", response_model=TransportTaskResponse)
async def get_transport_task(
    task_id: str = Path(..., description="Transport task ID"),
    current_operator: dict = Depends(require_role(OPERATING_ROLES)),
    coordinator: TransportCoordinator = Depends(get_transport_coordinator)
):
    return TransportTaskResponse.model_validate(await coordinator.get_task(task_id))


@router.patch("/tasks/{task_id}/status", response_model=TransportTransitionResponse)
async def change_transport_status(
    request: Request,
    body: TaskStatusUpdate,
    task_id: str = Path(..., description="Transport task ID"),
    current_operator: dict = Depends(require_role(OPERATING_ROLES)),
    coordinator: TransportCoordinator = Depends(get_transport_coordinator),
    db: AsyncSession = Depends(get_db)
):
    """
    Move a task to a new status.

    Returns 409 for a transition the lifecycle does not allow. Bound parcels
    follow on `transporting` and `arrived`; parcels that could not be
    updated are listed under `warnings`.
    """
    transition = await coordinator.change_status(task_id, body.status)
    await log_operator_event(
        db, current_operator, AuditAction.TRANSPORT_STATUS_CHANGED, "transport_task", task_id,
        metadata={
            "from": transition.previous_status,
            "to": transition.task.status.value,
            "warnings": transition.warnings,
        },
        ip_address=client_ip(request),
    )
    await db.commit()
    return transition_response(transition)


@router.post("/tasks/{task_id}/packages", response_model=TransportBindResponse)
async def bind_transport_packages(
    request: Request,
    body: PackageBindRequest,
    task_id: str = Path(..., description="Transport task ID"),
    current_operator: dict = Depends(require_role(DISPATCH_ROLES)),
    coordinator: TransportCoordinator = Depends(get_transport_coordinator),
    db: AsyncSession = Depends(get_db)
):
    """Load sorted parcels onto a pending or transporting task."""
    result = await coordinator.bind_packages(task_id, body.parcel_ids)
    await log_operator_event(
        db, current_operator, AuditAction.TRANSPORT_PACKAGES_BOUND, "transport_task", task_id,
        metadata={"bound": result.bound, "skipped": result.skipped},
        ip_address=client_ip(request),
    )
    await db.commit()
    return TransportBindResponse(
        task=TransportTaskResponse.model_validate(result.task),
        bound=result.bound,
        skipped=result.skipped,
    )


@router.post("/tasks/{task_id}/abnormal", response_model=TransportTransitionResponse)
async def report_transport_abnormal(
    request: Request,
    body: TransportAbnormalReport,
    task_id: str = Path(..., description="Transport task ID"),
    current_operator: dict = Depends(require_role(OPERATING_ROLES)),
    coordinator: TransportCoordinator = Depends(get_transport_coordinator),
    db: AsyncSession = Depends(get_db)
):
    """Report an exception on the road. Allowed from any status."""
    transition = await coordinator.report_abnormal(
        task_id, body.abnormal_type.value, body.reason, operator_id(current_operator)
    )
    await log_operator_event(
        db, current_operator, AuditAction.TRANSPORT_ABNORMAL_REPORTED, "transport_task", task_id,
        metadata={
            "abnormal_type": body.abnormal_type.value,
            "reason": body.reason,
            "from": transition.previous_status,
        },
        ip_address=client_ip(request),
    )
    await db.commit()
    return transition_response(transition)


@router.post("/tasks/{task_id}/abnormal/handle", response_model=TransportTransitionResponse)
async def handle_transport_abnormal(
    request: Request,
    body: AbnormalHandleRequest,
    task_id: str = Path(..., description="Transport task ID"),
    current_operator: dict = Depends(require_role(DISPATCH_ROLES)),
    coordinator: TransportCoordinator = Depends(get_transport_coordinator),
    db: AsyncSession = Depends(get_db)
):
    transition = await coordinator.handle_abnormal(task_id, body.result, body.status)
    await log_operator_event(
        db, current_operator, AuditAction.TRANSPORT_ABNORMAL_HANDLED, "transport_task", task_id,
        metadata={"result": body.result, "to": transition.task.status.value},
        ip_address=client_ip(request),
    )
    await db.commit()
    return transition_response(transition)


@router.get("/driver/tasks", response_model=TransportTaskListResponse)
async def list_driver_tasks(
    status_filter: Optional[str] = Query(None, alias="status", description="Filter by task status"),
    current_operator: dict = Depends(require_role([OperatorRole.DRIVER])),
    coordinator: TransportCoordinator = Depends(get_transport_coordinator)
):
    """Tasks assigned to the calling driver."""
    tasks = await coordinator.list_driver_tasks(operator_id(current_operator), status_filter)
    return TransportTaskListResponse(
        tasks=[TransportTaskResponse.model_validate(t) for t in tasks],
        total=len(tasks)
    )


@router.get("/driver/tasks/{task_id}/packages", response_model=TaskPackagesResponse)
async def get_driver_task_packages(
    task_id: str = Path(..., description="Transport task ID"),
    current_operator: dict = Depends(require_role([OperatorRole.DRIVER])),
    coordinator: TransportCoordinator = Depends(get_transport_coordinator)
):
    """Parcels on one of the calling driver's tasks. 403 for someone else's task."""
    parcels = await coordinator.get_task_packages(operator_id(current_operator), task_id)
    return TaskPackagesResponse(
        task_id=task_id,
        parcels=[ParcelResponse.model_validate(p) for p in parcels]
    )
