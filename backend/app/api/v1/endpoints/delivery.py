"""
Delivery Task API Endpoints.

Dispatchers build delivery runs from arrived parcels; couriers deliver,
capture signatures and close the run once every parcel is signed.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Path, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_db
from backend.app.core.dependencies import get_delivery_coordinator
from backend.app.core.guards import require_role, operator_id
from backend.app.models.enums import OperatorRole
from backend.app.schemas.parcel import ParcelResponse
from backend.app.schemas.transport import TaskStatusUpdate, PackageBindRequest, AbnormalHandleRequest, TaskPackagesResponse
from backend.app.schemas.delivery import (
    DeliveryTaskCreate, DeliveryAbnormalReport, SignRequest, DeliveryTaskResponse,
    DeliveryTransitionResponse, DeliveryBindResponse, DeliveryTaskListResponse, SignResponse
)
from backend.app.services.audit import log_operator_event, AuditAction
from backend.app.services.delivery_coordinator import DeliveryCoordinator
from backend.app.services.propagation import TaskTransition
from backend.app.api.v1.endpoints.parcels import client_ip

router = APIRouter(prefix="/delivery", tags=["Delivery"])

DISPATCH_ROLES = [OperatorRole.DISPATCHER, OperatorRole.ADMIN]
OPERATING_ROLES = [OperatorRole.DISPATCHER, OperatorRole.COURIER, OperatorRole.ADMIN]


def transition_response(transition: TaskTransition) -> DeliveryTransitionResponse:
    report = transition.propagation
    return DeliveryTransitionResponse(
        task=DeliveryTaskResponse.model_validate(transition.task),
        previous_status=transition.previous_status,
        updated_parcels=report.updated if report else [],
        warnings=transition.warnings,
    )


@router.post("/tasks", response_model=DeliveryTaskResponse, status_code=status.HTTP_201_CREATED)
async def create_delivery_task(
    request: Request,
    task_data: DeliveryTaskCreate,
    current_operator: dict = Depends(require_role(DISPATCH_ROLES)),
    coordinator: DeliveryCoordinator = Depends(get_delivery_coordinator),
    db: AsyncSession = Depends(get_db)
):
    task = await coordinator.create_task(**task_data.model_dump())
    await log_operator_event(
        db, current_operator, AuditAction.DELIVERY_TASK_CREATED, "delivery_task", task.task_id,
        metadata={"delivery_area": task.delivery_area, "courier_id": task.courier_id},
        ip_address=client_ip(request),
    )
    await db.commit()
    return DeliveryTaskResponse.model_validate(task)


@router.get("/tasks/{task_id}", response_model=DeliveryTaskResponse)
async def get_delivery_task(
    task_id: str = Path(..., description="Delivery task ID"),
    current_operator: dict = Depends(require_role(OPERATING_ROLES)),
    coordinator: DeliveryCoordinator = Depends(get_delivery_coordinator)
):
    return DeliveryTaskResponse.model_validate(await coordinator.get_task(task_id))


@router.patch("/tasks/{task_id}/status", response_model=DeliveryTransitionResponse)
async def change_delivery_status(
    request: Request,
    body: TaskStatusUpdate,
    task_id: str = Path(..., description="Delivery task ID"),
    current_operator: dict = Depends(require_role(OPERATING_ROLES)),
    coordinator: DeliveryCoordinator = Depends(get_delivery_coordinator),
    db: AsyncSession = Depends(get_db)
):
    """
    Move a delivery task to a new status.

    `completed` is refused with 409 while any bound parcel is unsigned.
    """
    transition = await coordinator.change_status(task_id, body.status)
    await log_operator_event(
        db, current_operator, AuditAction.DELIVERY_STATUS_CHANGED, "delivery_task", task_id,
        metadata={
            "from": transition.previous_status,
            "to": transition.task.status.value,
            "warnings": transition.warnings,
        },
        ip_address=client_ip(request),
    )
    await db.commit()
    return transition_response(transition)


@router.post("/tasks/{task_id}/packages", response_model=DeliveryBindResponse)
async def bind_delivery_packages(
    request: Request,
    body: PackageBindRequest,
    task_id: str = Path(..., description="Delivery task ID"),
    current_operator: dict = Depends(require_role(DISPATCH_ROLES)),
    coordinator: DeliveryCoordinator = Depends(get_delivery_coordinator),
    db: AsyncSession = Depends(get_db)
):
    """
    Set the parcels of a pending task.

    Replaces any earlier binding; delivery order follows the request order.
    """
    result = await coordinator.bind_packages(task_id, body.parcel_ids)
    await log_operator_event(
        db, current_operator, AuditAction.DELIVERY_PACKAGES_BOUND, "delivery_task", task_id,
        metadata={"bound": result.bound, "unbound": result.unbound},
        ip_address=client_ip(request),
    )
    await db.commit()
    return DeliveryBindResponse(
        task=DeliveryTaskResponse.model_validate(result.task),
        bound=result.bound,
        unbound=result.unbound,
    )


@router.post("/tasks/{task_id}/packages/{parcel_id}/sign", response_model=SignResponse)
async def sign_package(
    request: Request,
    body: SignRequest,
    task_id: str = Path(..., description="Delivery task ID"),
    parcel_id: str = Path(..., description="Parcel ID"),
    current_operator: dict = Depends(require_role([OperatorRole.COURIER])),
    coordinator: DeliveryCoordinator = Depends(get_delivery_coordinator),
    db: AsyncSession = Depends(get_db)
):
    """Capture the receiver's signature. The parcel is delivered immediately."""
    binding = await coordinator.sign_package(
        task_id,
        parcel_id,
        operator_id(current_operator),
        body.signer_name,
        body.signer_phone,
        body.sign_type.value,
        body.remark,
    )
    await log_operator_event(
        db, current_operator, AuditAction.PACKAGE_SIGNED, "parcel", parcel_id,
        metadata={"task_id": task_id, "sign_type": body.sign_type.value},
        ip_address=client_ip(request),
    )
    await db.commit()
    return SignResponse.model_validate(binding)


@router.post("/tasks/{task_id}/abnormal", response_model=DeliveryTransitionResponse)
async def report_delivery_abnormal(
    request: Request,
    body: DeliveryAbnormalReport,
    task_id: str = Path(..., description="Delivery task ID"),
    current_operator: dict = Depends(require_role(OPERATING_ROLES)),
    coordinator: DeliveryCoordinator = Depends(get_delivery_coordinator),
    db: AsyncSession = Depends(get_db)
):
    transition = await coordinator.report_abnormal(
        task_id, body.abnormal_type.value, body.reason, operator_id(current_operator)
    )
    await log_operator_event(
        db, current_operator, AuditAction.DELIVERY_ABNORMAL_REPORTED, "delivery_task", task_id,
        metadata={
            "abnormal_type": body.abnormal_type.value,
            "reason": body.reason,
            "from": transition.previous_status,
        },
        ip_address=client_ip(request),
    )
    await db.commit()
    return transition_response(transition)


@router.post("/tasks/{task_id}/abnormal/handle", response_model=DeliveryTransitionResponse)
async def handle_delivery_abnormal(
    request: Request,
    body: AbnormalHandleRequest,
    task_id: str = Path(..., description="Delivery task ID"),
    current_operator: dict = Depends(require_role(DISPATCH_ROLES)),
    coordinator: DeliveryCoordinator = Depends(get_delivery_coordinator),
    db: AsyncSession = Depends(get_db)
):
    transition = await coordinator.handle_abnormal(task_id, body.result, body.status)
    await log_operator_event(
        db, current_operator, AuditAction.DELIVERY_ABNORMAL_HANDLED, "delivery_task", task_id,
        metadata={"result": body.result, "to": transition.task.status.value},
        ip_address=client_ip(request),
    )
    await db.commit()
    return transition_response(transition)


@router.get("/courier/tasks", response_model=DeliveryTaskListResponse)
async def list_courier_tasks(
    status_filter: Optional[str] = Query(None, alias="status", description="Filter by task status"),
    current_operator: dict = Depends(require_role([OperatorRole.COURIER])),
    coordinator: DeliveryCoordinator = Depends(get_delivery_coordinator)
):
    tasks = await coordinator.list_courier_tasks(operator_id(current_operator), status_filter)
    return DeliveryTaskListResponse(
        tasks=[DeliveryTaskResponse.model_validate(t) for t in tasks],
        total=len(tasks)
    )


@router.get("/courier/tasks/{task_id}/packages", response_model=TaskPackagesResponse)
async def get_courier_task_packages(
    task_id: str = Path(..., description="Delivery task ID"),
    current_operator: dict = Depends(require_role([OperatorRole.COURIER])),
    coordinator: DeliveryCoordinator = Depends(get_delivery_coordinator)
):
    """Parcels on one of the calling courier's tasks, in delivery order."""
    parcels = await coordinator.get_task_packages(operator_id(current_operator), task_id)
    return TaskPackagesResponse(
        task_id=task_id,
        parcels=[ParcelResponse.model_validate(p) for p in parcels]
    )
