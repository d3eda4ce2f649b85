"""
Parcel API Endpoints.

Collection, sorting, lookup and sorting-abnormal handling at the sorting
station.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Path, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_db
from backend.app.core.dependencies import get_abnormal_recorder, get_parcel_registry
from backend.app.core.guards import require_role, operator_id
from backend.app.models.enums import OperatorRole
from backend.app.schemas.parcel import (
    ParcelCreate, ParcelSort, SortingAbnormalReport, AbnormalRecordResolve,
    ParcelResponse, ParcelListResponse, ParcelDetailResponse, AbnormalRecordResponse
)
from backend.app.services.abnormal_recorder import AbnormalEventRecorder
from backend.app.services.audit import log_operator_event, AuditAction
from backend.app.services.parcel_registry import PARCEL_FIELDS, ParcelRegistry

router = APIRouter(tags=["Parcels"])

STATION_ROLES = [OperatorRole.SORTER, OperatorRole.ADMIN]
ALL_ROLES = list(OperatorRole)


def client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


@router.post("/parcels", response_model=ParcelResponse, status_code=status.HTTP_201_CREATED)
async def create_parcel(
    request: Request,
    parcel_data: ParcelCreate,
    current_operator: dict = Depends(require_role(STATION_ROLES)),
    registry: ParcelRegistry = Depends(get_parcel_registry),
    db: AsyncSession = Depends(get_db)
):
    """
    Register a collected parcel.

    The collection station address is geocoded for the first trace entry;
    an unreachable geocoder leaves the coordinates at (0, 0).
    """
    parcel = await registry.create_parcel(
        parcel_data.model_dump(include=set(PARCEL_FIELDS)),
        operator=operator_id(current_operator),
        node_name=parcel_data.node_name,
        node_address=parcel_data.node_address,
        parcel_id=parcel_data.parcel_id,
    )
    await log_operator_event(
        db, current_operator, AuditAction.PARCEL_CREATED, "parcel", parcel.parcel_id,
        metadata={"node_name": parcel_data.node_name, "weight_kg": parcel.weight_kg},
        ip_address=client_ip(request),
    )
    await db.commit()

    return ParcelResponse.model_validate(parcel)


@router.get("/parcels", response_model=ParcelListResponse)
async def list_parcels(
    status_filter: Optional[str] = Query(None, alias="status", description="Filter by parcel status"),
    current_operator: dict = Depends(require_role(ALL_ROLES)),
    registry: ParcelRegistry = Depends(get_parcel_registry)
):
    parcels = await registry.list_parcels(status_filter)
    return ParcelListResponse(
        parcels=[ParcelResponse.model_validate(p) for p in parcels],
        total=len(parcels)
    )


@router.get("/parcels/{parcel_id}", response_model=ParcelDetailResponse)
async def get_parcel_detail(
    parcel_id: str = Path(..., description="Parcel ID"),
    current_operator: dict = Depends(require_role(ALL_ROLES)),
    registry: ParcelRegistry = Depends(get_parcel_registry)
):
    """Parcel with current position and full trace history."""
    return ParcelDetailResponse(**await registry.get_parcel_detail(parcel_id))


@router.delete("/parcels/{parcel_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_parcel(
    request: Request,
    parcel_id: str = Path(..., description="Parcel ID"),
    current_operator: dict = Depends(require_role([OperatorRole.ADMIN])),
    registry: ParcelRegistry = Depends(get_parcel_registry),
    db: AsyncSession = Depends(get_db)
):
    """Soft-delete a parcel. Its traces and audit rows are kept."""
    await registry.soft_delete(parcel_id)
    await log_operator_event(
        db, current_operator, AuditAction.PARCEL_DELETED, "parcel", parcel_id,
        ip_address=client_ip(request),
    )
    await db.commit()


@router.post("/parcels/{parcel_id}/sort", response_model=ParcelResponse)
async def sort_parcel(
    request: Request,
    body: ParcelSort,
    parcel_id: str = Path(..., description="Parcel ID"),
    current_operator: dict = Depends(require_role(STATION_ROLES)),
    registry: ParcelRegistry = Depends(get_parcel_registry),
    db: AsyncSession = Depends(get_db)
):
    parcel = await registry.sort_parcel(parcel_id, operator_id(current_operator), body.node_name)
    await log_operator_event(
        db, current_operator, AuditAction.PARCEL_SORTED, "parcel", parcel_id,
        metadata={"node_name": body.node_name},
        ip_address=client_ip(request),
    )
    await db.commit()
    return ParcelResponse.model_validate(parcel)


@router.post(
    "/parcels/{parcel_id}/abnormal/sorting",
    response_model=AbnormalRecordResponse,
    status_code=status.HTTP_201_CREATED
)
async def report_sorting_abnormal(
    request: Request,
    body: SortingAbnormalReport,
    parcel_id: str = Path(..., description="Parcel ID"),
    current_operator: dict = Depends(require_role(STATION_ROLES)),
    recorder: AbnormalEventRecorder = Depends(get_abnormal_recorder),
    db: AsyncSession = Depends(get_db)
):
    """
    Flag a parcel as abnormal during sorting.

    Opens a pending abnormal record handled by the reporting operator.
    """
    record = await recorder.handle_sorting_abnormal(parcel_id, body.reason, operator_id(current_operator))
    await log_operator_event(
        db, current_operator, AuditAction.SORTING_ABNORMAL_REPORTED, "parcel", parcel_id,
        metadata={"record_id": record.record_id, "reason": body.reason},
        ip_address=client_ip(request),
    )
    await db.commit()
    return AbnormalRecordResponse.model_validate(record)


@router.post("/abnormal-records/{record_id}/resolve", response_model=AbnormalRecordResponse)
async def resolve_abnormal_record(
    request: Request,
    body: AbnormalRecordResolve,
    record_id: str = Path(..., description="Abnormal record ID"),
    current_operator: dict = Depends(require_role(STATION_ROLES)),
    recorder: AbnormalEventRecorder = Depends(get_abnormal_recorder),
    db: AsyncSession = Depends(get_db)
):
    record = await recorder.resolve_record(record_id, body.processing_method, operator_id(current_operator))
    await log_operator_event(
        db, current_operator, AuditAction.ABNORMAL_RECORD_RESOLVED, "abnormal_record", record_id,
        metadata={"processing_method": body.processing_method},
        ip_address=client_ip(request),
    )
    await db.commit()
    return AbnormalRecordResponse.model_validate(record)
