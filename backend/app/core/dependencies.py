"""
FastAPI dependencies.

Authentication of the calling operator, plus providers that build the
domain services on top of the request's database session.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.jwt import decode_access_token
from backend.app.db.session import get_db
from backend.app.services.abnormal_recorder import AbnormalEventRecorder
from backend.app.services.delivery_coordinator import DeliveryCoordinator
from backend.app.services.geocoding import GeocodingClient
from backend.app.services.parcel_registry import ParcelRegistry
from backend.app.services.propagation import StatusPropagator
from backend.app.services.transport_coordinator import TransportCoordinator

# HTTP Bearer security scheme
security = HTTPBearer()


async def get_current_operator(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> dict:
    """
    Decode the bearer token of the calling operator.

    Returns:
        Token payload; `sub` is the operator ID, `role` an OperatorRole value

    Raises:
        HTTPException: 401 if the token is invalid, expired or lacks a subject
    """
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return payload


def get_geocoder() -> GeocodingClient:
    return GeocodingClient()


def get_parcel_registry(
    db: AsyncSession = Depends(get_db),
    geocoder: GeocodingClient = Depends(get_geocoder)
) -> ParcelRegistry:
    return ParcelRegistry(db, geocoder=geocoder)


def get_status_propagator(
    db: AsyncSession = Depends(get_db),
    registry: ParcelRegistry = Depends(get_parcel_registry)
) -> StatusPropagator:
    return StatusPropagator(db, registry)


def get_abnormal_recorder(
    db: AsyncSession = Depends(get_db),
    registry: ParcelRegistry = Depends(get_parcel_registry)
) -> AbnormalEventRecorder:
    return AbnormalEventRecorder(db, registry)


def get_transport_coordinator(
    db: AsyncSession = Depends(get_db),
    registry: ParcelRegistry = Depends(get_parcel_registry),
    propagator: StatusPropagator = Depends(get_status_propagator)
) -> TransportCoordinator:
    return TransportCoordinator(db, registry, propagator)


def get_delivery_coordinator(
    db: AsyncSession = Depends(get_db),
    registry: ParcelRegistry = Depends(get_parcel_registry),
    propagator: StatusPropagator = Depends(get_status_propagator)
) -> DeliveryCoordinator:
    return DeliveryCoordinator(db, registry, propagator)
