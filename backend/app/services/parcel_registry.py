"""
Parcel Registry.

Sole owner of parcel records and their status. Coordinators and the
abnormal-event recorder change a parcel's status only through
`update_status`; nothing else writes parcel fields.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import InvalidParamError, ResourceNotFoundError
from backend.app.models.parcel import Parcel
from backend.app.models.parcel_trace import ParcelTrace
from backend.app.models.parcel_enums import ParcelStatus, TraceNodeType
from backend.app.services.geocoding import GeocodingClient
from backend.app.services.id_provider import IDProvider, id_provider

PARCEL_FIELDS = (
    "sender_name", "sender_phone", "sender_address",
    "receiver_name", "receiver_phone", "receiver_address",
    "receiver_province", "receiver_city", "receiver_district",
    "weight_kg", "length_cm", "width_cm", "height_cm",
)

NO_TRACE_YET = "no trace yet"


@dataclass(frozen=True)
class TraceStamp:
    """Describes the trace entry written alongside a status change."""
    node_type: TraceNodeType
    node_name: str
    operator: Optional[str] = None
    remark: Optional[str] = None


class ParcelRegistry:

    def __init__(
        self,
        db: AsyncSession,
        ids: IDProvider = id_provider,
        geocoder: Optional[GeocodingClient] = None
    ):
        self.db = db
        self.ids = ids
        self.geocoder = geocoder

    async def create_parcel(
        self,
        fields: Mapping[str, Any],
        operator: str,
        node_name: str,
        node_address: str,
        parcel_id: Optional[str] = None
    ) -> Parcel:
        """
        Register a collected parcel and write its collection trace.

        Args:
            fields: Sender, receiver and dimension fields (see PARCEL_FIELDS)
            operator: Station staff collecting the parcel
            node_name: Collection station name
            node_address: Collection station address, geocoded for the trace
            parcel_id: Pre-printed waybill number; generated when omitted

        Returns:
            The new parcel with status `collected`
        """
        if not operator or not node_name or not node_address:
            raise InvalidParamError("operator, node_name and node_address are required")

        parcel = Parcel(
            parcel_id=parcel_id or self.ids.parcel_id(),
            status=ParcelStatus.COLLECTED,
            **{name: fields.get(name) for name in PARCEL_FIELDS}
        )
        self.db.add(parcel)
        # Parcel row must exist before its first trace references it
        await self.db.flush()

        lng, lat = (0.0, 0.0)
        if self.geocoder is not None:
            lng, lat = await self.geocoder.coordinates_for(node_address)

        await self.append_trace(
            parcel.parcel_id,
            TraceStamp(TraceNodeType.COLLECTION, node_name, operator, "Parcel collected"),
            node_address=node_address,
            longitude=lng,
            latitude=lat,
        )
        await self.db.flush()
        return parcel

    async def get_parcel(self, parcel_id: str) -> Parcel:
        """Fetch a live (not soft-deleted) parcel or raise ResourceNotFoundError."""
        result = await self.db.execute(
            select(Parcel).where(Parcel.parcel_id == parcel_id, Parcel.deleted_at.is_(None))
        )
        parcel = result.scalar_one_or_none()
        if parcel is None:
            raise ResourceNotFoundError("Parcel", parcel_id)
        return parcel

    async def list_parcels(self, status: Optional[Union[str, ParcelStatus]] = None) -> List[Parcel]:
        query = select(Parcel).where(Parcel.deleted_at.is_(None))
        if status:
            query = query.where(Parcel.status == self._coerce_status(status))
        result = await self.db.execute(query.order_by(Parcel.created_at))
        return list(result.scalars().all())

    async def update_status(
        self,
        parcel_id: str,
        status: Union[str, ParcelStatus],
        reason: Optional[str] = None,
        handler: Optional[str] = None
    ) -> Parcel:
        """
        Set a parcel's status.

        Empty `reason`/`handler` keep whatever abnormal info the parcel
        already carries.
        """
        new_status = self._coerce_status(status)
        parcel = await self.get_parcel(parcel_id)
        parcel.status = new_status
        if reason:
            parcel.abnormal_reason = reason
        if handler:
            parcel.abnormal_handler = handler
        parcel.updated_at = datetime.utcnow()
        return parcel

    async def sort_parcel(self, parcel_id: str, operator: str, node_name: str) -> Parcel:
        parcel = await self.update_status(parcel_id, ParcelStatus.SORTED)
        await self.append_trace(
            parcel_id,
            TraceStamp(TraceNodeType.SORTING, node_name, operator, "Parcel sorted"),
        )
        await self.db.flush()
        return parcel

    async def append_trace(
        self,
        parcel_id: str,
        stamp: TraceStamp,
        node_address: Optional[str] = None,
        longitude: float = 0.0,
        latitude: float = 0.0,
        operation_time: Optional[datetime] = None
    ) -> ParcelTrace:
        trace = ParcelTrace(
            trace_id=self.ids.trace_id(),
            parcel_id=parcel_id,
            node_type=stamp.node_type,
            node_name=stamp.node_name,
            node_address=node_address,
            longitude=longitude,
            latitude=latitude,
            operator=stamp.operator,
            operation_time=operation_time or datetime.utcnow(),
            remark=stamp.remark,
        )
        self.db.add(trace)
        return trace

    async def get_traces(self, parcel_id: str) -> List[ParcelTrace]:
        await self.db.flush()
        result = await self.db.execute(
            select(ParcelTrace)
            .where(ParcelTrace.parcel_id == parcel_id)
            .order_by(ParcelTrace.operation_time.asc())
        )
        return list(result.scalars().all())

    async def get_parcel_detail(self, parcel_id: str) -> Dict[str, Any]:
        """Parcel summary with its current position and full trace history."""
        parcel = await self.get_parcel(parcel_id)
        traces = await self.get_traces(parcel_id)

        return {
            "parcel_id": parcel.parcel_id,
            "sender_info": {
                "name": parcel.sender_name,
                "phone": parcel.sender_phone,
                "address": parcel.sender_address,
            },
            "receiver_info": {
                "name": parcel.receiver_name,
                "phone": parcel.receiver_phone,
                "address": parcel.receiver_address,
            },
            "current_status": parcel.status.value,
            "current_position": traces[-1].node_name if traces else NO_TRACE_YET,
            "abnormal_reason": parcel.abnormal_reason,
            "trace_history": [
                {
                    "node_type": t.node_type.value,
                    "node_name": t.node_name,
                    "operator": t.operator,
                    "operation_time": t.operation_time,
                    "longitude": t.longitude,
                    "latitude": t.latitude,
                    "remark": t.remark,
                }
                for t in traces
            ],
        }

    async def soft_delete(self, parcel_id: str) -> Parcel:
        parcel = await self.get_parcel(parcel_id)
        parcel.deleted_at = datetime.utcnow()
        await self.db.flush()
        return parcel

    @staticmethod
    def _coerce_status(status: Union[str, ParcelStatus]) -> ParcelStatus:
        try:
            return ParcelStatus(status)
        except ValueError:
            raise InvalidParamError(f"Unknown parcel status: {status}")
