"""
Abnormal-event recorder for the sorting domain.

Marks a parcel abnormal, files an abnormal record and writes the matching
trace entry. Any parcel may be marked abnormal whatever its current status.
"""

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import InvalidParamError, ResourceNotFoundError
from backend.app.models.abnormal_record import AbnormalRecord
from backend.app.models.parcel_enums import AbnormalRecordStatus, ParcelStatus, TraceNodeType
from backend.app.services.parcel_registry import ParcelRegistry, TraceStamp

SORTING_ABNORMAL_TYPE = "sorting"
SORTING_CENTER_NODE = "Sorting Center"


class AbnormalEventRecorder:

    def __init__(self, db: AsyncSession, registry: ParcelRegistry):
        self.db = db
        self.registry = registry

    async def handle_sorting_abnormal(self, parcel_id: str, reason: str, handler: str) -> AbnormalRecord:
        """Flag a parcel as abnormal during sorting and open a pending record."""
        if not reason or not handler:
            raise InvalidParamError("reason and handler are required")

        parcel = await self.registry.get_parcel(parcel_id)
        previous = parcel.status.value
        await self.registry.update_status(parcel_id, ParcelStatus.ABNORMAL, reason, handler)

        record = AbnormalRecord(
            record_id=self.registry.ids.abnormal_record_id(),
            parcel_id=parcel_id,
            abnormal_type=SORTING_ABNORMAL_TYPE,
            abnormal_reason=reason,
            processor=handler,
            status=AbnormalRecordStatus.PENDING,
        )
        self.db.add(record)

        await self.registry.append_trace(
            parcel_id,
            TraceStamp(
                TraceNodeType.ABNORMAL,
                SORTING_CENTER_NODE,
                handler,
                f"Sorting abnormal: {reason} (was {previous})",
            ),
        )
        await self.db.flush()
        return record

    async def get_record(self, record_id: str) -> AbnormalRecord:
        result = await self.db.execute(
            select(AbnormalRecord).where(AbnormalRecord.record_id == record_id)
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise ResourceNotFoundError("Abnormal record", record_id)
        return record

    async def resolve_record(self, record_id: str, processing_method: str, processor: str) -> AbnormalRecord:
        """Close an abnormal record. Resolving twice overwrites the resolution."""
        if not processing_method or not processor:
            raise InvalidParamError("processing_method and processor are required")

        record = await self.get_record(record_id)
        record.processing_method = processing_method
        record.processor = processor
        record.processing_time = datetime.utcnow()
        record.status = AbnormalRecordStatus.PROCESSED
        await self.db.flush()
        return record
