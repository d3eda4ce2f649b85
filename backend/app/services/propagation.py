"""
Status propagation.

Applies a task-derived status to every parcel bound to the task. A failure
on one parcel does not abort the loop or the task transition: it is logged
as a warning, parked in the dead letter queue for replay and listed in the
returned report.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, List, Optional, Union

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import AppException
from backend.app.models.dlq import DeadLetterQueue, DLQStatus
from backend.app.models.parcel_enums import ParcelStatus, TraceNodeType
from backend.app.services.parcel_registry import ParcelRegistry, TraceStamp

logger = logging.getLogger("parcel_tracking.propagation")

PROPAGATION_TASK_NAME = "parcel_status_propagation"
OPEN_STATUSES = (DLQStatus.FAILED, DLQStatus.RETRYING)


def trace_to_payload(trace: TraceStamp) -> dict:
    return {
        "node_type": trace.node_type.value,
        "node_name": trace.node_name,
        "operator": trace.operator,
        "remark": trace.remark,
    }


def trace_from_payload(data: dict) -> TraceStamp:
    return TraceStamp(TraceNodeType(data["node_type"]), data["node_name"], data.get("operator"), data.get("remark"))


@dataclass(frozen=True)
class PropagationFailure:
    parcel_id: str
    error: str
    dlq_id: Optional[int] = None


@dataclass
class PropagationReport:
    status: str
    updated: List[str] = field(default_factory=list)
    failures: List[PropagationFailure] = field(default_factory=list)

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)

    @property
    def warnings(self) -> List[str]:
        return [f"parcel {f.parcel_id} not updated to {self.status}: {f.error}" for f in self.failures]


@dataclass
class TaskTransition:
    """Outcome of a task status change: the task, where it came from, and its propagation."""
    task: Any
    previous_status: str
    propagation: Optional[PropagationReport] = None

    @property
    def warnings(self) -> List[str]:
        return self.propagation.warnings if self.propagation else []


@dataclass
class BindResult:
    """
    Outcome of a bind call.

    `skipped` lists requested IDs that were already bound (transport merge);
    `unbound` lists previously bound IDs dropped by a replacing bind (delivery).
    """
    task: Any
    bound: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    unbound: List[str] = field(default_factory=list)


class StatusPropagator:

    def __init__(self, db: AsyncSession, registry: ParcelRegistry):
        self.db = db
        self.registry = registry

    async def propagate(
        self,
        task_id: str,
        parcel_ids: Iterable[str],
        status: Union[str, ParcelStatus],
        reason: Optional[str] = None,
        handler: Optional[str] = None,
        trace: Optional[TraceStamp] = None
    ) -> PropagationReport:
        """
        Set `status` on each parcel, best-effort.

        Args:
            task_id: Task whose transition triggered the propagation
            parcel_ids: Bound parcel IDs
            status: Derived parcel status
            reason: Abnormal reason to record on each parcel
            handler: Abnormal handler to record on each parcel
            trace: Trace entry to append for every updated parcel

        Returns:
            PropagationReport listing updated parcels and failures
        """
        status_value = ParcelStatus(status).value
        report = PropagationReport(status=status_value)

        for parcel_id in parcel_ids:
            try:
                await self.registry.update_status(parcel_id, status_value, reason, handler)
            except AppException as e:
                report.failures.append(
                    await self._record_failure(task_id, parcel_id, status_value, reason, handler, e, trace)
                )
                continue
            if trace is not None:
                await self.registry.append_trace(parcel_id, trace)
            report.updated.append(parcel_id)

        await self.db.flush()
        return report

    async def replay(self, entry: DeadLetterQueue) -> bool:
        """
        Re-apply a parked propagation.

        Returns True and marks the entry PROCESSED on success; otherwise bumps
        the retry count and leaves it RETRYING. An entry with a newer entry for
        the same task and parcel is stale: it is ARCHIVED without touching the
        parcel. A successful replay archives older open entries for the pair.
        """
        if await self._newer_entry_exists(entry):
            entry.status = DLQStatus.ARCHIVED
            logger.warning("DLQ entry %s superseded by a newer propagation, archived", entry.id)
            await self.db.flush()
            return False

        payload = entry.payload or {}
        entry.retry_count = (entry.retry_count or 0) + 1
        entry.last_retry_at = datetime.utcnow()
        try:
            await self.registry.update_status(
                payload["parcel_id"],
                payload["status"],
                payload.get("reason"),
                payload.get("handler"),
            )
        except AppException as e:
            entry.status = DLQStatus.RETRYING
            entry.error_message = e.message
            logger.warning("Replay of DLQ entry %s failed: %s", entry.id, e.message)
            await self.db.flush()
            return False

        if payload.get("trace"):
            await self.registry.append_trace(payload["parcel_id"], trace_from_payload(payload["trace"]))
        entry.status = DLQStatus.PROCESSED
        await self.db.execute(
            update(DeadLetterQueue)
            .where(*self._same_pair(entry), DeadLetterQueue.id < entry.id, DeadLetterQueue.status.in_(OPEN_STATUSES))
            .values(status=DLQStatus.ARCHIVED)
        )
        await self.db.flush()
        return True

    async def _newer_entry_exists(self, entry: DeadLetterQueue) -> bool:
        result = await self.db.execute(
            select(DeadLetterQueue.id).where(*self._same_pair(entry), DeadLetterQueue.id > entry.id).limit(1)
        )
        return result.scalar_one_or_none() is not None

    @staticmethod
    def _same_pair(entry: DeadLetterQueue):
        return (
            DeadLetterQueue.task_name == entry.task_name,
            DeadLetterQueue.source_task_id == entry.source_task_id,
            DeadLetterQueue.reference_id == entry.reference_id,
        )

    async def _record_failure(
        self,
        task_id: str,
        parcel_id: str,
        status: str,
        reason: Optional[str],
        handler: Optional[str],
        error: AppException,
        trace: Optional[TraceStamp] = None
    ) -> PropagationFailure:
        logger.warning(
            "Propagation of %s from task %s to parcel %s failed: %s",
            status, task_id, parcel_id, error.message,
            extra={"task_id": task_id, "parcel_id": parcel_id, "error_code": error.error_code},
        )
        entry = DeadLetterQueue(
            task_name=PROPAGATION_TASK_NAME,
            source_task_id=task_id,
            reference_id=parcel_id,
            error_message=error.message,
            payload={
                "parcel_id": parcel_id,
                "status": status,
                "reason": reason,
                "handler": handler,
                "trace": trace_to_payload(trace) if trace is not None else None,
            },
            status=DLQStatus.FAILED,
        )
        self.db.add(entry)
        await self.db.flush()
        return PropagationFailure(parcel_id=parcel_id, error=error.message, dlq_id=entry.id)
