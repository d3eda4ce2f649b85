"""
Transport Coordinator.

Owns transport tasks and their parcel bindings. Status changes go through
the transport state machine; approved changes are propagated to every bound
parcel through the parcel registry.
"""

from datetime import datetime
from typing import List, Optional, Union

from sqlalchemy import select, func, insert
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.exceptions import (
    InvalidParamError, ResourceNotFoundError, NotBindableError,
    InvalidBindingError, NotOwnedError, TaskNotAbnormalError
)
from backend.app.domain.tasks.state_machine import TaskStateMachine, transport_state_machine
from backend.app.models.parcel import Parcel
from backend.app.models.parcel_enums import ParcelStatus, TraceNodeType
from backend.app.models.task_enums import TransportTaskStatus
from backend.app.models.transport_task import TransportTask, TransportTaskParcel
from backend.app.models.value_objects import AbnormalInfo, RouteInfo
from backend.app.services.id_provider import IDProvider, id_provider
from backend.app.services.parcel_registry import ParcelRegistry, TraceStamp
from backend.app.services.propagation import BindResult, StatusPropagator, TaskTransition

BINDABLE_STATUSES = (TransportTaskStatus.PENDING, TransportTaskStatus.TRANSPORTING)

# Task status -> derived parcel status
PARCEL_STATUS_ON = {
    TransportTaskStatus.TRANSPORTING: ParcelStatus.TRANSPORTING,
    TransportTaskStatus.ARRIVED: ParcelStatus.ARRIVED,
}


def unique_ids(parcel_ids: List[str]) -> List[str]:
    """Drop empty and repeated IDs, keeping first-seen order."""
    seen = set()
    result = []
    for parcel_id in parcel_ids:
        if not parcel_id or parcel_id in seen:
            continue
        seen.add(parcel_id)
        result.append(parcel_id)
    return result


class TransportCoordinator:

    def __init__(
        self,
        db: AsyncSession,
        registry: ParcelRegistry,
        propagator: Optional[StatusPropagator] = None,
        ids: IDProvider = id_provider,
        state_machine: TaskStateMachine = transport_state_machine,
        bind_batch_size: Optional[int] = None
    ):
        self.db = db
        self.registry = registry
        self.propagator = propagator or StatusPropagator(db, registry)
        self.ids = ids
        self.state_machine = state_machine
        self.bind_batch_size = bind_batch_size or settings.bind_batch_size

    async def create_task(
        self,
        start_node: str,
        end_node: str,
        vehicle_id: str,
        driver_id: Optional[str] = None,
        driver_name: Optional[str] = None,
        estimated_time: Optional[datetime] = None,
        route_json: Optional[str] = None,
        distance_km: Optional[float] = None
    ) -> TransportTask:
        if not start_node or not end_node or not vehicle_id:
            raise InvalidParamError("start_node, end_node and vehicle_id are required")

        task = TransportTask(
            task_id=self.ids.transport_task_id(),
            start_node=start_node,
            end_node=end_node,
            vehicle_id=vehicle_id,
            driver_id=driver_id,
            driver_name=driver_name,
            estimated_time=estimated_time,
            status=TransportTaskStatus.PENDING,
            package_count=0,
        )
        task.route = RouteInfo(route_json=route_json, distance_km=distance_km)
        self.db.add(task)
        await self.db.flush()
        return task

    async def get_task(self, task_id: str) -> TransportTask:
        result = await self.db.execute(
            select(TransportTask).where(TransportTask.task_id == task_id, TransportTask.deleted_at.is_(None))
        )
        task = result.scalar_one_or_none()
        if task is None:
            raise ResourceNotFoundError("Transport task", task_id)
        return task

    async def get_bound_parcel_ids(self, task_id: str) -> List[str]:
        result = await self.db.execute(
            select(TransportTaskParcel.parcel_id)
            .where(TransportTaskParcel.transport_task_id == task_id, TransportTaskParcel.deleted_at.is_(None))
            .order_by(TransportTaskParcel.added_at, TransportTaskParcel.id)
        )
        return list(result.scalars().all())

    async def count_bound_parcels(self, task_id: str) -> int:
        result = await self.db.execute(
            select(func.count(TransportTaskParcel.id))
            .where(TransportTaskParcel.transport_task_id == task_id, TransportTaskParcel.deleted_at.is_(None))
        )
        return result.scalar() or 0

    async def change_status(self, task_id: str, new_status: Union[str, TransportTaskStatus]) -> TaskTransition:
        """
        Move a transport task along its transition graph.

        On `transporting` and `arrived` every bound parcel takes the same
        status. Parcel updates are best-effort; failures are reported in the
        returned transition, not raised.

        Raises:
            ResourceNotFoundError: Unknown task
            InvalidTransitionError: `new_status` is not a successor of the current status
        """
        task = await self.get_task(task_id)
        return await self._transition(task, new_status)

    async def bind_packages(self, task_id: str, parcel_ids: List[str]) -> BindResult:
        """
        Bind sorted parcels to a pending or transporting task.

        Empty and already-bound IDs are skipped; `package_count` is recomputed
        from the join table so repeated calls never double count.

        Raises:
            NotBindableError: Task is not pending/transporting
            InvalidParamError: No parcel IDs given
            ResourceNotFoundError: A parcel does not exist
            InvalidBindingError: A parcel is not sorted
        """
        task = await self.get_task(task_id)
        if task.status not in BINDABLE_STATUSES:
            raise NotBindableError(task_id, task.status.value)

        candidates = unique_ids(parcel_ids)
        if not candidates:
            raise InvalidParamError("parcel_ids must contain at least one parcel ID")

        for parcel_id in candidates:
            parcel = await self.registry.get_parcel(parcel_id)
            if parcel.status != ParcelStatus.SORTED:
                raise InvalidBindingError(parcel_id, parcel.status.value, ParcelStatus.SORTED.value)

        already_bound = set(await self.get_bound_parcel_ids(task_id))
        new_ids = [p for p in candidates if p not in already_bound]

        now = datetime.utcnow()
        for start in range(0, len(new_ids), self.bind_batch_size):
            batch = new_ids[start:start + self.bind_batch_size]
            await self.db.execute(
                insert(TransportTaskParcel),
                [{"transport_task_id": task_id, "parcel_id": p, "added_at": now} for p in batch]
            )

        task.package_count = await self.count_bound_parcels(task_id)
        task.updated_at = now
        await self.db.flush()

        return BindResult(task=task, bound=new_ids, skipped=[p for p in candidates if p in already_bound])

    async def report_abnormal(self, task_id: str, abnormal_type: str, reason: str, handler: str) -> TaskTransition:
        """
        Force the task into `abnormal`, bypassing the transition graph.

        Every bound parcel becomes `transport_abnormal` with the given reason
        and handler (best-effort).
        """
        task = await self.get_task(task_id)
        previous = task.status.value
        now = datetime.utcnow()

        task.status = TransportTaskStatus.ABNORMAL
        task.abnormal = AbnormalInfo(
            abnormal_type=abnormal_type,
            reason=reason,
            handler=handler,
            handle_time=now,
        )
        task.updated_at = now

        report = await self.propagator.propagate(
            task_id,
            await self.get_bound_parcel_ids(task_id),
            ParcelStatus.TRANSPORT_ABNORMAL,
            reason=reason,
            handler=handler,
            trace=TraceStamp(TraceNodeType.ABNORMAL, task.start_node, handler, f"Transport abnormal: {reason}"),
        )
        await self.db.flush()
        return TaskTransition(task=task, previous_status=previous, propagation=report)

    async def handle_abnormal(
        self,
        task_id: str,
        result: str,
        new_status: Union[str, TransportTaskStatus]
    ) -> TaskTransition:
        """Record how an abnormal task was handled, then resume it through the state machine."""
        task = await self.get_task(task_id)
        if task.status != TransportTaskStatus.ABNORMAL:
            raise TaskNotAbnormalError(task_id, task.status.value)

        # Validate first so a rejected target leaves the abnormal info untouched
        self.state_machine.validate(task.status, new_status)
        current = task.abnormal
        task.abnormal = AbnormalInfo(
            abnormal_type=current.abnormal_type if current else "",
            reason=current.reason if current else "",
            handler=current.handler if current else "",
            handle_time=datetime.utcnow(),
            handle_result=result,
        )
        return await self._transition(task, new_status)

    async def get_task_packages(self, driver_id: str, task_id: str) -> List[Parcel]:
        """Parcels on a task, visible only to the task's driver."""
        task = await self.get_task(task_id)
        if task.driver_id != driver_id:
            raise NotOwnedError(task_id, driver_id)
        return [await self.registry.get_parcel(p) for p in await self.get_bound_parcel_ids(task_id)]

    async def list_driver_tasks(
        self,
        driver_id: str,
        status: Optional[Union[str, TransportTaskStatus]] = None
    ) -> List[TransportTask]:
        query = select(TransportTask).where(
            TransportTask.driver_id == driver_id,
            TransportTask.deleted_at.is_(None)
        )
        if status:
            try:
                query = query.where(TransportTask.status == TransportTaskStatus(status))
            except ValueError:
                raise InvalidParamError(f"Unknown transport task status: {status}")
        result = await self.db.execute(query.order_by(TransportTask.created_at.desc()))
        return list(result.scalars().all())

    async def _transition(self, task: TransportTask, new_status) -> TaskTransition:
        target = self.state_machine.validate(task.status, new_status)
        previous = task.status.value
        now = datetime.utcnow()

        task.status = target
        if target == TransportTaskStatus.TRANSPORTING:
            task.started_at = now
        elif target == TransportTaskStatus.ARRIVED:
            task.actual_arrive_time = now
        elif target == TransportTaskStatus.COMPLETED:
            task.completed_at = now
        task.updated_at = now

        report = None
        parcel_status = PARCEL_STATUS_ON.get(target)
        if parcel_status is not None:
            report = await self.propagator.propagate(
                task.task_id,
                await self.get_bound_parcel_ids(task.task_id),
                parcel_status,
                trace=self._trace_for(task, target),
            )

        await self.db.flush()
        return TaskTransition(task=task, previous_status=previous, propagation=report)

    @staticmethod
    def _trace_for(task: TransportTask, target: TransportTaskStatus) -> TraceStamp:
        operator = task.driver_name or task.driver_id
        if target == TransportTaskStatus.ARRIVED:
            return TraceStamp(TraceNodeType.TRANSPORT, task.end_node, operator,
                              f"Arrived at {task.end_node} (task {task.task_id})")
        return TraceStamp(TraceNodeType.TRANSPORT, task.start_node, operator,
                          f"Departed {task.start_node} for {task.end_node} (task {task.task_id})")
