"""
Delivery Coordinator.

Owns delivery tasks, their ordered parcel bindings and signature capture.
Completing a task requires every bound parcel to be signed first.
"""

from datetime import datetime
from typing import List, Optional, Union

from sqlalchemy import select, func, insert, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import (
    InvalidParamError, ResourceNotFoundError, NotBindableError, InvalidBindingError,
    NotOwnedError, PackageNotBoundError, TaskNotAbnormalError, UnsignedPackageError
)
from backend.app.domain.tasks.state_machine import TaskStateMachine, delivery_state_machine
from backend.app.models.delivery_task import DeliveryTask, DeliveryTaskParcel
from backend.app.models.parcel import Parcel
from backend.app.models.parcel_enums import ParcelStatus, TraceNodeType
from backend.app.models.task_enums import DeliveryTaskStatus
from backend.app.models.value_objects import AbnormalInfo, SignInfo
from backend.app.services.id_provider import IDProvider, id_provider
from backend.app.services.parcel_registry import ParcelRegistry, TraceStamp
from backend.app.services.propagation import BindResult, StatusPropagator, TaskTransition
from backend.app.services.transport_coordinator import unique_ids

PHONE_MASK = "*******"


def mask_phone(phone: str) -> str:
    """Keep the last four digits of an 11-digit mobile number; pass anything else through."""
    if phone is None or len(phone) != 11 or not phone.isdigit():
        return phone
    return PHONE_MASK + phone[7:]


class DeliveryCoordinator:

    def __init__(
        self,
        db: AsyncSession,
        registry: ParcelRegistry,
        propagator: Optional[StatusPropagator] = None,
        ids: IDProvider = id_provider,
        state_machine: TaskStateMachine = delivery_state_machine
    ):
        self.db = db
        self.registry = registry
        self.propagator = propagator or StatusPropagator(db, registry)
        self.ids = ids
        self.state_machine = state_machine

    async def create_task(
        self,
        delivery_area: str,
        courier_id: str,
        start_node: str,
        courier_name: Optional[str] = None
    ) -> DeliveryTask:
        if not delivery_area or not courier_id or not start_node:
            raise InvalidParamError("delivery_area, courier_id and start_node are required")

        task = DeliveryTask(
            task_id=self.ids.delivery_task_id(),
            delivery_area=delivery_area,
            courier_id=courier_id,
            courier_name=courier_name,
            start_node=start_node,
            status=DeliveryTaskStatus.PENDING,
            package_count=0,
        )
        self.db.add(task)
        await self.db.flush()
        return task

    async def get_task(self, task_id: str) -> DeliveryTask:
        result = await self.db.execute(
            select(DeliveryTask).where(DeliveryTask.task_id == task_id, DeliveryTask.deleted_at.is_(None))
        )
        task = result.scalar_one_or_none()
        if task is None:
            raise ResourceNotFoundError("Delivery task", task_id)
        return task

    async def get_bindings(self, task_id: str) -> List[DeliveryTaskParcel]:
        """Live bindings in delivery order."""
        result = await self.db.execute(
            select(DeliveryTaskParcel)
            .where(DeliveryTaskParcel.delivery_task_id == task_id, DeliveryTaskParcel.deleted_at.is_(None))
            .order_by(DeliveryTaskParcel.delivery_order)
        )
        return list(result.scalars().all())

    async def get_bound_parcel_ids(self, task_id: str) -> List[str]:
        return [b.parcel_id for b in await self.get_bindings(task_id)]

    async def get_binding(self, task_id: str, parcel_id: str) -> DeliveryTaskParcel:
        result = await self.db.execute(
            select(DeliveryTaskParcel).where(
                DeliveryTaskParcel.delivery_task_id == task_id,
                DeliveryTaskParcel.parcel_id == parcel_id,
                DeliveryTaskParcel.deleted_at.is_(None)
            )
        )
        binding = result.scalar_one_or_none()
        if binding is None:
            raise PackageNotBoundError(task_id, parcel_id)
        return binding

    async def count_bound_parcels(self, task_id: str) -> int:
        result = await self.db.execute(
            select(func.count(DeliveryTaskParcel.id))
            .where(DeliveryTaskParcel.delivery_task_id == task_id, DeliveryTaskParcel.deleted_at.is_(None))
        )
        return result.scalar() or 0

    async def bind_packages(self, task_id: str, parcel_ids: List[str]) -> BindResult:
        """
        Replace the task's bindings with `parcel_ids`.

        The call is not a merge: callers pass the full desired set every time.
        Delivery order follows input order, starting at 1.

        Raises:
            NotBindableError: Task is not pending
            InvalidParamError: No parcel IDs given
            ResourceNotFoundError: A parcel does not exist
            InvalidBindingError: A parcel has not arrived
        """
        task = await self.get_task(task_id)
        if task.status != DeliveryTaskStatus.PENDING:
            raise NotBindableError(task_id, task.status.value)

        candidates = unique_ids(parcel_ids)
        if not candidates:
            raise InvalidParamError("parcel_ids must contain at least one parcel ID")

        for parcel_id in candidates:
            parcel = await self.registry.get_parcel(parcel_id)
            if parcel.status != ParcelStatus.ARRIVED:
                raise InvalidBindingError(parcel_id, parcel.status.value, ParcelStatus.ARRIVED.value)

        previous = set(await self.get_bound_parcel_ids(task_id))
        now = datetime.utcnow()

        await self.db.execute(
            update(DeliveryTaskParcel)
            .where(DeliveryTaskParcel.delivery_task_id == task_id, DeliveryTaskParcel.deleted_at.is_(None))
            .values(deleted_at=now)
        )
        await self.db.execute(
            insert(DeliveryTaskParcel),
            [
                {"delivery_task_id": task_id, "parcel_id": p, "delivery_order": order, "added_at": now}
                for order, p in enumerate(candidates, start=1)
            ]
        )

        task.package_count = await self.count_bound_parcels(task_id)
        task.updated_at = now
        await self.db.flush()

        return BindResult(task=task, bound=candidates, unbound=sorted(previous - set(candidates)))

    async def change_status(self, task_id: str, new_status: Union[str, DeliveryTaskStatus]) -> TaskTransition:
        """
        Move a delivery task along its transition graph.

        `delivering` propagates to every bound parcel. `completed` first checks
        that every bound parcel is signed and only then marks them delivered.

        Raises:
            ResourceNotFoundError: Unknown task
            InvalidTransitionError: Illegal transition
            UnsignedPackageError: Completion requested with unsigned parcels
        """
        task = await self.get_task(task_id)
        return await self._transition(task, new_status)

    async def sign_package(
        self,
        task_id: str,
        parcel_id: str,
        courier_id: str,
        signer_name: str,
        signer_phone: str,
        sign_type: str,
        remark: Optional[str] = None
    ) -> DeliveryTaskParcel:
        """
        Capture a signature and mark the parcel delivered right away.

        The parcel shows `delivered` even while its task is still delivering.
        """
        task = await self.get_task(task_id)
        if task.courier_id != courier_id:
            raise NotOwnedError(task_id, courier_id)
        if not signer_name or not sign_type:
            raise InvalidParamError("signer_name and sign_type are required")

        binding = await self.get_binding(task_id, parcel_id)
        now = datetime.utcnow()
        binding.sign_info = SignInfo(
            signer_name=signer_name,
            signer_phone=mask_phone(signer_phone),
            sign_time=now,
            sign_type=sign_type,
            remark=remark,
        )

        await self.registry.update_status(parcel_id, ParcelStatus.DELIVERED)
        await self.registry.append_trace(
            parcel_id,
            TraceStamp(TraceNodeType.SIGN, task.delivery_area, task.courier_name or courier_id,
                       f"Signed by {signer_name} ({sign_type})"),
            operation_time=now,
        )
        await self.db.flush()
        return binding

    async def report_abnormal(self, task_id: str, abnormal_type: str, reason: str, handler: str) -> TaskTransition:
        """Force the task into `abnormal`; bound parcels become `delivery_abnormal` (best-effort)."""
        task = await self.get_task(task_id)
        previous = task.status.value
        now = datetime.utcnow()

        task.status = DeliveryTaskStatus.ABNORMAL
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
            ParcelStatus.DELIVERY_ABNORMAL,
            reason=reason,
            handler=handler,
            trace=TraceStamp(TraceNodeType.ABNORMAL, task.delivery_area, handler, f"Delivery abnormal: {reason}"),
        )
        await self.db.flush()
        return TaskTransition(task=task, previous_status=previous, propagation=report)

    async def handle_abnormal(
        self,
        task_id: str,
        result: str,
        new_status: Union[str, DeliveryTaskStatus]
    ) -> TaskTransition:
        """Record the outcome of an abnormal task (e.g. second delivery, return) and resume it."""
        task = await self.get_task(task_id)
        if task.status != DeliveryTaskStatus.ABNORMAL:
            raise TaskNotAbnormalError(task_id, task.status.value)

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

    async def get_task_packages(self, courier_id: str, task_id: str) -> List[Parcel]:
        task = await self.get_task(task_id)
        if task.courier_id != courier_id:
            raise NotOwnedError(task_id, courier_id)
        return [await self.registry.get_parcel(p) for p in await self.get_bound_parcel_ids(task_id)]

    async def list_courier_tasks(
        self,
        courier_id: str,
        status: Optional[Union[str, DeliveryTaskStatus]] = None
    ) -> List[DeliveryTask]:
        query = select(DeliveryTask).where(
            DeliveryTask.courier_id == courier_id,
            DeliveryTask.deleted_at.is_(None)
        )
        if status:
            try:
                query = query.where(DeliveryTask.status == DeliveryTaskStatus(status))
            except ValueError:
                raise InvalidParamError(f"Unknown delivery task status: {status}")
        result = await self.db.execute(query.order_by(DeliveryTask.created_at.desc()))
        return list(result.scalars().all())

    async def _transition(self, task: DeliveryTask, new_status) -> TaskTransition:
        target = self.state_machine.validate(task.status, new_status)

        bindings = await self.get_bindings(task.task_id)
        if target == DeliveryTaskStatus.COMPLETED:
            unsigned = [b.parcel_id for b in bindings if not b.is_signed]
            if unsigned:
                raise UnsignedPackageError(task.task_id, unsigned)

        previous = task.status.value
        now = datetime.utcnow()
        task.status = target
        if target == DeliveryTaskStatus.DELIVERING:
            task.start_time = now
        elif target == DeliveryTaskStatus.COMPLETED:
            task.complete_time = now
        task.updated_at = now

        report = None
        operator = task.courier_name or task.courier_id
        parcel_ids = [b.parcel_id for b in bindings]
        if target == DeliveryTaskStatus.DELIVERING:
            report = await self.propagator.propagate(
                task.task_id, parcel_ids, ParcelStatus.DELIVERING,
                trace=TraceStamp(TraceNodeType.DELIVERY, task.start_node, operator,
                                 f"Out for delivery in {task.delivery_area} (task {task.task_id})"),
            )
        elif target == DeliveryTaskStatus.COMPLETED:
            report = await self.propagator.propagate(task.task_id, parcel_ids, ParcelStatus.DELIVERED)

        await self.db.flush()
        return TaskTransition(task=task, previous_status=previous, propagation=report)
