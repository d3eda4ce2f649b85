"""
Transport coordinator tests: binding, lifecycle, propagation and abnormal handling.
"""

from datetime import datetime

import pytest
from sqlalchemy import select

from backend.app.core.exceptions import (
    InvalidParamError, InvalidTransitionError, InvalidBindingError, NotBindableError,
    NotOwnedError, ResourceNotFoundError, TaskNotAbnormalError
)
from backend.app.models.dlq import DeadLetterQueue, DLQStatus
from backend.app.models.parcel_enums import ParcelStatus, TraceNodeType
from backend.app.models.task_enums import TransportTaskStatus
from backend.app.models.transport_task import TransportTaskParcel
from backend.app.services import propagation
from backend.app.services.propagation import PROPAGATION_TASK_NAME
from backend.app.services.transport_coordinator import TransportCoordinator


async def new_task(transport, driver_id="driver-01"):
    return await transport.create_task("HZ-Sort", "SZ-Sort", "ZJ-A12345", driver_id=driver_id, driver_name="Wang")


@pytest.mark.asyncio
async def test_create_task_starts_pending(transport):
    task = await transport.create_task(
        "HZ-Sort", "SZ-Sort", "ZJ-A12345", route_json='{"via": ["JX"]}', distance_km=1210.5
    )

    assert task.task_id.startswith("TRAN")
    assert task.status == TransportTaskStatus.PENDING
    assert task.package_count == 0
    assert task.route.distance_km == 1210.5
    assert task.abnormal is None


@pytest.mark.asyncio
async def test_create_task_requires_vehicle(transport):
    with pytest.raises(InvalidParamError):
        await transport.create_task("HZ-Sort", "SZ-Sort", "")


@pytest.mark.asyncio
async def test_get_unknown_task(transport):
    with pytest.raises(ResourceNotFoundError):
        await transport.get_task("TRAN-missing")


@pytest.mark.asyncio
async def test_bind_rejects_unsorted_parcel(transport, make_parcel):
    task = await new_task(transport)
    parcel = await make_parcel()

    with pytest.raises(InvalidBindingError) as exc_info:
        await transport.bind_packages(task.task_id, [parcel.parcel_id])

    assert exc_info.value.details["current"] == "collected"
    assert await transport.count_bound_parcels(task.task_id) == 0


@pytest.mark.asyncio
async def test_bind_duplicates_produce_single_row(db_session, transport, make_parcel):
    task = await new_task(transport)
    parcel = await make_parcel(ParcelStatus.SORTED)

    result = await transport.bind_packages(task.task_id, [parcel.parcel_id, "", parcel.parcel_id])

    rows = (await db_session.execute(
        select(TransportTaskParcel).where(TransportTaskParcel.transport_task_id == task.task_id)
    )).scalars().all()
    assert len(rows) == 1
    assert result.task.package_count == 1
    assert result.bound == [parcel.parcel_id]


@pytest.mark.asyncio
async def test_rebinding_skips_already_bound(transport, make_parcel):
    task = await new_task(transport)
    first = await make_parcel(ParcelStatus.SORTED)
    second = await make_parcel(ParcelStatus.SORTED)
    await transport.bind_packages(task.task_id, [first.parcel_id])

    result = await transport.bind_packages(task.task_id, [first.parcel_id, second.parcel_id])

    assert result.bound == [second.parcel_id]
    assert result.skipped == [first.parcel_id]
    assert result.task.package_count == 2
    assert await transport.get_bound_parcel_ids(task.task_id) == [first.parcel_id, second.parcel_id]


@pytest.mark.asyncio
async def test_bind_inserts_in_batches(db_session, registry, make_parcel):
    small_batches = TransportCoordinator(db_session, registry, bind_batch_size=2)
    task = await new_task(small_batches)
    parcels = [await make_parcel(ParcelStatus.SORTED) for _ in range(5)]

    result = await small_batches.bind_packages(task.task_id, [p.parcel_id for p in parcels])

    assert result.task.package_count == 5


@pytest.mark.asyncio
async def test_bind_requires_parcel_ids(transport):
    task = await new_task(transport)
    with pytest.raises(InvalidParamError):
        await transport.bind_packages(task.task_id, ["", ""])


@pytest.mark.asyncio
async def test_bind_unknown_parcel(transport):
    task = await new_task(transport)
    with pytest.raises(ResourceNotFoundError):
        await transport.bind_packages(task.task_id, ["KD-missing"])


@pytest.mark.asyncio
async def test_bind_refused_once_arrived(transport, make_parcel):
    task = await new_task(transport)
    await transport.change_status(task.task_id, "transporting")
    await transport.change_status(task.task_id, "arrived")
    parcel = await make_parcel(ParcelStatus.SORTED)

    with pytest.raises(NotBindableError):
        await transport.bind_packages(task.task_id, [parcel.parcel_id])


@pytest.mark.asyncio
async def test_hangzhou_to_shenzhen_run(transport, registry, make_parcel):
    """Two sorted parcels ride HZ-Sort -> SZ-Sort and arrive together."""
    task = await new_task(transport)
    parcels = [await make_parcel(ParcelStatus.SORTED) for _ in range(2)]
    ids = [p.parcel_id for p in parcels]
    await transport.bind_packages(task.task_id, ids)

    departed = await transport.change_status(task.task_id, TransportTaskStatus.TRANSPORTING)
    assert departed.previous_status == "pending"
    assert departed.task.started_at is not None
    assert departed.propagation.updated == ids
    for parcel_id in ids:
        assert (await registry.get_parcel(parcel_id)).status == ParcelStatus.TRANSPORTING

    arrived = await transport.change_status(task.task_id, "arrived")
    assert arrived.task.actual_arrive_time is not None
    assert arrived.warnings == []
    for parcel_id in ids:
        assert (await registry.get_parcel(parcel_id)).status == ParcelStatus.ARRIVED
        traces = await registry.get_traces(parcel_id)
        assert traces[-1].node_type == TraceNodeType.TRANSPORT
        assert traces[-1].node_name == "SZ-Sort"

    completed = await transport.change_status(task.task_id, "completed")
    assert completed.task.completed_at is not None
    assert completed.propagation is None
    assert (await registry.get_parcel(ids[0])).status == ParcelStatus.ARRIVED


@pytest.mark.asyncio
async def test_illegal_transition_leaves_task_unchanged(transport):
    task = await new_task(transport)

    with pytest.raises(InvalidTransitionError):
        await transport.change_status(task.task_id, "arrived")

    reloaded = await transport.get_task(task.task_id)
    assert reloaded.status == TransportTaskStatus.PENDING
    assert reloaded.actual_arrive_time is None


@pytest.mark.asyncio
async def test_completed_task_is_terminal(transport):
    task = await new_task(transport)
    for status in ("transporting", "arrived", "completed"):
        await transport.change_status(task.task_id, status)

    with pytest.raises(InvalidTransitionError):
        await transport.change_status(task.task_id, "abnormal")


@pytest.mark.asyncio
async def test_abnormal_on_pending_task_propagates(transport, registry, make_parcel):
    task = await new_task(transport)
    parcel = await make_parcel(ParcelStatus.SORTED)
    await transport.bind_packages(task.task_id, [parcel.parcel_id])

    transition = await transport.report_abnormal(task.task_id, "vehicle_fault", "flat tyre", "dispatcher-01")

    assert transition.previous_status == "pending"
    assert transition.task.status == TransportTaskStatus.ABNORMAL
    assert transition.task.abnormal.reason == "flat tyre"
    updated = await registry.get_parcel(parcel.parcel_id)
    assert updated.status == ParcelStatus.TRANSPORT_ABNORMAL
    assert updated.abnormal_reason == "flat tyre"
    assert updated.abnormal_handler == "dispatcher-01"


@pytest.mark.asyncio
async def test_handle_abnormal_resumes_transport(transport, registry, make_parcel):
    task = await new_task(transport)
    parcel = await make_parcel(ParcelStatus.SORTED)
    await transport.bind_packages(task.task_id, [parcel.parcel_id])
    await transport.report_abnormal(task.task_id, "vehicle_fault", "flat tyre", "dispatcher-01")

    transition = await transport.handle_abnormal(task.task_id, "spare fitted", "transporting")

    assert transition.task.status == TransportTaskStatus.TRANSPORTING
    assert transition.task.abnormal.handle_result == "spare fitted"
    assert transition.task.abnormal.reason == "flat tyre"
    assert (await registry.get_parcel(parcel.parcel_id)).status == ParcelStatus.TRANSPORTING


@pytest.mark.asyncio
async def test_handle_abnormal_requires_abnormal_task(transport):
    task = await new_task(transport)
    with pytest.raises(TaskNotAbnormalError):
        await transport.handle_abnormal(task.task_id, "nothing to do", "transporting")


@pytest.mark.asyncio
async def test_handle_abnormal_rejects_illegal_target(transport):
    task = await new_task(transport)
    await transport.report_abnormal(task.task_id, "delay", "traffic", "dispatcher-01")

    with pytest.raises(InvalidTransitionError):
        await transport.handle_abnormal(task.task_id, "waited", "arrived")

    reloaded = await transport.get_task(task.task_id)
    assert reloaded.status == TransportTaskStatus.ABNORMAL
    assert reloaded.abnormal.handle_result is None


@pytest.mark.asyncio
async def test_propagation_failure_goes_to_dead_letter_queue(db_session, transport, registry, make_parcel):
    task = await new_task(transport)
    kept = await make_parcel(ParcelStatus.SORTED)
    lost = await make_parcel(ParcelStatus.SORTED)
    await transport.bind_packages(task.task_id, [kept.parcel_id, lost.parcel_id])
    await registry.soft_delete(lost.parcel_id)

    transition = await transport.change_status(task.task_id, "transporting")

    assert transition.task.status == TransportTaskStatus.TRANSPORTING
    assert transition.propagation.updated == [kept.parcel_id]
    assert [f.parcel_id for f in transition.propagation.failures] == [lost.parcel_id]
    assert lost.parcel_id in transition.warnings[0]

    entry = (await db_session.execute(select(DeadLetterQueue))).scalar_one()
    assert entry.task_name == PROPAGATION_TASK_NAME
    assert entry.source_task_id == task.task_id
    assert entry.reference_id == lost.parcel_id
    assert entry.payload["status"] == "transporting"
    assert entry.status == DLQStatus.FAILED
    assert transition.propagation.failures[0].dlq_id == entry.id


@pytest.mark.asyncio
async def test_driver_sees_only_own_task_packages(transport, make_parcel):
    task = await new_task(transport, driver_id="driver-01")
    parcel = await make_parcel(ParcelStatus.SORTED)
    await transport.bind_packages(task.task_id, [parcel.parcel_id])

    parcels = await transport.get_task_packages("driver-01", task.task_id)
    assert [p.parcel_id for p in parcels] == [parcel.parcel_id]

    with pytest.raises(NotOwnedError):
        await transport.get_task_packages("driver-02", task.task_id)


@pytest.mark.asyncio
async def test_list_driver_tasks(transport):
    first = await new_task(transport, driver_id="driver-01")
    await new_task(transport, driver_id="driver-02")
    await transport.change_status(first.task_id, "transporting")

    assert [t.task_id for t in await transport.list_driver_tasks("driver-01")] == [first.task_id]
    assert await transport.list_driver_tasks("driver-01", "pending") == []

    with pytest.raises(InvalidParamError):
        await transport.list_driver_tasks("driver-01", "flying")


@pytest.mark.asyncio
async def test_propagation_failure_is_logged_as_warning(transport, registry, make_parcel, mocker):
    warn = mocker.spy(propagation.logger, "warning")
    task = await new_task(transport)
    parcel = await make_parcel(ParcelStatus.SORTED)
    await transport.bind_packages(task.task_id, [parcel.parcel_id])
    await registry.soft_delete(parcel.parcel_id)

    await transport.report_abnormal(task.task_id, "delay", "traffic", "dispatcher-01")

    assert warn.call_count == 1


async def park_two_propagations(db_session, transport, make_parcel):
    """Lose a parcel across transporting and arrived, leaving one DLQ entry per transition."""
    task = await new_task(transport)
    lost = await make_parcel(ParcelStatus.SORTED)
    await transport.bind_packages(task.task_id, [lost.parcel_id])
    lost.deleted_at = datetime.utcnow()
    await db_session.flush()

    await transport.change_status(task.task_id, "transporting")
    await transport.change_status(task.task_id, "arrived")

    lost.deleted_at = None
    await db_session.flush()
    entries = (await db_session.execute(select(DeadLetterQueue).order_by(DeadLetterQueue.id))).scalars().all()
    older, newer = entries
    return task, lost, older, newer


@pytest.mark.asyncio
async def test_replay_archives_older_entries_for_same_parcel(db_session, transport, registry, make_parcel):
    task, lost, older, newer = await park_two_propagations(db_session, transport, make_parcel)

    assert await transport.propagator.replay(newer) is True
    assert newer.status == DLQStatus.PROCESSED
    await db_session.refresh(older)
    assert older.status == DLQStatus.ARCHIVED

    assert await transport.propagator.replay(older) is False
    assert older.status == DLQStatus.ARCHIVED
    assert older.retry_count == 0
    assert (await registry.get_parcel(lost.parcel_id)).status == ParcelStatus.ARRIVED


@pytest.mark.asyncio
async def test_stale_entry_is_archived_instead_of_replayed(db_session, transport, registry, make_parcel):
    task, lost, older, newer = await park_two_propagations(db_session, transport, make_parcel)

    assert await transport.propagator.replay(older) is False
    assert older.status == DLQStatus.ARCHIVED
    assert (await registry.get_parcel(lost.parcel_id)).status == ParcelStatus.SORTED

    assert await transport.propagator.replay(newer) is True
    assert (await registry.get_parcel(lost.parcel_id)).status == ParcelStatus.ARRIVED


@pytest.mark.asyncio
async def test_replay_writes_the_parked_trace(db_session, transport, registry, make_parcel):
    task, lost, older, newer = await park_two_propagations(db_session, transport, make_parcel)

    await transport.propagator.replay(newer)

    last = (await registry.get_traces(lost.parcel_id))[-1]
    assert last.node_type == TraceNodeType.TRANSPORT
    assert last.node_name == "SZ-Sort"
    assert task.task_id in last.remark
