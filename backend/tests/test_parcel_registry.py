"""
Parcel registry and sorting-abnormal tests.
"""

import pytest
from sqlalchemy import delete

from backend.app.core.exceptions import InvalidParamError, ResourceNotFoundError
from backend.app.models.parcel_enums import ParcelStatus, TraceNodeType, AbnormalRecordStatus
from backend.app.models.parcel_trace import ParcelTrace
from backend.app.services.abnormal_recorder import AbnormalEventRecorder
from backend.app.services.parcel_registry import NO_TRACE_YET, TraceStamp


@pytest.mark.asyncio
async def test_create_parcel_writes_geocoded_collection_trace(registry, parcel_fields):
    parcel = await registry.create_parcel(
        parcel_fields, operator="sorter-01", node_name="HZ-Collect", node_address="1 Wensan Road, Hangzhou"
    )

    assert parcel.parcel_id.startswith("KD")
    assert parcel.status == ParcelStatus.COLLECTED

    traces = await registry.get_traces(parcel.parcel_id)
    assert len(traces) == 1
    assert traces[0].node_type == TraceNodeType.COLLECTION
    assert traces[0].node_name == "HZ-Collect"
    assert (traces[0].longitude, traces[0].latitude) == (120.15507, 30.274085)


@pytest.mark.asyncio
async def test_create_parcel_keeps_supplied_waybill_number(registry, parcel_fields):
    parcel = await registry.create_parcel(
        parcel_fields, "sorter-01", "HZ-Collect", "Hangzhou", parcel_id="KD-PRINTED-0001"
    )
    assert parcel.parcel_id == "KD-PRINTED-0001"


@pytest.mark.asyncio
async def test_create_parcel_requires_collection_node(registry, parcel_fields):
    with pytest.raises(InvalidParamError):
        await registry.create_parcel(parcel_fields, operator="sorter-01", node_name="", node_address="Hangzhou")


@pytest.mark.asyncio
async def test_update_status_keeps_previous_abnormal_info(registry, make_parcel):
    parcel = await make_parcel()
    await registry.update_status(parcel.parcel_id, ParcelStatus.ABNORMAL, "torn box", "sorter-02")

    updated = await registry.update_status(parcel.parcel_id, "sorted")

    assert updated.status == ParcelStatus.SORTED
    assert updated.abnormal_reason == "torn box"
    assert updated.abnormal_handler == "sorter-02"


@pytest.mark.asyncio
async def test_update_status_rejects_unknown_status(registry, make_parcel):
    parcel = await make_parcel()
    with pytest.raises(InvalidParamError):
        await registry.update_status(parcel.parcel_id, "lost_in_space")


@pytest.mark.asyncio
async def test_soft_deleted_parcel_is_not_found(registry, make_parcel):
    parcel = await make_parcel()
    await registry.soft_delete(parcel.parcel_id)

    with pytest.raises(ResourceNotFoundError):
        await registry.get_parcel(parcel.parcel_id)
    assert await registry.list_parcels() == []


@pytest.mark.asyncio
async def test_detail_reports_last_trace_as_position(registry, make_parcel, parcel_fields):
    parcel = await make_parcel()
    await registry.sort_parcel(parcel.parcel_id, "sorter-01", "HZ-Sort")

    detail = await registry.get_parcel_detail(parcel.parcel_id)

    assert detail["current_status"] == "sorted"
    assert detail["current_position"] == "HZ-Sort"
    assert [t["node_type"] for t in detail["trace_history"]] == ["collection", "sorting"]
    assert detail["receiver_info"]["name"] == parcel_fields["receiver_name"]


@pytest.mark.asyncio
async def test_detail_without_traces(registry, db_session, make_parcel):
    parcel = await make_parcel()
    # Drop the collection trace to simulate a parcel imported without history
    await db_session.execute(delete(ParcelTrace).where(ParcelTrace.parcel_id == parcel.parcel_id))

    detail = await registry.get_parcel_detail(parcel.parcel_id)

    assert detail["current_position"] == NO_TRACE_YET
    assert detail["trace_history"] == []


@pytest.mark.asyncio
async def test_list_parcels_filters_by_status(registry, make_parcel):
    await make_parcel()
    sorted_parcel = await make_parcel(ParcelStatus.SORTED)

    result = await registry.list_parcels("sorted")

    assert [p.parcel_id for p in result] == [sorted_parcel.parcel_id]


@pytest.mark.asyncio
async def test_append_trace_stamps_operator(registry, make_parcel):
    parcel = await make_parcel()
    await registry.append_trace(parcel.parcel_id, TraceStamp(TraceNodeType.TRANSPORT, "HZ-Sort", "driver-01"))

    traces = await registry.get_traces(parcel.parcel_id)
    assert traces[-1].operator == "driver-01"


@pytest.mark.asyncio
async def test_sorting_abnormal_records_and_traces(db_session, registry, make_parcel):
    recorder = AbnormalEventRecorder(db_session, registry)
    parcel = await make_parcel(ParcelStatus.SORTED)

    record = await recorder.handle_sorting_abnormal(parcel.parcel_id, "label unreadable", "sorter-02")

    assert record.record_id.startswith("AB")
    assert record.abnormal_type == "sorting"
    assert record.status == AbnormalRecordStatus.PENDING

    refreshed = await registry.get_parcel(parcel.parcel_id)
    assert refreshed.status == ParcelStatus.ABNORMAL
    assert refreshed.abnormal_reason == "label unreadable"

    traces = await registry.get_traces(parcel.parcel_id)
    assert traces[-1].node_type == TraceNodeType.ABNORMAL
    assert "was sorted" in traces[-1].remark


@pytest.mark.asyncio
async def test_sorting_abnormal_allowed_from_any_status(db_session, registry, make_parcel):
    recorder = AbnormalEventRecorder(db_session, registry)
    parcel = await make_parcel(ParcelStatus.DELIVERED)

    await recorder.handle_sorting_abnormal(parcel.parcel_id, "returned by receiver", "sorter-02")

    assert (await registry.get_parcel(parcel.parcel_id)).status == ParcelStatus.ABNORMAL


@pytest.mark.asyncio
async def test_sorting_abnormal_requires_reason(db_session, registry, make_parcel):
    recorder = AbnormalEventRecorder(db_session, registry)
    parcel = await make_parcel()

    with pytest.raises(InvalidParamError):
        await recorder.handle_sorting_abnormal(parcel.parcel_id, "", "sorter-02")


@pytest.mark.asyncio
async def test_resolve_record(db_session, registry, make_parcel):
    recorder = AbnormalEventRecorder(db_session, registry)
    parcel = await make_parcel()
    record = await recorder.handle_sorting_abnormal(parcel.parcel_id, "wet", "sorter-02")

    resolved = await recorder.resolve_record(record.record_id, "repacked", "sorter-03")

    assert resolved.status == AbnormalRecordStatus.PROCESSED
    assert resolved.processor == "sorter-03"
    assert resolved.processing_time is not None

    with pytest.raises(ResourceNotFoundError):
        await recorder.resolve_record("AB-missing", "repacked", "sorter-03")


@pytest.mark.asyncio
async def test_create_parcel_tolerates_unknown_location(registry, geocoder, parcel_fields, mocker):
    lookup = mocker.patch.object(geocoder, "coordinates_for", new=mocker.AsyncMock(return_value=(0.0, 0.0)))

    parcel = await registry.create_parcel(parcel_fields, "sorter-01", "Remote-Collect", "unmapped village")

    lookup.assert_awaited_once_with("unmapped village")
    traces = await registry.get_traces(parcel.parcel_id)
    assert (traces[0].longitude, traces[0].latitude) == (0.0, 0.0)
    assert traces[0].node_address == "unmapped village"
