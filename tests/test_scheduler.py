import asyncio
from datetime import datetime, timedelta

import pytest
import pytz

from fleetops.data.collections import BUSES, ROUTES, SCHEDULES
from fleetops.data.errors import ConflictError, NotFoundError, TransientStoreError, ValidationError
from fleetops.data.models import ScheduleStatus
from fleetops.services.scheduler import SchedulerService

from conftest import SlowStore, seed_fleet, utc

T = utc(2025, 9, 14, 6, 0)


@pytest.mark.parametrize("offset", [
    timedelta(hours=-2),
    timedelta(hours=-1, minutes=-59, seconds=-59),
    timedelta(minutes=-30),
    timedelta(0),
    timedelta(hours=1),
    timedelta(hours=2),
])
async def test_assign_inside_window_conflicts(scheduler, store, offset):
    existing = await scheduler.assign("R1", "B1", T)

    with pytest.raises(ConflictError) as exc:
        await scheduler.assign("R2", "B1", T + offset)

    assert exc.value.conflicting_id == existing
    assert exc.value.conflicting_time == T
    assert exc.value.bus_id == "B1"


@pytest.mark.parametrize("offset", [
    timedelta(hours=-2, seconds=-1),
    timedelta(hours=2, seconds=1),
])
async def test_assign_just_outside_window_succeeds(scheduler, offset):
    await scheduler.assign("R1", "B1", T)
    schedule_id = await scheduler.assign("R2", "B1", T + offset)

    schedule = await scheduler.get_schedule(schedule_id)
    assert schedule.departure_time == T + offset


async def test_rejected_assignments_leave_schedules_unchanged(scheduler, store):
    await scheduler.assign("R1", "B1", T)
    before = store.count(SCHEDULES)

    with pytest.raises(ConflictError):
        await scheduler.assign("R2", "B1", T + timedelta(minutes=90))
    with pytest.raises(NotFoundError) as missing_bus:
        await scheduler.assign("R1", "NOPE", T)
    with pytest.raises(NotFoundError) as missing_route:
        await scheduler.assign("NOPE", "B1", T)

    assert missing_bus.value.kind == "bus"
    assert missing_route.value.kind == "route"
    assert store.count(SCHEDULES) == before


async def test_end_to_end_reassignment_scenario(scheduler):
    first = await scheduler.assign("R1", "B1", "2025-09-14T06:00:00Z")
    assert (await scheduler.get_schedule(first)).status == ScheduleStatus.SCHEDULED

    with pytest.raises(ConflictError):
        await scheduler.assign("R2", "B1", "2025-09-14T07:30:00Z")

    third = await scheduler.assign("R2", "B1", "2025-09-14T09:00:00Z")
    schedule = await scheduler.get_schedule(third)
    assert schedule.route_id == "R2"
    assert schedule.departure_time == utc(2025, 9, 14, 9, 0)


async def test_new_schedule_fields(scheduler, clock):
    schedule_id = await scheduler.assign("R1", "B1", T)
    schedule = await scheduler.get_schedule(schedule_id)

    assert schedule.bus_id == "B1"
    assert schedule.bus_number == "A/K 001"
    assert schedule.route_name == "Accra to Kumasi"
    assert schedule.status == ScheduleStatus.SCHEDULED
    assert schedule.actual_departure is None
    assert schedule.actual_arrival is None
    assert schedule.created_at == clock.now
    assert schedule.company_id == "COMPANY_001"


async def test_bus_number_falls_back_to_plate_then_placeholder(scheduler):
    plate = await scheduler.get_schedule(await scheduler.assign("R1", "B2", T))
    placeholder = await scheduler.get_schedule(await scheduler.assign("R1", "BUS_ABCD1234", T))

    assert plate.bus_number == "GT-4411-20"
    assert placeholder.bus_number == "Bus-1234"


async def test_snapshot_fields_are_not_resynced(scheduler, store):
    schedule_id = await scheduler.assign("R1", "B1", T)
    await store.update(ROUTES, "R1", {"name": "Accra to Kumasi Express"})
    await store.update(BUSES, "B1", {"busNumber": "A/K 999"})

    schedule = await scheduler.get_schedule(schedule_id)
    assert schedule.route_name == "Accra to Kumasi"
    assert schedule.bus_number == "A/K 001"


async def test_assign_updates_bus_hint_without_touching_availability(scheduler, store, clock):
    await scheduler.assign("R2", "B1", T)

    bus = await store.get_by_id(BUSES, "B1")
    assert bus["routeId"] == "R2"
    assert bus["lastAssigned"] == clock.now
    assert bus["isAvailable"] is True


async def test_route_hint_does_not_drive_conflicts(scheduler, store):
    await store.update(BUSES, "B1", {"routeId": "R1", "isAvailable": False})
    assert await scheduler.assign("R2", "B1", T)


async def test_completed_schedules_do_not_conflict(scheduler, store):
    schedule_id = await scheduler.assign("R1", "B1", T)
    await store.update(SCHEDULES, schedule_id, {"status": ScheduleStatus.COMPLETED})

    assert await scheduler.assign("R2", "B1", T + timedelta(minutes=30))


async def test_in_transit_schedules_still_conflict(scheduler, store):
    schedule_id = await scheduler.assign("R1", "B1", T)
    await store.update(SCHEDULES, schedule_id, {"status": ScheduleStatus.IN_TRANSIT})

    with pytest.raises(ConflictError):
        await scheduler.assign("R2", "B1", T + timedelta(hours=1))


async def test_other_buses_are_independent(scheduler):
    await scheduler.assign("R1", "B1", T)
    assert await scheduler.assign("R1", "B2", T)


async def test_naive_departure_is_read_in_configured_timezone(config, store):
    config.timezone_name = "Africa/Lagos"  # UTC+1
    scheduler = SchedulerService(config, store)

    schedule_id = await scheduler.assign("R1", "B1", datetime(2025, 9, 14, 7, 0))
    schedule = await scheduler.get_schedule(schedule_id)
    assert schedule.departure_time == T


@pytest.mark.parametrize("route_id, bus_id, departure", [
    (None, "B1", T),
    ("R1", "", T),
    ("R1", "B1", None),
    ("R1", "B1", "not a time"),
])
async def test_missing_input_fails_before_store_access(config, flaky_store, route_id, bus_id, departure):
    flaky_store.failing_reads.update({BUSES, ROUTES, SCHEDULES})
    scheduler = SchedulerService(config, flaky_store)

    with pytest.raises(ValidationError):
        await scheduler.assign(route_id, bus_id, departure)
    assert flaky_store.read_calls == 0


async def test_store_failure_propagates_without_partial_schedule(config, flaky_store):
    flaky_store.failing_writes.add(BUSES)
    scheduler = SchedulerService(config, flaky_store)

    with pytest.raises(TransientStoreError):
        await scheduler.assign("R1", "B1", T)
    assert flaky_store.count(SCHEDULES) == 0


async def test_conflict_query_failure_propagates(config, flaky_store):
    flaky_store.failing_reads.add(SCHEDULES)
    scheduler = SchedulerService(config, flaky_store)

    with pytest.raises(TransientStoreError):
        await scheduler.assign("R1", "B1", T)
    assert flaky_store.count(SCHEDULES) == 0


async def test_other_tenants_bus_is_not_found(scheduler):
    with pytest.raises(NotFoundError):
        await scheduler.assign("R1", "X1", T)


async def test_concurrent_overlapping_assignments_only_one_wins(config, clock):
    store = seed_fleet(SlowStore(clock=clock))
    scheduler = SchedulerService(config, store)

    results = await asyncio.gather(
        scheduler.assign("R1", "B1", T),
        scheduler.assign("R2", "B1", T + timedelta(minutes=45)),
        return_exceptions=True,
    )

    assert sum(isinstance(r, str) for r in results) == 1
    assert sum(isinstance(r, ConflictError) for r in results) == 1
    assert store.count(SCHEDULES) == 1


async def test_schedulers_sharing_a_store_share_the_bus_lock(config, clock):
    store = seed_fleet(SlowStore(clock=clock))
    first = SchedulerService(config, store)
    second = SchedulerService(config, store)

    results = await asyncio.gather(
        first.assign("R1", "B1", T),
        second.assign("R2", "B1", T),
        return_exceptions=True,
    )

    assert sum(isinstance(r, ConflictError) for r in results) == 1
    assert store.count(SCHEDULES) == 1


async def test_separate_stores_on_shared_data_can_still_race(config, clock):
    """The per-bus lock lives in the store object; two processes with their own
    store handles over the same data are not serialized by it."""
    shared = seed_fleet(SlowStore(clock=clock))
    twin = SlowStore(clock=clock)
    twin._collections = shared._collections

    results = await asyncio.gather(
        SchedulerService(config, shared).assign("R1", "B1", T),
        SchedulerService(config, twin).assign("R2", "B1", T),
        return_exceptions=True,
    )

    assert all(isinstance(r, str) for r in results)
    assert shared.count(SCHEDULES) == 2


async def test_concurrent_assignments_for_different_buses_both_succeed(config, clock):
    store = seed_fleet(SlowStore(clock=clock))
    scheduler = SchedulerService(config, store)

    results = await asyncio.gather(
        scheduler.assign("R1", "B1", T),
        scheduler.assign("R1", "B2", T),
    )
    assert len(set(results)) == 2


async def test_schedule_queries(scheduler, store, clock):
    await scheduler.assign("R1", "B1", utc(2025, 9, 14, 6, 0))
    await scheduler.assign("R1", "B1", utc(2025, 9, 14, 14, 0))
    await scheduler.assign("R1", "B1", utc(2025, 9, 15, 6, 0))
    moved = await scheduler.assign("R1", "B2", utc(2025, 9, 14, 9, 0))
    await store.update(SCHEDULES, moved, {"status": ScheduleStatus.IN_TRANSIT})
    await scheduler.assign("R2", "B2", utc(2025, 9, 14, 18, 0))

    latest = await scheduler.get_schedules()
    assert [s.departure_time for s in latest] == sorted((s.departure_time for s in latest), reverse=True)
    assert len(latest) == 5

    day = await scheduler.get_schedules_for_route("R1", utc(2025, 9, 14, 0, 0).date())
    assert [s.departure_time.hour for s in day] == [6, 14]

    future = await scheduler.get_future_schedules()
    assert [s.departure_time for s in future] == [
        utc(2025, 9, 14, 14, 0), utc(2025, 9, 14, 18, 0), utc(2025, 9, 15, 6, 0)
    ]


async def test_route_schedules_show_tba_for_missing_bus_number(scheduler, store):
    store.put(SCHEDULES, "S-legacy", {
        "routeId": "R1", "busId": "B1", "departureTime": utc(2025, 9, 14, 20, 0),
        "status": "scheduled", "companyId": "COMPANY_001",
    })
    day = await scheduler.get_schedules_for_route("R1", utc(2025, 9, 14, 0, 0).date())
    assert day[0].bus_number == "TBA"


async def test_subscribe_to_schedules_pushes_snapshots(scheduler):
    snapshots = []
    subscription = await scheduler.subscribe_to_schedules("R1", snapshots.append)
    await scheduler.assign("R1", "B1", T)
    await scheduler.assign("R2", "B2", T)
    subscription.cancel()
    await scheduler.assign("R1", "B2", T + timedelta(hours=5))

    assert [len(s) for s in snapshots] == [0, 1, 1]
    assert snapshots[-1][0].route_id == "R1"


async def test_schedule_subscribers_run_after_the_bus_lock_is_released(scheduler, store):
    locks_during_delivery = []
    await scheduler.subscribe_to_schedules("R1", lambda _: locks_during_delivery.append(store.held_lock_count()))

    await scheduler.assign("R1", "B1", T)

    assert locks_during_delivery == [0, 0]
    assert store.held_lock_count() == 0


async def test_route_day_includes_the_last_instant_of_the_day(scheduler, store):
    for doc_id, departure in [
        ("S-last", datetime(2025, 9, 14, 23, 59, 59, 500000, tzinfo=pytz.utc)),
        ("S-midnight", utc(2025, 9, 15, 0, 0)),
    ]:
        store.put(SCHEDULES, doc_id, {
            "routeId": "R1", "busId": "B1", "busNumber": "A/K 001", "departureTime": departure,
            "status": "scheduled", "companyId": "COMPANY_001",
        })

    day = await scheduler.get_schedules_for_route("R1", utc(2025, 9, 14, 0, 0).date())
    assert [s.id for s in day] == ["S-last"]

    next_day = await scheduler.get_schedules_for_route("R1", utc(2025, 9, 15, 0, 0).date())
    assert [s.id for s in next_day] == ["S-midnight"]
