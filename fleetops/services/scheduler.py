"""
Scheduler service that assigns buses to routes at a departure time and drives
the scheduled -> in_transit -> completed trip lifecycle.

Conflicts are always derived from schedule records, never from the bus's
``routeId``/``lastAssigned`` hints, which are informational only.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Any, Callable, List, Optional

from fleetops.core.config import ApplicationConfig
from fleetops.data.collections import ASSIGNMENTS, BUSES, DRIVERS, ROUTES, SCHEDULES, TRIP_TRACKING
from fleetops.data.errors import ConflictError, NotFoundError, TransientStoreError, TransitionError, ValidationError
from fleetops.data.models import Bus, Route, Schedule, ScheduleStatus
from fleetops.data.repositories.document_store import DocumentStore, Subscription
from fleetops.data.validation import require_fields, validate_departure_time
from fleetops.shared.utils import day_bounds, to_utc

logger = logging.getLogger(__name__)

TRIP_COLLECTIONS = {
    "schedule": SCHEDULES,
    "assignment": ASSIGNMENTS,
}


class SchedulerService:
    """Create schedules without double-booking a bus and move trips through their lifecycle"""

    def __init__(self, config: ApplicationConfig, store: DocumentStore, tenant_id: Optional[str] = None):
        self.config = config
        self.store = store
        self.tenant_id = tenant_id or config.tenant_id
        self.local_tz = config.timezone
        self.conflict_window = timedelta(hours=config.conflict_window_hours)

    def _tenant(self, tenant_id: Optional[str]) -> str:
        return tenant_id or self.tenant_id

    async def _get_owned(self, collection: str, kind: str, doc_id: str, tenant: str) -> dict:
        """Fetch a document belonging to the tenant or raise NotFoundError"""
        doc = await self.store.get_by_id(collection, doc_id)
        if doc is None or doc.get("companyId", tenant) != tenant:
            raise NotFoundError(kind, doc_id)
        return doc

    # Assignment

    async def assign(self, route_id: str, bus_id: str, departure_time: Any,
                     tenant_id: Optional[str] = None) -> str:
        """Create a schedule for bus_id on route_id, rejecting departures inside another
        active schedule's conflict window. Returns the new schedule id.

        Requests for the same bus are serialized through a per-bus lock held by the
        store, so two overlapping requests cannot both pass the conflict check.
        """
        require_fields(route_id=route_id, bus_id=bus_id)
        departure = to_utc(validate_departure_time(departure_time, self.local_tz))
        tenant = self._tenant(tenant_id)

        async with self.store.write_lock(f"{BUSES}:{bus_id}"):
            bus = Bus.from_document(bus_id, await self._get_owned(BUSES, "bus", bus_id, tenant))
            route = Route.from_document(route_id, await self._get_owned(ROUTES, "route", route_id, tenant))

            conflict = await self.find_conflict(bus_id, departure, tenant)
            if conflict is not None:
                logger.warning(
                    f"Rejected assignment of bus {bus_id} at {departure.isoformat()}: "
                    f"conflicts with schedule {conflict.id} at {conflict.departure_time.isoformat()}"
                )
                raise ConflictError(bus_id, conflict.id, conflict.departure_time)

            schedule = Schedule(
                id="",
                route_id=route_id,
                bus_id=bus_id,
                departure_time=departure,
                bus_number=bus.bus_number,
                route_name=route.name,
                company_id=tenant,
            )
            schedule_id = await self.store.create(SCHEDULES, schedule.to_document())

            try:
                await self.store.update(BUSES, bus_id, {
                    "routeId": route_id,
                    "lastAssigned": self.store.clock(),
                })
            except (TransientStoreError, NotFoundError) as e:
                logger.error(f"Bus update failed after creating schedule {schedule_id}, rolling back: {e}")
                await self._discard(SCHEDULES, schedule_id)
                raise

        logger.info(f"Assigned bus {bus_id} to route {route_id} at {departure.isoformat()} ({schedule_id})")
        return schedule_id

    async def find_conflict(self, bus_id: str, departure_time: datetime,
                            tenant_id: Optional[str] = None) -> Optional[Schedule]:
        """Earliest active schedule of bus_id departing within the conflict window, if any"""
        docs = await self.store.get(SCHEDULES, [
            ("busId", "==", bus_id),
            ("status", "in", list(ScheduleStatus.ACTIVE)),
            ("companyId", "==", self._tenant(tenant_id)),
        ], order_by="departureTime")

        for doc in docs:
            existing = Schedule.from_document(doc["id"], doc)
            if existing.departure_time is None:
                continue
            if existing.overlaps(departure_time, self.conflict_window):
                return existing
        return None

    async def _discard(self, collection: str, doc_id: str):
        try:
            await self.store.delete(collection, doc_id)
        except TransientStoreError as e:
            logger.error(f"Could not remove {collection}/{doc_id} during rollback: {e}")

    async def assign_bus_to_route(self, bus_id: str, route_id: str, driver_id: str,
                                  scheduled_departure: Any, scheduled_arrival: Any = None,
                                  tenant_id: Optional[str] = None) -> str:
        """Create a driver-bound bus/route assignment and point the driver at it"""
        require_fields(bus_id=bus_id, route_id=route_id, driver_id=driver_id)
        departure = to_utc(validate_departure_time(scheduled_departure, self.local_tz))
        arrival = to_utc(validate_departure_time(scheduled_arrival, self.local_tz)) if scheduled_arrival else None
        tenant = self._tenant(tenant_id)

        bus = Bus.from_document(bus_id, await self._get_owned(BUSES, "bus", bus_id, tenant))
        route = Route.from_document(route_id, await self._get_owned(ROUTES, "route", route_id, tenant))
        await self._get_owned(DRIVERS, "driver", driver_id, tenant)

        now = self.store.clock()
        assignment_id = await self.store.create(ASSIGNMENTS, {
            "busId": bus_id,
            "routeId": route_id,
            "driverId": driver_id,
            "busNumber": bus.bus_number,
            "routeName": route.name,
            "scheduledDeparture": departure,
            "scheduledArrival": arrival,
            "isActive": True,
            "status": ScheduleStatus.SCHEDULED,
            "actualDeparture": None,
            "actualArrival": None,
            "passengerCount": 0,
            "companyId": tenant,
            "updatedAt": now,
        })
        await self.store.update(DRIVERS, driver_id, {
            "currentRoute": route_id,
            "currentAssignment": assignment_id,
            "status": "assigned",
            "updatedAt": now,
        })
        logger.info(f"Assigned driver {driver_id} with bus {bus_id} to route {route_id} ({assignment_id})")
        return assignment_id

    # Trip lifecycle

    def _trip_collection(self, kind: str) -> str:
        try:
            return TRIP_COLLECTIONS[kind]
        except KeyError:
            raise ValidationError(f"Unknown trip kind: {kind!r}")

    async def start_trip(self, record_id: str, driver_id: str, start_location: Any = None,
                         kind: str = "schedule", tenant_id: Optional[str] = None) -> Optional[str]:
        """Move a schedule (or assignment) to in_transit and mark its driver as driving.

        Calling this again on a trip already in transit re-stamps the departure.
        For assignments a trip-tracking record is opened and its id returned.
        """
        collection = self._trip_collection(kind)
        require_fields(record_id=record_id, driver_id=driver_id)
        tenant = self._tenant(tenant_id)

        record = await self._get_owned(collection, kind, record_id, tenant)
        await self._get_owned(DRIVERS, "driver", driver_id, tenant)
        if not ScheduleStatus.can_move(record.get("status"), ScheduleStatus.IN_TRANSIT):
            raise TransitionError(record_id, record.get("status"), ScheduleStatus.IN_TRANSIT)

        now = self.store.clock()
        await self.store.update(collection, record_id, {
            "status": ScheduleStatus.IN_TRANSIT,
            "actualDeparture": now,
            "departureLocation": start_location,
            "updatedAt": now,
        })

        trip_id = None
        if kind == "assignment":
            trip_id = await self.store.create(TRIP_TRACKING, {
                "assignmentId": record_id,
                "driverId": driver_id,
                "startTime": now,
                "startLocation": start_location,
                "endTime": None,
                "endLocation": None,
                "status": "active",
                "companyId": tenant,
            })

        pointer = "currentSchedule" if kind == "schedule" else "currentAssignment"
        await self.store.update(DRIVERS, driver_id, {
            pointer: record_id,
            "status": "driving",
            "updatedAt": now,
        })
        logger.info(f"Trip started for {kind} {record_id} by driver {driver_id}")
        return trip_id

    async def end_trip(self, record_id: str, driver_id: str, end_location: Any = None,
                       kind: str = "schedule", tenant_id: Optional[str] = None) -> None:
        """Complete an in-transit trip, release its bus and free the driver"""
        collection = self._trip_collection(kind)
        require_fields(record_id=record_id, driver_id=driver_id)
        tenant = self._tenant(tenant_id)

        record = await self._get_owned(collection, kind, record_id, tenant)
        await self._get_owned(DRIVERS, "driver", driver_id, tenant)
        if not ScheduleStatus.can_move(record.get("status"), ScheduleStatus.COMPLETED):
            raise TransitionError(record_id, record.get("status"), ScheduleStatus.COMPLETED)
        bus_id = record.get("busId")
        if bus_id:
            await self._get_owned(BUSES, "bus", bus_id, tenant)

        now = self.store.clock()
        await self.store.update(collection, record_id, {
            "status": ScheduleStatus.COMPLETED,
            "actualArrival": now,
            "arrivalLocation": end_location,
            "updatedAt": now,
        })

        if kind == "assignment":
            trips = await self.store.get(TRIP_TRACKING, [
                ("assignmentId", "==", record_id),
                ("status", "==", "active"),
                ("companyId", "==", tenant),
            ], limit=1)
            if trips:
                await self.store.update(TRIP_TRACKING, trips[0]["id"], {
                    "endTime": now,
                    "endLocation": end_location,
                    "status": "completed",
                })

        pointer = "currentSchedule" if kind == "schedule" else "currentAssignment"
        await self.store.update(DRIVERS, driver_id, {
            pointer: None,
            "status": "available",
            "updatedAt": now,
        })

        if bus_id:
            await self.store.update(BUSES, bus_id, {"isAvailable": True})
        else:
            logger.warning(f"{kind.capitalize()} {record_id} has no bus to release")
        logger.info(f"Trip completed for {kind} {record_id} by driver {driver_id}")

    async def make_bus_available(self, bus_id: str, tenant_id: Optional[str] = None) -> None:
        """Return a bus to service and clear its route hint"""
        require_fields(bus_id=bus_id)
        await self._get_owned(BUSES, "bus", bus_id, self._tenant(tenant_id))
        await self.store.update(BUSES, bus_id, {
            "isAvailable": True,
            "routeId": None,
            "lastAssigned": self.store.clock(),
        })

    # Queries

    async def get_schedule(self, schedule_id: str, tenant_id: Optional[str] = None) -> Schedule:
        doc = await self._get_owned(SCHEDULES, "schedule", schedule_id, self._tenant(tenant_id))
        return Schedule.from_document(schedule_id, doc)

    async def get_schedules(self, tenant_id: Optional[str] = None) -> List[Schedule]:
        """Most recent schedules by departure time, newest first"""
        docs = await self.store.get(
            SCHEDULES, [("companyId", "==", self._tenant(tenant_id))],
            order_by="departureTime", descending=True, limit=self.config.schedule_list_limit
        )
        return [Schedule.from_document(doc["id"], doc) for doc in docs]

    async def get_schedules_for_route(self, route_id: str, day: Optional[date] = None,
                                      tenant_id: Optional[str] = None) -> List[Schedule]:
        """Still-scheduled departures of a route on one calendar day"""
        require_fields(route_id=route_id)
        if day is None:
            day = self.store.clock().astimezone(self.local_tz).date()
        start, end = day_bounds(day, self.local_tz)
        docs = await self.store.get(SCHEDULES, [
            ("routeId", "==", route_id),
            ("departureTime", ">=", to_utc(start)),
            ("departureTime", "<", to_utc(end)),
            ("status", "==", ScheduleStatus.SCHEDULED),
            ("companyId", "==", self._tenant(tenant_id)),
        ], order_by="departureTime")
        return [Schedule.from_document(doc["id"], doc) for doc in docs]

    async def get_future_schedules(self, now: Optional[datetime] = None,
                                   tenant_id: Optional[str] = None) -> List[Schedule]:
        now = now or self.store.clock()
        docs = await self.store.get(SCHEDULES, [
            ("departureTime", ">=", to_utc(now)),
            ("companyId", "==", self._tenant(tenant_id)),
        ], order_by="departureTime", limit=self.config.future_schedule_limit)
        return [Schedule.from_document(doc["id"], doc) for doc in docs]

    async def subscribe_to_schedules(self, route_id: str, callback: Callable[[List[Schedule]], Any],
                                     tenant_id: Optional[str] = None) -> Subscription:
        """Live schedules of a route; cancel the returned subscription when done"""
        def on_snapshot(docs):
            return callback([Schedule.from_document(doc["id"], doc) for doc in docs])

        return await self.store.subscribe(SCHEDULES, [
            ("routeId", "==", route_id),
            ("companyId", "==", self._tenant(tenant_id)),
        ], on_snapshot)
