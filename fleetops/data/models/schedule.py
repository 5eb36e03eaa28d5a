"""
Schedule data model and trip lifecycle states.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional


class ScheduleStatus:
    SCHEDULED = "scheduled"
    IN_TRANSIT = "in_transit"
    COMPLETED = "completed"

    # Statuses that still occupy the bus for conflict checks
    ACTIVE = (SCHEDULED, IN_TRANSIT)

    # Allowed source statuses per target. in_transit -> in_transit re-stamps the departure.
    TRANSITIONS = {
        IN_TRANSIT: (SCHEDULED, IN_TRANSIT),
        COMPLETED: (IN_TRANSIT,),
    }

    @classmethod
    def can_move(cls, current: Optional[str], target: str) -> bool:
        return current in cls.TRANSITIONS.get(target, ())


@dataclass(frozen=True)
class Schedule:
    """Immutable schedule data model.

    ``bus_number`` and ``route_name`` are snapshots taken when the schedule was
    created; later renames of the bus or route are not reflected here.
    """
    id: str
    route_id: str
    bus_id: str
    departure_time: datetime
    bus_number: str = "TBA"
    route_name: str = ""
    status: str = ScheduleStatus.SCHEDULED
    actual_departure: Optional[datetime] = None
    actual_arrival: Optional[datetime] = None
    departure_location: Optional[dict] = None
    arrival_location: Optional[dict] = None
    created_at: Optional[datetime] = None
    company_id: Optional[str] = None

    def is_active(self) -> bool:
        return self.status in ScheduleStatus.ACTIVE

    def overlaps(self, departure_time: datetime, window: timedelta) -> bool:
        """True when this schedule departs inside [departure_time - window, departure_time + window]"""
        return departure_time - window <= self.departure_time <= departure_time + window

    @classmethod
    def from_document(cls, doc_id: str, data: dict) -> 'Schedule':
        return cls(
            id=doc_id,
            route_id=data.get("routeId", ""),
            bus_id=data.get("busId", ""),
            departure_time=data.get("departureTime"),
            bus_number=data.get("busNumber") or "TBA",
            route_name=data.get("routeName", ""),
            status=data.get("status", ScheduleStatus.SCHEDULED),
            actual_departure=data.get("actualDeparture"),
            actual_arrival=data.get("actualArrival"),
            departure_location=data.get("departureLocation"),
            arrival_location=data.get("arrivalLocation"),
            created_at=data.get("createdAt"),
            company_id=data.get("companyId"),
        )

    def to_document(self) -> dict:
        doc = {
            "routeId": self.route_id,
            "busId": self.bus_id,
            "busNumber": self.bus_number,
            "routeName": self.route_name,
            "departureTime": self.departure_time,
            "status": self.status,
            "actualDeparture": self.actual_departure,
            "actualArrival": self.actual_arrival,
            "companyId": self.company_id,
        }
        if self.created_at is not None:
            doc["createdAt"] = self.created_at
        return doc

    def to_dict(self) -> dict:
        """JSON-friendly representation for API responses"""
        return {
            "id": self.id,
            "routeId": self.route_id,
            "busId": self.bus_id,
            "busNumber": self.bus_number,
            "routeName": self.route_name,
            "departureTime": _iso(self.departure_time),
            "status": self.status,
            "actualDeparture": _iso(self.actual_departure),
            "actualArrival": _iso(self.actual_arrival),
            "createdAt": _iso(self.created_at),
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
