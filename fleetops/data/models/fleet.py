"""
Route and Bus data models.
Immutable snapshots of fleet documents read from the document store.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class Route:
    """Immutable route data model"""
    id: str
    name: str
    origin: str = ""
    destination: str = ""
    fare: float = 0.0
    is_active: bool = True

    @classmethod
    def from_document(cls, doc_id: str, data: dict) -> 'Route':
        """Create Route from a stored document"""
        try:
            fare = max(0.0, float(data.get("fare") or 0.0))
        except (TypeError, ValueError):
            fare = 0.0
        return cls(
            id=doc_id,
            name=data.get("name") or doc_id,
            origin=data.get("origin", ""),
            destination=data.get("destination", ""),
            fare=fare,
            is_active=bool(data.get("isActive", True)),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "origin": self.origin,
            "destination": self.destination,
            "fare": self.fare,
            "isActive": self.is_active,
        }


@dataclass(frozen=True)
class Bus:
    """Immutable bus (vehicle) data model.

    ``is_available`` only marks whether the bus is out of service. A bus can
    carry many future schedules while still being available.
    """
    id: str
    bus_number: str
    capacity: int = 0
    is_active: bool = True
    is_available: bool = True
    route_id: Optional[str] = None  # last assigned route, informational only
    last_assigned: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc_id: str, data: dict) -> 'Bus':
        """Create Bus from a stored document, deriving a placeholder number if none is set"""
        number = data.get("busNumber") or data.get("plateNumber") or f"Bus-{doc_id[-4:]}"
        try:
            capacity = int(data.get("capacity") or 0)
        except (TypeError, ValueError):
            capacity = 0
        return cls(
            id=doc_id,
            bus_number=number,
            capacity=capacity,
            is_active=bool(data.get("isActive", True)),
            is_available=bool(data.get("isAvailable", True)),
            route_id=data.get("routeId"),
            last_assigned=data.get("lastAssigned"),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "busNumber": self.bus_number,
            "capacity": self.capacity,
            "isActive": self.is_active,
            "isAvailable": self.is_available,
            "routeId": self.route_id,
            "lastAssigned": self.last_assigned.isoformat() if self.last_assigned else None,
        }
