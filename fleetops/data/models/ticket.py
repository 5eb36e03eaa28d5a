"""
Ticket, complaint and statistics data models.
"""

from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Optional

# Older booking screens wrote the amount under different names. The first
# present, non-null field in this order is the ticket's fare.
FARE_FIELD_ALIASES = ("fare", "price", "amount")

TICKET_VALIDITY = timedelta(hours=24)


def resolve_fare(data: dict) -> float:
    """Read a ticket's fare through the alias list, defaulting to 0"""
    for name in FARE_FIELD_ALIASES:
        value = data.get(name)
        if value is None:
            continue
        try:
            return float(value)
        except (TypeError, ValueError):
            continue
    return 0.0


@dataclass(frozen=True)
class Ticket:
    """Immutable ticket data model"""
    id: str
    passenger_name: str
    phone_number: str
    route_id: str
    route_name: str = ""
    bus_number: str = ""
    departure_time: Optional[datetime] = None
    fare: float = 0.0
    is_used: bool = False
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    def is_valid(self, now: datetime) -> bool:
        """A ticket without an expiry never expires"""
        if self.expires_at is None:
            return True
        return now <= self.expires_at

    @classmethod
    def from_document(cls, doc_id: str, data: dict) -> 'Ticket':
        return cls(
            id=doc_id,
            passenger_name=data.get("passengerName", ""),
            phone_number=data.get("phoneNumber") or data.get("passengerPhone", ""),
            route_id=data.get("routeId", ""),
            route_name=data.get("routeName", ""),
            bus_number=data.get("busNumber", ""),
            departure_time=data.get("departureTime"),
            fare=resolve_fare(data),
            is_used=bool(data.get("isUsed", False)),
            created_at=data.get("createdAt"),
            expires_at=data.get("expiresAt"),
        )

    def to_dict(self) -> dict:
        result = asdict(self)
        for key in ("departure_time", "created_at", "expires_at"):
            if result[key] is not None:
                result[key] = result[key].isoformat()
        return result


@dataclass(frozen=True)
class Complaint:
    """Immutable complaint data model. ``source`` is None for untagged legacy records."""
    id: str
    subject: str
    description: str = ""
    status: str = "pending"
    source: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc_id: str, data: dict) -> 'Complaint':
        return cls(
            id=doc_id,
            subject=data.get("subject", ""),
            description=data.get("description", ""),
            status=data.get("status", "pending"),
            source=data.get("source"),
            created_at=data.get("createdAt"),
        )

    def to_dict(self) -> dict:
        result = asdict(self)
        if self.created_at is not None:
            result["created_at"] = self.created_at.isoformat()
        return result


@dataclass
class StatBucket:
    """Derived aggregation record keyed by a period-formatted date string"""
    key: str
    count: int = 0
    revenue: float = 0.0

    def to_dict(self) -> dict:
        return {"date": self.key, "count": self.count, "revenue": self.revenue}
