"""
Ticket booking and complaint intake.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional

from fleetops.core.config import ApplicationConfig
from fleetops.data.collections import COMPLAINTS, ROUTES, TICKETS
from fleetops.data.errors import NotFoundError, ValidationError
from fleetops.data.models import Complaint, Route, Ticket
from fleetops.data.repositories.document_store import DocumentStore, Subscription
from fleetops.data.validation import require_fields, validate_departure_time, validate_fare
from fleetops.shared.utils import to_utc

logger = logging.getLogger(__name__)

COMPLAINT_SOURCES = ("mobile", "web")


class BookingService:
    """Book tickets and record passenger complaints for one tenant"""

    def __init__(self, config: ApplicationConfig, store: DocumentStore, tenant_id: Optional[str] = None):
        self.config = config
        self.store = store
        self.tenant_id = tenant_id or config.tenant_id
        self.local_tz = config.timezone
        self.validity = timedelta(hours=config.ticket_validity_hours)

    async def create_ticket(self, route_id: str, passenger_name: str, phone_number: str,
                            departure_time: Any = None, bus_number: str = "", fare: Any = None,
                            tenant_id: Optional[str] = None) -> Ticket:
        """Book a ticket valid for 24 hours from creation.

        The route name is copied onto the ticket; the fare defaults to the
        route's fare when not given.
        """
        require_fields(route_id=route_id, passenger_name=passenger_name, phone_number=phone_number)
        fare = validate_fare(fare)
        departure = to_utc(validate_departure_time(departure_time, self.local_tz)) if departure_time else None
        tenant = tenant_id or self.tenant_id

        route_doc = await self.store.get_by_id(ROUTES, route_id)
        if route_doc is None or route_doc.get("companyId", tenant) != tenant:
            raise NotFoundError("route", route_id)
        route = Route.from_document(route_id, route_doc)

        created_at = self.store.clock()
        data = {
            "companyId": tenant,
            "routeId": route_id,
            "routeName": route.name,
            "busNumber": bus_number or "",
            "passengerName": passenger_name,
            "phoneNumber": phone_number,
            "departureTime": departure,
            "fare": fare if fare is not None else route.fare,
            "isUsed": False,
            "createdAt": created_at,
            "expiresAt": created_at + self.validity,
            "updatedAt": created_at,
        }
        ticket_id = await self.store.create(TICKETS, data)
        logger.info(f"Ticket created with ID: {ticket_id}")
        return Ticket.from_document(ticket_id, data)

    async def get_tickets(self, tenant_id: Optional[str] = None) -> List[Ticket]:
        """Latest tickets, newest first"""
        docs = await self.store.get(
            TICKETS, [("companyId", "==", tenant_id or self.tenant_id)],
            order_by="createdAt", descending=True, limit=self.config.ticket_list_limit
        )
        return [Ticket.from_document(doc["id"], doc) for doc in docs]

    async def is_ticket_valid(self, ticket_id: str, now: Optional[datetime] = None) -> bool:
        require_fields(ticket_id=ticket_id)
        doc = await self.store.get_by_id(TICKETS, ticket_id)
        if doc is None:
            raise NotFoundError("ticket", ticket_id)
        return Ticket.from_document(ticket_id, doc).is_valid(to_utc(now) if now else self.store.clock())

    async def create_complaint(self, subject: str, description: str = "", source: Optional[str] = None,
                               tenant_id: Optional[str] = None) -> Complaint:
        """Record a pending complaint tagged with the channel it came from"""
        require_fields(subject=subject)
        if source is not None and source not in COMPLAINT_SOURCES:
            raise ValidationError(f"Unknown complaint source: {source!r}")

        data = {
            "companyId": tenant_id or self.tenant_id,
            "subject": subject,
            "description": description,
            "status": "pending",
            "source": source,
        }
        complaint_id = await self.store.create(COMPLAINTS, data)
        doc = await self.store.get_by_id(COMPLAINTS, complaint_id)
        return Complaint.from_document(complaint_id, doc or data)

    async def subscribe_to_complaints(self, callback: Callable[[List[Complaint]], Any],
                                      tenant_id: Optional[str] = None) -> Subscription:
        """Live complaint feed, newest first"""
        def on_snapshot(docs):
            return callback([Complaint.from_document(doc["id"], doc) for doc in docs])

        return await self.store.subscribe(
            COMPLAINTS, [("companyId", "==", tenant_id or self.tenant_id)], on_snapshot,
            order_by="createdAt", descending=True
        )
