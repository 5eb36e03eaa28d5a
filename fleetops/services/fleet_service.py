"""
Read-side access to routes, buses and live driver status.
"""

import logging
from typing import Any, Callable, List, Optional

from fleetops.core.config import ApplicationConfig
from fleetops.data.collections import BUSES, DRIVER_STATUS, ROUTES
from fleetops.data.models import Bus, Route
from fleetops.data.repositories.document_store import DocumentStore, Subscription

logger = logging.getLogger(__name__)


class FleetService:
    def __init__(self, config: ApplicationConfig, store: DocumentStore, tenant_id: Optional[str] = None):
        self.config = config
        self.store = store
        self.tenant_id = tenant_id or config.tenant_id

    async def get_routes(self, tenant_id: Optional[str] = None) -> List[Route]:
        docs = await self.store.get(ROUTES, [
            ("isActive", "==", True),
            ("companyId", "==", tenant_id or self.tenant_id),
        ], order_by="name")
        return [Route.from_document(doc["id"], doc) for doc in docs]

    async def get_buses(self, tenant_id: Optional[str] = None) -> List[Bus]:
        docs = await self.store.get(BUSES, [
            ("isActive", "==", True),
            ("companyId", "==", tenant_id or self.tenant_id),
        ])
        return [Bus.from_document(doc["id"], doc) for doc in docs]

    async def subscribe_to_drivers(self, callback: Callable[[List[dict]], Any],
                                   tenant_id: Optional[str] = None) -> Subscription:
        """Live driver status snapshots; each delivery replaces the previous view"""
        return await self.store.subscribe(
            DRIVER_STATUS, [("companyId", "==", tenant_id or self.tenant_id)], callback
        )
