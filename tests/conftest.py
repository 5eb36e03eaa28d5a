import asyncio
from datetime import datetime, timedelta

import pytest
import pytz

from fleetops.core.config import ApplicationConfig
from fleetops.data.collections import BUSES, DRIVERS, ROUTES
from fleetops.data.errors import TransientStoreError
from fleetops.data.repositories.memory_store import MemoryDocumentStore
from fleetops.services.booking_service import BookingService
from fleetops.services.scheduler import SchedulerService
from fleetops.services.statistics_service import StatisticsService

TENANT = "COMPANY_001"
OTHER_TENANT = "COMPANY_002"

# A Sunday
NOW = datetime(2025, 9, 14, 12, 0, tzinfo=pytz.utc)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=pytz.utc)


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FlakyStore(MemoryDocumentStore):
    """Memory store whose reads or writes fail for selected collections"""

    def __init__(self, clock=None):
        super().__init__(clock)
        self.failing_reads = set()
        self.failing_writes = set()
        self.read_calls = 0

    async def _load_collection(self, collection, company_id=None):
        self.read_calls += 1
        if collection in self.failing_reads:
            raise TransientStoreError(f"{collection} unavailable")
        return await super()._load_collection(collection, company_id)

    async def _load_one(self, collection, doc_id):
        self.read_calls += 1
        if collection in self.failing_reads:
            raise TransientStoreError(f"{collection} unavailable")
        return await super()._load_one(collection, doc_id)

    async def _patch(self, collection, doc_id, fields):
        if collection in self.failing_writes:
            raise TransientStoreError(f"{collection} is read-only")
        return await super()._patch(collection, doc_id, fields)


class SlowStore(MemoryDocumentStore):
    """Yields to the event loop on every read so concurrent requests interleave"""

    async def _load_collection(self, collection, company_id=None):
        await asyncio.sleep(0.01)
        return await super()._load_collection(collection, company_id)


def seed_fleet(store: MemoryDocumentStore):
    store.put(ROUTES, "R1", {
        "name": "Accra to Kumasi", "origin": "Accra (A)", "destination": "Kumasi (K)",
        "fare": 120.0, "isActive": True, "companyId": TENANT,
    })
    store.put(ROUTES, "R2", {
        "name": "Accra to Tamale", "origin": "Accra (A)", "destination": "Tamale (T)",
        "fare": 200.0, "isActive": True, "companyId": TENANT,
    })
    store.put(ROUTES, "R9", {
        "name": "Old route", "fare": 10.0, "isActive": False, "companyId": TENANT,
    })
    store.put(BUSES, "B1", {
        "busNumber": "A/K 001", "capacity": 50, "isActive": True, "isAvailable": True, "companyId": TENANT,
    })
    store.put(BUSES, "B2", {
        "plateNumber": "GT-4411-20", "capacity": 50, "isActive": True, "isAvailable": True, "companyId": TENANT,
    })
    store.put(BUSES, "BUS_ABCD1234", {
        "capacity": 30, "isActive": True, "isAvailable": False, "companyId": TENANT,
    })
    store.put(BUSES, "X1", {
        "busNumber": "X 001", "isActive": True, "isAvailable": True, "companyId": OTHER_TENANT,
    })
    store.put(DRIVERS, "D1", {"name": "Kwame", "status": "available", "companyId": TENANT})
    store.put(DRIVERS, "D2", {"name": "Ama", "status": "available", "companyId": TENANT})
    return store


@pytest.fixture
def config(tmp_path):
    return ApplicationConfig(tenant_id=TENANT, timezone_name="UTC", db_path=tmp_path / "db" / "fleetops.db")


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def store(clock):
    return seed_fleet(MemoryDocumentStore(clock=clock))


@pytest.fixture
def flaky_store(clock):
    return seed_fleet(FlakyStore(clock=clock))


@pytest.fixture
def scheduler(config, store):
    return SchedulerService(config, store)


@pytest.fixture
def statistics(config, store):
    return StatisticsService(config, store)


@pytest.fixture
def booking(config, store):
    return BookingService(config, store)
