"""
Seed the SQLite document store with a sample company: routes, buses, drivers,
a few schedules on 2025-09-14 and ten days of test tickets.

Usage: python seed_database.py
"""

import asyncio
import logging
import random
from datetime import datetime, timedelta

import pytz

from fleetops.core.config import ApplicationConfig
from fleetops.data.collections import BUSES, DRIVER_STATUS, DRIVERS, ROUTES, TICKETS
from fleetops.data.errors import ConflictError
from fleetops.services.database_service import SqliteDocumentStore
from fleetops.services.scheduler import SchedulerService

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger("seed_database")

ROUTES_DATA = [
    ("A-K", "Accra to Kumasi", "Accra (A)", "Kumasi (K)", 120.0),
    ("K-A", "Kumasi to Accra", "Kumasi (K)", "Accra (A)", 120.0),
    ("A-T", "Accra to Tamale", "Accra (A)", "Tamale (T)", 200.0),
    ("T-A", "Tamale to Accra", "Tamale (T)", "Accra (A)", 200.0),
    ("K-S", "Kumasi to Sunyani", "Kumasi (K)", "Sunyani (S)", 50.0),
    ("S-K", "Sunyani to Kumasi", "Sunyani (S)", "Kumasi (K)", 50.0),
    ("A-H", "Accra to Ho", "Accra (A)", "Ho (H)", 80.0),
    ("H-A", "Ho to Accra", "Ho (H)", "Accra (A)", 80.0),
]

BUS_PREFIXES = ["A/T", "T/A", "A/K", "K/A", "K/S", "S/K", "A/H", "H/A"]

SAMPLE_SCHEDULES = [
    ("A-K", "BUS_1", datetime(2025, 9, 14, 6, 0)),
    ("A-K", "BUS_3", datetime(2025, 9, 14, 10, 0)),
    ("A-T", "BUS_2", datetime(2025, 9, 14, 8, 0)),
]


async def seed(config: ApplicationConfig):
    store = SqliteDocumentStore(config)
    await store.initialize()
    tenant = config.tenant_id
    now = datetime.now(pytz.utc)

    for route_id, name, origin, destination, fare in ROUTES_DATA:
        await store.put(ROUTES, route_id, {
            "name": name, "origin": origin, "destination": destination, "fare": fare,
            "isActive": True, "companyId": tenant, "createdAt": now,
        })
    logger.info(f"Created {len(ROUTES_DATA)} routes")

    for i in range(20):
        prefix = BUS_PREFIXES[i % len(BUS_PREFIXES)]
        await store.put(BUSES, f"BUS_{i + 1}", {
            "busNumber": f"{prefix} {i // len(BUS_PREFIXES) + 1:03d}",
            "capacity": 50, "isActive": True, "isAvailable": True,
            "companyId": tenant, "createdAt": now,
        })
    logger.info("Created 20 buses")

    for i in range(5):
        driver_id = f"DRIVER_{i + 1}"
        await store.put(DRIVERS, driver_id, {
            "name": f"Driver {i + 1}", "status": "available", "currentAssignment": None,
            "isActive": True, "companyId": tenant, "createdAt": now,
        })
        await store.put(DRIVER_STATUS, driver_id, {
            "driverId": driver_id, "status": "offline", "companyId": tenant, "lastUpdate": now,
        })
    logger.info("Created 5 drivers")

    scheduler = SchedulerService(config, store)
    for route_id, bus_id, departure in SAMPLE_SCHEDULES:
        try:
            schedule_id = await scheduler.assign(route_id, bus_id, departure)
            logger.info(f"Created schedule {schedule_id}: {route_id} with {bus_id} at {departure}")
        except ConflictError as e:
            logger.warning(f"Skipped sample schedule: {e}")

    for i in range(10):
        created = now - timedelta(days=i)
        route_id, name, _, _, _ = ROUTES_DATA[i % len(ROUTES_DATA)]
        await store.create(TICKETS, {
            "companyId": tenant,
            "routeId": route_id,
            "routeName": name,
            "passengerName": f"Test Passenger {i + 1}",
            "phoneNumber": f"020000000{i}",
            "fare": float(random.randint(20, 70)),
            "isUsed": random.random() > 0.3,
            "createdAt": created,
            "expiresAt": created + timedelta(hours=config.ticket_validity_hours),
        })
    logger.info("Created 10 test tickets")

    await store.close()


if __name__ == "__main__":
    asyncio.run(seed(ApplicationConfig()))
