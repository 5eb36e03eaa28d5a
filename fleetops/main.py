#!/usr/bin/env python3
"""
Main entry point for the fleet operations dashboard backend.
Wires the document store, services and web server together.
"""

import asyncio
import logging
import signal
import sys
from typing import Optional

from fleetops.api.web_server import WebServer
from fleetops.core.application import Application
from fleetops.core.config import ApplicationConfig
from fleetops.services.booking_service import BookingService
from fleetops.services.database_service import SqliteDocumentStore
from fleetops.services.fleet_service import FleetService
from fleetops.services.scheduler import SchedulerService
from fleetops.services.statistics_service import StatisticsService

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class FleetOpsSystem:
    """Main system coordinator that integrates all components"""

    def __init__(self, config: Optional[ApplicationConfig] = None):
        self.config = config or ApplicationConfig()
        self.app = Application()
        self.store: Optional[SqliteDocumentStore] = None
        self.web_server: Optional[WebServer] = None
        self.shutdown_event = asyncio.Event()

    async def setup(self):
        """Initialize and register all services"""
        logger.info(f"Setting up fleet operations backend for tenant {self.config.tenant_id}...")

        self.store = SqliteDocumentStore(self.config)
        scheduler = SchedulerService(self.config, self.store)
        statistics = StatisticsService(self.config, self.store)
        booking = BookingService(self.config, self.store)
        fleet = FleetService(self.config, self.store)
        self.web_server = WebServer(self.config, scheduler, statistics, booking, fleet)

        # Store first so it is stopped last
        self.app.register_service("document_store", self.store)
        self.app.register_service("web_server", self.web_server)
        logger.info("All services initialized and registered")

    def _setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown"""
        def shutdown_handler(signum, frame):
            logger.info(f"Received signal {signum}, shutting down...")
            self.shutdown_event.set()

        signal.signal(signal.SIGINT, shutdown_handler)
        signal.signal(signal.SIGTERM, shutdown_handler)

    async def start(self):
        """Start the system and wait for a shutdown signal"""
        self._setup_signal_handlers()
        await self.setup()
        await self.app.start()
        await self.shutdown_event.wait()

    async def stop(self):
        """Stop the system gracefully"""
        logger.info("Stopping fleet operations backend...")
        self.shutdown_event.set()
        await self.app.stop()
        logger.info("System stopped gracefully")


async def main():
    """Main entry point"""
    system = FleetOpsSystem()

    try:
        await system.start()
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        sys.exit(1)
    finally:
        await system.stop()


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nShutdown complete")
        sys.exit(0)


if __name__ == "__main__":
    run()
