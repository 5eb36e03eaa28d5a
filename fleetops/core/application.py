# fleetops/core/application.py
import logging

logger = logging.getLogger(__name__)


class Application:
    """Main application coordinator"""

    def __init__(self):
        self.services = {}

    async def start(self):
        """Start all registered services in registration order"""
        for name, service in self.services.items():
            start_method = getattr(service, 'start', None)
            if start_method is not None:
                result = start_method()
                if hasattr(result, '__await__'):
                    await result
                logger.debug(f"Started {name}")

    async def stop(self):
        """Gracefully stop application"""
        # Stop services in reverse registration order
        for name, service in list(self.services.items())[::-1]:
            stop_method = getattr(service, 'stop', None)
            if stop_method is None:
                continue
            try:
                result = stop_method()
                if hasattr(result, '__await__'):
                    await result
            except Exception as e:
                logger.error(f"Error stopping {name}: {e}")

    def register_service(self, name: str, service):
        self.services[name] = service

    def get_service(self, name: str):
        return self.services.get(name)
