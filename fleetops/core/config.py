from dataclasses import dataclass, field
from pathlib import Path
import os

import pytz


def env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return value if value else default


def env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


@dataclass
class ApplicationConfig:
    """Centralized configuration"""

    # Tenant every query is scoped to
    tenant_id: str = field(default_factory=lambda: env_str("FLEETOPS_TENANT_ID", "COMPANY_001"))

    # Calendar boundaries (day/week/month/year) are computed in this zone
    timezone_name: str = field(default_factory=lambda: env_str("FLEETOPS_TIMEZONE", "Africa/Accra"))

    # Scheduling rules
    conflict_window_hours: int = 2
    ticket_validity_hours: int = 24

    # Dashboard query sizes
    default_revenue_days: int = 30
    schedule_list_limit: int = 50
    future_schedule_limit: int = 100
    ticket_list_limit: int = 50

    # Web settings
    web_host: str = field(default_factory=lambda: env_str("FLEETOPS_HOST", "0.0.0.0"))
    web_port: int = field(default_factory=lambda: env_int("FLEETOPS_PORT", 59970))

    # Paths
    db_path: Path = field(default_factory=lambda: Path(env_str("FLEETOPS_DB_PATH", "./db/fleetops.db")))

    @property
    def timezone(self):
        return pytz.timezone(self.timezone_name)
