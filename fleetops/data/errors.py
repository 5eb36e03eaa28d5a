"""
Error taxonomy shared by the scheduler, statistics and storage layers.
"""

from datetime import datetime
from typing import Optional


class FleetOpsError(Exception):
    """Base class for every error raised by fleetops"""
    pass


class ValidationError(FleetOpsError):
    """Required input is missing or malformed; raised before touching the store"""
    pass


class TransitionError(ValidationError):
    """Requested status change is not allowed from the record's current status"""

    def __init__(self, record_id: str, current: Optional[str], target: str):
        self.record_id = record_id
        self.current = current
        self.target = target
        super().__init__(f"Cannot move {record_id} from {current!r} to {target!r}")


class NotFoundError(FleetOpsError):
    """Referenced bus, route, schedule or ticket does not exist"""

    def __init__(self, kind: str, record_id: str):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind.capitalize()} not found: {record_id}")


class ConflictError(FleetOpsError):
    """Bus already has an active schedule inside the conflict window"""

    def __init__(self, bus_id: str, conflicting_id: str, conflicting_time: datetime):
        self.bus_id = bus_id
        self.conflicting_id = conflicting_id
        self.conflicting_time = conflicting_time
        super().__init__(
            f"Bus {bus_id} has a conflicting schedule {conflicting_id} "
            f"at {conflicting_time.isoformat()}"
        )


class TransientStoreError(FleetOpsError):
    """Underlying store read or write failed (network, quota, locked database)"""
    pass
