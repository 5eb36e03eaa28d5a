"""
Data layer module.
Exports all data layer components including models, errors and repositories.
"""

# Import all models
from .models import (
    Route, Bus, Schedule, ScheduleStatus,
    Ticket, Complaint, StatBucket, resolve_fare
)

# Import error taxonomy
from .errors import (
    FleetOpsError, ValidationError, TransitionError,
    NotFoundError, ConflictError, TransientStoreError
)

# Import all repositories
from .repositories import (
    DocumentStore, Subscription, MemoryDocumentStore
)

__all__ = [
    # Models
    "Route",
    "Bus",
    "Schedule",
    "ScheduleStatus",
    "Ticket",
    "Complaint",
    "StatBucket",
    "resolve_fare",

    # Errors
    "FleetOpsError",
    "ValidationError",
    "TransitionError",
    "NotFoundError",
    "ConflictError",
    "TransientStoreError",

    # Repositories
    "DocumentStore",
    "Subscription",
    "MemoryDocumentStore"
]
