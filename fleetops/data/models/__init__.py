"""
Data models module.
Exports all data model classes.
"""

from .fleet import Route, Bus
from .schedule import Schedule, ScheduleStatus
from .ticket import Ticket, Complaint, StatBucket, resolve_fare, FARE_FIELD_ALIASES

__all__ = [
    "Route",
    "Bus",
    "Schedule",
    "ScheduleStatus",
    "Ticket",
    "Complaint",
    "StatBucket",
    "resolve_fare",
    "FARE_FIELD_ALIASES"
]
