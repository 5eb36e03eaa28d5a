"""
Ticket, revenue and complaint statistics for the operations dashboard.

Every public statistic is fail-soft: a store failure is logged and replaced by
an empty or zeroed result so the dashboard can still render the other charts.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import pandas as pd

from fleetops.core.config import ApplicationConfig
from fleetops.data.collections import COMPLAINTS, TICKETS
from fleetops.data.models import StatBucket, resolve_fare
from fleetops.data.repositories.document_store import DocumentStore
from fleetops.data.validation import validate_period_days
from fleetops.shared.utils import start_of_day, to_utc

logger = logging.getLogger(__name__)

PERIODS = ("daily", "weekly", "monthly", "yearly")

# strftime pattern of the bucket key per period; weekly keys are the Sunday starting the week
KEY_FORMATS = {
    "daily": "%Y-%m-%d",
    "weekly": "%Y-%m-%d",
    "monthly": "%Y-%m",
    "yearly": "%Y",
}

FALLBACK_LOOKBACK = timedelta(days=30)


def window_start(period: str, now: datetime, tz) -> datetime:
    """Earliest ticket creation time included in a period's statistics"""
    local = now.astimezone(tz)
    if period == "daily":
        return start_of_day(now, tz)
    if period == "weekly":
        return now - timedelta(days=7)
    if period == "monthly":
        return tz.localize(datetime(local.year, local.month, 1))
    if period == "yearly":
        return tz.localize(datetime(local.year, 1, 1))
    return now - FALLBACK_LOOKBACK


def bucket_tickets(docs: List[dict], period: str, tz) -> List[StatBucket]:
    """Group ticket documents into count/revenue buckets sorted by key"""
    docs = [doc for doc in docs if doc.get("createdAt") is not None]
    if not docs:
        return []

    frame = pd.DataFrame({
        "created_at": [doc["createdAt"] for doc in docs],
        "fare": [resolve_fare(doc) for doc in docs],
    })
    # Local calendar dates, so stepping back whole days cannot cross a DST shift
    local_day = pd.to_datetime(frame["created_at"], utc=True).dt.tz_convert(tz).dt.tz_localize(None).dt.normalize()
    if period == "weekly":
        # dayofweek is 0 for Monday; step back to the preceding Sunday
        local_day = local_day - pd.to_timedelta((local_day.dt.dayofweek + 1) % 7, unit="D")
    frame["key"] = local_day.dt.strftime(KEY_FORMATS.get(period, "%Y-%m-%d"))

    grouped = frame.groupby("key", sort=True).agg(count=("fare", "size"), revenue=("fare", "sum"))
    return [
        StatBucket(key=str(key), count=int(count), revenue=float(revenue))
        for key, count, revenue in zip(grouped.index, grouped["count"], grouped["revenue"])
    ]


def empty_complaint_statistics() -> Dict[str, int]:
    return {
        "totalComplaints": 0,
        "pendingComplaints": 0,
        "resolvedComplaints": 0,
        "mobileComplaints": 0,
        "webComplaints": 0,
        "untaggedComplaints": 0,
    }


class StatisticsService:
    """Aggregate ticket and complaint records over time windows"""

    def __init__(self, config: ApplicationConfig, store: DocumentStore, tenant_id: Optional[str] = None):
        self.config = config
        self.store = store
        self.tenant_id = tenant_id or config.tenant_id
        self.local_tz = config.timezone

    def _now(self, now: Optional[datetime]) -> datetime:
        return to_utc(now) if now is not None else self.store.clock()

    # Tickets

    async def fetch_ticket_statistics(self, period: str = "monthly", now: Optional[datetime] = None,
                                      tenant_id: Optional[str] = None) -> List[StatBucket]:
        """Bucketed ticket statistics; store failures propagate"""
        now = self._now(now)
        start = window_start(period, now, self.local_tz)
        docs = await self.store.get(TICKETS, [
            ("createdAt", ">=", to_utc(start)),
            ("companyId", "==", tenant_id or self.tenant_id),
        ])
        logger.debug(f"Found {len(docs)} tickets for {period} period since {start.isoformat()}")
        return bucket_tickets(docs, period, self.local_tz)

    async def ticket_statistics(self, period: str = "monthly", now: Optional[datetime] = None,
                                tenant_id: Optional[str] = None) -> List[StatBucket]:
        try:
            return await self.fetch_ticket_statistics(period, now, tenant_id)
        except Exception as e:
            logger.error(f"Error getting {period} ticket stats: {e}")
            return []

    # Revenue

    async def fetch_revenue_by_period(self, days: Optional[int] = None, now: Optional[datetime] = None,
                                      tenant_id: Optional[str] = None) -> List[dict]:
        days = validate_period_days(days if days is not None else self.config.default_revenue_days)
        end = self._now(now)
        start = end - timedelta(days=days)
        docs = await self.store.get(TICKETS, [
            ("createdAt", ">=", start),
            ("createdAt", "<=", end),
            ("companyId", "==", tenant_id or self.tenant_id),
        ])
        total = sum(resolve_fare(doc) for doc in docs)
        label = f"Last {days} days ({end.astimezone(self.local_tz):%m/%d/%Y})"
        return [{"period": label, "revenue": float(total)}]

    async def revenue_by_period(self, days: Optional[int] = None, now: Optional[datetime] = None,
                                tenant_id: Optional[str] = None) -> List[dict]:
        """Total fares over the last ``days`` days as a single labelled record"""
        days = days if days is not None else self.config.default_revenue_days
        try:
            return await self.fetch_revenue_by_period(days, now, tenant_id)
        except Exception as e:
            logger.error(f"Error getting revenue: {e}")
            return [{"period": f"Last {days} days", "revenue": 0.0}]

    # Complaints

    async def _count(self, collection: str, filters) -> int:
        return len(await self.store.get(collection, filters))

    async def fetch_complaint_statistics(self, tenant_id: Optional[str] = None) -> Dict[str, int]:
        tenant = ("companyId", "==", tenant_id or self.tenant_id)
        counts = await asyncio.gather(
            self._count(COMPLAINTS, [tenant]),
            self._count(COMPLAINTS, [("status", "==", "pending"), tenant]),
            self._count(COMPLAINTS, [("status", "==", "resolved"), tenant]),
            self._count(COMPLAINTS, [("source", "==", "mobile"), tenant]),
            self._count(COMPLAINTS, [("source", "==", "web"), tenant]),
            return_exceptions=True,
        )
        for count in counts:
            if isinstance(count, Exception):
                raise count
        total, pending, resolved, mobile, web = counts
        return {
            "totalComplaints": total,
            "pendingComplaints": pending,
            "resolvedComplaints": resolved,
            "mobileComplaints": mobile,
            "webComplaints": web,
            "untaggedComplaints": total - mobile - web,
        }

    async def complaint_statistics(self, tenant_id: Optional[str] = None) -> Dict[str, int]:
        """Complaint counts by status and origin; zeroed if any count query fails"""
        try:
            return await self.fetch_complaint_statistics(tenant_id)
        except Exception as e:
            logger.error(f"Error getting complaint stats: {e}")
            return empty_complaint_statistics()

    # Dashboard

    async def dashboard(self, now: Optional[datetime] = None, tenant_id: Optional[str] = None) -> dict:
        """Every dashboard statistic at once. Each failing query is replaced by its
        empty default individually and counted in ``failedQueries``."""
        now = self._now(now)
        results = await asyncio.gather(
            *(self.fetch_ticket_statistics(period, now, tenant_id) for period in PERIODS),
            self.fetch_complaint_statistics(tenant_id),
            self.fetch_revenue_by_period(None, now, tenant_id),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        for failure in failures:
            logger.error(f"Dashboard statistic failed: {failure}")

        tickets = {}
        for period, result in zip(PERIODS, results[:len(PERIODS)]):
            buckets = [] if isinstance(result, Exception) else result
            tickets[period] = [bucket.to_dict() for bucket in buckets]

        complaints = results[len(PERIODS)]
        if isinstance(complaints, Exception):
            complaints = empty_complaint_statistics()

        revenue = results[len(PERIODS) + 1]
        if isinstance(revenue, Exception):
            revenue = [{"period": f"Last {self.config.default_revenue_days} days", "revenue": 0.0}]

        error = None
        if failures:
            error = f"Some data couldn't be loaded. {len(failures)} requests failed."
        return {
            "tickets": tickets,
            "complaints": complaints,
            "revenue": revenue,
            "failedQueries": len(failures),
            "error": error,
        }
