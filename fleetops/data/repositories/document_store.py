"""
Document store contract shared by the SQLite and in-memory backends.

Records are plain dicts keyed by a generated id. Queries are a list of
``(field, op, value)`` predicates joined with AND; ordering and limits are
applied after filtering. Subscribers receive the full result set of their
query every time the collection changes.
"""

import asyncio
import contextvars
import logging
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

import pytz

from ..errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

Filter = Tuple[str, str, Any]


def _in(actual, expected):
    return actual in expected


OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": lambda actual, expected: actual == expected,
    "in": _in,
    ">=": lambda actual, expected: actual >= expected,
    "<=": lambda actual, expected: actual <= expected,
    ">": lambda actual, expected: actual > expected,
    "<": lambda actual, expected: actual < expected,
}


def matches(record: dict, filters: Iterable[Filter]) -> bool:
    """Evaluate AND-ed predicates; missing fields and incomparable values never match"""
    for field_name, op, expected in filters:
        if field_name not in record or record[field_name] is None:
            return False
        try:
            if not OPERATORS[op](record[field_name], expected):
                return False
        except TypeError:
            return False
    return True


def equality_hint(filters: Iterable[Filter], field_name: str) -> Optional[Any]:
    """Value of an ``==`` predicate on field_name, used by backends to narrow scans"""
    for name, op, value in filters:
        if name == field_name and op == "==":
            return value
    return None


class Subscription:
    """Live query handle. Call cancel() when the view no longer needs updates."""

    def __init__(self, store: 'DocumentStore', collection: str, filters: Sequence[Filter],
                 callback: Callable[[List[dict]], Any], order_by: Optional[str] = None,
                 descending: bool = False):
        self.store = store
        self.collection = collection
        self.filters = list(filters)
        self.callback = callback
        self.order_by = order_by
        self.descending = descending
        self.active = True

    async def deliver(self):
        """Push the current snapshot; a failing query is delivered as an empty snapshot"""
        if not self.active:
            return
        try:
            snapshot = await self.store.get(self.collection, self.filters,
                                            order_by=self.order_by, descending=self.descending)
        except Exception as e:
            logger.error(f"Subscription query on {self.collection} failed: {e}")
            snapshot = []
        try:
            result = self.callback(snapshot)
            if hasattr(result, '__await__'):
                await result
        except Exception as e:
            logger.error(f"Subscriber callback for {self.collection} raised: {e}")

    def cancel(self):
        self.active = False
        self.store._subscriptions[self.collection].discard(self)


class DocumentStore(ABC):
    """Collection-level read/write/subscribe operations over JSON-like documents"""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or (lambda: datetime.now(pytz.utc))
        self._subscriptions: Dict[str, Set[Subscription]] = defaultdict(set)
        self._write_locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = defaultdict(int)
        # Collections changed while the current task holds a write lock
        self._deferred: contextvars.ContextVar = contextvars.ContextVar(f"deferred_{id(self)}", default=None)

    # Backend hooks

    @abstractmethod
    async def _load_collection(self, collection: str, company_id: Optional[str] = None) -> List[Tuple[str, dict]]:
        """All (id, data) pairs in a collection, optionally narrowed to one tenant"""

    @abstractmethod
    async def _load_one(self, collection: str, doc_id: str) -> Optional[dict]:
        pass

    @abstractmethod
    async def _insert(self, collection: str, doc_id: str, data: dict) -> None:
        pass

    @abstractmethod
    async def _patch(self, collection: str, doc_id: str, fields: dict) -> bool:
        """Merge fields into an existing document; False when it does not exist"""

    @abstractmethod
    async def _remove(self, collection: str, doc_id: str) -> bool:
        pass

    # Public operations

    async def get(self, collection: str, filters: Sequence[Filter] = (),
                  order_by: Optional[str] = None, descending: bool = False,
                  limit: Optional[int] = None) -> List[dict]:
        """Documents matching every filter, each returned with its ``id``"""
        for _, op, _ in filters:
            if op not in OPERATORS:
                raise ValidationError(f"Unsupported filter operator: {op}")

        rows = await self._load_collection(collection, equality_hint(filters, "companyId"))
        results = [dict(data, id=doc_id) for doc_id, data in rows if matches(data, filters)]

        if order_by:
            present = [r for r in results if r.get(order_by) is not None]
            missing = [r for r in results if r.get(order_by) is None]
            present.sort(key=lambda r: r[order_by], reverse=descending)
            results = present + missing
        if limit is not None:
            results = results[:limit]
        return results

    async def get_by_id(self, collection: str, doc_id: str) -> Optional[dict]:
        data = await self._load_one(collection, doc_id)
        if data is None:
            return None
        return dict(data, id=doc_id)

    async def create(self, collection: str, fields: dict) -> str:
        """Insert a document and return its generated id; stamps createdAt when absent"""
        doc_id = uuid.uuid4().hex
        data = {k: v for k, v in fields.items() if k != "id"}
        if data.get("createdAt") is None:
            data["createdAt"] = self.clock()
        await self._insert(collection, doc_id, data)
        await self._notify(collection)
        return doc_id

    async def update(self, collection: str, doc_id: str, fields: dict) -> None:
        if not await self._patch(collection, doc_id, dict(fields)):
            raise NotFoundError(collection, doc_id)
        await self._notify(collection)

    async def delete(self, collection: str, doc_id: str) -> None:
        """Remove a document; only used to undo a half-finished multi-document write"""
        if await self._remove(collection, doc_id):
            await self._notify(collection)

    async def subscribe(self, collection: str, filters: Sequence[Filter],
                        callback: Callable[[List[dict]], Any], order_by: Optional[str] = None,
                        descending: bool = False) -> Subscription:
        """Register a live query; the current snapshot is delivered before returning"""
        subscription = Subscription(self, collection, filters, callback, order_by, descending)
        self._subscriptions[collection].add(subscription)
        await subscription.deliver()
        return subscription

    @asynccontextmanager
    async def write_lock(self, key: str) -> AsyncIterator[None]:
        """Hold the single-writer lock for a logical key, shared by every caller of this store.

        Subscriber notifications for writes made while holding the lock are
        delivered once it is released. Idle locks are dropped.
        """
        lock = self._write_locks.get(key)
        if lock is None:
            lock = self._write_locks[key] = asyncio.Lock()
        self._lock_users[key] += 1

        outermost = self._deferred.get() is None
        token = self._deferred.set(set()) if outermost else None
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                self._write_locks.pop(key, None)
            if outermost:
                pending = self._deferred.get()
                self._deferred.reset(token)
                for collection in sorted(pending):
                    await self._notify(collection)

    def held_lock_count(self) -> int:
        return len(self._write_locks)

    def subscription_count(self, collection: Optional[str] = None) -> int:
        if collection is not None:
            return len(self._subscriptions.get(collection, ()))
        return sum(len(subs) for subs in self._subscriptions.values())

    async def _notify(self, collection: str):
        pending = self._deferred.get()
        if pending is not None:
            pending.add(collection)
            return
        for subscription in list(self._subscriptions.get(collection, ())):
            await subscription.deliver()

    async def close(self):
        for subs in self._subscriptions.values():
            for subscription in list(subs):
                subscription.active = False
        self._subscriptions.clear()
