import asyncio
from datetime import datetime, timedelta

import pytest
import pytz

from fleetops.data.errors import NotFoundError, ValidationError
from fleetops.data.repositories.document_store import matches
from fleetops.data.repositories.memory_store import MemoryDocumentStore
from fleetops.services.database_service import SqliteDocumentStore, decode_document, encode_document

from conftest import FixedClock, NOW, utc


@pytest.fixture(params=["memory", "sqlite"])
async def doc_store(request, config):
    if request.param == "memory":
        yield MemoryDocumentStore(clock=FixedClock(NOW))
        return
    store = SqliteDocumentStore(config, clock=FixedClock(NOW))
    await store.initialize()
    yield store
    await store.close()


async def seed_people(store):
    ids = {}
    for name, age, tenant in [("ama", 31, "A"), ("kofi", 25, "A"), ("esi", 40, "B"), ("yaw", None, "A")]:
        ids[name] = await store.create("people", {"name": name, "age": age, "companyId": tenant})
    return ids


def test_matches_operators():
    record = {"status": "scheduled", "n": 5, "when": utc(2025, 9, 14)}
    assert matches(record, [("status", "in", ["scheduled", "in_transit"])])
    assert matches(record, [("n", ">=", 5), ("n", "<=", 5), ("n", ">", 4), ("n", "<", 6)])
    assert matches(record, [("when", ">=", utc(2025, 9, 13))])
    assert not matches(record, [("missing", "==", None)])
    assert not matches(record, [("n", ">", "text")])


async def test_create_stamps_created_at_and_returns_id(doc_store):
    doc_id = await doc_store.create("people", {"name": "ama"})
    doc = await doc_store.get_by_id("people", doc_id)

    assert doc["id"] == doc_id
    assert doc["name"] == "ama"
    assert doc["createdAt"] == NOW


async def test_get_filters_orders_and_limits(doc_store):
    await seed_people(doc_store)

    tenant_a = await doc_store.get("people", [("companyId", "==", "A")], order_by="age")
    assert [d["name"] for d in tenant_a] == ["kofi", "ama", "yaw"]

    oldest = await doc_store.get("people", [("age", ">=", 25)], order_by="age", descending=True, limit=2)
    assert [d["name"] for d in oldest] == ["esi", "ama"]

    picked = await doc_store.get("people", [("name", "in", ["esi", "yaw"])])
    assert sorted(d["name"] for d in picked) == ["esi", "yaw"]


async def test_unknown_operator_is_rejected(doc_store):
    with pytest.raises(ValidationError):
        await doc_store.get("people", [("name", "~", "a")])


async def test_update_merges_and_missing_raises(doc_store):
    ids = await seed_people(doc_store)
    await doc_store.update("people", ids["ama"], {"age": 32, "city": "Accra"})

    doc = await doc_store.get_by_id("people", ids["ama"])
    assert doc["age"] == 32
    assert doc["city"] == "Accra"
    assert doc["name"] == "ama"

    with pytest.raises(NotFoundError):
        await doc_store.update("people", "nope", {"age": 1})


async def test_delete(doc_store):
    ids = await seed_people(doc_store)
    await doc_store.delete("people", ids["kofi"])

    assert await doc_store.get_by_id("people", ids["kofi"]) is None
    assert len(await doc_store.get("people")) == 3


async def test_datetimes_round_trip(doc_store):
    when = utc(2025, 9, 14, 6, 0)
    doc_id = await doc_store.create("schedules", {"departureTime": when})
    later = await doc_store.get("schedules", [("departureTime", ">", when - timedelta(seconds=1))])

    assert later[0]["id"] == doc_id
    assert later[0]["departureTime"] == when


async def test_subscription_lifecycle(doc_store):
    snapshots = []
    subscription = await doc_store.subscribe("people", [("companyId", "==", "A")], snapshots.append)
    assert snapshots == [[]]

    ids = await seed_people(doc_store)
    assert [len(s) for s in snapshots] == [0, 1, 2, 2, 3]

    subscription.cancel()
    await doc_store.update("people", ids["ama"], {"age": 50})
    assert len(snapshots) == 5
    assert doc_store.subscription_count("people") == 0


async def test_async_subscriber_callbacks_are_awaited(doc_store):
    received = []

    async def callback(snapshot):
        received.append(len(snapshot))

    await doc_store.subscribe("people", [], callback)
    await doc_store.create("people", {"name": "ama"})
    assert received == [0, 1]


async def test_failing_subscription_query_delivers_empty_snapshot(clock):
    class BrokenStore(MemoryDocumentStore):
        broken = False

        async def _load_collection(self, collection, company_id=None):
            if self.broken:
                raise RuntimeError("boom")
            return await super()._load_collection(collection, company_id)

    store = BrokenStore(clock=clock)
    snapshots = []
    await store.subscribe("people", [], snapshots.append)
    await store.create("people", {"name": "ama"})
    store.broken = True
    await store.create("people", {"name": "kofi"})

    assert [len(s) for s in snapshots] == [0, 1, 0]


async def test_subscriber_errors_do_not_break_writes(clock):
    store = MemoryDocumentStore(clock=clock)

    def explode(snapshot):
        raise ValueError("bad view")

    await store.subscribe("people", [], explode)
    doc_id = await store.create("people", {"name": "ama"})
    assert await store.get_by_id("people", doc_id) is not None


async def test_write_lock_serializes_holders_of_one_key(clock):
    store = MemoryDocumentStore(clock=clock)
    events = []

    async def hold(name, key):
        async with store.write_lock(key):
            events.append(f"enter:{name}")
            await asyncio.sleep(0.01)
            events.append(f"exit:{name}")

    await asyncio.gather(hold("a", "buses:B1"), hold("b", "buses:B1"))
    assert events == ["enter:a", "exit:a", "enter:b", "exit:b"]

    events.clear()
    await asyncio.gather(hold("a", "buses:B1"), hold("b", "buses:B2"))
    assert events[:2] == ["enter:a", "enter:b"]


async def test_idle_write_locks_are_dropped(clock):
    store = MemoryDocumentStore(clock=clock)

    async def hold(key):
        async with store.write_lock(key):
            await asyncio.sleep(0.01)

    await asyncio.gather(*(hold(f"buses:B{n}") for n in range(20)), hold("buses:B1"))
    assert store.held_lock_count() == 0


async def test_notifications_wait_for_lock_release(clock):
    store = MemoryDocumentStore(clock=clock)
    snapshots = []
    await store.subscribe("people", [], snapshots.append)

    async with store.write_lock("people:ama"):
        doc_id = await store.create("people", {"name": "ama"})
        await store.update("people", doc_id, {"age": 31})
        assert len(snapshots) == 1

    assert [len(s) for s in snapshots] == [0, 1]
    assert snapshots[-1][0]["age"] == 31

    await store.create("people", {"name": "kofi"})
    assert [len(s) for s in snapshots] == [0, 1, 2]


async def test_notifications_are_delivered_when_the_locked_block_fails(clock):
    store = MemoryDocumentStore(clock=clock)
    snapshots = []
    await store.subscribe("people", [], snapshots.append)

    with pytest.raises(RuntimeError):
        async with store.write_lock("people:ama"):
            await store.create("people", {"name": "ama"})
            raise RuntimeError("abort")

    assert [len(s) for s in snapshots] == [0, 1]
    assert store.held_lock_count() == 0


def test_document_encoding_tags_datetimes():
    lagos = pytz.timezone("Africa/Lagos")
    local = lagos.localize(datetime(2025, 9, 14, 7, 0))
    text = encode_document({"departureTime": local, "nested": {"n": 1}})

    assert '"$date": "2025-09-14T06:00:00+00:00"' in text
    decoded = decode_document(text)
    assert decoded["departureTime"] == utc(2025, 9, 14, 6, 0)
    assert decoded["nested"] == {"n": 1}


async def test_sqlite_store_persists_across_connections(config):
    store = SqliteDocumentStore(config, clock=FixedClock(NOW))
    await store.initialize()
    doc_id = await store.create("tickets", {"fare": 12.0, "companyId": "A"})
    await store.put("routes", "R1", {"name": "Accra to Kumasi", "companyId": "A"})
    await store.close()

    reopened = SqliteDocumentStore(config)
    await reopened.initialize()
    assert (await reopened.get_by_id("tickets", doc_id))["createdAt"] == NOW
    assert (await reopened.get_by_id("routes", "R1"))["name"] == "Accra to Kumasi"
    assert await reopened.get_statistics() == {"routes": 1, "tickets": 1}
    await reopened.close()
