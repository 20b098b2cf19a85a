"""Change feed watcher: notification → pixel event → broadcast.

Learn: Tests cover:
1. Inserts are broadcast straight from the embedded document
2. Updates are re-read and broadcast with the current stored state
3. Every other operation type is ignored
4. Lookup misses and malformed payloads are counted, never fatal
5. run() retries the feed, reconnects after a lost connection
"""

import json

import pytest

from pixelmap.db.connect import StoreUnavailableError
from pixelmap.realtime.events import PixelEvent
from pixelmap.realtime.watcher import ChangeFeedWatcher
from tests.conftest import FakeFeed, drain


def insert(row, color, state="claimed", _id="abc"):
    return json.dumps({
        "operationType": "insert",
        "documentKey": {"_id": _id},
        "fullDocument": {"_id": _id, "row": row, "color": color, "state": state},
    })


def update(_id, **extra):
    return json.dumps({"operationType": "update", "documentKey": {"_id": _id}, **extra})


@pytest.fixture()
def viewer(gate):
    session = gate.open_session("viewer")
    gate.connect(session)
    return session


# ─── Insert / update / other ─────────────────────────────


@pytest.mark.asyncio
async def test_insert_broadcasts_full_document(watcher, store, viewer):
    event = await watcher.process(insert(5, "#ff0000"))

    assert event == PixelEvent(row=5, color="#ff0000", state="claimed")
    assert drain(viewer) == [
        {"event": "newPixel", "data": {"row": 5, "color": "#ff0000", "state": "claimed"}}
    ]
    assert store.lookups == []


@pytest.mark.asyncio
async def test_update_broadcasts_current_stored_state(watcher, store, viewer):
    store.docs["abc"] = {"_id": "abc", "row": 5, "color": "#00ff00", "state": "claimed"}

    event = await watcher.process(update("abc"))

    assert event == PixelEvent(row=5, color="#00ff00", state="claimed")
    assert store.lookups == ["abc"]
    assert drain(viewer) == [
        {"event": "newPixel", "data": {"row": 5, "color": "#00ff00", "state": "claimed"}}
    ]


@pytest.mark.asyncio
async def test_update_ignores_values_embedded_in_the_notification(watcher, store, viewer):
    store.docs["abc"] = {"row": 5, "color": "#00ff00", "state": "claimed"}
    stale = update(
        "abc",
        fullDocument={"row": 5, "color": "#123456", "state": "free"},
        updateDescription={"updatedFields": {"color": "#123456"}},
    )

    event = await watcher.process(stale)

    assert event.color == "#00ff00"
    assert event.state == "claimed"


@pytest.mark.asyncio
@pytest.mark.parametrize("op", ["delete", "replace", "drop", "invalidate"])
async def test_other_operations_emit_nothing(watcher, viewer, op):
    payload = json.dumps({"operationType": op, "documentKey": {"_id": "abc"}})

    assert await watcher.process(payload) is None
    assert drain(viewer) == []
    assert watcher.stats.ignored == 1
    assert watcher.stats.emitted == 0


# ─── Per-item failures ───────────────────────────────────


@pytest.mark.asyncio
async def test_lookup_miss_is_counted_and_next_item_still_processed(watcher, viewer):
    await watcher.consume(FakeFeed([update("gone"), insert(7, "#0000ff")]))

    assert watcher.stats.lookup_misses == 1
    assert watcher.stats.emitted == 1
    assert drain(viewer) == [
        {"event": "newPixel", "data": {"row": 7, "color": "#0000ff", "state": "claimed"}}
    ]


@pytest.mark.asyncio
async def test_malformed_payload_is_skipped(watcher, viewer):
    payloads = [
        "{not json",
        json.dumps({"operationType": "insert", "documentKey": {"_id": "x"},
                    "fullDocument": {"row": 1}}),
        insert(2, "#ffffff"),
    ]
    await watcher.consume(FakeFeed(payloads))

    assert watcher.stats.processed == 3
    assert watcher.stats.errors == 2
    assert [m["data"]["row"] for m in drain(viewer)] == [2]


@pytest.mark.asyncio
async def test_lookup_error_does_not_stop_the_watcher(gate, viewer):
    async def broken_lookup(document_key):
        raise ConnectionError("database went away")

    watcher = ChangeFeedWatcher(gate=gate, lookup=broken_lookup)
    await watcher.consume(FakeFeed([update("abc"), insert(3, "#abcdef")]))

    assert watcher.stats.errors == 1
    assert watcher.stats.emitted == 1


@pytest.mark.asyncio
async def test_events_are_broadcast_in_arrival_order(watcher, store, viewer):
    store.docs["p2"] = {"row": 2, "color": "#222222", "state": "claimed"}
    payloads = [insert(1, "#111111", _id="p1"), update("p2"), insert(3, "#333333", _id="p3")]

    await watcher.consume(FakeFeed(payloads))

    assert [m["data"]["row"] for m in drain(viewer)] == [1, 2, 3]


# ─── run(): feed lifecycle ───────────────────────────────


@pytest.mark.asyncio
async def test_run_retries_until_feed_opens(gate, store, viewer):
    attempts = []

    async def open_feed():
        attempts.append(1)
        if len(attempts) < 3:
            raise OSError("connection refused")
        return feed

    watcher = ChangeFeedWatcher(
        gate=gate, lookup=store.lookup, open_feed=open_feed,
        connect_attempts=5, backoff_base=0,
    )
    feed = FakeFeed([insert(5, "#ff0000")], on_exhausted=watcher.stop)

    await watcher.run()

    assert len(attempts) == 3
    assert feed.closed
    assert watcher.stats.emitted == 1
    assert not watcher.running


@pytest.mark.asyncio
async def test_run_reconnects_after_feed_closed(gate, store, viewer):
    watcher = ChangeFeedWatcher(gate=gate, lookup=store.lookup, backoff_base=0)
    feeds = [
        FakeFeed([insert(1, "#111111")], close_with_error=True),
        FakeFeed([insert(2, "#222222")], on_exhausted=watcher.stop),
    ]
    opened = []

    async def open_feed():
        feed = feeds[len(opened)]
        opened.append(feed)
        return feed

    watcher.open_feed = open_feed
    await watcher.run()

    assert watcher.stats.reconnects == 1
    assert all(f.closed for f in feeds)
    assert [m["data"]["row"] for m in drain(viewer)] == [1, 2]


@pytest.mark.asyncio
async def test_run_gives_up_when_feed_never_opens(gate, store):
    async def open_feed():
        raise OSError("connection refused")

    watcher = ChangeFeedWatcher(
        gate=gate, lookup=store.lookup, open_feed=open_feed,
        connect_attempts=2, backoff_base=0,
    )

    with pytest.raises(StoreUnavailableError):
        await watcher.run()
    assert not watcher.running


@pytest.mark.asyncio
async def test_get_stats(watcher):
    await watcher.process(insert(1, "#111111"))
    stats = watcher.get_stats()
    assert stats["processed"] == 1
    assert stats["emitted"] == 1
    assert stats["started_at"] is None
