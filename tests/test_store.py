import asyncio
import copy

import pytest

from conftest import FakeClock
from convoy.errors import TransientWriteError
from convoy.models import decode_annotation, decode_participant
from convoy.store import SERVER_TIMESTAMP, MemoryStore, merge_participant, open_store


def _doc(pid, **extra):
    doc = {"id": pid, "name": pid, "color": "#3b82f6", "isLeader": False, "lat": 0.0, "lng": 0.0,
           "lastActive": SERVER_TIMESTAMP}
    doc.update(extra)
    return doc


def test_merge_keeps_last_active_monotonic():
    merged = merge_participant({"lastActive": 200.0}, {"lastActive": SERVER_TIMESTAMP, "lat": 1.0}, None, now=150.0)
    assert merged["lastActive"] == 200.0
    assert merged["lat"] == 1.0


def test_merge_appends_trail_as_union():
    current = {"path": [{"lat": 1.0, "lng": 1.0}]}
    merged = merge_participant(current, {}, {"lat": 1.0, "lng": 1.0}, now=0.0)
    assert merged["path"] == [{"lat": 1.0, "lng": 1.0}]
    merged = merge_participant(merged, {}, {"lat": 2.0, "lng": 2.0}, now=0.0)
    assert merged["path"] == [{"lat": 1.0, "lng": 1.0}, {"lat": 2.0, "lng": 2.0}]
    # input untouched
    assert current["path"] == [{"lat": 1.0, "lng": 1.0}]


def test_server_timestamp_resolved_on_write():
    clock = FakeClock(500.0)
    store = MemoryStore(clock=clock)

    async def scenario():
        await store.set_participant("ABCD", "u1", _doc("u1"))
        clock.now = 400.0
        await store.update_participant("ABCD", "u1", {"lastActive": SERVER_TIMESTAMP})
        return await store.list_participants("ABCD")

    docs = asyncio.run(scenario())
    assert docs[0]["lastActive"] == 500.0
    assert docs[0]["id"] == "u1"


def test_update_missing_participant_fails():
    store = MemoryStore()
    with pytest.raises(TransientWriteError):
        asyncio.run(store.update_participant("ABCD", "ghost", {"lat": 1.0}))


def test_fail_writes_blocks_every_write():
    store = MemoryStore()
    store.fail_writes = True
    with pytest.raises(TransientWriteError):
        asyncio.run(store.set_participant("ABCD", "u1", _doc("u1")))
    with pytest.raises(TransientWriteError):
        asyncio.run(store.add_annotation("ABCD", {"text": "x"}))
    assert store.participants == {}


def test_subscribers_get_initial_and_changed_snapshots():
    store = MemoryStore()
    seen = []

    async def scenario():
        await store.set_participant("ABCD", "u1", _doc("u1"))
        sub = await store.subscribe_participants("ABCD", lambda docs: seen.append(sorted(d["id"] for d in docs)))
        await store.set_participant("ABCD", "u2", _doc("u2"))
        await store.set_participant("OTHER", "u3", _doc("u3"))
        await sub.cancel()
        await store.delete_participant("ABCD", "u1")

    asyncio.run(scenario())
    assert seen == [["u1"], ["u1", "u2"]]


def test_batch_is_delivered_as_one_change():
    store = MemoryStore()
    seen_users, seen_notes = [], []

    async def scenario():
        for pid in ("u1", "u2", "u3"):
            await store.set_participant("ABCD", pid, _doc(pid))
        await store.create_session("ABCD", "u1")
        note_id = await store.add_annotation("ABCD", {"lat": 0, "lng": 0, "text": "fuel", "createdAt": SERVER_TIMESTAMP})
        await store.subscribe_participants("ABCD", lambda docs: seen_users.append(len(docs)))
        await store.subscribe_annotations("ABCD", lambda docs: seen_notes.append(len(docs)))

        batch = store.batch()
        for pid in ("u1", "u2", "u3"):
            batch.delete_participant("ABCD", pid)
        batch.delete_annotation("ABCD", note_id)
        batch.delete_session("ABCD")
        await batch.commit()
        return await store.get_session("ABCD")

    session = asyncio.run(scenario())
    assert session is None
    assert seen_users == [3, 0]
    assert seen_notes == [1, 0]


def test_failed_batch_changes_nothing():
    store = MemoryStore()

    async def scenario():
        await store.set_participant("ABCD", "u1", _doc("u1"))
        store.fail_writes = True
        with pytest.raises(TransientWriteError):
            await store.batch().delete_participant("ABCD", "u1").commit()
        store.fail_writes = False
        return await store.list_participants("ABCD")

    assert len(asyncio.run(scenario())) == 1


def test_annotation_ids_are_store_assigned():
    store = MemoryStore(clock=FakeClock(10.0))

    async def scenario():
        first = await store.add_annotation("ABCD", {"lat": 0, "lng": 0, "text": "a", "createdAt": SERVER_TIMESTAMP})
        second = await store.add_annotation("ABCD", {"lat": 0, "lng": 0, "text": "b", "createdAt": SERVER_TIMESTAMP})
        await store.update_annotation("ABCD", first, {"text": "aa"})
        return first, second, await store.list_annotations("ABCD")

    first, second, docs = asyncio.run(scenario())
    assert first != second
    by_id = {d["id"]: d for d in docs}
    assert by_id[first]["text"] == "aa"
    assert by_id[second]["createdAt"] == 10.0


def test_open_store_defaults_to_memory():
    assert isinstance(open_store(), MemoryStore)


def test_server_timestamp_survives_copies():
    assert copy.copy(SERVER_TIMESTAMP) is SERVER_TIMESTAMP
    assert copy.deepcopy({"lastActive": SERVER_TIMESTAMP})["lastActive"] is SERVER_TIMESTAMP


def test_new_documents_decode_with_stamped_times():
    store = MemoryStore(clock=FakeClock(42.0))

    async def scenario():
        await store.set_participant("ABCD", "u1", _doc("u1"))
        await store.add_annotation("ABCD", {"lat": 0, "lng": 0, "text": "fuel", "createdAt": SERVER_TIMESTAMP})
        return await store.list_participants("ABCD"), await store.list_annotations("ABCD")

    participants, annotations = asyncio.run(scenario())
    assert decode_participant(participants[0]).last_active == 42.0
    assert decode_annotation(annotations[0]).created_at == 42.0
