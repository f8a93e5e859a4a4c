import asyncio

import pytest

from conftest import FakeClock
from convoy.annotations import AnnotationStore
from convoy.errors import InvalidTransition, PermissionDenied, ValidationError
from convoy.store import MemoryStore

CODE = "TRIP"


def test_host_places_annotation_seen_by_members():
    store = MemoryStore(clock=FakeClock(50.0))
    seen = []

    async def scenario():
        host = AnnotationStore(store, CODE, is_host=True)
        member = AnnotationStore(store, CODE, is_host=False, on_change=seen.append)
        await host.subscribe()
        await member.subscribe()

        host.begin_placing()
        assert host.placing is True
        annotation_id = await host.create(0.5, 0.25, "  Chai stop ")
        return host, member, annotation_id

    host, member, annotation_id = asyncio.run(scenario())
    assert host.placing is False
    assert [a.text for a in member.annotations] == ["Chai stop"]
    assert member.get(annotation_id).created_at == 50.0
    assert seen[0] == []
    assert len(seen[-1]) == 1


def test_create_requires_placing_and_text():
    store = MemoryStore()
    host = AnnotationStore(store, CODE, is_host=True)
    with pytest.raises(InvalidTransition):
        asyncio.run(host.create(0.0, 0.0, "x"))
    host.begin_placing()
    with pytest.raises(ValidationError):
        asyncio.run(host.create(0.0, 0.0, "   "))
    host.cancel_placing()
    assert host.placing is False


def test_members_cannot_edit():
    store = MemoryStore()
    member = AnnotationStore(store, CODE, is_host=False)
    with pytest.raises(PermissionDenied):
        member.begin_placing()
    with pytest.raises(PermissionDenied):
        asyncio.run(member.update_text("a1", "new"))
    with pytest.raises(PermissionDenied):
        asyncio.run(member.delete("a1"))


def test_update_and_delete():
    store = MemoryStore()
    answers = iter([False, True])

    async def scenario():
        host = AnnotationStore(store, CODE, is_host=True, confirm=lambda message: next(answers))
        await host.subscribe()
        host.begin_placing()
        annotation_id = await host.create(0.0, 0.0, "Toll")
        assert await host.update_text(annotation_id, "Toll plaza") is True
        assert host.get(annotation_id).text == "Toll plaza"
        assert await host.delete(annotation_id) is False
        assert host.get(annotation_id) is not None
        assert await host.delete(annotation_id) is True
        return host

    host = asyncio.run(scenario())
    assert host.annotations == []


def test_write_failure_keeps_placing_mode():
    store = MemoryStore()
    host = AnnotationStore(store, CODE, is_host=True)
    host.begin_placing()
    store.fail_writes = True
    assert asyncio.run(host.create(0.0, 0.0, "Lost")) is None
    assert host.placing is True


def test_malformed_annotations_are_reported():
    host = AnnotationStore(MemoryStore(), CODE, is_host=True)
    host.apply_snapshot(
        [
            {"id": "a2", "lat": 0, "lng": 0, "text": "second", "createdAt": 20},
            {"id": "a1", "lat": 0, "lng": 0, "text": "first", "createdAt": 10},
            {"id": "a3", "lat": 0, "lng": 0},
        ]
    )
    assert [a.id for a in host.annotations] == ["a1", "a2"]
    assert [e.doc_id for e in host.rejected] == ["a3"]
