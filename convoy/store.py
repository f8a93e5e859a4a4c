"""
Shared real-time document store.

Layout, per session code:

    sessions/<code>                      session record
    sessions/<code>/users/<id>           participant documents
    sessions/<code>/annotations/<id>     annotation documents (store-assigned ids)

Writes are last-write-wins per document. Multi-document deletes go
through a WriteBatch, which is applied all-or-nothing: subscribers never
see a half-applied batch. Subscriptions receive the full collection
snapshot right away and again after every committed write.

MemoryStore keeps everything in process (tests, single-process demos);
PostgresStore in store_pg.py persists to PostgreSQL and fans out change
notifications over NATS.
"""

from __future__ import annotations

import copy
import inspect
import itertools
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import get_db_url, get_nats_prefix, get_nats_url
from .errors import TransientWriteError

logger = logging.getLogger(__name__)

Snapshot = List[Dict[str, Any]]
SnapshotCallback = Callable[[Snapshot], None]

PARTICIPANTS = "users"
ANNOTATIONS = "annotations"


class _ServerTimestamp:
    """Placeholder replaced by the store's clock when the write is applied."""

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"

    def __copy__(self) -> "_ServerTimestamp":
        return self

    def __deepcopy__(self, memo) -> "_ServerTimestamp":
        return self


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass
class BatchOp:
    kind: str  # "participant", "annotation" or "session"
    code: str
    doc_id: Optional[str] = None


@dataclass
class WriteBatch:
    """Collects deletes to be committed atomically by the owning store."""

    store: "DocumentStore"
    ops: List[BatchOp] = field(default_factory=list)

    def delete_participant(self, code: str, participant_id: str) -> "WriteBatch":
        self.ops.append(BatchOp("participant", code, participant_id))
        return self

    def delete_annotation(self, code: str, annotation_id: str) -> "WriteBatch":
        self.ops.append(BatchOp("annotation", code, annotation_id))
        return self

    def delete_session(self, code: str) -> "WriteBatch":
        self.ops.append(BatchOp("session", code))
        return self

    async def commit(self) -> None:
        await self.store.commit_batch(self)


class Subscription:
    """Handle returned by subscribe_*(); cancel() stops delivery."""

    def __init__(self, cancel: Callable[[], Any]) -> None:
        self._cancel = cancel
        self.active = True

    async def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        result = self._cancel()
        if inspect.isawaitable(result):
            await result


class DocumentStore(ABC):
    """Interface the sync engine needs from the shared store."""

    # Sessions
    @abstractmethod
    async def get_session(self, code: str) -> Optional[Dict[str, Any]]: ...

    @abstractmethod
    async def create_session(self, code: str, host_id: str) -> None: ...

    # Participants
    @abstractmethod
    async def list_participants(self, code: str) -> Snapshot: ...

    @abstractmethod
    async def set_participant(self, code: str, participant_id: str, doc: Dict[str, Any]) -> None:
        """Create or fully replace a participant document."""

    @abstractmethod
    async def update_participant(
        self,
        code: str,
        participant_id: str,
        fields: Dict[str, Any],
        trail_append: Optional[Dict[str, float]] = None,
    ) -> None:
        """
        Merge fields into an existing participant document.

        trail_append adds one point to the document's trail unless an
        identical point is already present. Raises TransientWriteError if
        the document does not exist.
        """

    @abstractmethod
    async def delete_participant(self, code: str, participant_id: str) -> None: ...

    # Annotations
    @abstractmethod
    async def list_annotations(self, code: str) -> Snapshot: ...

    @abstractmethod
    async def add_annotation(self, code: str, doc: Dict[str, Any]) -> str:
        """Store a new annotation; returns the store-generated id."""

    @abstractmethod
    async def update_annotation(self, code: str, annotation_id: str, fields: Dict[str, Any]) -> None: ...

    @abstractmethod
    async def delete_annotation(self, code: str, annotation_id: str) -> None: ...

    # Batches and live updates
    def batch(self) -> WriteBatch:
        return WriteBatch(store=self)

    @abstractmethod
    async def commit_batch(self, batch: WriteBatch) -> None: ...

    @abstractmethod
    async def subscribe_participants(self, code: str, callback: SnapshotCallback) -> Subscription: ...

    @abstractmethod
    async def subscribe_annotations(self, code: str, callback: SnapshotCallback) -> Subscription: ...

    async def close(self) -> None:
        return None


def resolve_timestamps(fields: Dict[str, Any], now: float) -> Dict[str, Any]:
    """Replace SERVER_TIMESTAMP placeholders with `now`."""
    return {k: (now if v is SERVER_TIMESTAMP else v) for k, v in fields.items()}


def merge_participant(
    current: Dict[str, Any],
    fields: Dict[str, Any],
    trail_append: Optional[Dict[str, float]],
    now: float,
) -> Dict[str, Any]:
    """
    Apply an update to a participant document.

    lastActive never moves backwards, and trail points are appended with
    array-union semantics (duplicates are skipped).
    """
    merged = dict(current)
    merged.update(resolve_timestamps(fields, now))

    previous_active = current.get("lastActive")
    if isinstance(previous_active, (int, float)) and isinstance(merged.get("lastActive"), (int, float)):
        merged["lastActive"] = max(previous_active, merged["lastActive"])

    if trail_append is not None:
        trail = list(merged.get("path") or [])
        point = {"lat": trail_append["lat"], "lng": trail_append["lng"]}
        if point not in trail:
            trail.append(point)
        merged["path"] = trail
    return merged


class MemoryStore(DocumentStore):
    """In-process store with synchronous change delivery."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self.clock = clock
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.participants: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.annotations: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._ids = itertools.count(1)
        self._subscribers: Dict[Tuple[str, str], Dict[int, SnapshotCallback]] = {}
        # Set by tests to simulate an unreachable store
        self.fail_writes = False

    def _check_writable(self) -> None:
        if self.fail_writes:
            raise TransientWriteError("store unavailable")

    def _snapshot(self, collection: str, code: str) -> Snapshot:
        source = self.participants if collection == PARTICIPANTS else self.annotations
        return [copy.deepcopy(doc) for doc in source.get(code, {}).values()]

    def _notify(self, collection: str, code: str) -> None:
        callbacks = list(self._subscribers.get((collection, code), {}).values())
        if not callbacks:
            return
        snapshot = self._snapshot(collection, code)
        for callback in callbacks:
            callback(copy.deepcopy(snapshot))

    async def get_session(self, code: str) -> Optional[Dict[str, Any]]:
        doc = self.sessions.get(code)
        return copy.deepcopy(doc) if doc is not None else None

    async def create_session(self, code: str, host_id: str) -> None:
        self._check_writable()
        self.sessions[code] = {"code": code, "hostId": host_id, "createdAt": self.clock()}

    async def list_participants(self, code: str) -> Snapshot:
        return self._snapshot(PARTICIPANTS, code)

    async def set_participant(self, code: str, participant_id: str, doc: Dict[str, Any]) -> None:
        self._check_writable()
        stored = copy.deepcopy(resolve_timestamps(doc, self.clock()))
        stored["id"] = participant_id
        self.participants.setdefault(code, {})[participant_id] = stored
        self._notify(PARTICIPANTS, code)

    async def update_participant(self, code, participant_id, fields, trail_append=None) -> None:
        self._check_writable()
        current = self.participants.get(code, {}).get(participant_id)
        if current is None:
            raise TransientWriteError(f"participant {participant_id} not found in session {code}")
        self.participants[code][participant_id] = merge_participant(current, fields, trail_append, self.clock())
        self._notify(PARTICIPANTS, code)

    async def delete_participant(self, code: str, participant_id: str) -> None:
        self._check_writable()
        self.participants.get(code, {}).pop(participant_id, None)
        self._notify(PARTICIPANTS, code)

    async def list_annotations(self, code: str) -> Snapshot:
        return self._snapshot(ANNOTATIONS, code)

    async def add_annotation(self, code: str, doc: Dict[str, Any]) -> str:
        self._check_writable()
        annotation_id = f"a{next(self._ids)}"
        stored = copy.deepcopy(resolve_timestamps(doc, self.clock()))
        stored["id"] = annotation_id
        self.annotations.setdefault(code, {})[annotation_id] = stored
        self._notify(ANNOTATIONS, code)
        return annotation_id

    async def update_annotation(self, code: str, annotation_id: str, fields: Dict[str, Any]) -> None:
        self._check_writable()
        current = self.annotations.get(code, {}).get(annotation_id)
        if current is None:
            raise TransientWriteError(f"annotation {annotation_id} not found in session {code}")
        current.update(resolve_timestamps(fields, self.clock()))
        self._notify(ANNOTATIONS, code)

    async def delete_annotation(self, code: str, annotation_id: str) -> None:
        self._check_writable()
        self.annotations.get(code, {}).pop(annotation_id, None)
        self._notify(ANNOTATIONS, code)

    async def commit_batch(self, batch: WriteBatch) -> None:
        self._check_writable()
        touched = set()
        for op in batch.ops:
            if op.kind == "participant":
                self.participants.get(op.code, {}).pop(op.doc_id, None)
                touched.add((PARTICIPANTS, op.code))
            elif op.kind == "annotation":
                self.annotations.get(op.code, {}).pop(op.doc_id, None)
                touched.add((ANNOTATIONS, op.code))
            elif op.kind == "session":
                self.sessions.pop(op.code, None)
        for collection, code in touched:
            self._notify(collection, code)

    def _subscribe(self, collection: str, code: str, callback: SnapshotCallback) -> Subscription:
        key = next(self._ids)
        self._subscribers.setdefault((collection, code), {})[key] = callback
        callback(self._snapshot(collection, code))

        def cancel() -> None:
            self._subscribers.get((collection, code), {}).pop(key, None)

        return Subscription(cancel)

    async def subscribe_participants(self, code: str, callback: SnapshotCallback) -> Subscription:
        return self._subscribe(PARTICIPANTS, code, callback)

    async def subscribe_annotations(self, code: str, callback: SnapshotCallback) -> Subscription:
        return self._subscribe(ANNOTATIONS, code, callback)


def open_store(db_url: Optional[str] = None) -> DocumentStore:
    """
    Build the store the environment asks for.

    PostgreSQL (with NATS notifications) when a database URL is
    configured, otherwise an in-process MemoryStore.
    """
    db_url = db_url or get_db_url()
    if not db_url:
        logger.info("CONVOY_DB_URL not set, using in-memory store")
        return MemoryStore()

    from .store_pg import PostgresStore

    return PostgresStore(db_url, nats_url=get_nats_url(), subject_prefix=get_nats_prefix())
