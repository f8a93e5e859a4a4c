"""
PostgreSQL-backed document store.

Documents are kept as JSONB rows, one table per collection. Every
committed write publishes a change notice on NATS so that other clients
subscribed to the session re-read the collection. psycopg2 is blocking,
so each database round-trip runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Optional

import nats.errors
import psycopg2
import psycopg2.extras

from .bus_nats import NatsBus
from .errors import TransientWriteError
from .store import (
    ANNOTATIONS,
    PARTICIPANTS,
    DocumentStore,
    Snapshot,
    SnapshotCallback,
    Subscription,
    WriteBatch,
    merge_participant,
    resolve_timestamps,
)

logger = logging.getLogger(__name__)


DDL_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS convoy_sessions (
        code       TEXT PRIMARY KEY,
        host_id    TEXT NOT NULL,
        created_at DOUBLE PRECISION NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS convoy_participants (
        session_code   TEXT NOT NULL,
        participant_id TEXT NOT NULL,
        doc            JSONB NOT NULL,
        PRIMARY KEY (session_code, participant_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS convoy_annotations (
        id           BIGSERIAL PRIMARY KEY,
        session_code TEXT NOT NULL,
        doc          JSONB NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_convoy_annotations_session ON convoy_annotations(session_code);",
]


class PostgresStore(DocumentStore):
    """Document store on PostgreSQL with NATS change notifications."""

    def __init__(
        self,
        db_url: str,
        nats_url: Optional[str] = None,
        subject_prefix: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.db_url = db_url
        self.clock = clock
        self.bus = NatsBus(nats_url=nats_url, subject_prefix=subject_prefix)
        self._schema_ready = False

    @contextmanager
    def _cursor(self) -> Iterator[Any]:
        """Cursor inside one transaction; commits on success, rolls back on error."""
        conn = psycopg2.connect(self.db_url)
        try:
            with conn:
                with conn.cursor() as cur:
                    if not self._schema_ready:
                        for ddl in DDL_STATEMENTS:
                            cur.execute(ddl)
                        self._schema_ready = True
                    yield cur
        finally:
            conn.close()

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args)
        except psycopg2.Error as exc:
            logger.warning("Store write failed: %s", exc)
            raise TransientWriteError(str(exc)) from exc

    async def _notify(self, code: str, collection: str) -> None:
        try:
            await self.bus.publish_change(code, collection)
        except Exception as exc:  # noqa: BLE001 - the write itself is committed
            logger.warning("Change notice for %s/%s not published: %s", code, collection, exc)

    # Sessions
    def _get_session(self, code: str) -> Optional[Dict[str, Any]]:
        with self._cursor() as cur:
            cur.execute("SELECT code, host_id, created_at FROM convoy_sessions WHERE code = %s", (code,))
            row = cur.fetchone()
        if row is None:
            return None
        return {"code": row[0], "hostId": row[1], "createdAt": row[2]}

    async def get_session(self, code: str) -> Optional[Dict[str, Any]]:
        return await self._run(self._get_session, code)

    def _create_session(self, code: str, host_id: str) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO convoy_sessions (code, host_id, created_at)
                VALUES (%s, %s, %s)
                ON CONFLICT (code) DO UPDATE SET host_id = EXCLUDED.host_id
                """,
                (code, host_id, self.clock()),
            )

    async def create_session(self, code: str, host_id: str) -> None:
        await self._run(self._create_session, code, host_id)

    # Participants
    def _list_participants(self, code: str) -> Snapshot:
        with self._cursor() as cur:
            cur.execute(
                "SELECT doc FROM convoy_participants WHERE session_code = %s ORDER BY participant_id",
                (code,),
            )
            return [row[0] for row in cur.fetchall()]

    async def list_participants(self, code: str) -> Snapshot:
        return await self._run(self._list_participants, code)

    def _set_participant(self, code: str, participant_id: str, doc: Dict[str, Any]) -> None:
        stored = resolve_timestamps(doc, self.clock())
        stored["id"] = participant_id
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO convoy_participants (session_code, participant_id, doc)
                VALUES (%s, %s, %s)
                ON CONFLICT (session_code, participant_id) DO UPDATE SET doc = EXCLUDED.doc
                """,
                (code, participant_id, psycopg2.extras.Json(stored)),
            )

    async def set_participant(self, code: str, participant_id: str, doc: Dict[str, Any]) -> None:
        await self._run(self._set_participant, code, participant_id, doc)
        await self._notify(code, PARTICIPANTS)

    def _update_participant(self, code, participant_id, fields, trail_append) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT doc FROM convoy_participants
                WHERE session_code = %s AND participant_id = %s
                FOR UPDATE
                """,
                (code, participant_id),
            )
            row = cur.fetchone()
            if row is None:
                raise TransientWriteError(f"participant {participant_id} not found in session {code}")
            merged = merge_participant(row[0], fields, trail_append, self.clock())
            cur.execute(
                "UPDATE convoy_participants SET doc = %s WHERE session_code = %s AND participant_id = %s",
                (psycopg2.extras.Json(merged), code, participant_id),
            )

    async def update_participant(self, code, participant_id, fields, trail_append=None) -> None:
        await self._run(self._update_participant, code, participant_id, fields, trail_append)
        await self._notify(code, PARTICIPANTS)

    def _delete_participant(self, code: str, participant_id: str) -> None:
        with self._cursor() as cur:
            cur.execute(
                "DELETE FROM convoy_participants WHERE session_code = %s AND participant_id = %s",
                (code, participant_id),
            )

    async def delete_participant(self, code: str, participant_id: str) -> None:
        await self._run(self._delete_participant, code, participant_id)
        await self._notify(code, PARTICIPANTS)

    # Annotations
    def _list_annotations(self, code: str) -> Snapshot:
        with self._cursor() as cur:
            cur.execute("SELECT id, doc FROM convoy_annotations WHERE session_code = %s ORDER BY id", (code,))
            return [{**row[1], "id": str(row[0])} for row in cur.fetchall()]

    async def list_annotations(self, code: str) -> Snapshot:
        return await self._run(self._list_annotations, code)

    def _add_annotation(self, code: str, doc: Dict[str, Any]) -> str:
        stored = resolve_timestamps(doc, self.clock())
        stored.pop("id", None)
        with self._cursor() as cur:
            cur.execute(
                "INSERT INTO convoy_annotations (session_code, doc) VALUES (%s, %s) RETURNING id",
                (code, psycopg2.extras.Json(stored)),
            )
            return str(cur.fetchone()[0])

    async def add_annotation(self, code: str, doc: Dict[str, Any]) -> str:
        annotation_id = await self._run(self._add_annotation, code, doc)
        await self._notify(code, ANNOTATIONS)
        return annotation_id

    def _update_annotation(self, code: str, annotation_id: str, fields: Dict[str, Any]) -> None:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE convoy_annotations SET doc = doc || %s WHERE session_code = %s AND id = %s",
                (psycopg2.extras.Json(resolve_timestamps(fields, self.clock())), code, int(annotation_id)),
            )
            if cur.rowcount == 0:
                raise TransientWriteError(f"annotation {annotation_id} not found in session {code}")

    async def update_annotation(self, code: str, annotation_id: str, fields: Dict[str, Any]) -> None:
        await self._run(self._update_annotation, code, annotation_id, fields)
        await self._notify(code, ANNOTATIONS)

    def _delete_annotation(self, code: str, annotation_id: str) -> None:
        with self._cursor() as cur:
            cur.execute(
                "DELETE FROM convoy_annotations WHERE session_code = %s AND id = %s",
                (code, int(annotation_id)),
            )

    async def delete_annotation(self, code: str, annotation_id: str) -> None:
        await self._run(self._delete_annotation, code, annotation_id)
        await self._notify(code, ANNOTATIONS)

    # Batches
    def _commit_batch(self, batch: WriteBatch) -> None:
        with self._cursor() as cur:
            for op in batch.ops:
                if op.kind == "participant":
                    cur.execute(
                        "DELETE FROM convoy_participants WHERE session_code = %s AND participant_id = %s",
                        (op.code, op.doc_id),
                    )
                elif op.kind == "annotation":
                    cur.execute(
                        "DELETE FROM convoy_annotations WHERE session_code = %s AND id = %s",
                        (op.code, int(op.doc_id)),
                    )
                elif op.kind == "session":
                    cur.execute("DELETE FROM convoy_sessions WHERE code = %s", (op.code,))

    async def commit_batch(self, batch: WriteBatch) -> None:
        await self._run(self._commit_batch, batch)
        touched = set()
        for op in batch.ops:
            if op.kind == "participant":
                touched.add((op.code, PARTICIPANTS))
            elif op.kind == "annotation":
                touched.add((op.code, ANNOTATIONS))
        for code, collection in sorted(touched):
            await self._notify(code, collection)

    # Live updates
    async def _subscribe(self, code: str, collection: str, callback: SnapshotCallback) -> Subscription:
        reader = self.list_participants if collection == PARTICIPANTS else self.list_annotations
        callback(await reader(code))

        async def on_change(_notice: Dict[str, Any]) -> None:
            try:
                snapshot = await reader(code)
            except TransientWriteError as exc:
                logger.warning("Could not refresh %s for %s: %s", collection, code, exc)
                return
            callback(snapshot)

        try:
            sub = await self.bus.subscribe_changes(code, collection, on_change)
        except (nats.errors.Error, OSError) as exc:
            raise TransientWriteError(f"change feed unavailable: {exc}") from exc
        return Subscription(sub.unsubscribe)

    async def subscribe_participants(self, code: str, callback: SnapshotCallback) -> Subscription:
        return await self._subscribe(code, PARTICIPANTS, callback)

    async def subscribe_annotations(self, code: str, callback: SnapshotCallback) -> Subscription:
        return await self._subscribe(code, ANNOTATIONS, callback)

    async def close(self) -> None:
        await self.bus.close()
