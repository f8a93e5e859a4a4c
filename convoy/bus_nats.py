"""
NATS helpers for session change notifications.

PostgresStore publishes a small notice on every committed write
(``<prefix>.<code>.users`` or ``<prefix>.<code>.annotations``); clients
subscribed to a session re-read the collection when a notice arrives.
The bus keeps one connection open for the lifetime of the store.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from nats.aio.client import Client as NATS

from .config import get_nats_prefix, get_nats_url

logger = logging.getLogger(__name__)

NoticeHandler = Callable[[Dict[str, Any]], Awaitable[None]]


def change_subject(prefix: str, code: str, collection: str) -> str:
    return f"{prefix}.{code}.{collection}"


class NatsBus:
    """Reusable NATS connection for publishing and subscribing to change notices."""

    def __init__(self, nats_url: Optional[str] = None, subject_prefix: Optional[str] = None) -> None:
        self.nats_url = nats_url or get_nats_url()
        self.subject_prefix = subject_prefix or get_nats_prefix()
        self._nc = NATS()
        self._connected = False
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        async with self._lock:
            if self._connected:
                return
            await self._nc.connect(servers=[self.nats_url])
            self._connected = True
            logger.info("Connected to NATS at %s", self.nats_url)

    async def publish_change(self, code: str, collection: str) -> None:
        if not self._connected:
            await self.connect()
        subject = change_subject(self.subject_prefix, code, collection)
        payload = json.dumps({"session": code, "collection": collection}).encode("utf-8")
        await self._nc.publish(subject, payload)

    async def subscribe_changes(self, code: str, collection: str, handler: NoticeHandler):
        """Call `handler` with each decoded notice; returns the NATS subscription."""
        if not self._connected:
            await self.connect()

        async def _on_msg(msg) -> None:
            try:
                notice = json.loads(msg.data.decode("utf-8"))
            except ValueError:
                logger.warning("Ignoring malformed change notice on %s", msg.subject)
                return
            await handler(notice)

        subject = change_subject(self.subject_prefix, code, collection)
        return await self._nc.subscribe(subject, cb=_on_msg)

    async def close(self) -> None:
        async with self._lock:
            if not self._connected:
                return
            await self._nc.flush()
            await self._nc.drain()
            self._connected = False

    async def __aenter__(self) -> "NatsBus":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
