"""
Host annotations (points of interest) for a session.

The host enters "placing" mode, picks a coordinate on the map and gives
the point a text; everybody in the session sees the result. Only the
host may edit or delete. Store write failures are logged and dropped,
like position writes.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from .errors import DocumentDecodeError, InvalidTransition, PermissionDenied, TransientWriteError, ValidationError
from .models import Annotation, decode_annotation
from .store import SERVER_TIMESTAMP, DocumentStore, Subscription

logger = logging.getLogger(__name__)


def _always(_message: str) -> bool:
    return True


class AnnotationStore:
    """Annotations of one session as seen (and, for the host, edited) by one client."""

    def __init__(
        self,
        store: DocumentStore,
        code: str,
        is_host: bool,
        confirm: Callable[[str], bool] = _always,
        on_change: Optional[Callable[[List[Annotation]], None]] = None,
    ) -> None:
        self.store = store
        self.code = code
        self.is_host = is_host
        self.confirm = confirm
        self.on_change = on_change
        self.placing = False
        self.annotations: List[Annotation] = []
        self.rejected: List[DocumentDecodeError] = []
        self._subscription: Optional[Subscription] = None

    def _require_host(self, action: str) -> None:
        if not self.is_host:
            raise PermissionDenied(f"Only the host can {action} annotations")

    def apply_snapshot(self, docs: Iterable[Dict[str, Any]]) -> List[Annotation]:
        decoded: List[Annotation] = []
        rejected: List[DocumentDecodeError] = []
        for doc in docs:
            try:
                decoded.append(decode_annotation(doc))
            except DocumentDecodeError as exc:
                logger.error("Dropping annotation: %s", exc)
                rejected.append(exc)
        decoded.sort(key=lambda a: (a.created_at, a.id))
        self.annotations = decoded
        self.rejected = rejected
        if self.on_change is not None:
            self.on_change(list(decoded))
        return decoded

    def get(self, annotation_id: str) -> Optional[Annotation]:
        for a in self.annotations:
            if a.id == annotation_id:
                return a
        return None

    async def subscribe(self) -> None:
        if self._subscription is None:
            self._subscription = await self.store.subscribe_annotations(self.code, self.apply_snapshot)

    async def unsubscribe(self) -> None:
        if self._subscription is not None:
            await self._subscription.cancel()
            self._subscription = None

    def begin_placing(self) -> None:
        self._require_host("place")
        self.placing = True

    def cancel_placing(self) -> None:
        self.placing = False

    async def create(self, lat: float, lng: float, text: str) -> Optional[str]:
        """
        Store an annotation at the coordinate picked while placing.

        Returns:
            New annotation id, or None if the write failed
        """
        self._require_host("create")
        if not self.placing:
            raise InvalidTransition("Pick a point on the map first")
        text = (text or "").strip()
        if not text:
            raise ValidationError("Annotation text is required")

        doc = {"lat": lat, "lng": lng, "text": text, "createdAt": SERVER_TIMESTAMP}
        try:
            annotation_id = await self.store.add_annotation(self.code, doc)
        except TransientWriteError as exc:
            logger.warning("Annotation not saved: %s", exc)
            return None
        self.placing = False
        return annotation_id

    async def update_text(self, annotation_id: str, text: str) -> bool:
        self._require_host("edit")
        text = (text or "").strip()
        if not text:
            raise ValidationError("Annotation text is required")
        try:
            await self.store.update_annotation(self.code, annotation_id, {"text": text})
        except TransientWriteError as exc:
            logger.warning("Annotation %s not updated: %s", annotation_id, exc)
            return False
        return True

    async def delete(self, annotation_id: str) -> bool:
        self._require_host("delete")
        if not self.confirm("Delete this annotation?"):
            return False
        try:
            await self.store.delete_annotation(self.code, annotation_id)
        except TransientWriteError as exc:
            logger.warning("Annotation %s not deleted: %s", annotation_id, exc)
            return False
        return True
