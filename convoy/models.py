"""
Records exchanged with the shared document store.

Documents arriving from the store are dynamically shaped dicts. They are
validated into strict records on read; a document with missing or
malformed fields raises DocumentDecodeError instead of being patched up
with defaults. Field names on the wire follow the store layout
(``name``, ``isLeader``, ``lastActive``, ``path``); Python code uses the
attribute names.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import pydantic
from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_validator, model_validator

from .errors import DocumentDecodeError


class TrailPoint(BaseModel):
    """A single point of the leader's trail."""

    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class Participant(BaseModel):
    """One member of a convoy session, as stored in the session's users collection."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1)
    display_name: str = Field(..., alias="name", min_length=1)
    color: str = Field(..., min_length=1)
    is_leader: StrictBool = Field(..., alias="isLeader")
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    last_active: float = Field(..., alias="lastActive")
    trail: Optional[List[TrailPoint]] = Field(None, alias="path")

    @field_validator("color")
    def normalize_color(cls, v: str) -> str:
        return v.strip().lower()

    @model_validator(mode="after")
    def only_leader_has_trail(self) -> "Participant":
        if not self.is_leader and self.trail:
            raise ValueError("only the leader carries a trail")
        return self

    def position(self) -> TrailPoint:
        return TrailPoint(lat=self.lat, lng=self.lng)

    def to_document(self) -> Dict[str, Any]:
        doc = self.model_dump(by_alias=True)
        if not self.is_leader:
            doc.pop("path", None)
        return doc


class Annotation(BaseModel):
    """A host-placed point note."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1)
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    text: str = Field(..., min_length=1)
    created_at: float = Field(..., alias="createdAt")

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class SessionRecord(BaseModel):
    """Top-level session document, written by the host on join."""

    model_config = ConfigDict(populate_by_name=True)

    code: str = Field(..., min_length=1)
    host_id: str = Field(..., alias="hostId", min_length=1)
    created_at: float = Field(..., alias="createdAt")


@dataclass
class PositionSample:
    """Raw position reading from a position source."""

    lat: float
    lng: float
    timestamp: float  # seconds since epoch
    speed: Optional[float] = None  # m/s, None when not reported
    accuracy_m: Optional[float] = None  # None when not reported (simulation)
    simulated: bool = False

    def as_point(self) -> TrailPoint:
        return TrailPoint(lat=self.lat, lng=self.lng)


def _describe(exc: pydantic.ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "document"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


def decode_participant(doc: Any) -> Participant:
    """Validate a raw participant document, raising DocumentDecodeError on failure."""
    doc_id = doc.get("id") if isinstance(doc, dict) else None
    try:
        return Participant.model_validate(doc)
    except pydantic.ValidationError as exc:
        raise DocumentDecodeError("participant", doc_id, _describe(exc)) from exc


def decode_annotation(doc: Any) -> Annotation:
    """Validate a raw annotation document, raising DocumentDecodeError on failure."""
    doc_id = doc.get("id") if isinstance(doc, dict) else None
    try:
        return Annotation.model_validate(doc)
    except pydantic.ValidationError as exc:
        raise DocumentDecodeError("annotation", doc_id, _describe(exc)) from exc


def build_position_update(sample: PositionSample) -> Dict[str, Any]:
    """Fields written to the participant document for an accepted sample."""
    return {"lat": sample.lat, "lng": sample.lng}
