#!/usr/bin/env python3
"""
Read-only HTTP API over the shared session store.

Endpoints:
- GET /api/health
- GET /api/sessions/{code}/roster
- GET /api/sessions/{code}/trail?gap_km=1.0
- GET /api/sessions/{code}/annotations
- GET /api/sessions/{code}/distance?from_id=...&to_id=...

Backed by PostgreSQL when CONVOY_DB_URL is set, otherwise by an
in-memory store (useful only for demos and tests).
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from convoy.config import TRAIL_GAP_KM, get_log_level
from convoy.errors import TransientWriteError
from convoy.geo import haversine_km
from convoy.roster import RosterManager
from convoy.session import normalize_code
from convoy.store import DocumentStore, open_store
from convoy.trail import split_segments
from convoy.annotations import AnnotationStore

logging.basicConfig(level=get_log_level(), format="%(asctime)s [%(levelname)s] %(message)s")
logger = logging.getLogger("convoy_api")

_STORE: Optional[DocumentStore] = None


def get_store() -> DocumentStore:
    global _STORE
    if _STORE is None:
        _STORE = open_store()
    return _STORE


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Close the store connection on shutdown."""
    yield
    if _STORE is not None:
        await _STORE.close()
        logger.info("Store closed")


app = FastAPI(title="Convoy API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


class PointOut(BaseModel):
    lat: float
    lng: float


class RosterEntryOut(BaseModel):
    id: str
    name: str
    color: str
    is_leader: bool
    lat: float
    lng: float
    last_active: float
    is_ghost: bool
    distance_from_leader_km: Optional[float] = None


class RosterOut(BaseModel):
    code: str
    count: int
    leader_id: Optional[str] = None
    ghost_count: int
    rejected: int
    participants: List[RosterEntryOut]


class TrailOut(BaseModel):
    code: str
    leader_id: Optional[str] = None
    point_count: int
    segments: List[List[PointOut]]


class AnnotationOut(BaseModel):
    id: str
    lat: float
    lng: float
    text: str
    created_at: float


class DistanceOut(BaseModel):
    from_id: str
    to_id: str
    distance_km: float


async def load_roster(store: DocumentStore, code: str) -> RosterManager:
    try:
        docs = await store.list_participants(code)
    except TransientWriteError as exc:
        logger.error("Roster read failed for %s: %s", code, exc)
        raise HTTPException(status_code=503, detail="Store unavailable")
    roster = RosterManager()
    roster.apply_snapshot(docs)
    if not docs:
        raise HTTPException(status_code=404, detail="Session not found")
    return roster


@app.get("/api/health")
def health():
    return {"status": "ok", "time": datetime.now(timezone.utc).isoformat()}


@app.get("/api/sessions/{code}/roster", response_model=RosterOut)
async def roster(code: str, store: DocumentStore = Depends(get_store)) -> RosterOut:
    code = normalize_code(code)
    manager = await load_roster(store, code)
    entries = manager.entries(now=time.time())
    leader = manager.leader
    return RosterOut(
        code=code,
        count=len(entries),
        leader_id=leader.id if leader else None,
        ghost_count=sum(1 for e in entries if e.is_ghost),
        rejected=len(manager.rejected),
        participants=[RosterEntryOut(**e.as_dict()) for e in entries],
    )


@app.get("/api/sessions/{code}/trail", response_model=TrailOut)
async def trail(code: str, gap_km: float = TRAIL_GAP_KM, store: DocumentStore = Depends(get_store)) -> TrailOut:
    if gap_km <= 0:
        raise HTTPException(status_code=400, detail="gap_km must be > 0")
    code = normalize_code(code)
    manager = await load_roster(store, code)
    points = manager.leader_trail()
    leader = manager.leader
    return TrailOut(
        code=code,
        leader_id=leader.id if leader else None,
        point_count=len(points),
        segments=[[PointOut(lat=p.lat, lng=p.lng) for p in seg] for seg in split_segments(points, gap_km)],
    )


@app.get("/api/sessions/{code}/annotations", response_model=List[AnnotationOut])
async def annotations(code: str, store: DocumentStore = Depends(get_store)) -> List[AnnotationOut]:
    code = normalize_code(code)
    try:
        docs = await store.list_annotations(code)
        known = bool(docs) or await store.get_session(code) is not None or bool(await store.list_participants(code))
    except TransientWriteError as exc:
        logger.error("Annotation read failed for %s: %s", code, exc)
        raise HTTPException(status_code=503, detail="Store unavailable")
    if not known:
        raise HTTPException(status_code=404, detail="Session not found")
    view = AnnotationStore(store, code, is_host=False)
    return [
        AnnotationOut(id=a.id, lat=a.lat, lng=a.lng, text=a.text, created_at=a.created_at)
        for a in view.apply_snapshot(docs)
    ]


@app.get("/api/sessions/{code}/distance", response_model=DistanceOut)
async def distance(code: str, from_id: str, to_id: str, store: DocumentStore = Depends(get_store)) -> DistanceOut:
    code = normalize_code(code)
    manager = await load_roster(store, code)
    origin = manager.get(from_id)
    target = manager.get(to_id)
    if origin is None or target is None:
        raise HTTPException(status_code=404, detail="Participant not found in session")
    return DistanceOut(
        from_id=from_id,
        to_id=to_id,
        distance_km=round(haversine_km(origin.lat, origin.lng, target.lat, target.lng), 3),
    )
