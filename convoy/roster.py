"""
Participant roster for a convoy session.

RosterManager keeps the latest decoded snapshot of the session's users
collection and derives what the UI shows from it: the leader, the
distance-sorted list, ghost flags and the distance to a selected
participant. It also holds the join-time admission checks (capacity,
room existence, color assignment).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from .colors import assign_color
from .config import GHOST_AFTER_SECONDS, MAX_PARTICIPANTS
from .errors import DocumentDecodeError, RoomFull, RoomNotFound
from .geo import haversine_km
from .models import Participant, TrailPoint, decode_participant

logger = logging.getLogger(__name__)


def is_ghost(participant: Participant, now: float, threshold_s: float = GHOST_AFTER_SECONDS) -> bool:
    """A participant silent for longer than the threshold is a ghost."""
    return now - participant.last_active > threshold_s


def find_leader(participants: Iterable[Participant]) -> Optional[Participant]:
    for p in participants:
        if p.is_leader:
            return p
    return None


def sort_by_leader_distance(participants: Sequence[Participant]) -> List[Participant]:
    """
    Leader first, everyone else ascending by distance from the leader.

    Without a leader the snapshot order is returned unchanged.
    """
    leader = find_leader(participants)
    if leader is None:
        return list(participants)

    others = [p for p in participants if p is not leader]
    others.sort(key=lambda p: haversine_km(leader.lat, leader.lng, p.lat, p.lng))
    return [leader, *others]


def admit(existing_count: int, taken_colors: Iterable[str], requested_color: str, is_host: bool,
          capacity: int = MAX_PARTICIPANTS) -> str:
    """
    Check that a participant may join and resolve their color.

    Raises:
        RoomNotFound: non-host joining a session nobody has created
        RoomFull: session already holds `capacity` participants

    Returns:
        Color the participant will use
    """
    if not is_host and existing_count == 0:
        raise RoomNotFound("Room not found! Please check the code or host a new one.")
    if existing_count >= capacity:
        raise RoomFull(f"Room is full! (Max {capacity} users)")
    return assign_color(requested_color, taken_colors)


@dataclass
class RosterEntry:
    """A participant plus the values derived for display."""

    participant: Participant
    is_ghost: bool
    is_self: bool
    distance_from_leader_km: Optional[float]

    def as_dict(self) -> Dict[str, Any]:
        p = self.participant
        return {
            "id": p.id,
            "name": p.display_name,
            "color": p.color,
            "is_leader": p.is_leader,
            "lat": p.lat,
            "lng": p.lng,
            "last_active": p.last_active,
            "is_ghost": self.is_ghost,
            "is_self": self.is_self,
            "distance_from_leader_km": self.distance_from_leader_km,
        }


@dataclass
class RosterManager:
    """Latest roster snapshot for one session, as seen by one client."""

    self_id: Optional[str] = None
    clock: Callable[[], float] = time.time
    ghost_after_s: float = GHOST_AFTER_SECONDS
    participants: List[Participant] = field(default_factory=list)
    rejected: List[DocumentDecodeError] = field(default_factory=list)

    def apply_snapshot(self, docs: Iterable[Dict[str, Any]]) -> List[Participant]:
        """Replace the roster with a decoded store snapshot."""
        decoded: List[Participant] = []
        rejected: List[DocumentDecodeError] = []
        for doc in docs:
            try:
                decoded.append(decode_participant(doc))
            except DocumentDecodeError as exc:
                logger.error("Dropping participant from roster: %s", exc)
                rejected.append(exc)
        self.participants = decoded
        self.rejected = rejected
        return decoded

    def clear(self) -> None:
        self.participants = []
        self.rejected = []

    def get(self, participant_id: str) -> Optional[Participant]:
        for p in self.participants:
            if p.id == participant_id:
                return p
        return None

    @property
    def leader(self) -> Optional[Participant]:
        return find_leader(self.participants)

    def leader_trail(self) -> List[TrailPoint]:
        leader = self.leader
        if leader is None or not leader.trail:
            return []
        return list(leader.trail)

    def sorted(self) -> List[Participant]:
        return sort_by_leader_distance(self.participants)

    def ghosts(self, now: Optional[float] = None) -> List[Participant]:
        now = self.clock() if now is None else now
        return [p for p in self.participants if is_ghost(p, now, self.ghost_after_s)]

    def entries(self, now: Optional[float] = None) -> List[RosterEntry]:
        """Sorted roster with ghost flags and leader distances."""
        now = self.clock() if now is None else now
        leader = self.leader
        result = []
        for p in self.sorted():
            distance = None
            if leader is not None:
                distance = haversine_km(leader.lat, leader.lng, p.lat, p.lng)
            result.append(
                RosterEntry(
                    participant=p,
                    is_ghost=is_ghost(p, now, self.ghost_after_s),
                    is_self=p.id == self.self_id,
                    distance_from_leader_km=distance,
                )
            )
        return result

    def distance_to(self, participant_id: str, origin: TrailPoint) -> Optional[float]:
        """Distance in km from `origin` to a participant, or None if they left."""
        target = self.get(participant_id)
        if target is None:
            return None
        return haversine_km(origin.lat, origin.lng, target.lat, target.lng)
