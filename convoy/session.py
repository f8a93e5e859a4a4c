"""
Session lifecycle for one convoy client.

SessionLifecycle ties the pieces together for a single participation:

    loggedOut -> joining -> active -> leaving -> loggedOut

Joining validates the request against the current roster, writes the
participant record and subscribes to the session's live roster and
annotations. While active, samples from the position source go through
GeoFilter (and, for the leader, the trail recorder) and accepted ones are
written as a single update. Leaving removes the participant; when the
host leaves, or the last participant does, the whole session is deleted
in one atomic batch.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

from .annotations import AnnotationStore
from .camera import CameraCommand, CameraController
from .colors import DEFAULT_COLOR
from .config import DEFAULT_POSITION, SESSION_CODE_ALPHABET, SESSION_CODE_LENGTH, SIM_TICK_SECONDS
from .errors import (
    ConvoyError,
    InvalidTransition,
    MissingName,
    PermissionDenied,
    PositionSourceError,
    RoomNotFound,
    SessionCodeInUse,
    SimulationSetupError,
    TransientWriteError,
)
from .geofilter import GeoFilter
from .identity import Identity, remember_name
from .models import Participant, PositionSample, TrailPoint, build_position_update
from .roster import RosterEntry, RosterManager, admit
from .routing import RouteProvider
from .sources import PositionSource, SimulatedRouteSource
from .store import SERVER_TIMESTAMP, DocumentStore, Subscription
from .trail import TrailRecorder, split_segments

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    LOGGED_OUT = "loggedOut"
    JOINING = "joining"
    ACTIVE = "active"
    LEAVING = "leaving"


def generate_session_code(rng: Optional[random.Random] = None) -> str:
    rng = rng or random.SystemRandom()
    return "".join(rng.choice(SESSION_CODE_ALPHABET) for _ in range(SESSION_CODE_LENGTH))


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def _always(_message: str) -> bool:
    return True


class SessionLifecycle:
    """One client's participation in convoy sessions."""

    def __init__(
        self,
        store: DocumentStore,
        identity: Identity,
        route_provider: Optional[RouteProvider] = None,
        clock: Callable[[], float] = time.time,
        confirm: Callable[[str], bool] = _always,
        on_status: Optional[Callable[[str], None]] = None,
        on_roster: Optional[Callable[[List[RosterEntry]], None]] = None,
        on_camera: Optional[Callable[[CameraCommand], None]] = None,
        sim_tick_seconds: float = SIM_TICK_SECONDS,
    ) -> None:
        self.store = store
        self.identity = identity
        self.route_provider = route_provider
        self.clock = clock
        self.confirm = confirm
        self.on_status = on_status
        self.on_roster = on_roster
        self.sim_tick_seconds = sim_tick_seconds

        self.state = SessionState.LOGGED_OUT
        self.code: Optional[str] = None
        self.is_host = False
        self.name: Optional[str] = None
        self.color: Optional[str] = None
        self.position: Optional[TrailPoint] = None
        self.simulating = False
        self.status_message = ""

        self.geofilter = GeoFilter()
        self.trail = TrailRecorder()
        self.roster = RosterManager(self_id=identity.user_id, clock=clock)
        self.camera = CameraController(self_id=identity.user_id, on_command=on_camera)
        self.annotations: Optional[AnnotationStore] = None

        self.source: Optional[PositionSource] = None
        self._source_task: Optional[asyncio.Task] = None
        self._roster_sub: Optional[Subscription] = None

    @property
    def user_id(self) -> str:
        return self.identity.user_id

    @property
    def source_task(self) -> Optional[asyncio.Task]:
        return self._source_task

    def _status(self, message: str, level: int = logging.INFO) -> None:
        self.status_message = message
        logger.log(level, message)
        if self.on_status is not None:
            self.on_status(message)

    def _require_active(self) -> None:
        if self.state is not SessionState.ACTIVE:
            raise InvalidTransition(f"No active session (state={self.state.value})")

    # Joining

    async def host(
        self,
        name: str,
        color: str = DEFAULT_COLOR,
        position: Optional[TrailPoint] = None,
        source: Optional[PositionSource] = None,
        simulate: Optional[Tuple[str, str]] = None,
    ) -> str:
        """Create a new session with a fresh, unused code and join it as leader."""
        code = await self._unused_code()
        await self.join(code, name, color, host=True, position=position, source=source, simulate=simulate)
        return code

    async def _unused_code(self, attempts: int = 20) -> str:
        for _ in range(attempts):
            code = generate_session_code()
            if await self.store.get_session(code) is None and not await self.store.list_participants(code):
                return code
            logger.debug("Session code %s already in use", code)
        raise SessionCodeInUse("No free session code found, try again")

    async def join(
        self,
        code: str,
        name: str,
        color: str = DEFAULT_COLOR,
        host: bool = False,
        position: Optional[TrailPoint] = None,
        source: Optional[PositionSource] = None,
        simulate: Optional[Tuple[str, str]] = None,
    ) -> Participant:
        """
        Join (or, with host=True, create) a session.

        Args:
            code: Session code, case-insensitive
            name: Display name
            color: Requested hex color; replaced if someone already has it
            host: Join as the session's leader
            position: Starting position written with the record
            source: Position source to consume once active
            simulate: (start place, end place) to replay a fetched route
                instead of `source`; host only

        Raises:
            ValidationError: missing name, room not found, room full,
                code already led by someone else
            InvalidTransition: already in a session
            TransientWriteError: the store could not be written or watched
        """
        if self.state is not SessionState.LOGGED_OUT:
            raise InvalidTransition(f"Cannot join while {self.state.value}")
        name = (name or "").strip()
        if not name:
            raise MissingName("Name required!")
        code = normalize_code(code)
        if not code:
            raise RoomNotFound("Session code required")

        self.state = SessionState.JOINING
        written: List[str] = []
        try:
            participant, route = await self._enter(code, name, color, host, position, simulate, written)
            self.annotations = AnnotationStore(self.store, code, is_host=host, confirm=self.confirm)
            self._roster_sub = await self.store.subscribe_participants(code, self._on_roster_snapshot)
            await self.annotations.subscribe()
        except BaseException:
            await self._abandon_join(code, written)
            raise

        self.code = code
        self.is_host = host
        self.name = name
        self.color = participant.color
        self.position = participant.position()
        self.camera.reset()
        self.camera.own_position_changed(self.position)
        remember_name(self.identity, name)
        self.state = SessionState.ACTIVE
        logger.info("Joined session %s as %s (%s)", code, name, "host" if host else "member")

        if route:
            self.start_source(SimulatedRouteSource(route, tick_seconds=self.sim_tick_seconds, clock=self.clock))
        elif source is not None:
            self.start_source(source)
        return participant

    async def _enter(self, code, name, color, host, position, simulate, written: List[str]):
        self.geofilter.reset()
        if host:
            self.trail.reset()

        docs = await self.store.list_participants(code)
        # A stale record of our own (e.g. after a crash) neither fills a
        # seat nor holds a color.
        others = [d for d in docs if d.get("id") != self.user_id]
        if host:
            await self._check_unled(code, others)
        taken = [d.get("color") for d in others if isinstance(d.get("color"), str)]
        final_color = admit(len(others), taken, color, host)

        route: Optional[List[TrailPoint]] = None
        self.simulating = False
        if host and simulate:
            route = await self._setup_simulation(*simulate)

        if route:
            start = route[0]
        elif position is not None:
            start = position
        else:
            start = TrailPoint(lat=DEFAULT_POSITION[0], lng=DEFAULT_POSITION[1])

        participant = Participant(
            id=self.user_id,
            display_name=name,
            color=final_color,
            is_leader=host,
            lat=start.lat,
            lng=start.lng,
            last_active=self.clock(),
            trail=[] if host else None,
        )
        doc = participant.to_document()
        doc["lastActive"] = SERVER_TIMESTAMP

        if host:
            await self.store.create_session(code, self.user_id)
            written.append("session")
        await self.store.set_participant(code, self.user_id, doc)
        written.append("participant")
        return participant, route

    async def _check_unled(self, code: str, others: Sequence[dict]) -> None:
        """A session has at most one leader; only its own host may re-host a code."""
        session = await self.store.get_session(code)
        if session is not None and session.get("hostId") != self.user_id:
            raise SessionCodeInUse(f"Session {code} is already hosted")
        if any(d.get("isLeader") is True for d in others):
            raise SessionCodeInUse(f"Session {code} already has a leader")

    async def _abandon_join(self, code: str, written: List[str]) -> None:
        """Undo a join that failed part-way and return to loggedOut."""
        try:
            await self._unsubscribe()
        except ConvoyError as exc:
            logger.warning("Could not cancel subscriptions for %s: %s", code, exc)
        if written:
            batch = self.store.batch()
            if "participant" in written:
                batch.delete_participant(code, self.user_id)
            if "session" in written:
                batch.delete_session(code)
            try:
                await batch.commit()
            except ConvoyError as exc:
                logger.error("Cleanup error after failed join of %s: %s", code, exc)
        self.annotations = None
        self.roster.clear()
        self.simulating = False
        self.state = SessionState.LOGGED_OUT

    async def _setup_simulation(self, start_place: str, end_place: str) -> Optional[List[TrailPoint]]:
        if self.route_provider is None:
            self._status("Simulation unavailable: no route provider", logging.WARNING)
            return None
        self._status("Fetching route...")
        try:
            route = await asyncio.to_thread(self.route_provider.fetch_route, start_place, end_place)
        except SimulationSetupError as exc:
            self._status(f"Simulation Error: {exc}", logging.WARNING)
            return None
        self.simulating = True
        self._status(f"Simulating {start_place} -> {end_place} ({len(route)} points)")
        return route

    # Live roster

    def _on_roster_snapshot(self, docs) -> None:
        self.roster.apply_snapshot(docs)
        target = self.camera.state.focus_target
        if target is not None and self.roster.get(target) is None:
            self.camera.participant_left(target)
        if self.on_roster is not None:
            self.on_roster(self.roster.entries())

    def select_participant(self, participant_id: str) -> Optional[CameraCommand]:
        participant = self.roster.get(participant_id)
        if participant is None:
            return None
        return self.camera.select_participant(participant)

    def selected_distance_km(self) -> Optional[float]:
        """Distance from us to the focused participant, if any."""
        target = self.camera.state.focus_target
        if target is None or self.position is None:
            return None
        return self.roster.distance_to(target, self.position)

    def trail_segments(self) -> List[List[TrailPoint]]:
        return split_segments(self.roster.leader_trail())

    # Positions

    async def handle_sample(self, sample: PositionSample) -> bool:
        """
        Process one raw sample; returns True if it was written to the store.

        Write failures are dropped: the next accepted sample tries again.
        """
        if self.state is not SessionState.ACTIVE:
            return False

        self.position = sample.as_point()
        self.camera.own_position_changed(self.position)

        if not self.geofilter.should_publish(sample):
            return False

        fields = build_position_update(sample)
        fields["lastActive"] = SERVER_TIMESTAMP
        point = self.trail.offer(sample) if self.is_host else None

        try:
            await self.store.update_participant(
                self.code,
                self.user_id,
                fields,
                trail_append=point.model_dump() if point is not None else None,
            )
        except TransientWriteError as exc:
            logger.debug("Position update dropped: %s", exc)
            return False

        self.geofilter.record_upload(sample)
        if point is not None:
            self.trail.commit(point)
        return True

    async def run_source(self, source: PositionSource) -> None:
        """Consume samples until the source is exhausted or closed."""
        while True:
            try:
                sample = await source.next_sample()
            except PositionSourceError as exc:
                self._status(f"GPS Error: {exc}", logging.WARNING)
                continue
            if sample is None:
                break
            await self.handle_sample(sample)
        logger.debug("Position source finished")

    def start_source(self, source: PositionSource) -> asyncio.Task:
        """Attach the session's single position source and start consuming it."""
        if self._source_task is not None and not self._source_task.done():
            raise InvalidTransition("A position source is already running")
        self.source = source
        self._source_task = asyncio.get_running_loop().create_task(self.run_source(source))
        return self._source_task

    async def stop_source(self) -> None:
        source, task = self.source, self._source_task
        self.source = None
        self._source_task = None
        if source is not None:
            await source.close()
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    # Host actions

    async def clear_trail(self) -> bool:
        """Reset the leader's trail to empty (host only)."""
        self._require_active()
        if not self.is_host:
            raise PermissionDenied("Only the host can clear the trail")
        if not self.confirm("Clear the recorded path trail? This helps if you took a wrong turn."):
            return False
        try:
            await self.store.update_participant(self.code, self.user_id, {"path": []})
        except TransientWriteError as exc:
            logger.error("Error clearing trail: %s", exc)
            return False
        self.trail.reset()
        return True

    # Leaving

    async def leave(self) -> bool:
        """
        Leave the session, tearing it down if we were the host or the last one.

        Returns False if the host declined the confirmation.
        """
        self._require_active()
        if self.is_host and not self.confirm("Close Session? This will delete all trip data."):
            return False

        self.state = SessionState.LEAVING
        code = self.code
        await self.stop_source()
        await self._unsubscribe()

        try:
            if self.is_host:
                await self._delete_session(code, await self.store.list_participants(code))
            else:
                await self.store.delete_participant(code, self.user_id)
                remaining = await self.store.list_participants(code)
                if not remaining:
                    await self._delete_session(code, remaining)
        except ConvoyError as exc:
            logger.error("Cleanup error for session %s: %s", code, exc)

        self._reset()
        logger.info("Left session %s", code)
        return True

    async def _delete_session(self, code: str, participants: Sequence[dict]) -> None:
        annotations = await self.store.list_annotations(code)
        batch = self.store.batch()
        for doc in participants:
            if doc.get("id"):
                batch.delete_participant(code, doc["id"])
        for doc in annotations:
            if doc.get("id"):
                batch.delete_annotation(code, doc["id"])
        batch.delete_session(code)
        await batch.commit()
        logger.info(
            "Deleted session %s (%d participants, %d annotations)", code, len(participants), len(annotations)
        )

    async def _unsubscribe(self) -> None:
        if self._roster_sub is not None:
            await self._roster_sub.cancel()
            self._roster_sub = None
        if self.annotations is not None:
            await self.annotations.unsubscribe()

    def _reset(self) -> None:
        self.state = SessionState.LOGGED_OUT
        self.code = None
        self.is_host = False
        self.color = None
        self.simulating = False
        self.annotations = None
        self.roster.clear()
        self.camera.reset()
        self.geofilter.reset()
        self.trail.reset()

