"""
Camera / follow state machine.

Reconciles three ways the map view can be driven:

    AUTO_FOLLOW      recentre on every own-position update
    FOCUSED          frame own position together with a selected participant
    MANUAL_FREE      leave the camera where the user put it

Inputs are semantic events (participant selected, drag started, locate
requested, own position changed); outputs are CameraCommand values handed
to whatever renders the map. There is no terminal state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Tuple

from .config import LOCATE_ZOOM
from .geo import bounding_box
from .models import Participant, TrailPoint

logger = logging.getLogger(__name__)


class CameraMode(str, Enum):
    AUTO_FOLLOW = "auto_follow"
    FOCUSED = "focused"
    MANUAL_FREE = "manual_free"


@dataclass
class CameraState:
    follow_enabled: bool = True
    focus_target: Optional[str] = None  # participant id


@dataclass
class CameraCommand:
    kind: str  # "pan_to", "fit_bounds" or "fly_to"
    center: Optional[TrailPoint] = None
    bounds: Optional[Tuple[Tuple[float, float], Tuple[float, float]]] = None
    zoom: Optional[int] = None


class CameraController:
    """Camera state for the local client; one per active session."""

    def __init__(self, self_id: Optional[str] = None,
                 on_command: Optional[Callable[[CameraCommand], None]] = None) -> None:
        self.self_id = self_id
        self.on_command = on_command
        self.state = CameraState()
        self.position: Optional[TrailPoint] = None

    @property
    def mode(self) -> CameraMode:
        if self.state.focus_target is not None:
            return CameraMode.FOCUSED
        if self.state.follow_enabled:
            return CameraMode.AUTO_FOLLOW
        return CameraMode.MANUAL_FREE

    def _emit(self, command: CameraCommand) -> CameraCommand:
        if self.on_command is not None:
            self.on_command(command)
        return command

    def reset(self) -> None:
        self.state = CameraState()

    def select_participant(self, participant: Participant) -> Optional[CameraCommand]:
        """Roster entry or marker tapped: frame us and them, stop following."""
        if participant.id == self.self_id:
            return None
        self.state = CameraState(follow_enabled=False, focus_target=participant.id)
        logger.debug("Camera focused on %s", participant.id)
        if self.position is None:
            return None
        bounds = bounding_box(self.position.lat, self.position.lng, participant.lat, participant.lng)
        return self._emit(CameraCommand(kind="fit_bounds", bounds=bounds))

    def drag_started(self) -> None:
        """Any user pan of the map drops following and the focus target."""
        self.state = CameraState(follow_enabled=False, focus_target=None)

    def clear_focus(self) -> None:
        """Distance panel dismissed; following stays as it was (off)."""
        self.state.focus_target = None

    def toggle_follow(self) -> Optional[CameraCommand]:
        """Lock button: flip between following and free, dropping any focus."""
        follow = not self.state.follow_enabled
        self.state = CameraState(follow_enabled=follow, focus_target=None)
        if follow and self.position is not None:
            return self._emit(CameraCommand(kind="pan_to", center=self.position))
        return None

    def locate_me(self) -> Optional[CameraCommand]:
        """Force following and fly to the current position once."""
        self.state = CameraState(follow_enabled=True, focus_target=None)
        if self.position is None:
            return None
        return self._emit(CameraCommand(kind="fly_to", center=self.position, zoom=LOCATE_ZOOM))

    def own_position_changed(self, position: TrailPoint) -> Optional[CameraCommand]:
        self.position = position
        if self.mode is CameraMode.AUTO_FOLLOW:
            return self._emit(CameraCommand(kind="pan_to", center=position))
        return None

    def participant_left(self, participant_id: str) -> None:
        if self.state.focus_target == participant_id:
            self.state.focus_target = None
