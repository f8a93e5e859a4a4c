"""
Leader trail handling.

The leader's trail is an append-only list of points stored on the
leader's participant document. Two concerns live here:

- split_segments() turns the full trail into drawable polylines, cutting
  wherever two consecutive points are more than TRAIL_GAP_KM apart (a
  GPS dropout or a jump, not continuous travel). It is always computed
  from the whole trail so a cleared trail renders correctly.
- TrailRecorder decides which accepted samples get appended. Points too
  close to the previous one are skipped, and live fixes with poor
  accuracy are dropped to keep the drawn trail from zig-zagging.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional

from .config import TRAIL_GAP_KM, TRAIL_MAX_ACCURACY_M, TRAIL_MIN_STEP_KM
from .geo import haversine_km
from .models import PositionSample, TrailPoint


def split_segments(points: Iterable[TrailPoint], gap_km: float = TRAIL_GAP_KM) -> List[List[TrailPoint]]:
    """
    Split an ordered trail into polylines at large gaps.

    Segments with fewer than two points are dropped, so a lone point on
    either side of a gap produces nothing.
    """
    segments: List[List[TrailPoint]] = []
    current: List[TrailPoint] = []
    prev: Optional[TrailPoint] = None

    for point in points:
        if prev is not None and haversine_km(prev.lat, prev.lng, point.lat, point.lng) > gap_km:
            if len(current) > 1:
                segments.append(current)
            current = []
        current.append(point)
        prev = point

    if len(current) > 1:
        segments.append(current)
    return segments


@dataclass
class TrailRecorder:
    """Decides which of the leader's samples extend the trail."""

    min_step_km: float = TRAIL_MIN_STEP_KM
    max_accuracy_m: float = TRAIL_MAX_ACCURACY_M
    last_point: Optional[TrailPoint] = None

    def reset(self) -> None:
        self.last_point = None

    def offer(self, sample: PositionSample) -> Optional[TrailPoint]:
        """Return the point to append for this sample, or None to skip it."""
        if self.last_point is not None:
            step = haversine_km(self.last_point.lat, self.last_point.lng, sample.lat, sample.lng)
            if step <= self.min_step_km:
                return None

        if not sample.simulated:
            if sample.accuracy_m is None or sample.accuracy_m >= self.max_accuracy_m:
                return None

        return sample.as_point()

    def commit(self, point: TrailPoint) -> None:
        """Remember a point once the write that appended it succeeded."""
        self.last_point = point
