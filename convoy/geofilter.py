"""
Upload throttling for position samples.

A client does not write every GPS fix to the shared store. GeoFilter
decides, per raw sample, whether the sample is worth publishing: fast
movers publish more often than slow ones, small jitters are ignored, and
a heartbeat fires after a minute of silence so the participant is not
taken for a ghost by everybody else.

The filter only remembers what was last *acknowledged* by the store:
call should_publish() to decide, write, then record_upload() once the
write succeeded.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .config import (
    FAST_MIN_DISTANCE_KM,
    FAST_MIN_INTERVAL_S,
    FAST_SPEED_MPS,
    HEARTBEAT_INTERVAL_S,
    NO_PREVIOUS_DISTANCE_KM,
    NORMAL_MIN_DISTANCE_KM,
    NORMAL_MIN_INTERVAL_S,
)
from .geo import haversine_km
from .models import PositionSample, TrailPoint


@dataclass
class Thresholds:
    """Tunable limits for GeoFilter."""

    fast_speed_mps: float = FAST_SPEED_MPS
    fast_interval_s: float = FAST_MIN_INTERVAL_S
    fast_distance_km: float = FAST_MIN_DISTANCE_KM
    normal_interval_s: float = NORMAL_MIN_INTERVAL_S
    normal_distance_km: float = NORMAL_MIN_DISTANCE_KM
    heartbeat_s: float = HEARTBEAT_INTERVAL_S


@dataclass
class UploadDecision:
    publish: bool
    is_fast: bool
    reason: str  # "interval", "distance", "heartbeat" or "throttled"
    seconds_since_upload: float
    km_moved: float


@dataclass
class GeoFilter:
    """Per-participation upload throttle (one instance per joined session)."""

    thresholds: Thresholds = field(default_factory=Thresholds)
    last_upload_time: Optional[float] = None
    last_uploaded_position: Optional[TrailPoint] = None

    def reset(self) -> None:
        self.last_upload_time = None
        self.last_uploaded_position = None

    def decide(self, sample: PositionSample) -> UploadDecision:
        t = self.thresholds
        if self.last_upload_time is None:
            elapsed = float("inf")
        else:
            elapsed = sample.timestamp - self.last_upload_time

        if self.last_uploaded_position is None:
            moved = NO_PREVIOUS_DISTANCE_KM
        else:
            last = self.last_uploaded_position
            moved = haversine_km(last.lat, last.lng, sample.lat, sample.lng)

        is_fast = sample.speed is not None and sample.speed > t.fast_speed_mps
        if is_fast:
            interval_limit, distance_limit = t.fast_interval_s, t.fast_distance_km
        else:
            interval_limit, distance_limit = t.normal_interval_s, t.normal_distance_km

        if elapsed > t.heartbeat_s:
            reason = "heartbeat"
        elif elapsed > interval_limit:
            reason = "interval"
        elif moved > distance_limit:
            reason = "distance"
        else:
            reason = "throttled"

        return UploadDecision(
            publish=reason != "throttled",
            is_fast=is_fast,
            reason=reason,
            seconds_since_upload=elapsed,
            km_moved=moved,
        )

    def should_publish(self, sample: PositionSample) -> bool:
        return self.decide(sample).publish

    def record_upload(self, sample: PositionSample) -> None:
        """Remember an acknowledged upload."""
        self.last_upload_time = sample.timestamp
        self.last_uploaded_position = sample.as_point()
