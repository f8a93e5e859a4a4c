from conftest import north_of
from convoy.models import PositionSample, TrailPoint
from convoy.trail import TrailRecorder, split_segments


def _p(lat, lng):
    return TrailPoint(lat=lat, lng=lng)


def test_split_segments_drops_lone_point_after_gap():
    points = [_p(0.0, 0.0), _p(0.0, 0.001), _p(0.0, 5.0)]
    segments = split_segments(points)
    assert segments == [[_p(0.0, 0.0), _p(0.0, 0.001)]]


def test_split_segments_multiple_gaps():
    points = [_p(0.0, 0.0), _p(0.0, 0.001), _p(0.0, 5.0), _p(0.0, 5.001), _p(0.0, 5.002)]
    segments = split_segments(points)
    assert len(segments) == 2
    assert [len(s) for s in segments] == [2, 3]


def test_split_segments_short_trails():
    assert split_segments([]) == []
    assert split_segments([_p(1.0, 1.0)]) == []


def test_split_segments_custom_gap():
    points = [_p(0.0, 0.0), _p(north_of(0.0, 0.4), 0.0), _p(north_of(0.0, 0.8), 0.0)]
    assert len(split_segments(points, gap_km=0.5)) == 1
    assert split_segments(points, gap_km=0.3) == []


def test_recorder_accepts_accurate_first_fix():
    rec = TrailRecorder()
    point = rec.offer(PositionSample(lat=1.0, lng=1.0, timestamp=0.0, accuracy_m=10))
    assert point == _p(1.0, 1.0)


def test_recorder_rejects_poor_or_missing_accuracy():
    rec = TrailRecorder()
    assert rec.offer(PositionSample(lat=1.0, lng=1.0, timestamp=0.0, accuracy_m=25)) is None
    assert rec.offer(PositionSample(lat=1.0, lng=1.0, timestamp=0.0, accuracy_m=20)) is None
    assert rec.offer(PositionSample(lat=1.0, lng=1.0, timestamp=0.0)) is None


def test_recorder_accepts_simulated_without_accuracy():
    rec = TrailRecorder()
    assert rec.offer(PositionSample(lat=1.0, lng=1.0, timestamp=0.0, simulated=True)) == _p(1.0, 1.0)


def test_recorder_skips_small_steps_from_committed_point():
    rec = TrailRecorder()
    first = rec.offer(PositionSample(lat=0.0, lng=0.0, timestamp=0.0, accuracy_m=5))
    rec.commit(first)

    near = PositionSample(lat=north_of(0.0, 0.02), lng=0.0, timestamp=1.0, accuracy_m=5)
    assert rec.offer(near) is None

    far = PositionSample(lat=north_of(0.0, 0.05), lng=0.0, timestamp=2.0, accuracy_m=5)
    assert rec.offer(far) is not None


def test_recorder_does_not_advance_until_commit():
    rec = TrailRecorder()
    rec.offer(PositionSample(lat=0.0, lng=0.0, timestamp=0.0, accuracy_m=5))
    assert rec.last_point is None
    # Same point offered again is still accepted because nothing was committed
    assert rec.offer(PositionSample(lat=0.0, lng=0.0, timestamp=1.0, accuracy_m=5)) is not None

    rec.commit(_p(0.0, 0.0))
    rec.reset()
    assert rec.last_point is None
