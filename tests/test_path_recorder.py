"""Tests for the claim path state machine."""

from datetime import timedelta

import pytest

from landclaim.core.errors import (
    AreaOutOfBounds,
    ClosureTooFar,
    IncompletePath,
    InvalidGeometry,
    InvalidPathState,
)
from landclaim.core.path_recorder import AppendAction, PathRecorder, PathState
from landclaim.core.rules import ClaimRules, ContinuityPolicy
from landclaim.core.validator import LocationSample, RejectionReason
from landclaim.utils.geodesy import offset

from support import ORIGIN, T0, loop_samples, samples, straight_samples


def at(north_m, east_m, seconds):
    return LocationSample(offset(ORIGIN, north_m, east_m), T0 + timedelta(seconds=seconds))


def feed(recorder, fixes):
    return [recorder.append(f) for f in fixes]


class TestRecording:
    """Test how fixes build up the path."""

    @pytest.fixture
    def recorder(self):
        return PathRecorder("alice", ClaimRules())

    def test_starts_empty(self, recorder):
        assert recorder.state == PathState.EMPTY
        assert recorder.path.points == []

    def test_first_fix_starts_recording(self, recorder):
        outcome = recorder.append(at(0, 0, 0))

        assert outcome.action == AppendAction.RECORDED
        assert outcome.accepted
        assert recorder.state == PathState.RECORDING
        assert recorder.path.started_at == T0

    def test_walk_records_every_fix(self, recorder):
        fixes = loop_samples(ORIGIN, 100, 80)
        outcomes = feed(recorder, fixes)

        assert all(o.action == AppendAction.RECORDED for o in outcomes)
        assert len(recorder.path.points) == len(fixes)

    def test_jitter_is_skipped_but_keeps_continuity(self, recorder):
        recorder.append(at(0, 0, 0))
        jitter = recorder.append(at(2, 0, 40))

        assert jitter.action == AppendAction.SKIPPED
        assert jitter.point_count == 1
        assert recorder.path.points[0] == at(0, 0, 0)
        assert recorder.path.last_fix_at == T0 + timedelta(seconds=40)

        # 90 s after the first fix, but only 50 s after the jitter
        outcome = recorder.append(at(10, 0, 90))
        assert outcome.action == AppendAction.RECORDED
        assert outcome.point_count == 2
        assert outcome.validation.elapsed_s == 90

    def test_one_hz_walk_drops_nothing(self, recorder):
        fixes = straight_samples(ORIGIN, 5.0, 30)
        outcomes = feed(recorder, fixes)

        assert [o.action for o in outcomes if o.action == AppendAction.DROPPED] == []
        points = recorder.path.coordinates
        assert len(points) == 8
        assert points[-1] == fixes[28].coordinate

    @pytest.mark.parametrize("speed_kmh", [3.0, 5.0, 9.0, 14.0])
    def test_one_hz_loop_is_kept_or_skipped(self, recorder, speed_kmh):
        fixes = loop_samples(ORIGIN, 100, 80, step_m=speed_kmh / 3.6, step_s=1)
        outcomes = feed(recorder, fixes)

        actions = {o.action for o in outcomes}
        assert actions <= {AppendAction.RECORDED, AppendAction.SKIPPED}
        assert recorder.path.restarts == 0

        result = recorder.request_close()
        assert result.area_m2 == pytest.approx(8000, rel=0.02)

    def test_standing_still_keeps_path_alive(self, recorder):
        feed(recorder, [at(0, 0, t) for t in range(0, 91)])
        outcome = recorder.append(at(10, 0, 95))

        assert outcome.action == AppendAction.RECORDED
        assert recorder.path.restarts == 0
        assert recorder.path.started_at == T0

    def test_speeding_fix_is_dropped(self, recorder):
        recorder.append(at(0, 0, 0))
        outcome = recorder.append(at(0, 200, 10))

        assert outcome.action == AppendAction.DROPPED
        assert not outcome.accepted
        assert outcome.validation.reason == RejectionReason.EXCESSIVE_SPEED
        assert recorder.state == PathState.RECORDING
        assert len(recorder.path.points) == 1

    def test_stale_gap_restarts_by_default(self, recorder):
        feed(recorder, [at(0, 0, 0), at(10, 0, 10), at(20, 0, 20)])
        outcome = recorder.append(at(30, 0, 100))

        assert outcome.action == AppendAction.RESTARTED
        assert outcome.point_count == 1
        assert recorder.state == PathState.RECORDING
        assert recorder.path.restarts == 1
        assert recorder.path.started_at == T0 + timedelta(seconds=100)
        assert recorder.path.points[0].coordinate == offset(ORIGIN, 30, 0)

    def test_stale_gap_abandons_under_abandon_policy(self):
        recorder = PathRecorder("alice", ClaimRules(continuity_policy=ContinuityPolicy.ABANDON))
        feed(recorder, [at(0, 0, 0), at(10, 0, 10)])
        outcome = recorder.append(at(20, 0, 200))

        assert outcome.action == AppendAction.ABANDONED
        assert recorder.state == PathState.ABANDONED
        with pytest.raises(InvalidPathState):
            recorder.append(at(30, 0, 210))


class TestClosing:
    """Test close, resume and terminal transitions."""

    @pytest.fixture
    def recorder(self):
        return PathRecorder("alice", ClaimRules())

    @pytest.fixture
    def closed(self, recorder):
        feed(recorder, loop_samples(ORIGIN, 100, 80))
        recorder.request_close()
        return recorder

    def test_close_loop(self, recorder):
        fixes = loop_samples(ORIGIN, 100, 80)
        feed(recorder, fixes)
        result = recorder.request_close()

        assert recorder.state == PathState.CLOSED
        assert result.area_m2 == pytest.approx(8000, rel=0.01)
        assert result.point_count == len(fixes)
        assert result.ring[0] == result.ring[-1]
        assert recorder.path.area_m2 == result.area_m2

    def test_close_before_any_fix(self, recorder):
        with pytest.raises(InvalidPathState):
            recorder.request_close()

    def test_close_with_too_few_points(self, recorder):
        feed(recorder, [at(0, 0, 0), at(10, 0, 10)])
        with pytest.raises(IncompletePath):
            recorder.request_close()
        assert recorder.state == PathState.RECORDING

    def test_close_too_far_from_start(self, recorder):
        feed(recorder, samples([ORIGIN, offset(ORIGIN, 0, 40), offset(ORIGIN, 40, 40)], step_s=20))
        with pytest.raises(ClosureTooFar):
            recorder.request_close()
        assert recorder.state == PathState.RECORDING

    def test_small_loop_keeps_recording(self, recorder):
        feed(recorder, samples([
            ORIGIN, offset(ORIGIN, 0, 10), offset(ORIGIN, 10, 10), offset(ORIGIN, 10, 0)
        ]))
        with pytest.raises(AreaOutOfBounds):
            recorder.request_close()
        assert recorder.state == PathState.RECORDING

        # walking on is still possible
        assert recorder.append(at(20, 0, 60)).accepted

    def test_self_crossing_loop_is_rejected(self, recorder):
        bowtie = [
            ORIGIN,
            offset(ORIGIN, 100, 100),
            offset(ORIGIN, 0, 100),
            offset(ORIGIN, 25, 0),
        ]
        feed(recorder, samples(bowtie, step_s=50))
        assert len(recorder.path.points) == 4

        with pytest.raises(InvalidGeometry):
            recorder.request_close()
        assert recorder.state == PathState.REJECTED

    def test_closed_path_refuses_fixes(self, closed):
        with pytest.raises(InvalidPathState):
            closed.append(at(0, 0, 1000))

    def test_resume_reopens(self, closed):
        closed.resume()

        assert closed.state == PathState.RECORDING
        assert closed.path.ring is None
        assert closed.path.area_m2 is None

    def test_resume_requires_closed(self, recorder):
        recorder.append(at(0, 0, 0))
        with pytest.raises(InvalidPathState):
            recorder.resume()

    def test_closed_path_requires_closed(self, recorder):
        recorder.append(at(0, 0, 0))
        with pytest.raises(InvalidPathState):
            recorder.closed_path()

    def test_mark_committed(self, closed):
        closed.mark_committed("t-1")

        assert closed.state == PathState.COMMITTED
        assert closed.path.territory_id == "t-1"
        with pytest.raises(InvalidPathState):
            closed.resume()

    def test_mark_rejected(self, closed):
        closed.mark_rejected()
        assert closed.state == PathState.REJECTED

    def test_cancel(self, closed):
        closed.cancel()
        assert closed.state == PathState.ABANDONED

        with pytest.raises(InvalidPathState):
            closed.cancel()


class TestExpiry:
    def test_idle_path_expires(self):
        recorder = PathRecorder("alice", ClaimRules())
        recorder.append(at(0, 0, 0))

        assert not recorder.is_expired(T0 + timedelta(seconds=599))
        assert recorder.is_expired(T0 + timedelta(seconds=601))

        recorder.expire()
        assert recorder.state == PathState.ABANDONED

    def test_touch_extends_life(self):
        recorder = PathRecorder("alice", ClaimRules())
        recorder.append(at(0, 0, 0))
        recorder.touch(T0 + timedelta(seconds=500))

        assert not recorder.is_expired(T0 + timedelta(seconds=900))

    def test_terminal_paths_never_expire(self):
        recorder = PathRecorder("alice", ClaimRules())
        recorder.append(at(0, 0, 0))
        recorder.cancel()

        assert not recorder.is_expired(T0 + timedelta(days=1))
