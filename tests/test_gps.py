"""Tests for fix filtering, streams, recording and playback."""

import json

import pytest

from sitenav.geo import distance
from sitenav.gps import (EventStream, FixFailure, FixFilter, GPSPlayback, GPSRecorder,
                         simulate_track)
from sitenav.logger import Logger
from sitenav.models import Location


def fix(point, t, accuracy=5.0):
    return Location(point.lng, point.lat, accuracy, None, t)


class TestEventStream:
    def test_push_reaches_subscribers(self):
        stream = EventStream()
        seen = []
        stream.subscribe(seen.append)
        stream.push(1)
        stream.push(2)
        assert seen == [1, 2]

    def test_cancelled_subscription_stops_delivery(self):
        stream = EventStream()
        seen = []
        sub = stream.subscribe(seen.append)
        sub.cancel()
        sub.cancel()
        stream.push(1)
        assert seen == []
        assert stream.subscriber_count == 0


class TestFixFilter:
    def test_first_fix_is_accepted(self, at):
        check = FixFilter().check(fix(at(0, 0), 0.0))
        assert check.valid
        assert check.reason == "first_fix"

    def test_inaccurate_first_fix_does_not_become_the_anchor(self, at):
        fixes = FixFilter()
        assert not fixes.check(fix(at(500, 0), 0.0, accuracy=2000)).valid
        results = [fixes.check(fix(at(0, 1.5 * i), 1.0 + i)) for i in range(29)]
        assert all(r.valid for r in results)
        assert fixes.dropped == 1

    def test_bad_anchor_is_replaced_after_repeated_rejections(self, at):
        fixes = FixFilter()
        fixes.check(fix(at(500, 0), 0.0))
        results = [fixes.check(fix(at(0, 1.5 * i), 0.5 * (i + 1))) for i in range(10)]
        assert [r.valid for r in results[:4]] == [False] * 4
        assert results[4].reason == "reanchored"
        assert all(r.valid for r in results[4:])
        assert fixes.history[0].point == at(0, 6.0)

    def test_long_gap_is_accepted_when_the_speed_fits(self, at):
        fixes = FixFilter()
        fixes.check(fix(at(0, 0), 0.0))
        fixes.check(fix(at(0, 1.5), 1.0))
        check = fixes.check(fix(at(0, 301.5), 101.0))
        assert check.valid
        assert check.reason == "gap"
        assert len(fixes.history) == 1
        assert fixes.check(fix(at(0, 303.0), 102.0)).valid

    def test_poor_accuracy(self, at):
        fixes = FixFilter()
        fixes.check(fix(at(0, 0), 0.0))
        check = fixes.check(fix(at(0, 5), 1.0, accuracy=600))
        assert not check.valid
        assert check.reason == "poor_accuracy"

    def test_jump_too_large(self, at):
        fixes = FixFilter()
        fixes.check(fix(at(0, 0), 0.0))
        check = fixes.check(fix(at(0, 150), 2.0))
        assert not check.valid
        assert check.reason == "jump_too_large"

    def test_speed_too_high(self, at):
        fixes = FixFilter()
        fixes.check(fix(at(0, 0), 0.0))
        check = fixes.check(fix(at(0, 40), 1.0))
        assert not check.valid
        assert check.reason == "speed_too_high"

    def test_stationary_fix_is_valid_but_not_kept(self, at):
        fixes = FixFilter()
        fixes.check(fix(at(0, 0), 0.0))
        check = fixes.check(fix(at(0, 0.1), 1.0))
        assert check.valid
        assert check.stationary
        assert len(fixes.history) == 1

    def test_walking_fixes_are_accepted(self, at):
        fixes = FixFilter()
        results = [fixes.check(fix(at(0, 1.5 * i), float(i))) for i in range(20)]
        assert all(r.valid for r in results)
        assert fixes.dropped == 0

    def test_rejections_are_logged(self, at):
        messages = []
        logger = Logger(callback=lambda message, data: messages.append((message, data)), echo=False)
        fixes = FixFilter(logger=logger)
        fixes.check(fix(at(0, 0), 0.0))
        fixes.check(fix(at(0, 150), 2.0))
        assert messages[0][0] == "Dropped fix"
        assert messages[0][1]["reason"] == "jump_too_large"


class TestSimulateTrack:
    def test_even_spacing_along_the_path(self, l_path):
        fixes = list(simulate_track(l_path.points, speed=1.5, interval=1.0))
        steps = [distance(a.point, b.point) for a, b in zip(fixes, fixes[1:-1])]
        # Steps cutting the corner are shorter than the distance walked
        assert max(steps) == pytest.approx(1.5, abs=0.01)
        assert sum(1 for s in steps if abs(s - 1.5) < 0.01) >= len(steps) - 1
        assert fixes[0].point == l_path.points[0]
        assert fixes[-1].point == l_path.points[-1]
        assert [f.timestamp for f in fixes] == [float(i) for i in range(len(fixes))]

    def test_empty_path(self):
        assert list(simulate_track([])) == []


class TestRecordAndPlayback:
    def test_round_trip(self, tmp_path, at):
        trace_path = tmp_path / "trace.json"
        stream = EventStream()
        recorder = GPSRecorder(stream, str(trace_path))
        stream.push(fix(at(0, 0), 0.0))
        stream.push(fix(at(0, 1.5), 1.0))
        recorder.save()
        assert stream.subscriber_count == 0

        playback = GPSPlayback(str(trace_path))
        first = playback.next_fix()
        assert first.ok
        assert first.location.point == at(0, 0)
        assert playback.next_fix().ok
        assert playback.next_fix() is None
        assert playback.is_finished()

    def test_failed_entries_become_failures(self, tmp_path, at):
        trace_path = tmp_path / "trace.json"
        trace_path.write_text(json.dumps({
            "recorded_at": "2024-01-01T00:00:00",
            "trace": [
                {"elapsed": 0.0, "timestamp": 0.0, "location": None, "status": "timeout"},
                {"elapsed": 1.0, "timestamp": 1.0, "location": None, "status": "permission denied"},
                {"elapsed": 2.0, "timestamp": 2.0, "location": None, "status": "no signal"},
                {"elapsed": 3.0, "timestamp": 3.0,
                 "location": {"lon": at(0, 0).lng, "lat": at(0, 0).lat, "accuracy": 4.0},
                 "status": "ok"},
            ],
        }))

        playback = GPSPlayback(str(trace_path))
        failures = [playback.next_fix().failure for _ in range(3)]
        assert failures == [FixFailure.TIMEOUT, FixFailure.PERMISSION_DENIED, FixFailure.UNAVAILABLE]
        assert "3 failures" in playback.get_status()

        located = playback.next_fix()
        assert located.ok
        assert located.location.timestamp == 3.0
        assert located.location.lng == at(0, 0).lng

    def test_play_pushes_only_fixes(self, tmp_path, at):
        trace_path = tmp_path / "trace.json"
        trace_path.write_text(json.dumps({
            "recorded_at": "2024-01-01T00:00:00",
            "trace": [
                {"elapsed": 0.0, "location": fix(at(0, 0), 0.0).to_dict(), "status": "ok"},
                {"elapsed": 1.0, "location": None, "status": "timeout"},
                {"elapsed": 2.0, "location": fix(at(0, 3), 2.0).to_dict(), "status": "ok"},
            ],
        }))
        stream = EventStream()
        seen = []
        stream.subscribe(seen.append)
        times = []
        delivered = GPSPlayback(str(trace_path)).play(stream, on_time=times.append)
        assert delivered == 2
        assert [f.timestamp for f in seen] == [0.0, 2.0]
        assert times == [0.0, 2.0]
