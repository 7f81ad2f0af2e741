"""Tests for resampling, turn detection and leg ranges."""

import pytest

from sitenav.models import TurnType
from sitenav.turns import (compute_segment_ranges, detect_turning_points, leg_label,
                           resample_path, slice_point_set, straight_profile)


class TestResample:
    def test_spacing_and_originals(self, at):
        entries = resample_path([at(0, 0), at(0, 10)], spacing=3.0)
        assert len(entries) == 5
        assert entries[0].is_original and entries[0].original_index == 0
        assert entries[-1].is_original and entries[-1].original_index == 1
        assert not any(e.is_original for e in entries[1:-1])
        assert [round(e.cumulative_distance) for e in entries[:4]] == [0, 3, 6, 9]

    def test_no_sliver_before_original_vertex(self, at):
        # 9.5m: an interpolated point at 9m would sit 0.5m from the end
        entries = resample_path([at(0, 0), at(0, 9.5)], spacing=3.0)
        gaps = [b.cumulative_distance - a.cumulative_distance for a, b in zip(entries, entries[1:])]
        assert min(gaps) >= 0.9

    def test_duplicate_vertices_are_skipped(self, at):
        entries = resample_path([at(0, 0), at(0, 0), at(0, 6)], spacing=3.0)
        assert len(entries) == 3

    def test_empty(self):
        assert resample_path([]) == []


class TestTurnDetection:
    def test_single_right_turn(self, l_path):
        entries = resample_path(l_path.points)
        turns = detect_turning_points(entries)
        assert len(turns) == 1
        turn = turns[0]
        assert turn.turn_type == TurnType.RIGHT
        assert turn.turn_angle == pytest.approx(90.0, abs=1.0)
        assert entries[turn.point_index].is_original
        assert entries[turn.point_index].original_index == 1

    def test_left_turn(self, at):
        entries = resample_path([at(0, 0), at(0, 30), at(-30, 30)])
        turns = detect_turning_points(entries)
        assert [t.turn_type for t in turns] == [TurnType.LEFT]

    def test_u_turn(self, at):
        entries = resample_path([at(0, 0), at(0, 30), at(0.5, 0)])
        turns = detect_turning_points(entries)
        assert [t.turn_type for t in turns] == [TurnType.UTURN]

    def test_gentle_bend_is_not_a_turn(self, at):
        entries = resample_path([at(0, 0), at(0, 30), at(5, 60)])
        assert detect_turning_points(entries) == []

    def test_kink_in_straight_road_is_filtered(self, at):
        entries = resample_path([at(0, 0), at(0, 30), at(1, 31), at(1, 60)])
        assert detect_turning_points(entries) == []

    def test_real_zigzag_is_kept(self, at):
        entries = resample_path([at(0, 0), at(0, 30), at(20, 30), at(20, 60)])
        turns = detect_turning_points(entries)
        assert [t.turn_type for t in turns] == [TurnType.RIGHT, TurnType.LEFT]


class TestRanges:
    def test_labels(self):
        assert leg_label(0, 1) == "Start → End"
        assert leg_label(0, 3) == "Start → Waypoint 1"
        assert leg_label(1, 3) == "Waypoint 1 → Waypoint 2"
        assert leg_label(2, 3) == "Waypoint 2 → End"

    def test_ranges_split_at_junctions(self, two_leg_path):
        entries = resample_path(two_leg_path.points)
        ranges = compute_segment_ranges(entries, two_leg_path.junctions)
        assert len(ranges) == 2
        assert ranges[0].start_index == 0
        assert ranges[0].end_index == ranges[1].start_index
        assert ranges[1].end_index == len(entries) - 1
        assert entries[ranges[0].end_index].original_index == 1

    def test_junction_on_a_dropped_vertex_still_cuts(self, at):
        a, b, c = at(0, 0), at(0, 30), at(30, 30)
        entries = resample_path([a, b, b, c])
        ranges = compute_segment_ranges(entries, [1, 2])
        assert len(ranges) == 3
        assert ranges[1].start_index == ranges[1].end_index
        assert entries[ranges[1].start_index].original_index == 1
        assert ranges[2].end_index == len(entries) - 1

    def test_slice_rebases_distances(self, two_leg_path):
        entries = resample_path(two_leg_path.points)
        ranges = compute_segment_ranges(entries, two_leg_path.junctions)
        leg = slice_point_set(entries, ranges[1].start_index, ranges[1].end_index)
        assert leg[0].cumulative_distance == 0.0
        assert leg[-1].cumulative_distance == pytest.approx(60.0, abs=0.5)

    def test_straight_profile(self, straight_path, l_path):
        straight = resample_path(straight_path.points)
        max_change, mean_change = straight_profile(straight, 0, 10)
        assert max_change < 1.0 and mean_change < 1.0

        bent = resample_path(l_path.points)
        max_change, _ = straight_profile(bent, 60, 10)
        assert max_change == pytest.approx(90.0, abs=1.0)
