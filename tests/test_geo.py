"""Tests for distance, bearing, intersection and projection helpers."""

import pytest

from sitenav.geo import (angle_difference, bearing, destination_point, distance,
                         normalize_angle, path_length, project_point_to_segment,
                         segment_intersection, turn_angle)
from sitenav.models import Point


class TestDistanceAndBearing:
    def test_one_degree_of_latitude(self):
        d = distance(Point(0.0, 0.0), Point(0.0, 1.0))
        assert d == pytest.approx(111_195, rel=1e-4)

    def test_distance_is_symmetric(self):
        a, b = Point(116.40, 39.90), Point(116.41, 39.91)
        assert distance(a, b) == pytest.approx(distance(b, a))

    def test_cardinal_bearings(self):
        origin = Point(116.4, 39.9)
        assert bearing(origin, Point(116.4, 39.91)) == pytest.approx(0.0, abs=1e-6)
        assert bearing(origin, Point(116.41, 39.9)) == pytest.approx(90.0, abs=0.01)
        assert bearing(origin, Point(116.4, 39.89)) == pytest.approx(180.0, abs=1e-6)

    def test_destination_point_travels_requested_distance(self):
        origin = Point(116.4, 39.9)
        p = destination_point(origin, 37.0, 250.0)
        assert distance(origin, p) == pytest.approx(250.0, abs=0.01)
        assert bearing(origin, p) == pytest.approx(37.0, abs=0.01)

    def test_path_length_sums_pieces(self):
        points = [Point(0.0, 0.0), Point(0.0, 0.001), Point(0.001, 0.001)]
        expected = distance(points[0], points[1]) + distance(points[1], points[2])
        assert path_length(points) == pytest.approx(expected)
        assert path_length([]) == 0.0


class TestAngles:
    def test_normalize_wraps(self):
        assert normalize_angle(270) == -90
        assert normalize_angle(-190) == 170
        assert normalize_angle(180) == 180

    def test_turn_angle_crosses_north(self):
        assert turn_angle(350, 10) == pytest.approx(20)
        assert turn_angle(10, 350) == pytest.approx(-20)

    def test_angle_difference_shortest_arc(self):
        assert angle_difference(5, 355) == pytest.approx(10)
        assert angle_difference(0, 180) == pytest.approx(180)


class TestSegmentIntersection:
    def test_crossing_midpoints(self):
        hit = segment_intersection(Point(0, 0), Point(2, 2), Point(0, 2), Point(2, 0))
        assert hit is not None
        assert hit.point.lng == pytest.approx(1.0)
        assert hit.point.lat == pytest.approx(1.0)
        assert hit.t == pytest.approx(0.5)
        assert hit.u == pytest.approx(0.5)
        assert not hit.a_endpoint and not hit.b_endpoint

    def test_parallel_segments(self):
        assert segment_intersection(Point(0, 0), Point(1, 0), Point(0, 1), Point(1, 1)) is None

    def test_collinear_overlap_reports_nothing(self):
        assert segment_intersection(Point(0, 0), Point(2, 0), Point(1, 0), Point(3, 0)) is None

    def test_disjoint_segments(self):
        assert segment_intersection(Point(0, 0), Point(1, 1), Point(2, 0), Point(3, -1)) is None

    def test_t_junction_flags_stem_endpoint(self):
        hit = segment_intersection(Point(1, 1), Point(1, 0), Point(0, 0), Point(2, 0))
        assert hit is not None
        assert hit.a_endpoint
        assert not hit.b_endpoint
        assert hit.u == pytest.approx(0.5)

    def test_shared_endpoint(self):
        hit = segment_intersection(Point(0, 0), Point(1, 0), Point(1, 0), Point(1, 1))
        assert hit is not None
        assert hit.a_endpoint and hit.b_endpoint


class TestProjection:
    def test_projects_onto_interior(self):
        start, end = Point(116.4, 39.9), Point(116.4, 39.91)
        proj = project_point_to_segment(Point(116.401, 39.905), start, end)
        assert proj.t == pytest.approx(0.5)
        assert proj.point.lng == pytest.approx(116.4)
        assert proj.distance == pytest.approx(distance(Point(116.401, 39.905), proj.point))

    def test_clamps_before_start(self):
        start, end = Point(116.4, 39.9), Point(116.4, 39.91)
        proj = project_point_to_segment(Point(116.4, 39.89), start, end)
        assert proj.t == 0.0
        assert proj.point == start

    def test_degenerate_segment(self):
        p = Point(116.4, 39.9)
        proj = project_point_to_segment(Point(116.401, 39.9), p, p)
        assert proj.point == p
        assert proj.distance > 0
