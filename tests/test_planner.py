"""Tests for projection, shortest paths and multi-leg planning."""

import pytest

from sitenav.geo import distance, path_length, points_equal
from sitenav.graph import RouteGraph
from sitenav.models import Failure
from sitenav.planner import RoutePlanner, remove_backtracks
from sitenav.turns import compute_segment_ranges, resample_path


@pytest.fixture
def planner(plus_lines):
    return RoutePlanner(plus_lines)


class TestProjection:
    def test_nearest_projection_lands_on_the_edge(self, planner, at):
        planner.ensure_graph()
        proj = planner.find_nearest_projection(at(-60, 4))
        assert proj is not None
        assert proj.distance == pytest.approx(4.0, abs=0.1)
        assert distance(proj.point, at(-60, 0)) < 0.1
        assert 0.0 < proj.fraction < 1.0

    def test_nothing_within_range(self, planner, at):
        planner.ensure_graph()
        assert planner.find_nearest_projection(at(500, 500)) is None

    def test_close_projection_is_used_as_is(self, planner, at):
        planner.ensure_graph()
        point = at(-60, 3)
        assert planner.find_projection_toward(point, at(0, 40)) == planner.find_nearest_projection(point)

    def test_distant_target_uses_plain_projection(self, planner, at):
        planner.ensure_graph()
        point = at(-7, 7)
        assert planner.find_projection_toward(point, at(0, 90)) == planner.find_nearest_projection(point)

    def test_scored_projection_picks_a_close_candidate(self, planner, at):
        planner.ensure_graph()
        # 7m from both the west and the north arm, nearly 10m from the others
        scored = planner.find_projection_toward(at(-7, 7), at(0, 40))
        assert scored.distance == pytest.approx(7.0, abs=0.1)


class TestPlanRoute:
    def test_same_point(self, planner, at):
        result = planner.plan_route(at(-50, 0), at(-50, 0))
        assert result.ok
        assert result.path.total_distance == 0.0
        assert len(result.path.points) == 2

    def test_same_edge_needs_no_search(self, planner, at):
        result = planner.plan_route(at(-80, 2), at(-30, 2))
        assert result.ok
        assert planner.search_count == 0
        assert result.path.total_distance == pytest.approx(50.0, abs=0.5)

    def test_route_through_the_crossing(self, planner, at):
        result = planner.plan_route(at(-80, 0), at(0, 80))
        assert result.ok
        path = result.path
        assert planner.search_count >= 1
        assert path.total_distance == pytest.approx(160.0, abs=1.0)
        assert path.total_distance == pytest.approx(path_length(path.points))
        assert distance(path.points[0], at(-80, 0)) < 0.5
        assert distance(path.points[-1], at(0, 80)) < 0.5
        assert any(distance(p, at(0, 0)) < 0.5 for p in path.points)

    def test_projection_not_found(self, planner, at):
        result = planner.plan_route(at(-80, 0), at(800, 800))
        assert not result.ok
        assert result.failure == Failure.PROJECTION_NOT_FOUND

    def test_graph_unbuildable(self, at):
        result = RoutePlanner([]).plan_route(at(0, 0), at(10, 10))
        assert not result.ok
        assert result.failure == Failure.GRAPH_UNBUILDABLE

    def test_no_path_after_reversed_retry(self, at):
        graph = RouteGraph()
        graph.add_node(0, at(0, 0))
        graph.add_node(1, at(0, 100))
        graph.add_node(2, at(50, 0))
        graph.add_node(3, at(50, 100))
        graph.add_edge(0, 1, [at(0, 0), at(0, 100)], distance(at(0, 0), at(0, 100)))
        graph.add_edge(2, 3, [at(50, 0), at(50, 100)], distance(at(50, 0), at(50, 100)))

        planner = RoutePlanner(graph=graph)
        result = planner.plan_route(at(0, 50), at(50, 50))
        assert not result.ok
        assert result.failure == Failure.NO_PATH
        assert planner.search_count == 2

    def test_temporary_nodes_do_not_touch_the_graph(self, planner, at):
        planner.plan_route(at(-80, 0), at(0, 80))
        assert all(node_id >= 0 for node_id in planner.graph.graph.nodes)
        assert planner.graph.number_of_edges() == 4

    def test_near_endpoint_uses_the_existing_node(self, planner, at):
        planner.ensure_graph()
        proj = planner.find_nearest_projection(at(-99.5, 0))
        assert proj.fraction <= 0.01 or proj.fraction >= 0.99


class TestPlanMulti:
    def test_two_legs(self, planner, at):
        result = planner.plan_multi([at(-80, 0), at(0, 80), at(80, 0)])
        assert result.ok
        path = result.path
        assert path.leg_count == 2
        assert len(path.junctions) == 1
        assert distance(path.points[path.junctions[0]], at(0, 80)) < 0.5
        assert path.total_distance == pytest.approx(320.0, abs=2.0)
        assert not path.degraded
        assert all(leg.ok for leg in path.legs)

    def test_failed_leg_falls_back_to_straight_line(self, planner, at):
        result = planner.plan_multi([at(-80, 0), at(900, 900)])
        assert result.ok
        path = result.path
        assert path.degraded
        assert not path.legs[0].ok
        assert path.legs[0].failure == Failure.PROJECTION_NOT_FOUND
        assert path.points == [at(-80, 0), at(900, 900)]

    def test_needs_two_points(self, planner, at):
        result = planner.plan_multi([at(0, 0)])
        assert not result.ok
        assert result.failure == Failure.INVALID_INPUT

    def test_segment_ranges_are_labelled(self, planner, at):
        path = planner.plan_multi([at(-80, 0), at(0, 80), at(80, 0)]).path
        ranges = RoutePlanner.segment_ranges(path)
        assert [r.label for r in ranges] == ["Start → Waypoint 1", "Waypoint 1 → End"]
        assert ranges[0].end_index == ranges[1].start_index

    def test_repeated_waypoint_keeps_one_range_per_leg(self, planner, at):
        waypoint = at(0, 80)
        path = planner.plan_multi([at(-80, 0), waypoint, waypoint, at(80, 0)]).path
        assert path.leg_count == 3
        assert path.junctions[0] == path.junctions[1]
        assert not any(points_equal(a, b) for a, b in zip(path.points, path.points[1:]))
        assert len(RoutePlanner.segment_ranges(path)) == 3

        ranges = compute_segment_ranges(resample_path(path.points), path.junctions)
        assert len(ranges) == 3
        assert ranges[1].start_index == ranges[1].end_index


class TestRemoveBacktracks:
    def test_cuts_the_loop(self, at):
        a, b, c, d = at(0, 0), at(0, 10), at(0, 20), at(10, 10)
        assert remove_backtracks([a, b, c, b, d]) == [a, b, d]

    def test_leaves_simple_paths_alone(self, at):
        points = [at(0, 0), at(0, 10), at(10, 10)]
        assert remove_backtracks(points) == points

    def test_adjacent_close_points_are_not_a_loop(self, at):
        a, close, c = at(0, 0), at(0, 0.5), at(0, 10)
        assert remove_backtracks([a, close, c]) == [a, close, c]
