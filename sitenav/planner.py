"""Shortest-path planning over the route graph."""

import math
from dataclasses import dataclass
from typing import Optional

import networkx as nx

from .config import merged_config
from .geo import distance, path_length, points_equal, project_point_to_segment
from .graph import GraphBuilder, GraphBuildResult, RouteGraph
from .logger import Logger
from .models import Point, PlannedPath, LegResult, RouteResult, Failure, SegmentRange
from .turns import leg_label


@dataclass
class EdgeProjection:
    """Where a coordinate lands on an edge's geometry (oriented u -> v)"""
    u: int
    v: int
    piece: int  # index of the geometry piece holding the projection
    t: float  # position along that piece
    point: Point
    distance: float  # meters from the coordinate
    offset: float  # meters along the edge from u
    edge_length: float

    @property
    def fraction(self) -> float:
        if self.edge_length <= 0:
            return 0.0
        return self.offset / self.edge_length

    def same_edge(self, other: "EdgeProjection") -> bool:
        return {self.u, self.v} == {other.u, other.v}


class RoutePlanner:
    """Plans routes between arbitrary coordinates on the imported network"""

    def __init__(self, lines: Optional[list[list[Point]]] = None,
                 graph: Optional[RouteGraph] = None,
                 config: Optional[dict] = None,
                 logger: Optional[Logger] = None):
        self.config = merged_config(config)
        self.logger = logger
        self.builder = GraphBuilder(self.config, logger)
        self.lines = lines or []
        self.graph = graph
        self.build_result: Optional[GraphBuildResult] = None
        self.search_count = 0  # Dijkstra invocations
        self._next_temp_id = -1

    def set_lines(self, lines: list[list[Point]]):
        """Replace the imported lines; the graph is rebuilt on next use"""
        self.lines = lines
        self.reset()

    def reset(self):
        self.graph = None
        self.build_result = None
        self.builder.reset()
        self._next_temp_id = -1

    def ensure_graph(self) -> GraphBuildResult:
        if self.graph is not None:
            if self.build_result is None:
                self.build_result = GraphBuildResult(True, self.graph)
            return self.build_result
        self.build_result = self.builder.build(self.lines)
        self.graph = self.build_result.graph
        return self.build_result

    def _log(self, message: str, data: Optional[dict] = None):
        if self.logger:
            self.logger.log(message, data)

    def _candidates(self, point: Point, radius: float) -> list[EdgeProjection]:
        """Projections onto every geometry piece within radius meters"""
        found = []
        for edge in self.graph.edges():
            geometry = edge.geometry
            offset = 0.0
            for i in range(len(geometry) - 1):
                proj = project_point_to_segment(point, geometry[i], geometry[i + 1])
                if proj.distance <= radius:
                    found.append(EdgeProjection(
                        u=edge.u, v=edge.v, piece=i, t=proj.t, point=proj.point,
                        distance=proj.distance,
                        offset=offset + distance(geometry[i], proj.point),
                        edge_length=edge.weight,
                    ))
                offset += distance(geometry[i], geometry[i + 1])
        return found

    def find_nearest_projection(self, point: Point) -> Optional[EdgeProjection]:
        """Closest point on any edge's real geometry"""
        candidates = self._candidates(point, self.config["projection_max_distance"])
        if not candidates:
            return None
        return min(candidates, key=lambda c: c.distance)

    def find_projection_toward(self, point: Point, target: Point) -> Optional[EdgeProjection]:
        """Projection that prefers edges heading toward target.

        Only used for short hops where the plain nearest projection is a few
        meters off and several edges compete: each candidate scores its
        distance blended with how far the direction to the target turns.
        """
        basic = self.find_nearest_projection(point)
        if basic is None:
            return None
        if basic.distance < self.config["projection_direct_threshold"]:
            return basic

        direct = distance(point, target)
        if direct >= self.config["projection_target_radius"]:
            return basic

        candidates = self._candidates(point, self.config["projection_candidate_radius"])
        if len(candidates) <= 1:
            return basic

        direction = math.atan2(target.lat - point.lat, target.lng - point.lng)
        w_dist = self.config["projection_distance_weight"]
        w_angle = self.config["projection_angle_weight"]

        def score(c: EdgeProjection) -> float:
            from_proj = math.atan2(target.lat - c.point.lat, target.lng - c.point.lng)
            diff = abs(direction - from_proj)
            angle_score = min(diff, 2 * math.pi - diff) / math.pi
            return c.distance * w_dist + angle_score * direct * w_angle

        return min(candidates, key=score)

    def plan_route(self, start: Point, end: Point) -> RouteResult:
        """Shortest path between two coordinates"""
        build = self.ensure_graph()
        if not build.ok:
            return RouteResult(False, failure=Failure.GRAPH_UNBUILDABLE, detail=build.detail)

        if points_equal(start, end):
            return RouteResult(True, PlannedPath([start, start], 0.0))

        from_proj = self.find_projection_toward(start, end)
        to_proj = self.find_projection_toward(end, start)
        if from_proj is None or to_proj is None:
            which = "start" if from_proj is None else "end"
            self._log("No edge near route point", {"point": which})
            return RouteResult(False, failure=Failure.PROJECTION_NOT_FOUND,
                               detail=f"Nothing within {self.config['projection_max_distance']:.0f}m of {which}")

        if from_proj.same_edge(to_proj):
            points = self._slice_edge(from_proj, to_proj)
            return RouteResult(True, PlannedPath(points, path_length(points)))

        graph = self.graph.copy()
        source = self._attach(graph, from_proj)
        target = self._attach(graph, to_proj)

        nodes = self._search(graph, source, target)
        if nodes is None:
            self._log("No path found", {"source": source, "target": target})
            return RouteResult(False, failure=Failure.NO_PATH,
                               detail="Search exhausted in both directions")

        points = self._reconstruct(graph, nodes)
        return RouteResult(True, PlannedPath(points, path_length(points)))

    def _slice_edge(self, a: EdgeProjection, b: EdgeProjection) -> list[Point]:
        """Geometry between two projections on the same edge"""
        geometry = self.graph.edge_geometry(a.u, a.v)
        if (a.u, a.v) != (b.u, b.v):
            # b was measured from the other end
            b = EdgeProjection(a.u, a.v, len(geometry) - 2 - b.piece, 1 - b.t, b.point,
                               b.distance, b.edge_length - b.offset, b.edge_length)

        if a.offset <= b.offset:
            middle = geometry[a.piece + 1:b.piece + 1]
        else:
            middle = list(reversed(geometry[b.piece + 1:a.piece + 1]))
        return _collapse([a.point] + middle + [b.point])

    def _attach(self, graph: RouteGraph, proj: EdgeProjection) -> int:
        """Node for a projection, splitting the edge when it lands mid-way"""
        margin = self.config["endpoint_fraction"]
        if proj.fraction <= margin:
            return proj.u
        if proj.fraction >= 1 - margin:
            return proj.v

        geometry = graph.edge_geometry(proj.u, proj.v)
        first = _collapse(geometry[:proj.piece + 1] + [proj.point])
        second = _collapse([proj.point] + geometry[proj.piece + 1:])
        line_index = graph.graph.edges[proj.u, proj.v].get("line_index")

        node_id = self._next_temp_id
        self._next_temp_id -= 1
        graph.remove_edge(proj.u, proj.v)
        graph.add_node(node_id, proj.point)
        graph.add_edge(proj.u, node_id, first, path_length(first), line_index)
        graph.add_edge(node_id, proj.v, second, path_length(second), line_index)
        return node_id

    def _search(self, graph: RouteGraph, source: int, target: int) -> Optional[list[int]]:
        """Dijkstra, with one retry from the far end"""
        if source == target:
            return [source]
        try:
            self.search_count += 1
            _, nodes = nx.single_source_dijkstra(graph.graph, source, target, weight="weight")
            return nodes
        except (nx.NetworkXNoPath, nx.NodeNotFound):
            self._log("Forward search failed, retrying reversed", {"source": source, "target": target})

        try:
            self.search_count += 1
            _, nodes = nx.single_source_dijkstra(graph.graph, target, source, weight="weight")
            return list(reversed(nodes))
        except (nx.NetworkXNoPath, nx.NodeNotFound):
            return None

    def _reconstruct(self, graph: RouteGraph, nodes: list[int]) -> list[Point]:
        if len(nodes) == 1:
            p = graph.node_point(nodes[0])
            return [p, p]

        points: list[Point] = []
        for u, v in zip(nodes, nodes[1:]):
            geometry = graph.edge_geometry(u, v)
            points.extend(geometry[1:] if points else geometry)

        points = _collapse(points)
        if self.config["remove_backtracks"]:
            points = remove_backtracks(points, self.config["backtrack_epsilon"])
        if len(points) == 1:
            points.append(points[0])
        return points

    def plan_multi(self, points: list[Point]) -> RouteResult:
        """Plan start -> waypoints -> end, leg by leg.

        A leg that cannot be routed falls back to a straight line and the
        whole plan is marked degraded.
        """
        if len(points) < 2:
            return RouteResult(False, failure=Failure.INVALID_INPUT,
                               detail="At least a start and an end are required")

        build = self.ensure_graph()
        if not build.ok:
            return RouteResult(False, failure=Failure.GRAPH_UNBUILDABLE, detail=build.detail)

        combined: list[Point] = []
        junctions: list[int] = []
        legs: list[LegResult] = []
        degraded = False

        for index, (a, b) in enumerate(zip(points, points[1:])):
            result = self.plan_route(a, b)
            if result.ok:
                leg_points = result.path.points
                leg = LegResult(index, a, b, leg_points, result.path.total_distance)
            else:
                origin = combined[-1] if combined else a
                leg_points = [origin, b]
                leg = LegResult(index, a, b, leg_points, path_length(leg_points),
                                ok=False, failure=result.failure, detail=result.detail)
                degraded = True
                self._log("Leg failed, using straight line", {
                    "leg": index, "failure": result.failure.value, "detail": result.detail,
                })
            legs.append(leg)

            # A zero-length leg adds nothing; its junction repeats the previous one
            for p in leg_points:
                if not combined or not points_equal(combined[-1], p):
                    combined.append(p)
            if index < len(points) - 2:
                junctions.append(len(combined) - 1)

        if len(combined) == 1:
            combined.append(combined[0])
        path = PlannedPath(combined, path_length(combined), junctions, legs, degraded)
        self._log("Route planned", {
            "legs": len(legs),
            "points": len(combined),
            "distance": round(path.total_distance, 1),
            "degraded": degraded,
            "searches": self.search_count,
        })
        return RouteResult(True, path)

    @staticmethod
    def segment_ranges(path: PlannedPath) -> list[SegmentRange]:
        """One labelled index range per leg"""
        bounds = path.leg_bounds()
        return [
            SegmentRange(start, end, leg_label(i, len(bounds)))
            for i, (start, end) in enumerate(bounds)
        ]


def _collapse(points: list[Point]) -> list[Point]:
    """Drop consecutive duplicate coordinates"""
    result: list[Point] = []
    for p in points:
        if result and points_equal(result[-1], p, 0.0):
            continue
        result.append(p)
    return result


def remove_backtracks(points: list[Point], epsilon: float = 1e-5) -> list[Point]:
    """Cut out loops where the path returns to a coordinate it already visited.

    Everything between the two visits is removed and the later occurrence
    is kept. Neighbouring points are never compared with each other.
    """
    result: list[Point] = []
    for p in points:
        for k in range(len(result) - 2, -1, -1):
            if points_equal(result[k], p, epsilon):
                del result[k:]
                break
        result.append(p)
    return result
