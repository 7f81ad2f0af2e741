"""Route graph representation and construction."""

import math
from collections import deque
from dataclasses import dataclass, field
from typing import Iterator, Optional

import networkx as nx
from networkx.utils import UnionFind

from .config import merged_config
from .geo import distance, path_length, points_equal
from .logger import Logger
from .models import Point, Node, Edge, Failure
from .splitter import IntersectionSplitter, SplitResult

METERS_PER_DEGREE = 111_320.0


class RouteGraph:
    """Undirected graph of the imported network.

    Edge geometry is stored once, oriented from the edge's "origin" node.
    Use edge_geometry(u, v) to read it in travel order.
    """

    def __init__(self, graph: Optional[nx.Graph] = None):
        self.graph = graph if graph is not None else nx.Graph()

    def add_node(self, node_id: int, point: Point, is_intersection: bool = False):
        self.graph.add_node(node_id, lng=point.lng, lat=point.lat,
                            is_intersection=is_intersection)

    def node_point(self, node_id: int) -> Point:
        data = self.graph.nodes[node_id]
        return Point(data["lng"], data["lat"])

    def get_node(self, node_id: int) -> Node:
        data = self.graph.nodes[node_id]
        return Node(node_id, data["lng"], data["lat"], data.get("is_intersection", False))

    def nodes(self) -> list[Node]:
        return [self.get_node(n) for n in self.graph.nodes]

    def has_edge(self, u: int, v: int) -> bool:
        return self.graph.has_edge(u, v)

    def add_edge(self, u: int, v: int, geometry: list[Point], weight: float,
                 line_index: Optional[int] = None, bridge: bool = False):
        self.graph.add_edge(u, v, weight=weight, geometry=tuple(geometry), origin=u,
                            line_index=line_index, bridge=bridge)

    def remove_edge(self, u: int, v: int):
        self.graph.remove_edge(u, v)

    def edge_geometry(self, u: int, v: int) -> list[Point]:
        """Edge geometry in the direction u -> v"""
        data = self.graph.edges[u, v]
        geometry = list(data["geometry"])
        if data["origin"] != u:
            geometry.reverse()
        return geometry

    def edge_length(self, u: int, v: int) -> float:
        return self.graph.edges[u, v]["weight"]

    def edges(self) -> Iterator[Edge]:
        for u, v, data in self.graph.edges(data=True):
            origin = data["origin"]
            other = v if origin == u else u
            yield Edge(origin, other, data["weight"], data["geometry"],
                       data.get("line_index"), data.get("bridge", False))

    def edge_list(self) -> list[Edge]:
        return list(self.edges())

    def number_of_nodes(self) -> int:
        return self.graph.number_of_nodes()

    def number_of_edges(self) -> int:
        return self.graph.number_of_edges()

    def component_count(self) -> int:
        if self.graph.number_of_nodes() == 0:
            return 0
        return nx.number_connected_components(self.graph)

    def is_connected(self) -> bool:
        return self.component_count() == 1

    def total_length(self) -> float:
        return sum(d["weight"] for _, _, d in self.graph.edges(data=True))

    def copy(self) -> "RouteGraph":
        return RouteGraph(self.graph.copy())


class _GridIndex:
    """Spatial hash of points, cell size about `cell_meters`"""

    def __init__(self, cell_meters: float):
        self.cell = max(cell_meters, 0.01) / METERS_PER_DEGREE
        self.cells: dict[tuple[int, int], list[tuple[Point, object]]] = {}

    def _key(self, p: Point) -> tuple[int, int]:
        return (int(math.floor(p.lat / self.cell)), int(math.floor(p.lng / self.cell)))

    def insert(self, p: Point, item):
        self.cells.setdefault(self._key(p), []).append((p, item))

    def remove(self, p: Point, item):
        bucket = self.cells.get(self._key(p))
        if bucket:
            bucket[:] = [entry for entry in bucket if entry[1] != item]

    def nearby(self, p: Point, radius: float) -> Iterator[tuple[Point, object, float]]:
        """Entries within radius meters of p"""
        rows = max(1, math.ceil(radius / METERS_PER_DEGREE / self.cell))
        cols = max(1, math.ceil(rows / max(math.cos(math.radians(p.lat)), 0.01)))
        ci, cj = self._key(p)
        for di in range(-rows, rows + 1):
            for dj in range(-cols, cols + 1):
                for q, item in self.cells.get((ci + di, cj + dj), ()):
                    d = distance(p, q)
                    if d <= radius:
                        yield q, item, d

    def nearest(self, p: Point, radius: float):
        best = None
        best_dist = float("inf")
        for q, item, d in self.nearby(p, radius):
            if d < best_dist:
                best, best_dist = (q, item), d
        return best


@dataclass
class GraphBuildResult:
    ok: bool
    graph: Optional[RouteGraph] = None
    failure: Optional[Failure] = None
    detail: Optional[str] = None
    stats: dict = field(default_factory=dict)


class GraphBuilder:
    """Builds a connected RouteGraph from imported lines"""

    def __init__(self, config: Optional[dict] = None, logger: Optional[Logger] = None,
                 splitter: Optional[IntersectionSplitter] = None):
        self.config = merged_config(config)
        self.logger = logger
        self.splitter = splitter or IntersectionSplitter(self.config, logger)
        self.reset()

    def reset(self):
        """Drop all nodes, edges and intersection records"""
        tolerance = self.config["node_merge_tolerance"]
        self.graph = RouteGraph()
        self._next_id = 0
        self._node_index = _GridIndex(tolerance)
        self._intersection_index = _GridIndex(tolerance)
        self.rejected = {"self_loop": 0, "too_short": 0, "duplicate": 0}

    def set_intersections(self, points: list[Point]):
        for p in points:
            self._intersection_index.insert(p, p)

    def find_or_create_node(self, point: Point) -> int:
        """Canonical node for a coordinate.

        A nearby recorded intersection wins over the raw coordinate, then an
        existing node within the merge tolerance is reused.
        """
        tolerance = self.config["node_merge_tolerance"]
        is_intersection = False
        canonical = self._intersection_index.nearest(point, tolerance)
        if canonical is not None:
            point = canonical[0]
            is_intersection = True

        existing = self._node_index.nearest(point, tolerance)
        if existing is not None:
            node_id = existing[1]
            if is_intersection and not self.graph.graph.nodes[node_id]["is_intersection"]:
                self._move_node(node_id, point)
            return node_id

        node_id = self._next_id
        self._next_id += 1
        self.graph.add_node(node_id, point, is_intersection)
        self._node_index.insert(point, node_id)
        return node_id

    def _move_node(self, node_id: int, point: Point):
        old = self.graph.node_point(node_id)
        self._node_index.remove(old, node_id)
        self.graph.add_node(node_id, point, True)
        self._node_index.insert(point, node_id)
        for neighbor in list(self.graph.graph.neighbors(node_id)):
            geometry = self.graph.edge_geometry(node_id, neighbor)
            geometry[0] = point
            data = self.graph.graph.edges[node_id, neighbor]
            self.graph.add_edge(node_id, neighbor, geometry, path_length(geometry),
                                data.get("line_index"), data.get("bridge", False))

    def add_edge(self, u: int, v: int, geometry: list[Point],
                 line_index: Optional[int] = None, bridge: bool = False) -> bool:
        """Add an undirected edge; returns False if it was rejected"""
        if u == v:
            self.rejected["self_loop"] += 1
            return False

        points = [self.graph.node_point(u)]
        for p in geometry[1:-1]:
            if not points_equal(points[-1], p, 0.0):
                points.append(p)
        end = self.graph.node_point(v)
        if not points_equal(points[-1], end, 0.0):
            points.append(end)

        length = path_length(points)
        if length < self.config["min_edge_length"]:
            self.rejected["too_short"] += 1
            return False

        if self.graph.has_edge(u, v):
            self.rejected["duplicate"] += 1
            if self.graph.edge_length(u, v) <= length:
                return False

        self.graph.add_edge(u, v, points, length, line_index, bridge)
        return True

    def _line_paths(self, split: SplitResult) -> dict[int, list[list[Point]]]:
        """Continuous vertex runs of every source line"""
        paths: dict[int, list[list[Point]]] = {}
        for seg in split.segments:
            runs = paths.setdefault(seg.line_index, [])
            if runs and points_equal(runs[-1][-1], seg.start, 0.0):
                runs[-1].append(seg.end)
            else:
                runs.append([seg.start, seg.end])
        return paths

    def _break_indices(self, paths: list[tuple[int, list[Point]]],
                       intersections: list[Point]) -> list[set[int]]:
        """Vertices of each path where a node is needed"""
        tolerance = self.config["node_merge_tolerance"]
        near = self.config["near_endpoint_epsilon"]
        coincide_radius = max(near * METERS_PER_DEGREE * 2, 0.05)

        vertex_index = _GridIndex(tolerance)
        for path_id, (_, path) in enumerate(paths):
            for k, p in enumerate(path):
                vertex_index.insert(p, (path_id, k))

        breaks = [{0, len(path) - 1} for _, path in paths]

        for p in intersections:
            for q, (path_id, k), _ in vertex_index.nearby(p, coincide_radius):
                if points_equal(p, q, near):
                    breaks[path_id].add(k)

        for path_id, (_, path) in enumerate(paths):
            # Another line ending on this one, or next to it
            for end in (path[0], path[-1]):
                nearest: dict[int, tuple[float, int]] = {}
                for _, (other_id, k), d in vertex_index.nearby(end, tolerance):
                    if other_id == path_id:
                        continue
                    if other_id not in nearest or d < nearest[other_id][0]:
                        nearest[other_id] = (d, k)
                for other_id, (_, k) in nearest.items():
                    breaks[other_id].add(k)

            # Lines crossing exactly at a shared vertex
            for k in range(1, len(path) - 1):
                for q, (other_id, other_k), _ in vertex_index.nearby(path[k], coincide_radius):
                    if other_id == path_id and abs(other_k - k) <= 1:
                        continue
                    if points_equal(path[k], q, near):
                        breaks[path_id].add(k)
                        break

        return breaks

    def _add_run(self, run: list[Point], line_index: int):
        u = self.find_or_create_node(run[0])
        v = self.find_or_create_node(run[-1])
        if u == v and len(run) >= 4:
            # Closed loop: anchor two nodes round it so no pair of edges
            # joins the same two nodes
            last = len(run) - 1
            first_cut = max(1, last // 3)
            second_cut = max(first_cut + 1, (2 * last) // 3)
            self._add_run(run[:first_cut + 1], line_index)
            self._add_run(run[first_cut:second_cut + 1], line_index)
            self._add_run(run[second_cut:], line_index)
            return
        self.add_edge(u, v, run, line_index)

    def simplify_chains(self) -> int:
        """Merge degree-2 nodes that just continue one line.

        Intersections, bridges and nodes joining two different lines are
        kept. Uses a queue to avoid restarting the scan after each merge.
        """
        g = self.graph.graph
        queue = deque(n for n in g.nodes if g.degree(n) == 2)
        in_queue = set(queue)
        removed = 0

        while queue:
            node_id = queue.popleft()
            in_queue.discard(node_id)

            if node_id not in g or g.degree(node_id) != 2:
                continue
            if g.nodes[node_id].get("is_intersection"):
                continue

            n1, n2 = list(g.neighbors(node_id))
            e1 = g.edges[node_id, n1]
            e2 = g.edges[node_id, n2]
            if e1.get("bridge") or e2.get("bridge"):
                continue
            if e1.get("line_index") != e2.get("line_index"):
                continue
            if n1 == n2 or g.has_edge(n1, n2):
                continue

            first = self.graph.edge_geometry(n1, node_id)
            second = self.graph.edge_geometry(node_id, n2)
            merged = first + second[1:]
            line_index = e1.get("line_index")

            self._node_index.remove(self.graph.node_point(node_id), node_id)
            g.remove_node(node_id)
            self.graph.add_edge(n1, n2, merged, path_length(merged), line_index)
            removed += 1

            for neighbor in (n1, n2):
                if g.degree(neighbor) == 2 and neighbor not in in_queue:
                    queue.append(neighbor)
                    in_queue.add(neighbor)

        return removed

    def remove_isolated(self) -> int:
        isolated = list(nx.isolates(self.graph.graph))
        self.graph.graph.remove_nodes_from(isolated)
        return len(isolated)

    def repair_connectivity(self) -> int:
        """Bridge disconnected components with the shortest possible links.

        Components come from a union-find over the existing edges. All
        cross-component node pairs are then sorted by distance and bridged
        Kruskal-style until a single component remains, which adds exactly
        one bridge per extra component.
        """
        g = self.graph.graph
        components = UnionFind(g.nodes)
        for u, v in g.edges:
            components.union(u, v)
        groups = list(components.to_sets())
        if len(groups) <= 1:
            return 0

        group_of = {}
        for index, members in enumerate(groups):
            for node_id in members:
                group_of[node_id] = index

        node_ids = list(g.nodes)
        points = {n: self.graph.node_point(n) for n in node_ids}
        candidates = []
        for i, a in enumerate(node_ids):
            for b in node_ids[i + 1:]:
                if group_of[a] != group_of[b]:
                    candidates.append((distance(points[a], points[b]), a, b))
        candidates.sort(key=lambda c: c[0])

        bridges = 0
        needed = len(groups) - 1
        for dist, a, b in candidates:
            if components[a] == components[b]:
                continue
            if not self.add_edge(a, b, [points[a], points[b]], bridge=True):
                continue
            components.union(a, b)
            bridges += 1
            if self.logger:
                self.logger.log("Bridged components", {"from": a, "to": b, "distance": round(dist, 1)})
            if bridges == needed:
                break
        return bridges

    def build(self, lines: list[list[Point]],
              split: Optional[SplitResult] = None) -> GraphBuildResult:
        """Split, merge, connect. No partial graph is returned on failure."""
        self.reset()
        if split is None:
            split = self.splitter.process(lines)
        if not split.segments:
            return self._fail("No usable line segments")

        self.set_intersections(split.intersection_points)
        for p in split.intersection_points:
            self.find_or_create_node(p)

        paths = [
            (line_index, run)
            for line_index, runs in sorted(self._line_paths(split).items())
            for run in runs
        ]
        breaks = self._break_indices(paths, split.intersection_points)
        for (line_index, path), path_breaks in zip(paths, breaks):
            ordered = sorted(path_breaks)
            for start, end in zip(ordered, ordered[1:]):
                self._add_run(path[start:end + 1], line_index)

        simplified = self.simplify_chains() if self.config["simplify_chains"] else 0
        isolated = self.remove_isolated()

        if self.graph.number_of_nodes() == 0 or self.graph.number_of_edges() == 0:
            return self._fail("Graph has no usable edges")

        components_before = self.graph.component_count()
        bridges = self.repair_connectivity()

        stats = {
            "nodes": self.graph.number_of_nodes(),
            "edges": self.graph.number_of_edges(),
            "intersections": len(split.intersection_points),
            "components": components_before,
            "bridges": bridges,
            "simplified": simplified,
            "isolated_removed": isolated,
            "rejected": dict(self.rejected),
            "total_length": round(self.graph.total_length(), 1),
        }
        if self.logger:
            self.logger.log("Built graph", stats)
        return GraphBuildResult(True, self.graph, stats=stats)

    def _fail(self, detail: str) -> GraphBuildResult:
        self.reset()
        if self.logger:
            self.logger.log("Graph build failed", {"detail": detail})
        return GraphBuildResult(False, None, Failure.GRAPH_UNBUILDABLE, detail)
