"""Split imported lines at their crossings."""

from dataclasses import dataclass, field
from typing import Optional

from .config import merged_config
from .geo import segment_intersection, interpolate, points_equal
from .logger import Logger
from .models import Point, Segment, IntersectionRecord, IntersectionKind


@dataclass
class SplitResult:
    segments: list[Segment]
    intersections: list[IntersectionRecord]
    intersection_points: list[Point]
    stats: dict = field(default_factory=dict)


class IntersectionSplitter:
    """Turns polylines into atomic segments that only meet at endpoints.

    Every geometric crossing is treated as an at-grade junction: an
    X-crossing splits both segments, a T-junction (one segment ending on
    another's interior) splits the segment that carries on through.
    """

    def __init__(self, config: Optional[dict] = None, logger: Optional[Logger] = None):
        self.config = merged_config(config)
        self.logger = logger
        self.degenerate_count = 0

    def decompose(self, lines: list[list[Point]]) -> list[Segment]:
        """Break each line into consecutive two-point segments"""
        segments: list[Segment] = []
        self.degenerate_count = 0
        for line_index, line in enumerate(lines):
            vertices: list[Point] = []
            for p in line:
                if vertices and points_equal(vertices[-1], p, 0.0):
                    continue
                vertices.append(p)
            if len(vertices) < 2:
                self.degenerate_count += 1
                continue
            for part, (start, end) in enumerate(zip(vertices, vertices[1:])):
                segments.append(Segment(
                    id=len(segments),
                    start=start,
                    end=end,
                    line_index=line_index,
                    part_index=part,
                ))
        return segments

    def detect_intersections(self, segments: list[Segment]) -> list[IntersectionRecord]:
        """Pairwise crossing test.

        For ENDPOINT_ON_LINE records segment_a is the one that ends at the
        junction and segment_b is the one that is split.
        """
        near = self.config["near_endpoint_epsilon"]
        records: list[IntersectionRecord] = []
        boxes = [_bbox(s, near) for s in segments]

        for i in range(len(segments)):
            s1 = segments[i]
            box1 = boxes[i]
            for j in range(i + 1, len(segments)):
                s2 = segments[j]
                box2 = boxes[j]
                if (box1[0] > box2[2] or box2[0] > box1[2] or
                        box1[1] > box2[3] or box2[1] > box1[3]):
                    continue
                # Consecutive pieces of one line only share their vertex
                if s1.line_index == s2.line_index and abs(s1.part_index - s2.part_index) == 1:
                    continue

                record = self._classify(s1, s2)
                if record is not None:
                    records.append(record)

        return records

    def _classify(self, s1: Segment, s2: Segment) -> Optional[IntersectionRecord]:
        hit = segment_intersection(
            s1.start, s1.end, s2.start, s2.end,
            parallel_epsilon=self.config["parallel_epsilon"],
            endpoint_epsilon=self.config["endpoint_epsilon"],
        )
        if hit is not None:
            if hit.a_endpoint and hit.b_endpoint:
                return None
            if hit.a_endpoint:
                stem_point = s1.start if hit.t < 0.5 else s1.end
                return IntersectionRecord(stem_point, s1.id, s2.id,
                                          IntersectionKind.ENDPOINT_ON_LINE, hit.t, hit.u)
            if hit.b_endpoint:
                stem_point = s2.start if hit.u < 0.5 else s2.end
                return IntersectionRecord(stem_point, s2.id, s1.id,
                                          IntersectionKind.ENDPOINT_ON_LINE, hit.u, hit.t)
            return IntersectionRecord(hit.point, s1.id, s2.id,
                                      IntersectionKind.INTERIOR, hit.t, hit.u)

        # Digitised endpoints often stop just short of (or past) the line
        # they are meant to join
        for stem, other in ((s1, s2), (s2, s1)):
            for endpoint, t_stem in ((stem.start, 0.0), (stem.end, 1.0)):
                u = self._near_interior_param(endpoint, other)
                if u is not None:
                    return IntersectionRecord(endpoint, stem.id, other.id,
                                              IntersectionKind.ENDPOINT_ON_LINE, t_stem, u)
        return None

    def _near_interior_param(self, p: Point, seg: Segment) -> Optional[float]:
        """Parameter on seg if p lies within the near-endpoint tolerance of its interior"""
        near = self.config["near_endpoint_epsilon"]
        dedupe = self.config["split_dedupe_epsilon"]
        if points_equal(p, seg.start, near) or points_equal(p, seg.end, near):
            return None

        dx = seg.end.lng - seg.start.lng
        dy = seg.end.lat - seg.start.lat
        length_sq = dx * dx + dy * dy
        if length_sq == 0:
            return None
        t = ((p.lng - seg.start.lng) * dx + (p.lat - seg.start.lat) * dy) / length_sq
        if t <= dedupe or t >= 1 - dedupe:
            return None
        foot = interpolate(seg.start, seg.end, t)
        if max(abs(foot.lng - p.lng), abs(foot.lat - p.lat)) > near:
            return None
        return t

    def split(self, segments: list[Segment],
              intersections: list[IntersectionRecord]) -> list[Segment]:
        """Cut every segment at its recorded split points"""
        dedupe = self.config["split_dedupe_epsilon"]
        cuts: dict[int, list[tuple[float, Point]]] = {}

        def add_cut(seg_id: int, t: float, point: Point):
            if dedupe < t < 1 - dedupe:
                cuts.setdefault(seg_id, []).append((t, point))

        for record in intersections:
            if record.kind == IntersectionKind.INTERIOR:
                add_cut(record.segment_a, record.t_a, record.point)
            add_cut(record.segment_b, record.t_b, record.point)

        result: list[Segment] = []
        part_counter: dict[int, int] = {}
        for seg in segments:
            vertices = [seg.start]
            last_t = 0.0
            for t, point in sorted(cuts.get(seg.id, []), key=lambda c: c[0]):
                if t - last_t <= dedupe:
                    continue
                vertices.append(point)
                last_t = t
            vertices.append(seg.end)

            for start, end in zip(vertices, vertices[1:]):
                if points_equal(start, end, 0.0):
                    continue
                part = part_counter.get(seg.line_index, 0)
                part_counter[seg.line_index] = part + 1
                result.append(Segment(
                    id=len(result),
                    start=start,
                    end=end,
                    line_index=seg.line_index,
                    part_index=part,
                ))
        return result

    def process(self, lines: list[list[Point]]) -> SplitResult:
        segments = self.decompose(lines)
        intersections = self.detect_intersections(segments)
        atomic = self.split(segments, intersections)

        seen: set[tuple[float, float]] = set()
        points: list[Point] = []
        for record in intersections:
            key = (round(record.point.lng, 9), round(record.point.lat, 9))
            if key in seen:
                continue
            seen.add(key)
            points.append(record.point)

        stats = {
            "lines": len(lines),
            "input_segments": len(segments),
            "degenerate_lines": self.degenerate_count,
            "crossings": sum(1 for r in intersections if r.kind == IntersectionKind.INTERIOR),
            "t_junctions": sum(1 for r in intersections if r.kind == IntersectionKind.ENDPOINT_ON_LINE),
            "output_segments": len(atomic),
        }
        if self.logger:
            self.logger.log("Split lines", stats)
        return SplitResult(atomic, intersections, points, stats)


def _bbox(seg: Segment, pad: float) -> tuple[float, float, float, float]:
    return (
        min(seg.start.lng, seg.end.lng) - pad,
        min(seg.start.lat, seg.end.lat) - pad,
        max(seg.start.lng, seg.end.lng) + pad,
        max(seg.start.lat, seg.end.lat) + pad,
    )
