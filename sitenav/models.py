"""Data classes for sitenav."""

from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class Point:
    """A map-datum coordinate"""
    lng: float
    lat: float

    @classmethod
    def parse(cls, value) -> "Point":
        """Accept [lng, lat], (lng, lat), {"lng", "lat"} or {"lon", "lat"}."""
        if isinstance(value, Point):
            return value
        if isinstance(value, dict):
            lng = value["lng"] if "lng" in value else value["lon"]
            return cls(float(lng), float(value["lat"]))
        if isinstance(value, (list, tuple)) and len(value) >= 2:
            return cls(float(value[0]), float(value[1]))
        raise ValueError(f"Cannot interpret {value!r} as a coordinate")


@dataclass
class Location:
    """A single GPS fix"""
    lng: float
    lat: float
    accuracy: Optional[float] = None  # meters
    heading: Optional[float] = None  # degrees
    timestamp: Optional[float] = None  # seconds

    @property
    def point(self) -> Point:
        return Point(self.lng, self.lat)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "Location":
        d = dict(d)
        if "lon" in d and "lng" not in d:
            d["lng"] = d.pop("lon")
        return cls(**d)


@dataclass
class Segment:
    """A two-point piece of an imported line"""
    id: int
    start: Point
    end: Point
    line_index: int
    part_index: int = 0  # position along the source line after splitting


class IntersectionKind(Enum):
    INTERIOR = "interior-interior"
    ENDPOINT_ON_LINE = "endpoint-on-line"


@dataclass
class IntersectionRecord:
    point: Point
    segment_a: int
    segment_b: int
    kind: IntersectionKind
    t_a: float  # parametric position on segment_a
    t_b: float  # parametric position on segment_b


@dataclass
class Node:
    id: int
    lng: float
    lat: float
    is_intersection: bool = False

    @property
    def point(self) -> Point:
        return Point(self.lng, self.lat)


@dataclass
class Edge:
    """Undirected edge; geometry runs from u to v"""
    u: int
    v: int
    weight: float  # meters
    geometry: tuple
    line_index: Optional[int] = None
    bridge: bool = False


class Failure(Enum):
    GRAPH_UNBUILDABLE = "graph_unbuildable"
    PROJECTION_NOT_FOUND = "projection_not_found"
    NO_PATH = "no_path"
    INVALID_INPUT = "invalid_input"


@dataclass
class LegResult:
    """Outcome of planning one leg of a route"""
    index: int
    start: Point
    end: Point
    points: list[Point]
    distance: float
    ok: bool = True
    failure: Optional[Failure] = None
    detail: Optional[str] = None


@dataclass
class PlannedPath:
    points: list[Point]
    total_distance: float
    junctions: list[int] = field(default_factory=list)  # point index of each leg boundary
    legs: list[LegResult] = field(default_factory=list)
    degraded: bool = False

    @property
    def leg_count(self) -> int:
        return max(1, len(self.junctions) + 1)

    def leg_bounds(self) -> list[tuple[int, int]]:
        """(start, end) point index of every leg, inclusive"""
        bounds = []
        start = 0
        for junction in self.junctions:
            bounds.append((start, junction))
            start = junction
        bounds.append((start, len(self.points) - 1))
        return bounds


@dataclass
class RouteResult:
    ok: bool
    path: Optional[PlannedPath] = None
    failure: Optional[Failure] = None
    detail: Optional[str] = None


@dataclass
class PointSetEntry:
    """One point of a resampled path"""
    point: Point
    cumulative_distance: float  # meters from the start of the set
    is_original: bool = False
    original_index: Optional[int] = None


class TurnType(Enum):
    LEFT = "left"
    RIGHT = "right"
    UTURN = "uturn"


@dataclass
class TurningPoint:
    point_index: int
    turn_angle: float  # signed degrees, positive = right
    turn_type: TurnType
    bearing_after: float


@dataclass
class SegmentRange:
    """Point-index range of one leg inside a multi-waypoint path"""
    start_index: int
    end_index: int
    label: str


class EventType(Enum):
    LEFT = "left"
    RIGHT = "right"
    UTURN = "uturn"
    STRAIGHT = "straight"
    DEVIATION = "deviation"
    ARRIVAL = "arrival"
    REJOINED = "rejoined"
    REROUTED = "rerouted"


@dataclass
class GuidanceEvent:
    type: EventType
    distance: float  # meters
    message: str
    spoken: bool = True
    leg: int = 0
    timestamp: Optional[float] = None
    point_index: Optional[int] = None  # turning point the event refers to
    preliminary: bool = False  # advance notice ahead of the turn itself

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "distance": round(self.distance, 1),
            "message": self.message,
            "spoken": self.spoken,
            "leg": self.leg,
            "timestamp": self.timestamp,
            "point_index": self.point_index,
            "preliminary": self.preliminary,
        }
