"""sitenav - Route network compiler and turn-by-turn navigation."""

from .config import CONFIG, merged_config
from .models import (
    Point,
    Location,
    Segment,
    IntersectionRecord,
    Node,
    Edge,
    Failure,
    PlannedPath,
    RouteResult,
    PointSetEntry,
    TurningPoint,
    TurnType,
    SegmentRange,
    EventType,
    GuidanceEvent,
)
from .logger import Logger
from .geo import (
    haversine_distance,
    bearing_between,
    bearing_to_compass,
    relative_direction,
    retry_with_backoff,
    distance,
    bearing,
    segment_intersection,
    project_point_to_segment,
)
from .splitter import IntersectionSplitter, SplitResult
from .graph import RouteGraph, GraphBuilder, GraphBuildResult
from .planner import RoutePlanner
from .turns import resample_path, detect_turning_points, compute_segment_ranges
from .timers import TimerQueue
from .gps import EventStream, FixFilter, GPSRecorder, GPSPlayback, simulate_track
from .navigation import NavigationSession, NavState
from .kml import KMLLoader, KMLLoadResult
from .audio import Audio
from .app import Navigator
from .__main__ import main

__all__ = [
    "CONFIG",
    "merged_config",
    "Point",
    "Location",
    "Segment",
    "IntersectionRecord",
    "Node",
    "Edge",
    "Failure",
    "PlannedPath",
    "RouteResult",
    "PointSetEntry",
    "TurningPoint",
    "TurnType",
    "SegmentRange",
    "EventType",
    "GuidanceEvent",
    "Logger",
    "haversine_distance",
    "bearing_between",
    "bearing_to_compass",
    "relative_direction",
    "retry_with_backoff",
    "distance",
    "bearing",
    "segment_intersection",
    "project_point_to_segment",
    "IntersectionSplitter",
    "SplitResult",
    "RouteGraph",
    "GraphBuilder",
    "GraphBuildResult",
    "RoutePlanner",
    "resample_path",
    "detect_turning_points",
    "compute_segment_ranges",
    "TimerQueue",
    "EventStream",
    "FixFilter",
    "GPSRecorder",
    "GPSPlayback",
    "simulate_track",
    "NavigationSession",
    "NavState",
    "KMLLoader",
    "KMLLoadResult",
    "Audio",
    "Navigator",
    "main",
]
