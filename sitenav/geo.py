"""Geographic utility functions."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Iterable, Optional

from .models import Point

EARTH_RADIUS = 6371000  # meters


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate distance between two points in meters using Haversine formula"""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (math.sin(delta_phi / 2) ** 2 +
         math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS * c


def bearing_between(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate bearing from point 1 to point 2 in degrees (0-360, 0=North)"""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_lambda = math.radians(lon2 - lon1)

    x = math.sin(delta_lambda) * math.cos(phi2)
    y = (math.cos(phi1) * math.sin(phi2) -
         math.sin(phi1) * math.cos(phi2) * math.cos(delta_lambda))

    bearing = math.degrees(math.atan2(x, y))
    return (bearing + 360) % 360


def distance(a: Point, b: Point) -> float:
    return haversine_distance(a.lat, a.lng, b.lat, b.lng)


def bearing(a: Point, b: Point) -> float:
    return bearing_between(a.lat, a.lng, b.lat, b.lng)


def path_length(points: Iterable[Point]) -> float:
    """Sum of consecutive haversine distances"""
    total = 0.0
    prev = None
    for p in points:
        if prev is not None:
            total += distance(prev, p)
        prev = p
    return total


def destination_point(origin: Point, bearing_deg: float, dist: float) -> Point:
    """Point reached by travelling dist meters from origin on a bearing"""
    delta = dist / EARTH_RADIUS
    theta = math.radians(bearing_deg)
    phi1 = math.radians(origin.lat)
    lambda1 = math.radians(origin.lng)

    phi2 = math.asin(math.sin(phi1) * math.cos(delta) +
                     math.cos(phi1) * math.sin(delta) * math.cos(theta))
    lambda2 = lambda1 + math.atan2(math.sin(theta) * math.sin(delta) * math.cos(phi1),
                                   math.cos(delta) - math.sin(phi1) * math.sin(phi2))
    return Point(math.degrees(lambda2), math.degrees(phi2))


def interpolate(a: Point, b: Point, t: float) -> Point:
    return Point(a.lng + (b.lng - a.lng) * t, a.lat + (b.lat - a.lat) * t)


def points_equal(a: Point, b: Point, epsilon: float = 1e-9) -> bool:
    return abs(a.lng - b.lng) <= epsilon and abs(a.lat - b.lat) <= epsilon


def normalize_angle(angle: float) -> float:
    """Wrap an angle to the range (-180, 180]"""
    angle = angle % 360
    if angle > 180:
        angle -= 360
    return angle


def turn_angle(bearing_in: float, bearing_out: float) -> float:
    """Signed change of direction; positive turns right (clockwise)"""
    return normalize_angle(bearing_out - bearing_in)


def angle_difference(a: float, b: float) -> float:
    """Absolute shortest-arc difference between two bearings"""
    return abs(normalize_angle(a - b))


@dataclass
class Intersection:
    point: Point
    t: float  # position along the first segment
    u: float  # position along the second segment
    a_endpoint: bool
    b_endpoint: bool


def segment_intersection(a: Point, b: Point, c: Point, d: Point,
                         parallel_epsilon: float = 1e-10,
                         endpoint_epsilon: float = 1e-9) -> Optional[Intersection]:
    """Intersection of segments AB and CD, or None.

    Works in raw coordinate space. Parallel and collinear pairs (where the
    cross product of the directions is below parallel_epsilon) report no
    intersection. Each side is flagged as touching at an endpoint when its
    parameter lies within endpoint_epsilon of 0 or 1.
    """
    rx = b.lng - a.lng
    ry = b.lat - a.lat
    sx = d.lng - c.lng
    sy = d.lat - c.lat

    denominator = rx * sy - ry * sx
    if abs(denominator) < parallel_epsilon:
        return None

    qx = c.lng - a.lng
    qy = c.lat - a.lat
    t = (qx * sy - qy * sx) / denominator
    u = (qx * ry - qy * rx) / denominator

    lo = -endpoint_epsilon
    hi = 1 + endpoint_epsilon
    if not (lo <= t <= hi and lo <= u <= hi):
        return None

    t = min(max(t, 0.0), 1.0)
    u = min(max(u, 0.0), 1.0)
    return Intersection(
        point=interpolate(a, b, t),
        t=t,
        u=u,
        a_endpoint=t <= endpoint_epsilon or t >= 1 - endpoint_epsilon,
        b_endpoint=u <= endpoint_epsilon or u >= 1 - endpoint_epsilon,
    )


@dataclass
class Projection:
    point: Point
    t: float
    distance: float  # meters


def project_point_to_segment(p: Point, start: Point, end: Point) -> Projection:
    """Nearest point to p on the closed segment start-end.

    The parameter is computed in a local plane with longitude scaled by
    cos(latitude), then clamped to [0, 1].
    """
    kx = math.cos(math.radians(p.lat))
    dx = (end.lng - start.lng) * kx
    dy = end.lat - start.lat
    length_sq = dx * dx + dy * dy
    if length_sq == 0:
        return Projection(start, 0.0, distance(p, start))

    px = (p.lng - start.lng) * kx
    py = p.lat - start.lat
    t = (px * dx + py * dy) / length_sq
    t = min(max(t, 0.0), 1.0)
    point = interpolate(start, end, t)
    return Projection(point, t, distance(p, point))


def retry_with_backoff(func, max_time: float = 30.0, initial_delay: float = 1.0,
                       max_delay: float = 8.0, description: str = "operation"):
    """Retry a function with exponential backoff.

    Args:
        func: Function that returns a truthy value on success, falsy on failure
        max_time: Maximum total time to retry (seconds)
        initial_delay: Initial delay between retries (seconds)
        max_delay: Maximum delay between retries (seconds)
        description: Description for logging

    Returns:
        The result of func() on success, or None if all retries failed
    """
    start_time = time.time()
    delay = initial_delay
    attempt = 1

    while True:
        result = func()
        if result:
            return result

        elapsed = time.time() - start_time
        if elapsed >= max_time:
            print(f"Failed to complete {description} after {elapsed:.1f}s ({attempt} attempts)")
            return None

        remaining = max_time - elapsed
        sleep_time = min(delay, remaining, max_delay)
        if sleep_time > 0:
            print(f"Retrying {description} in {sleep_time:.1f}s (attempt {attempt})...")
            time.sleep(sleep_time)

        delay = min(delay * 2, max_delay)
        attempt += 1


def bearing_to_compass(bearing: float) -> str:
    """Convert bearing to compass direction"""
    directions = ["north", "northeast", "east", "southeast",
                  "south", "southwest", "west", "northwest"]
    index = round(bearing / 45) % 8
    return directions[index]


def relative_direction(from_bearing: float, to_bearing: float) -> str:
    """Get relative direction (left, right, straight, etc.)"""
    diff = (to_bearing - from_bearing + 360) % 360

    if diff < 30 or diff > 330:
        return "straight"
    elif 30 <= diff < 60:
        return "slight right"
    elif 60 <= diff < 120:
        return "right"
    elif 120 <= diff < 150:
        return "sharp right"
    elif 150 <= diff < 210:
        return "u-turn"
    elif 210 <= diff < 240:
        return "sharp left"
    elif 240 <= diff < 300:
        return "left"
    else:
        return "slight left"
