"""Path resampling and turn detection."""

from typing import Optional

from .config import merged_config
from .geo import angle_difference, bearing, distance, interpolate, turn_angle
from .models import Point, PointSetEntry, SegmentRange, TurningPoint, TurnType


def resample_path(points: list[Point], spacing: float = 3.0) -> list[PointSetEntry]:
    """Insert a point every `spacing` meters, keeping the original vertices.

    Interpolated points closer than 30% of the spacing to the next original
    vertex are dropped so no piece of the resampled path is degenerate.
    """
    entries: list[PointSetEntry] = []
    if not points:
        return entries

    entries.append(PointSetEntry(points[0], 0.0, True, 0))
    cumulative = 0.0
    min_gap = spacing * 0.3
    for i in range(1, len(points)):
        prev = points[i - 1]
        current = points[i]
        seg_len = distance(prev, current)
        if seg_len == 0:
            continue
        step = spacing
        while seg_len - step >= min_gap:
            entries.append(PointSetEntry(
                interpolate(prev, current, step / seg_len),
                cumulative + step,
            ))
            step += spacing
        cumulative += seg_len
        entries.append(PointSetEntry(current, cumulative, True, i))
    return entries


def detect_turning_points(entries: list[PointSetEntry],
                          config: Optional[dict] = None) -> list[TurningPoint]:
    """Classify the change of direction at every interior point"""
    config = merged_config(config)
    min_segment = config["min_turn_segment"]
    turn_threshold = config["turn_threshold"]
    uturn_threshold = config["uturn_threshold"]

    turns: list[TurningPoint] = []
    for i in range(1, len(entries) - 1):
        prev = entries[i - 1].point
        here = entries[i].point
        nxt = entries[i + 1].point
        if distance(prev, here) < min_segment or distance(here, nxt) < min_segment:
            continue

        bearing_out = bearing(here, nxt)
        angle = turn_angle(bearing(prev, here), bearing_out)
        magnitude = abs(angle)
        if magnitude >= uturn_threshold:
            turn_type = TurnType.UTURN
        elif magnitude > turn_threshold:
            turn_type = TurnType.RIGHT if angle > 0 else TurnType.LEFT
        else:
            continue
        turns.append(TurningPoint(i, angle, turn_type, bearing_out))

    return filter_canceling_turns(turns, entries, config)


def filter_canceling_turns(turns: list[TurningPoint], entries: list[PointSetEntry],
                           config: Optional[dict] = None) -> list[TurningPoint]:
    """Drop left/right pairs that are really a kink in a straight road.

    A pair is dropped when the turns are adjacent, opposite in sign, close
    in magnitude, a couple of meters apart, and the road heads the same way
    before and after them.
    """
    config = merged_config(config)
    max_gap = config["scurve_distance"]
    magnitude_tolerance = config["scurve_magnitude_tolerance"]
    max_net = config["scurve_net_change"]
    window = config["scurve_window"]
    last = len(entries) - 1

    result: list[TurningPoint] = []
    i = 0
    while i < len(turns):
        if i + 1 < len(turns):
            a, b = turns[i], turns[i + 1]
            gap = entries[b.point_index].cumulative_distance - entries[a.point_index].cumulative_distance
            if (a.turn_angle * b.turn_angle < 0
                    and abs(abs(a.turn_angle) - abs(b.turn_angle)) <= magnitude_tolerance
                    and gap <= max_gap):
                before_idx = max(a.point_index - window, 0)
                after_idx = min(b.point_index + window, last)
                before = bearing(entries[before_idx].point, entries[a.point_index].point)
                after = bearing(entries[b.point_index].point, entries[after_idx].point)
                if angle_difference(before, after) <= max_net:
                    i += 2
                    continue
        result.append(turns[i])
        i += 1
    return result


def leg_label(index: int, count: int) -> str:
    origin = "Start" if index == 0 else f"Waypoint {index}"
    dest = "End" if index == count - 1 else f"Waypoint {index + 1}"
    return f"{origin} → {dest}"


def compute_segment_ranges(entries: list[PointSetEntry],
                           junctions: list[int]) -> list[SegmentRange]:
    """Partition a resampled multi-leg path by its junction vertices.

    `junctions` are indices into the original (unresampled) path. A junction
    whose vertex was dropped as a repeat of the one before it is cut at the
    nearest earlier original vertex, so there is always one range per leg.
    """
    if not entries:
        return []
    position = {e.original_index: i for i, e in enumerate(entries) if e.is_original}
    originals = sorted(position)
    cuts = []
    for j in junctions:
        if j in position:
            cuts.append(position[j])
            continue
        earlier = [k for k in originals if k <= j]
        cuts.append(position[earlier[-1]] if earlier else 0)

    ranges = []
    start = 0
    count = len(cuts) + 1
    for index, cut in enumerate(cuts):
        ranges.append(SegmentRange(start, cut, leg_label(index, count)))
        start = cut
    ranges.append(SegmentRange(start, len(entries) - 1, leg_label(len(cuts), count)))
    return ranges


def slice_point_set(entries: list[PointSetEntry], start: int, end: int) -> list[PointSetEntry]:
    """Entries start..end inclusive, with distances measured from start"""
    if not entries:
        return []
    base = entries[start].cumulative_distance
    return [
        PointSetEntry(e.point, e.cumulative_distance - base, e.is_original, e.original_index)
        for e in entries[start:end + 1]
    ]


def straight_profile(entries: list[PointSetEntry], start: int, count: int) -> tuple[float, float]:
    """(max, mean) bearing change between consecutive pieces ahead of start"""
    end = min(start + count, len(entries) - 1)
    bearings = [
        bearing(entries[k].point, entries[k + 1].point)
        for k in range(start, end)
        if distance(entries[k].point, entries[k + 1].point) > 0
    ]
    changes = [angle_difference(a, b) for a, b in zip(bearings, bearings[1:])]
    if not changes:
        return 0.0, 0.0
    return max(changes), sum(changes) / len(changes)
