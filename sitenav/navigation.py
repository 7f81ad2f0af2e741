"""Live turn-by-turn navigation session."""

import math
import time
from collections import deque
from enum import Enum
from typing import Callable, Optional

from .config import merged_config
from .geo import (angle_difference, bearing, bearing_to_compass, distance,
                  normalize_angle, relative_direction, turn_angle)
from .gps import EventStream, FixFilter, Subscription
from .logger import Logger
from .models import (EventType, GuidanceEvent, Location, PlannedPath, Point,
                     PointSetEntry, SegmentRange, TurningPoint, TurnType)
from .planner import RoutePlanner
from .timers import Timer, TimerQueue
from .turns import (compute_segment_ranges, detect_turning_points, resample_path,
                    slice_point_set, straight_profile)


class NavState(Enum):
    NOT_STARTED = "not_started"
    APPROACHING_START = "approaching_start"
    ACTIVE_SEGMENT = "active_segment"
    DEVIATED = "deviated"
    SEGMENT_COMPLETE = "segment_complete"
    COMPLETED = "completed"


TURN_EVENTS = {
    TurnType.LEFT: EventType.LEFT,
    TurnType.RIGHT: EventType.RIGHT,
    TurnType.UTURN: EventType.UTURN,
}

TURN_PHRASES = {
    TurnType.LEFT: "turn left",
    TurnType.RIGHT: "turn right",
    TurnType.UTURN: "make a U-turn",
}


class SpeedEstimator:
    """Trailing speed over the last few fixes, blended and clamped"""

    def __init__(self, config: dict):
        self.config = config
        self.history: deque[tuple[float, Point]] = deque(maxlen=config["speed_history_size"])
        self.speed = config["speed_initial"]

    def reset(self):
        self.history.clear()
        self.speed = self.config["speed_initial"]

    def clear_history(self):
        self.history.clear()

    def update(self, point: Point, timestamp: float) -> float:
        self.history.append((timestamp, point))
        if len(self.history) < 2:
            return self.speed

        oldest_time = self.history[0][0]
        dt = timestamp - oldest_time
        travelled = sum(distance(a[1], b[1]) for a, b in zip(self.history, list(self.history)[1:]))
        if dt > self.config["speed_min_dt"] and travelled > self.config["speed_min_distance"]:
            blend = self.config["speed_blend"]
            sample = travelled / dt
            speed = (1 - blend) * self.speed + blend * sample
            self.speed = min(max(speed, self.config["speed_min"]), self.config["speed_max"])
        return self.speed


class HeadingTracker:
    """Display heading before the route is joined.

    Blends the compass with the direction of movement, resolves a compass
    mounted back to front, and smooths the result.
    """

    def __init__(self, config: dict):
        self.config = config
        self.reset()

    def reset(self):
        self.compass: Optional[float] = None
        self.offset = 0.0
        self.calibrated = False
        self.anchor: Optional[Point] = None
        self.last_point: Optional[Point] = None
        self.heading: Optional[float] = None

    def set_compass(self, degrees: Optional[float]):
        self.compass = None if degrees is None else degrees % 360

    def _calibrate(self, point: Point):
        if self.calibrated or self.compass is None:
            return
        if self.anchor is None:
            self.anchor = point
            return
        if distance(self.anchor, point) < self.config["heading_calibration_distance"]:
            return

        diff = angle_difference(self.compass, bearing(self.anchor, point))
        if diff >= self.config["heading_calibration_flip"]:
            self.offset = 180.0
            self.calibrated = True
        elif diff <= self.config["heading_calibration_match"]:
            self.offset = 0.0
            self.calibrated = True
        else:
            self.anchor = point

    def update(self, point: Point, gps_heading: Optional[float] = None) -> Optional[float]:
        movement = None
        if self.last_point is None:
            self.last_point = point
        elif distance(self.last_point, point) >= self.config["heading_min_movement"]:
            movement = bearing(self.last_point, point)
            self.last_point = point

        self._calibrate(point)

        compass = self.compass if self.compass is not None else gps_heading
        if compass is not None:
            compass = (compass + self.offset) % 360

        if compass is not None and movement is not None:
            w = self.config["heading_compass_weight"]
            x = w * math.cos(math.radians(compass)) + (1 - w) * math.cos(math.radians(movement))
            y = w * math.sin(math.radians(compass)) + (1 - w) * math.sin(math.radians(movement))
            target = math.degrees(math.atan2(y, x)) % 360
        elif compass is not None:
            target = compass
        else:
            target = movement

        if target is None:
            return self.heading
        if self.heading is None:
            self.heading = target
        else:
            alpha = self.config["heading_smoothing"]
            self.heading = (self.heading + alpha * normalize_angle(target - self.heading)) % 360
        return self.heading


class NavigationSession:
    """Drives guidance for one planned path from a live position stream.

    All state belongs to the session; start() resets it and stop() detaches
    from the streams and cancels pending timers before returning.
    """

    def __init__(self, config: Optional[dict] = None,
                 speak: Optional[Callable[[str], None]] = None,
                 on_event: Optional[Callable[[GuidanceEvent], None]] = None,
                 on_state: Optional[Callable[[NavState, int], None]] = None,
                 timers: Optional[TimerQueue] = None,
                 logger: Optional[Logger] = None,
                 clock: Optional[Callable[[], float]] = None,
                 planner: Optional[RoutePlanner] = None):
        self.config = merged_config(config)
        self.speak = speak
        self.on_event = on_event
        self.on_state = on_state
        self.timers = timers or TimerQueue()
        self.logger = logger
        self.clock = clock or time.monotonic
        self.planner = planner  # reroutes after a deviation when set
        self.fix_filter = FixFilter(self.config, logger)
        self.speed = SpeedEstimator(self.config)
        self.heading = HeadingTracker(self.config)
        self._subscriptions: list[Subscription] = []
        self._timers: list[Timer] = []
        self.reset()

    def reset(self):
        self.state = NavState.NOT_STARTED
        self.path: Optional[PlannedPath] = None
        self.point_set: list[PointSetEntry] = []
        self.ranges: list[SegmentRange] = []
        self.legs: list[list[PointSetEntry]] = []
        self.leg_index = 0
        self.entries: list[PointSetEntry] = []
        self.turns: list[TurningPoint] = []
        self.snapped_index = -1
        self.start_reached = False
        self.last_fix: Optional[Location] = None
        self.now = 0.0
        self.travelled = 0.0
        self.distance_to_start: Optional[float] = None
        self.current_heading: Optional[float] = None

        self.deviation_pending_since: Optional[float] = None
        self.deviation_section: Optional[int] = None
        self.deviation_track: list[Point] = []
        self.last_deviation_track: list[Point] = []
        self._deviation_timer: Optional[Timer] = None

        self.transition_pending = False
        self.previous_leg_bearing: Optional[float] = None

        self.pre_announced: set[int] = set()
        self.announced: set[int] = set()
        self.last_straight_time: Optional[float] = None
        self.last_straight_kind: Optional[str] = None
        self._last_spoken: dict[str, float] = {}

        self.events: list[GuidanceEvent] = []  # spoken announcements
        self.transitions: list[tuple[NavState, int]] = []

        self.fix_filter.reset()
        self.speed.reset()
        self.heading.reset()

    # Lifecycle

    def start(self, path: PlannedPath, positions: EventStream,
              compass: Optional[EventStream] = None) -> bool:
        self.stop()
        if path is None or not path.points:
            self._log("Cannot start navigation without a path")
            return False

        self.path = path
        self.point_set = resample_path(path.points, self.config["resample_spacing"])
        self.ranges = compute_segment_ranges(self.point_set, path.junctions)
        self.legs = [slice_point_set(self.point_set, r.start_index, r.end_index) for r in self.ranges]
        self._load_leg(0)

        self._subscriptions.append(positions.subscribe(self.on_fix))
        if compass is not None:
            self._subscriptions.append(compass.subscribe(self.on_heading))

        self._set_state(NavState.APPROACHING_START)
        self._log("Navigation started", {
            "legs": len(self.legs),
            "points": len(self.point_set),
            "distance": round(path.total_distance, 1),
        })
        return True

    def stop(self):
        """Detach synchronously; nothing fires after this returns"""
        was_running = self.state != NavState.NOT_STARTED
        self._detach()
        self.reset()
        if was_running:
            self._log("Navigation stopped")

    def _detach(self):
        for sub in self._subscriptions:
            sub.cancel()
        self._subscriptions.clear()
        for timer in self._timers:
            timer.cancel()
        self._timers.clear()
        self._deviation_timer = None

    def _schedule(self, delay: float, callback: Callable[[], None]) -> Timer:
        # Only handles that may still fire are kept for _detach
        self._timers = [t for t in self._timers if not t.cancelled and t.when > self.now]
        timer = self.timers.call_at(self.now + delay, callback)
        self._timers.append(timer)
        return timer

    def tick(self, now: float):
        """Advance time without a fix so pending timers can fire"""
        if self.state in (NavState.NOT_STARTED, NavState.COMPLETED):
            return
        self.now = max(self.now, now)
        self.timers.advance(self.now)

    def _load_leg(self, index: int):
        self.leg_index = index
        self.entries = self.legs[index]
        self.turns = detect_turning_points(self.entries, self.config)
        self.snapped_index = -1
        self.pre_announced.clear()
        self.announced.clear()
        self.speed.clear_history()
        self._log("Leg loaded", {
            "leg": index,
            "label": self.ranges[index].label,
            "points": len(self.entries),
            "turns": len(self.turns),
        })

    def _set_state(self, state: NavState):
        self.state = state
        self.transitions.append((state, self.leg_index))
        if self.on_state:
            self.on_state(state, self.leg_index)

    def _log(self, message: str, data: Optional[dict] = None):
        if self.logger:
            self.logger.log(message, data)

    # Stream callbacks

    def on_heading(self, degrees: Optional[float]):
        self.heading.set_compass(degrees)

    def on_fix(self, fix: Location):
        if self.state in (NavState.NOT_STARTED, NavState.COMPLETED):
            return
        now = fix.timestamp if fix.timestamp is not None else self.clock()
        self.now = max(self.now, now)
        self.timers.advance(self.now)
        if self.state in (NavState.NOT_STARTED, NavState.COMPLETED):
            return

        check = self.fix_filter.check(fix)
        if not check.valid:
            return
        self.last_fix = fix
        if not check.stationary:
            self.speed.update(fix.point, self.now)

        if not self.start_reached:
            self.current_heading = self.heading.update(fix.point, fix.heading)

        index = self._snap(fix.point)

        if not self.start_reached:
            self.distance_to_start = distance(fix.point, self.entries[0].point)
            if index is None:
                return
            self.start_reached = True
            self.last_straight_time = self.now
            self._emit(EventType.STRAIGHT, 0.0, "Route joined, follow the guidance")
            self._set_state(NavState.ACTIVE_SEGMENT)

        if index is None:
            self._off_route(fix)
        else:
            self._on_snapped(index, fix)

    # Snapping

    def _snap(self, point: Point) -> Optional[int]:
        """Nearest point of the current leg within the snap threshold"""
        if not self.entries:
            return None
        deviated = self.state == NavState.DEVIATED
        if self.snapped_index < 0 or deviated:
            lo, hi = 0, len(self.entries) - 1
        else:
            lo, hi = self._section_window(self.snapped_index)

        best = None
        best_dist = float("inf")
        for i in range(lo, hi + 1):
            d = distance(point, self.entries[i].point)
            if d < best_dist:
                best, best_dist = i, d
        if best is None:
            return None

        if deviated or self._near_turn(best):
            threshold = self.config["snap_threshold_turning"]
        else:
            threshold = self.config["snap_threshold"]
        return best if best_dist <= threshold else None

    def _section_window(self, index: int) -> tuple[int, int]:
        """Index range of the section around index, reaching into the next
        section when a turn is close"""
        last = len(self.entries) - 1
        lo = 0
        hi = last
        for turn in self.turns:
            if turn.point_index <= index:
                lo = turn.point_index
            elif hi == last:
                hi = turn.point_index
        if hi - index <= self.config["section_lookahead_points"]:
            following = [t.point_index for t in self.turns if t.point_index > hi]
            hi = following[0] if following else last
        return lo, hi

    def _near_turn(self, index: int) -> bool:
        zone = self.config["turn_zone_points"]
        return any(abs(t.point_index - index) <= zone for t in self.turns)

    def _section_id(self, index: int) -> int:
        """Index of the turn that closes the section holding index"""
        for turn in self.turns:
            if turn.point_index > index:
                return turn.point_index
        return len(self.entries) - 1

    # Deviation

    def _off_route(self, fix: Location):
        if self._leg_end_reached(fix):
            self._complete_leg()
            return

        if self.state == NavState.DEVIATED:
            self.deviation_track.append(fix.point)
            self._replan(fix)
            return
        if self.state != NavState.ACTIVE_SEGMENT:
            return

        delay = self.config["deviation_confirm_seconds"]
        if self.deviation_pending_since is None:
            self.deviation_pending_since = self.now
            self.deviation_section = self._section_id(max(self.snapped_index, 0))
            self.deviation_track = []
            if self.snapped_index >= 0:
                self.deviation_track.append(self.entries[self.snapped_index].point)
            self.deviation_track.append(fix.point)
            if delay <= 0:
                self._confirm_deviation()
            else:
                self._deviation_timer = self._schedule(delay, self._confirm_deviation)
            return

        self.deviation_track.append(fix.point)
        if self.now - self.deviation_pending_since >= delay:
            self._confirm_deviation()

    def _confirm_deviation(self):
        if self.deviation_pending_since is None or self.state != NavState.ACTIVE_SEGMENT:
            return
        if self._deviation_timer is not None:
            self._deviation_timer.cancel()
            self._deviation_timer = None
        self._set_state(NavState.DEVIATED)
        self._emit(EventType.DEVIATION, 0.0, "You have left the route")
        self._log("Deviation confirmed", {
            "leg": self.leg_index,
            "since": self.deviation_pending_since,
            "section": self.deviation_section,
        })

    def _clear_pending_deviation(self):
        if self._deviation_timer is not None:
            self._deviation_timer.cancel()
            self._deviation_timer = None
        self.deviation_pending_since = None

    def _replan(self, fix: Location) -> bool:
        """Route from a deviated fix on another road to the end of this leg.

        Only tried while the fix is within the snap threshold of some edge of
        the network; the rest of the leg is replaced by the new route.
        """
        if self.planner is None or not self.config["replan_on_deviation"]:
            return False
        if not self.planner.ensure_graph().ok:
            return False
        nearest = self.planner.find_nearest_projection(fix.point)
        if nearest is None or nearest.distance > self.config["snap_threshold"]:
            return False

        target = self.entries[-1].point
        result = self.planner.plan_route(fix.point, target)
        if not result.ok:
            self._log("Replan failed", {"leg": self.leg_index, "failure": result.failure.value})
            return False

        self.legs[self.leg_index] = resample_path(result.path.points, self.config["resample_spacing"])
        self._clear_pending_deviation()
        self.last_deviation_track = self.deviation_track
        self.deviation_track = []
        self._load_leg(self.leg_index)
        self._set_state(NavState.ACTIVE_SEGMENT)
        self._emit(EventType.REROUTED, result.path.total_distance, "Route recalculated")
        self._log("Replanned leg", {
            "leg": self.leg_index,
            "distance": round(result.path.total_distance, 1),
            "points": len(self.entries),
        })
        return True

    # Progress

    def _on_snapped(self, index: int, fix: Location):
        pending = self.deviation_pending_since is not None
        self._clear_pending_deviation()

        if self.state == NavState.DEVIATED:
            if self._section_id(index) != self.deviation_section:
                self._reset_guidance(index)
            self.last_deviation_track = self.deviation_track
            self.deviation_track = []
            self._set_state(NavState.ACTIVE_SEGMENT)
            self._emit(EventType.REJOINED, 0.0, "Back on route")
            self._log("Rejoined route", {"index": index, "track": len(self.last_deviation_track)})
        elif pending:
            self.deviation_track = []

        if self.snapped_index >= 0 and index > self.snapped_index:
            self.travelled += (self.entries[index].cumulative_distance -
                               self.entries[self.snapped_index].cumulative_distance)
        self.snapped_index = index

        if self.transition_pending:
            self._check_transition(index)

        if self._leg_end_reached(fix, index):
            self._complete_leg()
            return

        self._update_guidance(index)

    def _leg_end_reached(self, fix: Location, index: Optional[int] = None) -> bool:
        if not self.start_reached or not self.entries:
            return False
        tail = self.config["completion_tail_points"]
        if index is not None and index >= len(self.entries) - tail:
            return True
        return distance(fix.point, self.entries[-1].point) <= self.config["completion_distance"]

    def _complete_leg(self):
        self._clear_pending_deviation()
        self._set_state(NavState.SEGMENT_COMPLETE)
        finished = self.leg_index
        end = self.entries[-1].cumulative_distance if self.entries else 0.0
        self._log("Leg complete", {"leg": finished, "distance": round(end, 1)})

        if finished + 1 < len(self.legs):
            # A zero-length leg keeps the bearing of the leg before it
            if len(self.entries) >= 2:
                self.previous_leg_bearing = bearing(self.entries[-2].point, self.entries[-1].point)
            self._emit(EventType.ARRIVAL, 0.0, f"Arrived at waypoint {finished + 1}")
            self._load_leg(finished + 1)
            self.transition_pending = True
            self._set_state(NavState.ACTIVE_SEGMENT)
            return

        self._emit(EventType.ARRIVAL, 0.0, "You have arrived at your destination")
        self._set_state(NavState.COMPLETED)
        self._detach()
        self._log("Navigation complete", {"travelled": round(self.travelled, 1)})

    def _check_transition(self, index: int):
        """Turn needed where one leg hands over to the next"""
        self.transition_pending = False
        if self.previous_leg_bearing is None or len(self.entries) < 2:
            return
        if index > self.config["transition_max_index"]:
            return

        angle = turn_angle(self.previous_leg_bearing, bearing(self.entries[0].point, self.entries[1].point))
        magnitude = abs(angle)
        if magnitude <= self.config["turn_threshold"]:
            return
        if magnitude >= self.config["uturn_threshold"]:
            turn_type = TurnType.UTURN
        else:
            turn_type = TurnType.RIGHT if angle > 0 else TurnType.LEFT
        label = self.ranges[self.leg_index].label
        self._emit(TURN_EVENTS[turn_type], 0.0,
                   f"{TURN_PHRASES[turn_type].capitalize()} to continue ({label})")

    def _reset_guidance(self, index: int):
        """Forget announcements for turns still ahead of index"""
        self.pre_announced = {i for i in self.pre_announced if i <= index}
        self.announced = {i for i in self.announced if i <= index}

    # Guidance

    def _next_turn(self, index: int) -> Optional[TurningPoint]:
        for turn in self.turns:
            if turn.point_index > index:
                return turn
            if turn.point_index == index and turn.point_index not in self.announced:
                return turn
        return None

    def _turn_due(self, turn: TurningPoint, index: int, dist: float) -> bool:
        if turn.turn_type == TurnType.UTURN:
            return index >= turn.point_index or dist <= self.config["uturn_announce_distance"]
        return index >= turn.point_index - 1 or dist <= self.config["turn_announce_distance"]

    def _update_guidance(self, index: int):
        here = self.entries[index].cumulative_distance
        turn = self._next_turn(index)
        if turn is None:
            self._straight_prompt(index, self.entries[-1].cumulative_distance - here)
            return

        tp = turn.point_index
        dist = self.entries[tp].cumulative_distance - here
        event_type = TURN_EVENTS[turn.turn_type]
        phrase = TURN_PHRASES[turn.turn_type]

        if tp not in self.announced and self._turn_due(turn, index, dist):
            self.announced.add(tp)
            self._emit(event_type, dist, phrase.capitalize(), point_index=tp)
            return

        previous = 0
        for other in self.turns:
            if other.point_index < tp:
                previous = other.point_index
        between = self.entries[tp].cumulative_distance - self.entries[previous].cumulative_distance

        if (tp not in self.pre_announced and tp not in self.announced
                and between >= self.config["preannounce_min_distance"]):
            target = between * self.config["preannounce_fraction"]
            window = self.config["preannounce_window"]
            if target * (1 - window) < dist <= target * (1 + window):
                self.pre_announced.add(tp)
                self._emit(event_type, dist, f"In {round(dist)} meters, {phrase}",
                           point_index=tp, preliminary=True)
                return

        if dist > self.config["straight_min_turn_distance"]:
            self._straight_prompt(index, dist)

    def _straight_prompt(self, index: int, ahead: float):
        """Occasional reassurance on long straight stretches"""
        predicted = self.speed.speed * self.config["straight_lookahead_seconds"]
        if ahead < predicted + self.config["straight_buffer"]:
            return
        if (self.last_straight_time is not None
                and self.now - self.last_straight_time < self.config["straight_interval"]):
            return
        if ahead < self.config["straight_min_length"]:
            return

        max_change, mean_change = straight_profile(self.entries, index, self.config["straight_check_points"])
        regular = (max_change < self.config["straight_max_change"]
                   and mean_change < self.config["straight_mean_change"])
        kind = "regular" if regular else "irregular"
        if (kind == self.last_straight_kind and self.last_straight_time is not None
                and self.now - self.last_straight_time < self.config["straight_repeat_interval"]):
            return

        if regular:
            message = f"Continue straight for {round(ahead)} meters"
        else:
            message = f"Follow the road for {round(ahead)} meters"
        self.last_straight_time = self.now
        self.last_straight_kind = kind
        self._emit(EventType.STRAIGHT, ahead, message)

    def _emit(self, event_type: EventType, dist: float, message: str,
              spoken: bool = True, point_index: Optional[int] = None,
              preliminary: bool = False) -> GuidanceEvent:
        event = GuidanceEvent(event_type, dist, message, spoken, self.leg_index, self.now,
                              point_index, preliminary)
        if event.spoken:
            last = self._last_spoken.get(message)
            if last is not None and self.now - last < self.config["speech_dedupe_seconds"]:
                event.spoken = False
            else:
                self._last_spoken[message] = self.now

        if event.spoken:
            self.events.append(event)
            if self.speak:
                self.speak(message)
        if self.on_event:
            self.on_event(event)
        self._log("Guidance", event.to_dict())
        return event

    # Snapshot

    def get_state(self) -> dict:
        """Current state as dict for logging and display"""
        state = {
            "state": self.state.value,
            "leg": self.leg_index,
            "leg_count": len(self.legs),
            "snapped_index": self.snapped_index,
            "travelled": round(self.travelled, 1),
            "speed": round(self.speed.speed, 2),
            "deviation_track": len(self.deviation_track),
        }
        if self.ranges:
            state["label"] = self.ranges[self.leg_index].label
        if self.last_fix:
            state["location"] = {"lng": self.last_fix.lng, "lat": self.last_fix.lat,
                                 "accuracy": self.last_fix.accuracy}

        if not self.start_reached:
            state["heading"] = self.current_heading
            if self.last_fix and self.entries:
                to_start = bearing(self.last_fix.point, self.entries[0].point)
                state["distance_to_start"] = self.distance_to_start
                state["start_direction"] = bearing_to_compass(to_start)
                if self.current_heading is not None:
                    state["start_relative"] = relative_direction(self.current_heading, to_start)
        elif self.entries and self.snapped_index >= 0:
            index = self.snapped_index
            here = self.entries[index].cumulative_distance
            state["remaining"] = round(self.entries[-1].cumulative_distance - here, 1)
            if index + 1 < len(self.entries):
                state["heading"] = bearing(self.entries[index].point, self.entries[index + 1].point)
            turn = self._next_turn(index)
            if turn is not None:
                state["next_turn"] = turn.turn_type.value
                state["distance_to_turn"] = round(
                    self.entries[turn.point_index].cumulative_distance - here, 1)
        return state
