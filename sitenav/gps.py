"""Position streams, fix filtering and recording/playback."""

import json
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Iterator, Optional

from .config import merged_config
from .geo import bearing, destination_point, distance
from .logger import Logger
from .models import Location, Point


class Subscription:
    """Handle returned by EventStream.subscribe"""

    def __init__(self, stream: "EventStream", callback: Callable):
        self.stream = stream
        self.callback = callback
        self.active = True

    def cancel(self):
        if self.active:
            self.active = False
            self.stream._remove(self)


class EventStream:
    """Push-based stream of fixes or compass headings"""

    def __init__(self):
        self._subscribers: list[Subscription] = []

    def subscribe(self, callback: Callable) -> Subscription:
        sub = Subscription(self, callback)
        self._subscribers.append(sub)
        return sub

    def _remove(self, sub: Subscription):
        if sub in self._subscribers:
            self._subscribers.remove(sub)

    def push(self, value):
        for sub in list(self._subscribers):
            if sub.active:
                sub.callback(value)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)


@dataclass
class FixCheck:
    valid: bool
    reason: str
    stationary: bool = False
    jump: float = 0.0


class FixFilter:
    """Judges each fix on its own against the recently accepted ones"""

    def __init__(self, config: Optional[dict] = None, logger: Optional[Logger] = None):
        self.config = merged_config(config)
        self.logger = logger
        self.reset()

    def reset(self):
        self.history: deque[Location] = deque(maxlen=self.config["fix_history_size"])
        self.dropped = 0
        self.rejected_in_row = 0  # consecutive position rejections

    def _reject(self, reason: str, fix: Location, jump: float = 0.0) -> FixCheck:
        self.dropped += 1
        if self.logger:
            self.logger.log("Dropped fix", {
                "reason": reason, "lng": fix.lng, "lat": fix.lat,
                "accuracy": fix.accuracy, "jump": round(jump, 1),
            })
        return FixCheck(False, reason, jump=jump)

    def _implausible(self, reason: str, fix: Location, jump: float) -> FixCheck:
        """Reject a fix that disagrees with the history, unless the history
        has disagreed with every fix for a while"""
        self.rejected_in_row += 1
        if self.rejected_in_row < self.config["fix_reanchor_rejections"]:
            return self._reject(reason, fix, jump)
        if self.logger:
            self.logger.log("Re-anchored fix history", {
                "reason": reason, "rejected": self.rejected_in_row, "lng": fix.lng, "lat": fix.lat,
            })
        self._anchor(fix)
        return FixCheck(True, "reanchored", jump=jump)

    def check(self, fix: Location) -> FixCheck:
        if fix.accuracy is not None and fix.accuracy > self.config["max_accuracy"]:
            return self._reject("poor_accuracy", fix)

        if not self.history:
            self._anchor(fix)
            return FixCheck(True, "first_fix")

        last = self.history[-1]
        jump = distance(last.point, fix.point)
        if jump < self.config["min_movement"]:
            self.rejected_in_row = 0
            return FixCheck(True, "stationary", stationary=True, jump=jump)

        dt = None
        if fix.timestamp is not None and last.timestamp is not None:
            dt = fix.timestamp - last.timestamp
        plausible = dt is not None and dt > 0.1 and jump / dt <= self.config["max_speed"]

        if jump > self.config["max_jump"]:
            if plausible:
                # Coverage gap: the move fits the elapsed time, start over from here
                self._anchor(fix)
                return FixCheck(True, "gap", jump=jump)
            return self._implausible("jump_too_large", fix, jump)

        if dt is not None and dt > 0.1 and not plausible:
            return self._implausible("speed_too_high", fix, jump)

        if len(self.history) >= 3:
            average = sum(distance(h.point, fix.point) for h in self.history) / len(self.history)
            if average > self.config["max_jump"] * 0.8:
                return self._implausible("inconsistent_with_history", fix, jump)

        self.rejected_in_row = 0
        self.history.append(fix)
        return FixCheck(True, "moving", jump=jump)

    def _anchor(self, fix: Location):
        """Drop the history and judge later fixes against this one"""
        self.history.clear()
        self.history.append(fix)
        self.rejected_in_row = 0


class FixFailure(Enum):
    TIMEOUT = "timeout"
    PERMISSION_DENIED = "permission_denied"
    UNAVAILABLE = "unavailable"


@dataclass
class FixResult:
    """One acquisition attempt: a fix or the reason there is none"""
    location: Optional[Location] = None
    failure: Optional[FixFailure] = None

    @property
    def ok(self) -> bool:
        return self.location is not None


def _failure_from_status(status: Optional[str]) -> FixFailure:
    text = (status or "").lower()
    if "timeout" in text or "timed out" in text:
        return FixFailure.TIMEOUT
    if "permission" in text or "denied" in text:
        return FixFailure.PERMISSION_DENIED
    return FixFailure.UNAVAILABLE


class GPSRecorder:
    """Records every fix pushed through a stream to a JSON trace"""

    def __init__(self, stream: EventStream, record_path: str):
        self.record_path = record_path
        self.trace: list[dict] = []
        self.start_time = time.time()
        self.subscription = stream.subscribe(self.record)

    def record(self, location: Optional[Location], status: str = "ok"):
        self.trace.append({
            "elapsed": time.time() - self.start_time,
            "timestamp": time.time(),
            "location": location.to_dict() if location else None,
            "status": status,
        })

    def save(self):
        """Save trace to file"""
        self.subscription.cancel()
        with open(self.record_path, "w") as f:
            json.dump({
                "recorded_at": datetime.now().isoformat(),
                "trace": self.trace
            }, f, indent=2)
        print(f"GPS trace saved to {self.record_path} ({len(self.trace)} entries)")


class GPSPlayback:
    """Plays back a recorded GPS trace into a stream"""

    def __init__(self, playback_path: str):
        self.playback_path = playback_path
        self.trace: list[dict] = []
        self.index = 0
        self.consecutive_failures = 0

        with open(playback_path) as f:
            data = json.load(f)
            self.trace = data["trace"]
        print(f"Loaded GPS trace from {playback_path} ({len(self.trace)} entries)")

    def next_fix(self) -> Optional[FixResult]:
        """Next entry of the trace, or None when it is exhausted"""
        if self.index >= len(self.trace):
            return None

        entry = self.trace[self.index]
        self.index += 1

        if entry.get("location"):
            location = Location.from_dict(entry["location"])
            if location.timestamp is None:
                location.timestamp = entry.get("elapsed")
            self.consecutive_failures = 0
            return FixResult(location)

        self.consecutive_failures += 1
        return FixResult(failure=_failure_from_status(entry.get("status")))

    def play(self, stream: EventStream, on_time: Optional[Callable[[float], None]] = None) -> int:
        """Push every recorded fix; returns how many were delivered"""
        delivered = 0
        while True:
            result = self.next_fix()
            if result is None:
                break
            if not result.ok:
                continue
            if on_time and result.location.timestamp is not None:
                on_time(result.location.timestamp)
            stream.push(result.location)
            delivered += 1
        return delivered

    def is_finished(self) -> bool:
        """Check if playback is complete"""
        return self.index >= len(self.trace)

    def get_status(self) -> str:
        progress = f"{self.index}/{len(self.trace)}"
        if self.consecutive_failures == 0:
            return f"Playback OK ({progress})"
        else:
            return f"Playback: {self.consecutive_failures} failures ({progress})"


def simulate_track(points: list[Point], speed: float = 1.5, interval: float = 1.0,
                   start_time: float = 0.0, accuracy: float = 5.0) -> Iterator[Location]:
    """Fixes of someone moving exactly along points at a constant speed"""
    if not points:
        return
    step = speed * interval
    t = start_time
    yield Location(points[0].lng, points[0].lat, accuracy, None, t)

    carry = 0.0
    for a, b in zip(points, points[1:]):
        seg_len = distance(a, b)
        if seg_len == 0:
            continue
        heading = bearing(a, b)
        along = step - carry
        while along <= seg_len:
            t += interval
            p = destination_point(a, heading, along)
            yield Location(p.lng, p.lat, accuracy, heading, t)
            along += step
        carry = seg_len - (along - step)

    last = points[-1]
    t += interval
    yield Location(last.lng, last.lat, accuracy, None, t)
