"""Main sitenav application."""

import time
from typing import Iterable, Optional, Union

from .audio import Audio
from .config import merged_config
from .geo import bearing_to_compass, bearing
from .gps import EventStream, GPSPlayback, GPSRecorder
from .graph import GraphBuildResult
from .kml import KMLLoader, KMLLoadResult, Transform
from .logger import Logger
from .models import GuidanceEvent, Location, PlannedPath, Point, RouteResult
from .navigation import NavigationSession, NavState
from .planner import RoutePlanner
from .timers import TimerQueue
from .turns import detect_turning_points, resample_path, compute_segment_ranges

FixSource = Union[GPSPlayback, Iterable[Location]]


class Navigator:
    """Main application: import, plan, then guide along the plan"""

    def __init__(self, log_path: Optional[str] = None, speak=None,
                 config: Optional[dict] = None,
                 transform: Optional[Transform] = None,
                 echo: bool = True):
        self.config = merged_config(config)
        self.logger = Logger(log_path, echo=echo)
        self.speak = speak or Audio.speak
        self.loader = KMLLoader(transform, self.config, self.logger)
        self.planner = RoutePlanner(config=self.config, logger=self.logger)
        self.timers = TimerQueue()
        self.positions = EventStream()
        self.compass = EventStream()
        self.session = NavigationSession(
            self.config,
            speak=self.speak,
            on_event=self._on_event,
            on_state=self._on_state,
            timers=self.timers,
            logger=self.logger,
            planner=self.planner,
        )

        self.lines: list[list[Point]] = []
        self.names: list[str] = []
        self.markers: dict[str, Point] = {}
        self.path: Optional[PlannedPath] = None
        self.recorder: Optional[GPSRecorder] = None
        self.events: list[GuidanceEvent] = []
        self.fixes_delivered = 0
        self.started_at = 0.0

    def load(self, source: str) -> KMLLoadResult:
        """Import network lines from a KML/KMZ path or URL"""
        result = self.loader.load(source)
        if not result.ok:
            self.logger.log("KML load failed", {"source": source, "detail": result.detail})
            print(f"Could not load {source}: {result.detail}")
            return result

        self.lines = result.lines
        self.names = result.names
        self.markers = result.markers
        self.planner.set_lines(self.lines)
        self.path = None
        print(f"Loaded {len(self.lines)} lines from {source}")
        return result

    def build(self) -> GraphBuildResult:
        result = self.planner.ensure_graph()
        if result.ok:
            print(f"Graph: {result.graph.number_of_nodes()} nodes, "
                  f"{result.graph.number_of_edges()} edges")
        else:
            print(f"Could not build graph: {result.detail}")
        return result

    def plan(self, start: Point, end: Point, waypoints: Optional[list[Point]] = None) -> RouteResult:
        points = [start] + list(waypoints or []) + [end]
        result = self.planner.plan_multi(points)
        if not result.ok:
            print(f"Route planning failed: {result.detail}")
            return result

        self.path = result.path
        print(f"Route planned: {self.path.leg_count} legs, {self.path.total_distance:.0f}m")
        for leg in self.path.legs:
            if not leg.ok:
                print(f"  Leg {leg.index + 1} has no route ({leg.failure.value}), using a straight line")
        return result

    def record(self, record_path: str):
        """Record every fix delivered during navigation"""
        self.recorder = GPSRecorder(self.positions, record_path)

    def navigate(self, source: FixSource) -> bool:
        """Feed fixes through a session; True when the route was completed"""
        if self.path is None:
            print("No route to navigate")
            return False
        if not self.session.start(self.path, self.positions, self.compass):
            return False

        self.started_at = time.time()
        if isinstance(source, GPSPlayback):
            self.fixes_delivered += source.play(self.positions, on_time=self.session.tick)
            self.logger.log("Playback finished", {"status": source.get_status()})
        else:
            for fix in source:
                self.positions.push(fix)
                self.fixes_delivered += 1
                if self.session.state == NavState.COMPLETED:
                    break
        return self.session.state == NavState.COMPLETED

    def display_route_preview(self):
        """Print the planned route leg by leg with its turns"""
        if self.path is None:
            print("No route to preview")
            return

        print("\n" + "=" * 60)
        print("ROUTE PREVIEW")
        print("=" * 60)
        print(f"\nTotal distance: {self.path.total_distance:.0f}m ({self.path.total_distance / 1000:.2f}km)")
        print(f"Legs: {self.path.leg_count}")
        if self.path.degraded:
            print("Warning: some legs fall back to straight lines")

        entries = resample_path(self.path.points, self.config["resample_spacing"])
        for segment in compute_segment_ranges(entries, self.path.junctions):
            leg = entries[segment.start_index:segment.end_index + 1]
            if len(leg) < 2:
                continue
            base = leg[0].cumulative_distance
            print("\n" + "-" * 60)
            print(f"{segment.label} ({leg[-1].cumulative_distance - base:.0f}m)")
            print("-" * 60)
            heading = bearing_to_compass(bearing(leg[0].point, leg[1].point))
            print(f"{0:>6.0f}m | Head {heading}")
            for turn in detect_turning_points(leg, self.config):
                along = leg[turn.point_index].cumulative_distance - base
                print(f"{along:>6.0f}m | {turn.turn_type.value} ({turn.turn_angle:+.0f}°)")
            print(f"{leg[-1].cumulative_distance - base:>6.0f}m | Arrive")
        print("\n" + "=" * 60)

    def get_state(self) -> dict:
        """Get current state as dict for logging"""
        state = self.session.get_state()
        state["fixes"] = self.fixes_delivered
        state["announcements"] = len(self.session.events)
        if self.planner.graph is not None:
            state["graph"] = {
                "nodes": self.planner.graph.number_of_nodes(),
                "edges": self.planner.graph.number_of_edges(),
            }
        if self.path is not None:
            state["route_distance"] = round(self.path.total_distance, 1)
        return state

    def _on_event(self, event: GuidanceEvent):
        self.events.append(event)

    def _on_state(self, state: NavState, leg: int):
        print(f"State: {state.value} (leg {leg + 1})")

    def run(self, source: str, start: Point, end: Point,
            waypoints: Optional[list[Point]] = None,
            fixes: Optional[FixSource] = None,
            preview: bool = False,
            html_output: Optional[str] = None) -> bool:
        """Load, plan and navigate in one go"""
        print("\n=== sitenav ===")
        print("Mode: PREVIEW" if preview else "Press Ctrl+C to stop")
        print()

        completed = False
        try:
            if not self.load(source).ok:
                return False
            if not self.build().ok:
                return False
            if not self.plan(start, end, waypoints).ok:
                return False

            if html_output:
                from visualize import create_route_map
                create_route_map(self.planner.graph, self.path).save(html_output)
                print(f"Map saved to: {html_output}")

            if preview or fixes is None:
                self.display_route_preview()
                return True

            completed = self.navigate(fixes)
            return completed
        except KeyboardInterrupt:
            print("\nNavigation interrupted")
            self.logger.log("Navigation interrupted by user")
            return False
        finally:
            if self.recorder:
                self.recorder.save()

            summary = {
                "completed": completed,
                "travelled": self.session.travelled,
                "fixes": self.fixes_delivered,
                "announcements": len(self.session.events),
                "duration": time.time() - self.started_at if self.started_at else 0,
            }
            summary.update(self.logger.tally(
                dropped_fixes="Dropped fix",
                deviations="Deviation confirmed",
                replans="Replanned leg",
            ))
            self.logger.log("Navigation summary", summary)
            if self.started_at:
                print("\nNavigation summary:")
                print(f"  Completed: {'yes' if completed else 'no'}")
                print(f"  Travelled: {summary['travelled']:.0f}m")
                print(f"  Announcements: {summary['announcements']}")
                print(f"  Deviations: {summary['deviations']} ({summary['replans']} rerouted)")
                print(f"  Dropped fixes: {summary['dropped_fixes']}")

            self.session.stop()
            self.logger.close()
