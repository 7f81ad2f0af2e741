#!/usr/bin/env python3
"""
sitenav - Turn-by-turn guidance over an imported route network

Usage:
    python -m sitenav FILE --start LNG,LAT --end LNG,LAT [options]

Options:
    --via LNG,LAT     Intermediate waypoint (repeatable, in order)
    --playback FILE   Navigate a recorded GPS trace
    --simulate        Navigate a synthetic walk along the planned route
    --speed M/S       Walking speed for --simulate (default: 1.5)
    --record FILE     Record delivered fixes to a JSON trace
    --html FILE       Write a map of the network and route
    --log FILE        Log file path (default: sitenav_TIMESTAMP.log)
    --preview         Plan and print the route without navigating
    --quiet           Print announcements instead of speaking them
"""

import argparse
import sys
from datetime import datetime
from pathlib import Path

from .app import Navigator
from .audio import TextAudio
from .gps import GPSPlayback, simulate_track
from .models import Point


def parse_point(text: str) -> Point:
    """argparse type for LNG,LAT"""
    parts = text.split(",")
    if len(parts) != 2:
        raise argparse.ArgumentTypeError(f"expected LNG,LAT, got {text!r}")
    try:
        return Point.parse([float(parts[0]), float(parts[1])])
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected LNG,LAT, got {text!r}")


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="sitenav - Turn-by-turn guidance over an imported route network"
    )
    parser.add_argument("file", help="KML/KMZ file or URL with the route network")
    parser.add_argument("--start", type=parse_point, required=True, metavar="LNG,LAT",
                        help="Route start")
    parser.add_argument("--end", type=parse_point, required=True, metavar="LNG,LAT",
                        help="Route end")
    parser.add_argument("--via", type=parse_point, action="append", default=[], metavar="LNG,LAT",
                        help="Waypoint between start and end (repeatable)")
    parser.add_argument("--playback", metavar="FILE",
                        help="Playback GPS trace from JSON file")
    parser.add_argument("--simulate", action="store_true",
                        help="Walk the planned route with synthetic fixes")
    parser.add_argument("--speed", type=float, default=1.5,
                        help="Simulated walking speed in m/s (default: 1.5)")
    parser.add_argument("--record", metavar="FILE",
                        help="Record GPS trace to JSON file")
    parser.add_argument("--html", metavar="FILE",
                        help="Output route visualization to HTML file")
    parser.add_argument("--log", metavar="FILE",
                        help="Log file path (default: sitenav_TIMESTAMP.log)")
    parser.add_argument("--preview", action="store_true",
                        help="Preview the planned route without navigating")
    parser.add_argument("--quiet", action="store_true",
                        help="Print announcements instead of speaking them")

    args = parser.parse_args(argv)

    if args.playback and args.simulate:
        parser.error("--playback and --simulate cannot be used together")
    if args.speed <= 0:
        parser.error("--speed must be positive")
    if args.preview and (args.playback or args.simulate):
        parser.error("--preview does not navigate; drop --playback/--simulate")
    if args.playback and not Path(args.playback).exists():
        parser.error(f"playback file not found: {args.playback}")

    log_path = args.log
    if not log_path:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_path = f"sitenav_{timestamp}.log"

    speak = TextAudio().speak if args.quiet else None
    navigator = Navigator(log_path=log_path, speak=speak)
    if args.record:
        navigator.record(args.record)

    fixes = None
    if args.playback:
        fixes = GPSPlayback(args.playback)
    elif args.simulate:
        fixes = _SimulatedFixes(navigator, args.speed)

    ok = navigator.run(
        args.file,
        args.start,
        args.end,
        waypoints=args.via,
        fixes=fixes,
        preview=args.preview,
        html_output=args.html,
    )
    return 0 if ok else 1


class _SimulatedFixes:
    """Synthetic walk along whatever route the navigator ends up planning"""

    def __init__(self, navigator: Navigator, speed: float):
        self.navigator = navigator
        self.speed = speed

    def __iter__(self):
        path = self.navigator.path
        if path is None:
            return iter(())
        return simulate_track(path.points, speed=self.speed,
                              interval=self.navigator.config["simulate_interval"])


if __name__ == "__main__":
    sys.exit(main())
