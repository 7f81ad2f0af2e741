import math

import pytest

from sitenav.gps import EventStream
from sitenav.models import PlannedPath, Point
from sitenav.geo import path_length
from sitenav.timers import TimerQueue

ORIGIN = Point(116.4, 39.9)
METERS_PER_DEGREE = 111_320.0


def local(east: float, north: float) -> Point:
    """Point offset from ORIGIN by roughly east/north meters"""
    kx = METERS_PER_DEGREE * math.cos(math.radians(ORIGIN.lat))
    return Point(ORIGIN.lng + east / kx, ORIGIN.lat + north / METERS_PER_DEGREE)


def planned(points: list[Point], junctions: list[int] = None) -> PlannedPath:
    return PlannedPath(points, path_length(points), junctions or [])


@pytest.fixture
def at():
    return local


@pytest.fixture
def plus_lines():
    """Two 200m lines crossing at ORIGIN"""
    return [
        [local(-100, 0), local(100, 0)],
        [local(0, -100), local(0, 100)],
    ]


@pytest.fixture
def disjoint_lines():
    """Three parallel east-west lines 40m apart"""
    return [
        [local(0, 0), local(100, 0)],
        [local(0, 40), local(100, 40)],
        [local(0, 80), local(100, 80)],
    ]


@pytest.fixture
def l_path():
    """200m north, then right and 100m east"""
    return planned([local(0, 0), local(0, 200), local(100, 200)])


@pytest.fixture
def straight_path():
    return planned([local(0, 0), local(0, 200)])


@pytest.fixture
def two_leg_path():
    """North to a waypoint, then right to the end"""
    return planned([local(0, 0), local(0, 60), local(60, 60)], junctions=[1])


@pytest.fixture
def stream():
    return EventStream()


@pytest.fixture
def timers():
    return TimerQueue()


KML_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<kml xmlns="http://www.opengis.net/kml/2.2">
  <Document>
    <name>Site</name>
{placemarks}
  </Document>
</kml>
"""


def kml_document(lines: list[list[Point]], markers: dict = None) -> str:
    placemarks = []
    for index, line in enumerate(lines):
        coords = " ".join(f"{p.lng},{p.lat},0" for p in line)
        placemarks.append(
            f"    <Placemark><name>Road {index + 1}</name>"
            f"<LineString><coordinates>{coords}</coordinates></LineString></Placemark>"
        )
    for name, p in (markers or {}).items():
        placemarks.append(
            f"    <Placemark><name>{name}</name>"
            f"<Point><coordinates>{p.lng},{p.lat},0</coordinates></Point></Placemark>"
        )
    return KML_TEMPLATE.format(placemarks="\n".join(placemarks))


@pytest.fixture
def plus_kml(tmp_path, plus_lines):
    path = tmp_path / "site.kml"
    path.write_text(kml_document(plus_lines, {"Gate": local(-80, 0)}))
    return path
