"""KML/KMZ import of route network polylines.

KMZ is a ZIP archive holding a KML document. Coordinates are
``lng,lat[,alt]`` tuples separated by whitespace.
"""

import io
import os
import zipfile
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Callable, Optional

import requests

from .config import merged_config
from .geo import retry_with_backoff
from .logger import Logger
from .models import Point

KML_NS = "{http://www.opengis.net/kml/2.2}"

# Marker placemarks the map editor leaves behind when drawing routes
IGNORED_MARKER_NAMES = {"New Point"}

Transform = Callable[[float, float], tuple[float, float]]


@dataclass
class KMLLoadResult:
    ok: bool
    lines: list[list[Point]] = field(default_factory=list)
    names: list[str] = field(default_factory=list)  # placemark name per line
    markers: dict[str, Point] = field(default_factory=dict)
    detail: str = ""


class KMLLoader:
    """Reads LineString geometry from KML/KMZ files or URLs"""

    def __init__(self, transform: Optional[Transform] = None,
                 config: Optional[dict] = None,
                 logger: Optional[Logger] = None):
        self.transform = transform
        self.config = merged_config(config)
        self.logger = logger

    def load(self, source: str) -> KMLLoadResult:
        """Load from a path or an http(s) URL"""
        if source.startswith(("http://", "https://")):
            data = self.fetch(source)
            if data is None:
                return KMLLoadResult(False, detail=f"Could not download {source}")
        else:
            if not os.path.exists(source):
                return KMLLoadResult(False, detail=f"File not found: {source}")
            with open(source, "rb") as f:
                data = f.read()
        return self.parse(data)

    def fetch(self, url: str) -> Optional[bytes]:
        timeout = self.config["kml_fetch_timeout"]

        def try_fetch():
            try:
                response = requests.get(url, timeout=timeout)
                response.raise_for_status()
                return response.content
            except requests.RequestException as e:
                print(f"KML fetch error: {e}")
                return None

        return retry_with_backoff(
            try_fetch,
            max_time=self.config["kml_fetch_retry_time"],
            initial_delay=2.0,
            max_delay=8.0,
            description="KML download",
        )

    def parse(self, data: bytes) -> KMLLoadResult:
        try:
            if _is_zip(data):
                text = _extract_kml_from_kmz(data)
            else:
                text = data.decode("utf-8", errors="replace")
            root = ET.fromstring(text)
        except (ET.ParseError, ValueError, zipfile.BadZipFile) as e:
            return KMLLoadResult(False, detail=f"Invalid KML: {e}")

        result = KMLLoadResult(True)
        placemarks = list(root.iter(f"{KML_NS}Placemark"))
        for index, placemark in enumerate(placemarks):
            name_elem = placemark.find(f"{KML_NS}name")
            name = name_elem.text.strip() if name_elem is not None and name_elem.text else f"Line {index + 1}"

            for line_string in placemark.iter(f"{KML_NS}LineString"):
                points = self._coordinates(line_string)
                if len(points) >= 2:
                    result.lines.append(points)
                    result.names.append(name)

            point_elem = placemark.find(f"{KML_NS}Point")
            if point_elem is not None and name not in IGNORED_MARKER_NAMES:
                points = self._coordinates(point_elem)
                if points:
                    result.markers[name] = points[0]

        if not result.lines:
            return KMLLoadResult(False, markers=result.markers, detail="No LineString geometry found")

        if self.logger:
            self.logger.log("Loaded KML", {
                "placemarks": len(placemarks),
                "lines": len(result.lines),
                "markers": len(result.markers),
            })
        return result

    def _coordinates(self, elem: ET.Element) -> list[Point]:
        coords = elem.find(f"{KML_NS}coordinates")
        if coords is None or not coords.text:
            return []
        points = []
        for token in coords.text.strip().split():
            parts = token.split(",")
            if len(parts) < 2:
                continue
            try:
                lng, lat = float(parts[0]), float(parts[1])
            except ValueError:
                continue
            if self.transform:
                lng, lat = self.transform(lng, lat)
            points.append(Point(lng, lat))
        return points


def _is_zip(data: bytes) -> bool:
    return data[:4] == b"PK\x03\x04"


def _extract_kml_from_kmz(data: bytes) -> str:
    """First .kml document in the archive, preferring doc.kml"""
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        names = zf.namelist()
        kml_name = next((n for n in names if n.lower() == "doc.kml"), None)
        if kml_name is None:
            kml_name = next((n for n in names if n.lower().endswith(".kml")), None)
        if kml_name is None:
            raise ValueError("No .kml file found in KMZ archive")
        return zf.read(kml_name).decode("utf-8", errors="replace")
