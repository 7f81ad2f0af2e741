#!/usr/bin/env python3
"""
Visualize an imported route network and a planned route on an interactive map.

Usage:
    python visualize.py FILE [--start LNG,LAT --end LNG,LAT [--via LNG,LAT ...]] [--output PATH]

Examples:
    python visualize.py site.kml
    python visualize.py site.kmz --start 116.3970,39.9087 --end 116.4010,39.9102 -o route.html
"""

import argparse
from pathlib import Path
from typing import Optional

import folium
from folium import plugins

from sitenav import KMLLoader, RoutePlanner, CONFIG, Point
from sitenav.__main__ import parse_point
from sitenav.graph import RouteGraph
from sitenav.models import PlannedPath
from sitenav.turns import compute_segment_ranges, detect_turning_points, resample_path

LEG_COLORS = ["#2563eb", "#16a34a", "#9333ea", "#ea580c", "#0891b2"]


def _latlng(p: Point) -> list[float]:
    return [p.lat, p.lng]


def create_route_map(graph: RouteGraph, path: Optional[PlannedPath] = None) -> folium.Map:
    """Network edges, repair bridges, intersections, route legs and turns."""
    nodes = graph.nodes()
    if path is not None and path.points:
        center = path.points[0]
    elif nodes:
        center = Point(sum(n.lng for n in nodes) / len(nodes), sum(n.lat for n in nodes) / len(nodes))
    else:
        center = Point(0.0, 0.0)

    m = folium.Map(
        location=_latlng(center),
        zoom_start=17,
        tiles="CartoDB positron"
    )
    folium.TileLayer("OpenStreetMap", name="OpenStreetMap").add_to(m)

    network_layer = folium.FeatureGroup(name="Network", show=True)
    bridge_layer = folium.FeatureGroup(name="Repair bridges", show=True)
    node_layer = folium.FeatureGroup(name="Intersections", show=False)

    edge_count = 0
    bridge_count = 0
    for edge in graph.edges():
        coords = [_latlng(p) for p in edge.geometry]
        popup_text = f"""
            <b>Edge {edge.u} - {edge.v}</b><br>
            Length: {edge.weight:.1f}m<br>
            Line: {edge.line_index if edge.line_index is not None else '-'}
        """
        if edge.bridge:
            folium.PolyLine(
                coords,
                weight=3,
                color="#dc2626",
                dash_array="6",
                opacity=0.9,
                popup=folium.Popup(popup_text + "<i>Connectivity bridge</i>", max_width=200)
            ).add_to(bridge_layer)
            bridge_count += 1
        else:
            folium.PolyLine(
                coords,
                weight=3,
                color="#6b7280",
                opacity=0.6,
                popup=folium.Popup(popup_text, max_width=200)
            ).add_to(network_layer)
            edge_count += 1

    for node in nodes:
        if node.is_intersection:
            folium.CircleMarker(
                [node.lat, node.lng],
                radius=3,
                color="#111827",
                fill=True,
                popup=f"Node {node.id}"
            ).add_to(node_layer)

    network_layer.add_to(m)
    bridge_layer.add_to(m)
    node_layer.add_to(m)

    if path is not None and len(path.points) >= 2:
        route_layer = folium.FeatureGroup(name="Route", show=True)
        turn_layer = folium.FeatureGroup(name="Turns", show=True)

        entries = resample_path(path.points, CONFIG["resample_spacing"])
        for index, segment in enumerate(compute_segment_ranges(entries, path.junctions)):
            leg = entries[segment.start_index:segment.end_index + 1]
            if len(leg) < 2:
                continue
            folium.PolyLine(
                [_latlng(e.point) for e in leg],
                weight=6,
                color=LEG_COLORS[index % len(LEG_COLORS)],
                opacity=0.85,
                tooltip=segment.label
            ).add_to(route_layer)
            for turn in detect_turning_points(leg):
                folium.Marker(
                    _latlng(leg[turn.point_index].point),
                    popup=f"{turn.turn_type.value} ({turn.turn_angle:+.0f}°)",
                    icon=folium.Icon(color="orange", icon="share-alt")
                ).add_to(turn_layer)

        folium.Marker(
            _latlng(path.points[0]),
            popup="Start",
            icon=folium.Icon(color="green", icon="play")
        ).add_to(route_layer)
        for number, junction in enumerate(path.junctions, start=1):
            folium.Marker(
                _latlng(path.points[junction]),
                popup=f"Waypoint {number}",
                icon=folium.Icon(color="blue", icon="flag")
            ).add_to(route_layer)
        folium.Marker(
            _latlng(path.points[-1]),
            popup="End",
            icon=folium.Icon(color="red", icon="stop")
        ).add_to(route_layer)

        route_layer.add_to(m)
        turn_layer.add_to(m)

    folium.LayerControl().add_to(m)

    legend_html = f"""
    <div style="
        position: fixed;
        bottom: 50px;
        left: 50px;
        z-index: 1000;
        background-color: white;
        padding: 10px;
        border-radius: 5px;
        border: 2px solid grey;
        font-family: Arial;
        font-size: 12px;
    ">
        <b>Route network</b><br>
        <hr style="margin: 5px 0">
        Edges: {edge_count}<br>
        Bridges: {bridge_count}<br>
        Nodes: {graph.number_of_nodes()}<br>
        Route: {f"{path.total_distance:.0f}m" if path is not None else "-"}
    </div>
    """
    m.get_root().html.add_child(folium.Element(legend_html))

    plugins.Fullscreen().add_to(m)

    print(f"Map created: {edge_count} edges, {bridge_count} bridges")
    return m


def main():
    parser = argparse.ArgumentParser(
        description="Visualize a route network and planned route on a map"
    )
    parser.add_argument("file", help="KML/KMZ file or URL")
    parser.add_argument("--start", type=parse_point, metavar="LNG,LAT")
    parser.add_argument("--end", type=parse_point, metavar="LNG,LAT")
    parser.add_argument("--via", type=parse_point, action="append", default=[], metavar="LNG,LAT")
    parser.add_argument("--output", "-o", default="sitenav_map.html",
                        help="Output HTML file (default: sitenav_map.html)")

    args = parser.parse_args()

    if (args.start is None) != (args.end is None):
        parser.error("--start and --end must be used together")

    loaded = KMLLoader().load(args.file)
    if not loaded.ok:
        print(f"Error: {loaded.detail}")
        return 1

    planner = RoutePlanner(loaded.lines)
    build = planner.ensure_graph()
    if not build.ok:
        print(f"Error: {build.detail}")
        return 1

    path = None
    if args.start is not None:
        result = planner.plan_multi([args.start] + args.via + [args.end])
        if not result.ok:
            print(f"Error: {result.detail}")
            return 1
        path = result.path

    m = create_route_map(planner.graph, path)
    m.save(args.output)
    print(f"\nMap saved to: {args.output}")
    print(f"Open in browser: file://{Path(args.output).absolute()}")
    return 0


if __name__ == "__main__":
    exit(main())
