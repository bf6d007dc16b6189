"""Navigation file generation from the canonical route.

GPX 1.1 (gpxpy), KML 2.2 (ElementTree) and GeoJSON. Each converter either
returns a complete document or raises ConversionError; there is no partial output.
"""

import json
import logging
import math
import re
from dataclasses import dataclass
from typing import List
from xml.dom import minidom
from xml.etree.ElementTree import Element, SubElement, tostring

import gpxpy.gpx

from ..exceptions import ConversionError
from .canonicalizer import full_path, iter_coordinates, named_waypoints, route_summary

logger = logging.getLogger("viberoute.export")

GPX_CREATOR = "VibeRoute"
KML_NAMESPACE = "http://www.opengis.net/kml/2.2"

FORMATS = ("gpx", "kml", "geojson")


@dataclass(frozen=True)
class ExportDocument:
    content: str
    media_type: str
    extension: str


def _check_coordinates(route: dict, fmt: str) -> None:
    """Raise unless the route has a usable coordinate and every one is in range."""
    if not isinstance(route, dict) or route.get("type") != "FeatureCollection":
        raise ConversionError(f"Cannot convert to {fmt}: route is not a FeatureCollection")

    count = 0
    for position in iter_coordinates(route):
        if not isinstance(position, (list, tuple)) or len(position) < 2:
            raise ConversionError(f"Cannot convert to {fmt}: malformed coordinate {position!r}")
        lon, lat = position[0], position[1]
        if not isinstance(lat, (int, float)) or not isinstance(lon, (int, float)):
            raise ConversionError(f"Cannot convert to {fmt}: non-numeric coordinate {position!r}")
        if not (math.isfinite(lat) and math.isfinite(lon)):
            raise ConversionError(f"Cannot convert to {fmt}: non-finite coordinate {position!r}")
        if not (-90 <= lat <= 90) or not (-180 <= lon <= 180):
            raise ConversionError(
                f"Cannot convert to {fmt}: coordinate out of range (lat={lat}, lon={lon})"
            )
        count += 1

    if count == 0:
        raise ConversionError(f"Cannot convert to {fmt}: route has no coordinates")


def to_gpx(route: dict) -> str:
    _check_coordinates(route, "GPX")
    summary = route_summary(route)

    gpx = gpxpy.gpx.GPX()
    gpx.creator = GPX_CREATOR
    gpx.name = summary["title"]
    if summary["highlights"]:
        gpx.description = "; ".join(summary["highlights"])

    for waypoint in named_waypoints(route):
        gpx.waypoints.append(
            gpxpy.gpx.GPXWaypoint(
                latitude=waypoint.lat,
                longitude=waypoint.lon,
                name=waypoint.label or None,
                type=waypoint.role,
            )
        )

    gpx_route = gpxpy.gpx.GPXRoute(name=summary["title"])
    for point in full_path(route):
        gpx_route.points.append(
            gpxpy.gpx.GPXRoutePoint(latitude=point.lat, longitude=point.lon, name=point.name)
        )
    gpx.routes.append(gpx_route)

    return gpx.to_xml(version="1.1")


def _kml_coordinates(points) -> str:
    return " ".join(f"{p.lon},{p.lat},0" for p in points)


def to_kml(route: dict) -> str:
    _check_coordinates(route, "KML")
    summary = route_summary(route)

    kml = Element("kml", {"xmlns": KML_NAMESPACE})
    document = SubElement(kml, "Document")
    SubElement(document, "name").text = summary["title"]
    description = (
        f"Distance: {summary['total_distance_km']} km, "
        f"duration: {summary['total_duration_h']} h"
    )
    if summary["highlights"]:
        description += ". Highlights: " + ", ".join(summary["highlights"])
    SubElement(document, "description").text = description

    folder = SubElement(document, "Folder")
    SubElement(folder, "name").text = "Waypoints"
    for waypoint in named_waypoints(route):
        placemark = SubElement(folder, "Placemark")
        SubElement(placemark, "name").text = waypoint.label or waypoint.role
        point = SubElement(placemark, "Point")
        SubElement(point, "coordinates").text = f"{waypoint.lon},{waypoint.lat},0"

    path = full_path(route)
    placemark = SubElement(document, "Placemark")
    SubElement(placemark, "name").text = "Route"
    line = SubElement(placemark, "LineString")
    SubElement(line, "tessellate").text = "1"
    SubElement(line, "coordinates").text = _kml_coordinates(path)

    xml_str = tostring(kml, encoding="unicode")
    dom = minidom.parseString(xml_str)
    return dom.toprettyxml(indent="  ", encoding="UTF-8").decode("utf-8")


def to_geojson(route: dict) -> str:
    """Segments, one full-path LineString, then the waypoints."""
    _check_coordinates(route, "GeoJSON")

    segments = [f for f in route["features"] if (f.get("geometry") or {}).get("type") == "LineString"]
    points = [f for f in route["features"] if (f.get("geometry") or {}).get("type") == "Point"]
    path = full_path(route)

    features: List[dict] = list(segments)
    if len(path) >= 2:
        features.append({
            "type": "Feature",
            "geometry": {
                "type": "LineString",
                "coordinates": [[p.lon, p.lat] for p in path],
            },
            "properties": {"type": "full_route", "name": route_summary(route)["title"]},
        })
    features.extend(points)

    document = {
        "type": "FeatureCollection",
        "properties": dict(route.get("properties") or {}),
        "features": features,
    }
    return json.dumps(document, indent=2, ensure_ascii=False)


_RENDERERS = {
    "gpx": (to_gpx, "application/gpx+xml"),
    "kml": (to_kml, "application/vnd.google-earth.kml+xml"),
    "geojson": (to_geojson, "application/geo+json"),
}


def render_export(route: dict, fmt: str) -> ExportDocument:
    if fmt not in _RENDERERS:
        raise ValueError(f"Unsupported export format: {fmt}")
    renderer, media_type = _RENDERERS[fmt]
    content = renderer(route)
    logger.debug(f"Rendered {fmt} export ({len(content)} chars)")
    return ExportDocument(content=content, media_type=media_type, extension=fmt)


def sanitize_filename(value: str) -> str:
    slug = re.sub(r"[^a-zA-Z0-9\-_. ]", "-", value or "")
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    slug = slug.strip("-").lower()
    return slug[:100]


def export_filename(title: str, itinerary_id: str, extension: str) -> str:
    slug = sanitize_filename(title) or "untitled"
    return f"route-{slug}-{itinerary_id[:8]}.{extension}"
