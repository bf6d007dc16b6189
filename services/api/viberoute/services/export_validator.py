"""Structural validation of generated navigation files.

Checks are structural only: declaration, root element, version, namespace,
well-formedness, coordinate ranges, and that there is something to navigate.
Missing titles and names are warnings, not errors.
"""

import json
import math
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ..exceptions import ExportValidationError

GPX_NAMESPACE = "http://www.topografix.com/GPX/1/1"
KML_NAMESPACE = "http://www.opengis.net/kml/2.2"

_XML_DECLARATION = re.compile(r"""^\s*<\?xml\s+version=["']1\.0["']""")


@dataclass
class ValidationResult:
    valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def error(self, message: str) -> None:
        self.valid = False
        self.errors.append(message)

    def warn(self, message: str) -> None:
        self.warnings.append(message)


def _split_tag(tag: str) -> Tuple[Optional[str], str]:
    if tag.startswith("{"):
        namespace, _, local = tag[1:].partition("}")
        return namespace, local
    return None, tag


def _check_range(result: ValidationResult, lat, lon, where: str) -> None:
    try:
        lat_f, lon_f = float(lat), float(lon)
    except (TypeError, ValueError):
        result.error(f"{where}: coordinate is not numeric (lat={lat!r}, lon={lon!r})")
        return
    if not (math.isfinite(lat_f) and math.isfinite(lon_f)):
        result.error(f"{where}: coordinate is not finite (lat={lat}, lon={lon})")
    elif not -90 <= lat_f <= 90:
        result.error(f"{where}: latitude {lat} out of range [-90, 90]")
    elif not -180 <= lon_f <= 180:
        result.error(f"{where}: longitude {lon} out of range [-180, 180]")


def _parse_xml(content: str, result: ValidationResult) -> Optional[ET.Element]:
    if not _XML_DECLARATION.match(content):
        result.error("Missing XML declaration")
    try:
        return ET.fromstring(content)
    except ET.ParseError as e:
        result.error(f"Unbalanced or malformed XML structure: {e}")
        return None


# --- GPX ---

def _validate_gpx(content: str, result: ValidationResult) -> None:
    root = _parse_xml(content, result)
    if root is None:
        return

    namespace, local = _split_tag(root.tag)
    if local != "gpx":
        result.error(f"Missing <gpx> root element (found <{local}>)")
        return
    if root.get("version") is None:
        result.error("Missing GPX version attribute")
    elif root.get("version") != "1.1":
        result.error(f"Unsupported GPX version {root.get('version')}")
    if namespace != GPX_NAMESPACE:
        result.error(f"Missing or wrong GPX namespace (expected {GPX_NAMESPACE})")

    ns = {"g": namespace} if namespace else {}
    prefix = "g:" if namespace else ""

    def find_all(path: str):
        return root.findall(path.replace("{p}", prefix), ns)

    waypoints = find_all("{p}wpt")
    routes = find_all("{p}rte")
    tracks = find_all("{p}trk")
    if not (waypoints or routes or tracks):
        result.error("GPX contains no waypoints, routes or tracks")

    for i, wpt in enumerate(waypoints, start=1):
        _check_range(result, wpt.get("lat"), wpt.get("lon"), f"wpt {i}")
        if wpt.find(f"{prefix}name", ns) is None:
            result.warn(f"Waypoint {i} has no name")
    for i, rte in enumerate(routes, start=1):
        if rte.find(f"{prefix}name", ns) is None:
            result.warn(f"Route {i} has no name")
        for j, pt in enumerate(rte.findall(f"{prefix}rtept", ns), start=1):
            _check_range(result, pt.get("lat"), pt.get("lon"), f"rte {i} point {j}")
    for i, trkpt in enumerate(find_all("{p}trk/{p}trkseg/{p}trkpt"), start=1):
        _check_range(result, trkpt.get("lat"), trkpt.get("lon"), f"trkpt {i}")

    if root.find(f"{prefix}metadata/{prefix}name", ns) is None:
        result.warn("GPX has no metadata name")


# --- KML ---

def _validate_kml(content: str, result: ValidationResult) -> None:
    root = _parse_xml(content, result)
    if root is None:
        return

    namespace, local = _split_tag(root.tag)
    if local != "kml":
        result.error(f"Missing <kml> root element (found <{local}>)")
        return
    if namespace != KML_NAMESPACE:
        result.error(f"Missing or wrong KML namespace (expected {KML_NAMESPACE})")

    placemarks = [el for el in root.iter() if _split_tag(el.tag)[1] == "Placemark"]
    if not placemarks:
        result.error("KML contains no placemarks")

    for i, placemark in enumerate(placemarks, start=1):
        names = [el for el in placemark if _split_tag(el.tag)[1] == "name"]
        if not names or not (names[0].text or "").strip():
            result.warn(f"Placemark {i} has no name")
        for coords in (el for el in placemark.iter() if _split_tag(el.tag)[1] == "coordinates"):
            for token in (coords.text or "").split():
                parts = token.split(",")
                if len(parts) < 2:
                    result.error(f"Placemark {i}: malformed coordinate '{token}'")
                    continue
                _check_range(result, parts[1], parts[0], f"Placemark {i}")

    documents = [el for el in root if _split_tag(el.tag)[1] == "Document"]
    has_name = any(
        _split_tag(child.tag)[1] == "name" and (child.text or "").strip()
        for doc in documents for child in doc
    )
    if not has_name:
        result.warn("KML document has no name")


# --- GeoJSON ---

def _validate_geojson_data(data, result: ValidationResult) -> None:
    if not isinstance(data, dict) or data.get("type") != "FeatureCollection":
        result.error("GeoJSON root must be a FeatureCollection")
        return

    features = data.get("features")
    if not isinstance(features, list) or not features:
        result.error("GeoJSON contains no features")
        return

    routable = 0
    for i, feature in enumerate(features, start=1):
        geometry = (feature or {}).get("geometry") if isinstance(feature, dict) else None
        if not isinstance(geometry, dict):
            result.error(f"Feature {i} has no geometry")
            continue
        kind = geometry.get("type")
        coordinates = geometry.get("coordinates")
        if kind == "Point":
            positions = [coordinates]
        elif kind == "LineString":
            positions = coordinates if isinstance(coordinates, list) else []
            if not positions:
                result.error(f"Feature {i}: LineString has no coordinates")
        else:
            result.error(f"Feature {i}: unsupported geometry type {kind!r}")
            continue

        for position in positions:
            if not isinstance(position, (list, tuple)) or len(position) < 2:
                result.error(f"Feature {i}: malformed position {position!r}")
                continue
            _check_range(result, position[1], position[0], f"Feature {i}")
        routable += 1

        properties = feature.get("properties")
        if properties is None:
            properties = {}
        elif not isinstance(properties, dict):
            result.error(f"Feature {i}: properties must be an object")
            continue
        if kind == "LineString" and not properties.get("name"):
            result.warn(f"Feature {i}: route has no name")

    if routable == 0:
        result.error("GeoJSON contains no point or line features")

    metadata = data.get("properties")
    if metadata is not None and not isinstance(metadata, dict):
        result.warn("GeoJSON collection properties are not an object")
    elif not (metadata or {}).get("title"):
        result.warn("GeoJSON has no title")


def _validate_geojson(content: str, result: ValidationResult) -> None:
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        result.error(f"Unbalanced or malformed JSON structure: {e.msg} at char {e.pos}")
        return
    _validate_geojson_data(data, result)


_VALIDATORS = {
    "gpx": _validate_gpx,
    "kml": _validate_kml,
    "geojson": _validate_geojson,
}


def validate_export(content: str, fmt: str) -> ValidationResult:
    if fmt not in _VALIDATORS:
        raise ValueError(f"Unsupported export format: {fmt}")
    result = ValidationResult()
    if not content or not content.strip():
        result.error(f"{fmt.upper()} document is empty")
        return result
    _VALIDATORS[fmt](content, result)
    return result


def validate_route(route: dict) -> ValidationResult:
    """Validate a canonical route dict before it is persisted."""
    result = ValidationResult()
    _validate_geojson_data(route, result)
    return result


def assert_valid_export(content: str, fmt: str) -> ValidationResult:
    result = validate_export(content, fmt)
    if not result.valid:
        raise ExportValidationError(
            f"{fmt.upper()} validation failed: {result.errors[0]}", errors=result.errors
        )
    return result


def assert_valid_route(route: dict) -> ValidationResult:
    result = validate_route(route)
    if not result.valid:
        raise ExportValidationError(
            f"Route validation failed: {result.errors[0]}", errors=result.errors
        )
    return result
