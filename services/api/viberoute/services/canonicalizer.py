"""Turns a sparse plan into the canonical route representation.

The canonical form is a GeoJSON FeatureCollection ([lon, lat] order):
- one LineString per segment: start, interpolated intermediates, end
- one Point per named waypoint (segment starts/ends, shared junctions merged)

Intermediate points are placed on the straight line between segment
endpoints in coordinate space. They exist to keep a device's router on the
intended corridor, not to trace roads.

Everything here is pure; no I/O and no shared state.
"""

import math
from typing import Iterator, List, NamedTuple, Optional

from .plan_parser import PlanDraft

MAX_TITLE_LENGTH = 60
MAX_INTERMEDIATE_POINTS = 5


class Coordinate(NamedTuple):
    lat: float
    lon: float


class Waypoint(NamedTuple):
    lat: float
    lon: float
    role: str  # start | intermediate | end
    label: str


class PathPoint(NamedTuple):
    lat: float
    lon: float
    name: Optional[str]


def intermediate_point_count(distance_km: float) -> int:
    """How many points to insert between a segment's endpoints.

    <20 km → 1, 20–50 → 2, 50–100 → 3, ≥100 → floor(d/30) capped at 5.
    """
    if distance_km < 20:
        return 1
    if distance_km < 50:
        return 2
    if distance_km < 100:
        return 3
    return min(MAX_INTERMEDIATE_POINTS, math.floor(distance_km / 30))


def interpolate(start: Coordinate, end: Coordinate, t: float) -> Coordinate:
    return Coordinate(
        lat=start.lat + (end.lat - start.lat) * t,
        lon=start.lon + (end.lon - start.lon) * t,
    )


def densify_segment(start: Coordinate, end: Coordinate, distance_km: float) -> List[Coordinate]:
    """Start, n evenly spaced intermediates at t = i/(n+1), end."""
    n = intermediate_point_count(distance_km)
    points = [start]
    points.extend(interpolate(start, end, i / (n + 1)) for i in range(1, n + 1))
    points.append(end)
    return points


def haversine_km(a: Coordinate, b: Coordinate) -> float:
    r = 6371.0
    phi1, phi2 = math.radians(a.lat), math.radians(b.lat)
    dphi = phi2 - phi1
    dlmb = math.radians(b.lon - a.lon)
    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * r * math.asin(math.sqrt(h))


def _position(coord: Coordinate) -> list:
    return [coord.lon, coord.lat]


def canonicalize(plan: PlanDraft) -> dict:
    """Build the canonical route from a plan whose endpoints are all usable.

    Run enforce_quality() first; a None coordinate here is a programming error.
    """
    features: list[dict] = []
    waypoints: list[tuple[Coordinate, str]] = []
    segment_distance_total = 0.0
    segment_duration_total = 0.0
    day_numbers = set()

    for day, segment_index, segment in plan.iter_segments():
        start = Coordinate(segment.start.lat, segment.start.lon)
        end = Coordinate(segment.end.lat, segment.end.lon)
        distance = segment.distance_km
        if distance is None:
            distance = round(haversine_km(start, end), 1)
        duration = segment.duration_h or 0.0
        segment_distance_total += distance
        segment_duration_total += duration
        day_numbers.add(day)

        points = densify_segment(start, end, distance)
        features.append({
            "type": "Feature",
            "geometry": {
                "type": "LineString",
                "coordinates": [_position(p) for p in points],
            },
            "properties": {
                "type": "route",
                "day": day,
                "segment_index": segment_index,
                "name": segment.name,
                "description": segment.description,
                "distance_km": distance,
                "duration_h": duration,
            },
        })

        start_label = segment.start.name or f"Day {day} segment {segment_index} start"
        end_label = segment.end.name or f"Day {day} segment {segment_index} end"
        if not waypoints or waypoints[-1][0] != start:
            waypoints.append((start, start_label))
        waypoints.append((end, end_label))

    last = len(waypoints) - 1
    for i, (coord, label) in enumerate(waypoints):
        role = "start" if i == 0 else "end" if i == last else "intermediate"
        features.append({
            "type": "Feature",
            "geometry": {"type": "Point", "coordinates": _position(coord)},
            "properties": {"type": "waypoint", "role": role, "label": label, "name": label},
        })

    title = (plan.title or "").strip() or "Untitled route"
    total_distance = (
        plan.total_distance_km
        if plan.total_distance_km and plan.total_distance_km > 0
        else round(segment_distance_total, 1)
    )
    total_duration = (
        plan.total_duration_h
        if plan.total_duration_h and plan.total_duration_h > 0
        else round(segment_duration_total, 2)
    )

    return {
        "type": "FeatureCollection",
        "properties": {
            "title": title[:MAX_TITLE_LENGTH],
            "total_distance_km": total_distance,
            "total_duration_h": total_duration,
            "highlights": [h for h in plan.highlights if h],
            "days": len(day_numbers),
        },
        "features": features,
    }


# --- Views over a canonical route ---

def _features(route: dict, geometry_type: str) -> Iterator[dict]:
    for feature in route.get("features") or []:
        geometry = feature.get("geometry") or {}
        if geometry.get("type") == geometry_type:
            yield feature


def named_waypoints(route: dict) -> List[Waypoint]:
    """Segment start/end points for bookmarking."""
    result = []
    for feature in _features(route, "Point"):
        lon, lat = feature["geometry"]["coordinates"][:2]
        props = feature.get("properties") or {}
        label = props.get("label") or props.get("name") or ""
        result.append(Waypoint(lat=lat, lon=lon, role=props.get("role", "intermediate"), label=label))
    return result


def full_path(route: dict) -> List[PathPoint]:
    """Every routed point in visiting order; shared junctions are emitted once.

    A route without LineStrings falls back to its waypoints.
    """
    points: List[PathPoint] = []
    for feature in _features(route, "LineString"):
        coords = feature["geometry"]["coordinates"]
        name = (feature.get("properties") or {}).get("name") or "Segment"
        last = len(coords) - 1
        for i, position in enumerate(coords):
            lon, lat = position[:2]
            if i == 0 and points and (points[-1].lat, points[-1].lon) == (lat, lon):
                continue
            suffix = "Start" if i == 0 else "End" if i == last else f"Point {i + 1}"
            points.append(PathPoint(lat=lat, lon=lon, name=f"{name} - {suffix}"))

    if not points:
        points = [PathPoint(lat=w.lat, lon=w.lon, name=w.label or None) for w in named_waypoints(route)]
    return points


def iter_coordinates(route: dict) -> Iterator[tuple]:
    """Yield every raw position in the route, as stored."""
    for feature in route.get("features") or []:
        geometry = (feature or {}).get("geometry") or {}
        coords = geometry.get("coordinates")
        if geometry.get("type") == "Point":
            yield coords
        elif geometry.get("type") == "LineString":
            yield from coords or []


def route_summary(route: dict) -> dict:
    props = route.get("properties") or {}
    return {
        "title": props.get("title") or "Untitled route",
        "total_distance_km": props.get("total_distance_km") or 0.0,
        "total_duration_h": props.get("total_duration_h") or 0.0,
        "highlights": list(props.get("highlights") or []),
    }
