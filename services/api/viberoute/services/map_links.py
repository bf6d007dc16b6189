"""Preview links for Google Maps and Mapy.com.

Both services cap the number of points a shared route may carry. A route over
the cap gets no link at all; it is never sampled down, since the preview must
match the downloaded file.
"""

import logging
from typing import List, NamedTuple
from urllib.parse import urlencode

from ..exceptions import LinkGenerationError, TooManyPoints
from .canonicalizer import PathPoint, full_path

logger = logging.getLogger("viberoute.links")

GOOGLE_MAPS_MAX_POINTS = 25
MAPY_MAX_POINTS = 15

GOOGLE_MAPS_BASE_URL = "https://www.google.com/maps/dir/"
MAPY_BASE_URL = "https://mapy.com/fnc/v1/route"

TRANSPORTS = ("car", "bike", "foot")

GOOGLE_TRAVEL_MODES = {"car": "driving", "bike": "bicycling", "foot": "walking"}
MAPY_ROUTE_TYPES = {"car": "car_fast", "bike": "bike_road", "foot": "foot_fast"}


class MapLink(NamedTuple):
    url: str
    service: str
    transport: str
    point_count: int


def _route_points(route: dict, service: str, limit: int) -> List[PathPoint]:
    points = full_path(route)
    if len(points) < 2:
        raise LinkGenerationError(f"Route needs at least 2 points for a {service} link")
    if len(points) > limit:
        logger.info(f"{service} link refused: {len(points)} points > {limit}")
        raise TooManyPoints(service, len(points), limit)
    return points


def _check_transport(transport: str) -> None:
    if transport not in TRANSPORTS:
        raise LinkGenerationError(
            f"Unknown transport '{transport}', expected one of: {', '.join(TRANSPORTS)}"
        )


def build_google_maps_link(route: dict, transport: str = "car") -> MapLink:
    _check_transport(transport)
    points = _route_points(route, "Google Maps", GOOGLE_MAPS_MAX_POINTS)

    def fmt(p: PathPoint) -> str:
        return f"{p.lat:.6f},{p.lon:.6f}"

    params = {
        "api": "1",
        "origin": fmt(points[0]),
        "destination": fmt(points[-1]),
        "travelmode": GOOGLE_TRAVEL_MODES[transport],
    }
    if len(points) > 2:
        params["waypoints"] = "|".join(fmt(p) for p in points[1:-1])

    url = f"{GOOGLE_MAPS_BASE_URL}?{urlencode(params)}"
    return MapLink(url=url, service="google", transport=transport, point_count=len(points))


def build_mapy_link(route: dict, transport: str = "car") -> MapLink:
    _check_transport(transport)
    points = _route_points(route, "Mapy.com", MAPY_MAX_POINTS)

    def fmt(p: PathPoint) -> str:
        return f"{p.lon:.6f},{p.lat:.6f}"

    params = {
        "start": fmt(points[0]),
        "end": fmt(points[-1]),
        "routeType": MAPY_ROUTE_TYPES[transport],
    }
    if len(points) > 2:
        params["waypoints"] = ";".join(fmt(p) for p in points[1:-1])

    url = f"{MAPY_BASE_URL}?{urlencode(params)}"
    return MapLink(url=url, service="mapy", transport=transport, point_count=len(points))
