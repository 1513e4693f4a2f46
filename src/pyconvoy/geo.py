"""Route geometry: waypoint resolution, interpolation and great-circle helpers.

Everything here is pure and safe to call from any context.
"""

from __future__ import annotations

import math
from typing import NamedTuple, Protocol

from pyconvoy.ingestion.normalize import clamp
from pyconvoy.models.drone import Drone
from pyconvoy.models.route import Route

EARTH_RADIUS_KM = 6371.0
KNOTS_TO_KMH = 1.852


class LatLon(Protocol):
    @property
    def latitude(self) -> float: ...

    @property
    def longitude(self) -> float: ...


class RoutePosition(NamedTuple):
    route_index: int
    route_progress: float


def _planar_distance(a: LatLon, b: LatLon) -> float:
    return math.hypot(a.latitude - b.latitude, a.longitude - b.longitude)


def resolve_position(position: LatLon, route: Route) -> RoutePosition:
    """Map a position to ``(nearest waypoint index, progress along its segment)``.

    The nearest waypoint is chosen by Euclidean distance in coordinate
    space; ties go to the lowest index. Progress is the distance to that
    waypoint divided by the length of the following segment, capped at 1.
    This is not a perpendicular projection: it only drives progress
    indicators. The nearest being the final waypoint yields progress 1.
    """
    nearest = 0
    nearest_distance = math.inf
    for waypoint in route:
        distance = _planar_distance(position, waypoint)
        if distance < nearest_distance:
            nearest = waypoint.index
            nearest_distance = distance

    if nearest >= route.last_index:
        return RoutePosition(nearest, 1.0)

    segment = _planar_distance(route[nearest], route[nearest + 1])
    if segment <= 0.0:
        # Duplicate waypoints: on the point is the start, anywhere else the end.
        return RoutePosition(nearest, 0.0 if nearest_distance <= 0.0 else 1.0)

    progress = min(1.0, nearest_distance / segment)
    if math.isnan(progress):
        progress = 0.0
    return RoutePosition(nearest, clamp(progress, 0.0, 1.0))


def interpolate(route: Route, route_index: int, route_progress: float) -> tuple[float, float]:
    """Linear ``(latitude, longitude)`` between ``route[i]`` and ``route[i + 1]``.

    Holds on the final waypoint once ``route_index`` reaches the end.
    """
    index = max(0, min(route_index, route.last_index))
    current = route[index]
    if index >= route.last_index:
        return current.latitude, current.longitude

    following = route[index + 1]
    progress = clamp(route_progress, 0.0, 1.0)
    return (
        current.latitude + (following.latitude - current.latitude) * progress,
        current.longitude + (following.longitude - current.longitude) * progress,
    )


def locate(drone: Drone, route: Route) -> tuple[float, float]:
    """Best-known coordinates of *drone*.

    Reported coordinates win; a drone still at the ``(0, 0)`` placeholder
    is placed by interpolating its route progress instead.
    """
    if drone.position.latitude != 0.0 and drone.position.longitude != 0.0:
        return drone.position.latitude, drone.position.longitude
    return interpolate(route, drone.route_index, drone.route_progress)


def haversine_km(a: LatLon, b: LatLon) -> float:
    """Great-circle distance in kilometers."""
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    d_lat = lat2 - lat1
    d_lon = math.radians(b.longitude - a.longitude)

    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def bearing_deg(a: LatLon, b: LatLon) -> float:
    """Initial bearing from *a* to *b* in degrees, ``[0, 360)``."""
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    d_lon = math.radians(b.longitude - a.longitude)

    y = math.sin(d_lon) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(d_lon)
    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0


class _Point(NamedTuple):
    latitude: float
    longitude: float


def eta_minutes(drone: Drone, route: Route) -> float | None:
    """Minutes until *drone* reaches its next waypoint.

    Speed is interpreted in knots. Returns ``None`` when the drone is not
    moving or has no next waypoint.
    """
    if drone.telemetry.speed <= 0 or drone.route_index >= route.last_index:
        return None

    here = _Point(*locate(drone, route))
    remaining_km = haversine_km(here, route[drone.route_index + 1])
    return remaining_km / (drone.telemetry.speed * KNOTS_TO_KMH) * 60.0
