"""Data models for convoy routes and drones."""

from pyconvoy.models.drone import Drone, DroneStatus, Position, Telemetry
from pyconvoy.models.record import DroneRecord
from pyconvoy.models.route import DEFAULT_ROUTE, Route, Waypoint

__all__ = [
    "DEFAULT_ROUTE",
    "Drone",
    "DroneRecord",
    "DroneStatus",
    "Position",
    "Route",
    "Telemetry",
    "Waypoint",
]
