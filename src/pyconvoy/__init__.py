"""pyconvoy - Telemetry synchronization engine for a drone convoy tracker."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyconvoy")
except PackageNotFoundError:
    __version__ = "0+local"
from pyconvoy.config import ConvoyConfig
from pyconvoy.exceptions import (
    ConvoyConfigError,
    ConvoyError,
    ConvoyParseError,
    ConvoyProbeError,
    ConvoyReconnectExhaustedError,
    ConvoyResetCallError,
    ConvoyStateError,
    ConvoyTransportError,
)
from pyconvoy.health import HealthAssessment, HealthGrade, assess_drone, system_health_grade
from pyconvoy.models import (
    DEFAULT_ROUTE,
    Drone,
    DroneRecord,
    DroneStatus,
    Position,
    Route,
    Telemetry,
    Waypoint,
)
from pyconvoy.supervisor import ConnectionMode, ConvoySupervisor

__all__ = [
    "__version__",
    "DEFAULT_ROUTE",
    "ConnectionMode",
    "ConvoyConfig",
    "ConvoyConfigError",
    "ConvoyError",
    "ConvoyParseError",
    "ConvoyProbeError",
    "ConvoyReconnectExhaustedError",
    "ConvoyResetCallError",
    "ConvoyStateError",
    "ConvoySupervisor",
    "ConvoyTransportError",
    "Drone",
    "DroneRecord",
    "DroneStatus",
    "HealthAssessment",
    "HealthGrade",
    "Position",
    "Route",
    "Telemetry",
    "Waypoint",
    "assess_drone",
    "system_health_grade",
]
