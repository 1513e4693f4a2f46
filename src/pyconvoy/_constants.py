"""Internal constants shared across the library."""

from __future__ import annotations

API_URL = "http://localhost:3000"
WS_URL = "ws://localhost:9090"

HEALTH_ENDPOINT = "/health"
DRONES_ENDPOINT = "/api/v1/drones"
MISSION_RESET_ENDPOINT = "/api/v1/mission/reset"

PROBE_TIMEOUT = 3.0
FETCH_TIMEOUT = 3.0
RECONNECT_DELAY = 3.0
MAX_RECONNECT_ATTEMPTS = 10

# WebSocket close code reported when a connection could not be established.
ABNORMAL_CLOSURE = 1006

DRONE_POSITION_UPDATED = "DRONE_POSITION_UPDATED"

# ------------------------------------------------------------------
# Simulator
# ------------------------------------------------------------------

SIMULATION_INTERVAL = 0.1
STEP_RATE = 0.01
BATTERY_DRAIN_RATE = 0.1
FUEL_DRAIN_RATE = 0.15
HEALTH_FLOOR = 70.0
HEALTH_JITTER = 0.1
DEFAULT_DRONE_COUNT = 12
ONLINE_DRONE_COUNT = 10

CRUISE_SPEED_RANGE: tuple[float, float] = (45.0, 60.0)
CRUISE_ALTITUDE_RANGE: tuple[float, float] = (140.0, 160.0)

# ------------------------------------------------------------------
# Drone record defaults
# ------------------------------------------------------------------

DEFAULT_BATTERY = 100.0
DEFAULT_FUEL = 100.0
DEFAULT_SYSTEM_HEALTH = 95.0
DEFAULT_ARMAMENT: tuple[str, ...] = ("Hellfire AGM-114",)

# Fallbacks used when decoding a drone listed by the REST API.
RECORD_DEFAULT_ALTITUDE = 2500.0
RECORD_DEFAULT_SPEED = 135.0

# ------------------------------------------------------------------
# Default convoy corridor (name, latitude, longitude)
# ------------------------------------------------------------------

DEFAULT_ROUTE_POINTS: tuple[tuple[str, float, float], ...] = (
    ("Base Alpha", 34.5553, 69.2075),
    ("Checkpoint Bravo", 34.6234, 69.1123),
    ("Outpost Charlie", 34.7012, 69.0456),
    ("Firebase Delta", 34.7891, 68.9234),
    ("Sector Echo", 34.8567, 68.8012),
    ("Point Foxtrot", 34.9234, 68.6789),
    ("Zone Golf", 34.9901, 68.5567),
    ("Camp Hotel", 35.0567, 68.4234),
    ("Station India", 35.1234, 68.3012),
    ("Forward Juliet", 35.1901, 68.1789),
    ("Base Kilo", 35.2567, 68.0567),
    ("Terminal Lima", 35.3234, 67.9234),
)
