"""Engine configuration for pyconvoy."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Callable
from typing import Any

from pyconvoy import _constants as const
from pyconvoy.exceptions import ConvoyConfigError


def _env_optional_float(value: str) -> float | None:
    normalized = value.strip().lower()
    if normalized in {"", "0", "none", "off"}:
        return None
    return float(normalized)


@dataclasses.dataclass(frozen=True)
class ConvoyConfig:
    """Synchronization engine configuration.

    Parameters
    ----------
    api_url : str
        Base URL of the convoy tracking REST API.
    ws_url : str
        URL of the live telemetry WebSocket feed.
    probe_timeout : float
        Seconds to wait for ``GET /health`` before declaring the backend
        unavailable.
    fetch_timeout : float
        Seconds to wait for the initial ``GET /api/v1/drones`` read.
    reconnect_delay : float
        Fixed delay in seconds between live-feed reconnect attempts.
    max_reconnect_attempts : int
        Consecutive feed closures that exhaust the live link. The N-th
        consecutive close falls back to the simulator, so at most N-1
        reopen attempts follow the initial connect (9 with the default 10).
    ws_heartbeat : float or None
        WebSocket ping interval in seconds, ``None`` to disable.
    simulation_interval : float
        Seconds between simulator ticks.
    step_rate : float
        Route progress advanced per tick at ``speed_multiplier == 1``.
    battery_drain_rate : float
        Battery percent drained per tick at ``speed_multiplier == 1``.
    fuel_drain_rate : float
        Fuel percent drained per tick at ``speed_multiplier == 1``.
    health_floor : float
        System health never degrades below this value.
    health_jitter : float
        Upper bound of the random system-health loss per tick.
    speed_multiplier : float
        Initial simulator speed multiplier.
    drone_count : int
        Number of drones seeded when no live roster is available.
    """

    api_url: str = const.API_URL
    ws_url: str = const.WS_URL
    probe_timeout: float = const.PROBE_TIMEOUT
    fetch_timeout: float = const.FETCH_TIMEOUT
    reconnect_delay: float = const.RECONNECT_DELAY
    max_reconnect_attempts: int = const.MAX_RECONNECT_ATTEMPTS
    ws_heartbeat: float | None = None
    simulation_interval: float = const.SIMULATION_INTERVAL
    step_rate: float = const.STEP_RATE
    battery_drain_rate: float = const.BATTERY_DRAIN_RATE
    fuel_drain_rate: float = const.FUEL_DRAIN_RATE
    health_floor: float = const.HEALTH_FLOOR
    health_jitter: float = const.HEALTH_JITTER
    speed_multiplier: float = 1.0
    drone_count: int = const.DEFAULT_DRONE_COUNT

    def __post_init__(self) -> None:
        for name in (
            "probe_timeout",
            "fetch_timeout",
            "reconnect_delay",
            "simulation_interval",
            "step_rate",
            "battery_drain_rate",
            "fuel_drain_rate",
            "health_jitter",
            "speed_multiplier",
        ):
            if getattr(self, name) < 0:
                raise ConvoyConfigError(f"{name} must be >= 0, got {getattr(self, name)}")
        if self.max_reconnect_attempts < 1:
            raise ConvoyConfigError(f"max_reconnect_attempts must be >= 1, got {self.max_reconnect_attempts}")
        if self.drone_count < 1:
            raise ConvoyConfigError(f"drone_count must be >= 1, got {self.drone_count}")
        # Trailing slashes would double up when endpoints are appended.
        object.__setattr__(self, "api_url", self.api_url.rstrip("/"))

    @classmethod
    def from_env(cls, **overrides: Any) -> ConvoyConfig:
        """Create configuration from ``CONVOY_*`` environment variables.

        Explicit keyword arguments override environment values.

        Raises
        ------
        ConvoyConfigError
            If a numeric variable cannot be parsed.
        """
        env = os.environ

        _ENV_CONFIG_MAP: dict[str, tuple[str, Callable[[str], Any]]] = {
            "CONVOY_API_URL": ("api_url", str),
            "CONVOY_WS_URL": ("ws_url", str),
            "CONVOY_PROBE_TIMEOUT": ("probe_timeout", float),
            "CONVOY_FETCH_TIMEOUT": ("fetch_timeout", float),
            "CONVOY_RECONNECT_DELAY": ("reconnect_delay", float),
            "CONVOY_MAX_RECONNECT_ATTEMPTS": ("max_reconnect_attempts", int),
            "CONVOY_WS_HEARTBEAT": ("ws_heartbeat", _env_optional_float),
            "CONVOY_SIMULATION_INTERVAL": ("simulation_interval", float),
            "CONVOY_SPEED_MULTIPLIER": ("speed_multiplier", float),
            "CONVOY_DRONE_COUNT": ("drone_count", int),
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, (field_name, parse) in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = parse(val)
            except ValueError as exc:
                raise ConvoyConfigError(f"{env_key} has an invalid value: {val!r}") from exc

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
