"""Local kinematic simulator.

Moves drones along the route when no live feed is authoritative. The
simulator never touches the store: :meth:`KinematicSimulator.tick` returns
update intents that the supervisor applies.
"""

from __future__ import annotations

import math
import random
from collections.abc import Iterable
from datetime import UTC, datetime

from pyconvoy._constants import (
    CRUISE_ALTITUDE_RANGE,
    CRUISE_SPEED_RANGE,
    DEFAULT_BATTERY,
    DEFAULT_FUEL,
    DEFAULT_SYSTEM_HEALTH,
    ONLINE_DRONE_COUNT,
)
from pyconvoy.config import ConvoyConfig
from pyconvoy.geo import interpolate
from pyconvoy.models.drone import Drone, DroneStatus, Position, Telemetry
from pyconvoy.models.route import Route
from pyconvoy.state.events import DroneUpdate, UpdateSource


def _utcnow() -> datetime:
    return datetime.now(UTC)


class KinematicSimulator:
    """Deterministic (given its RNG) per-tick drone motion and resource drain.

    Parameters
    ----------
    route : Route
        Route the drones traverse.
    config : ConvoyConfig, optional
        Rates, floors and the initial speed multiplier.
    rng : random.Random, optional
        Source of jitter. Pass a seeded instance for reproducible runs.
    """

    def __init__(
        self,
        route: Route,
        config: ConvoyConfig | None = None,
        *,
        rng: random.Random | None = None,
    ) -> None:
        self._route = route
        self._config = config or ConvoyConfig()
        self._rng = rng or random.Random()
        self._speed_multiplier = 0.0
        self.speed_multiplier = self._config.speed_multiplier

    @property
    def route(self) -> Route:
        return self._route

    @property
    def speed_multiplier(self) -> float:
        return self._speed_multiplier

    @speed_multiplier.setter
    def speed_multiplier(self, value: float) -> None:
        value = float(value)
        if not math.isfinite(value) or value < 0:
            raise ValueError(f"speed_multiplier must be a finite value >= 0, got {value}")
        self._speed_multiplier = value

    def _uniform(self, bounds: tuple[float, float]) -> float:
        return self._rng.uniform(*bounds)

    def seed(self, count: int | None = None) -> list[Drone]:
        """Generate the default fleet ``REAPER-01 .. REAPER-NN``.

        The first ten drones are online, the rest offline.
        """
        count = self._config.drone_count if count is None else count
        now = _utcnow()
        drones: list[Drone] = []
        for number in range(1, count + 1):
            drone_id = f"REAPER-{number:02d}"
            progress = self._rng.random() * 0.3
            latitude, longitude = interpolate(self._route, 0, progress)
            drones.append(
                Drone(
                    id=drone_id,
                    callsign=drone_id,
                    position=Position(
                        latitude=latitude,
                        longitude=longitude,
                        altitude=self._uniform(CRUISE_ALTITUDE_RANGE),
                    ),
                    telemetry=Telemetry(
                        battery_percent=75 + self._rng.random() * 25,
                        fuel_percent=60 + self._rng.random() * 40,
                        speed=self._uniform(CRUISE_SPEED_RANGE),
                        system_health=85 + self._rng.random() * 15,
                    ),
                    route_index=0,
                    route_progress=progress,
                    status=DroneStatus.ONLINE if number <= ONLINE_DRONE_COUNT else DroneStatus.OFFLINE,
                    last_update=now,
                )
            )
        return drones

    def reset(self, drones: Iterable[Drone]) -> list[Drone]:
        """Return *drones* moved back to the first waypoint, refuelled and recharged.

        Status is preserved.
        """
        start = self._route[0]
        now = _utcnow()
        return [
            drone.model_copy(
                update={
                    "route_index": 0,
                    "route_progress": 0.0,
                    "position": drone.position.model_copy(
                        update={"latitude": start.latitude, "longitude": start.longitude}
                    ),
                    "telemetry": drone.telemetry.model_copy(
                        update={
                            "battery_percent": DEFAULT_BATTERY,
                            "fuel_percent": DEFAULT_FUEL,
                            "system_health": DEFAULT_SYSTEM_HEALTH + self._rng.uniform(0, 5),
                        }
                    ),
                    "last_update": now,
                }
            )
            for drone in drones
        ]

    def tick(self, drones: Iterable[Drone]) -> list[DroneUpdate]:
        """Advance every operational drone by one tick.

        Offline drones are skipped entirely and produce no update.
        """
        now = _utcnow()
        return [self._advance(drone, now) for drone in drones if drone.is_operational]

    def _advance(self, drone: Drone, now: datetime) -> DroneUpdate:
        config = self._config
        multiplier = self._speed_multiplier
        last_index = self._route.last_index

        index = min(drone.route_index, last_index)
        if index >= last_index:
            # Arrived: pinned on the final waypoint.
            progress = 0.0
        else:
            progress = drone.route_progress + config.step_rate * multiplier
            if progress >= 1.0:
                progress = 0.0
                index = min(index + 1, last_index)

        latitude, longitude = interpolate(self._route, index, progress)

        telemetry = drone.telemetry
        health = telemetry.system_health
        if health > config.health_floor:
            health = max(config.health_floor, health - self._rng.uniform(0, config.health_jitter))

        return DroneUpdate(
            drone_id=drone.id,
            source=UpdateSource.SIMULATOR,
            observed_at=now,
            data={
                "route_index": index,
                "route_progress": progress,
                "position": {
                    "latitude": latitude,
                    "longitude": longitude,
                    "altitude": self._uniform(CRUISE_ALTITUDE_RANGE),
                },
                "telemetry": {
                    "battery_percent": max(0.0, telemetry.battery_percent - config.battery_drain_rate * multiplier),
                    "fuel_percent": max(0.0, telemetry.fuel_percent - config.fuel_drain_rate * multiplier),
                    "speed": self._uniform(CRUISE_SPEED_RANGE),
                    "system_health": health,
                },
            },
        )
