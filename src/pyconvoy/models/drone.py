"""Drone (tracked entity) model.

Every record held by the state store is a frozen :class:`Drone`, so readers
always receive immutable snapshots. Bounded fields are clamped at
validation time:

* ``route_progress`` to ``[0, 1]``
* battery, fuel and system health to ``[0, 100]``
* speed to ``>= 0``

``route_index`` is only floored at ``0`` here; the store clamps it against
the route length, which the model does not know.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from pyconvoy._constants import DEFAULT_ARMAMENT, DEFAULT_BATTERY, DEFAULT_FUEL, DEFAULT_SYSTEM_HEALTH
from pyconvoy.ingestion.normalize import clamp

_WARNING_ALIASES = frozenset({"warning", "maintenance", "critical", "degraded"})


def _utcnow() -> datetime:
    return datetime.now(UTC)


class DroneStatus(StrEnum):
    """Operational status of a drone.

    Lookups are lenient: values are case-insensitive, maintenance-like
    states map to ``WARNING`` and anything unrecognised (``STANDBY``,
    ``MOVING``, ...) maps to ``ONLINE``.
    """

    ONLINE = "online"
    OFFLINE = "offline"
    WARNING = "warning"

    @classmethod
    def _missing_(cls, value: object) -> DroneStatus:
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized == "offline":
                return cls.OFFLINE
            if normalized in _WARNING_ALIASES:
                return cls.WARNING
        return cls.ONLINE


class Position(BaseModel):
    """Geographic position; altitude in meters."""

    model_config = ConfigDict(frozen=True, extra="ignore", allow_inf_nan=False)

    latitude: float = 0.0
    longitude: float = 0.0
    altitude: float = 0.0


class Telemetry(BaseModel):
    """Drone telemetry readings."""

    model_config = ConfigDict(frozen=True, extra="ignore", allow_inf_nan=False)

    battery_percent: float = DEFAULT_BATTERY
    fuel_percent: float = DEFAULT_FUEL
    speed: float = 0.0
    system_health: float = DEFAULT_SYSTEM_HEALTH

    @field_validator("battery_percent", "fuel_percent", "system_health")
    @classmethod
    def _clamp_percent(cls, value: float) -> float:
        return clamp(value, 0.0, 100.0)

    @field_validator("speed")
    @classmethod
    def _clamp_speed(cls, value: float) -> float:
        return max(0.0, value)


class Drone(BaseModel):
    """A tracked drone.

    Parameters
    ----------
    id : str
        Stable unique identifier (e.g. ``"REAPER-01"``).
    callsign : str
        Display label; defaults to ``id``.
    position : Position
        Last known position.
    telemetry : Telemetry
        Last known telemetry.
    route_index : int
        Index of the current or most recently passed waypoint.
    route_progress : float
        Fraction of the segment ``route_index -> route_index + 1`` covered.
    status : DroneStatus
        Operational status.
    armament : tuple of str
        Loaded weapons.
    last_update : datetime
        UTC time of the last applied update.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", allow_inf_nan=False)

    id: str
    callsign: str = ""
    position: Position = Field(default_factory=Position)
    telemetry: Telemetry = Field(default_factory=Telemetry)
    route_index: int = 0
    route_progress: float = 0.0
    status: DroneStatus = DroneStatus.ONLINE
    armament: tuple[str, ...] = DEFAULT_ARMAMENT
    last_update: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="before")
    @classmethod
    def _default_callsign(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        if not values.get("callsign") and values.get("id"):
            values = {**values, "callsign": str(values["id"]).strip()}
        return values

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        drone_id = value.strip()
        if not drone_id:
            raise ValueError("id must be non-empty")
        return drone_id

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> Any:
        if isinstance(value, str) and not isinstance(value, DroneStatus):
            return DroneStatus(value)
        return value

    @field_validator("route_index")
    @classmethod
    def _floor_route_index(cls, value: int) -> int:
        return max(0, value)

    @field_validator("route_progress")
    @classmethod
    def _clamp_progress(cls, value: float) -> float:
        return clamp(value, 0.0, 1.0)

    @field_validator("last_update")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @property
    def is_operational(self) -> bool:
        """Whether the simulator should move this drone."""
        return self.status is not DroneStatus.OFFLINE
