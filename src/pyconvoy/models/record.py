"""Drone record model for the ``/api/v1/drones`` roster."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import AliasChoices, AliasPath, BaseModel, ConfigDict, Field, field_validator, model_validator

from pyconvoy._constants import (
    DEFAULT_ARMAMENT,
    DEFAULT_BATTERY,
    DEFAULT_FUEL,
    DEFAULT_SYSTEM_HEALTH,
    RECORD_DEFAULT_ALTITUDE,
    RECORD_DEFAULT_SPEED,
)
from pyconvoy.ingestion.normalize import prune_patch, safe_float, safe_int, safe_str
from pyconvoy.models.drone import Drone, DroneStatus, Position, Telemetry


class DroneRecord(BaseModel):
    """A drone as listed by the tracking server.

    The server and older frontends disagree on key names, so every field
    declares its accepted aliases in priority order. ``None``, ``""`` and
    empty objects are pruned before validation, which makes a null value
    fall through to the next alias and finally to the documented default.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        allow_inf_nan=False,
    )

    id: str = Field(default="", validation_alias=AliasChoices("id", "drone_id"))
    callsign: str = Field(default="", validation_alias=AliasChoices("callsign", "name"))
    route_index: int = Field(
        default=0,
        validation_alias=AliasChoices("waypoint_index", "current_waypoint_index", "currentWaypoint"),
    )
    route_progress: float = Field(default=0.0, validation_alias=AliasChoices("waypoint_progress", "progress"))
    status: DroneStatus = DroneStatus.ONLINE
    battery_percent: float = Field(
        default=DEFAULT_BATTERY,
        validation_alias=AliasChoices(AliasPath("telemetry", "battery_level"), "battery"),
    )
    fuel_percent: float = Field(
        default=DEFAULT_FUEL,
        validation_alias=AliasChoices(AliasPath("telemetry", "fuel_level"), "fuel"),
    )
    altitude: float = Field(
        default=RECORD_DEFAULT_ALTITUDE,
        validation_alias=AliasChoices(AliasPath("position", "altitude"), "altitude"),
    )
    speed: float = Field(
        default=RECORD_DEFAULT_SPEED,
        validation_alias=AliasChoices(AliasPath("telemetry", "speed"), "speed"),
    )
    system_health: float = Field(
        default=DEFAULT_SYSTEM_HEALTH,
        validation_alias=AliasChoices(AliasPath("telemetry", "system_health"), "systemHealth"),
    )
    armament: tuple[str, ...] = DEFAULT_ARMAMENT
    last_update: datetime | None = Field(default=None, validation_alias=AliasChoices("last_update", "lastUpdate"))
    latitude: float = Field(default=0.0, validation_alias=AliasChoices(AliasPath("position", "latitude"), "lat"))
    longitude: float = Field(default=0.0, validation_alias=AliasChoices(AliasPath("position", "longitude"), "lng"))
    raw: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _prune_placeholders(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        cleaned = prune_patch(values)
        if "raw" not in values:
            cleaned["raw"] = values
        return cleaned

    @field_validator("id", "callsign", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> str:
        return safe_str(value) or ""

    @field_validator("route_index", mode="before")
    @classmethod
    def _coerce_index(cls, value: Any) -> int:
        return safe_int(value) or 0

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> DroneStatus:
        return DroneStatus(str(value))

    @field_validator("armament", mode="before")
    @classmethod
    def _coerce_armament(cls, value: Any) -> tuple[str, ...]:
        # The legacy simulator stored a missile count here instead of a loadout.
        if isinstance(value, str):
            return (value,)
        if isinstance(value, (list, tuple)):
            loadout = tuple(text for text in (safe_str(item) for item in value) if text)
            return loadout or DEFAULT_ARMAMENT
        return DEFAULT_ARMAMENT

    @field_validator("battery_percent", "fuel_percent", "altitude", "speed", "system_health", mode="before")
    @classmethod
    def _coerce_float(cls, value: Any) -> Any:
        parsed = safe_float(value)
        return value if parsed is None else parsed

    def to_drone(self) -> Drone:
        """Convert to the canonical store record."""
        return Drone(
            id=self.id,
            callsign=self.callsign,
            position=Position(latitude=self.latitude, longitude=self.longitude, altitude=self.altitude),
            telemetry=Telemetry(
                battery_percent=self.battery_percent,
                fuel_percent=self.fuel_percent,
                speed=self.speed,
                system_health=self.system_health,
            ),
            route_index=self.route_index,
            route_progress=self.route_progress,
            status=self.status,
            armament=self.armament,
            last_update=self.last_update or datetime.now(UTC),
        )
