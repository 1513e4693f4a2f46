"""Normalized update intents.

Every update source (live feed, simulator, REST roster) converts its input
into a :class:`DroneUpdate`. Only the state store is allowed to merge them.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class UpdateSource(StrEnum):
    LIVE = "live"
    SIMULATOR = "simulator"
    HTTP = "http"


class DroneUpdate(BaseModel):
    """A partial update to apply to one drone record.

    ``data`` is keyed by :class:`pyconvoy.models.drone.Drone` field names;
    ``position`` and ``telemetry`` may carry partial nested dicts. Keys
    absent from ``data`` mean "no update".
    """

    model_config = ConfigDict(frozen=True)

    drone_id: str = Field(..., description="Drone identifier")
    source: UpdateSource
    observed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    data: dict[str, Any] = Field(default_factory=dict, description="Normalized patch data")
    raw: dict[str, Any] = Field(default_factory=dict, description="Original payload (as received)")

    @field_validator("drone_id")
    @classmethod
    def _normalize_drone_id(cls, value: str) -> str:
        drone_id = value.strip()
        if not drone_id:
            raise ValueError("drone_id must be non-empty")
        return drone_id

    @field_validator("observed_at")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value
