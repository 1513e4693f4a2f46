"""Live feed ingestion helpers.

This module translates raw WebSocket frames into normalized update intents.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pyconvoy._constants import DRONE_POSITION_UPDATED
from pyconvoy.exceptions import ConvoyParseError
from pyconvoy.geo import resolve_position
from pyconvoy.models.route import Route
from pyconvoy.state.events import DroneUpdate, UpdateSource

_logger = logging.getLogger(__name__)


class _EventBody(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    data: dict[str, Any] = Field(...)


class _EventPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    event_type: str = Field(...)
    payload: _EventBody = Field(...)


class _StreamEnvelope(BaseModel):
    """Minimal Pydantic envelope for ``{"type": "Event", ...}`` frames."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    type: Literal["Event"]
    payload: _EventPayload = Field(...)


class PositionReport(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True, allow_inf_nan=False)

    latitude: float
    longitude: float
    altitude: float


class TelemetryReport(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True, allow_inf_nan=False)

    battery_level: float
    fuel_level: float
    speed: float
    system_health: float


class DronePositionData(BaseModel):
    """``data`` of a ``DRONE_POSITION_UPDATED`` event."""

    model_config = ConfigDict(extra="ignore", frozen=True, str_strip_whitespace=True)

    drone_id: str = Field(..., min_length=1)
    position: PositionReport
    telemetry: TelemetryReport


def build_position_update(
    data: DronePositionData,
    route: Route,
    *,
    observed_at: datetime | None = None,
) -> DroneUpdate:
    """Build a full-field update; the feed carries no route indices so they are resolved here."""
    placement = resolve_position(data.position, route)
    patch: dict[str, Any] = {
        "position": {
            "latitude": data.position.latitude,
            "longitude": data.position.longitude,
            "altitude": data.position.altitude,
        },
        "telemetry": {
            "battery_percent": data.telemetry.battery_level,
            "fuel_percent": data.telemetry.fuel_level,
            "speed": data.telemetry.speed,
            "system_health": data.telemetry.system_health,
        },
        "route_index": placement.route_index,
        "route_progress": placement.route_progress,
    }
    stamp: dict[str, Any] = {} if observed_at is None else {"observed_at": observed_at}
    return DroneUpdate(
        drone_id=data.drone_id,
        source=UpdateSource.LIVE,
        data=patch,
        raw=data.model_dump(),
        **stamp,
    )


def decode_stream_message(message: str | bytes, route: Route) -> DroneUpdate | None:
    """Decode one live-feed frame.

    Returns ``None`` for well-formed frames that carry no store mutation:
    non-``Event`` envelopes (e.g. ``InitialState``) and unknown event types.

    Raises
    ------
    ConvoyParseError
        If the frame is not JSON, is not an object, or is an ``Event``
        envelope with the wrong shape.
    """
    try:
        parsed = json.loads(message)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ConvoyParseError(f"Live feed frame is not JSON: {message[:64]!r}") from exc
    if not isinstance(parsed, dict):
        raise ConvoyParseError("Live feed frame decoded to non-object JSON")

    if parsed.get("type") != "Event":
        _logger.debug("Ignoring live feed frame type=%s", parsed.get("type"))
        return None

    try:
        envelope = _StreamEnvelope.model_validate(parsed)
    except ValidationError as exc:
        raise ConvoyParseError("Malformed live feed event envelope") from exc

    event_type = envelope.payload.event_type
    if event_type != DRONE_POSITION_UPDATED:
        _logger.debug("Ignoring live feed event_type=%s", event_type)
        return None

    try:
        data = DronePositionData.model_validate(envelope.payload.payload.data)
        return build_position_update(data, route)
    except ValidationError as exc:
        raise ConvoyParseError(f"Malformed {DRONE_POSITION_UPDATED} payload") from exc
