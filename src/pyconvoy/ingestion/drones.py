"""Drone roster ingestion + parsing."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from pyconvoy._constants import DRONES_ENDPOINT
from pyconvoy._transport import Transport
from pyconvoy.exceptions import ConvoyTransportError
from pyconvoy.models.drone import Drone
from pyconvoy.models.record import DroneRecord

_logger = logging.getLogger(__name__)


def parse_drone_list(decoded: Any) -> list[Drone] | None:
    """Parse a ``{"drones": [...]}`` body.

    Returns ``None`` when the body does not have that shape. Individual
    records that fail validation or carry no id are skipped.
    """
    items = decoded.get("drones") if isinstance(decoded, dict) else None
    if not isinstance(items, list):
        return None

    drones: list[Drone] = []
    for item in items:
        try:
            record = DroneRecord.model_validate(item)
        except ValidationError:
            _logger.debug("Skipping malformed drone record %r", item, exc_info=True)
            continue
        if not record.id:
            _logger.debug("Skipping drone record without id %r", item)
            continue
        drones.append(record.to_drone())
    return drones


async def fetch_drones(transport: Transport, *, timeout: float | None = None) -> list[Drone] | None:
    """Fetch the drone roster; ``None`` when the read fails."""
    try:
        decoded = await transport.get_json(DRONES_ENDPOINT, timeout=timeout)
    except ConvoyTransportError as exc:
        _logger.warning("Failed to fetch drones: %s", exc)
        return None
    return parse_drone_list(decoded)
