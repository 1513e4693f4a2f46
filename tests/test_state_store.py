from __future__ import annotations

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from pyconvoy._constants import DEFAULT_ARMAMENT
from pyconvoy.models.drone import Drone, DroneStatus, Position
from pyconvoy.models.route import DEFAULT_ROUTE
from pyconvoy.state.events import DroneUpdate, UpdateSource
from pyconvoy.state.store import DroneStore


def _dt() -> datetime:
    return datetime(2026, 1, 1, tzinfo=UTC)


def test_partial_update_keeps_prior_fields() -> None:
    store = DroneStore(DEFAULT_ROUTE)
    store.apply_update(
        "REAPER-01",
        {
            "position": {"latitude": 34.6, "longitude": 69.1, "altitude": 150.0},
            "telemetry": {"battery_percent": 80.0, "fuel_percent": 70.0, "speed": 50.0},
            "route_index": 3,
            "route_progress": 0.4,
        },
    )

    drone = store.apply_update("REAPER-01", {"telemetry": {"battery_percent": 79.5}})

    assert drone.telemetry.battery_percent == 79.5
    assert drone.telemetry.fuel_percent == 70.0
    assert drone.telemetry.speed == 50.0
    assert drone.position == Position(latitude=34.6, longitude=69.1, altitude=150.0)
    assert drone.route_index == 3
    assert drone.route_progress == 0.4


def test_placeholder_values_do_not_overwrite() -> None:
    store = DroneStore(DEFAULT_ROUTE)
    store.apply_update("REAPER-01", {"callsign": "Hunter", "telemetry": {"speed": 42.0}})

    # Patches are pruned at the store boundary; placeholders mean "no update".
    drone = store.apply_update("REAPER-01", {"callsign": "", "telemetry": {"speed": None}, "position": {}})

    assert drone.callsign == "Hunter"
    assert drone.telemetry.speed == 42.0


def test_unknown_id_is_created_with_defaults() -> None:
    store = DroneStore(DEFAULT_ROUTE, clock=_dt)

    drone = store.apply_update("GHOST-1", {"position": {"latitude": 1.0}})

    assert len(store) == 1
    assert "GHOST-1" in store
    assert drone.callsign == "GHOST-1"
    assert drone.telemetry.battery_percent == 100.0
    assert drone.telemetry.fuel_percent == 100.0
    assert drone.telemetry.system_health == 95.0
    assert drone.telemetry.speed == 0.0
    assert drone.status is DroneStatus.ONLINE
    assert drone.armament == DEFAULT_ARMAMENT
    assert drone.position == Position(latitude=1.0, longitude=0.0, altitude=0.0)
    assert drone.last_update == _dt()


def test_route_index_clamped_to_route() -> None:
    store = DroneStore(DEFAULT_ROUTE)

    drone = store.apply_update("REAPER-01", {"route_index": 40, "route_progress": 3.0})

    assert drone.route_index == DEFAULT_ROUTE.last_index
    assert drone.route_progress == 1.0


def test_invalid_patch_leaves_store_unchanged() -> None:
    store = DroneStore(DEFAULT_ROUTE)
    before = store.apply_update("REAPER-01", {"telemetry": {"speed": 10.0}})

    with pytest.raises(ValidationError):
        store.apply_update("REAPER-01", {"telemetry": {"speed": "fast"}})

    assert store.get("REAPER-01") == before


def test_apply_uses_event_source_and_timestamp() -> None:
    store = DroneStore(DEFAULT_ROUTE)

    store.apply(
        DroneUpdate(
            drone_id="REAPER-02",
            source=UpdateSource.SIMULATOR,
            observed_at=_dt(),
            data={"route_progress": 0.5},
        )
    )

    drone = store.get("REAPER-02")
    assert drone is not None
    assert drone.last_update == _dt()
    assert store.source_of("REAPER-02") is UpdateSource.SIMULATOR


def test_reset_replaces_all_records_in_order() -> None:
    store = DroneStore(DEFAULT_ROUTE)
    store.apply_update("OLD", {})

    store.reset([Drone(id="B"), Drone(id="A"), Drone(id="C", route_index=99)])

    assert [drone.id for drone in store.list()] == ["B", "A", "C"]
    assert "OLD" not in store
    assert store.get("C").route_index == DEFAULT_ROUTE.last_index  # type: ignore[union-attr]
    assert store.source_of("A") is UpdateSource.SIMULATOR


def test_list_is_a_snapshot() -> None:
    store = DroneStore(DEFAULT_ROUTE)
    store.apply_update("REAPER-01", {})

    snapshot = store.list()
    store.apply_update("REAPER-02", {})

    assert [drone.id for drone in snapshot] == ["REAPER-01"]
    assert len(store) == 2
