"""Canonical in-memory drone store.

This is the only component allowed to merge update intents. The connection
supervisor is its sole writer; everyone else reads snapshots.
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from pyconvoy.ingestion.normalize import prune_patch
from pyconvoy.models.drone import Drone
from pyconvoy.models.route import Route
from pyconvoy.state.events import DroneUpdate, UpdateSource


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _merge_patch(target: dict[str, Any], patch: Mapping[str, Any]) -> None:
    """Deep-merge a pruned patch: nested dicts merge, everything else overwrites."""
    for key, value in patch.items():
        existing = target.get(key)
        if isinstance(value, Mapping) and isinstance(existing, dict):
            _merge_patch(existing, value)
        else:
            target[key] = copy.deepcopy(value)


class DroneStore:
    """Ordered mapping of drone id to its latest :class:`Drone` snapshot.

    Merge semantics are last-write-wins per field: keys present in a patch
    overwrite, keys absent keep their prior value. A record created by an
    update for an unknown id is filled with the :class:`Drone` defaults.
    """

    def __init__(
        self,
        route: Route,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._route = route
        self._clock = clock
        self._drones: dict[str, Drone] = {}
        self._sources: dict[str, UpdateSource] = {}

    def _fit_to_route(self, drone: Drone) -> Drone:
        if drone.route_index > self._route.last_index:
            return drone.model_copy(update={"route_index": self._route.last_index})
        return drone

    def apply(self, update: DroneUpdate) -> Drone:
        """Apply a normalized update intent."""
        return self.apply_update(
            update.drone_id,
            update.data,
            source=update.source,
            observed_at=update.observed_at,
        )

    def apply_update(
        self,
        drone_id: str,
        patch: Mapping[str, Any],
        *,
        source: UpdateSource = UpdateSource.LIVE,
        observed_at: datetime | None = None,
    ) -> Drone:
        """Merge *patch* into the record for *drone_id*, creating it if absent.

        Returns the new snapshot. Raises :class:`pydantic.ValidationError`
        if the merged record is invalid, in which case the store is left
        unchanged.
        """
        current = self._drones.get(drone_id)
        merged: dict[str, Any] = current.model_dump() if current is not None else {"id": drone_id}
        _merge_patch(merged, prune_patch(dict(patch)))
        merged["id"] = drone_id
        merged["last_update"] = observed_at or self._clock()

        drone = self._fit_to_route(Drone.model_validate(merged))
        self._drones[drone.id] = drone
        self._sources[drone.id] = source
        return drone

    def reset(self, baseline: Iterable[Drone], *, source: UpdateSource = UpdateSource.SIMULATOR) -> None:
        """Replace every record at once, keeping *baseline* order."""
        drones: dict[str, Drone] = {}
        for drone in baseline:
            drones[drone.id] = self._fit_to_route(drone)
        self._drones = drones
        self._sources = dict.fromkeys(drones, source)

    def get(self, drone_id: str) -> Drone | None:
        return self._drones.get(drone_id)

    def source_of(self, drone_id: str) -> UpdateSource | None:
        """Source of the last update applied to *drone_id*."""
        return self._sources.get(drone_id)

    def list(self) -> list[Drone]:
        """Snapshot of all records in seed order."""
        return list(self._drones.values())

    def __len__(self) -> int:
        return len(self._drones)

    def __contains__(self, drone_id: object) -> bool:
        return drone_id in self._drones
