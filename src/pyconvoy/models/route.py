"""Route and waypoint models."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from typing import overload

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from pyconvoy._constants import DEFAULT_ROUTE_POINTS


class Waypoint(BaseModel):
    """A named point on the convoy route.

    Parameters
    ----------
    index : int
        Position of the waypoint in traversal order.
    name : str
        Display name (e.g. ``"Base Alpha"``).
    latitude : float
        Latitude in degrees.
    longitude : float
        Longitude in degrees.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        allow_inf_nan=False,
    )

    index: int = Field(ge=0)
    name: str = ""
    latitude: float = Field(validation_alias=AliasChoices("latitude", "lat"))
    longitude: float = Field(validation_alias=AliasChoices("longitude", "lng", "lon"))


class Route(Sequence[Waypoint]):
    """Ordered, immutable sequence of waypoints.

    Insertion order is traversal order and ``route[i].index == i`` always
    holds. A route is fixed for the lifetime of a session.
    """

    __slots__ = ("_waypoints",)

    def __init__(self, waypoints: Iterable[Waypoint]) -> None:
        items = tuple(waypoints)
        if not items:
            raise ValueError("route must contain at least one waypoint")
        for position, waypoint in enumerate(items):
            if waypoint.index != position:
                raise ValueError(f"waypoint {waypoint.name!r} has index {waypoint.index}, expected {position}")
        self._waypoints = items

    @classmethod
    def from_points(cls, points: Iterable[tuple[str, float, float]]) -> Route:
        """Build a route from ``(name, latitude, longitude)`` tuples."""
        return cls(
            Waypoint(index=index, name=name, latitude=latitude, longitude=longitude)
            for index, (name, latitude, longitude) in enumerate(points)
        )

    @property
    def last_index(self) -> int:
        return len(self._waypoints) - 1

    @overload
    def __getitem__(self, index: int) -> Waypoint: ...

    @overload
    def __getitem__(self, index: slice) -> tuple[Waypoint, ...]: ...

    def __getitem__(self, index: int | slice) -> Waypoint | tuple[Waypoint, ...]:
        return self._waypoints[index]

    def __len__(self) -> int:
        return len(self._waypoints)

    def __iter__(self) -> Iterator[Waypoint]:
        return iter(self._waypoints)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Route):
            return NotImplemented
        return self._waypoints == other._waypoints

    def __hash__(self) -> int:
        return hash(self._waypoints)

    def __repr__(self) -> str:
        return f"Route({len(self._waypoints)} waypoints)"


DEFAULT_ROUTE = Route.from_points(DEFAULT_ROUTE_POINTS)
"""The twelve-waypoint corridor from Base Alpha to Terminal Lima."""
