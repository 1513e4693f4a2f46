"""Connection supervisor: live feed / simulator failover state machine."""

from __future__ import annotations

import asyncio
import functools
import logging
import random
from collections.abc import Callable, Coroutine, Mapping
from enum import StrEnum
from types import MappingProxyType
from typing import Any

import aiohttp
from pydantic import ValidationError

from pyconvoy._constants import MISSION_RESET_ENDPOINT
from pyconvoy._stream import (
    ConvoyStreamClient,
    StreamClient,
    StreamClosed,
    StreamEvent,
    StreamFactory,
    StreamOpened,
    StreamUpdate,
)
from pyconvoy._transport import HttpTransport, Transport
from pyconvoy.config import ConvoyConfig
from pyconvoy.exceptions import (
    ConvoyError,
    ConvoyProbeError,
    ConvoyReconnectExhaustedError,
    ConvoyResetCallError,
    ConvoyStateError,
    ConvoyTransportError,
)
from pyconvoy.ingestion.drones import fetch_drones
from pyconvoy.models.drone import Drone
from pyconvoy.models.route import DEFAULT_ROUTE, Route
from pyconvoy.simulator import KinematicSimulator
from pyconvoy.state.events import DroneUpdate, UpdateSource
from pyconvoy.state.store import DroneStore

_logger = logging.getLogger(__name__)


class ConnectionMode(StrEnum):
    CONNECTING = "connecting"
    LIVE = "live"
    SIMULATION = "simulation"
    ERROR = "error"


# ERROR is a pass-through signal: every surfaced failure continues into SIMULATION.
TRANSITIONS: Mapping[ConnectionMode, frozenset[ConnectionMode]] = MappingProxyType(
    {
        ConnectionMode.CONNECTING: frozenset(
            {ConnectionMode.LIVE, ConnectionMode.SIMULATION, ConnectionMode.ERROR}
        ),
        ConnectionMode.LIVE: frozenset(
            {
                ConnectionMode.LIVE,
                ConnectionMode.SIMULATION,
                ConnectionMode.CONNECTING,
                ConnectionMode.ERROR,
            }
        ),
        ConnectionMode.SIMULATION: frozenset({ConnectionMode.SIMULATION, ConnectionMode.CONNECTING}),
        ConnectionMode.ERROR: frozenset({ConnectionMode.SIMULATION}),
    }
)


class ConvoySupervisor:
    """Keeps the drone store in sync from either the live feed or the simulator.

    Usage::

        async with ConvoySupervisor(config) as supervisor:
            await supervisor.start()
            drones = supervisor.drones

    Exactly one update source is active at a time. Every transition bumps
    an internal generation; stream events, timers and tasks started under
    an older generation are discarded when they fire.
    """

    def __init__(
        self,
        config: ConvoyConfig | None = None,
        *,
        route: Route = DEFAULT_ROUTE,
        session: aiohttp.ClientSession | None = None,
        transport: Transport | None = None,
        stream_factory: StreamFactory | None = None,
        simulator: KinematicSimulator | None = None,
        rng: random.Random | None = None,
        on_mode_change: Callable[[ConnectionMode], None] | None = None,
        on_update: Callable[[Drone], None] | None = None,
    ) -> None:
        self._config = config or ConvoyConfig()
        self._route = route
        self._external_session = session is not None
        self._http_session = session
        self._transport = transport
        self._owns_transport = False
        self._stream_factory = stream_factory
        self._simulator = simulator or KinematicSimulator(route, self._config, rng=rng)
        self._store = DroneStore(route)
        self._on_mode_change = on_mode_change
        self._on_update = on_update

        self._mode = ConnectionMode.CONNECTING
        self._error: ConvoyError | None = None
        self._started = False
        self._generation = 0
        self._consecutive_closes = 0
        self._paused = False
        self._stream: StreamClient | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._sim_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> ConvoySupervisor:
        needs_http = self._transport is None or self._stream_factory is None
        if self._http_session is None and needs_http:
            self._http_session = aiohttp.ClientSession()
        if self._transport is None and self._http_session is not None:
            self._transport = HttpTransport(self._config, self._http_session)
            self._owns_transport = True
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Tear down the live link, the simulator and pending background calls."""
        stream = self._begin_transition()
        self._consecutive_closes = 0
        if stream is not None:
            await stream.close()

        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._background.clear()

        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        if self._owns_transport:
            self._transport = None
            self._owns_transport = False

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def mode(self) -> ConnectionMode:
        return self._mode

    @property
    def error(self) -> ConvoyError | None:
        """Last surfaced failure (probe failure or reconnect exhaustion)."""
        return self._error

    @property
    def route(self) -> Route:
        return self._route

    @property
    def drones(self) -> list[Drone]:
        """Snapshot of every drone in seed order."""
        return self._store.list()

    def get_drone(self, drone_id: str) -> Drone | None:
        return self._store.get(drone_id)

    @property
    def is_live(self) -> bool:
        return self._mode is ConnectionMode.LIVE

    @property
    def is_simulation_mode(self) -> bool:
        return self._mode is ConnectionMode.SIMULATION

    @property
    def is_connected(self) -> bool:
        """Whether the live feed socket is open right now."""
        return self._stream is not None and self._stream.is_open

    @property
    def live_active(self) -> bool:
        """Whether a live link is held (open stream or pending reconnect)."""
        return self._stream is not None or self._reconnect_handle is not None

    @property
    def simulator_active(self) -> bool:
        """Whether the simulator tick task is running (paused or not)."""
        return self._sim_task is not None and not self._sim_task.done()

    @property
    def is_simulating(self) -> bool:
        """Whether the simulator is running and advancing drones."""
        return self.simulator_active and not self._paused

    @property
    def speed_multiplier(self) -> float:
        return self._simulator.speed_multiplier

    @speed_multiplier.setter
    def speed_multiplier(self, value: float) -> None:
        self._simulator.speed_multiplier = value

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Probe the backend and enter live mode, or fall back to the simulator."""
        if self._started:
            raise ConvoyStateError("Supervisor already started")
        self._require_transport()
        self._started = True
        self._generation += 1
        await self._connect(self._generation)

    async def switch_to_live(self) -> None:
        """Stop the simulator and reconnect to the backend.

        On probe failure the error is recorded and simulation resumes from
        the current drone state.
        """
        self._require_transport()
        self._started = True
        stream = self._begin_transition()
        generation = self._generation
        self._consecutive_closes = 0
        if self._mode is not ConnectionMode.CONNECTING:
            self._set_mode(ConnectionMode.CONNECTING)
        if stream is not None:
            await stream.close()
        if generation != self._generation:
            return
        await self._connect(generation)

    async def switch_to_simulation(self) -> None:
        """Drop the live link and restart the mission in the simulator."""
        self._started = True
        stream = self._begin_transition()
        generation = self._generation
        self._consecutive_closes = 0
        if stream is not None:
            await stream.close()
        if generation != self._generation:
            return

        current = self._store.list()
        baseline = self._simulator.reset(current) if current else self._simulator.seed()
        self._enter_simulation(baseline)

    def reset_mission(self) -> None:
        """Return every drone to the first waypoint.

        While live, the backend is asked to reset too. That call runs in
        the background and its failure is only logged.
        """
        current = self._store.list()
        baseline = self._simulator.reset(current) if current else self._simulator.seed()
        self._store.reset(baseline, source=UpdateSource.SIMULATOR)
        for drone in self._store.list():
            self._notify_update(drone)
        _logger.info("Mission reset (%d drones)", len(baseline))

        if self._mode is ConnectionMode.LIVE and self._transport is not None:
            self._spawn(self._post_mission_reset(self._transport), name="pyconvoy-mission-reset")

    def pause_simulation(self) -> None:
        self._paused = True

    def resume_simulation(self) -> None:
        self._paused = False

    def toggle_simulation(self) -> bool:
        """Flip the pause flag; returns whether the simulator now advances."""
        self._paused = not self._paused
        return self.is_simulating

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _set_mode(self, mode: ConnectionMode) -> None:
        current = self._mode
        if mode not in TRANSITIONS[current]:
            raise ConvoyStateError(f"Illegal connection mode transition {current} -> {mode}")
        if mode is current:
            return
        self._mode = mode
        _logger.info("Connection mode %s -> %s", current, mode)
        if self._on_mode_change is not None:
            try:
                self._on_mode_change(mode)
            except Exception:
                _logger.debug("on_mode_change callback failed", exc_info=True)

    def _begin_transition(self) -> StreamClient | None:
        """Invalidate the current generation and release its resources.

        Returns the detached stream so the caller can close it.
        """
        self._generation += 1
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None
        if self._sim_task is not None:
            self._sim_task.cancel()
            self._sim_task = None
        stream = self._stream
        self._stream = None
        return stream

    async def _connect(self, generation: int) -> None:
        healthy = await self._probe()
        if generation != self._generation:
            return
        if not healthy:
            self._fail_over(ConvoyProbeError(f"Backend at {self._config.api_url} is unavailable"))
            return

        drones = await self._fetch()
        if generation != self._generation:
            return
        if drones:
            self._store.reset(drones, source=UpdateSource.HTTP)
        else:
            _logger.info("Initial read returned no drones; seeding defaults")
            self._store.reset(self._simulator.seed(), source=UpdateSource.SIMULATOR)

        self._set_mode(ConnectionMode.LIVE)
        self._open_stream(generation)

    async def _probe(self) -> bool:
        transport = self._require_transport()
        try:
            async with asyncio.timeout(self._config.probe_timeout):
                healthy = await transport.probe_health()
        except TimeoutError:
            _logger.warning("Health probe timed out after %.1fs", self._config.probe_timeout)
            return False
        if not healthy:
            _logger.warning("Health probe failed for %s", self._config.api_url)
        return healthy

    async def _fetch(self) -> list[Drone] | None:
        transport = self._require_transport()
        try:
            async with asyncio.timeout(self._config.fetch_timeout):
                return await fetch_drones(transport, timeout=self._config.fetch_timeout)
        except TimeoutError:
            _logger.warning("Initial drone read timed out after %.1fs", self._config.fetch_timeout)
            return None

    def _fail_over(self, error: ConvoyError) -> None:
        """Surface *error* and continue in the simulator from the current drones."""
        self._error = error
        _logger.warning("%s; falling back to simulation", error)
        self._set_mode(ConnectionMode.ERROR)
        baseline = self._store.list() or self._simulator.seed()
        self._enter_simulation(baseline)

    def _enter_simulation(self, baseline: list[Drone]) -> None:
        self._store.reset(baseline, source=UpdateSource.SIMULATOR)
        self._paused = False
        self._set_mode(ConnectionMode.SIMULATION)
        self._sim_task = self._spawn(self._run_simulation(self._generation), name="pyconvoy-simulation")

    # ------------------------------------------------------------------
    # Live feed
    # ------------------------------------------------------------------

    def _open_stream(self, generation: int) -> None:
        on_event = functools.partial(self._on_stream_event, generation)
        if self._stream_factory is not None:
            stream = self._stream_factory(on_event)
        else:
            if self._http_session is None:
                raise ConvoyError("Supervisor not initialized. Use 'async with ConvoySupervisor(...)'")
            stream = ConvoyStreamClient(
                url=self._config.ws_url,
                http_session=self._http_session,
                route=self._route,
                on_event=on_event,
                heartbeat=self._config.ws_heartbeat,
                logger=_logger,
            )
        self._stream = stream
        stream.open()

    def _on_stream_event(self, generation: int, event: StreamEvent) -> None:
        if generation != self._generation:
            _logger.debug("Dropping stale live feed event %s", type(event).__name__)
            return

        if isinstance(event, StreamUpdate):
            self._apply(event.update)
        elif isinstance(event, StreamOpened):
            if self._consecutive_closes:
                _logger.info("Live feed reconnected to %s", event.url)
            self._consecutive_closes = 0
            self._error = None
            self._set_mode(ConnectionMode.LIVE)
        elif isinstance(event, StreamClosed):
            self._handle_stream_closed(event.code)

    def _handle_stream_closed(self, code: int | None) -> None:
        self._consecutive_closes += 1
        attempts = self._consecutive_closes
        limit = self._config.max_reconnect_attempts

        if attempts >= limit:
            stream = self._begin_transition()
            self._consecutive_closes = 0
            if stream is not None:
                self._spawn(stream.close(), name="pyconvoy-stream-close")
            self._fail_over(
                ConvoyReconnectExhaustedError(
                    f"Live feed closed {attempts} times in a row (last code {code})",
                    attempts=attempts,
                )
            )
            return

        delay = self._config.reconnect_delay
        _logger.info(
            "Live feed closed (code=%s); reconnect %d/%d in %.1fs",
            code,
            attempts,
            limit - 1,
            delay,
        )
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(delay, self._reconnect, self._generation)

    def _reconnect(self, generation: int) -> None:
        self._reconnect_handle = None
        if generation != self._generation or self._stream is None:
            return
        self._stream.open()

    # ------------------------------------------------------------------
    # Simulator
    # ------------------------------------------------------------------

    async def _run_simulation(self, generation: int) -> None:
        interval = self._config.simulation_interval
        while generation == self._generation:
            await asyncio.sleep(interval)
            if generation != self._generation:
                return
            if not self._paused:
                self._tick()

    def _tick(self) -> None:
        for update in self._simulator.tick(self._store.list()):
            self._apply(update)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _apply(self, update: DroneUpdate) -> None:
        try:
            drone = self._store.apply(update)
        except ValidationError:
            _logger.debug("Dropping invalid %s update for %s", update.source, update.drone_id, exc_info=True)
            return
        self._notify_update(drone)

    def _notify_update(self, drone: Drone) -> None:
        if self._on_update is None:
            return
        try:
            self._on_update(drone)
        except Exception:
            _logger.debug("on_update callback failed", exc_info=True)

    def _require_transport(self) -> Transport:
        if self._transport is None:
            raise ConvoyError("Supervisor not initialized. Use 'async with ConvoySupervisor(...)'")
        return self._transport

    def _spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        if isinstance(exc, ConvoyResetCallError):
            _logger.warning("%s", exc)
            return
        _logger.error("Background task %s failed", task.get_name(), exc_info=exc)
        if task is self._sim_task and self._mode is ConnectionMode.SIMULATION:
            # Ticking must not stop while the mode still says simulation.
            self._error = ConvoyError(f"Simulation tick failed: {exc}")
            self._sim_task = self._spawn(self._run_simulation(self._generation), name="pyconvoy-simulation")

    async def _post_mission_reset(self, transport: Transport) -> None:
        try:
            await transport.post(MISSION_RESET_ENDPOINT, timeout=self._config.fetch_timeout)
        except ConvoyTransportError as exc:
            raise ConvoyResetCallError(
                f"Mission reset call failed: {exc}",
                status_code=exc.status_code,
                endpoint=exc.endpoint,
            ) from exc
