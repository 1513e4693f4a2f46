from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import pytest

from pyconvoy._constants import DEFAULT_ARMAMENT
from pyconvoy._stream import StreamClosed, StreamEvent, StreamOpened, StreamUpdate
from pyconvoy.config import ConvoyConfig
from pyconvoy.exceptions import (
    ConvoyError,
    ConvoyProbeError,
    ConvoyReconnectExhaustedError,
    ConvoyStateError,
    ConvoyTransportError,
)
from pyconvoy.ingestion.stream import DronePositionData, build_position_update
from pyconvoy.models.drone import Drone, DroneStatus
from pyconvoy.models.route import DEFAULT_ROUTE
from pyconvoy.simulator import KinematicSimulator
from pyconvoy.state.events import DroneUpdate, UpdateSource
from pyconvoy.supervisor import TRANSITIONS, ConnectionMode, ConvoySupervisor

_ROSTER = {
    "drones": [
        {"id": "REAPER-01", "waypoint_index": 2, "progress": 0.5, "battery": 80},
        {"id": "REAPER-02", "waypoint_index": 3, "telemetry": {"fuel_level": 61}},
        {"id": "REAPER-03", "status": "offline"},
    ]
}


@dataclass
class FakeTransport:
    healthy: bool = True
    body: Any = field(default_factory=lambda: _ROSTER)
    post_error: ConvoyTransportError | None = None
    probe_gate: asyncio.Event | None = None
    probe_delay: float = 0.0
    probes: int = 0
    posts: list[str] = field(default_factory=list)

    async def probe_health(self) -> bool:
        self.probes += 1
        if self.probe_gate is not None:
            await self.probe_gate.wait()
        if self.probe_delay:
            await asyncio.sleep(self.probe_delay)
        return self.healthy

    async def get_json(self, endpoint: str, *, timeout: float | None = None) -> Any:
        return self.body

    async def post(self, endpoint: str, *, timeout: float | None = None) -> None:
        self.posts.append(endpoint)
        if self.post_error is not None:
            raise self.post_error


@dataclass
class FakeStream:
    on_event: Callable[[StreamEvent], None]
    opens: int = 0
    closed: bool = False
    connected: bool = False

    @property
    def is_open(self) -> bool:
        return self.connected

    def open(self) -> None:
        self.opens += 1

    async def close(self) -> None:
        self.closed = True
        self.connected = False

    def emit_opened(self) -> None:
        self.connected = True
        self.on_event(StreamOpened(url="ws://test"))

    def emit_closed(self, code: int = 1006) -> None:
        self.connected = False
        self.on_event(StreamClosed(code=code))

    def emit_update(self, update: DroneUpdate) -> None:
        self.on_event(StreamUpdate(update=update))


@dataclass
class FakeStreamFactory:
    streams: list[FakeStream] = field(default_factory=list)

    def __call__(self, on_event: Callable[[StreamEvent], None]) -> FakeStream:
        stream = FakeStream(on_event=on_event)
        self.streams.append(stream)
        return stream


def _supervisor(
    transport: FakeTransport,
    factory: FakeStreamFactory,
    modes: list[ConnectionMode] | None = None,
    **overrides: Any,
) -> ConvoySupervisor:
    settings: dict[str, Any] = {"simulation_interval": 0.01, "reconnect_delay": 0.0}
    settings.update(overrides)
    return ConvoySupervisor(
        ConvoyConfig(**settings),
        transport=transport,
        stream_factory=factory,
        rng=random.Random(5),
        on_mode_change=modes.append if modes is not None else None,
    )


def _position_update(drone_id: str, waypoint_index: int = 4) -> DroneUpdate:
    waypoint = DEFAULT_ROUTE[waypoint_index]
    data = DronePositionData.model_validate(
        {
            "drone_id": drone_id,
            "position": {"latitude": waypoint.latitude, "longitude": waypoint.longitude, "altitude": 151.0},
            "telemetry": {"battery_level": 66.0, "fuel_level": 55.0, "speed": 48.0, "system_health": 91.0},
        }
    )
    return build_position_update(data, DEFAULT_ROUTE)


def _assert_exclusive(supervisor: ConvoySupervisor) -> None:
    assert supervisor.simulator_active != supervisor.live_active


@pytest.mark.asyncio
async def test_startup_probe_failure_falls_back_to_seeded_simulation() -> None:
    modes: list[ConnectionMode] = []
    factory = FakeStreamFactory()
    async with _supervisor(FakeTransport(healthy=False), factory, modes) as supervisor:
        await supervisor.start()

        assert supervisor.mode is ConnectionMode.SIMULATION
        assert modes == [ConnectionMode.ERROR, ConnectionMode.SIMULATION]
        assert isinstance(supervisor.error, ConvoyProbeError)
        assert len(supervisor.drones) == 12
        assert supervisor.is_simulating
        assert factory.streams == []
        _assert_exclusive(supervisor)

        before = {drone.id: drone.route_progress for drone in supervisor.drones}
        await asyncio.sleep(0.05)
        moved = [drone for drone in supervisor.drones if drone.route_progress != before[drone.id]]
        assert moved


@pytest.mark.asyncio
async def test_probe_timeout_counts_as_failure() -> None:
    transport = FakeTransport(probe_delay=1.0)
    async with _supervisor(transport, FakeStreamFactory(), probe_timeout=0.02) as supervisor:
        await supervisor.start()

        assert supervisor.is_simulation_mode
        assert isinstance(supervisor.error, ConvoyProbeError)


@pytest.mark.asyncio
async def test_startup_live_seeds_from_roster_and_grows_on_unknown_id() -> None:
    modes: list[ConnectionMode] = []
    factory = FakeStreamFactory()
    async with _supervisor(FakeTransport(), factory, modes) as supervisor:
        await supervisor.start()

        assert supervisor.mode is ConnectionMode.LIVE
        assert modes == [ConnectionMode.LIVE]
        assert [drone.id for drone in supervisor.drones] == ["REAPER-01", "REAPER-02", "REAPER-03"]
        stream = factory.streams[0]
        assert stream.opens == 1
        _assert_exclusive(supervisor)

        stream.emit_opened()
        assert supervisor.is_connected
        stream.emit_update(_position_update("REAPER-99"))

        assert len(supervisor.drones) == 4
        newcomer = supervisor.get_drone("REAPER-99")
        assert newcomer is not None
        assert newcomer.callsign == "REAPER-99"
        assert newcomer.status is DroneStatus.ONLINE
        assert newcomer.armament == DEFAULT_ARMAMENT
        assert newcomer.route_index == 4
        assert newcomer.telemetry.battery_percent == 66.0
        assert supervisor.get_drone("REAPER-03").status is DroneStatus.OFFLINE  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_live_partial_update_keeps_prior_fields() -> None:
    factory = FakeStreamFactory()
    async with _supervisor(FakeTransport(), factory) as supervisor:
        await supervisor.start()
        before = supervisor.get_drone("REAPER-01")

        factory.streams[0].emit_update(
            DroneUpdate(drone_id="REAPER-01", source=UpdateSource.LIVE, data={"telemetry": {"speed": 12.0}})
        )

        after = supervisor.get_drone("REAPER-01")
        assert before is not None and after is not None
        assert after.telemetry.speed == 12.0
        assert after.telemetry.battery_percent == before.telemetry.battery_percent
        assert after.route_index == before.route_index == 2
        assert after.route_progress == before.route_progress == 0.5


@pytest.mark.asyncio
async def test_empty_roster_seeds_defaults_but_stays_live() -> None:
    factory = FakeStreamFactory()
    async with _supervisor(FakeTransport(body={"drones": []}), factory) as supervisor:
        await supervisor.start()

        assert supervisor.is_live
        assert len(supervisor.drones) == 12
        assert not supervisor.simulator_active
        assert len(factory.streams) == 1


@pytest.mark.asyncio
async def test_reconnect_attempts_are_capped() -> None:
    modes: list[ConnectionMode] = []
    factory = FakeStreamFactory()
    async with _supervisor(FakeTransport(), factory, modes, max_reconnect_attempts=10) as supervisor:
        await supervisor.start()
        stream = factory.streams[0]
        stream.emit_opened()

        for attempt in range(1, 10):
            stream.emit_closed()
            assert supervisor.is_live
            assert supervisor.live_active
            assert not supervisor.simulator_active
            await asyncio.sleep(0.01)
            assert stream.opens == attempt + 1

        stream.emit_closed()

        assert supervisor.mode is ConnectionMode.SIMULATION
        assert modes == [ConnectionMode.LIVE, ConnectionMode.ERROR, ConnectionMode.SIMULATION]
        error = supervisor.error
        assert isinstance(error, ConvoyReconnectExhaustedError)
        assert error.attempts == 10
        assert [drone.id for drone in supervisor.drones] == ["REAPER-01", "REAPER-02", "REAPER-03"]
        assert supervisor.get_drone("REAPER-01").route_index == 2  # type: ignore[union-attr]
        _assert_exclusive(supervisor)

        await asyncio.sleep(0)
        assert stream.closed
        assert stream.opens == 10

        # Events from the abandoned link are discarded.
        stream.emit_update(_position_update("GHOST-1"))
        assert supervisor.get_drone("GHOST-1") is None


@pytest.mark.asyncio
async def test_successful_reopen_resets_close_counter() -> None:
    factory = FakeStreamFactory()
    async with _supervisor(FakeTransport(), factory, max_reconnect_attempts=3) as supervisor:
        await supervisor.start()
        stream = factory.streams[0]

        for _ in range(2):
            stream.emit_closed()
            await asyncio.sleep(0.01)
        stream.emit_opened()
        stream.emit_closed()

        assert supervisor.is_live
        assert supervisor.error is None
        assert supervisor.live_active


@pytest.mark.asyncio
async def test_explicit_switch_cancels_timer_closes_stream_and_resets_store() -> None:
    factory = FakeStreamFactory()
    async with _supervisor(FakeTransport(), factory, reconnect_delay=3.0) as supervisor:
        await supervisor.start()
        stream = factory.streams[0]
        stream.emit_opened()
        stream.emit_update(_position_update("REAPER-01", waypoint_index=7))
        stream.emit_closed()
        assert supervisor._reconnect_handle is not None  # type: ignore[attr-defined]

        await supervisor.switch_to_simulation()

        assert supervisor._reconnect_handle is None  # type: ignore[attr-defined]
        assert stream.closed
        assert not supervisor.live_active
        assert supervisor.is_simulation_mode
        assert supervisor.is_simulating
        start = DEFAULT_ROUTE[0]
        for drone in supervisor.drones:
            assert drone.route_index == 0
            assert drone.route_progress == 0.0
            assert drone.position.latitude == start.latitude
            assert drone.telemetry.battery_percent == 100.0
        assert supervisor.get_drone("REAPER-03").status is DroneStatus.OFFLINE  # type: ignore[union-attr]
        _assert_exclusive(supervisor)

        stream.emit_update(_position_update("GHOST-1"))
        stream.emit_closed()
        assert supervisor.get_drone("GHOST-1") is None
        assert not supervisor.live_active
        assert stream.opens == 1


@pytest.mark.asyncio
async def test_switch_to_live_from_simulation() -> None:
    transport = FakeTransport(healthy=False)
    factory = FakeStreamFactory()
    modes: list[ConnectionMode] = []
    async with _supervisor(transport, factory, modes) as supervisor:
        await supervisor.start()
        assert supervisor.is_simulation_mode

        transport.healthy = True
        await supervisor.switch_to_live()

        assert supervisor.is_live
        assert modes[-2:] == [ConnectionMode.CONNECTING, ConnectionMode.LIVE]
        assert not supervisor.simulator_active
        assert len(factory.streams) == 1
        assert [drone.id for drone in supervisor.drones] == ["REAPER-01", "REAPER-02", "REAPER-03"]
        _assert_exclusive(supervisor)

        factory.streams[0].emit_opened()
        assert supervisor.error is None


@pytest.mark.asyncio
async def test_switch_to_live_failure_resumes_simulation() -> None:
    transport = FakeTransport(healthy=False)
    factory = FakeStreamFactory()
    modes: list[ConnectionMode] = []
    async with _supervisor(transport, factory, modes) as supervisor:
        await supervisor.switch_to_simulation()
        ids = [drone.id for drone in supervisor.drones]

        await supervisor.switch_to_live()

        assert supervisor.is_simulation_mode
        assert supervisor.is_simulating
        assert isinstance(supervisor.error, ConvoyProbeError)
        assert modes == [
            ConnectionMode.SIMULATION,
            ConnectionMode.CONNECTING,
            ConnectionMode.ERROR,
            ConnectionMode.SIMULATION,
        ]
        assert [drone.id for drone in supervisor.drones] == ids
        assert factory.streams == []
        assert transport.probes == 1
        _assert_exclusive(supervisor)


@pytest.mark.asyncio
async def test_switch_during_startup_probe_discards_stale_result() -> None:
    gate = asyncio.Event()
    factory = FakeStreamFactory()
    async with _supervisor(FakeTransport(probe_gate=gate), factory) as supervisor:
        start_task = asyncio.create_task(supervisor.start())
        await asyncio.sleep(0)

        await supervisor.switch_to_simulation()
        gate.set()
        await start_task

        assert supervisor.is_simulation_mode
        assert factory.streams == []
        assert len(supervisor.drones) == 12
        _assert_exclusive(supervisor)


@pytest.mark.asyncio
async def test_reset_mission_while_live_posts_and_logs_failure(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="pyconvoy.supervisor")
    transport = FakeTransport(post_error=ConvoyTransportError("HTTP 500", status_code=500, endpoint="/x"))
    async with _supervisor(transport, FakeStreamFactory()) as supervisor:
        await supervisor.start()

        supervisor.reset_mission()

        assert all(drone.route_index == 0 for drone in supervisor.drones)
        for _ in range(5):
            await asyncio.sleep(0)

        assert transport.posts == ["/api/v1/mission/reset"]
        assert "Mission reset call failed" in caplog.text
        assert supervisor.is_live
        assert supervisor.error is None


@pytest.mark.asyncio
async def test_reset_mission_in_simulation_stays_local() -> None:
    transport = FakeTransport(healthy=False)
    async with _supervisor(transport, FakeStreamFactory()) as supervisor:
        await supervisor.start()
        await asyncio.sleep(0.05)

        supervisor.reset_mission()

        assert transport.posts == []
        assert all(drone.route_progress == 0.0 for drone in supervisor.drones)
        assert supervisor.is_simulating


@pytest.mark.asyncio
async def test_pause_resume_and_speed_multiplier() -> None:
    async with _supervisor(FakeTransport(healthy=False), FakeStreamFactory()) as supervisor:
        await supervisor.start()

        supervisor.pause_simulation()
        frozen = supervisor.drones
        await asyncio.sleep(0.05)

        assert supervisor.simulator_active
        assert not supervisor.is_simulating
        assert supervisor.drones == frozen

        assert supervisor.toggle_simulation() is True
        supervisor.speed_multiplier = 2.5
        assert supervisor.speed_multiplier == 2.5
        supervisor.resume_simulation()
        assert supervisor.is_simulating

        with pytest.raises(ValueError):
            supervisor.speed_multiplier = -1.0


@pytest.mark.asyncio
async def test_callback_failures_are_swallowed() -> None:
    def broken(_value: Any) -> None:
        raise RuntimeError("listener bug")

    supervisor = ConvoySupervisor(
        ConvoyConfig(simulation_interval=0.01),
        transport=FakeTransport(healthy=False),
        stream_factory=FakeStreamFactory(),
        on_mode_change=broken,
        on_update=broken,
    )
    async with supervisor:
        await supervisor.start()
        await asyncio.sleep(0.03)

        assert supervisor.is_simulating


@pytest.mark.asyncio
async def test_close_releases_everything() -> None:
    factory = FakeStreamFactory()
    supervisor = _supervisor(FakeTransport(), factory, reconnect_delay=3.0)
    async with supervisor:
        await supervisor.start()
        factory.streams[0].emit_closed()
        assert supervisor.live_active

    assert not supervisor.live_active
    assert not supervisor.simulator_active
    assert factory.streams[0].closed
    assert supervisor._background == set()  # type: ignore[attr-defined]


@pytest.mark.asyncio
async def test_close_stops_simulator() -> None:
    supervisor = _supervisor(FakeTransport(healthy=False), FakeStreamFactory())
    async with supervisor:
        await supervisor.start()
        assert supervisor.simulator_active

    assert not supervisor.simulator_active
    assert supervisor._background == set()  # type: ignore[attr-defined]


@pytest.mark.asyncio
async def test_lifecycle_guards() -> None:
    unopened = ConvoySupervisor(ConvoyConfig(), stream_factory=FakeStreamFactory())
    with pytest.raises(ConvoyError, match="not initialized"):
        await unopened.start()

    async with _supervisor(FakeTransport(healthy=False), FakeStreamFactory()) as supervisor:
        await supervisor.start()
        with pytest.raises(ConvoyStateError):
            await supervisor.start()
        with pytest.raises(ConvoyStateError):
            supervisor._set_mode(ConnectionMode.ERROR)  # type: ignore[attr-defined]


@pytest.mark.asyncio
async def test_exhaustion_counts_initial_connect_against_limit() -> None:
    factory = FakeStreamFactory()
    async with _supervisor(FakeTransport(), factory, max_reconnect_attempts=3) as supervisor:
        await supervisor.start()
        stream = factory.streams[0]

        for _ in range(2):
            stream.emit_closed()
            await asyncio.sleep(0.01)
        stream.emit_closed()

        assert supervisor.mode is ConnectionMode.SIMULATION
        assert isinstance(supervisor.error, ConvoyReconnectExhaustedError)
        assert supervisor.error.attempts == 3
        await asyncio.sleep(0.01)
        assert stream.opens == 3


class _FlakySimulator(KinematicSimulator):
    def __init__(self, config: ConvoyConfig) -> None:
        super().__init__(DEFAULT_ROUTE, config, rng=random.Random(5))
        self.failures = 1
        self.ticks = 0

    def tick(self, drones: Any) -> list[DroneUpdate]:
        if self.failures:
            self.failures -= 1
            raise RuntimeError("tick bug")
        self.ticks += 1
        return super().tick(drones)


@pytest.mark.asyncio
async def test_failed_tick_keeps_simulation_running(caplog: pytest.LogCaptureFixture) -> None:
    config = ConvoyConfig(simulation_interval=0.01)
    simulator = _FlakySimulator(config)
    async with ConvoySupervisor(
        config,
        transport=FakeTransport(healthy=False),
        stream_factory=FakeStreamFactory(),
        simulator=simulator,
    ) as supervisor:
        with caplog.at_level(logging.ERROR, logger="pyconvoy.supervisor"):
            await supervisor.start()
            for _ in range(100):
                if simulator.ticks >= 2:
                    break
                await asyncio.sleep(0.01)

        assert supervisor.mode is ConnectionMode.SIMULATION
        assert supervisor.simulator_active
        _assert_exclusive(supervisor)
        assert simulator.ticks >= 2
        assert isinstance(supervisor.error, ConvoyError)
        assert "Simulation tick failed" in str(supervisor.error)
        assert any("pyconvoy-simulation" in record.getMessage() for record in caplog.records)


def test_transition_table() -> None:
    assert set(TRANSITIONS) == set(ConnectionMode)
    assert TRANSITIONS[ConnectionMode.ERROR] == frozenset({ConnectionMode.SIMULATION})
    assert ConnectionMode.LIVE not in TRANSITIONS[ConnectionMode.SIMULATION]


def test_drone_snapshots_are_immutable() -> None:
    supervisor = ConvoySupervisor(ConvoyConfig(), transport=FakeTransport(), stream_factory=FakeStreamFactory())

    supervisor.reset_mission()
    snapshot = supervisor.drones
    snapshot.clear()

    assert len(supervisor.drones) == 12
    assert isinstance(supervisor.drones[0], Drone)
