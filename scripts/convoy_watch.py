#!/usr/bin/env python3
"""Console watcher for the convoy synchronization engine.

Starts a supervisor against the configured backend (``CONVOY_*`` environment
variables), falls back to the local simulator when the backend is down, and
prints a fleet summary every few seconds until interrupted.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pyconvoy import (  # noqa: E402
    ConnectionMode,
    ConvoyConfig,
    ConvoyError,
    ConvoySupervisor,
    assess_drone,
    system_health_grade,
)
from pyconvoy.geo import eta_minutes  # noqa: E402

_LOG = logging.getLogger("convoy_watch")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Watch convoy telemetry from the live feed or the local simulator.",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--report-seconds",
        type=float,
        default=5.0,
        help="Print a fleet summary each N seconds.",
    )
    parser.add_argument(
        "--speed",
        type=float,
        default=None,
        help="Simulator speed multiplier.",
    )
    parser.add_argument(
        "--simulate",
        action="store_true",
        help="Skip the backend and run the simulator only.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _print_fleet(supervisor: ConvoySupervisor) -> None:
    route = supervisor.route
    print(f"[convoy] mode={supervisor.mode} connected={supervisor.is_connected} drones={len(supervisor.drones)}")
    if supervisor.error is not None:
        print(f"[convoy]   error: {supervisor.error}")
    for drone in supervisor.drones:
        waypoint = route[drone.route_index]
        eta = eta_minutes(drone, route)
        eta_text = "-" if eta is None else f"{eta:.1f}m"
        assessment = assess_drone(drone)
        flags = ", ".join(assessment.reasons) or "ok"
        print(
            f"[convoy]   {drone.callsign:<10} {drone.status:<8} "
            f"wp={waypoint.name:<16} prog={drone.route_progress:5.2f} eta={eta_text:>7} "
            f"bat={drone.telemetry.battery_percent:5.1f} fuel={drone.telemetry.fuel_percent:5.1f} "
            f"health={system_health_grade(drone.telemetry.system_health)} [{flags}]"
        )


async def _watch(args: argparse.Namespace) -> int:
    overrides: dict[str, float] = {}
    if args.speed is not None:
        overrides["speed_multiplier"] = args.speed
    config = ConvoyConfig.from_env(**overrides)

    def on_mode_change(mode: ConnectionMode) -> None:
        print(f"[convoy] mode -> {mode}")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop.set)

    async with ConvoySupervisor(config, on_mode_change=on_mode_change) as supervisor:
        if args.simulate:
            await supervisor.switch_to_simulation()
        else:
            await supervisor.start()

        elapsed = 0.0
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=args.report_seconds)
            except TimeoutError:
                pass
            elapsed += args.report_seconds
            _print_fleet(supervisor)
            if args.duration and elapsed >= args.duration:
                break
    return 0


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(_watch(args))
    except ConvoyError as exc:
        _LOG.error("Watcher failed: %s", exc)
        return 2


if __name__ == "__main__":
    raise SystemExit(_main())
