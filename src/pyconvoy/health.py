"""Drone health assessment for presentation layers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum

from pyconvoy.models.drone import Drone, DroneStatus

LOW_BATTERY_PERCENT = 30.0
LOW_FUEL_PERCENT = 25.0
DEGRADED_HEALTH_PERCENT = 75.0
STALE_AFTER_SECONDS = 120.0


class HealthGrade(StrEnum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    CRITICAL = "critical"


@dataclass(frozen=True)
class HealthAssessment:
    """Whether a drone needs operator attention, and why."""

    reasons: tuple[str, ...] = ()

    @property
    def needs_attention(self) -> bool:
        return bool(self.reasons)


def system_health_grade(health: float) -> HealthGrade:
    if health >= 90:
        return HealthGrade.EXCELLENT
    if health >= 75:
        return HealthGrade.GOOD
    if health >= 50:
        return HealthGrade.FAIR
    if health >= 25:
        return HealthGrade.POOR
    return HealthGrade.CRITICAL


def assess_drone(drone: Drone, now: datetime | None = None) -> HealthAssessment:
    """Collect attention reasons from telemetry, status and data age."""
    now = now or datetime.now(UTC)
    reasons: list[str] = []

    if drone.telemetry.battery_percent < LOW_BATTERY_PERCENT:
        reasons.append("Low battery")
    if drone.telemetry.fuel_percent < LOW_FUEL_PERCENT:
        reasons.append("Low fuel")
    if drone.telemetry.system_health < DEGRADED_HEALTH_PERCENT:
        reasons.append("System degraded")
    if drone.status is DroneStatus.OFFLINE:
        reasons.append("Communication lost")
    if drone.status is DroneStatus.WARNING:
        reasons.append("Warning condition")
    if (now - drone.last_update).total_seconds() > STALE_AFTER_SECONDS:
        reasons.append("Stale data")

    return HealthAssessment(reasons=tuple(reasons))
