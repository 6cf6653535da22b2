"""Crowd level policy shared by the analytics aggregator and alerting."""

from __future__ import annotations

from enum import Enum


LOW_THRESHOLD = 40.0
HIGH_THRESHOLD = 70.0


class CrowdLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def occupancy_rate(active_bookings: int, capacity: int) -> float:
    """Percentage of capacity in use, clamped to [0, 100]."""
    if capacity <= 0:
        return 0.0
    rate = active_bookings * 100.0 / capacity
    return max(0.0, min(100.0, rate))


def crowd_level(occupancy: float) -> CrowdLevel:
    if occupancy >= HIGH_THRESHOLD:
        return CrowdLevel.HIGH
    if occupancy >= LOW_THRESHOLD:
        return CrowdLevel.MEDIUM
    return CrowdLevel.LOW
