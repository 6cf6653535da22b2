"""Domain-level validation rules for queue and analytics policy settings."""

from __future__ import annotations

import re
from dataclasses import dataclass


SLOT_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


@dataclass(frozen=True)
class QueuePolicyConfig:
    default_service_minutes: float
    service_time_window_minutes: int
    analytics_max_days: int
    peak_top_n: int
    peak_relative_threshold: float


def validate_queue_policy_config(config: QueuePolicyConfig) -> None:
    if config.default_service_minutes <= 0:
        raise ValueError("default_service_minutes must be > 0")
    if config.service_time_window_minutes <= 0:
        raise ValueError("service_time_window_minutes must be > 0")
    if config.analytics_max_days <= 0:
        raise ValueError("analytics_max_days must be > 0")
    if config.peak_top_n <= 0:
        raise ValueError("peak_top_n must be > 0")
    if not 0.0 < config.peak_relative_threshold <= 1.0:
        raise ValueError("peak_relative_threshold must be in (0, 1]")


def parse_slot_time(value: str) -> tuple[int, int]:
    if SLOT_TIME_PATTERN.fullmatch(value) is None:
        raise ValueError("slot times must follow HH:MM with 24-hour boundaries")
    hour, minute = (int(part) for part in value.split(":"))
    return hour, minute


def validate_slot_window(start_time: str, end_time: str) -> None:
    if parse_slot_time(start_time) >= parse_slot_time(end_time):
        raise ValueError("start_time must be earlier than end_time")


def validate_capacity(capacity: int) -> None:
    if capacity <= 0:
        raise ValueError("capacity must be > 0")
