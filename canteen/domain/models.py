"""Domain models for meal slots, queue tokens and crowd alerts."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, Mapping


class BookingStatus(str, Enum):
    PENDING = "pending"
    SERVING = "serving"
    SERVED = "served"
    CANCELLED = "cancelled"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self in (BookingStatus.SERVED, BookingStatus.CANCELLED)


ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.SERVING)

ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.SERVING, BookingStatus.CANCELLED}),
    BookingStatus.SERVING: frozenset({BookingStatus.SERVED}),
    BookingStatus.SERVED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}


class MenuCategory(str, Enum):
    VEG = "veg"
    NON_VEG = "non-veg"
    BEVERAGE = "beverage"
    DESSERT = "dessert"


@dataclass(frozen=True)
class Slot:
    slot_id: int
    name: str
    start_time: str
    end_time: str
    capacity: int
    is_active: bool

    @property
    def start_hour(self) -> int:
        return int(self.start_time.split(":")[0])

    @property
    def end_hour(self) -> int:
        """Last hour-of-day touched by the window (inclusive)."""
        hour, minute = (int(part) for part in self.end_time.split(":"))
        return hour if minute > 0 else hour - 1

    @property
    def token_prefix(self) -> str:
        return self.name.strip()[:1].upper() or "T"


@dataclass(frozen=True)
class MenuItem:
    menu_item_id: int
    name: str
    description: str | None
    category: MenuCategory
    price: float
    is_available: bool


@dataclass(frozen=True)
class BookingItem:
    menu_item_id: int
    quantity: int


@dataclass(frozen=True)
class Booking:
    booking_id: int
    student_id: str
    slot_id: int
    token_number: str
    status: BookingStatus
    items: tuple[BookingItem, ...]
    queue_position: int | None
    sequence: int
    created_at: datetime
    enqueued_at: datetime
    serving_at: datetime | None = None
    served_at: datetime | None = None
    cancelled_at: datetime | None = None

    @property
    def closed_at(self) -> datetime | None:
        return self.served_at or self.cancelled_at


@dataclass(frozen=True)
class BookingModification:
    booking_id: int
    modified_at: datetime
    changes: str


@dataclass(frozen=True)
class StaffMember:
    staff_id: int
    name: str
    email: str
    created_at: datetime


@dataclass(frozen=True)
class Alert:
    alert_id: int
    slot_id: int
    severity: str
    message: str
    occupancy_rate: float
    created_at: datetime
    resolved: bool = False
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    resolution_note: str | None = None


@dataclass(frozen=True)
class PeakHour:
    hour: int
    frequency: int
    percentage: float


@dataclass(frozen=True)
class SlotOccupancy:
    slot_id: int
    slot_name: str
    active_bookings: int
    capacity: int
    occupancy_rate: float
    crowd_level: str
    average_service_minutes: float = field(default=0.0)


def booking_total(
    items: Iterable[BookingItem],
    prices: Mapping[int, float],
) -> float:
    """Order total from current prices; items whose price is unknown count as 0."""
    total = 0.0
    for item in items:
        total += float(prices.get(item.menu_item_id, 0.0)) * item.quantity
    return round(total, 2)


def alert_counts(alerts: Iterable[Alert]) -> dict[str, int]:
    total = 0
    resolved = 0
    for alert in alerts:
        total += 1
        resolved += int(alert.resolved)
    return {"total": total, "active": total - resolved, "resolved": resolved}
