"""Booking lifecycle rules layered over the token queue engine."""

from __future__ import annotations

import sqlite3
from typing import Any, Optional, Sequence

from canteen.domain.errors import DuplicateBookingError, InvalidItemError, NotFoundError
from canteen.domain.models import Booking, BookingItem, booking_total
from canteen.repository.data_repository import DataRepository
from canteen.services.queue_service import TokenQueueService
from canteen.utils.clock import local_day_bounds, resolve_timezone
from canteen.utils.config import Settings, get_settings
from canteen.utils.logger import get_logger


logger = get_logger(__name__)


class BookingLifecycleService:
    """Enforces duplicate, menu and ownership rules before the queue is touched."""

    def __init__(
        self,
        queue: TokenQueueService,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._queue = queue
        self._tz = resolve_timezone(self._settings.local_timezone)

    @staticmethod
    def _normalize_items(items: Sequence[BookingItem]) -> list[BookingItem]:
        if not items:
            raise InvalidItemError("a booking needs at least one item")
        for item in items:
            if item.quantity < 1:
                raise InvalidItemError(
                    f"quantity for menu item {item.menu_item_id} must be >= 1"
                )
        return list(items)

    def _validate_items(
        self,
        slot_id: int,
        items: Sequence[BookingItem],
        conn: sqlite3.Connection | None = None,
    ) -> list[BookingItem]:
        normalized = self._normalize_items(items)
        slot = self._repository.get_slot(slot_id, conn=conn)
        if slot is None or not slot.is_active:
            raise NotFoundError(f"slot {slot_id} not found or inactive")

        menu_ids = self._repository.list_slot_menu_item_ids(slot_id, conn=conn)
        catalog = self._repository.get_menu_items(
            [item.menu_item_id for item in normalized], conn=conn
        )
        for item in normalized:
            if item.menu_item_id not in menu_ids:
                raise InvalidItemError(
                    f"menu item {item.menu_item_id} is not served in slot {slot_id}"
                )
            menu_item = catalog.get(item.menu_item_id)
            if menu_item is None or not menu_item.is_available:
                raise InvalidItemError(f"menu item {item.menu_item_id} is unavailable")
        return normalized

    def _ensure_no_duplicate(
        self,
        student_id: str,
        slot_id: int,
        ignore_booking_id: int | None = None,
    ) -> None:
        day_start, day_end = local_day_bounds(
            self._queue.local_day(self._queue.now()), self._tz
        )
        existing = self._repository.find_active_booking_for_student(
            student_id, slot_id, day_start, day_end
        )
        if existing is not None and existing != ignore_booking_id:
            raise DuplicateBookingError(
                f"student {student_id} already holds booking {existing} in slot {slot_id} today"
            )

    def _owned(self, booking_id: int, student_id: str | None) -> Booking:
        booking = self._queue.get_booking(booking_id)
        # Foreign bookings are reported as missing so ids cannot be probed.
        if student_id is not None and booking.student_id != student_id:
            raise NotFoundError(f"booking {booking_id} not found")
        return booking

    def create_booking(
        self,
        student_id: str,
        slot_id: int,
        items: Sequence[BookingItem],
    ) -> Booking:
        if not student_id.strip():
            raise InvalidItemError("student_id must be non-empty")
        with self._queue.locked(slot_id):
            validated = self._validate_items(slot_id, items)
            self._ensure_no_duplicate(student_id, slot_id)
            booking = self._queue.enqueue(slot_id, student_id, validated)
        logger.info(
            "Booking created | booking_id=%s | student_id=%s | slot_id=%s | token=%s",
            booking.booking_id,
            student_id,
            slot_id,
            booking.token_number,
        )
        return booking

    def get_booking(self, booking_id: int, student_id: str | None = None) -> Booking:
        return self._owned(booking_id, student_id)

    def list_student_bookings(self, student_id: str, active_only: bool = False) -> list[Booking]:
        return self._repository.list_student_bookings(student_id, active_only=active_only)

    def modify_booking(
        self,
        booking_id: int,
        items: Sequence[BookingItem],
        new_slot_id: int | None = None,
        student_id: str | None = None,
    ) -> Booking:
        booking = self._owned(booking_id, student_id)
        target_slot_id = booking.slot_id if new_slot_id is None else new_slot_id
        with self._queue.locked(booking.slot_id, target_slot_id):
            validated = self._validate_items(target_slot_id, items)
            if target_slot_id != booking.slot_id:
                self._ensure_no_duplicate(
                    booking.student_id, target_slot_id, ignore_booking_id=booking_id
                )
            updated = self._queue.modify(
                booking_id,
                validated,
                None if target_slot_id == booking.slot_id else target_slot_id,
            )
        return updated

    def cancel_booking(self, booking_id: int, student_id: str | None = None) -> Booking:
        self._owned(booking_id, student_id)
        return self._queue.cancel(booking_id)

    def list_modifications(self, booking_id: int, student_id: str | None = None):
        self._owned(booking_id, student_id)
        return self._repository.list_modifications(booking_id)

    def describe(self, booking: Booking) -> dict[str, Any]:
        """Read model with the derived total and wait estimate."""
        prices = self._repository.list_menu_prices()
        return {
            "booking_id": booking.booking_id,
            "student_id": booking.student_id,
            "slot_id": booking.slot_id,
            "token_number": booking.token_number,
            "status": booking.status.value,
            "queue_position": booking.queue_position,
            "estimated_wait_time": self._queue.estimated_wait_time(booking),
            "items": [
                {"menu_item_id": item.menu_item_id, "quantity": item.quantity}
                for item in booking.items
            ],
            "total": booking_total(booking.items, prices),
            "created_at": booking.created_at,
            "enqueued_at": booking.enqueued_at,
            "serving_at": booking.serving_at,
            "served_at": booking.served_at,
            "cancelled_at": booking.cancelled_at,
        }
