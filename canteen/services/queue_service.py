"""Token queue engine: per-slot FIFO ordering, status transitions and wait times.

Every position-affecting operation on a slot runs while holding that slot's
lock and inside one repository write transaction. Different slots never share a
lock, so their queues move independently.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import ExitStack, contextmanager
from datetime import date, datetime, timedelta
from threading import Lock, RLock
from typing import Iterator, Optional, Sequence

from canteen.domain.errors import (
    CapacityExceededError,
    EmptyQueueError,
    InvalidTransitionError,
    NotFoundError,
)
from canteen.domain.models import (
    ALLOWED_TRANSITIONS,
    Booking,
    BookingItem,
    BookingStatus,
    Slot,
)
from canteen.repository.data_repository import DataRepository
from canteen.utils.clock import Clock, resolve_timezone, utc_now
from canteen.utils.config import Settings, get_settings
from canteen.utils.logger import get_logger


logger = get_logger(__name__)


class SlotLockRegistry:
    """One re-entrant lock per slot id, created lazily."""

    def __init__(self) -> None:
        self._guard = Lock()
        self._locks: dict[int, RLock] = {}

    def lock_for(self, slot_id: int) -> RLock:
        with self._guard:
            lock = self._locks.get(slot_id)
            if lock is None:
                lock = RLock()
                self._locks[slot_id] = lock
            return lock

    @contextmanager
    def hold(self, *slot_ids: int) -> Iterator[None]:
        # Ascending order keeps two-slot holders from deadlocking each other.
        with ExitStack() as stack:
            for slot_id in sorted(set(slot_ids)):
                stack.enter_context(self.lock_for(slot_id))
            yield


def estimate_wait_minutes(
    status: BookingStatus,
    queue_position: int | None,
    average_service_minutes: float,
) -> int | None:
    """Minutes until the token reaches the counter; None once it is closed."""
    if status is BookingStatus.SERVING:
        return 0
    if status is not BookingStatus.PENDING or queue_position is None:
        return None
    ahead = max(0, queue_position - 1)
    return int(round(ahead * average_service_minutes))


class TokenQueueService:
    """Owns queue state for active bookings."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        locks: Optional[SlotLockRegistry] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._clock = clock or utc_now
        self._locks = locks or SlotLockRegistry()
        self._tz = resolve_timezone(self._settings.local_timezone)

    def now(self) -> datetime:
        return self._clock()

    def local_day(self, instant: datetime) -> date:
        return instant.astimezone(self._tz).date()

    def locked(self, *slot_ids: int):
        return self._locks.hold(*slot_ids)

    # ---------------------------------------------------------------- helpers

    def _require_slot(self, conn: sqlite3.Connection, slot_id: int) -> Slot:
        slot = self._repository.get_slot(slot_id, conn=conn)
        if slot is None or not slot.is_active:
            raise NotFoundError(f"slot {slot_id} not found or inactive")
        return slot

    def _require_capacity(self, conn: sqlite3.Connection, slot: Slot) -> None:
        active = self._repository.count_active_bookings(slot.slot_id, conn=conn)
        if active >= slot.capacity:
            raise CapacityExceededError(
                f"slot {slot.slot_id} is full ({active}/{slot.capacity} active tokens)"
            )

    def _issue_token(self, conn: sqlite3.Connection, slot: Slot, at: datetime) -> str:
        token_day = self.local_day(at).isoformat()
        number = self._repository.next_token_number(conn, slot.slot_id, token_day)
        return f"{slot.token_prefix}{number:03d}"

    def _require_transition(self, booking: Booking, target: BookingStatus) -> None:
        if target not in ALLOWED_TRANSITIONS[booking.status]:
            raise InvalidTransitionError(
                f"booking {booking.booking_id} cannot move from "
                f"{booking.status.value} to {target.value}"
            )

    def get_booking(self, booking_id: int) -> Booking:
        booking = self._repository.get_booking(booking_id)
        if booking is None:
            raise NotFoundError(f"booking {booking_id} not found")
        return booking

    @contextmanager
    def _holding_booking_slot(
        self,
        booking_id: int,
        *extra_slot_ids: int,
    ) -> Iterator[Booking]:
        """Lock the booking's current slot (plus extras) and yield a fresh read."""
        while True:
            observed = self.get_booking(booking_id)
            with self._locks.hold(observed.slot_id, *extra_slot_ids):
                current = self.get_booking(booking_id)
                if current.slot_id == observed.slot_id:
                    yield current
                    return
            logger.debug("Booking %s moved slots while locking; retrying", booking_id)

    # ------------------------------------------------------------- operations

    def enqueue(
        self,
        slot_id: int,
        student_id: str,
        items: Sequence[BookingItem],
    ) -> Booking:
        """Append a pending token to the slot's line."""
        with self._locks.hold(slot_id):
            with self._repository.transaction() as conn:
                slot = self._require_slot(conn, slot_id)
                self._require_capacity(conn, slot)
                now = self._clock()
                booking_id = self._repository.insert_booking(
                    conn,
                    student_id=student_id,
                    slot_id=slot_id,
                    token_number=self._issue_token(conn, slot, now),
                    sequence=self._repository.next_booking_sequence(conn),
                    created_at=now,
                    items=items,
                )
                self._repository.renumber_queue(conn, slot_id)
                booking = self._repository.get_booking(booking_id, conn=conn)
        logger.info(
            "Token enqueued | booking_id=%s | slot_id=%s | token=%s | position=%s",
            booking.booking_id,
            slot_id,
            booking.token_number,
            booking.queue_position,
        )
        return booking

    def call_next(self, slot_id: int) -> Booking:
        """Move the head of the waiting line to the counter."""
        with self._locks.hold(slot_id):
            with self._repository.transaction() as conn:
                slot = self._repository.get_slot(slot_id, conn=conn)
                if slot is None:
                    raise NotFoundError(f"slot {slot_id} not found")
                waiting = [
                    booking
                    for booking in self._repository.list_active_bookings(slot_id, conn=conn)
                    if booking.status is BookingStatus.PENDING
                ]
                if not waiting:
                    raise EmptyQueueError(f"no pending tokens in slot {slot_id}")
                head = waiting[0]
                self._repository.update_booking_status(
                    conn, head.booking_id, BookingStatus.SERVING, self._clock()
                )
                self._repository.renumber_queue(conn, slot_id)
                called = self._repository.get_booking(head.booking_id, conn=conn)
        logger.info(
            "Token called | booking_id=%s | slot_id=%s | token=%s | remaining=%s",
            called.booking_id,
            slot_id,
            called.token_number,
            len(waiting) - 1,
        )
        return called

    def _transition(self, booking_id: int, target: BookingStatus) -> Booking:
        with self._holding_booking_slot(booking_id) as booking:
            self._require_transition(booking, target)
            with self._repository.transaction() as conn:
                self._repository.update_booking_status(
                    conn, booking_id, target, self._clock()
                )
                self._repository.renumber_queue(conn, booking.slot_id)
                updated = self._repository.get_booking(booking_id, conn=conn)
        logger.info(
            "Token transition | booking_id=%s | slot_id=%s | %s -> %s",
            booking_id,
            booking.slot_id,
            booking.status.value,
            target.value,
        )
        return updated

    def mark_serving(self, booking_id: int) -> Booking:
        return self._transition(booking_id, BookingStatus.SERVING)

    def mark_served(self, booking_id: int) -> Booking:
        return self._transition(booking_id, BookingStatus.SERVED)

    def cancel(self, booking_id: int) -> Booking:
        return self._transition(booking_id, BookingStatus.CANCELLED)

    def modify(
        self,
        booking_id: int,
        new_items: Sequence[BookingItem],
        new_slot_id: int | None = None,
    ) -> Booking:
        """Replace items in place, or move the token to the tail of another slot."""
        extra = () if new_slot_id is None else (new_slot_id,)
        with self._holding_booking_slot(booking_id, *extra) as booking:
            if booking.status is not BookingStatus.PENDING:
                raise InvalidTransitionError(
                    f"booking {booking_id} cannot be modified while {booking.status.value}"
                )
            moving = new_slot_id is not None and new_slot_id != booking.slot_id
            now = self._clock()
            changes: dict[str, object] = {
                "items": {
                    "from": [[item.menu_item_id, item.quantity] for item in booking.items],
                    "to": [[item.menu_item_id, item.quantity] for item in new_items],
                }
            }
            with self._repository.transaction() as conn:
                if moving:
                    target = self._require_slot(conn, new_slot_id)
                    self._require_capacity(conn, target)
                    token_number = self._issue_token(conn, target, now)
                    self._repository.move_booking(
                        conn,
                        booking_id,
                        slot_id=target.slot_id,
                        token_number=token_number,
                        sequence=self._repository.next_booking_sequence(conn),
                        enqueued_at=now,
                    )
                    changes["slot"] = {"from": booking.slot_id, "to": target.slot_id}
                    changes["token"] = {"from": booking.token_number, "to": token_number}
                self._repository.replace_booking_items(conn, booking_id, new_items)
                self._repository.record_modification(
                    conn, booking_id, now, json.dumps(changes, sort_keys=True)
                )
                if moving:
                    self._repository.renumber_queue(conn, booking.slot_id)
                    self._repository.renumber_queue(conn, new_slot_id)
                updated = self._repository.get_booking(booking_id, conn=conn)
        logger.info(
            "Token modified | booking_id=%s | slot_id=%s | moved=%s | position=%s",
            booking_id,
            updated.slot_id,
            moving,
            updated.queue_position,
        )
        return updated

    # ---------------------------------------------------------------- queries

    def get_queue(self, slot_id: int) -> list[Booking]:
        """Serving tokens first, then the waiting line in position order."""
        with self._repository.snapshot() as conn:
            if self._repository.get_slot(slot_id, conn=conn) is None:
                raise NotFoundError(f"slot {slot_id} not found")
            bookings = self._repository.list_active_bookings(slot_id, conn=conn)
        serving = [b for b in bookings if b.status is BookingStatus.SERVING]
        waiting = [b for b in bookings if b.status is BookingStatus.PENDING]
        return serving + sorted(waiting, key=lambda b: b.queue_position or 0)

    def average_service_minutes(
        self,
        slot_id: int,
        conn: sqlite3.Connection | None = None,
    ) -> float:
        """Rolling mean counter time over recent served tokens, or the default."""
        since = self._clock() - timedelta(
            minutes=self._settings.queue_service_time_window_minutes
        )
        durations = [
            duration.minutes
            for duration in self._repository.list_service_durations(slot_id, since, conn=conn)
            if duration.minutes >= 0
        ]
        if not durations:
            return float(self._settings.queue_default_service_minutes)
        return round(sum(durations) / len(durations), 1)

    def estimated_wait_time(self, booking: Booking) -> int | None:
        return estimate_wait_minutes(
            booking.status,
            booking.queue_position,
            self.average_service_minutes(booking.slot_id),
        )
