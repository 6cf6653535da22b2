from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from canteen.domain.errors import (
    CapacityExceededError,
    EmptyQueueError,
    InvalidTransitionError,
    NotFoundError,
)
from canteen.domain.models import BookingItem, BookingStatus
from canteen.repository.data_repository import DataRepository
from canteen.services.queue_service import TokenQueueService, estimate_wait_minutes
from canteen.utils.config import get_settings


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    return replace(
        get_settings(),
        database_path=tmp_path / filename,
        local_timezone="UTC",
        seed_default_catalog=False,
        queue_default_service_minutes=5.0,
    )


def _build_engine(tmp_path, capacity: int = 10, frozen: bool = False):
    settings = _build_test_settings(tmp_path, "queue.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    slot_id = repository.create_slot("Lunch", "12:00", "14:00", capacity)
    other_slot_id = repository.create_slot("Dinner", "19:00", "21:00", capacity)
    item_id = repository.create_menu_item("Veg Thali", None, "veg", 80.0)
    clock = FakeClock(datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc))
    engine = TokenQueueService(repository=repository, settings=settings, clock=clock)

    def enqueue(student_id: str, slot: int = slot_id):
        booking = engine.enqueue(slot, student_id, [BookingItem(item_id, 1)])
        if not frozen:
            clock.advance(seconds=1)
        return booking

    return engine, repository, clock, slot_id, other_slot_id, item_id, enqueue


def _positions(engine: TokenQueueService, slot_id: int) -> dict[str, int | None]:
    return {booking.student_id: booking.queue_position for booking in engine.get_queue(slot_id)}


def test_capacity_bound_rejects_third_booking(tmp_path):
    engine, _, _, slot_id, _, _, enqueue = _build_engine(tmp_path, capacity=2)

    first = enqueue("s1")
    second = enqueue("s2")

    assert (first.status, first.queue_position) == (BookingStatus.PENDING, 1)
    assert (second.status, second.queue_position) == (BookingStatus.PENDING, 2)
    with pytest.raises(CapacityExceededError):
        enqueue("s3")
    assert len(engine.get_queue(slot_id)) == 2


def test_call_next_moves_head_to_counter_and_shifts_line(tmp_path):
    engine, _, _, slot_id, _, _, enqueue = _build_engine(tmp_path)
    first = enqueue("s1")
    second = enqueue("s2")

    called = engine.call_next(slot_id)

    assert called.booking_id == first.booking_id
    assert called.status is BookingStatus.SERVING
    assert called.queue_position is None
    refreshed = engine.get_booking(second.booking_id)
    assert refreshed.status is BookingStatus.PENDING
    assert refreshed.queue_position == 1


def test_serving_token_still_counts_against_capacity(tmp_path):
    engine, _, _, slot_id, _, _, enqueue = _build_engine(tmp_path, capacity=1)
    enqueue("s1")
    engine.call_next(slot_id)

    with pytest.raises(CapacityExceededError):
        enqueue("s2")


def test_call_next_on_empty_queue_fails_immediately(tmp_path):
    engine, _, _, slot_id, _, _, _ = _build_engine(tmp_path)

    with pytest.raises(EmptyQueueError):
        engine.call_next(slot_id)


def test_call_next_unknown_slot_is_not_found(tmp_path):
    engine, *_ = _build_engine(tmp_path)

    with pytest.raises(NotFoundError):
        engine.call_next(999)


def test_enqueue_into_inactive_slot_is_not_found(tmp_path):
    engine, repository, _, slot_id, _, _, enqueue = _build_engine(tmp_path)
    repository.update_slot(
        slot_id,
        name="Lunch",
        start_time="12:00",
        end_time="14:00",
        capacity=10,
        is_active=False,
    )

    with pytest.raises(NotFoundError):
        enqueue("s1")


def test_fifo_tie_break_uses_insertion_order(tmp_path):
    engine, _, _, slot_id, _, _, enqueue = _build_engine(tmp_path, frozen=True)

    first = enqueue("s1")
    second = enqueue("s2")
    third = enqueue("s3")

    assert first.created_at == second.created_at == third.created_at
    assert _positions(engine, slot_id) == {"s1": 1, "s2": 2, "s3": 3}
    assert engine.call_next(slot_id).booking_id == first.booking_id


def test_enqueue_then_cancel_restores_other_positions(tmp_path):
    engine, _, _, slot_id, _, _, enqueue = _build_engine(tmp_path)
    for student in ("s1", "s2", "s3"):
        enqueue(student)
    engine.call_next(slot_id)
    before = _positions(engine, slot_id)

    extra = enqueue("s4")
    engine.cancel(extra.booking_id)

    assert _positions(engine, slot_id) == before


def test_cancel_in_middle_keeps_positions_contiguous(tmp_path):
    engine, _, _, slot_id, _, _, enqueue = _build_engine(tmp_path)
    bookings = [enqueue(f"s{index}") for index in range(1, 6)]

    engine.cancel(bookings[1].booking_id)
    engine.cancel(bookings[3].booking_id)

    positions = sorted(
        booking.queue_position
        for booking in engine.get_queue(slot_id)
        if booking.status is BookingStatus.PENDING
    )
    assert positions == [1, 2, 3]
    assert _positions(engine, slot_id) == {"s1": 1, "s3": 2, "s5": 3}


def test_state_machine_rejects_invalid_transitions(tmp_path):
    engine, _, _, slot_id, _, _, enqueue = _build_engine(tmp_path)
    booking = enqueue("s1")

    with pytest.raises(InvalidTransitionError):
        engine.mark_served(booking.booking_id)

    engine.call_next(slot_id)
    with pytest.raises(InvalidTransitionError):
        engine.cancel(booking.booking_id)

    served = engine.mark_served(booking.booking_id)
    assert served.status is BookingStatus.SERVED
    for action in (engine.mark_served, engine.mark_serving, engine.cancel):
        with pytest.raises(InvalidTransitionError):
            action(booking.booking_id)


def test_mark_serving_specific_token_renumbers_line(tmp_path):
    engine, _, _, slot_id, _, _, enqueue = _build_engine(tmp_path)
    enqueue("s1")
    second = enqueue("s2")
    enqueue("s3")

    serving = engine.mark_serving(second.booking_id)

    assert serving.status is BookingStatus.SERVING
    assert _positions(engine, slot_id) == {"s2": None, "s1": 1, "s3": 2}


def test_unknown_booking_is_not_found(tmp_path):
    engine, *_ = _build_engine(tmp_path)

    with pytest.raises(NotFoundError):
        engine.cancel(12345)


def test_token_numbers_use_slot_initial_and_daily_counter(tmp_path):
    engine, _, clock, _, _, _, enqueue = _build_engine(tmp_path)

    first = enqueue("s1")
    second = enqueue("s2")
    engine.cancel(second.booking_id)
    third = enqueue("s3")
    clock.advance(days=1)
    next_day = enqueue("s4")

    assert [first.token_number, second.token_number, third.token_number] == [
        "L001",
        "L002",
        "L003",
    ]
    assert next_day.token_number == "L001"


def test_modify_same_slot_keeps_position(tmp_path):
    engine, repository, _, slot_id, _, item_id, enqueue = _build_engine(tmp_path)
    enqueue("s1")
    second = enqueue("s2")
    enqueue("s3")

    updated = engine.modify(second.booking_id, [BookingItem(item_id, 3)])

    assert updated.queue_position == 2
    assert updated.items == (BookingItem(item_id, 3),)
    assert updated.token_number == second.token_number
    assert len(repository.list_modifications(second.booking_id)) == 1


def test_modify_to_other_slot_moves_to_tail_with_new_token(tmp_path):
    engine, _, _, slot_id, other_slot_id, item_id, enqueue = _build_engine(tmp_path)
    enqueue("s1")
    moving = enqueue("s2")
    enqueue("s3")
    enqueue("d1", slot=other_slot_id)

    moved = engine.modify(moving.booking_id, [BookingItem(item_id, 1)], new_slot_id=other_slot_id)

    assert moved.slot_id == other_slot_id
    assert moved.queue_position == 2
    assert moved.token_number == "D002"
    assert _positions(engine, slot_id) == {"s1": 1, "s3": 2}


def test_modify_to_full_slot_leaves_state_unchanged(tmp_path):
    engine, _, _, slot_id, other_slot_id, item_id, enqueue = _build_engine(tmp_path, capacity=1)
    booking = enqueue("s1")
    enqueue("d1", slot=other_slot_id)

    with pytest.raises(CapacityExceededError):
        engine.modify(booking.booking_id, [BookingItem(item_id, 2)], new_slot_id=other_slot_id)

    unchanged = engine.get_booking(booking.booking_id)
    assert unchanged.slot_id == slot_id
    assert unchanged.queue_position == 1
    assert unchanged.items == (BookingItem(item_id, 1),)


def test_modify_requires_pending(tmp_path):
    engine, _, _, slot_id, _, item_id, enqueue = _build_engine(tmp_path)
    booking = enqueue("s1")
    engine.call_next(slot_id)

    with pytest.raises(InvalidTransitionError):
        engine.modify(booking.booking_id, [BookingItem(item_id, 2)])


def test_estimated_wait_uses_default_without_history(tmp_path):
    engine, _, _, slot_id, _, _, enqueue = _build_engine(tmp_path)
    first = enqueue("s1")
    enqueue("s2")
    third = enqueue("s3")

    assert engine.estimated_wait_time(first) == 0
    assert engine.estimated_wait_time(third) == 10

    serving = engine.call_next(slot_id)
    assert engine.estimated_wait_time(serving) == 0


def test_average_service_time_rolls_over_recent_history(tmp_path):
    engine, _, clock, slot_id, _, _, enqueue = _build_engine(tmp_path)
    for student in ("s1", "s2", "s3", "s4"):
        enqueue(student)

    for minutes in (2, 4):
        called = engine.call_next(slot_id)
        clock.advance(minutes=minutes)
        engine.mark_served(called.booking_id)

    assert engine.average_service_minutes(slot_id) == pytest.approx(3.0)
    waiting = [b for b in engine.get_queue(slot_id) if b.queue_position == 2]
    assert engine.estimated_wait_time(waiting[0]) == 3

    clock.advance(minutes=62)
    assert engine.average_service_minutes(slot_id) == pytest.approx(5.0)


def test_estimate_wait_minutes_terminal_is_none():
    assert estimate_wait_minutes(BookingStatus.SERVED, None, 5.0) is None
    assert estimate_wait_minutes(BookingStatus.CANCELLED, None, 5.0) is None
    assert estimate_wait_minutes(BookingStatus.PENDING, 4, 2.5) == 8


def test_concurrent_enqueues_never_exceed_capacity(tmp_path):
    engine, _, _, slot_id, _, item_id, _ = _build_engine(tmp_path, capacity=5)
    outcomes: list[str] = []
    lock = threading.Lock()

    def worker(index: int) -> None:
        try:
            engine.enqueue(slot_id, f"s{index}", [BookingItem(item_id, 1)])
            result = "ok"
        except CapacityExceededError:
            result = "full"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=worker, args=(index,)) for index in range(12)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("ok") == 5
    assert outcomes.count("full") == 7
    positions = sorted(booking.queue_position for booking in engine.get_queue(slot_id))
    assert positions == [1, 2, 3, 4, 5]
