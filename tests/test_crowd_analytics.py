from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from canteen.domain.crowd import CrowdLevel, crowd_level, occupancy_rate
from canteen.domain.errors import NotFoundError, ValidationError
from canteen.domain.models import BookingItem, PeakHour
from canteen.repository.data_repository import DataRepository
from canteen.services.analytics_service import CrowdAnalyticsService
from canteen.services.queue_service import TokenQueueService
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
        analytics_peak_top_n=3,
        analytics_peak_relative_threshold=0.8,
        analytics_max_days=30,
    )


def _build(tmp_path, capacity: int = 10, start_time: str = "12:00", end_time: str = "14:00"):
    settings = _build_test_settings(tmp_path, "analytics.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    slot_id = repository.create_slot("Lunch", start_time, end_time, capacity)
    item_id = repository.create_menu_item("Veg Thali", None, "veg", 80.0)
    repository.assign_slot_menu(slot_id, [item_id])
    clock = FakeClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))
    queue = TokenQueueService(repository=repository, settings=settings, clock=clock)
    analytics = CrowdAnalyticsService(
        repository=repository,
        settings=settings,
        clock=clock,
        queue=queue,
    )
    return analytics, queue, clock, slot_id, item_id


# --- crowd level policy ---

@pytest.mark.parametrize(
    ("occupancy", "expected"),
    [
        (0.0, CrowdLevel.LOW),
        (39.9, CrowdLevel.LOW),
        (39.97, CrowdLevel.LOW),
        (40.0, CrowdLevel.MEDIUM),
        (45.0, CrowdLevel.MEDIUM),
        (69.9, CrowdLevel.MEDIUM),
        (69.985, CrowdLevel.MEDIUM),
        (70.0, CrowdLevel.HIGH),
        (100.0, CrowdLevel.HIGH),
    ],
)
def test_crowd_level_boundaries(occupancy, expected):
    assert crowd_level(occupancy) is expected


def test_occupancy_rate_is_clamped():
    assert occupancy_rate(12, 10) == 100.0
    assert occupancy_rate(-1, 10) == 0.0
    assert occupancy_rate(3, 0) == 0.0


def test_current_occupancy_reaches_high_at_seventy_percent(tmp_path):
    analytics, queue, _, slot_id, item_id = _build(tmp_path, capacity=10)
    for index in range(7):
        queue.enqueue(slot_id, f"s{index}", [BookingItem(item_id, 1)])

    assert analytics.current_occupancy(slot_id) == pytest.approx(70.0)
    assert analytics.crowd_level(slot_id) is CrowdLevel.HIGH

    crowd = analytics.current_crowd()
    assert [(row.slot_id, row.active_bookings, row.crowd_level) for row in crowd] == [
        (slot_id, 7, "high")
    ]
    assert crowd[0].average_service_minutes == pytest.approx(5.0)


def test_crowd_level_uses_unrounded_occupancy(tmp_path):
    analytics, queue, _, slot_id, item_id = _build(tmp_path, capacity=1999)
    for index in range(1399):
        queue.enqueue(slot_id, f"s{index}", [BookingItem(item_id, 1)])

    # Displayed as 70.0, but 1399 / 1999 is still below the high threshold.
    assert analytics.current_occupancy(slot_id) == pytest.approx(70.0)
    assert analytics.crowd_level(slot_id) is CrowdLevel.MEDIUM
    row = analytics.current_crowd()[0]
    assert row.occupancy_rate == pytest.approx(70.0)
    assert row.crowd_level == "medium"


def test_current_occupancy_unknown_slot(tmp_path):
    analytics, *_ = _build(tmp_path)

    with pytest.raises(NotFoundError):
        analytics.current_occupancy(404)


# --- average occupancy ---

def _serve_day(queue, clock, slot_id, item_id, day_offset: int, students: int) -> None:
    clock.current = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc) + timedelta(days=day_offset)
    for index in range(students):
        queue.enqueue(slot_id, f"d{day_offset}-s{index}", [BookingItem(item_id, 1)])
        clock.advance(seconds=1)
    for _ in range(students):
        called = queue.call_next(slot_id)
        clock.advance(minutes=1)
        queue.mark_served(called.booking_id)


def test_average_occupancy_counts_empty_days(tmp_path):
    analytics, queue, clock, slot_id, item_id = _build(tmp_path, capacity=10)
    for day_offset in (0, 2, 4):
        _serve_day(queue, clock, slot_id, item_id, day_offset, students=2)
    clock.current = datetime(2026, 3, 7, 18, 0, tzinfo=timezone.utc)

    # Three days peak at 20%; the other four contribute 0.
    assert analytics.average_occupancy(slot_id, 7) == pytest.approx(round(60.0 / 7, 1))
    assert analytics.average_occupancy(slot_id, 3) == pytest.approx(round(20.0 / 3, 1))


def test_average_occupancy_uses_peak_concurrency_not_totals(tmp_path):
    analytics, queue, clock, slot_id, item_id = _build(tmp_path, capacity=4)
    # Four bookings in sequence, never more than one active at a time.
    for index in range(4):
        booking = queue.enqueue(slot_id, f"s{index}", [BookingItem(item_id, 1)])
        clock.advance(minutes=1)
        queue.mark_serving(booking.booking_id)
        clock.advance(minutes=1)
        queue.mark_served(booking.booking_id)
        clock.advance(minutes=1)

    assert analytics.average_occupancy(slot_id, 1) == pytest.approx(25.0)


def test_average_occupancy_rejects_out_of_range_window(tmp_path):
    analytics, _, _, slot_id, _ = _build(tmp_path)

    with pytest.raises(ValidationError):
        analytics.average_occupancy(slot_id, 0)
    with pytest.raises(ValidationError):
        analytics.average_occupancy(slot_id, 31)


# --- peak hours ---

def _book_at(queue, clock, slot_id, item_id, day_offset: int, hour: int, count: int) -> None:
    for index in range(count):
        clock.current = datetime(2026, 3, 1, hour, index, tzinfo=timezone.utc) + timedelta(
            days=day_offset
        )
        queue.enqueue(slot_id, f"d{day_offset}-h{hour}-s{index}", [BookingItem(item_id, 1)])


def test_peak_hours_ranks_hours_by_cross_day_frequency(tmp_path):
    analytics, queue, clock, slot_id, item_id = _build(
        tmp_path, capacity=50, start_time="10:00", end_time="16:00"
    )
    day_plan = {
        0: {12: 5, 13: 4, 11: 3, 10: 1, 14: 1},
        1: {12: 4, 14: 2, 15: 1, 10: 1},
        2: {13: 2, 12: 2, 11: 2, 10: 2},
        3: {18: 3},
    }
    for day_offset, hours in day_plan.items():
        for hour, count in hours.items():
            _book_at(queue, clock, slot_id, item_id, day_offset, hour, count)
    clock.current = datetime(2026, 3, 4, 20, 0, tzinfo=timezone.utc)

    peaks = analytics.peak_hours(slot_id, 4)

    assert peaks == [
        PeakHour(hour=12, frequency=3, percentage=75.0),
        PeakHour(hour=10, frequency=2, percentage=50.0),
        PeakHour(hour=11, frequency=2, percentage=50.0),
    ]


def test_peak_hours_empty_history(tmp_path):
    analytics, _, _, slot_id, _ = _build(tmp_path)

    assert analytics.peak_hours(slot_id, 7) == []


# --- summaries ---

def test_daily_summary_counts_and_revenue(tmp_path):
    analytics, queue, clock, slot_id, item_id = _build(tmp_path, capacity=10)
    served = queue.enqueue(slot_id, "s1", [BookingItem(item_id, 2)])
    cancelled = queue.enqueue(slot_id, "s2", [BookingItem(item_id, 1)])
    queue.enqueue(slot_id, "s3", [BookingItem(item_id, 1)])
    queue.call_next(slot_id)
    clock.advance(minutes=3)
    queue.mark_served(served.booking_id)
    queue.cancel(cancelled.booking_id)

    summary = analytics.daily_summary()

    assert summary == {
        "date": "2026-03-01",
        "total_bookings_today": 3,
        "active_tokens": 1,
        "served_today": 1,
        "cancelled_today": 1,
        "revenue_today": pytest.approx(160.0),
    }

    slot_rows = analytics.slot_wise_summary()
    assert len(slot_rows) == 1
    row = slot_rows[0]
    assert (row["total_bookings"], row["pending"], row["served"], row["cancelled"]) == (3, 1, 1, 1)
    assert row["current_bookings"] == 1
    assert row["occupancy_rate"] == pytest.approx(10.0)


def test_slot_wise_summary_without_bookings(tmp_path):
    analytics, _, _, slot_id, _ = _build(tmp_path)

    rows = analytics.slot_wise_summary()

    assert rows[0]["slot_id"] == slot_id
    assert rows[0]["total_bookings"] == 0
    assert rows[0]["pending"] == 0


def test_get_analytics_snapshot_shape(tmp_path):
    analytics, queue, _, slot_id, item_id = _build(tmp_path, capacity=10)
    queue.enqueue(slot_id, "s1", [BookingItem(item_id, 1)])

    snapshot = analytics.get_analytics(7)

    assert snapshot["analyzed_days"] == 7
    assert snapshot["alerts"] == {"total": 0, "active": 0, "resolved": 0}
    slot_row = snapshot["slots"][0]
    assert slot_row["slot_id"] == slot_id
    assert slot_row["current_occupancy"] == pytest.approx(10.0)
    assert slot_row["crowd_level"] == "low"
    assert slot_row["peak_hours"] == [{"hour": 12, "frequency": 1, "percentage": pytest.approx(14.3)}]
