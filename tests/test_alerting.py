from __future__ import annotations

import sqlite3
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from canteen.domain.errors import AlreadyResolvedError, NotFoundError
from canteen.domain.models import BookingItem
from canteen.repository.data_repository import DataRepository
from canteen.services.alert_service import AlertingService
from canteen.services.queue_service import TokenQueueService
from canteen.utils.config import get_settings


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


def _build(tmp_path, auto_resolve: bool = False, capacity: int = 10):
    get_settings.cache_clear()
    settings = replace(
        get_settings(),
        database_path=tmp_path / "alerts.db",
        local_timezone="UTC",
        seed_default_catalog=False,
        alert_auto_resolve=auto_resolve,
    )
    repository = DataRepository(settings)
    repository.initialize_database()
    slot_id = repository.create_slot("Lunch", "12:00", "14:00", capacity)
    quiet_slot_id = repository.create_slot("Dinner", "19:00", "21:00", 10)
    item_id = repository.create_menu_item("Veg Thali", None, "veg", 80.0)
    clock = FakeClock(datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc))
    queue = TokenQueueService(repository=repository, settings=settings, clock=clock)
    alerts = AlertingService(repository=repository, settings=settings, clock=clock)

    def fill(count: int) -> list:
        return [
            queue.enqueue(slot_id, f"s{index}", [BookingItem(item_id, 1)])
            for index in range(count)
        ]

    return alerts, queue, repository, clock, slot_id, quiet_slot_id, fill


def test_high_crowd_raises_single_alert(tmp_path):
    alerts, _, _, _, slot_id, _, fill = _build(tmp_path)
    fill(7)

    created = alerts.evaluate()
    again = alerts.evaluate()

    assert [alert.slot_id for alert in created] == [slot_id]
    assert created[0].severity == "high"
    assert created[0].occupancy_rate == pytest.approx(70.0)
    assert again == []
    assert len(alerts.list_alerts(resolved=False)) == 1


def test_rate_just_below_high_threshold_raises_nothing(tmp_path):
    alerts, queue, repository, _, slot_id, _, fill = _build(tmp_path, capacity=1999)
    fill(1399)

    # 1399 / 1999 is 69.985%, which only reaches 70 after rounding.
    assert alerts.evaluate() == []
    assert alerts.list_alerts() == []

    item_id = repository.list_menu_items()[0].menu_item_id
    queue.enqueue(slot_id, "late", [BookingItem(item_id, 1)])
    created = alerts.evaluate()
    assert len(created) == 1
    assert created[0].occupancy_rate == pytest.approx(70.0)


def test_medium_crowd_raises_nothing(tmp_path):
    alerts, _, _, _, _, _, fill = _build(tmp_path)
    fill(6)

    assert alerts.evaluate() == []
    assert alerts.list_alerts() == []


def test_alert_stays_open_when_crowd_drops_by_default(tmp_path):
    alerts, queue, _, _, _, _, fill = _build(tmp_path)
    bookings = fill(7)
    alerts.evaluate()

    for booking in bookings[:4]:
        queue.cancel(booking.booking_id)
    alerts.evaluate()

    open_alerts = alerts.list_alerts(resolved=False)
    assert len(open_alerts) == 1
    assert open_alerts[0].resolved is False


def test_auto_resolve_when_enabled(tmp_path):
    alerts, queue, _, _, _, _, fill = _build(tmp_path, auto_resolve=True)
    bookings = fill(7)
    alerts.evaluate()

    for booking in bookings[:4]:
        queue.cancel(booking.booking_id)
    alerts.evaluate()

    assert alerts.list_alerts(resolved=False) == []
    resolved = alerts.list_alerts(resolved=True)
    assert resolved[0].resolved_by == "system"


def test_resolve_then_resolve_again_is_rejected_and_keeps_timestamp(tmp_path):
    alerts, _, _, clock, _, _, fill = _build(tmp_path)
    fill(8)
    alert = alerts.evaluate()[0]

    resolved = alerts.resolve(alert.alert_id, note="extra counter opened", resolved_by="staff")
    clock.advance(minutes=5)
    with pytest.raises(AlreadyResolvedError):
        alerts.resolve(alert.alert_id, note="second try")

    stored = alerts.get_alert(alert.alert_id)
    assert stored.resolved is True
    assert stored.resolution_note == "extra counter opened"
    assert stored.resolved_at == resolved.resolved_at


def test_resolve_unknown_alert(tmp_path):
    alerts, *_ = _build(tmp_path)

    with pytest.raises(NotFoundError):
        alerts.resolve(999)


def test_new_alert_after_manual_resolution(tmp_path):
    alerts, _, _, _, _, _, fill = _build(tmp_path)
    fill(7)
    first = alerts.evaluate()[0]
    alerts.resolve(first.alert_id)

    second = alerts.evaluate()

    assert len(second) == 1
    assert second[0].alert_id != first.alert_id
    assert alerts.alert_summary() == {"total": 2, "active": 1, "resolved": 1}


def test_storage_rejects_second_open_alert_for_slot(tmp_path):
    alerts, _, repository, clock, slot_id, _, fill = _build(tmp_path)
    fill(7)
    alerts.evaluate()

    with pytest.raises(sqlite3.IntegrityError):
        with repository.transaction() as conn:
            repository.create_alert(
                conn,
                slot_id=slot_id,
                severity="high",
                message="duplicate",
                occupancy_rate=70.0,
                created_at=clock(),
            )
