"""Read-only crowd analytics over slot and booking history.

Every public query opens one repository read snapshot, so figures computed in
the same call never mix state from before and after a concurrent queue change.
"""

from __future__ import annotations

import sqlite3
from datetime import date, datetime, timedelta
from typing import Any, Optional

import numpy as np
import pandas as pd

from canteen.domain.constraints import QueuePolicyConfig, validate_queue_policy_config
from canteen.domain.crowd import CrowdLevel, crowd_level, occupancy_rate
from canteen.domain.errors import NotFoundError, ValidationError
from canteen.domain.models import (
    Booking,
    BookingStatus,
    PeakHour,
    Slot,
    SlotOccupancy,
    alert_counts,
    booking_total,
)
from canteen.repository.data_repository import DataRepository
from canteen.services.queue_service import TokenQueueService
from canteen.utils.clock import Clock, local_day_bounds, resolve_timezone, utc_now
from canteen.utils.config import Settings, get_settings
from canteen.utils.logger import get_logger


logger = get_logger(__name__)


class CrowdAnalyticsService:
    """Occupancy, crowd level, peak hours and daily summaries."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        queue: Optional[TokenQueueService] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._clock = clock or utc_now
        self._queue = queue or TokenQueueService(
            repository=self._repository,
            settings=self._settings,
            clock=self._clock,
        )
        self._tz = resolve_timezone(self._settings.local_timezone)
        self._policy = QueuePolicyConfig(
            default_service_minutes=self._settings.queue_default_service_minutes,
            service_time_window_minutes=self._settings.queue_service_time_window_minutes,
            analytics_max_days=self._settings.analytics_max_days,
            peak_top_n=self._settings.analytics_peak_top_n,
            peak_relative_threshold=self._settings.analytics_peak_relative_threshold,
        )
        validate_queue_policy_config(self._policy)

    # ---------------------------------------------------------------- helpers

    def _today(self) -> date:
        return self._clock().astimezone(self._tz).date()

    def _window_days(self, days: int) -> list[date]:
        if days < 1 or days > self._policy.analytics_max_days:
            raise ValidationError(
                f"days must be between 1 and {self._policy.analytics_max_days}"
            )
        today = self._today()
        return [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]

    def _window_bounds(self, window: list[date]) -> tuple[datetime, datetime]:
        start, _ = local_day_bounds(window[0], self._tz)
        _, end = local_day_bounds(window[-1], self._tz)
        return start, end

    def _require_slot(self, conn: sqlite3.Connection, slot_id: int) -> Slot:
        slot = self._repository.get_slot(slot_id, conn=conn)
        if slot is None:
            raise NotFoundError(f"slot {slot_id} not found")
        return slot

    def _local_day(self, instant: datetime) -> date:
        return instant.astimezone(self._tz).date()

    # --------------------------------------------------------------- occupancy

    def _exact_occupancy(self, slot_id: int) -> float:
        with self._repository.snapshot() as conn:
            slot = self._require_slot(conn, slot_id)
            active = self._repository.count_active_bookings(slot_id, conn=conn)
        return occupancy_rate(active, slot.capacity)

    def current_occupancy(self, slot_id: int) -> float:
        return round(self._exact_occupancy(slot_id), 1)

    def crowd_level(self, slot_id: int) -> CrowdLevel:
        # Thresholds apply to the unrounded rate.
        return crowd_level(self._exact_occupancy(slot_id))

    def _slot_occupancy(
        self,
        conn: sqlite3.Connection,
        slot: Slot,
        active: int,
    ) -> SlotOccupancy:
        rate = occupancy_rate(active, slot.capacity)
        return SlotOccupancy(
            slot_id=slot.slot_id,
            slot_name=slot.name,
            active_bookings=active,
            capacity=slot.capacity,
            occupancy_rate=round(rate, 1),
            crowd_level=crowd_level(rate).value,
            average_service_minutes=self._queue.average_service_minutes(slot.slot_id, conn=conn),
        )

    def current_crowd(self) -> list[SlotOccupancy]:
        """Live occupancy of every active slot."""
        with self._repository.snapshot() as conn:
            slots = self._repository.list_slots(active_only=True, conn=conn)
            active_by_slot = self._repository.count_active_bookings_by_slot(conn=conn)
            return [
                self._slot_occupancy(conn, slot, active_by_slot.get(slot.slot_id, 0))
                for slot in slots
            ]

    # -------------------------------------------------------------- peak hours

    def _peak_hours(
        self,
        conn: sqlite3.Connection,
        slot: Slot,
        window: list[date],
    ) -> list[PeakHour]:
        start, end = self._window_bounds(window)
        rows = []
        for booking in self._repository.list_bookings_between("created_at", start, end, conn=conn):
            if booking.slot_id != slot.slot_id:
                continue
            local = booking.created_at.astimezone(self._tz)
            if slot.start_hour <= local.hour <= slot.end_hour:
                rows.append({"day": local.date(), "hour": local.hour})
        if not rows:
            return []

        counts = (
            pd.DataFrame(rows)
            .groupby(["day", "hour"])
            .size()
            .rename("count")
            .reset_index()
            .sort_values(by=["day", "count", "hour"], ascending=[True, False, True])
        )
        counts["rank"] = counts.groupby("day").cumcount()
        counts["day_max"] = counts.groupby("day")["count"].transform("max")
        is_peak = (counts["rank"] < self._policy.peak_top_n) | (
            counts["count"] >= self._policy.peak_relative_threshold * counts["day_max"]
        )
        frequency = (
            counts.loc[is_peak]
            .groupby("hour")["day"]
            .nunique()
            .rename("frequency")
            .reset_index()
            .sort_values(by=["frequency", "hour"], ascending=[False, True])
            .head(self._policy.peak_top_n)
        )
        return [
            PeakHour(
                hour=int(row.hour),
                frequency=int(row.frequency),
                percentage=round(int(row.frequency) * 100.0 / len(window), 1),
            )
            for row in frequency.itertuples(index=False)
        ]

    def peak_hours(self, slot_id: int, days: int) -> list[PeakHour]:
        window = self._window_days(days)
        with self._repository.snapshot() as conn:
            slot = self._require_slot(conn, slot_id)
            return self._peak_hours(conn, slot, window)

    # ------------------------------------------------------- average occupancy

    def _daily_peak_occupancy(
        self,
        conn: sqlite3.Connection,
        slot: Slot,
        window: list[date],
    ) -> pd.Series:
        """Peak concurrent occupancy per local day; days without bookings are 0."""
        start, end = self._window_bounds(window)
        now = self._clock()
        window_set = set(window)
        events = []
        for booking in self._repository.list_bookings_for_window(start, end, conn=conn):
            if booking.slot_id != slot.slot_id:
                continue
            day = self._local_day(booking.enqueued_at)
            if day not in window_set:
                continue
            closed_at = booking.closed_at or now
            events.append({"day": day, "at": booking.enqueued_at.timestamp(), "delta": 1})
            events.append({"day": day, "at": closed_at.timestamp(), "delta": -1})

        if not events:
            return pd.Series(0.0, index=pd.Index(window, name="day"))

        # Departures sort before arrivals at the same instant.
        frame = pd.DataFrame(events).sort_values(by=["day", "at", "delta"])
        frame["concurrent"] = frame.groupby("day")["delta"].cumsum()
        per_day = frame.groupby("day")["concurrent"].max().astype(float)
        per_day = np.clip(per_day * 100.0 / slot.capacity, 0.0, 100.0)
        return per_day.reindex(window, fill_value=0.0)

    def average_occupancy(self, slot_id: int, days: int) -> float:
        window = self._window_days(days)
        with self._repository.snapshot() as conn:
            slot = self._require_slot(conn, slot_id)
            peaks = self._daily_peak_occupancy(conn, slot, window)
        return round(float(peaks.sum()) / len(window), 1)

    # ---------------------------------------------------------------- summaries

    def _today_bookings(self, conn: sqlite3.Connection, column: str) -> list[Booking]:
        start, end = local_day_bounds(self._today(), self._tz)
        return self._repository.list_bookings_between(column, start, end, conn=conn)

    def daily_summary(self) -> dict[str, Any]:
        with self._repository.snapshot() as conn:
            created = self._today_bookings(conn, "created_at")
            served = self._today_bookings(conn, "served_at")
            cancelled = self._today_bookings(conn, "cancelled_at")
            active = sum(self._repository.count_active_bookings_by_slot(conn=conn).values())
            prices = self._repository.list_menu_prices(conn=conn)
        revenue = round(sum(booking_total(booking.items, prices) for booking in served), 2)
        return {
            "date": self._today().isoformat(),
            "total_bookings_today": len(created),
            "active_tokens": active,
            "served_today": len(served),
            "cancelled_today": len(cancelled),
            "revenue_today": revenue,
        }

    def staff_performance(self) -> dict[str, Any]:
        """Tokens served today spread over the registered counter staff."""
        with self._repository.snapshot() as conn:
            served = len(self._today_bookings(conn, "served_at"))
            staff_count = self._repository.count_staff(conn=conn)
        return {
            "date": self._today().isoformat(),
            "total_served": served,
            "staff_count": staff_count,
            "average_per_staff": round(served / staff_count, 1) if staff_count else 0.0,
        }

    def slot_wise_summary(self) -> list[dict[str, Any]]:
        """Today's bookings per active slot, broken down by status."""
        with self._repository.snapshot() as conn:
            slots = self._repository.list_slots(active_only=True, conn=conn)
            created = self._today_bookings(conn, "created_at")
            active_by_slot = self._repository.count_active_bookings_by_slot(conn=conn)

        statuses = [status.value for status in BookingStatus]
        frame = pd.DataFrame(
            [{"slot_id": booking.slot_id, "status": booking.status.value} for booking in created],
            columns=["slot_id", "status"],
        )
        by_status = (
            frame.groupby(["slot_id", "status"]).size().unstack(fill_value=0)
            if not frame.empty
            else pd.DataFrame(columns=statuses)
        ).reindex(columns=statuses, fill_value=0)

        summary = []
        for slot in slots:
            counts = (
                by_status.loc[slot.slot_id]
                if slot.slot_id in by_status.index
                else pd.Series(0, index=statuses)
            )
            active = active_by_slot.get(slot.slot_id, 0)
            summary.append(
                {
                    "slot_id": slot.slot_id,
                    "slot_name": slot.name,
                    "capacity": slot.capacity,
                    "total_bookings": int(counts.sum()),
                    **{status: int(counts[status]) for status in statuses},
                    "current_bookings": active,
                    "occupancy_rate": round(occupancy_rate(active, slot.capacity), 1),
                }
            )
        return summary

    def get_analytics(self, days: int | None = None) -> dict[str, Any]:
        """Per-slot peak hours and average occupancy plus alert counts."""
        days = self._settings.analytics_default_days if days is None else days
        window = self._window_days(days)
        start, _ = self._window_bounds(window)
        with self._repository.snapshot() as conn:
            slots = self._repository.list_slots(active_only=True, conn=conn)
            active_by_slot = self._repository.count_active_bookings_by_slot(conn=conn)
            slot_rows = []
            for slot in slots:
                peaks = self._daily_peak_occupancy(conn, slot, window)
                current = self._slot_occupancy(conn, slot, active_by_slot.get(slot.slot_id, 0))
                slot_rows.append(
                    {
                        "slot_id": slot.slot_id,
                        "slot_name": slot.name,
                        "average_occupancy": round(float(peaks.sum()) / len(window), 1),
                        "peak_hours": [
                            {
                                "hour": peak.hour,
                                "frequency": peak.frequency,
                                "percentage": peak.percentage,
                            }
                            for peak in self._peak_hours(conn, slot, window)
                        ],
                        "current_occupancy": current.occupancy_rate,
                        "crowd_level": current.crowd_level,
                    }
                )
            alerts = alert_counts(self._repository.list_alerts(since=start, conn=conn))
        logger.info("Analytics computed | days=%s | slots=%s", days, len(slot_rows))
        return {
            "analyzed_days": days,
            "generated_at": self._clock(),
            "slots": slot_rows,
            "alerts": alerts,
        }
