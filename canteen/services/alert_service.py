"""Overcrowding alerts raised from crowd levels and resolved by staff."""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Optional

from canteen.domain.crowd import CrowdLevel, crowd_level, occupancy_rate
from canteen.domain.errors import AlreadyResolvedError, NotFoundError
from canteen.domain.models import Alert, alert_counts
from canteen.repository.data_repository import DataRepository
from canteen.utils.clock import Clock, utc_now
from canteen.utils.config import Settings, get_settings
from canteen.utils.logger import get_logger


logger = get_logger(__name__)

SYSTEM_RESOLVER = "system"


class AlertingService:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._clock = clock or utc_now

    def evaluate(self) -> list[Alert]:
        """One analytics tick: raise alerts for slots that just became crowded.

        Returns the alerts created by this tick. Slots that dropped below the
        high threshold keep their open alert unless auto-resolution is enabled.
        """
        created_ids: list[int] = []
        with self._repository.transaction() as conn:
            now = self._clock()
            active_by_slot = self._repository.count_active_bookings_by_slot(conn=conn)
            for slot in self._repository.list_slots(active_only=True, conn=conn):
                exact = occupancy_rate(active_by_slot.get(slot.slot_id, 0), slot.capacity)
                level = crowd_level(exact)
                rate = round(exact, 1)
                open_alert = self._repository.find_unresolved_alert(slot.slot_id, conn=conn)
                if level is CrowdLevel.HIGH and open_alert is None:
                    created_ids.append(
                        self._repository.create_alert(
                            conn,
                            slot_id=slot.slot_id,
                            severity=level.value,
                            message=f"{slot.name} is at {rate:.1f}% of capacity",
                            occupancy_rate=rate,
                            created_at=now,
                        )
                    )
                    logger.warning(
                        "Crowd alert raised | slot_id=%s | occupancy=%.1f",
                        slot.slot_id,
                        rate,
                    )
                elif level is not CrowdLevel.HIGH and open_alert is not None:
                    self._auto_resolve(conn, open_alert, rate, now)
            created = [self._repository.get_alert(alert_id, conn=conn) for alert_id in created_ids]
        return created

    def _auto_resolve(
        self,
        conn: sqlite3.Connection,
        alert: Alert,
        rate: float,
        now: datetime,
    ) -> None:
        if not self._settings.alert_auto_resolve:
            logger.info(
                "Crowd alert eligible for resolution | alert_id=%s | occupancy=%.1f",
                alert.alert_id,
                rate,
            )
            return
        self._repository.resolve_alert(
            conn,
            alert.alert_id,
            resolved_by=SYSTEM_RESOLVER,
            note=f"occupancy dropped to {rate:.1f}%",
            resolved_at=now,
        )
        logger.info("Crowd alert auto-resolved | alert_id=%s", alert.alert_id)

    def resolve(self, alert_id: int, note: str | None = None, resolved_by: str = "staff") -> Alert:
        with self._repository.transaction() as conn:
            alert = self._repository.get_alert(alert_id, conn=conn)
            if alert is None:
                raise NotFoundError(f"alert {alert_id} not found")
            if alert.resolved:
                raise AlreadyResolvedError(f"alert {alert_id} is already resolved")
            self._repository.resolve_alert(
                conn,
                alert_id,
                resolved_by=resolved_by,
                note=note,
                resolved_at=self._clock(),
            )
            resolved = self._repository.get_alert(alert_id, conn=conn)
        logger.info("Crowd alert resolved | alert_id=%s | by=%s", alert_id, resolved_by)
        return resolved

    def get_alert(self, alert_id: int) -> Alert:
        alert = self._repository.get_alert(alert_id)
        if alert is None:
            raise NotFoundError(f"alert {alert_id} not found")
        return alert

    def list_alerts(self, resolved: bool | None = None) -> list[Alert]:
        return self._repository.list_alerts(resolved=resolved)

    def alert_summary(self, since: datetime | None = None) -> dict[str, int]:
        return alert_counts(self._repository.list_alerts(since=since))
