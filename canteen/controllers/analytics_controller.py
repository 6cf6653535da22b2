"""Controller layer for crowd analytics and overcrowding alerts."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from canteen.controllers.dependencies import (
    get_alert_service,
    get_analytics_service,
    http_error,
    require_capability,
)
from canteen.domain.errors import QueueServiceError
from canteen.domain.models import Alert
from canteen.domain.roles import Capability
from canteen.services.alert_service import AlertingService
from canteen.services.analytics_service import CrowdAnalyticsService
from canteen.services.auth_service import Principal
from canteen.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["analytics"])

admin_access = [Depends(require_capability(Capability.ADMINISTER))]


class PeakHourResponse(BaseModel):
    hour: int = Field(ge=0, le=23)
    frequency: int = Field(ge=0)
    percentage: float = Field(ge=0.0, le=100.0)


class SlotAnalyticsResponse(BaseModel):
    slot_id: int
    slot_name: str
    average_occupancy: float = Field(ge=0.0, le=100.0)
    peak_hours: list[PeakHourResponse]
    current_occupancy: float = Field(ge=0.0, le=100.0)
    crowd_level: str


class AlertCountsResponse(BaseModel):
    total: int = Field(ge=0)
    active: int = Field(ge=0)
    resolved: int = Field(ge=0)


class AnalyticsResponse(BaseModel):
    analyzed_days: int = Field(ge=1)
    generated_at: datetime
    slots: list[SlotAnalyticsResponse]
    alerts: AlertCountsResponse


class SlotWindowResponse(BaseModel):
    slot_id: int
    days: int = Field(ge=1)
    average_occupancy: float = Field(ge=0.0, le=100.0)
    peak_hours: list[PeakHourResponse]


class DailySummaryResponse(BaseModel):
    date: date
    total_bookings_today: int = Field(ge=0)
    active_tokens: int = Field(ge=0)
    served_today: int = Field(ge=0)
    cancelled_today: int = Field(ge=0)
    revenue_today: float = Field(ge=0.0)


class SlotSummaryResponse(BaseModel):
    slot_id: int
    slot_name: str
    capacity: int
    total_bookings: int = Field(ge=0)
    pending: int = Field(ge=0)
    serving: int = Field(ge=0)
    served: int = Field(ge=0)
    cancelled: int = Field(ge=0)
    current_bookings: int = Field(ge=0)
    occupancy_rate: float = Field(ge=0.0, le=100.0)


class CrowdResponse(BaseModel):
    slot_id: int
    slot_name: str
    active_bookings: int = Field(ge=0)
    capacity: int
    occupancy_rate: float = Field(ge=0.0, le=100.0)
    crowd_level: str
    average_service_minutes: float = Field(ge=0.0)


class AlertResponse(BaseModel):
    alert_id: int
    slot_id: int
    severity: str
    message: str
    occupancy_rate: float
    created_at: datetime
    resolved: bool
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolution_note: Optional[str] = None


class ResolveAlertRequest(BaseModel):
    note: Optional[str] = Field(default=None, max_length=500)


def _alert_response(alert: Alert) -> AlertResponse:
    return AlertResponse(
        alert_id=alert.alert_id,
        slot_id=alert.slot_id,
        severity=alert.severity,
        message=alert.message,
        occupancy_rate=alert.occupancy_rate,
        created_at=alert.created_at,
        resolved=alert.resolved,
        resolved_by=alert.resolved_by,
        resolved_at=alert.resolved_at,
        resolution_note=alert.resolution_note,
    )


def _unexpected(action: str, exc: Exception) -> HTTPException:
    logger.exception("Unexpected %s failure", action)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}",
    )


@router.get("/analytics", response_model=AnalyticsResponse, dependencies=admin_access)
async def get_analytics(
    days: Optional[int] = Query(default=None, ge=1),
    analytics_service: CrowdAnalyticsService = Depends(get_analytics_service),
) -> AnalyticsResponse:
    try:
        return AnalyticsResponse(**analytics_service.get_analytics(days))
    except QueueServiceError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("compute analytics", exc) from exc


@router.get("/analytics/daily", response_model=DailySummaryResponse, dependencies=admin_access)
async def daily_summary(
    analytics_service: CrowdAnalyticsService = Depends(get_analytics_service),
) -> DailySummaryResponse:
    try:
        return DailySummaryResponse(**analytics_service.daily_summary())
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("compute daily summary", exc) from exc


@router.get(
    "/analytics/slot-wise",
    response_model=list[SlotSummaryResponse],
    dependencies=admin_access,
)
async def slot_wise_summary(
    analytics_service: CrowdAnalyticsService = Depends(get_analytics_service),
) -> list[SlotSummaryResponse]:
    try:
        return [SlotSummaryResponse(**row) for row in analytics_service.slot_wise_summary()]
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("compute slot-wise summary", exc) from exc


@router.get(
    "/analytics/slots/{slot_id}",
    response_model=SlotWindowResponse,
    dependencies=admin_access,
)
async def slot_window(
    slot_id: int,
    days: int = Query(default=7, ge=1),
    analytics_service: CrowdAnalyticsService = Depends(get_analytics_service),
) -> SlotWindowResponse:
    try:
        peaks = analytics_service.peak_hours(slot_id, days)
        return SlotWindowResponse(
            slot_id=slot_id,
            days=days,
            average_occupancy=analytics_service.average_occupancy(slot_id, days),
            peak_hours=[
                PeakHourResponse(hour=p.hour, frequency=p.frequency, percentage=p.percentage)
                for p in peaks
            ],
        )
    except QueueServiceError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("compute slot analytics", exc) from exc


@router.get(
    "/crowd/current",
    response_model=list[CrowdResponse],
    dependencies=[Depends(require_capability(Capability.VIEW_CROWD))],
)
async def current_crowd(
    analytics_service: CrowdAnalyticsService = Depends(get_analytics_service),
) -> list[CrowdResponse]:
    try:
        return [
            CrowdResponse(
                slot_id=row.slot_id,
                slot_name=row.slot_name,
                active_bookings=row.active_bookings,
                capacity=row.capacity,
                occupancy_rate=row.occupancy_rate,
                crowd_level=row.crowd_level,
                average_service_minutes=row.average_service_minutes,
            )
            for row in analytics_service.current_crowd()
        ]
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("load current crowd", exc) from exc


@router.get(
    "/alerts",
    response_model=list[AlertResponse],
    dependencies=[Depends(require_capability(Capability.CALL_QUEUE))],
)
async def list_alerts(
    resolved: Optional[bool] = Query(default=None),
    alert_service: AlertingService = Depends(get_alert_service),
) -> list[AlertResponse]:
    try:
        return [_alert_response(alert) for alert in alert_service.list_alerts(resolved)]
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("list alerts", exc) from exc


@router.post(
    "/alerts/evaluate",
    response_model=list[AlertResponse],
    dependencies=[Depends(require_capability(Capability.CALL_QUEUE))],
)
async def evaluate_alerts(
    alert_service: AlertingService = Depends(get_alert_service),
) -> list[AlertResponse]:
    try:
        return [_alert_response(alert) for alert in alert_service.evaluate()]
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("evaluate alerts", exc) from exc


@router.post("/alerts/{alert_id}/resolve", response_model=AlertResponse)
async def resolve_alert(
    alert_id: int,
    payload: ResolveAlertRequest | None = None,
    principal: Principal | None = Depends(require_capability(Capability.CALL_QUEUE)),
    alert_service: AlertingService = Depends(get_alert_service),
) -> AlertResponse:
    resolved_by = "staff" if principal is None else principal.role.value
    note = None if payload is None else payload.note
    try:
        return _alert_response(alert_service.resolve(alert_id, note=note, resolved_by=resolved_by))
    except QueueServiceError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("resolve alert", exc) from exc
