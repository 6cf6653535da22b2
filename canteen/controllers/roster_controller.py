"""Controller layer for the admin-managed counter staff roster."""

from __future__ import annotations

from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field

from canteen.controllers.dependencies import (
    get_analytics_service,
    get_staff_roster_service,
    http_error,
    require_capability,
)
from canteen.domain.errors import QueueServiceError
from canteen.domain.models import StaffMember
from canteen.domain.roles import Capability
from canteen.services.analytics_service import CrowdAnalyticsService
from canteen.services.staff_service import StaffRosterService
from canteen.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(
    tags=["staff-roster"],
    dependencies=[Depends(require_capability(Capability.ADMINISTER))],
)


class StaffRequest(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    email: str = Field(min_length=3, max_length=254)


class StaffResponse(BaseModel):
    staff_id: int
    name: str
    email: str
    created_at: datetime


class StaffPerformanceResponse(BaseModel):
    date: date
    total_served: int = Field(ge=0)
    staff_count: int = Field(ge=0)
    average_per_staff: float = Field(ge=0.0)


def _staff_response(staff: StaffMember) -> StaffResponse:
    return StaffResponse(
        staff_id=staff.staff_id,
        name=staff.name,
        email=staff.email,
        created_at=staff.created_at,
    )


def _unexpected(action: str, exc: Exception) -> HTTPException:
    logger.exception("Unexpected %s failure", action)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}",
    )


@router.post("/staff", response_model=StaffResponse, status_code=status.HTTP_201_CREATED)
async def register_staff(
    payload: StaffRequest,
    roster: StaffRosterService = Depends(get_staff_roster_service),
) -> StaffResponse:
    try:
        return _staff_response(roster.register_staff(payload.name, payload.email))
    except QueueServiceError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("register staff", exc) from exc


@router.get("/staff", response_model=list[StaffResponse])
async def list_staff(
    roster: StaffRosterService = Depends(get_staff_roster_service),
) -> list[StaffResponse]:
    try:
        return [_staff_response(staff) for staff in roster.list_staff()]
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("list staff", exc) from exc


@router.delete("/staff/{staff_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_staff(
    staff_id: int,
    roster: StaffRosterService = Depends(get_staff_roster_service),
) -> Response:
    try:
        roster.remove_staff(staff_id)
    except QueueServiceError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("remove staff", exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/analytics/staff-performance", response_model=StaffPerformanceResponse)
async def staff_performance(
    analytics_service: CrowdAnalyticsService = Depends(get_analytics_service),
) -> StaffPerformanceResponse:
    try:
        return StaffPerformanceResponse(**analytics_service.staff_performance())
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("compute staff performance", exc) from exc
