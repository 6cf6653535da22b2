"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from typing import Any, Awaitable, Callable

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from canteen.domain.errors import QueueServiceError
from canteen.domain.roles import Capability, Role
from canteen.services.alert_service import AlertingService
from canteen.services.analytics_service import CrowdAnalyticsService
from canteen.services.auth_service import (
    AuthService,
    InvalidAccessCodeError,
    PermissionDeniedError,
    Principal,
)
from canteen.services.booking_service import BookingLifecycleService
from canteen.services.queue_service import TokenQueueService
from canteen.services.slot_service import SlotRegistryService
from canteen.services.staff_service import StaffRosterService
from canteen.utils.config import get_settings


bearer_scheme = HTTPBearer(auto_error=False)


def _state_service(request: Request, attribute: str, label: str) -> Any:
    service = getattr(request.app.state, attribute, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} service is not initialized",
        )
    return service


def get_auth_service(request: Request) -> AuthService:
    service = getattr(request.app.state, "auth_service", None)
    if service is None:
        service = AuthService(settings=get_settings())
        request.app.state.auth_service = service
    return service


def get_queue_service(request: Request) -> TokenQueueService:
    return _state_service(request, "queue_service", "Queue")


def get_booking_service(request: Request) -> BookingLifecycleService:
    return _state_service(request, "booking_service", "Booking")


def get_slot_service(request: Request) -> SlotRegistryService:
    return _state_service(request, "slot_service", "Slot")


def get_analytics_service(request: Request) -> CrowdAnalyticsService:
    return _state_service(request, "analytics_service", "Analytics")


def get_alert_service(request: Request) -> AlertingService:
    return _state_service(request, "alert_service", "Alert")


def get_staff_roster_service(request: Request) -> StaffRosterService:
    return _state_service(request, "staff_roster_service", "Staff roster")


def require_capability(
    capability: Capability,
) -> Callable[..., Awaitable[Principal | None]]:
    """Dependency factory; yields the caller's principal, or None when auth is off."""

    async def dependency(
        credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
        auth_service: AuthService = Depends(get_auth_service),
    ) -> Principal | None:
        if not auth_service.auth_enabled:
            return None
        if credentials is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authorization header with Bearer token is required",
            )
        try:
            return auth_service.authorize(credentials.credentials, capability)
        except InvalidAccessCodeError as exc:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=str(exc),
            ) from exc
        except PermissionDeniedError as exc:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=str(exc),
            ) from exc

    return dependency


def student_scope(principal: Principal | None, requested_student_id: str | None) -> str | None:
    """Student whose bookings the caller may touch; None means any booking."""
    if principal is not None and principal.role is Role.STUDENT:
        if requested_student_id is not None and requested_student_id != principal.subject:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Students may only act on their own bookings",
            )
        return principal.subject
    return requested_student_id


def http_error(exc: QueueServiceError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=str(exc))
