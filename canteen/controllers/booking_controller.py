"""Controller layer for student booking endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator

from canteen.controllers.dependencies import (
    get_booking_service,
    http_error,
    require_capability,
    student_scope,
)
from canteen.domain.errors import QueueServiceError
from canteen.domain.models import BookingItem
from canteen.domain.roles import Capability
from canteen.services.auth_service import Principal
from canteen.services.booking_service import BookingLifecycleService
from canteen.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["bookings"])


class BookingItemPayload(BaseModel):
    # Quantity bounds are checked by the lifecycle service so they surface as 400.
    menu_item_id: int = Field(gt=0)
    quantity: int


class CreateBookingRequest(BaseModel):
    student_id: str = Field(min_length=1)
    slot_id: int = Field(gt=0)
    items: list[BookingItemPayload]

    @field_validator("student_id")
    @classmethod
    def strip_student_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("student_id must be non-empty")
        return value


class ModifyBookingRequest(BaseModel):
    items: list[BookingItemPayload]
    slot_id: Optional[int] = Field(default=None, gt=0)


class BookingItemResponse(BaseModel):
    menu_item_id: int
    quantity: int


class BookingResponse(BaseModel):
    booking_id: int
    student_id: str
    slot_id: int
    token_number: str
    status: str
    queue_position: int | None = Field(default=None, ge=1)
    estimated_wait_time: int | None = Field(default=None, ge=0)
    items: list[BookingItemResponse]
    total: float = Field(ge=0.0)
    created_at: datetime
    enqueued_at: datetime
    serving_at: datetime | None = None
    served_at: datetime | None = None
    cancelled_at: datetime | None = None


class BookingModificationResponse(BaseModel):
    modified_at: datetime
    changes: str


def _to_items(payload: list[BookingItemPayload]) -> list[BookingItem]:
    return [BookingItem(menu_item_id=item.menu_item_id, quantity=item.quantity) for item in payload]


@router.post("/bookings", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: CreateBookingRequest,
    principal: Principal | None = Depends(require_capability(Capability.MANAGE_BOOKINGS)),
    booking_service: BookingLifecycleService = Depends(get_booking_service),
) -> BookingResponse:
    student_id = student_scope(principal, payload.student_id)
    try:
        booking = booking_service.create_booking(student_id, payload.slot_id, _to_items(payload.items))
        return BookingResponse(**booking_service.describe(booking))
    except QueueServiceError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected booking creation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create booking",
        ) from exc


@router.get("/bookings/students/{student_id}", response_model=list[BookingResponse])
async def list_student_bookings(
    student_id: str,
    active_only: bool = Query(default=False),
    principal: Principal | None = Depends(require_capability(Capability.MANAGE_BOOKINGS)),
    booking_service: BookingLifecycleService = Depends(get_booking_service),
) -> list[BookingResponse]:
    scoped = student_scope(principal, student_id)
    try:
        bookings = booking_service.list_student_bookings(scoped, active_only=active_only)
        return [BookingResponse(**booking_service.describe(booking)) for booking in bookings]
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected booking listing failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to list bookings",
        ) from exc


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: int,
    student_id: Optional[str] = Query(default=None),
    principal: Principal | None = Depends(require_capability(Capability.MANAGE_BOOKINGS)),
    booking_service: BookingLifecycleService = Depends(get_booking_service),
) -> BookingResponse:
    scoped = student_scope(principal, student_id)
    try:
        booking = booking_service.get_booking(booking_id, scoped)
        return BookingResponse(**booking_service.describe(booking))
    except QueueServiceError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected booking lookup failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load booking",
        ) from exc


@router.put("/bookings/{booking_id}", response_model=BookingResponse)
async def modify_booking(
    booking_id: int,
    payload: ModifyBookingRequest,
    student_id: Optional[str] = Query(default=None),
    principal: Principal | None = Depends(require_capability(Capability.MANAGE_BOOKINGS)),
    booking_service: BookingLifecycleService = Depends(get_booking_service),
) -> BookingResponse:
    scoped = student_scope(principal, student_id)
    try:
        booking = booking_service.modify_booking(
            booking_id,
            _to_items(payload.items),
            new_slot_id=payload.slot_id,
            student_id=scoped,
        )
        return BookingResponse(**booking_service.describe(booking))
    except QueueServiceError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected booking modification failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to modify booking",
        ) from exc


@router.delete("/bookings/{booking_id}", response_model=BookingResponse)
async def cancel_booking(
    booking_id: int,
    student_id: Optional[str] = Query(default=None),
    principal: Principal | None = Depends(require_capability(Capability.MANAGE_BOOKINGS)),
    booking_service: BookingLifecycleService = Depends(get_booking_service),
) -> BookingResponse:
    scoped = student_scope(principal, student_id)
    try:
        booking = booking_service.cancel_booking(booking_id, scoped)
        return BookingResponse(**booking_service.describe(booking))
    except QueueServiceError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected booking cancellation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to cancel booking",
        ) from exc


@router.get("/bookings/{booking_id}/history", response_model=list[BookingModificationResponse])
async def booking_history(
    booking_id: int,
    student_id: Optional[str] = Query(default=None),
    principal: Principal | None = Depends(require_capability(Capability.MANAGE_BOOKINGS)),
    booking_service: BookingLifecycleService = Depends(get_booking_service),
) -> list[BookingModificationResponse]:
    scoped = student_scope(principal, student_id)
    try:
        modifications = booking_service.list_modifications(booking_id, scoped)
        return [
            BookingModificationResponse(modified_at=entry.modified_at, changes=entry.changes)
            for entry in modifications
        ]
    except QueueServiceError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected booking history failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load booking history",
        ) from exc
