"""Controller layer for counter staff queue operations."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from canteen.controllers.booking_controller import BookingResponse
from canteen.controllers.dependencies import (
    get_booking_service,
    get_queue_service,
    http_error,
    require_capability,
)
from canteen.domain.errors import QueueServiceError
from canteen.domain.roles import Capability
from canteen.services.booking_service import BookingLifecycleService
from canteen.services.queue_service import TokenQueueService
from canteen.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["staff"], dependencies=[Depends(require_capability(Capability.CALL_QUEUE))])


class QueueResponse(BaseModel):
    slot_id: int
    serving: list[BookingResponse]
    waiting: list[BookingResponse]
    average_service_minutes: float = Field(gt=0.0)


@router.get("/slots/{slot_id}/queue", response_model=QueueResponse)
async def get_queue(
    slot_id: int,
    queue_service: TokenQueueService = Depends(get_queue_service),
    booking_service: BookingLifecycleService = Depends(get_booking_service),
) -> QueueResponse:
    try:
        bookings = [BookingResponse(**booking_service.describe(b)) for b in queue_service.get_queue(slot_id)]
        return QueueResponse(
            slot_id=slot_id,
            serving=[b for b in bookings if b.status == "serving"],
            waiting=[b for b in bookings if b.status == "pending"],
            average_service_minutes=queue_service.average_service_minutes(slot_id),
        )
    except QueueServiceError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected queue lookup failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load queue",
        ) from exc


@router.post("/slots/{slot_id}/call-next", response_model=BookingResponse)
async def call_next(
    slot_id: int,
    queue_service: TokenQueueService = Depends(get_queue_service),
    booking_service: BookingLifecycleService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        return BookingResponse(**booking_service.describe(queue_service.call_next(slot_id)))
    except QueueServiceError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected call-next failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to call next token",
        ) from exc


@router.put("/bookings/{booking_id}/mark-serving", response_model=BookingResponse)
async def mark_serving(
    booking_id: int,
    queue_service: TokenQueueService = Depends(get_queue_service),
    booking_service: BookingLifecycleService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        return BookingResponse(**booking_service.describe(queue_service.mark_serving(booking_id)))
    except QueueServiceError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected mark-serving failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to mark booking as serving",
        ) from exc


@router.put("/bookings/{booking_id}/mark-served", response_model=BookingResponse)
async def mark_served(
    booking_id: int,
    queue_service: TokenQueueService = Depends(get_queue_service),
    booking_service: BookingLifecycleService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        return BookingResponse(**booking_service.describe(queue_service.mark_served(booking_id)))
    except QueueServiceError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected mark-served failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to mark booking as served",
        ) from exc
