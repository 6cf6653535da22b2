"""Controller layer for slot and menu administration."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator

from canteen.controllers.dependencies import get_slot_service, http_error, require_capability
from canteen.domain.constraints import SLOT_TIME_PATTERN
from canteen.domain.errors import QueueServiceError
from canteen.domain.models import MenuItem, Slot
from canteen.domain.roles import Capability
from canteen.services.slot_service import SlotRegistryService
from canteen.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["menu"])

view_access = [Depends(require_capability(Capability.VIEW_CROWD))]
admin_access = [Depends(require_capability(Capability.ADMINISTER))]


class SlotRequest(BaseModel):
    name: str = Field(min_length=1, max_length=64)
    start_time: str = Field(pattern=SLOT_TIME_PATTERN.pattern)
    end_time: str = Field(pattern=SLOT_TIME_PATTERN.pattern)
    capacity: int = Field(gt=0)
    is_active: bool = True


class SlotUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=64)
    start_time: Optional[str] = Field(default=None, pattern=SLOT_TIME_PATTERN.pattern)
    end_time: Optional[str] = Field(default=None, pattern=SLOT_TIME_PATTERN.pattern)
    capacity: Optional[int] = Field(default=None, gt=0)
    is_active: Optional[bool] = None


class SlotResponse(BaseModel):
    slot_id: int
    name: str
    start_time: str
    end_time: str
    capacity: int
    is_active: bool
    current_bookings: int = Field(ge=0)


class MenuItemRequest(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    description: Optional[str] = None
    category: str
    price: float = Field(ge=0.0)
    is_available: bool = True


class MenuItemUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = None
    category: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0.0)
    is_available: Optional[bool] = None


class MenuItemResponse(BaseModel):
    menu_item_id: int
    name: str
    description: Optional[str] = None
    category: str
    price: float
    is_available: bool


class SlotMenuRequest(BaseModel):
    menu_item_ids: list[int]

    @field_validator("menu_item_ids")
    @classmethod
    def validate_menu_item_ids(cls, value: list[int]) -> list[int]:
        for menu_item_id in value:
            if menu_item_id <= 0:
                raise ValueError("menu_item_ids values must be positive integers")
        return value


def _slot_response(slot: Slot, slot_service: SlotRegistryService) -> SlotResponse:
    return SlotResponse(
        slot_id=slot.slot_id,
        name=slot.name,
        start_time=slot.start_time,
        end_time=slot.end_time,
        capacity=slot.capacity,
        is_active=slot.is_active,
        current_bookings=slot_service.current_bookings(slot.slot_id),
    )


def _menu_item_response(item: MenuItem) -> MenuItemResponse:
    return MenuItemResponse(
        menu_item_id=item.menu_item_id,
        name=item.name,
        description=item.description,
        category=item.category.value,
        price=item.price,
        is_available=item.is_available,
    )


def _unexpected(action: str, exc: Exception) -> HTTPException:
    logger.exception("Unexpected %s failure", action)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}",
    )


@router.get("/slots", response_model=list[SlotResponse], dependencies=view_access)
async def list_slots(
    active_only: bool = Query(default=True),
    slot_service: SlotRegistryService = Depends(get_slot_service),
) -> list[SlotResponse]:
    try:
        return [_slot_response(slot, slot_service) for slot in slot_service.list_slots(active_only)]
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("list slots", exc) from exc


@router.post(
    "/slots",
    response_model=SlotResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=admin_access,
)
async def create_slot(
    payload: SlotRequest,
    slot_service: SlotRegistryService = Depends(get_slot_service),
) -> SlotResponse:
    try:
        slot = slot_service.create_slot(**payload.model_dump())
        return _slot_response(slot, slot_service)
    except QueueServiceError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("create slot", exc) from exc


@router.put("/slots/{slot_id}", response_model=SlotResponse, dependencies=admin_access)
async def update_slot(
    slot_id: int,
    payload: SlotUpdateRequest,
    slot_service: SlotRegistryService = Depends(get_slot_service),
) -> SlotResponse:
    try:
        slot = slot_service.update_slot(slot_id, **payload.model_dump())
        return _slot_response(slot, slot_service)
    except QueueServiceError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("update slot", exc) from exc


@router.get("/slots/{slot_id}/menu", response_model=list[MenuItemResponse], dependencies=view_access)
async def get_slot_menu(
    slot_id: int,
    slot_service: SlotRegistryService = Depends(get_slot_service),
) -> list[MenuItemResponse]:
    try:
        return [_menu_item_response(item) for item in slot_service.get_menu_for_slot(slot_id)]
    except QueueServiceError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("load slot menu", exc) from exc


@router.put("/slots/{slot_id}/menu", response_model=list[MenuItemResponse], dependencies=admin_access)
async def assign_slot_menu(
    slot_id: int,
    payload: SlotMenuRequest,
    slot_service: SlotRegistryService = Depends(get_slot_service),
) -> list[MenuItemResponse]:
    try:
        items = slot_service.assign_menu(slot_id, payload.menu_item_ids)
        return [_menu_item_response(item) for item in items]
    except QueueServiceError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("assign slot menu", exc) from exc


@router.get("/menu/items", response_model=list[MenuItemResponse], dependencies=view_access)
async def list_menu_items(
    available_only: bool = Query(default=True),
    slot_service: SlotRegistryService = Depends(get_slot_service),
) -> list[MenuItemResponse]:
    try:
        return [_menu_item_response(item) for item in slot_service.list_menu_items(available_only)]
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("list menu items", exc) from exc


@router.post(
    "/menu/items",
    response_model=MenuItemResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=admin_access,
)
async def create_menu_item(
    payload: MenuItemRequest,
    slot_service: SlotRegistryService = Depends(get_slot_service),
) -> MenuItemResponse:
    try:
        return _menu_item_response(slot_service.add_menu_item(**payload.model_dump()))
    except QueueServiceError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("create menu item", exc) from exc


@router.put("/menu/items/{menu_item_id}", response_model=MenuItemResponse, dependencies=admin_access)
async def update_menu_item(
    menu_item_id: int,
    payload: MenuItemUpdateRequest,
    slot_service: SlotRegistryService = Depends(get_slot_service),
) -> MenuItemResponse:
    try:
        return _menu_item_response(
            slot_service.update_menu_item(menu_item_id, **payload.model_dump())
        )
    except QueueServiceError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("update menu item", exc) from exc
