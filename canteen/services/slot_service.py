"""Slot registry: meal windows, their capacity, and the menu assigned to each."""

from __future__ import annotations

from typing import Optional, Sequence

from canteen.domain.constraints import validate_capacity, validate_slot_window
from canteen.domain.errors import NotFoundError, ValidationError
from canteen.domain.models import MenuCategory, MenuItem, Slot
from canteen.repository.data_repository import DataRepository
from canteen.utils.config import Settings, get_settings
from canteen.utils.logger import get_logger


logger = get_logger(__name__)


class SlotRegistryService:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    @staticmethod
    def _validate_slot(name: str, start_time: str, end_time: str, capacity: int) -> None:
        if not name.strip():
            raise ValidationError("slot name must be non-empty")
        try:
            validate_slot_window(start_time, end_time)
            validate_capacity(capacity)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

    def list_slots(self, active_only: bool = True) -> list[Slot]:
        return self._repository.list_slots(active_only=active_only)

    def get_slot(self, slot_id: int) -> Slot:
        slot = self._repository.get_slot(slot_id)
        if slot is None:
            raise NotFoundError(f"slot {slot_id} not found")
        return slot

    def create_slot(
        self,
        *,
        name: str,
        start_time: str,
        end_time: str,
        capacity: int,
        is_active: bool = True,
    ) -> Slot:
        self._validate_slot(name, start_time, end_time, capacity)
        slot_id = self._repository.create_slot(
            name=name.strip(),
            start_time=start_time,
            end_time=end_time,
            capacity=capacity,
            is_active=is_active,
        )
        logger.info("Slot created | slot_id=%s | name=%s | capacity=%s", slot_id, name, capacity)
        return self.get_slot(slot_id)

    def update_slot(
        self,
        slot_id: int,
        *,
        name: str | None = None,
        start_time: str | None = None,
        end_time: str | None = None,
        capacity: int | None = None,
        is_active: bool | None = None,
    ) -> Slot:
        """Partial update. Lowering capacity never evicts tokens already queued."""
        current = self.get_slot(slot_id)
        merged = Slot(
            slot_id=slot_id,
            name=current.name if name is None else name.strip(),
            start_time=current.start_time if start_time is None else start_time,
            end_time=current.end_time if end_time is None else end_time,
            capacity=current.capacity if capacity is None else capacity,
            is_active=current.is_active if is_active is None else is_active,
        )
        self._validate_slot(merged.name, merged.start_time, merged.end_time, merged.capacity)
        self._repository.update_slot(
            slot_id,
            name=merged.name,
            start_time=merged.start_time,
            end_time=merged.end_time,
            capacity=merged.capacity,
            is_active=merged.is_active,
        )
        logger.info("Slot updated | slot_id=%s | capacity=%s | active=%s",
                    slot_id, merged.capacity, merged.is_active)
        return merged

    def current_bookings(self, slot_id: int) -> int:
        return self._repository.count_active_bookings(slot_id)

    # ------------------------------------------------------------------- menu

    def list_menu_items(self, available_only: bool = True) -> list[MenuItem]:
        return self._repository.list_menu_items(available_only=available_only)

    def get_menu_item(self, menu_item_id: int) -> MenuItem:
        item = self._repository.get_menu_item(menu_item_id)
        if item is None:
            raise NotFoundError(f"menu item {menu_item_id} not found")
        return item

    def add_menu_item(
        self,
        *,
        name: str,
        category: str,
        price: float,
        description: str | None = None,
        is_available: bool = True,
    ) -> MenuItem:
        if not name.strip():
            raise ValidationError("menu item name must be non-empty")
        if price < 0:
            raise ValidationError("price must be >= 0")
        try:
            resolved_category = MenuCategory(category)
        except ValueError as exc:
            raise ValidationError(f"unknown menu category: {category}") from exc
        menu_item_id = self._repository.create_menu_item(
            name=name.strip(),
            description=description,
            category=resolved_category.value,
            price=float(price),
            is_available=is_available,
        )
        return self.get_menu_item(menu_item_id)

    def update_menu_item(
        self,
        menu_item_id: int,
        *,
        name: str | None = None,
        category: str | None = None,
        price: float | None = None,
        description: str | None = None,
        is_available: bool | None = None,
    ) -> MenuItem:
        """Price changes apply to every open order, since totals are read-time."""
        current = self.get_menu_item(menu_item_id)
        if price is not None and price < 0:
            raise ValidationError("price must be >= 0")
        try:
            resolved_category = (
                current.category if category is None else MenuCategory(category)
            )
        except ValueError as exc:
            raise ValidationError(f"unknown menu category: {category}") from exc
        self._repository.update_menu_item(
            menu_item_id,
            name=current.name if name is None else name.strip(),
            description=current.description if description is None else description,
            category=resolved_category.value,
            price=current.price if price is None else float(price),
            is_available=current.is_available if is_available is None else is_available,
        )
        return self.get_menu_item(menu_item_id)

    def assign_menu(self, slot_id: int, menu_item_ids: Sequence[int]) -> list[MenuItem]:
        self.get_slot(slot_id)
        known = self._repository.get_menu_items(menu_item_ids)
        missing = sorted(set(menu_item_ids) - set(known))
        if missing:
            raise NotFoundError(f"menu items not found: {missing}")
        self._repository.assign_slot_menu(slot_id, menu_item_ids)
        logger.info("Slot menu assigned | slot_id=%s | items=%s", slot_id, len(known))
        return self.get_menu_for_slot(slot_id)

    def get_menu_for_slot(self, slot_id: int) -> list[MenuItem]:
        self.get_slot(slot_id)
        item_ids = self._repository.list_slot_menu_item_ids(slot_id)
        items = self._repository.get_menu_items(item_ids)
        return [items[item_id] for item_id in sorted(items)]
