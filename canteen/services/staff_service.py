"""Counter staff roster maintained by admins."""

from __future__ import annotations

import re
import sqlite3
from typing import Optional

from canteen.domain.errors import DuplicateStaffError, NotFoundError, ValidationError
from canteen.domain.models import StaffMember
from canteen.repository.data_repository import DataRepository
from canteen.utils.clock import Clock, utc_now
from canteen.utils.config import Settings, get_settings
from canteen.utils.logger import get_logger


logger = get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class StaffRosterService:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._clock = clock or utc_now

    def register_staff(self, name: str, email: str) -> StaffMember:
        name = name.strip()
        email = email.strip().lower()
        if not name:
            raise ValidationError("staff name must be non-empty")
        if not EMAIL_PATTERN.match(email):
            raise ValidationError(f"invalid staff email: {email}")
        try:
            with self._repository.transaction() as conn:
                if self._repository.find_staff_by_email(email, conn=conn) is not None:
                    raise DuplicateStaffError(f"staff member {email} already exists")
                staff_id = self._repository.create_staff(
                    conn,
                    name=name,
                    email=email,
                    created_at=self._clock(),
                )
                staff = self._repository.get_staff(staff_id, conn=conn)
        except sqlite3.IntegrityError as exc:
            raise DuplicateStaffError(f"staff member {email} already exists") from exc
        logger.info("Staff registered | staff_id=%s | email=%s", staff_id, email)
        return staff

    def list_staff(self) -> list[StaffMember]:
        return self._repository.list_staff()

    def get_staff(self, staff_id: int) -> StaffMember:
        staff = self._repository.get_staff(staff_id)
        if staff is None:
            raise NotFoundError(f"staff member {staff_id} not found")
        return staff

    def remove_staff(self, staff_id: int) -> None:
        if not self._repository.delete_staff(staff_id):
            raise NotFoundError(f"staff member {staff_id} not found")
        logger.info("Staff removed | staff_id=%s", staff_id)
