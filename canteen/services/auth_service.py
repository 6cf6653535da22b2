"""Role-based access code authentication service."""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import RLock
from typing import Optional

from canteen.domain.roles import Capability, Role, role_allows
from canteen.utils.clock import Clock, utc_now
from canteen.utils.config import Settings, get_settings
from canteen.utils.logger import get_logger


logger = get_logger(__name__)


class AuthenticationError(Exception):
    """Base authentication failure."""


class AccessCodeNotConfiguredError(AuthenticationError):
    """Raised when no access code is configured for the requested role."""


class InvalidAccessCodeError(AuthenticationError):
    """Raised when a provided access code or bearer token is invalid."""


class PermissionDeniedError(AuthenticationError):
    """Raised when an authenticated role lacks the required capability."""


@dataclass(frozen=True)
class Principal:
    role: Role
    subject: str | None = None


class AuthService:
    """Validates role logins and bearer tokens."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._clock = clock or utc_now
        if self._settings.session_ttl_minutes <= 0:
            raise ValueError("session_ttl_minutes must be > 0")
        self._ttl = timedelta(minutes=self._settings.session_ttl_minutes)
        # token -> (principal, expires_at)
        self._sessions: dict[str, tuple[Principal, datetime]] = {}
        self._lock = RLock()

    def _access_codes(self) -> dict[Role, str | None]:
        return {
            Role.ADMIN: self._settings.admin_token,
            Role.STAFF: self._settings.staff_access_code,
            Role.STUDENT: self._settings.student_access_code,
        }

    @property
    def auth_enabled(self) -> bool:
        return any(self._access_codes().values())

    def _expected_code(self, role: Role) -> str:
        code = self._access_codes()[role]
        if not code:
            raise AccessCodeNotConfiguredError(
                f"No access code is configured for role '{role.value}'."
            )
        return code

    def login(self, role: Role, access_code: str, subject: str | None = None) -> str:
        expected = self._expected_code(role)
        if not secrets.compare_digest(access_code, expected):
            raise InvalidAccessCodeError("Invalid access code")
        if role is Role.STUDENT and not subject:
            raise InvalidAccessCodeError("student_id is required for student login")
        token = secrets.token_urlsafe(32)
        now = self._clock()
        with self._lock:
            self._purge_expired(now)
            self._sessions[token] = (Principal(role=role, subject=subject), now + self._ttl)
        logger.info("Login succeeded | role=%s | subject=%s", role.value, subject)
        return token

    def logout(self, bearer_token: str) -> None:
        with self._lock:
            self._sessions.pop(bearer_token, None)

    def _purge_expired(self, now: datetime) -> None:
        expired = [token for token, (_, expires_at) in self._sessions.items() if expires_at <= now]
        for token in expired:
            del self._sessions[token]

    @property
    def active_sessions(self) -> int:
        with self._lock:
            self._purge_expired(self._clock())
            return len(self._sessions)

    def validate_bearer_token(self, bearer_token: str) -> Principal:
        with self._lock:
            session = self._sessions.get(bearer_token)
            if session is not None and session[1] <= self._clock():
                del self._sessions[bearer_token]
                session = None
        if session is None:
            raise InvalidAccessCodeError("Invalid or expired bearer token")
        return session[0]

    def authorize(self, bearer_token: str, capability: Capability) -> Principal:
        principal = self.validate_bearer_token(bearer_token)
        if not role_allows(principal.role, capability):
            raise PermissionDeniedError(
                f"Role '{principal.role.value}' may not {capability.value.replace('_', ' ')}"
            )
        return principal
