"""Thin HTTP client over the canteen API for dashboards and kiosks."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import requests

from canteen.utils.config import Settings, get_settings
from canteen.utils.logger import get_logger


logger = get_logger(__name__)


class ApiClientError(Exception):
    """Raised when the backend is unreachable or answers with an error status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _status_of(exc: requests.exceptions.HTTPError) -> int | None:
    return None if exc.response is None else exc.response.status_code


def _error_detail(exc: requests.exceptions.HTTPError) -> str:
    """FastAPI puts the message under ``detail``; fall back to the raw body."""
    if exc.response is None:
        return str(exc)
    try:
        body = exc.response.json()
    except ValueError:
        return exc.response.text
    if isinstance(body, dict) and "detail" in body:
        return str(body["detail"])
    return exc.response.text


class CanteenApiClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        settings: Optional[Settings] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._base_url = (base_url or self._settings.client_base_url).rstrip("/")
        self._timeout = self._settings.client_timeout_seconds
        self._session = session or requests.Session()

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self._base_url}{path}"
        try:
            response = self._session.request(method, url, timeout=self._timeout, **kwargs)
            response.raise_for_status()
        except requests.exceptions.HTTPError as exc:
            raise ApiClientError(_error_detail(exc), status_code=_status_of(exc)) from exc
        except requests.exceptions.RequestException as exc:
            logger.warning("Backend connection failed | url=%s | error=%s", url, exc)
            raise ApiClientError(f"Backend connection failed: {exc}") from exc
        return response.json()

    def login(self, role: str, access_code: str, student_id: str | None = None) -> str:
        payload = {"role": role, "access_code": access_code, "student_id": student_id}
        token = self._request("POST", "/login", json=payload)["access_token"]
        self._session.headers["Authorization"] = f"Bearer {token}"
        return token

    def create_booking(
        self,
        student_id: str,
        slot_id: int,
        items: List[Dict[str, int]],
    ) -> Dict[str, Any]:
        return self._request(
            "POST",
            "/bookings",
            json={"student_id": student_id, "slot_id": slot_id, "items": items},
        )

    def cancel_booking(self, booking_id: int) -> Dict[str, Any]:
        return self._request("DELETE", f"/bookings/{booking_id}")

    def my_tokens(self, student_id: str) -> List[Dict[str, Any]]:
        return self._request(
            "GET",
            f"/bookings/students/{student_id}",
            params={"active_only": "true"},
        )

    def slot_queue(self, slot_id: int) -> Dict[str, Any]:
        return self._request("GET", f"/slots/{slot_id}/queue")

    def call_next(self, slot_id: int) -> Dict[str, Any]:
        return self._request("POST", f"/slots/{slot_id}/call-next")

    def mark_served(self, booking_id: int) -> Dict[str, Any]:
        return self._request("PUT", f"/bookings/{booking_id}/mark-served")

    def current_crowd(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/crowd/current")

    def analytics(self, days: int = 7) -> Dict[str, Any]:
        return self._request("GET", "/analytics", params={"days": days})

    def open_alerts(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/alerts", params={"resolved": "false"})

    def resolve_alert(self, alert_id: int, note: str | None = None) -> Dict[str, Any]:
        return self._request("POST", f"/alerts/{alert_id}/resolve", json={"note": note})
