from __future__ import annotations

import threading
from dataclasses import replace

import pytest
import requests

from canteen.client.api_client import ApiClientError, CanteenApiClient
from canteen.client.refresh import PeriodicRefresher
from canteen.utils.config import get_settings


class StubResponse:
    def __init__(self, status_code: int, body=None, text: str = "") -> None:
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self):
        if self._body is None:
            raise ValueError("no json body")
        return self._body

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} error", response=self)


class StubSession:
    def __init__(self, responses) -> None:
        self.responses = list(responses)
        self.calls: list[tuple[str, str, dict]] = []
        self.headers: dict[str, str] = {}

    def request(self, method: str, url: str, **kwargs):
        self.calls.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _client(responses) -> tuple[CanteenApiClient, StubSession]:
    get_settings.cache_clear()
    settings = replace(get_settings(), client_timeout_seconds=2.5)
    session = StubSession(responses)
    client = CanteenApiClient(base_url="http://canteen.test/", settings=settings, session=session)
    return client, session


def test_login_stores_bearer_header():
    client, session = _client([StubResponse(200, {"access_token": "tok-1", "role": "staff"})])

    assert client.login("staff", "secret") == "tok-1"
    assert session.headers["Authorization"] == "Bearer tok-1"
    method, url, kwargs = session.calls[0]
    assert (method, url) == ("POST", "http://canteen.test/login")
    assert kwargs["timeout"] == 2.5
    assert kwargs["json"]["role"] == "staff"


def test_requests_hit_expected_paths():
    client, session = _client([StubResponse(200, []), StubResponse(200, {"slots": []})])

    assert client.my_tokens("stu-1") == []
    assert client.analytics(days=3) == {"slots": []}
    assert [(call[0], call[1]) for call in session.calls] == [
        ("GET", "http://canteen.test/bookings/students/stu-1"),
        ("GET", "http://canteen.test/analytics"),
    ]
    assert session.calls[0][2]["params"] == {"active_only": "true"}
    assert session.calls[1][2]["params"] == {"days": 3}


def test_error_status_carries_detail():
    client, _ = _client([StubResponse(409, {"detail": "slot 2 is at capacity"})])

    with pytest.raises(ApiClientError) as excinfo:
        client.create_booking("stu-1", 2, [{"menu_item_id": 1, "quantity": 1}])

    assert excinfo.value.status_code == 409
    assert str(excinfo.value) == "slot 2 is at capacity"


def test_error_status_without_json_uses_text():
    client, _ = _client([StubResponse(502, None, text="bad gateway")])

    with pytest.raises(ApiClientError) as excinfo:
        client.current_crowd()

    assert excinfo.value.status_code == 502
    assert str(excinfo.value) == "bad gateway"


def test_connection_failure_has_no_status():
    client, _ = _client([requests.exceptions.ConnectionError("refused")])

    with pytest.raises(ApiClientError) as excinfo:
        client.call_next(1)

    assert excinfo.value.status_code is None
    assert "Backend connection failed" in str(excinfo.value)


# --- periodic refresh ---

def test_refresher_rejects_non_positive_interval():
    with pytest.raises(ValueError):
        PeriodicRefresher(fetch=lambda: 1, on_result=lambda _: None, interval_seconds=0)


def test_refresh_once_routes_results_and_errors():
    results: list[int] = []
    errors: list[ApiClientError] = []
    outcomes = iter([7, ApiClientError("down", status_code=503)])

    def fetch() -> int:
        outcome = next(outcomes)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    refresher = PeriodicRefresher(
        fetch=fetch,
        on_result=results.append,
        interval_seconds=10,
        on_error=errors.append,
    )
    refresher.refresh_once()
    refresher.refresh_once()

    assert results == [7]
    assert [error.status_code for error in errors] == [503]


def test_refresher_polls_until_stopped():
    seen = threading.Event()
    results: list[str] = []

    def on_result(value: str) -> None:
        results.append(value)
        if len(results) >= 2:
            seen.set()

    refresher = PeriodicRefresher(fetch=lambda: "tick", on_result=on_result, interval_seconds=0.01)
    refresher.start()
    refresher.start()
    try:
        assert seen.wait(timeout=2.0)
        assert refresher.running
    finally:
        refresher.stop(timeout=2.0)

    assert not refresher.running
    assert set(results) == {"tick"}


def test_refresher_survives_failing_callback():
    recovered = threading.Event()
    calls: list[int] = []

    def on_result(value: int) -> None:
        calls.append(value)
        if len(calls) == 1:
            raise RuntimeError("screen not ready")
        recovered.set()

    refresher = PeriodicRefresher(fetch=lambda: 1, on_result=on_result, interval_seconds=0.01)
    refresher.start()
    try:
        assert recovered.wait(timeout=2.0)
        assert refresher.running
    finally:
        refresher.stop(timeout=2.0)
