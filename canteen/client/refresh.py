"""Cancellable periodic refresh for token and dashboard screens.

The server never pushes updates; screens poll read-only endpoints on an
interval. Results carry no ordering guarantee relative to server changes.
"""

from __future__ import annotations

import threading
from typing import Callable, Generic, Optional, TypeVar

from canteen.client.api_client import ApiClientError
from canteen.utils.logger import get_logger


logger = get_logger(__name__)

T = TypeVar("T")


class PeriodicRefresher(Generic[T]):
    """Calls ``fetch`` every ``interval_seconds`` and hands results to ``on_result``.

    Fetch failures are reported through ``on_error`` (or logged) and the loop
    keeps running, so the screen keeps showing the last good data.
    """

    def __init__(
        self,
        fetch: Callable[[], T],
        on_result: Callable[[T], None],
        interval_seconds: float,
        on_error: Optional[Callable[[ApiClientError], None]] = None,
        name: str = "canteen-refresh",
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._fetch = fetch
        self._on_result = on_result
        self._on_error = on_error
        self._interval = interval_seconds
        self._name = name
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def refresh_once(self) -> None:
        try:
            result = self._fetch()
        except ApiClientError as exc:
            if self._on_error is not None:
                self._on_error(exc)
            else:
                logger.warning("Refresh failed | name=%s | error=%s", self._name, exc)
            return
        self._on_result(result)

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.refresh_once()
            except Exception:
                # A faulty callback must not end polling.
                logger.exception("Refresh callback failed | name=%s", self._name)
            self._stop.wait(self._interval)

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._stop.clear()
            self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
            self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        with self._lock:
            self._stop.set()
            thread = self._thread
            self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
