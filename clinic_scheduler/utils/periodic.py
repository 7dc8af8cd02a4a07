"""Cancelable periodic background task."""

from __future__ import annotations

import threading
from typing import Callable, Optional

from clinic_scheduler.utils.logger import get_logger


logger = get_logger(__name__)


class PeriodicTask:
    """Runs ``action`` every ``interval_seconds`` on a daemon thread until stopped."""

    def __init__(
        self,
        action: Callable[[], object],
        interval_seconds: float,
        *,
        name: str = "periodic-task",
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._action = action
        self._interval_seconds = float(interval_seconds)
        self._name = name
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run,
                name=self._name,
                daemon=True,
            )
            self._thread.start()
        logger.info(
            "Periodic task started | name=%s | interval_seconds=%.1f",
            self._name,
            self._interval_seconds,
        )

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        with self._lock:
            thread = self._thread
            self._thread = None
            self._stop_event.set()
        if thread is not None:
            thread.join(timeout=timeout)
            logger.info("Periodic task stopped | name=%s", self._name)

    def _run(self) -> None:
        # Event.wait returns True once stop() is called.
        while not self._stop_event.wait(self._interval_seconds):
            try:
                self._action()
            except Exception:  # noqa: BLE001 - keep the schedule alive
                logger.exception("Periodic task iteration failed | name=%s", self._name)
