"""TTL-bounded cache of per-appointment risk assessments."""

from __future__ import annotations

import time
from collections import Counter
from threading import RLock
from typing import Callable, Optional

from clinic_scheduler.domain.models import NoShowPrediction, RiskAssessment
from clinic_scheduler.services.alert_service import AlertDispatcher
from clinic_scheduler.utils.config import Settings, get_settings
from clinic_scheduler.utils.logger import get_logger
from clinic_scheduler.utils.periodic import PeriodicTask


logger = get_logger(__name__)

STATE_ABSENT = "absent"
STATE_COMPUTING = "computing"
STATE_CACHED = "cached"
STATE_EXPIRED = "expired"


class RiskAssessmentCache:
    """Keyed store of assessments plus a side index of their timestamps.

    The lock guards dictionary operations only; risk computation and alert
    dispatch run outside it, so concurrent misses for one appointment may
    both compute and the last write wins.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        ttl_seconds: Optional[float] = None,
        sweep_interval_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        alert_dispatcher: Optional[AlertDispatcher] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._ttl_seconds = (
            ttl_seconds if ttl_seconds is not None else self._settings.risk_cache_ttl_seconds
        )
        self._sweep_interval_seconds = (
            sweep_interval_seconds
            if sweep_interval_seconds is not None
            else self._settings.risk_cache_sweep_interval_seconds
        )
        if self._ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self._clock = clock
        self._alert_dispatcher = alert_dispatcher

        self._entries: dict[str, RiskAssessment] = {}
        self._timestamps: dict[str, float] = {}
        self._computing: Counter[str] = Counter()
        self._lock = RLock()
        self._hits = 0
        self._misses = 0
        self._sweeper: Optional[PeriodicTask] = None

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _is_fresh(self, appointment_id: str, now: float) -> bool:
        timestamp = self._timestamps.get(appointment_id)
        return timestamp is not None and now - timestamp < self._ttl_seconds

    def get(self, appointment_id: str) -> Optional[RiskAssessment]:
        now = self._clock()
        with self._lock:
            if self._is_fresh(appointment_id, now):
                self._hits += 1
                return self._entries[appointment_id]
            self._misses += 1
            return None

    def put(self, assessment: RiskAssessment) -> None:
        # Expiry runs on the cache clock; the assessment's own timestamp is data.
        now = self._clock()
        with self._lock:
            self._entries[assessment.appointment_id] = assessment
            self._timestamps[assessment.appointment_id] = now

    def invalidate(self, appointment_id: str) -> bool:
        with self._lock:
            self._timestamps.pop(appointment_id, None)
            return self._entries.pop(appointment_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._timestamps.clear()

    def state(self, appointment_id: str) -> str:
        now = self._clock()
        with self._lock:
            if self._is_fresh(appointment_id, now):
                return STATE_CACHED
            if self._computing[appointment_id] > 0:
                return STATE_COMPUTING
            if appointment_id in self._entries:
                return STATE_EXPIRED
            return STATE_ABSENT

    def get_or_compute(
        self,
        appointment_id: str,
        compute: Callable[[], NoShowPrediction],
    ) -> RiskAssessment:
        cached = self.get(appointment_id)
        if cached is not None:
            return cached

        with self._lock:
            self._computing[appointment_id] += 1
        try:
            prediction = compute()
        finally:
            with self._lock:
                self._computing[appointment_id] -= 1
                if self._computing[appointment_id] <= 0:
                    del self._computing[appointment_id]

        assessment = RiskAssessment(
            appointment_id=appointment_id,
            risk_score=prediction.risk_score,
            risk_level=prediction.risk_level,
            timestamp=self._clock(),
            factors=prediction.factors,
            recommendations=prediction.recommendations,
            source=prediction.source,
        )
        self.put(assessment)
        if self._alert_dispatcher is not None:
            self._alert_dispatcher.dispatch(assessment)
        return assessment

    def sweep(self) -> int:
        """Evict entries older than the TTL and return how many were removed."""
        now = self._clock()
        with self._lock:
            stale = [
                appointment_id
                for appointment_id, timestamp in self._timestamps.items()
                if now - timestamp > self._ttl_seconds
            ]

        removed = 0
        for appointment_id in stale:
            with self._lock:
                # A concurrent put may have refreshed the entry since the snapshot.
                timestamp = self._timestamps.get(appointment_id)
                if timestamp is None or now - timestamp <= self._ttl_seconds:
                    continue
                del self._timestamps[appointment_id]
                del self._entries[appointment_id]
                removed += 1

        if removed:
            logger.info("Risk cache sweep completed | removed=%s | remaining=%s", removed, len(self))
        return removed

    def stats(self) -> dict[str, int | float]:
        with self._lock:
            return {
                "entries": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
                "ttl_seconds": self._ttl_seconds,
            }

    def start(self) -> None:
        if self._sweeper is None:
            self._sweeper = PeriodicTask(
                self.sweep,
                self._sweep_interval_seconds,
                name="risk-cache-sweep",
            )
        self._sweeper.start()

    def stop(self) -> None:
        if self._sweeper is not None:
            self._sweeper.stop()

    @property
    def sweeping(self) -> bool:
        return self._sweeper is not None and self._sweeper.running
