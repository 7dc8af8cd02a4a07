"""High no-show risk alerting with per-appointment cooldown and subscriptions."""

from __future__ import annotations

import sqlite3
import time
from threading import RLock
from typing import Callable, Iterable, Optional, Protocol

from clinic_scheduler.domain.models import RISK_LEVEL_HIGH, RiskAlert, RiskAssessment, RiskThresholds
from clinic_scheduler.repository.data_repository import DataRepository
from clinic_scheduler.utils.config import Settings, get_settings
from clinic_scheduler.utils.logger import get_logger


logger = get_logger(__name__)


class AlertNotifier(Protocol):
    def send(self, alert: RiskAlert) -> None:
        ...


class LoggingAlertNotifier:
    """Default notifier; delivery channels live outside this service."""

    def send(self, alert: RiskAlert) -> None:
        logger.warning(
            "High no-show risk alert | appointment_id=%s | risk_score=%.3f | risk_level=%s | subscribers=%s",
            alert.appointment_id,
            alert.risk_score,
            alert.risk_level,
            ",".join(alert.subscribers) or "-",
        )


class AlertDispatcher:
    def __init__(
        self,
        notifier: Optional[AlertNotifier] = None,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        thresholds: Optional[RiskThresholds] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings or get_settings()
        self._notifier = notifier or LoggingAlertNotifier()
        self._repository = repository
        self._thresholds = thresholds or RiskThresholds(
            low=self._settings.risk_low_threshold,
            medium=self._settings.risk_medium_threshold,
        )
        self._clock = clock
        self._cooldown_seconds = self._settings.risk_alert_cooldown_seconds
        self._last_alert_at: dict[str, float] = {}
        self._subscriptions: dict[str, set[str]] = {}
        self._lock = RLock()

    @property
    def thresholds(self) -> RiskThresholds:
        return self._thresholds

    def update_thresholds(self, thresholds: RiskThresholds) -> None:
        self._thresholds = thresholds

    def should_alert(self, assessment: RiskAssessment) -> bool:
        return (
            assessment.risk_level == RISK_LEVEL_HIGH
            or assessment.risk_score >= self._thresholds.medium
        )

    def subscribe(self, subscriber_id: str, appointment_ids: Iterable[str]) -> None:
        with self._lock:
            self._subscriptions.setdefault(subscriber_id, set()).update(appointment_ids)

    def unsubscribe(
        self,
        subscriber_id: str,
        appointment_ids: Optional[Iterable[str]] = None,
    ) -> None:
        with self._lock:
            if subscriber_id not in self._subscriptions:
                return
            if appointment_ids is None:
                del self._subscriptions[subscriber_id]
                return
            self._subscriptions[subscriber_id].difference_update(appointment_ids)

    def subscribers_for(self, appointment_id: str) -> tuple[str, ...]:
        with self._lock:
            return tuple(
                sorted(
                    subscriber_id
                    for subscriber_id, appointment_ids in self._subscriptions.items()
                    if appointment_id in appointment_ids
                )
            )

    def dispatch(self, assessment: RiskAssessment) -> Optional[RiskAlert]:
        """Emit an alert for a freshly computed assessment.

        Returns ``None`` when the assessment is below threshold or the
        appointment was already alerted within the cooldown window.
        """

        if not self.should_alert(assessment):
            return None

        now = self._clock()
        with self._lock:
            last = self._last_alert_at.get(assessment.appointment_id)
            if last is not None and now - last < self._cooldown_seconds:
                logger.debug(
                    "Risk alert suppressed by cooldown | appointment_id=%s",
                    assessment.appointment_id,
                )
                return None
            self._last_alert_at[assessment.appointment_id] = now

        alert = RiskAlert(
            appointment_id=assessment.appointment_id,
            risk_score=assessment.risk_score,
            risk_level=assessment.risk_level,
            factors=assessment.factors,
            recommendations=assessment.recommendations,
            subscribers=self.subscribers_for(assessment.appointment_id),
            created_at=now,
        )

        try:
            self._notifier.send(alert)
        except Exception as exc:  # noqa: BLE001 - delivery failure must not block risk lookups
            logger.error(
                "Risk alert delivery failed | appointment_id=%s | error=%s",
                alert.appointment_id,
                exc,
            )

        if self._repository is not None:
            try:
                self._repository.save_risk_alert(alert)
            except sqlite3.Error as exc:
                logger.error(
                    "Risk alert persistence failed | appointment_id=%s | error=%s",
                    alert.appointment_id,
                    exc,
                )
        return alert

    def reset_cooldowns(self) -> None:
        with self._lock:
            self._last_alert_at.clear()
