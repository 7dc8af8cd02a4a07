"""Per-appointment and batch no-show risk served through the risk cache."""

from __future__ import annotations

import sqlite3
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterable, Optional, Sequence

import pandas as pd

from clinic_scheduler.domain.constraints import validate_risk_thresholds
from clinic_scheduler.domain.models import (
    RISK_LEVEL_HIGH,
    RISK_LEVEL_LOW,
    RISK_LEVEL_MEDIUM,
    NoShowFeatures,
    NoShowPrediction,
    RiskAssessment,
    RiskThresholds,
    StoredRiskAlert,
)
from clinic_scheduler.repository.data_repository import (
    STATUS_COMPLETED,
    STATUS_NO_SHOW,
    DataRepository,
)
from clinic_scheduler.services.alert_service import AlertDispatcher
from clinic_scheduler.services.risk_cache import RiskAssessmentCache
from clinic_scheduler.services.risk_service import RiskEstimator
from clinic_scheduler.utils.config import Settings, get_settings
from clinic_scheduler.utils.logger import get_logger


logger = get_logger(__name__)

DEFAULT_DAYS_SINCE_LAST_APPOINTMENT = 30


class AppointmentNotFoundError(Exception):
    """Raised when a risk lookup references an unknown appointment."""


class RiskAlertNotFoundError(Exception):
    """Raised when an acknowledgement references an unknown alert."""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class RealTimeRiskService:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        estimator: Optional[RiskEstimator] = None,
        cache: Optional[RiskAssessmentCache] = None,
        alert_dispatcher: Optional[AlertDispatcher] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._estimator = estimator or RiskEstimator(settings=self._settings)
        self._alert_dispatcher = alert_dispatcher
        self._cache = cache or RiskAssessmentCache(
            self._settings,
            alert_dispatcher=alert_dispatcher,
        )

    @property
    def cache(self) -> RiskAssessmentCache:
        return self._cache

    def build_features(self, appointment_id: str) -> NoShowFeatures:
        context = self._repository.get_appointment_context(appointment_id)
        if context is None:
            raise AppointmentNotFoundError(f"Appointment '{appointment_id}' was not found")

        record = context["record"]
        history = self._repository.list_patient_history(
            record.patient_id,
            before=record.appointment_time,
        )
        resolved = [item for item in history if item.status in (STATUS_COMPLETED, STATUS_NO_SHOW)]
        previous_no_shows = sum(1 for item in resolved if item.status == STATUS_NO_SHOW)
        days_since_last = (
            (record.appointment_time - history[0].appointment_time).days
            if history
            else DEFAULT_DAYS_SINCE_LAST_APPOINTMENT
        )
        lead_time = max((record.appointment_time - _utc_now()).total_seconds() / 86400.0, 0.0)

        return NoShowFeatures(
            appointment_id=appointment_id,
            patient_id=record.patient_id,
            provider_id=record.provider_id,
            appointment_time=record.appointment_time,
            appointment_type=record.appointment_type,
            patient_age=record.patient_age if record.patient_age is not None else 35.0,
            patient_gender=context["gender"],
            previous_no_shows=previous_no_shows,
            previous_appointments=len(resolved),
            days_since_last_appointment=days_since_last,
            lead_time_days=lead_time,
            reminders_sent=context["reminders_sent"],
            distance_to_clinic=record.distance_to_clinic,
            insurance_type=record.insurance_type,
        )

    def calculate_real_time_risk(self, appointment_id: str) -> RiskAssessment:
        computed = False

        def compute() -> NoShowPrediction:
            nonlocal computed
            computed = True
            return self._estimator.predict(self.build_features(appointment_id))

        assessment = self._cache.get_or_compute(appointment_id, compute)
        if computed:
            try:
                self._repository.save_risk_assessment(assessment)
            except sqlite3.Error as exc:
                logger.warning(
                    "Failed to persist risk assessment | appointment_id=%s | error=%s",
                    appointment_id,
                    exc,
                )
        return assessment

    def get_batch_risk_predictions(
        self,
        appointment_ids: Sequence[str],
        chunk_size: Optional[int] = None,
    ) -> dict[str, RiskAssessment]:
        """Assess appointments chunk by chunk with at most ``chunk_size`` in flight."""

        size = chunk_size or self._settings.risk_batch_chunk_size
        if size <= 0:
            raise ValueError("chunk_size must be > 0")

        unique_ids = list(dict.fromkeys(appointment_ids))
        results: dict[str, RiskAssessment] = {}
        for offset in range(0, len(unique_ids), size):
            chunk = unique_ids[offset : offset + size]
            with ThreadPoolExecutor(max_workers=len(chunk)) as executor:
                futures = {
                    appointment_id: executor.submit(self.calculate_real_time_risk, appointment_id)
                    for appointment_id in chunk
                }
                for appointment_id, future in futures.items():
                    try:
                        results[appointment_id] = future.result()
                    except (AppointmentNotFoundError, sqlite3.Error) as exc:
                        logger.warning(
                            "Batch risk lookup skipped | appointment_id=%s | error=%s",
                            appointment_id,
                            exc,
                        )

        logger.info(
            "Batch risk predictions completed | requested=%s | assessed=%s | chunk_size=%s",
            len(unique_ids),
            len(results),
            size,
        )
        return results

    def get_high_risk_appointments(
        self,
        day: date,
        threshold: Optional[float] = None,
    ) -> list[RiskAssessment]:
        cutoff = threshold if threshold is not None else self._estimator.thresholds.medium
        appointment_ids = self._repository.list_scheduled_appointment_ids(day)
        assessments = self.get_batch_risk_predictions(appointment_ids)
        high_risk = [item for item in assessments.values() if item.risk_score >= cutoff]
        return sorted(high_risk, key=lambda item: item.risk_score, reverse=True)

    def get_risk_statistics(self, days: int = 30) -> dict[str, Any]:
        since = _utc_now() - timedelta(days=days)
        rows = self._repository.list_risk_assessments(since)

        stats: dict[str, Any] = {
            "total_assessments": len(rows),
            "average_risk_score": 0.0,
            "risk_distribution": {RISK_LEVEL_LOW: 0, RISK_LEVEL_MEDIUM: 0, RISK_LEVEL_HIGH: 0},
            "trend_data": [],
        }
        if not rows:
            return stats

        frame = pd.DataFrame(rows)
        stats["average_risk_score"] = float(frame["risk_score"].mean())
        for level, count in frame["risk_level"].value_counts().items():
            stats["risk_distribution"][str(level)] = int(count)

        frame["date"] = pd.to_datetime(frame["assessed_at"]).dt.date
        daily = frame.groupby("date")["risk_score"].agg(["mean", "count"]).reset_index()
        stats["trend_data"] = [
            {
                "date": row["date"].isoformat(),
                "average_risk": float(row["mean"]),
                "assessment_count": int(row["count"]),
            }
            for _, row in daily.iterrows()
        ]
        return stats

    def update_risk_thresholds(self, thresholds: RiskThresholds) -> None:
        validate_risk_thresholds(thresholds)
        self._estimator.update_thresholds(thresholds)
        if self._alert_dispatcher is not None:
            self._alert_dispatcher.update_thresholds(thresholds)
        # Cached levels were derived from the previous thresholds.
        self._cache.clear()
        logger.info(
            "Risk thresholds updated | low=%.3f | medium=%.3f",
            thresholds.low,
            thresholds.medium,
        )

    def subscribe(self, subscriber_id: str, appointment_ids: Iterable[str]) -> None:
        if self._alert_dispatcher is not None:
            self._alert_dispatcher.subscribe(subscriber_id, appointment_ids)

    def unsubscribe(
        self,
        subscriber_id: str,
        appointment_ids: Optional[Iterable[str]] = None,
    ) -> None:
        if self._alert_dispatcher is not None:
            self._alert_dispatcher.unsubscribe(subscriber_id, appointment_ids)

    def get_active_risk_alerts(
        self,
        start: datetime,
        end: datetime,
        provider_id: Optional[str] = None,
    ) -> list[StoredRiskAlert]:
        try:
            return self._repository.list_active_risk_alerts(
                start=start,
                end=end,
                provider_id=provider_id,
            )
        except sqlite3.Error as exc:
            logger.warning(
                "Failed to load active risk alerts | provider_id=%s | error=%s",
                provider_id,
                exc,
            )
            return []

    def acknowledge_risk_alert(
        self,
        alert_id: int,
        user_id: str,
        action_taken: Optional[str] = None,
    ) -> None:
        if not self._repository.acknowledge_risk_alert(
            alert_id,
            user_id=user_id,
            action_taken=action_taken,
        ):
            raise RiskAlertNotFoundError(f"Risk alert '{alert_id}' was not found")
        logger.info(
            "Risk alert acknowledged | alert_id=%s | user_id=%s | action=%s",
            alert_id,
            user_id,
            action_taken,
        )
