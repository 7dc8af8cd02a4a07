"""Historical appointment pattern analysis for scoring and capacity planning."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta
from typing import Optional, Sequence

import pandas as pd

from clinic_scheduler.domain.models import (
    AppointmentRecord,
    HistoricalPatterns,
    ProviderHistory,
)
from clinic_scheduler.repository.data_repository import (
    STATUS_COMPLETED,
    STATUS_NO_SHOW,
    DataRepository,
)
from clinic_scheduler.utils.config import Settings, get_settings
from clinic_scheduler.utils.logger import get_logger


logger = get_logger(__name__)

DEFAULT_NO_SHOW_RATE = 0.15
PEAK_HOUR_COUNT = 4


def default_patterns() -> HistoricalPatterns:
    return HistoricalPatterns(
        no_show_rate_by_hour={
            8: 0.25, 9: 0.20, 10: 0.15, 11: 0.12, 12: 0.18,
            13: 0.22, 14: 0.15, 15: 0.12, 16: 0.18, 17: 0.25,
        },
        no_show_rate_by_day_of_week={
            0: 0.15, 1: 0.12, 2: 0.10, 3: 0.12, 4: 0.18, 5: 0.25, 6: 0.30,
        },
        no_show_rate_by_type={
            "routine": 0.15,
            "follow-up": 0.10,
            "consultation": 0.12,
            "procedure": 0.08,
        },
        average_duration_by_type={
            "routine": 30,
            "follow-up": 20,
            "consultation": 45,
            "procedure": 60,
        },
        peak_hours=(9, 10, 14, 15),
    )


def default_provider_history(settings: Settings) -> ProviderHistory:
    return ProviderHistory(
        appointments_per_day=settings.capacity_default_appointments_per_day,
        average_utilization=settings.capacity_default_utilization,
        no_show_rate=DEFAULT_NO_SHOW_RATE,
        no_show_rate_by_hour={8: 0.25, 9: 0.15, 10: 0.12, 14: 0.15, 15: 0.18},
        peak_hours=(9, 10, 14, 15),
    )


def _outcome_frame(records: Sequence[AppointmentRecord]) -> pd.DataFrame:
    """Frame of resolved appointments (attended or missed) with calendar features."""

    frame = pd.DataFrame(
        [
            {
                "appointment_time": record.appointment_time,
                "appointment_type": record.appointment_type or "routine",
                "duration": record.duration,
                "status": record.status,
            }
            for record in records
            if record.status in (STATUS_COMPLETED, STATUS_NO_SHOW)
        ]
    )
    if frame.empty:
        return frame

    frame["appointment_time"] = pd.to_datetime(frame["appointment_time"])
    frame["hour"] = frame["appointment_time"].dt.hour.astype(int)
    frame["day_of_week"] = frame["appointment_time"].dt.dayofweek.astype(int)
    frame["day"] = frame["appointment_time"].dt.date
    frame["no_show"] = (frame["status"] == STATUS_NO_SHOW).astype(int)
    return frame


def _rate_by(frame: pd.DataFrame, column: str) -> dict:
    rates = frame.groupby(column)["no_show"].mean()
    return {key: float(value) for key, value in rates.items()}


def _peak_hours(frame: pd.DataFrame) -> tuple[int, ...]:
    volume = frame.groupby("hour").size()
    # Stable ordering: highest volume first, earlier hour on ties.
    ordered = sorted(volume.items(), key=lambda item: (-int(item[1]), int(item[0])))
    return tuple(int(hour) for hour, _ in ordered[:PEAK_HOUR_COUNT])


def analyze_historical_patterns(records: Sequence[AppointmentRecord]) -> HistoricalPatterns:
    frame = _outcome_frame(records)
    if frame.empty:
        return default_patterns()

    return HistoricalPatterns(
        no_show_rate_by_hour={int(key): value for key, value in _rate_by(frame, "hour").items()},
        no_show_rate_by_day_of_week={
            int(key): value for key, value in _rate_by(frame, "day_of_week").items()
        },
        no_show_rate_by_type={
            str(key): value for key, value in _rate_by(frame, "appointment_type").items()
        },
        average_duration_by_type={
            str(key): float(value)
            for key, value in frame.groupby("appointment_type")["duration"].mean().items()
        },
        peak_hours=_peak_hours(frame),
    )


def summarize_provider_history(
    records: Sequence[AppointmentRecord],
    settings: Settings,
) -> ProviderHistory:
    frame = _outcome_frame(records)
    if frame.empty:
        return default_provider_history(settings)

    per_day = frame.groupby("day").size()
    no_show_rate = float(frame["no_show"].mean())
    return ProviderHistory(
        appointments_per_day=float(per_day.mean()),
        average_utilization=1.0 - no_show_rate,
        no_show_rate=no_show_rate,
        no_show_rate_by_hour={int(key): value for key, value in _rate_by(frame, "hour").items()},
        peak_hours=_peak_hours(frame),
    )


class HistoricalPatternService:
    """Loads provider history from the repository and degrades to defaults."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository

    def _load_records(
        self,
        provider_id: str,
        as_of: datetime,
    ) -> Optional[list[AppointmentRecord]]:
        if self._repository is None:
            return None
        since = as_of - timedelta(days=self._settings.history_lookback_days)
        try:
            return self._repository.list_appointment_history(
                provider_id=provider_id,
                start=since,
                end=as_of,
            )
        except sqlite3.Error as exc:
            logger.warning(
                "Failed to load appointment history, using defaults | provider_id=%s | error=%s",
                provider_id,
                exc,
            )
            return None

    def get_patterns(self, provider_id: str, as_of: datetime) -> HistoricalPatterns:
        records = self._load_records(provider_id, as_of)
        if not records:
            return default_patterns()
        return analyze_historical_patterns(records)

    def get_provider_history(self, provider_id: str, as_of: datetime) -> ProviderHistory:
        records = self._load_records(provider_id, as_of)
        if not records:
            return default_provider_history(self._settings)
        return summarize_provider_history(records, self._settings)
