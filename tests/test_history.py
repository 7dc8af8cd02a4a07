from __future__ import annotations

import sqlite3
from dataclasses import replace
from datetime import datetime

import pytest

from clinic_scheduler.domain.models import AppointmentRecord
from clinic_scheduler.repository.data_repository import (
    STATUS_COMPLETED,
    STATUS_NO_SHOW,
    STATUS_SCHEDULED,
    DataRepository,
)
from clinic_scheduler.services.history_service import (
    HistoricalPatternService,
    analyze_historical_patterns,
    default_patterns,
    summarize_provider_history,
)
from clinic_scheduler.utils.config import get_settings


def _record(index: int, moment: datetime, status: str, appointment_type: str = "routine") -> AppointmentRecord:
    return AppointmentRecord(
        appointment_id=str(index),
        provider_id="provider-1",
        patient_id=f"pat-{index}",
        appointment_time=moment,
        appointment_type=appointment_type,
        duration=30,
        status=status,
    )


def _records() -> list[AppointmentRecord]:
    return [
        _record(1, datetime(2026, 2, 2, 9, 0), STATUS_NO_SHOW),
        _record(2, datetime(2026, 2, 2, 9, 30), STATUS_COMPLETED),
        _record(3, datetime(2026, 2, 3, 9, 0), STATUS_COMPLETED),
        _record(4, datetime(2026, 2, 3, 9, 30), STATUS_COMPLETED, "procedure"),
        _record(5, datetime(2026, 2, 2, 10, 0), STATUS_COMPLETED),
        _record(6, datetime(2026, 2, 3, 10, 0), STATUS_COMPLETED),
        _record(7, datetime(2026, 2, 3, 14, 0), STATUS_NO_SHOW),
        _record(8, datetime(2026, 2, 4, 15, 0), STATUS_SCHEDULED),
    ]


class FailingRepository:
    def list_appointment_history(self, **kwargs):
        raise sqlite3.OperationalError("database is locked")


def _build_test_settings(tmp_path, filename: str):
    return replace(get_settings(), database_path=tmp_path / filename, synthetic_seed_days=20)


def test_patterns_from_resolved_history() -> None:
    patterns = analyze_historical_patterns(_records())

    assert patterns.no_show_rate_by_hour == {9: pytest.approx(0.25), 10: 0.0, 14: 1.0}
    assert patterns.no_show_rate_by_day_of_week[0] == pytest.approx(1 / 3)
    assert patterns.no_show_rate_by_type["procedure"] == 0.0
    assert patterns.peak_hours == (9, 10, 14)


def test_empty_history_uses_default_patterns() -> None:
    assert analyze_historical_patterns([]) == default_patterns()
    only_scheduled = [_record(1, datetime(2026, 2, 2, 9, 0), STATUS_SCHEDULED)]
    assert analyze_historical_patterns(only_scheduled) == default_patterns()


def test_provider_history_summary() -> None:
    history = summarize_provider_history(_records(), get_settings())

    # Two days with resolved outcomes: 3 on Feb 2, 4 on Feb 3.
    assert history.appointments_per_day == pytest.approx(3.5)
    assert history.no_show_rate == pytest.approx(2 / 7)
    assert history.average_utilization == pytest.approx(5 / 7)
    assert history.peak_hours == (9, 10, 14)


def test_repository_errors_degrade_to_defaults() -> None:
    service = HistoricalPatternService(repository=FailingRepository())

    assert service.get_patterns("provider-1", datetime(2026, 3, 2)) == default_patterns()
    assert service.get_provider_history("provider-1", datetime(2026, 3, 2)).appointments_per_day == 20.0


def test_seeded_history_feeds_patterns(tmp_path) -> None:
    settings = _build_test_settings(tmp_path, "history.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.seed_synthetic_history()

    service = HistoricalPatternService(repository=repository, settings=settings)
    patterns = service.get_patterns("provider-1", datetime.now())
    history = service.get_provider_history("provider-1", datetime.now())

    assert patterns.no_show_rate_by_hour
    assert all(0.0 <= rate <= 1.0 for rate in patterns.no_show_rate_by_hour.values())
    assert len(patterns.peak_hours) == 4
    assert 0.0 < history.appointments_per_day <= 9.0
    assert history.average_utilization == pytest.approx(1.0 - history.no_show_rate)


def test_seed_is_idempotent(tmp_path) -> None:
    settings = _build_test_settings(tmp_path, "seed.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.seed_synthetic_history()
    first = repository.list_appointment_history(
        provider_id="provider-1",
        start=datetime(2000, 1, 1),
        end=datetime(2100, 1, 1),
    )

    repository.seed_synthetic_history()
    second = repository.list_appointment_history(
        provider_id="provider-1",
        start=datetime(2000, 1, 1),
        end=datetime(2100, 1, 1),
    )

    assert first
    assert len(first) == len(second)
