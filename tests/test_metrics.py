from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from clinic_scheduler.domain.models import (
    AppointmentRequest,
    OptimizedAppointment,
    ScheduleMetrics,
    SchedulingPreferences,
    TimeSlot,
)
from clinic_scheduler.services.metrics_service import MetricsCalculator
from clinic_scheduler.utils.config import get_settings


def _slots(count: int) -> list[TimeSlot]:
    start = datetime(2026, 3, 2, 8, 0)
    return [
        TimeSlot(start + timedelta(minutes=15 * index), start + timedelta(minutes=15 * (index + 1)))
        for index in range(count)
    ]


def _appointment(request_id: str, hour: int) -> OptimizedAppointment:
    return OptimizedAppointment(
        request_id=request_id,
        patient_id=f"patient-{request_id}",
        scheduled_time=datetime(2026, 3, 2, hour, 0),
        duration=30,
        confidence=0.7,
    )


def _requests() -> list[AppointmentRequest]:
    return [
        AppointmentRequest("pat-a", "routine", 30, no_show_risk=0.3, request_id="a"),
        AppointmentRequest("pat-b", "routine", 30, no_show_risk=0.4, request_id="b"),
        AppointmentRequest("pat-c", "routine", 30, no_show_risk=0.9, request_id="c"),
    ]


def test_metrics_from_assignment() -> None:
    metrics = MetricsCalculator().calculate(
        [_appointment("a", 8), _appointment("b", 9)],
        _slots(16),
        _requests(),
        granularity_minutes=15,
    )

    assert metrics.utilization_rate == pytest.approx(60 / 240)
    assert metrics.expected_no_shows == pytest.approx(0.7)
    assert metrics.revenue_estimate == pytest.approx(300.0)
    assert metrics.conflicts_resolved == 1


def test_revenue_uses_configured_average() -> None:
    settings = replace(get_settings(), average_revenue_per_appointment=200.0)

    metrics = MetricsCalculator(settings).calculate([_appointment("a", 8)], _slots(4), _requests()[:1])

    assert metrics.revenue_estimate == pytest.approx(200.0)


def test_no_available_slots_yields_zero_utilization() -> None:
    metrics = MetricsCalculator().calculate([], [], _requests())

    assert metrics.utilization_rate == 0.0
    assert metrics.expected_no_shows == 0.0
    assert metrics.conflicts_resolved == 3


def test_recommendations_for_underused_risky_schedule() -> None:
    metrics = ScheduleMetrics(
        utilization_rate=0.25,
        expected_no_shows=0.7,
        revenue_estimate=300.0,
        conflicts_resolved=1,
    )

    recommendations = MetricsCalculator().recommend(metrics, SchedulingPreferences())

    assert len(recommendations) == 3
    assert "improve utilization" in recommendations[0]
    assert "reminder strategies" in recommendations[1]
    assert recommendations[2].startswith("1 appointments could not be scheduled")


def test_overbooking_recommended_only_when_allowed_and_full() -> None:
    metrics = ScheduleMetrics(
        utilization_rate=0.95,
        expected_no_shows=0.1,
        revenue_estimate=1500.0,
        conflicts_resolved=0,
    )
    calculator = MetricsCalculator()

    assert calculator.recommend(metrics, SchedulingPreferences()) == []
    assert calculator.recommend(metrics, SchedulingPreferences(overbooking_allowed=True)) == [
        "Consider strategic overbooking to account for expected no-shows"
    ]


def test_explanation_summarizes_metrics() -> None:
    metrics = ScheduleMetrics(
        utilization_rate=0.25,
        expected_no_shows=0.7,
        revenue_estimate=300.0,
        conflicts_resolved=1,
    )

    assert MetricsCalculator().explain(metrics, 2) == (
        "Successfully scheduled 2 appointments with 25% utilization rate. "
        "Expected 1 no-shows based on historical patterns and risk analysis. "
        "Estimated revenue: $300."
    )
