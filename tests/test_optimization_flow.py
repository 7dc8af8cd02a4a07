from __future__ import annotations

from datetime import datetime, time, timedelta

import pytest

from clinic_scheduler.domain.constraints import InputValidationError
from clinic_scheduler.domain.models import (
    AppointmentRequest,
    DateRange,
    NoShowFeatures,
    NoShowPrediction,
    SchedulingConstraints,
    SchedulingOptimizationInput,
    SchedulingPreferences,
    TimeInterval,
    WorkingHours,
)
from clinic_scheduler.services.optimization_service import SchedulingOptimizationService
from clinic_scheduler.services.risk_cache import RiskAssessmentCache
from clinic_scheduler.services.risk_service import OracleUnavailableError, RiskEstimator


DAY = DateRange(datetime(2026, 3, 2), datetime(2026, 3, 2, 23, 59))


class FailingPredictor:
    def predict(self, features: NoShowFeatures) -> NoShowPrediction:
        raise OracleUnavailableError("predictor offline")


class CountingPredictor:
    def __init__(self, risk_score: float = 0.2) -> None:
        self.risk_score = risk_score
        self.calls: list[str] = []

    def predict(self, features: NoShowFeatures) -> NoShowPrediction:
        self.calls.append(features.appointment_id)
        return NoShowPrediction(risk_score=self.risk_score, risk_level="low", source="counting")


def _constraints(**overrides) -> SchedulingConstraints:
    return SchedulingConstraints(working_hours=WorkingHours.parse("08:00", "12:00"), **overrides)


def _requests(count: int, with_ids: bool = True, **overrides) -> tuple[AppointmentRequest, ...]:
    return tuple(
        AppointmentRequest(
            patient_id=f"pat-{index}",
            appointment_type="routine",
            duration=30,
            request_id=f"apt-{index}" if with_ids else None,
            **overrides,
        )
        for index in range(count)
    )


def _payload(requests, constraints=None, preferences=SchedulingPreferences()) -> SchedulingOptimizationInput:
    return SchedulingOptimizationInput(
        provider_id="provider-1",
        date_range=DAY,
        appointment_requests=requests,
        constraints=constraints or _constraints(),
        preferences=preferences,
    )


def _service(predictor=None, cache=None) -> SchedulingOptimizationService:
    return SchedulingOptimizationService(
        estimator=RiskEstimator(predictor=predictor or CountingPredictor()),
        cache=cache,
    )


def test_optimize_schedule_end_to_end() -> None:
    result = _service().optimize_schedule(_payload(_requests(3)))

    assert len(result.optimized_schedule) == 3
    assert result.conflicts_resolved == 0
    assert result.utilization_rate == pytest.approx(90 / 240)
    assert result.expected_no_shows == pytest.approx(0.6)
    assert result.revenue_estimate == pytest.approx(450.0)
    assert result.explanation.startswith("Successfully scheduled 3 appointments")
    assert any("improve utilization" in item for item in result.recommendations)

    payload = result.to_dict()
    assert len(payload["optimized_schedule"]) == 3
    assert payload["optimized_schedule"][0]["scheduled_time"].startswith("2026-03-02T")


def test_overflow_requests_are_counted_as_conflicts() -> None:
    result = _service().optimize_schedule(_payload(_requests(20)))

    assert len(result.optimized_schedule) == 8
    assert result.conflicts_resolved == 12
    assert len(result.optimized_schedule) + result.conflicts_resolved == 20
    assert result.utilization_rate == pytest.approx(1.0)


def test_failing_predictor_still_produces_schedule() -> None:
    result = _service(predictor=FailingPredictor()).optimize_schedule(_payload(_requests(4)))

    assert len(result.optimized_schedule) == 4
    assert 4 * 0.05 <= result.expected_no_shows <= 4 * 0.8


def test_supplied_risk_skips_the_predictor() -> None:
    predictor = CountingPredictor()

    result = _service(predictor=predictor).optimize_schedule(
        _payload(_requests(2, no_show_risk=0.5))
    )

    assert predictor.calls == []
    assert result.expected_no_shows == pytest.approx(1.0)


def test_cache_reuses_risk_for_caller_supplied_ids() -> None:
    predictor = CountingPredictor()
    service = _service(predictor=predictor, cache=RiskAssessmentCache(ttl_seconds=300))

    service.optimize_schedule(_payload(_requests(2)))
    service.optimize_schedule(_payload(_requests(2)))

    assert predictor.calls == ["apt-0", "apt-1"]


def test_generated_ids_bypass_the_cache() -> None:
    predictor = CountingPredictor()
    cache = RiskAssessmentCache(ttl_seconds=300)
    service = _service(predictor=predictor, cache=cache)

    result = service.optimize_schedule(_payload(_requests(2, with_ids=False)))
    service.optimize_schedule(_payload(_requests(2, with_ids=False)))

    assert len(predictor.calls) == 4
    assert len(cache) == 0
    assert {item.request_id for item in result.optimized_schedule} == {
        "provider-1-req-1",
        "provider-1-req-2",
    }


def test_break_times_are_respected_end_to_end() -> None:
    constraints = _constraints(break_times=(TimeInterval(time(9, 0), time(10, 0)),))

    result = _service().optimize_schedule(_payload(_requests(6), constraints))

    for appointment in result.optimized_schedule:
        end = appointment.scheduled_time + timedelta(minutes=appointment.duration)
        assert end <= datetime(2026, 3, 2, 9, 0) or appointment.scheduled_time >= datetime(2026, 3, 2, 10, 0)


@pytest.mark.parametrize(
    "payload",
    [
        SchedulingOptimizationInput("", DAY, _requests(1), _constraints()),
        SchedulingOptimizationInput(
            "provider-1",
            DateRange(datetime(2026, 3, 3), datetime(2026, 3, 2)),
            _requests(1),
            _constraints(),
        ),
        SchedulingOptimizationInput("provider-1", DAY, (), _constraints()),
        SchedulingOptimizationInput("provider-1", DAY, _requests(1, priority="critical"), _constraints()),
        SchedulingOptimizationInput("provider-1", DAY, _requests(1, no_show_risk=1.5), _constraints()),
    ],
)
def test_invalid_input_is_rejected(payload) -> None:
    with pytest.raises(InputValidationError):
        _service().optimize_schedule(payload)


def test_suggestions_prefer_peak_hours() -> None:
    request = AppointmentRequest("pat-1", "routine", 30, no_show_risk=0.1)

    suggestions = _service().suggest_optimal_time_slots(request, "provider-1", DAY, _constraints())

    assert [slot.start_time.time() for slot in suggestions] == [
        time(9, 0),
        time(9, 15),
        time(9, 30),
        time(9, 45),
        time(10, 0),
    ]
    assert all(slot.end_time - slot.start_time == timedelta(minutes=30) for slot in suggestions)
    assert all(slot.preference == 10 for slot in suggestions)


def test_suggestions_honor_limit_and_fit() -> None:
    request = AppointmentRequest("pat-1", "routine", 60, no_show_risk=0.5)

    suggestions = _service().suggest_optimal_time_slots(
        request, "provider-1", DAY, _constraints(), max_suggestions=20
    )

    assert len(suggestions) == 13
    assert max(slot.end_time for slot in suggestions) == datetime(2026, 3, 2, 12, 0)
    scores = [slot.preference for slot in suggestions]
    assert scores == sorted(scores, reverse=True)


def test_suggestions_reject_invalid_request() -> None:
    request = AppointmentRequest("pat-1", "routine", 0)

    with pytest.raises(InputValidationError):
        _service().suggest_optimal_time_slots(request, "provider-1", DAY, _constraints())


def test_capacity_plan_through_service() -> None:
    plan = _service().plan_provider_capacity("provider-1", DAY)

    assert plan.recommended_capacity == 27
    with pytest.raises(InputValidationError):
        _service().plan_provider_capacity("", DAY)
