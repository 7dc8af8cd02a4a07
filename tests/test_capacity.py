from __future__ import annotations

from datetime import datetime

import pytest

from clinic_scheduler.domain.constraints import InputValidationError
from clinic_scheduler.domain.models import DateRange, ProviderHistory
from clinic_scheduler.services.capacity_service import ProviderCapacityPlanner
from clinic_scheduler.services.history_service import HistoricalPatternService


PERIOD = DateRange(datetime(2026, 3, 2), datetime(2026, 3, 6, 23, 59))


class FixedHistoryService:
    def __init__(self, history: ProviderHistory) -> None:
        self.history = history
        self.calls: list[tuple[str, datetime]] = []

    def get_provider_history(self, provider_id: str, as_of: datetime) -> ProviderHistory:
        self.calls.append((provider_id, as_of))
        return self.history


def test_default_history_plan() -> None:
    # No repository: the planner falls back to default provider history.
    planner = ProviderCapacityPlanner(history_service=HistoricalPatternService())

    plan = planner.plan("provider-1", PERIOD)

    assert plan.recommended_capacity == 27
    assert plan.overbooking_strategy.enabled is True
    assert plan.overbooking_strategy.percentage == 17
    assert plan.overbooking_strategy.time_slots == ("09:00", "10:00", "14:00", "15:00")
    assert plan.risk_mitigation.high_risk_slots == ("08:00",)
    assert len(plan.risk_mitigation.recommended_actions) == 2
    assert plan.utilization_forecast.expected == pytest.approx(0.95)
    assert plan.utilization_forecast.optimistic == pytest.approx(1.0)
    assert plan.utilization_forecast.pessimistic == pytest.approx(24 / 27 - 0.1)


def test_low_tolerance_disables_overbooking() -> None:
    planner = ProviderCapacityPlanner(history_service=HistoricalPatternService())

    plan = planner.plan("provider-1", PERIOD, target_utilization=0.85, risk_tolerance="low")

    assert plan.recommended_capacity == 24
    assert plan.overbooking_strategy.enabled is False
    assert plan.utilization_forecast.expected == pytest.approx(0.95)
    assert plan.utilization_forecast.pessimistic == pytest.approx(0.9)


def test_high_tolerance_raises_capacity() -> None:
    planner = ProviderCapacityPlanner(history_service=HistoricalPatternService())

    medium = planner.plan("provider-1", PERIOD, risk_tolerance="medium")
    high = planner.plan("provider-1", PERIOD, risk_tolerance="high")

    assert high.recommended_capacity == 30
    assert high.recommended_capacity > medium.recommended_capacity
    assert high.overbooking_strategy.percentage > medium.overbooking_strategy.percentage


def test_overbooking_requires_target_above_point_eight() -> None:
    planner = ProviderCapacityPlanner(history_service=HistoricalPatternService())

    plan = planner.plan("provider-1", PERIOD, target_utilization=0.8)

    assert plan.overbooking_strategy.enabled is False


def test_plan_uses_provider_history() -> None:
    history_service = FixedHistoryService(
        ProviderHistory(
            appointments_per_day=10.0,
            average_utilization=0.6,
            no_show_rate=0.2,
            no_show_rate_by_hour={16: 0.3, 9: 0.1},
            peak_hours=(16, 9),
        )
    )
    planner = ProviderCapacityPlanner(history_service=history_service)

    plan = planner.plan("provider-7", PERIOD, target_utilization=0.75)

    assert history_service.calls == [("provider-7", PERIOD.start_date)]
    assert plan.recommended_capacity == 12
    assert plan.overbooking_strategy.percentage == 20
    assert plan.overbooking_strategy.enabled is False
    assert plan.overbooking_strategy.time_slots == ("09:00", "16:00")
    assert plan.risk_mitigation.high_risk_slots == ("16:00",)
    assert plan.risk_mitigation.recommended_actions[-1] == (
        "Review appointment scheduling policies to improve utilization"
    )
    assert plan.utilization_forecast.pessimistic == pytest.approx(0.9)


def test_plan_serializes_to_nested_dict() -> None:
    plan = ProviderCapacityPlanner(history_service=HistoricalPatternService()).plan("provider-1", PERIOD)

    payload = plan.to_dict()

    assert set(payload) == {
        "recommended_capacity",
        "overbooking_strategy",
        "risk_mitigation",
        "utilization_forecast",
    }
    assert payload["overbooking_strategy"]["time_slots"] == ["09:00", "10:00", "14:00", "15:00"]


def test_invalid_risk_tolerance_raises() -> None:
    planner = ProviderCapacityPlanner(history_service=HistoricalPatternService())

    with pytest.raises(InputValidationError):
        planner.plan("provider-1", PERIOD, risk_tolerance="reckless")
