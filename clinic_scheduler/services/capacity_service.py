"""Provider capacity planning from historical no-show patterns."""

from __future__ import annotations

from typing import Optional

from clinic_scheduler.domain.constraints import validate_capacity_request
from clinic_scheduler.domain.models import (
    DateRange,
    OverbookingStrategy,
    ProviderCapacityPlan,
    ProviderHistory,
    RiskMitigation,
    UtilizationForecast,
)
from clinic_scheduler.services.history_service import (
    DEFAULT_NO_SHOW_RATE,
    HistoricalPatternService,
)
from clinic_scheduler.utils.config import Settings, get_settings
from clinic_scheduler.utils.logger import get_logger


logger = get_logger(__name__)

BASELINE_UTILIZATION = 0.75
OVERBOOKING_MIN_TARGET = 0.8
HIGH_RISK_HOUR_RATE = 0.2
LOW_UTILIZATION = 0.7

CAPACITY_RISK_MULTIPLIERS = {"low": 0.9, "medium": 1.0, "high": 1.1}
OVERBOOKING_RISK_MULTIPLIERS = {"low": 0.5, "medium": 1.0, "high": 1.5}


def _hour_bucket(hour: int) -> str:
    return f"{hour:02d}:00"


class ProviderCapacityPlanner:
    def __init__(
        self,
        history_service: Optional[HistoricalPatternService] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._history_service = history_service or HistoricalPatternService(
            settings=self._settings
        )

    def plan(
        self,
        provider_id: str,
        date_range: DateRange,
        target_utilization: float = 0.85,
        risk_tolerance: str = "medium",
    ) -> ProviderCapacityPlan:
        validate_capacity_request(target_utilization, risk_tolerance)
        history = self._history_service.get_provider_history(
            provider_id,
            as_of=date_range.start_date,
        )

        base_capacity = history.appointments_per_day * self._settings.capacity_headroom
        recommended = max(
            1,
            int(
                round(
                    base_capacity
                    * (target_utilization / BASELINE_UTILIZATION)
                    * CAPACITY_RISK_MULTIPLIERS[risk_tolerance]
                )
            ),
        )

        strategy = self._overbooking_strategy(history, target_utilization, risk_tolerance)
        mitigation = self._risk_mitigation(history)
        forecast = self._utilization_forecast(base_capacity, recommended, strategy)

        logger.info(
            (
                "Capacity plan computed | provider_id=%s | recommended_capacity=%s | "
                "overbooking_enabled=%s | overbooking_percentage=%s"
            ),
            provider_id,
            recommended,
            strategy.enabled,
            strategy.percentage,
        )
        return ProviderCapacityPlan(
            recommended_capacity=recommended,
            overbooking_strategy=strategy,
            risk_mitigation=mitigation,
            utilization_forecast=forecast,
        )

    def _overbooking_strategy(
        self,
        history: ProviderHistory,
        target_utilization: float,
        risk_tolerance: str,
    ) -> OverbookingStrategy:
        rates = list(history.no_show_rate_by_hour.values())
        mean_rate = sum(rates) / len(rates) if rates else DEFAULT_NO_SHOW_RATE
        percentage = int(round(mean_rate * OVERBOOKING_RISK_MULTIPLIERS[risk_tolerance] * 100))
        return OverbookingStrategy(
            enabled=risk_tolerance != "low" and target_utilization > OVERBOOKING_MIN_TARGET,
            percentage=percentage,
            time_slots=tuple(_hour_bucket(hour) for hour in sorted(history.peak_hours)),
        )

    def _risk_mitigation(self, history: ProviderHistory) -> RiskMitigation:
        high_risk_slots = tuple(
            _hour_bucket(hour)
            for hour, rate in sorted(history.no_show_rate_by_hour.items())
            if rate > HIGH_RISK_HOUR_RATE
        )
        actions: list[str] = []
        if high_risk_slots:
            actions.append("Implement additional reminder protocols for high-risk time slots")
            actions.append(
                "Consider offering incentives for appointments during high no-show periods"
            )
        if history.average_utilization < LOW_UTILIZATION:
            actions.append("Review appointment scheduling policies to improve utilization")
        return RiskMitigation(
            high_risk_slots=high_risk_slots,
            recommended_actions=tuple(actions),
        )

    @staticmethod
    def _utilization_forecast(
        base_capacity: float,
        recommended_capacity: int,
        strategy: OverbookingStrategy,
    ) -> UtilizationForecast:
        base_utilization = base_capacity / recommended_capacity
        overbooking_impact = strategy.percentage / 100.0 if strategy.enabled else 0.0
        return UtilizationForecast(
            expected=min(base_utilization + overbooking_impact * 0.5, 0.95),
            optimistic=min(base_utilization + overbooking_impact, 1.0),
            pessimistic=max(base_utilization - 0.1, 0.5),
        )
