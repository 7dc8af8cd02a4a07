"""Scheduling optimization orchestration: validate, score, assign, summarize."""

from __future__ import annotations

from dataclasses import replace
from datetime import timedelta
from typing import Optional

from clinic_scheduler.domain.constraints import (
    InputValidationError,
    validate_optimization_input,
    validate_scheduling_constraints,
)
from clinic_scheduler.domain.models import (
    AppointmentRequest,
    DateRange,
    ProviderCapacityPlan,
    SchedulingConstraints,
    SchedulingOptimization,
    SchedulingOptimizationInput,
    TimeSlot,
)
from clinic_scheduler.repository.data_repository import DataRepository
from clinic_scheduler.services.capacity_service import ProviderCapacityPlanner
from clinic_scheduler.services.history_service import HistoricalPatternService, default_patterns
from clinic_scheduler.services.matching_service import AssignmentEngine
from clinic_scheduler.services.metrics_service import MetricsCalculator
from clinic_scheduler.services.risk_cache import RiskAssessmentCache
from clinic_scheduler.services.risk_service import RiskEstimator
from clinic_scheduler.services.scoring_service import patient_preference_score, slots_needed
from clinic_scheduler.services.slot_service import TimeSlotGenerator
from clinic_scheduler.utils.config import Settings, get_settings
from clinic_scheduler.utils.logger import get_logger


logger = get_logger(__name__)

SUGGESTION_BASE_SCORE = 0.5
SUGGESTION_PEAK_HOUR_BONUS = 0.3
SUGGESTION_RISK_WEIGHT = 0.2
SUGGESTION_PREFERENCE_WEIGHT = 0.3


def resolve_request_ids(
    provider_id: str,
    requests: tuple[AppointmentRequest, ...],
) -> tuple[AppointmentRequest, ...]:
    return tuple(
        request
        if request.request_id
        else replace(request, request_id=f"{provider_id}-req-{index + 1}")
        for index, request in enumerate(requests)
    )


class SchedulingOptimizationService:
    """Entry point composing slot generation, risk, assignment and metrics."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        *,
        estimator: Optional[RiskEstimator] = None,
        cache: Optional[RiskAssessmentCache] = None,
        history_service: Optional[HistoricalPatternService] = None,
        slot_generator: Optional[TimeSlotGenerator] = None,
        engine: Optional[AssignmentEngine] = None,
        metrics_calculator: Optional[MetricsCalculator] = None,
        capacity_planner: Optional[ProviderCapacityPlanner] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._estimator = estimator or RiskEstimator(settings=self._settings)
        self._cache = cache
        self._history_service = history_service or HistoricalPatternService(
            repository=repository,
            settings=self._settings,
        )
        self._slot_generator = slot_generator or TimeSlotGenerator()
        self._engine = engine or AssignmentEngine(
            max_alternatives=self._settings.max_alternative_slots
        )
        self._metrics = metrics_calculator or MetricsCalculator(self._settings)
        self._capacity_planner = capacity_planner or ProviderCapacityPlanner(
            history_service=self._history_service,
            settings=self._settings,
        )

    def _request_risk(
        self,
        request: AppointmentRequest,
        provider_id: str,
        date_range: DateRange,
    ) -> float:
        if request.no_show_risk is not None:
            return request.no_show_risk

        features = self._estimator.features_for_request(
            request,
            provider_id,
            reference_time=date_range.start_date,
        )
        # Only caller-supplied ids identify a real appointment across calls.
        if self._cache is None or not request.request_id:
            return self._estimator.predict(features).risk_score
        assessment = self._cache.get_or_compute(
            features.appointment_id,
            lambda: self._estimator.predict(features),
        )
        return assessment.risk_score

    def optimize_schedule(self, payload: SchedulingOptimizationInput) -> SchedulingOptimization:
        validate_optimization_input(payload)

        requests = tuple(payload.appointment_requests)
        patterns = self._history_service.get_patterns(
            payload.provider_id,
            as_of=payload.date_range.start_date,
        )
        slots = self._slot_generator.generate(payload.date_range, payload.constraints)

        requests_with_risk = list(
            resolve_request_ids(
                payload.provider_id,
                tuple(
                    replace(
                        request,
                        no_show_risk=self._request_risk(
                            request, payload.provider_id, payload.date_range
                        ),
                    )
                    for request in requests
                ),
            )
        )

        result = self._engine.assign(
            requests_with_risk,
            slots,
            payload.constraints,
            payload.preferences,
            patterns,
        )
        metrics = self._metrics.calculate(
            result.appointments,
            slots,
            requests_with_risk,
            granularity_minutes=payload.constraints.slot_granularity_minutes,
        )
        recommendations = self._metrics.recommend(metrics, payload.preferences)
        explanation = self._metrics.explain(metrics, len(result.appointments))

        logger.info(
            (
                "Schedule optimization completed | provider_id=%s | requests=%s | slots=%s | "
                "scheduled=%s | conflicts=%s | utilization=%.3f"
            ),
            payload.provider_id,
            len(requests),
            len(slots),
            len(result.appointments),
            metrics.conflicts_resolved,
            metrics.utilization_rate,
        )
        return SchedulingOptimization(
            optimized_schedule=result.appointments,
            utilization_rate=metrics.utilization_rate,
            expected_no_shows=metrics.expected_no_shows,
            revenue_estimate=metrics.revenue_estimate,
            conflicts_resolved=metrics.conflicts_resolved,
            recommendations=recommendations,
            explanation=explanation,
        )

    def suggest_optimal_time_slots(
        self,
        request: AppointmentRequest,
        provider_id: str,
        date_range: DateRange,
        constraints: SchedulingConstraints,
        max_suggestions: Optional[int] = None,
    ) -> list[TimeSlot]:
        """Rank bookable start times for a single request, best first."""

        if not provider_id:
            raise InputValidationError("Provider ID is required")
        if date_range.start_date >= date_range.end_date:
            raise InputValidationError("Start date must be before end date")
        if not request.patient_id or not request.appointment_type or request.duration <= 0:
            raise InputValidationError("Invalid appointment request")
        validate_scheduling_constraints(constraints)

        limit = max_suggestions or self._settings.max_time_slot_suggestions
        granularity = constraints.slot_granularity_minutes
        step = timedelta(minutes=granularity)
        needed = slots_needed(request.duration, granularity)

        risk = self._request_risk(request, provider_id, date_range)
        patterns = self._history_service.get_patterns(provider_id, as_of=date_range.start_date)
        peak_hours = patterns.peak_hours or default_patterns().peak_hours

        slots = self._slot_generator.generate(date_range, constraints)
        starts = {slot.start_time for slot in slots}
        scored: list[tuple[float, TimeSlot]] = []
        for slot in slots:
            if any(slot.start_time + step * offset not in starts for offset in range(1, needed)):
                continue
            score = SUGGESTION_BASE_SCORE
            if slot.start_time.hour in peak_hours:
                score += SUGGESTION_PEAK_HOUR_BONUS
            score += (1.0 - risk) * SUGGESTION_RISK_WEIGHT
            score += patient_preference_score(slot, request) * SUGGESTION_PREFERENCE_WEIGHT
            scored.append((max(0.0, min(1.0, score)), slot))

        scored.sort(key=lambda item: (-item[0], item[1].start_time))
        suggestions = [
            TimeSlot(
                start_time=slot.start_time,
                end_time=slot.start_time + step * needed,
                preference=round(score * 10),
            )
            for score, slot in scored[:limit]
        ]
        logger.info(
            "Time slot suggestions generated | provider_id=%s | candidates=%s | returned=%s",
            provider_id,
            len(scored),
            len(suggestions),
        )
        return suggestions

    def plan_provider_capacity(
        self,
        provider_id: str,
        date_range: DateRange,
        target_utilization: float = 0.85,
        risk_tolerance: str = "medium",
    ) -> ProviderCapacityPlan:
        if not provider_id:
            raise InputValidationError("Provider ID is required")
        if date_range.start_date >= date_range.end_date:
            raise InputValidationError("Start date must be before end date")
        return self._capacity_planner.plan(
            provider_id,
            date_range,
            target_utilization=target_utilization,
            risk_tolerance=risk_tolerance,
        )
