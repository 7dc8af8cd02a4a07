"""Weighted (slot, request) scoring for the assignment engine."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from clinic_scheduler.domain.models import (
    AppointmentRequest,
    HistoricalPatterns,
    SchedulingPreferences,
    TimeSlot,
    priority_weight,
)


DEFAULT_HOURLY_NO_SHOW_RATE = 0.15
DEFAULT_PATIENT_PREFERENCE = 5.0
NEUTRAL_PREFERENCE_SCORE = 0.5
PEAK_HOUR_EFFICIENCY = 0.8
OFF_PEAK_EFFICIENCY = 1.0
MAX_PRIORITY_WEIGHT = 4.0


@dataclass(frozen=True)
class ScoringWeights:
    utilization: float = 0.30
    no_show_risk: float = 0.25
    patient_preference: float = 0.20
    revenue_priority: float = 0.15
    provider_efficiency: float = 0.10


@dataclass(frozen=True)
class SlotScoreBreakdown:
    utilization: float
    no_show_risk: float
    patient_preference: float
    revenue_priority: float
    provider_efficiency: float
    total: float

    def to_dict(self) -> dict[str, float]:
        return {
            "utilization": self.utilization,
            "no_show_risk": self.no_show_risk,
            "patient_preference": self.patient_preference,
            "revenue_priority": self.revenue_priority,
            "provider_efficiency": self.provider_efficiency,
            "total": self.total,
        }


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def slots_needed(duration: int, granularity_minutes: int) -> int:
    return max(1, math.ceil(duration / granularity_minutes))


def utilization_score(duration: int, granularity_minutes: int) -> float:
    needed = slots_needed(duration, granularity_minutes)
    return _clamp(duration / (needed * granularity_minutes))


def no_show_score(slot: TimeSlot, patterns: Optional[HistoricalPatterns]) -> float:
    rates = patterns.no_show_rate_by_hour if patterns is not None else {}
    rate = rates.get(slot.start_time.hour, DEFAULT_HOURLY_NO_SHOW_RATE)
    return _clamp(1.0 - rate)


def patient_preference_score(slot: TimeSlot, request: AppointmentRequest) -> float:
    """Best proximity-weighted match against the patient's preferred times."""
    if not request.preferred_times:
        return NEUTRAL_PREFERENCE_SCORE

    best = 0.0
    for preferred in request.preferred_times:
        hours_diff = abs((slot.start_time - preferred.start_time).total_seconds()) / 3600.0
        rating = (
            preferred.preference
            if preferred.preference is not None
            else DEFAULT_PATIENT_PREFERENCE
        )
        best = max(best, max(0.0, 1.0 - hours_diff / 24.0) * (rating / 10.0))
    return _clamp(best)


def revenue_priority_score(request: AppointmentRequest) -> float:
    return _clamp(priority_weight(request.priority) / MAX_PRIORITY_WEIGHT)


def provider_efficiency_score(slot: TimeSlot, patterns: Optional[HistoricalPatterns]) -> float:
    peak_hours = patterns.peak_hours if patterns is not None else ()
    if slot.start_time.hour in peak_hours:
        return PEAK_HOUR_EFFICIENCY
    return OFF_PEAK_EFFICIENCY


class SlotScorer:
    """Pure weighted-sum scorer; identical inputs always give identical scores."""

    def __init__(self, weights: Optional[ScoringWeights] = None) -> None:
        self._weights = weights or ScoringWeights()

    @property
    def weights(self) -> ScoringWeights:
        return self._weights

    def score_breakdown(
        self,
        slot: TimeSlot,
        request: AppointmentRequest,
        preferences: SchedulingPreferences,
        patterns: Optional[HistoricalPatterns],
        *,
        granularity_minutes: int = 15,
    ) -> SlotScoreBreakdown:
        weights = self._weights
        utilization = utilization_score(request.duration, granularity_minutes)
        no_show = no_show_score(slot, patterns)
        preference = (
            patient_preference_score(slot, request)
            if preferences.consider_patient_preferences
            else 0.0
        )
        revenue = revenue_priority_score(request)
        efficiency = (
            provider_efficiency_score(slot, patterns)
            if preferences.balance_workload
            else 0.0
        )

        total = (
            weights.utilization * utilization
            + weights.no_show_risk * no_show
            + weights.patient_preference * preference
            + weights.revenue_priority * revenue
            + weights.provider_efficiency * efficiency
        )
        return SlotScoreBreakdown(
            utilization=utilization,
            no_show_risk=no_show,
            patient_preference=preference,
            revenue_priority=revenue,
            provider_efficiency=efficiency,
            total=_clamp(total),
        )

    def score(
        self,
        slot: TimeSlot,
        request: AppointmentRequest,
        preferences: SchedulingPreferences,
        patterns: Optional[HistoricalPatterns],
        *,
        granularity_minutes: int = 15,
    ) -> float:
        return self.score_breakdown(
            slot,
            request,
            preferences,
            patterns,
            granularity_minutes=granularity_minutes,
        ).total
