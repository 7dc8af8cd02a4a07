"""Schedule quality metrics, advisory recommendations and summary text."""

from __future__ import annotations

from typing import Optional, Sequence

from clinic_scheduler.domain.models import (
    AppointmentRequest,
    OptimizedAppointment,
    ScheduleMetrics,
    SchedulingPreferences,
    TimeSlot,
)
from clinic_scheduler.services.matching_service import request_key
from clinic_scheduler.utils.config import Settings, get_settings


LOW_UTILIZATION_THRESHOLD = 0.7
HIGH_UTILIZATION_THRESHOLD = 0.9
NO_SHOW_PRESSURE_RATIO = 0.2


class MetricsCalculator:
    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()

    def calculate(
        self,
        appointments: Sequence[OptimizedAppointment],
        available_slots: Sequence[TimeSlot],
        requests_with_risk: Sequence[AppointmentRequest],
        granularity_minutes: int = 15,
    ) -> ScheduleMetrics:
        """Summarize an assignment.

        ``requests_with_risk`` carry a resolved ``no_show_risk``; expected
        no-shows only count requests that were actually scheduled.
        """

        total_available_minutes = len(available_slots) * granularity_minutes
        scheduled_minutes = sum(appointment.duration for appointment in appointments)
        utilization_rate = (
            scheduled_minutes / total_available_minutes if total_available_minutes > 0 else 0.0
        )

        scheduled_ids = {appointment.request_id for appointment in appointments}
        expected_no_shows = sum(
            request.no_show_risk or 0.0
            for index, request in enumerate(requests_with_risk)
            if request_key(request, index) in scheduled_ids
        )

        return ScheduleMetrics(
            utilization_rate=float(utilization_rate),
            expected_no_shows=float(expected_no_shows),
            revenue_estimate=len(appointments) * self._settings.average_revenue_per_appointment,
            conflicts_resolved=len(requests_with_risk) - len(appointments),
        )

    def recommend(
        self,
        metrics: ScheduleMetrics,
        preferences: SchedulingPreferences,
    ) -> list[str]:
        recommendations: list[str] = []
        if metrics.utilization_rate < LOW_UTILIZATION_THRESHOLD:
            recommendations.append(
                "Consider adding more appointment slots or reducing break times to improve utilization"
            )
        if metrics.expected_no_shows > metrics.utilization_rate * NO_SHOW_PRESSURE_RATIO:
            recommendations.append(
                "High no-show risk detected - consider implementing reminder strategies"
            )
        if metrics.conflicts_resolved > 0:
            recommendations.append(
                f"{metrics.conflicts_resolved} appointments could not be scheduled - "
                "consider extending hours or adding capacity"
            )
        if preferences.overbooking_allowed and metrics.utilization_rate > HIGH_UTILIZATION_THRESHOLD:
            recommendations.append(
                "Consider strategic overbooking to account for expected no-shows"
            )
        return recommendations

    def explain(self, metrics: ScheduleMetrics, scheduled_count: int) -> str:
        return (
            f"Successfully scheduled {scheduled_count} appointments with "
            f"{round(metrics.utilization_rate * 100)}% utilization rate. "
            f"Expected {round(metrics.expected_no_shows)} no-shows based on historical "
            "patterns and risk analysis. "
            f"Estimated revenue: ${round(metrics.revenue_estimate)}."
        )
