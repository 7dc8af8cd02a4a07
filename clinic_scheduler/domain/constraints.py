"""Domain-level validation rules for scheduling optimization."""

from __future__ import annotations

from clinic_scheduler.domain.models import (
    PRIORITY_WEIGHTS,
    RiskThresholds,
    SchedulingConstraints,
    SchedulingOptimizationInput,
)


RISK_TOLERANCES = ("low", "medium", "high")


class SchedulingError(Exception):
    """Base exception for scheduling core failures."""


class InputValidationError(SchedulingError, ValueError):
    """Raised when caller-supplied input is malformed."""


def validate_optimization_input(payload: SchedulingOptimizationInput) -> None:
    if not payload.provider_id:
        raise InputValidationError("Provider ID is required")

    date_range = payload.date_range
    if date_range is None or date_range.start_date is None or date_range.end_date is None:
        raise InputValidationError("Valid date range is required")
    if date_range.start_date >= date_range.end_date:
        raise InputValidationError("Start date must be before end date")

    if not payload.appointment_requests:
        raise InputValidationError("At least one appointment request is required")

    seen_request_ids: set[str] = set()
    for index, request in enumerate(payload.appointment_requests):
        if request.request_id:
            if request.request_id in seen_request_ids:
                raise InputValidationError(
                    f"Appointment request at index {index} repeats request_id "
                    f"'{request.request_id}'"
                )
            seen_request_ids.add(request.request_id)
        if not request.patient_id or not request.appointment_type or not request.duration:
            raise InputValidationError(f"Invalid appointment request at index {index}")
        if request.duration < 0:
            raise InputValidationError(
                f"Appointment request at index {index} has a negative duration"
            )
        if request.priority not in PRIORITY_WEIGHTS:
            raise InputValidationError(
                f"Appointment request at index {index} has unknown priority "
                f"'{request.priority}'"
            )
        if request.no_show_risk is not None and not 0.0 <= request.no_show_risk <= 1.0:
            raise InputValidationError(
                f"Appointment request at index {index} has no_show_risk outside [0, 1]"
            )

    validate_scheduling_constraints(payload.constraints)


def validate_scheduling_constraints(constraints: SchedulingConstraints) -> None:
    if constraints.slot_granularity_minutes <= 0:
        raise InputValidationError("slot_granularity_minutes must be > 0")
    hours = [constraints.working_hours, *constraints.hours_by_weekday.values()]
    for working_hours in hours:
        if working_hours.start >= working_hours.end:
            raise InputValidationError("working hours start must be before end")
    for interval in (
        *constraints.break_times,
        *constraints.blocked_times,
        *constraints.overbook_windows,
    ):
        if type(interval.start) is not type(interval.end):
            raise InputValidationError(
                "interval start and end must both be datetimes or both be times"
            )
        if interval.start >= interval.end:
            raise InputValidationError("interval start must be before end")


def validate_risk_thresholds(thresholds: RiskThresholds) -> None:
    if not 0.0 < thresholds.low < thresholds.medium <= 1.0:
        raise InputValidationError("risk thresholds must satisfy 0 < low < medium <= 1")


def validate_capacity_request(target_utilization: float, risk_tolerance: str) -> None:
    if not 0.0 < target_utilization <= 1.0:
        raise InputValidationError("target_utilization must be in (0, 1]")
    if risk_tolerance not in RISK_TOLERANCES:
        raise InputValidationError(
            f"risk_tolerance must be one of {', '.join(RISK_TOLERANCES)}"
        )
