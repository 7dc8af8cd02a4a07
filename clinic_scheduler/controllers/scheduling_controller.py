"""HTTP controller layer for schedule optimization and capacity planning."""

from __future__ import annotations

from datetime import datetime, time
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator

from clinic_scheduler.domain.constraints import InputValidationError
from clinic_scheduler.domain.models import (
    AppointmentRequest,
    DateRange,
    SchedulingConstraints,
    SchedulingOptimizationInput,
    SchedulingPreferences,
    TimeInterval,
    TimeSlot,
    WorkingHours,
)
from clinic_scheduler.controllers.dependencies import get_optimization_service
from clinic_scheduler.services.optimization_service import SchedulingOptimizationService
from clinic_scheduler.utils.config import get_settings
from clinic_scheduler.utils.logger import get_logger


logger = get_logger(__name__)
settings = get_settings()

router = APIRouter(tags=["scheduling"])


class TimeSlotModel(BaseModel):
    start_time: datetime
    end_time: datetime
    preference: Optional[float] = Field(default=None, ge=0.0, le=10.0)

    def to_domain(self) -> TimeSlot:
        return TimeSlot(
            start_time=self.start_time,
            end_time=self.end_time,
            preference=self.preference,
        )


class IntervalModel(BaseModel):
    """Either an absolute datetime range or a daily ``HH:MM`` range."""

    start: datetime | time
    end: datetime | time

    def to_domain(self) -> TimeInterval:
        return TimeInterval(start=self.start, end=self.end)


class WorkingHoursModel(BaseModel):
    start: time
    end: time

    def to_domain(self) -> WorkingHours:
        return WorkingHours(start=self.start, end=self.end)


class ConstraintsModel(BaseModel):
    working_hours: WorkingHoursModel
    break_times: list[IntervalModel] = Field(default_factory=list)
    blocked_times: list[IntervalModel] = Field(default_factory=list)
    working_days: list[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4])
    hours_by_weekday: dict[int, WorkingHoursModel] = Field(default_factory=dict)
    overbook_windows: list[IntervalModel] = Field(default_factory=list)
    slot_granularity_minutes: int = Field(default=settings.slot_granularity_minutes, gt=0, le=240)

    @field_validator("working_days")
    @classmethod
    def validate_working_days(cls, value: list[int]) -> list[int]:
        for day in value:
            if not 0 <= day <= 6:
                raise ValueError("working_days entries must be 0 (Monday) through 6 (Sunday)")
        return value

    def to_domain(self) -> SchedulingConstraints:
        return SchedulingConstraints(
            working_hours=self.working_hours.to_domain(),
            break_times=tuple(item.to_domain() for item in self.break_times),
            blocked_times=tuple(item.to_domain() for item in self.blocked_times),
            working_days=frozenset(self.working_days),
            hours_by_weekday={
                day: hours.to_domain() for day, hours in self.hours_by_weekday.items()
            },
            overbook_windows=tuple(item.to_domain() for item in self.overbook_windows),
            slot_granularity_minutes=self.slot_granularity_minutes,
        )


class PreferencesModel(BaseModel):
    consider_patient_preferences: bool = True
    balance_workload: bool = False
    prioritize_high_risk: bool = False
    overbooking_allowed: bool = False

    def to_domain(self) -> SchedulingPreferences:
        return SchedulingPreferences(
            consider_patient_preferences=self.consider_patient_preferences,
            balance_workload=self.balance_workload,
            prioritize_high_risk=self.prioritize_high_risk,
            overbooking_allowed=self.overbooking_allowed,
        )


class AppointmentRequestModel(BaseModel):
    request_id: Optional[str] = None
    patient_id: str
    appointment_type: str
    duration: int
    priority: Literal["urgent", "high", "medium", "low"] = "medium"
    preferred_times: list[TimeSlotModel] = Field(default_factory=list)
    no_show_risk: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    def to_domain(self) -> AppointmentRequest:
        return AppointmentRequest(
            patient_id=self.patient_id,
            appointment_type=self.appointment_type,
            duration=self.duration,
            priority=self.priority,
            preferred_times=tuple(item.to_domain() for item in self.preferred_times),
            no_show_risk=self.no_show_risk,
            request_id=self.request_id,
        )


class OptimizeScheduleRequest(BaseModel):
    """Input DTO; semantic checks stay in the domain validator."""

    provider_id: str
    start_date: datetime
    end_date: datetime
    appointment_requests: list[AppointmentRequestModel]
    constraints: ConstraintsModel
    preferences: PreferencesModel = Field(default_factory=PreferencesModel)

    def to_domain(self) -> SchedulingOptimizationInput:
        return SchedulingOptimizationInput(
            provider_id=self.provider_id,
            date_range=DateRange(start_date=self.start_date, end_date=self.end_date),
            appointment_requests=tuple(item.to_domain() for item in self.appointment_requests),
            constraints=self.constraints.to_domain(),
            preferences=self.preferences.to_domain(),
        )


class OptimizedAppointmentResponse(BaseModel):
    request_id: str
    patient_id: str
    scheduled_time: datetime
    duration: int = Field(gt=0)
    confidence: float = Field(ge=0.0, le=1.0)
    alternative_slots: list[TimeSlotModel]
    overbooked: bool


class OptimizeScheduleResponse(BaseModel):
    optimized_schedule: list[OptimizedAppointmentResponse]
    utilization_rate: float = Field(ge=0.0)
    expected_no_shows: float = Field(ge=0.0)
    revenue_estimate: float = Field(ge=0.0)
    conflicts_resolved: int = Field(ge=0)
    recommendations: list[str]
    explanation: str


class SuggestTimeSlotsRequest(BaseModel):
    provider_id: str
    start_date: datetime
    end_date: datetime
    appointment_request: AppointmentRequestModel
    constraints: ConstraintsModel
    max_suggestions: Optional[int] = Field(default=None, gt=0, le=50)


class SuggestTimeSlotsResponse(BaseModel):
    suggestions: list[TimeSlotModel]


class CapacityPlanRequest(BaseModel):
    provider_id: str
    start_date: datetime
    end_date: datetime
    target_utilization: float = Field(default=0.85, gt=0.0, le=1.0)
    risk_tolerance: Literal["low", "medium", "high"] = "medium"


class OverbookingStrategyResponse(BaseModel):
    enabled: bool
    percentage: int = Field(ge=0)
    time_slots: list[str]


class RiskMitigationResponse(BaseModel):
    high_risk_slots: list[str]
    recommended_actions: list[str]


class UtilizationForecastResponse(BaseModel):
    expected: float
    optimistic: float
    pessimistic: float


class CapacityPlanResponse(BaseModel):
    recommended_capacity: int = Field(ge=0)
    overbooking_strategy: OverbookingStrategyResponse
    risk_mitigation: RiskMitigationResponse
    utilization_forecast: UtilizationForecastResponse


@router.post(
    "/optimize_schedule",
    response_model=OptimizeScheduleResponse,
    status_code=status.HTTP_200_OK,
)
async def optimize_schedule(
    payload: OptimizeScheduleRequest,
    service: SchedulingOptimizationService = Depends(get_optimization_service),
) -> OptimizeScheduleResponse:
    """Assign pending requests to slots and summarize the resulting schedule."""
    try:
        result = service.optimize_schedule(payload.to_domain())
        return OptimizeScheduleResponse(**result.to_dict())
    except InputValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected schedule optimization failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to optimize schedule",
        ) from exc


@router.post(
    "/suggest_time_slots",
    response_model=SuggestTimeSlotsResponse,
    status_code=status.HTTP_200_OK,
)
async def suggest_time_slots(
    payload: SuggestTimeSlotsRequest,
    service: SchedulingOptimizationService = Depends(get_optimization_service),
) -> SuggestTimeSlotsResponse:
    try:
        suggestions = service.suggest_optimal_time_slots(
            payload.appointment_request.to_domain(),
            payload.provider_id,
            DateRange(start_date=payload.start_date, end_date=payload.end_date),
            payload.constraints.to_domain(),
            max_suggestions=payload.max_suggestions,
        )
        return SuggestTimeSlotsResponse(
            suggestions=[TimeSlotModel(**slot.to_dict()) for slot in suggestions]
        )
    except InputValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected time slot suggestion failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to suggest time slots",
        ) from exc


@router.post(
    "/provider_capacity_plan",
    response_model=CapacityPlanResponse,
    status_code=status.HTTP_200_OK,
)
async def provider_capacity_plan(
    payload: CapacityPlanRequest,
    service: SchedulingOptimizationService = Depends(get_optimization_service),
) -> CapacityPlanResponse:
    try:
        plan = service.plan_provider_capacity(
            payload.provider_id,
            DateRange(start_date=payload.start_date, end_date=payload.end_date),
            target_utilization=payload.target_utilization,
            risk_tolerance=payload.risk_tolerance,
        )
        return CapacityPlanResponse(**plan.to_dict())
    except InputValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected capacity planning failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to build capacity plan",
        ) from exc
