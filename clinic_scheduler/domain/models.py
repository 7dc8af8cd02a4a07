"""Domain models for appointment scheduling optimization and no-show risk."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Mapping, Optional


PRIORITY_WEIGHTS: dict[str, int] = {"urgent": 4, "high": 3, "medium": 2, "low": 1}
DEFAULT_PRIORITY_WEIGHT = 2

RISK_LEVEL_LOW = "low"
RISK_LEVEL_MEDIUM = "medium"
RISK_LEVEL_HIGH = "high"

WEEKDAYS = frozenset({0, 1, 2, 3, 4})


def priority_weight(priority: str) -> int:
    return PRIORITY_WEIGHTS.get(priority, DEFAULT_PRIORITY_WEIGHT)


def _parse_clock(value: str) -> time:
    hour, minute = (int(part) for part in value.split(":"))
    return time(hour=hour, minute=minute)


@dataclass(frozen=True)
class TimeSlot:
    start_time: datetime
    end_time: datetime
    preference: Optional[float] = None
    overbook_target: bool = False

    @property
    def duration_minutes(self) -> int:
        return int((self.end_time - self.start_time).total_seconds() // 60)

    def to_dict(self) -> dict[str, Any]:
        return {
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "preference": self.preference,
        }


@dataclass(frozen=True)
class TimeInterval:
    """Break or blocked interval.

    ``start``/``end`` are either both ``datetime`` (one occurrence) or both
    ``time`` (repeats on every generated day).
    """

    start: datetime | time
    end: datetime | time

    def on(self, day: date) -> tuple[datetime, datetime]:
        if isinstance(self.start, datetime) and isinstance(self.end, datetime):
            return self.start, self.end
        return datetime.combine(day, self.start), datetime.combine(day, self.end)


@dataclass(frozen=True)
class WorkingHours:
    start: time
    end: time

    @classmethod
    def parse(cls, start: str, end: str) -> "WorkingHours":
        return cls(start=_parse_clock(start), end=_parse_clock(end))


@dataclass(frozen=True)
class DateRange:
    start_date: datetime
    end_date: datetime


@dataclass(frozen=True)
class AppointmentRequest:
    patient_id: str
    appointment_type: str
    duration: int
    priority: str = "medium"
    preferred_times: tuple[TimeSlot, ...] = ()
    no_show_risk: Optional[float] = None
    request_id: Optional[str] = None


@dataclass(frozen=True)
class SchedulingConstraints:
    working_hours: WorkingHours
    break_times: tuple[TimeInterval, ...] = ()
    blocked_times: tuple[TimeInterval, ...] = ()
    working_days: frozenset[int] = WEEKDAYS
    hours_by_weekday: Mapping[int, WorkingHours] = field(default_factory=dict)
    overbook_windows: tuple[TimeInterval, ...] = ()
    slot_granularity_minutes: int = 15

    def hours_for(self, day: date) -> WorkingHours:
        return self.hours_by_weekday.get(day.weekday(), self.working_hours)


@dataclass(frozen=True)
class SchedulingPreferences:
    consider_patient_preferences: bool = True
    balance_workload: bool = False
    prioritize_high_risk: bool = False
    overbooking_allowed: bool = False


@dataclass(frozen=True)
class SchedulingOptimizationInput:
    provider_id: str
    date_range: DateRange
    appointment_requests: tuple[AppointmentRequest, ...]
    constraints: SchedulingConstraints
    preferences: SchedulingPreferences = SchedulingPreferences()


@dataclass(frozen=True)
class OptimizedAppointment:
    request_id: str
    patient_id: str
    scheduled_time: datetime
    duration: int
    confidence: float
    alternative_slots: tuple[TimeSlot, ...] = ()
    overbooked: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "patient_id": self.patient_id,
            "scheduled_time": self.scheduled_time.isoformat(),
            "duration": self.duration,
            "confidence": self.confidence,
            "alternative_slots": [slot.to_dict() for slot in self.alternative_slots],
            "overbooked": self.overbooked,
        }


@dataclass(frozen=True)
class AssignmentResult:
    appointments: list[OptimizedAppointment]
    unscheduled_request_ids: list[str]


@dataclass(frozen=True)
class ScheduleMetrics:
    utilization_rate: float
    expected_no_shows: float
    revenue_estimate: float
    conflicts_resolved: int


@dataclass(frozen=True)
class SchedulingOptimization:
    optimized_schedule: list[OptimizedAppointment]
    utilization_rate: float
    expected_no_shows: float
    revenue_estimate: float
    conflicts_resolved: int
    recommendations: list[str]
    explanation: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "optimized_schedule": [item.to_dict() for item in self.optimized_schedule],
            "utilization_rate": self.utilization_rate,
            "expected_no_shows": self.expected_no_shows,
            "revenue_estimate": self.revenue_estimate,
            "conflicts_resolved": self.conflicts_resolved,
            "recommendations": list(self.recommendations),
            "explanation": self.explanation,
        }


@dataclass(frozen=True)
class WeatherConditions:
    temperature: float
    precipitation: float
    wind_speed: float


@dataclass(frozen=True)
class NoShowFeatures:
    """Appointment and patient context handed to the no-show predictor."""

    appointment_id: str
    patient_id: str
    provider_id: str
    appointment_time: datetime
    appointment_type: str
    priority: str = "medium"
    patient_age: float = 35.0
    patient_gender: str = "unknown"
    previous_no_shows: int = 0
    previous_appointments: int = 1
    days_since_last_appointment: int = 30
    lead_time_days: float = 0.0
    reminders_sent: int = 0
    distance_to_clinic: Optional[float] = None
    insurance_type: Optional[str] = None
    weather: Optional[WeatherConditions] = None


@dataclass(frozen=True)
class RiskFactor:
    factor: str
    impact: float
    description: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "factor": self.factor,
            "impact": self.impact,
            "description": self.description,
        }


@dataclass(frozen=True)
class NoShowPrediction:
    risk_score: float
    risk_level: str
    factors: tuple[RiskFactor, ...] = ()
    recommendations: tuple[str, ...] = ()
    source: str = "model"


@dataclass(frozen=True)
class RiskThresholds:
    low: float = 0.3
    medium: float = 0.7

    def level_for(self, risk_score: float) -> str:
        if risk_score < self.low:
            return RISK_LEVEL_LOW
        if risk_score < self.medium:
            return RISK_LEVEL_MEDIUM
        return RISK_LEVEL_HIGH


@dataclass(frozen=True)
class RiskAssessment:
    appointment_id: str
    risk_score: float
    risk_level: str
    timestamp: float
    factors: tuple[RiskFactor, ...] = ()
    recommendations: tuple[str, ...] = ()
    source: str = "model"

    def to_dict(self) -> dict[str, Any]:
        return {
            "appointment_id": self.appointment_id,
            "risk_score": self.risk_score,
            "risk_level": self.risk_level,
            "factors": [factor.to_dict() for factor in self.factors],
            "recommendations": list(self.recommendations),
            "source": self.source,
        }


@dataclass(frozen=True)
class RiskAlert:
    appointment_id: str
    risk_score: float
    risk_level: str
    factors: tuple[RiskFactor, ...]
    recommendations: tuple[str, ...]
    subscribers: tuple[str, ...] = ()
    created_at: float = 0.0


@dataclass(frozen=True)
class StoredRiskAlert:
    """Persisted alert row with its acknowledgement state."""

    alert_id: int
    appointment_id: str
    provider_id: Optional[str]
    appointment_time: Optional[datetime]
    risk_score: float
    risk_level: str
    recommendations: tuple[str, ...]
    subscribers: tuple[str, ...]
    alert_status: str
    created_at: datetime
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    action_taken: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "appointment_id": self.appointment_id,
            "provider_id": self.provider_id,
            "appointment_time": (
                self.appointment_time.isoformat() if self.appointment_time else None
            ),
            "risk_score": self.risk_score,
            "risk_level": self.risk_level,
            "recommendations": list(self.recommendations),
            "subscribers": list(self.subscribers),
            "alert_status": self.alert_status,
            "created_at": self.created_at.isoformat(),
            "acknowledged_by": self.acknowledged_by,
            "acknowledged_at": (
                self.acknowledged_at.isoformat() if self.acknowledged_at else None
            ),
            "action_taken": self.action_taken,
        }


@dataclass(frozen=True)
class AppointmentRecord:
    """Historical appointment outcome projection from the data store."""

    appointment_id: str
    provider_id: str
    patient_id: str
    appointment_time: datetime
    appointment_type: str
    duration: int
    status: str
    insurance_type: Optional[str] = None
    patient_age: Optional[float] = None
    distance_to_clinic: Optional[float] = None


@dataclass(frozen=True)
class HistoricalPatterns:
    no_show_rate_by_hour: Mapping[int, float]
    no_show_rate_by_day_of_week: Mapping[int, float] = field(default_factory=dict)
    no_show_rate_by_type: Mapping[str, float] = field(default_factory=dict)
    average_duration_by_type: Mapping[str, float] = field(default_factory=dict)
    peak_hours: tuple[int, ...] = ()


@dataclass(frozen=True)
class ProviderHistory:
    appointments_per_day: float
    average_utilization: float
    no_show_rate: float
    no_show_rate_by_hour: Mapping[int, float]
    peak_hours: tuple[int, ...]


@dataclass(frozen=True)
class OverbookingStrategy:
    enabled: bool
    percentage: int
    time_slots: tuple[str, ...]


@dataclass(frozen=True)
class RiskMitigation:
    high_risk_slots: tuple[str, ...]
    recommended_actions: tuple[str, ...]


@dataclass(frozen=True)
class UtilizationForecast:
    expected: float
    optimistic: float
    pessimistic: float


@dataclass(frozen=True)
class ProviderCapacityPlan:
    recommended_capacity: int
    overbooking_strategy: OverbookingStrategy
    risk_mitigation: RiskMitigation
    utilization_forecast: UtilizationForecast

    def to_dict(self) -> dict[str, Any]:
        return {
            "recommended_capacity": self.recommended_capacity,
            "overbooking_strategy": {
                "enabled": self.overbooking_strategy.enabled,
                "percentage": self.overbooking_strategy.percentage,
                "time_slots": list(self.overbooking_strategy.time_slots),
            },
            "risk_mitigation": {
                "high_risk_slots": list(self.risk_mitigation.high_risk_slots),
                "recommended_actions": list(self.risk_mitigation.recommended_actions),
            },
            "utilization_forecast": {
                "expected": self.utilization_forecast.expected,
                "optimistic": self.utilization_forecast.optimistic,
                "pessimistic": self.utilization_forecast.pessimistic,
            },
        }
