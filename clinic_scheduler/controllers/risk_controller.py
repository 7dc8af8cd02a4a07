"""HTTP controller layer for real-time no-show risk."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from clinic_scheduler.controllers.dependencies import get_realtime_risk_service
from clinic_scheduler.domain.constraints import InputValidationError
from clinic_scheduler.domain.models import RiskAssessment, RiskThresholds
from clinic_scheduler.services.realtime_risk_service import (
    AppointmentNotFoundError,
    RealTimeRiskService,
    RiskAlertNotFoundError,
)
from clinic_scheduler.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["risk"])


class RiskFactorResponse(BaseModel):
    factor: str
    impact: float
    description: str


class RiskAssessmentResponse(BaseModel):
    appointment_id: str
    risk_score: float = Field(ge=0.0, le=1.0)
    risk_level: str
    factors: list[RiskFactorResponse]
    recommendations: list[str]
    source: str


class BatchRiskRequest(BaseModel):
    appointment_ids: list[str] = Field(min_length=1)
    chunk_size: Optional[int] = Field(default=None, gt=0, le=100)


class BatchRiskResponse(BaseModel):
    assessments: list[RiskAssessmentResponse]
    missing_appointment_ids: list[str]


class RiskThresholdsRequest(BaseModel):
    low: float = Field(gt=0.0, le=1.0)
    medium: float = Field(gt=0.0, le=1.0)


class SubscriptionRequest(BaseModel):
    subscriber_id: str = Field(min_length=1)
    appointment_ids: list[str] = Field(min_length=1)


class RiskAlertResponse(BaseModel):
    alert_id: int
    appointment_id: str
    provider_id: Optional[str]
    appointment_time: Optional[datetime]
    risk_score: float = Field(ge=0.0, le=1.0)
    risk_level: str
    recommendations: list[str]
    subscribers: list[str]
    alert_status: str
    created_at: datetime
    acknowledged_by: Optional[str]
    acknowledged_at: Optional[datetime]
    action_taken: Optional[str]


class AcknowledgeAlertRequest(BaseModel):
    user_id: str = Field(min_length=1)
    action_taken: Optional[str] = None


class RiskTrendPoint(BaseModel):
    date: str
    average_risk: float
    assessment_count: int


class RiskStatisticsResponse(BaseModel):
    total_assessments: int = Field(ge=0)
    average_risk_score: float = Field(ge=0.0, le=1.0)
    risk_distribution: dict[str, int]
    trend_data: list[RiskTrendPoint]


def _to_response(assessment: RiskAssessment) -> RiskAssessmentResponse:
    return RiskAssessmentResponse(**assessment.to_dict())


@router.get(
    "/risk/{appointment_id}",
    response_model=RiskAssessmentResponse,
    status_code=status.HTTP_200_OK,
)
async def get_appointment_risk(
    appointment_id: str,
    service: RealTimeRiskService = Depends(get_realtime_risk_service),
) -> RiskAssessmentResponse:
    try:
        return _to_response(service.calculate_real_time_risk(appointment_id))
    except AppointmentNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected risk assessment failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to assess appointment risk",
        ) from exc


@router.post(
    "/risk/batch",
    response_model=BatchRiskResponse,
    status_code=status.HTTP_200_OK,
)
async def get_batch_risk(
    payload: BatchRiskRequest,
    service: RealTimeRiskService = Depends(get_realtime_risk_service),
) -> BatchRiskResponse:
    try:
        results = service.get_batch_risk_predictions(
            payload.appointment_ids,
            chunk_size=payload.chunk_size,
        )
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected batch risk failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to assess appointment risk",
        ) from exc
    return BatchRiskResponse(
        assessments=[_to_response(item) for item in results.values()],
        missing_appointment_ids=[
            appointment_id
            for appointment_id in dict.fromkeys(payload.appointment_ids)
            if appointment_id not in results
        ],
    )


@router.get(
    "/high_risk_appointments",
    response_model=list[RiskAssessmentResponse],
    status_code=status.HTTP_200_OK,
)
async def get_high_risk_appointments(
    day: date,
    threshold: Optional[float] = Query(default=None, ge=0.0, le=1.0),
    service: RealTimeRiskService = Depends(get_realtime_risk_service),
) -> list[RiskAssessmentResponse]:
    return [
        _to_response(item)
        for item in service.get_high_risk_appointments(day, threshold=threshold)
    ]


@router.get(
    "/risk_statistics",
    response_model=RiskStatisticsResponse,
    status_code=status.HTTP_200_OK,
)
async def get_risk_statistics(
    days: int = Query(default=30, gt=0, le=365),
    service: RealTimeRiskService = Depends(get_realtime_risk_service),
) -> RiskStatisticsResponse:
    return RiskStatisticsResponse(**service.get_risk_statistics(days=days))


@router.put(
    "/risk_thresholds",
    status_code=status.HTTP_200_OK,
)
async def update_risk_thresholds(
    payload: RiskThresholdsRequest,
    service: RealTimeRiskService = Depends(get_realtime_risk_service),
) -> dict[str, float]:
    try:
        service.update_risk_thresholds(RiskThresholds(low=payload.low, medium=payload.medium))
    except InputValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return {"low": payload.low, "medium": payload.medium}


@router.post(
    "/risk_alerts/subscriptions",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def subscribe_to_risk_alerts(
    payload: SubscriptionRequest,
    service: RealTimeRiskService = Depends(get_realtime_risk_service),
) -> None:
    service.subscribe(payload.subscriber_id, payload.appointment_ids)


@router.delete(
    "/risk_alerts/subscriptions/{subscriber_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def unsubscribe_from_risk_alerts(
    subscriber_id: str,
    service: RealTimeRiskService = Depends(get_realtime_risk_service),
) -> None:
    service.unsubscribe(subscriber_id)


@router.get(
    "/risk_alerts",
    response_model=list[RiskAlertResponse],
    status_code=status.HTTP_200_OK,
)
async def get_active_risk_alerts(
    start: datetime,
    end: datetime,
    provider_id: Optional[str] = None,
    service: RealTimeRiskService = Depends(get_realtime_risk_service),
) -> list[RiskAlertResponse]:
    if start > end:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start must not be after end",
        )
    return [
        RiskAlertResponse(**alert.to_dict())
        for alert in service.get_active_risk_alerts(start, end, provider_id=provider_id)
    ]


@router.post(
    "/risk_alerts/{alert_id}/acknowledge",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def acknowledge_risk_alert(
    alert_id: int,
    payload: AcknowledgeAlertRequest,
    service: RealTimeRiskService = Depends(get_realtime_risk_service),
) -> None:
    try:
        service.acknowledge_risk_alert(
            alert_id,
            payload.user_id,
            action_taken=payload.action_taken,
        )
    except RiskAlertNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
