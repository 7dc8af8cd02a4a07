"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from clinic_scheduler.services.optimization_service import SchedulingOptimizationService
from clinic_scheduler.services.realtime_risk_service import RealTimeRiskService


def get_optimization_service(request: Request) -> SchedulingOptimizationService:
    service = getattr(request.app.state, "optimization_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Optimization service is not initialized",
        )
    return service


def get_realtime_risk_service(request: Request) -> RealTimeRiskService:
    service = getattr(request.app.state, "realtime_risk_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Real-time risk service is not initialized",
        )
    return service
