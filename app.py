"""
app.py - FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires all services, registers routers, and runs startup initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from clinic_scheduler.controllers.risk_controller import router as risk_router
from clinic_scheduler.controllers.scheduling_controller import router as scheduling_router
from clinic_scheduler.repository.data_repository import DataRepository
from clinic_scheduler.services.alert_service import AlertDispatcher
from clinic_scheduler.services.optimization_service import SchedulingOptimizationService
from clinic_scheduler.services.realtime_risk_service import RealTimeRiskService
from clinic_scheduler.services.risk_cache import RiskAssessmentCache
from clinic_scheduler.services.risk_service import LogisticNoShowPredictor, RiskEstimator
from clinic_scheduler.utils.config import Settings, get_settings
from clinic_scheduler.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Instantiates all services with explicit dependency injection via app.state.
    The risk cache is the only process-wide mutable state and its sweep task
    lives exactly as long as the application.
    """
    settings = settings or get_settings()

    repository = DataRepository(settings)

    predictor = LogisticNoShowPredictor(settings=settings)
    estimator = RiskEstimator(predictor=predictor, settings=settings)
    alert_dispatcher = AlertDispatcher(repository=repository, settings=settings)
    risk_cache = RiskAssessmentCache(settings, alert_dispatcher=alert_dispatcher)

    optimization_service = SchedulingOptimizationService(
        repository=repository,
        settings=settings,
        estimator=estimator,
        cache=risk_cache,
    )
    realtime_risk_service = RealTimeRiskService(
        repository=repository,
        estimator=estimator,
        cache=risk_cache,
        alert_dispatcher=alert_dispatcher,
        settings=settings,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app)
        try:
            yield
        finally:
            _shutdown(app)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.include_router(scheduling_router)
    app.include_router(risk_router)

    app.state.settings = settings
    app.state.repository = repository
    app.state.predictor = predictor
    app.state.risk_cache = risk_cache
    app.state.alert_dispatcher = alert_dispatcher
    app.state.optimization_service = optimization_service
    app.state.realtime_risk_service = realtime_risk_service

    return app


def _startup(app: FastAPI) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Order matters:
      1. Schema must exist before seeding.
      2. Appointment history is seeded only into an empty database.
      3. The no-show model trains on seeded synthetic samples.
      4. The cache sweep starts last and stops on shutdown.
    """
    repository: DataRepository = app.state.repository
    predictor: LogisticNoShowPredictor = app.state.predictor
    risk_cache: RiskAssessmentCache = app.state.risk_cache

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    logger.info("Startup: seeding synthetic appointment history")
    repository.seed_synthetic_history()

    logger.info("Startup: training no-show model")
    predictor.train()

    logger.info("Startup: starting risk cache sweep")
    risk_cache.start()

    logger.info("Startup complete | system ready")


def _shutdown(app: FastAPI) -> None:
    risk_cache: RiskAssessmentCache = app.state.risk_cache
    risk_cache.stop()
    logger.info("Shutdown complete")


app = create_app()
