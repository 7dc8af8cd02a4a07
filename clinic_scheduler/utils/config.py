"""Environment-driven application settings."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return value if value not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value in (None, ""):
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value in (None, ""):
        return default
    return float(value)


@dataclass(frozen=True)
class Settings:
    """Immutable runtime configuration.

    Tests derive variants with ``dataclasses.replace`` instead of mutating
    environment variables.
    """

    app_name: str = "Clinic Scheduling Optimizer"
    app_version: str = "1.0.0"
    log_level: str = "INFO"
    database_path: Path = Path("data/clinic_scheduler.db")

    slot_granularity_minutes: int = 15
    max_alternative_slots: int = 3
    max_time_slot_suggestions: int = 5
    average_revenue_per_appointment: float = 150.0
    history_lookback_days: int = 180

    risk_low_threshold: float = 0.3
    risk_medium_threshold: float = 0.7
    risk_base_rate: float = 0.15
    risk_floor: float = 0.05
    risk_ceiling: float = 0.8

    risk_cache_ttl_seconds: float = 300.0
    risk_cache_sweep_interval_seconds: float = 300.0
    risk_alert_cooldown_seconds: float = 1800.0
    risk_batch_chunk_size: int = 10

    capacity_headroom: float = 1.2
    capacity_default_appointments_per_day: float = 20.0
    capacity_default_utilization: float = 0.75

    model_training_rows: int = 1000
    model_max_iter: int = 500
    model_random_state: int = 42
    model_version: str = "1.0.0"

    synthetic_random_seed: int = 42
    synthetic_seed_days: int = 60
    synthetic_providers: tuple[str, ...] = field(
        default_factory=lambda: ("provider-1", "provider-2")
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process from ``CLINIC_*`` environment variables."""
    return Settings(
        app_name=_env_str("CLINIC_APP_NAME", Settings.app_name),
        app_version=_env_str("CLINIC_APP_VERSION", Settings.app_version),
        log_level=_env_str("CLINIC_LOG_LEVEL", Settings.log_level),
        database_path=Path(
            _env_str("CLINIC_DATABASE_PATH", str(Settings.database_path))
        ),
        slot_granularity_minutes=_env_int(
            "CLINIC_SLOT_GRANULARITY_MINUTES", Settings.slot_granularity_minutes
        ),
        average_revenue_per_appointment=_env_float(
            "CLINIC_AVERAGE_REVENUE_PER_APPOINTMENT",
            Settings.average_revenue_per_appointment,
        ),
        history_lookback_days=_env_int(
            "CLINIC_HISTORY_LOOKBACK_DAYS", Settings.history_lookback_days
        ),
        risk_cache_ttl_seconds=_env_float(
            "CLINIC_RISK_CACHE_TTL_SECONDS", Settings.risk_cache_ttl_seconds
        ),
        risk_cache_sweep_interval_seconds=_env_float(
            "CLINIC_RISK_CACHE_SWEEP_INTERVAL_SECONDS",
            Settings.risk_cache_sweep_interval_seconds,
        ),
        risk_alert_cooldown_seconds=_env_float(
            "CLINIC_RISK_ALERT_COOLDOWN_SECONDS",
            Settings.risk_alert_cooldown_seconds,
        ),
        risk_batch_chunk_size=_env_int(
            "CLINIC_RISK_BATCH_CHUNK_SIZE", Settings.risk_batch_chunk_size
        ),
        synthetic_random_seed=_env_int(
            "CLINIC_SYNTHETIC_RANDOM_SEED", Settings.synthetic_random_seed
        ),
    )
