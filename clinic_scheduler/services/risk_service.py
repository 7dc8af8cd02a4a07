"""No-show risk estimation behind a stable predictor contract."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from threading import RLock
from typing import Any, Optional, Protocol, Sequence

import numpy as np
from sklearn.linear_model import LogisticRegression
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from clinic_scheduler.domain.models import (
    RISK_LEVEL_HIGH,
    RISK_LEVEL_MEDIUM,
    AppointmentRequest,
    NoShowFeatures,
    NoShowPrediction,
    RiskFactor,
    RiskThresholds,
    WeatherConditions,
)
from clinic_scheduler.utils.config import Settings, get_settings
from clinic_scheduler.utils.logger import get_logger


logger = get_logger(__name__)


class RiskEstimationError(Exception):
    """Base exception for no-show risk estimation failures."""


class OracleUnavailableError(RiskEstimationError):
    """Raised when the external no-show predictor cannot serve a prediction."""


class NoShowPredictor(Protocol):
    def predict(self, features: NoShowFeatures) -> NoShowPrediction:
        ...


FEATURE_NAMES = (
    "day_of_week",
    "hour",
    "is_weekend",
    "is_early_morning",
    "is_late_afternoon",
    "lead_time",
    "appointment_type",
    "age_group",
    "gender",
    "no_show_rate",
    "appointment_frequency",
    "weather_score",
    "distance_score",
    "reminder_effectiveness",
    "insurance_score",
    "reminders_sent",
)

_APPOINTMENT_TYPE_CODES = {
    "routine": 0.2,
    "follow-up": 0.4,
    "consultation": 0.6,
    "procedure": 0.8,
    "emergency": 1.0,
}

_INSURANCE_CODES = {
    "medicare": 0.2,
    "medicaid": 0.8,
    "private": 0.3,
    "self-pay": 0.9,
    "other": 0.5,
}

_HIGH_RISK_INSURANCE = ("self-pay", "medicaid")

PRIORITY_RISK_FACTORS = {"urgent": 0.5, "high": 0.7, "medium": 1.0, "low": 1.3}
TYPE_RISK_FACTORS = {
    "routine": 1.0,
    "follow-up": 0.8,
    "consultation": 0.9,
    "procedure": 0.6,
}


def _age_group(age: float) -> float:
    if age < 18:
        return 0.1
    if age < 30:
        return 0.3
    if age < 50:
        return 0.5
    if age < 65:
        return 0.7
    return 0.9


def weather_score(weather: Optional[WeatherConditions]) -> float:
    if weather is None:
        return 0.5
    score = 0.5
    if weather.temperature < 32 or weather.temperature > 90:
        score += 0.2
    if weather.precipitation > 0.1:
        score += 0.3
    if weather.wind_speed > 20:
        score += 0.1
    return min(score, 1.0)


def build_feature_vector(features: NoShowFeatures) -> np.ndarray:
    """Encode appointment context into the normalized 16-feature vector."""
    moment = features.appointment_time
    weekday = moment.weekday()
    hour = moment.hour
    no_show_rate = (
        features.previous_no_shows / features.previous_appointments
        if features.previous_appointments > 0
        else 0.0
    )
    frequency = features.previous_appointments / max(features.days_since_last_appointment, 1)
    distance = (
        min(features.distance_to_clinic / 50.0, 1.0)
        if features.distance_to_clinic is not None
        else 0.5
    )
    insurance = (
        _INSURANCE_CODES.get(features.insurance_type.lower(), 0.5)
        if features.insurance_type
        else 0.5
    )
    return np.array(
        [
            weekday / 6.0,
            hour / 23.0,
            1.0 if weekday >= 5 else 0.0,
            1.0 if hour < 9 else 0.0,
            1.0 if hour >= 16 else 0.0,
            features.lead_time_days / 30.0,
            _APPOINTMENT_TYPE_CODES.get(features.appointment_type.lower(), 0.5),
            _age_group(features.patient_age),
            1.0 if features.patient_gender == "male" else 0.0,
            no_show_rate,
            frequency,
            weather_score(features.weather),
            distance,
            0.8 if features.reminders_sent > 0 else 0.2,
            insurance,
            features.reminders_sent / 5.0,
        ],
        dtype=float,
    )


def generate_risk_factors(features: NoShowFeatures) -> tuple[RiskFactor, ...]:
    factors: list[RiskFactor] = []

    if features.previous_no_shows > 0 and features.previous_appointments > 0:
        rate = features.previous_no_shows / features.previous_appointments
        factors.append(
            RiskFactor(
                factor="Previous No-Shows",
                impact=rate * 0.4,
                description=(
                    f"Patient has {features.previous_no_shows} previous no-shows out of "
                    f"{features.previous_appointments} appointments"
                ),
            )
        )

    hour = features.appointment_time.hour
    if hour < 9 or hour > 16:
        factors.append(
            RiskFactor(
                factor="Appointment Time",
                impact=0.2,
                description="Early morning or late afternoon appointments have higher no-show rates",
            )
        )

    score = weather_score(features.weather)
    if features.weather is not None and score > 0.6:
        factors.append(
            RiskFactor(
                factor="Weather Conditions",
                impact=(score - 0.5) * 0.3,
                description="Poor weather conditions may affect attendance",
            )
        )

    if features.distance_to_clinic is not None and features.distance_to_clinic > 20:
        factors.append(
            RiskFactor(
                factor="Distance to Clinic",
                impact=min(features.distance_to_clinic / 50.0, 1.0) * 0.25,
                description=f"Patient lives {features.distance_to_clinic:.0f} miles from clinic",
            )
        )

    if features.insurance_type in _HIGH_RISK_INSURANCE:
        factors.append(
            RiskFactor(
                factor="Insurance Type",
                impact=0.3,
                description=f"{features.insurance_type} patients have higher no-show rates",
            )
        )

    return tuple(sorted(factors, key=lambda item: item.impact, reverse=True))


def generate_recommendations(
    risk_level: str,
    factors: Sequence[RiskFactor],
) -> tuple[str, ...]:
    if risk_level == RISK_LEVEL_HIGH:
        recommendations = [
            "Send multiple appointment reminders",
            "Consider calling patient to confirm attendance",
            "Offer alternative appointment times if needed",
            "Consider overbooking this time slot",
        ]
    elif risk_level == RISK_LEVEL_MEDIUM:
        recommendations = [
            "Send appointment reminder 24 hours before",
            "Consider text message confirmation",
        ]
    else:
        recommendations = ["Standard appointment reminder is sufficient"]

    factor_names = {factor.factor for factor in factors}
    if "Weather Conditions" in factor_names:
        recommendations.append(
            "Monitor weather forecast and proactively reach out if severe weather expected"
        )
    if "Distance to Clinic" in factor_names:
        recommendations.append("Offer telehealth option if appropriate")
    return tuple(recommendations)


class HeuristicRiskModel:
    """Rule-based fallback that never raises."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        thresholds: Optional[RiskThresholds] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._thresholds = thresholds or RiskThresholds(
            low=self._settings.risk_low_threshold,
            medium=self._settings.risk_medium_threshold,
        )

    def risk(self, priority: str, appointment_type: str) -> float:
        risk = self._settings.risk_base_rate
        risk *= PRIORITY_RISK_FACTORS.get(priority.lower(), 1.0)
        risk *= TYPE_RISK_FACTORS.get(appointment_type.lower(), 1.0)
        return min(max(risk, self._settings.risk_floor), self._settings.risk_ceiling)

    def predict(self, features: NoShowFeatures) -> NoShowPrediction:
        risk_score = self.risk(features.priority, features.appointment_type)
        risk_level = self._thresholds.level_for(risk_score)
        factors = generate_risk_factors(features)
        return NoShowPrediction(
            risk_score=risk_score,
            risk_level=risk_level,
            factors=factors,
            recommendations=generate_recommendations(risk_level, factors),
            source="heuristic",
        )


class SyntheticNoShowGenerator:
    """Seeded generator of labelled appointment contexts for model bootstrapping."""

    _TYPES = ("routine", "follow-up", "consultation", "procedure")
    _INSURANCE = ("medicare", "medicaid", "private", "self-pay")
    _BASE_TIME = datetime(2025, 1, 6, 0, 0)

    def __init__(self, seed: int) -> None:
        self._rng = np.random.default_rng(seed)

    def _label_probability(self, features: NoShowFeatures) -> float:
        probability = 0.15
        if features.previous_appointments > 0:
            probability += (features.previous_no_shows / features.previous_appointments) * 0.5
        hour = features.appointment_time.hour
        if hour < 9 or hour > 16:
            probability += 0.1
        if features.weather is not None and features.weather.precipitation > 0.5:
            probability += 0.15
        if features.distance_to_clinic is not None and features.distance_to_clinic > 20:
            probability += 0.1
        if features.insurance_type in _HIGH_RISK_INSURANCE:
            probability += 0.2
        return min(probability, 0.8)

    def generate(self, count: int) -> tuple[list[NoShowFeatures], np.ndarray]:
        rng = self._rng
        samples: list[NoShowFeatures] = []
        labels = np.zeros(count, dtype=int)
        for index in range(count):
            appointment_time = self._BASE_TIME + timedelta(
                days=int(rng.integers(0, 30)),
                hours=int(rng.integers(8, 18)),
            )
            previous_appointments = int(rng.integers(1, 21))
            features = NoShowFeatures(
                appointment_id=f"apt-{index}",
                patient_id=f"pat-{index}",
                provider_id=f"prov-{int(rng.integers(0, 10))}",
                appointment_time=appointment_time,
                appointment_type=str(rng.choice(self._TYPES)),
                patient_age=float(rng.uniform(18, 78)),
                patient_gender="male" if rng.random() > 0.5 else "female",
                previous_no_shows=min(int(rng.integers(0, 5)), previous_appointments),
                previous_appointments=previous_appointments,
                days_since_last_appointment=int(rng.integers(0, 365)),
                lead_time_days=float(rng.uniform(0, 30)),
                reminders_sent=int(rng.integers(0, 3)),
                distance_to_clinic=float(rng.uniform(0, 50)),
                insurance_type=str(rng.choice(self._INSURANCE)),
                weather=WeatherConditions(
                    temperature=float(rng.uniform(32, 100)),
                    precipitation=float(rng.uniform(0, 2)),
                    wind_speed=float(rng.uniform(0, 30)),
                ),
            )
            samples.append(features)
            labels[index] = 1 if rng.random() < self._label_probability(features) else 0
        return samples, labels


@dataclass(frozen=True)
class ModelMetadata:
    model_type: str
    model_version: str
    trained_at: str
    training_rows: int

    def to_dict(self) -> dict[str, str | int]:
        return {
            "model_type": self.model_type,
            "model_version": self.model_version,
            "trained_at": self.trained_at,
            "training_rows": self.training_rows,
        }


class LogisticNoShowPredictor:
    """Model adapter serving no-show probabilities from a logistic regression."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        thresholds: Optional[RiskThresholds] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._thresholds = thresholds or RiskThresholds(
            low=self._settings.risk_low_threshold,
            medium=self._settings.risk_medium_threshold,
        )
        self._model: Optional[Pipeline] = None
        self._model_lock = RLock()
        self._metadata: Optional[ModelMetadata] = None

    @property
    def is_trained(self) -> bool:
        return self._model is not None

    def train(
        self,
        samples: Optional[Sequence[NoShowFeatures]] = None,
        labels: Optional[Sequence[int]] = None,
    ) -> ModelMetadata:
        """Fit the model, bootstrapping from seeded synthetic data when none is given."""

        with self._model_lock:
            if samples is None or labels is None:
                generator = SyntheticNoShowGenerator(self._settings.model_random_state)
                samples, labels = generator.generate(self._settings.model_training_rows)

            y_train = np.asarray(labels, dtype=int)
            if len(samples) != len(y_train) or len(samples) == 0:
                raise RiskEstimationError("Training samples and labels must be non-empty and aligned")
            if len(np.unique(y_train)) < 2:
                raise RiskEstimationError("Training labels must contain both outcomes")

            x_train = np.vstack([build_feature_vector(sample) for sample in samples])
            pipeline = Pipeline(
                steps=[
                    ("scaler", StandardScaler()),
                    (
                        "classifier",
                        LogisticRegression(
                            max_iter=self._settings.model_max_iter,
                            random_state=self._settings.model_random_state,
                        ),
                    ),
                ]
            )
            pipeline.fit(x_train, y_train)

            self._model = pipeline
            self._metadata = ModelMetadata(
                model_type="logistic_regression",
                model_version=self._settings.model_version,
                trained_at=datetime.now(timezone.utc).isoformat(),
                training_rows=len(y_train),
            )
            logger.info(
                "No-show model training completed | rows=%s | version=%s",
                len(y_train),
                self._settings.model_version,
            )
            return self._metadata

    def get_model_metadata(self) -> dict[str, Any]:
        if self._metadata is None:
            raise OracleUnavailableError("Model metadata is unavailable; train model first")
        return dict(self._metadata.to_dict())

    def predict(self, features: NoShowFeatures) -> NoShowPrediction:
        model = self._model
        if model is None:
            raise OracleUnavailableError("No-show model is not trained")

        vector = build_feature_vector(features).reshape(1, -1)
        classes = list(model.classes_)
        probabilities = model.predict_proba(vector)[0]
        risk_score = float(probabilities[classes.index(1)]) if 1 in classes else 0.0
        risk_score = max(0.0, min(1.0, risk_score))

        risk_level = self._thresholds.level_for(risk_score)
        factors = generate_risk_factors(features)
        return NoShowPrediction(
            risk_score=risk_score,
            risk_level=risk_level,
            factors=factors,
            recommendations=generate_recommendations(risk_level, factors),
            source="model",
        )


class RiskEstimator:
    """Serves no-show risk from the predictor, degrading to the heuristic."""

    def __init__(
        self,
        predictor: Optional[NoShowPredictor] = None,
        settings: Optional[Settings] = None,
        thresholds: Optional[RiskThresholds] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._thresholds = thresholds or RiskThresholds(
            low=self._settings.risk_low_threshold,
            medium=self._settings.risk_medium_threshold,
        )
        self._predictor = predictor
        self._heuristic = HeuristicRiskModel(self._settings, self._thresholds)

    @property
    def thresholds(self) -> RiskThresholds:
        return self._thresholds

    def update_thresholds(self, thresholds: RiskThresholds) -> None:
        self._thresholds = thresholds
        self._heuristic = HeuristicRiskModel(self._settings, thresholds)

    def predict(self, features: NoShowFeatures) -> NoShowPrediction:
        try:
            if self._predictor is None:
                raise OracleUnavailableError("No no-show predictor configured")
            prediction = self._predictor.predict(features)
            risk_score = max(0.0, min(1.0, float(prediction.risk_score)))
            return replace(
                prediction,
                risk_score=risk_score,
                risk_level=self._thresholds.level_for(risk_score),
            )
        except Exception as exc:  # noqa: BLE001 - the heuristic covers every oracle failure
            logger.warning(
                "No-show predictor failed, using heuristic | appointment_id=%s | error=%s",
                features.appointment_id,
                exc,
            )
            return self._heuristic.predict(features)

    def features_for_request(
        self,
        request: AppointmentRequest,
        provider_id: str,
        reference_time: Optional[datetime] = None,
    ) -> NoShowFeatures:
        if request.preferred_times:
            appointment_time = request.preferred_times[0].start_time
        elif reference_time is not None:
            appointment_time = reference_time
        else:
            appointment_time = datetime.now()
        return NoShowFeatures(
            appointment_id=request.request_id or f"temp-{request.patient_id}",
            patient_id=request.patient_id,
            provider_id=provider_id,
            appointment_time=appointment_time,
            appointment_type=request.appointment_type,
            priority=request.priority,
        )

    def risk(
        self,
        request: AppointmentRequest,
        provider_id: str,
        reference_time: Optional[datetime] = None,
    ) -> float:
        features = self.features_for_request(request, provider_id, reference_time)
        return self.predict(features).risk_score
