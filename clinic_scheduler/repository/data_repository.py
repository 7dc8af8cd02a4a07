"""Repository layer responsible for all database access."""

from __future__ import annotations

import json
import random
import sqlite3
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

from clinic_scheduler.domain.models import (
    AppointmentRecord,
    RiskAlert,
    RiskAssessment,
    StoredRiskAlert,
)
from clinic_scheduler.utils.config import Settings, get_settings
from clinic_scheduler.utils.logger import get_logger


logger = get_logger(__name__)

STATUS_SCHEDULED = "Scheduled"
STATUS_COMPLETED = "Completed"
STATUS_NO_SHOW = "No-Show"
STATUS_CANCELLED = "Cancelled"

ALERT_STATUS_ACTIVE = "active"
ALERT_STATUS_ACKNOWLEDGED = "acknowledged"

_DB_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S"

_SEED_HOURLY_NO_SHOW = {
    8: 0.25, 9: 0.20, 10: 0.15, 11: 0.12, 12: 0.18,
    13: 0.22, 14: 0.15, 15: 0.12, 16: 0.18,
}
_SEED_TYPES = (
    ("routine", 30),
    ("follow-up", 15),
    ("consultation", 45),
    ("procedure", 60),
)
_SEED_INSURANCE = ("medicare", "medicaid", "private", "self-pay")


def _to_db_time(value: datetime) -> str:
    return value.strftime(_DB_TIME_FORMAT)


def _from_db_time(value: str) -> datetime:
    return datetime.strptime(value, _DB_TIME_FORMAT)


class DataRepository:
    """Encapsulates SQLite access so scheduling logic stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._db_path)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Patients (
                        id TEXT PRIMARY KEY,
                        age REAL,
                        gender TEXT NOT NULL DEFAULT 'unknown',
                        insurance_type TEXT,
                        distance_to_clinic REAL
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Appointments (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        provider_id TEXT NOT NULL,
                        patient_id TEXT NOT NULL,
                        appointment_time TEXT NOT NULL,
                        appointment_type TEXT NOT NULL DEFAULT 'routine',
                        duration INTEGER NOT NULL CHECK (duration > 0),
                        status TEXT NOT NULL DEFAULT 'Scheduled',
                        reminders_sent INTEGER NOT NULL DEFAULT 0,
                        FOREIGN KEY (patient_id) REFERENCES Patients(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS RiskAssessments (
                        appointment_id TEXT PRIMARY KEY,
                        risk_score REAL NOT NULL,
                        risk_level TEXT NOT NULL,
                        risk_factors TEXT NOT NULL DEFAULT '[]',
                        recommendations TEXT NOT NULL DEFAULT '[]',
                        source TEXT NOT NULL,
                        model_version TEXT NOT NULL,
                        assessed_at TEXT NOT NULL
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS RiskAlerts (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        appointment_id TEXT NOT NULL,
                        alert_type TEXT NOT NULL DEFAULT 'high_no_show_risk',
                        risk_score REAL NOT NULL,
                        risk_level TEXT NOT NULL,
                        risk_factors TEXT NOT NULL DEFAULT '[]',
                        recommendations TEXT NOT NULL DEFAULT '[]',
                        subscribers TEXT NOT NULL DEFAULT '[]',
                        alert_status TEXT NOT NULL DEFAULT 'active',
                        created_at TEXT NOT NULL,
                        acknowledged_by TEXT,
                        acknowledged_at TEXT,
                        action_taken TEXT
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_appointments_provider_time
                    ON Appointments(provider_id, appointment_time);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_appointments_patient_time
                    ON Appointments(patient_id, appointment_time);
                    """
                )
                conn.commit()
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_synthetic_history(self) -> None:
        """Seed deterministic appointment history only when tables are empty."""
        rng = random.Random(self._settings.synthetic_random_seed)
        try:
            with self._connect() as conn:
                cursor = conn.cursor()

                cursor.execute("SELECT COUNT(*) AS count FROM Appointments;")
                if int(cursor.fetchone()["count"]) > 0:
                    logger.info("Synthetic history already present; skipping seed")
                    return

                patients = [
                    (
                        f"pat-{index:03d}",
                        float(rng.randint(18, 85)),
                        rng.choice(("male", "female")),
                        rng.choice(_SEED_INSURANCE),
                        round(rng.uniform(1.0, 45.0), 1),
                    )
                    for index in range(1, 61)
                ]
                cursor.executemany(
                    """
                    INSERT INTO Patients (id, age, gender, insurance_type, distance_to_clinic)
                    VALUES (?, ?, ?, ?, ?);
                    """,
                    patients,
                )
                patient_risk = {
                    patient_id: 0.1 if insurance in ("medicaid", "self-pay") else 0.0
                    for patient_id, _, _, insurance, _ in patients
                }

                today = datetime.now(timezone.utc).date()
                start_day = today - timedelta(days=self._settings.synthetic_seed_days)
                entries: list[tuple[str, str, str, str, int, str, int]] = []
                for offset in range(self._settings.synthetic_seed_days + 7):
                    current_day = start_day + timedelta(days=offset)
                    if current_day.weekday() >= 5:
                        continue
                    for provider_id in self._settings.synthetic_providers:
                        for hour, base_rate in _SEED_HOURLY_NO_SHOW.items():
                            if rng.random() > 0.7:
                                continue
                            patient_id = rng.choice(patients)[0]
                            appointment_type, duration = rng.choice(_SEED_TYPES)
                            moment = datetime.combine(current_day, time(hour=hour))
                            if current_day < today:
                                missed = rng.random() < base_rate + patient_risk[patient_id]
                                status = STATUS_NO_SHOW if missed else STATUS_COMPLETED
                            else:
                                status = STATUS_SCHEDULED
                            entries.append(
                                (
                                    provider_id,
                                    patient_id,
                                    _to_db_time(moment),
                                    appointment_type,
                                    duration,
                                    status,
                                    rng.randint(0, 2),
                                )
                            )

                cursor.executemany(
                    """
                    INSERT INTO Appointments (
                        provider_id, patient_id, appointment_time,
                        appointment_type, duration, status, reminders_sent
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?);
                    """,
                    entries,
                )
                conn.commit()
            logger.info("Synthetic seed completed with %s appointments", len(entries))
        except sqlite3.Error as exc:
            raise RuntimeError(f"Synthetic data seeding failed: {exc}") from exc

    def create_patient(
        self,
        patient_id: str,
        *,
        age: Optional[float] = None,
        gender: str = "unknown",
        insurance_type: Optional[str] = None,
        distance_to_clinic: Optional[float] = None,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO Patients (id, age, gender, insurance_type, distance_to_clinic)
                VALUES (?, ?, ?, ?, ?);
                """,
                (patient_id, age, gender, insurance_type, distance_to_clinic),
            )
            conn.commit()

    def create_appointment(
        self,
        *,
        provider_id: str,
        patient_id: str,
        appointment_time: datetime,
        appointment_type: str = "routine",
        duration: int = 30,
        status: str = STATUS_SCHEDULED,
        reminders_sent: int = 0,
    ) -> str:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO Patients (id) VALUES (?);",
                (patient_id,),
            )
            cursor = conn.execute(
                """
                INSERT INTO Appointments (
                    provider_id, patient_id, appointment_time,
                    appointment_type, duration, status, reminders_sent
                )
                VALUES (?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    provider_id,
                    patient_id,
                    _to_db_time(appointment_time),
                    appointment_type,
                    duration,
                    status,
                    reminders_sent,
                ),
            )
            conn.commit()
            return str(cursor.lastrowid)

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> AppointmentRecord:
        return AppointmentRecord(
            appointment_id=str(row["id"]),
            provider_id=str(row["provider_id"]),
            patient_id=str(row["patient_id"]),
            appointment_time=_from_db_time(str(row["appointment_time"])),
            appointment_type=str(row["appointment_type"]),
            duration=int(row["duration"]),
            status=str(row["status"]),
            insurance_type=row["insurance_type"],
            patient_age=row["age"],
            distance_to_clinic=row["distance_to_clinic"],
        )

    _RECORD_SELECT = """
        SELECT
            a.id,
            a.provider_id,
            a.patient_id,
            a.appointment_time,
            a.appointment_type,
            a.duration,
            a.status,
            a.reminders_sent,
            p.age,
            p.gender,
            p.insurance_type,
            p.distance_to_clinic
        FROM Appointments AS a
        LEFT JOIN Patients AS p ON p.id = a.patient_id
    """

    def list_appointment_history(
        self,
        *,
        provider_id: str,
        start: datetime,
        end: datetime,
    ) -> list[AppointmentRecord]:
        """Return a provider's appointments in ``[start, end)`` ordered by time."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                self._RECORD_SELECT
                + """
                WHERE a.provider_id = ?
                  AND a.appointment_time >= ?
                  AND a.appointment_time < ?
                ORDER BY a.appointment_time ASC, a.id ASC;
                """,
                (provider_id, _to_db_time(start), _to_db_time(end)),
            )
            return [self._row_to_record(row) for row in cursor.fetchall()]

    def get_appointment_context(self, appointment_id: str) -> Optional[dict[str, Any]]:
        """Fetch an appointment joined with patient attributes and reminder count."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                self._RECORD_SELECT + " WHERE a.id = ?;",
                (appointment_id,),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return {
                "record": self._row_to_record(row),
                "gender": row["gender"] or "unknown",
                "reminders_sent": int(row["reminders_sent"]),
            }

    def list_patient_history(
        self,
        patient_id: str,
        before: datetime,
    ) -> list[AppointmentRecord]:
        """Return a patient's earlier appointments, most recent first."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                self._RECORD_SELECT
                + """
                WHERE a.patient_id = ? AND a.appointment_time < ?
                ORDER BY a.appointment_time DESC;
                """,
                (patient_id, _to_db_time(before)),
            )
            return [self._row_to_record(row) for row in cursor.fetchall()]

    def list_scheduled_appointment_ids(self, day: date) -> list[str]:
        start = datetime.combine(day, time.min)
        end = start + timedelta(days=1)
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT id FROM Appointments
                WHERE status = ? AND appointment_time >= ? AND appointment_time < ?
                ORDER BY appointment_time ASC, id ASC;
                """,
                (STATUS_SCHEDULED, _to_db_time(start), _to_db_time(end)),
            )
            return [str(row["id"]) for row in cursor.fetchall()]

    def save_risk_assessment(self, assessment: RiskAssessment) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO RiskAssessments (
                    appointment_id, risk_score, risk_level, risk_factors,
                    recommendations, source, model_version, assessed_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(appointment_id) DO UPDATE SET
                    risk_score = excluded.risk_score,
                    risk_level = excluded.risk_level,
                    risk_factors = excluded.risk_factors,
                    recommendations = excluded.recommendations,
                    source = excluded.source,
                    model_version = excluded.model_version,
                    assessed_at = excluded.assessed_at;
                """,
                (
                    assessment.appointment_id,
                    assessment.risk_score,
                    assessment.risk_level,
                    json.dumps([factor.to_dict() for factor in assessment.factors]),
                    json.dumps(list(assessment.recommendations)),
                    assessment.source,
                    self._settings.model_version,
                    _to_db_time(datetime.now(timezone.utc).replace(tzinfo=None)),
                ),
            )
            conn.commit()

    def list_risk_assessments(self, since: datetime) -> list[dict[str, Any]]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT appointment_id, risk_score, risk_level, assessed_at
                FROM RiskAssessments
                WHERE assessed_at >= ?
                ORDER BY assessed_at ASC;
                """,
                (_to_db_time(since),),
            )
            return [
                {
                    "appointment_id": str(row["appointment_id"]),
                    "risk_score": float(row["risk_score"]),
                    "risk_level": str(row["risk_level"]),
                    "assessed_at": _from_db_time(str(row["assessed_at"])),
                }
                for row in cursor.fetchall()
            ]

    def save_risk_alert(self, alert: RiskAlert) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO RiskAlerts (
                    appointment_id, risk_score, risk_level, risk_factors,
                    recommendations, subscribers, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    alert.appointment_id,
                    alert.risk_score,
                    alert.risk_level,
                    json.dumps([factor.to_dict() for factor in alert.factors]),
                    json.dumps(list(alert.recommendations)),
                    json.dumps(list(alert.subscribers)),
                    _to_db_time(datetime.now(timezone.utc).replace(tzinfo=None)),
                ),
            )
            conn.commit()

    def list_active_risk_alerts(
        self,
        *,
        start: datetime,
        end: datetime,
        provider_id: Optional[str] = None,
    ) -> list[StoredRiskAlert]:
        """Active alerts created within [start, end], highest risk first."""
        query = """
            SELECT
                r.id,
                r.appointment_id,
                r.risk_score,
                r.risk_level,
                r.recommendations,
                r.subscribers,
                r.alert_status,
                r.created_at,
                r.acknowledged_by,
                r.acknowledged_at,
                r.action_taken,
                a.provider_id,
                a.appointment_time
            FROM RiskAlerts r
            LEFT JOIN Appointments a ON a.id = r.appointment_id
            WHERE r.alert_status = ? AND r.created_at >= ? AND r.created_at <= ?
        """
        params: list[Any] = [ALERT_STATUS_ACTIVE, _to_db_time(start), _to_db_time(end)]
        if provider_id:
            query += " AND a.provider_id = ?"
            params.append(provider_id)
        query += " ORDER BY r.risk_score DESC, r.id ASC;"

        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return [self._row_to_alert(row) for row in cursor.fetchall()]

    def acknowledge_risk_alert(
        self,
        alert_id: int,
        *,
        user_id: str,
        action_taken: Optional[str] = None,
    ) -> bool:
        """Mark an alert acknowledged. Returns False when no such alert exists."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE RiskAlerts
                SET alert_status = ?, acknowledged_by = ?, acknowledged_at = ?, action_taken = ?
                WHERE id = ?;
                """,
                (
                    ALERT_STATUS_ACKNOWLEDGED,
                    user_id,
                    _to_db_time(datetime.now(timezone.utc).replace(tzinfo=None)),
                    action_taken,
                    alert_id,
                ),
            )
            conn.commit()
            return cursor.rowcount > 0

    @staticmethod
    def _row_to_alert(row: sqlite3.Row) -> StoredRiskAlert:
        return StoredRiskAlert(
            alert_id=int(row["id"]),
            appointment_id=str(row["appointment_id"]),
            provider_id=row["provider_id"],
            appointment_time=(
                _from_db_time(str(row["appointment_time"]))
                if row["appointment_time"] is not None
                else None
            ),
            risk_score=float(row["risk_score"]),
            risk_level=str(row["risk_level"]),
            recommendations=tuple(json.loads(row["recommendations"])),
            subscribers=tuple(json.loads(row["subscribers"])),
            alert_status=str(row["alert_status"]),
            created_at=_from_db_time(str(row["created_at"])),
            acknowledged_by=row["acknowledged_by"],
            acknowledged_at=(
                _from_db_time(str(row["acknowledged_at"]))
                if row["acknowledged_at"] is not None
                else None
            ),
            action_taken=row["action_taken"],
        )

    def count_risk_alerts(self) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) AS count FROM RiskAlerts;")
            return int(cursor.fetchone()["count"])

    def count_risk_assessments(self) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) AS count FROM RiskAssessments;")
            return int(cursor.fetchone()["count"])
