from __future__ import annotations

import threading
import time

import pytest

from clinic_scheduler.domain.models import NoShowPrediction, RiskAlert, RiskAssessment, RiskThresholds
from clinic_scheduler.services.alert_service import AlertDispatcher
from clinic_scheduler.services.risk_cache import (
    STATE_ABSENT,
    STATE_CACHED,
    STATE_COMPUTING,
    STATE_EXPIRED,
    RiskAssessmentCache,
)


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingNotifier:
    def __init__(self) -> None:
        self.alerts: list[RiskAlert] = []

    def send(self, alert: RiskAlert) -> None:
        self.alerts.append(alert)


class BrokenNotifier:
    def send(self, alert: RiskAlert) -> None:
        raise ConnectionError("smtp down")


def _prediction(score: float, level: str = "low") -> NoShowPrediction:
    return NoShowPrediction(risk_score=score, risk_level=level)


def _assessment(appointment_id: str, timestamp: float, score: float = 0.2) -> RiskAssessment:
    return RiskAssessment(
        appointment_id=appointment_id,
        risk_score=score,
        risk_level="low",
        timestamp=timestamp,
    )


def test_entry_is_hit_just_before_ttl_and_miss_just_after() -> None:
    clock = FakeClock()
    cache = RiskAssessmentCache(ttl_seconds=300, clock=clock)
    cache.put(_assessment("apt-1", clock.now))

    clock.advance(299.999)
    assert cache.get("apt-1") is not None

    clock.advance(0.002)
    assert cache.get("apt-1") is None


def test_entry_is_expired_exactly_at_ttl() -> None:
    clock = FakeClock()
    cache = RiskAssessmentCache(ttl_seconds=300, clock=clock)
    cache.put(_assessment("apt-1", clock.now))

    clock.advance(300)

    assert cache.get("apt-1") is None
    assert cache.state("apt-1") == STATE_EXPIRED


def test_state_transitions() -> None:
    clock = FakeClock()
    cache = RiskAssessmentCache(ttl_seconds=60, clock=clock)
    observed: list[str] = []

    def compute() -> NoShowPrediction:
        observed.append(cache.state("apt-1"))
        return _prediction(0.2)

    assert cache.state("apt-1") == STATE_ABSENT
    cache.get_or_compute("apt-1", compute)
    assert observed == [STATE_COMPUTING]
    assert cache.state("apt-1") == STATE_CACHED

    clock.advance(61)
    assert cache.state("apt-1") == STATE_EXPIRED

    cache.sweep()
    assert cache.state("apt-1") == STATE_ABSENT


def test_get_or_compute_recomputes_only_after_expiry() -> None:
    clock = FakeClock()
    cache = RiskAssessmentCache(ttl_seconds=300, clock=clock)
    calls: list[int] = []

    def compute() -> NoShowPrediction:
        calls.append(1)
        return _prediction(0.25)

    first = cache.get_or_compute("apt-1", compute)
    clock.advance(100)
    second = cache.get_or_compute("apt-1", compute)
    clock.advance(250)
    third = cache.get_or_compute("apt-1", compute)

    assert len(calls) == 2
    assert first is second
    assert third.timestamp == clock.now


def test_put_overwrites_and_invalidate_removes() -> None:
    clock = FakeClock()
    cache = RiskAssessmentCache(ttl_seconds=300, clock=clock)
    cache.put(_assessment("apt-1", clock.now, score=0.2))
    cache.put(_assessment("apt-1", clock.now, score=0.6))

    assert cache.get("apt-1").risk_score == 0.6
    assert cache.invalidate("apt-1") is True
    assert cache.invalidate("apt-1") is False
    assert len(cache) == 0


def test_sweep_removes_only_stale_entries() -> None:
    clock = FakeClock()
    cache = RiskAssessmentCache(ttl_seconds=300, clock=clock)
    cache.put(_assessment("old", clock.now))
    clock.advance(200)
    cache.put(_assessment("fresh", clock.now))
    clock.advance(150)

    removed = cache.sweep()

    assert removed == 1
    assert cache.state("old") == STATE_ABSENT
    assert cache.get("fresh") is not None


def test_sweep_keeps_entries_aged_exactly_ttl() -> None:
    clock = FakeClock()
    cache = RiskAssessmentCache(ttl_seconds=300, clock=clock)
    cache.put(_assessment("apt-1", clock.now))
    clock.advance(300)

    assert cache.sweep() == 0
    assert len(cache) == 1


def test_concurrent_misses_both_compute_and_last_write_wins() -> None:
    cache = RiskAssessmentCache(ttl_seconds=300)
    barrier = threading.Barrier(2)
    scores = iter((0.2, 0.4))
    lock = threading.Lock()

    def compute() -> NoShowPrediction:
        barrier.wait(timeout=5)
        with lock:
            return _prediction(next(scores))

    threads = [
        threading.Thread(target=cache.get_or_compute, args=("apt-1", compute))
        for _ in range(2)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    assert cache.get("apt-1").risk_score in (0.2, 0.4)
    assert len(cache) == 1


def test_periodic_sweep_runs_until_stopped() -> None:
    clock = FakeClock()
    cache = RiskAssessmentCache(ttl_seconds=10, sweep_interval_seconds=0.01, clock=clock)
    cache.put(_assessment("apt-1", clock.now))
    clock.advance(11)

    cache.start()
    try:
        deadline = time.monotonic() + 2.0
        while len(cache) and time.monotonic() < deadline:
            time.sleep(0.01)
        assert cache.sweeping
    finally:
        cache.stop()

    assert len(cache) == 0
    assert not cache.sweeping


def test_high_risk_computation_alerts_once_within_cooldown() -> None:
    clock = FakeClock()
    notifier = RecordingNotifier()
    dispatcher = AlertDispatcher(notifier=notifier, clock=clock)
    cache = RiskAssessmentCache(ttl_seconds=60, clock=clock, alert_dispatcher=dispatcher)
    dispatcher.subscribe("front-desk", ["apt-1"])

    cache.get_or_compute("apt-1", lambda: _prediction(0.85, "high"))
    clock.advance(61)
    cache.get_or_compute("apt-1", lambda: _prediction(0.85, "high"))
    cache.get_or_compute("apt-2", lambda: _prediction(0.1, "low"))

    assert len(notifier.alerts) == 1
    assert notifier.alerts[0].appointment_id == "apt-1"
    assert notifier.alerts[0].subscribers == ("front-desk",)

    clock.advance(1800)
    cache.get_or_compute("apt-1", lambda: _prediction(0.85, "high"))
    assert len(notifier.alerts) == 2


def test_alert_fires_at_medium_threshold() -> None:
    dispatcher = AlertDispatcher(
        notifier=RecordingNotifier(),
        thresholds=RiskThresholds(low=0.3, medium=0.7),
        clock=FakeClock(),
    )

    assert dispatcher.dispatch(_assessment("apt-1", 0.0, score=0.7)) is not None
    assert dispatcher.dispatch(_assessment("apt-2", 0.0, score=0.69)) is None


def test_unsubscribe_removes_subscriber() -> None:
    dispatcher = AlertDispatcher(notifier=RecordingNotifier(), clock=FakeClock())
    dispatcher.subscribe("nurse", ["apt-1", "apt-2"])
    dispatcher.subscribe("doctor", ["apt-1"])

    dispatcher.unsubscribe("nurse", ["apt-1"])
    assert dispatcher.subscribers_for("apt-1") == ("doctor",)
    assert dispatcher.subscribers_for("apt-2") == ("nurse",)

    dispatcher.unsubscribe("nurse")
    assert dispatcher.subscribers_for("apt-2") == ()


def test_notifier_failure_does_not_block_lookup() -> None:
    clock = FakeClock()
    dispatcher = AlertDispatcher(notifier=BrokenNotifier(), clock=clock)
    cache = RiskAssessmentCache(ttl_seconds=60, clock=clock, alert_dispatcher=dispatcher)

    assessment = cache.get_or_compute("apt-1", lambda: _prediction(0.9, "high"))

    assert assessment.risk_score == 0.9


def test_ttl_must_be_positive() -> None:
    with pytest.raises(ValueError):
        RiskAssessmentCache(ttl_seconds=0)


def test_stats_count_hits_and_misses() -> None:
    clock = FakeClock()
    cache = RiskAssessmentCache(ttl_seconds=60, clock=clock)

    cache.get_or_compute("apt-1", lambda: _prediction(0.2))
    cache.get_or_compute("apt-1", lambda: _prediction(0.2))

    assert cache.stats() == {"entries": 1, "hits": 1, "misses": 1, "ttl_seconds": 60.0}


def test_reset_cooldowns_allows_immediate_realert() -> None:
    notifier = RecordingNotifier()
    dispatcher = AlertDispatcher(notifier=notifier, clock=FakeClock())
    high = RiskAssessment(appointment_id="apt-1", risk_score=0.9, risk_level="high", timestamp=0.0)

    assert dispatcher.dispatch(high) is not None
    assert dispatcher.dispatch(high) is None

    dispatcher.reset_cooldowns()

    assert dispatcher.dispatch(high) is not None
    assert len(notifier.alerts) == 2


def test_put_expires_on_cache_clock_regardless_of_assessment_timestamp() -> None:
    clock = FakeClock()
    cache = RiskAssessmentCache(ttl_seconds=1.0, clock=clock)
    # Stamped with a wall-clock time far ahead of the cache clock.
    cache.put(_assessment("apt-1", time.time() - 3600))

    assert cache.get("apt-1") is not None

    clock.advance(2.0)

    assert cache.get("apt-1") is None
    assert cache.sweep() == 1
    assert cache.state("apt-1") == STATE_ABSENT
