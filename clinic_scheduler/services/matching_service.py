"""Greedy single-pass assignment of appointment requests to time slots."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional, Sequence

from clinic_scheduler.domain.models import (
    AppointmentRequest,
    AssignmentResult,
    HistoricalPatterns,
    OptimizedAppointment,
    SchedulingConstraints,
    SchedulingPreferences,
    TimeSlot,
    priority_weight,
)
from clinic_scheduler.services.scoring_service import SlotScorer, slots_needed
from clinic_scheduler.utils.logger import get_logger


logger = get_logger(__name__)

DEFAULT_MAX_ALTERNATIVES = 3


def request_key(request: AppointmentRequest, index: int) -> str:
    return request.request_id or f"req-{index + 1}"


def order_requests(
    requests: Sequence[AppointmentRequest],
    preferences: SchedulingPreferences,
) -> list[tuple[int, AppointmentRequest]]:
    """Highest priority first; ``sorted`` is stable so input order breaks ties."""

    def sort_key(item: tuple[int, AppointmentRequest]) -> float:
        _, request = item
        value = 2.0 * priority_weight(request.priority)
        if preferences.prioritize_high_risk:
            value += request.no_show_risk or 0.0
        return -value

    return sorted(enumerate(requests), key=sort_key)


class AssignmentEngine:
    """Places each request on its best contiguous block of free slot units."""

    def __init__(
        self,
        scorer: Optional[SlotScorer] = None,
        max_alternatives: int = DEFAULT_MAX_ALTERNATIVES,
    ) -> None:
        self._scorer = scorer or SlotScorer()
        self._max_alternatives = max_alternatives

    def _block_units(
        self,
        start: datetime,
        needed: int,
        step: timedelta,
    ) -> list[datetime]:
        return [start + step * offset for offset in range(needed)]

    def _free_blocks(
        self,
        slots: Sequence[TimeSlot],
        slot_by_start: dict[datetime, TimeSlot],
        used: set[datetime],
        needed: int,
        step: timedelta,
    ) -> list[TimeSlot]:
        blocks: list[TimeSlot] = []
        for slot in slots:
            units = self._block_units(slot.start_time, needed, step)
            if all(unit in slot_by_start and unit not in used for unit in units):
                blocks.append(slot)
        return blocks

    def _overbook_blocks(
        self,
        slots: Sequence[TimeSlot],
        slot_by_start: dict[datetime, TimeSlot],
        needed: int,
        step: timedelta,
    ) -> list[TimeSlot]:
        blocks: list[TimeSlot] = []
        for slot in slots:
            units = self._block_units(slot.start_time, needed, step)
            if all(
                unit in slot_by_start and slot_by_start[unit].overbook_target
                for unit in units
            ):
                blocks.append(slot)
        return blocks

    def _rank(
        self,
        candidates: Sequence[TimeSlot],
        request: AppointmentRequest,
        preferences: SchedulingPreferences,
        patterns: Optional[HistoricalPatterns],
        granularity: int,
    ) -> list[tuple[float, TimeSlot]]:
        scored = [
            (
                self._scorer.score(
                    slot,
                    request,
                    preferences,
                    patterns,
                    granularity_minutes=granularity,
                ),
                slot,
            )
            for slot in candidates
        ]
        # Highest score wins; earliest start breaks ties.
        scored.sort(key=lambda item: (-item[0], item[1].start_time))
        return scored

    def assign(
        self,
        requests: Sequence[AppointmentRequest],
        slots: Sequence[TimeSlot],
        constraints: SchedulingConstraints,
        preferences: SchedulingPreferences,
        patterns: Optional[HistoricalPatterns] = None,
    ) -> AssignmentResult:
        granularity = constraints.slot_granularity_minutes
        step = timedelta(minutes=granularity)
        ordered_slots = sorted(slots, key=lambda slot: slot.start_time)
        slot_by_start = {slot.start_time: slot for slot in ordered_slots}
        used: set[datetime] = set()

        appointments: list[OptimizedAppointment] = []
        unscheduled: list[str] = []

        for index, request in order_requests(requests, preferences):
            request_id = request_key(request, index)
            needed = slots_needed(request.duration, granularity)

            candidates = self._free_blocks(ordered_slots, slot_by_start, used, needed, step)
            overbooked = False
            if not candidates and preferences.overbooking_allowed:
                candidates = self._overbook_blocks(ordered_slots, slot_by_start, needed, step)
                overbooked = bool(candidates)

            if not candidates:
                unscheduled.append(request_id)
                logger.debug(
                    "Request unscheduled | request_id=%s | slots_needed=%s",
                    request_id,
                    needed,
                )
                continue

            ranked = self._rank(candidates, request, preferences, patterns, granularity)
            best_score, best_slot = ranked[0]
            if not overbooked:
                used.update(self._block_units(best_slot.start_time, needed, step))

            alternatives = tuple(
                TimeSlot(
                    start_time=slot.start_time,
                    end_time=slot.start_time + step * needed,
                    preference=round(score * 10),
                )
                for score, slot in ranked[1 : 1 + self._max_alternatives]
            )
            appointments.append(
                OptimizedAppointment(
                    request_id=request_id,
                    patient_id=request.patient_id,
                    scheduled_time=best_slot.start_time,
                    duration=request.duration,
                    confidence=best_score,
                    alternative_slots=alternatives,
                    overbooked=overbooked,
                )
            )

        logger.info(
            "Assignment completed | requests=%s | scheduled=%s | unscheduled=%s | overbooked=%s",
            len(requests),
            len(appointments),
            len(unscheduled),
            sum(1 for appointment in appointments if appointment.overbooked),
        )
        return AssignmentResult(
            appointments=appointments,
            unscheduled_request_ids=unscheduled,
        )
