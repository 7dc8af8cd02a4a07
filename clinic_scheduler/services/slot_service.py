"""Bookable time-slot generation from working-time constraints."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Iterable

from clinic_scheduler.domain.models import DateRange, SchedulingConstraints, TimeInterval, TimeSlot
from clinic_scheduler.utils.logger import get_logger


logger = get_logger(__name__)

DEFAULT_SLOT_PREFERENCE = 5


def intervals_overlap(
    start1: datetime,
    end1: datetime,
    start2: datetime,
    end2: datetime,
) -> bool:
    return start1 < end2 and end1 > start2


def _overlaps_any(
    slot_start: datetime,
    slot_end: datetime,
    day: date,
    intervals: Iterable[TimeInterval],
) -> bool:
    for interval in intervals:
        interval_start, interval_end = interval.on(day)
        if intervals_overlap(slot_start, slot_end, interval_start, interval_end):
            return True
    return False


def iter_days(date_range: DateRange) -> Iterable[date]:
    current = date_range.start_date.date()
    last = date_range.end_date.date()
    while current <= last:
        yield current
        current += timedelta(days=1)


class TimeSlotGenerator:
    """Turns a date range and constraints into fixed-width bookable slots."""

    def generate(
        self,
        date_range: DateRange,
        constraints: SchedulingConstraints,
    ) -> list[TimeSlot]:
        slots: list[TimeSlot] = []
        for day in iter_days(date_range):
            if day.weekday() not in constraints.working_days:
                continue
            slots.extend(self.generate_day(day, constraints))

        logger.debug(
            "Time slots generated | start=%s | end=%s | slots=%s",
            date_range.start_date.isoformat(),
            date_range.end_date.isoformat(),
            len(slots),
        )
        return slots

    def generate_day(self, day: date, constraints: SchedulingConstraints) -> list[TimeSlot]:
        hours = constraints.hours_for(day)
        step = timedelta(minutes=constraints.slot_granularity_minutes)
        day_end = datetime.combine(day, hours.end)
        blocking = (*constraints.break_times, *constraints.blocked_times)

        slots: list[TimeSlot] = []
        slot_start = datetime.combine(day, hours.start)
        # A trailing remainder shorter than one slot is not bookable.
        while slot_start + step <= day_end:
            slot_end = slot_start + step
            if not _overlaps_any(slot_start, slot_end, day, blocking):
                slots.append(
                    TimeSlot(
                        start_time=slot_start,
                        end_time=slot_end,
                        preference=DEFAULT_SLOT_PREFERENCE,
                        overbook_target=_overlaps_any(
                            slot_start,
                            slot_end,
                            day,
                            constraints.overbook_windows,
                        ),
                    )
                )
            slot_start = slot_end
        return slots
