"""
Slot projection.

Turns a provider's weekly availability blocks into concrete, fixed-length
slots on real calendar dates and marks each one available or taken.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Iterator, Optional

from agenda.models.availability import AvailabilityBlock, weekday_of
from agenda.scheduling.overlap import find_overlapping
from agenda.stores.appointment_store import AppointmentStore
from agenda.stores.availability_store import AvailabilityStore


@dataclass(frozen=True)
class TimeSlot:
    start: datetime
    end: datetime
    modality: str
    available: bool


def iterate_block_slots(day: date, block: AvailabilityBlock, slot_duration_minutes: int) -> Iterator[tuple[datetime, datetime]]:
    """Yield every ``[start, end)`` window of the block on ``day`` that fits entirely inside it."""
    block_end = datetime.combine(day, block.end_time)
    step = timedelta(minutes=slot_duration_minutes)
    current = datetime.combine(day, block.start_time)

    while current + step <= block_end:
        yield current, current + step
        current += step


class SlotProjection:
    """A re-iterable, finite view of a provider's slots over a date range.

    Each iteration reads the stores afresh and keeps no state between
    iterations, so iterating twice without intervening writes gives the same
    slots.
    """

    def __init__(
        self,
        availability: AvailabilityStore,
        appointments: AppointmentStore,
        provider_id: int,
        range_start: date,
        range_end: date,
        modality: Optional[str],
        slot_duration_minutes: int,
        clock: Callable[[], datetime],
    ):
        self.availability = availability
        self.appointments = appointments
        self.provider_id = provider_id
        self.range_start = range_start
        self.range_end = range_end
        self.modality = modality
        self.slot_duration_minutes = slot_duration_minutes
        self.clock = clock

    def __iter__(self) -> Iterator[TimeSlot]:
        blocks = self.availability.list_blocks(self.provider_id, modality=self.modality)
        if not blocks:
            return

        blocks_by_weekday: dict[int, list[AvailabilityBlock]] = {}
        for block in blocks:
            blocks_by_weekday.setdefault(block.weekday, []).append(block)

        window_start = datetime.combine(self.range_start, datetime.min.time())
        window_end = datetime.combine(self.range_end + timedelta(days=1), datetime.min.time())
        booked = self.appointments.list_active_in_window(self.provider_id, window_start, window_end)
        now = self.clock()

        current_day = self.range_start
        while current_day <= self.range_end:
            day_slots: list[TimeSlot] = []
            for block in blocks_by_weekday.get(weekday_of(current_day), []):
                for slot_start, slot_end in iterate_block_slots(current_day, block, self.slot_duration_minutes):
                    if slot_start <= now:
                        continue
                    day_slots.append(
                        TimeSlot(
                            start=slot_start,
                            end=slot_end,
                            modality=block.modality,
                            available=find_overlapping(slot_start, slot_end, booked) is None,
                        )
                    )

            day_slots.sort(key=lambda slot: (slot.start, slot.modality))
            yield from day_slots
            current_day += timedelta(days=1)


class SlotProjector:
    def __init__(
        self,
        availability: AvailabilityStore,
        appointments: AppointmentStore,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.availability = availability
        self.appointments = appointments
        self.clock = clock

    def project(
        self,
        provider_id: int,
        range_start: date,
        range_end: date,
        modality: Optional[str] = None,
        slot_duration_minutes: int = 30,
    ) -> SlotProjection:
        return SlotProjection(
            self.availability,
            self.appointments,
            provider_id,
            range_start,
            range_end,
            modality,
            slot_duration_minutes,
            self.clock,
        )
