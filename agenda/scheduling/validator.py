"""
Booking validation.

Answers "can this exact appointment be booked right now?" for a provider,
start instant, duration and optional modality. Checks run in a fixed order
and stop at the first failure:

1. the start is strictly in the future;
2. the duration is between 1 minute and the configured maximum;
3. one active availability block on that weekday contains the whole window
   (and offers the requested modality, when one is given);
4. no active appointment of the provider overlaps the window.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from agenda.core import config
from agenda.models.availability import weekday_of
from agenda.scheduling.overlap import find_overlapping
from agenda.stores.appointment_store import AppointmentStore
from agenda.stores.availability_store import AvailabilityStore

NOT_IN_FUTURE = 'NotInFuture'
INVALID_DURATION = 'InvalidDuration'
OUTSIDE_AVAILABILITY = 'OutsideAvailability'
MODALITY_MISMATCH = 'ModalityMismatch'
SLOT_TAKEN = 'SlotTaken'


@dataclass(frozen=True)
class ValidationResult:
    eligible: bool
    reason: Optional[str] = None
    message: Optional[str] = None
    matched_modality: Optional[str] = None


class BookingValidator:
    def __init__(
        self,
        availability: AvailabilityStore,
        appointments: AppointmentStore,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.availability = availability
        self.appointments = appointments
        self.clock = clock

    def validate(
        self,
        provider_id: int,
        start: datetime,
        duration_minutes: int,
        modality: Optional[str] = None,
    ) -> ValidationResult:
        if start <= self.clock():
            return ValidationResult(False, NOT_IN_FUTURE, 'The appointment must start in the future.')

        if not 1 <= duration_minutes <= config.MAX_APPOINTMENT_DURATION_MINUTES:
            return ValidationResult(
                False,
                INVALID_DURATION,
                f'Duration must be between 1 and {config.MAX_APPOINTMENT_DURATION_MINUTES} minutes.',
            )

        end = start + timedelta(minutes=duration_minutes)
        matched_modality = None
        other_modality = None

        # Block bounds are taken on the start date, so a window running past
        # midnight never fits.
        for block in self.availability.list_blocks(provider_id, weekday=weekday_of(start)):
            block_start = datetime.combine(start.date(), block.start_time)
            block_end = datetime.combine(start.date(), block.end_time)
            if not (block_start <= start and end <= block_end):
                continue
            if modality is None or block.modality == modality:
                matched_modality = block.modality
                break
            other_modality = block.modality

        if matched_modality is None:
            if other_modality is not None:
                return ValidationResult(
                    False,
                    MODALITY_MISMATCH,
                    f'The provider only offers {other_modality} appointments at that time.',
                )
            return ValidationResult(
                False,
                OUTSIDE_AVAILABILITY,
                'The provider has no availability configured for the whole requested time.',
            )

        booked = self.appointments.list_active_in_window(provider_id, start, end)
        if find_overlapping(start, end, booked) is not None:
            return ValidationResult(False, SLOT_TAKEN, 'Another appointment is already booked at that time.')

        return ValidationResult(True, matched_modality=matched_modality)
