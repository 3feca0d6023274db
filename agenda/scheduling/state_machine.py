"""
Appointment lifecycle.

    AGENDADA ──confirm──▶ CONFIRMADA ──complete──▶ COMPLETADA
        │                     │
        ├──────complete───────┼──────────────────▶ COMPLETADA
        └──────cancel─────────┴──────────────────▶ CANCELADA

COMPLETADA and CANCELADA are terminal. Guards are checked in a fixed order:
the current status first, then who is acting, then the clock.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from agenda.core import config
from agenda.core.errors import ForbiddenError, StateError
from agenda.models.appointment import Appointment, AppointmentStatus

CONFIRM = 'confirm'
COMPLETE = 'complete'
CANCEL = 'cancel'

TERMINAL_STATUSES = frozenset({AppointmentStatus.COMPLETADA.value, AppointmentStatus.CANCELADA.value})

_TRANSITIONS: dict[str, tuple[frozenset, str]] = {
    CONFIRM: (
        frozenset({AppointmentStatus.AGENDADA.value}),
        AppointmentStatus.CONFIRMADA.value,
    ),
    COMPLETE: (
        frozenset({AppointmentStatus.AGENDADA.value, AppointmentStatus.CONFIRMADA.value}),
        AppointmentStatus.COMPLETADA.value,
    ),
    CANCEL: (
        frozenset({AppointmentStatus.AGENDADA.value, AppointmentStatus.CONFIRMADA.value}),
        AppointmentStatus.CANCELADA.value,
    ),
}


@dataclass(frozen=True)
class Capabilities:
    """What the acting user may do to one particular appointment."""

    is_admin: bool = False
    is_owning_patient: bool = False
    is_associated_provider: bool = False


class BookingStateMachine:
    def __init__(
        self,
        clock: Callable[[], datetime] = datetime.now,
        cancellation_window: timedelta | None = None,
    ):
        self.clock = clock
        self.cancellation_window = cancellation_window or timedelta(hours=config.CANCELLATION_WINDOW_HOURS)

    def target_status(self, appointment: Appointment, action: str, capabilities: Capabilities) -> str:
        """Return the status ``action`` leads to, or raise why it is not allowed."""
        if action not in _TRANSITIONS:
            raise ValueError(f'Unknown transition: {action!r}')

        allowed_from, target = _TRANSITIONS[action]
        if appointment.status in TERMINAL_STATUSES:
            raise StateError(f'Appointment is already {appointment.status}; no further changes are allowed.')
        if appointment.status not in allowed_from:
            raise StateError(f'Cannot {action} an appointment that is {appointment.status}.')

        self._check_actor(action, capabilities)
        self._check_time(appointment, action)
        return target

    @staticmethod
    def _check_actor(action: str, capabilities: Capabilities) -> None:
        if capabilities.is_admin or capabilities.is_associated_provider:
            return
        if action == CANCEL and capabilities.is_owning_patient:
            return
        if action == CANCEL:
            raise ForbiddenError('Only the patient, the provider or an administrator can cancel this appointment.')
        raise ForbiddenError(f'Only the provider or an administrator can {action} this appointment.')

    def _check_time(self, appointment: Appointment, action: str) -> None:
        now = self.clock()
        if action == COMPLETE and now < appointment.start_datetime:
            raise StateError('An appointment cannot be completed before it starts.')
        if action == CANCEL and appointment.start_datetime - now <= self.cancellation_window:
            hours = int(self.cancellation_window.total_seconds() // 3600)
            raise StateError(f'Appointments cannot be cancelled within {hours}h of their start time.')
