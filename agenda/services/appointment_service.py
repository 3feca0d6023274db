"""
Appointment booking service.

Entry point for everything the booking core does: configuring a provider's
weekly availability, listing bookable slots, validating and creating
appointments, and moving appointments through their lifecycle.

Each public method runs as one unit of work on the session it was given: it
either commits everything it wrote or rolls it all back before raising.
"""

import itertools
import logging
import secrets
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from agenda.auth.capabilities import Actor, capabilities_for
from agenda.core import config
from agenda.core.errors import BookingError, ConflictError, NotFoundError, StateError, ValidationError
from agenda.models.appointment import Appointment, AppointmentStatus
from agenda.models.availability import AvailabilityBlock, Modality
from agenda.scheduling import validator as checks
from agenda.scheduling.slots import SlotProjector, TimeSlot
from agenda.scheduling.state_machine import CANCEL, COMPLETE, CONFIRM, BookingStateMachine
from agenda.scheduling.validator import BookingValidator, ValidationResult
from agenda.services.notifications import NotificationGateway
from agenda.services.providers import ProviderDirectory
from agenda.stores.appointment_store import ORDERINGS, AppointmentStore
from agenda.stores.availability_store import AvailabilityStore

logger = logging.getLogger(__name__)

PROVIDER_PERIODS = ('today', 'week', 'month')

# Validator outcomes that mean "someone else holds this time" rather than
# "this request is malformed".
_CONFLICT_REASONS = {checks.SLOT_TAKEN}


@dataclass
class BookingResult:
    appointment: Appointment
    notification_sent: bool


def normalize_modality(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    normalized = value.strip().upper()
    if normalized not in Modality.__members__:
        raise ValidationError('Modality must be PRESENCIAL or VIRTUAL.', code='InvalidModality')
    return normalized


def parse_time_of_day(value, field_name: str) -> time:
    if isinstance(value, time):
        return value
    try:
        return time.fromisoformat(str(value).strip())
    except ValueError as exc:
        raise ValidationError(f'{field_name} must use the HH:MM:SS format.', code='InvalidAvailability') from exc


def _as_date(value) -> date:
    return value.date() if isinstance(value, datetime) else value


def _to_local_naive(value: datetime) -> datetime:
    # Stored datetimes and the clock are naive local time.
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


def _normalize_start(value: datetime) -> datetime:
    return _to_local_naive(value).replace(second=0, microsecond=0)


def _check_slot_duration(duration_minutes: int) -> None:
    if not 1 <= duration_minutes <= config.MAX_APPOINTMENT_DURATION_MINUTES:
        raise ValidationError(
            f'Slot duration must be between 1 and {config.MAX_APPOINTMENT_DURATION_MINUTES} minutes.',
            code='InvalidDuration',
        )


class AppointmentService:
    def __init__(
        self,
        db: Session,
        providers: Optional[ProviderDirectory] = None,
        notifier: Optional[NotificationGateway] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.db = db
        self.providers = providers or ProviderDirectory(db)
        self.notifier = notifier
        self.clock = clock
        self.availability = AvailabilityStore(db)
        self.appointments = AppointmentStore(db)
        self.projector = SlotProjector(self.availability, self.appointments, clock)
        self.validator = BookingValidator(self.availability, self.appointments, clock)
        self.state_machine = BookingStateMachine(clock)

    # ------------------------------------------------------------------
    # Availability configuration
    # ------------------------------------------------------------------

    def set_availability(self, provider_id: int, blocks: list[dict]) -> list[AvailabilityBlock]:
        """Replace the provider's whole weekly schedule with ``blocks``."""
        self.providers.require(provider_id)
        cleaned = self._clean_blocks(blocks)

        try:
            created = self.availability.replace_blocks(provider_id, cleaned)
            self.db.commit()
            for block in created:
                self.db.refresh(block)
        except SQLAlchemyError:
            self.db.rollback()
            raise

        logger.info('Provider %s availability replaced with %d block(s)', provider_id, len(created))
        return created

    def get_availability_config(self, provider_id: int) -> dict[int, list[AvailabilityBlock]]:
        self.providers.require(provider_id)
        by_weekday: dict[int, list[AvailabilityBlock]] = {weekday: [] for weekday in range(7)}
        for block in self.availability.list_blocks(provider_id, active_only=False):
            by_weekday[block.weekday].append(block)
        return by_weekday

    @staticmethod
    def _clean_blocks(blocks: list[dict]) -> list[dict]:
        if not blocks:
            raise ValidationError('At least one availability block is required.', code='InvalidAvailability')

        cleaned = []
        for index, block in enumerate(blocks, start=1):
            label = f'Availability block {index}'
            for field in ('weekday', 'start_time', 'end_time', 'modality'):
                if block.get(field) is None:
                    raise ValidationError(f'{label}: {field} is required.', code='InvalidAvailability')

            weekday = block['weekday']
            if isinstance(weekday, bool) or not isinstance(weekday, int) or not 0 <= weekday <= 6:
                raise ValidationError(f'{label}: weekday must be between 0 and 6.', code='InvalidAvailability')

            try:
                modality = normalize_modality(block['modality'])
            except ValidationError as exc:
                raise ValidationError(f'{label}: {exc.message}', code='InvalidAvailability') from exc

            start_time = parse_time_of_day(block['start_time'], f'{label}: start_time')
            end_time = parse_time_of_day(block['end_time'], f'{label}: end_time')
            if start_time >= end_time:
                raise ValidationError(f'{label}: end_time must be after start_time.', code='InvalidAvailability')

            cleaned.append({
                'weekday': weekday,
                'start_time': start_time,
                'end_time': end_time,
                'modality': modality,
                'active': bool(block.get('active', True)),
            })
        return cleaned

    # ------------------------------------------------------------------
    # Slot queries
    # ------------------------------------------------------------------

    def get_availability(
        self,
        provider_id: int,
        range_start,
        range_end,
        modality: Optional[str] = None,
        slot_duration_minutes: int = config.DEFAULT_SLOT_DURATION_MINUTES,
    ) -> list[TimeSlot]:
        self.providers.require(provider_id)
        range_start, range_end = _as_date(range_start), _as_date(range_end)

        if range_end < range_start:
            raise ValidationError('The range end must not be before the range start.', code='InvalidRange')
        if (range_end - range_start).days > config.MAX_AVAILABILITY_RANGE_DAYS:
            raise ValidationError(
                f'The range cannot span more than {config.MAX_AVAILABILITY_RANGE_DAYS} days.',
                code='InvalidRange',
            )
        _check_slot_duration(slot_duration_minutes)

        return list(
            self.projector.project(
                provider_id,
                range_start,
                range_end,
                normalize_modality(modality),
                slot_duration_minutes,
            )
        )

    def get_next_available_slots(
        self,
        provider_id: int,
        count: int = 10,
        modality: Optional[str] = None,
    ) -> list[TimeSlot]:
        self.providers.require(provider_id)
        if not 1 <= count <= config.MAX_NEXT_SLOTS:
            raise ValidationError(f'Count must be between 1 and {config.MAX_NEXT_SLOTS}.', code='InvalidCount')

        today = self.clock().date()
        projection = self.projector.project(
            provider_id,
            today,
            today + timedelta(days=config.MAX_AVAILABILITY_RANGE_DAYS),
            normalize_modality(modality),
            config.DEFAULT_SLOT_DURATION_MINUTES,
        )
        return list(itertools.islice((slot for slot in projection if slot.available), count))

    def validate_slot(
        self,
        provider_id: int,
        start: datetime,
        duration_minutes: int = config.DEFAULT_SLOT_DURATION_MINUTES,
    ) -> ValidationResult:
        self.providers.require(provider_id)
        return self.validator.validate(provider_id, _normalize_start(start), duration_minutes)

    # ------------------------------------------------------------------
    # Booking
    # ------------------------------------------------------------------

    def create_appointment(
        self,
        provider_id: int,
        patient_id: int,
        start: datetime,
        modality: str,
        duration_minutes: int = config.DEFAULT_SLOT_DURATION_MINUTES,
        reason: Optional[str] = None,
    ) -> BookingResult:
        """Book an appointment in AGENDADA.

        The availability check and the insert share one transaction, and the
        insert claims every minute the appointment occupies under a unique
        (provider, minute) constraint. When two overlapping requests race,
        the second commit violates that constraint and surfaces as
        ``ConflictError``.
        """
        self.providers.require(provider_id)
        if modality is None:
            raise ValidationError('Modality is required.', code='InvalidModality')
        modality = normalize_modality(modality)
        start = _normalize_start(start)
        reason = (reason or '').strip() or None
        if reason and len(reason) > config.MAX_REASON_LENGTH:
            raise ValidationError(f'Reason must be {config.MAX_REASON_LENGTH} characters or fewer.', code='InvalidReason')

        try:
            result = self.validator.validate(provider_id, start, duration_minutes, modality)
            if not result.eligible:
                if result.reason in _CONFLICT_REASONS:
                    logger.warning('Provider %s already booked at %s', provider_id, start)
                    raise ConflictError(result.message)
                raise ValidationError(result.message, code=result.reason)

            appointment = Appointment(
                patient_id=patient_id,
                provider_id=provider_id,
                start_datetime=start,
                duration_minutes=duration_minutes,
                modality=modality,
                status=AppointmentStatus.AGENDADA.value,
                reason=reason,
                virtual_link=self._virtual_link() if modality == Modality.VIRTUAL.value else None,
            )
            self.appointments.insert(appointment)
            self.db.commit()
            self.db.refresh(appointment)
        except IntegrityError as exc:
            self.db.rollback()
            logger.warning('Booking race lost for provider %s at %s', provider_id, start)
            raise ConflictError('That time was just booked; refresh availability and try again.') from exc
        except (BookingError, SQLAlchemyError):
            self.db.rollback()
            raise

        logger.info('Appointment %s booked with provider %s at %s', appointment.id, provider_id, start)
        notification_sent = self._notify('send_booking_confirmation', appointment)
        return BookingResult(appointment=appointment, notification_sent=notification_sent)

    @staticmethod
    def _virtual_link() -> str:
        return f'{config.VIRTUAL_MEETING_BASE_URL.rstrip("/")}/{secrets.token_urlsafe(9)}'

    # ------------------------------------------------------------------
    # Lifecycle transitions
    # ------------------------------------------------------------------

    def confirm_appointment(self, appointment_id: int, actor: Actor) -> Appointment:
        return self._transition(appointment_id, actor, CONFIRM)

    def complete_appointment(self, appointment_id: int, actor: Actor) -> Appointment:
        return self._transition(appointment_id, actor, COMPLETE)

    def cancel_appointment(self, appointment_id: int, actor: Actor, reason: Optional[str] = None) -> Appointment:
        appointment = self._transition(
            appointment_id,
            actor,
            CANCEL,
            cancellation_reason=(reason or '').strip() or None,
        )
        self._notify('send_cancellation_notice', appointment)
        return appointment

    def _transition(self, appointment_id: int, actor: Actor, action: str, **fields) -> Appointment:
        try:
            appointment = self.appointments.get(appointment_id)
            if appointment is None:
                raise NotFoundError(f'Appointment {appointment_id} not found.')

            target = self.state_machine.target_status(appointment, action, capabilities_for(actor, appointment))
            self.appointments.update_status(appointment, target, **fields)
            if target == AppointmentStatus.CANCELADA.value:
                self.appointments.release_claims(appointment.id)
            self.db.commit()
            self.db.refresh(appointment)
        except StaleDataError as exc:
            self.db.rollback()
            current = self.appointments.get(appointment_id, refresh=True)
            logger.warning('Concurrent change to appointment %s lost the race (%s)', appointment_id, action)
            raise StateError(
                f'Appointment {appointment_id} was changed concurrently and is now {current.status}.'
            ) from exc
        except (BookingError, SQLAlchemyError):
            self.db.rollback()
            raise

        logger.info('Appointment %s is now %s (by user %s)', appointment_id, target, actor.user_id)
        return appointment

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def list_patient_appointments(
        self,
        patient_id: int,
        status: Optional[str] = None,
        date_from=None,
        date_to=None,
        modality: Optional[str] = None,
        order_by: str = 'start_desc',
    ) -> list[Appointment]:
        if order_by not in ORDERINGS:
            raise ValidationError(f'order_by must be one of {", ".join(ORDERINGS)}.', code='InvalidOrdering')
        if status is not None:
            status = status.strip().upper()
            if status not in AppointmentStatus.__members__:
                raise ValidationError('Unknown appointment status.', code='InvalidStatus')

        # A bare date as the upper bound covers that whole day.
        if isinstance(date_from, datetime):
            date_from = _to_local_naive(date_from)
        elif isinstance(date_from, date):
            date_from = datetime.combine(date_from, time.min)
        if isinstance(date_to, datetime):
            date_to = _to_local_naive(date_to)
        elif isinstance(date_to, date):
            date_to = datetime.combine(date_to, time.max)

        return self.appointments.list_for_patient(
            patient_id,
            status=status,
            date_from=date_from,
            date_to=date_to,
            modality=normalize_modality(modality),
            order_by=order_by,
        )

    def list_provider_appointments(
        self,
        provider_id: int,
        period: Optional[str] = None,
        order_by: str = 'start_desc',
    ) -> list[Appointment]:
        self.providers.require(provider_id)
        if order_by not in ('start_desc', 'start_asc'):
            raise ValidationError('order_by must be start_desc or start_asc.', code='InvalidOrdering')
        if period is not None and period not in PROVIDER_PERIODS:
            raise ValidationError(f'period must be one of {", ".join(PROVIDER_PERIODS)}.', code='InvalidRange')

        range_start, range_end = self._period_bounds(period)
        return self.appointments.list_for_provider(provider_id, range_start, range_end, order_by=order_by)

    def _period_bounds(self, period: Optional[str]) -> tuple[Optional[datetime], Optional[datetime]]:
        today = datetime.combine(self.clock().date(), time.min)
        if period == 'today':
            return today, today + timedelta(days=1)
        if period == 'week':
            # Weeks start on Sunday.
            week_start = today - timedelta(days=(today.weekday() + 1) % 7)
            return week_start, week_start + timedelta(days=7)
        if period == 'month':
            month_start = today.replace(day=1)
            next_month = (month_start + timedelta(days=32)).replace(day=1)
            return month_start, next_month
        return None, None

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _notify(self, method_name: str, appointment: Appointment) -> bool:
        if self.notifier is None:
            return False
        try:
            return bool(getattr(self.notifier, method_name)(appointment))
        except Exception:
            logger.exception('Notification %s failed for appointment %s', method_name, appointment.id)
            return False
