"""Booking error taxonomy.

Every failure the booking core reports is one of these types, so callers
(HTTP routes included) can decide whether a retry makes sense: a
``ConflictError`` means "refresh availability and try again", while
``ForbiddenError`` and ``StateError`` will fail the same way every time.
"""


class BookingError(Exception):
    """Base class for all booking failures."""

    code = 'booking_error'

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationError(BookingError):
    code = 'InvalidInput'


class NotFoundError(BookingError):
    code = 'NotFound'


class ProviderNotFound(NotFoundError):
    code = 'ProviderNotFound'

    def __init__(self, provider_id: int):
        super().__init__(f'Provider {provider_id} not found.')
        self.provider_id = provider_id


class ConflictError(BookingError):
    code = 'SlotUnavailable'


class ForbiddenError(BookingError):
    code = 'Forbidden'


class StateError(BookingError):
    code = 'InvalidTransition'
