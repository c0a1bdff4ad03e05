"""Failures raised by the booking subsystem.

Every error carries the HTTP status it maps to and a user-facing detail
message so routers can surface it unchanged.
"""


class BookingError(Exception):
    status_code = 400
    default_detail = 'Booking request failed.'

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class SlotNotFoundError(BookingError):
    status_code = 404
    default_detail = 'This time slot is not available for booking.'


class SlotFullError(BookingError):
    status_code = 409
    default_detail = 'This time slot was just taken. Please choose another.'


class DuplicateAppointmentError(BookingError):
    status_code = 409
    default_detail = 'You already have an appointment scheduled with this doctor at this time.'


class InvalidTransitionError(BookingError):
    status_code = 400

    def __init__(self, from_status: str | None, to_status: str, detail: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(detail or f'Cannot change appointment status from {from_status} to {to_status}.')


class InvalidCapacityError(BookingError):
    status_code = 400
    default_detail = 'Invalid patient limit for this time slot.'


class SlotInUseError(BookingError):
    status_code = 409
    default_detail = 'Cannot withdraw a time slot that already has bookings.'


class LockTimeoutError(BookingError):
    status_code = 503
    default_detail = 'This time slot is busy. Please try again.'


class AppointmentNotFoundError(BookingError):
    status_code = 404
    default_detail = 'Appointment not found.'
