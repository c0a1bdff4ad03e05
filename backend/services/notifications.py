import logging
from typing import Callable

from backend.models.appointment import Appointment

logger = logging.getLogger(__name__)

NotificationSink = Callable[[str, Appointment], None]


class BookingNotifier:
    """Fire-and-forget booking notifications, sent after the transaction commits."""

    def __init__(self, sinks: list[NotificationSink] | None = None):
        self.sinks: list[NotificationSink] = list(sinks or [])

    def register(self, sink: NotificationSink) -> None:
        self.sinks.append(sink)

    def booking_confirmed(self, appointment: Appointment) -> None:
        self._send('booking_confirmed', appointment)

    def appointment_cancelled(self, appointment: Appointment) -> None:
        self._send('appointment_cancelled', appointment)

    def _send(self, event: str, appointment: Appointment) -> None:
        logger.info(
            'Notify %s: appointment %s for patient %s with doctor %s on %s %s',
            event, appointment.id, appointment.patient_id, appointment.doctor_id, appointment.date, appointment.time,
        )
        for sink in self.sinks:
            try:
                sink(event, appointment)
            except Exception:
                logger.exception('Notification sink failed for %s on appointment %s', event, appointment.id)


notifier = BookingNotifier()
